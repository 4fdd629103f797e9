"""Xero accounting API integration."""

import logging
from typing import Any, Optional

from tradiesync.config import Settings
from tradiesync.models.client import Client
from tradiesync.models.invoice import Invoice
from tradiesync.services.accounting.base import (
    AccountingProvider,
    ProviderCredentials,
    SyncRowError,
    Tenant,
    TenantDiscoveryError,
    TokenSet,
)

logger = logging.getLogger(__name__)

XERO_AUTH_URL = "https://login.xero.com/identity/connect/authorize"
XERO_TOKEN_URL = "https://identity.xero.com/connect/token"
XERO_CONNECTIONS_URL = "https://api.xero.com/connections"
XERO_API_BASE = "https://api.xero.com/api.xro/2.0"

XERO_SCOPES = "accounting.transactions accounting.contacts accounting.settings offline_access"

XERO_STATUS_MAP = {
    "draft": "DRAFT",
    "paid": "PAID",
    "sent": "AUTHORISED",
    "partially_paid": "AUTHORISED",
    "overdue": "AUTHORISED",
}


def build_contact(client: Client) -> dict[str, Any]:
    contact: dict[str, Any] = {"Name": client.name}
    if client.email:
        contact["EmailAddress"] = client.email
    if client.phone:
        contact["Phones"] = [{"PhoneType": "MOBILE", "PhoneNumber": client.phone}]
    if client.address:
        contact["Addresses"] = [{"AddressType": "STREET", "AddressLine1": client.address}]
    if client.xero_contact_id:
        contact["ContactID"] = client.xero_contact_id
    return contact


def map_status(status: Optional[str]) -> str:
    return XERO_STATUS_MAP.get(status or "", "AUTHORISED")


def build_invoice(invoice: Invoice, contact_id: str, settings: Settings) -> dict[str, Any]:
    """Map a local invoice to a Xero ACCREC invoice. Raises SyncRowError without line items."""
    items = invoice.line_items or []
    if not items:
        raise SyncRowError("Invoice has no line items")

    payload: dict[str, Any] = {
        "Type": "ACCREC",
        "Contact": {"ContactID": contact_id},
        "Date": invoice.created_at.date().isoformat(),
        "LineAmountTypes": "Exclusive",
        "LineItems": [
            {
                "Description": item.get("description") or "Service",
                "Quantity": item.get("quantity") or 1,
                "UnitAmount": item.get("unit_price") or 0,
                "AccountCode": settings.XERO_SALES_ACCOUNT_CODE,
                "TaxType": settings.XERO_TAX_TYPE,
            }
            for item in items
        ],
        "InvoiceNumber": invoice.invoice_number,
        "Reference": f"TradieMate Invoice {invoice.invoice_number}",
        "Status": map_status(invoice.status),
        "CurrencyCode": settings.INVOICE_CURRENCY,
    }
    if invoice.due_date:
        payload["DueDate"] = invoice.due_date.isoformat()
    return payload


class XeroProvider(AccountingProvider):
    name = "xero"
    display_name = "Xero"
    authorize_url = XERO_AUTH_URL
    token_url = XERO_TOKEN_URL
    scopes = XERO_SCOPES
    sync_direction = "to_xero"

    client_ref_field = "xero_contact_id"
    client_synced_field = "last_synced_to_xero"
    client_error_field = "xero_sync_error"
    invoice_ref_field = "xero_invoice_id"
    invoice_synced_field = "last_synced_to_xero"
    invoice_error_field = "xero_sync_error"

    bulk_invoice_statuses = ("sent", "paid", "partially_paid")

    @property
    def client_id(self):
        return self.settings.XERO_CLIENT_ID

    @property
    def client_secret(self):
        return self.settings.XERO_CLIENT_SECRET

    def _headers(self, credentials: ProviderCredentials) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.access_token}",
            "Xero-Tenant-Id": credentials.tenant_id,
            "Accept": "application/json",
        }

    async def discover_tenant(self, tokens: TokenSet, params: dict[str, Any]) -> Tenant:
        response = await self.http.get(
            XERO_CONNECTIONS_URL,
            headers={"Authorization": f"Bearer {tokens.access_token}", "Accept": "application/json"},
        )
        self._raise_for_status(response)
        connections = self._parse_json(response)
        if not isinstance(connections, list) or not connections:
            raise TenantDiscoveryError("No Xero organisations found")

        # Single-tenant: the first authorised organisation is used
        first = connections[0]
        if not isinstance(first, dict) or not first.get("tenantId"):
            raise TenantDiscoveryError("No Xero organisations found")
        if len(connections) > 1:
            logger.info(f"Xero returned {len(connections)} organisations, using the first")
        return Tenant(id=first["tenantId"], name=first.get("tenantName"))

    async def push_client(self, credentials: ProviderCredentials, client: Client) -> str:
        url = f"{XERO_API_BASE}/Contacts"
        if client.xero_contact_id:
            url = f"{url}/{client.xero_contact_id}"

        response = await self.http.post(
            url,
            headers=self._headers(credentials),
            json={"Contacts": [build_contact(client)]},
        )
        self._raise_for_status(response)
        try:
            return self._json(response)["Contacts"][0]["ContactID"]
        except (KeyError, IndexError, TypeError) as e:
            raise SyncRowError("Xero response did not include a ContactID") from e

    def skips_invoice(self, invoice: Invoice) -> bool:
        # Paid invoices are locked in Xero
        return bool(invoice.xero_invoice_id) and invoice.status == "paid"

    async def push_invoice(self, credentials: ProviderCredentials, invoice: Invoice, contact_ref: str) -> str:
        payload = build_invoice(invoice, contact_ref, self.settings)
        url = f"{XERO_API_BASE}/Invoices"
        if invoice.xero_invoice_id:
            url = f"{url}/{invoice.xero_invoice_id}"

        response = await self.http.post(
            url,
            headers=self._headers(credentials),
            json={"Invoices": [payload]},
        )
        self._raise_for_status(response)
        try:
            return self._json(response)["Invoices"][0]["InvoiceID"]
        except (KeyError, IndexError, TypeError) as e:
            raise SyncRowError("Xero response did not include an InvoiceID") from e
