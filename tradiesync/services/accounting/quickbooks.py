"""
QuickBooks Online API integration.

Updates need the entity's current ``SyncToken``, so an existing customer or
invoice is read before it is written back.
"""

import logging
from typing import Any

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

QBO_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
QBO_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QBO_API_BASE = "https://quickbooks.api.intuit.com/v3/company"
QBO_SANDBOX_API_BASE = "https://sandbox-quickbooks.api.intuit.com/v3/company"
QBO_MINOR_VERSION = "65"


def build_customer(client: Client, country: str) -> dict[str, Any]:
    customer: dict[str, Any] = {"DisplayName": client.name}
    if client.email:
        customer["PrimaryEmailAddr"] = {"Address": client.email}
    if client.phone:
        customer["PrimaryPhone"] = {"FreeFormNumber": client.phone}
    if client.address:
        bill_addr = {"Line1": client.address, "Country": country}
        if client.suburb:
            bill_addr["City"] = client.suburb
        if client.state:
            bill_addr["CountrySubDivisionCode"] = client.state
        if client.postcode:
            bill_addr["PostalCode"] = client.postcode
        customer["BillAddr"] = bill_addr
    return customer


def build_invoice(invoice: Invoice, customer_id: str) -> dict[str, Any]:
    lines = []
    for item in invoice.line_items or []:
        quantity = item.get("quantity") or 1
        unit_price = item.get("unit_price") or 0
        lines.append({
            "DetailType": "SalesItemLineDetail",
            "Amount": quantity * unit_price,
            "Description": item.get("description") or "Service",
            "SalesItemLineDetail": {"UnitPrice": unit_price, "Qty": quantity},
        })

    if not lines:
        total = invoice.total or 0
        lines.append({
            "DetailType": "SalesItemLineDetail",
            "Amount": total,
            "Description": invoice.title or "Services",
            "SalesItemLineDetail": {"UnitPrice": total, "Qty": 1},
        })

    payload: dict[str, Any] = {
        "Line": lines,
        "DocNumber": invoice.invoice_number,
        "CustomerRef": {"value": customer_id},
    }
    if invoice.due_date:
        payload["DueDate"] = invoice.due_date.isoformat()
    if invoice.created_at:
        payload["TxnDate"] = invoice.created_at.date().isoformat()
    return payload


class QuickBooksProvider(AccountingProvider):
    name = "quickbooks"
    display_name = "QuickBooks"
    authorize_url = QBO_AUTH_URL
    token_url = QBO_TOKEN_URL
    scopes = "com.intuit.quickbooks.accounting"
    sync_direction = "to_quickbooks"

    client_ref_field = "qb_customer_id"
    client_synced_field = "last_synced_to_qb"
    client_error_field = "qb_sync_error"
    invoice_ref_field = "qb_invoice_id"
    invoice_synced_field = "last_synced_to_qb"
    invoice_error_field = "qb_sync_error"

    bulk_invoice_statuses = None

    def __init__(self, http, settings: Settings):
        super().__init__(http, settings)
        sandbox = settings.QUICKBOOKS_ENVIRONMENT == "sandbox"
        self.api_base = QBO_SANDBOX_API_BASE if sandbox else QBO_API_BASE

    @property
    def client_id(self):
        return self.settings.QUICKBOOKS_CLIENT_ID

    @property
    def client_secret(self):
        return self.settings.QUICKBOOKS_CLIENT_SECRET

    def _headers(self, credentials: ProviderCredentials) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.access_token}",
            "Accept": "application/json",
        }

    def _url(self, credentials: ProviderCredentials, path: str) -> str:
        return f"{self.api_base}/{credentials.tenant_id}/{path}"

    async def discover_tenant(self, tokens: TokenSet, params: dict[str, Any]) -> Tenant:
        realm_id = params.get("realmId")
        if not realm_id:
            raise TenantDiscoveryError("Missing realmId from QuickBooks callback")
        return Tenant(id=str(realm_id))

    async def _read_sync_token(self, credentials: ProviderCredentials, entity: str, entity_id: str) -> str:
        response = await self.http.get(
            self._url(credentials, f"{entity}/{entity_id}"),
            params={"minorversion": QBO_MINOR_VERSION},
            headers=self._headers(credentials),
        )
        self._raise_for_status(response)
        try:
            return self._json(response)[entity.capitalize()]["SyncToken"]
        except (KeyError, TypeError) as e:
            raise SyncRowError(f"QuickBooks {entity} {entity_id} has no SyncToken") from e

    async def _upsert(self, credentials: ProviderCredentials, entity: str, payload: dict, existing_id) -> str:
        if existing_id:
            payload["Id"] = existing_id
            payload["SyncToken"] = await self._read_sync_token(credentials, entity, existing_id)

        response = await self.http.post(
            self._url(credentials, entity),
            params={"minorversion": QBO_MINOR_VERSION},
            headers=self._headers(credentials),
            json=payload,
        )
        self._raise_for_status(response)
        try:
            ref = self._json(response)[entity.capitalize()]["Id"]
        except (KeyError, TypeError) as e:
            raise SyncRowError(f"QuickBooks response did not include a {entity} Id") from e
        if not ref:
            raise SyncRowError(f"QuickBooks response did not include a {entity} Id")
        return str(ref)

    async def push_client(self, credentials: ProviderCredentials, client: Client) -> str:
        payload = build_customer(client, self.settings.DEFAULT_COUNTRY)
        return await self._upsert(credentials, "customer", payload, client.qb_customer_id)

    async def push_invoice(self, credentials: ProviderCredentials, invoice: Invoice, contact_ref: str) -> str:
        payload = build_invoice(invoice, contact_ref)
        return await self._upsert(credentials, "invoice", payload, invoice.qb_invoice_id)
