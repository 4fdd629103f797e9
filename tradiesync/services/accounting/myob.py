"""
MYOB AccountRight API integration.

All data calls are made against the company-file URI chosen at connect
time. Updates carry the record's current ``RowVersion``.
"""

import logging
from typing import Any, Optional

import httpx

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

MYOB_AUTH_URL = "https://secure.myob.com/oauth2/account/authorize"
MYOB_TOKEN_URL = "https://secure.myob.com/oauth2/v1/authorize"
MYOB_COMPANY_FILES_URL = "https://api.myob.com/accountright/"
MYOB_API_VERSION = "v2"


def split_name(name: Optional[str]) -> tuple[str, str]:
    parts = (name or "").split(" ")
    return parts[0], " ".join(parts[1:])


def build_contact(client: Client, country: str) -> dict[str, Any]:
    first_name, last_name = split_name(client.name)
    contact: dict[str, Any] = {
        "FirstName": first_name,
        "LastName": last_name,
        "IsActive": True,
    }
    if client.company_name:
        contact["CompanyName"] = client.company_name

    address: dict[str, Any] = {}
    if client.address:
        address.update({"Street": client.address, "Country": country})
    if client.phone:
        address["Phone1"] = client.phone
    if client.email:
        address["Email"] = client.email
    if address:
        contact["Addresses"] = [{"Location": 1, **address}]

    if client.myob_uid:
        contact["UID"] = client.myob_uid
    return contact


def build_invoice(invoice: Invoice, customer_uid: str, settings: Settings) -> dict[str, Any]:
    items = invoice.line_items or [
        {"description": "Services", "quantity": 1, "unit_price": invoice.total or 0}
    ]

    lines = []
    for item in items:
        line: dict[str, Any] = {
            "Type": "Transaction",
            "Description": item.get("description") or "Service",
            "Total": (item.get("quantity") or 1) * (item.get("unit_price") or 0),
        }
        # Without explicit UIDs MYOB applies the company file defaults
        if settings.MYOB_INCOME_ACCOUNT_UID:
            line["Account"] = {"UID": settings.MYOB_INCOME_ACCOUNT_UID}
        if settings.MYOB_TAX_CODE_UID:
            line["TaxCode"] = {"UID": settings.MYOB_TAX_CODE_UID}
        lines.append(line)

    payload: dict[str, Any] = {
        "Number": invoice.invoice_number,
        "Date": invoice.created_at.date().isoformat(),
        "Customer": {"UID": customer_uid},
        "Lines": lines,
        "IsTaxInclusive": False,
        "Comment": f"TradieMate Invoice {invoice.invoice_number}",
        "Status": "Closed" if invoice.status == "paid" else "Open",
    }
    if invoice.due_date:
        payload["PromisedDate"] = invoice.due_date.isoformat()
    if invoice.myob_uid:
        payload["UID"] = invoice.myob_uid
    return payload


def uid_from_response(response: httpx.Response) -> Optional[str]:
    """New records report their UID as the last segment of ``Location``, else in the body."""
    location = response.headers.get("Location")
    if location:
        uid = location.rstrip("/").split("/")[-1]
        if uid:
            return uid
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("UID")
    return None


class MyobProvider(AccountingProvider):
    name = "myob"
    display_name = "MYOB"
    authorize_url = MYOB_AUTH_URL
    token_url = MYOB_TOKEN_URL
    scopes = "CompanyFile"
    sync_direction = "to_myob"

    client_ref_field = "myob_uid"
    client_synced_field = "last_synced_to_myob"
    client_error_field = "myob_sync_error"
    invoice_ref_field = "myob_uid"
    invoice_synced_field = "last_synced_to_myob"
    invoice_error_field = "myob_sync_error"

    bulk_invoice_statuses = ("sent", "paid", "partially_paid")
    token_basic_auth = False

    @property
    def client_id(self):
        return self.settings.MYOB_CLIENT_ID

    @property
    def client_secret(self):
        return self.settings.MYOB_CLIENT_SECRET

    def _headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "x-myobapi-key": self.client_id or "",
            "x-myobapi-version": MYOB_API_VERSION,
            "Accept": "application/json",
        }

    async def discover_tenant(self, tokens: TokenSet, params: dict[str, Any]) -> Tenant:
        response = await self.http.get(MYOB_COMPANY_FILES_URL, headers=self._headers(tokens.access_token))
        self._raise_for_status(response)
        files = self._parse_json(response)
        if not isinstance(files, list) or not files:
            raise TenantDiscoveryError("No MYOB company files found")

        # Single-tenant: the first company file is used
        first = files[0]
        if not isinstance(first, dict) or not first.get("Id") or not first.get("Uri"):
            raise TenantDiscoveryError("No MYOB company files found")
        return Tenant(id=first["Id"], name=first.get("Name"), uri=first["Uri"].rstrip("/"))

    def _base(self, credentials: ProviderCredentials) -> str:
        if not credentials.tenant_uri:
            raise SyncRowError("No MYOB company file configured")
        return credentials.tenant_uri

    async def _row_version(self, credentials: ProviderCredentials, url: str) -> Optional[str]:
        response = await self.http.get(url, headers=self._headers(credentials.access_token))
        self._raise_for_status(response)
        return self._json(response).get("RowVersion")

    async def _upsert(self, credentials: ProviderCredentials, collection_url: str, payload: dict, existing_uid) -> str:
        headers = self._headers(credentials.access_token)
        if existing_uid:
            url = f"{collection_url}/{existing_uid}"
            row_version = await self._row_version(credentials, url)
            if row_version:
                payload["RowVersion"] = row_version
            response = await self.http.put(url, headers=headers, json=payload)
            self._raise_for_status(response)
            return existing_uid

        response = await self.http.post(collection_url, headers=headers, json=payload)
        self._raise_for_status(response)
        uid = uid_from_response(response)
        if not uid:
            raise SyncRowError("MYOB response did not include a UID")
        return uid

    async def push_client(self, credentials: ProviderCredentials, client: Client) -> str:
        payload = build_contact(client, self.settings.DEFAULT_COUNTRY)
        url = f"{self._base(credentials)}/Contact/Customer"
        return await self._upsert(credentials, url, payload, client.myob_uid)

    async def push_invoice(self, credentials: ProviderCredentials, invoice: Invoice, contact_ref: str) -> str:
        payload = build_invoice(invoice, contact_ref, self.settings)
        url = f"{self._base(credentials)}/Sale/Invoice/Service"
        return await self._upsert(credentials, url, payload, invoice.myob_uid)
