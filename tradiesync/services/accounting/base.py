"""
Shared provider strategy for accounting integrations.

Each provider implements the same surface: authorization URL, token grants,
tenant discovery and the two push operations used by the sync jobs. HTTP
goes through an injected ``httpx.AsyncClient`` so the caller controls
timeouts and connection reuse.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx

from tradiesync.config import Settings
from tradiesync.models.client import Client
from tradiesync.models.invoice import Invoice

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 1800
ERROR_EXCERPT_LENGTH = 200
LOG_EXCERPT_LENGTH = 500

# Token endpoint statuses meaning the grant itself was refused
GRANT_REJECTED_STATUSES = (400, 401)


@dataclass
class TokenSet:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass
class Tenant:
    id: str
    name: Optional[str] = None
    uri: Optional[str] = None


@dataclass
class ProviderCredentials:
    """Decrypted, ready-to-use credentials for one sync batch."""

    access_token: str
    tenant_id: str
    tenant_uri: Optional[str] = None


class ProviderError(Exception):
    """Base class for provider-side failures."""


class TokenEndpointError(ProviderError):
    """
    The provider token endpoint did not return usable tokens.

    ``rejected`` is True only when the grant itself was refused (400/401,
    e.g. ``invalid_grant``) or the response carried no tokens. Throttling
    and server errors leave it False.
    """

    def __init__(self, provider: str, status_code: int, rejected: bool = True):
        self.provider = provider
        self.status_code = status_code
        self.rejected = rejected
        super().__init__(f"{provider} token endpoint returned {status_code}")


class TenantDiscoveryError(ProviderError):
    """No organisation / company file could be selected after authorization."""


class ProviderAPIError(ProviderError):
    """
    Non-2xx from a provider data endpoint.

    ``str(exc)`` is safe to store on the local row: it carries only the
    first 200 characters of the response body.
    """

    def __init__(self, display_name: str, status_code: int, body: str):
        self.display_name = display_name
        self.status_code = status_code
        self.body = body or ""
        super().__init__(f"{display_name} API error: {self.body[:ERROR_EXCERPT_LENGTH]}")


class SyncRowError(ProviderError):
    """A row could not be mapped, or the provider response had no usable id."""


class AccountingProvider(ABC):
    """Strategy interface implemented once per accounting system."""

    name: str
    display_name: str
    authorize_url: str
    token_url: str
    scopes: str
    sync_direction: str

    client_ref_field: str
    client_synced_field: str
    client_error_field: str
    invoice_ref_field: str
    invoice_synced_field: str
    invoice_error_field: str

    # None means every non-deleted invoice is included in a bulk sync
    bulk_invoice_statuses: Optional[tuple[str, ...]] = None

    # Send client credentials as HTTP Basic auth instead of form fields
    token_basic_auth: bool = True

    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self.http = http
        self.settings = settings

    # ── Configuration ───────────────────────────────────────────

    @property
    @abstractmethod
    def client_id(self) -> Optional[str]: ...

    @property
    @abstractmethod
    def client_secret(self) -> Optional[str]: ...

    @property
    def redirect_uri(self) -> str:
        return self.settings.redirect_uri_for(self.name)

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    # ── OAuth ───────────────────────────────────────────────────

    def authorization_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scopes,
            "state": state,
        }
        return f"{self.authorize_url}?{urlencode(params, quote_via=quote)}"

    async def exchange_code(self, code: str) -> TokenSet:
        data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        })
        return self._parse_tokens(data)

    async def refresh_tokens(self, refresh_token: str) -> TokenSet:
        data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        return self._parse_tokens(data, previous_refresh_token=refresh_token)

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        auth = None
        if self.token_basic_auth:
            auth = (self.client_id, self.client_secret)
        else:
            form = {**form, "client_id": self.client_id, "client_secret": self.client_secret}

        response = await self.http.post(
            self.token_url,
            data=form,
            auth=auth,
            headers={"Accept": "application/json"},
        )
        if not response.is_success:
            # Full body stays server-side
            logger.error(
                f"{self.display_name} token endpoint error {response.status_code}: "
                f"{response.text[:LOG_EXCERPT_LENGTH]}"
            )
            raise TokenEndpointError(
                self.display_name,
                response.status_code,
                rejected=response.status_code in GRANT_REJECTED_STATUSES,
            )
        try:
            return response.json()
        except ValueError as e:
            raise TokenEndpointError(self.display_name, response.status_code, rejected=False) from e

    def _parse_tokens(self, data: dict[str, Any], previous_refresh_token: Optional[str] = None) -> TokenSet:
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token") or previous_refresh_token
        if not access_token or not refresh_token:
            logger.error(f"{self.display_name} token response missing tokens")
            raise TokenEndpointError(self.display_name, 200)
        try:
            expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        return TokenSet(access_token=access_token, refresh_token=refresh_token, expires_in=expires_in)

    @abstractmethod
    async def discover_tenant(self, tokens: TokenSet, params: dict[str, Any]) -> Tenant:
        """Select the organisation the tokens will sync into."""

    # ── Entity push ─────────────────────────────────────────────

    @abstractmethod
    async def push_client(self, credentials: ProviderCredentials, client: Client) -> str:
        """Create or update ``client`` remotely. Returns the provider reference id."""

    @abstractmethod
    async def push_invoice(self, credentials: ProviderCredentials, invoice: Invoice, contact_ref: str) -> str:
        """Create or update ``invoice`` remotely. Returns the provider reference id."""

    def skips_invoice(self, invoice: Invoice) -> bool:
        """True when the invoice must not be re-sent even though it was selected."""
        return False

    # ── Helpers ─────────────────────────────────────────────────

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        body = response.text
        logger.error(
            f"{self.display_name} API error {response.status_code}: {body[:LOG_EXCERPT_LENGTH]}"
        )
        raise ProviderAPIError(self.display_name, response.status_code, body)

    def _parse_json(self, response: httpx.Response) -> Any:
        """Body of a 2xx response; an unreadable body is an upstream failure."""
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{self.display_name} returned a non-JSON body ({response.status_code})")
            raise ProviderAPIError(self.display_name, response.status_code, response.text) from e

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise SyncRowError(f"{self.display_name} returned an unreadable response") from e
        if not isinstance(data, dict):
            raise SyncRowError(f"{self.display_name} returned an unexpected response")
        return data

    def get_ref(self, entity: Client | Invoice) -> Optional[str]:
        field = self.client_ref_field if isinstance(entity, Client) else self.invoice_ref_field
        return getattr(entity, field)
