"""
OAuth connection lifecycle for accounting providers.

connect → callback → (refresh)* → disconnect, identical for every provider.
Tokens only reach the database through the token vault.

Refresh policy: when stored credentials cannot be refreshed (undecryptable
or missing refresh token, or the provider rejects the refresh grant) the
connection is cleared and sync disabled, and the caller is told to
reconnect. Transport failures, throttling and 5xx from the token endpoint
surface as 502 and keep the stored credentials.
"""

import asyncio
import logging
import weakref
from datetime import timedelta
from typing import Any, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tradiesync.exceptions import (
    ExternalServiceError,
    InvalidOAuthStateError,
    NotConnectedError,
    ProviderNotConfiguredError,
    ReconnectRequiredError,
    ValidationError,
)
from tradiesync.models.connection import AccountingConnection
from tradiesync.security.oauth_state import OAuthStateSigner
from tradiesync.security.token_vault import DecryptionError, TokenVault
from tradiesync.services.accounting.base import (
    AccountingProvider,
    ProviderAPIError,
    ProviderCredentials,
    TenantDiscoveryError,
    TokenEndpointError,
)
from tradiesync.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class RefreshLocks:
    """
    One asyncio.Lock per (user, provider) so a token is refreshed once at a time.

    Entries are held weakly: a lock disappears once no request holds or
    waits on it.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, user_id: str, provider: str) -> asyncio.Lock:
        key = (user_id, provider)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


refresh_locks = RefreshLocks()


class OAuthFlowService:
    def __init__(
        self,
        db: AsyncSession,
        provider: AccountingProvider,
        vault: TokenVault,
        signer: OAuthStateSigner,
        clock: Clock = utcnow,
        locks: RefreshLocks = refresh_locks,
    ):
        self.db = db
        self.provider = provider
        self.vault = vault
        self.signer = signer
        self.clock = clock
        self.locks = locks

    # ── Persistence ─────────────────────────────────────────────

    async def _load(self, user_id: str, for_update: bool = False) -> Optional[AccountingConnection]:
        query = select(AccountingConnection).where(
            AccountingConnection.user_id == user_id,
            AccountingConnection.provider == self.provider.name,
        )
        if for_update:
            # Re-read the row so changes committed by another request are visible
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _invalidate(self, connection: AccountingConnection, reason: str) -> ReconnectRequiredError:
        """Clear the connection and return the error the caller should raise."""
        logger.warning(
            f"{self.provider.display_name} credentials invalidated: {reason}",
            extra={"provider": self.provider.name},
        )
        connection.clear_credentials()
        await self.db.commit()
        return ReconnectRequiredError(self.provider.display_name)

    def _require_configured(self) -> None:
        if not self.provider.is_configured():
            raise ProviderNotConfiguredError(self.provider.display_name)

    # ── Flow ────────────────────────────────────────────────────

    def connect(self, user_id: str) -> str:
        """Authorization URL carrying a signed state for this user and provider."""
        self._require_configured()
        state = self.signer.sign({"userId": user_id, "provider": self.provider.name})
        return self.provider.authorization_url(state)

    async def callback(self, code: Optional[str], state: Optional[str], params: dict[str, Any]) -> dict[str, Any]:
        """
        Complete authorization.

        The connection is stored against the user id signed into ``state``,
        never against whoever happens to be calling.
        """
        if not code or not state:
            raise ValidationError("Missing code or state parameter")

        verification = self.signer.verify(state)
        if not verification.valid:
            logger.warning(
                f"OAuth state rejected: {verification.error}",
                extra={"provider": self.provider.name},
            )
            raise InvalidOAuthStateError()

        data = verification.data or {}
        user_id = data.get("userId")
        if data.get("provider") != self.provider.name or not isinstance(user_id, str) or not user_id:
            logger.warning(
                "OAuth state rejected: signed for a different provider or user",
                extra={"provider": self.provider.name},
            )
            raise InvalidOAuthStateError()

        self._require_configured()

        try:
            tokens = await self.provider.exchange_code(code)
        except (TokenEndpointError, httpx.HTTPError) as e:
            logger.error(f"{self.provider.display_name} code exchange failed: {type(e).__name__}")
            raise ExternalServiceError(self.provider.display_name, "Failed to exchange authorization code")

        try:
            tenant = await self.provider.discover_tenant(tokens, params)
        except TenantDiscoveryError as e:
            raise ValidationError(str(e))
        except (ProviderAPIError, httpx.HTTPError) as e:
            logger.error(f"{self.provider.display_name} organisation lookup failed: {type(e).__name__}")
            raise ExternalServiceError(self.provider.display_name, "Failed to get organisation details")

        now = self.clock()
        connection = await self._load(user_id)
        if connection is None:
            connection = AccountingConnection(user_id=user_id, provider=self.provider.name)
            self.db.add(connection)

        connection.tenant_id = tenant.id
        connection.tenant_name = tenant.name
        connection.tenant_uri = tenant.uri
        connection.access_token_encrypted = self.vault.encrypt(tokens.access_token)
        connection.refresh_token_encrypted = self.vault.encrypt(tokens.refresh_token)
        connection.token_expires_at = now + timedelta(seconds=tokens.expires_in)
        connection.sync_enabled = True
        connection.connected_at = now
        await self.db.commit()

        logger.info(
            f"Connected {self.provider.display_name} tenant",
            extra={"provider": self.provider.name, "tenant_id": tenant.id},
        )
        return {
            "success": True,
            "provider": self.provider.name,
            "tenant_id": tenant.id,
            "tenant_name": tenant.name,
            "message": f"{self.provider.display_name} connected successfully",
        }

    async def refresh(self, user_id: str) -> AccountingConnection:
        """Refresh the stored tokens now, whether or not they have expired."""
        async with self.locks.lock_for(user_id, self.provider.name):
            connection = await self._load(user_id, for_update=True)
            if connection is None or not connection.tenant_id:
                raise NotConnectedError(self.provider.display_name)
            return await self._refresh_locked(connection)

    async def _refresh_locked(self, connection: AccountingConnection) -> AccountingConnection:
        if not connection.refresh_token_encrypted:
            raise await self._invalidate(connection, "no refresh token stored")
        try:
            refresh_token = self.vault.decrypt(connection.refresh_token_encrypted)
        except DecryptionError:
            raise await self._invalidate(connection, "refresh token could not be decrypted")

        self._require_configured()

        try:
            tokens = await self.provider.refresh_tokens(refresh_token)
        except TokenEndpointError as e:
            if e.rejected:
                raise await self._invalidate(connection, "refresh grant rejected")
            # Throttling and outages at the token endpoint leave the stored credentials alone
            logger.error(f"{self.provider.display_name} token refresh unavailable: HTTP {e.status_code}")
            raise ExternalServiceError(self.provider.display_name, "Failed to refresh token")
        except httpx.HTTPError as e:
            # Transport failures leave the stored credentials alone
            logger.error(f"{self.provider.display_name} token refresh request failed: {type(e).__name__}")
            raise ExternalServiceError(self.provider.display_name, "Failed to refresh token")

        connection.access_token_encrypted = self.vault.encrypt(tokens.access_token)
        connection.refresh_token_encrypted = self.vault.encrypt(tokens.refresh_token)
        connection.token_expires_at = self.clock() + timedelta(seconds=tokens.expires_in)
        await self.db.commit()

        logger.info(f"{self.provider.display_name} token refreshed", extra={"provider": self.provider.name})
        return connection

    async def _refresh_if_expired(self, user_id: str) -> AccountingConnection:
        async with self.locks.lock_for(user_id, self.provider.name):
            connection = await self._load(user_id, for_update=True)
            if connection is None or not connection.sync_enabled or not connection.is_connected:
                raise NotConnectedError(self.provider.display_name)
            if connection.token_expires_at is not None and connection.token_expires_at >= self.clock():
                # Another request refreshed while this one waited
                return connection
            return await self._refresh_locked(connection)

    async def get_credentials(self, user_id: str) -> ProviderCredentials:
        """Decrypted credentials for a sync batch, refreshing expired tokens first."""
        connection = await self._load(user_id)
        if connection is None or not connection.sync_enabled or not connection.is_connected:
            raise NotConnectedError(self.provider.display_name)

        if connection.token_expires_at is not None and connection.token_expires_at < self.clock():
            connection = await self._refresh_if_expired(user_id)

        try:
            access_token = self.vault.decrypt(connection.access_token_encrypted)
        except DecryptionError:
            raise await self._invalidate(connection, "access token could not be decrypted")

        return ProviderCredentials(
            access_token=access_token,
            tenant_id=connection.tenant_id,
            tenant_uri=connection.tenant_uri,
        )

    async def disconnect(self, user_id: str) -> None:
        """Clear stored credentials. Succeeds whether or not a connection exists."""
        connection = await self._load(user_id)
        if connection is None:
            return
        connection.clear_credentials()
        await self.db.commit()
        logger.info(f"Disconnected {self.provider.display_name}", extra={"provider": self.provider.name})

    async def status(self, user_id: str) -> dict[str, Any]:
        connection = await self._load(user_id)
        connected = connection is not None and connection.is_connected
        expires_at = connection.token_expires_at if connection else None
        return {
            "provider": self.provider.name,
            "connected": connected,
            "tenant_id": connection.tenant_id if connected else None,
            "tenant_name": connection.tenant_name if connected else None,
            "sync_enabled": bool(connection and connection.sync_enabled),
            "connected_at": connection.connected_at if connected else None,
            "token_expires_at": expires_at if connected else None,
            "token_expired": bool(connected and expires_at and expires_at < self.clock()),
        }
