"""
FastAPI Dependencies

Provides dependency injection for database sessions, bearer authentication,
the shared provider HTTP client and the per-request sync services.

SECURITY NOTES:
- JWT payloads are never logged
- Bearer token is the only auth method for user-initiated routes
- The OAuth callback is authenticated by its signed state instead
"""

from typing import Annotated, Optional
import logging

import httpx
from fastapi import Depends, Path
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from tradiesync.config import settings
from tradiesync.database import get_db
from tradiesync.exceptions import ErrorCode, NotFoundError, TradieSyncException, UnauthorizedError
from tradiesync.security.keys import EncryptionNotConfiguredError
from tradiesync.security.oauth_state import OAuthStateSigner, get_state_signer
from tradiesync.security.rate_limiter import RateLimiter
from tradiesync.security.token_vault import TokenVault, get_token_vault
from tradiesync.services.accounting import PROVIDER_CLASSES, AccountingProvider, get_provider
from tradiesync.services.identity import AuthenticatedUser, IdentityProvider
from tradiesync.services.oauth_flow import OAuthFlowService
from tradiesync.services.sync_service import SyncJob
from tradiesync.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


# HTTP Bearer - auto_error disabled so failures go through UnauthorizedError
security = HTTPBearer(auto_error=False)


# Shared provider HTTP client
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=settings.PROVIDER_HTTP_TIMEOUT)
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def get_clock() -> Clock:
    return utcnow


def get_identity_provider() -> IdentityProvider:
    return IdentityProvider(settings)


async def get_current_user(
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> AuthenticatedUser:
    """
    Resolve the caller from the bearer token.

    SECURITY: the rejection reason is not returned or logged with token content.
    """
    if not credentials:
        raise UnauthorizedError("Missing authorization header")

    user, error = identity.get_user(credentials.credentials)
    if user is None:
        logger.warning("Bearer token rejected", extra={"reason": error})
        raise UnauthorizedError()
    return user


def _encryption_unavailable() -> TradieSyncException:
    logger.error("ENCRYPTION_KEY is not configured")
    return TradieSyncException(
        status_code=503,
        code=ErrorCode.NOT_CONFIGURED,
        detail="Token encryption is not configured",
    )


def get_vault() -> TokenVault:
    try:
        return get_token_vault()
    except EncryptionNotConfiguredError:
        raise _encryption_unavailable()


def get_signer() -> OAuthStateSigner:
    try:
        return get_state_signer()
    except EncryptionNotConfiguredError:
        raise _encryption_unavailable()


def get_rate_limiter(clock: Annotated[Clock, Depends(get_clock)]) -> RateLimiter:
    return RateLimiter(clock=clock)


def get_accounting_provider(
    provider: Annotated[str, Path(description="xero, quickbooks or myob")],
    http: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> AccountingProvider:
    if provider not in PROVIDER_CLASSES:
        raise NotFoundError("Provider")
    return get_provider(provider, http, settings)


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
HttpClient = Annotated[httpx.AsyncClient, Depends(get_http_client)]
Vault = Annotated[TokenVault, Depends(get_vault)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]
Provider = Annotated[AccountingProvider, Depends(get_accounting_provider)]
CurrentClock = Annotated[Clock, Depends(get_clock)]


def get_oauth_flow(
    db: DbSession,
    provider: Provider,
    vault: Vault,
    signer: Annotated[OAuthStateSigner, Depends(get_signer)],
    clock: CurrentClock,
) -> OAuthFlowService:
    return OAuthFlowService(db, provider, vault, signer, clock=clock)


OAuthFlow = Annotated[OAuthFlowService, Depends(get_oauth_flow)]


def get_sync_job(
    db: DbSession,
    provider: Provider,
    oauth_flow: OAuthFlow,
    clock: CurrentClock,
) -> SyncJob:
    return SyncJob(db, provider, oauth_flow, concurrency=settings.SYNC_CONCURRENCY, clock=clock)


Sync = Annotated[SyncJob, Depends(get_sync_job)]
