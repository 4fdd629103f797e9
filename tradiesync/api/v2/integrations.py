"""
Accounting Integration API Endpoints

Provides, for each of xero / quickbooks / myob:
- OAuth 2.0 connection flow (connect → callback → token storage)
- Token refresh, disconnect and connection status
- Client and invoice sync (local → provider)
- Sync log
"""

from typing import Annotated, Optional
import logging

from fastapi import APIRouter, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tradiesync.api.deps import CurrentUser, DbSession, Limiter, OAuthFlow, Provider, Sync
from tradiesync.config import settings
from tradiesync.schemas.integrations import (
    CallbackRequest,
    CallbackResponse,
    ConnectResponse,
    ConnectionStatus,
    DisconnectResponse,
    RefreshResponse,
    SyncClientsRequest,
    SyncErrorItem,
    SyncInvoicesRequest,
    SyncLogEntryResponse,
    SyncLogResponse,
    SyncResultResponse,
)
from tradiesync.security.rate_limiter import RateLimiter
from tradiesync.services import sync_log
from tradiesync.services.sync_service import SyncResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _sync_response(result: SyncResult) -> SyncResultResponse:
    return SyncResultResponse(
        success=True,
        synced=result.synced,
        failed=result.failed,
        total=result.total,
        errors=[SyncErrorItem(id=e.id, name=e.name, error=e.error) for e in result.errors],
    )


# =============================================================================
# Connection Endpoints
# =============================================================================


@router.post("/{provider}/connect", response_model=ConnectResponse)
async def connect(
    response: Response,
    db: DbSession,
    current_user: CurrentUser,
    flow: OAuthFlow,
    limiter: Limiter,
) -> ConnectResponse:
    """Start the OAuth flow. The caller redirects the browser to ``authorization_url``."""
    result = await limiter.enforce(
        db,
        current_user.id,
        f"{flow.provider.name}-oauth-connect",
        settings.OAUTH_CONNECT_RATE_LIMIT,
        settings.OAUTH_CONNECT_RATE_WINDOW,
    )
    authorization_url = flow.connect(current_user.id)
    response.headers.update(limiter.headers(result, settings.OAUTH_CONNECT_RATE_LIMIT))
    return ConnectResponse(success=True, authorization_url=authorization_url)


@router.get("/{provider}/callback", response_model=CallbackResponse)
async def callback_redirect(request: Request, flow: OAuthFlow) -> CallbackResponse:
    """Provider redirect target. Authenticated by the signed ``state`` parameter."""
    params = dict(request.query_params)
    result = await flow.callback(params.get("code"), params.get("state"), params)
    return CallbackResponse(**result)


@router.post("/{provider}/callback", response_model=CallbackResponse)
async def callback_post(
    request: Request,
    flow: OAuthFlow,
    body: Optional[CallbackRequest] = None,
) -> CallbackResponse:
    """Same as the redirect target, with parameters in a JSON body (query string as fallback)."""
    params = dict(request.query_params)
    if body is not None:
        params.update(body.model_dump(exclude_none=True))
    result = await flow.callback(params.get("code"), params.get("state"), params)
    return CallbackResponse(**result)


@router.post("/{provider}/refresh", response_model=RefreshResponse)
async def refresh(current_user: CurrentUser, flow: OAuthFlow) -> RefreshResponse:
    connection = await flow.refresh(current_user.id)
    return RefreshResponse(
        success=True,
        message=f"{flow.provider.display_name} token refreshed",
        token_expires_at=connection.token_expires_at,
    )


@router.post("/{provider}/disconnect", response_model=DisconnectResponse)
async def disconnect(current_user: CurrentUser, flow: OAuthFlow) -> DisconnectResponse:
    await flow.disconnect(current_user.id)
    return DisconnectResponse(
        success=True,
        message=f"{flow.provider.display_name} disconnected",
    )


@router.get("/{provider}/status", response_model=ConnectionStatus)
async def get_status(current_user: CurrentUser, flow: OAuthFlow) -> ConnectionStatus:
    return ConnectionStatus(**await flow.status(current_user.id))


# =============================================================================
# Sync Endpoints
# =============================================================================


async def _enforce_sync_limit(limiter: RateLimiter, db: AsyncSession, user_id: str, provider: str) -> None:
    await limiter.enforce(
        db,
        user_id,
        f"{provider}-sync",
        settings.SYNC_RATE_LIMIT,
        settings.SYNC_RATE_WINDOW,
    )


@router.post("/{provider}/sync/clients", response_model=SyncResultResponse)
async def sync_clients(
    body: SyncClientsRequest,
    db: DbSession,
    current_user: CurrentUser,
    job: Sync,
    limiter: Limiter,
) -> SyncResultResponse:
    await _enforce_sync_limit(limiter, db, current_user.id, job.provider.name)
    result = await job.sync_clients(current_user.id, client_id=body.target_id, sync_all=body.sync_all)
    return _sync_response(result)


@router.post("/{provider}/sync/invoices", response_model=SyncResultResponse)
async def sync_invoices(
    body: SyncInvoicesRequest,
    db: DbSession,
    current_user: CurrentUser,
    job: Sync,
    limiter: Limiter,
) -> SyncResultResponse:
    await _enforce_sync_limit(limiter, db, current_user.id, job.provider.name)
    result = await job.sync_invoices(current_user.id, invoice_id=body.target_id, sync_all=body.sync_all)
    return _sync_response(result)


@router.get("/{provider}/sync-log", response_model=SyncLogResponse)
async def get_sync_log(
    db: DbSession,
    current_user: CurrentUser,
    accounting: Provider,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> SyncLogResponse:
    entries = await sync_log.recent(db, current_user.id, provider=accounting.name, limit=limit)
    return SyncLogResponse(entries=[SyncLogEntryResponse.model_validate(e) for e in entries])
