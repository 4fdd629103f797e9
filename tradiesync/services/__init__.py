# Services module
from tradiesync.services.identity import AuthenticatedUser, IdentityProvider
from tradiesync.services.oauth_flow import OAuthFlowService, RefreshLocks, refresh_locks
from tradiesync.services.sync_service import SyncError, SyncJob, SyncResult

__all__ = [
    "AuthenticatedUser",
    "IdentityProvider",
    "OAuthFlowService",
    "RefreshLocks",
    "refresh_locks",
    "SyncError",
    "SyncJob",
    "SyncResult",
]
