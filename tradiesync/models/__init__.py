from tradiesync.models.profile import Profile
from tradiesync.models.connection import AccountingConnection
from tradiesync.models.client import Client
from tradiesync.models.invoice import Invoice
from tradiesync.models.sync_log import SyncLogEntry
from tradiesync.models.rate_limit import RateLimitRecord

__all__ = [
    "Profile",
    "AccountingConnection",
    "Client",
    "Invoice",
    "SyncLogEntry",
    "RateLimitRecord",
]
