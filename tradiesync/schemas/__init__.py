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
from tradiesync.schemas.payment_settings import (
    PaymentSettingsResponse,
    PaymentSettingsUpdate,
)
