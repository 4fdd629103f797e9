from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ConnectResponse(BaseModel):
    success: bool = True
    authorization_url: str


class CallbackRequest(BaseModel):
    """Callback parameters posted by the frontend after the provider redirect."""

    model_config = ConfigDict(extra="ignore")

    code: Optional[str] = None
    state: Optional[str] = None
    realmId: Optional[str] = None


class CallbackResponse(BaseModel):
    success: bool
    provider: str
    tenant_id: str
    tenant_name: Optional[str] = None
    message: str


class RefreshResponse(BaseModel):
    success: bool = True
    message: str
    token_expires_at: Optional[datetime] = None


class DisconnectResponse(BaseModel):
    success: bool = True
    message: str


class ConnectionStatus(BaseModel):
    provider: str
    connected: bool
    tenant_id: Optional[str] = None
    tenant_name: Optional[str] = None
    sync_enabled: bool = False
    connected_at: Optional[datetime] = None
    token_expires_at: Optional[datetime] = None
    token_expired: bool = False


class SyncClientsRequest(BaseModel):
    """Either ``client_id`` (``entity_id`` is accepted too) or ``sync_all``."""

    client_id: Optional[UUID] = None
    entity_id: Optional[UUID] = None
    sync_all: bool = False

    @property
    def target_id(self) -> Optional[UUID]:
        return self.client_id or self.entity_id


class SyncInvoicesRequest(BaseModel):
    """Either ``invoice_id`` (``entity_id`` is accepted too) or ``sync_all``."""

    invoice_id: Optional[UUID] = None
    entity_id: Optional[UUID] = None
    sync_all: bool = False

    @property
    def target_id(self) -> Optional[UUID]:
        return self.invoice_id or self.entity_id


class SyncErrorItem(BaseModel):
    id: str
    name: Optional[str] = None
    error: str


class SyncResultResponse(BaseModel):
    success: bool = True
    synced: int
    failed: int
    total: int
    errors: list[SyncErrorItem] = Field(default_factory=list)


class SyncLogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    provider: str
    entity_type: str
    entity_id: str
    sync_direction: str
    sync_status: str
    error_message: Optional[str] = None
    created_at: datetime


class SyncLogResponse(BaseModel):
    entries: list[SyncLogEntryResponse]
