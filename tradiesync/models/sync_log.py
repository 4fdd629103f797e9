"""Append-only audit trail of sync attempts."""

from sqlalchemy import Column, String, DateTime, Text, Uuid, Index
from tradiesync.database import Base
from tradiesync.utils.clock import utcnow
import uuid as uuid_module


class SyncLogEntry(Base):
    __tablename__ = "sync_log"
    __table_args__ = (
        Index("ix_sync_log_user_provider_created", "user_id", "provider", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid_module.uuid4)
    user_id = Column(String(64), nullable=False)
    provider = Column(String(20), nullable=False)
    entity_type = Column(String(20), nullable=False)  # client | invoice
    entity_id = Column(String(64), nullable=False)
    sync_direction = Column(String(20), nullable=False)  # to_xero | to_quickbooks | to_myob
    sync_status = Column(String(20), nullable=False)  # success | error
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<SyncLogEntry {self.entity_type}:{self.entity_id} {self.sync_status}>"
