"""Accounting provider credential storage."""

from sqlalchemy import Column, String, Boolean, DateTime, Text, Uuid, UniqueConstraint, CheckConstraint
from tradiesync.database import Base
from tradiesync.utils.clock import utcnow
import uuid as uuid_module

PROVIDERS = ("xero", "quickbooks", "myob")

CREDENTIAL_FIELDS = (
    "tenant_id",
    "tenant_name",
    "tenant_uri",
    "access_token_encrypted",
    "refresh_token_encrypted",
    "token_expires_at",
    "connected_at",
)


class AccountingConnection(Base):
    """
    Credential record for one (user, provider) pair.

    Tokens are stored as vault ciphertext. A row without ``tenant_id`` is
    treated as disconnected whatever else it holds.
    """

    __tablename__ = "accounting_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_accounting_connections_user_provider"),
        CheckConstraint(
            "provider IN (" + ", ".join(f"'{p}'" for p in PROVIDERS) + ")",
            name="ck_accounting_connections_provider",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid_module.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    provider = Column(String(20), nullable=False)

    # Xero tenant / QuickBooks realm / MYOB company file
    tenant_id = Column(String(255), nullable=True)
    tenant_name = Column(String(255), nullable=True)
    tenant_uri = Column(Text, nullable=True)

    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    sync_enabled = Column(Boolean, default=False, nullable=False)
    connected_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_connected(self) -> bool:
        return bool(self.tenant_id and self.access_token_encrypted and self.refresh_token_encrypted)

    def clear_credentials(self) -> None:
        for field in CREDENTIAL_FIELDS:
            setattr(self, field, None)
        self.sync_enabled = False

    def __repr__(self):
        return f"<AccountingConnection user={self.user_id} provider={self.provider} connected={self.is_connected}>"
