from sqlalchemy import Column, String, DateTime, Date, Text, Float, JSON, ForeignKey, Uuid, CheckConstraint
from sqlalchemy.orm import relationship
from tradiesync.database import Base
from tradiesync.utils.clock import utcnow
import uuid as uuid_module

INVOICE_STATUSES = ("draft", "sent", "partially_paid", "paid", "overdue", "cancelled")


class Invoice(Base):
    """Invoice issued to a client."""

    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in INVOICE_STATUSES) + ")",
            name="ck_invoices_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid_module.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    client_id = Column(Uuid, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    invoice_number = Column(String(50), nullable=False)
    title = Column(String(255), nullable=True)
    status = Column(String(20), default="draft", nullable=False)

    # Each item: {description, quantity, unit_price}
    line_items = Column(JSON, default=list)
    total = Column(Float, default=0)
    due_date = Column(Date, nullable=True)

    xero_invoice_id = Column(String(255), nullable=True)
    qb_invoice_id = Column(String(255), nullable=True)
    myob_uid = Column(String(255), nullable=True)

    last_synced_to_xero = Column(DateTime, nullable=True)
    last_synced_to_qb = Column(DateTime, nullable=True)
    last_synced_to_myob = Column(DateTime, nullable=True)

    xero_sync_error = Column(Text, nullable=True)
    qb_sync_error = Column(Text, nullable=True)
    myob_sync_error = Column(Text, nullable=True)

    # Provider-side status after the last successful Xero push
    xero_sync_status = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    client = relationship("Client", lazy="raise")

    def __repr__(self):
        return f"<Invoice {self.invoice_number}>"
