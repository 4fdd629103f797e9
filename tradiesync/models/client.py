from sqlalchemy import Column, String, DateTime, Text, Uuid
from tradiesync.database import Base
from tradiesync.utils.clock import utcnow
import uuid as uuid_module


class Client(Base):
    """Customer of the tradie, mirrored to each connected accounting provider."""

    __tablename__ = "clients"

    id = Column(Uuid, primary_key=True, default=uuid_module.uuid4)
    user_id = Column(String(64), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    company_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    suburb = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)
    postcode = Column(String(20), nullable=True)

    # Provider reference ids
    xero_contact_id = Column(String(255), nullable=True)
    qb_customer_id = Column(String(255), nullable=True)
    myob_uid = Column(String(255), nullable=True)

    last_synced_to_xero = Column(DateTime, nullable=True)
    last_synced_to_qb = Column(DateTime, nullable=True)
    last_synced_to_myob = Column(DateTime, nullable=True)

    xero_sync_error = Column(Text, nullable=True)
    qb_sync_error = Column(Text, nullable=True)
    myob_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Client {self.name}>"
