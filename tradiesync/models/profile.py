"""Business profile with encrypted payment details."""

from sqlalchemy import Column, String, Integer, DateTime, Text, Uuid
from tradiesync.database import Base
from tradiesync.utils.clock import utcnow
import uuid as uuid_module

DEFAULT_PAYMENT_TERMS = 14


class Profile(Base):
    """One row per user. Bank details are only ever stored as vault ciphertext."""

    __tablename__ = "profiles"

    id = Column(Uuid, primary_key=True, default=uuid_module.uuid4)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    business_name = Column(String(255), nullable=True)
    payment_terms = Column(Integer, default=DEFAULT_PAYMENT_TERMS, nullable=False)

    bank_name_encrypted = Column(Text, nullable=True)
    bank_bsb_encrypted = Column(Text, nullable=True)
    bank_account_number_encrypted = Column(Text, nullable=True)
    bank_account_name_encrypted = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Profile user={self.user_id}>"
