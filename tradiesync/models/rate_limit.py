"""Request attempt log backing the rate limiter."""

from sqlalchemy import Column, Integer, String, DateTime, Index
from tradiesync.database import Base


class RateLimitRecord(Base):
    """One row per attempt. ``key`` is ``"<action>:<identifier>"``."""

    __tablename__ = "rate_limits"
    __table_args__ = (
        Index("ix_rate_limits_key_created_at", "key", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<RateLimitRecord {self.key} at {self.created_at}>"
