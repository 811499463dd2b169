"""Per-key per-day request counter."""
from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from metergate.models.base import Base


class UsageLog(Base):
    """
    One row per (api_key_id, UTC day), created lazily on the first request.

    Mutated only by ``QuotaLedger``. ``requests_count`` is monotonic.
    """

    __tablename__ = "usage_logs"
    __table_args__ = (UniqueConstraint("api_key_id", "date", name="uq_usage_logs_api_key_date"),)

    api_key_id = Column(Uuid, ForeignKey("api_keys.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    requests_count = Column(Integer, nullable=False, default=0)
    last_request_at = Column(DateTime, nullable=True)

    # Relationships
    api_key = relationship("ApiKey", back_populates="usage_logs")

    def __repr__(self) -> str:
        """String representation."""
        return f"<UsageLog(api_key_id={self.api_key_id}, date={self.date}, count={self.requests_count})>"
