"""API key model."""
from sqlalchemy import Column, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from metergate.models.base import Base
from metergate.models.enums import ApiKeyStatus, ApiKeyStatusType


class ApiKey(Base):
    """
    Secret credential presented to public endpoints.

    Never deleted; retired keys move to REVOKED.
    """

    __tablename__ = "api_keys"

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(64), nullable=False, unique=True, index=True)
    label = Column(String(60), nullable=True)
    status = Column(ApiKeyStatusType, nullable=False, default=ApiKeyStatus.ACTIVE, index=True)
    daily_limit = Column(Integer, nullable=False)

    # Relationships
    user = relationship("User", back_populates="api_keys")
    usage_logs = relationship("UsageLog", back_populates="api_key")

    def __repr__(self) -> str:
        """String representation."""
        return f"<ApiKey(id={self.id}, user_id={self.user_id}, status={self.status.value})>"
