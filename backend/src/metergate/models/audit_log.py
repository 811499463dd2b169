"""Admin audit log model."""
from sqlalchemy import JSON, Column, ForeignKey, String, Uuid

from metergate.models.base import Base


class AdminAuditLog(Base):
    """
    Trail of every mutating admin action with its free-text justification.
    """

    __tablename__ = "admin_audit_logs"

    actor_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(80), nullable=False, index=True)  # e.g. invoice.update, user.block
    target_type = Column(String(40), nullable=False, index=True)
    target_id = Column(String(64), nullable=False, index=True)
    reason = Column(String(500), nullable=False)
    before_json = Column(JSON, nullable=True)
    after_json = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    request_id = Column(String(64), nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<AdminAuditLog(action={self.action}, target={self.target_type}:{self.target_id})>"
