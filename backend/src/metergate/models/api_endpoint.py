"""Catalog entry for a public gated endpoint."""
from sqlalchemy import Column, String

from metergate.models.base import Base
from metergate.models.enums import EndpointStatus, EndpointStatusType


class ApiEndpoint(Base):
    """Seeded from adapter definitions; admins toggle status and maintenance note."""

    __tablename__ = "api_endpoints"

    slug = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String(120), nullable=False)
    path = Column(String(200), nullable=False)
    description = Column(String(500), nullable=False, default="")
    sample_query = Column(String(300), nullable=False, default="")
    status = Column(EndpointStatusType, nullable=False, default=EndpointStatus.ACTIVE)
    maintenance_note = Column(String(500), nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<ApiEndpoint(slug={self.slug}, status={self.status.value})>"
