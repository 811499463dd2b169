"""Pydantic schemas for the public endpoint catalog."""
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from metergate.models.enums import EndpointStatus
from metergate.schemas.audit_log import AdminActionRequest


class ApiEndpoint(BaseModel):
    id: UUID
    slug: str
    name: str
    path: str
    description: str
    sample_query: str
    status: EndpointStatus
    maintenance_note: str | None

    model_config = ConfigDict(from_attributes=True)


class ApiEndpointUpdate(AdminActionRequest):
    """Schema for an admin changing an endpoint's availability."""

    status: EndpointStatus = Field(..., description="New endpoint status")
    maintenance_note: str | None = Field(default=None, max_length=500, description="Note shown during maintenance")


class ApiEndpointStatus(BaseModel):
    """Public view of an endpoint's availability."""

    slug: str
    name: str
    path: str
    status: EndpointStatus
    maintenance_note: str | None

    model_config = ConfigDict(from_attributes=True)
