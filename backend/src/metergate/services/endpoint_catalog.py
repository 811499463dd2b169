"""Catalog of public gated endpoints and their availability."""
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.adapters import ADAPTERS, GatedAdapter
from metergate.database import dialect_insert
from metergate.exceptions import NotFound
from metergate.models.api_endpoint import ApiEndpoint
from metergate.models.enums import EndpointStatus
from metergate.schemas.api_endpoint import ApiEndpointUpdate
from metergate.utils.clock import utcnow

logger = structlog.get_logger(__name__)

DEFAULT_MAINTENANCE_NOTE = "Maintenance in progress."


class EndpointCatalogService:
    """
    Service layer for the endpoint catalog.

    Rows are upserted by slug from the adapter definitions. Descriptive
    fields follow the code; status and maintenance note belong to admins.
    """

    def __init__(self, db: AsyncSession, adapters: tuple[GatedAdapter, ...] = ADAPTERS):
        """Initialize catalog service with database session."""
        self.db = db
        self.adapters = adapters

    async def ensure_seeded(self) -> None:
        """Upsert one row per adapter; existing status is never overwritten."""
        insert = dialect_insert(self.db)
        now = utcnow()
        for adapter in self.adapters:
            stmt = insert(ApiEndpoint).values(
                slug=adapter.slug,
                name=adapter.name,
                path=adapter.path,
                description=adapter.description,
                sample_query=adapter.sample_query,
                status=EndpointStatus.ACTIVE,
            )
            await self.db.execute(
                stmt.on_conflict_do_update(
                    index_elements=["slug"],
                    set_={
                        "name": stmt.excluded.name,
                        "path": stmt.excluded.path,
                        "description": stmt.excluded.description,
                        "sample_query": stmt.excluded.sample_query,
                        "updated_at": now,
                    },
                )
            )

    async def get_endpoint(self, endpoint_id: UUID) -> ApiEndpoint:
        """
        Get catalog entry by ID.

        Raises:
            NotFound: No endpoint with that ID
        """
        endpoint = await self.db.get(ApiEndpoint, endpoint_id)
        if endpoint is None:
            raise NotFound("API endpoint not found.")
        return endpoint

    async def get_by_slug(self, slug: str) -> ApiEndpoint | None:
        result = await self.db.execute(select(ApiEndpoint).where(ApiEndpoint.slug == slug))
        return result.scalar_one_or_none()

    async def status_for(self, slug: str) -> tuple[EndpointStatus, str | None]:
        """Availability of ``slug``; an endpoint with no catalog row is ACTIVE."""
        endpoint = await self.get_by_slug(slug)
        if endpoint is None:
            return EndpointStatus.ACTIVE, None
        return endpoint.status, endpoint.maintenance_note

    async def list_endpoints(self) -> list[ApiEndpoint]:
        """All catalog rows ordered by name, seeding first."""
        await self.ensure_seeded()
        result = await self.db.execute(select(ApiEndpoint).order_by(ApiEndpoint.name))
        return list(result.scalars().all())

    async def update_status(self, endpoint_id: UUID, changes: ApiEndpointUpdate) -> ApiEndpoint:
        """
        Set an endpoint's status.

        MAINTENANCE without a note gets the default note; leaving
        MAINTENANCE clears the note unless one is given.

        Raises:
            NotFound: No endpoint with that ID
        """
        endpoint = await self.get_endpoint(endpoint_id)
        note = (changes.maintenance_note or "").strip() or None
        if changes.status == EndpointStatus.MAINTENANCE and note is None:
            note = DEFAULT_MAINTENANCE_NOTE

        previous = endpoint.status
        endpoint.status = changes.status
        endpoint.maintenance_note = note
        await self.db.flush()

        logger.info(
            "endpoint_status_updated",
            slug=endpoint.slug,
            from_status=previous.value,
            to_status=endpoint.status.value,
        )
        return endpoint
