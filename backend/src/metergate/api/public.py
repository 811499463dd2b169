"""Public marketplace endpoints, authenticated by ``apikey`` query parameter."""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.adapters import CountryTimeAdapter
from metergate.api.deps import get_db
from metergate.api.gated import run_gated
from metergate.schemas.api_endpoint import ApiEndpointStatus
from metergate.services.endpoint_catalog import EndpointCatalogService

router = APIRouter(prefix="/api", tags=["Public API"])

country_time_adapter = CountryTimeAdapter()


@router.get("/country-time")
async def country_time(request: Request, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """
    Current local time for a country.

    Query parameters:
    - **country**: ISO-3166 alpha-2 code (e.g. ``id``, ``jp``, ``us``)
    - **apikey**: Marketplace API key; each admitted call counts against its daily limit
    """
    return await run_gated(country_time_adapter, request, db)


@router.get("/apis/status", response_model=list[ApiEndpointStatus])
async def list_api_status(db: AsyncSession = Depends(get_db)) -> list[ApiEndpointStatus]:
    """Availability of every public endpoint."""
    endpoints = await EndpointCatalogService(db).list_endpoints()
    await db.commit()
    return [ApiEndpointStatus.model_validate(endpoint) for endpoint in endpoints]
