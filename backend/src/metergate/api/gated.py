"""Request pipeline shared by every public gated endpoint."""
import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.adapters import AdapterError, GatedAdapter
from metergate.exceptions import EndpointUnavailable, GateError, InvalidRequest
from metergate.metrics import gate_decisions_total
from metergate.models.enums import EndpointStatus
from metergate.schemas.error import error_response
from metergate.services.access_gate import AccessGate
from metergate.services.endpoint_catalog import EndpointCatalogService

logger = structlog.get_logger(__name__)

_UNAVAILABLE_MESSAGES = {
    EndpointStatus.NON_ACTIVE: "Endpoint is currently non-active.",
    EndpointStatus.MAINTENANCE: "Endpoint is under maintenance.",
}


async def run_gated(adapter: GatedAdapter, request: Request, db: AsyncSession) -> JSONResponse:
    """
    Serve one request for ``adapter``.

    Order: catalog availability, query validation, access gate, adapter.
    Nothing before the gate consumes quota. Once the gate admits the request
    the consumption is committed, so an adapter failure still counts.

    Raises:
        EndpointUnavailable: Endpoint is NON_ACTIVE or under maintenance
        InvalidRequest: ``apikey`` missing
        AdapterError: Adapter rejected the query
        GateError: Access gate rejected the key
    """
    endpoint_status, _ = await EndpointCatalogService(db).status_for(adapter.slug)
    if endpoint_status in _UNAVAILABLE_MESSAGES:
        gate_decisions_total.labels(outcome="endpoint_unavailable").inc()
        raise EndpointUnavailable(_UNAVAILABLE_MESSAGES[endpoint_status])

    raw_key = (request.query_params.get("apikey") or "").strip()
    if not raw_key:
        raise InvalidRequest("Query parameter 'apikey' is required.")
    query = adapter.parse_query(request.query_params)

    try:
        grant = await AccessGate(db).authorize_and_consume(raw_key)
    except GateError:
        # Keep ban clears made while evaluating the key
        await db.commit()
        raise
    await db.commit()

    try:
        payload = await adapter.fetch(query)
    except AdapterError as exc:
        logger.warning("adapter_failed", slug=adapter.slug, status_code=exc.status_code, error=exc.message)
        return error_response(exc.status_code, exc.message, remaining_limit=grant.remaining_limit)
    except Exception:
        logger.exception("adapter_crashed", slug=adapter.slug)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error.",
            remaining_limit=grant.remaining_limit,
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "status": True,
            "code": status.HTTP_200_OK,
            "result": [payload],
            "remaining_limit": grant.remaining_limit,
        },
    )
