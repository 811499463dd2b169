"""Integration tests for the public gated endpoints."""
from datetime import datetime, timezone
from typing import Any, Mapping

import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from metergate.adapters import AdapterError, GatedAdapter
from metergate.adapters.country_time import build_country_time, format_gmt_offset
from metergate.api.gated import run_gated
from metergate.services.quota_ledger import QuotaLedger
from metergate.utils.clock import utc_day, utcnow
from utils.factories import create_api_key, create_user


class BrokenUpstreamAdapter(GatedAdapter):
    slug = "broken-upstream"
    name = "Broken upstream"
    path = "/api/broken-upstream"

    def __init__(self, error: Exception):
        self.error = error

    def parse_query(self, params: Mapping[str, str]) -> Any:
        return None

    async def fetch(self, query: Any) -> dict[str, Any]:
        raise self.error


def _request(query_string: str) -> Request:
    return Request({"type": "http", "method": "GET", "query_string": query_string.encode(), "headers": []})


async def _used_today(db: AsyncSession, api_key) -> int:
    return await QuotaLedger(db).get_used(api_key.id, utc_day(utcnow()))


@pytest.mark.asyncio
async def test_missing_apikey(client: AsyncClient) -> None:
    """Test that calls without a key are rejected as bad requests."""
    response = await client.get("/api/country-time", params={"country": "id"})

    assert response.status_code == 400
    assert response.json()["message"] == "Query parameter 'apikey' is required."


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "params,message",
    [({}, "Query parameter 'country' is required."), ({"country": "zz"}, "Unsupported country code.")],
)
async def test_bad_country_costs_nothing(
    client: AsyncClient, db_session: AsyncSession, params: dict, message: str
) -> None:
    """Test that query validation runs before any quota is consumed."""
    user = await create_user(db_session)
    api_key = await create_api_key(db_session, user)

    response = await client.get("/api/country-time", params={**params, "apikey": api_key.key})

    assert response.status_code == 400
    assert response.json()["message"] == message
    assert await _used_today(db_session, api_key) == 0


@pytest.mark.asyncio
async def test_invalid_key(client: AsyncClient) -> None:
    """Test that an unknown key returns 401 with no quota left."""
    response = await client.get("/api/country-time", params={"country": "id", "apikey": "jz_nope"})

    assert response.status_code == 401
    assert response.json() == {"status": False, "code": 401, "message": "Invalid API key.", "remaining_limit": 0}


@pytest.mark.asyncio
async def test_country_time_success(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that an admitted call returns the result envelope and remaining quota."""
    user = await create_user(db_session)
    api_key = await create_api_key(db_session, user)

    response = await client.get(
        "/api/country-time", params={"country": "ID", "apikey": api_key.key}, headers={"X-Request-ID": "req-123"}
    )

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"
    body = response.json()
    assert body["status"] is True
    assert body["code"] == 200
    assert body["remaining_limit"] == 99
    (result,) = body["result"]
    assert result["country"] == "ID"
    assert result["timezone"] == "Asia/Jakarta"
    assert result["utc_offset"] == "GMT+7"


@pytest.mark.asyncio
async def test_quota_exhaustion(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that the call after the last admitted one gets 429."""
    user = await create_user(db_session)
    api_key = await create_api_key(db_session, user, daily_limit=2)
    params = {"country": "jp", "apikey": api_key.key}

    remaining = [(await client.get("/api/country-time", params=params)).json()["remaining_limit"] for _ in range(2)]
    rejected = await client.get("/api/country-time", params=params)

    assert remaining == [1, 0]
    assert rejected.status_code == 429
    assert rejected.json()["message"] == "Daily limit reached."
    assert rejected.json()["remaining_limit"] == 0
    assert await _used_today(db_session, api_key) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,expected_code,expected_message",
    [
        (AdapterError("Upstream timed out.", status.HTTP_504_GATEWAY_TIMEOUT), 504, "Upstream timed out."),
        (RuntimeError("boom"), 500, "Internal server error."),
    ],
)
async def test_adapter_failure_still_counts(
    db_session: AsyncSession, error: Exception, expected_code: int, expected_message: str
) -> None:
    """Test that a failing adapter after admission reports remaining quota and keeps the charge."""
    user = await create_user(db_session)
    api_key = await create_api_key(db_session, user, daily_limit=10)

    response = await run_gated(BrokenUpstreamAdapter(error), _request(f"apikey={api_key.key}"), db_session)

    assert response.status_code == expected_code
    assert response.body == (
        f'{{"status":false,"code":{expected_code},"message":"{expected_message}","remaining_limit":9}}'
    ).encode()
    assert await _used_today(db_session, api_key) == 1


@pytest.mark.asyncio
async def test_unknown_route_envelope(client: AsyncClient) -> None:
    """Test that routing errors use the error envelope."""
    response = await client.get("/api/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"status": False, "code": 404, "message": "Not Found"}


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """Test the liveness endpoint."""
    response = await client.get("/health")

    assert response.status_code == 200


def test_country_time_payload() -> None:
    """Test the local time description for a fixed instant."""
    now = datetime(2026, 1, 2, 20, 30, tzinfo=timezone.utc)

    payload = build_country_time("in", "Asia/Kolkata", now=now)

    assert payload == {
        "country": "IN",
        "timezone": "Asia/Kolkata",
        "day_name": "Saturday",
        "local_date": "2026-01-03",
        "local_time": "02:00:00",
        "utc_offset": "GMT+5:30",
        "unix": int(now.timestamp()),
    }
    assert format_gmt_offset(None) == "GMT"
