"""Local time lookup by ISO-3166 alpha-2 country code."""
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
from zoneinfo import ZoneInfo

from fastapi import status

from metergate.adapters.base import AdapterError, GatedAdapter

COUNTRY_TIMEZONES = {
    "id": "Asia/Jakarta",
    "sg": "Asia/Singapore",
    "my": "Asia/Kuala_Lumpur",
    "th": "Asia/Bangkok",
    "vn": "Asia/Ho_Chi_Minh",
    "ph": "Asia/Manila",
    "jp": "Asia/Tokyo",
    "kr": "Asia/Seoul",
    "cn": "Asia/Shanghai",
    "tw": "Asia/Taipei",
    "in": "Asia/Kolkata",
    "ae": "Asia/Dubai",
    "sa": "Asia/Riyadh",
    "gb": "Europe/London",
    "de": "Europe/Berlin",
    "fr": "Europe/Paris",
    "it": "Europe/Rome",
    "nl": "Europe/Amsterdam",
    "tr": "Europe/Istanbul",
    "ru": "Europe/Moscow",
    "us": "America/New_York",
    "ca": "America/Toronto",
    "mx": "America/Mexico_City",
    "br": "America/Sao_Paulo",
    "ar": "America/Argentina/Buenos_Aires",
    "au": "Australia/Sydney",
    "nz": "Pacific/Auckland",
    "za": "Africa/Johannesburg",
    "eg": "Africa/Cairo",
}


def resolve_timezone(country: str) -> str | None:
    return COUNTRY_TIMEZONES.get(country.lower())


def format_gmt_offset(offset: timedelta | None) -> str:
    """Render an offset as ``GMT``, ``GMT+7`` or ``GMT+5:30``."""
    if not offset:
        return "GMT"
    total_minutes = int(offset.total_seconds() // 60)
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"GMT{sign}{hours}:{minutes:02d}" if minutes else f"GMT{sign}{hours}"


def build_country_time(country: str, tz_name: str, now: datetime | None = None) -> dict[str, Any]:
    """
    Describe the current local time in ``tz_name``.

    Args:
        country: Country code as requested
        tz_name: IANA timezone name
        now: Aware instant to describe; defaults to the current time
    """
    now = now or datetime.now(timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name))
    return {
        "country": country.upper(),
        "timezone": tz_name,
        "day_name": local.strftime("%A"),
        "local_date": local.strftime("%Y-%m-%d"),
        "local_time": local.strftime("%H:%M:%S"),
        "utc_offset": format_gmt_offset(local.utcoffset()),
        "unix": int(now.timestamp()),
    }


class CountryTimeAdapter(GatedAdapter):
    """Adapter for the country-time endpoint. No upstream call; uses the tz database."""

    slug = "country-time"
    name = "Country time"
    path = "/api/country-time"
    description = "Current local time for an ISO-2 country code."
    sample_query = "country=id&apikey=YOUR_API_KEY"

    def parse_query(self, params: Mapping[str, str]) -> tuple[str, str]:
        country = (params.get("country") or "").strip().lower()
        if not country:
            raise AdapterError("Query parameter 'country' is required.", status.HTTP_400_BAD_REQUEST)
        tz_name = resolve_timezone(country)
        if tz_name is None:
            raise AdapterError("Unsupported country code.", status.HTTP_400_BAD_REQUEST)
        return country, tz_name

    async def fetch(self, query: tuple[str, str]) -> dict[str, Any]:
        country, tz_name = query
        return build_country_time(country, tz_name)
