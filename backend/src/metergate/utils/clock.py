"""UTC clock helpers.

All persisted timestamps are naive UTC. Services accept an explicit ``now`` so
callers and tests control time; these helpers supply the default.
"""
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utc_day(now: datetime) -> date:
    """Calendar day bucket used by the usage ledger."""
    return to_naive_utc(now).date()
