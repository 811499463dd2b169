"""Adapters for the public gated endpoints."""
from metergate.adapters.base import AdapterError, GatedAdapter
from metergate.adapters.country_time import CountryTimeAdapter

# Every adapter served by the marketplace; the endpoint catalog is seeded from this.
ADAPTERS: tuple[GatedAdapter, ...] = (CountryTimeAdapter(),)

__all__ = ["ADAPTERS", "AdapterError", "CountryTimeAdapter", "GatedAdapter"]
