"""Contract for upstream adapters served behind the access gate."""
from typing import Any, Mapping

from fastapi import status

from metergate.exceptions import MeterGateError


class AdapterError(MeterGateError):
    """Typed failure raised by an adapter, mapped straight to the error envelope."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Upstream request failed."

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class GatedAdapter:
    """
    One public endpoint's business logic.

    Subclasses declare their catalog entry and implement ``parse_query`` and
    ``fetch``. Key lookup, ban checks and quota are applied by the gated
    runner before ``fetch`` is called; adapters never do any of that.
    """

    slug: str
    name: str
    path: str
    description: str = ""
    sample_query: str = ""

    def parse_query(self, params: Mapping[str, str]) -> Any:
        """
        Validate the request's query parameters.

        Runs before the gate, so a rejection here costs no quota.

        Raises:
            AdapterError: 400 for a missing or malformed parameter
        """
        raise NotImplementedError

    async def fetch(self, query: Any) -> dict[str, Any]:
        """Produce one result item for an admitted request."""
        raise NotImplementedError
