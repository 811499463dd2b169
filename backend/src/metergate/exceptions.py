"""Domain exceptions.

Every error the gate and the billing engine can raise derives from
``MeterGateError`` and carries the HTTP status it maps to. The handlers in
``metergate.main`` turn them into the ``{status, code, message}`` envelope.
"""
from typing import Any

from fastapi import status


class MeterGateError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request could not be processed."

    def __init__(self, message: str | None = None, extra: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.extra = extra or {}
        super().__init__(self.message)


class InvalidRequest(MeterGateError):
    """Request is well-formed but violates a business rule."""


class NotFound(MeterGateError):
    """Requested resource does not exist or is not visible to the caller."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found."


class PermissionDenied(MeterGateError):
    """Caller is authenticated but not allowed to perform the action."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden."


class Conflict(MeterGateError):
    """Request conflicts with the current state of a resource."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource state conflict."


class RateLimited(MeterGateError):
    """Admin exceeded the action budget for a scope; ``retry_after`` is in seconds."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests."

    def __init__(self, message: str | None = None, retry_after: int = 1):
        super().__init__(message)
        self.retry_after = retry_after
        self.headers = {"Retry-After": str(retry_after)}


# Access gate


class GateError(MeterGateError):
    """Rejection raised by the access gate.

    ``remaining_limit`` is reported in the error envelope. It is ``None`` on the
    session path, where no quota is involved.
    """

    def __init__(self, message: str | None = None, remaining_limit: int | None = 0):
        super().__init__(message)
        self.remaining_limit = remaining_limit


class InvalidKey(GateError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid API key."


class KeyNotActive(GateError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "API key is not active."


class AccountBlocked(GateError):
    """Owning account is banned; message describes permanent vs temporary state."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "User account is blocked."

    def __init__(
        self,
        message: str | None = None,
        remaining_limit: int | None = 0,
        permanent: bool = False,
        reason: str | None = None,
    ):
        super().__init__(message, remaining_limit)
        self.permanent = permanent
        self.reason = reason


class QuotaExceeded(GateError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Daily limit reached."


class EndpointUnavailable(GateError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Endpoint is currently non-active."


# Billing


class InvalidInvoiceInput(MeterGateError):
    """Invoice terms are invalid (period ordering, non-positive amount)."""

    default_message = "Invalid invoice data."


class InvoiceNotFound(NotFound):
    default_message = "Invoice not found."


class InvalidInvoiceTransition(Conflict):
    """Requested status change is not in the invoice transition table."""

    default_message = "Invoice status transition is not allowed."


class InvoiceConflict(Conflict):
    """A conditional invoice write lost a race with a concurrent transition."""

    default_message = "Invoice was modified concurrently. Reload and retry."


class SubscriptionConflict(MeterGateError):
    """A second ACTIVE subscription would exist for a user.

    Indicates a broken invariant, not a client error. Never retried.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error."
