"""Error envelope returned by every failing endpoint."""
from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Field-level validation failure."""

    field: str = Field(..., description="Dotted path of the offending field")
    message: str = Field(..., description="Human-readable error message")


class ErrorEnvelope(BaseModel):
    """Standard error response structure.

    ``code`` mirrors the HTTP status. ``remaining_limit`` is present on
    responses from gated endpoints.
    """

    status: bool = Field(default=False, description="Always false for errors")
    code: int = Field(..., description="HTTP status code")
    message: str = Field(..., description="Human-readable error message")
    remaining_limit: int | None = Field(default=None, description="Quota left today for the presented key")
    details: list[ErrorDetail] | None = Field(default=None, description="Validation failures")

    model_config = {
        "json_schema_extra": {
            "example": {"status": False, "code": 429, "message": "Daily limit reached.", "remaining_limit": 0}
        }
    }


def error_response(
    code: int,
    message: str,
    remaining_limit: int | None = None,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    """Build the error envelope response; ``None`` fields are omitted."""
    content: dict[str, Any] = {"status": False, "code": code, "message": message}
    if remaining_limit is not None:
        content["remaining_limit"] = remaining_limit
    content.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(status_code=code, content=content, headers=headers)
