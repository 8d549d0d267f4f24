"""Error bodies returned by the API.

Every failure leaves the API in the same shape, so the web client can
tell a bad request from an oracle failure or a lifecycle conflict by the
``error`` code alone:

    {
        "error": "OracleFormatError",
        "message": "The analysis service returned an unusable response.",
        "details": {"reason": "Oracle left options unweighted: ['normal patty']"},
        "request_id": "3f2a9c1e-...",
        "timestamp": "2026-02-03T14:30:00+00:00",
        "path": "/api/decisions"
    }
"""

from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorType:
    """Values of the ``error`` field."""

    VALIDATION_ERROR = "ValidationError"
    BAD_REQUEST = "BadRequest"
    UNAUTHORIZED = "Unauthorized"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    INVALID_TRANSITION = "InvalidTransition"
    ORACLE_REFUSAL = "OracleRefusal"
    ORACLE_FORMAT_ERROR = "OracleFormatError"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    INTERNAL_ERROR = "InternalError"


class ErrorResponse(BaseModel):
    error: str = Field(..., examples=[ErrorType.NOT_FOUND, ErrorType.ORACLE_REFUSAL])
    message: str = Field(..., description="Safe to show to the user")
    details: Optional[dict[str, Any]] = None
    request_id: Optional[str] = Field(default=None, description="Echo of X-Request-ID")
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    path: Optional[str] = None


class ValidationErrorDetail(BaseModel):
    field: str
    message: str
    type: str


class ValidationErrorResponse(ErrorResponse):
    """422 body listing every offending field, e.g. ``options`` with one entry."""

    error: str = ErrorType.VALIDATION_ERROR
    validation_errors: list[ValidationErrorDetail] = Field(default_factory=list)


def create_error_response(
    error: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    request_id: Optional[str] = None,
    path: Optional[str] = None,
) -> dict[str, Any]:
    """JSONResponse content for a failure; unset optional fields are dropped."""
    return ErrorResponse(
        error=error,
        message=message,
        details=details,
        request_id=request_id,
        path=path,
    ).model_dump(exclude_none=True)


def create_validation_error_response(
    message: str,
    errors: list[dict[str, str]],
    request_id: Optional[str] = None,
    path: Optional[str] = None,
) -> dict[str, Any]:
    """JSONResponse content for a 422.

    Args:
        message: Summary line
        errors: {"field", "message", "type"} dicts, one per failed field
        request_id: Correlation id of the failing request
        path: Request path
    """
    return ValidationErrorResponse(
        message=message,
        validation_errors=[
            ValidationErrorDetail(
                field=e.get("field", "unknown"),
                message=e.get("message", "Validation failed"),
                type=e.get("type", "value_error"),
            )
            for e in errors
        ],
        request_id=request_id,
        path=path,
    ).model_dump(exclude_none=True)
