"""Tiebreak API application.

Wires the decision router, the error contract and the middleware stack.
Domain exceptions raised anywhere below a route are turned into the
standard error body here, in one table, so routes only handle the cases
whose status depends on the route.
"""

import os
import platform
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from db import postgres
from middleware import RequestContextMiddleware
from models.errors import (
    ErrorType,
    create_error_response,
    create_validation_error_response,
)
from routers import decisions
from services.decision_lifecycle import InvalidDecisionInput, InvalidTransitionError
from services.decision_store import DecisionFinalizedError, StoreUnavailableError
from services.llm import PromptTooLargeError
from services.oracle import OracleFormatError, OracleRefusalError
from utils.logging import configure_logging, get_logger

APP_VERSION = "0.1.0"
APP_NAME = "Tiebreak API"

settings = get_settings()
configure_logging(level="DEBUG" if settings.debug else "INFO", json_format=not settings.debug)

logger = get_logger(__name__)


def get_request_id(request: Request) -> Optional[str]:
    request_id = getattr(request.state, "request_id", None)
    return request_id or request.headers.get("X-Request-ID")


def error_json(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    content = create_error_response(
        error=error,
        message=message,
        details=details,
        request_id=get_request_id(request),
        path=request.url.path,
    )
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def check_postgres_connection() -> bool:
    if postgres.engine is None:
        return False
    try:
        async with postgres.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"PostgreSQL health check failed: {type(e).__name__}: {e}")
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup and close it on shutdown."""
    await postgres.init_postgres()

    host = os.getenv("HOST", "127.0.0.1")
    port = os.getenv("PORT", "8000")
    logger.info(
        f"{APP_NAME} v{APP_VERSION} ready on http://{host}:{port} (docs at /docs)",
        extra={
            "event": "startup",
            "environment": "development" if settings.debug else "production",
            "python_version": platform.python_version(),
            "config": repr(get_settings()),
        },
    )

    yield

    logger.info("Shutting down", extra={"event": "shutdown"})
    await postgres.close_postgres()


app = FastAPI(
    title=APP_NAME,
    description="Weighted decision analysis personalized by the user's own history",
    version=APP_VERSION,
    lifespan=lifespan,
)


# =============================================================================
# Exception handlers
# =============================================================================


@dataclass(frozen=True)
class ErrorMapping:
    status_code: int
    error: str
    # None means str(exc) is safe to show
    message: Optional[str] = None
    details: Optional[Callable[[Exception], dict]] = None


DOMAIN_ERRORS: dict[type[Exception], ErrorMapping] = {
    InvalidDecisionInput: ErrorMapping(422, ErrorType.VALIDATION_ERROR),
    # The oracle declined in prose; its own text goes back to the user
    OracleRefusalError: ErrorMapping(400, ErrorType.ORACLE_REFUSAL),
    OracleFormatError: ErrorMapping(
        502,
        ErrorType.ORACLE_FORMAT_ERROR,
        "The analysis service returned an unusable response. Please try again.",
        lambda exc: {"reason": str(exc)},
    ),
    PromptTooLargeError: ErrorMapping(
        413,
        ErrorType.BAD_REQUEST,
        "The decision is too long to analyze. Shorten the question, options or answers.",
        lambda exc: {"estimated_tokens": exc.estimated_tokens, "max_tokens": exc.max_tokens},
    ),
    InvalidTransitionError: ErrorMapping(409, ErrorType.INVALID_TRANSITION),
    DecisionFinalizedError: ErrorMapping(409, ErrorType.CONFLICT),
    StoreUnavailableError: ErrorMapping(
        503,
        ErrorType.SERVICE_UNAVAILABLE,
        "Decision storage is temporarily unavailable",
        lambda exc: {"operation": exc.operation},
    ),
}

HTTP_ERROR_TYPES = {
    400: ErrorType.BAD_REQUEST,
    401: ErrorType.UNAUTHORIZED,
    404: ErrorType.NOT_FOUND,
    409: ErrorType.CONFLICT,
    503: ErrorType.SERVICE_UNAVAILABLE,
}


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Most specific mapping wins: OracleRefusalError is also an OracleFormatError
    mapping = next(DOMAIN_ERRORS[cls] for cls in type(exc).__mro__ if cls in DOMAIN_ERRORS)
    if mapping.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    return error_json(
        request,
        mapping.status_code,
        mapping.error,
        mapping.message or str(exc),
        mapping.details(exc) if mapping.details else None,
    )


for exc_class in DOMAIN_ERRORS:
    app.add_exception_handler(exc_class, domain_exception_handler)


def _field_errors(exc: RequestValidationError | ValidationError) -> list[dict]:
    return [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError | ValidationError
) -> JSONResponse:
    errors = _field_errors(exc)
    logger.warning(
        f"Validation error on {request.method} {request.url.path}: {len(errors)} error(s)"
    )
    content = create_validation_error_response(
        message="Request validation failed",
        errors=errors,
        request_id=get_request_id(request),
        path=request.url.path,
    )
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return error_json(
        request,
        exc.status_code,
        HTTP_ERROR_TYPES.get(exc.status_code, ErrorType.INTERNAL_ERROR),
        message,
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unmapped: log it, return no internals."""
    logger.exception(
        f"Unhandled exception on {request.method} {request.url.path}: "
        f"{type(exc).__name__}: {exc}"
    )
    return error_json(
        request,
        500,
        ErrorType.INTERNAL_ERROR,
        "An unexpected error occurred. Please try again later.",
    )


# =============================================================================
# Middleware (last added runs first)
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID", "Accept"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)
# History listings carry full analyses and get large
app.add_middleware(GZipMiddleware, minimum_size=1000)
# Outermost, so error responses carry the request id too
app.add_middleware(RequestContextMiddleware)

app.include_router(decisions.router, prefix="/api/decisions", tags=["Decisions"])


# =============================================================================
# Health
# =============================================================================


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/health/live")
async def liveness_check():
    """Process is up; dependencies are not checked."""
    return {"alive": True}


@app.get("/health/ready")
async def readiness_check():
    """503 until the decision store answers."""
    postgres_ok = await check_postgres_connection()
    body = {
        "ready": postgres_ok,
        "checks": {"postgres": "healthy" if postgres_ok else "unhealthy"},
    }
    return body if postgres_ok else JSONResponse(status_code=503, content=body)


@app.get("/")
async def root():
    return {"name": APP_NAME, "version": APP_VERSION, "docs": "/docs"}
