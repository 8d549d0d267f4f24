"""Per-request tracing: request id propagation plus an access log line.

A caller-supplied X-Request-ID is reused when it looks like an id
(short, no whitespace); otherwise a fresh UUID is issued. The id is
stored on request.state, bound to the logging context and echoed back in
the X-Request-ID response header.
"""

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from utils.logging import clear_request_context, get_logger, set_request_context

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(incoming: str | None) -> str:
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the request and log its outcome."""

    # Probes would drown out real traffic
    QUIET_PATHS = {"/health", "/health/live", "/health/ready"}

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        method = request.method
        path = request.url.path
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {method} {path} - {type(e).__name__}",
                extra={
                    "event": "request_error",
                    "method": method,
                    "path": path,
                    "duration_seconds": time.perf_counter() - start_time,
                },
                exc_info=True,
            )
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            if path not in self.QUIET_PATHS:
                duration = time.perf_counter() - start_time
                log = logger.warning if response.status_code >= 400 else logger.info
                log(
                    f"{method} {path} - {response.status_code} ({duration:.3f}s)",
                    extra={
                        "event": "request_complete",
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "duration_seconds": duration,
                    },
                )
            return response
        finally:
            clear_request_context()
