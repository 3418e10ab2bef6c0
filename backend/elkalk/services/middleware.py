"""Request tracing for the elkalk API."""
import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("elkalk-api.middleware")

UNLOGGED_PATHS = {"/health"}


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an X-Request-ID (the caller's, or a new uuid) and
    reports its duration in X-Process-Time (ms).

    Routes that produce an estimate put its id on ``request.state.calculation_id``;
    it is echoed as X-Calculation-ID and attached to the access log line so
    later feedback can be matched to the request that created the estimate.
    Server errors are logged at WARNING.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        request.state.calculation_id = None
        started = time.perf_counter()

        response: Response = await call_next(request)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        calculation_id = request.state.calculation_id
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)
        if calculation_id:
            response.headers["X-Calculation-ID"] = calculation_id

        if request.url.path in UNLOGGED_PATHS:
            return response
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms} ms)",
            extra={
                "http_method": request.method,
                "http_path": request.url.path,
                "http_status": response.status_code,
                "request_id": request_id,
                "calculation_id": calculation_id,
                "duration_ms": duration_ms,
            },
        )
        return response
