"""
HTTP middleware: correlation ids, Prometheus request metrics and error bodies.
"""
import uuid
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
import structlog

CORRELATION_HEADER = "x-correlation-id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Binds a correlation id to the structlog context for each request.

    The id comes from the X-Correlation-ID header when present and is echoed
    back on the response.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            http_method=request.method,
            http_path=request.url.path,
        )

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Records request count and duration, and turns unhandled errors into a
    JSON 500 carrying the correlation id.
    """

    def __init__(self, app, metrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        start_time = time.time()
        logger = structlog.get_logger()
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            self._record(request.method, path, 500, duration)
            logger.error(
                "unhandled.exception",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration * 1000, 2),
                exc_info=True,
            )
            correlation_id = getattr(request.state, "correlation_id", None)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "correlation_id": correlation_id,
                    "path": path,
                },
                headers={CORRELATION_HEADER: correlation_id} if correlation_id else None,
            )

        duration = time.time() - start_time
        self._record(request.method, path, response.status_code, duration)
        logger.info(
            "http_request",
            http_status=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        return response

    def _record(self, method: str, path: str, status: int, duration: float):
        service = self.metrics.service_name
        self.metrics.http_requests_total.labels(
            service=service, method=method, path=path, status=status
        ).inc()
        self.metrics.http_request_duration.labels(
            service=service, method=method, path=path
        ).observe(duration)
