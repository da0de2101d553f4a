"""
tokenfeed - Live Transfer/Approval history for an ERC-20 token.

Features:
- One-shot backfill with per-block timestamp resolution
- Live subscription merging into a single ordered feed
- HTTP and WebSocket read access to the feed
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
import asyncio
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from .config import get_settings
from .logging import setup_logging, get_logger
from .api.router import router
from .api.ws_router import router as ws_router
from .errors import QueryFailure
from .ledger import create_ledger
from .middleware import CorrelationIdMiddleware, MetricsMiddleware
from .metrics import Metrics
from .health import HealthChecker
from .session import FeedSession
from .streaming.websocket import FeedStreamManager

VERSION = "0.1.0"

settings = get_settings()

setup_logging(json_output=settings.LOG_JSON, service_name="tokenfeed")
logger = get_logger()

metrics = Metrics(service_name="tokenfeed", version=VERSION)
health_checker = HealthChecker(service_name="tokenfeed", version=VERSION)

app = FastAPI(
    title="tokenfeed",
    version=VERSION,
    description="Transfer and Approval activity feed for a single token",
)

# Order matters: correlation ID first, then metrics
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware, metrics=metrics)

app.include_router(router)
app.include_router(ws_router)

metrics_app = make_asgi_app(registry=metrics.registry)
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    """Liveness probe. Returns 200 while the process is serving."""
    logger.debug("health_check_liveness")
    return health_checker.liveness()


@app.get("/health/ready")
async def health_ready():
    """
    Readiness probe.

    Returns:
        200: Ledger reachable and the feed is live
        503: Otherwise
    """
    logger.debug("health_check_readiness")
    metrics.update_system_metrics()
    result = await health_checker.readiness(getattr(app.state, "session", None))
    status_code = 200 if result["status"] == "ready" else 503
    return JSONResponse(content=result, status_code=status_code)


async def _run_session(session: FeedSession):
    try:
        await session.start()
    except QueryFailure as e:
        # Session is left in the failed state; the API reports it
        logger.error("service.backfill_failed", error=str(e))


@app.on_event("startup")
async def startup_event():
    """Create the feed session and start backfilling in the background."""
    logger.info(
        "service_starting",
        version=VERSION,
        env=settings.ENV,
        ledger=settings.LEDGER_ADAPTER,
    )
    session = FeedSession(create_ledger(settings), settings=settings, metrics=metrics)
    app.state.session = session
    app.state.stream_manager = FeedStreamManager(session)
    app.state.stream_manager.start()
    app.state.session_task = asyncio.create_task(_run_session(session))


@app.on_event("shutdown")
async def shutdown_event():
    """Tear down the session and its subscriptions."""
    logger.info("service_stopping")
    task = getattr(app.state, "session_task", None)
    if task is not None and not task.done():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    manager = getattr(app.state, "stream_manager", None)
    if manager is not None:
        await manager.stop()

    session = getattr(app.state, "session", None)
    if session is not None:
        await session.close()
        await session.ledger.close()
        app.state.session = None

    metrics.app_up.labels(service="tokenfeed", version=VERSION).set(0)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tokenfeed.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
        reload=True,
    )
