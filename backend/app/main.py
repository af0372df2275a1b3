"""CRM Automation Engine - FastAPI Application."""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import health
from api.v1.router import api_v1_router
from app.config import get_settings
from core.logging_config import setup_logging
from core.metrics import MetricsMiddleware, metrics_router
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from db.database import close_db, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging()
    settings.validate_collaborators()

    await init_db()

    poller_stop = None
    if settings.SCHEDULER_IN_PROCESS:
        poller_stop = _start_scheduler_poller(settings.SCHEDULER_POLL_INTERVAL_SECONDS)
        logger.info("In-process scheduler poller started (%ds interval)", settings.SCHEDULER_POLL_INTERVAL_SECONDS)

    logger.info("%s v%s started (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    yield

    if poller_stop is not None:
        poller_stop.set()
    await close_db()
    logger.info("Application shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Event-driven automation workflows for a multi-tenant CRM.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Prometheus metrics middleware (outermost, measures all requests)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestTrackingMiddleware)

    setup_exception_handlers(app)

    # Root health check (unversioned, for load balancers / k8s probes)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    # Prometheus metrics (unauthenticated, for scrapers)
    app.include_router(metrics_router)

    return app


def _start_scheduler_poller(interval: int) -> threading.Event:
    """Launch a daemon thread that polls due continuations every ``interval`` seconds.

    Single-node deployments use this instead of Celery beat. Every cycle
    runs on its own event loop with a cycle-scoped database engine.
    Returns a threading.Event that stops the poller when set.
    """
    from worker.tasks.scheduler import run_poll_cycle, run_stale_recovery

    stop_event = threading.Event()
    recovery_every = max(1, 300 // max(interval, 1))

    def _poller_loop():
        cycles = 0
        while not stop_event.wait(timeout=interval):
            cycles += 1
            loop = asyncio.new_event_loop()
            try:
                if cycles % recovery_every == 0:
                    loop.run_until_complete(run_stale_recovery())
                result = loop.run_until_complete(run_poll_cycle())
                if result.get("resumed", 0) > 0:
                    logger.info("Scheduler poll: %s", result)
            except Exception as e:
                logger.error("Scheduler poll failed: %s", e, exc_info=True)
            finally:
                loop.close()
        logger.info("Scheduler poller stopped")

    t = threading.Thread(target=_poller_loop, daemon=True, name="scheduler-poller")
    t.start()
    return stop_event


app = create_app()
