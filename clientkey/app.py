"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from clientkey.config import SCHEDULER_ENABLED
from clientkey.routers import assessments, billing, jobs, tracking, webhooks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    scheduler = None
    if SCHEDULER_ENABLED:
        from clientkey.scheduler import scheduler
        scheduler.start()
        logger.info("Scheduler started — lifecycle jobs run in-process")
    else:
        logger.info("In-process scheduler disabled; expecting external cron on /jobs/*")

    yield

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)


def create_app() -> FastAPI:
    app = FastAPI(
        title="ClientKey Billing",
        description="Stripe subscription reconciliation and lifecycle email for ClientKey.",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    app.include_router(billing.router)
    app.include_router(assessments.router)

    # Machine-facing endpoints, hidden from the API docs
    for r in [webhooks, jobs, tracking]:
        app.include_router(r.router, include_in_schema=False)

    return app
