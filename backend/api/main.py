"""
PriceActions API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from db.session import AsyncSessionLocal
from pricing.jobs import JobRegistry
from pricing.service import build_price_actions_service

settings = get_settings()
logger = structlog.get_logger()


def _celery_dispatcher(job_id) -> None:
    from workers.watchlist import run_watchlist_job

    run_watchlist_job.delay(str(job_id))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the job registry and service; stop running jobs on shutdown."""
    registry = JobRegistry()
    app.state.job_registry = registry
    app.state.price_actions = build_price_actions_service(
        AsyncSessionLocal,
        registry=registry,
        settings=settings,
        dispatcher=_celery_dispatcher if settings.watchlist_dispatch_mode == "celery" else None,
    )
    logger.info(
        "PriceActions API starting up",
        version=settings.app_version,
        dispatch_mode=settings.watchlist_dispatch_mode,
    )
    yield
    await registry.shutdown()
    logger.info("PriceActions API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Markdown watchlist and price simulation service",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import price_actions

app.include_router(price_actions.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
