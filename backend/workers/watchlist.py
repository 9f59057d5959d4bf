"""
Watchlist Worker — runs one watchlist job outside the API process.

The API has already written the pending row; this task claims it through
the same conditional pending → running transition as the in-process path,
so a duplicate delivery simply finds the job taken and exits.
"""

from __future__ import annotations

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.watchlist.run_watchlist_job",
    bind=True,
    max_retries=0,
)
def run_watchlist_job(self, job_id: str):
    """
    Execute a watchlist job end to end. Never retried: a claimed job cannot
    be claimed again, so a retry could only find it running or finished.
    """
    from core.config import get_settings
    from pricing.config import PricingConfig
    from pricing.jobs import JobRegistry, JobRepository, coerce_job_id
    from pricing.service import build_watchlist_runner

    key = coerce_job_id(job_id)
    if key is None:
        logger.error("watchlist_worker.invalid_job_id", job_id=job_id)
        return {"status": "error", "job_id": job_id, "error": "invalid job id"}

    settings = get_settings()
    logger.info("watchlist_worker.started", job_id=job_id)

    async def _run():
        engine = create_async_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            runner = build_watchlist_runner(
                session_factory,
                registry=JobRegistry(),
                config=PricingConfig.from_settings(settings),
            )
            await runner.run(key)

            job = await JobRepository(session_factory).get(key)
            return {
                "status": "success",
                "job_id": job_id,
                "job_status": job.status if job is not None else None,
                "total_items": job.total_items if job is not None else 0,
            }
        finally:
            await engine.dispose()

    try:
        summary = asyncio.run(_run())
        logger.info("watchlist_worker.completed", **summary)
        return summary
    except Exception as exc:  # noqa: BLE001
        logger.error("watchlist_worker.failed", job_id=job_id, error=str(exc), exc_info=True)
        return {"status": "error", "job_id": job_id, "error": str(exc)}
