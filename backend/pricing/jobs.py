"""
Watchlist Job Lifecycle — persistent state machine, cancellation, runner.

State machine (price_actions_jobs.status):

  pending ──start──▶ running ──complete──▶ completed
     │                  │ └────fail──────▶ failed
     └──────cancel──────┴──────cancel────▶ cancelled

Every transition and every progress write is a single conditional
UPDATE … WHERE status IN (…); the affected row count decides who won. Once a
job leaves `running` nothing else about it changes.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Coroutine, Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import PriceActionsJob
from pricing.config import PricingConfig
from pricing.errors import UpstreamFailure
from pricing.scoring import ReasonScorer
from pricing.sources import WatchlistDataSource
from pricing.watchlist import WatchlistAggregator, summarize_watchlist

logger = structlog.get_logger()

JOB_TYPE_WATCHLIST = "watchlist"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


CANCELLABLE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def coerce_job_id(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class JobStateChanged(Exception):
    """A write affected zero rows: the job is no longer ours to update."""


class JobCancelled(Exception):
    """Raised from a cancellation checkpoint."""


# ─── Repository ────────────────────────────────────────────────────────────


class JobRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, parameters: dict[str, Any], created_by: str | None = None) -> uuid.UUID:
        job = PriceActionsJob(
            job_id=uuid.uuid4(),
            job_type=JOB_TYPE_WATCHLIST,
            status=JobStatus.PENDING.value,
            progress=0,
            current_step="Queued",
            parameters=dict(parameters),
            created_by=created_by,
            created_at=utcnow(),
        )
        async with self.session_factory() as db:
            db.add(job)
            await db.commit()
        return job.job_id

    async def get(self, job_id: uuid.UUID | str) -> PriceActionsJob | None:
        key = coerce_job_id(job_id)
        if key is None:
            return None
        async with self.session_factory() as db:
            result = await db.execute(select(PriceActionsJob).where(PriceActionsJob.job_id == key))
            return result.scalar_one_or_none()

    async def _conditional_update(
        self,
        job_id: uuid.UUID | str,
        statuses: Iterable[JobStatus],
        values: dict[str, Any],
    ) -> bool:
        key = coerce_job_id(job_id)
        if key is None:
            return False
        stmt = (
            update(PriceActionsJob)
            .where(
                PriceActionsJob.job_id == key,
                PriceActionsJob.status.in_([JobStatus(s).value for s in statuses]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        return result.rowcount == 1

    async def try_transition(
        self,
        job_id: uuid.UUID | str,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        **fields: Any,
    ) -> bool:
        return await self._conditional_update(job_id, from_statuses, {"status": JobStatus(to_status).value, **fields})

    async def start(self, job_id: uuid.UUID | str) -> bool:
        return await self.try_transition(
            job_id,
            [JobStatus.PENDING],
            JobStatus.RUNNING,
            started_at=utcnow(),
            current_step="Starting",
        )

    async def complete(
        self,
        job_id: uuid.UUID | str,
        result_data: dict[str, Any],
        result_summary: dict[str, Any],
    ) -> bool:
        return await self.try_transition(
            job_id,
            [JobStatus.RUNNING],
            JobStatus.COMPLETED,
            progress=100,
            current_step="Completed",
            result_data=result_data,
            result_summary=result_summary,
            completed_at=utcnow(),
        )

    async def fail(self, job_id: uuid.UUID | str, message: str) -> bool:
        return await self.try_transition(
            job_id,
            [JobStatus.RUNNING],
            JobStatus.FAILED,
            current_step="Failed",
            error_message=message,
            completed_at=utcnow(),
        )

    async def cancel(self, job_id: uuid.UUID | str) -> bool:
        now = utcnow()
        return await self.try_transition(
            job_id,
            CANCELLABLE_STATUSES,
            JobStatus.CANCELLED,
            current_step="Cancelled by user",
            cancelled_at=now,
            completed_at=now,
        )

    async def update_progress(
        self,
        job_id: uuid.UUID | str,
        progress: int,
        step: str,
        processed_items: int | None = None,
        total_items: int | None = None,
    ) -> bool:
        values: dict[str, Any] = {"progress": max(0, min(100, int(progress))), "current_step": step}
        if processed_items is not None:
            values["processed_items"] = processed_items
        if total_items is not None:
            values["total_items"] = total_items
        return await self._conditional_update(job_id, [JobStatus.RUNNING], values)


# ─── Cancellation ──────────────────────────────────────────────────────────


class CancellationToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class JobRegistry:
    """
    Process-wide table of live jobs: one cancellation token and at most one
    detached task per job id. Built once per process (API lifespan or worker
    entry) and passed to whoever needs it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: dict[uuid.UUID, CancellationToken] = {}
        self._tasks: dict[uuid.UUID, asyncio.Task] = {}

    def register(self, job_id: uuid.UUID) -> CancellationToken:
        with self._lock:
            return self._tokens.setdefault(job_id, CancellationToken())

    def token_for(self, job_id: uuid.UUID) -> CancellationToken | None:
        with self._lock:
            return self._tokens.get(job_id)

    def mark_cancelled(self, job_id: uuid.UUID) -> bool:
        """Flip the local token if this process is running the job."""
        with self._lock:
            token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel()
        return True

    def release(self, job_id: uuid.UUID) -> None:
        with self._lock:
            self._tokens.pop(job_id, None)

    def spawn(self, job_id: uuid.UUID, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        self.register(job_id)
        task = asyncio.get_running_loop().create_task(coro, name=f"watchlist-job-{job_id}")
        with self._lock:
            self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._forget_task(job_id, task))
        return task

    def _forget_task(self, job_id: uuid.UUID, task: asyncio.Task) -> None:
        with self._lock:
            if self._tasks.get(job_id) is task:
                del self._tasks[job_id]

    async def join(self, job_id: uuid.UUID) -> None:
        with self._lock:
            task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    @property
    def active_jobs(self) -> list[uuid.UUID]:
        with self._lock:
            return list(self._tasks)

    async def shutdown(self) -> None:
        with self._lock:
            tasks = list(self._tasks.values())
            tokens = list(self._tokens.values())
        for token in tokens:
            token.cancel()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("job_registry.shutdown", cancelled_tasks=len(tasks))


# ─── Runner ────────────────────────────────────────────────────────────────


class WatchlistJobRunner:
    """
    Executes one watchlist job end to end:

      10  query          → fetch rows (UpstreamFailure on error)
      50  processing     → 60 with total_items
      60..95             per batch: cancellation check, then progress
      96  summary        → 98 saving → complete

    Cancellation is checked before the query, after it and before every batch.
    """

    def __init__(
        self,
        repository: JobRepository,
        source: WatchlistDataSource,
        scorer: ReasonScorer,
        registry: JobRegistry,
        config: PricingConfig | None = None,
    ):
        self.repository = repository
        self.source = source
        self.scorer = scorer
        self.registry = registry
        self.config = config or PricingConfig()

    async def run(self, job_id: uuid.UUID) -> None:
        token = self.registry.register(job_id)
        log = logger.bind(job_id=str(job_id))
        try:
            if not await self.repository.start(job_id):
                log.info("watchlist_job.claim_skipped")
                return
            log.info("watchlist_job.started")
            await self._execute(job_id, token, log)
        except JobCancelled:
            log.info("watchlist_job.cancelled")
        except JobStateChanged:
            log.info("watchlist_job.state_changed")
        except asyncio.CancelledError:
            log.warning("watchlist_job.interrupted")
            await self._fail_best_effort(job_id, "Job interrupted by service shutdown", log)
            raise
        except Exception as exc:  # noqa: BLE001
            log.error("watchlist_job.failed", error=str(exc), exc_info=True)
            await self._fail_best_effort(job_id, str(exc), log)
        finally:
            self.registry.release(job_id)

    async def _execute(self, job_id: uuid.UUID, token: CancellationToken, log) -> None:
        job = await self.repository.get(job_id)
        parameters = dict(job.parameters or {}) if job is not None else {}
        ventana = int(parameters.get("ritmo_ventana_dias") or self.config.default_ritmo_ventana_dias)
        cycle_days = int(parameters.get("cycle_days") or self.config.default_cycle_days)

        await self._progress(job_id, 10, "Running watchlist query")
        await self._check_cancelled(job_id, token)

        try:
            rows = await self.source.fetch_rows(parameters)
        except Exception as exc:
            raise UpstreamFailure(f"Watchlist query failed: {exc}") from exc

        await self._check_cancelled(job_id, token)
        total = len(rows)
        log.info("watchlist_job.rows_fetched", total_items=total)
        await self._progress(job_id, 50, "Processing results")
        await self._progress(job_id, 60, f"Processing {total} products", processed_items=0, total_items=total)

        async def before_batch() -> None:
            await self._check_cancelled(job_id, token)

        async def after_batch(processed: int, batch_total: int) -> None:
            progress = min(95, 60 + round(processed / batch_total * 35))
            await self._progress(
                job_id,
                progress,
                f"Processed {processed} of {batch_total} products",
                processed_items=processed,
            )

        aggregator = WatchlistAggregator(
            self.scorer,
            batch_size=self.config.batch_size,
            ritmo_ventana_dias=ventana,
            cycle_days=cycle_days,
        )
        outcome = await aggregator.process(rows, before_batch=before_batch, after_batch=after_batch)

        await self._progress(job_id, 96, "Building summary")
        summary = summarize_watchlist(outcome.items, self.config.severity, skipped_rows=outcome.skipped_rows)
        records = [item.to_record() for item in outcome.items]
        result_data = {
            "items": records,
            "total": len(records),
            "page": 1,
            "page_size": len(records),
            "total_pages": 1,
        }

        await self._progress(job_id, 98, "Saving results")
        if not await self.repository.complete(job_id, result_data, summary):
            log.warning("watchlist_job.complete_rejected")
            return
        log.info(
            "watchlist_job.completed",
            total_items=summary["total_items"],
            skipped_rows=outcome.skipped_rows,
            critical_count=summary["critical_count"],
        )

    async def _check_cancelled(self, job_id: uuid.UUID, token: CancellationToken) -> None:
        if token.cancelled:
            raise JobCancelled(str(job_id))
        job = await self.repository.get(job_id)
        if job is None:
            raise JobStateChanged(str(job_id))
        if job.status == JobStatus.CANCELLED.value:
            token.cancel()
            raise JobCancelled(str(job_id))
        if job.status != JobStatus.RUNNING.value:
            raise JobStateChanged(str(job_id))

    async def _progress(self, job_id: uuid.UUID, progress: int, step: str, **counts: int) -> None:
        try:
            updated = await self.repository.update_progress(job_id, progress, step, **counts)
        except SQLAlchemyError as exc:
            logger.warning(
                "watchlist_job.progress_write_failed",
                job_id=str(job_id),
                progress=progress,
                error=str(exc),
            )
            return
        if not updated:
            raise JobStateChanged(str(job_id))

    async def _fail_best_effort(self, job_id: uuid.UUID, message: str, log) -> None:
        try:
            await self.repository.fail(job_id, message)
        except Exception as exc:  # noqa: BLE001
            log.error("watchlist_job.fail_write_failed", error=str(exc), exc_info=True)
