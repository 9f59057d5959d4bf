"""
Tests for WatchlistJobRunner and JobRegistry.

Covers:
  - Happy path: progress checkpoints, stored results and summary
  - Upstream failure and unexpected errors → failed
  - Cancellation before retrieval, between batches and after the last batch
  - Zero-rows-affected progress writes stop the runner
  - Transient progress-write errors are ignored
  - Registry lifecycle (release, join, shutdown)
"""

import asyncio
import uuid

from sqlalchemy.exc import OperationalError

from conftest import make_row
from pricing.config import PricingConfig
from pricing.jobs import JobRepository, WatchlistJobRunner
from pricing.scoring import PrecomputedReasonScorer
from pricing.sources import WatchlistDataSource


class StaticSource(WatchlistDataSource):
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    async def fetch_rows(self, parameters):
        self.calls.append(parameters)
        if self.error is not None:
            raise self.error
        return list(self.rows)


class BlockingSource(WatchlistDataSource):
    def __init__(self):
        self.entered = asyncio.Event()

    async def fetch_rows(self, parameters):
        self.entered.set()
        await asyncio.Event().wait()


class RecordingRepository(JobRepository):
    """Records progress writes; can cancel the job right after a given checkpoint."""

    def __init__(self, session_factory, cancel_after=None, fail_write_at=None):
        super().__init__(session_factory)
        self.cancel_after = cancel_after
        self.fail_write_at = fail_write_at
        self.progress_calls = []

    async def update_progress(self, job_id, progress, step, processed_items=None, total_items=None):
        if progress == self.fail_write_at:
            raise OperationalError("UPDATE price_actions_jobs", {}, Exception("database is locked"))
        updated = await super().update_progress(job_id, progress, step, processed_items, total_items)
        self.progress_calls.append((progress, updated))
        if progress == self.cancel_after:
            await self.cancel(job_id)
        return updated


def _rows(count):
    return [make_row(f"SKU-{i}", score=i, motivo_early=1) for i in range(count)]


def _runner(repository, source, registry, scorer=None):
    return WatchlistJobRunner(
        repository=repository,
        source=source,
        scorer=scorer or PrecomputedReasonScorer(),
        registry=registry,
        config=PricingConfig(batch_size=2),
    )


async def test_completes_with_ranked_items(session_factory, registry):
    repository = RecordingRepository(session_factory)
    source = StaticSource(_rows(5))
    job_id = await repository.create({"ritmo_ventana_dias": 14, "filters": {"brands": [100]}})

    await _runner(repository, source, registry).run(job_id)

    job = await repository.get(job_id)
    assert job.status == "completed"
    assert job.progress == 100
    assert job.total_items == 5
    assert job.processed_items == 5
    assert source.calls[0]["filters"] == {"brands": [100]}
    assert [p for p, _ in repository.progress_calls] == [10, 50, 60, 74, 88, 95, 96, 98]

    items = job.result_data["items"]
    assert [item["base_col"] for item in items] == ["SKU-4", "SKU-3", "SKU-2", "SKU-1", "SKU-0"]
    assert job.result_data["total"] == 5
    assert job.result_summary["total_items"] == 5
    assert job.result_summary["top_motivos"] == [{"motivo": "Early", "count": 5}]
    assert registry.token_for(job_id) is None


async def test_empty_result_completes(session_factory, registry):
    repository = JobRepository(session_factory)
    job_id = await repository.create({})

    await _runner(repository, StaticSource([]), registry).run(job_id)

    job = await repository.get(job_id)
    assert job.status == "completed"
    assert job.result_data["items"] == []
    assert job.result_summary["average_score"] == 0.0


async def test_upstream_error_fails_job(session_factory, registry):
    repository = JobRepository(session_factory)
    job_id = await repository.create({})

    await _runner(repository, StaticSource(error=TimeoutError("query timed out")), registry).run(job_id)

    job = await repository.get(job_id)
    assert job.status == "failed"
    assert job.error_message == "Watchlist query failed: query timed out"
    assert job.completed_at is not None
    assert registry.token_for(job_id) is None


async def test_unexpected_error_fails_job(session_factory, registry):
    class ExplodingScorer(PrecomputedReasonScorer):
        def assess(self, row, velocity, stock):
            raise RuntimeError("scorer exploded")

    repository = JobRepository(session_factory)
    job_id = await repository.create({})

    await _runner(repository, StaticSource(_rows(3)), registry, scorer=ExplodingScorer()).run(job_id)

    job = await repository.get(job_id)
    assert job.status == "failed"
    assert job.error_message == "scorer exploded"


async def test_skips_job_that_is_not_pending(session_factory, registry):
    repository = JobRepository(session_factory)
    source = StaticSource(_rows(3))
    job_id = await repository.create({})
    await repository.cancel(job_id)

    await _runner(repository, source, registry).run(job_id)

    assert source.calls == []
    assert (await repository.get(job_id)).status == "cancelled"


async def test_cancel_before_retrieval(session_factory, registry):
    repository = RecordingRepository(session_factory, cancel_after=10)
    source = StaticSource(_rows(3))
    job_id = await repository.create({})

    await _runner(repository, source, registry).run(job_id)

    assert source.calls == []
    job = await repository.get(job_id)
    assert job.status == "cancelled"
    assert job.result_data is None


async def test_local_token_stops_before_retrieval(session_factory, registry):
    repository = JobRepository(session_factory)
    source = StaticSource(_rows(3))
    job_id = await repository.create({})
    registry.register(job_id).cancel()

    await _runner(repository, source, registry).run(job_id)

    assert source.calls == []
    assert registry.token_for(job_id) is None


async def test_cancel_between_batches(session_factory, registry):
    repository = RecordingRepository(session_factory, cancel_after=74)
    job_id = await repository.create({})

    await _runner(repository, StaticSource(_rows(5)), registry).run(job_id)

    job = await repository.get(job_id)
    assert job.status == "cancelled"
    assert job.processed_items == 2
    assert job.result_data is None
    assert [p for p, _ in repository.progress_calls] == [10, 50, 60, 74]


async def test_zero_row_progress_write_stops_runner(session_factory, registry):
    repository = RecordingRepository(session_factory, cancel_after=50)
    job_id = await repository.create({})

    await _runner(repository, StaticSource(_rows(3)), registry).run(job_id)

    assert repository.progress_calls[-1] == (60, False)
    job = await repository.get(job_id)
    assert job.status == "cancelled"
    assert job.total_items == 0
    assert job.error_message is None


async def test_cancel_during_save_wins(session_factory, registry):
    repository = RecordingRepository(session_factory, cancel_after=98)
    job_id = await repository.create({})

    await _runner(repository, StaticSource(_rows(3)), registry).run(job_id)

    job = await repository.get(job_id)
    assert job.status == "cancelled"
    assert job.result_data is None


async def test_transient_progress_error_is_ignored(session_factory, registry):
    repository = RecordingRepository(session_factory, fail_write_at=50)
    job_id = await repository.create({})

    await _runner(repository, StaticSource(_rows(3)), registry).run(job_id)

    job = await repository.get(job_id)
    assert job.status == "completed"
    assert 50 not in [p for p, _ in repository.progress_calls]


# ── Registry ───────────────────────────────────────────────────────────


async def test_spawn_and_join(session_factory, registry):
    repository = JobRepository(session_factory)
    job_id = await repository.create({})
    runner = _runner(repository, StaticSource(_rows(2)), registry)

    registry.spawn(job_id, runner.run(job_id))
    await registry.join(job_id)

    assert (await repository.get(job_id)).status == "completed"
    assert registry.active_jobs == []


async def test_shutdown_interrupts_running_jobs(session_factory, registry):
    repository = JobRepository(session_factory)
    source = BlockingSource()
    job_id = await repository.create({})

    registry.spawn(job_id, _runner(repository, source, registry).run(job_id))
    await asyncio.wait_for(source.entered.wait(), timeout=5)
    await registry.shutdown()

    job = await repository.get(job_id)
    assert job.status == "failed"
    assert job.error_message == "Job interrupted by service shutdown"
    assert registry.active_jobs == []


async def test_mark_cancelled_flips_registered_token(registry):
    job_id = uuid.uuid4()
    assert registry.mark_cancelled(job_id) is False

    token = registry.register(job_id)
    assert registry.register(job_id) is token
    assert registry.mark_cancelled(job_id) is True
    assert token.cancelled
