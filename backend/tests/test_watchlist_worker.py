import asyncio
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from conftest import make_snapshot
from core.config import Settings
from db.session import Base
from pricing.jobs import JobRepository
from workers.watchlist import run_watchlist_job


def _setup_db(tmp_path, monkeypatch):
    db_path = tmp_path / "worker.db"
    db_url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_async_engine(db_url, echo=False, poolclass=NullPool)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _seed() -> uuid.UUID:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as db:
            db.add_all([make_snapshot("SKU-A", 1), make_snapshot("SKU-B", 1, unidades_14=0), make_snapshot("SKU-C", 2)])
            await db.commit()
        return await JobRepository(session_factory).create({"ritmo_ventana_dias": 14, "cycle_days": 90})

    job_id = asyncio.run(_seed())
    monkeypatch.setattr(
        "core.config.get_settings",
        lambda: Settings(app_env="test", database_url=db_url, watchlist_batch_size=2),
    )
    return engine, session_factory, job_id


def test_run_watchlist_job_completes_pending_job(tmp_path, monkeypatch):
    engine, session_factory, job_id = _setup_db(tmp_path, monkeypatch)

    result = run_watchlist_job.run(str(job_id))

    assert result["status"] == "success"
    assert result["job_status"] == "completed"
    assert result["total_items"] == 3

    job = asyncio.run(JobRepository(session_factory).get(job_id))
    assert job.status == "completed"
    assert len(job.result_data["items"]) == 3

    asyncio.run(engine.dispose())


def test_duplicate_delivery_does_not_rerun(tmp_path, monkeypatch):
    engine, session_factory, job_id = _setup_db(tmp_path, monkeypatch)

    run_watchlist_job.run(str(job_id))
    first = asyncio.run(JobRepository(session_factory).get(job_id))
    result = run_watchlist_job.run(str(job_id))
    second = asyncio.run(JobRepository(session_factory).get(job_id))

    assert result["job_status"] == "completed"
    assert second.completed_at == first.completed_at

    asyncio.run(engine.dispose())


def test_invalid_job_id():
    result = run_watchlist_job.run("not-a-uuid")
    assert result["status"] == "error"
