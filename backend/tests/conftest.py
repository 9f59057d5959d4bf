"""
Test Configuration — Fixtures for a file-backed async DB, the service and a test client.

Each test gets its own SQLite file under tmp_path. Jobs run in detached tasks
that open their own sessions, so an in-memory database (one per connection)
would not be shared between the API request and the runner.
"""

from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import get_price_actions_service
from api.main import app
from core.config import Settings
from db.models import ClusterElasticity, ProductSnapshot
from db.session import Base
from pricing.jobs import JobRegistry, JobRepository
from pricing.service import build_price_actions_service

AS_OF = date(2026, 3, 31)


def make_row(base_col: str, **overrides) -> dict:
    """Raw watchlist row as a data source returns it (one SKU, all stores)."""
    row = {
        "base_col": base_col,
        "descripcion": f"Producto {base_col}",
        "descripcion_corta": base_col,
        "id_clase": 10,
        "categoria": "Zapatillas",
        "id_genero": 1,
        "genero": "Hombre",
        "id_marca": 100,
        "marca": "Acme",
        "price_band": "1791-2090",
        "precio_actual": 1990.0,
        "costo": 900.0,
        "stock_on_hand": 120.0,
        "stock_pendiente": 0.0,
        "unidades_7": 7.0,
        "unidades_14": 14.0,
        "unidades_28": 28.0,
        "unidades_desde_inicio": 60.0,
        "dias_desde_inicio": 30,
        "ritmo_cluster": 1.0,
    }
    row.update(overrides)
    return row


def make_snapshot(base_col: str, id_tienda: int = 1, **overrides) -> ProductSnapshot:
    values = {
        "base_col": base_col,
        "id_tienda": id_tienda,
        "descripcion": f"Producto {base_col}",
        "descripcion_corta": base_col,
        "id_clase": 10,
        "categoria": "Zapatillas",
        "id_genero": 1,
        "genero": "Hombre",
        "id_marca": 100,
        "marca": "Acme",
        "price_band": "1791-2090",
        "precio_actual": 1990.0,
        "costo": 900.0,
        "stock_on_hand": 60.0,
        "stock_pendiente": 0.0,
        "unidades_7": 7.0,
        "unidades_14": 14.0,
        "unidades_28": 28.0,
        "unidades_desde_inicio": 40.0,
        "fecha_inicio": date(2026, 2, 1),
    }
    values.update(overrides)
    return ProductSnapshot(**values)


def make_elasticity(**overrides) -> ClusterElasticity:
    values = {
        "id_clase": 10,
        "id_genero": 1,
        "id_marca": 100,
        "price_band": "1791-2090",
        "value": -1.8,
        "confidence": "alta",
        "observations": 240,
        "method": "cluster",
    }
    values.update(overrides)
    return ClusterElasticity(**values)


@pytest.fixture
def test_settings():
    return Settings(app_env="test", watchlist_dispatch_mode="inline", watchlist_batch_size=2)


@pytest.fixture
async def session_factory(tmp_path):
    """Fresh SQLite file per test with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'priceactions.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def seed(session_factory):
    """Insert ORM objects and commit."""

    async def _seed(*objects):
        async with session_factory() as db:
            db.add_all(objects)
            await db.commit()

    return _seed


@pytest.fixture
def repository(session_factory):
    return JobRepository(session_factory)


@pytest.fixture
async def registry():
    registry = JobRegistry()
    yield registry
    await registry.shutdown()


@pytest.fixture
def service(session_factory, registry, test_settings):
    return build_price_actions_service(session_factory, registry=registry, settings=test_settings)


@pytest.fixture
async def client(service):
    """Async test client bound to the tmp-file service (lifespan is not run)."""
    app.dependency_overrides[get_price_actions_service] = lambda: service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
