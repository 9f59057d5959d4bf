"""
Upstream data sources — SKU facts and cluster elasticity.

The watchlist job and the simulator only see these interfaces. The SQL
implementations read the product_snapshots / cluster_elasticities tables,
which are loaded by external feeds.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any

import structlog
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import ClusterElasticity, ProductSnapshot
from pricing.config import price_band_for
from pricing.simulator import Elasticity
from pricing.velocity import calculate_ritmo_actual, units_for_window

logger = structlog.get_logger()

SIMULATOR_PACE_WINDOW_DAYS = 14


@dataclass(frozen=True)
class ClusterKey:
    id_clase: int | None
    id_genero: int | None
    id_marca: int | None
    price_band: str


@dataclass(frozen=True)
class SkuFacts:
    base_col: str
    costo: float
    ritmo_actual: float
    ritmo_cluster: float
    stock_total: float
    cluster: ClusterKey


# ── Interfaces ─────────────────────────────────────────────────────────────


class WatchlistDataSource(ABC):
    """Returns raw per-SKU rows for a watchlist job's parameters."""

    @abstractmethod
    async def fetch_rows(self, parameters: dict[str, Any]) -> list[dict[str, Any]]:
        ...


class SkuFactsProvider(ABC):
    @abstractmethod
    async def get(self, base_col: str) -> SkuFacts | None:
        ...


class ElasticityProvider(ABC):
    @abstractmethod
    async def for_cluster(self, cluster: ClusterKey) -> Elasticity | None:
        ...


# ── SQL implementations ────────────────────────────────────────────────────


def _as_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _pending_clamped():
    return case((ProductSnapshot.stock_pendiente > 0, ProductSnapshot.stock_pendiente), else_=0)


class SqlWatchlistSource(WatchlistDataSource):
    """
    Aggregates product_snapshots across the selected stores into one row per
    SKU and derives each cluster's average pace over the same window.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, today: date | None = None):
        self.session_factory = session_factory
        self._today = today

    async def fetch_rows(self, parameters: dict[str, Any]) -> list[dict[str, Any]]:
        filters = parameters.get("filters") or {}
        fecha_desde = _as_date(parameters.get("fecha_desde"))
        fecha_hasta = _as_date(parameters.get("fecha_hasta"))
        ventana = int(parameters.get("ritmo_ventana_dias") or 14)
        as_of = fecha_hasta or self._today or date.today()

        snap = ProductSnapshot
        query = select(
            snap.base_col.label("base_col"),
            func.max(snap.descripcion).label("descripcion"),
            func.max(snap.descripcion_corta).label("descripcion_corta"),
            func.max(snap.id_clase).label("id_clase"),
            func.max(snap.categoria).label("categoria"),
            func.max(snap.id_genero).label("id_genero"),
            func.max(snap.genero).label("genero"),
            func.max(snap.id_marca).label("id_marca"),
            func.max(snap.marca).label("marca"),
            func.max(snap.price_band).label("price_band"),
            func.max(snap.precio_actual).label("precio_actual"),
            func.max(snap.costo).label("costo"),
            func.sum(snap.stock_on_hand).label("stock_on_hand"),
            func.sum(_pending_clamped()).label("stock_pendiente"),
            func.sum(snap.unidades_7).label("unidades_7"),
            func.sum(snap.unidades_14).label("unidades_14"),
            func.sum(snap.unidades_28).label("unidades_28"),
            func.sum(snap.unidades_desde_inicio).label("unidades_desde_inicio"),
            func.min(snap.fecha_inicio).label("fecha_inicio"),
        ).group_by(snap.base_col)

        if filters.get("brands"):
            query = query.where(snap.id_marca.in_(filters["brands"]))
        if filters.get("categories"):
            query = query.where(snap.id_clase.in_(filters["categories"]))
        if filters.get("genders"):
            query = query.where(snap.id_genero.in_(filters["genders"]))
        if filters.get("stores"):
            query = query.where(snap.id_tienda.in_(filters["stores"]))
        if filters.get("search"):
            pattern = f"%{filters['search'].strip()}%"
            query = query.where(or_(snap.base_col.ilike(pattern), snap.descripcion.ilike(pattern)))
        if fecha_desde:
            query = query.where(snap.fecha_inicio >= fecha_desde)
        if fecha_hasta:
            query = query.where(snap.fecha_inicio <= fecha_hasta)

        async with self.session_factory() as db:
            result = await db.execute(query.order_by(snap.base_col))
            rows = [dict(row._mapping) for row in result.all()]

        cluster_paces: dict[tuple, list[float]] = defaultdict(list)
        for row in rows:
            if not row["price_band"]:
                row["price_band"] = price_band_for(float(row["precio_actual"] or 0))
            inicio = _as_date(row.pop("fecha_inicio"))
            row["dias_desde_inicio"] = max((as_of - inicio).days, 0) if inicio else 0
            units, window = units_for_window(
                float(row["unidades_7"] or 0), float(row["unidades_14"] or 0), float(row["unidades_28"] or 0), ventana
            )
            cluster_paces[self._cluster_of(row)].append(calculate_ritmo_actual(units, window))

        averages = {key: sum(paces) / len(paces) for key, paces in cluster_paces.items()}
        for row in rows:
            row["ritmo_cluster"] = averages[self._cluster_of(row)]

        logger.info("watchlist_source.rows_loaded", rows=len(rows), clusters=len(averages))
        return rows

    @staticmethod
    def _cluster_of(row: dict[str, Any]) -> tuple:
        return (row["id_clase"], row["id_genero"], row["id_marca"], row["price_band"])


class SqlSkuFactsProvider(SkuFactsProvider):
    """
    Current pace over the last 14 days; cluster pace is the average pace of
    same category+gender SKUs that sold in that window.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, base_col: str) -> SkuFacts | None:
        snap = ProductSnapshot
        async with self.session_factory() as db:
            result = await db.execute(
                select(
                    func.max(snap.id_clase).label("id_clase"),
                    func.max(snap.id_genero).label("id_genero"),
                    func.max(snap.id_marca).label("id_marca"),
                    func.max(snap.price_band).label("price_band"),
                    func.max(snap.precio_actual).label("precio_actual"),
                    func.max(snap.costo).label("costo"),
                    func.sum(snap.unidades_14).label("unidades_14"),
                    func.sum(snap.stock_on_hand + _pending_clamped()).label("stock_total"),
                    func.count(snap.snapshot_id).label("store_rows"),
                ).where(snap.base_col == base_col)
            )
            row = result.one()
            if not row.store_rows:
                return None

            peers = (
                select(func.sum(snap.unidades_14).label("units"))
                .where(snap.id_clase == row.id_clase, snap.id_genero == row.id_genero)
                .group_by(snap.base_col)
                .having(func.sum(snap.unidades_14) > 0)
                .subquery()
            )
            peer_avg = (await db.execute(select(func.avg(peers.c.units)))).scalar()

        ritmo_cluster = float(peer_avg or 0) / SIMULATOR_PACE_WINDOW_DAYS
        return SkuFacts(
            base_col=base_col,
            costo=float(row.costo or 0),
            ritmo_actual=calculate_ritmo_actual(float(row.unidades_14 or 0), SIMULATOR_PACE_WINDOW_DAYS),
            ritmo_cluster=ritmo_cluster,
            stock_total=float(row.stock_total or 0),
            cluster=ClusterKey(
                id_clase=row.id_clase,
                id_genero=row.id_genero,
                id_marca=row.id_marca,
                price_band=row.price_band or price_band_for(float(row.precio_actual or 0)),
            ),
        )


class SqlElasticityProvider(ElasticityProvider):
    """Exact cluster estimate first, then the category-wide average."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def for_cluster(self, cluster: ClusterKey) -> Elasticity | None:
        est = ClusterElasticity
        async with self.session_factory() as db:
            exact = (
                await db.execute(
                    select(est).where(
                        est.id_clase == cluster.id_clase,
                        est.id_genero == cluster.id_genero,
                        est.id_marca == cluster.id_marca,
                        est.price_band == cluster.price_band,
                    )
                )
            ).scalar_one_or_none()
            if exact is not None:
                return Elasticity(
                    value=exact.value,
                    confidence=exact.confidence,
                    observations=exact.observations,
                    method=exact.method,
                )

            category = (
                await db.execute(
                    select(
                        func.avg(est.value).label("value"),
                        func.sum(est.observations).label("observations"),
                        func.count(est.elasticity_id).label("estimates"),
                    ).where(est.id_clase == cluster.id_clase)
                )
            ).one()

        if not category.estimates:
            return None
        return Elasticity(
            value=float(category.value),
            confidence="baja",
            observations=int(category.observations or 0),
            method="categoria",
            warning="No estimate for this cluster; using the category average.",
        )
