"""
Watchlist Classifier/Aggregator — raw SKU rows → ranked watchlist + summary.

Raw row schema (one SKU, already aggregated across the selected stores):
  base_col, descripcion, descripcion_corta,
  id_clase/categoria, id_genero/genero, id_marca/marca, price_band,
  precio_actual, costo, stock_on_hand, stock_pendiente,
  unidades_7, unidades_14, unidades_28, unidades_desde_inicio,
  dias_desde_inicio, ritmo_cluster,
  plus whatever the injected ReasonScorer reads (motivo_* flags, score).

Rows are processed in fixed-size batches so the job runner can report
progress and check for cancellation between them. Batching never changes
the output: items are ranked by score once all batches are built.
"""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from pricing.config import SeverityThresholds
from pricing.errors import MalformedRowError
from pricing.scoring import ReasonScorer, WatchlistReason
from pricing.velocity import (
    StockMetrics,
    VelocityMetrics,
    calculate_stock_metrics,
    calculate_velocity_metrics,
    classify_severity,
    units_for_window,
)

logger = structlog.get_logger()

DEFAULT_BATCH_SIZE = 50


@dataclass(frozen=True)
class Cluster:
    """Peer group used as the velocity and elasticity baseline."""

    id_clase: int | None
    descripcion_clase: str
    id_genero: int | None
    descripcion_genero: str
    id_marca: int | None
    descripcion_marca: str
    price_band: str


@dataclass
class WatchlistItem:
    base_col: str
    descripcion: str
    descripcion_corta: str
    cluster: Cluster
    precio_actual: float
    costo: float
    unidades_7: float
    unidades_14: float
    unidades_28: float
    velocity: VelocityMetrics
    stock: StockMetrics
    motivo: list[str] = field(default_factory=list)
    score: float = 0.0

    @property
    def categoria(self) -> str:
        return self.cluster.descripcion_clase

    @property
    def marca(self) -> str:
        return self.cluster.descripcion_marca

    @property
    def genero(self) -> str:
        return self.cluster.descripcion_genero

    @property
    def stock_total(self) -> float:
        return self.stock.stock_total

    def to_record(self) -> dict[str, Any]:
        """Flat, JSON-ready representation stored in the job's result_data."""
        return {
            "base_col": self.base_col,
            "descripcion": self.descripcion,
            "descripcion_corta": self.descripcion_corta,
            "categoria": self.categoria,
            "id_clase": self.cluster.id_clase,
            "marca": self.marca,
            "id_marca": self.cluster.id_marca,
            "genero": self.genero,
            "id_genero": self.cluster.id_genero,
            "price_band": self.cluster.price_band,
            "precio_actual": self.precio_actual,
            "costo": self.costo,
            "unidades_ultimos_7": self.unidades_7,
            "unidades_ultimos_14": self.unidades_14,
            "unidades_ultimos_28": self.unidades_28,
            **asdict(self.velocity),
            **asdict(self.stock),
            "motivo": list(self.motivo),
            "score": self.score,
            "cluster": asdict(self.cluster),
        }


@dataclass
class WatchlistOutcome:
    items: list[WatchlistItem]
    skipped_rows: int = 0


# ─── Row → item ────────────────────────────────────────────────────────────


def _number(row: Mapping[str, Any], key: str, default: float = 0.0) -> float:
    value = row.get(key)
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise MalformedRowError(f"{key} is not numeric: {value!r}") from exc
    if not math.isfinite(number):
        raise MalformedRowError(f"{key} is not finite: {value!r}")
    return number


def _optional_int(row: Mapping[str, Any], key: str) -> int | None:
    value = row.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedRowError(f"{key} is not an integer: {value!r}") from exc


def _text(row: Mapping[str, Any], key: str) -> str:
    value = row.get(key)
    return "" if value is None else str(value)


def build_watchlist_item(
    row: Mapping[str, Any],
    scorer: ReasonScorer,
    *,
    ritmo_ventana_dias: int = 14,
    cycle_days: int = 90,
) -> WatchlistItem:
    base_col = _text(row, "base_col").strip()
    if not base_col:
        raise MalformedRowError("row has no base_col")

    unidades_7 = max(_number(row, "unidades_7"), 0.0)
    unidades_14 = max(_number(row, "unidades_14"), 0.0)
    unidades_28 = max(_number(row, "unidades_28"), 0.0)
    unidades_desde_inicio = max(_number(row, "unidades_desde_inicio"), 0.0)
    dias_desde_inicio = int(_number(row, "dias_desde_inicio"))
    ritmo_cluster = max(_number(row, "ritmo_cluster"), 0.0)
    precio_actual = _number(row, "precio_actual")
    costo = _number(row, "costo")

    units, window = units_for_window(unidades_7, unidades_14, unidades_28, ritmo_ventana_dias)
    velocity = calculate_velocity_metrics(
        unidades_ventana=units,
        dias_ventana=window,
        unidades_desde_inicio=unidades_desde_inicio,
        dias_desde_inicio=dias_desde_inicio,
        ritmo_cluster=ritmo_cluster,
    )
    stock = calculate_stock_metrics(
        stock_on_hand=_number(row, "stock_on_hand"),
        stock_pendiente=_number(row, "stock_pendiente"),
        venta_diaria=velocity.ritmo_actual,
        dias_desde_inicio=dias_desde_inicio,
        ciclo_total_dias=cycle_days,
    )

    facts = {
        **row,
        "precio_actual": precio_actual,
        "costo": costo,
        "unidades_7": unidades_7,
        "unidades_14": unidades_14,
        "unidades_28": unidades_28,
    }
    assessment = scorer.assess(facts, velocity, stock)

    return WatchlistItem(
        base_col=base_col,
        descripcion=_text(row, "descripcion"),
        descripcion_corta=_text(row, "descripcion_corta"),
        cluster=Cluster(
            id_clase=_optional_int(row, "id_clase"),
            descripcion_clase=_text(row, "categoria"),
            id_genero=_optional_int(row, "id_genero"),
            descripcion_genero=_text(row, "genero"),
            id_marca=_optional_int(row, "id_marca"),
            descripcion_marca=_text(row, "marca"),
            price_band=_text(row, "price_band"),
        ),
        precio_actual=precio_actual,
        costo=costo,
        unidades_7=unidades_7,
        unidades_14=unidades_14,
        unidades_28=unidades_28,
        velocity=velocity,
        stock=stock,
        motivo=[reason.value for reason in sorted(set(assessment.reasons), key=_reason_order)],
        score=assessment.score,
    )


def _reason_order(reason: WatchlistReason) -> int:
    return list(WatchlistReason).index(reason)


# ─── Batch processing ──────────────────────────────────────────────────────


class WatchlistAggregator:
    """
    Builds items batch by batch.

    before_batch() runs ahead of every batch (cancellation checks raise from
    here); after_batch(processed, total) runs after it (progress reporting).
    """

    def __init__(
        self,
        scorer: ReasonScorer,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        ritmo_ventana_dias: int = 14,
        cycle_days: int = 90,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.scorer = scorer
        self.batch_size = batch_size
        self.ritmo_ventana_dias = ritmo_ventana_dias
        self.cycle_days = cycle_days

    async def process(
        self,
        rows: Sequence[Mapping[str, Any]],
        *,
        before_batch: Callable[[], Awaitable[None]] | None = None,
        after_batch: Callable[[int, int], Awaitable[None]] | None = None,
    ) -> WatchlistOutcome:
        items: list[WatchlistItem] = []
        skipped = 0
        total = len(rows)

        for start in range(0, total, self.batch_size):
            if before_batch is not None:
                await before_batch()

            for row in rows[start : start + self.batch_size]:
                try:
                    items.append(
                        build_watchlist_item(
                            row,
                            self.scorer,
                            ritmo_ventana_dias=self.ritmo_ventana_dias,
                            cycle_days=self.cycle_days,
                        )
                    )
                except MalformedRowError as exc:
                    skipped += 1
                    logger.warning("watchlist.row_skipped", base_col=row.get("base_col"), error=str(exc))

            if after_batch is not None:
                await after_batch(min(start + self.batch_size, total), total)

        return WatchlistOutcome(items=rank_items(items), skipped_rows=skipped)


# ─── Ranking & summary ─────────────────────────────────────────────────────


def rank_items(items: list[WatchlistItem]) -> list[WatchlistItem]:
    return sorted(items, key=lambda item: item.score, reverse=True)


def summarize_watchlist(
    items: Sequence[WatchlistItem],
    severity: SeverityThresholds | None = None,
    *,
    skipped_rows: int = 0,
) -> dict[str, Any]:
    """
    Severity counts use critico/bajo/normal only; 'alto' folds into normal.
    top_motivos ranks tag counts descending, ties in first-seen order.
    """
    thresholds = severity or SeverityThresholds()
    counts = {"critico": 0, "bajo": 0, "normal": 0}
    motivo_counts: dict[str, int] = {}

    for item in items:
        bucket = classify_severity(item.velocity.indice_ritmo, thresholds)
        counts["normal" if bucket == "alto" else bucket] += 1
        for motivo in item.motivo:
            motivo_counts[motivo] = motivo_counts.get(motivo, 0) + 1

    average_score = sum(item.score for item in items) / len(items) if items else 0.0
    top_motivos = sorted(
        ({"motivo": motivo, "count": count} for motivo, count in motivo_counts.items()),
        key=lambda entry: entry["count"],
        reverse=True,
    )

    return {
        "total_items": len(items),
        "critical_count": counts["critico"],
        "low_count": counts["bajo"],
        "normal_count": counts["normal"],
        "average_score": round(average_score, 1),
        "top_motivos": top_motivos,
        "skipped_rows": skipped_rows,
    }
