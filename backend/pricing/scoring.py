"""
Watchlist reasons and priority score.

The aggregator does not decide why a SKU belongs on the watchlist; it asks an
injected ReasonScorer. Two implementations ship:

  PrecomputedReasonScorer — upstream already evaluated the rules and sends
                            motivo_* flags plus a score on each row.
  RuleBasedReasonScorer   — evaluates the rules here from the computed
                            velocity/stock metrics (used with the SQL source).

Rule-based score (0-100):
  indice_ritmo severity    0-40
  dias_stock vs ciclo      0-30
  margin % (pain of cut)   0-20
  stock units (capital)    0-10
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pricing.config import ReasonThresholds, SeverityThresholds
from pricing.errors import MalformedRowError
from pricing.velocity import StockMetrics, VelocityMetrics


class WatchlistReason(str, Enum):
    """Why a SKU is on the watchlist. Declaration order is the canonical tag order."""

    EARLY = "Early"
    DESACELERA = "Desacelera"
    SOBRESTOCK = "Sobrestock"
    SIN_TRACCION = "Sin tracción"


# Upstream flag column → reason
REASON_FLAGS: dict[str, WatchlistReason] = {
    "motivo_early": WatchlistReason.EARLY,
    "motivo_desacelera": WatchlistReason.DESACELERA,
    "motivo_sobrestock": WatchlistReason.SOBRESTOCK,
    "motivo_sin_traccion": WatchlistReason.SIN_TRACCION,
}


@dataclass(frozen=True)
class ReasonAssessment:
    reasons: list[WatchlistReason] = field(default_factory=list)
    score: float = 0.0


class ReasonScorer(ABC):
    """Produces qualifying reasons and a composite score for one SKU row."""

    @abstractmethod
    def assess(self, row: Mapping[str, Any], velocity: VelocityMetrics, stock: StockMetrics) -> ReasonAssessment:
        ...


def _flag_set(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return value == 1


class PrecomputedReasonScorer(ReasonScorer):
    def assess(self, row: Mapping[str, Any], velocity: VelocityMetrics, stock: StockMetrics) -> ReasonAssessment:
        reasons = [reason for flag, reason in REASON_FLAGS.items() if _flag_set(row.get(flag))]
        raw_score = row.get("score")
        try:
            score = float(raw_score) if raw_score is not None else 0.0
        except (TypeError, ValueError) as exc:
            raise MalformedRowError(f"score is not numeric: {raw_score!r}") from exc
        if not math.isfinite(score):
            raise MalformedRowError(f"score is not finite: {raw_score!r}")
        if score < 0:
            raise MalformedRowError(f"score must be non-negative, got {score}")
        return ReasonAssessment(reasons=reasons, score=score)


class RuleBasedReasonScorer(ReasonScorer):
    def __init__(
        self,
        reasons: ReasonThresholds | None = None,
        severity: SeverityThresholds | None = None,
    ):
        self.reasons = reasons or ReasonThresholds()
        self.severity = severity or SeverityThresholds()

    def assess(self, row: Mapping[str, Any], velocity: VelocityMetrics, stock: StockMetrics) -> ReasonAssessment:
        return ReasonAssessment(
            reasons=self.determine_reasons(row, velocity, stock),
            score=float(self.score(row, velocity, stock)),
        )

    def determine_reasons(
        self, row: Mapping[str, Any], velocity: VelocityMetrics, stock: StockMetrics
    ) -> list[WatchlistReason]:
        t = self.reasons
        reasons: list[WatchlistReason] = []

        # Launched long enough ago to judge, but trailing its cluster
        if stock.dias_desde_inicio >= t.early_days:
            if velocity.indice_ritmo < 0.7 or velocity.ritmo_actual < 0.6 * velocity.ritmo_cluster:
                reasons.append(WatchlistReason.EARLY)

        stock_heavy = stock.dias_stock is not None and stock.dias_stock > t.dias_stock_alerta
        if (
            velocity.indice_desaceleracion < t.indice_desaceleracion
            and stock.stock_total > 0
            and (stock_heavy or velocity.indice_ritmo < 0.8)
        ):
            reasons.append(WatchlistReason.DESACELERA)

        if stock.dias_restantes_ciclo is not None and stock.dias_stock is not None:
            if stock.dias_stock > stock.dias_restantes_ciclo:
                reasons.append(WatchlistReason.SOBRESTOCK)

        if float(row.get("unidades_14") or 0) == 0 and stock.stock_total > 0:
            reasons.append(WatchlistReason.SIN_TRACCION)

        return reasons

    def score(self, row: Mapping[str, Any], velocity: VelocityMetrics, stock: StockMetrics) -> int:
        if velocity.indice_ritmo < self.severity.critico:
            ritmo_points = 40
        elif velocity.indice_ritmo < self.severity.bajo:
            ritmo_points = 25
        elif velocity.indice_ritmo < 1.0:
            ritmo_points = 10
        else:
            ritmo_points = 0

        dias_points = 0
        if stock.dias_stock is not None and stock.dias_restantes_ciclo is not None:
            ratio = stock.dias_stock / stock.dias_restantes_ciclo
            if ratio > 2.0:
                dias_points = 30
            elif ratio > 1.5:
                dias_points = 20
            elif ratio > 1.0:
                dias_points = 10
        elif stock.dias_stock is not None and stock.dias_stock > self.reasons.dias_stock_alerta:
            dias_points = 15

        precio = float(row.get("precio_actual") or 0)
        costo = float(row.get("costo") or 0)
        margen_pct = (precio - costo) / precio * 100 if precio > 0 else 0
        if margen_pct > 50:
            margen_points = 20
        elif margen_pct > 30:
            margen_points = 12
        elif margen_pct > 15:
            margen_points = 6
        else:
            margen_points = 0

        if stock.stock_total > 100:
            stock_points = 10
        elif stock.stock_total > 50:
            stock_points = 6
        elif stock.stock_total > 20:
            stock_points = 3
        else:
            stock_points = 0

        return ritmo_points + dias_points + margen_points + stock_points
