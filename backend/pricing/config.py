"""
Pricing configuration — thresholds and multipliers as explicit structures.

Built from core.config.Settings so every knob is overridable through the
environment and individually testable.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from core.config import Settings


@dataclass(frozen=True)
class SeverityThresholds:
    """Buckets for indice_ritmo (pace vs cluster)."""

    critico: float = 0.6
    bajo: float = 0.9
    alto: float = 1.1


@dataclass(frozen=True)
class ReasonThresholds:
    early_days: int = 10
    indice_ritmo_critico: float = 0.6
    indice_desaceleracion: float = 0.7
    dias_stock_alerta: float = 45


@dataclass(frozen=True)
class SimulationConfig:
    """
    Fallback baseline for SKUs without recent sales:
      baseline = ritmo_cluster × cluster_share × (base_factor + factor)
      factor   = min(1, |delta_pct| × delta_scale) on price cuts, else 0
    """

    cluster_share: float = 0.3
    base_factor: float = 0.5
    delta_scale: float = 2.0
    low_sell_through_pct: float = 50.0
    default_horizon_days: int = 90
    margen_minimo_aceptable: float | None = None
    elasticity_fallback: float = -1.0


@dataclass(frozen=True)
class PricingConfig:
    severity: SeverityThresholds = field(default_factory=SeverityThresholds)
    reasons: ReasonThresholds = field(default_factory=ReasonThresholds)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    batch_size: int = 50
    default_ritmo_ventana_dias: int = 14
    default_cycle_days: int = 90
    page_size_default: int = 50
    page_size_max: int = 200

    @classmethod
    def from_settings(cls, settings: Settings) -> PricingConfig:
        return cls(
            severity=SeverityThresholds(
                critico=settings.indice_ritmo_critico,
                bajo=settings.indice_ritmo_bajo,
                alto=settings.indice_ritmo_alto,
            ),
            reasons=ReasonThresholds(
                early_days=settings.early_days_threshold,
                indice_ritmo_critico=settings.indice_ritmo_critico,
                indice_desaceleracion=settings.indice_desaceleracion_umbral,
                dias_stock_alerta=settings.dias_stock_alerta,
            ),
            simulation=SimulationConfig(
                cluster_share=settings.fallback_cluster_share,
                base_factor=settings.fallback_base_factor,
                delta_scale=settings.fallback_delta_scale,
                low_sell_through_pct=settings.low_sell_through_pct,
                default_horizon_days=settings.default_horizon_days,
                margen_minimo_aceptable=settings.margen_minimo_aceptable,
                elasticity_fallback=settings.elasticity_fallback,
            ),
            batch_size=settings.watchlist_batch_size,
            default_ritmo_ventana_dias=settings.default_ritmo_ventana_dias,
            default_cycle_days=settings.default_cycle_days,
            page_size_default=settings.results_page_size_default,
            page_size_max=settings.results_page_size_max,
        )


# Global price bands (inclusive bounds) used when a SKU has no stored band
DEFAULT_PRICE_BANDS: tuple[tuple[int, int], ...] = (
    (0, 1490),
    (1491, 1790),
    (1791, 2090),
    (2091, 2490),
    (2491, 2990),
    (2991, 999999),
)


def price_band_for(precio: float, bands: tuple[tuple[int, int], ...] = DEFAULT_PRICE_BANDS) -> str:
    for low, high in bands:
        if low <= precio <= high:
            return f"{low}-{high}"
    if bands and precio > bands[-1][1]:
        return f"{bands[-1][1] + 1}+"
    return "unknown"
