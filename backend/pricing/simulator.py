"""
Price Simulation Engine — "what if" projection for one SKU price change.

  delta_pct          = (precio_propuesto − precio_actual) / precio_actual
  ritmo_proyectado   = max(0, baseline × (1 + elasticity × delta_pct))
  unidades_cap       = min(ritmo_proyectado × horizon, stock_total)
  ingreso            = unidades_cap × precio_propuesto
  margen_total       = unidades_cap × (precio_propuesto − costo)
  costo_castigo      = (precio_actual − precio_propuesto) × unidades_cap

SKUs with no recent sales but a selling cluster get a fallback baseline: a
share of the cluster pace, boosted on price cuts (see SimulationConfig).

costo_castigo keeps its sign: a price increase yields a negative value.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pricing.config import SimulationConfig

CONFIDENCE_LEVELS = ("alta", "media", "baja")


@dataclass(frozen=True)
class Elasticity:
    value: float
    confidence: str = "media"
    observations: int = 0
    method: str = "cluster"
    warning: str | None = None

    def __post_init__(self):
        if self.confidence not in CONFIDENCE_LEVELS:
            raise ValueError(f"confidence must be one of {CONFIDENCE_LEVELS}, got {self.confidence!r}")


@dataclass(frozen=True)
class SimulationInput:
    base_col: str
    precio_actual: float
    precio_propuesto: float
    horizonte_dias: int | None = None
    elasticidad: float | None = None


@dataclass
class SimulationResult:
    base_col: str
    precio_actual: float
    precio_propuesto: float
    delta_precio_pct: float
    elasticidad: Elasticity
    ritmo_actual: float
    ritmo_cluster: float
    ritmo_baseline: float
    usa_ritmo_cluster: bool
    ritmo_proyectado: float
    unidades_proyectadas: float
    unidades_proyectadas_cap: float
    ingreso_proyectado: float
    costo: float
    margen_unitario: float
    margen_total: float
    costo_castigo: float
    sell_through_pct: float
    stock_total: float
    horizonte_dias: int
    warnings: list[str] = field(default_factory=list)
    break_even_precio: float | None = None


def fallback_baseline(ritmo_cluster: float, delta_pct: float, config: SimulationConfig) -> float:
    """Baseline pace for a SKU without traction, derived from its cluster."""
    factor = min(1.0, abs(delta_pct) * config.delta_scale) if delta_pct < 0 else 0.0
    return ritmo_cluster * config.cluster_share * (config.base_factor + factor)


def break_even_price(costo: float, margen_minimo_pct: float | None, stock_total: float) -> float | None:
    if margen_minimo_pct is None or stock_total <= 0 or margen_minimo_pct >= 100:
        return None
    return costo / (1 - margen_minimo_pct / 100)


def simulate_price_change(
    inp: SimulationInput,
    *,
    ritmo_actual: float,
    ritmo_cluster: float,
    costo: float,
    stock_total: float,
    elasticity: Elasticity,
    config: SimulationConfig | None = None,
) -> SimulationResult:
    cfg = config or SimulationConfig()
    if inp.precio_actual <= 0:
        raise ValueError("precio_actual must be positive")

    horizon = inp.horizonte_dias or cfg.default_horizon_days
    delta_pct = (inp.precio_propuesto - inp.precio_actual) / inp.precio_actual

    usa_ritmo_cluster = ritmo_actual == 0 and ritmo_cluster > 0
    baseline = fallback_baseline(ritmo_cluster, delta_pct, cfg) if usa_ritmo_cluster else ritmo_actual

    ritmo_proyectado = max(0.0, baseline * (1 + elasticity.value * delta_pct))
    unidades = ritmo_proyectado * horizon
    unidades_cap = min(unidades, stock_total)

    ingreso = unidades_cap * inp.precio_propuesto
    margen_unitario = inp.precio_propuesto - costo
    margen_total = unidades_cap * margen_unitario
    costo_castigo = (inp.precio_actual - inp.precio_propuesto) * unidades_cap
    sell_through = unidades_cap / stock_total * 100 if stock_total > 0 else 0.0

    warnings: list[str] = []
    if usa_ritmo_cluster:
        warnings.append(
            f"No recent sales. Using {baseline:.2f} u/day as baseline "
            f"({cfg.cluster_share:.0%} of cluster pace {ritmo_cluster:.2f} u/day)."
        )
    if margen_unitario < 0:
        warnings.append("Unit margin is negative at the proposed price")
    if elasticity.confidence == "baja":
        warnings.append(f"Elasticity estimated with low confidence ({elasticity.observations} observations)")
    if sell_through < cfg.low_sell_through_pct and stock_total > 0 and not usa_ritmo_cluster:
        warnings.append(f"Low projected sell-through ({sell_through:.1f}%)")

    return SimulationResult(
        base_col=inp.base_col,
        precio_actual=inp.precio_actual,
        precio_propuesto=inp.precio_propuesto,
        delta_precio_pct=delta_pct * 100,
        elasticidad=elasticity,
        ritmo_actual=ritmo_actual,
        ritmo_cluster=ritmo_cluster,
        ritmo_baseline=baseline,
        usa_ritmo_cluster=usa_ritmo_cluster,
        ritmo_proyectado=ritmo_proyectado,
        unidades_proyectadas=unidades,
        unidades_proyectadas_cap=unidades_cap,
        ingreso_proyectado=ingreso,
        costo=costo,
        margen_unitario=margen_unitario,
        margen_total=margen_total,
        costo_castigo=costo_castigo,
        sell_through_pct=sell_through,
        stock_total=stock_total,
        horizonte_dias=horizon,
        warnings=warnings,
        break_even_precio=break_even_price(costo, cfg.margen_minimo_aceptable, stock_total),
    )
