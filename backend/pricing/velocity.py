"""
Velocity & Stock Calculator — sales pace and days-of-stock.

  ritmo_actual          = units in trailing window / window days
  ritmo_base            = units since cycle start / days since start
  indice_desaceleracion = ritmo_actual / ritmo_base
  indice_ritmo          = ritmo_actual / ritmo_cluster
  dias_stock            = stock_total / daily pace

All functions are pure. Zero denominators never produce a division error:
indices fall back to 1 (some sales, no reference) or 0 (no sales), and
dias_stock becomes None.
"""

from __future__ import annotations

from dataclasses import dataclass

from pricing.config import SeverityThresholds

TRAILING_WINDOWS = (7, 14, 28)


@dataclass(frozen=True)
class VelocityMetrics:
    ritmo_actual: float
    ritmo_base: float
    indice_desaceleracion: float
    ritmo_cluster: float
    indice_ritmo: float


@dataclass(frozen=True)
class StockMetrics:
    stock_on_hand: float
    stock_pendiente: float
    stock_total: float
    dias_stock: float | None
    dias_desde_inicio: int
    dias_restantes_ciclo: int | None


def safe_divide(numerator: float | None, denominator: float | None, default: float | None = None) -> float | None:
    if numerator is None or denominator is None or denominator == 0:
        return default
    return numerator / denominator


def calculate_ritmo_actual(units_in_window: float, window_days: float) -> float:
    if window_days <= 0:
        return 0.0
    return units_in_window / window_days


def calculate_ritmo_base(units_since_start: float, days_since_start: float) -> float:
    if days_since_start <= 0:
        return 0.0
    return units_since_start / days_since_start


def _ratio_with_zero_guard(ritmo_actual: float, reference: float) -> float:
    if reference == 0:
        return 1.0 if ritmo_actual > 0 else 0.0
    return ritmo_actual / reference


def calculate_indice_desaceleracion(ritmo_actual: float, ritmo_base: float) -> float:
    return _ratio_with_zero_guard(ritmo_actual, ritmo_base)


def calculate_indice_ritmo(ritmo_actual: float, ritmo_cluster: float) -> float:
    return _ratio_with_zero_guard(ritmo_actual, ritmo_cluster)


def calculate_stock_metrics(
    *,
    stock_on_hand: float,
    stock_pendiente: float,
    venta_diaria: float,
    dias_desde_inicio: int,
    ciclo_total_dias: int,
) -> StockMetrics:
    pendiente = max(stock_pendiente, 0)
    stock_total = stock_on_hand + pendiente
    restantes = ciclo_total_dias - dias_desde_inicio
    return StockMetrics(
        stock_on_hand=stock_on_hand,
        stock_pendiente=pendiente,
        stock_total=stock_total,
        dias_stock=safe_divide(stock_total, venta_diaria),
        dias_desde_inicio=dias_desde_inicio,
        dias_restantes_ciclo=restantes if restantes > 0 else None,
    )


def calculate_velocity_metrics(
    *,
    unidades_ventana: float,
    dias_ventana: float,
    unidades_desde_inicio: float,
    dias_desde_inicio: float,
    ritmo_cluster: float,
) -> VelocityMetrics:
    ritmo_actual = calculate_ritmo_actual(unidades_ventana, dias_ventana)
    ritmo_base = calculate_ritmo_base(unidades_desde_inicio, dias_desde_inicio)
    return VelocityMetrics(
        ritmo_actual=ritmo_actual,
        ritmo_base=ritmo_base,
        indice_desaceleracion=calculate_indice_desaceleracion(ritmo_actual, ritmo_base),
        ritmo_cluster=ritmo_cluster,
        indice_ritmo=calculate_indice_ritmo(ritmo_actual, ritmo_cluster),
    )


def classify_severity(indice_ritmo: float, thresholds: SeverityThresholds) -> str:
    """Return 'critico', 'bajo', 'normal' or 'alto'."""
    if indice_ritmo < thresholds.critico:
        return "critico"
    if indice_ritmo < thresholds.bajo:
        return "bajo"
    if indice_ritmo >= thresholds.alto:
        return "alto"
    return "normal"


def units_for_window(unidades_7: float, unidades_14: float, unidades_28: float, window_days: int) -> tuple[float, int]:
    """
    Pick the smallest stored trailing window that covers ``window_days``.

    Returns (units, effective_window_days) so the pace is computed over the
    window the units were actually counted in.
    """
    by_window = {7: unidades_7, 14: unidades_14, 28: unidades_28}
    for days in TRAILING_WINDOWS:
        if window_days <= days:
            return by_window[days], days
    return unidades_28, 28
