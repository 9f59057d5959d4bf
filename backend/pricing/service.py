"""
PriceActions service facade — the five operations the HTTP layer exposes.

  submit       write a pending job, hand it to the dispatcher, return its id
  get_status   plain read of the job row
  cancel       conditional pending|running → cancelled, then flip the token
  get_results  sort + page a completed job's stored items
  simulate     synchronous, read-only price projection for one SKU
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings, get_settings
from pricing.config import PricingConfig
from pricing.errors import InputValidationError, InvalidStateError, NotFoundError
from pricing.jobs import CANCELLABLE_STATUSES, JobRegistry, JobRepository, JobStatus, WatchlistJobRunner, utcnow
from pricing.pager import normalize_sort_column, normalize_sort_direction, paginate, sort_items
from pricing.scoring import RuleBasedReasonScorer
from pricing.simulator import Elasticity, SimulationInput, SimulationResult, simulate_price_change
from pricing.sources import (
    ElasticityProvider,
    SkuFactsProvider,
    SqlElasticityProvider,
    SqlSkuFactsProvider,
    SqlWatchlistSource,
)

logger = structlog.get_logger()

Dispatcher = Callable[[uuid.UUID], None]
FILTER_KEYS = ("brands", "categories", "genders", "stores", "search")


def _parse_date(value: Any, field_name: str) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise InputValidationError(f"{field_name} is not a valid date: {value!r}", [field_name]) from exc


def _positive_number(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or number <= 0:
        return None
    return number


def _optional_int_field(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InputValidationError(f"{field_name} is not an integer: {value!r}", [field_name]) from exc


def _optional_float_field(value: Any, field_name: str) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InputValidationError(f"{field_name} is not numeric: {value!r}", [field_name]) from exc
    if not math.isfinite(number):
        raise InputValidationError(f"{field_name} is not finite: {value!r}", [field_name])
    return number


class PriceActionsService:
    def __init__(
        self,
        repository: JobRepository,
        runner: WatchlistJobRunner,
        registry: JobRegistry,
        facts: SkuFactsProvider,
        elasticities: ElasticityProvider,
        config: PricingConfig | None = None,
        dispatcher: Dispatcher | None = None,
    ):
        self.repository = repository
        self.runner = runner
        self.registry = registry
        self.facts = facts
        self.elasticities = elasticities
        self.config = config or PricingConfig()
        self.dispatcher = dispatcher or self._dispatch_inline

    # ── Jobs ────────────────────────────────────────────────────────────

    def _dispatch_inline(self, job_id: uuid.UUID) -> None:
        self.registry.spawn(job_id, self.runner.run(job_id))

    async def submit(
        self,
        *,
        filters: Mapping[str, Any] | None = None,
        fecha_desde: Any = None,
        fecha_hasta: Any = None,
        ritmo_ventana_dias: int | None = None,
        cycle_days: int | None = None,
        created_by: str | None = None,
    ) -> uuid.UUID:
        desde = _parse_date(fecha_desde, "fecha_desde")
        hasta = _parse_date(fecha_hasta, "fecha_hasta")
        if desde and hasta and desde > hasta:
            raise InputValidationError("fecha_desde must be on or before fecha_hasta", ["fecha_desde", "fecha_hasta"])

        ventana = ritmo_ventana_dias or self.config.default_ritmo_ventana_dias
        cycle = cycle_days or self.config.default_cycle_days
        if ventana <= 0 or cycle <= 0:
            raise InputValidationError("ritmo_ventana_dias and cycle_days must be positive", ["ritmo_ventana_dias", "cycle_days"])

        parameters = {
            "filters": {key: (filters or {}).get(key) for key in FILTER_KEYS if (filters or {}).get(key)},
            "fecha_desde": desde.isoformat() if desde else None,
            "fecha_hasta": hasta.isoformat() if hasta else None,
            "ritmo_ventana_dias": ventana,
            "cycle_days": cycle,
        }
        job_id = await self.repository.create(parameters, created_by=created_by)
        logger.info("watchlist_job.submitted", job_id=str(job_id), created_by=created_by)
        self.dispatcher(job_id)
        return job_id

    async def _require_job(self, job_id: uuid.UUID | str):
        job = await self.repository.get(job_id)
        if job is None:
            raise NotFoundError("job", str(job_id))
        return job

    async def get_status(self, job_id: uuid.UUID | str) -> dict[str, Any]:
        job = await self._require_job(job_id)
        elapsed = None
        if job.started_at is not None:
            elapsed = round(((job.completed_at or utcnow()) - job.started_at).total_seconds())
        return {
            "id": job.job_id,
            "status": job.status,
            "progress": job.progress,
            "current_step": job.current_step,
            "total_items": job.total_items,
            "processed_items": job.processed_items,
            "error_message": job.error_message,
            "created_at": job.created_at,
            "started_at": job.started_at,
            "completed_at": job.completed_at,
            "elapsed_seconds": elapsed,
        }

    async def cancel(self, job_id: uuid.UUID | str) -> dict[str, Any]:
        job = await self._require_job(job_id)
        if job.status not in {s.value for s in CANCELLABLE_STATUSES}:
            raise InvalidStateError(job.status, "cancel")

        if not await self.repository.cancel(job.job_id):
            # Lost the race: the job finished between the read and the update.
            current = await self._require_job(job.job_id)
            raise InvalidStateError(current.status, "cancel")

        self.registry.mark_cancelled(job.job_id)
        logger.info("watchlist_job.cancel_requested", job_id=str(job.job_id), previous_status=job.status)
        return {"success": True, "job_id": job.job_id, "message": "Job cancelled"}

    async def get_results(
        self,
        job_id: uuid.UUID | str,
        *,
        page: int = 1,
        page_size: int | None = None,
        sort_column: str | None = None,
        sort_direction: str | None = None,
    ) -> dict[str, Any]:
        job = await self._require_job(job_id)
        if job.status != JobStatus.COMPLETED.value:
            raise InvalidStateError(job.status, "read results")

        column = normalize_sort_column(sort_column)
        direction = normalize_sort_direction(sort_direction)
        items = (job.result_data or {}).get("items", [])
        result_page = paginate(
            sort_items(items, column, direction),
            page,
            page_size or self.config.page_size_default,
            max_page_size=self.config.page_size_max,
        )
        return {
            "items": result_page.items,
            "total": result_page.total,
            "page": result_page.page,
            "page_size": result_page.page_size,
            "total_pages": result_page.total_pages,
            "summary": job.result_summary,
            "completed_at": job.completed_at,
            "sort_column": column,
            "sort_direction": direction,
        }

    # ── Simulator ───────────────────────────────────────────────────────

    async def simulate(self, payload: Mapping[str, Any]) -> SimulationResult:
        base_col = str(payload.get("base_col") or "").strip()
        precio_actual = _positive_number(payload.get("precio_actual"))
        precio_propuesto = _positive_number(payload.get("precio_propuesto"))

        invalid = [
            name
            for name, ok in (
                ("base_col", bool(base_col)),
                ("precio_actual", precio_actual is not None),
                ("precio_propuesto", precio_propuesto is not None),
            )
            if not ok
        ]
        if invalid:
            raise InputValidationError(f"Missing or invalid fields: {', '.join(invalid)}", invalid)

        horizonte = _optional_int_field(payload.get("horizonte_dias"), "horizonte_dias")
        if horizonte is not None and horizonte <= 0:
            raise InputValidationError("horizonte_dias must be positive", ["horizonte_dias"])
        override = _optional_float_field(payload.get("elasticidad"), "elasticidad")

        facts = await self.facts.get(base_col)
        if facts is None:
            raise NotFoundError("sku", base_col)

        if override is not None:
            elasticity = Elasticity(value=override, confidence="media", method="fallback")
        else:
            elasticity = await self.elasticities.for_cluster(facts.cluster) or Elasticity(
                value=self.config.simulation.elasticity_fallback,
                confidence="baja",
                method="fallback",
                warning="No elasticity estimate for this cluster or category",
            )

        result = simulate_price_change(
            SimulationInput(
                base_col=base_col,
                precio_actual=precio_actual,
                precio_propuesto=precio_propuesto,
                horizonte_dias=horizonte,
                elasticidad=override,
            ),
            ritmo_actual=facts.ritmo_actual,
            ritmo_cluster=facts.ritmo_cluster,
            costo=facts.costo,
            stock_total=facts.stock_total,
            elasticity=elasticity,
            config=self.config.simulation,
        )
        if elasticity.warning:
            result.warnings.append(elasticity.warning)
        logger.info(
            "price_simulation.completed",
            base_col=base_col,
            delta_precio_pct=round(result.delta_precio_pct, 2),
            elasticity_method=elasticity.method,
            usa_ritmo_cluster=result.usa_ritmo_cluster,
        )
        return result


def build_price_actions_service(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    registry: JobRegistry,
    settings: Settings | None = None,
    dispatcher: Dispatcher | None = None,
) -> PriceActionsService:
    """Wire the SQL-backed service; used by the API lifespan and the Celery worker."""
    settings = settings or get_settings()
    config = PricingConfig.from_settings(settings)
    repository = JobRepository(session_factory)
    runner = build_watchlist_runner(session_factory, registry=registry, config=config)
    return PriceActionsService(
        repository=repository,
        runner=runner,
        registry=registry,
        facts=SqlSkuFactsProvider(session_factory),
        elasticities=SqlElasticityProvider(session_factory),
        config=config,
        dispatcher=dispatcher,
    )


def build_watchlist_runner(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    registry: JobRegistry,
    config: PricingConfig,
) -> WatchlistJobRunner:
    return WatchlistJobRunner(
        repository=JobRepository(session_factory),
        source=SqlWatchlistSource(session_factory),
        scorer=RuleBasedReasonScorer(config.reasons, config.severity),
        registry=registry,
        config=config,
    )
