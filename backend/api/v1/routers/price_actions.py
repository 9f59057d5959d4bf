"""
Price Actions Router — watchlist jobs and the price simulator.

Watchlist workflow:
  1. POST /watchlist/start        → pending job id
  2. GET  /watchlist/status/{id}  → poll progress
  3. GET  /watchlist/result/{id}  → sorted, paged items once completed
  POST /watchlist/cancel/{id} stops a pending or running job.

POST /simulator projects the outcome of a single price change.
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.deps import get_price_actions_service
from pricing.errors import InputValidationError, InvalidStateError, NotFoundError
from pricing.service import PriceActionsService

router = APIRouter(prefix="/api/v1/price-actions", tags=["price-actions"])


# ─── Schemas ────────────────────────────────────────────────────────────────

class WatchlistFilters(BaseModel):
    brands: list[int] | None = None
    categories: list[int] | None = None
    genders: list[int] | None = None
    stores: list[int] | None = None
    search: str | None = None


class WatchlistStartRequest(BaseModel):
    filters: WatchlistFilters = Field(default_factory=WatchlistFilters)
    fecha_desde: date | None = None
    fecha_hasta: date | None = None
    ritmo_ventana_dias: int = Field(default=14, gt=0)
    cycle_days: int = Field(default=90, gt=0)
    created_by: str | None = None


class WatchlistStartResponse(BaseModel):
    job_id: UUID
    status: str
    message: str


class JobStatusResponse(BaseModel):
    id: UUID
    status: str
    progress: int
    current_step: str | None
    total_items: int
    processed_items: int
    error_message: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    elapsed_seconds: int | None


class CancelResponse(BaseModel):
    success: bool
    job_id: UUID
    message: str


class WatchlistResultResponse(BaseModel):
    items: list[dict]
    total: int
    page: int
    page_size: int
    total_pages: int
    summary: dict | None
    completed_at: datetime | None
    sort_column: str
    sort_direction: str


class SimulationRequest(BaseModel):
    """Fields are validated together by the service so every problem is reported at once."""
    base_col: str | None = None
    precio_actual: float | None = None
    precio_propuesto: float | None = None
    horizonte_dias: int | None = None
    elasticidad: float | None = None


class ElasticityResponse(BaseModel):
    value: float
    confidence: str
    observations: int
    method: str
    warning: str | None = None

    model_config = {"from_attributes": True}


class SimulationResponse(BaseModel):
    base_col: str
    precio_actual: float
    precio_propuesto: float
    delta_precio_pct: float
    elasticidad: ElasticityResponse
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
    warnings: list[str]
    break_even_precio: float | None = None

    model_config = {"from_attributes": True}


# ─── Error bodies ───────────────────────────────────────────────────────────

def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "not found"})


def _conflict(error: str, exc: InvalidStateError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"error": error, "reason": exc.reason, "status": exc.current_status},
    )


def _bad_request(exc: InputValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc), "fields": exc.fields})


# ─── Watchlist ──────────────────────────────────────────────────────────────

@router.post("/watchlist/start", response_model=WatchlistStartResponse)
async def start_watchlist(
    body: WatchlistStartRequest,
    service: PriceActionsService = Depends(get_price_actions_service),
):
    """Queue a watchlist job; poll /watchlist/status/{job_id} for progress."""
    try:
        job_id = await service.submit(
            filters=body.filters.model_dump(exclude_none=True),
            fecha_desde=body.fecha_desde,
            fecha_hasta=body.fecha_hasta,
            ritmo_ventana_dias=body.ritmo_ventana_dias,
            cycle_days=body.cycle_days,
            created_by=body.created_by,
        )
    except InputValidationError as exc:
        return _bad_request(exc)
    return WatchlistStartResponse(job_id=job_id, status="pending", message="Watchlist job queued")


@router.get("/watchlist/status/{job_id}", response_model=JobStatusResponse)
async def get_watchlist_status(
    job_id: str,
    service: PriceActionsService = Depends(get_price_actions_service),
):
    try:
        return await service.get_status(job_id)
    except NotFoundError:
        return _not_found()


@router.post("/watchlist/cancel/{job_id}", response_model=CancelResponse)
async def cancel_watchlist(
    job_id: str,
    service: PriceActionsService = Depends(get_price_actions_service),
):
    try:
        return await service.cancel(job_id)
    except NotFoundError:
        return _not_found()
    except InvalidStateError as exc:
        return _conflict("cannot cancel", exc)


@router.get("/watchlist/result/{job_id}", response_model=WatchlistResultResponse)
async def get_watchlist_result(
    job_id: str,
    page: int = Query(1),
    page_size: int | None = Query(None),
    sort_column: str | None = Query(None),
    sort_direction: str | None = Query(None),
    service: PriceActionsService = Depends(get_price_actions_service),
):
    """Sorted and paged items of a completed job. Out-of-range paging is clamped."""
    try:
        return await service.get_results(
            job_id,
            page=page,
            page_size=page_size,
            sort_column=sort_column,
            sort_direction=sort_direction,
        )
    except NotFoundError:
        return _not_found()
    except InvalidStateError as exc:
        return _conflict("job not completed", exc)


# ─── Simulator ──────────────────────────────────────────────────────────────

@router.post("/simulator", response_model=SimulationResponse)
async def simulate_price(
    body: SimulationRequest,
    service: PriceActionsService = Depends(get_price_actions_service),
):
    try:
        result = await service.simulate(body.model_dump())
    except InputValidationError as exc:
        return _bad_request(exc)
    except NotFoundError:
        return _not_found()
    return SimulationResponse.model_validate(result)
