"""
Result Pager/Sorter — stateless view over a completed job's stored items.

Sort the full item set first, then slice the requested page, so paging
through every page reproduces the sorted list exactly once.
"""

from __future__ import annotations

import math
import unicodedata
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
NULL_DIAS_STOCK = 1e18

# Public sort key → stored item field
SORTABLE_COLUMNS: dict[str, str] = {
    "score": "score",
    "base_col": "base_col",
    "categoria": "categoria",
    "marca": "marca",
    "precio_actual": "precio_actual",
    "costo_prom": "costo",
    "stock_total": "stock_total",
    "ritmo_actual": "ritmo_actual",
    "indice_ritmo": "indice_ritmo",
    "dias_stock": "dias_stock",
    "motivo": "motivo",
}

# camelCase names used by existing clients
COLUMN_ALIASES = {
    "baseCol": "base_col",
    "precioActual": "precio_actual",
    "costoProm": "costo_prom",
    "stockTotal": "stock_total",
    "ritmoActual": "ritmo_actual",
    "indiceRitmo": "indice_ritmo",
    "diasStock": "dias_stock",
}

TEXT_COLUMNS = {"base_col", "categoria", "marca"}


@dataclass
class Page:
    items: list[Mapping[str, Any]]
    total: int
    page: int
    page_size: int
    total_pages: int


def normalize_sort_column(column: str | None) -> str:
    """Resolve aliases; anything unknown sorts by score."""
    if not column:
        return "score"
    column = COLUMN_ALIASES.get(column, column)
    return column if column in SORTABLE_COLUMNS else "score"


def normalize_sort_direction(direction: str | None) -> str:
    return "asc" if (direction or "").lower() == "asc" else "desc"


def collation_key(value: Any) -> str:
    """Case-insensitive, accent-insensitive key ('Ñandú' sorts with 'nandu')."""
    text = "" if value is None else str(value)
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


def _sort_key(column: str):
    field_name = SORTABLE_COLUMNS[column]
    if column in TEXT_COLUMNS:
        return lambda item: collation_key(item.get(field_name))
    if column == "motivo":
        return lambda item: collation_key((item.get("motivo") or [""])[0])
    if column == "dias_stock":
        return lambda item: NULL_DIAS_STOCK if item.get("dias_stock") is None else float(item["dias_stock"])
    return lambda item: float(item.get(field_name) or 0)


def sort_items(
    items: Sequence[Mapping[str, Any]],
    column: str | None = "score",
    direction: str | None = "desc",
) -> list[Mapping[str, Any]]:
    resolved = normalize_sort_column(column)
    reverse = normalize_sort_direction(direction) == "desc"
    return sorted(items, key=_sort_key(resolved), reverse=reverse)


def paginate(
    items: Sequence[Mapping[str, Any]],
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    max_page_size: int = MAX_PAGE_SIZE,
) -> Page:
    page = max(1, int(page or 1))
    page_size = min(max_page_size, max(1, int(page_size or DEFAULT_PAGE_SIZE)))
    total = len(items)
    start = (page - 1) * page_size
    return Page(
        items=list(items[start : start + page_size]),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )
