"""
Tests for the Watchlist Classifier/Aggregator.

Covers:
  - Row → item conversion (metrics, tags, flattened record)
  - Malformed rows skipped and counted
  - Batch hooks and batch-size independence
  - Ranking and summary counts
"""

import pytest

from conftest import make_row
from pricing.errors import MalformedRowError
from pricing.scoring import PrecomputedReasonScorer
from pricing.watchlist import (
    WatchlistAggregator,
    build_watchlist_item,
    rank_items,
    summarize_watchlist,
)

SCORER = PrecomputedReasonScorer()


def _rows(count: int) -> list[dict]:
    return [make_row(f"SKU-{i:03d}", score=(i * 37) % 100, motivo_early=i % 2) for i in range(count)]


# ── Row → item ─────────────────────────────────────────────────────────


class TestBuildItem:
    def test_metrics_and_record(self):
        row = make_row(
            "SKU-1",
            unidades_14=28,
            unidades_desde_inicio=30,
            dias_desde_inicio=30,
            ritmo_cluster=4.0,
            stock_on_hand=100,
            stock_pendiente=-5,
            motivo_sobrestock=1,
            motivo_early=1,
            score=55,
        )
        item = build_watchlist_item(row, SCORER, ritmo_ventana_dias=14, cycle_days=90)

        assert item.velocity.ritmo_actual == 2.0
        assert item.velocity.ritmo_base == 1.0
        assert item.velocity.indice_desaceleracion == 2.0
        assert item.velocity.indice_ritmo == 0.5
        assert item.stock.stock_total == 100
        assert item.stock.dias_stock == 50
        assert item.stock.dias_restantes_ciclo == 60
        assert item.motivo == ["Early", "Sobrestock"]

        record = item.to_record()
        assert record["base_col"] == "SKU-1"
        assert record["ritmo_actual"] == 2.0
        assert record["stock_total"] == 100
        assert record["unidades_ultimos_14"] == 28
        assert record["cluster"]["descripcion_clase"] == "Zapatillas"
        assert record["score"] == 55.0

    def test_window_selects_units(self):
        item = build_watchlist_item(make_row("SKU-1", unidades_7=14), SCORER, ritmo_ventana_dias=7)
        assert item.velocity.ritmo_actual == 2.0

    def test_negative_units_clamped(self):
        item = build_watchlist_item(make_row("SKU-1", unidades_14=-3), SCORER)
        assert item.velocity.ritmo_actual == 0.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"base_col": ""},
            {"base_col": None},
            {"precio_actual": "n/a"},
            {"score": -4},
            {"id_clase": "x"},
            {"dias_desde_inicio": "nan"},
            {"dias_desde_inicio": float("inf")},
            {"unidades_14": float("nan")},
            {"score": float("nan")},
        ],
    )
    def test_malformed_rows_raise(self, overrides):
        row = make_row("SKU-1")
        row.update(overrides)
        with pytest.raises(MalformedRowError):
            build_watchlist_item(row, SCORER)


# ── Batching ───────────────────────────────────────────────────────────


class TestAggregator:
    async def test_hooks_run_per_batch(self):
        calls = []

        async def before():
            calls.append("before")

        async def after(processed, total):
            calls.append((processed, total))

        await WatchlistAggregator(SCORER, batch_size=2).process(_rows(5), before_batch=before, after_batch=after)
        assert calls == ["before", (2, 5), "before", (4, 5), "before", (5, 5)]

    async def test_output_independent_of_batch_size(self):
        rows = _rows(23)
        baseline = await WatchlistAggregator(SCORER, batch_size=50).process(rows)
        for batch_size in (1, 3, 7, 23):
            outcome = await WatchlistAggregator(SCORER, batch_size=batch_size).process(rows)
            assert [i.to_record() for i in outcome.items] == [i.to_record() for i in baseline.items]

    async def test_malformed_rows_are_skipped_and_counted(self):
        rows = _rows(4) + [make_row(""), make_row("SKU-BAD", unidades_14="lots")]
        outcome = await WatchlistAggregator(SCORER, batch_size=2).process(rows)
        assert outcome.skipped_rows == 2
        assert len(outcome.items) == 4

    async def test_non_finite_values_are_skipped_and_ranking_holds(self):
        rows = [
            make_row("A", score=5),
            make_row("B", dias_desde_inicio="nan", score=90),
            make_row("C", score=float("nan")),
            make_row("D", score=50),
            make_row("E", score=1, stock_on_hand=float("inf")),
        ]
        outcome = await WatchlistAggregator(SCORER, batch_size=2).process(rows)
        assert outcome.skipped_rows == 3
        assert [item.base_col for item in outcome.items] == ["D", "A"]
        assert [item.score for item in outcome.items] == [50.0, 5.0]

    async def test_empty_input(self):
        outcome = await WatchlistAggregator(SCORER).process([])
        assert outcome.items == []
        assert outcome.skipped_rows == 0

    def test_rejects_zero_batch_size(self):
        with pytest.raises(ValueError):
            WatchlistAggregator(SCORER, batch_size=0)


# ── Ranking & summary ──────────────────────────────────────────────────


class TestSummary:
    def _items(self):
        rows = [
            make_row("A", unidades_14=7, ritmo_cluster=1.0, score=80, motivo_early=1, motivo_sobrestock=1),
            make_row("B", unidades_14=10, ritmo_cluster=1.0, score=40, motivo_sobrestock=1),
            make_row("C", unidades_14=14, ritmo_cluster=1.0, score=10),
            make_row("D", unidades_14=28, ritmo_cluster=1.0, score=10, motivo_desacelera=1),
        ]
        return [build_watchlist_item(row, SCORER) for row in rows]

    def test_rank_descending_and_stable(self):
        ranked = rank_items(list(reversed(self._items())))
        assert [item.base_col for item in ranked] == ["A", "B", "D", "C"]

    def test_counts(self):
        summary = summarize_watchlist(self._items(), skipped_rows=1)
        assert summary["total_items"] == 4
        assert summary["critical_count"] == 1
        assert summary["low_count"] == 1
        # indice 1.0 and 2.0 ("alto") both count as normal
        assert summary["normal_count"] == 2
        assert summary["average_score"] == 35.0
        assert summary["skipped_rows"] == 1
        assert summary["top_motivos"] == [
            {"motivo": "Sobrestock", "count": 2},
            {"motivo": "Early", "count": 1},
            {"motivo": "Desacelera", "count": 1},
        ]

    def test_average_rounded_to_one_decimal(self):
        rows = [make_row("A", score=10), make_row("B", score=10), make_row("C", score=11)]
        summary = summarize_watchlist([build_watchlist_item(r, SCORER) for r in rows])
        assert summary["average_score"] == 10.3

    def test_empty(self):
        summary = summarize_watchlist([])
        assert summary["average_score"] == 0.0
        assert summary["top_motivos"] == []
