from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

import anyio

from budget_server import prediction
from budget_server.database import TenantHandle
from budget_server.models import Record
from budget_server.prediction import rank_suggestions, suggest

NOW = datetime(2025, 6, 15, 12, 0)


def _record(record_id, name, days_ago, amount="4.00", category_id=1):
    occurred = NOW - timedelta(days=days_ago)
    return Record(
        id=record_id,
        name=name,
        amount=Decimal(amount),
        category_id=category_id,
        occurred_at=occurred,
        created_at=occurred,
    )


def test_frequency_outranks_recency():
    history = [
        _record(1, "Coffee", 5, "3.50"),
        _record(2, "Coffee", 3, "3.60"),
        _record(3, "coffee ", 2, "3.80"),
        _record(4, "Coffee Shop", 0, "6.00"),
    ]

    suggestions = rank_suggestions(history, category_id=1)

    assert [s.name for s in suggestions] == ["coffee", "Coffee Shop"]
    assert suggestions[0].count == 3
    assert suggestions[0].last_amount == Decimal("3.80")
    assert suggestions[0].last_occurred_at == NOW - timedelta(days=2)
    assert suggestions[1].count == 1


def test_recency_breaks_frequency_ties():
    history = [
        _record(1, "Bakery", 10),
        _record(2, "Market", 1),
        _record(3, "Butcher", 5),
    ]

    assert [s.name for s in rank_suggestions(history, 1)] == ["Market", "Butcher", "Bakery"]


def test_same_day_ties_fall_back_to_name_order():
    history = [_record(1, "Zeta", 1), _record(2, "Alpha", 1)]

    assert [s.name for s in rank_suggestions(history, 1)] == ["Alpha", "Zeta"]


def test_prefix_filters_case_insensitively():
    history = [
        _record(1, "Coffee", 1),
        _record(2, "Cake", 1),
        _record(3, "Tea", 1),
    ]

    assert [s.name for s in rank_suggestions(history, 1, prefix="  CO")] == ["Coffee"]
    assert rank_suggestions(history, 1, prefix="x") == []


def test_other_categories_are_ignored():
    history = [_record(1, "Coffee", 1), _record(2, "Fuel", 1, category_id=2)]

    assert [s.name for s in rank_suggestions(history, 2)] == ["Fuel"]


def test_limit_bounds_results():
    history = [_record(i, f"Item {i}", i) for i in range(1, 40)]

    assert len(rank_suggestions(history, 1, limit=3)) == 3
    assert len(rank_suggestions(history, 1)) == 5
    assert len(rank_suggestions(history, 1, limit=1000)) == 20


def test_suggest_reads_tenant_history(records, categories, handle):
    async def run():
        food = await categories.create_category("Food")
        other = await categories.create_category("Other")
        for days_ago, name in ((5, "Coffee"), (3, "Coffee"), (2, "Coffee"), (0, "Coffee Shop")):
            await records.create_record({
                "name": name, "amount": "3.00", "category_id": food.id,
                "occurred_at": NOW - timedelta(days=days_ago),
            })
        await records.create_record({"name": "Coffee Shop", "amount": "1", "category_id": other.id})
        return await suggest(handle, food.id)

    suggestions = anyio.run(run)
    assert [(s.name, s.count) for s in suggestions] == [("Coffee", 3), ("Coffee Shop", 1)]


def test_suggest_degrades_to_empty_list(tmp_path):
    handle = TenantHandle(tenant_id="ghost", path=Path(tmp_path) / "missing.db")

    assert anyio.run(suggest, handle, 1) == []


def test_suggest_swallows_ranking_failures(handle, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(prediction, "rank_suggestions", explode)

    assert anyio.run(suggest, handle, 1) == []
