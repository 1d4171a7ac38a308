"""Tests for the stock aggregation projection."""

from __future__ import annotations

import pytest

from stock_ledger import aggregation, data_manager

from conftest import make_item


# ---------------------------------------------------------------------------
# Pure projection
# ---------------------------------------------------------------------------


def test_only_approved_and_locked_movements_count(make_transaction):
    """pending, draft, and returned movements never move stock."""

    items = [make_item("A100", "SAD widget")]
    transactions = [
        make_transaction(direction="IN", quantity=10, status="approved"),
        make_transaction(direction="IN", quantity=4, status="locked"),
        make_transaction(direction="OUT", quantity=3, status="pending"),
        make_transaction(direction="OUT", quantity=2, status="draft"),
        make_transaction(direction="OUT", quantity=1, status="returned"),
    ]

    [view] = aggregation.aggregate_stock(items, transactions)

    assert (view.in_qty, view.out_qty, view.closing_qty) == (14, 0, 14)


def test_catalog_items_first_then_unknown_in_encounter_order(make_transaction):
    """Codes outside the catalog get an 'unknown' view after catalog items."""

    items = [make_item("B200", "Gadget"), make_item("A100", "Widget")]
    transactions = [
        make_transaction(item_code="Z9", direction="OUT", quantity=2, status="approved"),
        make_transaction(item_code="A100", quantity=5, status="approved"),
        make_transaction(item_code="Y8", quantity=1, status="locked"),
    ]

    views = aggregation.aggregate_stock(items, transactions)

    assert [view.item_code for view in views] == ["B200", "A100", "Z9", "Y8"]
    assert views[0].closing_qty == 0
    assert views[2].item_name == "unknown"
    assert views[2].closing_qty == -2


def test_baselines_feed_opening_quantity(make_transaction):
    items = [make_item("A100", "Widget")]
    transactions = [make_transaction(direction="OUT", quantity=3, status="approved")]

    [view] = aggregation.aggregate_stock(items, transactions, {"A100": 20})

    assert view.opening_qty == 20
    assert view.closing_qty == 17


def test_views_carry_new_flag_and_group(make_transaction):
    items = [make_item("A100", "■ EG box", new_flag=True), make_item("B1", "Bolt", initial_group="MA")]

    first, second = aggregation.aggregate_stock(items, [])

    assert first.is_new is True
    assert first.initial_group == "EG"
    assert second.initial_group == "MA"


@pytest.mark.parametrize("quantities", [[], [5], [5, -3, 2], [-1, -1, 7, 9]])
def test_closing_identity_holds(make_transaction, quantities):
    """closing = opening + in - out for every item, and reruns agree."""

    items = [make_item("A100", "Widget")]
    transactions = [
        make_transaction(direction="IN" if qty > 0 else "OUT", quantity=abs(qty), status="approved")
        for qty in quantities
    ]

    views = aggregation.aggregate_stock(items, transactions, {"A100": 3})

    for view in views:
        assert view.closing_qty == view.opening_qty + view.in_qty - view.out_qty
    assert views == aggregation.aggregate_stock(items, transactions, {"A100": 3})


# ---------------------------------------------------------------------------
# Context helpers
# ---------------------------------------------------------------------------


def test_a100_example_approving_out_updates_stock(ledger, seed, make_transaction):
    """IN 10 approved plus OUT 3 pending shows 10; approving the OUT shows 7."""

    seed(
        make_item("A100", "SAD widget"),
        make_transaction(id="T1", direction="IN", quantity=10, status="approved"),
        make_transaction(id="T2", direction="OUT", quantity=3, status="pending"),
    )

    [view] = aggregation.stock_view(ledger, "A100")
    assert (view.in_qty, view.out_qty, view.closing_qty) == (10, 0, 10)

    data_manager.update_transaction(ledger.workbook, "T2", field_values={"status": "approved"})
    ledger._cache.clear()

    [view] = aggregation.stock_view(ledger, "A100")
    assert (view.in_qty, view.out_qty, view.closing_qty) == (10, 3, 7)


def test_stock_view_reads_baselines_from_stock_ledger(ledger, seed):
    seed(
        make_item("A100", "Widget"),
        data_manager.StockLedgerRow("A100", "Widget", 12, 99, 99, 12, False, "OTHER", "t0"),
    )

    [view] = aggregation.stock_view(ledger)

    assert view.opening_qty == 12
    assert view.in_qty == 0
    assert view.closing_qty == 12


def test_stock_view_unknown_code_yields_zeroed_row(ledger):
    [view] = aggregation.stock_view(ledger, "NOPE")

    assert view.item_code == "NOPE"
    assert (view.opening_qty, view.in_qty, view.out_qty, view.closing_qty) == (0, 0, 0, 0)
