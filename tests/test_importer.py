"""Tests for the opening stock importer."""

from __future__ import annotations

import pytest

from stock_ledger import core_logic, data_manager, importer

from conftest import MANAGER, WORKER, make_item


CSV_REPORT = (
    "quantity,code,name\n"
    '12,A100,"Widget, large"\n'
    "abc,B200,Broken row\n"
    "5,,No code\n"
    "3,C300,CA cable\n"
)


def test_parse_stock_csv_skips_header_and_invalid_rows():
    lines = importer.parse_stock_csv(CSV_REPORT)

    assert lines == [
        importer.StockLine("A100", "Widget, large", 12),
        importer.StockLine("C300", "CA cable", 3),
    ]


def test_import_appends_baselines_and_catalog_items(ledger):
    result = importer.import_initial_stock(ledger, MANAGER, csv_text=CSV_REPORT)

    assert result == importer.ImportResult(updated=0, appended=2)
    rows = {row.item_code: row for row in core_logic.list_stock_ledger(ledger)}
    assert rows["A100"].opening_qty == 12
    assert rows["A100"].closing_qty == 12
    c300 = core_logic.get_item(ledger, "C300")
    assert c300.new_flag is False
    assert c300.initial_group == "CA"


def test_import_updates_existing_baseline_and_recomputes_closing(ledger, seed, make_transaction):
    seed(
        make_item("A100", "Widget"),
        make_transaction(direction="IN", quantity=4, status="approved"),
        data_manager.StockLedgerRow("A100", "Widget", 1, 4, 0, 5, False, "OTHER", "t0"),
    )

    result = importer.import_initial_stock(ledger, MANAGER, items=[{"item_code": "A100", "qty": 20}])

    assert result == importer.ImportResult(updated=1, appended=0)
    [row] = core_logic.list_stock_ledger(ledger)
    assert (row.opening_qty, row.in_qty, row.closing_qty) == (20, 4, 24)
    assert row.item_name == "Widget"


def test_import_without_rows_is_rejected(ledger):
    with pytest.raises(core_logic.ValidationError):
        importer.import_initial_stock(ledger, MANAGER, csv_text="quantity,code,name\n")
    with pytest.raises(core_logic.ValidationError):
        importer.import_initial_stock(ledger, MANAGER)


def test_import_requires_supervisor(ledger):
    with pytest.raises(core_logic.PermissionDeniedError):
        importer.import_initial_stock(ledger, WORKER, csv_text=CSV_REPORT)
