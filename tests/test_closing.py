"""Tests for the monthly closing preview and finalize flows."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from stock_ledger import closing, core_logic, data_manager

from conftest import MANAGER, WORKER, make_item


@pytest.fixture
def may_ledger(seed, make_transaction):
    return seed(
        make_item("A100", "SAD widget", new_flag=True),
        make_item("B200", "BU bolt"),
        make_transaction(id="T1", date="2024-05-02", item_code="A100", direction="IN", quantity=10, status="approved"),
        make_transaction(id="T2", date="2024-05-20", item_code="A100", direction="OUT", quantity=4, status="locked"),
        make_transaction(id="T3", date="2024-05-21", item_code="B200", direction="IN", quantity=5, status="pending"),
        make_transaction(id="T4", date="2024-04-30", item_code="B200", direction="IN", quantity=9, status="approved"),
        make_transaction(id="T5", date="2024-05-22", item_code="B200", direction="OUT", quantity=2, status="approved"),
    )


def test_preview_groups_period_movements_without_mutation(ledger, may_ledger):
    before = core_logic.all_transactions(ledger)

    result = closing.run_monthly_closing(ledger, "2024-05", "preview", MANAGER)

    assert [(row.item_code, row.expected_qty) for row in result.rows] == [("A100", 6), ("B200", -2)]
    a100 = result.rows[0]
    assert (a100.actual_qty, a100.diff, a100.has_diff, a100.is_new_item) == (6, 0, False, True)
    assert result.locked_ids == []
    assert core_logic.all_transactions(ledger) == before
    assert core_logic.list_supplier_reports(ledger) == []


def test_diff_overlay_last_entry_wins(ledger, may_ledger, seed):
    seed(
        data_manager.DiffLogRow("D1", "PC1", "2024-05-31", "A100", "SAD widget", 6, 8, 2, "first", "pending"),
        data_manager.DiffLogRow("D2", "PC2", "2024-05-31", "A100", "SAD widget", 6, 5, -1, "recount", "pending"),
        data_manager.DiffLogRow("D3", "PC3", "2024-05-31", "Z9", "Other", 0, 1, 1, "", "pending"),
    )

    result = closing.run_monthly_closing(ledger, "2024-05", "preview", MANAGER)

    a100 = result.rows[0]
    assert (a100.actual_qty, a100.diff, a100.has_diff, a100.reason) == (5, -1, True, "recount")
    assert [row.item_code for row in result.rows] == ["A100", "B200"]


def test_finalize_locks_and_reports(ledger, may_ledger):
    result = closing.run_monthly_closing(ledger, "2024-05", "finalize", MANAGER)

    assert sorted(result.locked_ids) == ["T1", "T2", "T5"]
    statuses = {row.id: row.status for row in core_logic.all_transactions(ledger)}
    assert statuses == {"T1": "locked", "T2": "locked", "T3": "pending", "T4": "approved", "T5": "locked"}

    reports = core_logic.list_supplier_reports(ledger)
    assert [(report.item_code, report.expected_qty, report.discrepancy) for report in reports] == [
        ("A100", 6, 0),
        ("B200", -2, 0),
    ]
    assert all(report.month == "2024-05" for report in reports)
    assert reports[0].is_new_item is True


def test_finalize_twice_is_idempotent(ledger, may_ledger):
    """A second finalize yields the same rows and keeps everything locked."""

    first = closing.run_monthly_closing(ledger, "2024-05", "finalize", MANAGER)
    second = closing.run_monthly_closing(ledger, "2024-05", "finalize", MANAGER)

    assert second.rows == first.rows
    assert sorted(second.locked_ids) == sorted(first.locked_ids)
    locked = [row for row in core_logic.all_transactions(ledger) if row.id in {"T1", "T2", "T5"}]
    assert all(row.status == "locked" for row in locked)
    assert len(core_logic.list_supplier_reports(ledger)) == 4


def test_finalize_locks_hand_edited_approved_rows(ledger, seed, make_transaction):
    """An ``Approved`` cell counts towards stock and is locked at finalize."""

    seed(
        make_item("A100", "SAD widget"),
        make_transaction(id="T1", date="2024-05-02", direction="IN", quantity=10, status="Approved"),
    )

    result = closing.run_monthly_closing(ledger, "2024-05", "finalize", MANAGER)

    assert result.locked_ids == ["T1"]
    assert result.failures == {}
    assert core_logic.get_transaction(ledger, "T1").status == "locked"
    assert [row.expected_qty for row in result.rows] == [10]


def test_finalize_collects_failures_and_keeps_going(monkeypatch, ledger, may_ledger):
    """A failing report append does not stop the others and ends in PartialBatchFailure."""

    real_append = data_manager.append_supplier_report

    def flaky(workbook, record):
        if record.item_code == "A100":
            raise KeyError("SupplierReports row not found: simulated")
        real_append(workbook, record)

    monkeypatch.setattr(data_manager, "append_supplier_report", Mock(side_effect=flaky))

    with pytest.raises(core_logic.PartialBatchFailure) as excinfo:
        closing.run_monthly_closing(ledger, "2024-05", "finalize", MANAGER)

    result = excinfo.value.result
    assert list(result.failures) == ["report:A100"]
    assert [report.item_code for report in result.reports] == ["B200"]
    assert sorted(result.locked_ids) == ["T1", "T2", "T5"]


@pytest.mark.parametrize("month", ["2024-5", "May 2024", "", "2024-05-01", "2024-13", "2024-00"])
def test_month_must_be_year_dash_month(ledger, month):
    with pytest.raises(core_logic.ValidationError):
        closing.run_monthly_closing(ledger, month, "preview", MANAGER)


def test_unknown_action_and_worker_are_refused(ledger):
    with pytest.raises(core_logic.ValidationError):
        closing.run_monthly_closing(ledger, "2024-05", "publish", MANAGER)
    with pytest.raises(core_logic.PermissionDeniedError):
        closing.run_monthly_closing(ledger, "2024-05", "preview", WORKER)
