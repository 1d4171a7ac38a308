"""Tests for physical count sessions and diff handling."""

from __future__ import annotations

import pytest

from stock_ledger import core_logic, data_manager, reconciliation

from conftest import MANAGER, WORKER, make_item


@pytest.fixture
def a100_at_seven(seed, make_transaction):
    """Ledger where A100's computed stock is 7."""

    return seed(
        make_item("A100", "SAD widget"),
        make_transaction(id="T1", direction="IN", quantity=10, status="approved"),
        make_transaction(id="T2", direction="OUT", quantity=3, status="approved"),
    )


def test_matching_count_creates_no_diff(ledger, a100_at_seven):
    """Counting 7 against a system quantity of 7 logs the count only."""

    result = reconciliation.record_physical_count(
        ledger,
        date="2024-05-31",
        location="North shelf",
        counts=[reconciliation.CountEntry("A100", 7)],
        actor=MANAGER,
    )

    [count] = result.counts
    assert (count.expected_qty, count.actual_qty, count.difference) == (7, 7, 0)
    assert count.status == "draft"
    assert result.diffs == []
    assert core_logic.list_diff_logs(ledger) == []
    assert len(core_logic.list_physical_counts(ledger)) == 1


def test_mismatched_count_logs_pending_diff(ledger, a100_at_seven):
    """Counting 9 against 7 records a +2 diff in pending status."""

    result = reconciliation.record_physical_count(
        ledger,
        date="2024-05-31",
        location="North shelf",
        counts=[{"item_code": "A100", "actual_qty": "9"}],
        actor=MANAGER,
    )

    [diff] = core_logic.list_diff_logs(ledger)
    assert diff.diff == 2
    assert diff.status == "pending"
    assert diff.reason == ""
    assert diff.physical_count_id == result.counts[0].id
    assert diff.item_name == "SAD widget"


def test_count_for_unknown_item_expects_zero(ledger):
    result = reconciliation.record_physical_count(
        ledger,
        date="2024-05-31",
        location="Back room",
        counts=[reconciliation.CountEntry("Q1", 4)],
        actor=MANAGER,
    )
    assert result.diffs[0].expected_qty == 0
    assert result.diffs[0].diff == 4


def test_count_does_not_touch_the_ledger(ledger, a100_at_seven):
    before = core_logic.all_transactions(ledger)
    reconciliation.record_physical_count(
        ledger,
        date="2024-05-31",
        location="North shelf",
        counts=[reconciliation.CountEntry("A100", 1)],
        actor=MANAGER,
    )
    assert core_logic.all_transactions(ledger) == before


@pytest.mark.parametrize(
    ("date", "location", "counts"),
    [
        ("", "North", [reconciliation.CountEntry("A100", 1)]),
        ("2024-05-31", " ", [reconciliation.CountEntry("A100", 1)]),
        ("2024-05-31", "North", []),
        ("2024-05-31", "North", [reconciliation.CountEntry("", 1)]),
        ("2024-05-31", "North", [reconciliation.CountEntry("A100", -1)]),
        ("2024-05-31", "North", [reconciliation.CountEntry("A100", "1.5")]),
    ],
)
def test_count_validation_writes_nothing(ledger, date, location, counts):
    with pytest.raises(core_logic.ValidationError):
        reconciliation.record_physical_count(ledger, date=date, location=location, counts=counts, actor=MANAGER)
    assert core_logic.list_physical_counts(ledger) == []


def test_count_requires_supervisor(ledger):
    with pytest.raises(core_logic.PermissionDeniedError):
        reconciliation.record_physical_count(
            ledger,
            date="2024-05-31",
            location="North",
            counts=[reconciliation.CountEntry("A100", 1)],
            actor=WORKER,
        )


def test_confirm_and_annotate(ledger, a100_at_seven):
    result = reconciliation.record_physical_count(
        ledger,
        date="2024-05-31",
        location="North shelf",
        counts=[reconciliation.CountEntry("A100", 5)],
        actor=MANAGER,
    )
    count_id, diff_id = result.counts[0].id, result.diffs[0].id

    assert reconciliation.confirm_physical_count(ledger, count_id, MANAGER).status == "confirmed"
    assert core_logic.list_physical_counts(ledger)[0].status == "confirmed"
    assert reconciliation.confirm_physical_count(ledger, count_id, MANAGER).status == "confirmed"

    assert reconciliation.annotate_diff(ledger, diff_id, " two units broken ", MANAGER).status == "approved"
    [diff] = core_logic.list_diff_logs(ledger)
    assert (diff.reason, diff.status) == ("two units broken", "approved")
    reconciliation.annotate_diff(ledger, diff_id, "three units broken", MANAGER)
    assert core_logic.list_diff_logs(ledger)[0].reason == "three units broken"
    with pytest.raises(core_logic.ValidationError):
        reconciliation.annotate_diff(ledger, diff_id, "", MANAGER)
    with pytest.raises(core_logic.NotFoundError):
        reconciliation.annotate_diff(ledger, "D-missing", "x", MANAGER)


def test_list_diffs_filters_by_status(ledger, seed):
    seed(
        data_manager.DiffLogRow("D1", "PC1", "2024-05-31", "A100", "SAD widget", 6, 8, 2, "", "pending"),
        data_manager.DiffLogRow("D2", "PC2", "2024-04-30", "B200", "BU bolt", 3, 1, -2, "lost", "approved"),
    )

    assert [row.id for row in reconciliation.list_diffs(ledger)] == ["D1", "D2"]
    assert [row.id for row in reconciliation.list_diffs(ledger, "approved")] == ["D2"]
