"""Tests for the approval workflow, single and batch."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest

from stock_ledger import approval, constants, core_logic, data_manager

from conftest import ADMIN, MANAGER, WORKER, make_item


def test_approve_stamps_approver_and_syncs_stock_ledger(ledger, seed, make_transaction, set_fixed_datetime):
    """Approving moves pending to approved and rewrites the item's ledger row."""

    moment = set_fixed_datetime(datetime(2024, 5, 3, 9, 15, tzinfo=UTC))
    seed(make_item("A100", "SAD widget"), make_transaction(id="T1", quantity=10))

    outcome = approval.approve_transaction(ledger, "T1", MANAGER)

    assert outcome.warnings == ()
    assert outcome.transaction.status == "approved"
    stored = core_logic.get_transaction(ledger, "T1")
    assert stored.status == "approved"
    assert stored.approved_by == MANAGER.name
    assert stored.approved_at == moment.isoformat()

    [row] = core_logic.list_stock_ledger(ledger)
    assert (row.item_code, row.in_qty, row.closing_qty) == ("A100", 10, 10)


def test_approve_requires_supervisor(ledger, seed, make_transaction):
    seed(make_transaction(id="T1"))
    with pytest.raises(core_logic.PermissionDeniedError):
        approval.approve_transaction(ledger, "T1", WORKER)
    assert core_logic.get_transaction(ledger, "T1").status == "pending"


@pytest.mark.parametrize("status", ["draft", "returned", "approved", "locked"])
def test_approve_requires_pending(ledger, seed, make_transaction, status):
    seed(make_transaction(id="T1", status=status))
    with pytest.raises(core_logic.InvalidTransitionError):
        approval.approve_transaction(ledger, "T1", MANAGER)


def test_sync_failure_is_a_warning_not_a_rollback(monkeypatch, ledger, seed, make_transaction):
    """A broken StockLedger write keeps the approval and reports the warning."""

    seed(make_transaction(id="T1"))
    monkeypatch.setattr(data_manager, "upsert_stock_ledger", Mock(side_effect=KeyError("Missing sheet: StockLedger")))

    outcome = approval.approve_transaction(ledger, "T1", ADMIN)

    assert outcome.warnings == (constants.STOCK_LEDGER_SYNC_FAILED,)
    assert core_logic.get_transaction(ledger, "T1").status == "approved"


def test_reject_requires_comment(ledger, seed, make_transaction):
    seed(make_transaction(id="T1"))
    with pytest.raises(core_logic.ValidationError):
        approval.reject_transaction(ledger, "T1", MANAGER, "   ")
    assert core_logic.get_transaction(ledger, "T1").status == "pending"


def test_reject_returns_with_trimmed_comment(ledger, seed, make_transaction):
    seed(make_transaction(id="T1"))

    outcome = approval.reject_transaction(ledger, "T1", MANAGER, "  wrong shelf  ")

    assert outcome.transaction.status == "returned"
    assert core_logic.get_transaction(ledger, "T1").return_comment == "wrong shelf"


def test_reject_after_approve_fails(ledger, seed, make_transaction):
    """Once approved, a movement can no longer be returned."""

    seed(make_transaction(id="T1"))
    approval.approve_transaction(ledger, "T1", MANAGER)

    with pytest.raises(core_logic.InvalidTransitionError):
        approval.reject_transaction(ledger, "T1", MANAGER, "too late")
    assert core_logic.get_transaction(ledger, "T1").status == "approved"


def test_hand_edited_pending_status_can_be_approved(ledger, seed, make_transaction):
    """A ``Pending`` cell typed by hand is listed and approvable like ``pending``."""

    seed(make_item("A100", "SAD widget"), make_transaction(id="T1", status="Pending", quantity=4))

    assert [row.id for row in core_logic.list_pending(ledger, MANAGER)] == ["T1"]
    outcome = approval.approve_transaction(ledger, "T1", MANAGER)

    assert outcome.transaction.status == "approved"
    assert core_logic.get_transaction(ledger, "T1").status == "approved"


def test_returned_movement_can_be_resubmitted_and_approved(ledger, seed, make_transaction):
    seed(make_transaction(id="T1"))
    approval.reject_transaction(ledger, "T1", MANAGER, "fix quantity")
    core_logic.update_transaction(ledger, "T1", core_logic.MovementPatch(quantity=2), WORKER)

    assert approval.approve_transaction(ledger, "T1", MANAGER).transaction.quantity == 2


def test_batch_approve_skips_missing_ids(ledger, seed, make_transaction):
    """batch_approve([t1, t2]) with t2 gone still approves t1."""

    seed(make_transaction(id="T1"))

    result = approval.batch_approve(ledger, ["T1", "T2"], MANAGER)

    assert result.success_count == 1
    assert result.succeeded_ids == ["T1"]
    assert list(result.failed_ids) == ["T2"]
    assert core_logic.get_transaction(ledger, "T1").status == "approved"
    with pytest.raises(core_logic.PartialBatchFailure) as excinfo:
        result.raise_for_failures()
    assert excinfo.value.result is result


def test_batch_approve_collects_sync_warnings(monkeypatch, ledger, seed, make_transaction):
    seed(make_transaction(id="T1"), make_transaction(id="T2"))
    monkeypatch.setattr(data_manager, "upsert_stock_ledger", Mock(side_effect=OSError("disk")))

    result = approval.batch_approve(ledger, ["T1", "T2"], MANAGER)

    assert result.success_count == 2
    assert result.warnings == {
        "T1": (constants.STOCK_LEDGER_SYNC_FAILED,),
        "T2": (constants.STOCK_LEDGER_SYNC_FAILED,),
    }
    result.raise_for_failures()


def test_batch_return_rejects_empty_comment_up_front(ledger, seed, make_transaction):
    seed(make_transaction(id="T1"))
    with pytest.raises(core_logic.ValidationError):
        approval.batch_return(ledger, ["T1"], MANAGER, "")
    assert core_logic.get_transaction(ledger, "T1").status == "pending"


def test_batch_return_members_are_independent(ledger, seed, make_transaction):
    seed(make_transaction(id="T1"), make_transaction(id="T2", status="approved"), make_transaction(id="T3"))

    result = approval.batch_return(ledger, ["T1", "T2", "T3"], MANAGER, "recount")

    assert result.succeeded_ids == ["T1", "T3"]
    assert "T2" in result.failed_ids
    assert [row.status for row in core_logic.all_transactions(ledger)] == ["returned", "approved", "returned"]


def test_batch_requires_supervisor(ledger):
    with pytest.raises(core_logic.PermissionDeniedError):
        approval.batch_approve(ledger, ["T1"], WORKER)
