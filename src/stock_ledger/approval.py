"""Approval workflow: pending movements become approved or returned.

Approving is a two-phase operation. The status write is the source of truth;
refreshing the item's ``StockLedger`` row afterwards is best effort and a
failure there only produces the ``stockLedgerSyncFailed`` warning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from . import aggregation, core_logic, data_manager, log
from .constants import STOCK_LEDGER_SYNC_FAILED, TransactionStatus


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of a single approval or return."""

    transaction: data_manager.TransactionRow
    warnings: Tuple[str, ...] = ()


@dataclass
class BatchResult:
    """Per-member outcome of a batch approval or return.

    Members are independent: ``failed_ids`` maps each failed id to its error
    message so callers can retry just that subset.
    """

    action: str
    succeeded_ids: List[str] = field(default_factory=list)
    failed_ids: Dict[str, str] = field(default_factory=dict)
    warnings: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.succeeded_ids)

    def raise_for_failures(self) -> None:
        """Raise :class:`PartialBatchFailure` when any member failed."""
        if self.failed_ids:
            total = self.success_count + len(self.failed_ids)
            raise core_logic.PartialBatchFailure(
                f"{len(self.failed_ids)} of {total} {self.action} operations failed",
                self,
            )


def sync_stock_ledger(context: core_logic.RuntimeContext, item_code: str) -> data_manager.StockLedgerRow:
    """Rewrite the ``StockLedger`` row of ``item_code`` from the current ledger.

    The persisted opening quantity is kept; movement totals and the closing
    quantity are recomputed.
    """
    view = aggregation.stock_view(context, item_code)[0]
    row = data_manager.StockLedgerRow(
        item_code=view.item_code,
        item_name=view.item_name,
        opening_qty=view.opening_qty,
        in_qty=view.in_qty,
        out_qty=view.out_qty,
        closing_qty=view.closing_qty,
        new_flag=view.is_new,
        initial_group=view.initial_group,
        updated_at=core_logic.utc_now().isoformat(),
    )
    core_logic.write_store(context, data_manager.upsert_stock_ledger, row, buckets=("stock_ledger",))
    log.debug("Synced StockLedger row for '%s' (closing=%s)", item_code, row.closing_qty)
    return row


def approve_transaction(
    context: core_logic.RuntimeContext,
    transaction_id: str,
    actor: data_manager.UserRow,
) -> ApprovalOutcome:
    """Approve a pending movement and refresh its stock ledger row.

    Args:
        context (RuntimeContext): Runtime context.
        transaction_id (str): Movement to approve.
        actor (UserRow): Manager or admin approving it.

    Returns:
        ApprovalOutcome: The approved movement, plus
            ``stockLedgerSyncFailed`` in ``warnings`` if the ledger sync broke.

    Raises:
        PermissionDeniedError: If ``actor`` is a worker.
        NotFoundError: If the movement does not exist.
        InvalidTransitionError: If the movement is not ``pending``.
        StaleRecordError: If the status changed before the write landed.
    """
    core_logic.require_supervisor(actor, "approve movements")
    approved = core_logic.transition_status(
        context,
        transaction_id,
        allowed_from=(TransactionStatus.PENDING.value,),
        to_status=TransactionStatus.APPROVED,
        extra_fields={
            "approved_by": actor.name,
            "approved_at": core_logic.utc_now().isoformat(),
        },
    )

    warnings: List[str] = []
    if approved.item_code:
        try:
            sync_stock_ledger(context, approved.item_code)
        except (core_logic.LedgerError, KeyError, ValueError, OSError) as exc:
            log.error(
                "Approved '%s' but StockLedger sync for '%s' failed: %s",
                transaction_id,
                approved.item_code,
                exc,
            )
            warnings.append(STOCK_LEDGER_SYNC_FAILED)

    log.info("Approved movement '%s' by %s", transaction_id, actor.login_id)
    return ApprovalOutcome(transaction=approved, warnings=tuple(warnings))


def _require_comment(comment: str) -> str:
    trimmed = (comment or "").strip()
    if not trimmed:
        log.error("Return refused: empty comment")
        raise core_logic.ValidationError("A comment is required to return a movement")
    return trimmed


def reject_transaction(
    context: core_logic.RuntimeContext,
    transaction_id: str,
    actor: data_manager.UserRow,
    comment: str,
) -> ApprovalOutcome:
    """Return a pending movement to its creator with ``comment``.

    Raises:
        ValidationError: If ``comment`` is blank.
        PermissionDeniedError: If ``actor`` is a worker.
        NotFoundError: If the movement does not exist.
        InvalidTransitionError: If the movement is not ``pending``.
    """
    core_logic.require_supervisor(actor, "return movements")
    trimmed = _require_comment(comment)
    returned = core_logic.transition_status(
        context,
        transaction_id,
        allowed_from=(TransactionStatus.PENDING.value,),
        to_status=TransactionStatus.RETURNED,
        extra_fields={"return_comment": trimmed},
    )
    log.info("Returned movement '%s' by %s", transaction_id, actor.login_id)
    return ApprovalOutcome(transaction=returned)


def _run_batch(action: str, transaction_ids: Iterable[str], operation) -> BatchResult:
    result = BatchResult(action=action)
    for transaction_id in transaction_ids:
        try:
            outcome = operation(transaction_id)
        except core_logic.LedgerError as exc:
            log.warning("Batch %s of '%s' failed: %s", action, transaction_id, exc)
            result.failed_ids[transaction_id] = str(exc)
            continue
        result.succeeded_ids.append(transaction_id)
        if outcome.warnings:
            result.warnings[transaction_id] = outcome.warnings

    log.info(
        "Batch %s finished: %d succeeded, %d failed",
        action,
        result.success_count,
        len(result.failed_ids),
    )
    return result


def batch_approve(
    context: core_logic.RuntimeContext,
    transaction_ids: Iterable[str],
    actor: data_manager.UserRow,
) -> BatchResult:
    """Approve each id independently; one failure never aborts the others."""
    core_logic.require_supervisor(actor, "approve movements")
    return _run_batch(
        "approve",
        transaction_ids,
        lambda transaction_id: approve_transaction(context, transaction_id, actor),
    )


def batch_return(
    context: core_logic.RuntimeContext,
    transaction_ids: Iterable[str],
    actor: data_manager.UserRow,
    comment: str,
) -> BatchResult:
    """Return each id independently with a shared comment.

    Raises:
        ValidationError: If ``comment`` is blank; no member is touched.
    """
    core_logic.require_supervisor(actor, "return movements")
    trimmed = _require_comment(comment)
    return _run_batch(
        "return",
        transaction_ids,
        lambda transaction_id: reject_transaction(context, transaction_id, actor, trimmed),
    )
