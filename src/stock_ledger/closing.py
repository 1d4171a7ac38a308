"""Monthly closing: report a period, then freeze it.

``preview`` only computes the report. ``finalize`` locks every counted
movement of the month and appends one ``SupplierReports`` row per item. The
finalize loop is not atomic; each member is independent and a re-run over the
same month is safe.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List

from . import core_logic, data_manager, log
from .constants import COUNTED_STATUSES, UNKNOWN_ITEM_NAME, ClosingAction, Direction, TransactionStatus


MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")


@dataclass(frozen=True)
class ClosingRow:
    """Expected versus counted quantity of one item for the month."""

    item_code: str
    item_name: str
    expected_qty: int
    actual_qty: int
    diff: int
    has_diff: bool
    is_new_item: bool
    reason: str = ""


@dataclass
class ClosingResult:
    """Outcome of a preview or finalize run."""

    month: str
    action: str
    rows: List[ClosingRow] = field(default_factory=list)
    locked_ids: List[str] = field(default_factory=list)
    reports: List[data_manager.SupplierReportRow] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)


def parse_month(month: str) -> str:
    """Validate a ``YYYY-MM`` period key.

    Raises:
        ValidationError: If ``month`` does not match ``YYYY-MM`` or names a
            month outside 01-12.
    """
    text = (month or "").strip()
    if not MONTH_PATTERN.match(text):
        raise core_logic.ValidationError(f"month must be YYYY-MM, got {month!r}")
    try:
        datetime.strptime(text, "%Y-%m")
    except ValueError as exc:
        raise core_logic.ValidationError(f"month out of range: {month!r}") from exc
    return text


def select_period_transactions(
    transactions: Iterable[data_manager.TransactionRow],
    month: str,
) -> List[data_manager.TransactionRow]:
    """Return approved and locked movements dated within ``month``."""
    return [
        transaction
        for transaction in transactions
        if transaction.status in COUNTED_STATUSES
        and transaction.date.startswith(month)
        and not core_logic.is_placeholder(transaction)
    ]


def build_closing_rows(
    items: Iterable[data_manager.ItemRow],
    period_transactions: Iterable[data_manager.TransactionRow],
    diffs: Iterable[data_manager.DiffLogRow],
) -> List[ClosingRow]:
    """Group the period's movements by item and overlay recorded diffs.

    Inbound movements add to ``expected_qty`` and outbound ones subtract.
    Diffs are applied in sheet order, so the last diff recorded for an item
    wins. Items without a diff report ``actual_qty == expected_qty``.
    """
    catalog = {item.item_code: item for item in items}
    expected: Dict[str, int] = {}
    for transaction in period_transactions:
        signed = transaction.quantity if transaction.direction == Direction.IN.value else -transaction.quantity
        expected[transaction.item_code] = expected.get(transaction.item_code, 0) + signed

    overlays: Dict[str, data_manager.DiffLogRow] = {}
    for diff in diffs:
        if diff.item_code in expected:
            overlays[diff.item_code] = diff

    rows = []
    for item_code, expected_qty in expected.items():
        item = catalog.get(item_code)
        overlay = overlays.get(item_code)
        if overlay is not None:
            actual_qty, difference, reason = overlay.actual_qty, overlay.diff, overlay.reason
        else:
            actual_qty, difference, reason = expected_qty, 0, ""
        rows.append(
            ClosingRow(
                item_code=item_code,
                item_name=item.item_name if item is not None else UNKNOWN_ITEM_NAME,
                expected_qty=expected_qty,
                actual_qty=actual_qty,
                diff=difference,
                has_diff=difference != 0,
                is_new_item=item.new_flag if item is not None else False,
                reason=reason,
            )
        )
    return rows


def run_monthly_closing(
    context: core_logic.RuntimeContext,
    month: str,
    action: str,
    actor: data_manager.UserRow,
) -> ClosingResult:
    """Preview or finalize the closing of ``month``.

    Args:
        context (RuntimeContext): Runtime context.
        month (str): Period key ``YYYY-MM``.
        action (str): ``preview`` or ``finalize``.
        actor (UserRow): Manager or admin closing the month.

    Returns:
        ClosingResult: Report rows, and for ``finalize`` the locked ids and
            appended supplier reports.

    Raises:
        PermissionDeniedError: If ``actor`` is a worker.
        ValidationError: On a malformed month or unknown action.
        PartialBatchFailure: If some locks or report appends failed during
            ``finalize``; the committed ones stay and ``result`` lists the
            failures.
    """
    core_logic.require_supervisor(actor, "close a month")
    month = parse_month(month)
    try:
        mode = ClosingAction((action or "").strip().lower())
    except ValueError as exc:
        raise core_logic.ValidationError(f"action must be preview or finalize, got {action!r}") from exc

    selected = select_period_transactions(core_logic.all_transactions(context), month)
    rows = build_closing_rows(core_logic.list_items(context), selected, core_logic.list_diff_logs(context))
    result = ClosingResult(month=month, action=mode.value, rows=rows)
    log.info("Closing %s (%s): %d movement(s), %d item(s)", month, mode.value, len(selected), len(rows))

    if mode is ClosingAction.PREVIEW:
        return result

    for transaction in selected:
        try:
            core_logic.transition_status(
                context,
                transaction.id,
                allowed_from=COUNTED_STATUSES,
                to_status=TransactionStatus.LOCKED,
            )
        except core_logic.LedgerError as exc:
            log.error("Failed to lock '%s' while closing %s: %s", transaction.id, month, exc)
            result.failures[transaction.id] = str(exc)
            continue
        result.locked_ids.append(transaction.id)

    created_at = core_logic.utc_now().isoformat()
    for row in rows:
        report = data_manager.SupplierReportRow(
            id=core_logic.generate_record_id(prefix="SR"),
            month=month,
            item_code=row.item_code,
            item_name=row.item_name,
            expected_qty=row.expected_qty,
            actual_qty=row.actual_qty,
            discrepancy=row.diff,
            is_new_item=row.is_new_item,
            reason=row.reason,
            created_at=created_at,
        )
        try:
            core_logic.write_store(
                context,
                data_manager.append_supplier_report,
                report,
                buckets=("supplier_reports",),
            )
        except core_logic.LedgerError as exc:
            log.error("Failed to write supplier report for '%s' (%s): %s", row.item_code, month, exc)
            result.failures[f"report:{row.item_code}"] = str(exc)
            continue
        result.reports.append(report)

    if result.failures:
        raise core_logic.PartialBatchFailure(
            f"Closing {month} finished with {len(result.failures)} failure(s)",
            result,
        )

    log.info("Finalized %s: locked %d movement(s), wrote %d report(s)", month, len(result.locked_ids), len(result.reports))
    return result
