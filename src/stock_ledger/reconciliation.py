"""Physical count sessions and discrepancy tracking.

A count compares what is on the shelf with the computed closing quantity.
Every counted item gets a ``PhysicalCount`` row; items whose count differs
also get a ``pending`` ``DiffLog`` row. The ledger itself is never corrected
here.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, List, Mapping, Optional, Sequence, Union

from . import aggregation, core_logic, data_manager, log
from .constants import CountStatus, DiffStatus


@dataclass(frozen=True)
class CountEntry:
    """Counted quantity of one item."""

    item_code: str
    actual_qty: Union[int, str]


@dataclass
class CountSessionResult:
    """Rows written by one count session."""

    counts: List[data_manager.PhysicalCountRow] = field(default_factory=list)
    diffs: List[data_manager.DiffLogRow] = field(default_factory=list)


def _coerce_entry(raw: Union[CountEntry, Mapping[str, Any]]) -> tuple[str, int]:
    if isinstance(raw, CountEntry):
        code, actual = raw.item_code, raw.actual_qty
    else:
        code, actual = raw.get("item_code"), raw.get("actual_qty")
    code = str(code or "").strip()
    if not code:
        raise core_logic.ValidationError("Each count needs an item_code")
    quantity = core_logic.parse_whole_number(actual, field_name="actual_qty")
    if quantity < 0:
        raise core_logic.ValidationError(f"actual_qty for {code} must not be negative")
    return code, quantity


def record_physical_count(
    context: core_logic.RuntimeContext,
    *,
    date: str,
    location: str,
    counts: Sequence[Union[CountEntry, Mapping[str, Any]]],
    actor: data_manager.UserRow,
) -> CountSessionResult:
    """Persist a count session and log every discrepancy.

    All entries are validated before anything is written. The expected
    quantity of each item is its aggregated closing quantity at the time of
    the call; ``difference = actual - expected``.

    Args:
        context (RuntimeContext): Runtime context.
        date (str): Count date (``YYYY-MM-DD``).
        location (str): Where the count took place.
        counts (Sequence[CountEntry | Mapping]): ``item_code``/``actual_qty``
            pairs.
        actor (UserRow): Manager or admin running the count.

    Returns:
        CountSessionResult: The appended count rows and diff rows.

    Raises:
        PermissionDeniedError: If ``actor`` is a worker.
        ValidationError: On a missing date, location, or counts, or an
            invalid entry.
    """
    core_logic.require_supervisor(actor, "record physical counts")
    if not (date or "").strip():
        raise core_logic.ValidationError("date is required")
    if not (location or "").strip():
        raise core_logic.ValidationError("location is required")
    if not counts:
        raise core_logic.ValidationError("counts must not be empty")

    count_date = core_logic.normalize_date(date)
    location = location.strip()
    entries = [_coerce_entry(raw) for raw in counts]
    views = {view.item_code: view for view in aggregation.compute_stock(context)}

    result = CountSessionResult()
    for item_code, actual_qty in entries:
        view = views.get(item_code)
        expected_qty = view.closing_qty if view is not None else 0
        known = core_logic.find_item(context, item_code)
        item_name = known.item_name if known is not None else (view.item_name if view is not None else "")
        difference = actual_qty - expected_qty

        count_row = data_manager.PhysicalCountRow(
            id=core_logic.generate_record_id(prefix="PC"),
            date=count_date,
            item_code=item_code,
            item_name=item_name,
            expected_qty=expected_qty,
            actual_qty=actual_qty,
            difference=difference,
            actor_id=actor.user_id,
            actor_name=actor.name,
            location=location,
            status=CountStatus.DRAFT.value,
        )
        core_logic.write_store(context, data_manager.append_physical_count, count_row, buckets=("physical_counts",))
        result.counts.append(count_row)

        if difference != 0:
            diff_row = data_manager.DiffLogRow(
                id=core_logic.generate_record_id(prefix="D"),
                physical_count_id=count_row.id,
                date=count_date,
                item_code=item_code,
                item_name=item_name,
                expected_qty=expected_qty,
                actual_qty=actual_qty,
                diff=difference,
                reason="",
                status=DiffStatus.PENDING.value,
            )
            core_logic.write_store(context, data_manager.append_diff_log, diff_row, buckets=("diff_logs",))
            result.diffs.append(diff_row)
            log.warning(
                "Count mismatch for '%s' at %s: expected %s, counted %s",
                item_code,
                location,
                expected_qty,
                actual_qty,
            )

    log.info(
        "Recorded count session at %s: %d item(s), %d discrepancy(ies)",
        location,
        len(result.counts),
        len(result.diffs),
    )
    return result


def _find(rows: Sequence[Any], record_id: str, label: str) -> Any:
    for row in rows:
        if row.id == record_id:
            return row
    raise core_logic.NotFoundError(f"Unknown {label} id: {record_id}")


def confirm_physical_count(
    context: core_logic.RuntimeContext,
    count_id: str,
    actor: data_manager.UserRow,
) -> data_manager.PhysicalCountRow:
    """Mark a draft count row as confirmed; confirmed rows are returned as is."""
    core_logic.require_supervisor(actor, "confirm physical counts")
    row = _find(core_logic.list_physical_counts(context), count_id, "physical count")
    if row.status == CountStatus.CONFIRMED.value:
        log.debug("Physical count '%s' already confirmed", count_id)
        return row

    core_logic.write_store(
        context,
        data_manager.update_physical_count,
        count_id,
        field_values={"status": CountStatus.CONFIRMED.value},
        buckets=("physical_counts",),
    )
    log.info("Confirmed physical count '%s'", count_id)
    return replace(row, status=CountStatus.CONFIRMED.value)


def annotate_diff(
    context: core_logic.RuntimeContext,
    diff_id: str,
    reason: str,
    actor: data_manager.UserRow,
) -> data_manager.DiffLogRow:
    """Record why a discrepancy happened and mark the diff ``approved``.

    Annotating an approved diff again replaces its reason.

    Raises:
        ValidationError: If ``reason`` is blank.
        NotFoundError: If the diff does not exist.
    """
    core_logic.require_supervisor(actor, "annotate discrepancies")
    trimmed = (reason or "").strip()
    if not trimmed:
        raise core_logic.ValidationError("reason is required")
    row = _find(core_logic.list_diff_logs(context), diff_id, "diff")

    core_logic.write_store(
        context,
        data_manager.update_diff_log,
        diff_id,
        field_values={"reason": trimmed, "status": DiffStatus.APPROVED.value},
        buckets=("diff_logs",),
    )
    log.info("Annotated diff '%s'", diff_id)
    return replace(row, reason=trimmed, status=DiffStatus.APPROVED.value)


def list_diffs(context: core_logic.RuntimeContext, status: Optional[str] = None) -> List[data_manager.DiffLogRow]:
    """Return diff rows, optionally filtered by status."""
    return [row for row in core_logic.list_diff_logs(context) if status is None or row.status == status]
