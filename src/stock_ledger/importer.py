"""One-shot loader for opening stock levels.

The source is a manufacturer report with the columns ``quantity, code,
name``, supplied either as CSV text or as already-parsed item mappings. Each
row sets the ``opening_qty`` baseline in the ``StockLedger`` sheet and makes
sure the item exists in the catalog.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from . import aggregation, core_logic, data_manager, log


@dataclass(frozen=True)
class StockLine:
    """Opening quantity of one item."""

    item_code: str
    item_name: str
    quantity: int


@dataclass(frozen=True)
class ImportResult:
    updated: int
    appended: int


def _parse_quantity(raw: Any) -> Optional[int]:
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        return None
    if not value.is_finite() or value != value.to_integral_value():
        return None
    return int(value)


def parse_stock_csv(text: str) -> List[StockLine]:
    """Parse ``quantity, code, name`` CSV text.

    Rows whose first column is not a finite whole number (header lines
    included) are skipped, as are rows without a code. Quoted fields follow
    the usual CSV rules.
    """
    lines = []
    for columns in csv.reader(io.StringIO((text or "").strip())):
        if not columns or not any(cell.strip() for cell in columns):
            continue
        quantity = _parse_quantity(columns[0])
        if quantity is None:
            log.debug("Skipping import row without a numeric quantity: %s", columns)
            continue
        code = columns[1].strip() if len(columns) > 1 else ""
        if not code:
            log.debug("Skipping import row without a code: %s", columns)
            continue
        name = columns[2].strip() if len(columns) > 2 else ""
        lines.append(StockLine(item_code=code, item_name=name, quantity=quantity))
    return lines


def coerce_items(items: Iterable[Mapping[str, Any]]) -> List[StockLine]:
    """Convert item mappings (``item_code``, ``item_name``, ``quantity``) to lines.

    ``qty`` is accepted as an alias for ``quantity``. Invalid rows are skipped
    with the same rules as :func:`parse_stock_csv`.
    """
    lines = []
    for raw in items:
        quantity = _parse_quantity(raw.get("quantity", raw.get("qty")))
        code = str(raw.get("item_code") or "").strip()
        if quantity is None or not code:
            continue
        lines.append(StockLine(item_code=code, item_name=str(raw.get("item_name") or "").strip(), quantity=quantity))
    return lines


def import_initial_stock(
    context: core_logic.RuntimeContext,
    actor: data_manager.UserRow,
    *,
    csv_text: Optional[str] = None,
    items: Optional[Sequence[Mapping[str, Any]]] = None,
) -> ImportResult:
    """Seed opening stock from CSV text or item mappings.

    Existing ``StockLedger`` rows get the new ``opening_qty`` with their
    closing quantity recomputed; unknown codes get a new row. Codes missing
    from the catalog are added with ``new_flag`` cleared. Re-running with
    different data overwrites the baselines.

    Args:
        context (RuntimeContext): Runtime context.
        actor (UserRow): Manager or admin running the import.
        csv_text (str | None): Report as CSV text; takes precedence.
        items (Sequence[Mapping] | None): Pre-parsed rows.

    Returns:
        ImportResult: Counts of updated and appended ``StockLedger`` rows.

    Raises:
        PermissionDeniedError: If ``actor`` is a worker.
        ValidationError: If neither source is given or no row survives
            validation.
    """
    core_logic.require_supervisor(actor, "import opening stock")
    if csv_text is not None:
        lines = parse_stock_csv(csv_text)
    elif items is not None:
        lines = coerce_items(items)
    else:
        raise core_logic.ValidationError("Either CSV text or items are required")

    if not lines:
        log.error("Initial stock import found no usable rows")
        raise core_logic.ValidationError("No importable rows found; check the CSV layout")

    for line in lines:
        if core_logic.find_item(context, line.item_code) is None:
            core_logic.add_item(
                context,
                item_code=line.item_code,
                item_name=line.item_name or line.item_code,
                new_flag=False,
            )

    views = {view.item_code: view for view in aggregation.compute_stock(context)}
    updated = appended = 0
    stamp = core_logic.utc_now().isoformat()
    for line in lines:
        view = views[line.item_code]
        item = core_logic.get_item(context, line.item_code)
        row = data_manager.StockLedgerRow(
            item_code=line.item_code,
            item_name=line.item_name or item.item_name,
            opening_qty=line.quantity,
            in_qty=view.in_qty,
            out_qty=view.out_qty,
            closing_qty=line.quantity + view.in_qty - view.out_qty,
            new_flag=item.new_flag,
            initial_group=item.initial_group or core_logic.item_group(item.item_name),
            updated_at=stamp,
        )
        if core_logic.write_store(context, data_manager.upsert_stock_ledger, row, buckets=("stock_ledger",)):
            updated += 1
        else:
            appended += 1

    log.info("Imported opening stock: %d updated, %d appended", updated, appended)
    return ImportResult(updated=updated, appended=appended)
