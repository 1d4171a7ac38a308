"""Stock aggregation over the transaction ledger.

:func:`aggregate_stock` is a pure projection: it never touches the workbook
and always yields the same views for the same inputs. The context-aware
helpers below feed it from the runtime caches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from . import core_logic, data_manager, log
from .constants import COUNTED_STATUSES, UNKNOWN_ITEM_NAME, Direction


@dataclass(frozen=True)
class StockView:
    """Point-in-time stock level of one item."""

    item_code: str
    item_name: str
    opening_qty: int
    in_qty: int
    out_qty: int
    closing_qty: int
    is_new: bool
    initial_group: str


@dataclass
class _Accumulator:
    item_code: str
    item_name: str
    opening_qty: int
    is_new: bool
    initial_group: str
    in_qty: int = 0
    out_qty: int = 0

    def freeze(self) -> StockView:
        return StockView(
            item_code=self.item_code,
            item_name=self.item_name,
            opening_qty=self.opening_qty,
            in_qty=self.in_qty,
            out_qty=self.out_qty,
            closing_qty=self.opening_qty + self.in_qty - self.out_qty,
            is_new=self.is_new,
            initial_group=self.initial_group,
        )


def aggregate_stock(
    items: Iterable[data_manager.ItemRow],
    transactions: Iterable[data_manager.TransactionRow],
    baselines: Optional[Mapping[str, int]] = None,
) -> List[StockView]:
    """Fold approved and locked movements into per-item stock views.

    Args:
        items (Iterable[ItemRow]): Catalog entries; each yields a view even
            without movements, in catalog order.
        transactions (Iterable[TransactionRow]): Ledger rows. Only ``approved``
            and ``locked`` rows count; movements for codes outside the catalog
            create a view named ``unknown`` after the catalog views, in
            encounter order.
        baselines (Mapping[str, int] | None): Opening quantities by item code,
            typically from the initial stock import. Missing codes open at 0.

    Returns:
        list[StockView]: One view per item with
            ``closing_qty = opening_qty + in_qty - out_qty``.
    """
    baselines = baselines or {}
    views: Dict[str, _Accumulator] = {}

    for item in items:
        if item.item_code in views:
            continue
        views[item.item_code] = _Accumulator(
            item_code=item.item_code,
            item_name=item.item_name,
            opening_qty=baselines.get(item.item_code, 0),
            is_new=item.new_flag,
            initial_group=item.initial_group or core_logic.item_group(item.item_name),
        )

    for transaction in transactions:
        if transaction.status not in COUNTED_STATUSES:
            continue
        if not transaction.item_code:
            continue
        view = views.get(transaction.item_code)
        if view is None:
            view = _Accumulator(
                item_code=transaction.item_code,
                item_name=UNKNOWN_ITEM_NAME,
                opening_qty=baselines.get(transaction.item_code, 0),
                is_new=False,
                initial_group=core_logic.item_group(transaction.item_name),
            )
            views[transaction.item_code] = view
        if transaction.direction == Direction.IN.value:
            view.in_qty += transaction.quantity
        elif transaction.direction == Direction.OUT.value:
            view.out_qty += transaction.quantity

    return [view.freeze() for view in views.values()]


def load_baselines(context: core_logic.RuntimeContext) -> Dict[str, int]:
    """Return imported opening quantities keyed by item code."""
    return {row.item_code: row.opening_qty for row in core_logic.list_stock_ledger(context)}


def compute_stock(context: core_logic.RuntimeContext) -> List[StockView]:
    """Aggregate the current workbook state into stock views."""
    return aggregate_stock(
        core_logic.list_items(context),
        core_logic.all_transactions(context),
        load_baselines(context),
    )


def stock_view(context: core_logic.RuntimeContext, item_code: Optional[str] = None) -> List[StockView]:
    """Return stock views, optionally restricted to one item.

    Filtering by a code with no catalog entry and no counted movement yields
    a single zeroed view for that code rather than an empty list.
    """
    views = compute_stock(context)
    code = (item_code or "").strip()
    if not code:
        return views

    matches = [view for view in views if view.item_code == code]
    if matches:
        return matches

    log.debug("No stock view for '%s'; returning zeroed row", code)
    return [
        StockView(
            item_code=code,
            item_name="",
            opening_qty=0,
            in_qty=0,
            out_qty=0,
            closing_qty=0,
            is_new=False,
            initial_group="",
        )
    ]


def closing_quantity(context: core_logic.RuntimeContext, item_code: str) -> int:
    """Return the current computed closing quantity of ``item_code``."""
    return stock_view(context, item_code)[0].closing_qty
