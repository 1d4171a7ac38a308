"""Enumerations shared across the stock ledger modules.

Centralises domain constants so that the data access layer (DAL), the
workflow modules, and the CLI rely on a single source of truth for sheet
names, lifecycle states, and the other identifiers written to the workbook.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Warning code handed back when an approval landed but the stock ledger
# sheet could not be refreshed.
STOCK_LEDGER_SYNC_FAILED = "stockLedgerSyncFailed"

UNKNOWN_ITEM_NAME = "unknown"


class Direction(str, Enum):
    """Enumerate the two movement directions recorded in the ledger."""

    IN = "IN"
    OUT = "OUT"

    @property
    def label(self) -> str:
        return "Inbound" if self is Direction.IN else "Outbound"


class TransactionStatus(str, Enum):
    """Enumerate the lifecycle states of a movement record."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    RETURNED = "returned"
    LOCKED = "locked"


# Statuses whose movements count towards stock levels.
COUNTED_STATUSES = frozenset({TransactionStatus.APPROVED.value, TransactionStatus.LOCKED.value})

# Statuses the creator may no longer edit.
FROZEN_STATUSES = frozenset({TransactionStatus.APPROVED.value, TransactionStatus.LOCKED.value})


class Role(str, Enum):
    """Enumerate the user roles known to the workflow."""

    WORKER = "worker"
    MANAGER = "manager"
    ADMIN = "admin"


SUPERVISOR_ROLES = frozenset({Role.MANAGER.value, Role.ADMIN.value})


class CountStatus(str, Enum):
    """Enumerate the states of a physical count row."""

    DRAFT = "draft"
    CONFIRMED = "confirmed"


class DiffStatus(str, Enum):
    """Enumerate the states of a diff log row."""

    PENDING = "pending"
    APPROVED = "approved"


class ClosingAction(str, Enum):
    """Enumerate the monthly closing modes."""

    PREVIEW = "preview"
    FINALIZE = "finalize"


# Product family codes recognised in item names, checked in this order.
GROUP_CODES: tuple[str, ...] = ("SAD", "BU", "CA", "FR", "EG", "CF", "MA")
OTHER_GROUP = "OTHER"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    USERS = "Users"
    ITEMS = "Items"
    TRANSACTIONS = "Transactions"
    STOCK_LEDGER = "StockLedger"
    PHYSICAL_COUNT = "PhysicalCount"
    DIFF_LOG = "DiffLog"
    SUPPLIER_REPORTS = "SupplierReports"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "STOCK_LEDGER_SYNC_FAILED",
    "UNKNOWN_ITEM_NAME",
    "Direction",
    "TransactionStatus",
    "COUNTED_STATUSES",
    "FROZEN_STATUSES",
    "Role",
    "SUPERVISOR_ROLES",
    "CountStatus",
    "DiffStatus",
    "ClosingAction",
    "GROUP_CODES",
    "OTHER_GROUP",
    "SheetName",
]
