"""Data access layer for the stock ledger.

This module provides low-level helpers that read from and write to the
``stock_ledger.xlsx`` workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating, or
   deleting individual rows. Every sheet operation resolves columns through
   the header row, so the workbook may order its columns freely.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import SheetName


CONFIG_FILE_NAME = "config.ini"
USERS_SHEET = SheetName.USERS.value
ITEMS_SHEET = SheetName.ITEMS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
STOCK_LEDGER_SHEET = SheetName.STOCK_LEDGER.value
PHYSICAL_COUNT_SHEET = SheetName.PHYSICAL_COUNT.value
DIFF_LOG_SHEET = SheetName.DIFF_LOG.value
SUPPLIER_REPORTS_SHEET = SheetName.SUPPLIER_REPORTS.value

# Canonical header rows used when bootstrapping a workbook. Readers never rely
# on this ordering; they look columns up by name.
SHEET_COLUMNS: Mapping[str, tuple[str, ...]] = {
    USERS_SHEET: ("user_id", "login_id", "role", "name", "area", "active"),
    ITEMS_SHEET: (
        "item_code",
        "item_name",
        "category",
        "unit",
        "created_at",
        "new_flag",
        "initial_group",
    ),
    TRANSACTIONS_SHEET: (
        "id",
        "date",
        "item_code",
        "item_name",
        "direction",
        "quantity",
        "reason",
        "actor_id",
        "actor_name",
        "area",
        "status",
        "approved_by",
        "approved_at",
        "return_comment",
    ),
    STOCK_LEDGER_SHEET: (
        "item_code",
        "item_name",
        "opening_qty",
        "in_qty",
        "out_qty",
        "closing_qty",
        "new_flag",
        "initial_group",
        "updated_at",
    ),
    PHYSICAL_COUNT_SHEET: (
        "id",
        "date",
        "item_code",
        "item_name",
        "expected_qty",
        "actual_qty",
        "difference",
        "actor_id",
        "actor_name",
        "location",
        "status",
    ),
    DIFF_LOG_SHEET: (
        "id",
        "physical_count_id",
        "date",
        "item_code",
        "item_name",
        "expected_qty",
        "actual_qty",
        "diff",
        "reason",
        "status",
    ),
    SUPPLIER_REPORTS_SHEET: (
        "id",
        "month",
        "item_code",
        "item_name",
        "expected_qty",
        "actual_qty",
        "discrepancy",
        "is_new_item",
        "reason",
        "created_at",
    ),
}


class RowConflictError(RuntimeError):
    """Raised when a guarded update finds the row changed underneath it."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    site_name: str
    schema_version: str
    default_unit: str


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: str
    login_id: str
    role: str
    name: str
    area: str
    active: bool


@dataclass(frozen=True)
class ItemRow:
    """In-memory view of a row from the ``Items`` sheet."""

    item_code: str
    item_name: str
    category: str
    unit: str
    created_at: str
    new_flag: bool
    initial_group: str


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``Transactions`` sheet."""

    id: str
    date: str
    item_code: str
    item_name: str
    direction: str
    quantity: int
    reason: str
    actor_id: str
    actor_name: str
    area: str
    status: str
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    return_comment: Optional[str] = None


@dataclass(frozen=True)
class StockLedgerRow:
    """In-memory view of a row from the ``StockLedger`` sheet."""

    item_code: str
    item_name: str
    opening_qty: int
    in_qty: int
    out_qty: int
    closing_qty: int
    new_flag: bool
    initial_group: str
    updated_at: str


@dataclass(frozen=True)
class PhysicalCountRow:
    """In-memory view of a row from the ``PhysicalCount`` sheet."""

    id: str
    date: str
    item_code: str
    item_name: str
    expected_qty: int
    actual_qty: int
    difference: int
    actor_id: str
    actor_name: str
    location: str
    status: str


@dataclass(frozen=True)
class DiffLogRow:
    """In-memory view of a row from the ``DiffLog`` sheet."""

    id: str
    physical_count_id: str
    date: str
    item_code: str
    item_name: str
    expected_qty: int
    actual_qty: int
    diff: int
    reason: str
    status: str


@dataclass(frozen=True)
class SupplierReportRow:
    """In-memory view of a row from the ``SupplierReports`` sheet."""

    id: str
    month: str
    item_code: str
    item_name: str
    expected_qty: int
    actual_qty: int
    discrepancy: int
    is_new_item: bool
    reason: str
    created_at: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded before the existence check.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Required entries are validated later by
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.
    ``DefaultUnit`` is optional and falls back to ``pcs``.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        site_name = parser.get("System", "SiteName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    default_unit = parser.get("Defaults", "DefaultUnit", fallback="pcs")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        site_name=site_name,
        schema_version=schema_version,
        default_unit=default_unit,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


# ---------------------------------------------------------------------------
# Generic header-indexed table primitives
# ---------------------------------------------------------------------------


def get_sheet(workbook: Workbook, sheet_name: str) -> Worksheet:
    """Return the worksheet called ``sheet_name``.

    Raises:
        KeyError: If the workbook has no such sheet.
    """

    if sheet_name not in workbook.sheetnames:
        raise KeyError(f"Missing sheet: {sheet_name}")
    return workbook[sheet_name]


def header_map(sheet: Worksheet) -> Dict[str, int]:
    """Map each header title on row 1 to its 1-based column index."""

    return {
        str(cell.value).strip(): idx + 1
        for idx, cell in enumerate(sheet[1])
        if cell.value is not None and str(cell.value).strip()
    }


def read_all(workbook: Workbook, sheet_name: str) -> List[Dict[str, Any]]:
    """Read every populated data row of a sheet as a header-keyed mapping.

    The header row is skipped, as are rows whose cells are all empty. Columns
    without a header title are ignored.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Worksheet to read.

    Returns:
        list[dict[str, Any]]: One dictionary per populated row, in sheet order.

    Raises:
        KeyError: If the sheet does not exist.
    """

    sheet = get_sheet(workbook, sheet_name)
    columns = header_map(sheet)
    records: List[Dict[str, Any]] = []
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if not any(cell is not None and cell != "" for cell in raw):
            continue
        records.append({
            name: (raw[index - 1] if index - 1 < len(raw) else None)
            for name, index in columns.items()
        })
    return records


def append_row(workbook: Workbook, sheet_name: str, values: Mapping[str, Any]) -> None:
    """Append a record to ``sheet_name`` following that sheet's header order.

    Header columns absent from ``values`` are left blank.

    Args:
        workbook (Workbook): Workbook whose sheet should be modified.
        sheet_name (str): Target worksheet.
        values (Mapping[str, Any]): Column name to cell value mapping.

    Raises:
        KeyError: If the sheet is missing or ``values`` names a column the
            sheet does not have.
    """

    sheet = get_sheet(workbook, sheet_name)
    columns = header_map(sheet)
    unknown = [name for name in values if name not in columns]
    if unknown:
        raise KeyError(f"Unknown {sheet_name} field(s): {', '.join(unknown)}")

    width = max(columns.values(), default=0)
    row: List[Any] = [None] * width
    for name, value in values.items():
        row[columns[name] - 1] = value
    sheet.append(row)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Cell values are compared as text so that keys Excel turned into numbers
    still match their string form.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If the sheet or ``key_column`` is missing.
    """

    sheet = get_sheet(workbook, sheet_name)
    columns = header_map(sheet)
    if key_column not in columns:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = columns[key_column]
    wanted = str(key_value)
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1] if key_col_index - 1 < len(row) else None
        if cell_value is not None and str(cell_value) == wanted:
            return row_idx

    return None


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    field_values: Mapping[str, Any],
    expected: Optional[Mapping[str, Any]] = None,
) -> None:
    """Update selected columns of the row whose ``key_column`` equals ``key_value``.

    When ``expected`` is given, each named column must currently hold the
    expected value (compared as case-insensitive text, blanks as ``""``) or
    the write is refused, matching how the readers normalise statuses.
    This is the compare-on-write guard used by status transitions.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): Target worksheet.
        key_column (str): Header title of the lookup column.
        key_value (str): Identifier used to locate the target row.
        field_values (Mapping[str, Any]): Column names mapped to replacement
            values. Other columns are left untouched.
        expected (Mapping[str, Any] | None): Optional current values that must
            match before any cell is written.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
        RowConflictError: If ``expected`` does not match the stored row.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    sheet = get_sheet(workbook, sheet_name)
    columns = header_map(sheet)

    for field in (*field_values, *(expected or {})):
        if field not in columns:
            raise KeyError(f"Unknown {sheet_name} field: {field}")

    for field, value in (expected or {}).items():
        current = sheet.cell(row=row_index, column=columns[field]).value
        if _to_text(current).casefold() != _to_text(value).casefold():
            raise RowConflictError(
                f"{sheet_name} row {key_value} has {field}={current!r}, expected {value!r}"
            )

    for field, value in field_values.items():
        sheet.cell(row=row_index, column=columns[field], value=value)


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    """Remove the row whose ``key_column`` equals ``key_value``.

    Raises:
        KeyError: If the sheet, column, or row cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    get_sheet(workbook, sheet_name).delete_rows(row_index)
    log.debug("Deleted %s row %d (%s=%s)", sheet_name, row_index, key_column, key_value)


def require_columns(workbook: Workbook, sheet_name: str, columns: Iterable[str]) -> None:
    """Ensure ``sheet_name`` carries every header in ``columns``.

    Raises:
        KeyError: If the sheet or any column is missing.
    """

    present = header_map(get_sheet(workbook, sheet_name))
    missing = [name for name in columns if name not in present]
    if missing:
        raise KeyError(f"{sheet_name} is missing column(s): {', '.join(missing)}")


# ---------------------------------------------------------------------------
# Cell coercion helpers
# ---------------------------------------------------------------------------


def _to_text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bool):
        return "TRUE" if raw else "FALSE"
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw).strip()


def _to_optional_text(raw: Any) -> Optional[str]:
    text = _to_text(raw)
    return text or None


def _to_date_text(raw: Any) -> str:
    # Excel may hand back real dates for cells a user typed by hand.
    if isinstance(raw, (datetime, date)):
        return raw.strftime("%Y-%m-%d")
    return _to_text(raw)


def _to_int(raw: Any) -> int:
    if raw is None or raw == "":
        return 0
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        return 0
    if not value.is_finite():
        return 0
    return int(value)


def _to_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().upper() in {"TRUE", "1", "YES"}
    return bool(raw)


# ---------------------------------------------------------------------------
# Typed readers
# ---------------------------------------------------------------------------


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Yield :class:`UserRow` records from the ``Users`` sheet."""

    for record in read_all(workbook, USERS_SHEET):
        yield deserialize_user(record)


def iter_items(workbook: Workbook) -> Iterable[ItemRow]:
    """Yield :class:`ItemRow` records from the ``Items`` sheet."""

    for record in read_all(workbook, ITEMS_SHEET):
        yield deserialize_item(record)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream movement records from the ``Transactions`` sheet.

    Quantities become ``int`` (unparseable cells read as ``0``), optional
    approval fields stay ``None`` when blank, and dates typed into Excel as
    real dates are normalised to ``YYYY-MM-DD`` text.

    Args:
        workbook (Workbook): Workbook containing the transactions sheet.

    Yields:
        TransactionRow: Normalized movement record for each populated row.
    """

    for record in read_all(workbook, TRANSACTIONS_SHEET):
        yield deserialize_transaction(record)


def iter_stock_ledger(workbook: Workbook) -> Iterable[StockLedgerRow]:
    """Yield :class:`StockLedgerRow` records from the ``StockLedger`` sheet."""

    for record in read_all(workbook, STOCK_LEDGER_SHEET):
        yield deserialize_stock_ledger(record)


def iter_physical_counts(workbook: Workbook) -> Iterable[PhysicalCountRow]:
    """Yield :class:`PhysicalCountRow` records from the ``PhysicalCount`` sheet."""

    for record in read_all(workbook, PHYSICAL_COUNT_SHEET):
        yield deserialize_physical_count(record)


def iter_diff_logs(workbook: Workbook) -> Iterable[DiffLogRow]:
    """Yield :class:`DiffLogRow` records from the ``DiffLog`` sheet."""

    for record in read_all(workbook, DIFF_LOG_SHEET):
        yield deserialize_diff_log(record)


def iter_supplier_reports(workbook: Workbook) -> Iterable[SupplierReportRow]:
    """Yield :class:`SupplierReportRow` records from the ``SupplierReports`` sheet."""

    for record in read_all(workbook, SUPPLIER_REPORTS_SHEET):
        yield deserialize_supplier_report(record)


# ---------------------------------------------------------------------------
# Typed writers
# ---------------------------------------------------------------------------


def append_user(workbook: Workbook, record: UserRow) -> None:
    """Append a user record to the ``Users`` worksheet."""

    append_row(workbook, USERS_SHEET, serialize_user(record))


def append_item(workbook: Workbook, record: ItemRow) -> None:
    """Append an item record to the ``Items`` worksheet."""

    append_row(workbook, ITEMS_SHEET, serialize_item(record))


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a movement record to the ``Transactions`` worksheet."""

    append_row(workbook, TRANSACTIONS_SHEET, serialize_transaction(record))


def append_stock_ledger(workbook: Workbook, record: StockLedgerRow) -> None:
    """Append a stock ledger row to the ``StockLedger`` worksheet."""

    append_row(workbook, STOCK_LEDGER_SHEET, serialize_stock_ledger(record))


def append_physical_count(workbook: Workbook, record: PhysicalCountRow) -> None:
    """Append a count row to the ``PhysicalCount`` worksheet."""

    append_row(workbook, PHYSICAL_COUNT_SHEET, serialize_physical_count(record))


def append_diff_log(workbook: Workbook, record: DiffLogRow) -> None:
    """Append a discrepancy row to the ``DiffLog`` worksheet."""

    append_row(workbook, DIFF_LOG_SHEET, serialize_diff_log(record))


def append_supplier_report(workbook: Workbook, record: SupplierReportRow) -> None:
    """Append a report snapshot to the ``SupplierReports`` worksheet."""

    append_row(workbook, SUPPLIER_REPORTS_SHEET, serialize_supplier_report(record))


def update_transaction(
    workbook: Workbook,
    transaction_id: str,
    *,
    field_values: Mapping[str, Any],
    expected: Optional[Mapping[str, Any]] = None,
) -> None:
    """Update selected columns of the movement identified by ``transaction_id``.

    Raises:
        KeyError: If the movement or any referenced column cannot be found.
        RowConflictError: If ``expected`` does not match the stored row.
    """

    update_row(
        workbook,
        TRANSACTIONS_SHEET,
        "id",
        transaction_id,
        field_values=field_values,
        expected=expected,
    )


def delete_transaction(workbook: Workbook, transaction_id: str) -> None:
    """Remove the movement identified by ``transaction_id``."""

    delete_row(workbook, TRANSACTIONS_SHEET, "id", transaction_id)


def upsert_stock_ledger(workbook: Workbook, record: StockLedgerRow) -> bool:
    """Replace the ``StockLedger`` row for ``record.item_code`` or append one.

    Returns:
        bool: ``True`` when an existing row was updated, ``False`` when a new
            row was appended.
    """

    if locate_row(workbook, STOCK_LEDGER_SHEET, "item_code", record.item_code) is None:
        append_stock_ledger(workbook, record)
        log.debug("Appended StockLedger row for %s", record.item_code)
        return False

    values = serialize_stock_ledger(record)
    values.pop("item_code")
    update_row(
        workbook,
        STOCK_LEDGER_SHEET,
        "item_code",
        record.item_code,
        field_values=values,
    )
    return True


def update_physical_count(workbook: Workbook, count_id: str, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns of a ``PhysicalCount`` row."""

    update_row(workbook, PHYSICAL_COUNT_SHEET, "id", count_id, field_values=field_values)


def update_diff_log(workbook: Workbook, diff_id: str, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns of a ``DiffLog`` row."""

    update_row(workbook, DIFF_LOG_SHEET, "id", diff_id, field_values=field_values)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_user(record: UserRow) -> Dict[str, Any]:
    return {
        "user_id": record.user_id,
        "login_id": record.login_id,
        "role": record.role,
        "name": record.name,
        "area": record.area,
        "active": record.active,
    }


def serialize_item(record: ItemRow) -> Dict[str, Any]:
    return {
        "item_code": record.item_code,
        "item_name": record.item_name,
        "category": record.category,
        "unit": record.unit,
        "created_at": record.created_at,
        "new_flag": record.new_flag,
        "initial_group": record.initial_group,
    }


def serialize_transaction(record: TransactionRow) -> Dict[str, Any]:
    """Convert a movement dataclass into a header-keyed row mapping.

    Optional approval fields are written as blanks rather than ``None`` so the
    sheet never shows the literal text ``None``.
    """

    return {
        "id": record.id,
        "date": record.date,
        "item_code": record.item_code,
        "item_name": record.item_name,
        "direction": record.direction,
        "quantity": record.quantity,
        "reason": record.reason,
        "actor_id": record.actor_id,
        "actor_name": record.actor_name,
        "area": record.area,
        "status": record.status,
        "approved_by": record.approved_by or "",
        "approved_at": record.approved_at or "",
        "return_comment": record.return_comment or "",
    }


def serialize_stock_ledger(record: StockLedgerRow) -> Dict[str, Any]:
    return {
        "item_code": record.item_code,
        "item_name": record.item_name,
        "opening_qty": record.opening_qty,
        "in_qty": record.in_qty,
        "out_qty": record.out_qty,
        "closing_qty": record.closing_qty,
        "new_flag": record.new_flag,
        "initial_group": record.initial_group,
        "updated_at": record.updated_at,
    }


def serialize_physical_count(record: PhysicalCountRow) -> Dict[str, Any]:
    return {
        "id": record.id,
        "date": record.date,
        "item_code": record.item_code,
        "item_name": record.item_name,
        "expected_qty": record.expected_qty,
        "actual_qty": record.actual_qty,
        "difference": record.difference,
        "actor_id": record.actor_id,
        "actor_name": record.actor_name,
        "location": record.location,
        "status": record.status,
    }


def serialize_diff_log(record: DiffLogRow) -> Dict[str, Any]:
    return {
        "id": record.id,
        "physical_count_id": record.physical_count_id,
        "date": record.date,
        "item_code": record.item_code,
        "item_name": record.item_name,
        "expected_qty": record.expected_qty,
        "actual_qty": record.actual_qty,
        "diff": record.diff,
        "reason": record.reason,
        "status": record.status,
    }


def serialize_supplier_report(record: SupplierReportRow) -> Dict[str, Any]:
    return {
        "id": record.id,
        "month": record.month,
        "item_code": record.item_code,
        "item_name": record.item_name,
        "expected_qty": record.expected_qty,
        "actual_qty": record.actual_qty,
        "discrepancy": record.discrepancy,
        "is_new_item": record.is_new_item,
        "reason": record.reason,
        "created_at": record.created_at,
    }


def deserialize_user(record: Mapping[str, Any]) -> UserRow:
    return UserRow(
        user_id=_to_text(record.get("user_id")),
        login_id=_to_text(record.get("login_id")),
        role=_to_text(record.get("role")).lower(),
        name=_to_text(record.get("name")),
        area=_to_text(record.get("area")),
        active=_to_bool(record.get("active")),
    )


def deserialize_item(record: Mapping[str, Any]) -> ItemRow:
    return ItemRow(
        item_code=_to_text(record.get("item_code")),
        item_name=_to_text(record.get("item_name")),
        category=_to_text(record.get("category")),
        unit=_to_text(record.get("unit")),
        created_at=_to_text(record.get("created_at")),
        new_flag=_to_bool(record.get("new_flag")),
        initial_group=_to_text(record.get("initial_group")),
    )


def deserialize_transaction(record: Mapping[str, Any]) -> TransactionRow:
    """Convert a header-keyed sheet row into a :class:`TransactionRow`.

    Directions are upper-cased and statuses lower-cased so hand edits such as
    ``in`` or ``Approved`` still participate in aggregation.
    """

    return TransactionRow(
        id=_to_text(record.get("id")),
        date=_to_date_text(record.get("date")),
        item_code=_to_text(record.get("item_code")),
        item_name=_to_text(record.get("item_name")),
        direction=_to_text(record.get("direction")).upper(),
        quantity=_to_int(record.get("quantity")),
        reason=_to_text(record.get("reason")),
        actor_id=_to_text(record.get("actor_id")),
        actor_name=_to_text(record.get("actor_name")),
        area=_to_text(record.get("area")),
        status=_to_text(record.get("status")).lower(),
        approved_by=_to_optional_text(record.get("approved_by")),
        approved_at=_to_optional_text(record.get("approved_at")),
        return_comment=_to_optional_text(record.get("return_comment")),
    )


def deserialize_stock_ledger(record: Mapping[str, Any]) -> StockLedgerRow:
    return StockLedgerRow(
        item_code=_to_text(record.get("item_code")),
        item_name=_to_text(record.get("item_name")),
        opening_qty=_to_int(record.get("opening_qty")),
        in_qty=_to_int(record.get("in_qty")),
        out_qty=_to_int(record.get("out_qty")),
        closing_qty=_to_int(record.get("closing_qty")),
        new_flag=_to_bool(record.get("new_flag")),
        initial_group=_to_text(record.get("initial_group")),
        updated_at=_to_text(record.get("updated_at")),
    )


def deserialize_physical_count(record: Mapping[str, Any]) -> PhysicalCountRow:
    return PhysicalCountRow(
        id=_to_text(record.get("id")),
        date=_to_date_text(record.get("date")),
        item_code=_to_text(record.get("item_code")),
        item_name=_to_text(record.get("item_name")),
        expected_qty=_to_int(record.get("expected_qty")),
        actual_qty=_to_int(record.get("actual_qty")),
        difference=_to_int(record.get("difference")),
        actor_id=_to_text(record.get("actor_id")),
        actor_name=_to_text(record.get("actor_name")),
        location=_to_text(record.get("location")),
        status=_to_text(record.get("status")).lower(),
    )


def deserialize_diff_log(record: Mapping[str, Any]) -> DiffLogRow:
    return DiffLogRow(
        id=_to_text(record.get("id")),
        physical_count_id=_to_text(record.get("physical_count_id")),
        date=_to_date_text(record.get("date")),
        item_code=_to_text(record.get("item_code")),
        item_name=_to_text(record.get("item_name")),
        expected_qty=_to_int(record.get("expected_qty")),
        actual_qty=_to_int(record.get("actual_qty")),
        diff=_to_int(record.get("diff")),
        reason=_to_text(record.get("reason")),
        status=_to_text(record.get("status")).lower(),
    )


def deserialize_supplier_report(record: Mapping[str, Any]) -> SupplierReportRow:
    return SupplierReportRow(
        id=_to_text(record.get("id")),
        month=_to_text(record.get("month")),
        item_code=_to_text(record.get("item_code")),
        item_name=_to_text(record.get("item_name")),
        expected_qty=_to_int(record.get("expected_qty")),
        actual_qty=_to_int(record.get("actual_qty")),
        discrepancy=_to_int(record.get("discrepancy")),
        is_new_item=_to_bool(record.get("is_new_item")),
        reason=_to_text(record.get("reason")),
        created_at=_to_text(record.get("created_at")),
    )


