"""Business logic layer for the stock ledger.

This module owns the runtime context, the domain error taxonomy, the item
catalog and user lookups, and the transaction ledger state machine. It
consumes the Data Access Layer (DAL) for all I/O while ensuring every mutation
passes through the lifecycle rules::

    draft -> pending -> approved -> locked
                    \\-> returned -> pending

The approval, aggregation, reconciliation, closing, and import modules build
on the helpers exported here.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    FROZEN_STATUSES,
    GROUP_CODES,
    OTHER_GROUP,
    SUPERVISOR_ROLES,
    Direction,
    Role,
    TransactionStatus,
)


T = TypeVar("T")


class LedgerError(Exception):
    """Base class for every domain failure raised by the stock ledger."""


class ValidationError(LedgerError, ValueError):
    """Raised when input is missing or malformed."""


class InvalidTransitionError(ValidationError):
    """Raised when a movement cannot move from its current status."""


class PermissionDeniedError(LedgerError, PermissionError):
    """Raised when the actor's role or ownership does not allow the action."""


class NotFoundError(LedgerError, KeyError):
    """Raised when a referenced item, user, or record is unknown."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class StoreIOError(LedgerError):
    """Raised when the workbook is unreadable or its schema is malformed."""


class StaleRecordError(StoreIOError):
    """Raised when a guarded write finds the stored row changed."""


class PartialBatchFailure(LedgerError):
    """Raised after a sequential batch committed some members but not all.

    The committed members stay committed; ``result`` describes what happened
    so the caller can retry only the failed subset.
    """

    def __init__(self, message: str, result: Any) -> None:
        super().__init__(message)
        self.result = result


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class MovementCommand:
    """User intent for recording a new movement.

    ``quantity`` is the number as entered: its sign picks the direction when
    ``direction`` is omitted.
    """

    item_code: str
    quantity: Union[int, str, Decimal]
    item_name: Optional[str] = None
    direction: Optional[str] = None
    is_new_item: bool = False
    reason: Optional[str] = None
    date: Optional[str] = None
    submit: bool = True


@dataclass(frozen=True)
class MovementPatch:
    """Partial edit of an existing movement; ``None`` leaves a field as is."""

    item_code: Optional[str] = None
    item_name: Optional[str] = None
    quantity: Optional[Union[int, str, Decimal]] = None
    direction: Optional[str] = None
    date: Optional[str] = None
    base: Optional[str] = None
    location: Optional[str] = None
    memo: Optional[str] = None


_ID_SEQUENCE = itertools.count()


def _resolve_timestamp(candidate: Optional[datetime] = None) -> datetime:
    """Return ``candidate`` or the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def utc_now() -> datetime:
    return _resolve_timestamp()


def generate_record_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate a sortable, time-derived record identifier.

    Args:
        prefix (str): Designator prepended to the identifier (``T`` for
            movements, ``PC`` for counts, ``D`` for diffs, ``SR`` for supplier
            reports).
        when (datetime | None): Timestamp used for the identifier. When
            ``None`` the current UTC time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{seq}``.

    The trailing four-digit sequence keeps identifiers unique when several
    records are written within the same microsecond, as happens in bulk
    count sessions.
    """
    when = when or _resolve_timestamp()
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{next(_ID_SEQUENCE) % 10000:04d}"


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets hold the raw rows read from one sheet. Derived views such as stock
    levels are never cached; they are recomputed from these rows on every
    call.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _store_call(operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a DAL call, translating store failures into domain errors."""

    try:
        return operation(*args, **kwargs)
    except data_manager.RowConflictError as exc:
        log.warning("Stale write rejected: %s", exc)
        raise StaleRecordError(str(exc)) from exc
    except KeyError as exc:
        message = exc.args[0] if exc.args else str(exc)
        if "row not found" in str(message):
            raise NotFoundError(message) from exc
        log.error("Workbook schema problem: %s", message)
        raise StoreIOError(message) from exc


def _ensure_rows_cache(context: RuntimeContext, name: str, reader: Callable[[Workbook], Iterable[Any]], key: Optional[str]) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, name)
    if "all" not in bucket:
        rows = _store_call(lambda: list(reader(context.workbook)))
        bucket["all"] = rows
        if key is not None:
            bucket["by_key"] = {getattr(row, key): row for row in rows}
        log.debug("Populated %s cache with %d entries", name, len(rows))
    return bucket


def _users_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows_cache(context, "users", data_manager.iter_users, "login_id")


def _items_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows_cache(context, "items", data_manager.iter_items, "item_code")


def _transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    return _ensure_rows_cache(context, "transactions", data_manager.iter_transactions, "id")


def list_stock_ledger(context: RuntimeContext) -> List[data_manager.StockLedgerRow]:
    """Return the persisted ``StockLedger`` rows in sheet order."""
    return list(_ensure_rows_cache(context, "stock_ledger", data_manager.iter_stock_ledger, "item_code")["all"])


def list_physical_counts(context: RuntimeContext) -> List[data_manager.PhysicalCountRow]:
    return list(_ensure_rows_cache(context, "physical_counts", data_manager.iter_physical_counts, "id")["all"])


def list_diff_logs(context: RuntimeContext) -> List[data_manager.DiffLogRow]:
    return list(_ensure_rows_cache(context, "diff_logs", data_manager.iter_diff_logs, "id")["all"])


def list_supplier_reports(context: RuntimeContext) -> List[data_manager.SupplierReportRow]:
    return list(_ensure_rows_cache(context, "supplier_reports", data_manager.iter_supplier_reports, None)["all"])


def write_store(
    context: RuntimeContext,
    operation: Callable[..., T],
    *args: Any,
    buckets: Iterable[str],
    **kwargs: Any,
) -> T:
    """Apply a DAL write to ``context.workbook`` and evict the affected caches.

    Args:
        context (RuntimeContext): Runtime context whose workbook is mutated.
        operation (Callable): DAL function taking the workbook first.
        *args: Positional arguments forwarded after the workbook.
        buckets (Iterable[str]): Cache buckets made stale by the write.
        **kwargs: Keyword arguments forwarded to ``operation``.

    Returns:
        The value returned by ``operation``.

    Raises:
        NotFoundError: If the targeted row does not exist.
        StaleRecordError: If a guarded write found the row changed.
        StoreIOError: If the sheet or a column is missing.
    """
    try:
        return _store_call(operation, context.workbook, *args, **kwargs)
    finally:
        _invalidate_cache(context, *buckets)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
        StoreIOError: If the workbook lacks a sheet or header column.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    for sheet_name, columns in data_manager.SHEET_COLUMNS.items():
        _store_call(data_manager.require_columns, workbook, sheet_name, columns)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


# ---------------------------------------------------------------------------
# Users and authorization
# ---------------------------------------------------------------------------


def list_users(context: RuntimeContext) -> List[data_manager.UserRow]:
    return list(_users_cache(context)["all"])


def get_user(context: RuntimeContext, login_id: str) -> data_manager.UserRow:
    """Resolve a user by login id.

    Raises:
        NotFoundError: If no user carries ``login_id``.
    """
    try:
        return _users_cache(context)["by_key"][login_id]
    except KeyError as exc:
        log.warning("User lookup failed for login '%s'", login_id)
        raise NotFoundError(f"Unknown user: {login_id}") from exc


def resolve_actor(context: RuntimeContext, login_id: str) -> data_manager.UserRow:
    """Return the active user acting under ``login_id``.

    Raises:
        NotFoundError: If the login is unknown.
        PermissionDeniedError: If the user is deactivated.
    """
    user = get_user(context, login_id)
    if not user.active:
        log.warning("Inactive user '%s' attempted to act", login_id)
        raise PermissionDeniedError(f"User '{login_id}' is inactive")
    return user


def is_supervisor(actor: data_manager.UserRow) -> bool:
    return actor.role in SUPERVISOR_ROLES


def require_supervisor(actor: data_manager.UserRow, action: str) -> None:
    """Refuse ``action`` unless ``actor`` is a manager or admin."""
    if not is_supervisor(actor):
        log.warning("User '%s' (%s) may not %s", actor.login_id, actor.role, action)
        raise PermissionDeniedError(f"Only managers and admins may {action}")


def add_user(
    context: RuntimeContext,
    *,
    login_id: str,
    name: str,
    role: str = Role.WORKER.value,
    area: str = "",
    user_id: Optional[str] = None,
    active: bool = True,
) -> data_manager.UserRow:
    """Register a user in the ``Users`` sheet.

    Raises:
        ValidationError: If the login is blank or taken, or the role unknown.
    """
    login_id = (login_id or "").strip()
    if not login_id:
        raise ValidationError("login_id is required")
    if login_id in _users_cache(context)["by_key"]:
        raise ValidationError(f"User already exists: {login_id}")
    try:
        role_value = Role(role.strip().lower()).value
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {role}") from exc

    user = data_manager.UserRow(
        user_id=user_id or generate_record_id(prefix="U"),
        login_id=login_id,
        role=role_value,
        name=(name or "").strip() or login_id,
        area=(area or "").strip(),
        active=active,
    )
    _store_call(data_manager.append_user, context.workbook, user)
    _invalidate_cache(context, "users")
    log.info("Added user '%s' with role %s", login_id, role_value)
    return user


# ---------------------------------------------------------------------------
# Item catalog
# ---------------------------------------------------------------------------


def item_group(name: str) -> str:
    """Derive the product family code from an item name.

    The first five characters of the name (after an optional ``■`` bullet)
    are scanned for one of :data:`GROUP_CODES`; anything else is ``OTHER``.
    """
    raw = (name or "").strip()
    if raw.startswith("■"):
        raw = raw[1:].lstrip()
    head = raw[:5].upper()
    for code in GROUP_CODES:
        if code in head:
            return code
    return OTHER_GROUP


def list_items(context: RuntimeContext) -> List[data_manager.ItemRow]:
    """Return the item catalog in sheet order."""
    return list(_items_cache(context)["all"])


def find_item(context: RuntimeContext, item_code: str) -> Optional[data_manager.ItemRow]:
    return _items_cache(context)["by_key"].get(item_code)


def get_item(context: RuntimeContext, item_code: str) -> data_manager.ItemRow:
    """Resolve an item by code.

    Raises:
        NotFoundError: If the catalog lacks ``item_code``.
    """
    item = find_item(context, item_code)
    if item is None:
        log.warning("Item lookup failed for code '%s'", item_code)
        raise NotFoundError(f"Unknown item code: {item_code}")
    return item


def search_items(context: RuntimeContext, query: str) -> List[data_manager.ItemRow]:
    """Case-insensitive substring search over item codes and names."""
    needle = (query or "").strip().lower()
    return [
        item
        for item in _items_cache(context)["all"]
        if needle in item.item_code.lower() or needle in item.item_name.lower()
    ]


def add_item(
    context: RuntimeContext,
    *,
    item_code: str,
    item_name: str,
    category: str = "",
    unit: Optional[str] = None,
    new_flag: bool = False,
    initial_group: Optional[str] = None,
) -> data_manager.ItemRow:
    """Append an item to the catalog.

    Args:
        context (RuntimeContext): Runtime context.
        item_code (str): Unique item code.
        item_name (str): Display name.
        category (str): Free-form category.
        unit (str | None): Counting unit; defaults to the configured unit.
        new_flag (bool): Marks items absent from the previous baseline.
        initial_group (str | None): Family code; derived from the name when
            omitted.

    Returns:
        data_manager.ItemRow: The persisted catalog entry.

    Raises:
        ValidationError: If the code or name is blank, or the code exists.
    """
    item_code = (item_code or "").strip()
    item_name = (item_name or "").strip()
    if not item_code:
        raise ValidationError("item_code is required")
    if not item_name:
        raise ValidationError("item_name is required")
    if find_item(context, item_code) is not None:
        raise ValidationError(f"Item already exists: {item_code}")

    item = data_manager.ItemRow(
        item_code=item_code,
        item_name=item_name,
        category=category or "",
        unit=unit or context.settings.default_unit,
        created_at=_resolve_timestamp().isoformat(),
        new_flag=new_flag,
        initial_group=initial_group or item_group(item_name),
    )
    _store_call(data_manager.append_item, context.workbook, item)
    _invalidate_cache(context, "items")
    log.info("Added item '%s' (%s) to catalog", item_code, item_name)
    return item


def ensure_item(context: RuntimeContext, item_code: str, item_name: str, *, new_flag: bool) -> data_manager.ItemRow:
    """Return the catalog entry for ``item_code``, inserting it when absent."""
    existing = find_item(context, item_code)
    if existing is not None:
        return existing
    return add_item(context, item_code=item_code, item_name=item_name, new_flag=new_flag)


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------


def parse_direction(raw: Optional[str]) -> Optional[Direction]:
    """Map ``IN``/``OUT`` (any case) to :class:`Direction`; blanks give ``None``.

    Raises:
        ValidationError: For any other non-blank value.
    """
    text = (raw or "").strip().upper()
    if not text:
        return None
    try:
        return Direction(text)
    except ValueError as exc:
        raise ValidationError("direction must be IN or OUT") from exc


def parse_whole_number(raw: Any, *, field_name: str) -> int:
    """Parse ``raw`` as a finite whole number.

    Raises:
        ValidationError: If ``raw`` is blank, non-numeric, non-finite, or has
            a fractional part.
    """
    if raw is None or isinstance(raw, bool) or str(raw).strip() == "":
        raise ValidationError(f"{field_name} is required")
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ValidationError(f"{field_name} must be a number") from exc
    if not value.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    if value != value.to_integral_value():
        raise ValidationError(f"{field_name} must be a whole number")
    return int(value)


def normalize_quantity(raw: Any, direction: Optional[str] = None) -> tuple[Direction, int]:
    """Split an entered quantity into a direction and a positive magnitude.

    An explicit ``direction`` wins; otherwise positive numbers are inbound and
    negative numbers outbound.

    Raises:
        ValidationError: If the quantity is not a finite, non-zero whole number.
    """
    value = parse_whole_number(raw, field_name="quantity")
    if value == 0:
        log.error("Quantity validation failed: %s", raw)
        raise ValidationError("quantity must be a non-zero number")
    explicit = parse_direction(direction)
    if explicit is None:
        explicit = Direction.IN if value > 0 else Direction.OUT
    return explicit, abs(value)


def normalize_date(raw: Optional[str]) -> str:
    """Return ``raw`` as ``YYYY-MM-DD``, defaulting to today's UTC date.

    Raises:
        ValidationError: If ``raw`` is not an ISO date.
    """
    text = (raw or "").strip()
    if not text:
        return _resolve_timestamp().date().isoformat()
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError as exc:
        raise ValidationError(f"date must be YYYY-MM-DD, got {raw!r}") from exc


def synthesize_item_code(base: Optional[str], location: Optional[str]) -> str:
    """Build an item code from a base code and a storage location."""
    return "-".join(part for part in ((base or "").strip(), (location or "").strip()) if part)


def compose_reason(direction: Direction, base: Optional[str], location: Optional[str], memo: Optional[str]) -> str:
    """Join direction label, base, location, and memo with pipes, skipping blanks."""
    parts = (direction.label, base, location, memo)
    return " | ".join(part.strip() for part in parts if part and part.strip())


# ---------------------------------------------------------------------------
# Transaction ledger
# ---------------------------------------------------------------------------


def is_placeholder(transaction: data_manager.TransactionRow) -> bool:
    """Rows with no item code and no quantity are corrupt placeholders."""
    return not transaction.item_code and transaction.quantity == 0


def all_transactions(context: RuntimeContext) -> List[data_manager.TransactionRow]:
    """Return every stored movement, placeholders included, in sheet order."""
    return list(_transactions_cache(context)["all"])


def get_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.TransactionRow:
    """Retrieve a movement by id from the current stored state.

    Raises:
        NotFoundError: If the ledger lacks the supplied identifier.
    """
    try:
        return _transactions_cache(context)["by_key"][transaction_id]
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise NotFoundError(f"Unknown transaction id: {transaction_id}") from exc


def read_transaction(context: RuntimeContext, transaction_id: str, actor: data_manager.UserRow) -> data_manager.TransactionRow:
    """Return a movement, refusing workers who do not own it.

    Raises:
        NotFoundError: If the id is unknown.
        PermissionDeniedError: If a worker asks for someone else's record.
    """
    transaction = get_transaction(context, transaction_id)
    if not is_supervisor(actor) and transaction.actor_id != actor.user_id:
        raise PermissionDeniedError("Workers may only view their own transactions")
    return transaction


def list_transactions(
    context: RuntimeContext,
    actor: Optional[data_manager.UserRow] = None,
    *,
    status: Optional[str] = None,
    area: Optional[str] = None,
    owner_id: Optional[str] = None,
) -> List[data_manager.TransactionRow]:
    """List movements visible to ``actor``, optionally filtered.

    Workers only ever see their own records regardless of ``owner_id``;
    managers and admins see everything. Corrupt placeholder rows are always
    excluded.

    Args:
        context (RuntimeContext): Runtime context.
        actor (UserRow | None): Requesting user; ``None`` skips scoping and is
            reserved for internal callers.
        status (str | None): Keep only this status.
        area (str | None): Keep only this area.
        owner_id (str | None): Keep only records created by this user id.

    Returns:
        list[data_manager.TransactionRow]: Matching movements in sheet order.
    """
    if actor is not None and not is_supervisor(actor):
        owner_id = actor.user_id

    results = []
    for transaction in _transactions_cache(context)["all"]:
        if is_placeholder(transaction):
            continue
        if status and transaction.status != status:
            continue
        if area and transaction.area != area:
            continue
        if owner_id and transaction.actor_id != owner_id:
            continue
        results.append(transaction)
    return results


def list_pending(context: RuntimeContext, actor: data_manager.UserRow) -> List[data_manager.TransactionRow]:
    """Return pending movements, scoped to the actor's area when it has one."""
    return list_transactions(
        context,
        actor,
        status=TransactionStatus.PENDING.value,
        area=actor.area or None,
    )


def create_transaction(
    context: RuntimeContext,
    command: MovementCommand,
    actor: data_manager.UserRow,
) -> data_manager.TransactionRow:
    """Validate and append a movement to the ledger.

    The quantity is normalised into a direction and a positive magnitude. New
    items are inserted into the catalog before the movement is appended;
    otherwise a blank name falls back to the catalog name.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (MovementCommand): Structured intent describing the movement.
        actor (UserRow): Worker submitting the movement.

    Returns:
        data_manager.TransactionRow: Newly appended movement, ``pending`` or
            ``draft`` depending on ``command.submit``.

    Raises:
        ValidationError: On a missing item code, a missing name for a new
            item, or a zero, non-finite, or fractional quantity.
    """
    item_code = (command.item_code or "").strip()
    if not item_code:
        log.error("Movement rejected: missing item code")
        raise ValidationError("item_code is required")
    direction, quantity = normalize_quantity(command.quantity, command.direction)
    movement_date = normalize_date(command.date)

    item_name = (command.item_name or "").strip()
    if command.is_new_item:
        if not item_name:
            raise ValidationError("item_name is required for new items")
        ensure_item(context, item_code, item_name, new_flag=True)
    elif not item_name:
        known = find_item(context, item_code)
        item_name = known.item_name if known is not None else ""

    timestamp = _resolve_timestamp()
    transaction = data_manager.TransactionRow(
        id=generate_record_id(prefix="T", when=timestamp),
        date=movement_date,
        item_code=item_code,
        item_name=item_name,
        direction=direction.value,
        quantity=quantity,
        reason=(command.reason or "").strip(),
        actor_id=actor.user_id,
        actor_name=actor.name,
        area=actor.area,
        status=(TransactionStatus.PENDING if command.submit else TransactionStatus.DRAFT).value,
    )
    _store_call(data_manager.append_transaction, context.workbook, transaction)
    _invalidate_cache(context, "transactions")
    log.info(
        "Recorded %s movement '%s' for item '%s' (quantity=%s, status=%s)",
        transaction.direction,
        transaction.id,
        item_code,
        quantity,
        transaction.status,
    )
    return transaction


def _require_owner_edit(transaction: data_manager.TransactionRow, actor: data_manager.UserRow) -> None:
    if transaction.actor_id != actor.user_id:
        log.warning("User '%s' tried to edit movement '%s' they do not own", actor.login_id, transaction.id)
        raise PermissionDeniedError("Only the creator may edit a movement")
    if transaction.status in FROZEN_STATUSES:
        log.warning("Edit refused for %s movement '%s'", transaction.status, transaction.id)
        raise PermissionDeniedError(f"Cannot edit a {transaction.status} movement")


def update_transaction(
    context: RuntimeContext,
    transaction_id: str,
    patch: MovementPatch,
    actor: data_manager.UserRow,
) -> data_manager.TransactionRow:
    """Apply ``patch`` to a movement owned by ``actor``.

    When no explicit item code is given but ``base`` is, the code becomes
    ``base-location``. Supplying any of ``base``, ``location``, or ``memo``
    rewrites ``reason`` as their pipe-delimited join, led by the direction
    label. A ``returned`` movement re-enters ``pending``.

    Raises:
        NotFoundError: If the movement does not exist.
        PermissionDeniedError: If ``actor`` is not the creator or the movement
            is approved or locked.
        ValidationError: If the patch leaves the movement invalid.
        StaleRecordError: If the status changed while the edit was prepared.
    """
    existing = get_transaction(context, transaction_id)
    _require_owner_edit(existing, actor)

    if patch.quantity is not None:
        direction, quantity = normalize_quantity(patch.quantity, patch.direction)
    else:
        direction = parse_direction(patch.direction) or parse_direction(existing.direction) or Direction.IN
        quantity = existing.quantity

    if patch.item_code and patch.item_code.strip():
        item_code = patch.item_code.strip()
    elif patch.base and patch.base.strip():
        item_code = synthesize_item_code(patch.base, patch.location)
    else:
        item_code = existing.item_code
    if not item_code:
        raise ValidationError("item_code is required")

    if any(value is not None for value in (patch.base, patch.location, patch.memo)):
        reason = compose_reason(direction, patch.base, patch.location, patch.memo)
    else:
        reason = existing.reason

    status = existing.status
    if status == TransactionStatus.RETURNED.value:
        status = TransactionStatus.PENDING.value

    updated = replace(
        existing,
        item_code=item_code,
        item_name=(patch.item_name or "").strip() or existing.item_name,
        direction=direction.value,
        quantity=quantity,
        date=normalize_date(patch.date) if patch.date else existing.date,
        reason=reason,
        status=status,
    )
    _store_call(
        data_manager.update_transaction,
        context.workbook,
        transaction_id,
        field_values={
            "item_code": updated.item_code,
            "item_name": updated.item_name,
            "direction": updated.direction,
            "quantity": updated.quantity,
            "date": updated.date,
            "reason": updated.reason,
            "status": updated.status,
        },
        expected={"status": existing.status},
    )
    _invalidate_cache(context, "transactions")
    log.info("Updated movement '%s' (status=%s)", transaction_id, updated.status)
    return updated


def transition_status(
    context: RuntimeContext,
    transaction_id: str,
    *,
    allowed_from: Iterable[str],
    to_status: TransactionStatus,
    extra_fields: Optional[Dict[str, Any]] = None,
) -> data_manager.TransactionRow:
    """Move a movement to ``to_status`` if its stored status allows it.

    The check runs against the record's current stored state and the write
    is guarded so it only lands if the status is still the one inspected.

    Raises:
        NotFoundError: If the movement does not exist.
        InvalidTransitionError: If the stored status is not in ``allowed_from``.
        StaleRecordError: If the row changed between the check and the write.
    """
    current = get_transaction(context, transaction_id)
    allowed = set(allowed_from)
    if current.status not in allowed:
        log.warning(
            "Refused transition of '%s' from %s to %s",
            transaction_id,
            current.status or "<blank>",
            to_status.value,
        )
        raise InvalidTransitionError(
            f"Cannot move transaction {transaction_id} from {current.status or 'blank'} to {to_status.value}"
        )

    fields: Dict[str, Any] = {"status": to_status.value}
    fields.update(extra_fields or {})
    _store_call(
        data_manager.update_transaction,
        context.workbook,
        transaction_id,
        field_values=fields,
        expected={"status": current.status},
    )
    _invalidate_cache(context, "transactions")
    log.info("Movement '%s' moved %s -> %s", transaction_id, current.status, to_status.value)
    return replace(current, **fields)


def submit_transaction(
    context: RuntimeContext,
    transaction_id: str,
    actor: data_manager.UserRow,
) -> data_manager.TransactionRow:
    """Submit a ``draft`` or ``returned`` movement owned by ``actor`` for approval."""
    existing = get_transaction(context, transaction_id)
    _require_owner_edit(existing, actor)
    return transition_status(
        context,
        transaction_id,
        allowed_from=(TransactionStatus.DRAFT.value, TransactionStatus.RETURNED.value),
        to_status=TransactionStatus.PENDING,
    )


def delete_transaction(
    context: RuntimeContext,
    transaction_id: str,
    actor: data_manager.UserRow,
) -> None:
    """Remove an unapproved movement from the ledger.

    Raises:
        PermissionDeniedError: If ``actor`` is not a manager or admin, or the
            movement is approved or locked.
        NotFoundError: If the movement does not exist.
    """
    require_supervisor(actor, "delete movements")
    existing = get_transaction(context, transaction_id)
    if existing.status in FROZEN_STATUSES:
        raise PermissionDeniedError(f"Cannot delete a {existing.status} movement")
    _store_call(data_manager.delete_transaction, context.workbook, transaction_id)
    _invalidate_cache(context, "transactions")
    log.info("Deleted movement '%s' (was %s)", transaction_id, existing.status)
