"""Command-line entry points for the stock ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the calls consumed by the business layer, and
printing their results. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import aggregation, approval, closing, core_logic, data_manager, importer, log, reconciliation
from .constants import ClosingAction, DiffStatus, Direction, Role, TransactionStatus


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stock-ledger",
        description="Record, approve, and reconcile stock movements in the ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the working directory by default).",
    )
    parser.add_argument(
        "--actor",
        default=None,
        help="Login id of the user performing the command.",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as movements and approvals."""
    specs = {
        "add-item": register_add_item_command(subparsers),
        "add-user": register_add_user_command(subparsers),
        "new": register_new_command(subparsers),
        "edit": register_edit_command(subparsers),
        "submit": register_submit_command(subparsers),
        "delete": register_delete_command(subparsers),
        "approve": register_approve_command(subparsers),
        "reject": register_reject_command(subparsers),
        "batch-approve": register_batch_approve_command(subparsers),
        "batch-return": register_batch_return_command(subparsers),
        "count": register_count_command(subparsers),
        "confirm-count": register_confirm_count_command(subparsers),
        "annotate-diff": register_annotate_diff_command(subparsers),
        "import-stock": register_import_stock_command(subparsers),
        "close-month": register_close_month_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and stock views."""
    specs = {
        "pending": register_pending_command(subparsers),
        "log": register_log_command(subparsers),
        "show": register_show_command(subparsers),
        "items": register_items_command(subparsers),
        "stock": register_stock_command(subparsers),
        "diffs": register_diffs_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-item``."""
    name = "add-item"
    help_text = "Register a new item in the Items sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--code", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", default="")
        parser.add_argument("--unit", default=None)
        parser.add_argument("--new", action="store_true", help="Flag the item as new this period.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_item)


def register_add_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-user``."""
    name = "add-user"
    help_text = "Register a new user in the Users sheet (admins only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--login", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--role", choices=[member.value for member in Role], default=Role.WORKER.value)
        parser.add_argument("--area", default="")
        parser.add_argument("--inactive", action="store_true", help="Create the user deactivated.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_user)


def register_new_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``new``."""
    name = "new"
    help_text = "Record a stock movement (negative quantities are outbound)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--code", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--direction", choices=[member.value for member in Direction], default=None)
        parser.add_argument("--new-item", action="store_true", help="Add the code to the catalog if absent.")
        parser.add_argument("--reason", default=None)
        parser.add_argument("--date", default=None, help="Movement date (YYYY-MM-DD, default today).")
        parser.add_argument("--draft", action="store_true", help="Save without submitting for approval.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_new)


def register_edit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit``."""
    name = "edit"
    help_text = "Edit one of your unapproved movements."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_id")
        parser.add_argument("--code", default=None)
        parser.add_argument("--name", default=None)
        parser.add_argument("--quantity", default=None)
        parser.add_argument("--direction", choices=[member.value for member in Direction], default=None)
        parser.add_argument("--date", default=None)
        parser.add_argument("--base", default=None)
        parser.add_argument("--location", default=None)
        parser.add_argument("--memo", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit)


def _register_id_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    id_dest: str = "transaction_id",
    mutates: bool = True,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(id_dest)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=mutates)


def register_submit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``submit``."""
    return _register_id_command("submit", "Submit a draft or returned movement for approval.", run_submit)


def register_delete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    return _register_id_command("delete", "Delete an unapproved movement (managers only).", run_delete)


def register_approve_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``approve``."""
    return _register_id_command("approve", "Approve a pending movement.", run_approve)


def register_reject_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reject``."""
    name = "reject"
    help_text = "Return a pending movement to its creator."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_id")
        parser.add_argument("--comment", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reject)


def register_batch_approve_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``batch-approve``."""
    name = "batch-approve"
    help_text = "Approve several pending movements independently."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_ids", nargs="+")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_batch_approve)


def register_batch_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``batch-return``."""
    name = "batch-return"
    help_text = "Return several pending movements with one comment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_ids", nargs="+")
        parser.add_argument("--comment", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_batch_return)


def register_count_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``count``."""
    name = "count"
    help_text = "Record a physical count session."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", required=True)
        parser.add_argument("--location", required=True)
        parser.add_argument(
            "--entry",
            dest="entries",
            action="append",
            required=True,
            metavar="CODE=QTY",
            help="Counted quantity of one item; repeat for each item.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_count)


def register_confirm_count_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``confirm-count``."""
    return _register_id_command(
        "confirm-count",
        "Confirm a physical count row.",
        run_confirm_count,
        id_dest="count_id",
    )


def register_annotate_diff_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``annotate-diff``."""
    name = "annotate-diff"
    help_text = "Record the reason for a count discrepancy."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("diff_id")
        parser.add_argument("--reason", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_annotate_diff)


def register_import_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-stock``."""
    name = "import-stock"
    help_text = "Seed opening stock from a quantity,code,name CSV file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--csv", dest="csv_path", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import_stock)


def register_close_month_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``close-month``."""
    name = "close-month"
    help_text = "Preview or finalize the monthly closing report."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--month", required=True, help="Period key YYYY-MM.")
        parser.add_argument(
            "--action",
            dest="closing_action",
            choices=[member.value for member in ClosingAction],
            default=ClosingAction.PREVIEW.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_close_month)


def register_pending_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pending``."""
    name = "pending"
    help_text = "List movements awaiting approval."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pending, mutates=False)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the movement log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in TransactionStatus], default=None)
        parser.add_argument("--area", default=None)
        parser.add_argument("--owner", default=None, help="Only movements created by this user id.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report, mutates=False)


def register_show_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``show``."""
    return _register_id_command("show", "Display one movement.", run_show, mutates=False)


def register_items_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``items``."""
    name = "items"
    help_text = "List or search the item catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--query", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_items, mutates=False)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--code", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report, mutates=False)


def register_diffs_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``diffs``."""
    name = "diffs"
    help_text = "List count discrepancies recorded in the DiffLog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in DiffStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_diffs, mutates=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def resolve_cli_actor(context: core_logic.RuntimeContext, args: argparse.Namespace) -> data_manager.UserRow:
    """Resolve ``--actor`` to an active user."""
    login_id = getattr(args, "actor", None)
    if not login_id:
        raise core_logic.ValidationError("--actor is required for this command")
    return core_logic.resolve_actor(context, login_id)


def translate_new(args: argparse.Namespace) -> core_logic.MovementCommand:
    """Translate CLI args into a movement command object."""
    return core_logic.MovementCommand(
        item_code=args.code,
        quantity=args.quantity,
        item_name=args.name,
        direction=args.direction,
        is_new_item=args.new_item,
        reason=args.reason,
        date=args.date,
        submit=not args.draft,
    )


def translate_edit(args: argparse.Namespace) -> core_logic.MovementPatch:
    """Translate CLI args into a movement patch."""
    return core_logic.MovementPatch(
        item_code=args.code,
        item_name=args.name,
        quantity=args.quantity,
        direction=args.direction,
        date=args.date,
        base=args.base,
        location=args.location,
        memo=args.memo,
    )


def translate_count_entries(entries: Sequence[str]) -> List[reconciliation.CountEntry]:
    """Parse ``CODE=QTY`` strings into count entries."""
    parsed = []
    for entry in entries:
        code, separator, quantity = entry.rpartition("=")
        if not separator or not code.strip():
            raise core_logic.ValidationError(f"Count entries must look like CODE=QTY, got {entry!r}")
        parsed.append(reconciliation.CountEntry(item_code=code.strip(), actual_qty=quantity.strip()))
    return parsed


def format_transaction(transaction: data_manager.TransactionRow) -> str:
    line = (
        f"{transaction.id}  {transaction.date}  {transaction.direction:<3} {transaction.quantity:>6}  "
        f"{transaction.item_code} {transaction.item_name}  [{transaction.status}] {transaction.actor_name}"
    )
    if transaction.return_comment:
        line += f"  ({transaction.return_comment})"
    return line


def print_transactions(transactions: Sequence[data_manager.TransactionRow]) -> None:
    for transaction in transactions:
        print(format_transaction(transaction))
    print(f"{len(transactions)} movement(s)")


def print_batch_result(result: approval.BatchResult) -> None:
    print(f"{result.action}: {result.success_count} succeeded, {len(result.failed_ids)} failed")
    for transaction_id, message in result.failed_ids.items():
        print(f"  FAILED {transaction_id}: {message}")
    for transaction_id, warnings in result.warnings.items():
        print(f"  WARNING {transaction_id}: {', '.join(warnings)}")


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-item workflow in the BLL."""
    actor = resolve_cli_actor(context, args)
    core_logic.require_supervisor(actor, "add items")
    item = core_logic.add_item(
        context,
        item_code=args.code,
        item_name=args.name,
        category=args.category,
        unit=args.unit,
        new_flag=args.new,
    )
    print(f"Added item {item.item_code} ({item.item_name}, group {item.initial_group})")
    return 0


def run_add_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-user workflow in the BLL."""
    actor = resolve_cli_actor(context, args)
    if actor.role != Role.ADMIN.value:
        raise core_logic.PermissionDeniedError("Only admins may add users")
    user = core_logic.add_user(
        context,
        login_id=args.login,
        name=args.name,
        role=args.role,
        area=args.area,
        active=not args.inactive,
    )
    print(f"Added user {user.login_id} ({user.role})")
    return 0


def run_new(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the movement creation workflow via the BLL."""
    actor = resolve_cli_actor(context, args)
    transaction = core_logic.create_transaction(context, translate_new(args), actor)
    print(format_transaction(transaction))
    return 0


def run_edit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the movement edit workflow via the BLL."""
    actor = resolve_cli_actor(context, args)
    transaction = core_logic.update_transaction(context, args.transaction_id, translate_edit(args), actor)
    print(format_transaction(transaction))
    return 0


def run_submit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    actor = resolve_cli_actor(context, args)
    transaction = core_logic.submit_transaction(context, args.transaction_id, actor)
    print(format_transaction(transaction))
    return 0


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    actor = resolve_cli_actor(context, args)
    core_logic.delete_transaction(context, args.transaction_id, actor)
    print(f"Deleted {args.transaction_id}")
    return 0


def run_approve(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the approval workflow; sync warnings do not change the exit code."""
    actor = resolve_cli_actor(context, args)
    outcome = approval.approve_transaction(context, args.transaction_id, actor)
    print(format_transaction(outcome.transaction))
    for warning in outcome.warnings:
        print(f"WARNING: {warning}")
    return 0


def run_reject(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    actor = resolve_cli_actor(context, args)
    outcome = approval.reject_transaction(context, args.transaction_id, actor, args.comment)
    print(format_transaction(outcome.transaction))
    return 0


def run_batch_approve(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a batch approval; any failed member raises after printing."""
    actor = resolve_cli_actor(context, args)
    result = approval.batch_approve(context, args.transaction_ids, actor)
    print_batch_result(result)
    result.raise_for_failures()
    return 0


def run_batch_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a batch return; any failed member raises after printing."""
    actor = resolve_cli_actor(context, args)
    result = approval.batch_return(context, args.transaction_ids, actor, args.comment)
    print_batch_result(result)
    result.raise_for_failures()
    return 0


def run_count(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a physical count session."""
    actor = resolve_cli_actor(context, args)
    result = reconciliation.record_physical_count(
        context,
        date=args.date,
        location=args.location,
        counts=translate_count_entries(args.entries),
        actor=actor,
    )
    for row in result.counts:
        print(f"{row.id}  {row.item_code}  expected {row.expected_qty}  counted {row.actual_qty}  diff {row.difference:+d}")
    for diff in result.diffs:
        print(f"{diff.id}  {diff.item_code}  discrepancy {diff.diff:+d}  [{diff.status}]")
    print(f"{len(result.counts)} count(s), {len(result.diffs)} discrepancy(ies) logged")
    return 0


def run_confirm_count(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    actor = resolve_cli_actor(context, args)
    row = reconciliation.confirm_physical_count(context, args.count_id, actor)
    print(f"{row.id} is {row.status}")
    return 0


def run_annotate_diff(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    actor = resolve_cli_actor(context, args)
    row = reconciliation.annotate_diff(context, args.diff_id, args.reason, actor)
    print(f"{row.id}: {row.reason}")
    return 0


def run_import_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the initial stock import from a CSV file."""
    actor = resolve_cli_actor(context, args)
    csv_text = Path(args.csv_path).expanduser().read_text(encoding="utf-8-sig")
    result = importer.import_initial_stock(context, actor, csv_text=csv_text)
    print(f"Imported opening stock: {result.updated} updated, {result.appended} appended")
    return 0


def run_close_month(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the monthly closing preview or finalize."""
    actor = resolve_cli_actor(context, args)
    result = closing.run_monthly_closing(context, args.month, args.closing_action, actor)
    for row in result.rows:
        flag = " NEW" if row.is_new_item else ""
        print(
            f"{row.item_code:<12} {row.item_name:<24} expected {row.expected_qty:>6}  "
            f"actual {row.actual_qty:>6}  diff {row.diff:+d}{flag}"
        )
    if result.action == ClosingAction.FINALIZE.value:
        print(f"Locked {len(result.locked_ids)} movement(s); wrote {len(result.reports)} report row(s)")
    return 0


def run_pending(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    actor = resolve_cli_actor(context, args)
    print_transactions(core_logic.list_pending(context, actor))
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the movement log reporting workflow."""
    actor = resolve_cli_actor(context, args)
    transactions = core_logic.list_transactions(
        context,
        actor,
        status=args.status,
        area=args.area,
        owner_id=args.owner,
    )
    print_transactions(transactions)
    return 0


def run_show(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    actor = resolve_cli_actor(context, args)
    transaction = core_logic.read_transaction(context, args.transaction_id, actor)
    print(format_transaction(transaction))
    if transaction.reason:
        print(f"  reason: {transaction.reason}")
    if transaction.approved_by:
        print(f"  approved by {transaction.approved_by} at {transaction.approved_at}")
    return 0


def run_items(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    items = core_logic.search_items(context, args.query) if args.query else core_logic.list_items(context)
    for item in items:
        flag = " NEW" if item.new_flag else ""
        print(f"{item.item_code:<12} {item.item_name:<24} {item.unit:<6} {item.initial_group}{flag}")
    print(f"{len(items)} item(s)")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    for view in aggregation.stock_view(context, args.code):
        print(
            f"{view.item_code:<12} {view.item_name:<24} open {view.opening_qty:>6}  in {view.in_qty:>6}  "
            f"out {view.out_qty:>6}  close {view.closing_qty:>6}"
        )
    return 0


def run_diffs(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List DiffLog rows so their ids can be annotated."""
    diffs = reconciliation.list_diffs(context, args.status)
    for diff in diffs:
        reason = diff.reason or "-"
        print(
            f"{diff.id}  {diff.date}  {diff.item_code} {diff.item_name}  expected {diff.expected_qty}  "
            f"counted {diff.actual_qty}  diff {diff.diff:+d}  [{diff.status}] {reason}"
        )
    print(f"{len(diffs)} discrepancy(ies)")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.PartialBatchFailure):
        log.error("%s", error)
        return 4
    if isinstance(error, core_logic.LedgerError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)

    try:
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except core_logic.PartialBatchFailure as failure:
        try:
            persist_workbook(context)
        except Exception as error:  # pragma: no cover - disk failures only
            return handle_cli_error(error)
        return handle_cli_error(failure)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
