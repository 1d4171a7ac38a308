"""Shared pytest fixtures and utilities for stock ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import openpyxl
import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stock_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from stock_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SiteName = {site_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DefaultUnit = {default_unit}\n"
)

WORKER = data_manager.UserRow("U100", "worker1", "worker", "Wendy Worker", "North", True)
OTHER_WORKER = data_manager.UserRow("U101", "worker2", "worker", "Walt Worker", "South", True)
MANAGER = data_manager.UserRow("U200", "manager1", "manager", "Mia Manager", "North", True)
ADMIN = data_manager.UserRow("U300", "admin1", "admin", "Ada Admin", "", True)
RETIRED = data_manager.UserRow("U400", "retired", "worker", "Rex Retired", "North", False)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    site_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "stock_ledger.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        site_name: str = "Test Depot",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_unit: str = "pcs",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                site_name=site_name,
                schema_version=schema_version,
                default_unit=default_unit,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            site_name=site_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="stock-ledger", description="Stock ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "stock_ledger.xlsx",
        site_name="Test Depot",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_unit="pcs",
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def memory_workbook() -> openpyxl.Workbook:
    """Return an unsaved workbook carrying every sheet and header row."""

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for sheet_name, columns in data_manager.SHEET_COLUMNS.items():
        workbook.create_sheet(title=sheet_name).append(list(columns))
    return workbook


@pytest.fixture
def ledger(settings: data_manager.ConfigSettings, memory_workbook: openpyxl.Workbook) -> core_logic.RuntimeContext:
    """Runtime context over an in-memory workbook seeded with test users."""

    for user in (WORKER, OTHER_WORKER, MANAGER, ADMIN, RETIRED):
        data_manager.append_user(memory_workbook, user)
    return core_logic.RuntimeContext(settings=settings, workbook=memory_workbook)


@pytest.fixture
def make_transaction() -> Callable[..., data_manager.TransactionRow]:
    """Factory building movement rows with sensible defaults."""

    counter = iter(range(1, 10_000))

    def _make(**overrides) -> data_manager.TransactionRow:
        values = {
            "id": f"T{next(counter):04d}",
            "date": "2024-05-10",
            "item_code": "A100",
            "item_name": "SAD widget",
            "direction": "IN",
            "quantity": 1,
            "reason": "",
            "actor_id": WORKER.user_id,
            "actor_name": WORKER.name,
            "area": WORKER.area,
            "status": "pending",
        }
        values.update(overrides)
        return data_manager.TransactionRow(**values)

    return _make


@pytest.fixture
def seed(ledger: core_logic.RuntimeContext) -> Callable[..., list]:
    """Append rows straight into the in-memory workbook, bypassing the BLL."""

    writers = {
        data_manager.TransactionRow: data_manager.append_transaction,
        data_manager.ItemRow: data_manager.append_item,
        data_manager.StockLedgerRow: data_manager.append_stock_ledger,
        data_manager.DiffLogRow: data_manager.append_diff_log,
    }

    def _seed(*rows) -> list:
        for row in rows:
            writers[type(row)](ledger.workbook, row)
        ledger._cache.clear()
        return list(rows)

    return _seed


def make_item(code: str, name: str, *, new_flag: bool = False, initial_group: str = "") -> data_manager.ItemRow:
    """Build a catalog row for seeding."""

    return data_manager.ItemRow(code, name, "", "pcs", "2024-01-01T00:00:00+00:00", new_flag, initial_group)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
