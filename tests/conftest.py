"""Shared pytest fixtures and utilities for the pooja store billing tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Sequence
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from pooja_billing import cli, constants, core_logic, data_manager  # noqa: E402
from pooja_billing.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_CHANNELS = constants.DEFAULT_CHANNEL_NAMES
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
    "AutoSave = {auto_save}\n"
    "LockTimeout = {lock_timeout}\n\n"
    "[Defaults]\n"
    "Operator = owner\n\n"
    "[Channels]\n"
    "Names = {channel_names}\n"
    "DailyLimit = {daily_limit}\n"
)

# Morning of 23 May 2024, used wherever a test needs a stable bill date.
MORNING = datetime(2024, 5, 23, 9, 30, tzinfo=UTC)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    channel_names: tuple[str, ...]
    schema_version: str
    store_name: str


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
        channel_names: Sequence[str] = DEFAULT_CHANNELS,
        filename: str = "pooja_master.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, channel_names=channel_names, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Pooja Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        channel_names: Sequence[str] = DEFAULT_CHANNELS,
        provisioned_channels: Sequence[str] | None = None,
        daily_limit: int = constants.DEFAULT_DAILY_LIMIT,
        auto_save: bool = True,
        lock_timeout: float = 5,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(
            subdir=f"bundle_{bundle_id}",
            channel_names=channel_names if provisioned_channels is None else provisioned_channels,
        )
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                auto_save="yes" if auto_save else "no",
                lock_timeout=lock_timeout,
                channel_names=", ".join(channel_names),
                daily_limit=daily_limit,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            channel_names=tuple(channel_names),
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    """A default bundle: four provisioned channels, auto-save on."""

    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    return core_logic.load_runtime_context(config_file)


@pytest.fixture
def add_catalog_item() -> Callable[..., data_manager.ItemRow]:
    """Register an item through the business layer with sensible defaults."""

    def _add(
        context: core_logic.RuntimeContext,
        item_id: str,
        *,
        price: str = "10.00",
        stock: int = 10,
        name: str | None = None,
        category: constants.ItemCategory = constants.ItemCategory.POOJA_ITEMS,
    ) -> data_manager.ItemRow:
        return core_logic.add_item(
            context,
            item_id=item_id,
            item_code=f"CODE-{item_id}",
            name=name or f"Item {item_id}",
            unit_price=Decimal(price),
            current_stock=stock,
            min_stock_alert=0,
            category=category,
        )

    return _add


@pytest.fixture
def stocked_context(
    runtime_context: core_logic.RuntimeContext,
    add_catalog_item: Callable[..., data_manager.ItemRow],
) -> core_logic.RuntimeContext:
    """A context whose catalog holds a camphor pack, an agarbatti box and a diya."""

    add_catalog_item(runtime_context, "CAMPHOR", price="10.00", stock=5, name="Camphor Pack")
    add_catalog_item(
        runtime_context,
        "AGARBATTI",
        price="25.00",
        stock=20,
        name="Agarbatti Box",
        category=constants.ItemCategory.INCENSE,
    )
    add_catalog_item(runtime_context, "DIYA", price="40.00", stock=8, name="Brass Diya")
    return runtime_context


@pytest.fixture
def bill_command() -> Callable[..., core_logic.BillCommand]:
    """Build bill commands from ``(item_id, quantity)`` pairs."""

    def _build(
        *lines: tuple[str, int],
        payment_method: str = constants.CASH,
        timestamp: datetime | None = MORNING,
        **overrides,
    ) -> core_logic.BillCommand:
        return core_logic.BillCommand(
            lines=tuple(core_logic.CartLine(item_id=item_id, quantity=quantity) for item_id, quantity in lines),
            payment_method=payment_method,
            timestamp=timestamp,
            **overrides,
        )

    return _build


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pooja-cli", description="Pooja CLI")


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
# Mocked business layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "pooja_master.xlsx",
        store_name="Test Pooja Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        channel_names=DEFAULT_CHANNELS,
    )


@pytest.fixture
def mock_context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Assemble a runtime context around a mock workbook."""

    return core_logic.RuntimeContext(settings=settings, workbook=Mock(name="workbook"))
