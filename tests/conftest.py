"""Shared pytest fixtures and utilities for inventory ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from inventory_ledger import auth, constants, core_logic, data_manager  # noqa: E402
from inventory_ledger.setup_store import initialize  # noqa: E402


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_dir: Path
    company_name: str
    currency: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/data-directory bundles on demand."""

    def _create_config(
        *,
        company_name: str = "Test Shop",
        currency: str = "LKR",
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        config_path = initialize(bundle_dir, company_name=company_name, currency=currency)
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_dir=bundle_dir / "data",
            company_name=company_name,
            currency=currency,
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


@pytest.fixture
def logged_in_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    assert auth.login(runtime_context, constants.DEFAULT_USERNAME, constants.DEFAULT_PASSWORD)
    return runtime_context


@pytest.fixture
def product_factory(runtime_context: core_logic.RuntimeContext) -> Callable[..., data_manager.ProductRecord]:
    """Add products to ``runtime_context`` with sensible defaults."""

    def _add(
        *,
        name: str = "Widget",
        stock: int = 20,
        buying_price: str = "10",
        selling_price: str = "15",
        category: str = "General",
        supplier_name: str = "Acme Supplies",
    ) -> data_manager.ProductRecord:
        return core_logic.add_product(
            runtime_context,
            name=name,
            category=category,
            supplier_name=supplier_name,
            buying_price=Decimal(buying_price),
            selling_price=Decimal(selling_price),
            stock=stock,
        )

    return _add


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


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="inventory-cli", description="Inventory ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")
