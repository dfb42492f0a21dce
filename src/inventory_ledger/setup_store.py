"""Utility for initializing an empty inventory ledger.

The module doubles as a script (``inventory-setup``) and as a library used by
tests or other tooling. It writes ``config.ini`` and a data directory holding
empty ``products`` and ``transactions`` blobs.
"""

from __future__ import annotations

import argparse
import configparser
import sys
from pathlib import Path
from typing import Sequence

from .constants import DEFAULT_CURRENCY, EXPECTED_SCHEMA_VERSION, StorageKey
from .data_manager import CONFIG_FILE_NAME, JsonFileStore, PersistenceFailure, encode_records

DEFAULT_DATA_DIR = "data"


def create_data_store(destination: Path, *, overwrite: bool = False) -> Path:
    """Create the data directory with an empty catalog and ledger.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if a catalog or ledger blob already exists.
    """

    destination = Path(destination).expanduser().resolve()
    store = JsonFileStore(destination)
    existing = [
        key for key in (StorageKey.PRODUCTS, StorageKey.TRANSACTIONS)
        if store.path_for(key.value).exists()
    ]
    if existing and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing ledger data in: {destination}"
        )

    store.set_many(
        {
            StorageKey.PRODUCTS.value: encode_records([]),
            StorageKey.TRANSACTIONS.value: encode_records([]),
        }
    )
    for key in (StorageKey.SETTINGS, StorageKey.AUTH):
        store.remove(key.value)
    return destination


def write_config(
    directory: Path,
    *,
    data_dir: str = DEFAULT_DATA_DIR,
    company_name: str = "",
    currency: str = DEFAULT_CURRENCY,
    schema_version: str = EXPECTED_SCHEMA_VERSION,
    overwrite: bool = False,
) -> Path:
    """Write ``config.ini`` into ``directory`` and return its path."""

    config_path = Path(directory).expanduser().resolve() / CONFIG_FILE_NAME
    if config_path.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing config: {config_path}")

    parser = configparser.ConfigParser()
    parser["System"] = {"DataDir": data_dir, "SchemaVersion": schema_version}
    parser["Defaults"] = {"CompanyName": company_name, "Currency": currency}
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        parser.write(handle)
    return config_path


def initialize(directory: Path, *, company_name: str = "", currency: str = DEFAULT_CURRENCY, overwrite: bool = False) -> Path:
    """Create ``config.ini`` plus its data directory under ``directory``."""

    config_path = write_config(
        directory,
        company_name=company_name,
        currency=currency,
        overwrite=overwrite,
    )
    create_data_store(config_path.parent / DEFAULT_DATA_DIR, overwrite=overwrite)
    return config_path


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize an inventory ledger")
    parser.add_argument(
        "--directory",
        default=".",
        help="Directory that receives config.ini and the data folder (default: .)",
    )
    parser.add_argument("--company-name", default="")
    parser.add_argument("--currency", default=DEFAULT_CURRENCY)
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config and empty the existing data.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    directory = Path(args.directory).expanduser().resolve()

    print("--- Inventory Ledger Setup ---")
    print(f"Target directory: {directory}")

    try:
        config_path = initialize(
            directory,
            company_name=args.company_name,
            currency=args.currency.upper(),
            overwrite=args.force,
        )
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing files if appropriate.")
        return 1
    except (PersistenceFailure, OSError) as exc:
        print(f"\n[ERROR] Unable to write ledger files: {exc}")
        return 1

    print(f"\n[SUCCESS] Created '{config_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
