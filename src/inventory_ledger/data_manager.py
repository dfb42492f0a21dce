"""Data access layer for the inventory ledger.

This module provides low-level helpers that read from and write to the local
key-value store. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Store lifecycle: opening the data directory and reading, writing, or
   removing the JSON blob kept under each key.
3. Record codecs: converting products, transactions, and settings between
   their dataclass form and the serialized record shape.
"""


from __future__ import annotations

import configparser
import json
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_PASSWORD,
    DEFAULT_USERNAME,
    RemovalReason,
    StorageKey,
    TransactionType,
)


CONFIG_FILE_NAME = "config.ini"
BLOB_SUFFIX = ".json"
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


class PersistenceFailure(RuntimeError):
    """Raised when the local store cannot be read or written."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_dir: Path
    company_name: str
    currency: str
    schema_version: str
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD


@dataclass(frozen=True)
class ProductRecord:
    """In-memory view of one catalog entry."""

    product_id: str
    name: str
    category: str
    supplier_name: str
    buying_price: Decimal
    selling_price: Decimal
    stock: int
    created_at: datetime
    updated_at: datetime
    image_uri: Optional[str] = None


@dataclass(frozen=True)
class TransactionRecord:
    """In-memory view of one ledger entry."""

    transaction_id: str
    transaction_type: TransactionType
    product_id: str
    product_name: str
    quantity: int
    price_per_unit: Decimal
    total_amount: Decimal
    date: datetime
    profit: Optional[Decimal] = None
    removal_reason: Optional[RemovalReason] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class SettingsRecord:
    """Shop-level presentation settings persisted under ``settings``."""

    company_name: str
    currency: str


class JsonFileStore:
    """Key-value store keeping one JSON text blob per key inside a directory.

    Values handed to :meth:`set` are already serialized strings; the store
    never interprets them. Writes go to a temporary file in the same directory
    followed by :func:`os.replace`, so a reader never sees a half-written
    blob. Every ``OSError`` is surfaced as :class:`PersistenceFailure`.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def __repr__(self) -> str:
        return f"JsonFileStore({str(self.directory)!r})"

    def path_for(self, key: str) -> Path:
        """Return the file backing ``key`` after validating the key."""

        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}{BLOB_SUFFIX}"

    def get(self, key: str) -> Optional[str]:
        """Return the blob stored under ``key`` or ``None`` when absent."""

        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            log.error("Failed to read key '%s' from %s: %s", key, self.directory, exc)
            raise PersistenceFailure(f"Unable to read '{key}': {exc}") from exc

    def set(self, key: str, blob: str) -> None:
        """Store ``blob`` under ``key``, replacing any previous value."""

        self.set_many({key: blob})

    def set_many(self, blobs: Mapping[str, str]) -> None:
        """Write several keys as one step.

        Every blob is staged into a temporary file before any target is
        replaced, so a failure while staging leaves all keys untouched. The
        final renames are not atomic as a group.
        """

        staged: list[tuple[Path, Path]] = []
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            for key, blob in blobs.items():
                target = self.path_for(key)
                fd, temp_name = tempfile.mkstemp(
                    prefix=f".{key}.", suffix=".tmp", dir=self.directory
                )
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(blob)
                staged.append((Path(temp_name), target))
            for temp_path, target in staged:
                os.replace(temp_path, target)
        except OSError as exc:
            for temp_path, _ in staged:
                temp_path.unlink(missing_ok=True)
            keys = ", ".join(blobs)
            log.error("Failed to write keys [%s] to %s: %s", keys, self.directory, exc)
            raise PersistenceFailure(f"Unable to write [{keys}]: {exc}") from exc

    def remove(self, key: str) -> None:
        """Delete the blob under ``key``; missing keys are ignored."""

        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            log.error("Failed to remove key '%s' from %s: %s", key, self.directory, exc)
            raise PersistenceFailure(f"Unable to remove '{key}': {exc}") from exc


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the current
            directory or any of its parents.
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
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration data.
            Validation of individual entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System] DataDir`` and ``[System] SchemaVersion`` are required. The
    ``[Defaults]`` section seeds the shop settings used until the user saves
    their own, and the optional ``[Auth]`` section overrides the built-in
    credential pair. Relative data directories are anchored to ``base_path``
    (or the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor a relative
            ``DataDir``.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
    """

    try:
        data_dir_raw = parser.get("System", "DataDir")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    company_name = parser.get("Defaults", "CompanyName", fallback="")
    currency = parser.get("Defaults", "Currency", fallback=DEFAULT_CURRENCY)
    username = parser.get("Auth", "Username", fallback=DEFAULT_USERNAME)
    password = parser.get("Auth", "Password", fallback=DEFAULT_PASSWORD)

    data_dir = Path(data_dir_raw).expanduser()
    if not data_dir.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_dir = (base_path / data_dir).resolve()

    return ConfigSettings(
        data_dir=data_dir,
        company_name=company_name,
        currency=currency.upper(),
        schema_version=schema_version,
        username=username,
        password=password,
    )


def open_store(data_dir: Path) -> JsonFileStore:
    """Return a store bound to an existing data directory.

    Raises:
        FileNotFoundError: If ``data_dir`` does not exist or is not a
            directory.
    """

    data_dir = Path(data_dir).expanduser().resolve()
    if not data_dir.is_dir():
        raise FileNotFoundError(f"Data directory not found: {data_dir}")
    return JsonFileStore(data_dir)


def save_workbook(workbook: Workbook, destination: Path) -> Path:
    """Persist an openpyxl workbook at ``destination``, creating parents."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)
    return dest


def _load_list(store: JsonFileStore, key: StorageKey) -> list[dict[str, Any]]:
    blob = store.get(key.value)
    if blob is None:
        return []
    try:
        payload = json.loads(blob)
    except json.JSONDecodeError as exc:
        log.error("Stored '%s' blob is not valid JSON: %s", key.value, exc)
        raise PersistenceFailure(f"Corrupt '{key.value}' data: {exc}") from exc
    if not isinstance(payload, list):
        raise PersistenceFailure(f"Corrupt '{key.value}' data: expected a list")
    return payload


def iter_products(store: JsonFileStore) -> Iterable[ProductRecord]:
    """Yield the stored catalog in catalog order."""

    for raw in _load_list(store, StorageKey.PRODUCTS):
        yield deserialize_product(raw)


def iter_transactions(store: JsonFileStore) -> Iterable[TransactionRecord]:
    """Yield the stored ledger, newest entry first."""

    for raw in _load_list(store, StorageKey.TRANSACTIONS):
        yield deserialize_transaction(raw)


def load_settings_record(store: JsonFileStore, defaults: ConfigSettings) -> SettingsRecord:
    """Return the saved shop settings, falling back to the configured seed."""

    blob = store.get(StorageKey.SETTINGS.value)
    if blob is None:
        return SettingsRecord(company_name=defaults.company_name, currency=defaults.currency)
    try:
        raw = json.loads(blob)
    except json.JSONDecodeError as exc:
        log.error("Stored settings blob is not valid JSON: %s", exc)
        raise PersistenceFailure(f"Corrupt 'settings' data: {exc}") from exc
    if not isinstance(raw, dict):
        raise PersistenceFailure("Corrupt 'settings' data: expected an object")
    return deserialize_settings(raw, defaults=defaults)


def save_ledger(
    store: JsonFileStore,
    products: Sequence[ProductRecord],
    transactions: Sequence[TransactionRecord],
) -> None:
    """Write catalog and ledger together for a single logical operation."""

    store.set_many(
        {
            StorageKey.PRODUCTS.value: encode_records(serialize_product(p) for p in products),
            StorageKey.TRANSACTIONS.value: encode_records(serialize_transaction(t) for t in transactions),
        }
    )


def save_settings_record(store: JsonFileStore, record: SettingsRecord) -> None:
    store.set(StorageKey.SETTINGS.value, json.dumps(serialize_settings(record)))


def encode_records(records: Iterable[Mapping[str, Any]]) -> str:
    """Serialize a sequence of record mappings into one JSON blob."""

    return json.dumps(list(records), ensure_ascii=False)


def serialize_product(record: ProductRecord) -> dict[str, Any]:
    """Convert a product dataclass into its stored record shape.

    Decimals are written as strings and timestamps as ISO-8601 text so that a
    read returns exactly what was written. ``imageUri`` is omitted when unset.
    """

    payload: dict[str, Any] = {
        "id": record.product_id,
        "name": record.name,
        "category": record.category,
        "supplierName": record.supplier_name,
        "buyingPrice": str(record.buying_price),
        "sellingPrice": str(record.selling_price),
        "stock": record.stock,
        "createdAt": record.created_at.isoformat(),
        "updatedAt": record.updated_at.isoformat(),
    }
    if record.image_uri is not None:
        payload["imageUri"] = record.image_uri
    return payload


def serialize_transaction(record: TransactionRecord) -> dict[str, Any]:
    """Convert a transaction dataclass into its stored record shape.

    ``profit``, ``removalReason`` and ``notes`` only appear when set, which
    keeps absence distinguishable from an explicit value on the way back.
    """

    payload: dict[str, Any] = {
        "id": record.transaction_id,
        "type": record.transaction_type.value,
        "productId": record.product_id,
        "productName": record.product_name,
        "quantity": record.quantity,
        "pricePerUnit": str(record.price_per_unit),
        "totalAmount": str(record.total_amount),
        "date": record.date.isoformat(),
    }
    if record.profit is not None:
        payload["profit"] = str(record.profit)
    if record.removal_reason is not None:
        payload["removalReason"] = record.removal_reason.value
    if record.notes is not None:
        payload["notes"] = record.notes
    return payload


def serialize_settings(record: SettingsRecord) -> dict[str, Any]:
    return {"companyName": record.company_name, "currency": record.currency}


def _to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise PersistenceFailure(f"Invalid decimal in field '{field_name}': {value!r}") from exc


def _to_count(value: Any, field_name: str, *, minimum: int) -> int:
    # JSON writers may emit 3.0 for 3; anything fractional or below minimum is corrupt.
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise PersistenceFailure(f"Invalid whole number in field '{field_name}': {value!r}")
    if value < minimum:
        raise PersistenceFailure(f"Field '{field_name}' must be at least {minimum}, got {value}")
    return value


def _to_datetime(value: Any, field_name: str) -> datetime:
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise PersistenceFailure(f"Invalid timestamp in field '{field_name}': {value!r}") from exc


def deserialize_product(raw: Mapping[str, Any]) -> ProductRecord:
    """Convert a stored record mapping into a :class:`ProductRecord`.

    Numbers written by other tools (plain JSON numbers) are accepted and
    normalized through ``str`` to avoid binary float artifacts.

    Raises:
        PersistenceFailure: If a required key is missing or a value cannot be
            parsed.
    """

    try:
        return ProductRecord(
            product_id=str(raw["id"]),
            name=str(raw["name"]),
            category=str(raw["category"]),
            supplier_name=str(raw["supplierName"]),
            buying_price=_to_decimal(raw["buyingPrice"], "buyingPrice"),
            selling_price=_to_decimal(raw["sellingPrice"], "sellingPrice"),
            stock=_to_count(raw["stock"], "stock", minimum=0),
            created_at=_to_datetime(raw["createdAt"], "createdAt"),
            updated_at=_to_datetime(raw["updatedAt"], "updatedAt"),
            image_uri=(str(raw["imageUri"]) if raw.get("imageUri") is not None else None),
        )
    except KeyError as exc:
        raise PersistenceFailure(f"Product record missing field {exc}") from exc
    except ValueError as exc:
        raise PersistenceFailure(f"Invalid product record: {exc}") from exc


def deserialize_transaction(raw: Mapping[str, Any]) -> TransactionRecord:
    """Convert a stored record mapping into a :class:`TransactionRecord`.

    Raises:
        PersistenceFailure: If a required key is missing or the type or
            removal reason is not recognised.
    """

    try:
        transaction_type = TransactionType(raw["type"])
        reason_raw = raw.get("removalReason")
        profit_raw = raw.get("profit")
        return TransactionRecord(
            transaction_id=str(raw["id"]),
            transaction_type=transaction_type,
            product_id=str(raw["productId"]),
            product_name=str(raw["productName"]),
            quantity=_to_count(raw["quantity"], "quantity", minimum=1),
            price_per_unit=_to_decimal(raw["pricePerUnit"], "pricePerUnit"),
            total_amount=_to_decimal(raw["totalAmount"], "totalAmount"),
            date=_to_datetime(raw["date"], "date"),
            profit=(_to_decimal(profit_raw, "profit") if profit_raw is not None else None),
            removal_reason=(RemovalReason(reason_raw) if reason_raw is not None else None),
            notes=(str(raw["notes"]) if raw.get("notes") is not None else None),
        )
    except KeyError as exc:
        raise PersistenceFailure(f"Transaction record missing field {exc}") from exc
    except ValueError as exc:
        raise PersistenceFailure(f"Invalid transaction record: {exc}") from exc


def deserialize_settings(raw: Mapping[str, Any], *, defaults: ConfigSettings) -> SettingsRecord:
    return SettingsRecord(
        company_name=str(raw.get("companyName", defaults.company_name)),
        currency=str(raw.get("currency", defaults.currency)),
    )
