"""Business logic layer for the inventory ledger.

This module owns the in-memory catalog and the append-only transaction log and
keeps them consistent: every stock change is tied to exactly one ledger entry,
and no mutation is applied until all of its checks have passed. It consumes the
Data Access Layer (DAL) for all I/O.
"""

from __future__ import annotations

import re
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

from . import currency, data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, RemovalReason, TransactionType
from .data_manager import PersistenceFailure, ProductRecord, SettingsRecord, TransactionRecord


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale or removal asks for more units than are on hand."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when caller-supplied values are malformed or out of range."""


_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")

# Fields a caller may change through update_product.
EDITABLE_PRODUCT_FIELDS = frozenset(
    {
        "name",
        "category",
        "supplier_name",
        "buying_price",
        "selling_price",
        "stock",
        "image_uri",
    }
)


@dataclass
class RuntimeContext:
    """Service object owning the catalog, the ledger and the store they persist to.

    ``products`` keeps catalog order and ``transactions`` is newest-first. Both
    lists are only mutated in place while ``lock`` is held.
    """

    settings: data_manager.ConfigSettings
    store: data_manager.JsonFileStore
    products: List[ProductRecord] = field(default_factory=list)
    transactions: List[TransactionRecord] = field(default_factory=list)
    shop: Optional[SettingsRecord] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def shop_settings(self) -> SettingsRecord:
        if self.shop is None:
            return SettingsRecord(company_name=self.settings.company_name, currency=self.settings.currency)
        return self.shop


@dataclass(frozen=True)
class SaleCommand:
    """User intent for creating a ``sale`` transaction."""

    product_id: str
    quantity: int
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for creating a ``purchase`` transaction."""

    product_id: str
    quantity: int
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RemovalCommand:
    """User intent for taking stock out as damaged, expired, lost or other."""

    product_id: str
    quantity: int
    reason: Union[RemovalReason, str]
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


TransactionCommand = Union[SaleCommand, PurchaseCommand, RemovalCommand]


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration, open the store and read the catalog and ledger.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context holding the persisted state, ready for
            mutations and reports.

    Raises:
        FileNotFoundError: If the configuration file or data directory cannot
            be located.
        KeyError: When mandatory configuration options are missing.
        PersistenceFailure: If a stored blob cannot be read or decoded.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    store = data_manager.open_store(settings.data_dir)
    context = RuntimeContext(settings=settings, store=store)
    _reload(context)
    log.info("Loaded runtime context for data directory '%s'", settings.data_dir)
    return context


def _reload(context: RuntimeContext) -> None:
    with context.lock:
        context.products[:] = list(data_manager.iter_products(context.store))
        context.transactions[:] = list(data_manager.iter_transactions(context.store))
        context.shop = data_manager.load_settings_record(context.store, context.settings)
        log.debug(
            "Loaded %d products and %d transactions",
            len(context.products),
            len(context.transactions),
        )


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Return a fresh context re-read from the store, discarding memory-only state."""

    fresh = RuntimeContext(settings=context.settings, store=context.store)
    _reload(fresh)
    log.info("Reloaded state from '%s'", context.settings.data_dir)
    return fresh


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate that the configured schema version matches this code.

    Raises:
        RuntimeError: If ``SchemaVersion`` in ``config.ini`` differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Store schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Store schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Write catalog and ledger to the store in one combined write.

    Raises:
        PersistenceFailure: If the store rejects the write. In-memory state is
            left as it is; the next successful write brings storage back in
            line.
    """
    with context.lock:
        data_manager.save_ledger(context.store, context.products, context.transactions)
    log.debug("Persisted catalog and ledger to '%s'", context.settings.data_dir)


def snapshot(context: RuntimeContext) -> Tuple[List[ProductRecord], List[TransactionRecord]]:
    """Copy catalog and ledger under the lock so readers see a consistent pair."""

    with context.lock:
        return list(context.products), list(context.transactions)


def list_products(context: RuntimeContext) -> List[ProductRecord]:
    """Return a copy of the catalog in catalog order."""
    with context.lock:
        return list(context.products)


def list_transactions(context: RuntimeContext) -> List[TransactionRecord]:
    """Return a copy of the ledger, newest entry first."""
    with context.lock:
        return list(context.transactions)


def get_product(context: RuntimeContext, product_id: str) -> ProductRecord:
    """Resolve a product by its identifier.

    Raises:
        MissingReferenceError: If no product has ``product_id``.
    """
    with context.lock:
        for product in context.products:
            if product.product_id == product_id:
                return product
    log.warning("Product lookup failed for id '%s'", product_id)
    raise MissingReferenceError(f"Product not found: {product_id}")


def _index_of(context: RuntimeContext, product_id: str) -> Optional[int]:
    for index, product in enumerate(context.products):
        if product.product_id == product_id:
            return index
    return None


def generate_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate an identifier that sorts by time and is unique within a microsecond.

    Returns:
        str: ``{prefix}{YYYYMMDDHHMMSSffffff}-{8 hex chars}``. The random suffix
            keeps two ids minted in the same instant distinct.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:8]}"


def require_positive_quantity(quantity: Any) -> int:
    """Validate that a quantity is a strictly positive whole number.

    ``bool`` is rejected even though it subclasses ``int``; an integral
    :class:`~decimal.Decimal` is accepted and converted.

    Raises:
        ValidationError: If ``quantity`` is not a positive integer.
    """
    if isinstance(quantity, Decimal):
        if not quantity.is_finite():
            log.error("Quantity validation failed: %r", quantity)
            raise ValidationError(f"Quantity must be a whole number, got {quantity!r}")
        if quantity == quantity.to_integral_value():
            quantity = int(quantity)
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r", quantity)
        raise ValidationError(f"Quantity must be a whole number, got {quantity!r}")
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be greater than zero")
    return quantity


def require_nonnegative_money(amount: Any, field_name: str) -> Decimal:
    """Coerce ``amount`` to :class:`Decimal` and ensure it is not negative.

    Raises:
        ValidationError: If the value is not a number or is below zero.
    """
    if isinstance(amount, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number, got {amount!r}") from exc
    if not value.is_finite() or value < Decimal("0"):
        log.error("Monetary value validation failed for %s: %s", field_name, amount)
        raise ValidationError(f"{field_name} must be zero or positive")
    return value


def require_text(value: Any, field_name: str) -> str:
    """Return ``value`` stripped, rejecting missing or blank text."""

    if not isinstance(value, str) or not value.strip():
        log.error("Text validation failed for %s: %r", field_name, value)
        raise ValidationError(f"{field_name} is required")
    return value.strip()


def require_stock_level(stock: Any) -> int:
    if isinstance(stock, bool) or not isinstance(stock, int):
        raise ValidationError(f"Stock must be a whole number, got {stock!r}")
    if stock < 0:
        raise ValidationError("Stock cannot be negative")
    return stock


def require_removal_reason(reason: Any) -> RemovalReason:
    """Parse a removal reason.

    Raises:
        ValidationError: If ``reason`` is not damaged, expired, lost or other.
    """
    try:
        return RemovalReason(reason)
    except ValueError as exc:
        log.error("Unrecognised removal reason: %r", reason)
        raise ValidationError(f"Unsupported removal reason: {reason!r}") from exc


def _clean_field(field_name: str, value: Any) -> Any:
    if field_name in ("name", "category", "supplier_name"):
        return require_text(value, field_name)
    if field_name in ("buying_price", "selling_price"):
        return require_nonnegative_money(value, field_name)
    if field_name == "stock":
        return require_stock_level(value)
    if field_name == "image_uri":
        return None if value is None else str(value)
    raise ValidationError(f"Unknown product field: {field_name}")


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    category: str,
    supplier_name: str,
    buying_price: Any,
    selling_price: Any,
    stock: int = 0,
    image_uri: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ProductRecord:
    """Create a product with a fresh id and timestamps and append it to the catalog.

    No duplicate-name check is made. Values are validated before anything is
    added.

    Returns:
        ProductRecord: The stored product.

    Raises:
        ValidationError: If a text field is blank, a price is negative or not
            numeric, or the stock is not a non-negative integer.
        PersistenceFailure: If the catalog cannot be written.
    """
    values = {
        "name": name,
        "category": category,
        "supplier_name": supplier_name,
        "buying_price": buying_price,
        "selling_price": selling_price,
        "stock": stock,
        "image_uri": image_uri,
    }
    cleaned = {key: _clean_field(key, value) for key, value in values.items()}
    moment = _resolve_timestamp(timestamp)
    product = ProductRecord(
        product_id=generate_id(prefix="P", when=moment),
        created_at=moment,
        updated_at=moment,
        **cleaned,
    )
    with context.lock:
        context.products.append(product)
        persist_context(context)
    log.info("Added product '%s' (%s) with stock %d", product.product_id, product.name, product.stock)
    return product


def update_product(context: RuntimeContext, product_id: str, /, **field_values: Any) -> ProductRecord:
    """Merge ``field_values`` into an existing product and refresh ``updated_at``.

    Args:
        context (RuntimeContext): Active runtime context.
        product_id (str): Identifier of the product to edit.
        **field_values: Any of ``EDITABLE_PRODUCT_FIELDS``.

    Returns:
        ProductRecord: The product after the merge.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        ValidationError: If a field is not editable or its value is invalid.
        PersistenceFailure: If the catalog cannot be written.
    """
    unknown = set(field_values) - EDITABLE_PRODUCT_FIELDS
    if unknown:
        log.error("Rejected update of non-editable fields: %s", ", ".join(sorted(unknown)))
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    cleaned = {key: _clean_field(key, value) for key, value in field_values.items()}

    with context.lock:
        index = _index_of(context, product_id)
        if index is None:
            log.warning("Update requested for unknown product '%s'", product_id)
            raise MissingReferenceError(f"Product not found: {product_id}")
        updated = replace(
            context.products[index],
            updated_at=_resolve_timestamp(None),
            **cleaned,
        )
        context.products[index] = updated
        persist_context(context)
    log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(cleaned)) or "-")
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> bool:
    """Remove a product from the catalog.

    Transactions that reference the product keep their own name and price
    snapshot and are left alone.

    Returns:
        bool: ``True`` if a product was removed, ``False`` if the id was
            unknown (nothing is written in that case).
    """
    with context.lock:
        index = _index_of(context, product_id)
        if index is None:
            log.info("Delete requested for unknown product '%s'; nothing to do", product_id)
            return False
        removed = context.products.pop(index)
        persist_context(context)
    log.info("Deleted product '%s' (%s)", removed.product_id, removed.name)
    return True


def _apply_transaction(
    context: RuntimeContext,
    product: ProductRecord,
    transaction: TransactionRecord,
    *,
    stock_delta: int,
) -> None:
    """Write the stock change and prepend the ledger entry. Caller holds the lock."""

    index = _index_of(context, product.product_id)
    if index is None:
        raise MissingReferenceError(f"Product not found: {product.product_id}")
    context.products[index] = replace(
        product,
        stock=product.stock + stock_delta,
        updated_at=transaction.date,
    )
    context.transactions.insert(0, transaction)


def record_sale(context: RuntimeContext, command: SaleCommand) -> TransactionRecord:
    """Sell units of a product at its current selling price.

    The stock check, the stock decrement, and the ledger append happen under
    the context lock, then catalog and ledger are persisted together. If any
    check fails nothing is changed.

    Returns:
        TransactionRecord: The new ``sale`` entry, carrying
            ``total_amount = selling_price * quantity`` and
            ``profit = (selling_price - buying_price) * quantity``.

    Raises:
        ValidationError: If the quantity is not a positive integer.
        MissingReferenceError: If the product does not exist.
        InsufficientStockError: If fewer than ``quantity`` units are on hand.
        PersistenceFailure: If the write fails after the in-memory change.
    """
    quantity = require_positive_quantity(command.quantity)
    with context.lock:
        product = get_product(context, command.product_id)
        if product.stock < quantity:
            log.warning(
                "Rejected sale of %d x '%s': only %d in stock",
                quantity,
                product.product_id,
                product.stock,
            )
            raise InsufficientStockError(
                f"Insufficient stock for '{product.name}': requested {quantity}, available {product.stock}"
            )
        timestamp = _resolve_timestamp(command.timestamp)
        transaction = build_sale_transaction(
            product,
            quantity=quantity,
            notes=command.notes,
            transaction_id=generate_id(when=timestamp),
            timestamp=timestamp,
        )
        _apply_transaction(context, product, transaction, stock_delta=-quantity)
        persist_context(context)
    log.info(
        "Recorded sale '%s' for product '%s' (quantity=%d, total=%s, profit=%s)",
        transaction.transaction_id,
        product.product_id,
        quantity,
        transaction.total_amount,
        transaction.profit,
    )
    return transaction


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> TransactionRecord:
    """Buy units of a product in at its current buying price.

    Purchases always succeed for an existing product; stock grows by
    ``quantity`` and no profit is recorded.

    Raises:
        ValidationError: If the quantity is not a positive integer.
        MissingReferenceError: If the product does not exist.
        PersistenceFailure: If the write fails after the in-memory change.
    """
    quantity = require_positive_quantity(command.quantity)
    with context.lock:
        product = get_product(context, command.product_id)
        timestamp = _resolve_timestamp(command.timestamp)
        transaction = build_purchase_transaction(
            product,
            quantity=quantity,
            notes=command.notes,
            transaction_id=generate_id(when=timestamp),
            timestamp=timestamp,
        )
        _apply_transaction(context, product, transaction, stock_delta=quantity)
        persist_context(context)
    log.info(
        "Recorded purchase '%s' for product '%s' (quantity=%d, total=%s)",
        transaction.transaction_id,
        product.product_id,
        quantity,
        transaction.total_amount,
    )
    return transaction


def record_removal(context: RuntimeContext, command: RemovalCommand) -> TransactionRecord:
    """Take units out of stock without selling them.

    The entry is valued at the buying price and carries the removal reason.

    Raises:
        ValidationError: If the quantity or the reason is invalid.
        MissingReferenceError: If the product does not exist.
        InsufficientStockError: If fewer than ``quantity`` units are on hand.
        PersistenceFailure: If the write fails after the in-memory change.
    """
    quantity = require_positive_quantity(command.quantity)
    reason = require_removal_reason(command.reason)
    with context.lock:
        product = get_product(context, command.product_id)
        if product.stock < quantity:
            log.warning(
                "Rejected removal of %d x '%s': only %d in stock",
                quantity,
                product.product_id,
                product.stock,
            )
            raise InsufficientStockError(
                f"Insufficient stock for '{product.name}': requested {quantity}, available {product.stock}"
            )
        timestamp = _resolve_timestamp(command.timestamp)
        transaction = build_removal_transaction(
            product,
            quantity=quantity,
            reason=reason,
            notes=command.notes,
            transaction_id=generate_id(when=timestamp),
            timestamp=timestamp,
        )
        _apply_transaction(context, product, transaction, stock_delta=-quantity)
        persist_context(context)
    log.info(
        "Recorded removal '%s' for product '%s' (quantity=%d, reason=%s)",
        transaction.transaction_id,
        product.product_id,
        quantity,
        reason.value,
    )
    return transaction


def record_transaction(context: RuntimeContext, command: TransactionCommand) -> TransactionRecord:
    """Dispatch a command object to the matching ``record_*`` function."""
    if isinstance(command, SaleCommand):
        return record_sale(context, command)
    if isinstance(command, PurchaseCommand):
        return record_purchase(context, command)
    if isinstance(command, RemovalCommand):
        return record_removal(context, command)
    raise BusinessRuleViolation(f"Unsupported command type: {type(command).__name__}")


def build_sale_transaction(
    product: ProductRecord,
    *,
    quantity: int,
    notes: Optional[str],
    transaction_id: str,
    timestamp: datetime,
) -> TransactionRecord:
    """Materialize a sale of ``quantity`` units of ``product``."""
    price = product.selling_price
    return TransactionRecord(
        transaction_id=transaction_id,
        transaction_type=TransactionType.SALE,
        product_id=product.product_id,
        product_name=product.name,
        quantity=quantity,
        price_per_unit=price,
        total_amount=price * quantity,
        date=timestamp,
        profit=(product.selling_price - product.buying_price) * quantity,
        notes=notes,
    )


def build_purchase_transaction(
    product: ProductRecord,
    *,
    quantity: int,
    notes: Optional[str],
    transaction_id: str,
    timestamp: datetime,
) -> TransactionRecord:
    """Materialize a purchase of ``quantity`` units at the buying price."""
    price = product.buying_price
    return TransactionRecord(
        transaction_id=transaction_id,
        transaction_type=TransactionType.PURCHASE,
        product_id=product.product_id,
        product_name=product.name,
        quantity=quantity,
        price_per_unit=price,
        total_amount=price * quantity,
        date=timestamp,
        notes=notes,
    )


def build_removal_transaction(
    product: ProductRecord,
    *,
    quantity: int,
    reason: RemovalReason,
    notes: Optional[str],
    transaction_id: str,
    timestamp: datetime,
) -> TransactionRecord:
    price = product.buying_price
    return TransactionRecord(
        transaction_id=transaction_id,
        transaction_type=TransactionType.REMOVAL,
        product_id=product.product_id,
        product_name=product.name,
        quantity=quantity,
        price_per_unit=price,
        total_amount=price * quantity,
        date=timestamp,
        removal_reason=reason,
        notes=notes,
    )


def update_settings(context: RuntimeContext, *, company_name: str, currency: str) -> SettingsRecord:
    """Persist the company name and currency code used by reports.

    Raises:
        ValidationError: If ``currency`` is not a three-letter code.
        PersistenceFailure: If the settings cannot be written.
    """
    code = str(currency).strip().upper()
    if not _CURRENCY_CODE.match(code):
        log.error("Rejected currency code %r", currency)
        raise ValidationError(f"Currency must be a three-letter code, got {currency!r}")
    record = SettingsRecord(company_name=str(company_name).strip(), currency=code)
    with context.lock:
        data_manager.save_settings_record(context.store, record)
        context.shop = record
    log.info("Updated settings: company=%r currency=%s", record.company_name, record.currency)
    return record


def currency_symbol(context: RuntimeContext) -> str:
    """Return the display symbol for the configured currency."""
    return currency.get_currency_symbol(context.shop_settings.currency)


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "InsufficientStockError",
    "ValidationError",
    "PersistenceFailure",
    "RuntimeContext",
    "SaleCommand",
    "PurchaseCommand",
    "RemovalCommand",
    "load_runtime_context",
    "refresh_context",
    "ensure_schema_version",
    "persist_context",
    "snapshot",
    "list_products",
    "list_transactions",
    "get_product",
    "add_product",
    "update_product",
    "delete_product",
    "record_sale",
    "record_purchase",
    "record_removal",
    "record_transaction",
    "update_settings",
    "currency_symbol",
]
