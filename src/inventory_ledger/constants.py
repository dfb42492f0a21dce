"""Enumerations and fixed values shared across the inventory ledger modules.

The data layer, the ledger engine, the reporting functions, and the CLI all
import their identifiers from here so stored values and code never drift apart.
"""

from __future__ import annotations

from enum import Enum


# Schema version every layer expects to find in ``config.ini``.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Products at or below this many units are reported as low stock.
LOW_STOCK_THRESHOLD = 10

# Number of entries kept in a report's best-seller list.
TOP_PRODUCTS_LIMIT = 5

DEFAULT_CURRENCY = "LKR"
DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "admin123"


class TransactionType(str, Enum):
    """Enumerate the transaction types recorded in the ledger."""

    SALE = "sale"
    PURCHASE = "purchase"
    REMOVAL = "removal"


class RemovalReason(str, Enum):
    """Enumerate why stock may be taken out without being sold."""

    DAMAGED = "damaged"
    EXPIRED = "expired"
    LOST = "lost"
    OTHER = "other"


class DateRange(str, Enum):
    """Enumerate the named reporting windows."""

    WEEK = "week"
    MONTH = "month"
    ALL = "all"


class StorageKey(str, Enum):
    """Enumerate the keys under which blobs are kept in the local store."""

    PRODUCTS = "products"
    TRANSACTIONS = "transactions"
    SETTINGS = "settings"
    AUTH = "auth"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "LOW_STOCK_THRESHOLD",
    "TOP_PRODUCTS_LIMIT",
    "DEFAULT_CURRENCY",
    "DEFAULT_USERNAME",
    "DEFAULT_PASSWORD",
    "TransactionType",
    "RemovalReason",
    "DateRange",
    "StorageKey",
]
