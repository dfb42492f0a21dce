"""Aggregations derived from a catalog and ledger snapshot.

Everything here is a pure function of its arguments: nothing is cached, the
inputs are never modified, and ``now`` is always passed in so results are
reproducible. Callers obtain a consistent snapshot with
:func:`inventory_ledger.core_logic.snapshot` and hand it over.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import log
from .constants import LOW_STOCK_THRESHOLD, TOP_PRODUCTS_LIMIT, DateRange, TransactionType
from .data_manager import ProductRecord, TransactionRecord


ZERO = Decimal("0")


@dataclass(frozen=True)
class DashboardSummary:
    """Headline figures for the current calendar month."""

    total_products: int
    stock_value: Decimal
    monthly_sales: Decimal
    monthly_purchases: Decimal
    monthly_profit: Decimal
    low_stock_products: Tuple[ProductRecord, ...]


@dataclass(frozen=True)
class TopProduct:
    """Sales of one product within a report window."""

    product_id: str
    product_name: str
    total_quantity: int
    total_revenue: Decimal


@dataclass(frozen=True)
class ReportData:
    """Totals and best sellers for a named date range."""

    total_sales: Decimal
    total_purchases: Decimal
    total_profit: Decimal
    transaction_count: int
    top_products: Tuple[TopProduct, ...]


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps are treated as UTC so they compare with aware ones.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def local_now() -> datetime:
    """Return the current time as an aware datetime in the machine's local zone.

    Calendar windows such as "this month" follow the shop's local calendar,
    so callers pass this value as ``now`` rather than a UTC clock.
    """

    return datetime.now().astimezone()


def first_day_of_month(now: datetime) -> datetime:
    """Return midnight on the first day of ``now``'s month, in ``now``'s timezone."""

    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def range_start(date_range: Union[DateRange, str], now: datetime) -> Optional[datetime]:
    """Return the inclusive lower bound of ``date_range``.

    ``week`` is a rolling seven days back from ``now``, ``month`` starts on the
    first of the current calendar month, and ``all`` has no lower bound
    (``None``).

    Raises:
        ValueError: If ``date_range`` is not a known range name.
    """

    date_range = DateRange(date_range)
    if date_range is DateRange.WEEK:
        return now - timedelta(days=7)
    if date_range is DateRange.MONTH:
        return first_day_of_month(now)
    return None


def filter_transactions(
    transactions: Iterable[TransactionRecord],
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    transaction_type: Optional[TransactionType] = None,
    query: Optional[str] = None,
) -> List[TransactionRecord]:
    """Select transactions with ``start <= date <= end`` and a matching type.

    ``query`` keeps entries whose product name contains it, ignoring case.
    Any filter may be ``None``. Input order is preserved.
    """

    needle = query.strip().casefold() if query else ""

    lower = _as_utc(start) if start is not None else None
    upper = _as_utc(end) if end is not None else None
    selected = []
    for transaction in transactions:
        moment = _as_utc(transaction.date)
        if lower is not None and moment < lower:
            continue
        if upper is not None and moment > upper:
            continue
        if transaction_type is not None and transaction.transaction_type is not transaction_type:
            continue
        if needle and needle not in transaction.product_name.casefold():
            continue
        selected.append(transaction)
    return selected


def sum_amounts(transactions: Iterable[TransactionRecord], transaction_type: TransactionType) -> Decimal:
    return sum(
        (t.total_amount for t in transactions if t.transaction_type is transaction_type),
        ZERO,
    )


def sum_profit(transactions: Iterable[TransactionRecord]) -> Decimal:
    """Total the profit of sale entries; purchases and removals never count."""

    return sum(
        (t.profit or ZERO for t in transactions if t.transaction_type is TransactionType.SALE),
        ZERO,
    )


def stock_value(products: Iterable[ProductRecord]) -> Decimal:
    """Value the stock on hand at cost."""

    return sum((p.buying_price * p.stock for p in products), ZERO)


def search_products(products: Iterable[ProductRecord], query: Optional[str]) -> List[ProductRecord]:
    """Return products whose name, category or supplier contains ``query``.

    Matching ignores case. A blank query returns the whole catalog in order.
    """

    needle = query.strip().casefold() if query else ""
    if not needle:
        return list(products)
    return [
        p
        for p in products
        if needle in p.name.casefold()
        or needle in p.category.casefold()
        or needle in p.supplier_name.casefold()
    ]


def low_stock_products(
    products: Iterable[ProductRecord],
    threshold: int = LOW_STOCK_THRESHOLD,
) -> List[ProductRecord]:
    """Return products with ``stock <= threshold`` in catalog order."""

    return [p for p in products if p.stock <= threshold]


def top_products(
    transactions: Iterable[TransactionRecord],
    limit: int = TOP_PRODUCTS_LIMIT,
) -> List[TopProduct]:
    """Rank products by sales revenue.

    Sale entries are grouped by ``product_id``; quantity and revenue are
    summed and the name is taken from the first entry seen. Ties keep the order
    in which products were first encountered.
    """

    grouped: Dict[str, Dict[str, object]] = {}
    for transaction in transactions:
        if transaction.transaction_type is not TransactionType.SALE:
            continue
        entry = grouped.get(transaction.product_id)
        if entry is None:
            grouped[transaction.product_id] = {
                "name": transaction.product_name,
                "quantity": transaction.quantity,
                "revenue": transaction.total_amount,
            }
        else:
            entry["quantity"] += transaction.quantity
            entry["revenue"] += transaction.total_amount

    ranked = [
        TopProduct(
            product_id=product_id,
            product_name=data["name"],
            total_quantity=data["quantity"],
            total_revenue=data["revenue"],
        )
        for product_id, data in grouped.items()
    ]
    # sorted() is stable, so equal revenues keep first-seen order.
    ranked = sorted(ranked, key=lambda item: item.total_revenue, reverse=True)
    return ranked[:limit]


def dashboard_summary(
    products: Sequence[ProductRecord],
    transactions: Sequence[TransactionRecord],
    now: datetime,
) -> DashboardSummary:
    """Summarize the catalog and the current month's trading.

    The monthly window runs from :func:`first_day_of_month` (inclusive) up to
    and including ``now``.
    """

    window = filter_transactions(transactions, start=first_day_of_month(now), end=now)
    summary = DashboardSummary(
        total_products=len(products),
        stock_value=stock_value(products),
        monthly_sales=sum_amounts(window, TransactionType.SALE),
        monthly_purchases=sum_amounts(window, TransactionType.PURCHASE),
        monthly_profit=sum_profit(window),
        low_stock_products=tuple(low_stock_products(products)),
    )
    log.debug(
        "Dashboard summary: %d products, %d transactions this month",
        summary.total_products,
        len(window),
    )
    return summary


def report_data(
    products: Sequence[ProductRecord],
    transactions: Sequence[TransactionRecord],
    date_range: Union[DateRange, str],
    now: datetime,
) -> ReportData:
    """Build totals and best sellers for ``date_range``.

    ``transaction_count`` counts every entry in the window, removals included,
    even though removals add to neither sales, purchases nor profit.
    ``products`` is accepted for symmetry with :func:`dashboard_summary`;
    figures come from the ledger's own snapshots so deleted products still
    appear.

    Raises:
        ValueError: If ``date_range`` is not a known range name.
    """

    window = filter_transactions(transactions, start=range_start(date_range, now))
    report = ReportData(
        total_sales=sum_amounts(window, TransactionType.SALE),
        total_purchases=sum_amounts(window, TransactionType.PURCHASE),
        total_profit=sum_profit(window),
        transaction_count=len(window),
        top_products=tuple(top_products(window)),
    )
    log.debug("Report for range '%s': %d transactions", DateRange(date_range).value, report.transaction_count)
    return report


__all__ = [
    "DashboardSummary",
    "TopProduct",
    "ReportData",
    "local_now",
    "first_day_of_month",
    "range_start",
    "filter_transactions",
    "stock_value",
    "search_products",
    "low_stock_products",
    "top_products",
    "dashboard_summary",
    "report_data",
]
