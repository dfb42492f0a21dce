"""Export a report to an ``.xlsx`` workbook.

The workbook has three sheets: ``Summary`` with the headline totals,
``TopProducts`` with the ranked best sellers, and ``Transactions`` listing the
ledger entries inside the report window.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence, Union

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import core_logic, data_manager, log, reporting
from .constants import DateRange
from .currency import format_amount


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    "Summary": ["Metric", "Value"],
    "TopProducts": ["Rank", "ProductID", "ProductName", "UnitsSold", "Revenue"],
    "Transactions": [
        "TransactionID",
        "Date",
        "Type",
        "ProductID",
        "ProductName",
        "Quantity",
        "PricePerUnit",
        "TotalAmount",
        "Profit",
        "RemovalReason",
        "Notes",
    ],
}

RANGE_TITLES: Mapping[DateRange, str] = {
    DateRange.WEEK: "Last 7 Days",
    DateRange.MONTH: "This Month",
    DateRange.ALL: "All Time",
}


def _add_sheet(workbook: Workbook, title: str):
    worksheet = workbook.create_sheet(title=title)
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(SHEET_COLUMNS[title], start=1):
        cell = worksheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font
    return worksheet


def build_report_workbook(
    report: reporting.ReportData,
    *,
    company_name: str,
    currency: str,
    date_range: Union[DateRange, str],
    generated_at: datetime,
    transactions: Iterable[data_manager.TransactionRecord] = (),
) -> Workbook:
    """Lay ``report`` out as a workbook.

    Monetary cells on the ``TopProducts`` and ``Transactions`` sheets are
    written as plain numbers so spreadsheet formulas keep working; the
    ``Summary`` sheet shows them formatted with the currency symbol.
    """

    date_range = DateRange(date_range)
    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    summary = _add_sheet(workbook, "Summary")
    for label, value in (
        ("Company", company_name),
        ("Report", f"Inventory Report - {RANGE_TITLES[date_range]}"),
        ("Generated On", generated_at.isoformat(timespec="seconds")),
        ("Currency", currency),
        ("Total Sales", format_amount(report.total_sales, currency)),
        ("Total Purchases", format_amount(report.total_purchases, currency)),
        ("Net Profit", format_amount(report.total_profit, currency)),
        ("Total Transactions", report.transaction_count),
    ):
        summary.append([label, value])

    top_sheet = _add_sheet(workbook, "TopProducts")
    for rank, item in enumerate(report.top_products, start=1):
        top_sheet.append(
            [rank, item.product_id, item.product_name, item.total_quantity, float(item.total_revenue)]
        )

    ledger_sheet = _add_sheet(workbook, "Transactions")
    for transaction in transactions:
        ledger_sheet.append(
            [
                transaction.transaction_id,
                transaction.date.isoformat(),
                transaction.transaction_type.value,
                transaction.product_id,
                transaction.product_name,
                transaction.quantity,
                float(transaction.price_per_unit),
                float(transaction.total_amount),
                float(transaction.profit) if transaction.profit is not None else None,
                transaction.removal_reason.value if transaction.removal_reason is not None else None,
                transaction.notes,
            ]
        )

    return workbook


def export_report(
    context: core_logic.RuntimeContext,
    destination: Path,
    date_range: Union[DateRange, str] = DateRange.MONTH,
    *,
    now: Optional[datetime] = None,
) -> Path:
    """Compute the report for ``date_range`` and save it to ``destination``.

    Returns:
        Path: Resolved path of the written workbook.

    Raises:
        ValueError: If ``date_range`` is unknown.
        OSError: If the workbook cannot be written.
    """

    now = now if now is not None else reporting.local_now()
    products, transactions = core_logic.snapshot(context)
    report = reporting.report_data(products, transactions, date_range, now)
    window = reporting.filter_transactions(transactions, start=reporting.range_start(date_range, now))
    shop = context.shop_settings
    workbook = build_report_workbook(
        report,
        company_name=shop.company_name,
        currency=shop.currency,
        date_range=date_range,
        generated_at=now,
        transactions=window,
    )
    written = data_manager.save_workbook(workbook, destination)
    log.info("Exported %s report to '%s'", DateRange(date_range).value, written)
    return written
