"""Currency display helpers. No conversion is ever performed."""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping


FALLBACK_SYMBOL = "$"

CURRENCY_SYMBOLS: Mapping[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "AUD": "A$",
    "CAD": "C$",
    "CHF": "CHF",
    "CNY": "¥",
    "INR": "₹",
    "MXN": "Mex$",
    "BRL": "R$",
    "ZAR": "R",
    "KRW": "₩",
    "SGD": "S$",
    "HKD": "HK$",
    "NZD": "NZ$",
    "SEK": "kr",
    "NOK": "kr",
    "DKK": "kr",
    "PLN": "zł",
    "THB": "฿",
    "IDR": "Rp",
    "MYR": "RM",
    "PHP": "₱",
    "AED": "د.إ",
    "SAR": "﷼",
    "TRY": "₺",
    "RUB": "₽",
    "LKR": "Rs.",
}


def get_currency_symbol(code: str) -> str:
    """Return the display symbol for ``code``, or ``FALLBACK_SYMBOL`` if unknown."""

    return CURRENCY_SYMBOLS.get(str(code).upper(), FALLBACK_SYMBOL)


def format_amount(amount: Decimal, code: str) -> str:
    """Render ``amount`` with the symbol for ``code`` and two decimals."""

    return f"{get_currency_symbol(code)} {Decimal(amount):,.2f}"
