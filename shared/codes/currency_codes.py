"""
ISO-4217 currency table (alpha-3 -> numeric code).

Some gateways (Wannafind) expect the numeric code in their request fields.
"""
from __future__ import annotations

from typing import Optional


ISO_4217: dict[str, str] = {
    "AUD": "036",
    "BGN": "975",
    "BRL": "986",
    "CAD": "124",
    "CHF": "756",
    "CNY": "156",
    "CZK": "203",
    "DKK": "208",
    "EUR": "978",
    "GBP": "826",
    "HKD": "344",
    "HUF": "348",
    "ISK": "352",
    "JPY": "392",
    "KRW": "410",
    "NOK": "578",
    "NZD": "554",
    "PLN": "985",
    "RON": "946",
    "RUB": "643",
    "SEK": "752",
    "SGD": "702",
    "TRY": "949",
    "USD": "840",
    "ZAR": "710",
}


def is_iso4217(code: Optional[str]) -> bool:
    return bool(code) and code.upper() in ISO_4217


def numeric_code(code: str) -> str:
    """Numeric ISO-4217 code for an alpha-3 currency; raises KeyError if unknown."""
    return ISO_4217[code.upper()]


def alpha_code(numeric: str) -> Optional[str]:
    """Alpha-3 code for a numeric ISO-4217 code, or None when unknown."""
    for alpha, number in ISO_4217.items():
        if number == numeric.zfill(3):
            return alpha
    return None
