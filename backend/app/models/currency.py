"""
models/currency.py — ISO 4217 currency codes and their minor-unit precision.

No table. Imported by models, schemas, and services so that currency codes
are never repeated as string literals.

Precision:
  0 minor units  — JPY, KRW, VND, CLP, ISK, ... (whole units only)
  3 minor units  — BHD, IQD, JOD, KWD, LYD, OMR, TND
  2 minor units  — everything else in the enum

Currency.quantize() is the single rounding point for money. It never
touches floats: Decimal in, Decimal out.
"""

from __future__ import annotations

import enum
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal


_ZERO_DECIMAL = frozenset({
    "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})

_THREE_DECIMAL = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})


class Currency(str, enum.Enum):
    AED = "AED"
    AUD = "AUD"
    BHD = "BHD"
    BRL = "BRL"
    CAD = "CAD"
    CHF = "CHF"
    CLP = "CLP"
    CNY = "CNY"
    CZK = "CZK"
    DKK = "DKK"
    EUR = "EUR"
    GBP = "GBP"
    HKD = "HKD"
    IDR = "IDR"
    ILS = "ILS"
    INR = "INR"
    IQD = "IQD"
    ISK = "ISK"
    JOD = "JOD"
    JPY = "JPY"
    KRW = "KRW"
    KWD = "KWD"
    LYD = "LYD"
    MXN = "MXN"
    MYR = "MYR"
    NOK = "NOK"
    NZD = "NZD"
    OMR = "OMR"
    PHP = "PHP"
    PLN = "PLN"
    SAR = "SAR"
    SEK = "SEK"
    SGD = "SGD"
    THB = "THB"
    TND = "TND"
    TRY = "TRY"
    TWD = "TWD"
    USD = "USD"
    VND = "VND"
    ZAR = "ZAR"

    @property
    def minor_units(self) -> int:
        """Number of digits after the decimal point (e.g. 2 for USD, 0 for VND)."""
        if self.value in _ZERO_DECIMAL:
            return 0
        if self.value in _THREE_DECIMAL:
            return 3
        return 2

    @property
    def minor_unit(self) -> Decimal:
        """The smallest indivisible amount: Decimal("0.01") for USD, Decimal("1") for VND."""
        return Decimal(1).scaleb(-self.minor_units)

    def quantize(self, value: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
        """Rounds `value` to this currency's minor unit."""
        return Decimal(value).quantize(self.minor_unit, rounding=rounding)

    def floor(self, value: Decimal) -> Decimal:
        """Truncates a non-negative `value` to this currency's minor unit."""
        return self.quantize(value, rounding=ROUND_DOWN)

    def has_valid_precision(self, value: Decimal) -> bool:
        """True if `value` has no digits below the minor unit."""
        return value == value.quantize(self.minor_unit, rounding=ROUND_DOWN)


def as_currency(value: Currency | str) -> Currency:
    """Accepts either a Currency member or its ISO code."""
    if isinstance(value, Currency):
        return value
    return Currency(str(value).upper())
