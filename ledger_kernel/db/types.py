"""
Module: ledger_kernel.db.types
Responsibility: Annotated type aliases and money utilities.  Centralizes
    precision, rounding, and currency validation so that every model,
    domain function and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money.  to_decimal() converts floats through their
      string form and rejects NaN / infinity.
    - round_money() is the ONLY sanctioned rounding function for financial
      values (ROUND_HALF_UP to the currency's minor units).
    - ISO 4217 enforcement via is_valid_currency().

Failure modes:
    - ValueError from to_decimal() on non-numeric input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Exchange rate with extended precision
Rate = Annotated[Decimal, Numeric(38, 18)]

# ISO 4217 currency code (e.g., "AED", "USD")
Currency = Annotated[str, String(3)]

# Smart code taxonomy string
SmartCode = Annotated[str, String(120)]


DEFAULT_ROUNDING = ROUND_HALF_UP
DEFAULT_MINOR_UNITS = 2

# Currencies whose minor unit is not two decimals
_MINOR_UNIT_EXCEPTIONS: dict[str, int] = {
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "VND": 0, "VUV": 0, "XAF": 0,
    "XOF": 0, "XPF": 0,
}

# Balance tolerance used by the balance validator
BALANCE_TOLERANCE = Decimal("0.01")

# Exclusive upper bounds of the Numeric(38, 9) money and Numeric(38, 18) rate columns
MAX_MONEY_AMOUNT = Decimal(10) ** 29
MAX_EXCHANGE_RATE = Decimal(10) ** 20


def to_decimal(value: Any) -> Decimal:
    """
    Convert an incoming amount to Decimal.

    Accepts Decimal, int, str and float (floats go through ``str`` so that
    ``0.1`` becomes ``Decimal("0.1")`` rather than its binary expansion).
    Booleans are rejected.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a numeric amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a numeric amount: {value!r}") from exc
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        raise ValueError(f"Not a numeric amount: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return result


def minor_units(currency: str | None) -> int:
    """Number of decimal places for a currency (ISO 4217 minor unit)."""
    if not currency:
        return DEFAULT_MINOR_UNITS
    return _MINOR_UNIT_EXCEPTIONS.get(currency.upper(), DEFAULT_MINOR_UNITS)


def round_money(
    value: Decimal,
    decimal_places: int = DEFAULT_MINOR_UNITS,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    This is the ONLY sanctioned rounding function for financial values.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


def round_for_currency(value: Decimal, currency: str | None) -> Decimal:
    """Round ``value`` to the minor units of ``currency``."""
    return round_money(value, minor_units(currency))


# ISO 4217 Currency Codes (active list)
ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BOV", "BRL", "BSD", "BTN", "BWP", "BYN", "BZD",
    "CDF", "CHE", "CHW", "CLF", "CLP", "CNY", "COP", "COU", "CRC", "CUC", "CUP", "CVE", "CZK",
    "DJF", "DKK", "DOP", "DZD",
    "EGP", "ERN", "ETB",
    "FJD", "FKP",
    "GEL", "GHS", "GIP", "GMD", "GNF", "GTQ", "GYD",
    "HKD", "HNL", "HTG", "HUF",
    "IDR", "ILS", "INR", "IQD", "IRR", "ISK",
    "JMD", "JOD",
    "KES", "KGS", "KHR", "KMF", "KPW", "KRW", "KWD", "KYD", "KZT",
    "LAK", "LBP", "LKR", "LRD", "LSL", "LYD",
    "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR", "MVR", "MWK", "MXN", "MXV", "MYR", "MZN",
    "NAD", "NGN", "NIO", "NOK", "NPR",
    "OMR",
    "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG",
    "QAR",
    "RON", "RSD", "RUB", "RWF",
    "SAR", "SBD", "SCR", "SDG", "SEK", "SGD", "SHP", "SLE", "SOS", "SRD", "SSP", "STN", "SVC", "SYP", "SZL",
    "THB", "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS",
    "UAH", "UGX", "USN", "UYI", "UYU", "UYW", "UZS",
    "VED", "VES", "VND", "VUV",
    "WST",
    "XAF", "XCD", "XDR", "XOF", "XPF",
    "YER",
    "ZAR", "ZMW", "ZWL",
})


def is_valid_currency(currency: Any) -> bool:
    """True if ``currency`` is a 3-letter ISO 4217 code."""
    return isinstance(currency, str) and currency.upper() in ISO_4217_CURRENCIES
