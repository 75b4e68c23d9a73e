"""
Module: calc_audit_kernel.db.types
Responsibility: Amount and currency helpers shared by models and services.
    Centralizes precision, rounding, decimal coercion and currency
    validation so every caller uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - ISO 4217 enforcement.  validate_currency() rejects any string that
      is not a recognized 3-character ISO 4217 currency code.
    - Breakdown step results carry exactly STEP_DECIMAL_PLACES (4) digits.
    - No floats anywhere in stored amounts.  Calculator floats are converted
      through their shortest repr, never through binary expansion.

Failure modes:
    - InvalidCurrencyError on invalid ISO 4217 code.
    - ValueError from to_decimal() on non-numeric, NaN or infinite input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from calc_audit_kernel.exceptions import InvalidCurrencyError


MONEY_DECIMAL_PLACES = 2
STEP_DECIMAL_PLACES = 4
RATE_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a calculator-supplied number into a Decimal.

    Preconditions: value is a Decimal, int, float or numeric string.
        Booleans are rejected even though they are ints.
    Postconditions: Returns a finite Decimal.

    Raises:
        ValueError: If value is not numeric, or is NaN/Infinity.
    """
    if isinstance(value, bool):
        raise ValueError(f"Boolean is not a numeric amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a numeric amount: {value!r}") from exc
    else:
        raise ValueError(f"Not a numeric amount: {value!r}")

    if not result.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    This is the ONLY sanctioned rounding function for financial values in
    the engine.  Step results, rates and averages all delegate here.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


def round_step_result(value: Decimal) -> Decimal:
    """Quantize a breakdown step result to its fixed 4-digit precision."""
    return round_money(value, STEP_DECIMAL_PLACES)


def canonical_amount(value: Decimal) -> str:
    """
    Render an amount as a plain decimal string for JSON storage.

    Never uses exponent notation, so "6000" stays "6000" rather than "6E+3".
    """
    return format(value, "f")


# ISO 4217 Currency Codes
ISO_4217_CURRENCIES: set[str] = {
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BRL", "BSD", "BTN", "BWP", "BYN", "BZD",
    "CDF", "CLP", "CNY", "COP", "CRC", "CUP", "CVE", "CZK",
    "DJF", "DKK", "DOP", "DZD",
    "EGP", "ERN", "ETB",
    "FJD", "FKP",
    "GEL", "GHS", "GIP", "GMD", "GNF", "GTQ", "GYD",
    "HKD", "HNL", "HTG", "HUF",
    "IDR", "ILS", "INR", "IQD", "IRR", "ISK",
    "JMD", "JOD",
    "KES", "KGS", "KHR", "KMF", "KPW", "KRW", "KWD", "KYD", "KZT",
    "LAK", "LBP", "LKR", "LRD", "LSL", "LYD",
    "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR", "MVR", "MWK", "MXN", "MYR", "MZN",
    "NAD", "NGN", "NIO", "NOK", "NPR",
    "OMR",
    "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG",
    "QAR",
    "RON", "RSD", "RUB", "RWF",
    "SAR", "SBD", "SCR", "SDG", "SEK", "SGD", "SHP", "SLE", "SOS", "SRD", "SSP", "STN", "SYP", "SZL",
    "THB", "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS",
    "UAH", "UGX", "UYU", "UZS",
    "VES", "VND", "VUV",
    "WST",
    "XAF", "XCD", "XOF", "XPF",
    "YER",
    "ZAR", "ZMW", "ZWL",
}


def validate_currency(currency: str) -> str:
    """
    Validate that a currency code is a valid ISO 4217 code.

    Preconditions: currency is a non-empty string.
    Postconditions: Returns the uppercase, trimmed currency code iff it is
        a member of ISO_4217_CURRENCIES.

    Raises:
        InvalidCurrencyError: If the currency code is not valid.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()

    if len(normalized) != 3 or normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)

    return normalized


def is_valid_currency(currency: str) -> bool:
    """Check if a currency code is a valid ISO 4217 code."""
    try:
        validate_currency(currency)
        return True
    except InvalidCurrencyError:
        return False
