"""
Module: patronage_kernel.db.types
Responsibility: Annotated type aliases and helpers for money, percentage and
    rate columns.  Centralizes precision and currency validation so that every
    model and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and engines.  MUST NOT import from any of those layers.

Invariants enforced:
    - Money is integer minor units (pence, cents) end-to-end.  No floats and
      no fractional money anywhere in the kernel.
    - Percentages are display values quantized to 2 places with ROUND_HALF_UP
      by percentage_of(); they never feed monetary arithmetic.
    - Currency codes are validated against the ISO 4217 codes the engine
      knows the minor-unit exponent for.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String
from sqlalchemy.orm import mapped_column

# Integer minor currency units (e.g. pence)
MinorUnits = Annotated[int, mapped_column(BigInteger)]

# Display percentage 0.00 .. 100.00
Percentage = Annotated[Decimal, mapped_column(Numeric(5, 2))]

# Dividend rate in [0, 1]
Rate = Annotated[Decimal, mapped_column(Numeric(7, 6))]

# ISO 4217 currency code (e.g. "GBP")
Currency = Annotated[str, mapped_column(String(3))]

# Tenant / member identifiers issued by the surrounding application
ExternalId = Annotated[str, mapped_column(String(64))]

ShortCode = Annotated[str, mapped_column(String(32))]

PERCENT_QUANTUM = Decimal("0.01")
HUNDRED = Decimal("100")

# Minor-unit exponent per ISO 4217 currency (number of decimal places)
MINOR_UNIT_EXPONENTS: dict[str, int] = {
    "GBP": 2, "EUR": 2, "USD": 2, "CAD": 2, "AUD": 2, "NZD": 2, "CHF": 2,
    "SEK": 2, "NOK": 2, "DKK": 2, "PLN": 2, "CZK": 2, "ZAR": 2, "INR": 2,
    "KES": 2, "UGX": 0, "JPY": 0, "KRW": 0, "ISK": 0, "CLP": 0,
    "BHD": 3, "KWD": 3, "OMR": 3, "JOD": 3, "TND": 3,
}


class InvalidCurrencyError(ValueError):
    """Raised when a currency code is unknown to the engine."""

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid or unsupported ISO 4217 currency code: '{currency}'")


def validate_currency(currency: str) -> str:
    """
    Validate and normalize a currency code.

    Returns:
        The uppercase currency code.

    Raises:
        InvalidCurrencyError: If the code is not a supported ISO 4217 code.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if normalized not in MINOR_UNIT_EXPONENTS:
        raise InvalidCurrencyError(currency)
    return normalized


def percentage_of(part: int, total: int) -> Decimal:
    """
    ``part / total * 100`` rounded to 2 decimal places (ROUND_HALF_UP).

    Returns Decimal("0.00") when total is zero.
    """
    if total == 0:
        return Decimal("0.00")
    return (Decimal(part) * HUNDRED / Decimal(total)).quantize(
        PERCENT_QUANTUM, rounding=ROUND_HALF_UP
    )
