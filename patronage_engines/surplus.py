"""
Module: patronage_engines.surplus
Responsibility:
    Derive a period's gross surplus and dividend pool from revenue,
    operating costs and the tenant's dividend rate.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - gross_surplus = revenue - operating_costs (may be negative).
    - dividend_pool = floor(max(0, gross_surplus) * dividend_rate), in
      integer minor units, computed with Decimal (ROUND_DOWN).  Rounding
      down keeps the pool within the surplus; the fraction of a unit stays
      with the cooperative as retained surplus.
    - 0 <= dividend_rate <= 1.

Failure modes:
    - ValueError on non-integer money or a rate outside [0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext

from patronage_engines.tracer import traced_engine

ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass(frozen=True)
class SurplusFigures:
    """Gross surplus and dividend pool of a period, in minor units."""

    gross_surplus: int
    dividend_pool: int

    @property
    def retained_surplus(self) -> int:
        return max(0, self.gross_surplus) - self.dividend_pool


def normalize_rate(rate: Decimal | float | str) -> Decimal:
    """
    Convert a configured rate to Decimal and check it lies in [0, 1].

    Floats are converted through ``str`` so 0.1 becomes Decimal("0.1").
    """
    if isinstance(rate, float):
        rate = str(rate)
    value = Decimal(rate)
    if not value.is_finite() or value < ZERO or value > ONE:
        raise ValueError(f"dividend rate must be within [0, 1], got {rate}")
    return value


@traced_engine(
    "surplus",
    "1.0",
    fingerprint_fields=("revenue", "operating_costs", "dividend_rate"),
)
def compute_surplus(
    revenue: int,
    operating_costs: int,
    dividend_rate: Decimal,
) -> SurplusFigures:
    """Gross surplus and dividend pool for one period."""
    for name, value in (("revenue", revenue), ("operating_costs", operating_costs)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} must be integer minor units, got {value!r}")

    rate = normalize_rate(dividend_rate)
    gross_surplus = revenue - operating_costs

    with localcontext() as ctx:
        ctx.prec = 60
        pool = (Decimal(max(0, gross_surplus)) * rate).to_integral_value(rounding=ROUND_DOWN)

    return SurplusFigures(gross_surplus=gross_surplus, dividend_pool=int(pool))
