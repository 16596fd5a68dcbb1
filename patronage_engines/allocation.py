"""
Module: patronage_engines.allocation
Responsibility:
    Apportion an integer dividend pool across members in proportion to their
    patronage using the largest-remainder (Hamilton) method, so that the
    amounts always add up to the pool to the last minor unit.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import patronage_kernel domain DTOs, db.types helpers and
    exceptions.

Invariants enforced:
    - Conservation: Σ dividend_amount == dividend_pool for any non-empty
      allocation.  Checked after every run; a mismatch raises
      RoundingInvariantViolation and nothing is returned.
    - Exact shares: each share pool * w / Σw is computed as an exact
      rational (integer divmod), never in floating point.
    - Determinism: leftover units go to the largest remainders, ties broken
      by ascending member id.  Same inputs, same output.
    - Percentages are display values (2 places, ROUND_HALF_UP) and never
      feed the monetary computation.

Failure modes:
    - ValueError on a negative or non-integer pool or patronage value.
    - RoundingInvariantViolation on a conservation failure (a defect).

Usage:
    from patronage_engines.allocation import AllocationEngine

    result = AllocationEngine().allocate(
        dividend_pool=1000,
        patronage={"A": 3, "B": 2, "C": 2},
    )
    result.amounts()  # {"A": 428, "B": 286, "C": 286}
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from fractions import Fraction

from patronage_engines.tracer import traced_engine
from patronage_kernel.db.types import percentage_of
from patronage_kernel.domain.dtos import AllocationResult, MemberAllocation
from patronage_kernel.exceptions import RoundingInvariantViolation
from patronage_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


def _require_minor_units(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer number of units, got {value!r}")
    if value < 0:
        raise ValueError(f"{name} cannot be negative, got {value}")
    return value


def largest_remainder(pool: int, weights: Mapping[str, Fraction]) -> dict[str, int]:
    """
    Split ``pool`` units across ``weights`` by the largest-remainder method.

    Preconditions:
        pool >= 0; every weight >= 0; Σ weights > 0.

    Postconditions:
        Σ result == pool.  Every key of ``weights`` is present in the result.
    """
    total = sum(weights.values(), Fraction(0))
    if total <= 0:
        raise ValueError("total weight must be positive")

    floors: dict[str, int] = {}
    remainders: dict[str, Fraction] = {}
    for key, weight in weights.items():
        share = Fraction(pool) * weight / total
        whole, rest = divmod(share.numerator, share.denominator)
        floors[key] = whole
        remainders[key] = Fraction(rest, share.denominator)

    remaining = pool - sum(floors.values())
    ranked = sorted(weights, key=lambda k: (-remainders[k], k))
    for key in ranked[:remaining]:
        floors[key] += 1

    allocated = sum(floors.values())
    if allocated != pool:
        logger.error(
            "rounding_invariant_violation",
            extra={"dividend_pool": pool, "allocated_total": allocated},
        )
        raise RoundingInvariantViolation(dividend_pool=pool, allocated_total=allocated)
    return floors


class AllocationEngine:
    """
    Largest-remainder apportionment of a dividend pool.

    Contract:
        Pure and stateless.  Members with zero patronage are not eligible
        and receive no allocation line.  When total patronage is zero the
        result is empty and the whole pool stays undistributed.
    """

    @traced_engine("allocation", "1.0", fingerprint_fields=("dividend_pool", "patronage"))
    def allocate(
        self,
        dividend_pool: int,
        patronage: Mapping[str, int],
    ) -> AllocationResult:
        """
        Apportion ``dividend_pool`` minor units by ``patronage``.

        Returns:
            AllocationResult with one MemberAllocation per member with
            positive patronage, ordered by member_id.
        """
        _require_minor_units("dividend_pool", dividend_pool)
        for member_id, value in patronage.items():
            _require_minor_units(f"patronage[{member_id}]", value)

        eligible = {m: v for m, v in patronage.items() if v > 0}
        total_patronage = sum(eligible.values())

        if total_patronage == 0:
            logger.info(
                "allocation_empty",
                extra={"dividend_pool": dividend_pool, "members": len(patronage)},
            )
            return AllocationResult(dividend_pool=dividend_pool, total_patronage=0)

        amounts = largest_remainder(
            dividend_pool,
            {m: Fraction(v) for m, v in eligible.items()},
        )

        allocations = tuple(
            MemberAllocation(
                member_id=member_id,
                patronage_value=eligible[member_id],
                patronage_percentage=percentage_of(eligible[member_id], total_patronage),
                dividend_amount=amounts[member_id],
            )
            for member_id in sorted(eligible)
        )

        logger.debug(
            "allocation_computed",
            extra={
                "dividend_pool": dividend_pool,
                "total_patronage": total_patronage,
                "eligible_members": len(allocations),
            },
        )
        return AllocationResult(
            dividend_pool=dividend_pool,
            total_patronage=total_patronage,
            allocations=allocations,
        )

    @traced_engine("pool_split", "1.0", fingerprint_fields=("pool", "weights"))
    def split_pool(self, pool: int, weights: Mapping[str, Decimal]) -> dict[str, int]:
        """
        Divide ``pool`` exactly between groups in proportion to ``weights``.

        Used to split a hybrid cooperative's pool between customers and
        drivers.  Weights may be any non-negative Decimals with a positive
        sum; the parts always add up to ``pool``.
        """
        _require_minor_units("pool", pool)
        fractions = {}
        for key, weight in weights.items():
            weight = Decimal(weight)
            if weight < 0:
                raise ValueError(f"weight for {key} cannot be negative")
            fractions[key] = Fraction(weight)
        return largest_remainder(pool, fractions)
