"""
SurplusCalculator -- period surplus and dividend pool for a tenant.

Responsibility:
    Fetch the period financials and the tenant's dividend rate from their
    collaborators and hand them to the pure surplus engine.

Architecture position:
    Services -- thin orchestration; the arithmetic lives in
    patronage_engines.surplus.

Failure modes:
    - InvalidPeriodError if period_start > period_end.
    - InsufficientDataError when the ledger figures are missing, negative or
      not integer minor units.
    - InvalidDividendRateError when the configured rate is outside [0, 1].
    - TransientCollaboratorError from a collaborator propagates unchanged.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation

from patronage_engines.surplus import compute_surplus, normalize_rate
from patronage_kernel.domain.dtos import PeriodRange, SurplusResult
from patronage_kernel.exceptions import InsufficientDataError, InvalidDividendRateError
from patronage_kernel.logging_config import get_logger
from patronage_services.collaborators import DividendSettingsSource, FinancialLedger

logger = get_logger("services.surplus_calculator")


class SurplusCalculator:

    def __init__(self, ledger: FinancialLedger, settings: DividendSettingsSource):
        self._ledger = ledger
        self._settings = settings

    def calculate(
        self,
        tenant_id: str,
        period_start: date,
        period_end: date,
    ) -> SurplusResult:
        period = PeriodRange(period_start, period_end)

        financials = self._ledger.get_period_financials(tenant_id, period.start, period.end)
        for name in ("revenue", "operating_costs"):
            value = getattr(financials, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InsufficientDataError(
                    tenant_id, "ledger", f"{name} is not a non-negative amount: {value!r}"
                )

        raw_rate = self._settings.get_dividend_rate(tenant_id)
        try:
            rate = normalize_rate(raw_rate)
        except (ValueError, InvalidOperation):
            logger.warning(
                "dividend_rate_invalid",
                extra={"tenant_id": tenant_id, "dividend_rate": str(raw_rate)},
            )
            raise InvalidDividendRateError(tenant_id, str(raw_rate)) from None

        figures = compute_surplus(financials.revenue, financials.operating_costs, rate)

        result = SurplusResult(
            tenant_id=tenant_id,
            period=period,
            revenue=financials.revenue,
            operating_costs=financials.operating_costs,
            gross_surplus=figures.gross_surplus,
            dividend_rate=Decimal(rate),
            dividend_pool=figures.dividend_pool,
            currency=financials.currency,
        )
        logger.info(
            "surplus_calculated",
            extra={
                "tenant_id": tenant_id,
                "period": str(period),
                "gross_surplus": result.gross_surplus,
                "dividend_pool": result.dividend_pool,
                "retained_surplus": result.retained_surplus,
            },
        )
        return result
