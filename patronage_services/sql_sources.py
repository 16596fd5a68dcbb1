"""
SQL-backed collaborators (trips, service ledger, tenant settings).

Contract:
    Each call opens its own short-lived session from the session factory and
    closes it before returning.  These objects are invoked on background
    threads by DistributionService, and a Session is never shared across
    threads.

Architecture: patronage_services.  Reads kernel models, never writes.

Invariants enforced:
    - Only trips with status ``completed`` and a completion timestamp inside
      [period_start 00:00 UTC, period_end + 1 day 00:00 UTC) count.
    - Ledger figures are only returned when the tenant's books are closed
      through period_end.
    - Database connectivity errors surface as TransientCollaboratorError so
      the caller's retry policy applies.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from patronage_kernel.domain.dtos import PeriodRange
from patronage_kernel.domain.values import (
    CooperativeModel,
    MemberType,
    ScheduleFrequency,
)
from patronage_kernel.exceptions import (
    InsufficientDataError,
    TransientCollaboratorError,
)
from patronage_kernel.logging_config import get_logger
from patronage_kernel.models.ledger import LedgerClose, ServiceCostEntry
from patronage_kernel.models.tenant_settings import TenantDividendSettings
from patronage_kernel.models.trip import Trip, TripStatus
from patronage_services.collaborators import PeriodFinancials, TenantDividendConfig

logger = get_logger("services.sql_sources")

SessionFactory = Callable[[], Session]


class _SqlCollaborator:
    name = "sql"

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def _read(self, query: Callable[[Session], Any]) -> Any:
        try:
            with self._session_factory() as session:
                return query(session)
        except DBAPIError as exc:
            if not (exc.connection_invalidated or isinstance(exc, OperationalError)):
                raise
            logger.warning(
                "collaborator_transient_failure",
                extra={"collaborator": self.name, "error": str(exc.orig)},
            )
            raise TransientCollaboratorError(self.name, str(exc.orig)) from exc


class _CompletedTripSource(_SqlCollaborator):
    member_type: MemberType

    def __init__(self, session_factory: SessionFactory):
        super().__init__(session_factory)
        self.name = f"trips_{self.member_type.value}"
        self._column = getattr(Trip, self.member_type.trip_attribute)

    def _base_filter(self, tenant_id: str, period_start: date, period_end: date) -> list:
        lower, upper = PeriodRange(period_start, period_end).utc_bounds()
        return [
            Trip.tenant_id == tenant_id,
            Trip.status == TripStatus.COMPLETED.value,
            Trip.completed_at.is_not(None),
            Trip.completed_at >= lower,
            Trip.completed_at < upper,
            self._column.is_not(None),
        ]

    def get_completed_trip_count(
        self,
        tenant_id: str,
        member_id: str,
        period_start: date,
        period_end: date,
    ) -> int:
        conditions = self._base_filter(tenant_id, period_start, period_end)
        stmt = select(func.count()).select_from(Trip).where(
            *conditions, self._column == member_id
        )
        return int(self._read(lambda s: s.execute(stmt).scalar_one()))

    def get_completed_trip_counts(
        self,
        tenant_id: str,
        period_start: date,
        period_end: date,
    ) -> Mapping[str, int]:
        conditions = self._base_filter(tenant_id, period_start, period_end)
        stmt = (
            select(self._column, func.count())
            .where(*conditions)
            .group_by(self._column)
        )
        rows = self._read(lambda s: s.execute(stmt).all())
        return {member_id: int(count) for member_id, count in rows}


class TripsTakenSource(_CompletedTripSource):
    """Customer patronage: completed trips taken (by customer_id)."""

    member_type = MemberType.CUSTOMER


class TripsDrivenSource(_CompletedTripSource):
    """Driver patronage: completed trips driven (by driver_id)."""

    member_type = MemberType.DRIVER


class SqlServiceCostLedger(_SqlCollaborator):
    """Period financials summed from service_cost_entries."""

    name = "service_ledger"

    def __init__(self, session_factory: SessionFactory, default_currency: str = "GBP"):
        super().__init__(session_factory)
        self._default_currency = default_currency

    def get_period_financials(
        self,
        tenant_id: str,
        period_start: date,
        period_end: date,
    ) -> PeriodFinancials:
        def query(session: Session) -> tuple:
            close = session.execute(
                select(LedgerClose).where(LedgerClose.tenant_id == tenant_id)
            ).scalar_one_or_none()
            totals = session.execute(
                select(
                    func.coalesce(func.sum(ServiceCostEntry.revenue), 0),
                    func.coalesce(func.sum(ServiceCostEntry.operating_costs), 0),
                ).where(
                    ServiceCostEntry.tenant_id == tenant_id,
                    ServiceCostEntry.service_date >= period_start,
                    ServiceCostEntry.service_date <= period_end,
                )
            ).one()
            currencies = session.execute(
                select(ServiceCostEntry.currency).distinct().where(
                    ServiceCostEntry.tenant_id == tenant_id,
                    ServiceCostEntry.service_date >= period_start,
                    ServiceCostEntry.service_date <= period_end,
                )
            ).scalars().all()
            closed_through = close.closed_through if close is not None else None
            return closed_through, totals, currencies

        closed_through, (revenue, operating_costs), currencies = self._read(query)

        if closed_through is None:
            raise InsufficientDataError(
                tenant_id, "ledger", "books have never been closed for this tenant"
            )
        if closed_through < period_end:
            raise InsufficientDataError(
                tenant_id,
                "ledger",
                f"books closed through {closed_through}, period ends {period_end}",
            )
        if len(currencies) > 1:
            raise InsufficientDataError(
                tenant_id,
                "ledger",
                f"entries in more than one currency: {sorted(currencies)}",
            )

        return PeriodFinancials(
            revenue=int(revenue),
            operating_costs=int(operating_costs),
            currency=currencies[0] if currencies else self._default_currency,
        )


class SqlTenantSettingsSource(_SqlCollaborator):
    """Tenant dividend settings from tenant_dividend_settings."""

    name = "tenant_settings"

    def get_dividend_rate(self, tenant_id: str) -> Decimal:
        return self.get_settings(tenant_id).dividend_rate

    def get_settings(self, tenant_id: str) -> TenantDividendConfig:
        row = self._read(
            lambda s: s.execute(
                select(TenantDividendSettings).where(
                    TenantDividendSettings.tenant_id == tenant_id
                )
            ).scalar_one_or_none()
        )
        if row is None:
            raise InsufficientDataError(
                tenant_id, "settings", "no dividend settings configured"
            )
        return _to_config(row)

    def list_scheduled_tenants(self) -> Sequence[TenantDividendConfig]:
        rows = self._read(
            lambda s: s.execute(
                select(TenantDividendSettings)
                .where(TenantDividendSettings.schedule_enabled.is_(True))
                .order_by(TenantDividendSettings.tenant_id)
            ).scalars().all()
        )
        return [_to_config(row) for row in rows]


def _to_config(row: TenantDividendSettings) -> TenantDividendConfig:
    return TenantDividendConfig(
        tenant_id=row.tenant_id,
        dividend_rate=Decimal(row.dividend_rate),
        cooperative_model=CooperativeModel(row.cooperative_model),
        customer_share=Decimal(row.customer_share),
        schedule_enabled=row.schedule_enabled,
        schedule_frequency=ScheduleFrequency(row.schedule_frequency),
        auto_finalize=row.auto_finalize,
        currency=row.currency,
    )
