"""
Collaborator contracts consumed by the distribution pipeline.

Contract:
    The engine never reads trips, the ledger or tenant settings directly;
    it talks to these protocols.  ``patronage_services.sql_sources`` provides
    database-backed implementations, tests provide in-memory fakes.

Architecture: patronage_services.  Protocols and DTOs only, zero I/O.

Failure conventions (for implementations):
    - Incomplete or inconsistent source data -> InsufficientDataError.
    - Infrastructure hiccups that are safe to retry ->
      TransientCollaboratorError.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable

from patronage_kernel.domain.values import (
    CooperativeModel,
    MemberType,
    ScheduleFrequency,
)


@dataclass(frozen=True)
class PeriodFinancials:
    """Complete revenue and operating costs of a period, in minor units."""

    revenue: int
    operating_costs: int
    currency: str = "GBP"


@dataclass(frozen=True)
class TenantDividendConfig:
    """A tenant's dividend settings as seen by the engine."""

    tenant_id: str
    dividend_rate: Decimal
    cooperative_model: CooperativeModel = CooperativeModel.PASSENGER
    customer_share: Decimal = Decimal("0.5")
    schedule_enabled: bool = False
    schedule_frequency: ScheduleFrequency = ScheduleFrequency.MONTHLY
    auto_finalize: bool = False
    currency: str = "GBP"


@runtime_checkable
class FinancialLedger(Protocol):
    """Source of a tenant's period financials."""

    def get_period_financials(
        self,
        tenant_id: str,
        period_start: date,
        period_end: date,
    ) -> PeriodFinancials:
        """Revenue and operating costs for the inclusive range.

        Raises InsufficientDataError when the figures are not complete.
        """
        ...


@runtime_checkable
class PatronageSource(Protocol):
    """Completed-trip counts for one member type."""

    member_type: MemberType

    def get_completed_trip_count(
        self,
        tenant_id: str,
        member_id: str,
        period_start: date,
        period_end: date,
    ) -> int:
        ...

    def get_completed_trip_counts(
        self,
        tenant_id: str,
        period_start: date,
        period_end: date,
    ) -> Mapping[str, int]:
        """Count per member with at least one completed trip in range."""
        ...


@runtime_checkable
class DividendSettingsSource(Protocol):
    """Tenant dividend configuration."""

    def get_dividend_rate(self, tenant_id: str) -> Decimal:
        ...

    def get_settings(self, tenant_id: str) -> TenantDividendConfig:
        ...

    def list_scheduled_tenants(self) -> Sequence[TenantDividendConfig]:
        """Settings of every tenant with scheduled distributions enabled."""
        ...
