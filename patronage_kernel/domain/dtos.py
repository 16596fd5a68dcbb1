"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through a distribution
    computation: PeriodRange and PatronageSnapshot / SurplusResult (inputs),
    MemberAllocation / AllocationResult (engine output),
    DistributionPeriodInfo / DividendRecordInfo (persistence boundary), and
    the read-model DTOs returned by selectors.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Money fields are ``int`` minor units; percentages are ``Decimal``.
    - PeriodRange rejects start > end at construction.
    - Mappings are frozen with MappingProxyType so engine inputs cannot be
      mutated after they were gathered.

Data flow:
    PatronageSnapshot + SurplusResult -> AllocationResult
        -> DistributionPeriodInfo + DividendRecordInfo
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING
from uuid import UUID

from patronage_kernel.domain.values import (
    DistributionStatus,
    MemberType,
    PaymentStatus,
)
from patronage_kernel.exceptions import InvalidPeriodError, PatronageEngineError

if TYPE_CHECKING:
    from patronage_kernel.models.distribution import (
        DistributionPeriod as DistributionPeriodModel,
    )
    from patronage_kernel.models.distribution import (
        DividendRecord as DividendRecordModel,
    )


@dataclass(frozen=True)
class PeriodRange:
    """
    Inclusive calendar date range of a distribution.

    Guarantees:
        - start <= end (InvalidPeriodError otherwise).
        - ``utc_bounds()`` is the half-open timestamp interval
          [start 00:00 UTC, end + 1 day 00:00 UTC).
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidPeriodError(str(self.start), str(self.end))

    def utc_bounds(self) -> tuple[datetime, datetime]:
        lower = datetime.combine(self.start, time.min, tzinfo=timezone.utc)
        upper = datetime.combine(self.end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        return lower, upper

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


@dataclass(frozen=True)
class MemberPatronage:
    """One member's eligible activity in a period (transient)."""

    member_id: str
    member_type: MemberType
    patronage_value: int

    def __post_init__(self) -> None:
        if self.patronage_value < 0:
            raise ValueError("patronage_value cannot be negative")


@dataclass(frozen=True)
class PatronageSnapshot:
    """
    Patronage of every eligible member for one (tenant, member type, period).

    Guarantees:
        - Every value is a positive integer; members with zero activity are
          not present.
        - ``patronage`` is read-only.
    """

    tenant_id: str
    member_type: MemberType
    period: PeriodRange
    patronage: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "patronage", MappingProxyType(dict(self.patronage)))

    @property
    def total_patronage(self) -> int:
        return sum(self.patronage.values())

    @property
    def eligible_members(self) -> int:
        return len(self.patronage)

    @classmethod
    def from_members(
        cls,
        tenant_id: str,
        member_type: MemberType,
        period: PeriodRange,
        members: Iterable[MemberPatronage],
    ) -> PatronageSnapshot:
        """Freeze member rows into a snapshot, dropping zero-activity members."""
        patronage: dict[str, int] = {}
        for row in members:
            if row.member_type != member_type:
                raise ValueError(
                    f"member {row.member_id} is a {row.member_type.value}, not a {member_type.value}"
                )
            if row.patronage_value > 0:
                patronage[row.member_id] = row.patronage_value
        return cls(tenant_id, member_type, period, patronage)


@dataclass(frozen=True)
class SurplusResult:
    """
    Surplus and dividend pool of one tenant period, in minor units.

    Guarantees:
        - gross_surplus == revenue - operating_costs (may be negative).
        - 0 <= dividend_pool <= max(0, gross_surplus).
    """

    tenant_id: str
    period: PeriodRange
    revenue: int
    operating_costs: int
    gross_surplus: int
    dividend_rate: Decimal
    dividend_pool: int
    currency: str = "GBP"

    @property
    def retained_surplus(self) -> int:
        """Part of a positive surplus kept by the cooperative."""
        return max(0, self.gross_surplus) - self.dividend_pool

    def with_pool(self, dividend_pool: int) -> SurplusResult:
        """Same figures with a different pool (used for hybrid splits)."""
        return SurplusResult(
            tenant_id=self.tenant_id,
            period=self.period,
            revenue=self.revenue,
            operating_costs=self.operating_costs,
            gross_surplus=self.gross_surplus,
            dividend_rate=self.dividend_rate,
            dividend_pool=dividend_pool,
            currency=self.currency,
        )


@dataclass(frozen=True)
class MemberAllocation:
    """One member's share of an apportioned pool."""

    member_id: str
    patronage_value: int
    patronage_percentage: Decimal
    dividend_amount: int


@dataclass(frozen=True)
class AllocationResult:
    """
    Result of apportioning a dividend pool across members.

    Guarantees:
        - allocations are ordered by member_id.
        - Σ dividend_amount == dividend_pool when allocations is non-empty;
          an empty allocation leaves the whole pool undistributed.
    """

    dividend_pool: int
    total_patronage: int
    allocations: tuple[MemberAllocation, ...] = ()

    @property
    def allocated_total(self) -> int:
        return sum(a.dividend_amount for a in self.allocations)

    @property
    def undistributed_amount(self) -> int:
        return self.dividend_pool - self.allocated_total

    @property
    def eligible_members(self) -> int:
        return len(self.allocations)

    @property
    def is_empty(self) -> bool:
        return not self.allocations

    def amounts(self) -> dict[str, int]:
        return {a.member_id: a.dividend_amount for a in self.allocations}


@dataclass(frozen=True)
class DistributionPeriodInfo:
    """
    Persisted distribution period (read-only view).

    ``id`` is the distribution_id.
    """

    id: UUID
    tenant_id: str
    member_type: MemberType
    period_start: date
    period_end: date
    currency: str
    total_revenue: int
    total_operating_costs: int
    gross_surplus: int
    dividend_rate: Decimal
    dividend_pool: int
    undistributed_amount: int
    total_patronage: int
    eligible_members: int
    status: DistributionStatus
    review_required: bool
    computed_at: datetime | None = None
    distributed_at: datetime | None = None
    voided_at: datetime | None = None
    void_reason: str | None = None
    triggered_by: str | None = None

    @property
    def distribution_id(self) -> UUID:
        return self.id

    @classmethod
    def from_model(cls, model: DistributionPeriodModel) -> DistributionPeriodInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            member_type=MemberType(model.member_type),
            period_start=model.period_start,
            period_end=model.period_end,
            currency=model.currency,
            total_revenue=model.total_revenue,
            total_operating_costs=model.total_operating_costs,
            gross_surplus=model.gross_surplus,
            dividend_rate=Decimal(model.dividend_rate),
            dividend_pool=model.dividend_pool,
            undistributed_amount=model.undistributed_amount,
            total_patronage=model.total_patronage,
            eligible_members=model.eligible_members,
            status=DistributionStatus(model.status),
            review_required=model.review_required,
            computed_at=model.computed_at,
            distributed_at=model.distributed_at,
            voided_at=model.voided_at,
            void_reason=model.void_reason,
            triggered_by=model.triggered_by,
        )


@dataclass(frozen=True)
class DividendRecordInfo:
    """
    Persisted dividend record (read-only view).

    ``id`` is the dividend_id.  period_start/period_end are copied from the
    parent distribution for history views.
    """

    id: UUID
    distribution_id: UUID
    tenant_id: str
    member_id: str
    member_type: MemberType
    patronage_value: int
    patronage_percentage: Decimal
    dividend_amount: int
    currency: str
    payment_status: PaymentStatus
    version: int
    payment_method: str | None = None
    payment_date: date | None = None
    cancellation_reason: str | None = None
    superseded_at: datetime | None = None
    created_at: datetime | None = None
    period_start: date | None = None
    period_end: date | None = None

    @property
    def dividend_id(self) -> UUID:
        return self.id

    @classmethod
    def from_model(
        cls,
        model: DividendRecordModel,
        period: DistributionPeriodModel | None = None,
    ) -> DividendRecordInfo:
        return cls(
            id=model.id,
            distribution_id=model.distribution_id,
            tenant_id=model.tenant_id,
            member_id=model.member_id,
            member_type=MemberType(model.member_type),
            patronage_value=model.patronage_value,
            patronage_percentage=Decimal(model.patronage_percentage),
            dividend_amount=model.dividend_amount,
            currency=model.currency,
            payment_status=PaymentStatus(model.payment_status),
            version=model.version,
            payment_method=model.payment_method,
            payment_date=model.payment_date,
            cancellation_reason=model.cancellation_reason,
            superseded_at=model.superseded_at,
            created_at=model.created_at,
            period_start=period.period_start if period is not None else None,
            period_end=period.period_end if period is not None else None,
        )


@dataclass(frozen=True)
class DividendSummary:
    """
    Totals over a member's dividend record set.

    Derived from the records themselves, never from stored counters.
    Cancelled records count in total_distributions only.
    """

    total_distributions: int = 0
    total_dividends: int = 0
    total_paid: int = 0
    total_pending: int = 0
    total_patronage: int = 0

    @classmethod
    def from_records(cls, records: tuple[DividendRecordInfo, ...]) -> DividendSummary:
        live = [r for r in records if r.payment_status != PaymentStatus.CANCELLED]
        return cls(
            total_distributions=len(records),
            total_dividends=sum(r.dividend_amount for r in live),
            total_paid=sum(
                r.dividend_amount for r in live if r.payment_status == PaymentStatus.PAID
            ),
            total_pending=sum(
                r.dividend_amount for r in live if r.payment_status == PaymentStatus.PENDING
            ),
            total_patronage=sum(r.patronage_value for r in records),
        )


@dataclass(frozen=True)
class MemberDividendHistory:
    """A member's recent dividends with their summary."""

    tenant_id: str
    member_type: MemberType
    member_id: str
    dividends: tuple[DividendRecordInfo, ...]
    summary: DividendSummary


@dataclass(frozen=True)
class DistributionDetail:
    """A distribution period together with its dividend records."""

    distribution: DistributionPeriodInfo
    dividends: tuple[DividendRecordInfo, ...]


@dataclass(frozen=True)
class DistributionOutcome:
    """
    Result of a distribution computation.

    ``notices`` carries informational conditions (e.g. ZeroPatronageError)
    that did not stop the distribution from being persisted.
    """

    distribution: DistributionPeriodInfo
    notices: tuple[PatronageEngineError, ...] = ()

    @property
    def review_required(self) -> bool:
        return self.distribution.review_required
