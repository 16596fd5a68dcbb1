"""
Pure domain layer.

Data transfer objects, the member-type variant and status vocabularies,
and the injectable clock.  No ORM, database or I/O dependencies.
"""

from patronage_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from patronage_kernel.domain.dtos import (
    AllocationResult,
    DistributionDetail,
    DistributionOutcome,
    DistributionPeriodInfo,
    DividendRecordInfo,
    DividendSummary,
    MemberAllocation,
    MemberDividendHistory,
    MemberPatronage,
    PatronageSnapshot,
    PeriodRange,
    SurplusResult,
)
from patronage_kernel.domain.values import (
    CooperativeModel,
    DistributionStatus,
    MemberType,
    PaymentMethod,
    PaymentStatus,
    ScheduleFrequency,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AllocationResult",
    "DistributionDetail",
    "DistributionOutcome",
    "DistributionPeriodInfo",
    "DividendRecordInfo",
    "DividendSummary",
    "MemberAllocation",
    "MemberDividendHistory",
    "MemberPatronage",
    "PatronageSnapshot",
    "PeriodRange",
    "SurplusResult",
    "CooperativeModel",
    "DistributionStatus",
    "MemberType",
    "PaymentMethod",
    "PaymentStatus",
    "ScheduleFrequency",
]
