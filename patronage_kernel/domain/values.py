"""
Closed value sets of the dividend domain.

Responsibility:
    The member-type variant and the lifecycle/status vocabularies shared by
    models, services, selectors and the HTTP layer.  Branching on member type
    happens through ``MemberType`` attributes, never through string
    comparisons.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by every layer.
"""

from enum import Enum


class MemberType(str, Enum):
    """
    Kind of cooperative member a distribution is computed for.

    Contract:
        Closed variant.  Each member corresponds to one kind of patronage:
        customers patronize the service by taking trips, drivers by driving
        them.
    """

    CUSTOMER = "customer"
    DRIVER = "driver"

    @property
    def trip_attribute(self) -> str:
        """Trip column that attributes a completed trip to this member type."""
        return _TRIP_ATTRIBUTES[self]

    @property
    def path_segment(self) -> str:
        """Plural collection name used in URLs (``customers``/``drivers``)."""
        return f"{self.value}s"

    @classmethod
    def from_path_segment(cls, segment: str) -> "MemberType":
        for member_type in cls:
            if member_type.path_segment == segment:
                return member_type
        raise ValueError(f"Unknown member collection: {segment!r}")


_TRIP_ATTRIBUTES = {
    MemberType.CUSTOMER: "customer_id",
    MemberType.DRIVER: "driver_id",
}


class CooperativeModel(str, Enum):
    """
    Ownership model of a cooperative tenant.

    passenger -> customers own the cooperative
    worker    -> drivers own the cooperative
    hybrid    -> both, the pool split by the tenant's customer share
    """

    PASSENGER = "passenger"
    WORKER = "worker"
    HYBRID = "hybrid"

    @property
    def member_types(self) -> tuple[MemberType, ...]:
        if self is CooperativeModel.PASSENGER:
            return (MemberType.CUSTOMER,)
        if self is CooperativeModel.WORKER:
            return (MemberType.DRIVER,)
        return (MemberType.CUSTOMER, MemberType.DRIVER)


class DistributionStatus(str, Enum):
    """
    Lifecycle status of a distribution period.

    Contract: COMPUTED -> FINALIZED (one-way) or COMPUTED -> VOIDED.
    """

    COMPUTED = "computed"
    FINALIZED = "finalized"
    VOIDED = "voided"


class PaymentStatus(str, Enum):
    """
    Payment lifecycle of a dividend record.

    Contract: PENDING -> PAID or PENDING -> CANCELLED; both are terminal.
    """

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentMethod(str, Enum):
    """How a dividend was paid out."""

    ACCOUNT_CREDIT = "account_credit"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    REINVEST = "reinvest"


class ScheduleFrequency(str, Enum):
    """Cadence of scheduled distributions."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
