"""
Module: patronage_kernel.models.distribution
Responsibility: ORM persistence for distribution periods and the per-member
    dividend records they own.
Architecture position: Kernel > Models.  May import from db/ and domain/values.

Invariants enforced:
    - At most one non-voided distribution per
      (tenant_id, member_type, period_start, period_end): partial unique index
      ``uq_distribution_period_key`` (PostgreSQL and SQLite).
    - One record per member per distribution: ``uq_dividend_member``.
    - Money columns are BigInteger minor units.
    - Financial fields are frozen after insert (db/immutability.py).

Failure modes:
    - IntegrityError on a concurrent insert for the same period key; the
      record store translates it to DuplicateDistributionError.

Audit relevance:
    Voided distributions and superseded records are kept, never deleted, so
    every recomputation leaves the earlier figures in place for audit.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from patronage_kernel.db.base import TrackedBase, UUIDString
from patronage_kernel.db.types import (
    Currency,
    ExternalId,
    MinorUnits,
    Percentage,
    Rate,
    ShortCode,
)
from patronage_kernel.domain.values import DistributionStatus, PaymentStatus

_NOT_VOIDED = text("status <> 'voided'")


class DistributionPeriod(TrackedBase):
    """
    One computed distribution of a period's dividend pool to one member type.

    Contract:
        Created with status COMPUTED together with all of its records in a
        single transaction.  COMPUTED -> FINALIZED is one-way;
        COMPUTED -> VOIDED frees the period key for recomputation.

    Guarantees:
        - Σ records.dividend_amount + undistributed_amount == dividend_pool.
        - eligible_members == len(records).
    """

    __tablename__ = "distribution_periods"

    __table_args__ = (
        Index(
            "uq_distribution_period_key",
            "tenant_id",
            "member_type",
            "period_start",
            "period_end",
            unique=True,
            postgresql_where=_NOT_VOIDED,
            sqlite_where=_NOT_VOIDED,
        ),
        Index("idx_distribution_tenant_period", "tenant_id", "period_start"),
    )

    tenant_id: Mapped[ExternalId] = mapped_column(nullable=False)
    member_type: Mapped[ShortCode] = mapped_column(nullable=False)

    # Inclusive calendar range
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    currency: Mapped[Currency] = mapped_column(nullable=False, default="GBP")

    total_revenue: Mapped[MinorUnits] = mapped_column(nullable=False, default=0)
    total_operating_costs: Mapped[MinorUnits] = mapped_column(nullable=False, default=0)
    gross_surplus: Mapped[MinorUnits] = mapped_column(nullable=False)
    dividend_rate: Mapped[Rate] = mapped_column(nullable=False)
    dividend_pool: Mapped[MinorUnits] = mapped_column(nullable=False)
    undistributed_amount: Mapped[MinorUnits] = mapped_column(nullable=False, default=0)

    total_patronage: Mapped[int] = mapped_column(nullable=False, default=0)
    eligible_members: Mapped[int] = mapped_column(nullable=False, default=0)

    status: Mapped[ShortCode] = mapped_column(
        nullable=False,
        default=DistributionStatus.COMPUTED.value,
    )

    # Zero patronage (and other anomalies) need an operator decision
    review_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    computed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    distributed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    void_reason: Mapped[str | None] = mapped_column(Text)

    triggered_by: Mapped[str | None] = mapped_column(String(100))

    dividends: Mapped[list["DividendRecord"]] = relationship(
        back_populates="distribution",
        order_by="DividendRecord.member_id",
    )

    def __repr__(self) -> str:
        return (
            f"<DistributionPeriod {self.tenant_id}/{self.member_type} "
            f"{self.period_start}..{self.period_end}: {self.status}>"
        )

    @property
    def is_finalized(self) -> bool:
        return self.status == DistributionStatus.FINALIZED

    @property
    def is_voided(self) -> bool:
        return self.status == DistributionStatus.VOIDED


class DividendRecord(TrackedBase):
    """
    A single member's dividend within a distribution.

    Contract:
        Created PENDING with its distribution.  Payment columns change only
        through PaymentStatusManager's guarded updates, each of which bumps
        ``version``.

    Guarantees:
        - Financial fields never change after insert.
        - superseded_at is set when the parent distribution is voided.
    """

    __tablename__ = "dividend_records"

    __table_args__ = (
        UniqueConstraint("distribution_id", "member_id", name="uq_dividend_member"),
        Index("idx_dividend_member", "tenant_id", "member_type", "member_id"),
    )

    distribution_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("distribution_periods.id"),
        nullable=False,
    )
    tenant_id: Mapped[ExternalId] = mapped_column(nullable=False)
    member_id: Mapped[ExternalId] = mapped_column(nullable=False)
    member_type: Mapped[ShortCode] = mapped_column(nullable=False)

    patronage_value: Mapped[int] = mapped_column(nullable=False)
    patronage_percentage: Mapped[Percentage] = mapped_column(nullable=False)
    dividend_amount: Mapped[MinorUnits] = mapped_column(nullable=False)
    currency: Mapped[Currency] = mapped_column(nullable=False, default="GBP")

    payment_status: Mapped[ShortCode] = mapped_column(
        nullable=False,
        default=PaymentStatus.PENDING.value,
    )
    payment_method: Mapped[str | None] = mapped_column(String(32))
    payment_date: Mapped[date | None] = mapped_column(Date)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Optimistic lock counter for payment transitions
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    distribution: Mapped[DistributionPeriod] = relationship(back_populates="dividends")

    def __repr__(self) -> str:
        return (
            f"<DividendRecord {self.member_type}:{self.member_id} "
            f"{self.dividend_amount} {self.payment_status}>"
        )

    @property
    def is_pending(self) -> bool:
        return self.payment_status == PaymentStatus.PENDING


__all__ = [
    "DistributionPeriod",
    "DistributionStatus",
    "DividendRecord",
    "PaymentStatus",
]
