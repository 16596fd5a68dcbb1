"""
DistributionRecordStore -- atomic, idempotent persistence of distributions.

Responsibility:
    Writes a distribution period together with every one of its dividend
    records, and drives the period lifecycle (void, finalize).

Architecture position:
    Kernel > Services -- imperative shell.
    Called by DistributionService (create) and by the HTTP layer / scheduler
    (void, finalize).

Invariants enforced:
    - All-or-nothing creation: the period row and its records are flushed
      together in the caller's transaction.
    - One non-voided distribution per (tenant, member type, period).  The
      existence check runs in the same transaction as the insert, and the
      partial unique index catches the concurrent case; the resulting
      IntegrityError rolls the session back and surfaces as
      DuplicateDistributionError.
    - Conservation: records are only written when
      Σ dividend_amount == dividend_pool (or there are no records).
    - COMPUTED -> FINALIZED is one-way; only COMPUTED can be voided.
      Both transitions lock the period row (SELECT ... FOR UPDATE).
    - Flush-only: never commits.

Failure modes:
    - DuplicateDistributionError: period key already has a live distribution.
    - RoundingInvariantViolation: allocation does not add up to the pool.
    - DistributionNotFoundError: unknown id, or id of another tenant.
    - DistributionStateError: void/finalize from the wrong status.

Audit relevance:
    Voiding keeps the period row and stamps its records superseded_at;
    nothing is deleted.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from patronage_kernel.db.base import coerce_uuid
from patronage_kernel.domain.clock import Clock
from patronage_kernel.domain.dtos import (
    AllocationResult,
    DistributionPeriodInfo,
    PeriodRange,
    SurplusResult,
)
from patronage_kernel.domain.values import (
    DistributionStatus,
    MemberType,
    PaymentStatus,
)
from patronage_kernel.exceptions import (
    AllocationPoolMismatchError,
    DistributionNotFoundError,
    DistributionStateError,
    DuplicateDistributionError,
    RoundingInvariantViolation,
)
from patronage_kernel.logging_config import get_logger
from patronage_kernel.models.distribution import DistributionPeriod, DividendRecord
from patronage_kernel.services.base import BaseService

logger = get_logger("services.distribution_store")


class DistributionRecordStore(BaseService[DistributionPeriod]):
    """
    Persistence and lifecycle of distribution periods.

    Contract:
        Every public method takes the tenant explicitly and returns a frozen
        DistributionPeriodInfo.  Writes are flushed, never committed.

    Non-goals:
        - Does NOT compute patronage, surplus or allocations.
        - Does NOT change payment status (PaymentStatusManager).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_distribution(
        self,
        tenant_id: str,
        member_type: MemberType,
        period: PeriodRange,
        surplus: SurplusResult,
        allocation: AllocationResult,
        triggered_by: str | None = None,
    ) -> DistributionPeriodInfo:
        """
        Persist a distribution period and all of its dividend records.

        Preconditions:
            allocation.dividend_pool == surplus.dividend_pool.

        Postconditions:
            One DistributionPeriod (COMPUTED) and one PENDING DividendRecord
            per allocation line are flushed.  An empty allocation yields a
            period with eligible_members = 0, the whole pool undistributed
            and review_required = True.

        Raises:
            DuplicateDistributionError: Live distribution exists for the key.
                No rows are written; after an IntegrityError the session has
                been rolled back.
            RoundingInvariantViolation: Allocation does not conserve the pool.
            AllocationPoolMismatchError: Allocation was built for another pool.
        """
        member_type = MemberType(member_type)

        if allocation.dividend_pool != surplus.dividend_pool:
            raise AllocationPoolMismatchError(allocation.dividend_pool, surplus.dividend_pool)

        if not allocation.is_empty and allocation.allocated_total != allocation.dividend_pool:
            logger.error(
                "rounding_invariant_violation",
                extra={
                    "tenant_id": tenant_id,
                    "member_type": member_type.value,
                    "dividend_pool": allocation.dividend_pool,
                    "allocated_total": allocation.allocated_total,
                },
            )
            raise RoundingInvariantViolation(
                dividend_pool=allocation.dividend_pool,
                allocated_total=allocation.allocated_total,
            )

        existing = self._find_live(tenant_id, member_type, period)
        if existing is not None:
            logger.warning(
                "distribution_duplicate_rejected",
                extra={
                    "tenant_id": tenant_id,
                    "member_type": member_type.value,
                    "period": str(period),
                    "existing_distribution_id": str(existing.id),
                },
            )
            raise DuplicateDistributionError(
                tenant_id=tenant_id,
                member_type=member_type.value,
                period_start=str(period.start),
                period_end=str(period.end),
                existing_distribution_id=str(existing.id),
            )

        now = self._clock.now()
        distribution = DistributionPeriod(
            tenant_id=tenant_id,
            member_type=member_type.value,
            period_start=period.start,
            period_end=period.end,
            currency=surplus.currency,
            total_revenue=surplus.revenue,
            total_operating_costs=surplus.operating_costs,
            gross_surplus=surplus.gross_surplus,
            dividend_rate=surplus.dividend_rate,
            dividend_pool=allocation.dividend_pool,
            undistributed_amount=allocation.undistributed_amount,
            total_patronage=allocation.total_patronage,
            eligible_members=allocation.eligible_members,
            status=DistributionStatus.COMPUTED.value,
            review_required=allocation.is_empty,
            computed_at=now,
            triggered_by=triggered_by,
        )
        self.session.add(distribution)

        for line in allocation.allocations:
            self.session.add(
                DividendRecord(
                    distribution=distribution,
                    tenant_id=tenant_id,
                    member_id=line.member_id,
                    member_type=member_type.value,
                    patronage_value=line.patronage_value,
                    patronage_percentage=line.patronage_percentage,
                    dividend_amount=line.dividend_amount,
                    currency=surplus.currency,
                    payment_status=PaymentStatus.PENDING.value,
                    version=1,
                )
            )

        try:
            self.session.flush()
        except IntegrityError:
            # A concurrent trigger won the race for the period key.
            self.session.rollback()
            winner = self._find_live(tenant_id, member_type, period)
            logger.warning(
                "distribution_concurrent_duplicate",
                extra={
                    "tenant_id": tenant_id,
                    "member_type": member_type.value,
                    "period": str(period),
                },
            )
            raise DuplicateDistributionError(
                tenant_id=tenant_id,
                member_type=member_type.value,
                period_start=str(period.start),
                period_end=str(period.end),
                existing_distribution_id=str(winner.id) if winner is not None else None,
            ) from None

        logger.info(
            "distribution_created",
            extra={
                "tenant_id": tenant_id,
                "distribution_id": str(distribution.id),
                "member_type": member_type.value,
                "period": str(period),
                "dividend_pool": distribution.dividend_pool,
                "eligible_members": distribution.eligible_members,
                "review_required": distribution.review_required,
            },
        )
        return DistributionPeriodInfo.from_model(distribution)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def void_distribution(
        self,
        tenant_id: str,
        distribution_id: UUID | str,
        reason: str,
    ) -> DistributionPeriodInfo:
        """
        Void a COMPUTED distribution, superseding its records.

        Postconditions:
            status = VOIDED, voided_at/void_reason set, every record stamped
            superseded_at.  The period key is free for recomputation.

        Raises:
            DistributionNotFoundError, DistributionStateError.
        """
        distribution = self._lock(tenant_id, distribution_id)
        if distribution.status != DistributionStatus.COMPUTED:
            raise DistributionStateError(
                distribution_id=str(distribution.id),
                current_status=distribution.status,
                attempted="void",
            )

        now = self._clock.now()
        distribution.status = DistributionStatus.VOIDED.value
        distribution.voided_at = now
        distribution.void_reason = reason
        for record in distribution.dividends:
            record.superseded_at = now
        self.session.flush()

        logger.info(
            "distribution_voided",
            extra={
                "tenant_id": tenant_id,
                "distribution_id": str(distribution.id),
                "superseded_records": len(distribution.dividends),
                "reason": reason,
            },
        )
        return DistributionPeriodInfo.from_model(distribution)

    def finalize_distribution(
        self,
        tenant_id: str,
        distribution_id: UUID | str,
    ) -> DistributionPeriodInfo:
        """
        Accept a COMPUTED distribution.  One-way; sets distributed_at.

        Raises:
            DistributionNotFoundError, DistributionStateError.
        """
        distribution = self._lock(tenant_id, distribution_id)
        if distribution.status != DistributionStatus.COMPUTED:
            raise DistributionStateError(
                distribution_id=str(distribution.id),
                current_status=distribution.status,
                attempted="finalize",
            )

        distribution.status = DistributionStatus.FINALIZED.value
        distribution.distributed_at = self._clock.now()
        self.session.flush()

        logger.info(
            "distribution_finalized",
            extra={
                "tenant_id": tenant_id,
                "distribution_id": str(distribution.id),
                "dividend_pool": distribution.dividend_pool,
            },
        )
        return DistributionPeriodInfo.from_model(distribution)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_live(
        self,
        tenant_id: str,
        member_type: MemberType,
        period: PeriodRange,
    ) -> DistributionPeriod | None:
        return self.session.execute(
            select(DistributionPeriod).where(
                DistributionPeriod.tenant_id == tenant_id,
                DistributionPeriod.member_type == member_type.value,
                DistributionPeriod.period_start == period.start,
                DistributionPeriod.period_end == period.end,
                DistributionPeriod.status != DistributionStatus.VOIDED.value,
            )
        ).scalars().first()

    def _lock(self, tenant_id: str, distribution_id: UUID | str) -> DistributionPeriod:
        parsed = coerce_uuid(distribution_id)
        distribution = None
        if parsed is not None:
            distribution = self.session.execute(
                select(DistributionPeriod)
                .where(
                    DistributionPeriod.id == parsed,
                    DistributionPeriod.tenant_id == tenant_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if distribution is None:
            raise DistributionNotFoundError(str(distribution_id))
        return distribution
