"""
PaymentStatusManager -- at-most-once payment transitions on dividend records.

Responsibility:
    Moves a dividend record from PENDING to PAID (with method and date) or to
    CANCELLED (with reason), one record at a time or for every pending
    record of a finalized distribution.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the HTTP layer and by operators' payout tooling.

Invariants enforced:
    - Transitions are monotonic and terminal: only PENDING records move.
    - Serialization per record: every transition is a single conditional
      UPDATE ... WHERE id = :id AND version = :v AND payment_status =
      'pending'.  A concurrent or repeated writer matches zero rows and gets
      StateConflictError instead of overwriting.
    - Only records of a FINALIZED distribution that have not been superseded
      accept payment transitions.
    - Flush-only: never commits.

Failure modes:
    - DividendNotFoundError: unknown id, or id of another tenant.
    - InvalidPaymentMethodError: method outside PaymentMethod.
    - StateConflictError: record not pending, stale expected_version,
      superseded record, or distribution not finalized.
    - DistributionNotFoundError / DistributionStateError (bulk payout only).

Audit relevance:
    Each successful transition bumps ``version`` and is logged with the old
    and new status, so the payment history of a record can be reconstructed
    from the log stream.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from patronage_kernel.db.base import coerce_uuid
from patronage_kernel.domain.clock import Clock
from patronage_kernel.domain.dtos import DividendRecordInfo
from patronage_kernel.domain.values import (
    DistributionStatus,
    PaymentMethod,
    PaymentStatus,
)
from patronage_kernel.exceptions import (
    DistributionNotFoundError,
    DistributionStateError,
    DividendNotFoundError,
    InvalidPaymentMethodError,
    StateConflictError,
)
from patronage_kernel.logging_config import get_logger
from patronage_kernel.models.distribution import DistributionPeriod, DividendRecord
from patronage_kernel.services.base import BaseService

logger = get_logger("services.payment_status")


def _validate_payment_method(payment_method: str) -> PaymentMethod:
    try:
        return PaymentMethod(payment_method)
    except ValueError:
        raise InvalidPaymentMethodError(
            payment_method=str(payment_method),
            allowed=tuple(m.value for m in PaymentMethod),
        ) from None


class PaymentStatusManager(BaseService[DividendRecord]):
    """
    Guarded payment-state transitions.

    Contract:
        ``mark_paid`` and ``cancel`` succeed at most once per record.  When
        ``expected_version`` is given, the transition only applies if the
        record is still at that version (the caller's last read).

    Non-goals:
        - Does NOT move money; recording a payment is bookkeeping only.
        - Does NOT alter dividend amounts (those are immutable).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def mark_paid(
        self,
        tenant_id: str,
        dividend_id: UUID | str,
        payment_method: str,
        payment_date: date | None = None,
        expected_version: int | None = None,
    ) -> DividendRecordInfo:
        """
        PENDING -> PAID.

        Args:
            payment_method: One of PaymentMethod's values.
            payment_date: Defaults to today (injected clock).
            expected_version: Optional optimistic-lock version.

        Raises:
            DividendNotFoundError, InvalidPaymentMethodError,
            StateConflictError.
        """
        method = _validate_payment_method(payment_method)
        record = self._load(tenant_id, dividend_id)
        self._transition(
            record,
            attempted=PaymentStatus.PAID,
            expected_version=expected_version,
            values={
                "payment_method": method.value,
                "payment_date": payment_date or self._clock.today(),
            },
        )
        return self._reload(record)

    def cancel(
        self,
        tenant_id: str,
        dividend_id: UUID | str,
        reason: str,
        expected_version: int | None = None,
    ) -> DividendRecordInfo:
        """
        PENDING -> CANCELLED.

        Raises:
            DividendNotFoundError, StateConflictError.
        """
        record = self._load(tenant_id, dividend_id)
        self._transition(
            record,
            attempted=PaymentStatus.CANCELLED,
            expected_version=expected_version,
            values={"cancellation_reason": reason},
        )
        return self._reload(record)

    def mark_distribution_paid(
        self,
        tenant_id: str,
        distribution_id: UUID | str,
        payment_method: str,
        payment_date: date | None = None,
    ) -> int:
        """
        Mark every still-pending record of a finalized distribution paid.

        Records that another writer moves concurrently are skipped (logged),
        not overwritten.

        Returns:
            Number of records this call transitioned.

        Raises:
            DistributionNotFoundError, DistributionStateError,
            InvalidPaymentMethodError.
        """
        method = _validate_payment_method(payment_method)
        paid_on = payment_date or self._clock.today()

        parsed = coerce_uuid(distribution_id)
        distribution = None
        if parsed is not None:
            distribution = self.session.execute(
                select(DistributionPeriod).where(
                    DistributionPeriod.id == parsed,
                    DistributionPeriod.tenant_id == tenant_id,
                )
            ).scalar_one_or_none()
        if distribution is None:
            raise DistributionNotFoundError(str(distribution_id))
        if distribution.status != DistributionStatus.FINALIZED:
            raise DistributionStateError(
                distribution_id=str(distribution.id),
                current_status=distribution.status,
                attempted="pay",
            )

        pending = self.session.execute(
            select(DividendRecord).where(
                DividendRecord.distribution_id == distribution.id,
                DividendRecord.payment_status == PaymentStatus.PENDING.value,
                DividendRecord.superseded_at.is_(None),
            ).order_by(DividendRecord.member_id)
        ).scalars().all()

        transitioned = 0
        for record in pending:
            try:
                self._transition(
                    record,
                    attempted=PaymentStatus.PAID,
                    expected_version=record.version,
                    values={"payment_method": method.value, "payment_date": paid_on},
                    distribution=distribution,
                )
            except StateConflictError as exc:
                logger.info(
                    "bulk_payment_record_skipped",
                    extra={
                        "dividend_id": str(record.id),
                        "current_status": exc.current_status,
                    },
                )
                continue
            transitioned += 1

        logger.info(
            "distribution_marked_paid",
            extra={
                "tenant_id": tenant_id,
                "distribution_id": str(distribution.id),
                "records_paid": transitioned,
                "payment_method": method.value,
            },
        )
        return transitioned

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, tenant_id: str, dividend_id: UUID | str) -> DividendRecord:
        parsed = coerce_uuid(dividend_id)
        record = None
        if parsed is not None:
            record = self.session.execute(
                select(DividendRecord)
                .where(
                    DividendRecord.id == parsed,
                    DividendRecord.tenant_id == tenant_id,
                )
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if record is None:
            raise DividendNotFoundError(str(dividend_id))
        return record

    def _transition(
        self,
        record: DividendRecord,
        attempted: PaymentStatus,
        expected_version: int | None,
        values: dict,
        distribution: DistributionPeriod | None = None,
    ) -> None:
        distribution = distribution or record.distribution
        if distribution.status != DistributionStatus.FINALIZED or record.superseded_at is not None:
            reason = (
                "record superseded by a voided distribution"
                if record.superseded_at is not None
                else f"distribution is {distribution.status}, not finalized"
            )
            raise self._conflict(record, attempted, reason)

        version = expected_version if expected_version is not None else record.version

        result = self.session.execute(
            update(DividendRecord)
            .where(
                DividendRecord.id == record.id,
                DividendRecord.version == version,
                DividendRecord.payment_status == PaymentStatus.PENDING.value,
                DividendRecord.superseded_at.is_(None),
            )
            .values(
                payment_status=attempted.value,
                version=version + 1,
                **values,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            self.session.refresh(record)
            raise self._conflict(record, attempted, "record is not pending at the expected version")

        logger.info(
            "payment_transition_applied",
            extra={
                "dividend_id": str(record.id),
                "from_status": PaymentStatus.PENDING.value,
                "to_status": attempted.value,
                "version": version + 1,
            },
        )

    def _conflict(
        self,
        record: DividendRecord,
        attempted: PaymentStatus,
        reason: str,
    ) -> StateConflictError:
        logger.warning(
            "payment_transition_conflict",
            extra={
                "dividend_id": str(record.id),
                "attempted": attempted.value,
                "current_status": record.payment_status,
                "current_version": record.version,
                "reason": reason,
            },
        )
        return StateConflictError(
            dividend_id=str(record.id),
            attempted=attempted.value,
            current_status=record.payment_status,
            current_version=record.version,
            reason=reason,
        )

    def _reload(self, record: DividendRecord) -> DividendRecordInfo:
        self.session.refresh(record)
        return DividendRecordInfo.from_model(record, record.distribution)
