"""
Module: patronage_kernel.selectors.dividend_selector
Responsibility: Read model for dividends: a member's dividend history with
    its summary, a tenant's distribution history, and single distribution /
    dividend lookups.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - The summary is computed from exactly the record set returned, so it can
      never drift from the records a client sees.
    - Superseded records (of voided distributions) are excluded from member
      history.
    - Every query is scoped by an explicit tenant_id.

Failure modes:
    - DistributionNotFoundError / DividendNotFoundError for unknown ids or
      ids belonging to another tenant.
    - ValueError for a non-positive limit.
"""

from uuid import UUID

from sqlalchemy import select

from patronage_kernel.db.base import coerce_uuid
from patronage_kernel.domain.dtos import (
    DistributionDetail,
    DistributionPeriodInfo,
    DividendRecordInfo,
    DividendSummary,
    MemberDividendHistory,
    PeriodRange,
)
from patronage_kernel.domain.values import DistributionStatus, MemberType
from patronage_kernel.exceptions import (
    DistributionNotFoundError,
    DividendNotFoundError,
)
from patronage_kernel.models.distribution import DistributionPeriod, DividendRecord
from patronage_kernel.selectors.base import BaseSelector

DEFAULT_HISTORY_LIMIT = 12


def _check_limit(limit: int) -> int:
    if limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit}")
    return limit


class DividendSelector(BaseSelector[DividendRecord]):
    """
    Dividend queries.

    Contract:
        Returns frozen DTOs; never mutates.  Ordering is newest period first.
    """

    def get_member_history(
        self,
        tenant_id: str,
        member_type: MemberType,
        member_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> MemberDividendHistory:
        """
        A member's dividend records ordered by period_start descending,
        at most ``limit`` of them, plus a summary over that same set.
        """
        member_type = MemberType(member_type)
        rows = self.session.execute(
            select(DividendRecord, DistributionPeriod)
            .join(DistributionPeriod, DividendRecord.distribution_id == DistributionPeriod.id)
            .where(
                DividendRecord.tenant_id == tenant_id,
                DividendRecord.member_type == member_type.value,
                DividendRecord.member_id == member_id,
                DividendRecord.superseded_at.is_(None),
                DistributionPeriod.status != DistributionStatus.VOIDED.value,
            )
            .order_by(
                DistributionPeriod.period_start.desc(),
                DistributionPeriod.period_end.desc(),
            )
            .limit(_check_limit(limit))
        ).all()

        dividends = tuple(
            DividendRecordInfo.from_model(record, period) for record, period in rows
        )
        return MemberDividendHistory(
            tenant_id=tenant_id,
            member_type=member_type,
            member_id=member_id,
            dividends=dividends,
            summary=DividendSummary.from_records(dividends),
        )

    def get_distribution_history(
        self,
        tenant_id: str,
        member_type: MemberType | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
        include_voided: bool = False,
    ) -> tuple[DistributionPeriodInfo, ...]:
        """A tenant's distributions, newest period first."""
        stmt = select(DistributionPeriod).where(DistributionPeriod.tenant_id == tenant_id)
        if member_type is not None:
            stmt = stmt.where(DistributionPeriod.member_type == MemberType(member_type).value)
        if not include_voided:
            stmt = stmt.where(DistributionPeriod.status != DistributionStatus.VOIDED.value)
        stmt = stmt.order_by(
            DistributionPeriod.period_start.desc(),
            DistributionPeriod.member_type,
            DistributionPeriod.computed_at.desc(),
        ).limit(_check_limit(limit))

        return tuple(
            DistributionPeriodInfo.from_model(d)
            for d in self.session.execute(stmt).scalars().all()
        )

    def get_distribution(
        self,
        tenant_id: str,
        distribution_id: UUID | str,
    ) -> DistributionDetail:
        """A distribution period with all of its records (member_id order)."""
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

        records = self.session.execute(
            select(DividendRecord)
            .where(DividendRecord.distribution_id == distribution.id)
            .order_by(DividendRecord.member_id)
        ).scalars().all()

        return DistributionDetail(
            distribution=DistributionPeriodInfo.from_model(distribution),
            dividends=tuple(
                DividendRecordInfo.from_model(r, distribution) for r in records
            ),
        )

    def get_dividend(self, tenant_id: str, dividend_id: UUID | str) -> DividendRecordInfo:
        parsed = coerce_uuid(dividend_id)
        row = None
        if parsed is not None:
            row = self.session.execute(
                select(DividendRecord, DistributionPeriod)
                .join(DistributionPeriod, DividendRecord.distribution_id == DistributionPeriod.id)
                .where(
                    DividendRecord.id == parsed,
                    DividendRecord.tenant_id == tenant_id,
                )
            ).first()
        if row is None:
            raise DividendNotFoundError(str(dividend_id))
        record, period = row
        return DividendRecordInfo.from_model(record, period)

    def find_live_distribution(
        self,
        tenant_id: str,
        member_type: MemberType,
        period: PeriodRange,
    ) -> DistributionPeriodInfo | None:
        """The non-voided distribution for a period key, if any."""
        distribution = self.session.execute(
            select(DistributionPeriod).where(
                DistributionPeriod.tenant_id == tenant_id,
                DistributionPeriod.member_type == MemberType(member_type).value,
                DistributionPeriod.period_start == period.start,
                DistributionPeriod.period_end == period.end,
                DistributionPeriod.status != DistributionStatus.VOIDED.value,
            )
        ).scalars().first()
        if distribution is None:
            return None
        return DistributionPeriodInfo.from_model(distribution)
