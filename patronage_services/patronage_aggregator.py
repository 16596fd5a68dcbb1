"""
PatronageAggregator -- gathers per-member patronage for a period.

Responsibility:
    Ask the configured PatronageSource for each member's completed-trip
    count over an inclusive period and freeze the result in a
    PatronageSnapshot.

Architecture position:
    Services -- stateless orchestration over collaborator protocols.  Holds
    no session; database access happens inside the sources.

Invariants enforced:
    - Only positive counts appear in the snapshot; zero-activity members are
      not eligible.
    - A negative or non-integer count is treated as corrupt source data.

Failure modes:
    - InvalidPeriodError if period_start > period_end.
    - InsufficientDataError for an unconfigured member type or corrupt
      counts.
    - TransientCollaboratorError from the source propagates unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date

from patronage_kernel.domain.dtos import MemberPatronage, PatronageSnapshot, PeriodRange
from patronage_kernel.domain.values import MemberType
from patronage_kernel.exceptions import InsufficientDataError
from patronage_kernel.logging_config import get_logger
from patronage_services.collaborators import PatronageSource

logger = get_logger("services.patronage_aggregator")


class PatronageAggregator:
    """Builds PatronageSnapshots from per-member-type patronage sources."""

    def __init__(self, sources: Mapping[MemberType, PatronageSource]):
        self._sources = dict(sources)

    def _source(self, tenant_id: str, member_type: MemberType) -> PatronageSource:
        try:
            return self._sources[MemberType(member_type)]
        except KeyError:
            raise InsufficientDataError(
                tenant_id,
                "patronage",
                f"no patronage source configured for {member_type.value}",
            ) from None

    def aggregate(
        self,
        tenant_id: str,
        member_type: MemberType,
        period_start: date,
        period_end: date,
    ) -> PatronageSnapshot:
        period = PeriodRange(period_start, period_end)
        source = self._source(tenant_id, member_type)

        counts = source.get_completed_trip_counts(tenant_id, period.start, period.end)

        rows = []
        for member_id, count in counts.items():
            _check_count(tenant_id, member_id, count)
            rows.append(MemberPatronage(member_id, member_type, count))

        snapshot = PatronageSnapshot.from_members(tenant_id, member_type, period, rows)
        logger.info(
            "patronage_aggregated",
            extra={
                "tenant_id": tenant_id,
                "member_type": member_type.value,
                "period": str(period),
                "eligible_members": snapshot.eligible_members,
                "total_patronage": snapshot.total_patronage,
            },
        )
        return snapshot

    def member_patronage(
        self,
        tenant_id: str,
        member_type: MemberType,
        member_id: str,
        period_start: date,
        period_end: date,
    ) -> int:
        """Completed-trip count of a single member over the period."""
        period = PeriodRange(period_start, period_end)
        count = self._source(tenant_id, member_type).get_completed_trip_count(
            tenant_id, member_id, period.start, period.end
        )
        _check_count(tenant_id, member_id, count)
        return count


def _check_count(tenant_id: str, member_id: str, count: object) -> None:
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise InsufficientDataError(
            tenant_id,
            "patronage",
            f"invalid trip count {count!r} for member {member_id}",
        )
