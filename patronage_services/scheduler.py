"""
DividendScheduler -- periodic distribution runs for scheduled tenants.

Contract:
    ``run_due(today)`` computes, for every tenant with scheduled
    distributions enabled, the distributions of the calendar period that
    ended before ``today`` (previous month or previous quarter).  It is
    driven by cron through ``scripts/run_scheduled_distributions.py``;
    re-running it for the same day is harmless.

Architecture: patronage_services.  Uses DistributionService for the
    computation and DistributionRecordStore for auto-finalization.

Invariants enforced:
    - Period keys that already have a live distribution are skipped and
      logged, never recomputed.
    - A failure for one tenant is logged and does not stop the run.
    - Distributions that need review (zero patronage) are never
      auto-finalized.
    - All dates come from the injected Clock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy.orm import Session

from patronage_config.schema import SchedulerConfig
from patronage_kernel.db.engine import session_scope
from patronage_kernel.domain.clock import Clock, SystemClock
from patronage_kernel.domain.dtos import DistributionOutcome, PeriodRange
from patronage_kernel.domain.values import CooperativeModel, ScheduleFrequency
from patronage_kernel.exceptions import DuplicateDistributionError, PatronageEngineError
from patronage_kernel.logging_config import get_logger
from patronage_kernel.selectors.dividend_selector import DividendSelector
from patronage_kernel.services.distribution_store import DistributionRecordStore
from patronage_services.collaborators import DividendSettingsSource, TenantDividendConfig
from patronage_services.distribution_service import DistributionService

logger = get_logger("services.scheduler")


def previous_period(frequency: ScheduleFrequency, today: date) -> PeriodRange:
    """The last complete calendar month or quarter before ``today``.

    >>> previous_period(ScheduleFrequency.MONTHLY, date(2024, 3, 15))
    PeriodRange(start=datetime.date(2024, 2, 1), end=datetime.date(2024, 2, 29))
    >>> str(previous_period(ScheduleFrequency.QUARTERLY, date(2024, 1, 5)))
    '2023-10-01..2023-12-31'
    """
    frequency = ScheduleFrequency(frequency)
    if frequency is ScheduleFrequency.MONTHLY:
        current_start = today.replace(day=1)
    else:
        quarter_month = 3 * ((today.month - 1) // 3) + 1
        current_start = today.replace(month=quarter_month, day=1)

    end = current_start - timedelta(days=1)
    if frequency is ScheduleFrequency.MONTHLY:
        start = end.replace(day=1)
    else:
        start = end.replace(month=end.month - 2, day=1)
    return PeriodRange(start, end)


@dataclass
class SchedulerRunReport:
    """What one ``run_due`` call did, per tenant."""

    run_date: date
    computed: dict[str, tuple[str, ...]] = field(default_factory=dict)
    finalized: dict[str, tuple[str, ...]] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class DividendScheduler:
    """Runs due distributions for every scheduled tenant.

    Non-goals:
        - NOT a long-running daemon; an external cron invokes ``run_due``.
        - Does NOT backfill missed periods; only the previous period is due.
    """

    def __init__(
        self,
        distribution_service: DistributionService,
        settings_source: DividendSettingsSource,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        scheduler_config: SchedulerConfig | None = None,
    ):
        self._service = distribution_service
        self._settings = settings_source
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = scheduler_config or SchedulerConfig()
        self._stop_event = threading.Event()

    def stop(self) -> None:
        """Ask a running ``run_due`` to stop after the current tenant."""
        self._stop_event.set()

    def close(self) -> None:
        self._service.close()

    def run_due(self, today: date | None = None) -> SchedulerRunReport:
        today = today or self._clock.today()
        report = SchedulerRunReport(run_date=today)

        if not self._config.enabled:
            logger.info("scheduler_disabled", extra={"run_date": str(today)})
            return report

        self._stop_event.clear()
        tenants = self._settings.list_scheduled_tenants()
        logger.info(
            "scheduler_run_started",
            extra={"run_date": str(today), "tenant_count": len(tenants)},
        )

        for settings in tenants:
            if self._stop_event.is_set():
                logger.info("scheduler_run_interrupted", extra={"run_date": str(today)})
                break
            try:
                self._run_tenant(settings, today, report)
            except DuplicateDistributionError as exc:
                # Lost a race with a manual trigger for the same period key.
                report.skipped.append(settings.tenant_id)
                logger.info(
                    "scheduled_distribution_skipped",
                    extra={"tenant_id": settings.tenant_id, "reason": exc.code},
                )
            except PatronageEngineError as exc:
                report.failed[settings.tenant_id] = exc.code
                logger.exception(
                    "scheduled_distribution_failed",
                    extra={"tenant_id": settings.tenant_id, "error_code": exc.code},
                )
            except Exception as exc:
                report.failed[settings.tenant_id] = type(exc).__name__
                logger.exception(
                    "scheduled_distribution_failed",
                    extra={"tenant_id": settings.tenant_id},
                )

        logger.info(
            "scheduler_run_completed",
            extra={
                "run_date": str(today),
                "computed": len(report.computed),
                "skipped": len(report.skipped),
                "failed": len(report.failed),
            },
        )
        return report

    def _run_tenant(
        self,
        settings: TenantDividendConfig,
        today: date,
        report: SchedulerRunReport,
    ) -> None:
        tenant_id = settings.tenant_id
        period = previous_period(settings.schedule_frequency, today)
        model = CooperativeModel(settings.cooperative_model)

        if self._already_distributed(tenant_id, model, period):
            report.skipped.append(tenant_id)
            logger.info(
                "scheduled_distribution_skipped",
                extra={
                    "tenant_id": tenant_id,
                    "period": str(period),
                    "reason": "already_distributed",
                },
            )
            return

        outcomes = self._service.compute_for_cooperative_model(
            tenant_id,
            period.start,
            period.end,
            triggered_by=self._config.triggered_by,
        )
        report.computed[tenant_id] = tuple(str(o.distribution.id) for o in outcomes)

        if settings.auto_finalize:
            finalized = self._finalize(tenant_id, outcomes)
            if finalized:
                report.finalized[tenant_id] = finalized

    def _already_distributed(
        self,
        tenant_id: str,
        model: CooperativeModel,
        period: PeriodRange,
    ) -> bool:
        with self._session_factory() as session:
            selector = DividendSelector(session)
            return any(
                selector.find_live_distribution(tenant_id, member_type, period) is not None
                for member_type in model.member_types
            )

    def _finalize(
        self,
        tenant_id: str,
        outcomes: tuple[DistributionOutcome, ...],
    ) -> tuple[str, ...]:
        finalized: list[str] = []
        with session_scope(self._session_factory) as session:
            store = DistributionRecordStore(session, self._clock)
            for outcome in outcomes:
                if outcome.review_required:
                    logger.warning(
                        "auto_finalize_skipped_review_required",
                        extra={
                            "tenant_id": tenant_id,
                            "distribution_id": str(outcome.distribution.id),
                        },
                    )
                    continue
                store.finalize_distribution(tenant_id, outcome.distribution.id)
                finalized.append(str(outcome.distribution.id))
        return tuple(finalized)
