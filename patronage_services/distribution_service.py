"""
DistributionService -- end-to-end computation of dividend distributions.

Responsibility:
    Orchestrates one distribution run: surplus -> patronage -> allocation ->
    persistence.  Collaborator reads run on a worker pool with a bounded
    wait and a tenacity retry policy; the write is a single
    DistributionRecordStore call committed in its own transaction.

Architecture position:
    Services -- the only layer that owns a transaction for computations
    (via session_scope).  Engines stay pure; the store only flushes.

Invariants enforced:
    - Nothing is written until every input has been gathered and the
      allocation has passed its conservation check.
    - A set ``cancel_event`` aborts before the write with
      ComputationCancelledError; no partial distribution can exist.
    - Hybrid cooperatives: the pool is split exactly by customer_share and
      both member-type distributions commit in one transaction.
    - Log context (tenant_id, correlation_id) follows work onto worker
      threads through ``contextvars.copy_context()``.

Failure modes:
    - InvalidPeriodError, InvalidDividendRateError, InsufficientDataError:
      not retried, raised to the caller.
    - TransientCollaboratorError / CollaboratorTimeoutError: retried with
      exponential backoff; the last error is re-raised once the attempts
      are exhausted.
    - DuplicateDistributionError: the period key already has a live
      distribution.
    - ComputationCancelledError: cancellation observed before the write.
"""

from __future__ import annotations

import contextvars
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from patronage_config.schema import RetryConfig
from patronage_engines.allocation import AllocationEngine
from patronage_kernel.db.engine import session_scope
from patronage_kernel.domain.clock import Clock, SystemClock
from patronage_kernel.domain.dtos import (
    AllocationResult,
    DistributionOutcome,
    DistributionPeriodInfo,
    PatronageSnapshot,
    PeriodRange,
    SurplusResult,
)
from patronage_kernel.domain.values import CooperativeModel, MemberType
from patronage_kernel.exceptions import (
    CollaboratorTimeoutError,
    ComputationCancelledError,
    InsufficientDataError,
    TransientCollaboratorError,
    ZeroPatronageError,
)
from patronage_kernel.logging_config import LogContext, get_logger
from patronage_kernel.services.distribution_store import DistributionRecordStore
from patronage_services.collaborators import (
    DividendSettingsSource,
    TenantDividendConfig,
)
from patronage_services.patronage_aggregator import PatronageAggregator
from patronage_services.surplus_calculator import SurplusCalculator

logger = get_logger("services.distribution")

SessionFactory = Callable[[], Session]

# How often a waiting caller re-checks cancellation and its deadline.
POLL_INTERVAL_SECONDS = 0.05


class DistributionService:
    """
    Computes and persists dividend distributions.

    Contract:
        ``compute_distribution`` and ``compute_for_cooperative_model`` are
        safe to call from several threads at once; each call uses its own
        session.  Duplicate triggers for the same period key are resolved
        by the store, exactly one wins.

    Lifecycle:
        The service owns its worker pool unless one is injected.  Call
        ``close()`` (or use it as a context manager) to release it.
        An owned pool is replaced whenever an attempt is abandoned while
        still running, so one hung collaborator cannot starve other tenants.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        aggregator: PatronageAggregator,
        surplus_calculator: SurplusCalculator,
        settings_source: DividendSettingsSource,
        clock: Clock | None = None,
        retry_config: RetryConfig | None = None,
        executor: Executor | None = None,
        allocation_engine: AllocationEngine | None = None,
        max_workers: int = 4,
    ):
        self._session_factory = session_factory
        self._aggregator = aggregator
        self._surplus = surplus_calculator
        self._settings = settings_source
        self._clock = clock or SystemClock()
        self._retry = retry_config or RetryConfig()
        self._owns_executor = executor is None
        self._max_workers = max_workers
        self._executor_lock = threading.Lock()
        self._executor = executor or self._new_pool()
        self._allocator = allocation_engine or AllocationEngine()

    def __enter__(self) -> DistributionService:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_executor:
            with self._executor_lock:
                self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compute_distribution(
        self,
        tenant_id: str,
        member_type: MemberType,
        period_start: date,
        period_end: date,
        triggered_by: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> DistributionOutcome:
        """
        Compute and persist the distribution of one member type.

        Postconditions:
            One COMPUTED distribution (and its PENDING records) is
            committed.  With zero eligible patronage the distribution is
            still persisted, flagged review_required, and the outcome
            carries a ZeroPatronageError notice.
        """
        member_type = MemberType(member_type)
        period = PeriodRange(period_start, period_end)

        with LogContext.bind(tenant_id=tenant_id, actor=triggered_by):
            logger.info(
                "distribution_computation_started",
                extra={"member_type": member_type.value, "period": str(period)},
            )
            surplus = self._gather(
                "surplus", self._surplus.calculate,
                (tenant_id, period.start, period.end),
                tenant_id, member_type, cancel_event,
            )
            snapshot = self._gather_patronage(tenant_id, member_type, period, cancel_event)
            allocation = self._allocator.allocate(surplus.dividend_pool, snapshot.patronage)

            self._check_cancelled(cancel_event, tenant_id, member_type)
            with session_scope(self._session_factory) as session:
                info = DistributionRecordStore(session, self._clock).create_distribution(
                    tenant_id, member_type, period, surplus, allocation, triggered_by
                )
            return self._outcome(info)

    def compute_for_cooperative_model(
        self,
        tenant_id: str,
        period_start: date,
        period_end: date,
        triggered_by: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> tuple[DistributionOutcome, ...]:
        """
        Compute the distributions the tenant's cooperative model calls for.

        passenger -> customers, worker -> drivers, hybrid -> both, with the
        pool divided by ``customer_share``.  All distributions of the run
        are committed together or not at all.
        """
        period = PeriodRange(period_start, period_end)

        with LogContext.bind(tenant_id=tenant_id, actor=triggered_by):
            settings: TenantDividendConfig = self._gather(
                "settings", self._settings.get_settings, (tenant_id,),
                tenant_id, None, cancel_event,
            )
            model = CooperativeModel(settings.cooperative_model)
            surplus = self._gather(
                "surplus", self._surplus.calculate,
                (tenant_id, period.start, period.end),
                tenant_id, None, cancel_event,
            )
            pools = self._member_pools(tenant_id, model, settings.customer_share, surplus)

            planned: list[tuple[MemberType, SurplusResult, AllocationResult]] = []
            for member_type in model.member_types:
                snapshot = self._gather_patronage(tenant_id, member_type, period, cancel_event)
                pool = pools[member_type.value]
                allocation = self._allocator.allocate(pool, snapshot.patronage)
                planned.append((member_type, surplus.with_pool(pool), allocation))

            self._check_cancelled(cancel_event, tenant_id, None)
            with session_scope(self._session_factory) as session:
                store = DistributionRecordStore(session, self._clock)
                infos = [
                    store.create_distribution(
                        tenant_id, member_type, period, part, allocation, triggered_by
                    )
                    for member_type, part, allocation in planned
                ]

            logger.info(
                "cooperative_distribution_completed",
                extra={
                    "cooperative_model": model.value,
                    "period": str(period),
                    "distributions": [str(i.id) for i in infos],
                },
            )
            return tuple(self._outcome(info) for info in infos)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _member_pools(
        self,
        tenant_id: str,
        model: CooperativeModel,
        customer_share: Decimal,
        surplus: SurplusResult,
    ) -> dict[str, int]:
        if model is CooperativeModel.PASSENGER:
            return {MemberType.CUSTOMER.value: surplus.dividend_pool}
        if model is CooperativeModel.WORKER:
            return {MemberType.DRIVER.value: surplus.dividend_pool}

        share = Decimal(customer_share)
        if not share.is_finite() or share < 0 or share > 1:
            raise InsufficientDataError(
                tenant_id, "settings", f"customer_share must be within [0, 1], got {share}"
            )
        return self._allocator.split_pool(
            surplus.dividend_pool,
            {MemberType.CUSTOMER.value: share, MemberType.DRIVER.value: 1 - share},
        )

    def _gather_patronage(
        self,
        tenant_id: str,
        member_type: MemberType,
        period: PeriodRange,
        cancel_event: threading.Event | None,
    ) -> PatronageSnapshot:
        return self._gather(
            f"patronage_{member_type.value}", self._aggregator.aggregate,
            (tenant_id, member_type, period.start, period.end),
            tenant_id, member_type, cancel_event,
        )

    def _gather(
        self,
        collaborator: str,
        fn: Callable[..., Any],
        args: Sequence[Any],
        tenant_id: str,
        member_type: MemberType | None,
        cancel_event: threading.Event | None,
    ) -> Any:
        """Call a collaborator under the retry policy."""
        retrying = Retrying(
            stop=stop_after_attempt(self._retry.max_attempts),
            wait=wait_exponential(
                multiplier=self._retry.initial_backoff_seconds,
                exp_base=self._retry.backoff_multiplier,
                max=self._retry.max_backoff_seconds,
            ),
            retry=retry_if_exception_type(TransientCollaboratorError),
            sleep=self._sleeper(cancel_event, tenant_id, member_type),
            before_sleep=self._log_retry(collaborator, tenant_id),
            reraise=True,
        )
        return retrying(
            self._call_bounded, collaborator, fn, args, tenant_id, member_type, cancel_event
        )

    def _call_bounded(
        self,
        collaborator: str,
        fn: Callable[..., Any],
        args: Sequence[Any],
        tenant_id: str,
        member_type: MemberType | None,
        cancel_event: threading.Event | None,
    ) -> Any:
        """Run one attempt on the worker pool, waiting at most the timeout."""
        self._check_cancelled(cancel_event, tenant_id, member_type)

        ctx = contextvars.copy_context()
        with self._executor_lock:
            future = self._executor.submit(ctx.run, fn, *args)
        timeout = self._retry.collaborator_timeout_seconds
        deadline = time.monotonic() + timeout

        while True:
            if cancel_event is not None and cancel_event.is_set():
                self._abandon(future, collaborator)
                self._check_cancelled(cancel_event, tenant_id, member_type)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    "collaborator_timeout",
                    extra={"collaborator": collaborator, "timeout_seconds": timeout},
                )
                self._abandon(future, collaborator)
                raise CollaboratorTimeoutError(collaborator, timeout)
            try:
                return future.result(timeout=min(POLL_INTERVAL_SECONDS, remaining))
            except FutureTimeoutError:
                continue

    def _new_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="patronage-collab"
        )

    def _abandon(self, future: Future, collaborator: str) -> None:
        """
        Give up on an attempt.

        A call that is already running cannot be interrupted and keeps its
        worker busy.  The owned pool is then retired and replaced so a hung
        read never takes capacity from later computations; the retired pool
        finishes its in-flight work and lets its threads exit.
        """
        if future.cancel() or future.done() or not self._owns_executor:
            return
        with self._executor_lock:
            retired, self._executor = self._executor, self._new_pool()
        retired.shutdown(wait=False)
        logger.warning("collaborator_pool_replaced", extra={"collaborator": collaborator})

    def _sleeper(
        self,
        cancel_event: threading.Event | None,
        tenant_id: str,
        member_type: MemberType | None,
    ) -> Callable[[float], None]:
        def sleep(seconds: float) -> None:
            if cancel_event is None:
                time.sleep(seconds)
            elif cancel_event.wait(seconds):
                self._check_cancelled(cancel_event, tenant_id, member_type)

        return sleep

    @staticmethod
    def _log_retry(collaborator: str, tenant_id: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "collaborator_retry_scheduled",
                extra={
                    "collaborator": collaborator,
                    "tenant_id": tenant_id,
                    "attempt": retry_state.attempt_number,
                    "wait_seconds": retry_state.next_action.sleep
                    if retry_state.next_action else None,
                    "error": str(error),
                },
            )

        return before_sleep

    @staticmethod
    def _check_cancelled(
        cancel_event: threading.Event | None,
        tenant_id: str,
        member_type: MemberType | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            label = member_type.value if member_type is not None else "all"
            logger.info(
                "distribution_computation_cancelled",
                extra={"tenant_id": tenant_id, "member_type": label},
            )
            raise ComputationCancelledError(tenant_id, label)

    @staticmethod
    def _outcome(info: DistributionPeriodInfo) -> DistributionOutcome:
        if info.eligible_members > 0:
            return DistributionOutcome(distribution=info)
        notice = ZeroPatronageError(
            info.tenant_id, info.member_type.value, info.undistributed_amount
        )
        logger.warning(
            "distribution_zero_patronage",
            extra={
                "distribution_id": str(info.id),
                "member_type": info.member_type.value,
                "undistributed_amount": info.undistributed_amount,
            },
        )
        return DistributionOutcome(distribution=info, notices=(notice,))
