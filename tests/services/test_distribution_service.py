"""
Tests for DistributionService (end-to-end distribution computation).

Covers:
- The 8000/3000 @ 0.2 worked example, from SQL sources to committed records
- Zero patronage is persisted for review with a notice
- Insufficient data and bad rates abort with nothing written
- Transient collaborator failures are retried, then re-raised
- Collaborator timeouts and cancellation
- Cooperative models: passenger, worker, hybrid split
"""

import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from patronage_config.schema import EngineConfig, RetryConfig
from patronage_kernel.domain.dtos import PeriodRange
from patronage_kernel.domain.values import (
    CooperativeModel,
    DistributionStatus,
    MemberType,
)
from patronage_kernel.exceptions import (
    CollaboratorTimeoutError,
    ComputationCancelledError,
    DuplicateDistributionError,
    InsufficientDataError,
    InvalidDividendRateError,
    InvalidPeriodError,
    TransientCollaboratorError,
    ZeroPatronageError,
)
from patronage_kernel.models import DistributionPeriod, DividendRecord
from patronage_kernel.selectors.dividend_selector import DividendSelector
from patronage_services.collaborators import PeriodFinancials
from patronage_services.distribution_service import DistributionService
from patronage_services.patronage_aggregator import PatronageAggregator
from patronage_services.surplus_calculator import SurplusCalculator
from patronage_services.wiring import build_distribution_service

TENANT = "coop-1"
JAN_START, JAN_END = date(2024, 1, 1), date(2024, 1, 31)

FAST_RETRY = RetryConfig(
    max_attempts=3,
    initial_backoff_seconds=0,
    max_backoff_seconds=0,
    collaborator_timeout_seconds=5,
)


def _count(session_factory, model):
    with session_factory() as s:
        return s.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture
def service(session_factory, fake_ledger, fake_settings, fake_sources, deterministic_clock):
    fake_settings.add(TENANT, "0.2")
    fake_ledger.financials[TENANT] = PeriodFinancials(8000, 3000)
    svc = DistributionService(
        session_factory=session_factory,
        aggregator=PatronageAggregator(fake_sources),
        surplus_calculator=SurplusCalculator(fake_ledger, fake_settings),
        settings_source=fake_settings,
        clock=deterministic_clock,
        retry_config=FAST_RETRY,
    )
    yield svc
    svc.close()


class TestEndToEnd:

    def test_worked_example_from_sql_sources(self, data, session_factory, deterministic_clock):
        data.tenant(TENANT, dividend_rate="0.2")
        data.ledger(TENANT, date(2024, 1, 20), 8000, 3000, closed_through=JAN_END)
        data.trips(TENANT, {"A": 3, "B": 2, "C": 2})

        with build_distribution_service(EngineConfig(), session_factory, deterministic_clock) as svc:
            outcome = svc.compute_distribution(
                TENANT, MemberType.CUSTOMER, JAN_START, JAN_END, triggered_by="test"
            )

        info = outcome.distribution
        assert outcome.notices == ()
        assert info.status == DistributionStatus.COMPUTED
        assert (info.gross_surplus, info.dividend_pool, info.total_patronage) == (5000, 1000, 7)

        with session_factory() as s:
            detail = DividendSelector(s).get_distribution(TENANT, info.id)
        assert [(d.member_id, d.dividend_amount) for d in detail.dividends] == [
            ("A", 428), ("B", 286), ("C", 286),
        ]
        assert [d.patronage_percentage for d in detail.dividends] == [
            Decimal("42.86"), Decimal("28.57"), Decimal("28.57"),
        ]

    def test_missing_ledger_close_writes_nothing(self, data, session_factory):
        data.tenant(TENANT)
        data.ledger(TENANT, date(2024, 1, 20), 8000, 3000)
        data.trips(TENANT, {"A": 1})

        with build_distribution_service(EngineConfig(), session_factory) as svc:
            with pytest.raises(InsufficientDataError):
                svc.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_START, JAN_END)

        assert _count(session_factory, DistributionPeriod) == 0


class TestComputeDistribution:

    def test_zero_patronage_persisted_with_notice(self, service, session_factory, captured_logs):
        outcome = service.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_START, JAN_END)

        assert outcome.review_required
        assert outcome.distribution.undistributed_amount == 1000
        assert len(outcome.notices) == 1
        assert isinstance(outcome.notices[0], ZeroPatronageError)
        assert _count(session_factory, DividendRecord) == 0
        assert any(r["message"] == "distribution_zero_patronage" for r in captured_logs())

    def test_deficit_period_allocates_nothing(self, service, fake_ledger, fake_sources):
        fake_ledger.financials[TENANT] = PeriodFinancials(1000, 4000)
        fake_sources[MemberType.CUSTOMER].counts[TENANT] = {"A": 2, "B": 1}

        info = service.compute_distribution(
            TENANT, MemberType.CUSTOMER, JAN_START, JAN_END
        ).distribution

        assert info.gross_surplus == -3000
        assert info.dividend_pool == 0
        assert info.eligible_members == 2

    def test_duplicate_trigger_rejected(self, service, fake_sources):
        fake_sources[MemberType.CUSTOMER].counts[TENANT] = {"A": 1}
        service.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_START, JAN_END)
        with pytest.raises(DuplicateDistributionError):
            service.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_START, JAN_END)

    def test_invalid_period(self, service):
        with pytest.raises(InvalidPeriodError):
            service.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_END, JAN_START)

    def test_invalid_rate_not_retried(self, service, fake_settings, session_factory):
        fake_settings.add(TENANT, "1.2")
        with pytest.raises(InvalidDividendRateError):
            service.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_START, JAN_END)
        assert fake_settings.calls == 1
        assert _count(session_factory, DistributionPeriod) == 0

    def test_log_context_reaches_worker_threads(self, service, fake_sources, captured_logs):
        fake_sources[MemberType.CUSTOMER].counts[TENANT] = {"A": 1}
        service.compute_distribution(
            TENANT, MemberType.CUSTOMER, JAN_START, JAN_END, triggered_by="ops"
        )
        record = next(r for r in captured_logs() if r["message"] == "patronage_aggregated")
        assert record["actor"] == "ops"


class TestRetries:

    def test_transient_failure_retried(self, service, fake_ledger, fake_sources, captured_logs):
        fake_ledger.fail_times = 2
        fake_sources[MemberType.CUSTOMER].counts[TENANT] = {"A": 1}

        outcome = service.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_START, JAN_END)

        assert outcome.distribution.dividend_pool == 1000
        assert fake_ledger.calls == 3
        retries = [r for r in captured_logs() if r["message"] == "collaborator_retry_scheduled"]
        assert [r["attempt"] for r in retries] == [1, 2]

    def test_attempts_exhausted(self, service, fake_sources, session_factory):
        source = fake_sources[MemberType.CUSTOMER]
        source.fail_times = 10

        with pytest.raises(TransientCollaboratorError):
            service.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_START, JAN_END)

        assert source.calls == FAST_RETRY.max_attempts
        assert _count(session_factory, DistributionPeriod) == 0

    def test_timeout(self, session_factory, fake_ledger, fake_settings, fake_sources):
        fake_settings.add(TENANT, "0.2")
        fake_ledger.financials[TENANT] = PeriodFinancials(8000, 3000)
        fake_ledger.release = threading.Event()
        svc = DistributionService(
            session_factory=session_factory,
            aggregator=PatronageAggregator(fake_sources),
            surplus_calculator=SurplusCalculator(fake_ledger, fake_settings),
            settings_source=fake_settings,
            retry_config=RetryConfig(max_attempts=1, collaborator_timeout_seconds=0.2),
        )
        try:
            with pytest.raises(CollaboratorTimeoutError) as exc_info:
                svc.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_START, JAN_END)
            assert exc_info.value.collaborator == "surplus"
        finally:
            fake_ledger.release.set()
            svc.close()
        assert _count(session_factory, DistributionPeriod) == 0

    def test_hung_tenant_does_not_starve_others(
        self, session_factory, fake_ledger, fake_settings, fake_sources, captured_logs
    ):
        # more attempts than workers: every timed-out attempt leaves a busy thread
        released = threading.Event()
        fake_ledger.hang_for["coop-hung"] = released
        for tenant in ("coop-hung", TENANT):
            fake_settings.add(tenant, "0.2")
            fake_ledger.financials[tenant] = PeriodFinancials(8000, 3000)
        fake_sources[MemberType.CUSTOMER].counts[TENANT] = {"A": 1}
        svc = DistributionService(
            session_factory=session_factory,
            aggregator=PatronageAggregator(fake_sources),
            surplus_calculator=SurplusCalculator(fake_ledger, fake_settings),
            settings_source=fake_settings,
            retry_config=RetryConfig(
                max_attempts=4,
                initial_backoff_seconds=0,
                max_backoff_seconds=0,
                collaborator_timeout_seconds=0.2,
            ),
            max_workers=2,
        )
        try:
            with pytest.raises(CollaboratorTimeoutError):
                svc.compute_distribution("coop-hung", MemberType.CUSTOMER, JAN_START, JAN_END)

            outcome = svc.compute_distribution(TENANT, MemberType.CUSTOMER, JAN_START, JAN_END)
        finally:
            released.set()
            svc.close()

        assert outcome.distribution.dividend_pool == 1000
        replaced = [r for r in captured_logs() if r["message"] == "collaborator_pool_replaced"]
        assert len(replaced) == 4


class TestCancellation:

    def test_cancelled_before_start(self, service, session_factory):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ComputationCancelledError):
            service.compute_distribution(
                TENANT, MemberType.CUSTOMER, JAN_START, JAN_END, cancel_event=cancel
            )
        assert _count(session_factory, DistributionPeriod) == 0

    def test_cancelled_while_gathering(self, service, fake_ledger, session_factory):
        fake_ledger.release = threading.Event()
        cancel = threading.Event()
        timer = threading.Timer(0.1, cancel.set)
        timer.start()
        try:
            with pytest.raises(ComputationCancelledError):
                service.compute_distribution(
                    TENANT, MemberType.CUSTOMER, JAN_START, JAN_END, cancel_event=cancel
                )
        finally:
            timer.cancel()
            fake_ledger.release.set()
        assert _count(session_factory, DistributionPeriod) == 0


class TestCooperativeModels:

    def test_passenger(self, service, fake_sources):
        fake_sources[MemberType.CUSTOMER].counts[TENANT] = {"A": 1}
        outcomes = service.compute_for_cooperative_model(TENANT, JAN_START, JAN_END)
        assert [o.distribution.member_type for o in outcomes] == [MemberType.CUSTOMER]

    def test_worker(self, service, fake_settings, fake_sources):
        fake_settings.add(TENANT, "0.2", cooperative_model=CooperativeModel.WORKER)
        fake_sources[MemberType.DRIVER].counts[TENANT] = {"drv": 5}

        (outcome,) = service.compute_for_cooperative_model(TENANT, JAN_START, JAN_END)
        assert outcome.distribution.member_type == MemberType.DRIVER
        assert outcome.distribution.dividend_pool == 1000

    def test_hybrid_split(self, service, fake_settings, fake_ledger, fake_sources):
        fake_settings.add(
            TENANT, "0.2",
            cooperative_model=CooperativeModel.HYBRID,
            customer_share=Decimal("0.5"),
        )
        fake_ledger.financials[TENANT] = PeriodFinancials(10005, 0)  # pool 2001
        fake_sources[MemberType.CUSTOMER].counts[TENANT] = {"A": 1}
        fake_sources[MemberType.DRIVER].counts[TENANT] = {"drv": 1}

        outcomes = service.compute_for_cooperative_model(TENANT, JAN_START, JAN_END)

        pools = {o.distribution.member_type: o.distribution.dividend_pool for o in outcomes}
        assert pools == {MemberType.CUSTOMER: 1001, MemberType.DRIVER: 1000}

    def test_hybrid_bad_share_writes_nothing(
        self, service, fake_settings, fake_sources, session_factory
    ):
        fake_settings.add(
            TENANT, "0.2",
            cooperative_model=CooperativeModel.HYBRID,
            customer_share=Decimal("1.5"),
        )
        with pytest.raises(InsufficientDataError, match="customer_share"):
            service.compute_for_cooperative_model(TENANT, JAN_START, JAN_END)
        assert _count(session_factory, DistributionPeriod) == 0

    def test_hybrid_is_all_or_nothing(self, service, fake_settings, fake_sources, session_factory):
        fake_settings.add(TENANT, "0.2", cooperative_model=CooperativeModel.HYBRID)
        fake_sources[MemberType.CUSTOMER].counts[TENANT] = {"A": 1}
        service.compute_distribution(TENANT, MemberType.DRIVER, JAN_START, JAN_END)

        with pytest.raises(DuplicateDistributionError):
            service.compute_for_cooperative_model(TENANT, JAN_START, JAN_END)

        with session_factory() as s:
            customer = DividendSelector(s).find_live_distribution(
                TENANT, MemberType.CUSTOMER, PeriodRange(JAN_START, JAN_END)
            )
        assert customer is None
