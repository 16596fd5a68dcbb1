"""
Pytest fixtures for the patronage dividend engine test suite.

Provides:
- One database engine and schema per test session
- Per-test data cleanup
- Builders for tenants, ledgers and trips
- Structured log capture

Environment Variables:
- DATABASE_URL: run against this database (e.g. a PostgreSQL URL).
  If not set, a SQLite file in a temporary directory is used.

Services open their own sessions (collaborators run on worker threads), so
tests commit real data and rows are deleted after each test instead of
rolling back an outer transaction.
"""

import json
import logging
import os
from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from decimal import Decimal
from io import StringIO

import pytest

from patronage_kernel.db.base import Base
from patronage_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from patronage_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from patronage_kernel.domain.clock import DeterministicClock
from patronage_kernel.domain.values import MemberType
from patronage_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from patronage_kernel.models import (
    LedgerClose,
    ServiceCostEntry,
    TenantDividendSettings,
    Trip,
    TripStatus,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture patronage_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "distribution_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("patronage_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Session-scoped DB infrastructure (engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def database_url(tmp_path_factory) -> str:
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{tmp_path_factory.mktemp('db') / 'patronage_test.db'}"


@pytest.fixture(scope="session")
def db_engine(database_url):
    """Single engine for the entire test session.

    Pool is large enough for concurrency tests.
    """
    eng = init_engine_from_url(
        database_url,
        echo=False,
        pool_size=30,
        max_overflow=20,
        pool_timeout=10,
        sqlite_busy_timeout_ms=30000,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _delete_all_rows(engine) -> None:
    """Core DELETEs (no ORM events), children before parents."""
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def session_factory(db_tables, db_engine):
    """The real session factory; every row written by the test is removed."""
    yield get_session_factory()
    _delete_all_rows(db_engine)


@pytest.fixture
def session(session_factory):
    """A caller-owned session.

    Under SQLite every transaction holds the write lock, so commit or roll
    back before calling code that opens its own sessions.
    """
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def deterministic_clock():
    """Clock fixed at 2024-01-01 12:00 UTC."""
    return DeterministicClock()


# =============================================================================
# Data builders
# =============================================================================


class DataBuilder:
    """Writes committed reference data: tenant settings, ledger, trips."""

    def __init__(self, session_factory):
        self._factory = session_factory
        self._trip_seq = 0

    def tenant(
        self,
        tenant_id: str,
        dividend_rate: str = "0.2",
        cooperative_model: str = "passenger",
        customer_share: str = "0.5",
        schedule_enabled: bool = False,
        schedule_frequency: str = "monthly",
        auto_finalize: bool = False,
        currency: str = "GBP",
    ) -> None:
        with session_scope(self._factory) as s:
            s.add(
                TenantDividendSettings(
                    tenant_id=tenant_id,
                    dividend_rate=Decimal(dividend_rate),
                    cooperative_model=cooperative_model,
                    customer_share=Decimal(customer_share),
                    schedule_enabled=schedule_enabled,
                    schedule_frequency=schedule_frequency,
                    auto_finalize=auto_finalize,
                    currency=currency,
                )
            )

    def ledger(
        self,
        tenant_id: str,
        service_date: date,
        revenue: int,
        operating_costs: int,
        currency: str = "GBP",
        closed_through: date | None = None,
    ) -> None:
        """Book one ledger entry; close the books through ``closed_through``."""
        with session_scope(self._factory) as s:
            s.add(
                ServiceCostEntry(
                    tenant_id=tenant_id,
                    service_date=service_date,
                    revenue=revenue,
                    operating_costs=operating_costs,
                    currency=currency,
                )
            )
        if closed_through is not None:
            self.close_books(tenant_id, closed_through)

    def close_books(self, tenant_id: str, closed_through: date) -> None:
        with session_scope(self._factory) as s:
            close = s.query(LedgerClose).filter_by(tenant_id=tenant_id).one_or_none()
            if close is None:
                s.add(LedgerClose(tenant_id=tenant_id, closed_through=closed_through))
            else:
                close.closed_through = closed_through

    def trip(
        self,
        tenant_id: str,
        customer_id: str,
        driver_id: str | None,
        completed_at: datetime | None,
        status: TripStatus = TripStatus.COMPLETED,
    ) -> None:
        with session_scope(self._factory) as s:
            s.add(
                Trip(
                    tenant_id=tenant_id,
                    customer_id=customer_id,
                    driver_id=driver_id,
                    status=status.value,
                    completed_at=completed_at,
                )
            )

    def trips(
        self,
        tenant_id: str,
        counts: Mapping[str, int],
        member_type: MemberType = MemberType.CUSTOMER,
        on: date = date(2024, 1, 15),
    ) -> None:
        """Completed trips for each member; the other side is a filler id."""
        with session_scope(self._factory) as s:
            for member_id, count in counts.items():
                for _ in range(count):
                    self._trip_seq += 1
                    filler = f"filler-{self._trip_seq}"
                    if member_type is MemberType.CUSTOMER:
                        customer_id, driver_id = member_id, f"drv-{filler}"
                    else:
                        customer_id, driver_id = f"cust-{filler}", member_id
                    s.add(
                        Trip(
                            tenant_id=tenant_id,
                            customer_id=customer_id,
                            driver_id=driver_id,
                            status=TripStatus.COMPLETED.value,
                            completed_at=datetime.combine(on, time(12, 0), tzinfo=timezone.utc),
                        )
                    )


@pytest.fixture
def data(session_factory) -> DataBuilder:
    return DataBuilder(session_factory)

