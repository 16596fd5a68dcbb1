"""
Tests for the SQL-backed collaborators.

Covers:
- Trip window is [start 00:00 UTC, end + 1 day 00:00 UTC)
- Only completed trips count, per customer or per driver
- Ledger figures require closed books and a single currency
- Tenant settings lookup and scheduled-tenant listing
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from patronage_kernel.domain.values import CooperativeModel, ScheduleFrequency
from patronage_kernel.exceptions import InsufficientDataError, TransientCollaboratorError
from patronage_kernel.models import TripStatus
from patronage_services.sql_sources import (
    SqlServiceCostLedger,
    SqlTenantSettingsSource,
    TripsDrivenSource,
    TripsTakenSource,
)

TENANT = "coop-1"
JAN_START, JAN_END = date(2024, 1, 1), date(2024, 1, 31)


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestTripSources:

    def test_window_bounds(self, data, session_factory):
        data.trip(TENANT, "cust-1", "drv-1", _utc(2023, 12, 31, 23, 59, 59))
        data.trip(TENANT, "cust-1", "drv-1", _utc(2024, 1, 1, 0, 0, 0))
        data.trip(TENANT, "cust-1", "drv-1", _utc(2024, 1, 31, 23, 59, 59))
        data.trip(TENANT, "cust-1", "drv-1", _utc(2024, 2, 1, 0, 0, 0))

        source = TripsTakenSource(session_factory)
        assert source.get_completed_trip_counts(TENANT, JAN_START, JAN_END) == {"cust-1": 2}

    def test_offset_timestamps_counted_by_utc_instant(self, data, session_factory):
        plus_one = timezone(timedelta(hours=1))
        # 2024-01-31 23:30 UTC
        data.trip(TENANT, "cust-1", "drv-1", datetime(2024, 2, 1, 0, 30, tzinfo=plus_one))
        # 2024-02-01 00:30 UTC
        data.trip(TENANT, "cust-2", "drv-1", datetime(2024, 1, 31, 19, 30, tzinfo=timezone(timedelta(hours=-5))))

        source = TripsTakenSource(session_factory)
        assert source.get_completed_trip_counts(TENANT, JAN_START, JAN_END) == {"cust-1": 1}
        assert source.get_completed_trip_counts(TENANT, date(2024, 2, 1), date(2024, 2, 29)) == {
            "cust-2": 1
        }

    def test_only_completed_trips_count(self, data, session_factory):
        data.trip(TENANT, "cust-1", "drv-1", _utc(2024, 1, 10, 9))
        data.trip(TENANT, "cust-1", "drv-1", None, status=TripStatus.CANCELLED)
        data.trip(TENANT, "cust-2", None, None, status=TripStatus.SCHEDULED)

        source = TripsTakenSource(session_factory)
        assert source.get_completed_trip_counts(TENANT, JAN_START, JAN_END) == {"cust-1": 1}

    def test_customers_and_drivers_counted_separately(self, data, session_factory):
        data.trip(TENANT, "cust-1", "drv-1", _utc(2024, 1, 10, 9))
        data.trip(TENANT, "cust-2", "drv-1", _utc(2024, 1, 11, 9))
        data.trip(TENANT, "cust-2", "drv-2", _utc(2024, 1, 12, 9))

        taken = TripsTakenSource(session_factory).get_completed_trip_counts(
            TENANT, JAN_START, JAN_END
        )
        driven = TripsDrivenSource(session_factory).get_completed_trip_counts(
            TENANT, JAN_START, JAN_END
        )
        assert taken == {"cust-1": 1, "cust-2": 2}
        assert driven == {"drv-1": 2, "drv-2": 1}

    def test_single_member_count(self, data, session_factory):
        data.trips(TENANT, {"cust-1": 3, "cust-2": 1})
        source = TripsTakenSource(session_factory)
        assert source.get_completed_trip_count(TENANT, "cust-1", JAN_START, JAN_END) == 3
        assert source.get_completed_trip_count(TENANT, "ghost", JAN_START, JAN_END) == 0

    def test_other_tenants_trips_ignored(self, data, session_factory):
        data.trips("coop-2", {"cust-1": 4})
        source = TripsTakenSource(session_factory)
        assert source.get_completed_trip_counts(TENANT, JAN_START, JAN_END) == {}


class TestServiceCostLedger:

    def test_sums_entries_in_period(self, data, session_factory):
        data.ledger(TENANT, date(2024, 1, 5), 5000, 2000)
        data.ledger(TENANT, date(2024, 1, 31), 3000, 1000)
        data.ledger(TENANT, date(2024, 2, 1), 9999, 1, closed_through=date(2024, 2, 29))

        financials = SqlServiceCostLedger(session_factory).get_period_financials(
            TENANT, JAN_START, JAN_END
        )
        assert financials.revenue == 8000
        assert financials.operating_costs == 3000
        assert financials.currency == "GBP"

    def test_closed_period_without_entries_is_zero(self, data, session_factory):
        data.close_books(TENANT, date(2024, 1, 31))
        financials = SqlServiceCostLedger(session_factory, default_currency="EUR").get_period_financials(
            TENANT, JAN_START, JAN_END
        )
        assert (financials.revenue, financials.operating_costs) == (0, 0)
        assert financials.currency == "EUR"

    def test_books_never_closed(self, data, session_factory):
        data.ledger(TENANT, date(2024, 1, 5), 5000, 2000)
        with pytest.raises(InsufficientDataError) as exc_info:
            SqlServiceCostLedger(session_factory).get_period_financials(
                TENANT, JAN_START, JAN_END
            )
        assert exc_info.value.source == "ledger"

    def test_books_not_closed_through_period_end(self, data, session_factory):
        data.ledger(TENANT, date(2024, 1, 5), 5000, 2000, closed_through=date(2024, 1, 30))
        with pytest.raises(InsufficientDataError, match="closed through 2024-01-30"):
            SqlServiceCostLedger(session_factory).get_period_financials(
                TENANT, JAN_START, JAN_END
            )

    def test_mixed_currencies_rejected(self, data, session_factory):
        data.ledger(TENANT, date(2024, 1, 5), 5000, 2000)
        data.ledger(TENANT, date(2024, 1, 6), 100, 0, currency="EUR",
                    closed_through=date(2024, 1, 31))
        with pytest.raises(InsufficientDataError, match="more than one currency"):
            SqlServiceCostLedger(session_factory).get_period_financials(
                TENANT, JAN_START, JAN_END
            )


class TestTenantSettingsSource:

    def test_get_settings(self, data, session_factory):
        data.tenant(TENANT, dividend_rate="0.15", cooperative_model="hybrid",
                    customer_share="0.6", schedule_frequency="quarterly")

        config = SqlTenantSettingsSource(session_factory).get_settings(TENANT)

        assert config.dividend_rate == Decimal("0.15")
        assert config.cooperative_model is CooperativeModel.HYBRID
        assert config.customer_share == Decimal("0.6")
        assert config.schedule_frequency is ScheduleFrequency.QUARTERLY

    def test_get_dividend_rate(self, data, session_factory):
        data.tenant(TENANT, dividend_rate="0.2")
        assert SqlTenantSettingsSource(session_factory).get_dividend_rate(TENANT) == Decimal("0.2")

    def test_missing_settings(self, session_factory):
        with pytest.raises(InsufficientDataError) as exc_info:
            SqlTenantSettingsSource(session_factory).get_settings("unknown")
        assert exc_info.value.source == "settings"

    def test_list_scheduled_tenants(self, data, session_factory):
        data.tenant("coop-b", schedule_enabled=True)
        data.tenant("coop-a", schedule_enabled=True)
        data.tenant("coop-c", schedule_enabled=False)

        tenants = SqlTenantSettingsSource(session_factory).list_scheduled_tenants()
        assert [t.tenant_id for t in tenants] == ["coop-a", "coop-b"]


class TestConnectivityErrors:

    def _failing_factory(self, exc):
        session = MagicMock()
        session.__enter__.return_value = session
        session.__exit__.return_value = False
        session.execute.side_effect = exc
        return lambda: session

    def test_operational_error_is_transient(self):
        exc = OperationalError("SELECT 1", {}, Exception("server closed the connection"))
        source = TripsTakenSource(self._failing_factory(exc))

        with pytest.raises(TransientCollaboratorError) as exc_info:
            source.get_completed_trip_counts(TENANT, JAN_START, JAN_END)
        assert exc_info.value.collaborator == "trips_customer"

    def test_other_database_errors_propagate(self):
        exc = IntegrityError("SELECT 1", {}, Exception("constraint"))
        source = SqlTenantSettingsSource(self._failing_factory(exc))

        with pytest.raises(IntegrityError):
            source.get_settings(TENANT)
