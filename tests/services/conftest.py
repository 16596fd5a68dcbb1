"""
In-memory collaborator fakes for service-layer tests.

The fakes satisfy the protocols in patronage_services.collaborators and can
be told to fail transiently a number of times or to block until released.
"""

import threading
from collections.abc import Mapping
from decimal import Decimal

import pytest

from patronage_kernel.domain.values import MemberType
from patronage_kernel.exceptions import InsufficientDataError, TransientCollaboratorError
from patronage_services.collaborators import PeriodFinancials, TenantDividendConfig


class _Flaky:
    """Failure injection shared by the fakes."""

    name = "fake"

    def __init__(self):
        self.calls = 0
        self.fail_times = 0
        self.release: threading.Event | None = None

    def _enter(self):
        self.calls += 1
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise TransientCollaboratorError(self.name, "connection reset")


class FakeLedger(_Flaky):
    name = "fake_ledger"

    def __init__(self, financials: Mapping[str, PeriodFinancials] | None = None):
        super().__init__()
        self.financials = dict(financials or {})
        # tenant_id -> event its reads block on until set
        self.hang_for: dict[str, threading.Event] = {}

    def get_period_financials(self, tenant_id, period_start, period_end):
        self._enter()
        if tenant_id in self.hang_for:
            self.hang_for[tenant_id].wait(timeout=30)
        try:
            return self.financials[tenant_id]
        except KeyError:
            raise InsufficientDataError(tenant_id, "ledger", "period not closed") from None


class FakePatronageSource(_Flaky):

    def __init__(self, member_type: MemberType, counts: Mapping[str, Mapping[str, int]] | None = None):
        super().__init__()
        self.member_type = member_type
        self.name = f"fake_{member_type.value}"
        self.counts = {tenant: dict(c) for tenant, c in (counts or {}).items()}

    def get_completed_trip_count(self, tenant_id, member_id, period_start, period_end):
        self._enter()
        return self.counts.get(tenant_id, {}).get(member_id, 0)

    def get_completed_trip_counts(self, tenant_id, period_start, period_end):
        self._enter()
        return dict(self.counts.get(tenant_id, {}))


class FakeSettings(_Flaky):
    name = "fake_settings"

    def __init__(self, configs: Mapping[str, TenantDividendConfig] | None = None):
        super().__init__()
        self.configs = dict(configs or {})

    def add(self, tenant_id, dividend_rate="0.2", **kwargs):
        self.configs[tenant_id] = TenantDividendConfig(
            tenant_id=tenant_id, dividend_rate=Decimal(dividend_rate), **kwargs
        )

    def get_dividend_rate(self, tenant_id):
        return self.get_settings(tenant_id).dividend_rate

    def get_settings(self, tenant_id):
        self._enter()
        try:
            return self.configs[tenant_id]
        except KeyError:
            raise InsufficientDataError(tenant_id, "settings", "not configured") from None

    def list_scheduled_tenants(self):
        return [c for _, c in sorted(self.configs.items()) if c.schedule_enabled]


@pytest.fixture
def fake_ledger():
    return FakeLedger()


@pytest.fixture
def fake_settings():
    return FakeSettings()


@pytest.fixture
def fake_sources():
    return {
        MemberType.CUSTOMER: FakePatronageSource(MemberType.CUSTOMER),
        MemberType.DRIVER: FakePatronageSource(MemberType.DRIVER),
    }
