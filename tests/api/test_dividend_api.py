"""
Tests for the dividend HTTP API.

Covers:
- Distribution lifecycle: create (201), finalize, pay, void
- Member dividend history with its summary
- Payment PATCH: paid, cancelled, 409 on conflict
- Error envelope and status codes per error category
- Correlation id propagation
"""

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from patronage_api.app import CORRELATION_HEADER, create_app
from patronage_api.errors import status_for
from patronage_config.schema import DistributionConfig, EngineConfig, RetryConfig
from patronage_kernel.exceptions import (
    AllocationPoolMismatchError,
    DuplicateDistributionError,
    RoundingInvariantViolation,
)

TENANT = "coop-1"
BASE = f"/tenants/{TENANT}"

CONFIG = EngineConfig(
    retry=RetryConfig(max_attempts=1, initial_backoff_seconds=0, max_backoff_seconds=0),
    distribution=DistributionConfig(history_limit=12, max_history_limit=50),
)

JANUARY = {"member_type": "customer", "period_start": "2024-01-01", "period_end": "2024-01-31"}


@pytest.fixture
def client(session_factory, deterministic_clock):
    app = create_app(CONFIG, session_factory=session_factory, clock=deterministic_clock)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def seeded(data):
    data.tenant(TENANT, dividend_rate="0.2")
    data.ledger(TENANT, date(2024, 1, 20), 8000, 3000, closed_through=date(2024, 1, 31))
    data.trips(TENANT, {"A": 3, "B": 2, "C": 2})


def _create(client, body=None):
    response = client.post(f"{BASE}/dividend-distributions", json=body or JANUARY)
    assert response.status_code == 201, response.text
    return response.json()


def _dividend_ids(client, distribution_id):
    detail = client.get(f"{BASE}/dividend-distributions/{distribution_id}").json()
    return {d["member_id"]: d["dividend_id"] for d in detail["dividends"]}


class TestDistributions:

    def test_create_worked_example(self, client, seeded):
        body = _create(client)

        assert body["status"] == "computed"
        assert body["gross_surplus"] == 5000
        assert body["dividend_pool"] == 1000
        assert Decimal(body["dividend_rate"]) == Decimal("0.2")
        assert body["triggered_by"] == "api"
        assert body["notices"] == []

        detail = client.get(f"{BASE}/dividend-distributions/{body['distribution_id']}").json()
        assert [(d["member_id"], d["dividend_amount"], d["patronage_percentage"])
                for d in detail["dividends"]] == [
            ("A", 428, "42.86"), ("B", 286, "28.57"), ("C", 286, "28.57"),
        ]

    def test_duplicate_is_409(self, client, seeded):
        first = _create(client)
        response = client.post(f"{BASE}/dividend-distributions", json=JANUARY)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "DUPLICATE_DISTRIBUTION"
        assert error["existing_distribution_id"] == first["distribution_id"]

    def test_zero_patronage_notice(self, client, data):
        data.tenant(TENANT)
        data.close_books(TENANT, date(2024, 1, 31))

        body = _create(client)

        assert body["review_required"] is True
        assert [n["code"] for n in body["notices"]] == ["ZERO_PATRONAGE"]

    def test_insufficient_data_is_422(self, client, data):
        data.tenant(TENANT)
        response = client.post(f"{BASE}/dividend-distributions", json=JANUARY)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INSUFFICIENT_DATA"

    def test_inverted_period_is_422(self, client):
        body = dict(JANUARY, period_start="2024-02-01")
        response = client.post(f"{BASE}/dividend-distributions", json=body)
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

    def test_unknown_member_type_is_422(self, client):
        response = client.post(
            f"{BASE}/dividend-distributions", json=dict(JANUARY, member_type="investor")
        )
        assert response.status_code == 422

    def test_unknown_distribution_is_404(self, client):
        response = client.get(f"{BASE}/dividend-distributions/not-a-uuid")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "DISTRIBUTION_NOT_FOUND"

    def test_finalize_then_void_conflicts(self, client, seeded):
        created = _create(client)
        url = f"{BASE}/dividend-distributions/{created['distribution_id']}"

        finalized = client.post(f"{url}/finalize")
        assert finalized.status_code == 200
        assert finalized.json()["status"] == "finalized"

        response = client.post(f"{url}/void", json={"reason": "too late"})
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DISTRIBUTION_STATE_CONFLICT"

    def test_void_then_recompute(self, client, seeded):
        created = _create(client)
        url = f"{BASE}/dividend-distributions/{created['distribution_id']}"

        voided = client.post(f"{url}/void", json={"reason": "ledger corrected"})
        assert voided.json()["status"] == "voided"

        again = _create(client)
        assert again["distribution_id"] != created["distribution_id"]

    def test_void_requires_reason(self, client, seeded):
        created = _create(client)
        response = client.post(
            f"{BASE}/dividend-distributions/{created['distribution_id']}/void",
            json={"reason": ""},
        )
        assert response.status_code == 422

    def test_list_distributions(self, client, seeded):
        created = _create(client)
        listed = client.get(f"{BASE}/dividend-distributions").json()
        assert [d["distribution_id"] for d in listed] == [created["distribution_id"]]

        assert client.get(f"{BASE}/dividend-distributions?member_type=driver").json() == []

    def test_bulk_payment(self, client, seeded):
        created = _create(client)
        url = f"{BASE}/dividend-distributions/{created['distribution_id']}"

        unfinalized = client.post(f"{url}/payments", json={"payment_method": "cash"})
        assert unfinalized.status_code == 409

        client.post(f"{url}/finalize")
        paid = client.post(
            f"{url}/payments",
            json={"payment_method": "bank_transfer", "payment_date": "2024-02-05"},
        )
        assert paid.status_code == 200
        assert paid.json() == {
            "distribution_id": created["distribution_id"],
            "records_paid": 3,
        }


class TestPayments:

    @pytest.fixture
    def dividend_ids(self, client, seeded):
        created = _create(client)
        client.post(f"{BASE}/dividend-distributions/{created['distribution_id']}/finalize")
        return _dividend_ids(client, created["distribution_id"])

    def test_mark_paid(self, client, dividend_ids):
        response = client.patch(
            f"{BASE}/dividends/{dividend_ids['A']}/payment",
            json={"status": "paid", "payment_method": "reinvest", "expected_version": 1},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["payment_status"] == "paid"
        assert body["payment_method"] == "reinvest"
        assert body["payment_date"] == "2024-01-01"
        assert body["version"] == 2

    def test_second_payment_is_409(self, client, dividend_ids):
        url = f"{BASE}/dividends/{dividend_ids['A']}/payment"
        client.patch(url, json={"status": "paid", "payment_method": "cash"})

        response = client.patch(url, json={"status": "cancelled", "reason": "oops"})

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "PAYMENT_STATE_CONFLICT"
        assert error["current_status"] == "paid"

    def test_cancel(self, client, dividend_ids):
        response = client.patch(
            f"{BASE}/dividends/{dividend_ids['B']}/payment",
            json={"status": "cancelled", "reason": "member left"},
        )
        assert response.json()["cancellation_reason"] == "member left"

    @pytest.mark.parametrize(
        "body",
        [
            {"status": "paid"},
            {"status": "cancelled"},
            {"status": "pending"},
            {"status": "paid", "payment_method": "cheque"},
        ],
    )
    def test_invalid_bodies_are_422(self, client, dividend_ids, body):
        response = client.patch(f"{BASE}/dividends/{dividend_ids['A']}/payment", json=body)
        assert response.status_code == 422

    def test_unknown_dividend_is_404(self, client):
        response = client.get(f"{BASE}/dividends/00000000-0000-0000-0000-000000000000")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "DIVIDEND_NOT_FOUND"

    def test_other_tenant_cannot_see_dividend(self, client, dividend_ids):
        response = client.get(f"/tenants/coop-2/dividends/{dividend_ids['A']}")
        assert response.status_code == 404


class TestMemberHistory:

    def test_history_and_summary(self, client, seeded):
        created = _create(client)
        client.post(f"{BASE}/dividend-distributions/{created['distribution_id']}/finalize")
        ids = _dividend_ids(client, created["distribution_id"])
        client.patch(
            f"{BASE}/dividends/{ids['A']}/payment",
            json={"status": "paid", "payment_method": "cash"},
        )

        body = client.get(f"{BASE}/customers/A/dividends").json()

        assert body["member_type"] == "customer"
        assert [d["dividend_amount"] for d in body["dividends"]] == [428]
        assert body["dividends"][0]["period_start"] == "2024-01-01"
        assert body["summary"] == {
            "total_distributions": 1,
            "total_dividends": 428,
            "total_paid": 428,
            "total_pending": 0,
            "total_patronage": 3,
        }

    def test_unknown_member_is_empty(self, client):
        body = client.get(f"{BASE}/drivers/nobody/dividends").json()
        assert body["dividends"] == []
        assert body["summary"]["total_dividends"] == 0

    def test_unknown_collection_is_422(self, client):
        assert client.get(f"{BASE}/investors/A/dividends").status_code == 422

    @pytest.mark.parametrize("limit", [0, 51])
    def test_limit_bounds(self, client, limit):
        response = client.get(f"{BASE}/customers/A/dividends?limit={limit}")
        assert response.status_code == 422


def test_correlation_id_echoed(client):
    response = client.get(
        f"{BASE}/customers/A/dividends", headers={CORRELATION_HEADER: "req-42"}
    )
    assert response.headers[CORRELATION_HEADER] == "req-42"


def test_correlation_id_generated(client):
    response = client.get(f"{BASE}/customers/A/dividends")
    assert response.headers[CORRELATION_HEADER]


@pytest.mark.parametrize(
    "exc, expected",
    [
        (AllocationPoolMismatchError(999, 1000), 500),
        (RoundingInvariantViolation(dividend_pool=1000, allocated_total=999), 500),
        (DuplicateDistributionError("coop-1", "customer", "2024-01-01", "2024-01-31"), 409),
    ],
)
def test_engine_errors_map_by_category(exc, expected):
    assert status_for(exc) == expected
