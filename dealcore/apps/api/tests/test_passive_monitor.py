"""Passive monitor: threshold counters raise review tasks, never touch purchases."""

from datetime import datetime, timedelta, timezone

import pytest

from dealcore_api.config.env import MonitorThresholds
from dealcore_api.db.models import PaymentFailure, Purchase, ReviewTask
from dealcore_api.monitoring import passive_monitor
from dealcore_api.monitoring.passive_monitor import (
    DEAL_PURCHASE_VELOCITY,
    FAILED_PAYMENT_VELOCITY,
    USER_PURCHASE_VELOCITY,
    check_failed_payment_velocity,
    check_purchase_velocity,
    observe_payment_failure,
    observe_purchase,
)

LOW = MonitorThresholds(max_user_purchases_per_hour=3, max_deal_purchases_per_minute=2, max_failed_payments_per_hour=2)


def _purchases(db_session, tenant_id: str, user_id: str, deal_id: str, count: int, at: datetime) -> None:
    for i in range(count):
        db_session.add(
            Purchase(
                tenant_id=tenant_id,
                user_id=user_id,
                deal_id=deal_id,
                voucher_id=f"v-{user_id}-{deal_id}-{at.timestamp():.0f}-{i}",
                payment_intent_id=f"pi-{user_id}-{deal_id}-{at.timestamp():.0f}-{i}",
                payment_provider="stripe",
                amount_paid_cents=500,
                created_at=at,
            )
        )
    db_session.commit()


def _failures(db_session, tenant_id: str, user_id: str, count: int, at: datetime) -> None:
    for _ in range(count):
        db_session.add(
            PaymentFailure(tenant_id=tenant_id, user_id=user_id, payment_provider="stripe", created_at=at)
        )
    db_session.commit()


@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


class TestPurchaseVelocity:
    def test_below_thresholds_raises_nothing(self, db_session, county, now):
        _purchases(db_session, county.id, "buyer-1", "deal-1", 1, now)
        assert check_purchase_velocity(db_session, county.id, "buyer-1", "deal-1", LOW, now) == []

    def test_user_velocity_at_threshold(self, db_session, county, now):
        # spread across deals and minutes so only the hourly user counter trips
        for i in range(3):
            _purchases(db_session, county.id, "buyer-1", f"deal-{i}", 1, now - timedelta(minutes=10 * i))

        tasks = check_purchase_velocity(db_session, county.id, "buyer-1", "deal-0", LOW, now)

        assert [t.task_type for t in tasks] == [USER_PURCHASE_VELOCITY]
        assert tasks[0].subject_type == "user"
        assert tasks[0].subject_id == "buyer-1"
        assert tasks[0].observed == 3
        assert tasks[0].threshold == 3
        assert tasks[0].window_seconds == 3600

    def test_deal_velocity_counts_last_minute_only(self, db_session, county, now):
        _purchases(db_session, county.id, "buyer-1", "deal-1", 1, now - timedelta(minutes=5))
        _purchases(db_session, county.id, "buyer-2", "deal-1", 1, now)
        assert check_purchase_velocity(db_session, county.id, "buyer-2", "deal-1", LOW, now) == []

        _purchases(db_session, county.id, "buyer-3", "deal-1", 1, now)
        tasks = check_purchase_velocity(db_session, county.id, "buyer-3", "deal-1", LOW, now)
        assert [t.task_type for t in tasks] == [DEAL_PURCHASE_VELOCITY]
        assert tasks[0].subject_id == "deal-1"

    def test_old_purchases_are_ignored(self, db_session, county, now):
        _purchases(db_session, county.id, "buyer-1", "deal-1", 5, now - timedelta(hours=2))
        assert check_purchase_velocity(db_session, county.id, "buyer-1", "deal-1", LOW, now) == []

    def test_open_task_suppresses_duplicate(self, db_session, county, now):
        _purchases(db_session, county.id, "buyer-1", "deal-1", 3, now - timedelta(minutes=30))

        first = check_purchase_velocity(db_session, county.id, "buyer-1", "deal-1", LOW, now)
        second = check_purchase_velocity(db_session, county.id, "buyer-1", "deal-1", LOW, now + timedelta(minutes=1))

        assert len(first) == 1
        assert second == []
        assert db_session.query(ReviewTask).count() == 1

    def test_resolved_task_does_not_suppress(self, db_session, county, now):
        _purchases(db_session, county.id, "buyer-1", "deal-1", 3, now - timedelta(minutes=30))
        task = check_purchase_velocity(db_session, county.id, "buyer-1", "deal-1", LOW, now)[0]
        task.resolved = True
        db_session.commit()

        again = check_purchase_velocity(db_session, county.id, "buyer-1", "deal-1", LOW, now + timedelta(minutes=1))
        assert len(again) == 1

    def test_counters_are_per_county(self, db_session, county, other_county, now):
        _purchases(db_session, other_county.id, "buyer-1", "deal-1", 5, now)
        assert check_purchase_velocity(db_session, county.id, "buyer-1", "deal-1", LOW, now) == []


class TestFailedPaymentVelocity:
    def test_threshold(self, db_session, county, now):
        _failures(db_session, county.id, "buyer-1", 1, now)
        assert check_failed_payment_velocity(db_session, county.id, "buyer-1", LOW, now) == []

        _failures(db_session, county.id, "buyer-1", 1, now)
        tasks = check_failed_payment_velocity(db_session, county.id, "buyer-1", LOW, now)
        assert [t.task_type for t in tasks] == [FAILED_PAYMENT_VELOCITY]
        assert tasks[0].observed == 2


class TestObserve:
    def test_observe_purchase_uses_own_session(self, session_factory, db_session, county, now):
        _purchases(db_session, county.id, "buyer-1", "deal-1", 3, now)
        assert observe_purchase(session_factory, county.id, "buyer-1", "deal-1", thresholds=LOW, now=now) == 2

    def test_observe_failure_swallows_errors(self, session_factory, county, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("db went away")

        monkeypatch.setattr(passive_monitor, "check_failed_payment_velocity", broken)
        assert observe_payment_failure(session_factory, county.id, "buyer-1", thresholds=LOW) == 0

    def test_observe_purchase_swallows_session_errors(self, county):
        def no_session():
            raise RuntimeError("pool exhausted")

        assert observe_purchase(no_session, county.id, "buyer-1", "deal-1", thresholds=LOW) == 0

    def test_thresholds_from_environment(self, monkeypatch):
        monkeypatch.setenv("DEALCORE_MONITOR_MAX_USER_PURCHASES_PER_HOUR", "4")
        thresholds = passive_monitor.get_monitor_thresholds()
        assert thresholds.max_user_purchases_per_hour == 4
        assert thresholds.max_deal_purchases_per_minute == 50
        assert thresholds.max_failed_payments_per_hour == 5


class TestMonitorOverHttp:
    def _buy(self, test_client, deal_id: str, intent: str, headers: dict):
        return test_client.post(
            "/v1/purchases",
            json={"deal_id": deal_id, "payment_intent_id": intent, "payment_provider": "stripe", "amount_paid": "5.00"},
            headers=headers,
        )

    def test_purchase_velocity_raises_task_without_blocking(
        self, test_client, business, make_deal, buyer_headers, admin_headers, monkeypatch
    ):
        monkeypatch.setenv("DEALCORE_MONITOR_MAX_USER_PURCHASES_PER_HOUR", "2")
        deal = make_deal(business, active=True)

        assert self._buy(test_client, deal.id, "pi_1", buyer_headers).status_code == 201
        assert self._buy(test_client, deal.id, "pi_2", buyer_headers).status_code == 201
        # the monitor only observes; the third purchase still succeeds
        assert self._buy(test_client, deal.id, "pi_3", buyer_headers).status_code == 201

        resp = test_client.get("/v1/admin/review-tasks", params={"resolved": "false"}, headers=admin_headers)
        assert resp.status_code == 200
        tasks = resp.json()["tasks"]
        assert [t["task_type"] for t in tasks] == [USER_PURCHASE_VELOCITY]
        assert tasks[0]["subject_id"] == "buyer-1"

        resolved = test_client.post(
            f"/v1/admin/review-tasks/{tasks[0]['task_id']}/resolve",
            json={"notes": "regular at the bakery"},
            headers=admin_headers,
        )
        assert resolved.status_code == 200
        assert resolved.json()["resolved"] is True
        assert resolved.json()["resolved_by"] == "admin-1"

        remaining = test_client.get("/v1/admin/review-tasks", params={"resolved": "false"}, headers=admin_headers)
        assert remaining.json()["tasks"] == []

    def test_payment_failures_raise_task(self, test_client, buyer_headers, admin_headers, monkeypatch):
        monkeypatch.setenv("DEALCORE_MONITOR_MAX_FAILED_PAYMENTS_PER_HOUR", "2")
        for _ in range(2):
            resp = test_client.post(
                "/v1/purchases/payment-failures",
                json={"payment_provider": "stripe", "reason": "card_declined"},
                headers=buyer_headers,
            )
            assert resp.status_code == 201
            assert resp.json()["recorded"] is True

        tasks = test_client.get("/v1/admin/review-tasks", headers=admin_headers).json()["tasks"]
        assert [t["task_type"] for t in tasks] == [FAILED_PAYMENT_VELOCITY]

    def test_unknown_review_task(self, test_client, admin_headers):
        resp = test_client.post("/v1/admin/review-tasks/nope/resolve", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["code"] == "REVIEW_TASK_NOT_FOUND"
