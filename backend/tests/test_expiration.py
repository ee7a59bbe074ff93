"""Scheduled expiration and expiry-warning job tests"""
from datetime import datetime, timedelta, timezone

import pytest

from kitchen_ai.models.notification import UserNotification
from kitchen_ai.models.subscription import UserSubscription
from kitchen_ai.services.expiration_service import (
    expire_if_lapsed, expire_subscriptions, expiry_message, notify_expiring_subscriptions
)

NOW = datetime(2025, 1, 20, 12, 0, tzinfo=timezone.utc)
CRON_HEADERS = {"Authorization": "Bearer cron-secret"}


def ending_at(end, **fields):
    values = {"current_period_start": end - timedelta(days=7), "current_period_end": end}
    values.update(fields)
    return values


@pytest.mark.critical
class TestExpireSubscriptions:
    """Lapsed Mercado Pago rows are canceled and the user is told"""

    def test_expires_only_lapsed_mercadopago_rows(self, db_session, make_subscription):
        make_subscription(user_id="lapsed", **ending_at(NOW - timedelta(hours=1)))
        make_subscription(user_id="current", **ending_at(NOW + timedelta(days=3)))
        make_subscription(
            user_id="stripe", payment_gateway="stripe", is_recurring=True,
            **ending_at(NOW - timedelta(days=1))
        )
        make_subscription(user_id="already", status="canceled", plan="free", **ending_at(NOW - timedelta(days=2)))

        result = expire_subscriptions(db_session, now=NOW)

        assert result == {"expired_count": 1, "total_found": 1}
        lapsed = db_session.query(UserSubscription).filter_by(user_id="lapsed").one()
        assert lapsed.status == "canceled"
        assert lapsed.plan == "free"
        assert lapsed.subscribed is False
        assert db_session.query(UserSubscription).filter_by(user_id="current").one().status == "active"
        assert db_session.query(UserSubscription).filter_by(user_id="stripe").one().status == "active"

        notification = db_session.query(UserNotification).filter_by(user_id="lapsed").one()
        assert notification.title == "Suscripción expirada"
        assert notification.message.startswith("Tu plan semanal ha expirado.")
        assert notification.severity == "warning"

    def test_recurring_mercadopago_rows_are_also_expired(self, db_session, make_subscription):
        make_subscription(is_recurring=True, plan="monthly", **ending_at(NOW - timedelta(minutes=5)))

        result = expire_subscriptions(db_session, now=NOW)

        assert result["expired_count"] == 1
        assert "mensual" in db_session.query(UserNotification).one().message

    def test_nothing_to_expire(self, db_session):
        result = expire_subscriptions(db_session, now=NOW)
        assert result["expired_count"] == 0
        assert result["message"] == "No expired subscriptions"

    def test_second_run_is_idempotent(self, db_session, make_subscription):
        make_subscription(**ending_at(NOW - timedelta(hours=1)))
        expire_subscriptions(db_session, now=NOW)

        result = expire_subscriptions(db_session, now=NOW)

        assert result["expired_count"] == 0
        assert db_session.query(UserNotification).count() == 1


@pytest.mark.high
class TestExpireIfLapsed:
    def test_one_time_purchase_expired(self, db_session, make_subscription):
        record = make_subscription(**ending_at(NOW - timedelta(seconds=1)))
        assert expire_if_lapsed(record, db_session, now=NOW) is True
        assert record.status == "canceled"

    def test_recurring_left_alone(self, db_session, make_subscription):
        record = make_subscription(is_recurring=True, **ending_at(NOW - timedelta(days=1)))
        assert expire_if_lapsed(record, db_session, now=NOW) is False
        assert record.status == "active"

    def test_not_yet_ended(self, db_session, make_subscription):
        record = make_subscription(**ending_at(NOW + timedelta(seconds=1)))
        assert expire_if_lapsed(record, db_session, now=NOW) is False


@pytest.mark.critical
class TestNotifyExpiring:
    """Users are warned once when their purchase ends in 24 to 48 hours"""

    def test_notifies_rows_in_window_once(self, db_session, make_subscription):
        make_subscription(user_id="soon", **ending_at(NOW + timedelta(hours=30)))
        make_subscription(user_id="later", **ending_at(NOW + timedelta(days=5)))
        make_subscription(user_id="today", **ending_at(NOW + timedelta(hours=10)))

        result = notify_expiring_subscriptions(db_session, now=NOW)

        assert result == {"notified_count": 1, "total_found": 1}
        soon = db_session.query(UserSubscription).filter_by(user_id="soon").one()
        assert soon.expiration_notified is True
        notification = db_session.query(UserNotification).one()
        assert notification.user_id == "soon"
        assert notification.title == "Tu suscripción está por vencer"
        assert "vence en 2 días" in notification.message

        again = notify_expiring_subscriptions(db_session, now=NOW)
        assert again["notified_count"] == 0
        assert db_session.query(UserNotification).count() == 1

    def test_window_edges_inclusive(self, db_session, make_subscription):
        make_subscription(user_id="edge-start", **ending_at(NOW + timedelta(days=1)))
        make_subscription(user_id="edge-end", **ending_at(NOW + timedelta(days=2)))

        result = notify_expiring_subscriptions(db_session, now=NOW)

        assert result["notified_count"] == 2

    def test_message_wording(self):
        assert "vence mañana" in expiry_message("weekly", 1)
        assert expiry_message("monthly", 2).startswith("Tu plan mensual vence en 2 días")


@pytest.mark.high
class TestCronRoutes:
    """Scheduled job endpoints require the shared secret"""

    def test_missing_secret_rejected(self, client):
        response = client.post("/expire-subscriptions")
        assert response.status_code == 401

    def test_wrong_secret_rejected(self, client):
        response = client.post("/notify-expiring-subscriptions", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_expire_route(self, client, make_subscription):
        now = datetime.now(timezone.utc)
        make_subscription(**ending_at(now - timedelta(hours=2)))

        response = client.post("/expire-subscriptions", headers=CRON_HEADERS)

        assert response.status_code == 200
        assert response.json()["expired_count"] == 1

    def test_notify_route(self, client, make_subscription):
        now = datetime.now(timezone.utc)
        make_subscription(**ending_at(now + timedelta(hours=36)))

        response = client.post("/notify-expiring-subscriptions", headers=CRON_HEADERS)

        assert response.status_code == 200
        assert response.json()["notified_count"] == 1
