"""Subscription record tests (upsert, derived fields, status payload)"""
from datetime import datetime, timedelta, timezone

import pytest

from kitchen_ai.models.subscription import MercadoPagoDetails, StripeDetails, UserSubscription
from kitchen_ai.services.subscription_record import (
    days_until_expiration, get_subscription, subscription_payload, upsert_subscription
)


@pytest.mark.critical
class TestUpsert:
    """One row per user, keyed by user_id"""

    def test_creates_free_row_then_updates_it(self, db_session):
        record = upsert_subscription(db_session, "user-1", plan="weekly", status="pending")
        db_session.commit()
        again = upsert_subscription(db_session, "user-1", status="active")
        db_session.commit()

        assert again.id == record.id
        assert db_session.query(UserSubscription).count() == 1
        assert get_subscription(db_session, "user-1").status == "active"

    def test_switching_gateway_clears_previous_identifiers(self, db_session):
        upsert_subscription(
            db_session, "user-1",
            payment_gateway="stripe",
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
        )
        db_session.commit()

        record = upsert_subscription(
            db_session, "user-1",
            payment_gateway="mercadopago",
            mercadopago_preference_id="pref_1",
        )
        db_session.commit()

        assert record.payment_gateway == "mercadopago"
        assert record.stripe_customer_id is None
        assert record.stripe_subscription_id is None
        assert record.mercadopago_preference_id == "pref_1"

    def test_same_gateway_keeps_identifiers(self, db_session):
        upsert_subscription(db_session, "user-1", payment_gateway="stripe", stripe_customer_id="cus_1")
        record = upsert_subscription(db_session, "user-1", payment_gateway="stripe", status="active")
        assert record.stripe_customer_id == "cus_1"

    def test_unknown_gateway_rejected(self, db_session):
        with pytest.raises(ValueError):
            upsert_subscription(db_session, "user-1", payment_gateway="paypal")

    def test_unknown_field_rejected(self, db_session):
        with pytest.raises(AttributeError):
            upsert_subscription(db_session, "user-1", tokens=10)


@pytest.mark.critical
class TestDerivedFields:
    def test_subscribed_follows_plan_and_status(self, db_session):
        record = upsert_subscription(db_session, "user-1", plan="monthly", status="active")
        assert record.subscribed is True

        upsert_subscription(db_session, "user-1", status="past_due")
        assert record.subscribed is True

        upsert_subscription(db_session, "user-1", status="canceled")
        assert record.subscribed is False

        upsert_subscription(db_session, "user-1", plan="free", status="active")
        assert record.subscribed is False

    @pytest.mark.parametrize("fields", [{"plan": "yearly"}, {"status": "trialing"}])
    def test_unknown_plan_or_status_rejected(self, db_session, fields):
        with pytest.raises(ValueError):
            upsert_subscription(db_session, "user-1", **fields)

    def test_period_start_after_end_rejected(self, db_session):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValueError):
            upsert_subscription(
                db_session, "user-1",
                current_period_start=now,
                current_period_end=now - timedelta(days=1),
            )

    def test_gateway_details_by_owner(self, make_subscription):
        stripe_row = make_subscription(
            user_id="user-s", payment_gateway="stripe",
            stripe_customer_id="cus_9", stripe_subscription_id="sub_9", is_recurring=True,
        )
        mp_row = make_subscription(user_id="user-m", mercadopago_payment_id="pay_9")
        manual_row = make_subscription(user_id="user-x", payment_gateway="manual")

        assert stripe_row.gateway_details() == StripeDetails("cus_9", "sub_9", None)
        assert isinstance(mp_row.gateway_details(), MercadoPagoDetails)
        assert mp_row.gateway_details().payment_id == "pay_9"
        assert manual_row.gateway_details() is None

    def test_snapshot_restores_utc(self, make_subscription):
        record = make_subscription()
        snap = record.snapshot()
        assert snap.period_end.tzinfo is not None
        assert snap.plan == "weekly"


@pytest.mark.high
class TestPayload:
    def test_no_record_payload(self):
        payload = subscription_payload(None)
        assert payload["subscribed"] is False
        assert payload["plan"] == "free"
        assert payload["status"] is None

    def test_one_time_purchase_reports_days_left(self, make_subscription):
        now = datetime.now(timezone.utc)
        record = make_subscription(current_period_end=now + timedelta(days=2, hours=3))
        payload = subscription_payload(record, now=now)

        assert payload["subscribed"] is True
        assert payload["payment_gateway"] == "mercadopago"
        assert payload["days_until_expiration"] == 3

    def test_recurring_has_no_countdown(self, make_subscription):
        record = make_subscription(is_recurring=True)
        assert days_until_expiration(record) is None
