"""Daily chat quota tests"""
from datetime import date

import pytest

from kitchen_ai.models.usage import UsageTracking
from kitchen_ai.services.usage_service import check_usage, get_query_count, increment_usage

DAY = date(2025, 1, 6)


@pytest.mark.high
class TestUsageService:
    def test_fresh_day(self, db_session):
        usage = check_usage(db_session, "user-1", DAY)
        assert usage == {
            "current_count": 0,
            "daily_limit": 10,
            "remaining": 10,
            "can_query": True,
            "unlimited": False,
        }

    def test_increment_creates_then_updates_row(self, db_session):
        assert increment_usage(db_session, "user-1", DAY) == 1
        assert increment_usage(db_session, "user-1", DAY) == 2

        assert db_session.query(UsageTracking).count() == 1
        assert get_query_count(db_session, "user-1", DAY) == 2

    def test_counters_are_per_day_and_user(self, db_session):
        increment_usage(db_session, "user-1", DAY)
        increment_usage(db_session, "user-1", date(2025, 1, 7))
        increment_usage(db_session, "user-2", DAY)

        assert get_query_count(db_session, "user-1", DAY) == 1
        assert get_query_count(db_session, "user-2", DAY) == 1

    def test_limit_reached(self, db_session):
        db_session.add(UsageTracking(user_id="user-1", date=DAY, query_count=10))
        db_session.commit()

        usage = check_usage(db_session, "user-1", DAY)

        assert usage["remaining"] == 0
        assert usage["can_query"] is False

    def test_paid_users_are_unlimited(self, db_session, make_subscription):
        make_subscription()
        db_session.add(UsageTracking(user_id="user-1", date=DAY, query_count=50))
        db_session.commit()

        usage = check_usage(db_session, "user-1", DAY)

        assert usage["unlimited"] is True
        assert usage["can_query"] is True
        assert usage["current_count"] == 50


@pytest.mark.medium
class TestUsageRoutes:
    def test_increment_then_check(self, client):
        first = client.post("/increment-usage")
        assert first.json() == {"success": True, "current_count": 1}

        usage = client.post("/check-usage").json()
        assert usage["current_count"] == 1
        assert usage["remaining"] == 9
