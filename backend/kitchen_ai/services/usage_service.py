"""Daily chat quota for free users"""
import logging
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kitchen_ai.core.config import settings
from kitchen_ai.models.usage import UsageTracking
from kitchen_ai.services.subscription_record import get_subscription
from kitchen_ai.utils.dates import utcnow

logger = logging.getLogger(__name__)


def _today() -> date:
    return utcnow().date()


def get_query_count(db: Session, user_id: str, day: Optional[date] = None) -> int:
    day = day or _today()
    row = db.query(UsageTracking).filter(UsageTracking.user_id == user_id, UsageTracking.date == day).first()
    return row.query_count if row else 0


def check_usage(db: Session, user_id: str, day: Optional[date] = None) -> Dict[str, Any]:
    """Remaining free queries for the UTC day; paid users are not limited"""
    current = get_query_count(db, user_id, day)
    record = get_subscription(db, user_id)
    if record is not None and record.is_entitled:
        return {
            "current_count": current,
            "daily_limit": None,
            "remaining": None,
            "can_query": True,
            "unlimited": True,
        }

    limit = settings.FREE_DAILY_LIMIT
    remaining = max(0, limit - current)
    logger.info(f"Usage for user {user_id}: count={current} remaining={remaining}")
    return {
        "current_count": current,
        "daily_limit": limit,
        "remaining": remaining,
        "can_query": remaining > 0,
        "unlimited": False,
    }


def increment_usage(db: Session, user_id: str, day: Optional[date] = None) -> int:
    """Atomically add one query to today's counter and return the new count"""
    day = day or _today()
    updated = db.query(UsageTracking).filter(
        UsageTracking.user_id == user_id,
        UsageTracking.date == day
    ).update({UsageTracking.query_count: UsageTracking.query_count + 1}, synchronize_session=False)

    if not updated:
        try:
            with db.begin_nested():
                db.add(UsageTracking(user_id=user_id, date=day, query_count=1))
        except IntegrityError:
            # First query of the day raced with another request
            db.query(UsageTracking).filter(
                UsageTracking.user_id == user_id,
                UsageTracking.date == day
            ).update({UsageTracking.query_count: UsageTracking.query_count + 1}, synchronize_session=False)

    db.commit()
    count = get_query_count(db, user_id, day)
    logger.info(f"Incremented usage for user {user_id}: {count}")
    return count
