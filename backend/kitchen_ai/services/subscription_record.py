"""Reads and upserts of the single per-user subscription row"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kitchen_ai.models.subscription import (
    GATEWAYS, MERCADOPAGO_FIELDS, STRIPE_FIELDS, UserSubscription
)
from kitchen_ai.utils.dates import ensure_utc, isoformat, utcnow

logger = logging.getLogger(__name__)

_GATEWAY_FIELDS = {"stripe": STRIPE_FIELDS, "mercadopago": MERCADOPAGO_FIELDS}


def get_subscription(db: Session, user_id: str) -> Optional[UserSubscription]:
    return db.query(UserSubscription).filter(UserSubscription.user_id == user_id).first()


def find_by_stripe_customer(db: Session, customer_id: str) -> Optional[UserSubscription]:
    if not customer_id:
        return None
    return db.query(UserSubscription).filter(UserSubscription.stripe_customer_id == customer_id).first()


def _get_or_create(db: Session, user_id: str) -> UserSubscription:
    record = get_subscription(db, user_id)
    if record is not None:
        return record

    record = UserSubscription(user_id=user_id, plan="free", status="active", is_recurring=False)
    try:
        with db.begin_nested():
            db.add(record)
    except IntegrityError:
        # Another request inserted the row first
        record = get_subscription(db, user_id)
        if record is None:
            raise
    return record


def upsert_subscription(
    db: Session,
    user_id: str,
    payment_gateway: Optional[str] = None,
    **fields: Any
) -> UserSubscription:
    """Create or update the user's row keyed by ``user_id``

    Switching ``payment_gateway`` clears the identifier group of the previous
    gateway. The caller owns the commit.
    """
    if payment_gateway is not None and payment_gateway not in GATEWAYS:
        raise ValueError(f"Unknown payment gateway: {payment_gateway}")

    record = _get_or_create(db, user_id)

    if payment_gateway is not None and record.payment_gateway != payment_gateway:
        for gateway, names in _GATEWAY_FIELDS.items():
            if gateway != payment_gateway:
                for name in names:
                    if name not in fields:
                        setattr(record, name, None)
        if record.payment_gateway:
            logger.info(f"User {user_id} switching gateway {record.payment_gateway} -> {payment_gateway}")
        record.payment_gateway = payment_gateway

    for name, value in fields.items():
        if not hasattr(UserSubscription, name):
            raise AttributeError(f"UserSubscription has no field '{name}'")
        setattr(record, name, value)

    db.flush()
    return record


def days_until_expiration(record: UserSubscription, now: Optional[datetime] = None) -> Optional[int]:
    """Whole days (rounded up) until a one-time purchase runs out"""
    if record.is_recurring or not record.current_period_end:
        return None
    now = now or utcnow()
    remaining = ensure_utc(record.current_period_end) - now
    return math.ceil(remaining.total_seconds() / 86400)


def subscription_payload(record: Optional[UserSubscription], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Response body shared by the subscription status endpoints"""
    if record is None:
        return {
            "subscribed": False,
            "plan": "free",
            "status": None,
            "current_period_start": None,
            "current_period_end": None,
            "cancel_at_period_end": False,
            "payment_gateway": None,
            "is_recurring": False,
            "days_until_expiration": None,
        }
    return {
        "subscribed": record.is_entitled,
        "plan": record.plan,
        "status": record.status,
        "current_period_start": isoformat(record.current_period_start),
        "current_period_end": isoformat(record.current_period_end),
        "cancel_at_period_end": bool(record.cancel_at_period_end),
        "payment_gateway": record.payment_gateway,
        "is_recurring": bool(record.is_recurring),
        "days_until_expiration": days_until_expiration(record, now),
    }
