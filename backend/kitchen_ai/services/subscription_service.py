"""Gateway-agnostic subscription status and cancellation"""
import logging
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from kitchen_ai.core.errors import NotFoundError
from kitchen_ai.core.security import AuthUser
from kitchen_ai.services.entitlement import can_generate_for_date
from kitchen_ai.services.mercadopago_service import (
    cancel_mercadopago_subscription, check_mercadopago_payment
)
from kitchen_ai.services.stripe_service import cancel_stripe_subscription, sync_stripe_subscription
from kitchen_ai.services.subscription_record import get_subscription, subscription_payload

logger = logging.getLogger(__name__)


def check_subscription(user: AuthUser, db: Session) -> Dict[str, Any]:
    """Pull reconciliation for the signed-in user

    Records owned by Mercado Pago are checked locally (with auto-expiry);
    everything else is refreshed from Stripe by email.
    """
    record = get_subscription(db, user.id)
    if record is not None and record.payment_gateway == "mercadopago":
        return check_mercadopago_payment(user.id, db)

    record = sync_stripe_subscription(user, db)
    return subscription_payload(record)


def cancel_subscription(user: AuthUser, db: Session) -> Dict[str, Any]:
    record = get_subscription(db, user.id)
    if record is None or record.plan == "free":
        raise NotFoundError("No se encontró una suscripción activa", code="subscription_not_found")

    logger.info(f"Canceling {record.payment_gateway} subscription for user {user.id}")
    if record.payment_gateway == "mercadopago":
        return cancel_mercadopago_subscription(record, db)
    return cancel_stripe_subscription(record, db)


def entitlement_for_date(user_id: str, target: date, db: Session, now=None) -> Dict[str, Any]:
    """Advisory check used by the UI before offering generation for a day"""
    record = get_subscription(db, user_id)
    snapshot = record.snapshot() if record is not None else None
    decision = can_generate_for_date(snapshot, target, now=now)
    body: Dict[str, Any] = {"allowed": decision.allowed, "date": target.isoformat()}
    if not decision.allowed:
        body.update(decision.to_dict())
    return body
