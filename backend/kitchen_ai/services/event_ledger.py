"""Webhook idempotency ledger

An event is claimed by inserting its provider key; the unique constraint on
that key makes the claim atomic. The claim shares the caller's transaction, so
rolling back a failed handler also releases the claim.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kitchen_ai.models.subscription_event import SubscriptionEvent

logger = logging.getLogger(__name__)


def mercadopago_event_key(action: Optional[str], data_id: Any, date_created: Optional[str]) -> str:
    """Mercado Pago sends no event id; one is synthesized from the notification"""
    return f"{action}_{data_id}_{date_created}"


def claim_event(
    db: Session,
    event_type: str,
    event_data: Optional[Dict[str, Any]] = None,
    stripe_event_id: Optional[str] = None,
    mercadopago_event_id: Optional[str] = None,
    user_id: Optional[str] = None,
    error_message: Optional[str] = None
) -> Optional[SubscriptionEvent]:
    """Insert the ledger row; returns None when the key was already recorded"""
    if not stripe_event_id and not mercadopago_event_id:
        raise ValueError("An event key is required to claim a webhook event")

    ledger_row = SubscriptionEvent(
        user_id=user_id,
        stripe_event_id=stripe_event_id,
        mercadopago_event_id=mercadopago_event_id,
        event_type=event_type,
        event_data=event_data,
        error_message=error_message,
    )
    try:
        with db.begin_nested():
            db.add(ledger_row)
    except IntegrityError:
        logger.info(f"Event {stripe_event_id or mercadopago_event_id} already recorded")
        return None
    return ledger_row


def record_failed_event(
    db: Session,
    event_type: str,
    error_message: str,
    event_data: Optional[Dict[str, Any]] = None,
    stripe_event_id: Optional[str] = None,
    mercadopago_event_id: Optional[str] = None,
    user_id: Optional[str] = None
) -> Optional[SubscriptionEvent]:
    """Record an event whose handler failed, after its mutation was rolled back

    Commits on its own. Marks the key as seen so provider retries are skipped.
    """
    try:
        row = claim_event(
            db, event_type, event_data,
            stripe_event_id=stripe_event_id,
            mercadopago_event_id=mercadopago_event_id,
            user_id=user_id,
            error_message=error_message[:2000],
        )
        db.commit()
        return row
    except Exception as e:
        db.rollback()
        logger.error(f"Could not record failed event {stripe_event_id or mercadopago_event_id}: {e}")
        return None
