"""Scheduled reconciliation of one-time Mercado Pago purchases

Preference purchases never renew, so nothing upstream tells us when they run
out. These jobs expire lapsed rows and warn users shortly before expiry.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from kitchen_ai.core.metrics import (
    cron_runs_counter, expiry_notifications_counter, subscriptions_expired_counter
)
from kitchen_ai.models.subscription import UserSubscription
from kitchen_ai.services.notification_service import create_notification
from kitchen_ai.utils.dates import ensure_utc, utcnow

cron_logger = logging.getLogger("cron")

PLAN_LABELS = {"weekly": "semanal", "monthly": "mensual"}


def _plan_label(plan: str) -> str:
    return PLAN_LABELS.get(plan, "mensual")


def expire_if_lapsed(record: UserSubscription, db: Session, now: Optional[datetime] = None) -> bool:
    """Expire an active, non-recurring Mercado Pago row whose period has ended

    Used by the pull-style payment check. Returns True when the row was
    expired; the caller commits.
    """
    now = now or utcnow()
    if record.payment_gateway != "mercadopago" or record.is_recurring or record.status != "active":
        return False
    period_end = ensure_utc(record.current_period_end)
    if period_end is None or period_end >= now:
        return False

    record.status = "canceled"
    record.plan = "free"
    db.flush()
    create_notification(
        db, record.user_id,
        type="subscription",
        title="Suscripción expirada",
        message="Tu suscripción ha expirado. Renueva para continuar disfrutando de los beneficios premium.",
        severity="warning",
        related_entity="subscription",
    )
    subscriptions_expired_counter.inc()
    cron_logger.info(f"Auto-expired subscription for user {record.user_id} (ended {period_end.isoformat()})")
    return True


def expire_subscriptions(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Cancel every active Mercado Pago row whose period end is in the past"""
    now = now or utcnow()
    cron_logger.info(f"Expire job started at {now.isoformat()}")

    expired = db.query(UserSubscription).filter(
        UserSubscription.payment_gateway == "mercadopago",
        UserSubscription.status == "active",
        UserSubscription.current_period_end < now
    ).all()

    if not expired:
        cron_logger.info("No expired subscriptions found")
        cron_runs_counter.labels(job="expire_subscriptions", status="success").inc()
        return {"expired_count": 0, "total_found": 0, "message": "No expired subscriptions"}

    cron_logger.info(f"Found {len(expired)} expired subscriptions")
    expired_count = 0
    errors: List[Dict[str, str]] = []

    for record in expired:
        user_id = record.user_id
        plan = record.plan
        try:
            with db.begin_nested():
                record.status = "canceled"
                record.plan = "free"
        except Exception as e:
            cron_logger.error(f"Error expiring subscription for user {user_id}: {e}")
            errors.append({"user_id": user_id, "error": str(e)})
            continue

        create_notification(
            db, user_id,
            type="subscription",
            title="Suscripción expirada",
            message=f"Tu plan {_plan_label(plan)} ha expirado. Renueva tu suscripción para continuar disfrutando de los beneficios premium.",
            severity="warning",
            related_entity="subscription",
        )
        expired_count += 1
        subscriptions_expired_counter.inc()
        cron_logger.info(f"Expired subscription for user {user_id}")

    db.commit()
    cron_logger.info(f"Successfully expired {expired_count} subscriptions")
    cron_runs_counter.labels(job="expire_subscriptions", status="error" if errors else "success").inc()

    result: Dict[str, Any] = {"expired_count": expired_count, "total_found": len(expired)}
    if errors:
        result["errors"] = errors
    return result


def expiry_message(plan: str, days_left: int) -> str:
    if days_left == 1:
        return f"Tu plan {_plan_label(plan)} vence mañana. Renueva ahora para no perder acceso a las funcionalidades premium."
    return f"Tu plan {_plan_label(plan)} vence en {days_left} días. Recuerda renovar para continuar disfrutando de los beneficios."


def notify_expiring_subscriptions(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Warn users whose one-time purchase ends between 24 and 48 hours from now"""
    now = now or utcnow()
    window_start = now + timedelta(days=1)
    window_end = now + timedelta(days=2)
    cron_logger.info(f"Looking for subscriptions expiring between {window_start.isoformat()} and {window_end.isoformat()}")

    expiring = db.query(UserSubscription).filter(
        UserSubscription.payment_gateway == "mercadopago",
        UserSubscription.status == "active",
        UserSubscription.expiration_notified.is_(False),
        UserSubscription.current_period_end >= window_start,
        UserSubscription.current_period_end <= window_end
    ).all()

    if not expiring:
        cron_logger.info("No expiring subscriptions found")
        cron_runs_counter.labels(job="notify_expiring_subscriptions", status="success").inc()
        return {"notified_count": 0, "total_found": 0, "message": "No subscriptions expiring soon"}

    cron_logger.info(f"Found {len(expiring)} expiring subscriptions")
    notified_count = 0
    errors: List[Dict[str, str]] = []

    for record in expiring:
        user_id = record.user_id
        remaining = ensure_utc(record.current_period_end) - now
        days_left = math.ceil(remaining.total_seconds() / 86400)

        notification = create_notification(
            db, user_id,
            type="subscription",
            title="Tu suscripción está por vencer",
            message=expiry_message(record.plan, days_left),
            severity="warning",
            related_entity="subscription",
        )
        if notification is None:
            errors.append({"user_id": user_id, "error": "notification could not be created"})
            continue

        try:
            with db.begin_nested():
                record.expiration_notified = True
        except Exception as e:
            cron_logger.error(f"Error updating notification flag for user {user_id}: {e}")
            errors.append({"user_id": user_id, "error": str(e)})
            continue

        notified_count += 1
        expiry_notifications_counter.inc()
        cron_logger.info(f"Notified user {user_id}: expires in {days_left} days")

    db.commit()
    cron_logger.info(f"Successfully notified {notified_count} users")
    cron_runs_counter.labels(job="notify_expiring_subscriptions", status="error" if errors else "success").inc()

    result: Dict[str, Any] = {"notified_count": notified_count, "total_found": len(expiring)}
    if errors:
        result["errors"] = errors
    return result
