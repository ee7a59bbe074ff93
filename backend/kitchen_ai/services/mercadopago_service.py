"""Mercado Pago checkout, preapproval and webhook handling"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from kitchen_ai.core.config import settings, PLAN_PERIOD_DAYS, PAID_PLANS
from kitchen_ai.core.errors import BadRequestError, ConfigurationError, UpstreamError
from kitchen_ai.core.metrics import webhook_events_counter
from kitchen_ai.core.security import AuthUser
from kitchen_ai.models.subscription import UserSubscription
from kitchen_ai.services.event_ledger import claim_event, mercadopago_event_key
from kitchen_ai.services.exchange_rate import get_exchange_rate, usd_to_ars
from kitchen_ai.services.expiration_service import expire_if_lapsed
from kitchen_ai.services.notification_service import create_notification
from kitchen_ai.services.subscription_record import get_subscription, subscription_payload, upsert_subscription
from kitchen_ai.utils.dates import ensure_utc, isoformat, parse_iso, utcnow

logger = logging.getLogger(__name__)
webhook_logger = logging.getLogger("webhooks")

PLAN_LABELS = {"weekly": "semanal", "monthly": "mensual"}


class MercadoPagoClient:
    """Thin httpx wrapper over the Mercado Pago REST API"""

    def __init__(self, access_token: str, base_url: str = "https://api.mercadopago.com", timeout: float = 10.0):
        if not access_token:
            raise ConfigurationError("MERCADOPAGO_ACCESS_TOKEN is not set")
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {access_token}"}
        self.timeout = timeout

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, headers=self.headers, json=json)
        except httpx.HTTPError as e:
            logger.error(f"Mercado Pago {method} {path} failed: {e}")
            raise UpstreamError("Error al comunicarse con Mercado Pago", provider="mercadopago")

        if response.status_code >= 400:
            logger.error(f"Mercado Pago {method} {path} returned {response.status_code}: {response.text[:500]}")
            raise UpstreamError(
                f"Mercado Pago API error: {response.status_code}",
                provider="mercadopago",
                upstream_status=response.status_code,
            )
        return response.json()

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v1/payments/{payment_id}")

    def get_preapproval(self, preapproval_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/preapproval/{preapproval_id}")

    def create_preference(self, preference: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/checkout/preferences", json=preference)

    def create_preapproval(self, preapproval: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/preapproval", json=preapproval)

    def cancel_preapproval(self, preapproval_id: str) -> Dict[str, Any]:
        return self._request("PUT", f"/preapproval/{preapproval_id}", json={"status": "cancelled"})

    def create_preapproval_plan(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/preapproval_plan", json=plan)


def get_mercadopago_client() -> MercadoPagoClient:
    return MercadoPagoClient(
        settings.MERCADOPAGO_ACCESS_TOKEN,
        base_url=settings.MERCADOPAGO_API_BASE,
        timeout=settings.MERCADOPAGO_TIMEOUT_SECONDS,
    )


def _validate_plan(plan: Optional[str]) -> str:
    if plan not in PAID_PLANS:
        raise BadRequestError("Invalid plan. Must be 'weekly' or 'monthly'", code="invalid_plan")
    return plan


def recurring_terms(plan: str) -> Dict[str, Any]:
    """Fixed ARS `auto_recurring` block for a paid plan"""
    frequency, frequency_type = (7, "days") if plan == "weekly" else (1, "months")
    return {
        "frequency": frequency,
        "frequency_type": frequency_type,
        "transaction_amount": settings.WEEKLY_PRICE_ARS if plan == "weekly" else settings.MONTHLY_PRICE_ARS,
        "currency_id": "ARS",
    }


def build_preapproval_plan(plan: str) -> Dict[str, Any]:
    """Body for POST /preapproval_plan; the returned ids go in MERCADOPAGO_*_PLAN_ID"""
    plan = _validate_plan(plan)
    return {
        "reason": f"Plan {PLAN_LABELS[plan].capitalize()} - Kitchen AI",
        "auto_recurring": recurring_terms(plan),
        "back_url": f"{settings.FRONTEND_URL}/profile/subscription",
    }


# ============================================================================
# CHECKOUT
# ============================================================================

def create_preference(user: AuthUser, plan: str, db: Session) -> Dict[str, Any]:
    """One-time purchase of a 7 or 30 day period, priced from the USD list price"""
    plan = _validate_plan(plan)
    client = get_mercadopago_client()

    rate = get_exchange_rate()["rate"]
    usd_price = settings.WEEKLY_PRICE_USD if plan == "weekly" else settings.MONTHLY_PRICE_USD
    price = usd_to_ars(usd_price, rate)

    now = utcnow()
    period_start = now
    period_end = now + timedelta(days=PLAN_PERIOD_DAYS[plan])
    label = PLAN_LABELS[plan]

    preference = {
        "items": [{
            "title": f"Suscripción {label.capitalize()} - Kitchen AI",
            "description": f"Plan {label} de Kitchen AI Companion",
            "quantity": 1,
            "unit_price": price,
            "currency_id": "ARS",
        }],
        "payer": {"email": user.email or "noreply@kitchen-ai.com"},
        "back_urls": {
            "success": f"{settings.FRONTEND_URL}/profile/subscription",
            "failure": f"{settings.FRONTEND_URL}/pricing",
            "pending": f"{settings.FRONTEND_URL}/profile/subscription",
        },
        "auto_return": "approved",
        "notification_url": f"{settings.PUBLIC_API_URL.rstrip('/')}/mercadopago-webhook",
        "external_reference": user.id,
        "metadata": {
            "user_id": user.id,
            "plan": plan,
            "period_start": period_start.isoformat(),
            "period_end": period_end.isoformat(),
        },
        "statement_descriptor": "Kitchen AI",
    }
    data = client.create_preference(preference)

    upsert_subscription(
        db, user.id,
        payment_gateway="mercadopago",
        mercadopago_preference_id=data.get("id"),
        plan=plan,
        status="pending",
        current_period_start=period_start,
        current_period_end=period_end,
        is_recurring=False,
        cancel_at_period_end=False,
        expiration_notified=False,
    )
    db.commit()
    logger.info(f"Created Mercado Pago preference {data.get('id')} for user {user.id} ({plan}, {price} ARS)")

    return {
        "preference_id": data.get("id"),
        "init_point": data.get("init_point"),
        "plan": plan,
        "amount": price,
        "currency": "ARS",
    }


def create_preapproval(user: AuthUser, plan: str, payer_email: Optional[str], db: Session) -> Dict[str, Any]:
    """Recurring subscription charged at a fixed ARS price"""
    plan = _validate_plan(plan)
    if not payer_email:
        raise BadRequestError("Se requiere el email de tu cuenta de MercadoPago", code="mercadopago_email_required")
    client = get_mercadopago_client()

    terms = recurring_terms(plan)
    provider_plan_id = settings.MERCADOPAGO_WEEKLY_PLAN_ID if plan == "weekly" else settings.MERCADOPAGO_MONTHLY_PLAN_ID

    now = utcnow()
    preapproval = {
        "payer_email": payer_email,
        "reason": f"Plan {PLAN_LABELS[plan].capitalize()} - Kitchen AI",
        "auto_recurring": terms,
        "back_url": f"{settings.FRONTEND_URL}/profile/subscription",
        "external_reference": user.id,
    }
    if provider_plan_id:
        preapproval["preapproval_plan_id"] = provider_plan_id

    data = client.create_preapproval(preapproval)

    upsert_subscription(
        db, user.id,
        payment_gateway="mercadopago",
        mercadopago_subscription_id=data.get("id"),
        mercadopago_plan_id=provider_plan_id or None,
        plan=plan,
        status="pending",
        current_period_start=now,
        current_period_end=now + timedelta(days=PLAN_PERIOD_DAYS[plan]),
        is_recurring=True,
        cancel_at_period_end=False,
        expiration_notified=False,
    )
    db.commit()
    logger.info(f"Created Mercado Pago preapproval {data.get('id')} for user {user.id} ({plan})")

    return {
        "subscription_id": data.get("id"),
        "init_point": data.get("init_point"),
        "plan": plan,
        "amount": terms["transaction_amount"],
        "currency": "ARS",
        "frequency": f"{terms['frequency']} {terms['frequency_type']}",
    }


def cancel_mercadopago_subscription(record: UserSubscription, db: Session) -> Dict[str, Any]:
    """Cancel at the provider when possible; the local record is always canceled"""
    if record.mercadopago_subscription_id:
        try:
            get_mercadopago_client().cancel_preapproval(record.mercadopago_subscription_id)
        except (UpstreamError, ConfigurationError) as e:
            logger.warning(f"Provider cancel failed for {record.mercadopago_subscription_id}, canceling locally: {e}")

    record.status = "canceled"
    record.plan = "free"
    record.canceled_at = utcnow()
    db.commit()
    logger.info(f"Mercado Pago subscription canceled for user {record.user_id}")
    return {"success": True, "message": "Suscripción cancelada exitosamente"}


# ============================================================================
# WEBHOOK
# ============================================================================

PAYMENT_TRANSITIONS = {
    "approved": ("active", "¡Pago aprobado!", "success"),
    "pending": ("pending", "Pago en proceso", "info"),
    "in_process": ("pending", "Pago en proceso", "info"),
    "rejected": ("canceled", "Pago rechazado", "error"),
    "cancelled": ("canceled", "Pago rechazado", "error"),
}

PREAPPROVAL_TRANSITIONS = {
    "authorized": ("active", "¡Suscripción activada!", "success"),
    "pending": ("pending", "Suscripción pendiente", "info"),
    "paused": ("past_due", "Suscripción pausada", "warning"),
    "cancelled": ("canceled", "Suscripción cancelada", "info"),
}


def is_payment_notification(notification: Dict[str, Any]) -> bool:
    return notification.get("type") == "payment" or notification.get("action") in ("payment.created", "payment.updated")


def is_preapproval_notification(notification: Dict[str, Any]) -> bool:
    action = notification.get("action") or ""
    return notification.get("type") == "subscription_preapproval" or action.startswith("subscription")


def _clamp_period(record: UserSubscription, fields: Dict[str, Any]) -> None:
    """Keep start <= end when the payment metadata carries only one bound

    The missing bound is rebuilt from the plan length if the stored one would
    fall on the wrong side of the new one.
    """
    plan = fields.get("plan") or record.plan
    length = timedelta(days=PLAN_PERIOD_DAYS.get(plan, 0))
    new_start = fields.get("current_period_start")
    new_end = fields.get("current_period_end")
    old_start = ensure_utc(record.current_period_start)
    old_end = ensure_utc(record.current_period_end)

    if new_end and not new_start and old_start and old_start > new_end:
        fields["current_period_start"] = new_end - length
    elif new_start and not new_end and old_end and old_end < new_start:
        fields["current_period_end"] = new_start + length


def apply_payment(payment: Dict[str, Any], db: Session) -> Dict[str, Any]:
    """Mirror a one-time payment's status onto the user's record"""
    metadata = payment.get("metadata") or {}
    user_id = metadata.get("user_id") or payment.get("external_reference")
    if not user_id:
        raise ValueError("No user_id found in payment metadata")

    status = payment.get("status")
    record = get_subscription(db, user_id)
    fields: Dict[str, Any] = {"mercadopago_payment_id": str(payment.get("id"))}

    transition = PAYMENT_TRANSITIONS.get(status)
    if transition:
        fields["status"] = transition[0]
    if status == "approved":
        if metadata.get("period_start"):
            fields["current_period_start"] = parse_iso(metadata["period_start"])
        if metadata.get("period_end"):
            fields["current_period_end"] = parse_iso(metadata["period_end"])
        if metadata.get("plan") in PAID_PLANS:
            fields["plan"] = metadata["plan"]
        fields["expiration_notified"] = False
        if record is not None:
            _clamp_period(record, fields)
    elif status in ("rejected", "cancelled"):
        fields["plan"] = "free"

    if record is None or record.payment_gateway != "mercadopago":
        fields.setdefault("is_recurring", False)

    record = upsert_subscription(db, user_id, payment_gateway="mercadopago", **fields)

    if transition:
        _, title, severity = transition
        if status == "approved":
            message = f"Tu suscripción {PLAN_LABELS.get(record.plan, record.plan)} ha sido activada correctamente."
        elif status in ("pending", "in_process"):
            message = "Tu pago está siendo procesado. Te notificaremos cuando se complete."
        else:
            message = "Tu pago fue rechazado. Por favor, intenta nuevamente con otro método de pago."
    else:
        title, severity = "Actualización de pago", "info"
        message = f"Estado del pago: {status}"

    create_notification(
        db, user_id,
        type="payment", title=title, message=message,
        severity=severity, related_entity="subscription",
    )
    return {"user_id": user_id, "status": status}


def apply_preapproval(preapproval: Dict[str, Any], db: Session) -> Dict[str, Any]:
    """Mirror a recurring preapproval's status onto the user's record"""
    user_id = preapproval.get("external_reference")
    if not user_id:
        raise ValueError("No user_id found in subscription")

    status = preapproval.get("status")
    auto_recurring = preapproval.get("auto_recurring") or {}
    plan = "weekly" if auto_recurring.get("frequency") == 7 else "monthly"
    period_start = parse_iso(auto_recurring.get("start_date")) or utcnow()
    period_end = period_start + timedelta(days=PLAN_PERIOD_DAYS[plan])

    db_status, title, severity = PREAPPROVAL_TRANSITIONS.get(
        status, ("pending", "Actualización de suscripción", "info")
    )
    messages = {
        "authorized": f"Tu suscripción {PLAN_LABELS[plan]} ha sido activada. Se renovará automáticamente.",
        "pending": "Tu suscripción está siendo procesada.",
        "paused": "Tu suscripción ha sido pausada. Por favor, actualiza tu método de pago.",
        "cancelled": "Tu suscripción ha sido cancelada.",
    }

    upsert_subscription(
        db, user_id,
        payment_gateway="mercadopago",
        mercadopago_subscription_id=str(preapproval.get("id")),
        status=db_status,
        plan="free" if status == "cancelled" else plan,
        current_period_start=period_start,
        current_period_end=period_end,
        is_recurring=status != "cancelled",
        canceled_at=utcnow() if status == "cancelled" else None,
    )
    create_notification(
        db, user_id,
        type="subscription", title=title,
        message=messages.get(status, f"Estado: {status}"),
        severity=severity, related_entity="subscription",
    )
    return {"user_id": user_id, "status": status}


def process_mercadopago_webhook(notification: Dict[str, Any], db: Session) -> Dict[str, Any]:
    """Handle a Mercado Pago notification; the HTTP layer always answers 200"""
    is_payment = is_payment_notification(notification)
    is_preapproval = is_preapproval_notification(notification)
    if not is_payment and not is_preapproval:
        webhook_logger.info(f"Ignoring Mercado Pago notification type={notification.get('type')} action={notification.get('action')}")
        return {"received": True}

    data_id = (notification.get("data") or {}).get("id")
    if not data_id:
        webhook_events_counter.labels(provider="mercadopago", outcome="invalid").inc()
        return {"received": True, "error": "Missing data.id in notification"}

    event_key = mercadopago_event_key(notification.get("action"), data_id, notification.get("date_created"))

    try:
        client = get_mercadopago_client()
        if is_preapproval:
            resource = client.get_preapproval(str(data_id))
        else:
            resource = client.get_payment(str(data_id))

        event_type = resource.get("status") or notification.get("action") or "unknown"
        claimed = claim_event(db, event_type, resource, mercadopago_event_id=event_key)
        if claimed is None:
            db.rollback()
            webhook_logger.info(f"Mercado Pago event {event_key} already processed")
            webhook_events_counter.labels(provider="mercadopago", outcome="duplicate").inc()
            return {"received": True, "already_processed": True}

        if is_preapproval:
            result = apply_preapproval(resource, db)
        else:
            result = apply_payment(resource, db)
        claimed.user_id = result["user_id"]
        db.commit()
    except Exception as e:
        db.rollback()
        webhook_logger.error(f"Error processing Mercado Pago notification {event_key}: {e}", exc_info=True)
        webhook_events_counter.labels(provider="mercadopago", outcome="error").inc()
        return {"received": True, "error": str(e)}

    webhook_logger.info(f"Processed Mercado Pago event {event_key}: {result['status']}")
    webhook_events_counter.labels(provider="mercadopago", outcome="processed").inc()
    return {"received": True, "status": result["status"]}


# ============================================================================
# PULL CHECK
# ============================================================================

def check_mercadopago_payment(user_id: str, db: Session) -> Dict[str, Any]:
    """Status for the client; expires a lapsed one-time purchase on the spot"""
    record = get_subscription(db, user_id)
    if record is None:
        return {
            "subscribed": False,
            "plan": "free",
            "status": None,
            "payment_gateway": None,
            "is_recurring": False,
        }

    expired_at = record.current_period_end
    if expire_if_lapsed(record, db):
        db.commit()
        return {
            "subscribed": False,
            "plan": "free",
            "status": "expired",
            "payment_gateway": "mercadopago",
            "is_recurring": False,
            "expired_at": isoformat(expired_at),
        }

    payload = subscription_payload(record)
    payload.update({
        "mercadopago_payment_id": record.mercadopago_payment_id,
        "mercadopago_preference_id": record.mercadopago_preference_id,
        "expiration_notified": bool(record.expiration_notified),
    })
    return payload
