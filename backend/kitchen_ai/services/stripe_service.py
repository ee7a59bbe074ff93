import logging
import stripe
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from kitchen_ai.core.config import settings
from kitchen_ai.core.errors import (
    BadRequestError, ConfigurationError, UpstreamError, WebhookSignatureError
)
from kitchen_ai.core.metrics import webhook_events_counter
from kitchen_ai.core.security import AuthUser
from kitchen_ai.models.subscription import UserSubscription
from kitchen_ai.services.event_ledger import claim_event, record_failed_event
from kitchen_ai.services.notification_service import create_notification
from kitchen_ai.services.subscription_record import (
    find_by_stripe_customer, get_subscription, upsert_subscription
)
from kitchen_ai.utils.dates import from_timestamp

logger = logging.getLogger(__name__)
webhook_logger = logging.getLogger("webhooks")

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY

# Stripe lifecycle statuses collapsed into the record vocabulary
STRIPE_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "paused": "past_due",
    "incomplete": "pending",
    "incomplete_expired": "expired",
    "canceled": "canceled",
}

PLAN_LABELS = {"weekly": "semanal", "monthly": "mensual"}


def price_to_plan() -> Dict[str, str]:
    return {
        settings.STRIPE_WEEKLY_PRICE_ID: "weekly",
        settings.STRIPE_MONTHLY_PRICE_ID: "monthly",
    }


def plan_to_price(plan: str) -> Optional[str]:
    for price_id, plan_key in price_to_plan().items():
        if plan_key == plan:
            return price_id
    return None


def map_stripe_status(status: Optional[str]) -> str:
    return STRIPE_STATUS_MAP.get(status or "", "pending")


# ============================================================================
# STRIPE OBJECT ACCESS HELPERS
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    value = getattr(obj, key, None)
    return default if value is None else value


def _first_item(subscription: Any) -> Any:
    items = _get_stripe_value(_get_stripe_value(subscription, "items"), "data", []) or []
    return items[0] if items else None


def _subscription_price_id(subscription: Any) -> Optional[str]:
    return _get_stripe_value(_get_stripe_value(_first_item(subscription), "price"), "id")


def _subscription_period(subscription: Any):
    """Current period bounds; newer API versions carry them on the subscription item"""
    start = _get_stripe_value(subscription, "current_period_start")
    end = _get_stripe_value(subscription, "current_period_end")
    if start is None or end is None:
        item = _first_item(subscription)
        start = start if start is not None else _get_stripe_value(item, "current_period_start")
        end = end if end is not None else _get_stripe_value(item, "current_period_end")
    return from_timestamp(start), from_timestamp(end)


def _customer_id(obj: Any) -> Optional[str]:
    customer = _get_stripe_value(obj, "customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer


def _subscription_fields(subscription: Any) -> Dict[str, Any]:
    period_start, period_end = _subscription_period(subscription)
    price_id = _subscription_price_id(subscription)
    plan = price_to_plan().get(price_id)
    if plan is None:
        logger.warning(f"Unknown Stripe price {price_id} on subscription {_get_stripe_value(subscription, 'id')}")
        plan = "free"
    return {
        "stripe_subscription_id": _get_stripe_value(subscription, "id"),
        "plan": plan,
        "status": map_stripe_status(_get_stripe_value(subscription, "status")),
        "current_period_start": period_start,
        "current_period_end": period_end,
        "trial_end": from_timestamp(_get_stripe_value(subscription, "trial_end")),
        "cancel_at_period_end": bool(_get_stripe_value(subscription, "cancel_at_period_end", False)),
        "is_recurring": True,
        "expiration_notified": False,
    }


def resolve_user_id(obj: Any, db: Session) -> Optional[str]:
    """Map a Stripe object to our user via its customer id (metadata as fallback)"""
    record = find_by_stripe_customer(db, _customer_id(obj))
    if record:
        return record.user_id
    metadata = _get_stripe_value(obj, "metadata", {}) or {}
    return _get_stripe_value(metadata, "user_id")


# ============================================================================
# CUSTOMER & CHECKOUT
# ============================================================================

def _require_stripe_key():
    if not settings.STRIPE_SECRET_KEY:
        raise ConfigurationError("STRIPE_SECRET_KEY is not set")


def find_customer_id(email: str) -> Optional[str]:
    customers = stripe.Customer.list(email=email, limit=1)
    data = _get_stripe_value(customers, "data", []) or []
    return _get_stripe_value(data[0], "id") if data else None


def get_or_create_customer(user: AuthUser, db: Session) -> str:
    record = get_subscription(db, user.id)
    if record and record.stripe_customer_id:
        return record.stripe_customer_id

    customer_id = find_customer_id(user.email) if user.email else None
    if not customer_id:
        customer = stripe.Customer.create(email=user.email, metadata={"user_id": user.id})
        customer_id = _get_stripe_value(customer, "id")
        logger.info(f"Created Stripe customer {customer_id} for user {user.id}")
    return customer_id


def create_checkout_session(user: AuthUser, plan: str, db: Session) -> Dict[str, Any]:
    """Start a subscription-mode Checkout Session and park a pending record"""
    _require_stripe_key()
    price_id = plan_to_price(plan)
    if not price_id:
        raise BadRequestError("Plan inválido", code="invalid_plan")

    try:
        customer_id = get_or_create_customer(user, db)
        session = stripe.checkout.Session.create(
            customer=customer_id,
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{settings.FRONTEND_URL}/pricing?success=true",
            cancel_url=f"{settings.FRONTEND_URL}/pricing?canceled=true",
            subscription_data={"metadata": {"user_id": user.id, "plan": plan}},
            metadata={"user_id": user.id, "plan": plan},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for user {user.id}: {e}")
        raise UpstreamError("No se pudo iniciar el pago", provider="stripe")

    record = get_subscription(db, user.id)
    if record is None or not record.is_entitled:
        upsert_subscription(
            db, user.id,
            payment_gateway="stripe",
            stripe_customer_id=customer_id,
            status="pending",
        )
        db.commit()

    return {"url": _get_stripe_value(session, "url"), "session_id": _get_stripe_value(session, "id")}


# ============================================================================
# PULL RECONCILIATION & CANCEL
# ============================================================================

def sync_stripe_subscription(user: AuthUser, db: Session) -> Optional[UserSubscription]:
    """Look the user's customer up by email and mirror its active subscription"""
    _require_stripe_key()
    if not user.email:
        return get_subscription(db, user.id)

    try:
        customer_id = find_customer_id(user.email)
        if not customer_id:
            return _reconcile_without_active(user.id, db)

        subscriptions = stripe.Subscription.list(customer=customer_id, status="active", limit=1)
    except stripe.StripeError as e:
        logger.error(f"Stripe lookup failed for user {user.id}: {e}")
        raise UpstreamError("No se pudo verificar tu suscripción", provider="stripe")

    data = _get_stripe_value(subscriptions, "data", []) or []
    if not data:
        return _reconcile_without_active(user.id, db)

    record = upsert_subscription(
        db, user.id,
        payment_gateway="stripe",
        stripe_customer_id=customer_id,
        **_subscription_fields(data[0]),
    )
    db.commit()
    logger.info(f"✅ Stripe subscription synced for user {user.id}: {record.plan}/{record.status}")
    return record


def _reconcile_without_active(user_id: str, db: Session) -> Optional[UserSubscription]:
    """Stripe lists nothing active for the user; re-read a locally entitled Stripe row

    The stored subscription is retrieved by id and mirrored. When it is gone or
    ended the row is demoted to free so a missed deletion webhook cannot keep
    the user entitled.
    """
    record = get_subscription(db, user_id)
    if record is None or record.payment_gateway != "stripe" or not record.subscribed:
        return record

    fields = None
    if record.stripe_subscription_id:
        try:
            fields = _subscription_fields(stripe.Subscription.retrieve(record.stripe_subscription_id))
        except stripe.StripeError as e:
            if getattr(e, "code", None) != "resource_missing":
                logger.error(f"Stripe retrieve failed for {record.stripe_subscription_id}: {e}")
                raise UpstreamError("No se pudo verificar tu suscripción", provider="stripe")
            logger.warning(f"Stripe subscription {record.stripe_subscription_id} no longer exists")

    if fields is None or fields["status"] in ("canceled", "expired"):
        fields = {
            "plan": "free",
            "status": "canceled",
            "canceled_at": record.canceled_at or datetime.now(timezone.utc),
            "cancel_at_period_end": False,
        }

    record = upsert_subscription(db, user_id, **fields)
    db.commit()
    logger.info(f"Stripe subscription reconciled for user {user_id}: {record.plan}/{record.status}")
    return record


def cancel_stripe_subscription(record: UserSubscription, db: Session) -> Dict[str, Any]:
    """Schedule cancellation at period end; entitlement lasts until then"""
    _require_stripe_key()
    if not record.stripe_subscription_id:
        raise BadRequestError("No hay una suscripción de Stripe para cancelar", code="subscription_not_found", status_code=404)

    try:
        stripe.Subscription.modify(record.stripe_subscription_id, cancel_at_period_end=True)
    except stripe.StripeError as e:
        logger.error(f"Stripe cancel failed for {record.stripe_subscription_id}: {e}")
        raise UpstreamError("No se pudo cancelar la suscripción", provider="stripe")

    record.cancel_at_period_end = True
    record.canceled_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(f"Stripe subscription {record.stripe_subscription_id} set to cancel at period end")
    return {
        "success": True,
        "message": "Tu suscripción se cancelará al final del período actual",
        "cancel_at_period_end": True,
    }


def _invoice_payment_method(invoice: Any) -> Optional[Dict[str, Any]]:
    """Card summary when the payment intent was expanded, else None"""
    payment_intent = _get_stripe_value(invoice, "payment_intent")
    if payment_intent is None or isinstance(payment_intent, str):
        return None
    method = _get_stripe_value(payment_intent, "payment_method")
    if method is None or isinstance(method, str):
        return None
    card = _get_stripe_value(method, "card")
    return {
        "type": _get_stripe_value(method, "type"),
        "last4": _get_stripe_value(card, "last4"),
        "brand": _get_stripe_value(card, "brand"),
    }


def format_invoice(invoice: Any) -> Dict[str, Any]:
    lines = _get_stripe_value(_get_stripe_value(invoice, "lines"), "data", []) or []
    description = _get_stripe_value(lines[0], "description") if lines else None
    return {
        "id": _get_stripe_value(invoice, "id"),
        "number": _get_stripe_value(invoice, "number"),
        "amount": (_get_stripe_value(invoice, "amount_paid", 0) or 0) / 100,
        "currency": (_get_stripe_value(invoice, "currency", "") or "").upper(),
        "status": _get_stripe_value(invoice, "status"),
        "created": _get_stripe_value(invoice, "created"),
        "period_start": _get_stripe_value(invoice, "period_start"),
        "period_end": _get_stripe_value(invoice, "period_end"),
        "invoice_pdf": _get_stripe_value(invoice, "invoice_pdf"),
        "hosted_invoice_url": _get_stripe_value(invoice, "hosted_invoice_url"),
        "payment_method": _invoice_payment_method(invoice),
        "description": description or "Suscripción",
    }


def list_invoices(user_id: str, db: Session, limit: int = 12) -> Dict[str, Any]:
    """Most recent Stripe invoices for the user's customer; empty without one"""
    _require_stripe_key()
    record = get_subscription(db, user_id)
    if record is None or not record.stripe_customer_id:
        return {"invoices": []}

    try:
        invoices = stripe.Invoice.list(
            customer=record.stripe_customer_id,
            limit=limit,
            expand=["data.payment_intent.payment_method"],
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe invoice list failed for user {user_id}: {e}")
        raise UpstreamError("No se pudieron obtener las facturas", provider="stripe")

    data = _get_stripe_value(invoices, "data", []) or []
    return {"invoices": [format_invoice(invoice) for invoice in data]}


# ============================================================================
# WEBHOOK HANDLERS
# ============================================================================

def handle_subscription_created(subscription: Any, user_id: str, db: Session):
    fields = _subscription_fields(subscription)
    upsert_subscription(
        db, user_id,
        payment_gateway="stripe",
        stripe_customer_id=_customer_id(subscription),
        **fields,
    )
    plan_label = PLAN_LABELS.get(fields["plan"], fields["plan"])
    create_notification(
        db, user_id,
        type="subscription_created",
        title="¡Bienvenido a Kitchen AI Premium!",
        message=f"Tu suscripción {plan_label} está activa. Disfruta de todas las funcionalidades premium.",
        severity="info",
        action_url="/planner",
    )


def handle_subscription_updated(subscription: Any, user_id: str, db: Session):
    current = get_subscription(db, user_id)
    previous_plan = current.plan if current else None
    was_canceling = bool(current.cancel_at_period_end) if current else False

    fields = _subscription_fields(subscription)
    fields["canceled_at"] = from_timestamp(_get_stripe_value(subscription, "canceled_at"))
    record = upsert_subscription(db, user_id, payment_gateway="stripe", **fields)

    if current is None:
        return

    if previous_plan != record.plan:
        is_upgrade = previous_plan == "weekly" and record.plan == "monthly"
        create_notification(
            db, user_id,
            type="subscription_changed",
            title="Suscripción mejorada" if is_upgrade else "Suscripción modificada",
            message=f"Tu plan ha cambiado de {previous_plan} a {record.plan}.",
            severity="info",
        )

    if record.cancel_at_period_end and not was_canceling:
        end = record.current_period_end.strftime("%d/%m/%Y") if record.current_period_end else ""
        create_notification(
            db, user_id,
            type="subscription_canceling",
            title="Suscripción programada para cancelar",
            message=f"Tu suscripción se cancelará el {end}. Aún puedes usar todas las funcionalidades hasta entonces.",
            severity="warning",
            action_url="/profile",
        )

    if was_canceling and not record.cancel_at_period_end:
        create_notification(
            db, user_id,
            type="subscription_reactivated",
            title="Suscripción reactivada",
            message="Tu suscripción ha sido reactivada y continuará renovándose automáticamente.",
            severity="info",
        )


def handle_subscription_deleted(subscription: Any, user_id: str, db: Session):
    canceled_at = from_timestamp(_get_stripe_value(subscription, "canceled_at")) or datetime.now(timezone.utc)
    upsert_subscription(
        db, user_id,
        plan="free",
        status="canceled",
        canceled_at=canceled_at,
        cancel_at_period_end=False,
    )
    create_notification(
        db, user_id,
        type="subscription_canceled",
        title="Suscripción cancelada",
        message="Tu suscripción premium ha finalizado. Esperamos verte de nuevo pronto.",
        severity="info",
        action_url="/pricing",
    )


def handle_invoice_payment_succeeded(invoice: Any, user_id: str, db: Session):
    upsert_subscription(
        db, user_id,
        latest_invoice_id=_get_stripe_value(invoice, "id"),
        status="active",
    )
    # First invoices are covered by the welcome notification
    if _get_stripe_value(invoice, "billing_reason") == "subscription_cycle":
        next_charge = from_timestamp(_get_stripe_value(invoice, "period_end"))
        next_text = next_charge.strftime("%d/%m/%Y") if next_charge else ""
        create_notification(
            db, user_id,
            type="payment_succeeded",
            title="Pago procesado exitosamente",
            message=f"Tu suscripción ha sido renovada. Próximo cobro: {next_text}.",
            severity="info",
        )


def handle_invoice_payment_failed(invoice: Any, user_id: str, db: Session):
    upsert_subscription(
        db, user_id,
        latest_invoice_id=_get_stripe_value(invoice, "id"),
        status="past_due",
    )
    create_notification(
        db, user_id,
        type="payment_failed",
        title="Error en el pago de tu suscripción",
        message="No pudimos procesar tu pago. Por favor actualiza tu método de pago para continuar usando las funcionalidades premium.",
        severity="error",
        action_url="/profile",
    )


def handle_trial_will_end(subscription: Any, user_id: str, db: Session):
    trial_end = from_timestamp(_get_stripe_value(subscription, "trial_end"))
    if not trial_end:
        return
    create_notification(
        db, user_id,
        type="trial_ending",
        title="Tu período de prueba está por finalizar",
        message=f"Tu período de prueba finaliza el {trial_end.strftime('%d/%m/%Y')}. Asegúrate de tener un método de pago válido configurado.",
        severity="warning",
        action_url="/profile",
    )


EVENT_HANDLERS: Dict[str, Callable[[Any, str, Session], None]] = {
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "customer.subscription.trial_will_end": handle_trial_will_end,
}


def _event_payload(obj: Any) -> Any:
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict_recursive", None) or getattr(obj, "to_dict", None)
    return to_dict() if callable(to_dict) else None


def process_stripe_webhook(payload: bytes, sig_header: Optional[str], db: Session) -> Dict[str, Any]:
    """Verify, deduplicate and apply a Stripe webhook event

    Only signature/payload problems raise (400). Handler failures are rolled
    back, recorded on the ledger and acknowledged with 200 so Stripe stops
    retrying.
    """
    if not sig_header:
        raise WebhookSignatureError("No signature", code="missing_signature")

    if not settings.STRIPE_WEBHOOK_SECRET:
        webhook_logger.error("Stripe webhook secret not configured")
        raise ConfigurationError("Webhook secret not configured")

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        webhook_logger.error(f"Invalid Stripe webhook payload: {e}")
        webhook_events_counter.labels(provider="stripe", outcome="invalid").inc()
        raise BadRequestError("Invalid payload", code="invalid_payload")
    except stripe.SignatureVerificationError as e:
        webhook_logger.error(f"Invalid Stripe webhook signature: {e}")
        webhook_events_counter.labels(provider="stripe", outcome="invalid").inc()
        raise WebhookSignatureError("Invalid signature")

    event_id = event["id"]
    event_type = event["type"]
    obj = event["data"]["object"]

    user_id = None
    if event_type.startswith("customer.subscription.") or event_type.startswith("invoice."):
        user_id = resolve_user_id(obj, db)

    if claim_event(db, event_type, _event_payload(obj), stripe_event_id=event_id, user_id=user_id) is None:
        db.rollback()
        webhook_logger.info(f"Stripe event {event_id} already processed, skipping")
        webhook_events_counter.labels(provider="stripe", outcome="duplicate").inc()
        return {"received": True, "skipped": True}

    handler = EVENT_HANDLERS.get(event_type)
    try:
        if handler is None:
            webhook_logger.info(f"Unhandled Stripe event type {event_type}")
        elif user_id is None:
            webhook_logger.warning(f"No user found for customer {_customer_id(obj)} on {event_type}")
        else:
            handler(obj, user_id, db)
        db.commit()
    except Exception as e:
        db.rollback()
        webhook_logger.error(f"Error processing Stripe webhook {event_id} ({event_type}): {e}", exc_info=True)
        record_failed_event(
            db, event_type, str(e), _event_payload(obj),
            stripe_event_id=event_id, user_id=user_id,
        )
        webhook_events_counter.labels(provider="stripe", outcome="error").inc()
        return {"received": True, "status": "error_logged"}

    webhook_logger.info(f"Processed Stripe event {event_id} of type {event_type}")
    webhook_events_counter.labels(provider="stripe", outcome="processed").inc()
    return {"received": True}
