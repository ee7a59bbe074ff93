"""Mercado Pago checkout, subscription and webhook routes"""
import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from kitchen_ai.core.security import AuthUser, require_auth
from kitchen_ai.db.session import get_db
from kitchen_ai.schemas.subscriptions import CheckoutRequest, MercadoPagoSubscriptionRequest
from kitchen_ai.services.mercadopago_service import (
    check_mercadopago_payment, create_preapproval, create_preference, process_mercadopago_webhook
)

router = APIRouter(tags=["mercadopago"])
logger = logging.getLogger(__name__)
webhook_logger = logging.getLogger("webhooks")


@router.post("/mercadopago-create-preference")
def create_preference_route(
    checkout_request: CheckoutRequest,
    user: AuthUser = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """One-time purchase of a weekly or monthly period"""
    return create_preference(user, checkout_request.plan, db)


@router.post("/mercadopago-create-subscription")
def create_subscription_route(
    subscription_request: MercadoPagoSubscriptionRequest,
    user: AuthUser = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Recurring subscription (preapproval)"""
    return create_preapproval(user, subscription_request.plan, subscription_request.mercado_pago_email, db)


@router.post("/mercadopago-webhook")
async def mercadopago_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Mercado Pago notifications

    Always answers 200 so the provider does not retry malformed payloads.
    Legacy IPN calls carry ``type`` and ``data.id`` as query parameters.
    """
    raw = await request.body()
    try:
        notification = json.loads(raw) if raw else {}
    except ValueError:
        webhook_logger.warning("Mercado Pago notification with invalid JSON body")
        return {"received": True, "error": "Invalid JSON payload"}
    if not isinstance(notification, dict):
        return {"received": True, "error": "Invalid JSON payload"}

    params = request.query_params
    if not notification.get("type") and params.get("type"):
        notification["type"] = params.get("type")
    if not (notification.get("data") or {}).get("id") and params.get("data.id"):
        notification["data"] = {"id": params.get("data.id")}

    webhook_logger.info(f"Mercado Pago notification: type={notification.get('type')} action={notification.get('action')}")
    return process_mercadopago_webhook(notification, db)


@router.post("/mercadopago-check-payment")
def check_payment_route(user: AuthUser = Depends(require_auth), db: Session = Depends(get_db)):
    """Pull-style status check with auto-expiry of lapsed purchases"""
    return check_mercadopago_payment(user.id, db)
