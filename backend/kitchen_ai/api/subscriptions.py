"""Subscription status, Stripe checkout and Stripe webhook routes"""
import logging
from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from kitchen_ai.core.security import AuthUser, require_auth
from kitchen_ai.db.session import get_db
from kitchen_ai.schemas.subscriptions import CheckoutRequest
from kitchen_ai.services.stripe_service import create_checkout_session, list_invoices, process_stripe_webhook
from kitchen_ai.services.subscription_service import (
    cancel_subscription, check_subscription, entitlement_for_date
)

router = APIRouter(tags=["subscriptions"])
entitlement_router = APIRouter(prefix="/api/subscription", tags=["subscriptions"])
logger = logging.getLogger(__name__)


@router.post("/check-subscription")
def check_subscription_route(user: AuthUser = Depends(require_auth), db: Session = Depends(get_db)):
    """Reconcile the caller's subscription with its gateway and return it"""
    return check_subscription(user, db)


@router.post("/create-checkout")
def create_checkout_route(
    checkout_request: CheckoutRequest,
    user: AuthUser = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create Stripe checkout session for subscription"""
    return create_checkout_session(user, checkout_request.plan, db)


@router.post("/cancel-subscription")
def cancel_subscription_route(user: AuthUser = Depends(require_auth), db: Session = Depends(get_db)):
    """Cancel through whichever gateway owns the subscription"""
    return cancel_subscription(user, db)


@router.post("/get-invoices")
def get_invoices_route(user: AuthUser = Depends(require_auth), db: Session = Depends(get_db)):
    """Stripe billing history for the caller"""
    return list_invoices(user.id, db)


@router.post("/stripe-webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events

    The body is read as raw bytes; signature verification needs it untouched.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    return process_stripe_webhook(payload, sig_header, db)


@entitlement_router.get("/entitlement")
def entitlement_route(
    target_date: date = Query(..., alias="date"),
    user: AuthUser = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Whether the caller may generate meals for a given day (advisory)"""
    return entitlement_for_date(user.id, target_date, db)
