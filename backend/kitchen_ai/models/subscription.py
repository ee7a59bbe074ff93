"""Subscription record model

Exactly one row per user. Both gateways write to the same row; the identifier
group of the gateway named in ``payment_gateway`` is the only one populated.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import Column, Integer, String, DateTime, Boolean, event

from kitchen_ai.models.base import Base
from kitchen_ai.utils.dates import ensure_utc

PLANS = ("free", "weekly", "monthly")
STATUSES = ("pending", "active", "past_due", "canceled", "expired")
GATEWAYS = ("stripe", "mercadopago", "manual")

# Statuses that keep a paid plan entitled
ENTITLED_STATUSES = ("active", "past_due")

STRIPE_FIELDS = ("stripe_customer_id", "stripe_subscription_id", "latest_invoice_id")
MERCADOPAGO_FIELDS = (
    "mercadopago_subscription_id", "mercadopago_preference_id",
    "mercadopago_plan_id", "mercadopago_payment_id"
)


class UserSubscription(Base):
    """Per-user subscription state reconciled from Stripe and Mercado Pago"""
    __tablename__ = "user_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    plan = Column(String(20), default="free", nullable=False)  # 'free', 'weekly', 'monthly'
    status = Column(String(20), default="active", nullable=False)  # see STATUSES
    payment_gateway = Column(String(20), nullable=True)  # 'stripe', 'mercadopago', 'manual'

    # Stripe identifiers
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    latest_invoice_id = Column(String(255), nullable=True)

    # Mercado Pago identifiers
    mercadopago_subscription_id = Column(String(255), nullable=True, index=True)
    mercadopago_preference_id = Column(String(255), nullable=True)
    mercadopago_plan_id = Column(String(255), nullable=True)
    mercadopago_payment_id = Column(String(255), nullable=True)

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True, index=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    is_recurring = Column(Boolean, default=True, nullable=False)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    subscribed = Column(Boolean, default=False, nullable=False)  # derived, see sync_derived_fields
    expiration_notified = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    @property
    def is_entitled(self) -> bool:
        return self.plan != "free" and self.status in ENTITLED_STATUSES

    def snapshot(self) -> "SubscriptionSnapshot":
        return SubscriptionSnapshot(
            plan=self.plan,
            status=self.status,
            period_start=ensure_utc(self.current_period_start),
            period_end=ensure_utc(self.current_period_end),
            is_recurring=bool(self.is_recurring),
            payment_gateway=self.payment_gateway,
            cancel_at_period_end=bool(self.cancel_at_period_end),
        )

    def gateway_details(self) -> Optional[Union["StripeDetails", "MercadoPagoDetails"]]:
        """Identifier group of the gateway that owns this record"""
        if self.payment_gateway == "stripe":
            return StripeDetails(
                customer_id=self.stripe_customer_id,
                subscription_id=self.stripe_subscription_id,
                latest_invoice_id=self.latest_invoice_id,
            )
        if self.payment_gateway == "mercadopago":
            return MercadoPagoDetails(
                subscription_id=self.mercadopago_subscription_id,
                preference_id=self.mercadopago_preference_id,
                plan_id=self.mercadopago_plan_id,
                payment_id=self.mercadopago_payment_id,
            )
        return None

    def __repr__(self):
        return f"<UserSubscription user={self.user_id} plan={self.plan} status={self.status} gateway={self.payment_gateway}>"


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Gateway-independent view consumed by the entitlement gate"""
    plan: str
    status: str
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    is_recurring: bool
    payment_gateway: Optional[str] = None
    cancel_at_period_end: bool = False


@dataclass(frozen=True)
class StripeDetails:
    customer_id: Optional[str]
    subscription_id: Optional[str]
    latest_invoice_id: Optional[str]
    kind: str = "stripe"


@dataclass(frozen=True)
class MercadoPagoDetails:
    subscription_id: Optional[str]
    preference_id: Optional[str]
    plan_id: Optional[str]
    payment_id: Optional[str]
    kind: str = "mercadopago"


def sync_derived_fields(target: UserSubscription) -> None:
    """Recompute ``subscribed`` and enforce period ordering before every write"""
    plan = target.plan or "free"
    status = target.status or "active"
    if plan not in PLANS:
        raise ValueError(f"Unknown plan '{plan}' for user {target.user_id}")
    if status not in STATUSES:
        raise ValueError(f"Unknown subscription status '{status}' for user {target.user_id}")
    target.subscribed = plan != "free" and status in ENTITLED_STATUSES

    start = ensure_utc(target.current_period_start)
    end = ensure_utc(target.current_period_end)
    if start and end and start > end:
        raise ValueError(
            f"current_period_start {start.isoformat()} is after current_period_end {end.isoformat()} "
            f"for user {target.user_id}"
        )


@event.listens_for(UserSubscription, "before_insert")
def _before_insert(mapper, connection, target):
    sync_derived_fields(target)


@event.listens_for(UserSubscription, "before_update")
def _before_update(mapper, connection, target):
    sync_derived_fields(target)
