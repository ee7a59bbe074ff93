"""SubscriptionEvent model"""
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime
from datetime import datetime, timezone
from kitchen_ai.models.base import Base


class SubscriptionEvent(Base):
    """Webhook event ledger for idempotency (Stripe and Mercado Pago)"""
    __tablename__ = "subscription_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    stripe_event_id = Column(String(255), unique=True, nullable=True, index=True)
    mercadopago_event_id = Column(String(255), unique=True, nullable=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    event_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
