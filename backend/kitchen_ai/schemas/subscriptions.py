"""Pydantic schemas for subscriptions and payments"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class CheckoutRequest(BaseModel):
    plan: str


class MercadoPagoSubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan: str
    mercado_pago_email: Optional[str] = Field(None, alias="mercadoPagoEmail")


class DetectCountryRequest(BaseModel):
    preferred_gateway: Optional[str] = None

