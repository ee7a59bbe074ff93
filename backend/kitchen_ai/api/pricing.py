"""Country detection and exchange rate routes"""
from typing import Optional

from fastapi import APIRouter, Header

from kitchen_ai.schemas.subscriptions import DetectCountryRequest
from kitchen_ai.services.country_service import detect_country
from kitchen_ai.services.exchange_rate import get_exchange_rate

router = APIRouter(tags=["pricing"])


@router.post("/detect-country")
def detect_country_route(
    body: Optional[DetectCountryRequest] = None,
    cf_ipcountry: Optional[str] = Header(None, alias="CF-IPCountry")
):
    """Pick the payment gateway and currency for the caller"""
    preferred = body.preferred_gateway if body else None
    return detect_country(cf_ipcountry, preferred)


@router.post("/get-exchange-rate")
def get_exchange_rate_route():
    """USD to ARS rate (cached)"""
    return get_exchange_rate()
