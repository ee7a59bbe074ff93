"""Country to payment gateway routing"""
import logging
from typing import Any, Dict, Optional

from kitchen_ai.core.config import settings
from kitchen_ai.services.exchange_rate import get_exchange_rate

logger = logging.getLogger(__name__)

GATEWAY_CURRENCY = {"mercadopago": "ARS", "stripe": "USD"}


def _with_rate(result: Dict[str, Any]) -> Dict[str, Any]:
    if result.get("currency") == "ARS":
        result["exchangeRate"] = get_exchange_rate()["rate"]
    return result


def detect_gateway(
    country_header: Optional[str],
    preferred_gateway: Optional[str] = None,
    only_mercadopago: Optional[bool] = None
) -> Dict[str, Any]:
    """Resolve ``{country, gateway, currency, source, available, exchangeRate?}``

    ``only_mercadopago`` defaults to the USE_ONLY_MERCADOPAGO setting and, when
    on, pins every visitor to Mercado Pago/ARS regardless of location.
    """
    if only_mercadopago is None:
        only_mercadopago = settings.USE_ONLY_MERCADOPAGO

    country = country_header.strip().upper() if country_header and country_header.strip() else None

    if only_mercadopago:
        return _with_rate({
            "country": country or "AR",
            "gateway": "mercadopago",
            "currency": "ARS",
            "source": "ip_detection" if country else "default",
            "available": True,
        })

    if preferred_gateway in GATEWAY_CURRENCY:
        return _with_rate({
            "country": country or "US",
            "gateway": preferred_gateway,
            "currency": GATEWAY_CURRENCY[preferred_gateway],
            "source": "preference",
            "available": True,
        })

    if country is None:
        return {
            "country": "US",
            "gateway": "stripe",
            "currency": "USD",
            "source": "default",
            "available": True,
        }

    gateway = "mercadopago" if country == "AR" else "stripe"
    return _with_rate({
        "country": country,
        "gateway": gateway,
        "currency": GATEWAY_CURRENCY[gateway],
        "source": "ip_detection",
        "available": True,
    })


def detect_country(country_header: Optional[str], preferred_gateway: Optional[str] = None) -> Dict[str, Any]:
    """detect_gateway with the Argentina default on unexpected failures"""
    try:
        return detect_gateway(country_header, preferred_gateway)
    except Exception as e:
        logger.error(f"Country detection failed, defaulting to AR: {e}", exc_info=True)
        return {
            "country": "AR",
            "gateway": "mercadopago",
            "currency": "ARS",
            "source": "default",
            "available": True,
            "error": str(e),
        }
