"""Exchange rate cache and country/gateway detection tests"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import httpx
import pytest

from kitchen_ai.services.country_service import detect_country, detect_gateway
from kitchen_ai.services.exchange_rate import (
    ExchangeRateCache, fetch_rate_from_api, get_exchange_rate, usd_to_ars
)

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


@pytest.mark.high
class TestExchangeRate:
    """Cached for the TTL, fallback rate when the API fails"""

    def test_fetches_then_serves_from_cache(self, fixed_exchange_rate):
        cache = ExchangeRateCache(ttl_seconds=300)

        first = get_exchange_rate(now=NOW, cache=cache)
        second = get_exchange_rate(now=NOW + timedelta(seconds=299), cache=cache)

        assert first["source"] == "api"
        assert first["rate"] == 1200.0
        assert first["compra"] == 1180.0
        assert second == {"rate": 1200.0, "source": "cache", "timestamp": NOW.isoformat()}
        assert fixed_exchange_rate.call_count == 1

    def test_refetches_after_ttl(self, fixed_exchange_rate):
        cache = ExchangeRateCache(ttl_seconds=300)
        get_exchange_rate(now=NOW, cache=cache)

        fixed_exchange_rate.return_value = {"venta": 1250.0}
        refreshed = get_exchange_rate(now=NOW + timedelta(seconds=300), cache=cache)

        assert refreshed["source"] == "api"
        assert refreshed["rate"] == 1250.0

    def test_fallback_is_not_cached(self, fixed_exchange_rate):
        cache = ExchangeRateCache(ttl_seconds=300)
        fixed_exchange_rate.side_effect = httpx.ConnectError("no route")

        result = get_exchange_rate(now=NOW, cache=cache)

        assert result["source"] == "fallback"
        assert result["rate"] == 1200.0
        assert "no route" in result["error"]
        assert cache.entry is None

    def test_invalid_rate_rejected(self):
        request = httpx.Request("GET", "https://dolarapi.test/v1/dolares/bolsa")
        response = httpx.Response(200, json={"compra": 10, "venta": 0}, request=request)
        with patch("kitchen_ai.services.exchange_rate.httpx.Client") as mock_client_cls:
            mock_client_cls.return_value.__enter__.return_value.get.return_value = response
            with pytest.raises(ValueError):
                fetch_rate_from_api()

    def test_usd_to_ars_rounds_half_up(self):
        assert usd_to_ars(4.99, 1200) == 5988
        assert usd_to_ars(0.5, 1) == 1
        assert usd_to_ars(14.99, 1150.5) == 17246

    def test_route(self, client):
        body = client.post("/get-exchange-rate").json()
        assert body["rate"] == 1200.0
        assert body["source"] in ("api", "cache")


@pytest.mark.high
class TestCountryDetection:
    """Gateway routing by CF-IPCountry, preference and the Mercado Pago-only flag"""

    def test_only_mercadopago_pins_everyone(self):
        result = detect_gateway("US", "stripe", only_mercadopago=True)
        assert result["gateway"] == "mercadopago"
        assert result["currency"] == "ARS"
        assert result["country"] == "US"
        assert result["source"] == "ip_detection"
        assert result["exchangeRate"] == 1200.0

    def test_only_mercadopago_without_header(self):
        result = detect_gateway(None, only_mercadopago=True)
        assert result["country"] == "AR"
        assert result["source"] == "default"

    def test_argentina_routes_to_mercadopago(self):
        result = detect_gateway("ar", only_mercadopago=False)
        assert result["gateway"] == "mercadopago"
        assert result["country"] == "AR"

    def test_other_countries_use_stripe(self):
        result = detect_gateway("MX", only_mercadopago=False)
        assert result["gateway"] == "stripe"
        assert result["currency"] == "USD"
        assert "exchangeRate" not in result

    def test_preference_wins_over_location(self):
        result = detect_gateway("AR", "stripe", only_mercadopago=False)
        assert result["gateway"] == "stripe"
        assert result["source"] == "preference"

    def test_no_header_defaults_to_stripe(self):
        result = detect_gateway("  ", only_mercadopago=False)
        assert result == {"country": "US", "gateway": "stripe", "currency": "USD", "source": "default", "available": True}

    def test_unexpected_failure_defaults_to_argentina(self):
        with patch("kitchen_ai.services.country_service.detect_gateway", side_effect=RuntimeError("boom")):
            result = detect_country("BR")
        assert result["gateway"] == "mercadopago"
        assert result["error"] == "boom"

    def test_route_reads_cloudflare_header(self, client):
        response = client.post("/detect-country", headers={"CF-IPCountry": "PE"}, json={})
        assert response.status_code == 200
        body = response.json()
        assert body["country"] == "PE"
        assert body["gateway"] == "mercadopago"

    def test_route_without_body(self, client):
        response = client.post("/detect-country")
        assert response.status_code == 200
        assert response.json()["source"] == "default"
