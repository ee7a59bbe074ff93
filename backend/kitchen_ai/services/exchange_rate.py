"""ARS/USD exchange rate lookup with a process-local TTL cache"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx

from kitchen_ai.core.config import settings
from kitchen_ai.core.metrics import exchange_rate_fetches_counter, exchange_rate_gauge
from kitchen_ai.utils.dates import utcnow

logger = logging.getLogger(__name__)


@dataclass
class CachedRate:
    value: float
    fetched_at: datetime


class ExchangeRateCache:
    """Holds the last fetched rate; staleness is a pure function of ``now``

    Concurrent cold callers may each fetch; the last writer wins.
    """

    def __init__(self, ttl_seconds: int):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._entry: Optional[CachedRate] = None
        self._lock = threading.Lock()

    @property
    def entry(self) -> Optional[CachedRate]:
        return self._entry

    def is_stale(self, now: datetime) -> bool:
        entry = self._entry
        return entry is None or (now - entry.fetched_at) >= self.ttl

    def store(self, value: float, now: datetime) -> CachedRate:
        with self._lock:
            self._entry = CachedRate(value=value, fetched_at=now)
            return self._entry

    def clear(self) -> None:
        with self._lock:
            self._entry = None


rate_cache = ExchangeRateCache(settings.EXCHANGE_RATE_TTL_SECONDS)


def fetch_rate_from_api() -> Dict[str, Any]:
    """Fetch the MEP (bolsa) quote; raises on transport errors or a malformed body"""
    with httpx.Client(timeout=5.0) as client:
        response = client.get(settings.EXCHANGE_RATE_URL)
        response.raise_for_status()
        data = response.json()

    rate = data.get("venta")
    if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
        raise ValueError(f"Invalid rate received from API: {rate!r}")
    return data


def get_exchange_rate(now: Optional[datetime] = None, cache: ExchangeRateCache = rate_cache) -> Dict[str, Any]:
    """Return ``{rate, source, timestamp}`` where source is cache, api or fallback"""
    now = now or utcnow()

    if not cache.is_stale(now):
        entry = cache.entry
        exchange_rate_fetches_counter.labels(source="cache").inc()
        return {"rate": entry.value, "source": "cache", "timestamp": entry.fetched_at.isoformat()}

    try:
        data = fetch_rate_from_api()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Exchange rate lookup failed, using fallback {settings.EXCHANGE_RATE_FALLBACK}: {e}")
        exchange_rate_fetches_counter.labels(source="fallback").inc()
        return {
            "rate": settings.EXCHANGE_RATE_FALLBACK,
            "source": "fallback",
            "error": str(e),
            "timestamp": now.isoformat(),
        }

    entry = cache.store(float(data["venta"]), now)
    exchange_rate_fetches_counter.labels(source="api").inc()
    exchange_rate_gauge.set(entry.value)
    logger.info(f"Exchange rate refreshed: {entry.value} ARS/USD")
    return {
        "rate": entry.value,
        "source": "api",
        "timestamp": now.isoformat(),
        "compra": data.get("compra"),
        "venta": data.get("venta"),
        "fechaActualizacion": data.get("fechaActualizacion"),
    }


def usd_to_ars(amount_usd: float, rate: float) -> int:
    """Convert a USD list price to whole pesos (half rounds up)"""
    return int(amount_usd * rate + 0.5)
