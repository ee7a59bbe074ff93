"""Redis client for rate limiting and real-time notification fan-out"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

import redis

from kitchen_ai.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment the fixed-window counter for identifier and return the current count"""
    key = f"ratelimit:{identifier}"
    client = get_redis_client()
    count = client.incr(key)
    if count == 1:
        client.expire(key, window)
    return int(count)


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited."""
    window = settings.RATE_LIMIT_STRICT_WINDOW if strict else settings.RATE_LIMIT_WINDOW
    max_requests = settings.RATE_LIMIT_STRICT_REQUESTS if strict else settings.RATE_LIMIT_REQUESTS

    current_count = increment_rate_limit(identifier, window)
    return current_count <= max_requests


def notifications_channel(user_id: str) -> str:
    return f"user:{user_id}:notifications"


def publish_user_event(user_id: str, event_type: str, data: Dict[str, Any]) -> int:
    """Publish an event on the user's notification channel

    Returns the number of subscribers that received it. Raises on Redis errors;
    callers decide whether delivery is best-effort.
    """
    channel = notifications_channel(user_id)
    event_json = json.dumps({
        "type": event_type,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }, default=str)
    receivers = get_redis_client().publish(channel, event_json)
    logger.debug(f"Published {event_type} to {channel}: {receivers} subscriber(s)")
    return receivers
