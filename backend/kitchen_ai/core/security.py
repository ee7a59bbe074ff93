"""Security dependencies, rate limiting and API access logging"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import Header, Request

from kitchen_ai.core.config import settings
from kitchen_ai.core.errors import ConfigurationError, UnauthorizedError
from kitchen_ai.db.redis import check_rate_limit as redis_check_rate_limit

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")


@dataclass(frozen=True)
class AuthUser:
    """Claims returned by the auth provider for a bearer token"""
    id: str
    email: Optional[str] = None


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def fetch_auth_user(token: str) -> AuthUser:
    """Validate a bearer token with the auth provider and return its claims"""
    if not settings.SUPABASE_URL:
        raise ConfigurationError("Auth provider is not configured")

    try:
        with httpx.Client(timeout=settings.AUTH_TIMEOUT_SECONDS) as client:
            response = client.get(
                f"{settings.SUPABASE_URL.rstrip('/')}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": settings.SUPABASE_ANON_KEY,
                },
            )
    except httpx.HTTPError as e:
        security_logger.error(f"Auth provider unreachable: {e}")
        raise UnauthorizedError("No autorizado")

    if response.status_code != 200:
        security_logger.warning(f"Token rejected by auth provider (status {response.status_code})")
        raise UnauthorizedError("No autorizado")

    data = response.json()
    user_id = data.get("id")
    if not user_id:
        raise UnauthorizedError("No autorizado")
    return AuthUser(id=user_id, email=data.get("email"))


def require_auth(authorization: Optional[str] = Header(None)) -> AuthUser:
    """Dependency: Require a valid bearer token, return the authenticated user"""
    token = _bearer_token(authorization)
    if not token:
        raise UnauthorizedError("No autorizado")
    return fetch_auth_user(token)


def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Dependency: scheduled jobs must present ``Bearer <CRON_SECRET>``"""
    if not settings.CRON_SECRET:
        security_logger.error("CRON_SECRET not configured; rejecting scheduled job call")
        raise UnauthorizedError("Unauthorized")

    token = _bearer_token(authorization) or ""
    if not hmac.compare_digest(token, settings.CRON_SECRET):
        security_logger.warning("Scheduled job called with an invalid secret")
        raise UnauthorizedError("Unauthorized")


def get_client_identifier(request: Request) -> str:
    """Get a unique identifier for rate limiting"""
    token = _bearer_token(request.headers.get("Authorization"))
    if token:
        return f"token:{hashlib.sha256(token.encode()).hexdigest()[:32]}"

    # Fallback to IP address
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit

    Args:
        identifier: Client identifier (token hash or IP)
        strict: If True, use stricter rate limits for state-changing operations

    Returns:
        True if within limit, False if exceeded
    """
    return redis_check_rate_limit(identifier, strict=strict)


def log_api_access(
    request: Request,
    status_code: int = 200,
    error: Optional[str] = None
):
    """Log detailed API access information"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "client_ip": client_ip,
        "country": request.headers.get("CF-IPCountry"),
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "origin": request.headers.get("Origin", "none"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
