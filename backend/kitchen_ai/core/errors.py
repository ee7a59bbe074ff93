"""Domain exceptions rendered as JSON error bodies

Every error carries a stable machine code plus a user-facing message so the
frontend never has to parse message text.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors surfaced to API clients"""
    status_code = 500
    code = "internal_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.message}
        body.update(self.extra)
        return body


class BadRequestError(ApiError):
    status_code = 400
    code = "bad_request"


class UnauthorizedError(ApiError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(ApiError):
    status_code = 403
    code = "forbidden"


class NotFoundError(ApiError):
    status_code = 404
    code = "not_found"


class ConfigurationError(ApiError):
    """A required secret or endpoint is not configured"""
    status_code = 500
    code = "configuration_error"


class UpstreamError(ApiError):
    """A payment gateway, LLM or auth provider call failed"""
    status_code = 500
    code = "upstream_error"

    def __init__(self, message: str, provider: str, upstream_status: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.provider = provider
        self.upstream_status = upstream_status


class WebhookSignatureError(BadRequestError):
    code = "invalid_signature"


class EntitlementError(ApiError):
    """Raised when a generation request falls outside the paid period"""
    status_code = 403
    code = "subscription_required"


async def api_error_handler(request: Request, exc: ApiError):
    """Render ApiError subclasses as {"error": code, "message": ...}"""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
