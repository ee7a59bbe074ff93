"""Middleware configuration for FastAPI application"""
import logging
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kitchen_ai.core.config import settings
from kitchen_ai.core.security import get_client_identifier, check_rate_limit, log_api_access

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

# Called by payment gateways and the scheduler, never by browsers
UNTHROTTLED_PATHS = (
    "/stripe-webhook",
    "/mercadopago-webhook",
    "/expire-subscriptions",
    "/notify-expiring-subscriptions",
    "/metrics",
    "/health",
)


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = [settings.FRONTEND_URL]
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:5173",
            "http://localhost:8080",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:8080"
        ])
    return allowed_origins


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type", "cf-ipcountry"],
    )


async def security_middleware(request: Request, call_next):
    """Rate limiting and API access logging"""
    status_code = 500
    error = None

    try:
        path = request.url.path
        if request.method != "OPTIONS" and path not in UNTHROTTLED_PATHS:
            identifier = get_client_identifier(request)
            is_state_changing = request.method in ["POST", "PATCH", "DELETE", "PUT"]
            try:
                allowed = check_rate_limit(identifier, strict=is_state_changing)
            except Exception as e:
                # Redis outage must not take the API down
                security_logger.error(f"Rate limit check failed, allowing request: {e}")
                allowed = True

            if not allowed:
                status_code = 429
                error = "Rate limit exceeded"
                security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
                response = JSONResponse(
                    status_code=429,
                    content={"error": "rate_limited", "message": "Demasiadas solicitudes. Por favor, espera un momento."}
                )
                origin = request.headers.get("Origin")
                if origin and origin in get_allowed_origins():
                    response.headers["Access-Control-Allow-Origin"] = origin
                    response.headers["Access-Control-Allow-Credentials"] = "true"
                return response

        response = await call_next(request)
        status_code = response.status_code
        return response

    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, status_code, error)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
