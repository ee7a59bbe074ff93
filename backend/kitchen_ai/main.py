"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kitchen_ai.core.config import settings
from kitchen_ai.core.errors import ApiError, api_error_handler
from kitchen_ai.core.logging import setup_logging
from kitchen_ai.core.middleware import global_exception_handler, security_middleware, setup_cors_middleware
from kitchen_ai.core.otel import (
    initialize_otel, instrument_fastapi, instrument_httpx, instrument_sqlalchemy, setup_otel_logging
)
from kitchen_ai.db.redis import get_redis_client
from kitchen_ai.db.session import engine, init_db

# Import routers
from kitchen_ai.api import chat, cron, meal_plans, mercadopago, notifications, pricing, subscriptions

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
        instrument_sqlalchemy(engine)
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    # Redis only backs rate limiting and notification fan-out; both degrade without it
    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.warning(f"Redis connection failed, continuing without it: {e}")

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Kitchen AI Backend",
    description="Subscriptions, entitlements and AI meal planning for Kitchen AI",
    version="1.0.0",
    lifespan=lifespan
)

if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    instrument_fastapi(app)
    instrument_httpx()

setup_cors_middleware(app)
app.middleware("http")(security_middleware)

app.add_exception_handler(ApiError, api_error_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(subscriptions.router)
app.include_router(subscriptions.entitlement_router)
app.include_router(mercadopago.router)
app.include_router(pricing.router)
app.include_router(cron.router)
app.include_router(meal_plans.router)
app.include_router(chat.router)
app.include_router(notifications.router)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
