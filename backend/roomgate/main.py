"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from roomgate.core.config import settings, APP_VERSION
from roomgate.core.errors import RoomGateError
from roomgate.core.logging import setup_logging
from roomgate.core.middleware import global_exception_handler, security_middleware, setup_cors_middleware
from roomgate.core.otel import initialize_tracing, instrument_app, setup_otel_logging
from roomgate.db.redis import get_redis_client
from roomgate.db.session import engine, init_db
from roomgate.models import Base  # noqa: F401  registers all models with Base.metadata
from roomgate.services.identity_service import IdentityClient
from roomgate.services.media_service import MediaService
from roomgate.services.stripe_service import StripePayoutClient

from roomgate.api import chat, checkout, creator, media, purchases, rooms

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_tracing():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    app.state.payout_client = StripePayoutClient(
        settings.STRIPE_SECRET_KEY,
        settings.STRIPE_OPERATOR_ACCOUNT_ID
    )
    app.state.media_service = MediaService(
        settings.LIVEKIT_URL,
        settings.LIVEKIT_API_KEY,
        settings.LIVEKIT_API_SECRET,
        token_ttl_seconds=settings.MEDIA_TOKEN_TTL_SECONDS
    )
    app.state.identity_client = IdentityClient(
        settings.IDENTITY_API_URL,
        cache_ttl=settings.IDENTITY_CACHE_TTL
    )

    worker = None
    if settings.PAYMENT_WORKER_ENABLED:
        from roomgate.tasks.payment_worker import drain_running_tasks, payment_worker_task
        worker = asyncio.create_task(payment_worker_task(app.state.payout_client))
        logger.info("Payment worker started")
    else:
        logger.info("Payment worker disabled - run it as a separate process")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if worker is not None:
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        await drain_running_tasks()


# Create FastAPI app
app = FastAPI(
    title="RoomGate Backend",
    description="Paid-room access and video-conferencing gateway",
    version=APP_VERSION,
    lifespan=lifespan
)

if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    instrument_app(app, engine)

setup_cors_middleware(app)
app.middleware("http")(security_middleware)

# Include routers
app.include_router(rooms.router)
app.include_router(purchases.router)
app.include_router(creator.router)
app.include_router(media.router)
app.include_router(checkout.router)
app.include_router(chat.router)


@app.exception_handler(RoomGateError)
async def roomgate_error_handler(request: Request, exc: RoomGateError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


app.exception_handler(Exception)(global_exception_handler)


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
