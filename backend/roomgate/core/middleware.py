"""Middleware configuration for FastAPI application"""
import logging

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from roomgate.core.config import settings
from roomgate.core.security import get_client_identifier, check_rate_limit, log_api_access

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

# Never rate limited: commerce platform retries and probes must always get through
RATE_LIMIT_EXEMPT_PATHS = frozenset({
    "/api/purchases/webhook",
    "/health",
    "/metrics",
})


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = [settings.FRONTEND_URL]
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ])
    return allowed_origins


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


async def security_middleware(request: Request, call_next):
    """Rate limiting and API access logging"""
    status_code = 500
    error = None

    try:
        path = request.url.path
        if path not in RATE_LIMIT_EXEMPT_PATHS and request.method != "OPTIONS":
            identifier = get_client_identifier(request)
            is_state_changing = request.method in ["POST", "PATCH", "DELETE", "PUT"]
            if not check_rate_limit(identifier, strict=is_state_changing):
                status_code = 429
                error = "Rate limit exceeded"
                security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
                response = Response(
                    content='{"error": "Rate limit exceeded. Please try again later."}',
                    status_code=429,
                    media_type="application/json"
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
