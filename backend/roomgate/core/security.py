"""Security dependencies, rate limiting and API access logging"""
import hashlib
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, Header, Request

from roomgate.core.config import settings
from roomgate.core.errors import AuthenticationRequired
from roomgate.db.redis import check_rate_limit as redis_check_rate_limit
from roomgate.services.identity_service import ExternalIdentity, IdentityClient

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")

INTERNAL_API_KEY_HEADER = "X-Internal-Api-Key"


def get_identity_client(request: Request) -> IdentityClient:
    return request.app.state.identity_client


def get_user_token(request: Request) -> Optional[str]:
    token = request.headers.get(settings.IDENTITY_TOKEN_HEADER)
    return token.strip() if token and token.strip() else None


async def require_auth(
    request: Request,
    identity_client: IdentityClient = Depends(get_identity_client)
) -> ExternalIdentity:
    """Dependency: require a valid identity-provider user token, return the external identity"""
    token = get_user_token(request)
    if not token:
        raise AuthenticationRequired()

    identity = await identity_client.resolve(token)
    request.state.external_user_id = identity.id
    return identity


def require_internal_key(
    x_internal_api_key: Optional[str] = Header(None, alias=INTERNAL_API_KEY_HEADER)
) -> None:
    """Dependency: server-to-server calls must present ``INTERNAL_API_KEY``"""
    expected = settings.INTERNAL_API_KEY
    if not expected or not x_internal_api_key or not secrets.compare_digest(x_internal_api_key, expected):
        security_logger.warning("Rejected internal API call with missing or invalid key")
        raise AuthenticationRequired("Invalid internal API key")


def get_client_identifier(request: Request) -> str:
    """Get a unique identifier for rate limiting"""
    token = get_user_token(request)
    if token:
        return f"user:{hashlib.sha256(token.encode()).hexdigest()[:32]}"

    # Fallback to IP address
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit

    Args:
        identifier: Client identifier (token digest or IP)
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
        "user_id": getattr(request.state, "external_user_id", None),
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "origin": request.headers.get("Origin", "none"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
