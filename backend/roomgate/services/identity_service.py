"""Identity provider client - resolves user tokens to external identities"""
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
import redis

from roomgate.core.errors import AuthenticationRequired, UpstreamFailure
from roomgate.db.redis import get_cached_identity, set_cached_identity

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")


@dataclass
class ExternalIdentity:
    id: str
    email: Optional[str] = None


class IdentityClient:
    """Calls ``GET {base_url}/me`` with the user's bearer token.

    Resolved identities are cached in Redis under a SHA-256 digest of the
    token for ``cache_ttl`` seconds.
    """

    def __init__(self, base_url: str, cache_ttl: int = 60, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self.transport = transport

    @staticmethod
    def _digest(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    async def resolve(self, token: str) -> ExternalIdentity:
        """Resolve a user token.

        Raises:
            AuthenticationRequired: token missing or rejected by the provider
            UpstreamFailure: provider unreachable or returned garbage
        """
        if not token:
            raise AuthenticationRequired()

        digest = self._digest(token)
        try:
            cached = get_cached_identity(digest)
        except redis.RedisError as e:
            logger.warning(f"Identity cache read failed: {e}")
            cached = None
        if cached:
            return ExternalIdentity(id=cached["id"], email=cached.get("email"))

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    f"{self.base_url}/me",
                    headers={"Authorization": f"Bearer {token}"}
                )
        except httpx.HTTPError as e:
            logger.error(f"Identity provider request failed: {e}")
            raise UpstreamFailure("Identity provider unavailable") from e

        if response.status_code in (401, 403):
            security_logger.warning("Identity provider rejected user token")
            raise AuthenticationRequired()
        if response.status_code != 200:
            logger.error(f"Identity provider returned {response.status_code}: {response.text[:500]}")
            raise UpstreamFailure("Identity provider error")

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamFailure("Identity provider returned invalid JSON") from e

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise UpstreamFailure("Identity provider response missing user id")

        identity = ExternalIdentity(id=str(user_id), email=data.get("email"))
        try:
            set_cached_identity(digest, {"id": identity.id, "email": identity.email}, self.cache_ttl)
        except redis.RedisError as e:
            logger.warning(f"Identity cache write failed: {e}")
        return identity
