"""LiveKit media rooms: idempotent room creation and join tokens"""
import logging
from datetime import timedelta

from livekit import api

from roomgate.core.errors import UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)


class MediaService:
    """Thin wrapper over the LiveKit server SDK.

    Constructed once at startup from settings. The underlying HTTP client is
    bound to an event loop, so one is opened per room-service call.
    """

    def __init__(self, url: str, api_key: str, api_secret: str, token_ttl_seconds: int = 3600):
        if not url or not api_key or not api_secret:
            raise ValueError("LiveKit url, api key and api secret are required")
        # Room service speaks HTTP even when clients are given a ws(s):// URL
        if url.startswith("ws"):
            url = "http" + url[2:]
        self.url = url
        self.api_key = api_key
        self.api_secret = api_secret
        self.token_ttl = timedelta(seconds=token_ttl_seconds)

    def create_join_token(self, room_id: str, identity: str) -> str:
        """Short-lived JWT that lets ``identity`` join, publish and subscribe in ``room_id``"""
        if not room_id or not identity:
            raise ValidationError("roomId and userId are required to generate a media token")

        token = (
            api.AccessToken(self.api_key, self.api_secret)
            .with_identity(identity)
            .with_ttl(self.token_ttl)
            .with_grants(api.VideoGrants(
                room_join=True,
                room=room_id,
                can_publish=True,
                can_subscribe=True,
            ))
        )
        return token.to_jwt()

    async def ensure_room(self, room_id: str) -> bool:
        """Create the media room if needed.

        Returns:
            True if the room was created, False if it already existed

        Raises:
            UpstreamFailure: any other media service error
        """
        lkapi = api.LiveKitAPI(self.url, self.api_key, self.api_secret)
        try:
            await lkapi.room.create_room(api.CreateRoomRequest(name=room_id))
            logger.info(f"Created media room {room_id}")
            return True
        except Exception as e:
            if "already exists" in str(e).lower():
                return False
            logger.error(f"Failed to ensure media room {room_id}: {e}")
            raise UpstreamFailure("Failed to ensure room") from e
        finally:
            await lkapi.aclose()
