"""Twilio Video session provider."""
import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from twilio.base.exceptions import TwilioException
from twilio.jwt.access_token import AccessToken
from twilio.jwt.access_token.grants import VideoGrant
from twilio.rest import Client

from videodesk.core.config import Settings
from videodesk.core.exceptions import ProviderError, SessionConfigurationError
from videodesk.services.sessions.base import SessionProvider, TokenRole

logger = logging.getLogger(__name__)

# Twilio rejects access tokens that live longer than a day
MAX_TOKEN_TTL_SECONDS = 24 * 60 * 60


class TwilioVideoSessionProvider(SessionProvider):
    """Session provider backed by Twilio Video group rooms.

    A room plays the part of a session and an access token with a
    ``VideoGrant`` for that room plays the part of a session token.
    """

    def __init__(self, settings: Settings, client: Optional[Client] = None):
        if not (
            settings.twilio_account_sid
            and settings.twilio_api_key_sid
            and settings.twilio_api_key_secret
        ):
            raise SessionConfigurationError(
                "TWILIO_ACCOUNT_SID, TWILIO_API_KEY_SID and TWILIO_API_KEY_SECRET are required"
            )
        self.account_sid = settings.twilio_account_sid
        self.api_key_sid = settings.twilio_api_key_sid
        self.api_key_secret = settings.twilio_api_key_secret
        self.default_ttl = settings.token_ttl_seconds
        self.client = client or Client(self.api_key_sid, self.api_key_secret, self.account_sid)

    @property
    def api_key(self) -> str:
        return self.api_key_sid

    async def create_session(self) -> str:
        """Create a group room and return its SID."""
        unique_name = f"videodesk-{uuid.uuid4().hex}"
        try:
            room = await asyncio.to_thread(
                self.client.video.v1.rooms.create,
                unique_name=unique_name,
                type="group",
            )
        except TwilioException as e:
            logger.error(f"[TWILIO VIDEO] Room creation failed - Error: {e}", exc_info=True)
            raise ProviderError(f"Error creating session: {e}") from e

        logger.info(f"[TWILIO VIDEO] Room created - sid: {room.sid}, name: {unique_name}")
        return room.sid

    async def generate_token(
        self,
        session_id: str,
        role: TokenRole = TokenRole.PUBLISHER,
        data: Optional[Dict[str, Any]] = None,
        ttl_seconds: Optional[int] = None,
    ) -> str:
        """Issue an access token scoped to one room."""
        name = str((data or {}).get("name") or uuid.uuid4().hex[:8])
        identity = f"{role.value}:{name}"
        try:
            token = AccessToken(
                self.account_sid,
                self.api_key_sid,
                self.api_key_secret,
                identity=identity,
                ttl=min(ttl_seconds or self.default_ttl, MAX_TOKEN_TTL_SECONDS),
            )
            token.add_grant(VideoGrant(room=session_id))
            jwt = token.to_jwt()
        except TwilioException as e:
            raise ProviderError(f"Failed to generate token: {e}") from e
        return jwt.decode() if isinstance(jwt, bytes) else jwt
