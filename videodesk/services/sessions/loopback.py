"""In-process session provider for development and tests."""
import base64
import json
import time
import uuid
from typing import Any, Dict, Optional, Set

from videodesk.core.exceptions import ProviderError
from videodesk.services.sessions.base import SessionProvider, TokenRole


class LoopbackSessionProvider(SessionProvider):
    """Session provider that allocates ids locally.

    Pairs with the loopback media hub, which accepts any token whose session id
    matches the session being joined.
    """

    def __init__(self, api_key: str = "loopback", default_ttl: int = 7 * 24 * 60 * 60):
        self._api_key = api_key
        self.default_ttl = default_ttl
        self.sessions: Set[str] = set()

    @property
    def api_key(self) -> str:
        return self._api_key

    async def create_session(self) -> str:
        session_id = f"lb_{uuid.uuid4().hex}"
        self.sessions.add(session_id)
        return session_id

    async def generate_token(
        self,
        session_id: str,
        role: TokenRole = TokenRole.PUBLISHER,
        data: Optional[Dict[str, Any]] = None,
        ttl_seconds: Optional[int] = None,
    ) -> str:
        if session_id not in self.sessions:
            raise ProviderError(f"Unknown session: {session_id}")
        claims = {
            "sid": session_id,
            "role": role.value,
            "data": data or {},
            "exp": int(time.time()) + (ttl_seconds or self.default_ttl),
        }
        encoded = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode()
        return f"T1=={encoded}"


def decode_loopback_token(token: str) -> Dict[str, Any]:
    """Decode the claims of a loopback token."""
    if not token.startswith("T1=="):
        raise ValueError("not a loopback token")
    return json.loads(base64.urlsafe_b64decode(token[4:].encode()))
