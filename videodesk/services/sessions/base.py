"""Session provider interface."""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional


class TokenRole(str, Enum):
    """Roles a session token can carry."""

    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"
    MODERATOR = "moderator"

    def __str__(self) -> str:
        return self.value


class SessionProvider(ABC):
    """Abstract base class for real-time media session providers."""

    @property
    @abstractmethod
    def api_key(self) -> str:
        """Public key clients pass along with the session id."""
        pass

    @abstractmethod
    async def create_session(self) -> str:
        """Create a routed media session and return its id."""
        pass

    @abstractmethod
    async def generate_token(
        self,
        session_id: str,
        role: TokenRole = TokenRole.PUBLISHER,
        data: Optional[Dict[str, Any]] = None,
        ttl_seconds: Optional[int] = None,
    ) -> str:
        """Issue a token that lets one participant join the session."""
        pass
