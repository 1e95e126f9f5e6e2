"""Co-browse session provider interface."""
from abc import ABC, abstractmethod

from videodesk.services.signaling.signals import CobrowseLink


class CobrowseProvider(ABC):
    """Allocates screen-mirroring sessions out-of-band."""

    @abstractmethod
    async def create_session(self) -> CobrowseLink:
        """Create a session and return the URL the other party joins."""
        pass
