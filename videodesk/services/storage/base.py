"""File storage interface."""
from abc import ABC, abstractmethod
from typing import Optional

from videodesk.services.signaling.signals import FileRef


class FileStorage(ABC):
    """Abstract base class for binary file storage reachable by URL."""

    @abstractmethod
    async def upload(self, data: bytes, filename: str, content_type: Optional[str] = None) -> FileRef:
        """Store a file and return its public name and URL."""
        pass

    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """Download a stored file."""
        pass
