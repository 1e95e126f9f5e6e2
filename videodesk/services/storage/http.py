"""HTTP client for the upload endpoint."""
import logging
import mimetypes
from typing import Optional

import httpx

from videodesk.core.config import settings
from videodesk.core.exceptions import UploadError
from videodesk.services.signaling.signals import FileRef
from videodesk.services.storage.base import FileStorage

logger = logging.getLogger(__name__)


class HttpFileStorage(FileStorage):
    """Uploads through ``POST /api/upload`` and downloads by URL."""

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=60.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def upload(self, data: bytes, filename: str, content_type: Optional[str] = None) -> FileRef:
        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        try:
            response = await self._client.post(
                "/api/upload",
                files={"file": (filename, data, content_type)},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[STORAGE] Upload failed - file: {filename}, Error: {type(e).__name__}: {e}")
            raise UploadError("File upload failed. Please try again.") from e
        return FileRef.model_validate(response.json())

    async def fetch(self, url: str) -> bytes:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UploadError(f"Download failed: {e}") from e
        return response.content
