"""Disk-backed file storage served under /uploads."""
import asyncio
import logging
import time
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse, quote

from videodesk.core.exceptions import UploadError
from videodesk.services.signaling.signals import FileRef
from videodesk.services.storage.base import FileStorage

logger = logging.getLogger(__name__)

UPLOADS_PATH = "/uploads"


class LocalFileStorage(FileStorage):
    """Stores uploads as ``<epoch-ms>-<original name>`` in one directory."""

    def __init__(self, root: str, public_base_url: str = ""):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    async def upload(self, data: bytes, filename: str, content_type: Optional[str] = None) -> FileRef:
        original_name = Path(filename or "").name
        if not original_name:
            raise UploadError("No file uploaded or invalid file type")

        stored_name = f"{int(time.time() * 1000)}-{original_name}"
        try:
            await asyncio.to_thread(self._write, stored_name, data)
        except OSError as e:
            logger.error(f"[STORAGE] Write failed - file: {stored_name}, Error: {e}", exc_info=True)
            raise UploadError(f"File upload failed: {e}") from e

        url = f"{self.public_base_url}{UPLOADS_PATH}/{quote(stored_name)}"
        logger.info(f"[STORAGE] Stored upload - name: {original_name}, bytes: {len(data)}, url: {url}")
        return FileRef(name=original_name, url=url)

    def _write(self, stored_name: str, data: bytes) -> None:
        self.ensure_root()
        (self.root / stored_name).write_bytes(data)

    async def fetch(self, url: str) -> bytes:
        path = unquote(urlparse(url).path)
        prefix = f"{UPLOADS_PATH}/"
        if not path.startswith(prefix):
            raise UploadError(f"Not a stored upload: {url}")
        target = self.root / Path(path[len(prefix):]).name
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as e:
            raise UploadError(f"Could not read {url}: {e}") from e
