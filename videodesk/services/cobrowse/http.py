"""HTTP co-browse provider."""
import logging
from typing import Optional

import httpx

from videodesk.core.config import settings
from videodesk.core.exceptions import CobrowseError
from videodesk.services.cobrowse.base import CobrowseProvider
from videodesk.services.signaling.signals import CobrowseLink

logger = logging.getLogger(__name__)


class HttpCobrowseProvider(CobrowseProvider):
    """Creates sessions with ``POST {api_url}/sessions``."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = (api_url or settings.cobrowse_api_url or "").rstrip("/")
        self.api_key = api_key or settings.cobrowse_api_key
        self._client = client or httpx.AsyncClient(timeout=15.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_session(self) -> CobrowseLink:
        if not self.api_url:
            raise CobrowseError("COBROWSE_API_URL is not configured")

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = await self._client.post(f"{self.api_url}/sessions", headers=headers, json={})
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[COBROWSE] Session creation failed - Error: {type(e).__name__}: {e}")
            raise CobrowseError(f"Co-browse session could not be created: {e}") from e

        session_url = (body.get("sessionUrl") or body.get("url")) if isinstance(body, dict) else None
        if not session_url:
            raise CobrowseError("Co-browse provider returned no session URL")
        logger.info(f"[COBROWSE] Session created - url: {session_url}")
        return CobrowseLink(session_url=session_url)
