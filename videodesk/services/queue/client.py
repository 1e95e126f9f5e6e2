"""HTTP client for the call request queue."""
import logging
from typing import Any, Dict, List, Optional

import httpx

from videodesk.core.config import settings
from videodesk.core.exceptions import CallRequestNotFound, InputValidationError, ProviderError
from videodesk.services.queue.models import CallRequest, ResolveOutcome, SessionCredentials

logger = logging.getLogger(__name__)

_RESOLVE_PATHS = {
    ResolveOutcome.DECLINED: "decline",
    ResolveOutcome.JOINED: "joined",
    ResolveOutcome.ERRORED: "error",
}


class CallQueueClient:
    """Out-of-band RPC from the call clients to the queue server."""

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=15.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_request(self, name: str) -> SessionCredentials:
        """Ask the server for a new call request."""
        response = await self._post("/api/call-request", json={"name": name})
        if response.status_code == 400:
            raise InputValidationError(_detail(response))
        if response.status_code >= 400:
            raise ProviderError(f"Call could not be requested: {_detail(response)}")
        return SessionCredentials.model_validate(response.json())

    async def list_pending(self) -> List[CallRequest]:
        """Fetch pending call requests, oldest first."""
        try:
            response = await self._client.get("/api/call-requests")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(f"Could not load call requests: {e}") from e
        return [CallRequest.model_validate(item) for item in response.json()]

    async def resolve(self, request_id: str, outcome: ResolveOutcome) -> None:
        """
        Resolve a request on the server.

        Raises:
            CallRequestNotFound: If the server no longer holds the request
        """
        response = await self._post(f"/api/call-request/{request_id}/{_RESOLVE_PATHS[outcome]}")
        if response.status_code == 404:
            raise CallRequestNotFound(request_id)
        if response.status_code >= 400:
            raise ProviderError(f"Could not resolve call request: {_detail(response)}")

    async def fetch_token(
        self,
        session_id: str,
        user_type: str = "publisher",
        user_data: Optional[Dict[str, Any]] = None,
    ) -> SessionCredentials:
        """Get a role-scoped token for an existing session."""
        response = await self._post(
            "/api/token",
            json={"sessionId": session_id, "userType": user_type, "userData": user_data or {}},
        )
        if response.status_code >= 400:
            raise ProviderError(f"Failed to generate token: {_detail(response)}")
        return SessionCredentials.model_validate(response.json())

    async def _post(self, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.post(path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"[QUEUE CLIENT] Request failed - path: {path}, Error: {type(e).__name__}: {e}")
            raise ProviderError(f"Queue server unreachable: {e}") from e


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body)
    return str(body)
