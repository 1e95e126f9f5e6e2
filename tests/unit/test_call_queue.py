"""Unit tests for the call request queue."""
import pytest
from unittest.mock import AsyncMock

from videodesk.core.exceptions import CallRequestNotFound, InputValidationError, ProviderError
from videodesk.services.queue.models import ResolveOutcome
from videodesk.services.queue.queue import CallRequestQueue
from videodesk.services.sessions.loopback import decode_loopback_token


class TestCallRequestQueue:
    """Test request creation and resolution."""

    @pytest.mark.asyncio
    async def test_create_request_returns_credentials(self, call_queue, session_provider):
        """Test creating a request allocates a session and a token."""
        credentials = await call_queue.create_request("Alice")

        assert credentials.api_key == session_provider.api_key
        assert credentials.session_id in session_provider.sessions
        assert credentials.request_id is not None
        claims = decode_loopback_token(credentials.token)
        assert claims["sid"] == credentials.session_id
        assert claims["role"] == "publisher"
        assert claims["data"] == {"name": "Alice"}

    @pytest.mark.asyncio
    async def test_create_request_appears_in_pending(self, call_queue):
        """Test a created request is pending with the customer's name."""
        credentials = await call_queue.create_request("  Alice  ")

        pending = call_queue.list_pending()
        assert len(pending) == 1
        assert pending[0].id == credentials.request_id
        assert pending[0].display_name == "Alice"
        assert pending[0].session_id == credentials.session_id
        assert pending[0].session_token == credentials.token

    @pytest.mark.asyncio
    async def test_pending_is_oldest_first(self, call_queue):
        """Test pending requests keep insertion order."""
        first = await call_queue.create_request("Alice")
        second = await call_queue.create_request("Bob")

        assert [r.id for r in call_queue.list_pending()] == [first.request_id, second.request_id]

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, call_queue):
        """Test that a blank name never reaches the provider."""
        with pytest.raises(InputValidationError):
            await call_queue.create_request("   ")
        assert len(call_queue) == 0

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_queue_unchanged(self):
        """Test that a provider error is surfaced and nothing is queued."""
        provider = AsyncMock()
        provider.create_session.side_effect = RuntimeError("provider down")
        queue = CallRequestQueue(provider=provider)

        with pytest.raises(ProviderError):
            await queue.create_request("Alice")
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_resolve_removes_request(self, call_queue):
        """Test that resolving a request removes it."""
        credentials = await call_queue.create_request("Alice")

        resolved = call_queue.resolve(credentials.request_id, ResolveOutcome.JOINED)

        assert resolved.id == credentials.request_id
        assert call_queue.get(credentials.request_id) is None
        assert call_queue.list_pending() == []

    @pytest.mark.asyncio
    async def test_second_resolve_not_found(self, call_queue):
        """Test that only the first resolver wins, whatever the outcome."""
        credentials = await call_queue.create_request("Alice")
        call_queue.resolve(credentials.request_id, ResolveOutcome.JOINED)

        for outcome in ResolveOutcome:
            with pytest.raises(CallRequestNotFound):
                call_queue.resolve(credentials.request_id, outcome)

    def test_resolve_unknown_id(self, call_queue):
        """Test resolving an id that never existed."""
        with pytest.raises(CallRequestNotFound):
            call_queue.resolve("does-not-exist", ResolveOutcome.DECLINED)
