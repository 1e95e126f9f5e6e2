"""Unit tests for the out-of-band provider clients."""
import base64
import json
import time

import httpx
import pytest
from unittest.mock import Mock
from twilio.base.exceptions import TwilioException

from videodesk.core.config import Settings
from videodesk.core.exceptions import (
    CallRequestNotFound,
    CobrowseError,
    InputValidationError,
    ProviderError,
    SessionConfigurationError,
)
from videodesk.services.cobrowse.http import HttpCobrowseProvider
from videodesk.services.queue.client import CallQueueClient
from videodesk.services.queue.models import ResolveOutcome
from videodesk.services.sessions.base import TokenRole
from videodesk.services.sessions.twilio_video import MAX_TOKEN_TTL_SECONDS, TwilioVideoSessionProvider


def twilio_settings(**overrides) -> Settings:
    values = {
        "twilio_account_sid": "AC" + "0" * 32,
        "twilio_api_key_sid": "SK" + "0" * 32,
        "twilio_api_key_secret": "secret",
    }
    values.update(overrides)
    return Settings(**values)


def jwt_claims(token: str) -> dict:
    segment = token.split(".")[1]
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://queue.test")


class TestTwilioVideoSessionProvider:
    """Test rooms and access tokens."""

    def test_missing_credentials(self):
        """Test the provider refuses to start without credentials."""
        with pytest.raises(SessionConfigurationError):
            TwilioVideoSessionProvider(twilio_settings(twilio_api_key_secret=None), client=Mock())

    @pytest.mark.asyncio
    async def test_create_session_returns_room_sid(self):
        """Test a group room is created and its SID returned."""
        client = Mock()
        client.video.v1.rooms.create.return_value = Mock(sid="RM123")
        provider = TwilioVideoSessionProvider(twilio_settings(), client=client)

        assert await provider.create_session() == "RM123"
        kwargs = client.video.v1.rooms.create.call_args.kwargs
        assert kwargs["type"] == "group"
        assert kwargs["unique_name"].startswith("videodesk-")

    @pytest.mark.asyncio
    async def test_create_session_failure(self):
        """Test a Twilio failure surfaces as ProviderError."""
        client = Mock()
        client.video.v1.rooms.create.side_effect = TwilioException("boom")
        provider = TwilioVideoSessionProvider(twilio_settings(), client=client)

        with pytest.raises(ProviderError):
            await provider.create_session()

    @pytest.mark.asyncio
    async def test_generate_token(self):
        """Test tokens are signed JWTs."""
        provider = TwilioVideoSessionProvider(twilio_settings(), client=Mock())

        token = await provider.generate_token("RM123", TokenRole.SUBSCRIBER, {"name": "Sam"})

        assert isinstance(token, str)
        assert token.count(".") == 2
        assert provider.api_key == "SK" + "0" * 32

    @pytest.mark.asyncio
    async def test_token_lifetime_capped_at_a_day(self):
        """Test the week-long default lifetime is cut to what Twilio accepts."""
        provider = TwilioVideoSessionProvider(twilio_settings(token_ttl_seconds=7 * 24 * 60 * 60), client=Mock())

        claims = jwt_claims(await provider.generate_token("RM123"))

        remaining = claims["exp"] - time.time()
        assert MAX_TOKEN_TTL_SECONDS - 60 <= remaining <= MAX_TOKEN_TTL_SECONDS

    @pytest.mark.asyncio
    async def test_short_token_lifetime_kept(self):
        """Test lifetimes under a day are used as given."""
        provider = TwilioVideoSessionProvider(twilio_settings(), client=Mock())

        claims = jwt_claims(await provider.generate_token("RM123", ttl_seconds=600))

        assert 540 <= claims["exp"] - time.time() <= 600


class TestHttpCobrowseProvider:
    """Test co-browse session creation."""

    @pytest.mark.asyncio
    async def test_create_session(self):
        """Test the session URL is read from the response."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"sessionUrl": "https://cb.test/s/9"})

        provider = HttpCobrowseProvider("https://cb.test/api", "key", client=mock_client(handler))

        link = await provider.create_session()

        assert link.session_url == "https://cb.test/s/9"
        assert seen == {"auth": "Bearer key", "url": "https://cb.test/api/sessions"}
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_server_error(self):
        """Test provider errors become CobrowseError."""
        provider = HttpCobrowseProvider(
            "https://cb.test/api", client=mock_client(lambda request: httpx.Response(503))
        )

        with pytest.raises(CobrowseError):
            await provider.create_session()

    @pytest.mark.asyncio
    async def test_missing_url(self):
        """Test a response without a URL is an error."""
        provider = HttpCobrowseProvider(
            "https://cb.test/api", client=mock_client(lambda request: httpx.Response(200, json={}))
        )

        with pytest.raises(CobrowseError):
            await provider.create_session()


class TestCallQueueClientErrors:
    """Test status codes map to the right exceptions."""

    @pytest.mark.asyncio
    async def test_resolve_not_found(self):
        """Test a 404 on resolve raises CallRequestNotFound."""
        client = CallQueueClient(
            "http://queue.test",
            client=mock_client(lambda request: httpx.Response(404, json={"success": False})),
        )

        with pytest.raises(CallRequestNotFound):
            await client.resolve("gone", ResolveOutcome.JOINED)

    @pytest.mark.asyncio
    async def test_create_request_validation(self):
        """Test a 400 on create raises InputValidationError."""
        client = CallQueueClient(
            "http://queue.test",
            client=mock_client(lambda request: httpx.Response(400, json={"detail": "Name is required"})),
        )

        with pytest.raises(InputValidationError, match="Name is required"):
            await client.create_request("")

    @pytest.mark.asyncio
    async def test_unreachable_server(self):
        """Test transport errors become ProviderError."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = CallQueueClient("http://queue.test", client=mock_client(handler))

        with pytest.raises(ProviderError):
            await client.create_request("Alice")
