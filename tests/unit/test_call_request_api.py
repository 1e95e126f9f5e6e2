"""Unit tests for the call request, token and callback endpoints."""
import pytest
from unittest.mock import AsyncMock

from videodesk.core.dependencies import get_session_provider
from videodesk.core.exceptions import ProviderError
from videodesk.main import app
from videodesk.services.sessions.loopback import decode_loopback_token


class TestCallRequestAPI:
    """Test the call request queue endpoints."""

    def test_create_call_request(self, test_client, call_queue):
        """Test POST /api/call-request returns join credentials."""
        response = test_client.post("/api/call-request", json={"name": "Alice"})

        assert response.status_code == 200
        data = response.json()
        assert data["apiKey"] == "loopback"
        assert data["sessionId"].startswith("lb_")
        assert data["token"]
        assert data["requestId"] == call_queue.list_pending()[0].id

    def test_create_call_request_without_name(self, test_client, call_queue):
        """Test that a blank name is a 400 and queues nothing."""
        response = test_client.post("/api/call-request", json={"name": ""})

        assert response.status_code == 400
        assert len(call_queue) == 0

    def test_create_call_request_provider_error(self, test_client, call_queue, monkeypatch):
        """Test that a provider failure is a 500 with the error message."""
        monkeypatch.setattr(
            call_queue.provider, "create_session", AsyncMock(side_effect=ProviderError("boom"))
        )

        response = test_client.post("/api/call-request", json={"name": "Alice"})

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "Error creating session"
        assert "boom" in data["error"]

    def test_list_call_requests(self, test_client):
        """Test GET /api/call-requests lists pending requests oldest first."""
        test_client.post("/api/call-request", json={"name": "Alice"})
        test_client.post("/api/call-request", json={"name": "Bob"})

        response = test_client.get("/api/call-requests")

        assert response.status_code == 200
        data = response.json()
        assert [item["name"] for item in data] == ["Alice", "Bob"]
        assert set(data[0]) == {"id", "name", "sessionId", "token", "timestamp"}

    @pytest.mark.parametrize(
        "action,message",
        [
            ("decline", "Call request declined"),
            ("joined", "Call joined and removed"),
            ("error", "Call request removed due to error"),
        ],
    )
    def test_resolve_call_request(self, test_client, call_queue, action, message):
        """Test each resolve route removes the request."""
        request_id = test_client.post("/api/call-request", json={"name": "Alice"}).json()["requestId"]

        response = test_client.post(f"/api/call-request/{request_id}/{action}")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": message}
        assert len(call_queue) == 0

    def test_resolve_twice_is_not_found(self, test_client):
        """Test that a second resolve gets 404."""
        request_id = test_client.post("/api/call-request", json={"name": "Alice"}).json()["requestId"]
        test_client.post(f"/api/call-request/{request_id}/joined")

        response = test_client.post(f"/api/call-request/{request_id}/decline")

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Call request not found"}


class TestTokenAPI:
    """Test the token endpoint."""

    def test_generate_token(self, test_client):
        """Test POST /api/token issues a token for an existing session."""
        session_id = test_client.post("/api/call-request", json={"name": "Alice"}).json()["sessionId"]

        response = test_client.post(
            "/api/token",
            json={"sessionId": session_id, "userType": "subscriber", "userData": {"name": "Agent"}},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["apiKey"] == "loopback"
        assert data["sessionId"] == session_id
        claims = decode_loopback_token(data["token"])
        assert claims["sid"] == session_id
        assert claims["role"] == "subscriber"
        assert claims["data"] == {"name": "Agent"}

    def test_generate_token_defaults_to_publisher(self, test_client):
        """Test that userType defaults to publisher."""
        session_id = test_client.post("/api/call-request", json={"name": "Alice"}).json()["sessionId"]

        response = test_client.post("/api/token", json={"sessionId": session_id})

        assert response.status_code == 200
        assert decode_loopback_token(response.json()["token"])["role"] == "publisher"

    def test_generate_token_requires_session_id(self, test_client):
        """Test that a missing session id is a 400."""
        response = test_client.post("/api/token", json={"userType": "publisher"})

        assert response.status_code == 400

    def test_generate_token_provider_error(self, test_client):
        """Test that an unknown session surfaces as a 500."""
        response = test_client.post("/api/token", json={"sessionId": "lb_unknown"})

        assert response.status_code == 500
        assert response.json()["success"] is False

    def test_generate_token_uses_injected_provider(self, test_client):
        """Test that the route takes its provider from the dependency."""
        provider = AsyncMock()
        provider.api_key = "key-123"
        provider.generate_token.return_value = "tok"
        app.dependency_overrides[get_session_provider] = lambda: provider

        response = test_client.post("/api/token", json={"sessionId": "room-1"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True, "apiKey": "key-123", "sessionId": "room-1", "token": "tok"
        }


class TestMiscAPI:
    """Test health and provider callback endpoints."""

    def test_health(self, test_client):
        """Test GET /health."""
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_callback_json(self, test_client):
        """Test POST /api/callback acknowledges JSON events."""
        response = test_client.post("/api/callback", json={"event": "connectionCreated"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Callback received"}

    def test_callback_form(self, test_client):
        """Test POST /api/callback acknowledges form-encoded events."""
        response = test_client.post("/api/callback", data={"StatusCallbackEvent": "room-ended"})

        assert response.status_code == 200
        assert response.json()["success"] is True
