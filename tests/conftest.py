"""Shared test fixtures and configuration."""
import io
import os
import tempfile

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Set test environment variables before importing app
os.environ.setdefault("SESSION_PROVIDER", "loopback")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="videodesk-uploads-"))
os.environ.setdefault("WAIT_FOR_AGENT_TIMEOUT_SECONDS", "5")
os.environ.setdefault("VIEW_READY_TIMEOUT_SECONDS", "1")

from videodesk.main import app
from videodesk.core.config import settings
from videodesk.core.dependencies import get_call_queue, get_session_provider
from videodesk.services.call.agent import AgentCall
from videodesk.services.call.customer import CustomerCall
from videodesk.services.media.loopback import LoopbackDevices, LoopbackMediaHub, LoopbackMediaProvider
from videodesk.services.queue.client import CallQueueClient
from videodesk.services.queue.queue import CallRequestQueue
from videodesk.services.sessions.loopback import LoopbackSessionProvider
from videodesk.services.storage.local import LocalFileStorage


TEST_BASE_URL = "http://testserver"


@pytest.fixture
def session_provider():
    """Fresh in-process session provider."""
    return LoopbackSessionProvider()


@pytest.fixture
def call_queue(session_provider):
    """Fresh call request queue backed by the loopback provider."""
    return CallRequestQueue(provider=session_provider)


@pytest.fixture
def override_dependencies(call_queue, session_provider):
    """Point the app at this test's queue and provider."""
    app.dependency_overrides[get_call_queue] = lambda: call_queue
    app.dependency_overrides[get_session_provider] = lambda: session_provider
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def test_client(override_dependencies):
    """Create FastAPI test client with overrides."""
    return TestClient(app)


@pytest.fixture
def upload_dir():
    """Directory the app serves uploads from."""
    os.makedirs(settings.upload_dir, exist_ok=True)
    return settings.upload_dir


@pytest.fixture
def storage(upload_dir):
    """Disk storage shared by both parties, as the server would use it."""
    return LocalFileStorage(upload_dir, public_base_url=TEST_BASE_URL)


@pytest.fixture
async def queue_client(override_dependencies):
    """Queue client talking to the app in-process."""
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=TEST_BASE_URL)
    client = CallQueueClient(base_url=TEST_BASE_URL, client=http)
    yield client
    await client.aclose()


@pytest.fixture
def hub():
    """Loopback media hub shared by every party in a test."""
    return LoopbackMediaHub()


@pytest.fixture
def customer_devices():
    return LoopbackDevices()


@pytest.fixture
def agent_devices():
    return LoopbackDevices()


@pytest.fixture
def customer_media(hub, customer_devices):
    return LoopbackMediaProvider(hub, customer_devices)


@pytest.fixture
def agent_media(hub, agent_devices):
    return LoopbackMediaProvider(hub, agent_devices)


@pytest.fixture
async def make_customer(queue_client, customer_media, customer_devices, storage, hub):
    """Factory for customer machines; every machine is closed after the test."""
    created = []

    def _make(**kwargs):
        kwargs.setdefault("storage", storage)
        customer = CustomerCall(
            queue_client,
            kwargs.pop("media", customer_media),
            kwargs.pop("devices", customer_devices),
            **kwargs,
        )
        created.append(customer)
        return customer

    yield _make

    for customer in created:
        await customer.close()
    await hub.settle()


@pytest.fixture
async def make_agent(queue_client, agent_media, agent_devices, storage, hub):
    """Factory for agent machines with camera and microphone enabled by default."""
    created = []

    def _make(**kwargs):
        kwargs.setdefault("storage", storage)
        kwargs.setdefault("enable_video", True)
        kwargs.setdefault("enable_audio", True)
        agent = AgentCall(
            queue_client,
            kwargs.pop("media", agent_media),
            kwargs.pop("devices", agent_devices),
            **kwargs,
        )
        created.append(agent)
        return agent

    yield _make

    for agent in created:
        await agent.close()
    await hub.settle()


@pytest.fixture
def connect_call(hub):
    """Run the request/pick handshake until both parties are Active."""
    async def _connect(customer, agent, name="Alice"):
        credentials = await customer.request_call(name)
        await agent.refresh_pending()
        await agent.pick_request(credentials.request_id)
        await hub.settle()
        return credentials
    return _connect


def make_png(size=(200, 100), color=(30, 90, 200, 255)) -> bytes:
    """Small solid PNG."""
    out = io.BytesIO()
    Image.new("RGBA", size, color).save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def signature_png():
    return make_png(size=(120, 40), color=(0, 0, 0, 255))


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test"
    )
