"""FastAPI dependencies."""
from functools import lru_cache

from fastapi import Request

from videodesk.core.config import settings
from videodesk.services.queue.queue import CallRequestQueue
from videodesk.services.sessions.base import SessionProvider
from videodesk.services.sessions.loopback import LoopbackSessionProvider
from videodesk.services.sessions.twilio_video import TwilioVideoSessionProvider
from videodesk.services.storage.local import LocalFileStorage


@lru_cache
def get_session_provider() -> SessionProvider:
    """Get the process-wide session provider."""
    if settings.session_provider.lower() == "twilio":
        return TwilioVideoSessionProvider(settings)
    return LoopbackSessionProvider(default_ttl=settings.token_ttl_seconds)


@lru_cache
def get_call_queue() -> CallRequestQueue:
    """Get the process-wide call request queue."""
    return CallRequestQueue(provider=get_session_provider())


def get_file_storage(request: Request) -> LocalFileStorage:
    """Get upload storage that builds URLs from the configured or request base URL."""
    base_url = settings.public_base_url or str(request.base_url)
    return LocalFileStorage(settings.upload_dir, public_base_url=base_url)
