"""Client-side media SDK interface.

These are the operations the call state machines need from a real-time media
provider: joining a session, publishing and subscribing tracks, broadcasting
string signals and observing stream lifecycle events.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from pydantic import BaseModel


class SessionEvent(str, Enum):
    """Event names emitted by sessions, publishers and subscribers."""

    STREAM_CREATED = "streamCreated"
    STREAM_DESTROYED = "streamDestroyed"
    CONNECTION_DESTROYED = "connectionDestroyed"
    VIDEO_ENABLED = "videoEnabled"
    VIDEO_DISABLED = "videoDisabled"
    MEDIA_STOPPED = "mediaStopped"
    SIGNAL = "signal"
    EXCEPTION = "exception"

    def __str__(self) -> str:
        return self.value


class VideoSource(str, Enum):
    """Where an outgoing video track comes from."""

    CAMERA = "camera"
    SCREEN = "screen"


class DeviceKind(str, Enum):
    VIDEO_INPUT = "videoinput"
    AUDIO_INPUT = "audioinput"
    AUDIO_OUTPUT = "audiooutput"


class DeviceInfo(BaseModel):
    """A local media device."""

    kind: DeviceKind
    device_id: str
    label: str = ""


class StreamHandle(BaseModel):
    """A published stream as seen by session participants."""

    stream_id: str
    connection_id: str
    name: str = ""
    has_video: bool = True
    has_audio: bool = True
    video_type: Optional[VideoSource] = None


class StreamEvent(BaseModel):
    stream: StreamHandle


class ConnectionEvent(BaseModel):
    connection_id: str


class SignalEvent(BaseModel):
    """A raw signal as delivered by the provider."""

    type: str
    data: str = ""
    from_connection_id: Optional[str] = None


class MediaEvent(BaseModel):
    """Track-level event from a publisher or subscriber."""

    target_id: str
    reason: Optional[str] = None


class ExceptionEvent(BaseModel):
    code: int = 0
    message: str = ""


class PublisherOptions(BaseModel):
    """Options for initializing a local publisher."""

    name: str = ""
    video_source: Optional[VideoSource] = VideoSource.CAMERA
    audio_source: bool = True
    publish_video: bool = True
    publish_audio: bool = True


EventHandler = Callable[[Any], Union[None, Awaitable[None]]]


def _event_key(event: Union[str, Enum]) -> str:
    return event.value if isinstance(event, Enum) else str(event)


class EventEmitter:
    """Named-event handler registry shared by all SDK objects."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}

    def on(self, event: Union[str, SessionEvent], handler: EventHandler) -> None:
        """Register a handler for an event."""
        self._handlers.setdefault(_event_key(event), []).append(handler)

    def off(self, event: Union[str, SessionEvent], handler: Optional[EventHandler] = None) -> None:
        """Remove one handler, or every handler when none is given."""
        key = _event_key(event)
        if handler is None:
            self._handlers.pop(key, None)
            return
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)

    def listeners(self, event: Union[str, SessionEvent]) -> List[EventHandler]:
        return list(self._handlers.get(_event_key(event), []))


class LocalMediaStream(ABC):
    """Hardware acquired from the local devices."""

    @abstractmethod
    def stop(self) -> None:
        """Stop every track and release the hardware."""
        pass


class MediaDevices(ABC):
    """Local media device access."""

    @abstractmethod
    async def get_user_media(self, video: bool, audio: bool) -> LocalMediaStream:
        """Acquire devices, raising MediaPermissionError if denied or busy."""
        pass

    @abstractmethod
    async def enumerate_devices(self) -> List[DeviceInfo]:
        """List physically present devices."""
        pass


class Publisher(EventEmitter, ABC):
    """A local outgoing track."""

    id: str
    options: PublisherOptions
    stream: Optional[StreamHandle] = None

    @property
    @abstractmethod
    def destroyed(self) -> bool:
        pass

    @abstractmethod
    def publish_video(self, enabled: bool) -> None:
        pass

    @abstractmethod
    def publish_audio(self, enabled: bool) -> None:
        pass

    @abstractmethod
    def destroy(self) -> None:
        """Unpublish if needed and release the underlying capture."""
        pass


class Subscriber(EventEmitter, ABC):
    """A remote track the local party receives."""

    id: str
    stream: StreamHandle


class MediaSession(EventEmitter, ABC):
    """A joined real-time session."""

    session_id: str

    @property
    @abstractmethod
    def connected(self) -> bool:
        pass

    @abstractmethod
    async def connect(self, token: str) -> None:
        """Join the session, raising ConnectError on failure."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def publish(self, publisher: Publisher) -> None:
        """Publish a track, raising PublishError on failure."""
        pass

    @abstractmethod
    async def unpublish(self, publisher: Publisher) -> None:
        pass

    @abstractmethod
    async def subscribe(self, stream: StreamHandle) -> Subscriber:
        """Subscribe to a remote stream, raising SubscribeError on failure."""
        pass

    @abstractmethod
    async def signal(self, type: str, data: str = "") -> None:
        """Broadcast a signal, raising SendError on local send failure."""
        pass


class MediaProvider(ABC):
    """Factory for sessions and publishers."""

    @abstractmethod
    def init_session(self, api_key: str, session_id: str) -> MediaSession:
        pass

    @abstractmethod
    async def init_publisher(self, options: PublisherOptions) -> Publisher:
        """Acquire capture for a new publisher, raising PublishError on failure."""
        pass
