"""In-process media provider.

Every party in one process shares a ``LoopbackMediaHub``. Events are delivered
asynchronously as tasks tracked by the hub, so tests can ``await hub.settle()``
to let every pending handler finish. Signals reach every connection in the
session, the sender included.
"""
import asyncio
import inspect
import logging
import uuid
from typing import Any, Dict, List, Optional, Set

from videodesk.core.exceptions import (
    ConnectError,
    MediaPermissionError,
    PublishError,
    SendError,
    SubscribeError,
)
from videodesk.services.media.base import (
    ConnectionEvent,
    DeviceInfo,
    DeviceKind,
    EventEmitter,
    LocalMediaStream,
    MediaDevices,
    MediaEvent,
    MediaProvider,
    MediaSession,
    Publisher,
    PublisherOptions,
    SessionEvent,
    SignalEvent,
    StreamEvent,
    StreamHandle,
    Subscriber,
    VideoSource,
)
from videodesk.services.sessions.loopback import decode_loopback_token

logger = logging.getLogger(__name__)


class LoopbackMediaHub:
    """Routes events between loopback sessions in one process."""

    def __init__(self):
        self.rooms: Dict[str, Dict[str, "LoopbackSession"]] = {}
        self.streams: Dict[str, Dict[str, "LoopbackPublisher"]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, emitter: EventEmitter, event: SessionEvent, payload: Any) -> None:
        """Schedule every handler of ``event`` on ``emitter``."""
        loop = asyncio.get_running_loop()
        for handler in emitter.listeners(event):
            task = loop.create_task(self._invoke(handler, event, payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _invoke(self, handler, event: SessionEvent, payload: Any) -> None:
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"[LOOPBACK] Handler for {event} raised - Error: {type(e).__name__}: {e}",
                exc_info=True,
            )

    async def settle(self) -> None:
        """Wait until no event handler is pending."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def connections(self, session_id: str) -> Dict[str, "LoopbackSession"]:
        return self.rooms.setdefault(session_id, {})

    def published(self, session_id: str) -> Dict[str, "LoopbackPublisher"]:
        return self.streams.setdefault(session_id, {})


class LoopbackDeviceStream(LocalMediaStream):
    def __init__(self, devices: "LoopbackDevices"):
        self._devices = devices
        self.stopped = False

    def stop(self) -> None:
        if not self.stopped:
            self.stopped = True
            self._devices.in_use -= 1


class LoopbackDevices(MediaDevices):
    """Configurable fake hardware.

    ``in_use`` counts acquired streams that were not stopped yet.
    """

    def __init__(
        self,
        video_inputs: int = 1,
        audio_inputs: int = 1,
        deny: bool = False,
        busy: bool = False,
    ):
        self.video_inputs = video_inputs
        self.audio_inputs = audio_inputs
        self.deny = deny
        self.busy = busy
        self.in_use = 0

    async def get_user_media(self, video: bool, audio: bool) -> LocalMediaStream:
        if self.deny:
            raise MediaPermissionError("Camera/Mic access denied", retryable=True)
        if self.busy:
            raise MediaPermissionError("Camera/Mic is in use by another application", retryable=True)
        if (video and not self.video_inputs) or (audio and not self.audio_inputs):
            raise MediaPermissionError("Requested device not found", retryable=False)
        self.in_use += 1
        return LoopbackDeviceStream(self)

    async def enumerate_devices(self) -> List[DeviceInfo]:
        devices = [
            DeviceInfo(kind=DeviceKind.VIDEO_INPUT, device_id=f"cam-{i}", label=f"Camera {i}")
            for i in range(self.video_inputs)
        ]
        devices += [
            DeviceInfo(kind=DeviceKind.AUDIO_INPUT, device_id=f"mic-{i}", label=f"Microphone {i}")
            for i in range(self.audio_inputs)
        ]
        return devices


class LoopbackPublisher(Publisher):
    def __init__(
        self,
        hub: LoopbackMediaHub,
        options: PublisherOptions,
        capture: Optional[LocalMediaStream] = None,
    ):
        EventEmitter.__init__(self)
        self.id = f"pub_{uuid.uuid4().hex[:12]}"
        self.hub = hub
        self.options = options
        self.stream = None
        self.session: Optional["LoopbackSession"] = None
        self.subscribers: List["LoopbackSubscriber"] = []
        self.video_enabled = options.video_source is not None and options.publish_video
        self.audio_enabled = options.audio_source and options.publish_audio
        self._capture = capture
        self._destroyed = False

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def publish_video(self, enabled: bool) -> None:
        if self.options.video_source is None or enabled == self.video_enabled:
            return
        self.video_enabled = enabled
        if self.stream:
            self.stream.has_video = enabled
        event = SessionEvent.VIDEO_ENABLED if enabled else SessionEvent.VIDEO_DISABLED
        payload = MediaEvent(target_id=self.id, reason="publishVideo")
        self.hub.dispatch(self, event, payload)
        for subscriber in self.subscribers:
            subscriber.stream.has_video = enabled
            self.hub.dispatch(subscriber, event, MediaEvent(target_id=subscriber.id, reason="publishVideo"))

    def publish_audio(self, enabled: bool) -> None:
        if not self.options.audio_source:
            return
        self.audio_enabled = enabled
        if self.stream:
            self.stream.has_audio = enabled

    def stop_capture(self) -> None:
        """Simulate the OS ending the capture, e.g. the user stopping a screen share."""
        self.hub.dispatch(self, SessionEvent.MEDIA_STOPPED, MediaEvent(target_id=self.id, reason="mediaStopped"))

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        if self.session is not None:
            self.session._remove_stream(self)
        if self._capture is not None:
            self._capture.stop()
            self._capture = None


class LoopbackSubscriber(Subscriber):
    def __init__(self, stream: StreamHandle):
        EventEmitter.__init__(self)
        self.id = f"sub_{uuid.uuid4().hex[:12]}"
        self.stream = stream.model_copy()


class LoopbackSession(MediaSession):
    def __init__(self, hub: LoopbackMediaHub, provider: "LoopbackMediaProvider", session_id: str):
        EventEmitter.__init__(self)
        self.hub = hub
        self.provider = provider
        self.session_id = session_id
        self.connection_id: Optional[str] = None
        self.publishers: List[LoopbackPublisher] = []

    @property
    def connected(self) -> bool:
        return self.connection_id is not None

    async def connect(self, token: str) -> None:
        if self.provider.fail_connect:
            raise ConnectError("Could not connect to session.")
        if not token:
            raise ConnectError("A token is required")
        try:
            claims = decode_loopback_token(token)
        except ValueError:
            claims = None
        if claims is not None and claims.get("sid") != self.session_id:
            raise ConnectError("Token does not match session")
        if self.connected:
            return

        self.connection_id = f"conn_{uuid.uuid4().hex[:12]}"
        self.hub.connections(self.session_id)[self.connection_id] = self
        for publisher in self.hub.published(self.session_id).values():
            self.hub.dispatch(self, SessionEvent.STREAM_CREATED, StreamEvent(stream=publisher.stream))

    async def disconnect(self) -> None:
        if not self.connected:
            return
        for publisher in list(self.publishers):
            self._remove_stream(publisher)
        connection_id = self.connection_id
        self.hub.connections(self.session_id).pop(connection_id, None)
        self.connection_id = None
        for other in self._others():
            self.hub.dispatch(other, SessionEvent.CONNECTION_DESTROYED, ConnectionEvent(connection_id=connection_id))

    async def publish(self, publisher: Publisher) -> None:
        if not self.connected:
            raise PublishError("Session is not connected")
        if publisher.destroyed:
            raise PublishError("Publisher was destroyed")
        if self.provider.publish_failures > 0:
            self.provider.publish_failures -= 1
            raise PublishError("Publishing to session failed.")
        if publisher.stream is not None:
            return

        handle = StreamHandle(
            stream_id=f"str_{uuid.uuid4().hex[:12]}",
            connection_id=self.connection_id,
            name=publisher.options.name,
            has_video=publisher.video_enabled,
            has_audio=publisher.audio_enabled,
            video_type=publisher.options.video_source,
        )
        publisher.stream = handle
        publisher.session = self
        self.publishers.append(publisher)
        self.hub.published(self.session_id)[handle.stream_id] = publisher
        self.hub.dispatch(publisher, SessionEvent.STREAM_CREATED, StreamEvent(stream=handle))
        for other in self._others():
            self.hub.dispatch(other, SessionEvent.STREAM_CREATED, StreamEvent(stream=handle))

    async def unpublish(self, publisher: Publisher) -> None:
        self._remove_stream(publisher)

    def _remove_stream(self, publisher: LoopbackPublisher) -> None:
        handle = publisher.stream
        if handle is None:
            return
        self.hub.published(self.session_id).pop(handle.stream_id, None)
        if publisher in self.publishers:
            self.publishers.remove(publisher)
        publisher.stream = None
        publisher.subscribers.clear()
        self.hub.dispatch(publisher, SessionEvent.STREAM_DESTROYED, StreamEvent(stream=handle))
        for other in self._others():
            self.hub.dispatch(other, SessionEvent.STREAM_DESTROYED, StreamEvent(stream=handle))

    async def subscribe(self, stream: StreamHandle) -> Subscriber:
        publisher = self.hub.published(self.session_id).get(stream.stream_id)
        if not self.connected or publisher is None:
            raise SubscribeError(f"Stream not available: {stream.stream_id}")
        subscriber = LoopbackSubscriber(publisher.stream)
        publisher.subscribers.append(subscriber)
        return subscriber

    async def signal(self, type: str, data: str = "") -> None:
        if not self.connected:
            raise SendError("Session is not connected")
        if self.provider.fail_signals:
            raise SendError("Signal could not be sent")
        event = SignalEvent(type=type, data=data, from_connection_id=self.connection_id)
        for connection in list(self.hub.connections(self.session_id).values()):
            self.hub.dispatch(connection, SessionEvent.SIGNAL, event)
            self.hub.dispatch(connection, f"signal:{type}", event)

    def _others(self) -> List["LoopbackSession"]:
        return [
            session
            for session in self.hub.connections(self.session_id).values()
            if session is not self
        ]


class LoopbackMediaProvider(MediaProvider):
    """One party's view of the loopback hub.

    The failure knobs let tests exercise provider errors:
    ``fail_publisher_init`` holds video sources whose publisher init fails,
    ``publish_failures`` counts upcoming publish calls that fail.
    """

    def __init__(self, hub: LoopbackMediaHub, devices: Optional[LoopbackDevices] = None):
        self.hub = hub
        self.devices = devices or LoopbackDevices()
        self.fail_connect = False
        self.fail_signals = False
        self.fail_publisher_init: Set[Optional[VideoSource]] = set()
        self.publish_failures = 0
        self.sessions: List[LoopbackSession] = []
        self.publishers: List[LoopbackPublisher] = []

    def init_session(self, api_key: str, session_id: str) -> MediaSession:
        session = LoopbackSession(self.hub, self, session_id)
        self.sessions.append(session)
        return session

    async def init_publisher(self, options: PublisherOptions) -> Publisher:
        if options.video_source in self.fail_publisher_init:
            raise PublishError(f"Publisher init failed for source {options.video_source}")

        capture = None
        wants_camera = options.video_source == VideoSource.CAMERA
        if wants_camera or options.audio_source:
            try:
                capture = await self.devices.get_user_media(video=wants_camera, audio=options.audio_source)
            except MediaPermissionError as e:
                raise PublishError(str(e)) from e

        publisher = LoopbackPublisher(self.hub, options, capture)
        self.publishers.append(publisher)
        return publisher
