"""Behaviour shared by the customer and agent call clients."""
import asyncio
import logging
from typing import Dict, Optional, Set

from videodesk.core.config import settings
from videodesk.core.exceptions import CallStateError, ProviderError
from videodesk.services.call.models import CallFailure, CallSession
from videodesk.services.call.states import CallState, TERMINAL_STATES
from videodesk.services.cobrowse.base import CobrowseProvider
from videodesk.services.collaboration.manager import CollaborationManager
from videodesk.services.media.base import (
    ConnectionEvent,
    ExceptionEvent,
    MediaDevices,
    MediaEvent,
    MediaProvider,
    MediaSession,
    Publisher,
    SessionEvent,
    StreamEvent,
    Subscriber,
)
from videodesk.services.signaling.channel import SignalingChannel
from videodesk.services.signaling.signals import Role
from videodesk.services.signing.compositor import SignatureCompositor
from videodesk.services.storage.base import FileStorage

logger = logging.getLogger(__name__)


class CallClient:
    """One party's call state machine.

    All coordination with the other party goes through ``channel`` and the
    provider's stream events; ``session`` is only ever mutated here.
    """

    role: Role
    transitions: Dict[CallState, Set[CallState]]
    log_tag = "CALL"

    def __init__(
        self,
        media: MediaProvider,
        devices: MediaDevices,
        storage: Optional[FileStorage] = None,
        compositor: Optional[SignatureCompositor] = None,
        cobrowse: Optional[CobrowseProvider] = None,
        view_ready_timeout: Optional[float] = None,
        auto_view_ready: bool = True,
    ):
        self.media = media
        self.devices = devices
        self.view_ready_timeout = (
            view_ready_timeout
            if view_ready_timeout is not None
            else settings.view_ready_timeout_seconds
        )
        self.session = CallSession(local_role=self.role)
        self.channel = SignalingChannel(self.role)
        self.collaboration = CollaborationManager(
            self.session, self.channel, storage=storage, compositor=compositor, cobrowse=cobrowse
        )
        self.media_session: Optional[MediaSession] = None
        self.subscriber: Optional[Subscriber] = None
        self._remote_view_ready = asyncio.Event()
        if auto_view_ready:
            self._remote_view_ready.set()

    @property
    def state(self) -> CallState:
        return self.session.state

    @property
    def is_terminal(self) -> bool:
        return self.session.state in TERMINAL_STATES

    def mark_view_ready(self) -> None:
        """Signal that the remote video container exists and can receive a subscriber."""
        self._remote_view_ready.set()

    def _transition(self, new_state: CallState) -> None:
        old_state = self.session.state
        if new_state == old_state:
            return
        if new_state not in self.transitions.get(old_state, set()):
            raise CallStateError(
                f"Cannot go from {old_state.value} to {new_state.value}", old_state.value
            )
        self._on_leave(old_state)
        self.session.state = new_state
        logger.info(f"[{self.log_tag}] State changed: {old_state.value} -> {new_state.value}")

    def _on_leave(self, old_state: CallState) -> None:
        """Hook run synchronously before leaving a state."""

    def _record_failure(self, reason: str, retryable: bool) -> None:
        self.session.failure = CallFailure(reason=reason, retryable=retryable)
        self._transition(CallState.FAILED)

    # Session wiring

    def _bind(self, media_session: MediaSession) -> None:
        self.media_session = media_session
        self.session.session_id = media_session.session_id
        self.channel.attach(media_session)
        media_session.on(SessionEvent.STREAM_CREATED, self._on_stream_created)
        media_session.on(SessionEvent.STREAM_DESTROYED, self._on_stream_destroyed)
        media_session.on(SessionEvent.CONNECTION_DESTROYED, self._on_connection_destroyed)
        media_session.on(SessionEvent.EXCEPTION, self._on_exception)

    def _unbind(self, media_session: MediaSession) -> None:
        self.channel.detach()
        media_session.off(SessionEvent.STREAM_CREATED, self._on_stream_created)
        media_session.off(SessionEvent.STREAM_DESTROYED, self._on_stream_destroyed)
        media_session.off(SessionEvent.CONNECTION_DESTROYED, self._on_connection_destroyed)
        media_session.off(SessionEvent.EXCEPTION, self._on_exception)

    async def _remove_publisher(self, publisher: Optional[Publisher]) -> None:
        """Fully unpublish and destroy a local track."""
        if publisher is None:
            return
        if publisher.stream is not None and self.media_session is not None:
            try:
                await self.media_session.unpublish(publisher)
            except ProviderError as e:
                logger.warning(f"[{self.log_tag}] Unpublish failed - Error: {e}")
        publisher.destroy()

    async def _disconnect(self) -> None:
        """Leave the media session. Safe to call more than once."""
        self.subscriber = None
        self.session.has_remote_stream = False
        self.session.has_remote_video = False
        self.session.has_local_video = False
        media_session = self.media_session
        if media_session is None:
            return
        self.media_session = None
        self._unbind(media_session)
        try:
            await media_session.disconnect()
        except ProviderError as e:
            logger.warning(f"[{self.log_tag}] Disconnect failed - Error: {e}")
        logger.info(f"[{self.log_tag}] Session disconnected - session: {media_session.session_id}")

    # Remote stream events

    async def _on_stream_created(self, event: StreamEvent) -> None:
        if self.is_terminal or self.media_session is None:
            return
        stream = event.stream
        try:
            await asyncio.wait_for(self._remote_view_ready.wait(), timeout=self.view_ready_timeout)
        except asyncio.TimeoutError:
            self.session.last_error = "Unable to initialize the remote video view."
            logger.error(f"[{self.log_tag}] Remote view not ready, not subscribing - stream: {stream.stream_id}")
            return

        if self.is_terminal or self.media_session is None:
            return
        try:
            subscriber = await self.media_session.subscribe(stream)
        except ProviderError as e:
            logger.error(f"[{self.log_tag}] Subscribe error - stream: {stream.stream_id}, Error: {e}")
            return

        subscriber.on(SessionEvent.VIDEO_ENABLED, self._on_remote_video_enabled)
        subscriber.on(SessionEvent.VIDEO_DISABLED, self._on_remote_video_disabled)
        self.subscriber = subscriber
        self.session.has_remote_stream = True
        self.session.has_remote_video = stream.has_video
        self.session.remote_name = stream.name or None
        self.session.remote_left = False
        logger.info(
            f"[{self.log_tag}] Subscribed to remote stream - stream: {stream.stream_id}, "
            f"name: {stream.name}, video: {stream.has_video}"
        )

    async def _on_stream_destroyed(self, event: StreamEvent) -> None:
        if self.subscriber is None or self.subscriber.stream.stream_id != event.stream.stream_id:
            return
        self.subscriber = None
        self.session.has_remote_stream = False
        self.session.has_remote_video = False
        if not self.is_terminal:
            self.session.remote_left = True
            logger.info(f"[{self.log_tag}] Remote stream destroyed - stream: {event.stream.stream_id}")

    async def _on_connection_destroyed(self, event: ConnectionEvent) -> None:
        if not self.is_terminal:
            self.session.remote_left = True
            logger.info(f"[{self.log_tag}] Remote connection destroyed - connection: {event.connection_id}")

    async def _on_exception(self, event: ExceptionEvent) -> None:
        logger.error(f"[{self.log_tag}] Provider exception - code: {event.code}, message: {event.message}")

    async def _on_remote_video_enabled(self, event: MediaEvent) -> None:
        self.session.has_remote_video = True

    async def _on_remote_video_disabled(self, event: MediaEvent) -> None:
        self.session.has_remote_video = False

    async def _on_local_video_enabled(self, event: MediaEvent) -> None:
        self.session.has_local_video = True

    async def _on_local_video_disabled(self, event: MediaEvent) -> None:
        self.session.has_local_video = False
