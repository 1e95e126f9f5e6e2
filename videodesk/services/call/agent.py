"""Agent side of a call: pick a request, publish, screen share, hang up."""
import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional

from videodesk.core.config import settings
from videodesk.core.exceptions import (
    AlreadyHandledError,
    CallRequestNotFound,
    CallStateError,
    MediaPermissionError,
    ProviderError,
)
from videodesk.services.call.base import CallClient
from videodesk.services.call.states import AGENT_TRANSITIONS, CallState, PublishState
from videodesk.services.cobrowse.base import CobrowseProvider
from videodesk.services.media.base import (
    DeviceKind,
    MediaDevices,
    MediaEvent,
    MediaProvider,
    Publisher,
    PublisherOptions,
    SessionEvent,
    StreamEvent,
    VideoSource,
)
from videodesk.services.queue.client import CallQueueClient
from videodesk.services.queue.models import CallRequest, ResolveOutcome
from videodesk.services.signaling.signals import Role, Signal, SignalType
from videodesk.services.signing.compositor import SignatureCompositor
from videodesk.services.storage.base import FileStorage

logger = logging.getLogger(__name__)

ExitHook = Callable[[], Any]


class AgentCall(CallClient):
    """
    Agent call state machine.

    Idle -> Picking -> Connecting -> Active -> Ended. The agent has exactly one
    outgoing video slot: either the webcam publisher or the screen publisher.
    Replacing one with the other is serialized by ``_track_lock``.
    """

    role = Role.AGENT
    transitions = AGENT_TRANSITIONS
    log_tag = "AGENT CALL"

    def __init__(
        self,
        queue: CallQueueClient,
        media: MediaProvider,
        devices: MediaDevices,
        storage: Optional[FileStorage] = None,
        compositor: Optional[SignatureCompositor] = None,
        cobrowse: Optional[CobrowseProvider] = None,
        agent_name: str = "Agent",
        enable_video: Optional[bool] = None,
        enable_audio: Optional[bool] = None,
        view_ready_timeout: Optional[float] = None,
        auto_view_ready: bool = True,
        on_exit: Optional[ExitHook] = None,
    ):
        super().__init__(
            media,
            devices,
            storage=storage,
            compositor=compositor,
            cobrowse=cobrowse,
            view_ready_timeout=view_ready_timeout,
            auto_view_ready=auto_view_ready,
        )
        self.queue = queue
        self.agent_name = agent_name
        self.enable_video = settings.agent_enable_video if enable_video is None else enable_video
        self.enable_audio = settings.agent_enable_audio if enable_audio is None else enable_audio
        self.on_exit = on_exit

        self.pending: List[CallRequest] = []
        self.request: Optional[CallRequest] = None
        self.webcam_publisher: Optional[Publisher] = None
        self.screen_publisher: Optional[Publisher] = None
        self._track_lock = asyncio.Lock()
        self._exited = False

        self.channel.register(SignalType.END_CALL, self._on_end_call)
        self.channel.register(SignalType.MEDIA_FAILED, self._on_media_failed)

    # Queue

    async def refresh_pending(self) -> List[CallRequest]:
        """Reload the pending request list from the server."""
        self.pending = await self.queue.list_pending()
        return self.pending

    async def decline_request(self, request_id: str) -> None:
        """Drop a request without joining. The customer is not signalled."""
        try:
            await self.queue.resolve(request_id, ResolveOutcome.DECLINED)
            logger.info(f"[AGENT CALL] Declined call request - request: {request_id}")
        except CallRequestNotFound:
            logger.info(f"[AGENT CALL] Call request already handled - request: {request_id}")
        self.pending = [r for r in self.pending if r.id != request_id]

    async def pick_request(self, request_id: str) -> None:
        """
        Claim a pending request and join its session.

        Raises:
            AlreadyHandledError: If another agent, a decline or a timeout got there first
            ProviderError: If the token fetch or the session join failed
            CallStateError: If the agent is already in a call
        """
        if self.state not in (CallState.IDLE, CallState.FAILED):
            raise CallStateError("Already handling a call", self.state.value)

        request = self._find_pending(request_id)
        if request is None:
            await self.refresh_pending()
            request = self._find_pending(request_id)
        if request is None:
            raise AlreadyHandledError(request_id)

        self._transition(CallState.PICKING)
        self.session.failure = None
        self.session.last_error = None
        try:
            await self.queue.resolve(request_id, ResolveOutcome.JOINED)
        except CallRequestNotFound:
            logger.info(f"[AGENT CALL] Call request already handled - request: {request_id}")
            self.session.last_error = "This call request was already handled."
            self._transition(CallState.IDLE)
            self.pending = [r for r in self.pending if r.id != request_id]
            raise AlreadyHandledError(request_id)
        except ProviderError as e:
            logger.error(f"[AGENT CALL] Could not claim call request - request: {request_id}, Error: {e}")
            self.session.last_error = "Could not claim the call request."
            self._transition(CallState.IDLE)
            raise

        self.request = request
        self.pending = [r for r in self.pending if r.id != request_id]
        self._transition(CallState.CONNECTING)
        logger.info(f"[AGENT CALL] Picked call request - request: {request_id}, customer: {request.display_name}")

        try:
            credentials = await self.queue.fetch_token(
                request.session_id, "publisher", {"name": self.agent_name}
            )
            self._ensure_connecting()
            media_session = self.media.init_session(credentials.api_key, request.session_id)
            self._bind(media_session)
            await media_session.connect(credentials.token)
        except ProviderError as e:
            logger.error(f"[AGENT CALL] Session join failed - session: {request.session_id}, Error: {e}")
            self.session.last_error = "Could not connect to session."
            if self.state == CallState.CONNECTING:
                self._record_failure("could not connect to session", retryable=True)
                await self._release()
            raise
        if self.state != CallState.CONNECTING:
            # Torn down mid-connect; the release already ran against this session.
            await media_session.disconnect()
            raise CallStateError("Call was torn down while joining", self.state.value)

        await self._detect_devices()
        if self._wants_devices():
            async with self._track_lock:
                await self._start_webcam()
        else:
            logger.info("[AGENT CALL] Joining without local media")
        self._ensure_connecting()

        await self.channel.send_best_effort(SignalType.CALL_ACCEPTED, "Agent accepted the call")
        self._transition(CallState.ACTIVE)

    # Local tracks

    async def toggle_local_video(self) -> bool:
        """Mute or unmute outgoing camera video. No-op without a camera or while screen sharing."""
        publisher = self.webcam_publisher
        if (
            publisher is None
            or publisher.options.video_source is None
            or self.session.is_screen_sharing
        ):
            return self.session.local_video_on
        enabled = not self.session.local_video_on
        publisher.publish_video(enabled)
        self.session.local_video_on = enabled
        self.session.has_local_video = enabled
        return enabled

    async def toggle_local_audio(self) -> bool:
        """Mute or unmute the microphone. No-op without a microphone or while screen sharing."""
        publisher = self.webcam_publisher
        if publisher is None or not publisher.options.audio_source or self.session.is_screen_sharing:
            return self.session.local_audio_on
        enabled = not self.session.local_audio_on
        publisher.publish_audio(enabled)
        self.session.local_audio_on = enabled
        return enabled

    async def toggle_screen_share(self) -> bool:
        """Swap the outgoing track between webcam and screen. Returns whether sharing."""
        if self.state != CallState.ACTIVE:
            raise CallStateError("Screen sharing needs an active call", self.state.value)
        async with self._track_lock:
            if self.session.is_screen_sharing:
                await self._stop_screen_share()
            else:
                await self._start_screen_share()
        return self.session.is_screen_sharing

    async def toggle_video_assist(self) -> bool:
        """Ask the customer to turn their camera on or off."""
        return await self.collaboration.toggle_video_assist()

    async def retry_media(self) -> bool:
        """Try publishing the webcam again after a device was busy or denied."""
        if self.state != CallState.ACTIVE:
            raise CallStateError("No active call", self.state.value)
        async with self._track_lock:
            if self.webcam_publisher is not None or self.session.is_screen_sharing:
                return True
            await self._detect_devices()
            if not self._wants_devices():
                return False
            return await self._start_webcam()

    # Ending

    async def end_call(self) -> None:
        """Hang up, tell the customer, and run the exit hook once."""
        if not self.is_terminal:
            self._transition(CallState.ENDED)
            await self.channel.send_best_effort(SignalType.END_CALL, "Agent ended the call")
            await self._release()
            logger.info(f"[AGENT CALL] Call ended - session: {self.session.session_id}")
        await self._run_exit_hook()

    async def close(self) -> None:
        """Tear down without signalling, e.g. when the agent view goes away."""
        if not self.is_terminal:
            self._transition(CallState.ENDED)
        await self._release()

    # Signal handlers

    async def _on_end_call(self, signal: Signal) -> None:
        if self.is_terminal:
            return
        logger.info(f"[AGENT CALL] Customer ended the call - message: {signal.payload}")
        self.session.remote_left = True
        self._transition(CallState.ENDED)
        await self._release()

    async def _on_media_failed(self, signal: Signal) -> None:
        if self.is_terminal:
            return
        logger.warning(f"[AGENT CALL] Customer media failed - message: {signal.payload}")
        self.session.remote_media_failed = True

    async def _on_stream_created(self, event: StreamEvent) -> None:
        self.session.remote_media_failed = False
        await super()._on_stream_created(event)

    # Outgoing slot

    async def _detect_devices(self) -> None:
        try:
            devices = await self.devices.enumerate_devices()
        except MediaPermissionError as e:
            logger.warning(f"[AGENT CALL] Device enumeration failed - Error: {e}")
            devices = []
        has_video = any(d.kind == DeviceKind.VIDEO_INPUT for d in devices)
        has_audio = any(d.kind == DeviceKind.AUDIO_INPUT for d in devices)
        self.session.has_video_input = has_video
        self.session.has_audio_input = has_audio
        self.session.local_video_on = self.enable_video and has_video
        self.session.local_audio_on = self.enable_audio and has_audio
        logger.info(
            f"[AGENT CALL] Devices - video: {has_video}, audio: {has_audio}, "
            f"publishing video: {self.session.local_video_on}, audio: {self.session.local_audio_on}"
        )

    def _wants_devices(self) -> bool:
        return self.session.local_video_on or self.session.local_audio_on

    async def _start_webcam(self) -> bool:
        """Publish the webcam into the empty slot. Caller holds the track lock."""
        with_camera = self.session.has_video_input and self.enable_video
        with_mic = self.session.has_audio_input and self.enable_audio
        self.session.publish_state = PublishState.IN_PROGRESS
        try:
            probe = await self.devices.get_user_media(video=with_camera, audio=with_mic)
            probe.stop()
            publisher = await self.media.init_publisher(
                PublisherOptions(
                    name=self.agent_name,
                    video_source=VideoSource.CAMERA if with_camera else None,
                    audio_source=with_mic,
                    publish_video=self.session.local_video_on,
                    publish_audio=self.session.local_audio_on,
                )
            )
        except MediaPermissionError as e:
            logger.warning(f"[AGENT CALL] Camera/Mic unavailable, continuing without local media - Error: {e}")
            return self._webcam_failed("Camera or microphone is busy or access was denied.")
        except ProviderError as e:
            logger.error(f"[AGENT CALL] Webcam publisher init failed - Error: {e}")
            return self._webcam_failed("Could not start the camera.")

        if self.is_terminal or self.media_session is None:
            publisher.destroy()
            self.session.publish_state = PublishState.IDLE
            return False

        publisher.on(SessionEvent.VIDEO_ENABLED, self._on_local_video_enabled)
        publisher.on(SessionEvent.VIDEO_DISABLED, self._on_local_video_disabled)
        try:
            await self.media_session.publish(publisher)
        except ProviderError as e:
            publisher.destroy()
            logger.error(f"[AGENT CALL] Webcam publish failed - Error: {e}")
            return self._webcam_failed("Publishing the camera failed.")
        if self.is_terminal or self.media_session is None:
            publisher.destroy()
            self.session.publish_state = PublishState.IDLE
            logger.info("[AGENT CALL] Call ended while publishing the webcam, releasing it")
            return False

        self.webcam_publisher = publisher
        self.session.publish_state = PublishState.PUBLISHED
        self.session.has_local_video = self.session.local_video_on
        self.session.last_error = None
        logger.info(f"[AGENT CALL] Webcam published - stream: {publisher.stream.stream_id if publisher.stream else None}")
        return True

    def _webcam_failed(self, message: str) -> bool:
        self.session.publish_state = PublishState.FAILED
        self.session.has_local_video = False
        self.session.last_error = message
        return False

    async def _start_screen_share(self) -> None:
        try:
            screen = await self.media.init_publisher(
                PublisherOptions(
                    name=f"{self.agent_name} (screen)",
                    video_source=VideoSource.SCREEN,
                    audio_source=False,
                    publish_audio=False,
                )
            )
        except ProviderError as e:
            logger.error(f"[AGENT CALL] Screen publisher init failed, keeping webcam - Error: {e}")
            self.session.last_error = "Screen sharing could not be started."
            return

        webcam = self.webcam_publisher
        self.webcam_publisher = None
        await self._remove_publisher(webcam)
        if self.is_terminal or self.media_session is None:
            screen.destroy()
            return

        try:
            await self.media_session.publish(screen)
        except ProviderError as e:
            screen.destroy()
            logger.error(f"[AGENT CALL] Screen publish failed, restoring webcam - Error: {e}")
            self.session.last_error = "Screen sharing could not be started."
            await self._restore_webcam()
            return
        if self.is_terminal or self.media_session is None:
            screen.destroy()
            logger.info("[AGENT CALL] Call ended while publishing the screen, releasing it")
            return

        screen.on(SessionEvent.MEDIA_STOPPED, self._on_screen_capture_stopped)
        self.screen_publisher = screen
        self.session.is_screen_sharing = True
        self.session.has_local_video = True
        logger.info("[AGENT CALL] Screen share started")

    async def _stop_screen_share(self) -> None:
        screen = self.screen_publisher
        self.screen_publisher = None
        self.session.is_screen_sharing = False
        await self._remove_publisher(screen)
        await self._restore_webcam()
        logger.info("[AGENT CALL] Screen share stopped")

    async def _restore_webcam(self) -> None:
        self.session.has_local_video = False
        if self.is_terminal or not self._wants_devices():
            self.session.publish_state = PublishState.IDLE
            return
        if not await self._start_webcam():
            logger.warning("[AGENT CALL] Webcam could not be restored, continuing without outgoing video")

    async def _on_screen_capture_stopped(self, event: MediaEvent) -> None:
        async with self._track_lock:
            screen = self.screen_publisher
            if not self.session.is_screen_sharing or screen is None or screen.id != event.target_id:
                return
            logger.info("[AGENT CALL] Screen capture ended outside the app, falling back to webcam")
            await self._stop_screen_share()

    # Teardown

    async def _release(self) -> None:
        webcam, screen = self.webcam_publisher, self.screen_publisher
        self.webcam_publisher = None
        self.screen_publisher = None
        self.session.is_screen_sharing = False
        await self._remove_publisher(screen)
        await self._remove_publisher(webcam)
        await self._disconnect()
        self.collaboration.reset()

    async def _run_exit_hook(self) -> None:
        if self._exited:
            return
        self._exited = True
        if self.on_exit is None:
            return
        result = self.on_exit()
        if inspect.isawaitable(result):
            await result

    def _find_pending(self, request_id: str) -> Optional[CallRequest]:
        return next((r for r in self.pending if r.id == request_id), None)

    def _ensure_connecting(self) -> None:
        if self.state != CallState.CONNECTING:
            raise CallStateError("Call was torn down while joining", self.state.value)
