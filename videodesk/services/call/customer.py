"""Customer side of a call: request, wait for an agent, publish, talk."""
import asyncio
import logging
from typing import Optional

from videodesk.core.config import settings
from videodesk.core.exceptions import (
    CallRequestNotFound,
    CallStateError,
    InputValidationError,
    MediaPermissionError,
    MediaPublishError,
    ProviderError,
)
from videodesk.services.call.base import CallClient
from videodesk.services.call.states import CUSTOMER_TRANSITIONS, CallState, PublishState
from videodesk.services.cobrowse.base import CobrowseProvider
from videodesk.services.media.base import (
    MediaDevices,
    MediaProvider,
    Publisher,
    PublisherOptions,
    SessionEvent,
    VideoSource,
)
from videodesk.services.queue.client import CallQueueClient
from videodesk.services.queue.models import ResolveOutcome, SessionCredentials
from videodesk.services.signaling.signals import Role, Signal, SignalType
from videodesk.services.signing.compositor import SignatureCompositor
from videodesk.services.storage.base import FileStorage

logger = logging.getLogger(__name__)


class CustomerCall(CallClient):
    """
    Customer call state machine.

    Idle -> Requesting -> WaitingForAgent -> Connecting -> Active -> Ended,
    with Failed reachable from every pre-Active state. The agent's decline is
    never signalled; the customer learns about it when the wait timer expires.
    """

    role = Role.CUSTOMER
    transitions = CUSTOMER_TRANSITIONS
    log_tag = "CUSTOMER CALL"

    def __init__(
        self,
        queue: CallQueueClient,
        media: MediaProvider,
        devices: MediaDevices,
        storage: Optional[FileStorage] = None,
        compositor: Optional[SignatureCompositor] = None,
        cobrowse: Optional[CobrowseProvider] = None,
        wait_timeout: Optional[float] = None,
        view_ready_timeout: Optional[float] = None,
        auto_view_ready: bool = True,
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
        self.wait_timeout = (
            wait_timeout if wait_timeout is not None else settings.wait_for_agent_timeout_seconds
        )
        self.display_name: Optional[str] = None
        self.request_id: Optional[str] = None
        self.credentials: Optional[SessionCredentials] = None
        self.publisher: Optional[Publisher] = None
        self._wait_task: Optional[asyncio.Task] = None
        self._closed = False

        self.channel.register(SignalType.CALL_ACCEPTED, self._on_call_accepted)
        self.channel.register(SignalType.END_CALL, self._on_end_call)

    # Public operations

    async def request_call(self, name: str) -> SessionCredentials:
        """
        Ask for an agent and wait in the session.

        Args:
            name: Display name shown to the agent

        Returns:
            The session credentials the customer joined with

        Raises:
            InputValidationError: If the name is empty
            MediaPermissionError: If the microphone probe was denied
            ProviderError: If the request or the session join failed
            CallStateError: If a call is already running, or the call was
                torn down while the request was in flight
        """
        name = (name or "").strip()
        if not name:
            self.session.last_error = "Please enter your name."
            raise InputValidationError("Please enter your name.")

        if self._closed:
            raise CallStateError("Call was closed", self.state.value)
        failure = self.session.failure
        if self.state == CallState.FAILED and not (failure and failure.retryable):
            raise CallStateError("This call cannot be retried", self.state.value)
        if self.state not in (CallState.IDLE, CallState.FAILED):
            raise CallStateError("A call is already in progress", self.state.value)

        self.display_name = name
        self.session.failure = None
        self.session.last_error = None
        self.session.publish_state = PublishState.IDLE
        self._transition(CallState.REQUESTING)
        logger.info(f"[CUSTOMER CALL] Requesting a call - name: {name}")

        try:
            probe = await self.devices.get_user_media(video=False, audio=True)
            probe.stop()
        except MediaPermissionError as e:
            logger.warning(f"[CUSTOMER CALL] Audio permission probe failed - Error: {e}")
            self.session.last_error = "Camera/Mic access denied or API error."
            if self.state == CallState.REQUESTING:
                self._record_failure("media permission denied", retryable=e.retryable)
            raise
        self._ensure_still(CallState.REQUESTING)

        try:
            credentials = await self.queue.create_request(name)
        except (ProviderError, InputValidationError) as e:
            logger.error(f"[CUSTOMER CALL] Call request failed - Error: {e}")
            self.session.last_error = "Call could not be requested."
            if self.state == CallState.REQUESTING:
                self._record_failure("call could not be requested", retryable=True)
            raise
        self.credentials = credentials
        self.request_id = credentials.request_id
        if self.state != CallState.REQUESTING:
            await self._report_error()
            raise CallStateError("Call was closed while requesting", self.state.value)

        media_session = self.media.init_session(credentials.api_key, credentials.session_id)
        self._bind(media_session)
        try:
            await media_session.connect(credentials.token)
        except ProviderError as e:
            logger.error(f"[CUSTOMER CALL] Session connect failed - Error: {e}")
            self.session.last_error = "Could not connect to session."
            if self.state == CallState.REQUESTING:
                await self._fail("could not connect to session", retryable=True)
            raise
        if self.state != CallState.REQUESTING:
            # Torn down mid-connect; the release already ran against this session.
            await media_session.disconnect()
            raise CallStateError("Call was closed while connecting", self.state.value)

        self._transition(CallState.WAITING_FOR_AGENT)
        self._wait_task = asyncio.create_task(self._wait_for_agent(self.wait_timeout))
        logger.info(
            f"[CUSTOMER CALL] Waiting for an agent - request: {self.request_id}, "
            f"session: {credentials.session_id}, timeout: {self.wait_timeout}s"
        )
        return credentials

    async def retry_publish(self) -> None:
        """Retry a failed publish while still Connecting."""
        if self.state != CallState.CONNECTING or self.session.publish_state != PublishState.FAILED:
            raise CallStateError("Nothing to retry", self.state.value)
        if not await self._publish():
            raise MediaPublishError(self.session.last_error or "Publishing failed")

    async def end_call(self) -> None:
        """Hang up from the customer side."""
        if self.is_terminal:
            return
        prior = self.state
        self._transition(CallState.ENDED)
        await self.channel.send_best_effort(SignalType.END_CALL, "Customer ended the call")
        if prior in (CallState.REQUESTING, CallState.WAITING_FOR_AGENT):
            await self._report_error()
        await self._release()

    async def close(self) -> None:
        """Tear the call down when the customer navigates away. Idempotent."""
        if self._closed:
            return
        self._closed = True
        prior = self.state
        if not self.is_terminal:
            self._transition(CallState.ENDED)
        if prior in (CallState.REQUESTING, CallState.WAITING_FOR_AGENT):
            await self._report_error()
        await self._release()
        logger.info("[CUSTOMER CALL] Closed")

    # Signal handlers

    async def _on_call_accepted(self, signal: Signal) -> None:
        if self.state != CallState.WAITING_FOR_AGENT:
            logger.info(f"[CUSTOMER CALL] Ignoring callAccepted in state {self.state.value}")
            return
        self._transition(CallState.CONNECTING)
        # The agent claimed the request; the server already dropped it.
        self.request_id = None
        logger.info(f"[CUSTOMER CALL] Agent accepted - message: {signal.payload}")
        await self._publish()

    async def _on_end_call(self, signal: Signal) -> None:
        if self.is_terminal:
            return
        logger.info(f"[CUSTOMER CALL] Agent ended the call - message: {signal.payload}")
        self.session.last_error = None
        self._transition(CallState.ENDED)
        await self._release()

    # Publishing

    async def _publish(self) -> bool:
        if self.session.publish_state in (PublishState.IN_PROGRESS, PublishState.PUBLISHED):
            logger.info(f"[CUSTOMER CALL] Publish already {self.session.publish_state.value}, skipping")
            return self.session.publish_state == PublishState.PUBLISHED
        self.session.publish_state = PublishState.IN_PROGRESS

        try:
            probe = await self.devices.get_user_media(video=True, audio=True)
            probe.stop()
        except MediaPermissionError as e:
            return await self._publish_failed("Camera/Mic permissions denied or unavailable.", e)
        if self.state != CallState.CONNECTING:
            self.session.publish_state = PublishState.IDLE
            return False

        try:
            publisher = await self.media.init_publisher(
                PublisherOptions(name=self.display_name or "", video_source=VideoSource.CAMERA)
            )
        except ProviderError as e:
            return await self._publish_failed("Could not access camera/mic.", e)
        if self.state != CallState.CONNECTING or self.media_session is None:
            publisher.destroy()
            self.session.publish_state = PublishState.IDLE
            return False

        publisher.on(SessionEvent.VIDEO_ENABLED, self._on_local_video_enabled)
        publisher.on(SessionEvent.VIDEO_DISABLED, self._on_local_video_disabled)
        self.publisher = publisher
        try:
            await self.media_session.publish(publisher)
        except ProviderError as e:
            self.publisher = None
            publisher.destroy()
            return await self._publish_failed("Publishing to session failed.", e)
        if self.state != CallState.CONNECTING:
            return False

        self.session.publish_state = PublishState.PUBLISHED
        self.session.has_local_video = publisher.options.publish_video
        self.session.last_error = None
        self._transition(CallState.ACTIVE)
        logger.info(f"[CUSTOMER CALL] Published - stream: {publisher.stream.stream_id if publisher.stream else None}")
        return True

    async def _publish_failed(self, message: str, error: Exception) -> bool:
        logger.error(f"[CUSTOMER CALL] Publish failed - Error: {type(error).__name__}: {error}")
        self.session.publish_state = PublishState.FAILED
        self.session.last_error = message
        await self.channel.send_best_effort(SignalType.MEDIA_FAILED, message)
        return False

    # Wait timer

    async def _wait_for_agent(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self.state != CallState.WAITING_FOR_AGENT:
            return
        logger.warning(f"[CUSTOMER CALL] No agent accepted within {timeout}s - request: {self.request_id}")
        self.session.last_error = "No agent is available right now. Please try again later."
        await self._fail("no agent", retryable=True)

    def _on_leave(self, old_state: CallState) -> None:
        if old_state == CallState.WAITING_FOR_AGENT:
            self._cancel_wait_timer()

    def _cancel_wait_timer(self) -> None:
        task = self._wait_task
        self._wait_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # Teardown

    async def _fail(self, reason: str, retryable: bool) -> None:
        self._record_failure(reason, retryable)
        await self._report_error()
        await self._release()

    async def _report_error(self) -> None:
        """Tell the server to drop our request, if it still holds one."""
        request_id = self.request_id
        if request_id is None:
            return
        self.request_id = None
        try:
            await self.queue.resolve(request_id, ResolveOutcome.ERRORED)
            logger.info(f"[CUSTOMER CALL] Call request removed - request: {request_id}")
        except CallRequestNotFound:
            logger.info(f"[CUSTOMER CALL] Call request already handled - request: {request_id}")
        except ProviderError as e:
            logger.warning(f"[CUSTOMER CALL] Could not remove call request - request: {request_id}, Error: {e}")

    async def _release(self) -> None:
        self._cancel_wait_timer()
        publisher = self.publisher
        self.publisher = None
        await self._remove_publisher(publisher)
        await self._disconnect()
        self.collaboration.reset()

    def _ensure_still(self, expected: CallState) -> None:
        if self.state != expected:
            raise CallStateError(
                f"Call left {expected.value} while an operation was in flight", self.state.value
            )
