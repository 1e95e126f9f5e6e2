"""In-call collaboration sub-protocols.

Each exchange is a request signal answered by a response signal over the same
channel as the call. The channel carries no exchange state: the initiator
tracks what it is waiting for in ``FeatureExchanges`` and ignores responses it
did not ask for.

| Exchange       | Request                    | Response               |
|----------------|----------------------------|------------------------|
| File preview   | file-preview / file-share  | file-preview-closed    |
| File request   | file-request               | file-share             |
| Signing        | file-for-signing           | signed-document        |
| Video assist   | video-assist               | (none)                 |
| Co-browse      | request-cobrowsing-url     | cobrowsing-url         |
"""
import asyncio
import logging
from typing import Optional

from pydantic import BaseModel

from videodesk.core.exceptions import (
    CallStateError,
    CobrowseError,
    CompositeError,
    InputValidationError,
    SendError,
    UploadError,
)
from videodesk.services.call.models import CallSession
from videodesk.services.call.states import CallState, TERMINAL_STATES
from videodesk.services.cobrowse.base import CobrowseProvider
from videodesk.services.collaboration.exchanges import FeatureExchanges, FeatureKind
from videodesk.services.signaling.channel import SignalingChannel
from videodesk.services.signaling.signals import (
    FileRef,
    CobrowseLink,
    Signal,
    SignalType,
    VideoAssistMode,
    decode_payload,
)
from videodesk.services.signing.compositor import (
    SIGNABLE_EXTENSIONS,
    SignatureCompositor,
    file_extension,
)
from videodesk.services.storage.base import FileStorage

logger = logging.getLogger(__name__)

FILE_TYPES = {
    "image": {"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg"},
    "video": {"mp4", "webm", "ogg", "mov", "avi"},
    "audio": {"mp3", "wav", "m4a"},
    "pdf": {"pdf"},
}


def classify_file_type(name: Optional[str]) -> str:
    """Rendering hint for a previewed file, from its extension."""
    ext = file_extension(name or "")
    for file_type, extensions in FILE_TYPES.items():
        if ext in extensions:
            return file_type
    return "unknown"


class FilePreview(BaseModel):
    """A file currently shown in the local preview dialog."""

    name: Optional[str] = None
    url: str
    open: bool = True
    file_type: str = "unknown"
    from_remote: bool = True


class CollaborationManager:
    """Runs both sides of every collaboration exchange for one party."""

    def __init__(
        self,
        session: CallSession,
        channel: SignalingChannel,
        storage: Optional[FileStorage] = None,
        compositor: Optional[SignatureCompositor] = None,
        cobrowse: Optional[CobrowseProvider] = None,
    ):
        self.session = session
        self.channel = channel
        self.storage = storage
        self.compositor = compositor or SignatureCompositor()
        self.cobrowse = cobrowse
        self.exchanges = FeatureExchanges()

        self.preview: Optional[FilePreview] = None
        self.upload_requested = False
        self.pending_signing: Optional[FileRef] = None
        self.signed_document: Optional[FileRef] = None
        self.cobrowse_url: Optional[str] = None
        self.is_cobrowsing = False
        self.is_uploading = False
        self.last_error: Optional[str] = None

        handlers = {
            SignalType.FILE_PREVIEW: self._on_file_shared,
            SignalType.FILE_SHARE: self._on_file_shared,
            SignalType.FILE_PREVIEW_CLOSED: self._on_preview_closed,
            SignalType.FILE_REQUEST: self._on_file_request,
            SignalType.FILE_FOR_SIGNING: self._on_file_for_signing,
            SignalType.SIGNED_DOCUMENT: self._on_signed_document,
            SignalType.VIDEO_ASSIST: self._on_video_assist,
            SignalType.REQUEST_COBROWSING_URL: self._on_cobrowse_requested,
            SignalType.COBROWSING_URL: self._on_cobrowse_url,
        }
        for signal_type, handler in handlers.items():
            channel.register(signal_type, self._gated(handler))

    @property
    def waiting_for_signed_document(self) -> bool:
        return self.exchanges.is_outstanding(FeatureKind.SIGNING)

    @property
    def any_dialog_open(self) -> bool:
        """True while a collaboration dialog blocks other in-call actions."""
        return bool(
            (self.preview and self.preview.open)
            or self.waiting_for_signed_document
            or self.signed_document
            or self.is_uploading
        )

    # Initiator side

    async def share_file(self, data: bytes, name: str) -> Optional[FileRef]:
        """Upload a file and show it to the other party (``file-preview``)."""
        return await self._send_file(SignalType.FILE_PREVIEW, data, name)

    async def upload_requested_file(self, data: bytes, name: str) -> Optional[FileRef]:
        """Upload a file and share it (``file-share``), answering the other party's file request."""
        ref = await self._send_file(SignalType.FILE_SHARE, data, name)
        if ref is not None:
            self.upload_requested = False
        return ref

    async def request_file(self) -> bool:
        """Ask the other party to upload a file."""
        self._require_active("request a file")
        return await self._begin_and_send(
            FeatureKind.FILE_REQUEST, SignalType.FILE_REQUEST, "Please upload your file."
        )

    async def send_for_signing(self, data: bytes, name: str) -> Optional[FileRef]:
        """Upload a document and ask the other party to sign it."""
        if file_extension(name) not in SIGNABLE_EXTENSIONS:
            raise InputValidationError(
                "Only PDF or image files (JPG, PNG) can be sent for signing."
            )
        self._require_active("send a document for signing")
        self.exchanges.begin(FeatureKind.SIGNING)
        self.signed_document = None
        ref = await self._upload_for_exchange(FeatureKind.SIGNING, data, name)
        if not await self._send_for_exchange(FeatureKind.SIGNING, SignalType.FILE_FOR_SIGNING, ref):
            return None
        logger.info(f"[COLLABORATION] Document sent for signing - name: {name}")
        return ref

    def cancel_signing(self) -> None:
        """Stop waiting for a signed copy."""
        self.exchanges.complete(FeatureKind.SIGNING)
        self._sync_active_feature()

    def dismiss_signed_document(self) -> None:
        self.signed_document = None

    async def toggle_video_assist(self) -> bool:
        """Flip the remote party's advisory video affordance; returns the new value."""
        self._require_active("toggle video assist")
        next_state = not self.session.video_assist_active
        mode = VideoAssistMode.ENABLE if next_state else VideoAssistMode.DISABLE
        if await self.channel.send_best_effort(SignalType.VIDEO_ASSIST, mode):
            self.session.video_assist_active = next_state
        return self.session.video_assist_active

    async def toggle_cobrowsing(self) -> bool:
        """Request a co-browse session, or stop the current one."""
        if self.is_cobrowsing or self.exchanges.is_outstanding(FeatureKind.COBROWSE):
            self.stop_cobrowsing()
            return False
        return await self.request_cobrowsing()

    async def request_cobrowsing(self) -> bool:
        self._require_active("start co-browsing")
        return await self._begin_and_send(
            FeatureKind.COBROWSE, SignalType.REQUEST_COBROWSING_URL, None
        )

    def stop_cobrowsing(self) -> None:
        self.exchanges.complete(FeatureKind.COBROWSE)
        self.is_cobrowsing = False
        self.cobrowse_url = None
        self._sync_active_feature()

    # Responder side

    async def close_preview(self) -> None:
        """Close the local preview, acknowledging it when the other party sent the file."""
        preview = self.preview
        if preview is None:
            return
        self.preview = None
        if preview.from_remote:
            await self.channel.send_best_effort(
                SignalType.FILE_PREVIEW_CLOSED, "Preview closed"
            )

    async def sign_document(self, signature: bytes) -> FileRef:
        """
        Stamp a signature on the pending document and send the signed copy back.

        Raises:
            CallStateError: If no document is waiting to be signed
            UploadError: If the document cannot be fetched or the result uploaded
            CompositeError: If the signature cannot be stamped
        """
        document = self.pending_signing
        if document is None:
            raise CallStateError("No document is waiting for a signature")
        if self.storage is None:
            raise UploadError("File storage is not configured")

        self.last_error = None
        try:
            original = await self.storage.fetch(document.url)
            signed = await asyncio.to_thread(
                self.compositor.composite, original, signature, document.name
            )
            signed_ref = await self.storage.upload(signed, f"signed-{document.name}")
        except (UploadError, CompositeError) as e:
            self.last_error = str(e)
            logger.error(f"[COLLABORATION] Signing failed - document: {document.name}, Error: {e}")
            raise

        if await self.channel.send_best_effort(SignalType.SIGNED_DOCUMENT, signed_ref):
            self.pending_signing = None
            logger.info(f"[COLLABORATION] Signed document returned - name: {signed_ref.name}")
        else:
            self.last_error = "Failed to send the signed document."
        return signed_ref

    def decline_signing(self) -> None:
        self.pending_signing = None

    # Teardown

    def reset(self) -> None:
        """Drop every exchange and dialog; called when the call ends."""
        self.exchanges.clear()
        self.preview = None
        self.upload_requested = False
        self.pending_signing = None
        self.is_cobrowsing = False
        self.cobrowse_url = None
        self.is_uploading = False
        self.session.active_feature = None

    # Signal handlers

    def _gated(self, handler):
        async def run(signal: Signal) -> None:
            if self.session.state in TERMINAL_STATES:
                logger.debug(
                    f"[COLLABORATION] Ignoring {signal.type} in state {self.session.state}"
                )
                return
            await handler(signal)

        return run

    async def _on_file_shared(self, signal: Signal) -> None:
        ref = decode_payload(signal, FileRef)
        if ref is None or not ref.url:
            logger.error(f"[COLLABORATION] Failed to parse {signal.type} payload: {signal.payload!r}")
            return
        if signal.type == SignalType.FILE_SHARE and self.exchanges.complete(FeatureKind.FILE_REQUEST):
            logger.info(f"[COLLABORATION] Requested file received - name: {ref.name}")
            self._sync_active_feature()
        self.preview = FilePreview(
            name=ref.name, url=ref.url, open=True, file_type=classify_file_type(ref.name)
        )

    async def _on_preview_closed(self, signal: Signal) -> None:
        if not self.exchanges.complete(FeatureKind.FILE_PREVIEW):
            logger.info("[COLLABORATION] file-preview-closed with no preview outstanding, ignoring")
        if self.preview is not None and not self.preview.from_remote:
            self.preview = None
        self._sync_active_feature()

    async def _on_file_request(self, signal: Signal) -> None:
        logger.info("[COLLABORATION] Remote party requested a file upload")
        self.upload_requested = True

    async def _on_file_for_signing(self, signal: Signal) -> None:
        ref = decode_payload(signal, FileRef)
        if ref is None or not ref.url:
            logger.error(f"[COLLABORATION] Failed to parse file-for-signing payload: {signal.payload!r}")
            return
        self.pending_signing = ref

    async def _on_signed_document(self, signal: Signal) -> None:
        ref = decode_payload(signal, FileRef)
        if ref is None or not ref.url:
            logger.error(f"[COLLABORATION] Failed to parse signed document signal: {signal.payload!r}")
            return
        if not self.exchanges.complete(FeatureKind.SIGNING):
            logger.warning("[COLLABORATION] Signed document received with no signing outstanding, ignoring")
            return
        self.signed_document = FileRef(name=ref.name or "Signed Document", url=ref.url)
        self._sync_active_feature()

    async def _on_video_assist(self, signal: Signal) -> None:
        if signal.payload == VideoAssistMode.ENABLE.value:
            self.session.video_assist_active = True
        elif signal.payload == VideoAssistMode.DISABLE.value:
            self.session.video_assist_active = False
        else:
            logger.warning(f"[COLLABORATION] Unknown video-assist payload: {signal.payload!r}")

    async def _on_cobrowse_requested(self, signal: Signal) -> None:
        if self.cobrowse is None:
            logger.warning("[COLLABORATION] Co-browse requested but no provider is configured")
            return
        try:
            link = await self.cobrowse.create_session()
        except CobrowseError as e:
            self.last_error = str(e)
            logger.error(f"[COLLABORATION] Co-browse session failed - Error: {e}")
            return
        await self.channel.send_best_effort(SignalType.COBROWSING_URL, link)

    async def _on_cobrowse_url(self, signal: Signal) -> None:
        link = decode_payload(signal, CobrowseLink)
        if link is None:
            logger.error(f"[COLLABORATION] Failed to parse cobrowsing-url signal: {signal.payload!r}")
            return
        if not self.exchanges.complete(FeatureKind.COBROWSE):
            logger.warning("[COLLABORATION] cobrowsing-url with no co-browse requested, ignoring")
            return
        self.cobrowse_url = link.session_url
        self.is_cobrowsing = True
        self._sync_active_feature()

    # Helpers

    async def _send_file(self, signal_type: SignalType, data: bytes, name: str) -> Optional[FileRef]:
        self._require_active("share a file")
        self.exchanges.begin(FeatureKind.FILE_PREVIEW)
        ref = await self._upload_for_exchange(FeatureKind.FILE_PREVIEW, data, name)
        if not await self._send_for_exchange(FeatureKind.FILE_PREVIEW, signal_type, ref):
            return None
        self.preview = FilePreview(
            name=ref.name,
            url=ref.url,
            open=True,
            file_type=classify_file_type(ref.name),
            from_remote=False,
        )
        logger.info(f"[COLLABORATION] File shared via {signal_type} - name: {ref.name}")
        return ref

    async def _upload_for_exchange(self, kind: FeatureKind, data: bytes, name: str) -> FileRef:
        if self.storage is None:
            self.exchanges.complete(kind)
            raise UploadError("File storage is not configured")
        self.is_uploading = True
        self.last_error = None
        self._sync_active_feature()
        try:
            return await self.storage.upload(data, name)
        except UploadError as e:
            self.exchanges.complete(kind)
            self._sync_active_feature()
            self.last_error = str(e)
            raise
        finally:
            self.is_uploading = False

    async def _send_for_exchange(self, kind: FeatureKind, signal_type: SignalType, payload) -> bool:
        try:
            await self.channel.send(signal_type, payload)
        except SendError as e:
            logger.error(f"[COLLABORATION] Signal send error - type: {signal_type}, Error: {e}")
            self.exchanges.complete(kind)
            self._sync_active_feature()
            self.last_error = "Failed to share file."
            return False
        return True

    async def _begin_and_send(self, kind: FeatureKind, signal_type: SignalType, payload) -> bool:
        self.exchanges.begin(kind)
        self._sync_active_feature()
        return await self._send_for_exchange(kind, signal_type, payload)

    def _require_active(self, action: str) -> None:
        if self.session.state != CallState.ACTIVE:
            raise CallStateError(f"Cannot {action} outside an active call", self.session.state.value)

    def _sync_active_feature(self) -> None:
        self.session.active_feature = self.exchanges.latest()
