"""Signaling channel adapter over a media session."""
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Union

from pydantic import BaseModel

from videodesk.core.exceptions import SendError
from videodesk.services.media.base import MediaSession, SessionEvent, SignalEvent
from videodesk.services.signaling.signals import Role, Signal, SignalType, encode_payload

logger = logging.getLogger(__name__)

SignalHandler = Callable[[Signal], Awaitable[None]]


class SignalingChannel:
    """Typed send/receive of named signals; no call logic lives here."""

    def __init__(self, role: Role):
        self.role = role
        self.session: Optional[MediaSession] = None
        self._handlers: Dict[SignalType, SignalHandler] = {}

    def register(self, signal_type: SignalType, handler: SignalHandler) -> None:
        """Route one signal type to a handler, replacing any previous one."""
        self._handlers[signal_type] = handler

    def attach(self, session: MediaSession) -> None:
        """Start receiving signals from a session."""
        self.detach()
        self.session = session
        session.on(SessionEvent.SIGNAL, self._on_signal)

    def detach(self) -> None:
        if self.session is not None:
            self.session.off(SessionEvent.SIGNAL, self._on_signal)
            self.session = None

    async def send(
        self,
        signal_type: SignalType,
        payload: Union[BaseModel, str, None] = None,
    ) -> None:
        """
        Broadcast a signal to the other party.

        Raises:
            SendError: If the local send failed. Delivery is never confirmed.
        """
        if self.session is None or not self.session.connected:
            raise SendError(f"Cannot send {signal_type}: session is not connected")

        if isinstance(payload, Enum):
            body = payload.value
        elif isinstance(payload, str):
            body = payload
        else:
            body = encode_payload(payload)
        signal = Signal(type=signal_type, payload=body, sender_role=self.role)
        try:
            await self.session.signal(signal_type.value, signal.to_wire())
        except SendError:
            raise
        except Exception as e:
            raise SendError(f"Signal {signal_type} failed: {e}") from e
        logger.debug(f"[SIGNALING] Sent {signal_type} as {self.role}")

    async def send_best_effort(
        self,
        signal_type: SignalType,
        payload: Union[BaseModel, str, None] = None,
    ) -> bool:
        """Send a signal, logging instead of raising on failure."""
        try:
            await self.send(signal_type, payload)
            return True
        except SendError as e:
            logger.warning(f"[SIGNALING] Send failed - type: {signal_type}, Error: {e}")
            return False

    async def _on_signal(self, event: SignalEvent) -> None:
        try:
            signal_type = SignalType(event.type)
        except ValueError:
            logger.debug(f"[SIGNALING] Ignoring unknown signal type: {event.type}")
            return

        signal = Signal.from_wire(signal_type, event.data)
        if signal.sender_role == self.role:
            return

        handler = self._handlers.get(signal_type)
        if handler is None:
            logger.debug(f"[SIGNALING] No handler for {signal_type} on {self.role}")
            return

        try:
            await handler(signal)
        except Exception as e:
            logger.error(
                f"[SIGNALING] Handler for {signal_type} failed on {self.role} - "
                f"Error: {type(e).__name__}: {e}",
                exc_info=True,
            )
