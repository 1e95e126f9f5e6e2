"""Signal types and payloads exchanged between the two parties."""
import json
from enum import Enum
from typing import Any, Optional, Type, TypeVar
from pydantic import BaseModel, ConfigDict, Field, ValidationError


class Role(str, Enum):
    """Which party a call client plays."""

    CUSTOMER = "customer"
    AGENT = "agent"

    def __str__(self) -> str:
        return self.value


class SignalType(str, Enum):
    """Named messages of the call and collaboration protocols."""

    CALL_ACCEPTED = "callAccepted"
    END_CALL = "endCall"
    MEDIA_FAILED = "media-failed"
    FILE_PREVIEW = "file-preview"
    FILE_SHARE = "file-share"
    FILE_PREVIEW_CLOSED = "file-preview-closed"
    FILE_REQUEST = "file-request"
    FILE_FOR_SIGNING = "file-for-signing"
    SIGNED_DOCUMENT = "signed-document"
    VIDEO_ASSIST = "video-assist"
    REQUEST_COBROWSING_URL = "request-cobrowsing-url"
    COBROWSING_URL = "cobrowsing-url"

    def __str__(self) -> str:
        return self.value


class VideoAssistMode(str, Enum):
    ENABLE = "enable-video"
    DISABLE = "disable-video"


class FileRef(BaseModel):
    """A stored file both parties can reach by URL."""

    name: str
    url: str


class CobrowseLink(BaseModel):
    session_url: str = Field(alias="sessionUrl")

    model_config = ConfigDict(populate_by_name=True)


class Signal(BaseModel):
    """An immutable, ephemeral protocol message."""

    type: SignalType
    payload: str = ""
    sender_role: Optional[Role] = None

    model_config = ConfigDict(frozen=True)

    def to_wire(self) -> str:
        """Encode the envelope carried in the provider's signal data."""
        return json.dumps(
            {
                "senderRole": self.sender_role.value if self.sender_role else None,
                "payload": self.payload,
            }
        )

    @classmethod
    def from_wire(cls, signal_type: SignalType, data: str) -> "Signal":
        """Decode provider data; non-envelope data is taken as a raw payload."""
        try:
            envelope = json.loads(data) if data else None
        except ValueError:
            envelope = None
        if isinstance(envelope, dict) and "payload" in envelope:
            role = envelope.get("senderRole")
            return cls(
                type=signal_type,
                payload=_payload_text(envelope.get("payload")),
                sender_role=Role(role) if isinstance(role, str) and role in Role._value2member_map_ else None,
            )
        return cls(type=signal_type, payload=data or "")


def _payload_text(payload: Any) -> str:
    """Envelope payloads are strings; anything else is kept as its JSON text."""
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload)


ModelT = TypeVar("ModelT", bound=BaseModel)


def encode_payload(payload: Optional[BaseModel]) -> str:
    if payload is None:
        return ""
    return payload.model_dump_json(by_alias=True)


def decode_payload(signal: Signal, model: Type[ModelT]) -> Optional[ModelT]:
    """Parse a JSON payload, returning None when it is malformed."""
    try:
        return model.model_validate_json(signal.payload)
    except ValidationError:
        return None
