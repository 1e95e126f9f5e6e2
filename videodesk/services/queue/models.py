"""Call request models."""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ResolveOutcome(str, Enum):
    """How a pending call request was resolved."""

    DECLINED = "declined"
    JOINED = "joined"
    ERRORED = "errored"

    def __str__(self) -> str:
        return self.value


class CallRequest(BaseModel):
    """A customer's pending ask to be connected to an agent."""

    id: str
    display_name: str = Field(alias="name")
    session_id: str = Field(alias="sessionId")
    session_token: str = Field(alias="token")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="timestamp"
    )

    model_config = ConfigDict(populate_by_name=True)


class SessionCredentials(BaseModel):
    """Everything a party needs to join a media session."""

    api_key: str = Field(alias="apiKey")
    session_id: str = Field(alias="sessionId")
    token: str
    request_id: Optional[str] = Field(default=None, alias="requestId")

    model_config = ConfigDict(populate_by_name=True)
