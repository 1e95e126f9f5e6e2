"""Call session models."""
from typing import Optional
from pydantic import BaseModel

from videodesk.services.call.states import CallState, PublishState
from videodesk.services.collaboration.exchanges import FeatureKind
from videodesk.services.signaling.signals import Role


class CallFailure(BaseModel):
    """Why a call reached Declined/Failed and whether it may be retried."""

    reason: str
    retryable: bool = False


class CallSession(BaseModel):
    """One party's local projection of the shared call state."""

    local_role: Role
    session_id: Optional[str] = None
    state: CallState = CallState.IDLE
    has_local_video: bool = False
    has_remote_video: bool = False
    active_feature: Optional[FeatureKind] = None

    publish_state: PublishState = PublishState.IDLE
    local_video_on: bool = False
    local_audio_on: bool = False
    has_video_input: bool = False
    has_audio_input: bool = False
    is_screen_sharing: bool = False

    has_remote_stream: bool = False
    remote_name: Optional[str] = None
    remote_left: bool = False  # Remote party's stream or connection went away
    remote_media_failed: bool = False

    video_assist_active: bool = False

    failure: Optional[CallFailure] = None
    last_error: Optional[str] = None  # Latest user-visible error message
