"""Call state enumeration and allowed transitions."""
from enum import Enum
from typing import Dict, Set


class CallState(str, Enum):
    """Lifecycle states of one party's call."""

    IDLE = "idle"
    REQUESTING = "requesting"  # Customer: permission probe and queue request
    WAITING_FOR_AGENT = "waiting_for_agent"  # Customer: connected, wait timer armed
    PICKING = "picking"  # Agent: claiming a pending request
    CONNECTING = "connecting"  # Joining the session and publishing
    ACTIVE = "active"
    ENDED = "ended"
    FAILED = "failed"  # Declined/Failed

    def __str__(self) -> str:
        return self.value


class PublishState(str, Enum):
    """Progress of the local publisher, checked before every publish attempt."""

    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    PUBLISHED = "published"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


TERMINAL_STATES = {CallState.ENDED, CallState.FAILED}

CUSTOMER_TRANSITIONS: Dict[CallState, Set[CallState]] = {
    CallState.IDLE: {CallState.REQUESTING, CallState.ENDED},
    CallState.REQUESTING: {CallState.WAITING_FOR_AGENT, CallState.FAILED, CallState.ENDED},
    CallState.WAITING_FOR_AGENT: {CallState.CONNECTING, CallState.FAILED, CallState.ENDED},
    CallState.CONNECTING: {CallState.ACTIVE, CallState.FAILED, CallState.ENDED},
    CallState.ACTIVE: {CallState.ENDED},
    CallState.FAILED: {CallState.REQUESTING},  # retryable failures only
    CallState.ENDED: set(),
}

AGENT_TRANSITIONS: Dict[CallState, Set[CallState]] = {
    CallState.IDLE: {CallState.PICKING, CallState.ENDED},
    CallState.PICKING: {CallState.IDLE, CallState.CONNECTING, CallState.FAILED, CallState.ENDED},
    CallState.CONNECTING: {CallState.ACTIVE, CallState.FAILED, CallState.ENDED},
    CallState.ACTIVE: {CallState.ENDED},
    CallState.FAILED: {CallState.PICKING, CallState.ENDED},
    CallState.ENDED: set(),
}
