"""Error taxonomy shared by the server and the call clients."""
from typing import Optional


class VideodeskError(Exception):
    """Base class for all videodesk errors."""


class InputValidationError(VideodeskError):
    """Bad local input, e.g. an empty display name."""


class MediaPermissionError(VideodeskError):
    """Camera or microphone access was denied or the device is busy."""

    def __init__(self, message: str = "Camera/Mic access denied", retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class MediaPublishError(VideodeskError):
    """The local track could not be published after the call was accepted."""


class ProviderError(VideodeskError):
    """The session provider failed to create a session, token or stream."""


class SessionConfigurationError(ProviderError):
    """The session provider is missing required credentials."""


class ConnectError(ProviderError):
    """Connecting to a media session failed."""


class PublishError(ProviderError):
    """Initializing or publishing a local track failed."""


class SubscribeError(ProviderError):
    """Subscribing to a remote stream failed."""


class SendError(VideodeskError):
    """A signal could not be sent from the local side."""


class CallRequestNotFound(VideodeskError):
    """The call request is not pending (already resolved or never existed)."""

    def __init__(self, request_id: str):
        super().__init__(f"Call request not found: {request_id}")
        self.request_id = request_id


class AlreadyHandledError(VideodeskError):
    """Another agent or path already resolved the call request."""

    def __init__(self, request_id: str):
        super().__init__(f"Call request already handled: {request_id}")
        self.request_id = request_id


class UploadError(VideodeskError):
    """A file upload or download failed."""


class CompositeError(VideodeskError):
    """Stamping a signature onto a document failed."""


class CobrowseError(VideodeskError):
    """The co-browse provider could not create a session."""


class FeatureBusyError(VideodeskError):
    """A collaboration exchange of the same kind is already outstanding."""

    def __init__(self, kind: str):
        super().__init__(f"A {kind} exchange is already in progress")
        self.kind = kind


class CallStateError(VideodeskError):
    """An operation was attempted in a state that does not allow it."""

    def __init__(self, message: str, state: Optional[str] = None):
        super().__init__(message)
        self.state = state
