"""In-memory call request queue."""
import logging
import uuid
from collections import OrderedDict
from typing import List, Optional

from videodesk.core.exceptions import CallRequestNotFound, InputValidationError, ProviderError
from videodesk.services.queue.models import CallRequest, ResolveOutcome, SessionCredentials
from videodesk.services.sessions.base import SessionProvider, TokenRole

logger = logging.getLogger(__name__)


class CallRequestQueue:
    """Holds pending call requests and mediates their completion.

    The queue is the sole owner of "is this request still pending". Requests are
    never mutated; ``resolve`` removes them and the first resolver wins.
    """

    def __init__(self, provider: SessionProvider):
        self.provider = provider
        self._requests: "OrderedDict[str, CallRequest]" = OrderedDict()

    async def create_request(self, display_name: str) -> SessionCredentials:
        """
        Allocate a session and a token for a new customer request.

        Args:
            display_name: Name the customer entered

        Returns:
            Credentials the customer uses to join the session

        Raises:
            InputValidationError: If the name is empty
            ProviderError: If session or token allocation fails
        """
        name = (display_name or "").strip()
        if not name:
            raise InputValidationError("Please enter your name.")

        try:
            session_id = await self.provider.create_session()
            token = await self.provider.generate_token(
                session_id, role=TokenRole.PUBLISHER, data={"name": name}
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Error creating session: {e}") from e

        request = CallRequest(
            id=str(uuid.uuid4()),
            display_name=name,
            session_id=session_id,
            session_token=token,
        )
        self._requests[request.id] = request
        logger.info(
            f"[CALL QUEUE] Request created - id: {request.id}, name: {name}, "
            f"session: {session_id}, pending: {len(self._requests)}"
        )

        return SessionCredentials(
            api_key=self.provider.api_key,
            session_id=session_id,
            token=token,
            request_id=request.id,
        )

    def list_pending(self) -> List[CallRequest]:
        """Return unresolved requests, oldest first."""
        return list(self._requests.values())

    def get(self, request_id: str) -> Optional[CallRequest]:
        """Get a pending request by id."""
        return self._requests.get(request_id)

    def resolve(self, request_id: str, outcome: ResolveOutcome) -> CallRequest:
        """
        Remove a pending request.

        Raises:
            CallRequestNotFound: If the request was already resolved. Callers
                treat this as "handled elsewhere", not as a failure.
        """
        request = self._requests.pop(request_id, None)
        if request is None:
            logger.info(
                f"[CALL QUEUE] Resolve ignored, request not pending - id: {request_id}, "
                f"outcome: {outcome}"
            )
            raise CallRequestNotFound(request_id)

        logger.info(
            f"[CALL QUEUE] Request resolved - id: {request_id}, outcome: {outcome}, "
            f"pending: {len(self._requests)}"
        )
        return request

    def clear(self) -> None:
        """Drop every pending request."""
        self._requests.clear()

    def __len__(self) -> int:
        return len(self._requests)
