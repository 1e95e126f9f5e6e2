"""Call request queue endpoints."""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from videodesk.core.dependencies import get_call_queue
from videodesk.core.exceptions import CallRequestNotFound, InputValidationError, ProviderError
from videodesk.services.queue.models import ResolveOutcome
from videodesk.services.queue.queue import CallRequestQueue


router = APIRouter()
logger = logging.getLogger(__name__)


class CallRequestCreate(BaseModel):
    """Customer's ask for an agent."""
    name: str = ""


class CallRequestResponse(BaseModel):
    """Pending call request as shown to agents."""
    id: str
    name: str
    sessionId: str
    token: str
    timestamp: str


RESOLVE_MESSAGES = {
    ResolveOutcome.DECLINED: "Call request declined",
    ResolveOutcome.JOINED: "Call joined and removed",
    ResolveOutcome.ERRORED: "Call request removed due to error",
}


@router.post("/api/call-request")
async def create_call_request(
    body: CallRequestCreate,
    request: Request,
    queue: CallRequestQueue = Depends(get_call_queue),
):
    """Create a session for a customer and queue the request."""
    logger.info(
        f"[CALL REQUEST] Request received - name: {body.name!r}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )

    try:
        credentials = await queue.create_request(body.name)
    except InputValidationError as e:
        logger.warning(f"[CALL REQUEST] Rejected - Error: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        logger.error(
            f"[CALL REQUEST] Error creating session - Error: {type(e).__name__}: {str(e)}",
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Error creating session", "error": str(e)},
        )

    return credentials.model_dump(by_alias=True)


@router.get("/api/call-requests", response_model=List[CallRequestResponse])
async def list_call_requests(queue: CallRequestQueue = Depends(get_call_queue)):
    """List pending call requests, oldest first."""
    pending = queue.list_pending()
    logger.debug(f"[CALL REQUEST] Listing {len(pending)} pending requests")
    return [
        CallRequestResponse(
            id=item.id,
            name=item.display_name,
            sessionId=item.session_id,
            token=item.session_token,
            timestamp=item.created_at.isoformat(),
        )
        for item in pending
    ]


def _resolve(queue: CallRequestQueue, request_id: str, outcome: ResolveOutcome):
    try:
        queue.resolve(request_id, outcome)
    except CallRequestNotFound:
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": "Call request not found"},
        )
    return {"success": True, "message": RESOLVE_MESSAGES[outcome]}


@router.post("/api/call-request/{request_id}/decline")
async def decline_call_request(request_id: str, queue: CallRequestQueue = Depends(get_call_queue)):
    """Agent declined the request."""
    logger.info(f"[CALL REQUEST] Decline - id: {request_id}")
    return _resolve(queue, request_id, ResolveOutcome.DECLINED)


@router.post("/api/call-request/{request_id}/joined")
async def join_call_request(request_id: str, queue: CallRequestQueue = Depends(get_call_queue)):
    """Agent claimed the request; the first claim wins."""
    logger.info(f"[CALL REQUEST] Joined - id: {request_id}")
    return _resolve(queue, request_id, ResolveOutcome.JOINED)


@router.post("/api/call-request/{request_id}/error")
async def error_call_request(request_id: str, queue: CallRequestQueue = Depends(get_call_queue)):
    """Customer gave up waiting or failed to connect."""
    logger.info(f"[CALL REQUEST] Error - id: {request_id}")
    return _resolve(queue, request_id, ResolveOutcome.ERRORED)
