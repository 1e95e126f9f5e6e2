"""Health check endpoint."""
import logging
from fastapi import APIRouter, Depends, Request

from videodesk.core.dependencies import get_call_queue
from videodesk.services.queue.queue import CallRequestQueue

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request, queue: CallRequestQueue = Depends(get_call_queue)):
    """Liveness check."""
    logger.debug(
        f"[HEALTH] Health check requested - pending requests: {len(queue)}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    return {"status": "healthy"}
