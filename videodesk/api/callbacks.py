"""Media provider webhook endpoint."""
import json
import logging

from fastapi import APIRouter, Request


router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/api/callback")
async def provider_callback(request: Request):
    """Log a session event pushed by the media provider."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            event = await request.json()
        except json.JSONDecodeError:
            event = (await request.body()).decode(errors="replace")
    elif "form" in content_type:
        event = dict(await request.form())
    else:
        event = (await request.body()).decode(errors="replace")

    logger.info(f"[CALLBACK] Provider event received: {event}")
    return {"success": True, "message": "Callback received"}
