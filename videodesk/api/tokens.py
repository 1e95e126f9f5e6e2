"""Session token endpoint."""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from videodesk.core.config import settings
from videodesk.core.dependencies import get_session_provider
from videodesk.core.exceptions import ProviderError
from videodesk.services.sessions.base import SessionProvider, TokenRole


router = APIRouter()
logger = logging.getLogger(__name__)


class TokenRequest(BaseModel):
    """Token request for an existing session."""
    sessionId: Optional[str] = None
    userType: str = TokenRole.PUBLISHER.value
    userData: Dict[str, Any] = {}


@router.post("/api/token")
async def generate_token(
    body: TokenRequest,
    provider: SessionProvider = Depends(get_session_provider),
):
    """Issue a role-scoped token for joining a session."""
    if not body.sessionId:
        raise HTTPException(status_code=400, detail="Session ID is required")

    try:
        role = TokenRole(body.userType)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown user type: {body.userType}")

    logger.info(f"[TOKEN] Generating token - session: {body.sessionId}, role: {role}")
    try:
        token = await provider.generate_token(
            body.sessionId,
            role=role,
            data=body.userData,
            ttl_seconds=settings.token_ttl_seconds,
        )
    except ProviderError as e:
        logger.error(
            f"[TOKEN] Error generating token - Error: {type(e).__name__}: {str(e)}",
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Failed to generate token", "error": str(e)},
        )

    return {
        "success": True,
        "apiKey": provider.api_key,
        "sessionId": body.sessionId,
        "token": token,
    }
