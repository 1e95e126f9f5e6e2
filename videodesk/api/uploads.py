"""File upload endpoint."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from videodesk.core.config import settings
from videodesk.core.dependencies import get_file_storage
from videodesk.core.exceptions import UploadError
from videodesk.services.storage.local import LocalFileStorage


router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/api/upload")
async def upload_file(
    file: Optional[UploadFile] = File(None),
    storage: LocalFileStorage = Depends(get_file_storage),
):
    """Store an uploaded file and return where it can be fetched."""
    if file is None or not file.filename:
        logger.warning("[UPLOAD] Request without a file")
        raise HTTPException(status_code=400, detail="No file uploaded or invalid file type")

    if file.size is not None and file.size > settings.max_upload_bytes:
        raise _too_large(file.filename, file.size)

    data = await file.read()
    if len(data) > settings.max_upload_bytes:
        raise _too_large(file.filename, len(data))

    try:
        ref = await storage.upload(data, file.filename, content_type=file.content_type)
    except UploadError as e:
        logger.error(f"[UPLOAD] Error storing file - Error: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"File upload failed: {str(e)}")

    return {"name": ref.name, "url": ref.url}


def _too_large(filename: str, size: int) -> HTTPException:
    logger.warning(f"[UPLOAD] Rejected oversize upload - name: {filename}, bytes: {size}")
    return HTTPException(status_code=413, detail="File too large")
