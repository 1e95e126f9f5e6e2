"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from videodesk.core.config import settings
from videodesk.core.logging import setup_logging
from videodesk.api import call_requests, callbacks, health, tokens, uploads
from videodesk.services.storage.local import UPLOADS_PATH

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    logger.info(
        f"[STARTUP] Session provider: {settings.session_provider}, uploads: {settings.upload_dir}"
    )
    yield
    # Shutdown
    logger.info("[SHUTDOWN] Stopping")


app = FastAPI(
    title="Videodesk",
    description="Customer/agent video call queue and collaboration backend",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers (must be before static file mounting to take precedence)
app.include_router(health.router, tags=["health"])
app.include_router(call_requests.router, tags=["call-requests"])
app.include_router(tokens.router, tags=["tokens"])
app.include_router(uploads.router, tags=["uploads"])
app.include_router(callbacks.router, tags=["callbacks"])

# Uploaded files; the directory is created at startup
app.mount(UPLOADS_PATH, StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")


@app.get("/")
async def root():
    """Service banner."""
    return {
        "message": "Videodesk API",
        "version": "0.1.0",
    }
