"""Health check endpoint."""

import platform
import shutil
import sys

from fastapi import APIRouter

from mediatrack.config import settings
from mediatrack.storage.supabase_client import storage_configured

router = APIRouter()


@router.get("/health")
async def health_check():
    """Service health, media tooling and integration status."""
    return {
        "status": "healthy",
        "processing_mode": settings.processing_mode,
        "ffmpeg_available": shutil.which("ffmpeg") is not None,
        "ffprobe_available": shutil.which("ffprobe") is not None,
        "github_configured": bool(settings.github_token and settings.github_repo),
        "storage_configured": storage_configured(),
        "python_version": sys.version,
        "platform": platform.platform(),
    }
