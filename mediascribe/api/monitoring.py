"""
Monitoring and health check API
"""

import os
from typing import Any

from fastapi import APIRouter, Depends

from mediascribe.config import Settings
from mediascribe.services import TempStorage, TranscriptionService, UploadService
from mediascribe.utils.ffmpeg import FFmpegHelper
from .deps import (
    get_app_settings,
    get_ffmpeg,
    get_storage,
    get_transcription_service,
    get_upload_service,
)

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


@router.get("/health")
def health_check(
    settings: Settings = Depends(get_app_settings),
    storage: TempStorage = Depends(get_storage),
    ffmpeg: FFmpegHelper = Depends(get_ffmpeg),
    service: TranscriptionService = Depends(get_transcription_service),
) -> dict[str, Any]:
    """
    Health check

    Returns:
        {
            "status": "healthy",
            "services": {
                "ffmpeg": true,
                "transcription": true,
                "storage": true
            }
        }
    """
    services = {
        "ffmpeg": ffmpeg.check_ffmpeg(),
        "transcription": service.client is not None,
        "storage": os.path.isdir(storage.root) and os.access(storage.root, os.W_OK),
    }

    return {
        "status": "healthy" if all(services.values()) else "unhealthy",
        "services": services,
        "version": settings.app_version,
    }


@router.post("/cleanup")
def cleanup_stale_uploads(
    settings: Settings = Depends(get_app_settings),
    upload_service: UploadService = Depends(get_upload_service),
    service: TranscriptionService = Depends(get_transcription_service),
) -> dict[str, Any]:
    """
    Remove scratch data idle for longer than STALE_UPLOAD_MAX_AGE

    Covers abandoned chunked uploads, unclaimed assembled files and pipeline
    leftovers (compressed audio, segment runs, direct uploads).
    """
    removed = upload_service.sweep_stale_uploads(settings.stale_upload_max_age)
    scratch_removed = service.sweep_scratch(settings.stale_upload_max_age)
    return {
        "removed": removed,
        "scratch_removed": scratch_removed,
        "max_age_seconds": settings.stale_upload_max_age,
    }
