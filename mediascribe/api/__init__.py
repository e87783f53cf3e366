"""
API routers
"""

from .deps import (
    get_app_settings,
    get_ffmpeg,
    get_storage,
    get_transcription_service,
    get_upload_service,
)
from .monitoring import router as monitoring_router
from .transcriptions import router as transcriptions_router
from .uploads import router as uploads_router

__all__ = [
    "get_app_settings",
    "get_ffmpeg",
    "get_storage",
    "get_transcription_service",
    "get_upload_service",
    "monitoring_router",
    "transcriptions_router",
    "uploads_router",
]
