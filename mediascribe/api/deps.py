"""
API dependency injection

Components are built once in the application lifespan and kept on app.state.
"""

from fastapi import Request

from mediascribe.config import Settings, get_settings
from mediascribe.services import TempStorage, TranscriptionService, UploadService
from mediascribe.utils.ffmpeg import FFmpegHelper


def get_app_settings() -> Settings:
    """Application settings"""
    return get_settings()


def get_storage(request: Request) -> TempStorage:
    """Scratch storage"""
    return request.app.state.storage


def get_ffmpeg(request: Request) -> FFmpegHelper:
    """FFmpeg helper"""
    return request.app.state.ffmpeg


def get_upload_service(request: Request) -> UploadService:
    """Chunk assembler"""
    return request.app.state.upload_service


def get_transcription_service(request: Request) -> TranscriptionService:
    """Transcription pipeline"""
    return request.app.state.transcription_service
