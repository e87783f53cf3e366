"""
Service layer
"""

from .storage_service import TempStorage
from .upload_service import UploadService
from .segmenter import MediaSegmenter
from .transcription_service import TranscriptionService

__all__ = ["TempStorage", "UploadService", "MediaSegmenter", "TranscriptionService"]
