"""
Pydantic schemas
"""

from .upload import (
    AssembledUploadResponse,
    ChunkResponse,
    UploadComplete,
    UploadSessionCreate,
    UploadSessionResponse,
)
from .transcription import ErrorResponse, TranscriptionResponse

__all__ = [
    "UploadSessionCreate",
    "UploadSessionResponse",
    "ChunkResponse",
    "UploadComplete",
    "AssembledUploadResponse",
    "TranscriptionResponse",
    "ErrorResponse",
]
