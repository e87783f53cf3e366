"""
Domain models
"""

from .segment import (
    MediaSegment,
    PreparedAudio,
    SegmentationResult,
    TranscriptionResult,
    UnitTranscript,
)
from .upload import AssembledUpload, UploadSession

__all__ = [
    "MediaSegment",
    "SegmentationResult",
    "PreparedAudio",
    "UnitTranscript",
    "TranscriptionResult",
    "UploadSession",
    "AssembledUpload",
]
