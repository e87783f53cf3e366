"""
Transcription Pydantic schemas
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TranscriptionResponse(BaseModel):
    """Transcription response"""

    model_config = ConfigDict(from_attributes=True)

    text: str = Field(..., description="Transcript, with [MM:SS] headers when segmented")
    language: str
    segmented: bool
    total_segments: int = Field(..., ge=1)
    total_duration: Optional[float] = Field(None, description="Source duration (seconds)")


class ErrorResponse(BaseModel):
    """Structured error body"""

    error: str
    message: str
    details: dict = Field(default_factory=dict)
