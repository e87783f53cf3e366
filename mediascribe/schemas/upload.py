"""
Upload Pydantic schemas
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadSessionCreate(BaseModel):
    """Open an upload session"""

    file_name: str = Field(..., min_length=1, max_length=255, description="Original file name")
    file_size: int = Field(..., gt=0, description="Total size in bytes")
    file_type: str = Field("", max_length=100, description="MIME type")
    upload_id: Optional[str] = Field(None, description="Caller-supplied upload id")


class UploadSessionResponse(BaseModel):
    """Upload session response"""

    model_config = ConfigDict(from_attributes=True)

    upload_id: str
    file_name: str
    file_size: int
    file_type: str
    max_chunk_size: int


class ChunkResponse(BaseModel):
    """Stored chunk response"""

    upload_id: str
    chunk_index: int
    size: int


class UploadComplete(BaseModel):
    """Complete an upload"""

    total_chunks: Optional[int] = Field(None, gt=0, description="Expected chunk count")


class AssembledUploadResponse(BaseModel):
    """Assembled upload response"""

    model_config = ConfigDict(from_attributes=True)

    upload_id: str
    file_path: str
    size: int
