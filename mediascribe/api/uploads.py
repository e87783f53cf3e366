"""
Chunked upload API
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from loguru import logger

from mediascribe.schemas import (
    AssembledUploadResponse,
    ChunkResponse,
    UploadComplete,
    UploadSessionCreate,
    UploadSessionResponse,
)
from mediascribe.services import UploadService
from .deps import get_upload_service

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.post("", response_model=UploadSessionResponse, status_code=status.HTTP_201_CREATED)
def create_upload(
    payload: UploadSessionCreate,
    upload_service: UploadService = Depends(get_upload_service),
):
    """
    Open a chunked upload

    - **file_name**: original file name
    - **file_size**: total size in bytes (bounded by MAX_UPLOAD_SIZE)
    - **file_type**: MIME type
    - **upload_id**: optional caller-supplied id
    """
    session = upload_service.create_session(
        file_name=payload.file_name,
        file_size=payload.file_size,
        file_type=payload.file_type,
        upload_id=payload.upload_id,
    )
    return UploadSessionResponse.model_validate(session)


@router.post("/{upload_id}/chunks", response_model=ChunkResponse)
def upload_chunk(
    upload_id: str,
    chunk: UploadFile = File(..., description="Chunk bytes"),
    chunk_index: int = Form(..., description="0-based chunk index"),
    upload_service: UploadService = Depends(get_upload_service),
):
    """
    Store one chunk; re-sending an index replaces it
    """
    # One byte past the limit is enough for receive_chunk to reject it
    limit = upload_service.max_chunk_size
    data = chunk.file.read(limit + 1) if limit else chunk.file.read()
    upload_service.receive_chunk(upload_id, chunk_index, data)

    logger.info(f"Chunk {chunk_index} saved for upload {upload_id} ({len(data)} bytes)")
    return ChunkResponse(upload_id=upload_id, chunk_index=chunk_index, size=len(data))


@router.post("/{upload_id}/complete", response_model=AssembledUploadResponse)
def complete_upload(
    upload_id: str,
    payload: Optional[UploadComplete] = None,
    upload_service: UploadService = Depends(get_upload_service),
):
    """
    Reassemble every chunk into one file

    Returns 409 `missing_chunk` while chunks are still outstanding; the call
    can be repeated once they arrive.
    """
    total_chunks = payload.total_chunks if payload else None
    assembled = upload_service.complete_upload(upload_id, total_chunks)
    return AssembledUploadResponse.model_validate(assembled)
