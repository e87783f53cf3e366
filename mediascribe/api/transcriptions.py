"""
Transcription API
"""

import os
import shutil
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from loguru import logger

from mediascribe.exceptions import InvalidInputError
from mediascribe.schemas import TranscriptionResponse
from mediascribe.services import TempStorage, TranscriptionService
from mediascribe.services.transcription_service import DIRECT_SUBDIR
from mediascribe.services.upload_service import UPLOADS_SUBDIR
from .deps import get_storage, get_transcription_service

router = APIRouter(prefix="/transcriptions", tags=["transcriptions"])


@router.post("", response_model=TranscriptionResponse)
def create_transcription(
    file: Optional[UploadFile] = File(None, description="Media file (small uploads)"),
    upload_id: Optional[str] = Form(None, description="Chunked upload to assemble"),
    total_chunks: Optional[int] = Form(None, description="Expected chunk count"),
    server_file_path: Optional[str] = Form(None, description="Previously assembled file"),
    language: str = Form("auto", description="auto, es, en, fr, ca"),
    storage: TempStorage = Depends(get_storage),
    service: TranscriptionService = Depends(get_transcription_service),
):
    """
    Transcribe media

    Exactly one source is required:

    - **file**: media sent in this request
    - **upload_id**: chunked upload, assembled here (optionally checked against **total_chunks**)
    - **server_file_path**: path returned by `/uploads/{upload_id}/complete`
    """
    sources = [s for s in (file, upload_id, server_file_path) if s]
    if len(sources) != 1:
        raise InvalidInputError(
            "Provide exactly one of file, upload_id or server_file_path"
        )

    if upload_id:
        result = service.process_upload(upload_id, total_chunks, language=language)

    elif server_file_path:
        # Only files assembled directly under {root}/uploads are accepted
        uploads_dir = os.path.realpath(storage.get_dir(UPLOADS_SUBDIR))
        if (
            not storage.contains(server_file_path)
            or os.path.dirname(os.path.realpath(server_file_path)) != uploads_dir
            or not os.path.isfile(server_file_path)
        ):
            raise InvalidInputError(f"Unknown server file: {server_file_path}")
        result = service.process_file(server_file_path, language=language, owns_input=True)

    else:
        storage.ensure_dir(DIRECT_SUBDIR)
        local_path = storage.allocate_path(file.filename or "upload.bin", DIRECT_SUBDIR)
        try:
            with open(local_path, "wb") as out:
                shutil.copyfileobj(file.file, out)
        except OSError:
            storage.release(local_path)
            raise

        logger.info(f"Processing file: {file.filename} ({os.path.getsize(local_path)} bytes)")
        result = service.process_file(local_path, language=language, owns_input=True)

    return TranscriptionResponse.model_validate(result)
