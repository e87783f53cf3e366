"""Custom exceptions for the ingestion and transcription pipeline."""

from typing import Any, Optional


class MediaScribeError(Exception):
    """Base exception for pipeline errors.

    Every subclass carries a machine-readable ``error_code`` and the HTTP
    status it maps to; ``details`` holds diagnostic context (stderr tails,
    indices, sizes).
    """

    error_code = "internal_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(MediaScribeError):
    """Raised when request parameters are invalid."""

    error_code = "invalid_input"
    status_code = 400


class UploadNotFoundError(InvalidInputError):
    """Raised when an upload has no chunk files on disk."""

    error_code = "upload_not_found"
    status_code = 404


class MissingChunkError(MediaScribeError):
    """Raised when assembly is attempted before every chunk has arrived."""

    error_code = "missing_chunk"
    status_code = 409

    def __init__(self, index: int, upload_id: Optional[str] = None):
        super().__init__(
            f"Chunk {index} is missing",
            {"chunk_index": index, "upload_id": upload_id},
        )
        self.index = index


class AssemblyFailedError(MediaScribeError):
    """Raised when chunk reassembly cannot write the output file."""

    error_code = "assembly_failed"


class ToolNotFoundError(MediaScribeError):
    """Raised when the external transcoder cannot be executed."""

    error_code = "tool_not_found"


class ProbeFailedError(MediaScribeError):
    """Raised when the media duration cannot be read."""

    error_code = "probe_failed"
    status_code = 422


class ConversionFailedError(MediaScribeError):
    """Raised when transcoding fails or produces implausible output."""

    error_code = "conversion_failed"
    status_code = 422


class PayloadTooLargeError(MediaScribeError):
    """Raised before sending a payload above the remote API limit."""

    error_code = "payload_too_large"
    status_code = 413


class ModelOverloadedError(MediaScribeError):
    """Raised when a remote model reports it is saturated."""

    error_code = "model_overloaded"
    status_code = 503
    retryable = True


class AllModelsFailedError(MediaScribeError):
    """Raised after the whole fallback/retry matrix is exhausted."""

    error_code = "all_models_failed"
    status_code = 502


class TranscriptionUnavailableError(MediaScribeError):
    """Raised when no transcription client is configured."""

    error_code = "transcription_unavailable"
    status_code = 503
