from .transcription_client import (
    GeminiTranscriptionClient,
    build_transcription_prompt,
)

__all__ = ["GeminiTranscriptionClient", "build_transcription_prompt"]
