"""
Gemini transcription client
Sends one audio payload to Gemini with model fallback and retry-with-backoff
"""

from typing import Any, Callable, Optional, Sequence

import google.generativeai as genai
from loguru import logger

from mediascribe.config import Settings
from mediascribe.exceptions import PayloadTooLargeError, TranscriptionUnavailableError
from mediascribe.utils.retry import FallbackRetryPolicy

DEFAULT_MODELS = ("gemini-1.5-flash", "gemini-1.5-pro")
DEFAULT_PAYLOAD_LIMIT = 20 * 1024 * 1024  # 20MB inline data ceiling

LANGUAGE_INSTRUCTIONS = {
    "auto": "Detecta automáticamente el idioma y transcribe el audio.",
    "es": "Transcribe el audio en español.",
    "en": "Transcribe the audio in English.",
    "fr": "Transcris l'audio en français.",
    "ca": "Transcriu l'àudio en català.",
}


def build_transcription_prompt(language: Optional[str] = "auto") -> str:
    """Prompt asking for the spoken text only, with speaker labels"""
    instruction = LANGUAGE_INSTRUCTIONS.get(language or "auto", LANGUAGE_INSTRUCTIONS["auto"])
    return (
        f"{instruction}\n\n"
        "Provide ONLY the transcription of the spoken text, without additional comments.\n"
        'If several people are speaking, mark each change of speaker with "Speaker 1:", '
        '"Speaker 2:", etc.'
    )


class GeminiTranscriptionClient:
    """Gemini audio transcription client"""

    def __init__(
        self,
        api_key: str,
        models: Sequence[str] = DEFAULT_MODELS,
        max_payload_bytes: int = DEFAULT_PAYLOAD_LIMIT,
        policy: Optional[FallbackRetryPolicy] = None,
        model_factory: Optional[Callable[[str], Any]] = None,
    ):
        """
        Initialize the client

        Args:
            api_key: Gemini API key
            models: Candidate models, cheapest first
            max_payload_bytes: Hard limit for one inline payload
            policy: Fallback/retry policy (defaults to 3 attempts, 1s base backoff)
            model_factory: Builds a model object from its name
        """
        if not api_key and model_factory is None:
            raise TranscriptionUnavailableError("GEMINI_API_KEY is required")

        self.models = list(models)
        self.max_payload_bytes = max_payload_bytes
        self.policy = policy or FallbackRetryPolicy(self.models)

        if model_factory is None:
            genai.configure(api_key=api_key)
            model_factory = genai.GenerativeModel
        self._model_factory = model_factory

        logger.info(
            f"Gemini client initialized: models={self.models}, "
            f"limit={self.max_payload_bytes / (1024 * 1024):.0f}MB"
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiTranscriptionClient":
        policy = FallbackRetryPolicy(
            settings.transcription_models,
            max_attempts=settings.transcription_max_attempts,
            base_delay=settings.transcription_backoff_base_ms / 1000,
        )
        return cls(
            settings.gemini_api_key,
            models=settings.transcription_models,
            max_payload_bytes=settings.remote_payload_limit_bytes,
            policy=policy,
        )

    def check_payload(self, audio_bytes: bytes) -> None:
        """
        Raises:
            PayloadTooLargeError: payload above the remote limit
        """
        if len(audio_bytes) > self.max_payload_bytes:
            raise PayloadTooLargeError(
                f"Audio payload of {len(audio_bytes) / (1024 * 1024):.2f}MB exceeds the "
                f"{self.max_payload_bytes / (1024 * 1024):.0f}MB limit",
                {"size": len(audio_bytes), "limit": self.max_payload_bytes},
            )

    def transcribe(
        self,
        audio_bytes: bytes,
        mime_type: str = "audio/mpeg",
        language: Optional[str] = "auto",
        prompt: Optional[str] = None,
    ) -> str:
        """
        Transcribe one audio payload

        Args:
            audio_bytes: Encoded audio
            mime_type: Payload MIME type
            language: Language hint ('auto', 'es', 'en', 'fr', 'ca')
            prompt: Overrides the generated prompt

        Returns:
            Transcribed text

        Raises:
            PayloadTooLargeError: payload above the remote limit (never sent)
            AllModelsFailedError: every model failed after retries
        """
        prompt = prompt or build_transcription_prompt(language)
        audio_part = {"mime_type": mime_type, "data": audio_bytes}

        def _attempt(model_name: str) -> str:
            self.check_payload(audio_bytes)
            model = self._model_factory(model_name)
            response = model.generate_content([prompt, audio_part])
            text = (response.text or "").strip()
            if not text:
                raise ValueError(f"Empty transcription from {model_name}")
            return text

        logger.info(
            f"Transcribing {len(audio_bytes) / (1024 * 1024):.2f}MB ({mime_type}), language={language}"
        )
        return self.policy.run(_attempt, label="transcription")
