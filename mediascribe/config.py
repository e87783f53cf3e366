"""
Application configuration
Loaded from environment variables with pydantic-settings
"""

import os
import tempfile
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ==================== Application ====================
    app_name: str = "MediaScribe API"
    app_version: str = "1.0.0"
    debug: bool = False
    api_prefix: str = "/api/v1"

    # ==================== Scratch storage ====================
    temp_root: str = Field(
        default=os.path.join(tempfile.gettempdir(), "mediascribe"), alias="TEMP_ROOT"
    )
    stale_upload_max_age: int = Field(default=24 * 3600, alias="STALE_UPLOAD_MAX_AGE")  # 24h

    # ==================== FFmpeg ====================
    ffmpeg_binary: str = Field(
        default="ffmpeg",
        alias="FFMPEG_BINARY",
        description="Executable name on PATH or absolute path",
    )
    ffmpeg_timeout: int = Field(default=1800, alias="FFMPEG_TIMEOUT")  # seconds per invocation
    require_ffmpeg: bool = Field(default=True, alias="REQUIRE_FFMPEG")

    # ==================== Gemini transcription ====================
    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    transcription_models: list[str] = Field(
        default=["gemini-1.5-flash", "gemini-1.5-pro"], alias="TRANSCRIPTION_MODELS"
    )
    transcription_max_attempts: int = Field(default=3, alias="TRANSCRIPTION_MAX_ATTEMPTS")
    transcription_backoff_base_ms: int = Field(default=1000, alias="TRANSCRIPTION_BACKOFF_BASE_MS")
    remote_payload_limit_mb: float = Field(default=20, alias="REMOTE_PAYLOAD_LIMIT_MB")

    # ==================== Media processing ====================
    segmentation_threshold_mb: float = Field(default=18, alias="SEGMENTATION_THRESHOLD_MB")
    segment_duration_seconds: int = Field(default=300, alias="SEGMENT_DURATION_SECONDS")  # 5 minutes
    canonical_bitrate_kbps: int = Field(default=64, alias="CANONICAL_BITRATE_KBPS")
    segment_bitrate_kbps: int = Field(default=128, alias="SEGMENT_BITRATE_KBPS")

    # Upload limits
    max_upload_size: int = Field(default=100 * MB, alias="MAX_UPLOAD_SIZE")  # 100MB
    max_chunk_size: int = Field(default=5 * MB, alias="MAX_CHUNK_SIZE")  # 5MB

    # ==================== CORS ====================
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost"], alias="CORS_ORIGINS"
    )
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # ==================== Logging ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str = Field(default="logs/app.log", alias="LOG_FILE")

    @property
    def remote_payload_limit_bytes(self) -> int:
        return int(self.remote_payload_limit_mb * MB)

    @property
    def segmentation_threshold_bytes(self) -> int:
        return int(self.segmentation_threshold_mb * MB)


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()


settings = get_settings()
