"""Shared fixtures: scratch storage, fake ffmpeg and a fake transcription client."""

from __future__ import annotations

from pathlib import Path

import pytest

from mediascribe.exceptions import AllModelsFailedError, ConversionFailedError
from mediascribe.services import MediaSegmenter, TempStorage, TranscriptionService, UploadService

MB = 1024 * 1024


def write_sized_file(path: str, size: int) -> None:
    """Create a (sparse) file of exactly ``size`` bytes."""
    with open(path, "wb") as f:
        f.truncate(size)


def scratch_files(storage: TempStorage) -> list[Path]:
    root = Path(storage.root)
    if not root.exists():
        return []
    return sorted(p for p in root.rglob("*") if p.is_file())


class FakeFFmpeg:
    """In-process stand-in for FFmpegHelper."""

    def __init__(self) -> None:
        self.duration = 620.0
        self.transcode_size = 5 * MB
        self.transcode_error: Exception | None = None
        self.segment_size = 4096
        self.segment_sizes: dict[float, int] = {}
        self.fail_segment_at: set[float] = set()
        self.available = True
        self.calls: list[tuple] = []

    def check_ffmpeg(self) -> bool:
        return self.available

    def probe_duration(self, media_path: str) -> float:
        self.calls.append(("probe", media_path))
        return self.duration

    def estimate_compressed_size(self, media_path: str, bitrate_kbps: int = 64) -> float:
        return bitrate_kbps * self.probe_duration(media_path) / 8 / 1024

    def transcode(self, input_path: str, output_path: str, bitrate_kbps: int = 64) -> int:
        self.calls.append(("transcode", input_path, output_path, bitrate_kbps))
        if self.transcode_error is not None:
            raise self.transcode_error
        write_sized_file(output_path, self.transcode_size)
        return self.transcode_size

    def extract_segment(
        self,
        input_path: str,
        output_path: str,
        start: float,
        duration: float,
        bitrate_kbps: int = 128,
    ) -> int:
        self.calls.append(("segment", start, duration, bitrate_kbps))
        if start in self.fail_segment_at:
            raise ConversionFailedError(f"FFmpeg exited with code 1 at {start}s")
        size = self.segment_sizes.get(start, self.segment_size)
        write_sized_file(output_path, size)
        return size


class FakeTranscriptionClient:
    """Returns 'text N' for the N-th call; optionally fails on one call."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.fail_on_call: int | None = None

    def transcribe(self, audio_bytes, mime_type="audio/mpeg", language="auto", prompt=None):
        self.calls.append({"size": len(audio_bytes), "mime_type": mime_type, "language": language})
        if self.fail_on_call == len(self.calls):
            raise AllModelsFailedError("All models failed after retries: 500 internal")
        return f"text {len(self.calls)}"


@pytest.fixture
def storage(tmp_path) -> TempStorage:
    return TempStorage(str(tmp_path / "scratch"))


@pytest.fixture
def upload_service(storage) -> UploadService:
    return UploadService(storage, max_upload_size=10 * MB, max_chunk_size=1 * MB)


@pytest.fixture
def fake_ffmpeg() -> FakeFFmpeg:
    return FakeFFmpeg()


@pytest.fixture
def fake_client() -> FakeTranscriptionClient:
    return FakeTranscriptionClient()


@pytest.fixture
def segmenter(fake_ffmpeg, storage) -> MediaSegmenter:
    return MediaSegmenter(fake_ffmpeg, storage, segment_duration=300, bitrate_kbps=128)


@pytest.fixture
def transcription_service(storage, upload_service, fake_ffmpeg, segmenter, fake_client):
    return TranscriptionService(
        storage,
        upload_service,
        fake_ffmpeg,
        segmenter,
        client=fake_client,
        canonical_bitrate_kbps=64,
        segmentation_threshold_bytes=18 * MB,
    )
