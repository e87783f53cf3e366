"""
Transcription pipeline service
assemble -> transcode -> (segment) -> transcribe -> combine, with cleanup on every exit path
"""

from typing import Callable, Iterable, Optional

from loguru import logger

from mediascribe.config import Settings
from mediascribe.exceptions import ConversionFailedError, TranscriptionUnavailableError
from mediascribe.integrations.gemini import GeminiTranscriptionClient
from mediascribe.models import PreparedAudio, TranscriptionResult, UnitTranscript
from mediascribe.utils.ffmpeg import FFmpegHelper
from .segmenter import SEGMENTS_SUBDIR, MediaSegmenter
from .storage_service import TempStorage
from .upload_service import UploadService

COMPRESSED_SUBDIR = "compressed"
DIRECT_SUBDIR = "direct"

# (stage, progress 0-100, message)
ProgressCallback = Callable[[str, float, str], None]


def format_timestamp(seconds: float) -> str:
    """MM:SS, or HH:MM:SS from one hour on"""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def combine_results(results: Iterable[UnitTranscript]) -> str:
    """Join unit transcripts in timeline order, each prefixed with its start timestamp"""
    ordered = sorted(results, key=lambda r: (r.start_time, r.segment_index))
    return "\n\n".join(f"[{format_timestamp(r.start_time)}] {r.text}" for r in ordered)


class TranscriptionService:
    """Transcription pipeline"""

    def __init__(
        self,
        storage: TempStorage,
        uploads: UploadService,
        ffmpeg: FFmpegHelper,
        segmenter: MediaSegmenter,
        client: Optional[GeminiTranscriptionClient] = None,
        canonical_bitrate_kbps: int = 64,
        segmentation_threshold_bytes: int = 18 * 1024 * 1024,
    ):
        self.storage = storage
        self.uploads = uploads
        self.ffmpeg = ffmpeg
        self.segmenter = segmenter
        self.client = client
        self.canonical_bitrate_kbps = canonical_bitrate_kbps
        self.segmentation_threshold_bytes = segmentation_threshold_bytes

    @classmethod
    def from_settings(
        cls,
        storage: TempStorage,
        uploads: UploadService,
        ffmpeg: FFmpegHelper,
        client: Optional[GeminiTranscriptionClient],
        settings: Settings,
    ) -> "TranscriptionService":
        return cls(
            storage,
            uploads,
            ffmpeg,
            MediaSegmenter.from_settings(ffmpeg, storage, settings),
            client=client,
            canonical_bitrate_kbps=settings.canonical_bitrate_kbps,
            segmentation_threshold_bytes=settings.segmentation_threshold_bytes,
        )

    # ==================== Steps ====================

    def assemble_upload(self, upload_id: str, total_chunks: Optional[int] = None) -> str:
        """Reassemble an upload and return the assembled file path"""
        return self.uploads.complete_upload(upload_id, total_chunks).file_path

    def transcode_and_segment(self, file_path: str) -> PreparedAudio:
        """
        Convert to canonical MP3 and split it when too large for one request

        Args:
            file_path: Source media

        Returns:
            PreparedAudio; ``segmentation`` is set only above the split threshold

        Raises:
            ConversionFailedError / ProbeFailedError / ToolNotFoundError
        """
        self.storage.ensure_dir(COMPRESSED_SUBDIR)
        compressed_path = self.storage.allocate_path("compressed.mp3", COMPRESSED_SUBDIR)

        try:
            size = self.ffmpeg.transcode(file_path, compressed_path, self.canonical_bitrate_kbps)

            if size <= self.segmentation_threshold_bytes:
                logger.info(f"Sending as a single unit: {size / (1024 * 1024):.2f}MB")
                return PreparedAudio(compressed_path=compressed_path, compressed_size=size)

            logger.info(
                f"File too large ({size / (1024 * 1024):.2f}MB > "
                f"{self.segmentation_threshold_bytes / (1024 * 1024):.0f}MB), segmenting..."
            )
            segmentation = self.segmenter.segment(compressed_path)
            if not segmentation.segments:
                self.segmenter.release(segmentation)
                raise ConversionFailedError(
                    "Segmentation produced no usable segments", {"file": compressed_path}
                )
            return PreparedAudio(
                compressed_path=compressed_path,
                compressed_size=size,
                segmentation=segmentation,
            )
        except Exception:
            self.storage.release(compressed_path)
            raise

    def release_prepared(self, prepared: PreparedAudio) -> None:
        """Delete the compressed file and any segments"""
        if prepared.segmentation is not None:
            self.segmenter.release(prepared.segmentation)
        self._release_quietly(prepared.compressed_path)

    def transcribe_unit(
        self,
        audio_bytes: bytes,
        mime_type: str = "audio/mpeg",
        language: Optional[str] = "auto",
    ) -> str:
        """Send one unit to the remote transcription client"""
        if self.client is None:
            raise TranscriptionUnavailableError("Transcription client is not configured")
        return self.client.transcribe(audio_bytes, mime_type=mime_type, language=language)

    def transcribe_prepared(
        self,
        prepared: PreparedAudio,
        language: Optional[str] = "auto",
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscriptionResult:
        """Transcribe every unit sequentially and combine the texts"""
        units = prepared.units
        results: list[UnitTranscript] = []

        for position, (path, start_time, index) in enumerate(units):
            _report(
                on_progress,
                "transcribing",
                40 + 55 * position / len(units),
                f"Transcribing unit {position + 1} of {len(units)}",
            )
            with open(path, "rb") as f:
                audio_bytes = f.read()

            text = self.transcribe_unit(audio_bytes, language=language)
            results.append(UnitTranscript(start_time=start_time, text=text, segment_index=index))

        if prepared.segmented:
            text = combine_results(results)
            total_duration = prepared.segmentation.total_duration
        else:
            text = results[0].text
            total_duration = None

        return TranscriptionResult(
            text=text,
            language=language or "auto",
            segmented=prepared.segmented,
            total_segments=len(results),
            total_duration=total_duration,
        )

    # ==================== End to end ====================

    def process_file(
        self,
        file_path: str,
        language: Optional[str] = "auto",
        on_progress: Optional[ProgressCallback] = None,
        owns_input: bool = True,
    ) -> TranscriptionResult:
        """
        Transcode, segment and transcribe one media file

        Args:
            file_path: Source media
            language: Language hint
            on_progress: Progress callback
            owns_input: Delete file_path when done (success or failure)

        Returns:
            TranscriptionResult
        """
        prepared: Optional[PreparedAudio] = None
        try:
            _report(on_progress, "transcoding", 10, "Converting to compressed MP3")
            prepared = self.transcode_and_segment(file_path)

            if prepared.segmented:
                _report(
                    on_progress,
                    "segmenting",
                    35,
                    f"Split into {len(prepared.segmentation)} segments",
                )

            result = self.transcribe_prepared(prepared, language, on_progress)
            _report(on_progress, "complete", 100, "Transcription complete")

            logger.info(
                f"Transcription completed: segmented={result.segmented}, "
                f"units={result.total_segments}, chars={len(result.text)}"
            )
            return result

        finally:
            if prepared is not None:
                self.release_prepared(prepared)
            if owns_input:
                self._release_quietly(file_path)

    def process_upload(
        self,
        upload_id: str,
        total_chunks: Optional[int] = None,
        language: Optional[str] = "auto",
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscriptionResult:
        """Assemble a chunked upload and transcribe it"""
        _report(on_progress, "assembling", 0, f"Assembling upload {upload_id}")
        file_path = self.assemble_upload(upload_id, total_chunks)
        return self.process_file(file_path, language, on_progress, owns_input=True)

    # ==================== Housekeeping ====================

    def sweep_scratch(self, max_age_seconds: float) -> int:
        """
        Remove pipeline leftovers (compressed files, segment runs, direct uploads)
        older than max_age_seconds, e.g. after a crash or a dropped request

        Returns:
            Number of entries removed
        """
        return sum(
            self.storage.sweep_stale(subdir, max_age_seconds)
            for subdir in (COMPRESSED_SUBDIR, SEGMENTS_SUBDIR, DIRECT_SUBDIR)
        )

    def _release_quietly(self, path: str) -> None:
        try:
            self.storage.release(path)
        except OSError as e:
            logger.warning(f"Failed to cleanup temp file {path}: {e}")


def _report(
    on_progress: Optional[ProgressCallback], stage: str, progress: float, message: str
) -> None:
    if on_progress is not None:
        on_progress(stage, progress, message)
