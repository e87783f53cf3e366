"""
Time-based media segmentation
"""

import math
from typing import Optional

from loguru import logger

from mediascribe.config import Settings
from mediascribe.exceptions import InvalidInputError
from mediascribe.models import MediaSegment, SegmentationResult
from mediascribe.utils.ffmpeg import MIN_SEGMENT_BYTES, FFmpegHelper
from .storage_service import TempStorage

SEGMENTS_SUBDIR = "segments"
MIN_SEGMENT_SECONDS = 1.0


def plan_segments(total_duration: float, segment_duration: float) -> list[tuple[int, float, float]]:
    """
    Split a timeline into fixed-length slots

    Slots shorter than one second (a short tail) are dropped.

    Returns:
        [(segment_index, start, end), ...]
    """
    if segment_duration <= 0:
        raise InvalidInputError(f"Invalid segment duration: {segment_duration}")

    plan = []
    for i in range(math.ceil(total_duration / segment_duration)):
        start = i * segment_duration
        end = min(start + segment_duration, total_duration)
        if end - start < MIN_SEGMENT_SECONDS:
            continue
        plan.append((i, start, end))
    return plan


class MediaSegmenter:
    """Splits canonical audio into bounded-duration MP3 segments, one ffmpeg run at a time"""

    def __init__(
        self,
        ffmpeg: FFmpegHelper,
        storage: TempStorage,
        segment_duration: float = 300,
        bitrate_kbps: int = 128,
    ):
        self.ffmpeg = ffmpeg
        self.storage = storage
        self.segment_duration = segment_duration
        self.bitrate_kbps = bitrate_kbps

    @classmethod
    def from_settings(
        cls, ffmpeg: FFmpegHelper, storage: TempStorage, settings: Settings
    ) -> "MediaSegmenter":
        return cls(
            ffmpeg,
            storage,
            segment_duration=settings.segment_duration_seconds,
            bitrate_kbps=settings.segment_bitrate_kbps,
        )

    def segment(
        self, file_path: str, segment_duration: Optional[float] = None
    ) -> SegmentationResult:
        """
        Split a media file into time-based segments

        Args:
            file_path: Canonical audio file
            segment_duration: Seconds per segment (defaults to the configured value)

        Returns:
            SegmentationResult with the surviving segments in timeline order

        Raises:
            ProbeFailedError / ConversionFailedError / ToolNotFoundError
        """
        if segment_duration is None:
            segment_duration = self.segment_duration
        logger.info(f"Starting segmentation: {file_path}")

        total_duration = self.ffmpeg.probe_duration(file_path)
        plan = plan_segments(total_duration, segment_duration)
        planned = math.ceil(total_duration / segment_duration)

        segments_subdir = self.storage.allocate_subdir(SEGMENTS_SUBDIR)
        segments_dir = self.storage.get_dir(segments_subdir)

        logger.info(
            f"Creating {len(plan)} segments of {segment_duration}s "
            f"(total={total_duration:.2f}s)"
        )

        segments: list[MediaSegment] = []
        try:
            for index, start, end in plan:
                segment_path = self.storage.allocate_path(
                    f"segment_{index:03d}.mp3", segments_subdir
                )
                logger.info(f"Creating segment {index + 1}/{planned}: {start}s - {end}s")

                size = self.ffmpeg.extract_segment(
                    file_path,
                    segment_path,
                    start=start,
                    duration=end - start,
                    bitrate_kbps=self.bitrate_kbps,
                )

                if size > MIN_SEGMENT_BYTES:
                    segments.append(
                        MediaSegment(
                            segment_path=segment_path,
                            start_time=start,
                            end_time=end,
                            segment_index=index,
                        )
                    )
                else:
                    logger.warning(f"Segment {index} is too small ({size} bytes), skipping")
                    self.storage.release(segment_path)
        except Exception:
            for seg in segments:
                self.storage.release(seg.segment_path)
            self.storage.release_dir(segments_dir)
            raise

        logger.info(f"Successfully created {len(segments)} segments")

        return SegmentationResult(
            segments=tuple(segments),
            total_duration=total_duration,
            original_file_path=file_path,
            segments_dir=segments_dir,
        )

    def release(self, result: SegmentationResult) -> None:
        """Delete every segment file of a run and its directory"""
        for seg in result.segments:
            try:
                self.storage.release(seg.segment_path)
            except OSError as e:
                logger.warning(f"Failed to release segment {seg.segment_path}: {e}")
        self.storage.release_dir(result.segments_dir)

    def estimate_compressed_size(self, file_path: str, bitrate_kbps: int = 64) -> float:
        """Estimated MP3 size in MB at the given bitrate"""
        return self.ffmpeg.estimate_compressed_size(file_path, bitrate_kbps)
