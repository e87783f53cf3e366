"""
Media segment models
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MediaSegment:
    """One time-bounded slice of a canonical audio file"""

    segment_path: str
    start_time: float  # seconds
    end_time: float  # seconds
    segment_index: int

    @property
    def duration(self) -> float:
        """Segment duration (seconds)"""
        return self.end_time - self.start_time


@dataclass(frozen=True)
class SegmentationResult:
    """Ordered output of a full segmentation run"""

    segments: tuple[MediaSegment, ...]
    total_duration: float
    original_file_path: str
    segments_dir: Optional[str] = None

    def __len__(self) -> int:
        return len(self.segments)


@dataclass(frozen=True)
class PreparedAudio:
    """Canonical audio ready to be sent, either whole or as segments"""

    compressed_path: str
    compressed_size: int
    segmentation: Optional[SegmentationResult] = None

    @property
    def segmented(self) -> bool:
        return self.segmentation is not None

    @property
    def units(self) -> list[tuple[str, float, int]]:
        """(path, start_time, segment_index) of every unit to transcribe, in timeline order."""
        if self.segmentation is None:
            return [(self.compressed_path, 0.0, 0)]
        return [
            (seg.segment_path, seg.start_time, seg.segment_index)
            for seg in self.segmentation.segments
        ]


@dataclass(frozen=True)
class UnitTranscript:
    """Transcription of one unit, positioned on the source timeline"""

    start_time: float
    text: str
    segment_index: int = 0


@dataclass(frozen=True)
class TranscriptionResult:
    """End-to-end pipeline outcome"""

    text: str
    language: str
    segmented: bool
    total_segments: int
    total_duration: Optional[float] = None
