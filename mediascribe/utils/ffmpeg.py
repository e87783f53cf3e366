"""
FFmpeg helper
Duration probing + canonical MP3 transcoding + time-offset extraction
"""

import os
import re
import shutil
import subprocess
from typing import Optional

from loguru import logger

from mediascribe.config import Settings
from mediascribe.exceptions import (
    ConversionFailedError,
    ProbeFailedError,
    ToolNotFoundError,
)

DURATION_PATTERN = re.compile(r"Duration: (\d{2}):(\d{2}):(\d{2}\.\d{2})")

SAMPLE_RATE = 44100
# Converted files under this size are treated as failed conversions
MIN_CONVERTED_BYTES = 1000
MIN_SEGMENT_BYTES = 100


def _tail(text: str, limit: int = 2000) -> str:
    return text[-limit:] if text else ""


class FFmpegHelper:
    """Wrapper around one configured ffmpeg executable"""

    def __init__(self, binary: str = "ffmpeg", timeout: Optional[float] = None):
        self.binary = binary
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "FFmpegHelper":
        return cls(settings.ffmpeg_binary, timeout=settings.ffmpeg_timeout)

    def resolve_binary(self) -> str:
        """
        Resolve the executable location

        Returns:
            Absolute path of the executable

        Raises:
            ToolNotFoundError: not on PATH and not an executable file
        """
        resolved = shutil.which(self.binary)
        if resolved:
            return resolved
        raise ToolNotFoundError(
            f"FFmpeg not found: {self.binary}. Please install FFmpeg or set FFMPEG_BINARY.",
            {"binary": self.binary},
        )

    def check_ffmpeg(self) -> bool:
        """Check that ffmpeg runs"""
        try:
            subprocess.run(
                [self.binary, "-version"],
                check=True,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=30,
            )
            return True
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError):
            return False

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            return subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"FFmpeg not executable: {self.binary} ({e})")
            raise ToolNotFoundError(
                f"FFmpeg not found: {self.binary}. Please install FFmpeg or set FFMPEG_BINARY.",
                {"binary": self.binary},
            ) from e

    # ==================== Probe ====================

    def probe_duration(self, media_path: str) -> float:
        """
        Read media duration from ffmpeg's diagnostic output

        Args:
            media_path: Media file path

        Returns:
            Duration in seconds

        Raises:
            ProbeFailedError: no Duration field in the output
            ToolNotFoundError: ffmpeg cannot be executed
        """
        # Without an output file ffmpeg exits non-zero but still prints the input header
        try:
            result = self._run(["-hide_banner", "-i", media_path])
        except subprocess.TimeoutExpired as e:
            raise ProbeFailedError(
                f"Probe timed out after {e.timeout}s", {"file": media_path}
            ) from e

        output = result.stderr.decode(errors="replace")
        match = DURATION_PATTERN.search(output)
        if not match:
            logger.error(f"Could not parse duration: {media_path}\n{_tail(output, 500)}")
            raise ProbeFailedError(
                "Could not parse media duration from FFmpeg output",
                {"file": media_path, "stderr": _tail(output)},
            )

        hours = int(match.group(1))
        minutes = int(match.group(2))
        seconds = float(match.group(3))
        duration = hours * 3600 + minutes * 60 + seconds

        logger.info(f"Media duration: {duration:.2f}s ({media_path})")
        return duration

    def estimate_compressed_size(self, media_path: str, bitrate_kbps: int = 64) -> float:
        """
        Estimate MP3 size at a bitrate, in MB

        (bitrate kbps * duration s) / 8 = size KB
        """
        duration = self.probe_duration(media_path)
        size_mb = bitrate_kbps * duration / 8 / 1024
        logger.info(f"Estimated compressed size at {bitrate_kbps}kbps: {size_mb:.2f}MB")
        return size_mb

    # ==================== Convert ====================

    def transcode(
        self,
        input_path: str,
        output_path: str,
        bitrate_kbps: int = 64,
    ) -> int:
        """
        Convert any audio/video file to mono MP3

        Args:
            input_path: Source media
            output_path: Destination (overwritten)
            bitrate_kbps: Target bitrate

        Returns:
            Output size in bytes

        Raises:
            ConversionFailedError: ffmpeg failed or the output is implausibly small
            ToolNotFoundError: ffmpeg cannot be executed
        """
        logger.info(f"Converting to MP3: {input_path} -> {output_path} ({bitrate_kbps}kbps)")

        self._convert(
            [
                "-i", input_path,
                "-vn",
                "-acodec", "libmp3lame",
                "-b:a", f"{bitrate_kbps}k",
                "-ar", str(SAMPLE_RATE),
                "-ac", "1",  # mono
                "-map_metadata", "-1",  # strip metadata
                "-y",
                output_path,
            ],
            output_path,
        )

        size = self._validated_size(output_path, MIN_CONVERTED_BYTES)
        logger.info(f"MP3 conversion successful: {output_path} ({size / (1024 * 1024):.2f}MB)")
        return size

    def extract_segment(
        self,
        input_path: str,
        output_path: str,
        start: float,
        duration: float,
        bitrate_kbps: int = 128,
    ) -> int:
        """
        Extract [start, start + duration) as MP3

        Returns:
            Output size in bytes (0 when no file was produced); size
            plausibility is left to the caller.

        Raises:
            ConversionFailedError: ffmpeg exited non-zero or timed out
            ToolNotFoundError: ffmpeg cannot be executed
        """
        self._convert(
            [
                "-i", input_path,
                "-ss", str(start),
                "-t", str(duration),
                "-vn",
                "-acodec", "libmp3lame",
                "-b:a", f"{bitrate_kbps}k",
                "-ar", str(SAMPLE_RATE),
                "-ac", "1",
                "-map_metadata", "-1",
                "-y",
                output_path,
            ],
            output_path,
        )

        try:
            return os.path.getsize(output_path)
        except FileNotFoundError:
            return 0

    def _convert(self, args: list[str], output_path: str) -> None:
        try:
            result = self._run(args)
        except subprocess.TimeoutExpired as e:
            _discard(output_path)
            raise ConversionFailedError(
                f"FFmpeg timed out after {e.timeout}s", {"output": output_path}
            ) from e

        if result.returncode != 0:
            stderr = result.stderr.decode(errors="replace")
            logger.error(f"FFmpeg conversion failed: {_tail(stderr, 500)}")
            _discard(output_path)
            raise ConversionFailedError(
                f"FFmpeg exited with code {result.returncode}",
                {"output": output_path, "returncode": result.returncode, "stderr": _tail(stderr)},
            )

    def _validated_size(self, output_path: str, min_bytes: int) -> int:
        try:
            size = os.path.getsize(output_path)
        except FileNotFoundError:
            raise ConversionFailedError(
                "Converted file was not created", {"output": output_path}
            ) from None

        if size == 0:
            _discard(output_path)
            raise ConversionFailedError(
                "Converted file is empty - FFmpeg conversion failed", {"output": output_path}
            )
        if size < min_bytes:
            _discard(output_path)
            raise ConversionFailedError(
                "Converted file too small - possible conversion error",
                {"output": output_path, "size": size},
            )
        return size


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
