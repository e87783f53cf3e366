"""
Scratch storage service
Allocates, sanitizes and releases paths under one process-wide temp root
"""

import os
import re
import shutil
import time
from pathlib import Path
from typing import Optional
from uuid import uuid4

from loguru import logger

from mediascribe.config import Settings
from mediascribe.exceptions import InvalidInputError

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(name: str) -> str:
    """Replace every character outside [a-zA-Z0-9.-] with an underscore."""
    return _UNSAFE_CHARS.sub("_", name)


class TempStorage:
    """Scratch storage rooted at a single directory"""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TempStorage":
        return cls(settings.temp_root)

    def get_dir(self, subdir: Optional[str] = None) -> str:
        """
        Resolve a subdirectory of the root

        Args:
            subdir: Relative subdirectory, e.g. 'uploads/abc/chunks'

        Returns:
            Absolute directory path (not created)

        Raises:
            InvalidInputError: subdir is absolute or escapes the root
        """
        if not subdir:
            return self.root

        if os.path.isabs(subdir) or ".." in Path(subdir).parts:
            raise InvalidInputError(f"Invalid scratch subdirectory: {subdir}")

        return os.path.join(self.root, subdir)

    def ensure_dir(self, subdir: Optional[str] = None) -> str:
        """Create the directory (recursively) if needed and return it"""
        path = self.get_dir(subdir)
        os.makedirs(path, exist_ok=True)
        return path

    def allocate_path(self, name: str, subdir: Optional[str] = None) -> str:
        """
        Build a unique, sanitized file path

        Args:
            name: Original file name
            subdir: Relative subdirectory

        Returns:
            '{root}/{subdir}/{timestamp_ms}_{random}_{sanitized name}'
        """
        return os.path.join(self.get_dir(subdir), f"{_unique_prefix()}_{sanitize_filename(name)}")

    def allocate_subdir(self, parent: str) -> str:
        """
        Create a fresh run directory under parent

        Returns:
            Relative subdirectory '{parent}/{timestamp_ms}_{random}'
        """
        subdir = f"{parent}/{_unique_prefix()}"
        self.ensure_dir(subdir)
        return subdir

    def exact_path(self, name: str, subdir: Optional[str] = None) -> str:
        """Sanitized path without the timestamp prefix"""
        return os.path.join(self.get_dir(subdir), sanitize_filename(name))

    def contains(self, path: str) -> bool:
        """Whether path resolves to somewhere inside the root"""
        resolved = os.path.realpath(path)
        root = os.path.realpath(self.root)
        return os.path.commonpath([resolved, root]) == root

    def release(self, path: Optional[str]) -> None:
        """
        Delete a scratch file

        A missing file is ignored so double release is safe; other OS errors
        (permissions) propagate.
        """
        if not path:
            return
        try:
            os.unlink(path)
            logger.debug(f"Released temp file: {path}")
        except FileNotFoundError:
            logger.debug(f"Temp file already gone: {path}")

    def release_dir(self, path: Optional[str]) -> None:
        """Remove an empty directory, logging instead of raising when it is missing or not empty"""
        if not path:
            return
        try:
            os.rmdir(path)
            logger.debug(f"Removed temp directory: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temp directory {path}: {e}")

    def sweep_stale(self, subdir: str, max_age_seconds: float) -> int:
        """
        Delete files and run directories under subdir idle for longer than max_age_seconds

        Returns:
            Number of entries removed
        """
        directory = self.get_dir(subdir)
        if not os.path.isdir(directory):
            return 0

        now = time.time()
        removed = 0
        for entry in os.scandir(directory):
            if entry.is_dir(follow_symlinks=False):
                idle = now - newest_mtime(entry.path)
                if idle <= max_age_seconds:
                    continue
                shutil.rmtree(entry.path, ignore_errors=True)
            else:
                idle = now - entry.stat(follow_symlinks=False).st_mtime
                if idle <= max_age_seconds:
                    continue
                self.release(entry.path)

            removed += 1
            logger.info(f"Removed stale scratch entry: {subdir}/{entry.name}, idle={idle:.0f}s")

        return removed


def _unique_prefix() -> str:
    return f"{int(time.time() * 1000)}_{uuid4().hex[:8]}"


def newest_mtime(path: str) -> float:
    """Most recent mtime of a directory tree"""
    newest = os.path.getmtime(path)
    for dirpath, _dirnames, filenames in os.walk(path):
        newest = max(newest, os.path.getmtime(dirpath))
        for name in filenames:
            try:
                newest = max(newest, os.path.getmtime(os.path.join(dirpath, name)))
            except FileNotFoundError:
                continue
    return newest
