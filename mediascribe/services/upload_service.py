"""
Chunked upload service
Persists independently-uploaded chunks and reassembles them in index order
"""

import json
import os
import re
import shutil
import threading
import time
from typing import Optional
from uuid import uuid4

from loguru import logger

from mediascribe.config import Settings
from mediascribe.exceptions import (
    AssemblyFailedError,
    InvalidInputError,
    MissingChunkError,
    UploadNotFoundError,
)
from mediascribe.models import AssembledUpload, UploadSession
from .storage_service import TempStorage, newest_mtime

_UPLOAD_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
_CHUNK_NAME_PATTERN = re.compile(r"^chunk_(\d+)\.part$")
_ASSEMBLED_NAME_PATTERN = re.compile(r"^\d+_upload_[A-Za-z0-9_-]+\.tmp$")

UPLOADS_SUBDIR = "uploads"
MANIFEST_NAME = "session.json"


class UploadService:
    """Chunk assembler"""

    def __init__(
        self,
        storage: TempStorage,
        max_upload_size: int = 100 * 1024 * 1024,
        max_chunk_size: int = 5 * 1024 * 1024,
    ):
        self.storage = storage
        self.max_upload_size = max_upload_size
        self.max_chunk_size = max_chunk_size

        # Writes to one upload directory are serialized
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls, storage: TempStorage, settings: Settings) -> "UploadService":
        return cls(
            storage,
            max_upload_size=settings.max_upload_size,
            max_chunk_size=settings.max_chunk_size,
        )

    # ==================== Paths ====================

    @staticmethod
    def validate_upload_id(upload_id: str) -> str:
        if not upload_id or not _UPLOAD_ID_PATTERN.match(upload_id):
            raise InvalidInputError(f"Invalid upload_id: {upload_id!r}")
        return upload_id

    def upload_subdir(self, upload_id: str) -> str:
        return f"{UPLOADS_SUBDIR}/{self.validate_upload_id(upload_id)}"

    def chunks_subdir(self, upload_id: str) -> str:
        return f"{self.upload_subdir(upload_id)}/chunks"

    def manifest_path(self, upload_id: str) -> str:
        return self.storage.exact_path(MANIFEST_NAME, self.upload_subdir(upload_id))

    @staticmethod
    def chunk_filename(chunk_index: int) -> str:
        return f"chunk_{chunk_index}.part"

    def _lock_for(self, upload_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(upload_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[upload_id] = lock
            return lock

    # ==================== Session ====================

    def create_session(
        self,
        file_name: str,
        file_size: int,
        file_type: str = "",
        upload_id: Optional[str] = None,
    ) -> UploadSession:
        """
        Open an upload session

        The announced size is kept in a manifest next to the chunks so that
        assembly can tell a complete upload from a truncated one.

        Args:
            file_name: Original file name
            file_size: Announced total size in bytes
            file_type: MIME type reported by the client
            upload_id: Caller-supplied id (optional, generated otherwise)

        Returns:
            UploadSession with the chunk size the client must respect

        Raises:
            InvalidInputError: size out of range or malformed upload_id
        """
        if file_size <= 0:
            raise InvalidInputError("file_size must be positive")
        if file_size > self.max_upload_size:
            raise InvalidInputError(
                f"File too large. Maximum size: {self.max_upload_size // (1024 * 1024)}MB",
                {"file_size": file_size, "max_upload_size": self.max_upload_size},
            )

        upload_id = self.validate_upload_id(upload_id or uuid4().hex)
        session = UploadSession(
            upload_id=upload_id,
            file_name=file_name,
            file_size=file_size,
            file_type=file_type,
            max_chunk_size=self.max_chunk_size,
        )

        with self._lock_for(upload_id):
            self.storage.ensure_dir(self.chunks_subdir(upload_id))
            manifest = {
                "file_name": file_name,
                "file_size": file_size,
                "file_type": file_type,
                "max_chunk_size": self.max_chunk_size,
            }
            with open(self.manifest_path(upload_id), "w", encoding="utf-8") as f:
                json.dump(manifest, f)

        logger.info(
            f"Upload session created: upload_id={upload_id}, file={file_name}, size={file_size}"
        )
        return session

    def load_session(self, upload_id: str) -> Optional[UploadSession]:
        """
        Read the session manifest

        Returns:
            UploadSession with ``chunks`` filled from disk, or None for uploads
            that were never opened with create_session
        """
        try:
            with open(self.manifest_path(upload_id), encoding="utf-8") as f:
                manifest = json.load(f)
        except FileNotFoundError:
            return None

        try:
            chunks = set(self.list_chunks(upload_id))
        except UploadNotFoundError:
            chunks = set()

        return UploadSession(
            upload_id=upload_id,
            file_name=manifest.get("file_name", ""),
            file_size=manifest["file_size"],
            file_type=manifest.get("file_type", ""),
            max_chunk_size=manifest.get("max_chunk_size", self.max_chunk_size),
            chunks=chunks,
        )

    # ==================== Chunks ====================

    def receive_chunk(self, upload_id: str, chunk_index: int, data: bytes) -> str:
        """
        Persist one chunk

        Re-uploading an index replaces the previous bytes.

        Args:
            upload_id: Upload id
            chunk_index: 0-based chunk index
            data: Chunk bytes

        Returns:
            Path of the stored chunk file

        Raises:
            InvalidInputError: empty data, negative index, oversize chunk or bad upload_id
        """
        chunks_subdir = self.chunks_subdir(upload_id)

        if chunk_index < 0:
            raise InvalidInputError(f"Invalid chunk index: {chunk_index}")
        if not data:
            raise InvalidInputError(
                "Chunk is empty", {"upload_id": upload_id, "chunk_index": chunk_index}
            )
        if self.max_chunk_size and len(data) > self.max_chunk_size:
            raise InvalidInputError(
                f"Chunk exceeds {self.max_chunk_size} bytes",
                {"upload_id": upload_id, "chunk_index": chunk_index, "size": len(data)},
            )

        with self._lock_for(upload_id):
            self.storage.ensure_dir(chunks_subdir)
            chunk_path = self.storage.exact_path(self.chunk_filename(chunk_index), chunks_subdir)
            partial_path = f"{chunk_path}.writing"

            try:
                with open(partial_path, "wb") as f:
                    f.write(data)
                os.replace(partial_path, chunk_path)
            except OSError:
                self.storage.release(partial_path)
                raise

        logger.debug(
            f"Saved chunk: upload_id={upload_id}, index={chunk_index}, size={len(data)}"
        )
        return chunk_path

    def list_chunks(self, upload_id: str) -> dict[int, str]:
        """
        List stored chunks

        Returns:
            Mapping of chunk index -> chunk file path

        Raises:
            UploadNotFoundError: no chunk directory or no chunk files
        """
        chunks_dir = self.storage.get_dir(self.chunks_subdir(upload_id))

        try:
            names = os.listdir(chunks_dir)
        except FileNotFoundError:
            raise UploadNotFoundError(
                f"Upload not found: {upload_id}", {"upload_id": upload_id}
            ) from None

        chunks = {}
        for name in names:
            match = _CHUNK_NAME_PATTERN.match(name)
            if match:
                chunks[int(match.group(1))] = os.path.join(chunks_dir, name)

        if not chunks:
            raise UploadNotFoundError(
                f"No valid chunks found for upload {upload_id}",
                {"upload_id": upload_id, "files": sorted(names)},
            )

        return chunks

    # ==================== Assembly ====================

    def complete_upload(
        self, upload_id: str, total_chunks: Optional[int] = None
    ) -> AssembledUpload:
        """
        Reassemble every chunk into one file

        Chunks are written in numeric index order and each chunk file is
        deleted right after it has been copied. On a gap nothing is deleted,
        so the call can be retried once the missing chunk arrives.

        For uploads opened with create_session the chunk sizes must add up to
        the announced file size; a short total means trailing chunks are
        still outstanding. Without a session, ``total_chunks`` is required.

        Args:
            upload_id: Upload id
            total_chunks: Expected chunk count

        Returns:
            AssembledUpload with the output path and size

        Raises:
            MissingChunkError: an index in 0..total_chunks-1 is absent, or
                the chunks fall short of the announced size
            InvalidInputError: extra indices, size mismatch, or no count available
            UploadNotFoundError: nothing was uploaded under this id
            AssemblyFailedError: the output file could not be written
        """
        if total_chunks is not None and total_chunks <= 0:
            raise InvalidInputError(f"Invalid total_chunks: {total_chunks}")

        with self._lock_for(upload_id):
            chunks = self.list_chunks(upload_id)
            session = self.load_session(upload_id)

            if total_chunks is not None:
                expected = total_chunks
            elif session is not None:
                expected = max(chunks) + 1
            else:
                raise InvalidInputError(
                    "total_chunks is required for uploads without a session",
                    {"upload_id": upload_id},
                )

            for index in range(expected):
                if index not in chunks:
                    logger.warning(
                        f"Upload incomplete: upload_id={upload_id}, missing chunk {index}/{expected}"
                    )
                    raise MissingChunkError(index, upload_id)

            unexpected = sorted(i for i in chunks if i >= expected)
            if unexpected:
                raise InvalidInputError(
                    f"Upload has more chunks than expected ({expected})",
                    {"upload_id": upload_id, "unexpected_indices": unexpected},
                )

            if session is not None:
                self._check_announced_size(session, chunks, expected, total_chunks is None)

            self.storage.ensure_dir(UPLOADS_SUBDIR)
            timestamp = int(time.time() * 1000)
            output_path = self.storage.exact_path(
                f"{timestamp}_upload_{upload_id}.tmp", UPLOADS_SUBDIR
            )

            try:
                with open(output_path, "wb") as out:
                    for index in range(expected):
                        with open(chunks[index], "rb") as chunk_file:
                            shutil.copyfileobj(chunk_file, out)
                        out.flush()
                        self.storage.release(chunks[index])
            except OSError as e:
                self.storage.release(output_path)
                logger.error(f"Assembly failed: upload_id={upload_id}, error={e}")
                raise AssemblyFailedError(
                    f"Failed to assemble upload {upload_id}: {e}",
                    {"upload_id": upload_id},
                ) from e

            size = os.path.getsize(output_path)

            self.storage.release(self.manifest_path(upload_id))
            self.storage.release_dir(self.storage.get_dir(self.chunks_subdir(upload_id)))
            self.storage.release_dir(self.storage.get_dir(self.upload_subdir(upload_id)))

        logger.info(
            f"Upload assembled: upload_id={upload_id}, chunks={expected}, "
            f"size={size}, path={output_path}"
        )

        return AssembledUpload(upload_id=upload_id, file_path=output_path, size=size)

    @staticmethod
    def _check_announced_size(
        session: UploadSession, chunks: dict[int, str], expected: int, count_inferred: bool
    ) -> None:
        received = sum(os.path.getsize(chunks[i]) for i in range(expected))
        if received == session.file_size:
            return

        if received < session.file_size and count_inferred:
            logger.warning(
                f"Upload incomplete: upload_id={session.upload_id}, "
                f"{received}/{session.file_size} bytes, next chunk {expected} missing"
            )
            raise MissingChunkError(expected, session.upload_id)

        raise InvalidInputError(
            f"Chunks add up to {received} bytes but {session.file_size} were announced",
            {
                "upload_id": session.upload_id,
                "received": received,
                "file_size": session.file_size,
            },
        )

    # ==================== Housekeeping ====================

    def sweep_stale_uploads(self, max_age_seconds: float) -> int:
        """
        Delete abandoned upload directories and unclaimed assembled files

        Args:
            max_age_seconds: Age of the newest file after which an upload is stale

        Returns:
            Number of upload directories and assembled files removed
        """
        uploads_dir = self.storage.get_dir(UPLOADS_SUBDIR)
        if not os.path.isdir(uploads_dir):
            return 0

        now = time.time()
        removed = 0

        for entry in os.scandir(uploads_dir):
            if entry.is_file() and _ASSEMBLED_NAME_PATTERN.match(entry.name):
                idle = now - entry.stat().st_mtime
                if idle > max_age_seconds:
                    self.storage.release(entry.path)
                    removed += 1
                    logger.info(f"Removed unclaimed assembled file: {entry.name}, idle={idle:.0f}s")
                continue

            if not entry.is_dir() or not _UPLOAD_ID_PATTERN.match(entry.name):
                continue

            lock = self._lock_for(entry.name)
            if not lock.acquire(blocking=False):
                continue
            try:
                newest = newest_mtime(entry.path)
                if now - newest <= max_age_seconds:
                    continue
                shutil.rmtree(entry.path, ignore_errors=True)
                removed += 1
                logger.info(
                    f"Removed stale upload: upload_id={entry.name}, idle={now - newest:.0f}s"
                )
            finally:
                lock.release()

        self._prune_locks()
        return removed

    def _prune_locks(self) -> None:
        """Drop idle locks of uploads whose directory no longer exists"""
        with self._locks_guard:
            for upload_id, lock in list(self._locks.items()):
                if lock.locked():
                    continue
                if not os.path.isdir(self.storage.get_dir(f"{UPLOADS_SUBDIR}/{upload_id}")):
                    del self._locks[upload_id]
