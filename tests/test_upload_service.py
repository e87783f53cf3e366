"""Tests for chunk persistence and reassembly."""

import itertools
import os
import re
import time
from unittest.mock import patch

import pytest

from mediascribe.exceptions import (
    AssemblyFailedError,
    InvalidInputError,
    MissingChunkError,
    UploadNotFoundError,
)

CHUNKS = [b"alpha-", b"bravo-", b"charlie-", b"delta"]


def _read(path):
    with open(path, "rb") as f:
        return f.read()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestCreateSession:
    def test_returns_chunk_size_and_creates_directory(self, upload_service, storage):
        session = upload_service.create_session("talk.mp4", 3 * 1024 * 1024, "video/mp4")

        assert session.max_chunk_size == 1024 * 1024
        assert re.fullmatch(r"[0-9a-f]{32}", session.upload_id)
        assert os.path.isdir(storage.get_dir(f"uploads/{session.upload_id}/chunks"))

    def test_keeps_caller_supplied_id(self, upload_service):
        session = upload_service.create_session("a.mp3", 10, upload_id="client-id_1")
        assert session.upload_id == "client-id_1"

    def test_rejects_oversize_file(self, upload_service):
        with pytest.raises(InvalidInputError, match="File too large"):
            upload_service.create_session("big.mov", 11 * 1024 * 1024)


# ---------------------------------------------------------------------------
# Receiving chunks
# ---------------------------------------------------------------------------


class TestReceiveChunk:
    def test_writes_deterministic_chunk_file(self, upload_service, storage):
        path = upload_service.receive_chunk("up1", 7, b"data")

        assert path == storage.exact_path("chunk_7.part", "uploads/up1/chunks")
        assert _read(path) == b"data"

    def test_rejects_empty_chunk(self, upload_service):
        with pytest.raises(InvalidInputError, match="empty"):
            upload_service.receive_chunk("up1", 0, b"")

    def test_rejects_negative_index(self, upload_service):
        with pytest.raises(InvalidInputError):
            upload_service.receive_chunk("up1", -1, b"data")

    @pytest.mark.parametrize("upload_id", ["../evil", "a/b", "", "id with spaces"])
    def test_rejects_malformed_upload_id(self, upload_service, upload_id):
        with pytest.raises(InvalidInputError):
            upload_service.receive_chunk(upload_id, 0, b"data")

    def test_rejects_oversize_chunk(self, upload_service):
        with pytest.raises(InvalidInputError, match="exceeds"):
            upload_service.receive_chunk("up1", 0, b"x" * (1024 * 1024 + 1))

    def test_reupload_overwrites(self, upload_service):
        for index, data in enumerate(CHUNKS):
            upload_service.receive_chunk("up1", index, data)
        upload_service.receive_chunk("up1", 3, b"DELTA-v2")

        assembled = upload_service.complete_upload("up1", 4)

        assert _read(assembled.file_path) == b"alpha-bravo-charlie-DELTA-v2"

    def test_no_partial_files_listed(self, upload_service):
        upload_service.receive_chunk("up1", 0, b"data")
        chunks_dir = os.path.dirname(upload_service.list_chunks("up1")[0])

        assert os.listdir(chunks_dir) == ["chunk_0.part"]


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


class TestCompleteUpload:
    @pytest.mark.parametrize("order", list(itertools.permutations(range(len(CHUNKS)))))
    def test_arrival_order_does_not_matter(self, upload_service, order):
        for index in order:
            upload_service.receive_chunk("perm", index, CHUNKS[index])

        assembled = upload_service.complete_upload("perm", len(CHUNKS))

        assert _read(assembled.file_path) == b"".join(CHUNKS)
        assert assembled.size == len(b"".join(CHUNKS))

    def test_numeric_not_lexical_order(self, upload_service):
        for index in range(11):
            upload_service.receive_chunk("numeric", index, f"[{index}]".encode())

        data = _read(upload_service.complete_upload("numeric", 11).file_path)

        assert data == b"".join(f"[{i}]".encode() for i in range(11))
        assert data.index(b"[2]") < data.index(b"[10]")

    def test_gap_raises_missing_chunk_and_keeps_chunks(self, upload_service):
        for index in (0, 1, 3):
            upload_service.receive_chunk("gap", index, CHUNKS[index])

        with pytest.raises(MissingChunkError) as exc_info:
            upload_service.complete_upload("gap", 4)

        assert exc_info.value.index == 2
        assert exc_info.value.details["chunk_index"] == 2
        assert sorted(upload_service.list_chunks("gap")) == [0, 1, 3]

        # Retry succeeds once the missing chunk arrives
        upload_service.receive_chunk("gap", 2, CHUNKS[2])
        assembled = upload_service.complete_upload("gap", 4)
        assert _read(assembled.file_path) == b"".join(CHUNKS)

    def test_total_inferred_from_highest_index_with_session(self, upload_service):
        upload_service.create_session("a.bin", 3, upload_id="infer")
        upload_service.receive_chunk("infer", 0, b"a")
        upload_service.receive_chunk("infer", 2, b"c")

        with pytest.raises(MissingChunkError) as exc_info:
            upload_service.complete_upload("infer")

        assert exc_info.value.index == 1

    def test_total_required_without_session(self, upload_service):
        upload_service.receive_chunk("bare", 0, b"a")

        with pytest.raises(InvalidInputError, match="total_chunks is required"):
            upload_service.complete_upload("bare")

        assert list(upload_service.list_chunks("bare")) == [0]

    def test_missing_trailing_chunk_detected_from_announced_size(self, upload_service):
        session = upload_service.create_session("talk.mp3", 3 * 1024 * 1024)
        part = b"\x01" * (1024 * 1024)
        upload_service.receive_chunk(session.upload_id, 0, part)
        upload_service.receive_chunk(session.upload_id, 1, part)

        with pytest.raises(MissingChunkError) as exc_info:
            upload_service.complete_upload(session.upload_id)

        assert exc_info.value.index == 2
        assert sorted(upload_service.list_chunks(session.upload_id)) == [0, 1]

        upload_service.receive_chunk(session.upload_id, 2, part)
        assembled = upload_service.complete_upload(session.upload_id)
        assert assembled.size == 3 * 1024 * 1024

    def test_size_mismatch_with_explicit_total(self, upload_service):
        session = upload_service.create_session("a.bin", 100)
        upload_service.receive_chunk(session.upload_id, 0, b"abc")

        with pytest.raises(InvalidInputError, match="announced"):
            upload_service.complete_upload(session.upload_id, 1)

        assert list(upload_service.list_chunks(session.upload_id)) == [0]

    def test_load_session_reports_received_chunks(self, upload_service):
        session = upload_service.create_session("a.bin", 10, "audio/mpeg")
        upload_service.receive_chunk(session.upload_id, 1, b"b")

        loaded = upload_service.load_session(session.upload_id)

        assert loaded.file_size == 10
        assert loaded.file_type == "audio/mpeg"
        assert loaded.max_chunk_size == 1024 * 1024
        assert loaded.chunks == {1}
        assert upload_service.load_session("never-opened") is None

    def test_unexpected_extra_chunks_rejected_without_deleting(self, upload_service):
        for index in range(3):
            upload_service.receive_chunk("extra", index, b"x")

        with pytest.raises(InvalidInputError):
            upload_service.complete_upload("extra", 2)

        assert sorted(upload_service.list_chunks("extra")) == [0, 1, 2]

    def test_unknown_upload(self, upload_service):
        with pytest.raises(UploadNotFoundError):
            upload_service.complete_upload("never-uploaded", 1)

    def test_session_without_chunks(self, upload_service):
        session = upload_service.create_session("a.mp3", 100)
        with pytest.raises(UploadNotFoundError):
            upload_service.complete_upload(session.upload_id)

    def test_consumes_chunks_and_directories(self, upload_service, storage):
        upload_service.create_session("a.txt", len(b"".join(CHUNKS)), upload_id="consume")
        for index, data in enumerate(CHUNKS):
            upload_service.receive_chunk("consume", index, data)

        assembled = upload_service.complete_upload("consume")

        assert not os.path.exists(storage.get_dir("uploads/consume"))
        assert os.path.dirname(assembled.file_path) == storage.get_dir("uploads")
        assert re.fullmatch(r"\d+_upload_consume\.tmp", os.path.basename(assembled.file_path))

    def test_write_error_removes_partial_output(self, upload_service, storage):
        for index, data in enumerate(CHUNKS):
            upload_service.receive_chunk("broken", index, data)

        with patch(
            "mediascribe.services.upload_service.shutil.copyfileobj",
            side_effect=[None, OSError("No space left on device")],
        ):
            with pytest.raises(AssemblyFailedError):
                upload_service.complete_upload("broken", len(CHUNKS))

        leftovers = [n for n in os.listdir(storage.get_dir("uploads")) if n.endswith(".tmp")]
        assert leftovers == []

    def test_rejects_non_positive_total(self, upload_service):
        with pytest.raises(InvalidInputError):
            upload_service.complete_upload("up1", 0)


# ---------------------------------------------------------------------------
# Stale sweep
# ---------------------------------------------------------------------------


def _age_tree(path, seconds):
    old = time.time() - seconds
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            os.utime(os.path.join(dirpath, name), (old, old))
        os.utime(dirpath, (old, old))


def test_sweep_removes_only_stale_uploads(upload_service, storage):
    upload_service.receive_chunk("stale", 0, b"old")
    upload_service.receive_chunk("fresh", 0, b"new")
    _age_tree(storage.get_dir("uploads/stale"), 2 * 3600)

    removed = upload_service.sweep_stale_uploads(3600)

    assert removed == 1
    assert not os.path.exists(storage.get_dir("uploads/stale"))
    assert sorted(upload_service.list_chunks("fresh")) == [0]


def test_sweep_without_uploads_dir(upload_service):
    assert upload_service.sweep_stale_uploads(60) == 0


def test_sweep_removes_unclaimed_assembled_files(upload_service, storage):
    upload_service.receive_chunk("old", 0, b"old")
    upload_service.receive_chunk("new", 0, b"new")
    old_path = upload_service.complete_upload("old", 1).file_path
    new_path = upload_service.complete_upload("new", 1).file_path
    ten_days_ago = time.time() - 10 * 24 * 3600
    os.utime(old_path, (ten_days_ago, ten_days_ago))

    removed = upload_service.sweep_stale_uploads(3600)

    assert removed == 1
    assert not os.path.exists(old_path)
    assert os.path.exists(new_path)


def test_lock_survives_completion_until_swept(upload_service):
    upload_service.receive_chunk("locked", 0, b"a")
    lock = upload_service._lock_for("locked")

    upload_service.complete_upload("locked", 1)

    assert upload_service._lock_for("locked") is lock

    upload_service.sweep_stale_uploads(3600)

    assert "locked" not in upload_service._locks
