"""Tests for scratch path allocation and release."""

import os
import re
import time
from unittest.mock import patch

import pytest

from mediascribe.exceptions import InvalidInputError
from mediascribe.services.storage_service import sanitize_filename


def test_sanitize_replaces_everything_but_alnum_dot_dash():
    assert sanitize_filename("my file (1).mp3") == "my_file__1_.mp3"
    assert sanitize_filename("../../etc/passwd") == ".._.._etc_passwd"
    assert sanitize_filename("clip-01.MP4") == "clip-01.MP4"


def test_allocate_path_is_timestamped_and_stays_under_root(storage):
    path = storage.allocate_path("../../my audio.wav", "uploads")

    assert os.path.dirname(path) == os.path.join(storage.root, "uploads")
    assert re.fullmatch(r"\d+_[0-9a-f]{8}_.._.._my_audio\.wav", os.path.basename(path))
    assert storage.contains(path)


def test_exact_path_has_no_timestamp(storage):
    path = storage.exact_path("chunk_3.part", "uploads/abc/chunks")
    assert path == os.path.join(storage.root, "uploads", "abc", "chunks", "chunk_3.part")


def test_ensure_dir_is_idempotent(storage):
    first = storage.ensure_dir("segments/123")
    second = storage.ensure_dir("segments/123")

    assert first == second
    assert os.path.isdir(first)


@pytest.mark.parametrize("subdir", ["../outside", "/etc", "uploads/../../x"])
def test_subdir_cannot_escape_root(storage, subdir):
    with pytest.raises(InvalidInputError):
        storage.get_dir(subdir)


def test_contains_rejects_paths_outside_root(storage, tmp_path):
    assert not storage.contains(str(tmp_path / "elsewhere.mp3"))
    assert not storage.contains(os.path.join(storage.root, "..", "x"))


def test_release_tolerates_double_release(storage):
    storage.ensure_dir()
    path = storage.allocate_path("a.mp3")
    with open(path, "wb") as f:
        f.write(b"x")

    storage.release(path)
    storage.release(path)
    storage.release(None)

    assert not os.path.exists(path)


def test_release_propagates_permission_errors(storage):
    with patch("mediascribe.services.storage_service.os.unlink", side_effect=PermissionError("denied")):
        with pytest.raises(PermissionError):
            storage.release(os.path.join(storage.root, "locked.mp3"))


def test_release_dir_leaves_non_empty_directories(storage):
    directory = storage.ensure_dir("segments/1")
    with open(os.path.join(directory, "keep.mp3"), "wb") as f:
        f.write(b"x")

    storage.release_dir(directory)
    storage.release_dir(os.path.join(storage.root, "missing"))

    assert os.path.isdir(directory)


def test_allocations_within_one_millisecond_do_not_collide(storage):
    with patch("mediascribe.services.storage_service.time.time", return_value=1_700_000_000.0):
        first = storage.allocate_path("compressed.mp3", "compressed")
        second = storage.allocate_path("compressed.mp3", "compressed")
        run_a = storage.allocate_subdir("segments")
        run_b = storage.allocate_subdir("segments")

    assert first != second
    assert os.path.basename(first).startswith("1700000000000_")
    assert run_a != run_b
    assert os.path.isdir(storage.get_dir(run_a))
    assert os.path.isdir(storage.get_dir(run_b))


def _age(path, seconds):
    old = time.time() - seconds
    os.utime(path, (old, old))


def test_sweep_stale_removes_old_files_and_run_directories(storage):
    old_file = storage.allocate_path("old.mp3", "compressed")
    fresh_file = storage.allocate_path("fresh.mp3", "compressed")
    storage.ensure_dir("compressed")
    for path in (old_file, fresh_file):
        with open(path, "wb") as f:
            f.write(b"x")
    _age(old_file, 2 * 3600)

    old_run = storage.get_dir(storage.allocate_subdir("segments"))
    with open(os.path.join(old_run, "segment_000.mp3"), "wb") as f:
        f.write(b"x")
    _age(os.path.join(old_run, "segment_000.mp3"), 2 * 3600)
    _age(old_run, 2 * 3600)
    fresh_run = storage.get_dir(storage.allocate_subdir("segments"))

    assert storage.sweep_stale("compressed", 3600) == 1
    assert storage.sweep_stale("segments", 3600) == 1
    assert storage.sweep_stale("direct", 3600) == 0

    assert not os.path.exists(old_file)
    assert os.path.exists(fresh_file)
    assert not os.path.exists(old_run)
    assert os.path.isdir(fresh_run)
