"""Tests for device-local key/value storage."""

from __future__ import annotations

from pathlib import Path

import pytest

from intakesync.storage import FileStorage, MemoryStorage, StorageQuotaError


class TestFileStorage:
    """One file per key."""

    def test_missing_key(self, tmp_path: Path):
        assert FileStorage(tmp_path).get_item("nope") is None

    def test_set_get_remove(self, tmp_path: Path):
        s = FileStorage(tmp_path)
        s.set_item("intakesync:draft:1", "ENC:abc")
        assert s.get_item("intakesync:draft:1") == "ENC:abc"
        assert s.has_item("intakesync:draft:1")
        s.remove_item("intakesync:draft:1")
        assert not s.has_item("intakesync:draft:1")

    def test_remove_missing_is_quiet(self, tmp_path: Path):
        FileStorage(tmp_path).remove_item("never-written")

    def test_keys_with_separators_stay_in_root(self, tmp_path: Path):
        s = FileStorage(tmp_path / "drafts")
        s.set_item("a/../b:c", "v")
        files = list((tmp_path / "drafts").iterdir())
        assert len(files) == 1
        assert s.get_item("a/../b:c") == "v"

    def test_no_tmp_left_behind(self, tmp_path: Path):
        s = FileStorage(tmp_path)
        s.set_item("k", "one")
        s.set_item("k", "two")
        assert s.get_item("k") == "two"
        assert [p.suffix for p in tmp_path.iterdir()] == [".draft"]


class TestMemoryStorage:
    """Dict-backed storage with quota."""

    def test_counts_writes(self):
        s = MemoryStorage()
        s.set_item("a", "1")
        s.set_item("a", "2")
        assert s.writes == 2
        assert s.keys() == ["a"]

    def test_quota(self):
        s = MemoryStorage(quota_bytes=5)
        s.set_item("a", "123")
        with pytest.raises(StorageQuotaError):
            s.set_item("b", "456")
        assert s.get_item("b") is None

    def test_quota_error_is_oserror(self):
        assert issubclass(StorageQuotaError, OSError)

    def test_overwrite_within_quota(self):
        s = MemoryStorage(quota_bytes=5)
        s.set_item("a", "12345")
        s.set_item("a", "54321")
        assert s.get_item("a") == "54321"
