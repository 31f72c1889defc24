"""Tests for the encrypted, debounced local draft store."""

from __future__ import annotations

import asyncio
import json
import time
from unittest.mock import patch

import pytest

from intakesync.audit import AuditLog
from intakesync.crypto import DraftCipher
from intakesync.migrations import CURRENT_SCHEMA_VERSION
from intakesync.storage import MemoryStorage
from intakesync.store import MODIFIED_FIELD, SCHEMA_FIELD, EncryptedDraftStore

KEY = "intakesync:draft:test"
TEMPLATE = {"a": 1, "b": {"c": 2}}
DEBOUNCE = 0.05


class SlowStorage(MemoryStorage):
    """MemoryStorage whose writes take a while (they run in a worker thread)."""

    def set_item(self, key: str, value: str) -> None:
        time.sleep(0.15)
        super().set_item(key, value)


def make_store(storage, cipher, audit=None, debounce=DEBOUNCE) -> EncryptedDraftStore:
    return EncryptedDraftStore(
        storage, cipher, TEMPLATE, KEY, debounce_seconds=debounce, audit=audit
    )


def stored(storage: MemoryStorage, cipher: DraftCipher) -> dict:
    return cipher.decrypt(storage.get_item(KEY))


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


class TestLoad:
    """Reading, decrypting, and migrating on load."""

    @pytest.mark.asyncio
    async def test_absent_key_gives_template(self, storage, cipher):
        store = make_store(storage, cipher)
        assert await store.load() == TEMPLATE
        assert store.is_dirty is False
        assert store.is_loading is False
        assert not store.has_draft()

    @pytest.mark.asyncio
    async def test_saved_draft_resumes_dirty(self, storage, cipher):
        first = make_store(storage, cipher)
        first.update({"a": 9})
        await first.flush()

        second = make_store(storage, cipher)
        assert await second.load() == {"a": 9, "b": {"c": 2}}
        assert second.is_dirty is True
        assert second.last_modified == first.last_modified

    @pytest.mark.asyncio
    async def test_legacy_record_migrated(self, storage, cipher):
        storage.set_item(KEY, cipher.encrypt({"a": 5}))
        store = make_store(storage, cipher)
        assert await store.load() == {"a": 5, "b": {"c": 2}}

    @pytest.mark.asyncio
    async def test_plaintext_reencrypted_in_place(self, storage, cipher):
        storage.set_item(KEY, json.dumps({"a": 5}))
        store = make_store(storage, cipher)

        assert await store.load() == {"a": 5, "b": {"c": 2}}
        raw = storage.get_item(KEY)
        assert cipher.is_encrypted(raw)
        assert cipher.decrypt(raw)["data"] == {"a": 5}

    @pytest.mark.asyncio
    async def test_plaintext_envelope_reencrypted_unwrapped(self, storage, cipher):
        envelope = {
            SCHEMA_FIELD: CURRENT_SCHEMA_VERSION,
            MODIFIED_FIELD: "2024-02-01T10:00:00.000001+00:00",
            "data": {"a": 7},
        }
        storage.set_item(KEY, json.dumps(envelope))

        assert await make_store(storage, cipher).load() == {"a": 7, "b": {"c": 2}}
        assert stored(storage, cipher) == envelope

        again = make_store(storage, cipher)
        assert await again.load() == {"a": 7, "b": {"c": 2}}
        assert again.last_modified == envelope[MODIFIED_FIELD]

    @pytest.mark.asyncio
    async def test_plaintext_kept_when_reencryption_fails(self, storage, cipher, audit):
        plaintext = json.dumps({"a": 5})
        storage.set_item(KEY, plaintext)
        store = make_store(storage, cipher, audit)

        with patch.object(cipher, "encrypt", side_effect=RuntimeError("no key")):
            data = await store.load()

        assert data == {"a": 5, "b": {"c": 2}}
        assert storage.get_item(KEY) == plaintext
        messages = [e.message for e in audit.read_entries() if e.kind == "error"]
        assert any("PHI migration encryption failed" in m for m in messages)

    @pytest.mark.asyncio
    async def test_corrupt_ciphertext_falls_back(self, storage, cipher, audit):
        storage.set_item(KEY, "ENC:garbage")
        store = make_store(storage, cipher, audit)

        assert await store.load() == TEMPLATE
        assert store.is_dirty is False
        errors = [e for e in audit.read_entries() if e.kind == "error"]
        assert errors and errors[0].severity == "failure"

    @pytest.mark.asyncio
    async def test_wrong_key_falls_back(self, storage, cipher):
        storage.set_item(KEY, DraftCipher(b"\x09" * 32).encrypt({"a": 3}))
        assert await make_store(storage, cipher).load() == TEMPLATE

    @pytest.mark.asyncio
    async def test_non_record_falls_back(self, storage, cipher):
        storage.set_item(KEY, cipher.encrypt([1, 2, 3]))
        assert await make_store(storage, cipher).load() == TEMPLATE


# ---------------------------------------------------------------------------
# Update + debounce
# ---------------------------------------------------------------------------


class TestUpdate:
    """In-memory commits."""

    @pytest.mark.asyncio
    async def test_partial_merge(self, storage, cipher):
        store = make_store(storage, cipher)
        assert store.update({"a": 2}) == {"a": 2, "b": {"c": 2}}
        assert store.is_dirty is True
        await store.close()

    @pytest.mark.asyncio
    async def test_functional_updater(self, storage, cipher):
        store = make_store(storage, cipher)
        store.update(lambda prev: {**prev, "b": {"c": prev["b"]["c"] + 1}})
        assert store.data["b"] == {"c": 3}
        await store.close()

    @pytest.mark.asyncio
    async def test_silent_update_not_dirty(self, storage, cipher):
        store = make_store(storage, cipher)
        store.update({"a": 2}, silent=True)
        assert store.is_dirty is False
        await store.flush()
        assert stored(storage, cipher)["data"]["a"] == 2

    @pytest.mark.asyncio
    async def test_bad_updater_rejected(self, storage, cipher):
        with pytest.raises(TypeError):
            make_store(storage, cipher).update(42)

    @pytest.mark.asyncio
    async def test_last_modified_strictly_increases(self, storage, cipher):
        store = make_store(storage, cipher)
        stamps = []
        for i in range(20):
            store.update({"a": i})
            stamps.append(store.last_modified)
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)
        await store.close()

    @pytest.mark.asyncio
    async def test_commit_listener(self, storage, cipher):
        store = make_store(storage, cipher)
        seen = []
        store.on_commit(lambda data, modified: seen.append((data["a"], modified)))
        store.update({"a": 4})
        assert seen == [(4, store.last_modified)]
        await store.close()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_update(self, storage, cipher):
        store = make_store(storage, cipher)

        def boom(data, modified):
            raise RuntimeError("listener")

        store.on_commit(boom)
        assert store.update({"a": 4})["a"] == 4
        await store.close()


class TestDebounce:
    """Coalescing of rapid edits into one write."""

    @pytest.mark.asyncio
    async def test_burst_writes_once(self, storage, cipher):
        store = make_store(storage, cipher, debounce=0.2)
        for i in range(5):
            store.update({"a": i})
            await asyncio.sleep(0.01)

        assert storage.writes == 0
        await asyncio.sleep(0.5)

        assert storage.writes == 1
        assert store.write_count == 1
        assert stored(storage, cipher)["data"] == {"a": 4, "b": {"c": 2}}

    @pytest.mark.asyncio
    async def test_envelope_written(self, storage, cipher):
        store = make_store(storage, cipher)
        store.update({"a": 2})
        await asyncio.sleep(DEBOUNCE * 4)

        envelope = stored(storage, cipher)
        assert envelope[SCHEMA_FIELD] == CURRENT_SCHEMA_VERSION
        assert envelope[MODIFIED_FIELD] == store.last_modified
        assert store.last_saved is not None
        assert store.is_saving is False

    @pytest.mark.asyncio
    async def test_flush_writes_immediately(self, storage, cipher):
        store = make_store(storage, cipher, debounce=10)
        store.update({"a": 3})
        assert store.is_saving is True

        assert await store.flush() is True
        assert storage.writes == 1
        assert store.is_saving is False

    @pytest.mark.asyncio
    async def test_flush_without_changes(self, storage, cipher):
        assert await make_store(storage, cipher).flush() is True
        assert storage.writes == 0

    @pytest.mark.asyncio
    async def test_close_drops_pending(self, storage, cipher):
        store = make_store(storage, cipher)
        store.update({"a": 3})
        await store.close()
        await asyncio.sleep(DEBOUNCE * 3)
        assert storage.writes == 0


# ---------------------------------------------------------------------------
# Clear
# ---------------------------------------------------------------------------


class TestClear:
    """clear_draft never lets a stale write resurrect the record."""

    @pytest.mark.asyncio
    async def test_clear_cancels_pending_write(self, storage, cipher):
        store = make_store(storage, cipher)
        store.update({"a": 3})
        await store.clear_draft()
        await asyncio.sleep(DEBOUNCE * 4)

        assert not store.has_draft()
        assert storage.writes == 0
        assert store.data == TEMPLATE
        assert store.is_dirty is False

    @pytest.mark.asyncio
    async def test_clear_waits_for_inflight_write(self, cipher):
        storage = SlowStorage()
        store = make_store(storage, cipher)
        store.update({"a": 3})
        await asyncio.sleep(DEBOUNCE + 0.05)  # write now in progress

        await store.clear_draft()
        await asyncio.sleep(0.3)
        assert not store.has_draft()

    @pytest.mark.asyncio
    async def test_clear_removes_saved_draft(self, storage, cipher, audit):
        store = make_store(storage, cipher, audit)
        store.update({"a": 3})
        await store.flush()
        assert store.has_draft()

        await store.clear_draft()
        assert not store.has_draft()
        assert store.last_modified is None
        assert "draft_delete" in [e.kind for e in audit.read_entries()]


# ---------------------------------------------------------------------------
# Persistence failures
# ---------------------------------------------------------------------------


class TestFailures:
    """Errors stay inside the store."""

    @pytest.mark.asyncio
    async def test_quota_exceeded_keeps_editing(self, cipher, audit):
        storage = MemoryStorage(quota_bytes=10)
        store = make_store(storage, cipher, audit)
        store.update({"a": 3})

        assert await store.flush() is False
        assert store.data["a"] == 3
        assert "Draft write failed" in store.last_error
        assert any(e.severity == "failure" for e in audit.read_entries())

        store.update({"a": 4})
        assert store.data["a"] == 4
        await store.close()

    @pytest.mark.asyncio
    async def test_encryption_error_recorded(self, storage, cipher, audit):
        store = make_store(storage, cipher, audit)
        store.update({"a": object()})

        assert await store.flush() is False
        assert "Draft encryption failed" in store.last_error
        assert storage.writes == 0

    @pytest.mark.asyncio
    async def test_error_cleared_after_success(self, storage, cipher):
        store = make_store(storage, cipher)
        store.update({"a": object()})
        await store.flush()
        store.update({"a": 1})
        assert await store.flush() is True
        assert store.last_error is None
