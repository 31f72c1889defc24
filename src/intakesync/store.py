"""
Encrypted local draft store: debounced, encrypted autosave of one draft.

The UI reads and writes ``data`` synchronously. Persistence happens in
the background: every update restarts a short debounce timer, and only
the value present when the timer fires is encrypted and written.

Envelope written under the storage key (encrypted as a whole):

    {"__draft_schema": 3, "__draft_modified": "<iso>", "data": {...}}

A decrypted value without ``__draft_schema`` is a legacy bare record.

Nothing in here raises into form code: corrupt ciphertext, encryption
errors, and full disks are logged, audited, and reported through
``last_error`` while editing continues in memory.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

from .audit import AuditLog
from .crypto import DecryptionError, DraftCipher
from .migrations import CURRENT_SCHEMA_VERSION, migrate_data
from .storage import LocalStorage

logger = logging.getLogger("intakesync.store")

SCHEMA_FIELD = "__draft_schema"
MODIFIED_FIELD = "__draft_modified"
DEFAULT_SAVE_DEBOUNCE_SECONDS = 0.5

Record = dict[str, Any]
Updater = Union[Record, Callable[[Record], Record]]
CommitListener = Callable[[Record, str], None]


class EncryptedDraftStore:
    """Holds one draft in memory and persists it encrypted with a debounce.

    Args:
        storage: Device-local key/value store.
        cipher: Encrypts and decrypts JSON values.
        initial_data: Template for a fresh draft; also the migration target.
        storage_key: Key the draft lives under. One store per key.
        debounce_seconds: Quiet period before a write.
        audit: Audit sink for load and persistence failures.
    """

    def __init__(
        self,
        storage: LocalStorage,
        cipher: DraftCipher,
        initial_data: Record,
        storage_key: str,
        debounce_seconds: float = DEFAULT_SAVE_DEBOUNCE_SECONDS,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self._storage = storage
        self._cipher = cipher
        self._initial = copy.deepcopy(initial_data)
        self._key = storage_key
        self._debounce = debounce_seconds
        self._audit = audit or AuditLog()

        self.data: Record = copy.deepcopy(initial_data)
        self.is_dirty = False
        self.is_loading = False
        self.is_saving = False
        self.last_saved: Optional[datetime] = None
        self.last_modified: Optional[str] = None
        self.last_error: Optional[str] = None
        self.write_count = 0

        self._modified_at: Optional[datetime] = None
        self._pending = False
        self._save_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._listeners: list[CommitListener] = []

    @property
    def storage_key(self) -> str:
        return self._key

    @property
    def has_pending_write(self) -> bool:
        return self._pending

    def on_commit(self, listener: CommitListener) -> None:
        """Call ``listener(data, last_modified)`` after every in-memory commit."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load(self) -> Record:
        """Read, decrypt, and migrate the stored draft.

        Absent key: the template, not dirty. Present: the migrated record,
        dirty so the UI knows a draft was recovered. Unreadable: the
        template, with the failure logged and audited.

        Returns:
            The in-memory draft data.
        """
        self.is_loading = True
        try:
            try:
                raw = self._storage.get_item(self._key)
            except OSError as exc:
                logger.error("Cannot read draft %s: %s", self._key, exc)
                raw = None

            if raw is None:
                self.data = copy.deepcopy(self._initial)
                self.is_dirty = False
                return self.data

            try:
                record = await self._read_record(raw)
                self.data = migrate_data(record, self._initial)
                self.is_dirty = True
                self._audit.log_event("draft_resume", self._key, "Recovered local draft")
            except (DecryptionError, ValueError) as exc:
                logger.error("Discarding unreadable draft %s: %s", self._key, exc)
                self._audit.log_event(
                    "error", self._key, f"Draft load failed: {exc}", "failure"
                )
                self.data = copy.deepcopy(self._initial)
                self.is_dirty = False
            return self.data
        finally:
            self.is_loading = False

    async def _read_record(self, raw: str) -> Any:
        if self._cipher.is_encrypted(raw):
            decoded = await asyncio.to_thread(self._cipher.decrypt, raw)
        else:
            decoded = json.loads(raw)
            await self._reencrypt_legacy(decoded)

        if isinstance(decoded, dict) and SCHEMA_FIELD in decoded:
            modified = decoded.get(MODIFIED_FIELD)
            if isinstance(modified, str):
                self._restore_modified(modified)
            return decoded.get("data")
        return decoded

    async def _reencrypt_legacy(self, record: Any) -> None:
        # Plaintext stays on disk if this fails; losing it would lose the draft.
        if isinstance(record, dict) and SCHEMA_FIELD in record:
            envelope = record
        else:
            envelope = {
                SCHEMA_FIELD: 0,
                MODIFIED_FIELD: self._advance_modified(),
                "data": record,
            }
        try:
            payload = await asyncio.to_thread(self._cipher.encrypt, envelope)
            await asyncio.to_thread(self._storage.set_item, self._key, payload)
            logger.info("Encrypted legacy plaintext draft %s in place", self._key)
        except Exception as exc:
            logger.error("Legacy draft %s left as plaintext: %s", self._key, exc)
            self._audit.log_event(
                "error",
                self._key,
                f"PHI migration encryption failed: {exc}",
                "failure",
            )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, updater: Updater, silent: bool = False) -> Record:
        """Apply an edit in memory and schedule a debounced write.

        Must be called while an event loop is running.

        Args:
            updater: Partial dict merged over the current data, or a
                function of the previous data returning the next.
            silent: Derived-field updates; do not mark the draft dirty.

        Returns:
            The new in-memory data.
        """
        if callable(updater):
            next_data = updater(self.data)
        elif isinstance(updater, dict):
            next_data = {**self.data, **updater}
        else:
            raise TypeError(f"updater must be a dict or callable, not {type(updater).__name__}")

        self.data = next_data
        self.last_modified = self._advance_modified()
        if not silent:
            self.is_dirty = True
        self._schedule_save()

        for listener in self._listeners:
            try:
                listener(self.data, self.last_modified)
            except Exception:
                logger.exception("Commit listener failed for %s", self._key)
        return self.data

    def _advance_modified(self) -> str:
        now = datetime.now(timezone.utc)
        if self._modified_at is not None and now <= self._modified_at:
            now = self._modified_at + timedelta(microseconds=1)
        self._modified_at = now
        return now.isoformat(timespec="microseconds")

    def _restore_modified(self, iso: str) -> None:
        try:
            restored = datetime.fromisoformat(iso)
        except ValueError:
            return
        if restored.tzinfo is None:
            restored = restored.replace(tzinfo=timezone.utc)
        self._modified_at = restored
        self.last_modified = iso

    # ------------------------------------------------------------------
    # Debounced persistence
    # ------------------------------------------------------------------

    def _schedule_save(self) -> None:
        self._pending = True
        self.is_saving = True
        if self._save_task is not None:
            self._save_task.cancel()
        self._save_task = asyncio.get_running_loop().create_task(
            self._save_later(), name=f"draft-save:{self._key}"
        )

    async def _save_later(self) -> None:
        await asyncio.sleep(self._debounce)
        if self._save_task is asyncio.current_task():
            self._save_task = None
        # Once started, a write finishes even if this timer is cancelled.
        await asyncio.shield(self._start_write())

    def _start_write(self) -> asyncio.Task:
        envelope = {
            SCHEMA_FIELD: CURRENT_SCHEMA_VERSION,
            MODIFIED_FIELD: self.last_modified,
            "data": copy.deepcopy(self.data),
        }
        self._pending = False
        previous = self._inflight
        task = asyncio.get_running_loop().create_task(
            self._write(envelope, previous), name=f"draft-write:{self._key}"
        )
        self._inflight = task
        return task

    async def _write(self, envelope: Record, previous: Optional[asyncio.Task]) -> bool:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        try:
            try:
                payload = await asyncio.to_thread(self._cipher.encrypt, envelope)
            except Exception as exc:
                self._persist_failed("Draft encryption failed", exc)
                return False
            try:
                await asyncio.to_thread(self._storage.set_item, self._key, payload)
            except OSError as exc:
                self._persist_failed("Draft write failed", exc)
                return False

            self.write_count += 1
            self.last_saved = datetime.now(timezone.utc)
            self.last_error = None
            logger.debug("Draft %s saved (%d bytes)", self._key, len(payload))
            return True
        finally:
            if (
                not self._pending
                and self._save_task is None
                and self._inflight is asyncio.current_task()
            ):
                self.is_saving = False

    def _persist_failed(self, what: str, exc: Exception) -> None:
        self.last_error = f"{what}: {exc}"
        logger.error("%s for %s, keeping draft in memory only: %s", what, self._key, exc)
        self._audit.log_event("error", self._key, f"{what}: {exc}", "failure")

    def _cancel_timer(self) -> None:
        task, self._save_task = self._save_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _wait_inflight(self) -> None:
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            await asyncio.wait([inflight])

    async def flush(self) -> bool:
        """Write the pending value now instead of waiting for the timer.

        Returns:
            False if the last write failed, True otherwise.
        """
        self._cancel_timer()
        if self._pending:
            return await self._start_write()
        inflight = self._inflight
        await self._wait_inflight()
        if inflight is not None and not inflight.cancelled():
            return bool(inflight.result())
        return True

    # ------------------------------------------------------------------
    # Clear / query / teardown
    # ------------------------------------------------------------------

    async def clear_draft(self) -> None:
        """Delete the stored draft and reset to the template.

        The pending timer is cancelled first and any write already under
        way is allowed to land before the delete, so nothing can bring
        the record back afterwards.
        """
        self._cancel_timer()
        self._pending = False
        self.data = copy.deepcopy(self._initial)
        self.is_dirty = False
        self.last_saved = None
        self.last_modified = None
        self._modified_at = None

        await self._wait_inflight()
        try:
            self._storage.remove_item(self._key)
        except OSError as exc:
            logger.error("Cannot remove draft %s: %s", self._key, exc)
            self.last_error = f"Draft delete failed: {exc}"
        self.is_saving = False
        self._audit.log_event("draft_delete", self._key, "Local draft cleared")

    def has_draft(self) -> bool:
        """Whether anything is stored under the key, without decrypting it."""
        try:
            return self._storage.has_item(self._key)
        except OSError as exc:
            logger.warning("Cannot check draft %s: %s", self._key, exc)
            return False

    async def close(self) -> None:
        """Cancel the debounce timer. Pending unsaved edits are dropped."""
        self._cancel_timer()
        self._pending = False
        await self._wait_inflight()
        self.is_saving = False
