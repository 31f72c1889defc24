"""
Sync engine: debounced background push of drafts to the remote store.

Local edits are the source of truth for the editing device. The engine
pushes the latest snapshot of each draft a few seconds after the last
change, using the last-seen remote version as a compare-and-swap guard.

When the remote has moved on, nothing is overwritten: the engine stops
in the ``conflict`` state and waits for the user to pick a side.

Offline, upserts and deletes go to a small persisted queue that drains
when connectivity returns.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from ..audit import AuditLog
from ..connectivity import ConnectivityMonitor
from ..models import Draft, is_remote_id
from ..remote.base import PushResult, RemoteDraftStore, RemoteStoreError
from ..storage import LocalStorage
from .models import (
    ConflictChoice,
    ConflictInfo,
    QueueAction,
    QueueItem,
    SyncState,
    SyncStatus,
)

logger = logging.getLogger("intakesync.sync.engine")

DEFAULT_SYNC_DEBOUNCE_SECONDS = 3.0
QUEUE_KEY = "intakesync:sync-queue"
STATE_KEY = "intakesync:sync-state"

SnapshotLoader = Callable[[str], Optional[Draft]]


def read_queue(storage: LocalStorage) -> list[QueueItem]:
    """Read the persisted offline queue, oldest first."""
    raw = None
    try:
        raw = storage.get_item(QUEUE_KEY)
    except OSError as exc:
        logger.warning("Cannot read sync queue: %s", exc)
    if not raw:
        return []
    try:
        return [QueueItem.model_validate(item) for item in json.loads(raw)]
    except (TypeError, ValueError) as exc:
        logger.warning("Discarding unreadable sync queue: %s", exc)
        return []


def read_state(storage: LocalStorage) -> SyncState:
    """Read persisted sync counters, defaults if absent or unreadable."""
    try:
        raw = storage.get_item(STATE_KEY)
        if raw:
            return SyncState.model_validate_json(raw)
    except (OSError, ValueError) as exc:
        logger.warning("Failed to load sync state: %s", exc)
    return SyncState()


class SyncEngine:
    """Pushes local draft snapshots to a RemoteDraftStore.

    Args:
        remote: Remote draft store.
        storage: Where the offline queue and counters are kept.
        connectivity: Network signal. Defaults to always online.
        load_snapshot: Returns the current local Draft for an ID; used
            when draining queued upserts after a restart.
        debounce_seconds: Quiet period before a push.
        audit: Audit sink for conflicts and resolutions.
    """

    def __init__(
        self,
        remote: RemoteDraftStore,
        storage: LocalStorage,
        connectivity: Optional[ConnectivityMonitor] = None,
        load_snapshot: Optional[SnapshotLoader] = None,
        debounce_seconds: float = DEFAULT_SYNC_DEBOUNCE_SECONDS,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self._remote = remote
        self._storage = storage
        self._connectivity = connectivity or ConnectivityMonitor()
        self._load_snapshot = load_snapshot
        self._debounce = debounce_seconds
        self._audit = audit or AuditLog()

        self.status = SyncStatus.IDLE if self.online else SyncStatus.OFFLINE
        self.last_synced: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.conflict_info: Optional[ConflictInfo] = None
        self.state = read_state(storage)

        self._pending: dict[str, Draft] = {}
        self._conflict_local: Optional[Draft] = None
        self._conflict_remote: Optional[Draft] = None
        self._push_lock = asyncio.Lock()
        self._debounce_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()
        self._unsubscribe = self._connectivity.subscribe(self._on_connectivity)

    @property
    def online(self) -> bool:
        return self._connectivity.online

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    def set_snapshot_loader(self, loader: SnapshotLoader) -> None:
        self._load_snapshot = loader

    def known_version(self, draft_id: str) -> Optional[int]:
        """Latest remote version this device has written or seen.

        Kept in the persisted sync state, so it survives a restart and
        the next push after a reload is still version-checked.
        """
        return self.state.versions.get(draft_id)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_sync(self, draft: Draft) -> None:
        """Remember the newest snapshot and (re)start the debounce timer.

        Local-only drafts are ignored. Offline, the snapshot is kept and
        an upsert is queued for later.
        """
        if not is_remote_id(draft.id):
            return
        self._pending[draft.id] = draft.model_copy(deep=True)
        self._cancel_debounce()

        if not self.online:
            self.status = SyncStatus.OFFLINE
            self._enqueue(draft.id, QueueAction.UPSERT)
            return

        self._debounce_task = self._spawn(self._push_later(), "sync-debounce")

    def schedule_delete(self, draft_id: str) -> Optional[asyncio.Task]:
        """Delete the remote copy now, or queue the delete while offline."""
        if not is_remote_id(draft_id):
            return None
        self._pending.pop(draft_id, None)
        if not self.online:
            self.status = SyncStatus.OFFLINE
            self._enqueue(draft_id, QueueAction.DELETE)
            return None
        return self._spawn(self._delete(draft_id), f"sync-delete:{draft_id}")

    async def _push_later(self) -> None:
        await asyncio.sleep(self._debounce)
        if self._debounce_task is asyncio.current_task():
            self._debounce_task = None
        await self._push_pending()

    async def _wait_for_push(self) -> None:
        # A push in flight holds the lock with its snapshot already out of _pending.
        async with self._push_lock:
            return

    def _cancel_debounce(self) -> None:
        task, self._debounce_task = self._debounce_task, None
        if task is not None and not task.done():
            task.cancel()

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _expected_version(self, draft: Draft) -> Optional[int]:
        seen = [
            v for v in (draft.remote_version, self.known_version(draft.id)) if v is not None
        ]
        return max(seen) if seen else None

    async def _push_pending(self) -> int:
        count = 0
        for draft_id in list(self._pending):
            if not self.online:
                break
            draft = self._pending.get(draft_id)
            if draft is None:
                continue
            result = await self._push(draft)
            if result is not None and result.ok:
                count += 1
        return count

    async def _push(self, draft: Draft) -> Optional[PushResult]:
        """Push one snapshot. Returns None on transport failure."""
        async with self._push_lock:
            if self._pending.get(draft.id) is draft:
                del self._pending[draft.id]
            expected = self._expected_version(draft)
            self.status = SyncStatus.SYNCING
            try:
                result = await self._remote.push_draft(draft, expected)
            except RemoteStoreError as exc:
                self._push_failed(draft, exc)
                return None

            if result.ok:
                self._push_succeeded(draft.id, result.new_version)
            else:
                self._push_conflicted(draft, result)
            return result

    def _push_succeeded(self, draft_id: str, new_version: Optional[int]) -> None:
        if new_version is not None:
            self.state.versions[draft_id] = new_version
        now = datetime.now(timezone.utc)
        self.last_synced = now
        self.last_error = None
        self.state.last_push = now
        self.state.push_count += 1
        self.state.last_error = None
        self.status = SyncStatus.CONFLICT if self.conflict_info else SyncStatus.SYNCED
        self._save_state()
        self._drop_queued(draft_id, QueueAction.UPSERT)
        logger.debug("Pushed %s at version %s", draft_id, new_version)

    def _push_failed(self, draft: Draft, exc: Exception) -> None:
        logger.error("Push failed for %s: %s", draft.id, exc)
        self._pending.setdefault(draft.id, draft)
        self.status = SyncStatus.ERROR
        self.last_error = str(exc)
        self.state.last_error = str(exc)
        self._save_state()

    def _push_conflicted(self, draft: Draft, result: PushResult) -> None:
        self._pending.setdefault(draft.id, draft)
        self._conflict_local = draft
        self._conflict_remote = result.remote_draft
        remote_name = result.remote_draft.client_name if result.remote_draft else ""
        self.conflict_info = ConflictInfo(
            draft_id=draft.id,
            client_name=remote_name or draft.client_name,
            remote_updated_at=result.remote_updated_at,
            remote_version=result.remote_version,
        )
        self.status = SyncStatus.CONFLICT
        self.last_error = "Sync conflict: remote version changed"
        self.state.conflict_count += 1
        self._save_state()
        logger.warning(
            "Conflict on %s: local based on %s, remote at %s",
            draft.id, self._expected_version(draft), result.remote_version,
        )
        self._audit.log_event(
            "sync_conflict",
            draft.id,
            f"Remote version {result.remote_version} does not match local",
            "failure",
        )

    async def flush_sync(self) -> int:
        """Push pending snapshots now and drain the offline queue.

        A debounced push that is already under way is awaited first, so
        when this returns every edit scheduled before the call has reached
        the remote or been kept pending.

        Returns:
            Number of successful pushes.
        """
        self._cancel_debounce()
        await self._wait_for_push()
        if not self.online:
            return 0
        count = await self._push_pending()
        count += await self.drain_queue()
        return count

    # ------------------------------------------------------------------
    # Conflict resolution
    # ------------------------------------------------------------------

    async def resolve_conflict(
        self, choice: Union[ConflictChoice, str]
    ) -> Optional[Draft]:
        """Settle the current conflict.

        Args:
            choice: ``keepMine`` force-pushes the local snapshot;
                ``useTheirs`` fetches the remote copy and drops the local one.

        Returns:
            The draft to show afterwards, carrying its remote version, or
            None if there was no conflict or the remote call failed.

        Raises:
            ValueError: If ``choice`` is not a ConflictChoice.
        """
        choice = ConflictChoice(choice)
        async with self._push_lock:
            if self.conflict_info is None:
                return None
            draft_id = self.conflict_info.draft_id
            if choice is ConflictChoice.KEEP_MINE:
                resolved = await self._keep_mine(draft_id)
            else:
                resolved = await self._use_theirs(draft_id)
            if resolved is None:
                return None

        self._audit.log_event(
            "conflict_resolved", draft_id, f"Conflict resolved with {choice.value}", "success"
        )
        logger.info("Conflict on %s resolved: %s", draft_id, choice.value)
        return resolved

    async def _keep_mine(self, draft_id: str) -> Optional[Draft]:
        local = self._pending.get(draft_id) or self._conflict_local
        if local is None:
            return None
        try:
            result = await self._remote.push_draft(local, None, force=True)
        except RemoteStoreError as exc:
            logger.error("Keep-mine push failed for %s: %s", draft_id, exc)
            self.last_error = str(exc)
            return None
        if not result.ok:
            self.last_error = "Force push rejected"
            return None
        self._pending.pop(draft_id, None)
        self._clear_conflict()
        self._push_succeeded(draft_id, result.new_version)
        return local.model_copy(deep=True, update={"remote_version": result.new_version})

    async def _use_theirs(self, draft_id: str) -> Optional[Draft]:
        try:
            remote = await self._remote.fetch_draft(draft_id)
        except RemoteStoreError as exc:
            logger.error("Use-theirs fetch failed for %s: %s", draft_id, exc)
            self.last_error = str(exc)
            return None
        resolved = remote or self._conflict_remote
        if resolved is None:
            return None
        self._pending.pop(draft_id, None)
        self._drop_queued(draft_id, QueueAction.UPSERT)
        if resolved.remote_version is not None:
            self.state.versions[draft_id] = resolved.remote_version
            self._save_state()
        self._clear_conflict()
        self.status = SyncStatus.SYNCED
        self.last_error = None
        return resolved

    def dismiss_conflict(self) -> None:
        """Close the dialog without choosing. The next push conflicts again."""
        self._clear_conflict()
        self.status = SyncStatus.IDLE if self.online else SyncStatus.OFFLINE

    def _clear_conflict(self) -> None:
        self.conflict_info = None
        self._conflict_local = None
        self._conflict_remote = None

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def _delete(self, draft_id: str) -> bool:
        self.status = SyncStatus.SYNCING
        try:
            await self._remote.delete_draft(draft_id)
        except RemoteStoreError as exc:
            logger.error("Remote delete failed for %s: %s", draft_id, exc)
            self.status = SyncStatus.ERROR
            self.last_error = str(exc)
            self._enqueue(draft_id, QueueAction.DELETE)
            return False
        if self.state.versions.pop(draft_id, None) is not None:
            self._save_state()
        self.status = SyncStatus.SYNCED
        self.last_synced = datetime.now(timezone.utc)
        return True

    # ------------------------------------------------------------------
    # Offline queue
    # ------------------------------------------------------------------

    def queue(self) -> list[QueueItem]:
        """The persisted offline queue, oldest first."""
        return read_queue(self._storage)

    def _save_queue(self, items: list[QueueItem]) -> None:
        try:
            if items:
                self._storage.set_item(
                    QUEUE_KEY, json.dumps([item.model_dump(mode="json") for item in items])
                )
            else:
                self._storage.remove_item(QUEUE_KEY)
        except OSError as exc:
            logger.error("Cannot persist sync queue: %s", exc)

    def _enqueue(self, draft_id: str, action: QueueAction) -> None:
        items = [i for i in self.queue() if (i.draft_id, i.action) != (draft_id, action)]
        if action is QueueAction.DELETE:
            items = [i for i in items if i.draft_id != draft_id]
        items.append(
            QueueItem(id=f"{action.value}-{draft_id}-{uuid.uuid4().hex[:8]}", draft_id=draft_id, action=action)
        )
        self._save_queue(items)
        logger.debug("Queued %s for %s", action.value, draft_id)

    def _drop_queued(self, draft_id: str, action: QueueAction) -> None:
        items = self.queue()
        kept = [i for i in items if (i.draft_id, i.action) != (draft_id, action)]
        if len(kept) != len(items):
            self._save_queue(kept)

    def _snapshot_for(self, draft_id: str) -> Optional[Draft]:
        draft = self._pending.get(draft_id)
        if draft is None and self._load_snapshot is not None:
            draft = self._load_snapshot(draft_id)
        return draft

    async def drain_queue(self) -> int:
        """Replay queued operations. Failed items stay queued.

        Returns:
            Number of upserts that landed.
        """
        if not self.online:
            return 0
        items = self.queue()
        if not items:
            return 0
        logger.info("Draining offline queue: %d items", len(items))

        done: set[str] = set()
        pushed = 0
        for item in items:
            if not self.online:
                break
            if item.action is QueueAction.UPSERT:
                draft = self._snapshot_for(item.draft_id)
                if draft is not None:
                    result = await self._push(draft)
                    if result is None:
                        continue
                    if result.ok:
                        pushed += 1
            elif not await self._delete(item.draft_id):
                continue
            done.add(item.id)

        # Re-read: pushes and deletes above may have queued new items.
        self._save_queue([i for i in self.queue() if i.id not in done])
        return pushed

    # ------------------------------------------------------------------
    # Connectivity / state / teardown
    # ------------------------------------------------------------------

    def _on_connectivity(self, online: bool) -> None:
        if not online:
            self._cancel_debounce()
            self.status = SyncStatus.OFFLINE
            return
        if self.status is SyncStatus.OFFLINE:
            self.status = SyncStatus.CONFLICT if self.conflict_info else SyncStatus.IDLE
        self._spawn(self.flush_sync(), "sync-reconnect")

    def _save_state(self) -> None:
        try:
            self._storage.set_item(STATE_KEY, self.state.model_dump_json())
        except OSError as exc:
            logger.error("Cannot persist sync state: %s", exc)

    async def close(self) -> None:
        """Cancel timers, wait for background work, stop listening."""
        self._cancel_debounce()
        self._unsubscribe()
        if self._background:
            await asyncio.wait(list(self._background))
