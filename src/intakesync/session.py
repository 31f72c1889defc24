"""
Draft session: one wizard editing one draft on one device.

Wires the encrypted store, the edit lease, and the sync engine
together. Every in-memory commit schedules a background sync of the
full draft; edits are refused while another device holds the lease.
"""

from __future__ import annotations

import copy
import logging
from typing import Optional, Union

from .audit import AuditLog
from .config import IntakeConfig
from .connectivity import ConnectivityMonitor
from .crypto import DraftCipher
from .lease import LeaseManager
from .models import Draft, LeaseInfo, utc_now_iso
from .remote.base import RemoteDraftStore
from .storage import LocalStorage
from .store import EncryptedDraftStore, Record, Updater
from .sync.engine import SyncEngine
from .sync.models import ConflictChoice
from .templates import initial_data

logger = logging.getLogger("intakesync.session")

DRAFT_KEY_PREFIX = "intakesync:draft:"


def draft_storage_key(draft_id: str) -> str:
    return f"{DRAFT_KEY_PREFIX}{draft_id}"


class DraftLockedError(Exception):
    """Raised when editing a draft another device holds the lease on."""

    def __init__(self, draft_id: str, holder: Optional[LeaseInfo] = None) -> None:
        self.draft_id = draft_id
        self.holder = holder
        who = holder.locked_by if holder else "another user"
        super().__init__(f"Draft {draft_id} is being edited by {who}")


class DraftSession:
    """Editing session for a single draft.

    Args:
        draft: Draft metadata (ID, client, type, step, remote version).
        store: Encrypted local store for this draft's data.
        lease: Edit lease for this draft.
        engine: Sync engine, possibly shared between sessions.
    """

    def __init__(
        self,
        draft: Draft,
        store: EncryptedDraftStore,
        lease: LeaseManager,
        engine: Optional[SyncEngine] = None,
    ) -> None:
        self.draft = draft.model_copy(deep=True)
        self.store = store
        self.lease = lease
        self.engine = engine
        self._applying_remote = False
        store.on_commit(self._on_commit)

    @classmethod
    def build(
        cls,
        draft: Draft,
        remote: RemoteDraftStore,
        storage: LocalStorage,
        cipher: DraftCipher,
        user_id: Optional[str],
        device_id: str,
        config: Optional[IntakeConfig] = None,
        engine: Optional[SyncEngine] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        audit: Optional[AuditLog] = None,
    ) -> "DraftSession":
        """Assemble a session from shared infrastructure and config."""
        config = config or IntakeConfig()
        audit = audit or AuditLog(enabled=config.audit_enabled)
        store = EncryptedDraftStore(
            storage,
            cipher,
            initial_data(draft.type),
            draft_storage_key(draft.id),
            debounce_seconds=config.save_debounce_seconds,
            audit=audit,
        )
        lease = LeaseManager(
            remote,
            draft.id,
            user_id,
            device_id,
            renewal_seconds=config.lease_renewal_seconds,
            audit=audit,
        )
        if engine is None:
            engine = SyncEngine(
                remote,
                storage,
                connectivity=connectivity,
                debounce_seconds=config.sync_debounce_seconds,
                audit=audit,
            )
        session = cls(draft, store, lease, engine)
        engine.set_snapshot_loader(session.snapshot_for)
        return session

    @property
    def draft_id(self) -> str:
        return self.draft.id

    @property
    def data(self) -> Record:
        return self.store.data

    @property
    def editable(self) -> bool:
        return self.lease.can_edit

    async def open(self) -> Record:
        """Load local data and take the edit lease."""
        data = await self.store.load()
        await self.lease.start()
        if not self.editable:
            logger.info("Opened %s read-only; lease held elsewhere", self.draft_id)
        return data

    def update(self, updater: Updater, silent: bool = False) -> Record:
        """Edit the draft.

        Raises:
            DraftLockedError: While another device holds the lease.
        """
        if not self.lease.can_edit:
            raise DraftLockedError(self.draft_id, self.lease.other_lease_info)
        return self.store.update(updater, silent=silent)

    def to_draft(self) -> Draft:
        """Snapshot of the draft as it would be pushed now."""
        versions = [
            v
            for v in (
                self.draft.remote_version,
                self.engine.known_version(self.draft_id) if self.engine else None,
            )
            if v is not None
        ]
        return self.draft.model_copy(
            deep=True,
            update={
                "data": copy.deepcopy(self.store.data),
                "last_modified": self.store.last_modified or utc_now_iso(),
                "remote_version": max(versions) if versions else None,
            },
        )

    def snapshot_for(self, draft_id: str) -> Optional[Draft]:
        return self.to_draft() if draft_id == self.draft_id else None

    def _on_commit(self, data: Record, last_modified: str) -> None:
        if self.engine is None or self._applying_remote:
            return
        self.engine.schedule_sync(self.to_draft())

    async def apply_remote(self, remote: Draft) -> None:
        """Replace local data with a remote copy (after use-theirs)."""
        self._applying_remote = True
        try:
            self.store.update(lambda _: copy.deepcopy(remote.data), silent=True)
        finally:
            self._applying_remote = False
        self.draft = self.draft.model_copy(
            update={
                "client_name": remote.client_name,
                "status": remote.status,
                "current_step": remote.current_step,
                "remote_version": remote.remote_version,
            }
        )
        await self.store.flush()

    async def resolve_conflict(
        self, choice: Union[ConflictChoice, str]
    ) -> Optional[Draft]:
        """Resolve a sync conflict and bring local state in line."""
        if self.engine is None:
            return None
        resolved = await self.engine.resolve_conflict(choice)
        if resolved is None:
            return None
        if ConflictChoice(choice) is ConflictChoice.USE_THEIRS:
            await self.apply_remote(resolved)
        else:
            self.draft.remote_version = resolved.remote_version
        return resolved

    async def discard(self) -> None:
        """Delete the draft locally and remotely."""
        await self.store.clear_draft()
        if self.engine is not None:
            self.engine.schedule_delete(self.draft_id)

    async def close(self) -> None:
        """Flush pending writes and syncs, then stop the lease."""
        await self.store.flush()
        if self.engine is not None:
            await self.engine.flush_sync()
        await self.store.close()
        await self.lease.stop()

    def on_unload(self) -> None:
        """Page is going away: fire the lease release and move on."""
        self.lease.release_on_unload()
