"""
In-process remote store with TTL leases and compare-and-swap versions.

Behaves like the hosted backend closely enough to drive the lease
manager and sync engine in tests and single-machine demos. Each
operation checks and mutates state without suspending in between, so
it is atomic on one event loop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import BaseModel

from ..models import Draft, LeaseInfo
from .base import PushResult, RemoteDraftStore, RemoteStoreError

logger = logging.getLogger("intakesync.remote.memory")

DEFAULT_LEASE_TTL_SECONDS = 30 * 60


class _Lease(BaseModel):
    user_id: str
    device_id: str
    locked_at: datetime


class _Row(BaseModel):
    draft: Draft
    version: int
    updated_at: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRemoteStore(RemoteDraftStore):
    """Dictionary-backed RemoteDraftStore.

    Args:
        lease_ttl: Seconds after which an unrenewed lease is stale.
        clock: Time source; tests pass a fake to expire leases.
        latency: Seconds each call sleeps first, to exercise interleaving.
    """

    def __init__(
        self,
        lease_ttl: float = DEFAULT_LEASE_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
        latency: float = 0.0,
    ) -> None:
        self.lease_ttl = lease_ttl
        self.clock = clock
        self.latency = latency
        self.reachable = True
        self.calls: list[str] = []
        self._rows: dict[str, _Row] = {}
        self._leases: dict[str, _Lease] = {}

    async def _enter(self, op: str) -> None:
        self.calls.append(op)
        if self.latency:
            await asyncio.sleep(self.latency)
        if not self.reachable:
            raise RemoteStoreError(f"{op}: remote store unreachable")

    def _live_lease(self, draft_id: str) -> Optional[_Lease]:
        lease = self._leases.get(draft_id)
        if lease is None:
            return None
        if self.clock() - lease.locked_at > timedelta(seconds=self.lease_ttl):
            logger.debug("Lease on %s by %s expired", draft_id, lease.user_id)
            del self._leases[draft_id]
            return None
        return lease

    # --- leases ---

    async def acquire_lease(self, draft_id: str, user_id: str, device_id: str) -> bool:
        await self._enter("acquire_lease")
        lease = self._live_lease(draft_id)
        if lease is not None and (lease.user_id, lease.device_id) != (user_id, device_id):
            return False
        self._leases[draft_id] = _Lease(
            user_id=user_id, device_id=device_id, locked_at=self.clock()
        )
        return True

    async def renew_lease(self, draft_id: str, user_id: str) -> bool:
        await self._enter("renew_lease")
        lease = self._live_lease(draft_id)
        if lease is None or lease.user_id != user_id:
            return False
        lease.locked_at = self.clock()
        return True

    async def release_lease(self, draft_id: str, user_id: str) -> None:
        await self._enter("release_lease")
        lease = self._leases.get(draft_id)
        if lease is not None and lease.user_id == user_id:
            del self._leases[draft_id]

    async def get_lease_info(self, draft_id: str) -> Optional[LeaseInfo]:
        await self._enter("get_lease_info")
        lease = self._live_lease(draft_id)
        if lease is None:
            return None
        return LeaseInfo(
            locked_by=lease.user_id,
            locked_at=lease.locked_at.isoformat(),
            lock_device_id=lease.device_id,
        )

    # --- drafts ---

    async def push_draft(
        self,
        draft: Draft,
        expected_version: Optional[int],
        force: bool = False,
    ) -> PushResult:
        await self._enter("push_draft")
        now = self.clock().isoformat()
        row = self._rows.get(draft.id)

        if row is None:
            stored = draft.model_copy(deep=True, update={"remote_version": 1})
            self._rows[draft.id] = _Row(draft=stored, version=1, updated_at=now)
            return PushResult(ok=True, new_version=1)

        if not force and expected_version is not None and expected_version != row.version:
            logger.info(
                "Version conflict on %s: expected %s, remote at %s",
                draft.id, expected_version, row.version,
            )
            return PushResult(
                conflict=True,
                remote_draft=row.draft.model_copy(deep=True),
                remote_version=row.version,
                remote_updated_at=row.updated_at,
            )

        version = row.version + 1
        row.draft = draft.model_copy(deep=True, update={"remote_version": version})
        row.version = version
        row.updated_at = now
        return PushResult(ok=True, new_version=version)

    async def fetch_draft(self, draft_id: str) -> Optional[Draft]:
        await self._enter("fetch_draft")
        row = self._rows.get(draft_id)
        if row is None:
            return None
        return row.draft.model_copy(deep=True, update={"remote_version": row.version})

    async def delete_draft(self, draft_id: str) -> None:
        await self._enter("delete_draft")
        self._rows.pop(draft_id, None)
        self._leases.pop(draft_id, None)

    def version_of(self, draft_id: str) -> Optional[int]:
        """Current version of a stored draft, for inspection."""
        row = self._rows.get(draft_id)
        return row.version if row else None
