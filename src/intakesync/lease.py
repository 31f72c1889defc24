"""
Edit lease manager: one active editor per draft.

A device takes a short-lived lease on the remote before editing and
renews it on a timer. The remote expires leases that stop being renewed,
so a crashed tab never locks a draft for longer than the TTL.

Policy:
    - A failed renewal is logged but never revokes the lease locally.
    - A transport error on acquire allows editing (optimistic mode).
    - Release is best effort and never raises.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .audit import AuditLog
from .models import LeaseInfo, LeaseState, is_remote_id
from .remote.base import RemoteDraftStore, RemoteStoreError

logger = logging.getLogger("intakesync.lease")

DEFAULT_RENEWAL_SECONDS = 5 * 60


class LeaseManager:
    """Acquires, renews, and releases the edit lease for one draft.

    With no ``draft_id`` or ``user_id`` the manager is inactive and
    never blocks editing. Local-only draft IDs are granted without a
    network call.

    Args:
        remote: Lease authority.
        draft_id: Draft being edited.
        user_id: Signed-in user.
        device_id: This device's stable identifier.
        renewal_seconds: Renewal interval; must be well under the TTL.
        audit: Audit sink for blocked and failed lease operations.
    """

    def __init__(
        self,
        remote: RemoteDraftStore,
        draft_id: Optional[str],
        user_id: Optional[str],
        device_id: str,
        renewal_seconds: float = DEFAULT_RENEWAL_SECONDS,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self._remote = remote
        self.draft_id = draft_id
        self.user_id = user_id
        self.device_id = device_id
        self._renewal_seconds = renewal_seconds
        self._audit = audit or AuditLog()

        self.state = LeaseState.UNLEASED
        self.other_lease_info: Optional[LeaseInfo] = None
        self.lease_error: Optional[str] = None
        self.optimistic = False

        self._renew_task: Optional[asyncio.Task] = None
        self._releasing = False
        self._background: set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return bool(self.draft_id) and bool(self.user_id)

    @property
    def local_only(self) -> bool:
        return not is_remote_id(self.draft_id)

    @property
    def can_edit(self) -> bool:
        return self.state is not LeaseState.BLOCKED_BY_OTHER

    async def acquire(self) -> bool:
        """Try to take the lease.

        Returns:
            False only when another device holds a live lease.
        """
        if not self.active:
            return True
        if self.local_only:
            self.state = LeaseState.HELD
            return True

        try:
            acquired = await self._remote.acquire_lease(
                self.draft_id, self.user_id, self.device_id
            )
        except RemoteStoreError as exc:
            logger.warning(
                "Lease acquire failed for %s, editing optimistically: %s",
                self.draft_id, exc,
            )
            self.lease_error = str(exc)
            self.optimistic = True
            self.state = LeaseState.HELD
            return True

        if acquired:
            self.state = LeaseState.HELD
            self.other_lease_info = None
            self.lease_error = None
            self.optimistic = False
            logger.debug("Lease held on %s by %s", self.draft_id, self.device_id)
            return True

        self.state = LeaseState.BLOCKED_BY_OTHER
        try:
            self.other_lease_info = await self._remote.get_lease_info(self.draft_id)
        except RemoteStoreError as exc:
            logger.warning("Could not read lease holder for %s: %s", self.draft_id, exc)
            self.other_lease_info = None

        holder = self.other_lease_info.locked_by if self.other_lease_info else "unknown"
        logger.info("Draft %s is being edited by %s", self.draft_id, holder)
        self._audit.log_event(
            "lease_blocked", self.draft_id, f"Draft locked by {holder}", "failure"
        )
        return False

    async def retry(self) -> bool:
        """Forget the blocking holder and try again."""
        self.other_lease_info = None
        self.lease_error = None
        return await self.acquire()

    async def renew(self) -> None:
        """One renewal round. Failures only set ``lease_error``."""
        if self.state is not LeaseState.HELD or not self.active or self.local_only:
            return
        try:
            renewed = await self._remote.renew_lease(self.draft_id, self.user_id)
        except RemoteStoreError as exc:
            logger.warning("Lease renewal failed for %s: %s", self.draft_id, exc)
            self.lease_error = str(exc)
            return
        if renewed:
            self.lease_error = None
        else:
            logger.warning("Lease renewal refused for %s", self.draft_id)
            self.lease_error = "Lease renewal refused"

    async def _renew_loop(self) -> None:
        while True:
            await asyncio.sleep(self._renewal_seconds)
            await self.renew()

    async def release(self) -> None:
        """Give up the lease. Never raises; overlapping calls are ignored."""
        if self._releasing:
            return
        holding = self.state is LeaseState.HELD
        self.state = LeaseState.UNLEASED
        self.optimistic = False
        if not holding or not self.active or self.local_only:
            return

        self._releasing = True
        try:
            await self._remote.release_lease(self.draft_id, self.user_id)
            logger.debug("Lease released on %s", self.draft_id)
        except Exception as exc:
            logger.warning("Lease release failed for %s: %s", self.draft_id, exc)
        finally:
            self._releasing = False

    async def start(self) -> bool:
        """Acquire and start the renewal timer."""
        acquired = await self.acquire()
        if self.active and self._renew_task is None:
            self._renew_task = asyncio.get_running_loop().create_task(
                self._renew_loop(), name=f"lease-renew:{self.draft_id}"
            )
        return acquired

    async def stop(self) -> Optional[asyncio.Task]:
        """Cancel renewal and fire a release without waiting for it.

        Returns:
            The release task, or None if there was nothing to release.
        """
        task, self._renew_task = self._renew_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        return self.release_on_unload()

    def release_on_unload(self) -> Optional[asyncio.Task]:
        """Schedule a release from synchronous teardown code.

        Nobody waits for the result. If it never reaches the remote, the
        lease lapses at the server TTL.
        """
        if self.state is not LeaseState.HELD or not self.active or self.local_only:
            self.state = LeaseState.UNLEASED
            return None
        task = asyncio.get_running_loop().create_task(
            self.release(), name=f"lease-release:{self.draft_id}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
