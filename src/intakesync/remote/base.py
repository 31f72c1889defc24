"""
Remote draft store interface.

The remote is the source of truth for edit leases and draft versions.
Every push is a compare-and-swap on ``version``: the write lands only
if the caller's expected version matches, unless ``force`` is set.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from ..models import Draft, LeaseInfo


class RemoteStoreError(Exception):
    """Transport or server failure talking to the remote store."""


class PushResult(BaseModel):
    """Outcome of a push.

    ``ok`` with ``new_version`` on success. On a version mismatch,
    ``conflict`` is set and the remote's current copy is attached.
    """

    ok: bool = False
    new_version: Optional[int] = None
    conflict: bool = False
    remote_draft: Optional[Draft] = None
    remote_version: Optional[int] = None
    remote_updated_at: Optional[str] = None


class RemoteDraftStore(ABC):
    """Async remote persistence for drafts and their edit leases."""

    @abstractmethod
    async def acquire_lease(self, draft_id: str, user_id: str, device_id: str) -> bool:
        """Try to take the edit lease.

        Returns:
            True if this user/device now holds it. Re-acquiring a lease
            already held refreshes its timestamp.

        Raises:
            RemoteStoreError: On transport failure.
        """

    @abstractmethod
    async def renew_lease(self, draft_id: str, user_id: str) -> bool:
        """Refresh the lease timestamp. Returns False if not held."""

    @abstractmethod
    async def release_lease(self, draft_id: str, user_id: str) -> None:
        """Drop the lease if this user holds it."""

    @abstractmethod
    async def get_lease_info(self, draft_id: str) -> Optional[LeaseInfo]:
        """Who holds a live lease, or None."""

    @abstractmethod
    async def push_draft(
        self,
        draft: Draft,
        expected_version: Optional[int],
        force: bool = False,
    ) -> PushResult:
        """Upsert a draft.

        Args:
            draft: The local snapshot.
            expected_version: Version this copy was based on. None means
                the caller has never seen a remote copy.
            force: Skip the version check (keep-mine resolution).
        """

    @abstractmethod
    async def fetch_draft(self, draft_id: str) -> Optional[Draft]:
        """The remote copy with ``remote_version`` filled in, or None."""

    @abstractmethod
    async def delete_draft(self, draft_id: str) -> None:
        """Delete the remote copy. Missing drafts are ignored."""
