"""
Sync data models: status, conflicts, and the offline queue.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..models import utc_now_iso


class SyncStatus(str, Enum):
    """What the background sync is doing, for the status badge."""

    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"
    OFFLINE = "offline"
    CONFLICT = "conflict"


class ConflictChoice(str, Enum):
    """How the user resolved a version conflict."""

    KEEP_MINE = "keepMine"
    USE_THEIRS = "useTheirs"


class ConflictInfo(BaseModel):
    """Enough about the remote copy to render a conflict dialog."""

    draft_id: str
    client_name: str = ""
    remote_updated_at: Optional[str] = None
    remote_version: Optional[int] = None


class QueueAction(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


class QueueItem(BaseModel):
    """A remote operation deferred while offline."""

    id: str
    draft_id: str
    action: QueueAction
    timestamp: str = Field(default_factory=utc_now_iso)


class SyncState(BaseModel):
    """Sync counters and last-seen remote versions, persisted next to the queue."""

    last_push: Optional[datetime] = None
    push_count: int = 0
    conflict_count: int = 0
    last_error: Optional[str] = None
    versions: dict[str, int] = Field(default_factory=dict)
