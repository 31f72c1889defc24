"""
Background sync of drafts to the remote store.

Debounced compare-and-swap pushes, an explicit keep-mine / use-theirs
resolution when versions diverge, and an offline queue that drains on
reconnect.
"""

from .engine import SyncEngine
from .models import ConflictChoice, ConflictInfo, QueueItem, SyncState, SyncStatus

__all__ = [
    "ConflictChoice",
    "ConflictInfo",
    "QueueItem",
    "SyncEngine",
    "SyncState",
    "SyncStatus",
]
