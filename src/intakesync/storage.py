"""
Device-local key/value persistence.

The draft store only needs ``get_item`` / ``set_item`` / ``remove_item``
over strings. FileStorage keeps one file per key; MemoryStorage keeps a
dict and is handy for tests and ephemeral sessions.

Storage layout (FileStorage):
    <root>/
    └── <quoted key>.draft
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote

logger = logging.getLogger("intakesync.storage")


class StorageQuotaError(OSError):
    """Raised when a write would exceed the storage quota."""


class LocalStorage(ABC):
    """Abstract string key/value store."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one.

        Raises:
            OSError: On disk or quota failure.
        """

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""

    def has_item(self, key: str) -> bool:
        return self.get_item(key) is not None


class FileStorage(LocalStorage):
    """One file per key under ``root``, written atomically via tmp + rename."""

    SUFFIX = ".draft"

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / (quote(key, safe="") + self.SUFFIX)

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(self.SUFFIX + ".tmp")
        tmp_path.write_text(value, encoding="utf-8")
        tmp_path.replace(path)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def has_item(self, key: str) -> bool:
        return self._path(key).exists()


class MemoryStorage(LocalStorage):
    """In-memory store with a write counter and an optional byte quota.

    Args:
        quota_bytes: When set, writes that push the total size over the
            quota raise StorageQuotaError.
    """

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self._items: dict[str, str] = {}
        self.quota_bytes = quota_bytes
        self.writes = 0

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v) for k, v in self._items.items() if k != key)
            if used + len(value) > self.quota_bytes:
                raise StorageQuotaError(
                    f"Quota exceeded writing {key!r} ({used + len(value)} > {self.quota_bytes})"
                )
        self._items[key] = value
        self.writes += 1

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)
