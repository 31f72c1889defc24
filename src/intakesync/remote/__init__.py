"""Remote draft stores: the source of truth for leases and versions."""

from .base import PushResult, RemoteDraftStore, RemoteStoreError
from .http import HttpRemoteStore
from .memory import InMemoryRemoteStore

__all__ = [
    "HttpRemoteStore",
    "InMemoryRemoteStore",
    "PushResult",
    "RemoteDraftStore",
    "RemoteStoreError",
]
