"""Online/offline signal shared by the sync engine and the UI."""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger("intakesync.connectivity")

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Holds the current network state and notifies subscribers on change.

    The host application calls ``set_online`` from whatever detects
    connectivity (browser events, a health probe, a failed request).
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[ConnectivityListener] = []

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Network %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener failed")

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
