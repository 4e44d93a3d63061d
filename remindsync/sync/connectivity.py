"""Connectivity gate.

Answers "may we talk to the remote store right now?" by asking the platform's
network-status collaborator on every call. Results are never cached.
"""

import logging
import threading
from typing import Callable, List, Optional

import httpx

from remindsync.protocols import NetworkStatus

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[bool], None]


class ConnectivityGate:
    """Point-in-time reachability plus transition notifications."""

    def __init__(self, network: NetworkStatus):
        self.network = network
        self._callbacks: List[ChangeCallback] = []
        self._lock = threading.Lock()
        self._last_state: Optional[bool] = None

    def is_connected(self) -> bool:
        """Query the collaborator. A probe that raises counts as offline."""
        try:
            reachable = bool(self.network.is_reachable())
        except Exception as e:
            logger.debug(f"Connectivity check failed: {e}", exc_info=True)
            reachable = False
        return reachable

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a transition callback. Returns an unsubscribe function."""
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def notify(self, reachable: bool) -> None:
        """Platform hook: report the current state.

        Callbacks fire only on a transition. The first report after startup
        counts as a transition.
        """
        with self._lock:
            if self._last_state == reachable:
                return
            self._last_state = reachable
            callbacks = list(self._callbacks)

        logger.info(f"Connectivity changed: {'online' if reachable else 'offline'}")
        for callback in callbacks:
            try:
                callback(reachable)
            except Exception as e:
                logger.error(f"Connectivity callback failed: {e}", exc_info=True)


class HttpHealthProbe:
    """Network-status collaborator that GETs a health endpoint."""

    def __init__(self, health_url: str, timeout: float = 5.0):
        self.health_url = health_url
        self.timeout = timeout

    def is_reachable(self) -> bool:
        try:
            response = httpx.get(self.health_url, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed for {self.health_url}: {e}")
            return False
        if response.status_code >= 500:
            logger.debug(f"Health check returned status {response.status_code}")
            return False
        return True


class StaticNetworkStatus:
    """Network-status collaborator with a fixed answer (the CLI's ``--offline``)."""

    def __init__(self, reachable: bool = True):
        self.reachable = reachable

    def is_reachable(self) -> bool:
        return self.reachable
