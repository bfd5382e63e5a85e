"""Offline detection."""

from __future__ import annotations

import socket
import threading
import time
from typing import Callable

from .constants import CONNECTIVITY_TTL
from .log import get_logger

logger = get_logger(__name__)


def is_online(host: str = "gmail.googleapis.com", port: int = 443, timeout: float = 3.0) -> bool:
    """Return True when a TCP connection to ``host`` can be opened."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as exc:
        logger.debug("Connectivity probe failed", host=host, error=str(exc))
        return False


class ConnectivityMonitor:
    """Callable online check that reuses a probe result for ``ttl`` seconds.

    The API client asks before every request; one TCP probe per window is
    enough for a whole polling cycle.
    """

    def __init__(
        self,
        host: str = "gmail.googleapis.com",
        ttl: float = CONNECTIVITY_TTL,
        probe: Callable[[str], bool] = is_online,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.host = host
        self.ttl = ttl
        self._probe = probe
        self._clock = clock
        self._lock = threading.Lock()
        self._online: bool | None = None
        self._checked_at = 0.0

    def __call__(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._online is None or now - self._checked_at >= self.ttl:
                self._online = self._probe(self.host)
                self._checked_at = now
                if not self._online:
                    logger.info("Mailbox API unreachable, treating as offline", host=self.host)
            return self._online

    def invalidate(self) -> None:
        """Force the next call to probe again."""
        with self._lock:
            self._online = None
