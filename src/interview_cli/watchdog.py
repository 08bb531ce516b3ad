"""Heartbeat watchdog: declares a browser tab abandoned after a heartbeat gap."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

HEARTBEAT_GRACE_SECONDS = 60.0


class HeartbeatWatchdog:
    """
    Single re-armable timer per session.

    The watchdog stays idle until the first ``beat()``; a slow browser launch
    is not abandonment. After that, every ``beat()`` restarts the grace window
    and ``on_expire`` runs once if the window elapses without one.
    """

    def __init__(
        self,
        on_expire: Callable[[], None],
        grace_seconds: float = HEARTBEAT_GRACE_SECONDS,
    ) -> None:
        self._on_expire = on_expire
        self.grace_seconds = grace_seconds
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._stopped = False
        self._fired = False

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def fired(self) -> bool:
        return self._fired

    def beat(self) -> None:
        """Record a heartbeat and restart the grace window."""
        with self._lock:
            if self._stopped:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.grace_seconds, self._expire)
            self._timer.daemon = True
            self._timer.start()

    def stop(self) -> None:
        """Disarm permanently."""
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _expire(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._fired = True
            self._timer = None
        logger.info("No heartbeat for %.0fs, treating browser tab as abandoned", self.grace_seconds)
        self._on_expire()
