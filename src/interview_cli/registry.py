"""Cross-process ledger of active interview sessions.

Every interview process on the machine shares one JSON file. Each change is a
read-modify-write cycle under an exclusive lock on a sibling ``.lock`` file.
Entries whose process died or whose listener stopped answering ``/health`` are
dropped by whoever touches the ledger next, so a killed process never leaves a
permanent entry behind.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator
from urllib.parse import urlsplit, urlunsplit

import httpx
import psutil

from interview_cli.errors import RegistryLockError
from interview_cli.models import RegistryEntry
from interview_cli.paths import sessions_path

# Cross-platform file locking
if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)

LOCK_ATTEMPTS = 50
LOCK_RETRY_DELAY = 0.05
HEALTH_TIMEOUT = 0.5


def _try_lock_file(file_handle) -> bool:
    """Try to take an exclusive lock without blocking (cross-platform)."""
    try:
        if sys.platform == "win32":
            file_handle.seek(0)
            msvcrt.locking(file_handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            fcntl.flock(file_handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        return True
    except (BlockingIOError, PermissionError):
        return False
    except OSError:
        # msvcrt reports contention as a plain OSError
        if sys.platform == "win32":
            return False
        raise


def _unlock_file(file_handle) -> None:
    """Release lock on file (cross-platform)."""
    if sys.platform == "win32":
        file_handle.seek(0)
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)


def health_url(session_url: str) -> str:
    """Turn a session URL (``http://host:port/?session=...``) into its health URL."""
    parts = urlsplit(session_url)
    return urlunsplit((parts.scheme, parts.netloc, "/health", parts.query, ""))


def is_process_alive(pid: int) -> bool:
    try:
        return psutil.pid_exists(pid)
    except (ValueError, OSError):
        return False


def check_session_health(session_url: str, timeout: float = HEALTH_TIMEOUT) -> bool:
    """
    Quick liveness probe of another session's listener.

    Returns:
        True if the listener answered ``{"ok": true}``, False otherwise
    """
    try:
        response = httpx.get(health_url(session_url), timeout=timeout, trust_env=False)
        return response.status_code == 200 and response.json().get("ok") is True
    except (httpx.HTTPError, ValueError):
        return False


class SessionRegistry:
    """
    File-backed registry of sessions that are currently reachable.

    Advisory only: it tells a starting session that another one already holds
    the browser, it never prevents a session from running.

    Args:
        path: Ledger location (defaults to ``$XDG_STATE_HOME/interview/sessions.json``)
        probe: Health check used during reconciliation (defaults to ``check_session_health``)
        lock_attempts: Bounded number of attempts to take the lock
    """

    def __init__(
        self,
        path: Path | None = None,
        probe: Callable[[str], bool] | None = None,
        lock_attempts: int = LOCK_ATTEMPTS,
    ) -> None:
        self.path = path or sessions_path()
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._probe = probe or check_session_health
        self._lock_attempts = lock_attempts

    # ------------------------------------------------------------------
    # Locking and file I/O
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a+") as lock_handle:
            for _ in range(self._lock_attempts):
                if _try_lock_file(lock_handle):
                    break
                time.sleep(LOCK_RETRY_DELAY)
            else:
                raise RegistryLockError(
                    f"Could not lock session registry {self.lock_path} "
                    f"after {self._lock_attempts} attempts"
                )
            try:
                yield
            finally:
                _unlock_file(lock_handle)

    def _read(self) -> dict[str, RegistryEntry]:
        """Read the ledger; a missing, empty or corrupt file reads as empty."""
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning("Ignoring unreadable session registry %s: %s", self.path, e)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed session registry %s", self.path)
            return {}

        entries: dict[str, RegistryEntry] = {}
        for session_id, data in raw.items():
            try:
                entries[session_id] = RegistryEntry.from_dict(session_id, data)
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.debug("Dropping malformed registry entry %s", session_id)
        return entries

    def _write(self, entries: dict[str, RegistryEntry]) -> None:
        """Atomic write: temp file then rename."""
        data = {session_id: entry.to_dict() for session_id, entry in entries.items()}
        temp_path = self.path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(self.path)

        # Entries carry capability URLs: owner read/write only
        try:
            self.path.chmod(0o600)
        except PermissionError:
            logger.warning("Could not set permissions on %s (continuing)", self.path)

    def _is_live(self, entry: RegistryEntry, probe: bool) -> bool:
        if not is_process_alive(entry.pid):
            return False
        return self._probe(entry.url) if probe else True

    def _stale_ids(self) -> set[str]:
        """Probe a lock-free read of the ledger; writes are atomic renames, so it is never torn."""
        return {
            session_id
            for session_id, entry in self._read().items()
            if not self._is_live(entry, probe=True)
        }

    def _reconcile(
        self, entries: dict[str, RegistryEntry], stale: set[str] = frozenset()
    ) -> dict[str, RegistryEntry]:
        """Drop entries found stale by an earlier probe and entries whose process is gone."""
        live = {}
        for session_id, entry in entries.items():
            if session_id not in stale and self._is_live(entry, probe=False):
                live[session_id] = entry
            else:
                logger.debug("Removing stale registry entry %s (pid %s)", session_id, entry.pid)
        return live

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register(self, entry: RegistryEntry) -> None:
        """Add ``entry`` after garbage-collecting stale entries."""
        # Health probes can take a while; keep them outside the lock
        stale = self._stale_ids()
        with self._locked():
            entries = self._reconcile(self._read(), stale)
            entries[entry.id] = entry
            self._write(entries)
        logger.debug("Registered session %s at %s", entry.id, self.path)

    def unregister(self, session_id: str) -> None:
        """Remove this process's own entry (and entries of dead processes)."""
        with self._locked():
            entries = self._read()
            entries.pop(session_id, None)
            self._write(self._reconcile(entries))
        logger.debug("Unregistered session %s", session_id)

    def active_sessions(self) -> list[RegistryEntry]:
        """Return live sessions in start order, writing back if stale entries were found."""
        stale = self._stale_ids()
        with self._locked():
            entries = self._read()
            live = self._reconcile(entries, stale)
            if len(live) != len(entries):
                self._write(live)
        return sorted(live.values(), key=lambda e: e.started_at)

    def other_sessions(self, session_id: str) -> list[RegistryEntry]:
        """Live sessions other than ``session_id``."""
        return [entry for entry in self.active_sessions() if entry.id != session_id]


def get_active_sessions() -> list[RegistryEntry]:
    """Live sessions from the default registry."""
    return SessionRegistry().active_sessions()
