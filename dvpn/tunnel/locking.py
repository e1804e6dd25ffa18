"""接口互斥锁。Advisory lock serialising mutations of one interface name.

Two layers: a ``threading.Lock`` per interface name for callers inside this
process, and ``fcntl.flock`` on a well-known lock file for other processes
on the host. Acquisition is bounded by a timeout.
"""

from __future__ import annotations

import fcntl
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import IO, Dict, Optional

from dvpn.errors import LockTimeoutError
from dvpn.logging_utils import get_logger

LOGGER = get_logger(__name__)

_POLL_INTERVAL = 0.05

_REGISTRY_GUARD = threading.Lock()
_THREAD_LOCKS: Dict[str, threading.Lock] = {}


def _thread_lock_for(name: str) -> threading.Lock:
    with _REGISTRY_GUARD:
        lock = _THREAD_LOCKS.get(name)
        if lock is None:
            lock = threading.Lock()
            _THREAD_LOCKS[name] = lock
        return lock


def lock_path_for(name: str, lock_dir: Optional[str] = None) -> Path:
    """Return the lock file for ``name``, falling back to the temp dir."""

    directory = Path(lock_dir) if lock_dir else Path(tempfile.gettempdir())
    if not (directory.is_dir() and os.access(directory, os.W_OK)):
        directory = Path(tempfile.gettempdir())
    return directory / f"dvpn-{name}.lock"


class InterfaceLock:
    """Context manager holding exclusive rights over one interface name."""

    def __init__(self, name: str, lock_dir: Optional[str] = None, timeout: float = 60.0):
        self.name = name
        self.path = lock_path_for(name, lock_dir)
        self.timeout = timeout
        self._thread_lock = _thread_lock_for(name)
        self._handle: Optional[IO[str]] = None

    def acquire(self) -> None:
        deadline = time.monotonic() + self.timeout
        if not self._thread_lock.acquire(timeout=max(self.timeout, 0)):
            raise LockTimeoutError(f"Interface {self.name} is busy in this process")
        try:
            handle = open(self.path, "a+", encoding="utf-8")
            try:
                os.chmod(self.path, 0o600)
            except OSError:
                pass
            while True:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        handle.close()
                        raise LockTimeoutError(
                            f"Interface {self.name} is locked by another process ({self.path})"
                        )
                    time.sleep(_POLL_INTERVAL)
            self._handle = handle
        except BaseException:
            self._thread_lock.release()
            raise
        LOGGER.debug("Interface lock acquired", extra={"interface": self.name, "lock": str(self.path)})

    def release(self) -> None:
        handle, self._handle = self._handle, None
        try:
            if handle is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                handle.close()
        finally:
            self._thread_lock.release()
        LOGGER.debug("Interface lock released", extra={"interface": self.name})

    def __enter__(self) -> "InterfaceLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
