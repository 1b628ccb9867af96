"""Advisory locks with bounded wait.

``FileLock`` creates a lockfile with O_EXCL semantics and writes the owning
pid into it, so a lock left behind by a dead process is detected and
reclaimed. It coordinates processes on one filesystem and is not a
distributed lock.
"""

import asyncio
import errno
import logging
import os
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol


logger = logging.getLogger(__name__)


class LockUnavailableError(Exception):
    """The lock primitive itself could not be used (as opposed to being held)."""


class AdvisoryLock(Protocol):
    """Lock interface consumed by ImportCheckpoint."""

    async def acquire(self, timeout: float) -> bool:
        """Wait up to timeout seconds. Returns False if still held by someone else."""
        ...

    def release(self) -> None:
        ...

    @property
    def held(self) -> bool:
        ...


class MemoryLock:
    """Lock shared by everything in one process holding the same instance."""

    def __init__(self, poll_interval: float = 0.05):
        self.poll_interval = poll_interval
        self._locked = False
        self._held = False

    async def acquire(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while self._locked:
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)
        self._locked = True
        self._held = True
        return True

    def release(self) -> None:
        if self._held:
            self._locked = False
            self._held = False

    @property
    def held(self) -> bool:
        return self._held


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError as exc:
        # EPERM means the process exists but belongs to someone else
        return getattr(exc, "errno", None) != errno.ESRCH
    return True


class FileLock:
    """Cross-process lock based on an O_EXCL lockfile."""

    def __init__(
        self,
        path: Path,
        poll_interval: float = 0.2,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.path = Path(path)
        self.poll_interval = poll_interval
        self._sleep = sleeper
        self._held = False

    def _try_create(self) -> bool:
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        except OSError as exc:
            raise LockUnavailableError(f"Cannot create lock file {self.path}: {exc}") from exc
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        return True

    def _remove_if_stale(self) -> bool:
        """Remove the lockfile when its owner is gone. Returns True if removed."""
        try:
            pid = int(self.path.read_text(encoding="utf-8").strip())
        except FileNotFoundError:
            return True
        except (OSError, ValueError) as exc:
            logger.debug("Lock file %s has invalid contents, treating as stale: %s", self.path, exc)
            pid = None

        if pid is not None and _pid_alive(pid):
            return False

        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.debug("Failed to remove stale lock file %s: %s", self.path, exc)
            return False
        logger.debug("Removed stale lock file %s (pid %s)", self.path, pid)
        return True

    async def acquire(self, timeout: float) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LockUnavailableError(f"Cannot create lock directory {self.path.parent}: {exc}") from exc

        start = time.monotonic()
        while True:
            if self._try_create():
                self._held = True
                logger.debug("Acquired lock %s by pid %s", self.path, os.getpid())
                return True
            if self._remove_if_stale():
                continue
            if time.monotonic() - start >= timeout:
                return False
            await self._sleep(self.poll_interval)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
            logger.debug("Released lock %s by pid %s", self.path, os.getpid())
        except FileNotFoundError:
            logger.debug("Lock file %s already removed during cleanup", self.path)

    @property
    def held(self) -> bool:
        return self._held


def lock_for_state_file(state_path: Path) -> FileLock:
    """Lock guarding the import record stored in state_path."""
    state_path = Path(state_path)
    return FileLock(state_path.with_name(state_path.name + ".lock"))
