"""Directory spin lock.

Guards a data directory against concurrent updates from several processes
(or threads) with an advisory ``flock`` on ``data.lock`` inside it.  Readers
take the lock shared, the synchronization merge stage takes it exclusive.
Acquisition spins with non-blocking attempts until a maximum wait elapses.

The operating system releases the lock when its holder dies, so a crashed
process never leaves the directory locked; the lock file itself may remain
and is only informational.
"""

import datetime as dt
import fcntl
import logging
import os
import threading
import time
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator

from .errors import InvalidDirectoryError, LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "data.lock"


class LockMode(str, Enum):
    SHARED = "shared"
    EXCLUSIVE = "exclusive"


def _parse_lease(text: str) -> dict[str, str]:
    lease: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            lease[key.strip()] = value.strip()
    return lease


def read_lease(directory: Path, lock_name: str = LOCK_FILE_NAME) -> dict[str, str]:
    """Return the lease last written by an exclusive holder (may be empty)."""
    try:
        return _parse_lease((Path(directory) / lock_name).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}


class DirectorySpinLock:
    """Shared/exclusive lock on a directory.

    Each instance owns at most one lock at a time.  Use one instance per
    thread; the OS treats separately opened lock files independently, so
    two instances in one process contend like two processes would.

    Example::

        lock = DirectorySpinLock(data_dir)
        with lock.exclusive(max_wait=30):
            ...  # replace files in data_dir

    Attributes:
        directory: Guarded directory.
        path: Lock file path.
        poll_interval: Seconds between non-blocking attempts.
        mode: Mode currently held, or ``None``.
    """

    def __init__(self, directory: Path, lock_name: str = LOCK_FILE_NAME, poll_interval: float = 0.5):
        directory = Path(directory)
        if not directory.is_dir():
            raise InvalidDirectoryError(
                f"Cannot lock '{directory}': not an existing directory", "INVALID_DIRECTORY"
            )
        self.directory = directory
        self.path = directory / lock_name
        self.poll_interval = poll_interval
        self.mode: LockMode | None = None
        self._fd: int | None = None
        self._guard = threading.Lock()

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _try_lock(self, mode: LockMode) -> int | None:
        """One non-blocking attempt; returns the locked fd or ``None``."""
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        op = fcntl.LOCK_SH if mode == LockMode.SHARED else fcntl.LOCK_EX
        try:
            fcntl.flock(fd, op | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return None
        # the file may have been removed as stale between open and flock
        try:
            on_disk = os.stat(self.path)
        except FileNotFoundError:
            os.close(fd)
            return None
        mine = os.fstat(fd)
        if (mine.st_dev, mine.st_ino) != (on_disk.st_dev, on_disk.st_ino):
            os.close(fd)
            return None
        return fd

    def _write_lease(self, fd: int) -> None:
        lease = (
            f"pid={os.getpid()}\n"
            f"mode={LockMode.EXCLUSIVE.value}\n"
            f"acquired={dt.datetime.now(dt.timezone.utc).isoformat()}\n"
        )
        os.ftruncate(fd, 0)
        os.pwrite(fd, lease.encode("utf-8"), 0)

    def acquire(self, mode: LockMode = LockMode.EXCLUSIVE, max_wait: float = 50.0) -> None:
        """Obtain the lock, spinning until ``max_wait`` seconds have passed.

        Args:
            mode: Shared or exclusive.
            max_wait: Maximum seconds to wait; ``0`` tries exactly once.

        Raises:
            LockTimeoutError: if the lock could not be obtained in time.
            RuntimeError: if this instance already holds the lock.
        """
        mode = LockMode(mode)
        with self._guard:
            if self._fd is not None:
                raise RuntimeError(f"Lock on '{self.directory}' is already held ({self.mode.value})")
            start = time.monotonic()
            attempts = 0
            while True:
                attempts += 1
                fd = self._try_lock(mode)
                if fd is not None:
                    break
                waited = time.monotonic() - start
                if waited >= max_wait:
                    holder = read_lease(self.directory, self.path.name).get("pid", "unknown")
                    logger.warning(
                        f"Gave up on {mode.value} lock for {self.directory} after {attempts} attempts "
                        f"(last exclusive holder pid {holder})"
                    )
                    raise LockTimeoutError.not_obtained(str(self.directory), mode.value, waited)
                time.sleep(min(self.poll_interval, max_wait - waited))

            if mode == LockMode.EXCLUSIVE:
                try:
                    self._write_lease(fd)
                except BaseException:
                    fcntl.flock(fd, fcntl.LOCK_UN)
                    os.close(fd)
                    raise
            self._fd = fd
            self.mode = mode
            logger.debug(f"Obtained {mode.value} lock on {self.directory} after {attempts} attempt(s)")

    def release(self) -> None:
        """Release the lock; a no-op when not held."""
        with self._guard:
            if self._fd is None:
                return
            fd, self._fd = self._fd, None
            try:
                if self.mode == LockMode.EXCLUSIVE:
                    os.ftruncate(fd, 0)
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
                logger.debug(f"Released {self.mode.value} lock on {self.directory}")
                self.mode = None

    @contextmanager
    def shared(self, max_wait: float = 50.0) -> Iterator["DirectorySpinLock"]:
        self.acquire(LockMode.SHARED, max_wait)
        try:
            yield self
        finally:
            self.release()

    @contextmanager
    def exclusive(self, max_wait: float = 50.0) -> Iterator["DirectorySpinLock"]:
        self.acquire(LockMode.EXCLUSIVE, max_wait)
        try:
            yield self
        finally:
            self.release()


def remove_stale_lock(directory: Path, stale_after: float, lock_name: str = LOCK_FILE_NAME) -> bool:
    """Delete a lock file older than ``stale_after`` seconds that nobody holds.

    Args:
        directory: Guarded directory.
        stale_after: Minimum age of the lock file in seconds.
        lock_name: Lock file name.

    Returns:
        ``True`` if the file was removed.
    """
    path = Path(directory) / lock_name
    try:
        age = time.time() - path.stat().st_mtime
    except FileNotFoundError:
        return False
    if age < stale_after:
        return False

    try:
        fd = os.open(path, os.O_RDWR)
    except FileNotFoundError:
        return False
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            logger.debug(f"Lock file {path} is old but still held; leaving it")
            return False
        path.unlink(missing_ok=True)
        logger.warning(f"Removed stale lock file {path} ({age:.0f}s old)")
        return True
    finally:
        os.close(fd)
