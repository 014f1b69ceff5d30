from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol

from compilegate.core.contract import DEFAULT_LOCK_TIMEOUT_SECONDS, LOCK_POLL_SECONDS

try:
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None

logger = logging.getLogger(__name__)


class LockAcquisitionError(OSError):
    """Raised when an exclusive lock on a file could not be taken in time."""


class FileLocker(Protocol):
    def lock(self, path: Path, *, create: bool = True): ...


class FlockLocker:
    """
    Exclusive advisory locks via flock(2), polled until a deadline.

    lock() is a context manager; the lock is released and the handle closed
    on every exit path.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        poll_seconds: float = LOCK_POLL_SECONDS,
    ):
        self.timeout_seconds = max(float(timeout_seconds), 0.0)
        self.poll_seconds = poll_seconds

    @contextmanager
    def lock(self, path: Path, *, create: bool = True) -> Iterator[Path]:
        if fcntl is None:  # pragma: no cover
            raise LockAcquisitionError(f"Advisory file locks are not supported here: {path}")

        path = Path(path)
        try:
            # Existing files are locked through a read-only handle.
            handle = path.open("a+b" if create else "rb")
        except OSError as e:
            raise LockAcquisitionError(f"Cannot open {path} for locking: {e}") from e

        try:
            deadline = time.monotonic() + self.timeout_seconds
            while True:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise LockAcquisitionError(
                            f"Timed out after {self.timeout_seconds}s waiting for lock on {path}"
                        ) from None
                    time.sleep(self.poll_seconds)

            logger.debug("Locked %s", path)
            try:
                yield path
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                logger.debug("Unlocked %s", path)
        finally:
            handle.close()
