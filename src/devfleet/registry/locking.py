"""Cross-process advisory lock for the registry file.

The lock is an exclusive fcntl.flock on the sibling file "<registry>.lock".
The file itself is created once and never removed; only the kernel lock on
it matters. A holder that crashes loses the lock when its descriptor is
closed, so there are no stale locks to break.

Acquisition is non-blocking with exponential backoff up to a timeout, so a
stuck holder produces RegistryLockError instead of a hung CLI.

Usage:
    with RegistryLock(registry_path):
        ...  # read, mutate, atomic write
"""

from __future__ import annotations

__all__ = ["RegistryLock"]

import fcntl
import json
import logging
import os
import time
from pathlib import Path
from types import TracebackType
from typing import Callable

from devfleet.constants import (
    APP_NAME,
    REGISTRY_LOCK_BACKOFF_MULTIPLIER,
    REGISTRY_LOCK_INITIAL_DELAY_SECONDS,
    REGISTRY_LOCK_MAX_DELAY_SECONDS,
    REGISTRY_LOCK_TIMEOUT_SECONDS,
)
from devfleet.exceptions import RegistryLockError

_logger = logging.getLogger(f"{APP_NAME}.registry.locking")


class RegistryLock:
    """Exclusive lock guarding one registry read-modify-write cycle.

    Not reentrant. Each logical mutation takes and releases the lock once.
    Two instances conflict even inside one process, since flock locks belong
    to the open file description.

    Args:
        target: The file being protected (lock lives at "<target>.lock").
        timeout: Seconds to keep retrying before RegistryLockError.
        clock: Monotonic time source, injectable for tests.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        target: Path,
        *,
        timeout: float = REGISTRY_LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.path = target.with_name(target.name + ".lock")
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """Acquire the lock, waiting up to the timeout.

        Raises:
            RegistryLockError: If the lock could not be acquired before timeout.
        """
        if self._fd is not None:
            raise RegistryLockError(f"Registry lock {self.path} is already held", lock_path=str(self.path))

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o600)
        deadline = self._clock() + self.timeout
        delay = REGISTRY_LOCK_INITIAL_DELAY_SECONDS
        attempts = 0

        try:
            while True:
                attempts += 1
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    pass
                if self._clock() >= deadline:
                    raise RegistryLockError(
                        f"Could not acquire registry lock {self.path} within {self.timeout:.0f}s",
                        lock_path=str(self.path),
                        holder=self._read_holder(),
                    )
                self._sleep(delay)
                delay = min(delay * REGISTRY_LOCK_BACKOFF_MULTIPLIER, REGISTRY_LOCK_MAX_DELAY_SECONDS)
        except BaseException:
            os.close(fd)
            raise

        self._fd = fd
        self._write_holder()
        if attempts > 1:
            _logger.debug(
                {
                    "event": "registry_lock_contended",
                    "message": f"Acquired registry lock after {attempts} attempts",
                    "details": {"lock_path": str(self.path), "attempts": attempts},
                }
            )

    def release(self) -> None:
        """Release the lock if held. Safe to call twice."""
        fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError:
            pass  # Closing the descriptor drops it anyway
        os.close(fd)

    def __enter__(self) -> "RegistryLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    # -------------------------------------------------------------------------
    # Holder info (diagnostics only, never consulted for locking)
    # -------------------------------------------------------------------------

    def _write_holder(self) -> None:
        assert self._fd is not None
        data = json.dumps({"pid": os.getpid(), "acquired_at": time.time()}).encode()
        os.ftruncate(self._fd, 0)
        os.pwrite(self._fd, data, 0)

    def _read_holder(self) -> dict | None:
        try:
            with self.path.open(encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError):
            return None
