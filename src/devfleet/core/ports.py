"""Port allocation for managed servers.

Every server gets a port derived from a 32-bit FNV-1a hash of
"<cwd>:<command>", mapped into the configured range. The same server in the
same directory therefore lands on the same port across invocations and
machines. When the derived port is taken, the range is scanned forward from
it and wrapped around.

Batch contexts (CI) use sequential allocation instead: the range is scanned
from its start, skipping ports already claimed in this session. Claims are
persisted to a side file in the temp dir and expire after an hour. Each
load-claim-save cycle holds a file lock on the side file so parallel CI
jobs never claim the same port.

Availability is an OS-level bind probe. Tests inject a probe callable.
"""

from __future__ import annotations

__all__ = [
    "PortAllocator",
    "PortAssignment",
    "PortProbe",
    "SequentialPortLedger",
    "fnv1a_32",
    "is_port_available",
]

import json
import logging
import socket
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from devfleet.config import GlobalConfig, PortRange
from devfleet.constants import (
    APP_NAME,
    PORT_PROBE_HOST,
    SEQUENTIAL_PORTS_FILENAME,
    SEQUENTIAL_PORTS_FRESHNESS_SECONDS,
)
from devfleet.exceptions import PortAllocationFailedError, PortOutOfRangeError
from devfleet.registry.locking import RegistryLock
from devfleet.utils.file_helpers import atomic_write_json

_logger = logging.getLogger(f"{APP_NAME}.core.ports")

PortProbe = Callable[[int], bool]

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193


def fnv1a_32(text: str) -> int:
    """Compute the 32-bit FNV-1a hash of text.

    Hashes UTF-16 code units (characters outside the BMP contribute their
    surrogate pair), so values are identical to hashing the same string in
    runtimes with UTF-16 strings.

    Args:
        text: Input string.

    Returns:
        Unsigned 32-bit hash.
    """
    h = _FNV_OFFSET_BASIS
    for ch in text:
        cp = ord(ch)
        if cp > 0xFFFF:
            cp -= 0x10000
            units: tuple[int, ...] = (0xD800 + (cp >> 10), 0xDC00 + (cp & 0x3FF))
        else:
            units = (cp,)
        for unit in units:
            h ^= unit
            h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h


def is_port_available(port: int, host: str = PORT_PROBE_HOST) -> bool:
    """Probe whether a TCP port can be bound right now.

    Binds and listens, then releases immediately. The result can be stale by
    the time the caller uses the port.

    Args:
        port: Port to probe.
        host: Interface to bind (wildcard by default).

    Returns:
        True if the bind succeeded.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.listen(1)
        return True
    except OSError:
        return False
    finally:
        sock.close()


@dataclass(frozen=True, slots=True)
class PortAssignment:
    """Result of a port assignment.

    Attributes:
        port: The port to use.
        reassigned: True when the port differs from the first candidate.
    """

    port: int
    reassigned: bool


class SequentialPortLedger:
    """Ports claimed by sequential allocation in the current session.

    Optionally backed by a JSON side file {"ports": [...], "timestamp": ms}.
    Load and save failures are logged and never fatal.
    """

    def __init__(self, path: Path | None = None, *, clock: Callable[[], float] = time.time) -> None:
        self.path = path
        self._clock = clock
        self._claimed: set[int] = set()

    @classmethod
    def for_temp_dir(cls, temp_dir: str | Path) -> "SequentialPortLedger":
        """Create a ledger persisted under the configured temp dir."""
        return cls(Path(temp_dir) / SEQUENTIAL_PORTS_FILENAME)

    @property
    def claimed(self) -> frozenset[int]:
        return frozenset(self._claimed)

    def __contains__(self, port: object) -> bool:
        return port in self._claimed

    def claim(self, port: int) -> None:
        self._claimed.add(port)

    def clear(self) -> None:
        self._claimed.clear()

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the side file's lock across a load-claim-save cycle."""
        if self.path is None:
            yield
            return
        with RegistryLock(self.path):
            yield

    def load(self) -> None:
        """Merge claims from the side file if it is fresh."""
        if self.path is None or not self.path.exists():
            return
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
            age_seconds = self._clock() - float(data["timestamp"]) / 1000.0
            ports = [int(p) for p in data["ports"]]
        except (OSError, ValueError, KeyError, TypeError) as e:
            _logger.warning(
                {
                    "event": "sequential_ports_load_failed",
                    "message": f"Failed to load sequential port ledger, starting fresh: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "details": {"path": str(self.path)},
                }
            )
            return

        if age_seconds >= SEQUENTIAL_PORTS_FRESHNESS_SECONDS:
            _logger.debug({"event": "sequential_ports_stale", "details": {"path": str(self.path)}})
            return
        self._claimed.update(ports)

    def save(self) -> None:
        """Persist current claims with a fresh timestamp."""
        if self.path is None:
            return
        data = {"ports": sorted(self._claimed), "timestamp": int(self._clock() * 1000)}
        try:
            atomic_write_json(self.path, data)
        except OSError as e:
            _logger.warning(
                {
                    "event": "sequential_ports_save_failed",
                    "message": f"Failed to save sequential port ledger: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "details": {"path": str(self.path)},
                }
            )


class PortAllocator:
    """Derives, verifies and assigns ports within a configured range.

    Args:
        port_range: Inclusive allocation range.
        probe: Availability check (defaults to a real bind probe).
        ledger: Claims for sequential allocation (in-memory if omitted).
    """

    def __init__(
        self,
        port_range: PortRange,
        *,
        probe: PortProbe | None = None,
        ledger: SequentialPortLedger | None = None,
    ) -> None:
        self.port_range = port_range
        self._probe = probe or is_port_available
        self.ledger = ledger if ledger is not None else SequentialPortLedger()

    @classmethod
    def from_config(cls, config: GlobalConfig, *, probe: PortProbe | None = None) -> "PortAllocator":
        """Build an allocator whose sequential ledger lives in config.temp_dir."""
        return cls(
            config.port_range,
            probe=probe,
            ledger=SequentialPortLedger.for_temp_dir(config.temp_dir),
        )

    def deterministic_port(self, cwd: str, command: str) -> int:
        """Map (cwd, command) onto the range. Pure and stable."""
        h = fnv1a_32(f"{cwd}:{command}")
        return self.port_range.min + h % self.port_range.size

    def is_available(self, port: int) -> bool:
        return self._probe(port)

    def validate_in_range(self, port: int) -> None:
        """Raise PortOutOfRangeError if port lies outside the range."""
        if not self.port_range.contains(port):
            raise PortOutOfRangeError(
                f"Port {port} is outside configured range {self.port_range.min}-{self.port_range.max}",
                port=port,
                port_min=self.port_range.min,
                port_max=self.port_range.max,
            )

    def find_available(self, preferred: int) -> PortAssignment:
        """Return preferred if free, else the next free port scanning forward with wrap-around.

        Raises:
            PortAllocationFailedError: If no port in the range is free.
        """
        if self.is_available(preferred):
            return PortAssignment(preferred, reassigned=False)

        lo, hi = self.port_range.min, self.port_range.max
        candidates = [*range(preferred + 1, hi + 1), *range(lo, min(preferred, hi + 1))]
        for port in candidates:
            if self.is_available(port):
                _logger.info(
                    {
                        "event": "port_reassigned",
                        "message": f"Port {preferred} unavailable, using {port}",
                        "details": {"preferred": preferred, "port": port},
                    }
                )
                return PortAssignment(port, reassigned=True)

        raise self._exhausted()

    def assign(
        self,
        cwd: str,
        command: str,
        explicit_port: int | None = None,
        sequential: bool = False,
    ) -> PortAssignment:
        """Assign a port for a server.

        Args:
            cwd: Server working directory.
            command: Command template (pre-render).
            explicit_port: Caller-requested port; must be within the range.
            sequential: Use sequential allocation (batch/CI contexts).

        Raises:
            PortOutOfRangeError: If explicit_port is outside the range.
            PortAllocationFailedError: If the range is exhausted.
        """
        if explicit_port is not None:
            self.validate_in_range(explicit_port)
            return self.find_available(explicit_port)
        if sequential:
            return self._next_sequential()
        return self.find_available(self.deterministic_port(cwd, command))

    def _next_sequential(self) -> PortAssignment:
        with self.ledger.locked():
            self.ledger.load()
            skipped = False
            for port in range(self.port_range.min, self.port_range.max + 1):
                if port in self.ledger:
                    skipped = True
                    continue
                if self.is_available(port):
                    self.ledger.claim(port)
                    self.ledger.save()
                    return PortAssignment(port, reassigned=skipped)
                skipped = True
        raise self._exhausted()

    def _exhausted(self) -> PortAllocationFailedError:
        return PortAllocationFailedError(
            f"No available ports in range {self.port_range.min}-{self.port_range.max}",
            port_min=self.port_range.min,
            port_max=self.port_range.max,
        )
