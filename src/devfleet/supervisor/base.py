"""Supervisor interface consumed by the core.

A supervisor owns OS process lifecycles. The core needs start, stop,
restart, delete and describe, and must be able to tell "no such process"
(ProcessNotFoundError, or None from describe) apart from real failures.
"""

from __future__ import annotations

__all__ = [
    "ProcessDescription",
    "ProcessStatus",
    "ProcessSupervisor",
    "teardown",
]

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from devfleet.constants import APP_NAME
from devfleet.exceptions import ProcessNotFoundError

_logger = logging.getLogger(f"{APP_NAME}.supervisor")


class ProcessStatus(str, Enum):
    """Live status as reported by the supervisor."""

    ONLINE = "online"
    STOPPED = "stopped"
    ERRORED = "errored"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw: str | None) -> "ProcessStatus":
        """Map a supervisor-native status string."""
        if raw == "online":
            return cls.ONLINE
        if raw in ("stopped", "stopping"):
            return cls.STOPPED
        if raw == "errored":
            return cls.ERRORED
        return cls.UNKNOWN


@dataclass(frozen=True, slots=True)
class ProcessDescription:
    """Snapshot of a supervised process.

    Attributes:
        name: Supervisor process name.
        status: Live status.
        pid: OS pid while running.
        uptime_seconds: Seconds since start while running.
        exit_code: Last exit code, if known.
        resource_usage: Supervisor-specific metrics (cpu, memory, ...).
    """

    name: str
    status: ProcessStatus
    pid: int | None = None
    uptime_seconds: float | None = None
    exit_code: int | None = None
    resource_usage: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "pid": self.pid,
            "uptimeSeconds": self.uptime_seconds,
            "exitCode": self.exit_code,
            "resourceUsage": self.resource_usage,
        }


@runtime_checkable
class ProcessSupervisor(Protocol):
    """Capabilities the core requires from a process supervisor.

    stop/restart/delete raise ProcessNotFoundError for unknown names and
    SupervisorError for other failures. stop(force=True) kills at once
    instead of asking the process to exit. log_paths names the (stdout,
    stderr) files a process writes to, whether or not they exist yet.
    """

    def start(
        self,
        name: str,
        executable: str,
        args: Sequence[str],
        cwd: str,
        env: Mapping[str, str],
    ) -> ProcessDescription: ...

    def stop(self, name: str, *, force: bool = False) -> ProcessDescription: ...

    def restart(self, name: str) -> ProcessDescription: ...

    def delete(self, name: str) -> None: ...

    def describe(self, name: str) -> ProcessDescription | None: ...

    def log_paths(self, name: str) -> tuple[Path, Path]: ...


def teardown(supervisor: ProcessSupervisor, name: str) -> bool:
    """Delete a supervised process, treating "not found" as success.

    Every other supervisor error propagates.

    Returns:
        True if a process was deleted, False if there was none.
    """
    try:
        supervisor.delete(name)
    except ProcessNotFoundError:
        _logger.debug({"event": "teardown_not_found", "details": {"process_name": name}})
        return False
    return True
