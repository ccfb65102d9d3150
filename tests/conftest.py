"""Shared fixtures for devfleet tests.

Every test runs with DEVFLEET_HOME pointed at a temporary directory and the
CI/config environment variables cleared, so nothing touches the real
config, registry or supervisor state.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Mapping, Sequence

import pytest

from devfleet.config import GlobalConfig, PortRange
from devfleet.constants import APP_NAME, CI_ENVIRONMENTS
from devfleet.exceptions import ProcessNotFoundError
from devfleet.registry.store import ServerRegistry
from devfleet.supervisor.base import ProcessDescription, ProcessStatus
from devfleet.telemetry.system import system_logger


class FakeSupervisor:
    """In-memory ProcessSupervisor recording every call."""

    def __init__(self, log_dir: Path | None = None) -> None:
        self.log_dir = log_dir or Path("logs")
        self.processes: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self._next_pid = 1000

    def start(
        self,
        name: str,
        executable: str,
        args: Sequence[str],
        cwd: str,
        env: Mapping[str, str],
    ) -> ProcessDescription:
        self.calls.append(("start", name))
        self._next_pid += 1
        self.processes[name] = {
            "executable": executable,
            "args": list(args),
            "cwd": cwd,
            "env": dict(env),
            "status": ProcessStatus.ONLINE,
            "pid": self._next_pid,
        }
        return self.describe(name)  # type: ignore[return-value]

    def stop(self, name: str, *, force: bool = False) -> ProcessDescription:
        self.calls.append(("kill" if force else "stop", name))
        if name not in self.processes:
            raise ProcessNotFoundError(f"Process {name} not found", process_name=name)
        self.processes[name]["status"] = ProcessStatus.STOPPED
        return self.describe(name)  # type: ignore[return-value]

    def restart(self, name: str) -> ProcessDescription:
        self.calls.append(("restart", name))
        if name not in self.processes:
            raise ProcessNotFoundError(f"Process {name} not found", process_name=name)
        self._next_pid += 1
        self.processes[name]["status"] = ProcessStatus.ONLINE
        self.processes[name]["pid"] = self._next_pid
        return self.describe(name)  # type: ignore[return-value]

    def delete(self, name: str) -> None:
        self.calls.append(("delete", name))
        if name not in self.processes:
            raise ProcessNotFoundError(f"Process {name} not found", process_name=name)
        del self.processes[name]

    def describe(self, name: str) -> ProcessDescription | None:
        proc = self.processes.get(name)
        if proc is None:
            return None
        online = proc["status"] is ProcessStatus.ONLINE
        return ProcessDescription(
            name,
            proc["status"],
            pid=proc["pid"] if online else None,
            uptime_seconds=1.0 if online else None,
        )

    def log_paths(self, name: str) -> tuple[Path, Path]:
        return self.log_dir / f"{name}-out.log", self.log_dir / f"{name}-err.log"

    def set_status(self, name: str, status: ProcessStatus) -> None:
        self.processes[name]["status"] = status

    def call_names(self, kind: str) -> list[str]:
        return [name for call, name in self.calls if call == kind]


@pytest.fixture(autouse=True)
def app_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated DEVFLEET_HOME and temp dir, with CI and config env vars cleared."""
    home = tmp_path / "devfleet-home"
    monkeypatch.setenv("DEVFLEET_HOME", str(home))
    monkeypatch.delenv("CI", raising=False)
    for _, var in CI_ENVIRONMENTS:
        monkeypatch.delenv(var, raising=False)
    for suffix in ("HOSTNAME", "PROTOCOL", "PORT_MIN", "PORT_MAX", "HTTPS_CERT", "HTTPS_KEY"):
        monkeypatch.delenv(f"DEVFLEET_{suffix}", raising=False)
    # Keep the sequential port ledger out of the real temp dir
    monkeypatch.setenv("DEVFLEET_TEMP_DIR", str(tmp_path / "tmp"))
    return home


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A working directory for servers."""
    path = tmp_path / "project"
    path.mkdir()
    return path.resolve()


@pytest.fixture
def config(tmp_path: Path) -> GlobalConfig:
    """Config with a small port range and a private temp dir."""
    return GlobalConfig(
        hostname="localhost",
        port_range=PortRange(min=5000, max=5099),
        temp_dir=str(tmp_path / "tmp"),
    )


@pytest.fixture
def registry(tmp_path: Path) -> ServerRegistry:
    return ServerRegistry(tmp_path / "registry.json")


@pytest.fixture
def supervisor(tmp_path: Path) -> FakeSupervisor:
    return FakeSupervisor(tmp_path / "process-logs")


@pytest.fixture
def all_free() -> Callable[[int], bool]:
    """Port probe reporting every port available."""
    return lambda port: True


@pytest.fixture(autouse=True)
def reset_system_logger():
    """Drop logger handlers so each test binds fresh streams and log paths."""
    yield
    logger = logging.getLogger(APP_NAME)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    system_logger._system_logger = None
    system_logger._file_handler_configured = False


@pytest.fixture(autouse=True)
def no_real_port_probes(monkeypatch: pytest.MonkeyPatch) -> None:
    """Default allocator probe never binds real sockets in unit tests."""
    monkeypatch.setattr("devfleet.core.ports.is_port_available", lambda port, host="0.0.0.0": True)
