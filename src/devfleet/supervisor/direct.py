"""Bundled process supervisor that spawns detached processes directly.

Each process runs in its own session (process group) so it outlives the
devfleet invocation and can be signalled as a group. State is kept in one
JSON file per process under the state directory:

    <state_dir>/<name>.json
    <state_dir>/logs/<name>-out.log
    <state_dir>/logs/<name>-err.log

Status is derived on every describe():
    - explicitly stopped            -> stopped
    - recorded pid still alive      -> online
    - pid gone without a stop       -> errored
"""

from __future__ import annotations

__all__ = ["DirectSupervisor", "get_default_state_dir"]

import json
import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Callable, Literal, Mapping, Sequence

from platformdirs import user_state_dir
from pydantic import BaseModel, Field, ValidationError

from devfleet.constants import (
    APP_NAME,
    HOME_ENV_VAR,
    PROCESS_POLL_INTERVAL_SECONDS,
    PROCESS_STOP_GRACE_SECONDS,
)
from devfleet.exceptions import ProcessNotFoundError, SupervisorError
from devfleet.supervisor.base import ProcessDescription, ProcessStatus
from devfleet.utils.file_helpers import atomic_write_json

_logger = logging.getLogger(f"{APP_NAME}.supervisor.direct")


def get_default_state_dir() -> Path:
    """Directory for process state files.

    <DEVFLEET_HOME>/processes when DEVFLEET_HOME is set, otherwise the
    platform state dir (e.g. ~/.local/state/devfleet/processes).
    """
    home = os.environ.get(HOME_ENV_VAR)
    if home:
        return Path(home).expanduser() / "processes"
    return Path(user_state_dir(APP_NAME)) / "processes"


class _ProcessRecord(BaseModel):
    """Persisted state for one supervised process."""

    name: str
    pid: int
    executable: str
    args: list[str] = Field(default_factory=list)
    cwd: str
    env: dict[str, str] = Field(default_factory=dict)
    started_at: float
    state: Literal["running", "stopped"] = "running"
    exit_code: int | None = None

    model_config = {"extra": "ignore"}


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # Exists but owned by someone else
    return True


class DirectSupervisor:
    """ProcessSupervisor backed by detached subprocesses and state files.

    Args:
        state_dir: Where state and log files live.
        grace_seconds: Time between SIGTERM and SIGKILL on stop.
        clock: Wall-clock source, injectable for tests.
    """

    def __init__(
        self,
        state_dir: Path | None = None,
        *,
        grace_seconds: float = PROCESS_STOP_GRACE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state_dir = state_dir or get_default_state_dir()
        self.grace_seconds = grace_seconds
        self._clock = clock
        # Children spawned by this invocation, polled so exited ones are reaped.
        self._children: dict[int, subprocess.Popen[bytes]] = {}

    # =========================================================================
    # Paths and state
    # =========================================================================

    def _state_path(self, name: str) -> Path:
        return self.state_dir / f"{name}.json"

    def log_paths(self, name: str) -> tuple[Path, Path]:
        """(stdout, stderr) log files for a process."""
        log_dir = self.state_dir / "logs"
        return log_dir / f"{name}-out.log", log_dir / f"{name}-err.log"

    def _load(self, name: str) -> _ProcessRecord | None:
        path = self._state_path(name)
        try:
            with path.open(encoding="utf-8") as f:
                return _ProcessRecord.model_validate(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            _logger.warning(
                {
                    "event": "process_state_invalid",
                    "message": f"Ignoring unreadable process state for {name}: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "details": {"process_name": name, "path": str(path)},
                }
            )
            return None

    def _save(self, record: _ProcessRecord) -> None:
        atomic_write_json(self._state_path(record.name), record.model_dump(), secure=True)

    def _require(self, name: str) -> _ProcessRecord:
        record = self._load(name)
        if record is None:
            raise ProcessNotFoundError(f"Process {name} not found", process_name=name)
        return record

    def _is_running(self, record: _ProcessRecord) -> bool:
        child = self._children.get(record.pid)
        if child is not None:
            return child.poll() is None
        return _pid_alive(record.pid)

    def _describe_record(self, record: _ProcessRecord) -> ProcessDescription:
        if record.state == "stopped":
            return ProcessDescription(record.name, ProcessStatus.STOPPED, exit_code=record.exit_code)
        if self._is_running(record):
            return ProcessDescription(
                record.name,
                ProcessStatus.ONLINE,
                pid=record.pid,
                uptime_seconds=max(0.0, self._clock() - record.started_at),
            )
        child = self._children.get(record.pid)
        exit_code = child.returncode if child is not None else record.exit_code
        return ProcessDescription(record.name, ProcessStatus.ERRORED, exit_code=exit_code)

    # =========================================================================
    # Process control
    # =========================================================================

    def _spawn(
        self,
        name: str,
        executable: str,
        args: Sequence[str],
        cwd: str,
        env: Mapping[str, str],
    ) -> _ProcessRecord:
        stdout_path, stderr_path = self.log_paths(name)
        stdout_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with stdout_path.open("ab") as out, stderr_path.open("ab") as err:
                child = subprocess.Popen(
                    [executable, *args],
                    cwd=cwd,
                    env={**os.environ, **env},
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=err,
                    start_new_session=True,
                )
        except OSError as e:
            raise SupervisorError(
                f"Failed to start {name}: {e}",
                process_name=name,
                executable=executable,
                cwd=cwd,
            ) from e

        self._children[child.pid] = child
        record = _ProcessRecord(
            name=name,
            pid=child.pid,
            executable=executable,
            args=list(args),
            cwd=cwd,
            env=dict(env),
            started_at=self._clock(),
        )
        self._save(record)
        _logger.info(
            {
                "event": "process_started",
                "message": f"Started {name} (pid {child.pid})",
                "details": {"process_name": name, "pid": child.pid, "cwd": cwd},
            }
        )
        return record

    def _terminate(self, record: _ProcessRecord, *, force: bool = False) -> int | None:
        """SIGTERM the process group, SIGKILL after the grace period (or at once with force)."""
        if not self._is_running(record):
            return None

        try:
            os.killpg(record.pid, signal.SIGKILL if force else signal.SIGTERM)
        except ProcessLookupError:
            return None
        except PermissionError as e:
            raise SupervisorError(
                f"Not permitted to stop {record.name} (pid {record.pid})",
                process_name=record.name,
                pid=record.pid,
            ) from e

        if not force:
            self._await_exit_or_kill(record)

        child = self._children.pop(record.pid, None)
        if child is not None:
            return child.wait()
        return None

    def _await_exit_or_kill(self, record: _ProcessRecord) -> None:
        deadline = time.monotonic() + self.grace_seconds
        while time.monotonic() < deadline:
            if not self._is_running(record):
                return
            time.sleep(PROCESS_POLL_INTERVAL_SECONDS)

        _logger.warning(
            {
                "event": "process_kill_forced",
                "message": f"{record.name} did not exit gracefully, sending SIGKILL",
                "details": {"process_name": record.name, "pid": record.pid},
            }
        )
        try:
            os.killpg(record.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    # =========================================================================
    # ProcessSupervisor API
    # =========================================================================

    def start(
        self,
        name: str,
        executable: str,
        args: Sequence[str],
        cwd: str,
        env: Mapping[str, str],
    ) -> ProcessDescription:
        """Spawn a new process under name.

        Raises:
            SupervisorError: If a live process already uses name, or spawning fails.
        """
        existing = self._load(name)
        if existing is not None and existing.state == "running" and self._is_running(existing):
            raise SupervisorError(
                f"Process {name} is already running (pid {existing.pid})",
                process_name=name,
                pid=existing.pid,
            )
        return self._describe_record(self._spawn(name, executable, args, cwd, env))

    def stop(self, name: str, *, force: bool = False) -> ProcessDescription:
        record = self._require(name)
        exit_code = self._terminate(record, force=force)
        stopped = record.model_copy(update={"state": "stopped", "exit_code": exit_code})
        self._save(stopped)
        return self._describe_record(stopped)

    def restart(self, name: str) -> ProcessDescription:
        record = self._require(name)
        self._terminate(record)
        fresh = self._spawn(record.name, record.executable, record.args, record.cwd, record.env)
        return self._describe_record(fresh)

    def delete(self, name: str) -> None:
        record = self._require(name)
        self._terminate(record)
        self._state_path(name).unlink(missing_ok=True)

    def describe(self, name: str) -> ProcessDescription | None:
        record = self._load(name)
        return self._describe_record(record) if record is not None else None

    def list(self) -> list[ProcessDescription]:
        """Descriptions for every process with a state file."""
        if not self.state_dir.is_dir():
            return []
        descriptions = []
        for path in sorted(self.state_dir.glob("*.json")):
            record = self._load(path.stem)
            if record is not None:
                descriptions.append(self._describe_record(record))
        return descriptions
