"""Named fleet actions shared by the CLI and the MCP server.

Fleet wires the registry, the supervisor, the live configuration and the
reconciler together for a single invocation. Every action returns plain
result records; formatting is left to the caller.

Interactivity is injected: prompt_value fills missing template variables,
confirm_refresh answers the "prompt" refresh policy and confirm_remove
guards destructive removal. Without them (CI, MCP) the corresponding
situations raise instead of blocking.

Example usage:
    fleet = Fleet.open(Path.cwd())
    result = fleet.start(StartRequest(command="npm run dev -- --port {{port}}", cwd=str(Path.cwd())))
    print(result.entry.url)
"""

from __future__ import annotations

__all__ = [
    "Fleet",
    "LogsResult",
    "ServerActionResult",
    "ServerInfo",
]

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable

from devfleet.config import (
    GlobalConfig,
    get_registry_path,
    get_system_log_path,
    load_global_config,
    reset_global_config,
    set_config_value,
    set_variable,
)
from devfleet.constants import APP_NAME, DEFAULT_LOG_LINES
from devfleet.core.drift import NO_DRIFT, DriftResult, detect_drift, find_servers_using_config_key
from devfleet.core.logs import read_log, truncate_log
from devfleet.core.ports import PortAllocator, PortProbe
from devfleet.core.reconciler import ConfirmRefresh, DriftReconciler, RefreshOutcome, StartRequest, StartResult
from devfleet.core.templates import (
    MissingVariable,
    build_template_variables,
    find_missing_variables,
    format_missing_variables_error,
)
from devfleet.exceptions import (
    ConfigValidationError,
    DevfleetError,
    InteractiveNotAvailableError,
    ProcessNotFoundError,
    ServerNotFoundError,
)
from devfleet.registry.models import ServerEntry, ServerFilter
from devfleet.registry.store import ServerRegistry
from devfleet.supervisor.base import ProcessDescription, ProcessStatus, ProcessSupervisor, teardown
from devfleet.supervisor.direct import DirectSupervisor
from devfleet.telemetry.system import configure_system_logger_file, get_system_logger
from devfleet.utils.ci import detect_ci

_logger = logging.getLogger(f"{APP_NAME}.fleet")

PromptValue = Callable[[MissingVariable], str]
ConfirmRemove = Callable[[list[ServerEntry]], bool]
FormatMissing = Callable[[list[MissingVariable]], str]


# =============================================================================
# Result records
# =============================================================================


@dataclass(frozen=True, slots=True)
class ServerActionResult:
    """Outcome of stop/restart/remove for one server."""

    name: str
    success: bool
    status: ProcessStatus | None = None
    message: str | None = None
    config_refreshed: bool = False
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "success": self.success}
        if self.status is not None:
            data["status"] = self.status.value
        if self.message is not None:
            data["message"] = self.message
        if self.config_refreshed:
            data["configRefreshed"] = True
        if self.cancelled:
            data["cancelled"] = True
        return data


@dataclass(frozen=True, slots=True)
class ServerInfo:
    """A registry entry joined with its live process state and drift."""

    entry: ServerEntry
    process: ProcessDescription | None
    drift: DriftResult = NO_DRIFT

    @property
    def status(self) -> ProcessStatus:
        return self.process.status if self.process is not None else ProcessStatus.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            **self.entry.to_dict(),
            "url": self.entry.url,
            "status": self.status.value,
            "hasDrift": self.drift.has_drift,
        }
        if self.process is not None:
            data["pid"] = self.process.pid
            data["uptimeSeconds"] = self.process.uptime_seconds
            data["exitCode"] = self.process.exit_code
        if self.drift.has_drift:
            data["driftDetails"] = [d.to_dict() for d in self.drift.drifted_values]
        return data


@dataclass(frozen=True, slots=True)
class LogsResult:
    """Tail of one server's output or error log."""

    name: str
    status: ProcessStatus
    log_type: str
    log_path: Path
    lines: tuple[str, ...] = ()
    exists: bool = True

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "logType": self.log_type,
            "logPath": str(self.log_path),
            "logs": self.text,
            "lines": list(self.lines),
            "lineCount": len(self.lines),
        }


# =============================================================================
# Fleet
# =============================================================================


class Fleet:
    """Entry point for every named action.

    Args:
        registry: Server registry.
        supervisor: Process supervisor.
        config: Merged configuration for this invocation.
        cwd: Invocation directory (scope for name lookups).
        ci: Non-interactive batch context (sequential ports, no prompts).
        prompt_value: Asks for a missing variable's value.
        confirm_refresh: Answers the "prompt" refresh policy.
        confirm_remove: Confirms removal of the listed servers.
        format_missing: Renders the missing-variables error message.
        probe: Port availability probe (real bind probe when omitted).
    """

    def __init__(
        self,
        registry: ServerRegistry,
        supervisor: ProcessSupervisor,
        config: GlobalConfig,
        *,
        cwd: str,
        ci: bool = False,
        prompt_value: PromptValue | None = None,
        confirm_refresh: ConfirmRefresh | None = None,
        confirm_remove: ConfirmRemove | None = None,
        format_missing: FormatMissing = format_missing_variables_error,
        probe: PortProbe | None = None,
    ) -> None:
        self.registry = registry
        self.supervisor = supervisor
        self.config = config
        self.cwd = cwd
        self.ci = ci
        self.prompt_value = prompt_value
        self.confirm_refresh = confirm_refresh
        self.confirm_remove = confirm_remove
        self.format_missing = format_missing
        self._probe = probe

    @classmethod
    def open(
        cls,
        cwd: Path | None = None,
        *,
        ci: bool = False,
        no_ci: bool = False,
        supervisor: ProcessSupervisor | None = None,
        **kwargs: Any,
    ) -> "Fleet":
        """Load config and registry for an invocation rooted at cwd.

        Also attaches the system log file handler.
        """
        get_system_logger()
        configure_system_logger_file(get_system_log_path())

        root = (cwd or Path.cwd()).resolve()
        context = detect_ci(ci=ci, no_ci=no_ci)
        if context.is_ci:
            _logger.debug({"event": "ci_detected", "details": {"ci_name": context.name}})

        return cls(
            ServerRegistry(get_registry_path()),
            supervisor or DirectSupervisor(),
            load_global_config(root),
            cwd=str(root),
            ci=context.is_ci,
            **kwargs,
        )

    @property
    def interactive(self) -> bool:
        return not self.ci

    def reconciler(self) -> DriftReconciler:
        """A reconciler bound to the current configuration."""
        return DriftReconciler(
            self.registry,
            self.supervisor,
            self.config,
            allocator=PortAllocator.from_config(self.config, probe=self._probe),
            confirm_refresh=self.confirm_refresh if self.interactive else None,
        )

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def find(self, name: str) -> ServerEntry:
        """Resolve a server name: this cwd first, then a unique global match.

        Raises:
            ServerNotFoundError: If nothing (or more than one server) matches.
        """
        entry = self.registry.find_by_identity(self.cwd, name)
        if entry is not None:
            return entry

        matches = self.registry.find_by_name(name)
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise ServerNotFoundError(f'Server "{name}" not found', server_name=name, cwd=self.cwd)
        raise ServerNotFoundError(
            f'Server name "{name}" is ambiguous ({len(matches)} directories); run from the server\'s directory',
            server_name=name,
            cwds=[m.cwd for m in matches],
        )

    def select(self, name: str | None = None, *, tag: str | None = None, all_: bool = False) -> list[ServerEntry]:
        """Servers targeted by a name, a tag or --all.

        Raises:
            ValueError: If no selector is given.
            ServerNotFoundError: If name does not resolve.
        """
        if all_:
            return self.registry.list()
        if tag is not None:
            return self.registry.list(ServerFilter(tag=tag))
        if name is not None:
            return [self.find(name)]
        raise ValueError("Either a server name, --all, or --tag must be specified")

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    def _ensure_variables(self, request: StartRequest) -> None:
        """Fill or report template variables that have no value."""
        variables = build_template_variables(self.config, 0, protocol=request.protocol)
        missing: dict[str, MissingVariable] = {}
        for template in (request.command, *(request.env or {}).values()):
            for item in find_missing_variables(template, variables):
                missing.setdefault(item.template_var, item)
        if not missing:
            return

        items = list(missing.values())
        if not self.interactive or self.prompt_value is None:
            raise ConfigValidationError(
                self.format_missing(items),
                missing=[m.to_dict() for m in items],
            )

        for item in items:
            value = self.prompt_value(item)
            if item.is_custom_var:
                set_variable(item.template_var, value)
            elif item.config_key is not None:
                set_config_value(item.config_key, value)
        self.config = load_global_config(Path(self.cwd))

    def start(self, request: StartRequest) -> StartResult:
        """Start a server, or reuse/restart/refresh/rename an existing one.

        Raises:
            ConfigValidationError: Variables are missing and cannot be prompted for.
            DevfleetError: Any reconciler failure.
        """
        if self.ci and not request.sequential_ports and request.port is None:
            request = dataclasses.replace(request, sequential_ports=True)
        self._ensure_variables(request)
        return self.reconciler().start(request)

    # -------------------------------------------------------------------------
    # Batch actions
    # -------------------------------------------------------------------------

    def stop(self, entries: Iterable[ServerEntry], *, force: bool = False) -> list[ServerActionResult]:
        """Stop servers, killing them outright with force. They stay registered."""
        results = []
        for entry in entries:
            try:
                description = self.supervisor.stop(entry.supervisor_name, force=force)
            except ProcessNotFoundError:
                results.append(ServerActionResult(entry.name, True, ProcessStatus.STOPPED, "Not running"))
            except DevfleetError as e:
                results.append(ServerActionResult(entry.name, False, message=e.message))
            else:
                results.append(ServerActionResult(entry.name, True, description.status))
        return results

    def restart(self, entries: Iterable[ServerEntry]) -> list[ServerActionResult]:
        """Restart servers, re-resolving drifted ones under the on-start policy."""
        reconciler = self.reconciler()
        results = []
        for entry in entries:
            try:
                drift = detect_drift(entry, self.config)
                if self.config.refresh_on_change == "on-start" and drift.has_drift:
                    outcome = reconciler.refresh(entry, drift)
                    results.append(ServerActionResult(entry.name, True, outcome.status, config_refreshed=True))
                else:
                    description = reconciler.restart_process(entry)
                    results.append(ServerActionResult(entry.name, True, description.status))
            except DevfleetError as e:
                results.append(ServerActionResult(entry.name, False, message=e.message))
        return results

    def refresh(self, entries: Iterable[ServerEntry], *, dry_run: bool = False) -> list[RefreshOutcome]:
        """Re-resolve every drifted server among entries.

        Args:
            entries: Candidate servers; those without drift are skipped.
            dry_run: Report what would change without touching anything.
        """
        reconciler = self.reconciler()
        outcomes = []
        for entry in entries:
            drift = detect_drift(entry, self.config)
            if not drift.has_drift:
                continue
            if dry_run:
                outcomes.append(reconciler.plan_refresh(entry, drift))
            else:
                outcomes.append(reconciler.refresh(entry, drift))
        return outcomes

    def remove(self, entries: Iterable[ServerEntry], *, force: bool = False) -> list[ServerActionResult]:
        """Tear down and unregister servers.

        Raises:
            InteractiveNotAvailableError: Confirmation is needed but cannot be asked.
        """
        targets = list(entries)
        if not targets:
            return []

        if not force:
            if self.ci or self.confirm_remove is None:
                raise InteractiveNotAvailableError(
                    "Remove requires --force when running non-interactively",
                    servers=[e.name for e in targets],
                )
            if not self.confirm_remove(targets):
                return [ServerActionResult(e.name, False, message="Cancelled by user", cancelled=True) for e in targets]

        results = []
        for entry in targets:
            try:
                teardown(self.supervisor, entry.supervisor_name)
                self.registry.remove(entry.id)
            except DevfleetError as e:
                results.append(ServerActionResult(entry.name, False, message=e.message))
            else:
                results.append(ServerActionResult(entry.name, True))
        return results

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _info_for(self, entry: ServerEntry) -> ServerInfo:
        return ServerInfo(entry, self.supervisor.describe(entry.supervisor_name), detect_drift(entry, self.config))

    def list(
        self,
        server_filter: ServerFilter | None = None,
        *,
        running_only: bool = False,
        stopped_only: bool = False,
    ) -> list[ServerInfo]:
        """Registered servers with live status.

        stopped_only keeps everything not online (stopped, errored, gone).

        Raises:
            ValueError: If both running_only and stopped_only are set.
        """
        if running_only and stopped_only:
            raise ValueError("--running and --stopped cannot be combined")
        infos = [self._info_for(entry) for entry in self.registry.list(server_filter)]
        if running_only:
            return [i for i in infos if i.status is ProcessStatus.ONLINE]
        if stopped_only:
            return [i for i in infos if i.status is not ProcessStatus.ONLINE]
        return infos

    def info(self, name: str) -> ServerInfo:
        return self._info_for(self.find(name))

    # -------------------------------------------------------------------------
    # Logs
    # -------------------------------------------------------------------------

    def log_path(self, entry: ServerEntry, *, error: bool = False) -> Path:
        stdout_path, stderr_path = self.supervisor.log_paths(entry.supervisor_name)
        return stderr_path if error else stdout_path

    def logs(
        self,
        name: str,
        *,
        error: bool = False,
        lines: int = DEFAULT_LOG_LINES,
        head: int | None = None,
        since: datetime | None = None,
    ) -> LogsResult:
        """Last `lines` (or first `head`) lines of a server's output or error log.

        A log file that does not exist yet yields an empty result with
        exists=False.

        Raises:
            ServerNotFoundError: If name does not resolve.
        """
        entry = self.find(name)
        info = self._info_for(entry)
        path = self.log_path(entry, error=error)
        log_type = "error" if error else "output"
        try:
            entries = read_log(path, lines=lines, head=head, since=since)
        except FileNotFoundError:
            return LogsResult(entry.name, info.status, log_type, path, exists=False)
        return LogsResult(entry.name, info.status, log_type, path, tuple(entries))

    def flush_logs(self, entries: Iterable[ServerEntry]) -> list[ServerActionResult]:
        """Empty both log files of each server. Running servers keep logging."""
        results = []
        for entry in entries:
            stdout_path, stderr_path = self.supervisor.log_paths(entry.supervisor_name)
            try:
                flushed = [truncate_log(path) for path in (stdout_path, stderr_path)]
            except OSError as e:
                results.append(ServerActionResult(entry.name, False, message=str(e)))
                continue
            message = None if any(flushed) else "No log files"
            results.append(ServerActionResult(entry.name, True, message=message))
        _logger.info(
            {
                "event": "logs_flushed",
                "message": f"Flushed logs for {len(results)} server(s)",
                "details": {"servers": [r.name for r in results if r.success]},
            }
        )
        return results

    # -------------------------------------------------------------------------
    # Config changes
    # -------------------------------------------------------------------------

    def reset_config(self) -> GlobalConfig:
        """Restore the global config file to defaults and reload."""
        reset_global_config()
        self.config = load_global_config(Path(self.cwd))
        return self.config

    def apply_config_change(self, config_key: str) -> list[RefreshOutcome]:
        """React to a config write according to the refresh policy.

        Reloads the configuration, then refreshes drifted servers that use
        config_key: all of them under "auto", the confirmed ones under
        "prompt", none under "manual" or "on-start" (those pick the change up
        on their next start).
        """
        self.config = load_global_config(Path(self.cwd))
        policy = self.config.refresh_on_change
        if policy not in ("auto", "prompt"):
            return []

        affected = find_servers_using_config_key(self.registry.list(), config_key)
        reconciler = self.reconciler()
        outcomes = []
        for entry in affected:
            drift = detect_drift(entry, self.config)
            if not drift.has_drift:
                continue
            if policy == "prompt":
                if not self.interactive or self.confirm_refresh is None:
                    continue
                if not self.confirm_refresh(entry, drift):
                    continue
            outcomes.append(reconciler.refresh(entry, drift))
        if outcomes:
            _logger.info(
                {
                    "event": "config_change_applied",
                    "message": f"Refreshed {len(outcomes)} server(s) after {config_key} changed",
                    "details": {"config_key": config_key, "servers": [o.entry.name for o in outcomes]},
                }
            )
        return outcomes
