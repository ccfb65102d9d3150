"""Start/refresh decisions for managed servers.

DriftReconciler answers one question per start request: is this server
new, can the running process be reused, or must it be re-resolved and
restarted? The decision runs in this order:

1. Identity: find an existing entry by (cwd, name), falling back to the
   legacy (cwd, command) identity for unnamed requests.
2. Drift: compare the entry's config snapshot with the live config.
3. Policy: auto/on-start refresh immediately, prompt asks, manual ignores.
4. Port: a refresh re-derives the port if it fell outside the range.
5. Liveness: rename, command change under an explicit name, or a changed
   resolved environment restarts the process. Otherwise an online process
   is reused and a stopped one is restarted unchanged.

Supervisor "not found" during teardown counts as success. Every other
supervisor error propagates.
"""

from __future__ import annotations

__all__ = [
    "DEFAULT_IDENTITY_STRATEGIES",
    "ByLegacyCommandHash",
    "ByName",
    "ConfirmRefresh",
    "DriftReconciler",
    "IdentityKey",
    "IdentityStrategy",
    "RefreshOutcome",
    "StartAction",
    "StartRequest",
    "StartResult",
    "resolve_identity",
]

import logging
import shlex
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Protocol

from devfleet.config import GlobalConfig
from devfleet.constants import APP_NAME
from devfleet.core.drift import (
    NO_DRIFT,
    DriftResult,
    create_config_snapshot,
    detect_drift,
    extract_used_config_keys,
    has_env_changed,
)
from devfleet.core.names import disambiguate_name, generate_deterministic_name, normalize_for_hash
from devfleet.core.ports import PortAllocator
from devfleet.core.templates import (
    TemplateContext,
    build_template_variables,
    render_env_templates,
    render_template,
)
from devfleet.exceptions import ProcessNotFoundError, ServerAlreadyExistsError, ServerNotFoundError, SupervisorError
from devfleet.registry.models import ServerEntry
from devfleet.registry.store import ServerRegistry
from devfleet.supervisor.base import ProcessDescription, ProcessStatus, ProcessSupervisor, teardown

_logger = logging.getLogger(f"{APP_NAME}.core.reconciler")

StartAction = Literal["started", "existing", "restarted", "renamed", "refreshed"]

# (entry, drift) -> whether to refresh now
ConfirmRefresh = Callable[[ServerEntry, DriftResult], bool]


# =============================================================================
# Requests and results
# =============================================================================


@dataclass(frozen=True, slots=True)
class StartRequest:
    """A request to start (or reuse) a server.

    Attributes:
        command: Command template.
        cwd: Absolute working directory.
        name: Explicit name. None derives a deterministic name.
        port: Explicit port (must be within the configured range).
        protocol: Overrides config protocol for this server.
        env: Environment templates.
        tags: Tags for a new entry.
        description: Description for a new entry.
        previous_name: Rename the server currently registered under this name.
        sequential_ports: Allocate ports sequentially (batch/CI contexts).
    """

    command: str
    cwd: str
    name: str | None = None
    port: int | None = None
    protocol: Literal["http", "https"] | None = None
    env: Mapping[str, str] | None = None
    tags: tuple[str, ...] = ()
    description: str | None = None
    previous_name: str | None = None
    sequential_ports: bool = False


@dataclass(frozen=True, slots=True)
class StartResult:
    """What a start request did.

    Attributes:
        action: started, existing, restarted, renamed or refreshed.
        entry: The resulting registry entry.
        status: Process status after the action.
        port_reassigned: The port differs from the preferred one.
        original_port: The preferred (or previous) port when reassigned.
        previous_name: Old name for a rename.
        env_changed: The resolved environment changed.
        command_changed: The command template changed under an explicit name.
        drift: Drift detected before acting.
        declined_refresh: Drift was detected but not applied.
    """

    action: StartAction
    entry: ServerEntry
    status: ProcessStatus
    port_reassigned: bool = False
    original_port: int | None = None
    previous_name: str | None = None
    env_changed: bool = False
    command_changed: bool = False
    drift: DriftResult = NO_DRIFT
    declined_refresh: bool = False

    @property
    def config_drift(self) -> bool:
        return self.drift.has_drift

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "action": self.action,
            "server": self.entry.to_dict(),
            "url": self.entry.url,
            "status": self.status.value,
            "portReassigned": self.port_reassigned,
            "envChanged": self.env_changed,
            "commandChanged": self.command_changed,
            "configDrift": self.config_drift,
            "userDeclinedRefresh": self.declined_refresh,
        }
        if self.original_port is not None:
            data["originalPort"] = self.original_port
        if self.previous_name is not None:
            data["previousName"] = self.previous_name
        if self.drift.has_drift:
            data["driftDetails"] = [d.to_dict() for d in self.drift.drifted_values]
        return data


@dataclass(frozen=True, slots=True)
class RefreshOutcome:
    """Result of re-resolving a server against the live config."""

    entry: ServerEntry
    status: ProcessStatus
    drift: DriftResult
    port_reassigned: bool = False
    original_port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.entry.name,
            "cwd": self.entry.cwd,
            "port": self.entry.port,
            "status": self.status.value,
            "portReassigned": self.port_reassigned,
            "driftDetails": [d.to_dict() for d in self.drift.drifted_values],
        }
        if self.original_port is not None:
            data["originalPort"] = self.original_port
        return data


# =============================================================================
# Identity resolution
# =============================================================================


@dataclass(frozen=True, slots=True)
class IdentityKey:
    """Everything identity strategies may look at."""

    cwd: str
    name: str
    command: str
    env: Mapping[str, str] = field(default_factory=dict)
    explicit: bool = False


class IdentityStrategy(Protocol):
    """One way of matching a request to a registered server."""

    label: str

    def resolve(self, registry: ServerRegistry, key: IdentityKey) -> ServerEntry | None: ...


class ByName:
    """Primary identity: (cwd, name)."""

    label = "name"

    def resolve(self, registry: ServerRegistry, key: IdentityKey) -> ServerEntry | None:
        return registry.find_by_identity(key.cwd, key.name)


class ByLegacyCommandHash:
    """Legacy identity: (cwd, command) for unnamed requests.

    Entries whose name is already the deterministic name of their own
    command and env are new-style entries and never match here, so a
    changed env yields a new server instead of mutating the old one.
    """

    label = "legacy-command"

    def resolve(self, registry: ServerRegistry, key: IdentityKey) -> ServerEntry | None:
        if key.explicit:
            return None
        entry = registry.find_by_legacy_command_hash(key.cwd, key.command)
        if entry is None or entry.env_template is None:
            return entry
        if entry.name == generate_deterministic_name(entry.command, entry.env_template):
            return None
        return entry


DEFAULT_IDENTITY_STRATEGIES: tuple[IdentityStrategy, ...] = (ByName(), ByLegacyCommandHash())


def resolve_identity(
    registry: ServerRegistry,
    key: IdentityKey,
    strategies: tuple[IdentityStrategy, ...] = DEFAULT_IDENTITY_STRATEGIES,
) -> tuple[ServerEntry, str] | None:
    """Try strategies in order. Returns (entry, strategy label) or None."""
    for strategy in strategies:
        entry = strategy.resolve(registry, key)
        if entry is not None:
            return entry, strategy.label
    return None


def _same_invocation(entry: ServerEntry, command: str, env: Mapping[str, str]) -> bool:
    stored_env = entry.env_template if entry.env_template is not None else entry.env
    return normalize_for_hash(entry.command, stored_env) == normalize_for_hash(command, env)


# =============================================================================
# Reconciler
# =============================================================================


class DriftReconciler:
    """Decides and performs start, reuse, restart and refresh.

    Args:
        registry: Server registry.
        supervisor: Process supervisor.
        config: Live configuration for this invocation.
        allocator: Port allocator (built from config if omitted).
        confirm_refresh: Asked under the "prompt" policy. None means decline.
        strategies: Identity strategies in priority order.
    """

    def __init__(
        self,
        registry: ServerRegistry,
        supervisor: ProcessSupervisor,
        config: GlobalConfig,
        *,
        allocator: PortAllocator | None = None,
        confirm_refresh: ConfirmRefresh | None = None,
        strategies: tuple[IdentityStrategy, ...] = DEFAULT_IDENTITY_STRATEGIES,
    ) -> None:
        self.registry = registry
        self.supervisor = supervisor
        self.config = config
        self.allocator = allocator or PortAllocator.from_config(config)
        self.confirm_refresh = confirm_refresh
        self.strategies = strategies

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    def start(self, request: StartRequest) -> StartResult:
        """Start a server or reconcile an existing one.

        Raises:
            PortOutOfRangeError: Explicit port outside the range.
            PortAllocationFailedError: No free port in the range.
            TemplateMissingVariableError: A placeholder cannot be resolved.
            ServerNotFoundError: previous_name does not exist.
            ServerAlreadyExistsError: Rename target already exists.
            SupervisorError: The supervisor failed.
        """
        env = dict(request.env or {})
        explicit = request.name is not None
        name = request.name if request.name is not None else generate_deterministic_name(request.command, env)

        if request.previous_name is not None and request.previous_name != name:
            return self._rename(request, name, env)

        key = IdentityKey(request.cwd, name, request.command, env, explicit)
        match = resolve_identity(self.registry, key, self.strategies)

        if match is not None and not explicit:
            entry, label = match
            if label == ByName.label and not _same_invocation(entry, request.command, env):
                # Deterministic name collided with a different server
                name = disambiguate_name(name, request.cwd, normalize_for_hash(request.command, env))
                found = self.registry.find_by_identity(request.cwd, name)
                match = (found, ByName.label) if found is not None else None

        if match is None:
            return self._start_new(request, name, env)
        return self._start_existing(match[0], request, env, explicit)

    def _start_new(self, request: StartRequest, name: str, env: dict[str, str]) -> StartResult:
        assignment = self.allocator.assign(
            request.cwd,
            request.command,
            explicit_port=request.port,
            sequential=request.sequential_ports,
        )
        original_port = None
        if assignment.reassigned and not request.sequential_ports:
            original_port = (
                request.port
                if request.port is not None
                else self.allocator.deterministic_port(request.cwd, request.command)
            )

        protocol = request.protocol or self.config.protocol
        hostname = self.config.hostname
        variables = build_template_variables(self.config, assignment.port, hostname=hostname, protocol=protocol)
        context = TemplateContext.for_registry(self.registry, request.cwd)

        # Render before registering so a template failure leaves no entry behind
        resolved_command = render_template(request.command, variables, context)
        resolved_env = render_env_templates(env, variables, context)
        used_keys = extract_used_config_keys(request.command, env)

        entry = self.registry.add(
            name=name,
            cwd=request.cwd,
            command=request.command,
            resolved_command=resolved_command,
            port=assignment.port,
            protocol=protocol,
            hostname=hostname,
            env=resolved_env,
            env_template=env,
            tags=list(request.tags),
            description=request.description,
            used_config_keys=used_keys,
            config_snapshot=create_config_snapshot(self.config, used_keys),
        )
        description = self._launch(entry)
        return StartResult(
            "started",
            entry,
            description.status,
            port_reassigned=assignment.reassigned,
            original_port=original_port,
        )

    def _start_existing(
        self,
        entry: ServerEntry,
        request: StartRequest,
        env: dict[str, str],
        explicit: bool,
    ) -> StartResult:
        command_changed = explicit and entry.command != request.command
        drift = detect_drift(entry, self.config)

        if drift.has_drift and self._should_refresh(entry, drift):
            outcome = self.refresh(
                entry,
                drift,
                command=request.command,
                env=env,
                protocol=request.protocol,
            )
            return StartResult(
                "refreshed",
                outcome.entry,
                outcome.status,
                port_reassigned=outcome.port_reassigned,
                original_port=outcome.original_port,
                env_changed=has_env_changed(entry.env, outcome.entry.env),
                command_changed=command_changed,
                drift=drift,
            )

        declined = drift.has_drift
        description = self.supervisor.describe(entry.supervisor_name)
        status = description.status if description is not None else ProcessStatus.UNKNOWN

        variables = build_template_variables(
            self.config, entry.port, hostname=entry.hostname, protocol=entry.protocol
        )
        context = TemplateContext.for_registry(self.registry, entry.cwd)
        resolved_env = render_env_templates(env, variables, context)
        env_changed = has_env_changed(entry.env, resolved_env)

        if status is ProcessStatus.ONLINE and not env_changed and not command_changed:
            return StartResult("existing", entry, status, drift=drift, declined_refresh=declined)

        if command_changed or env_changed:
            command = request.command if command_changed else entry.command
            updated = self._reresolve(
                entry, command, env, port=entry.port, hostname=entry.hostname, protocol=entry.protocol
            )
            teardown(self.supervisor, entry.supervisor_name)
            description = self._launch(updated)
            reason = "command" if command_changed else "environment"
            _logger.info(
                {
                    "event": "server_restarted",
                    "message": f"Restarted {entry.name} due to {reason} change",
                    "details": {"server_name": entry.name, "cwd": entry.cwd},
                }
            )
            return StartResult(
                "restarted",
                updated,
                description.status,
                env_changed=env_changed,
                command_changed=command_changed,
                drift=drift,
                declined_refresh=declined,
            )

        description = self.restart_process(entry)
        return StartResult("restarted", entry, description.status, drift=drift, declined_refresh=declined)

    def _rename(self, request: StartRequest, new_name: str, env: dict[str, str]) -> StartResult:
        assert request.previous_name is not None
        current = self.registry.find_by_identity(request.cwd, request.previous_name)
        if current is None:
            raise ServerNotFoundError(
                f'Server "{request.previous_name}" not found in {request.cwd}',
                server_name=request.previous_name,
                cwd=request.cwd,
            )
        if self.registry.find_by_identity(request.cwd, new_name) is not None:
            raise ServerAlreadyExistsError(
                f'Server "{new_name}" already exists in {request.cwd}',
                server_name=new_name,
                cwd=request.cwd,
            )

        drift = detect_drift(current, self.config)
        port, reassigned, original_port = current.port, False, None
        if drift.port_out_of_range:
            assignment = self.allocator.assign(current.cwd, request.command, sequential=request.sequential_ports)
            port, reassigned, original_port = assignment.port, True, current.port

        # Render first so a template failure leaves the old server untouched
        changes = self._resolve_changes(
            current,
            request.command,
            env,
            port=port,
            hostname=self.config.hostname,
            protocol=request.protocol or current.protocol,
        )
        teardown(self.supervisor, current.supervisor_name)
        updated = self.registry.update(current.id, name=new_name, **changes)
        description = self._launch(updated)
        _logger.info(
            {
                "event": "server_renamed",
                "message": f"Renamed {current.name} to {new_name}",
                "details": {"server_id": current.id, "previous_name": current.name, "server_name": new_name},
            }
        )
        return StartResult(
            "renamed",
            updated,
            description.status,
            port_reassigned=reassigned,
            original_port=original_port,
            previous_name=current.name,
            env_changed=has_env_changed(current.env, updated.env),
            command_changed=current.command != request.command,
            drift=drift,
        )

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def _should_refresh(self, entry: ServerEntry, drift: DriftResult) -> bool:
        policy = self.config.refresh_on_change
        if policy in ("auto", "on-start"):
            return True
        if policy == "prompt" and self.confirm_refresh is not None:
            return self.confirm_refresh(entry, drift)
        return False

    def plan_refresh(self, entry: ServerEntry, drift: DriftResult | None = None) -> RefreshOutcome:
        """What refresh() would do, without touching anything."""
        drift = drift if drift is not None else detect_drift(entry, self.config)
        port, reassigned, original_port = entry.port, False, None
        if drift.port_out_of_range:
            port = self.allocator.deterministic_port(entry.cwd, entry.command)
            reassigned, original_port = True, entry.port
        description = self.supervisor.describe(entry.supervisor_name)
        status = description.status if description is not None else ProcessStatus.UNKNOWN
        return RefreshOutcome(
            entry.model_copy(update={"port": port}),
            status,
            drift,
            port_reassigned=reassigned,
            original_port=original_port,
        )

    def refresh(
        self,
        entry: ServerEntry,
        drift: DriftResult | None = None,
        *,
        command: str | None = None,
        env: Mapping[str, str] | None = None,
        protocol: str | None = None,
    ) -> RefreshOutcome:
        """Re-resolve a server against the live config and restart it.

        Args:
            entry: Server to refresh.
            drift: Precomputed drift (detected if omitted).
            command: New command template (defaults to the stored one).
            env: New env templates (defaults to the stored templates).
            protocol: Protocol override.
        """
        drift = drift if drift is not None else detect_drift(entry, self.config)
        new_command = command or entry.command
        env_template = dict(env) if env is not None else entry.env_template

        port, reassigned, original_port = entry.port, False, None
        if drift.port_out_of_range:
            original_port = entry.port
            assignment = self.allocator.assign(entry.cwd, new_command)
            port = assignment.port
            reassigned = assignment.reassigned or port != entry.port

        if protocol is None:
            protocol = self.config.protocol if drift.protocol_changed else entry.protocol

        updated = self._reresolve(
            entry, new_command, env_template, port=port, hostname=self.config.hostname, protocol=protocol
        )
        teardown(self.supervisor, entry.supervisor_name)
        description = self._launch(updated)
        _logger.info(
            {
                "event": "server_refreshed",
                "message": f"Refreshed {entry.name} with current config",
                "details": {
                    "server_name": entry.name,
                    "cwd": entry.cwd,
                    "drifted_keys": [d.config_key for d in drift.drifted_values],
                    "port": port,
                },
            }
        )
        return RefreshOutcome(updated, description.status, drift, reassigned, original_port)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _reresolve(
        self,
        entry: ServerEntry,
        command: str,
        env_template: Mapping[str, str] | None,
        *,
        port: int,
        hostname: str,
        protocol: str,
    ) -> ServerEntry:
        """Render templates, recompute the snapshot and persist."""
        changes = self._resolve_changes(entry, command, env_template, port=port, hostname=hostname, protocol=protocol)
        return self.registry.update(entry.id, **changes)

    def _resolve_changes(
        self,
        entry: ServerEntry,
        command: str,
        env_template: Mapping[str, str] | None,
        *,
        port: int,
        hostname: str,
        protocol: str,
    ) -> dict[str, Any]:
        """Render templates and recompute the snapshot without persisting.

        Raises:
            TemplateMissingVariableError: If a placeholder or lookup cannot be resolved.
        """
        variables = build_template_variables(self.config, port, hostname=hostname, protocol=protocol)
        context = TemplateContext.for_registry(self.registry, entry.cwd)
        resolved_command = render_template(command, variables, context)
        if env_template is not None:
            resolved_env = render_env_templates(env_template, variables, context)
            env_template = dict(env_template)
        else:
            resolved_env = entry.env
        used_keys = extract_used_config_keys(command, env_template)
        return {
            "command": command,
            "resolved_command": resolved_command,
            "port": port,
            "hostname": hostname,
            "protocol": protocol,
            "env": resolved_env,
            "env_template": env_template,
            "used_config_keys": used_keys,
            "config_snapshot": create_config_snapshot(self.config, used_keys),
        }

    def _launch(self, entry: ServerEntry) -> ProcessDescription:
        """Start the entry's resolved command under the supervisor."""
        try:
            argv = shlex.split(entry.resolved_command)
        except ValueError as e:
            raise SupervisorError(
                f"Cannot parse command for {entry.name}: {e}",
                server_name=entry.name,
                command=entry.resolved_command,
            ) from e
        if not argv:
            raise SupervisorError(f"Empty command for {entry.name}", server_name=entry.name)

        env = {**entry.env, "PORT": str(entry.port)}
        return self.supervisor.start(entry.supervisor_name, argv[0], argv[1:], entry.cwd, env)

    def restart_process(self, entry: ServerEntry) -> ProcessDescription:
        """Restart unchanged, starting fresh if the supervisor lost the process."""
        try:
            return self.supervisor.restart(entry.supervisor_name)
        except ProcessNotFoundError:
            return self._launch(entry)
