"""MCP server exposing fleet actions as tools.

Tools mirror the CLI commands and return the same JSON records. Each
registered server is also readable as a resource:

    devfleet://servers/<name>        JSON details (application/json)
    devfleet://servers/<name>/logs   recent output (text/plain)

MCP calls never prompt: missing template variables and unforced removals
fail with a ToolError describing what to do instead. Config reset does not
ask for confirmation.

Usage:
    devfleet mcp          # serve over stdio
"""

from __future__ import annotations

__all__ = [
    "create_server",
    "devfleet_config",
    "devfleet_info",
    "devfleet_list",
    "devfleet_logs",
    "devfleet_refresh",
    "devfleet_remove",
    "devfleet_restart",
    "devfleet_start",
    "devfleet_stop",
    "read_server_logs_resource",
    "read_server_resource",
    "run_stdio",
]

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from fastmcp.exceptions import ResourceError, ToolError
from pydantic import Field

from devfleet.config import CONFIG_KEYS, load_global_config, remove_variable, set_config_value, set_variable
from devfleet.constants import APP_NAME, DEFAULT_LOG_LINES, RESOURCE_LOG_LINES
from devfleet.core.logs import parse_time_filter
from devfleet.core.reconciler import StartRequest
from devfleet.core.templates import format_missing_variables_for_mcp
from devfleet.exceptions import DevfleetError
from devfleet.fleet import Fleet
from devfleet.registry.models import ServerFilter

_logger = logging.getLogger(f"{APP_NAME}.mcp")

CwdParam = Annotated[
    str | None,
    Field(description="Working directory the server belongs to (defaults to the MCP server's cwd)"),
]
NameParam = Annotated[str | None, Field(description="Server name")]
TagParam = Annotated[str | None, Field(description="Apply to every server with this tag")]
AllParam = Annotated[bool, Field(description="Apply to every registered server")]


def _open(cwd: str | None) -> Fleet:
    return Fleet.open(
        Path(cwd) if cwd else None,
        format_missing=format_missing_variables_for_mcp,
    )


def _tool_error(error: Exception) -> ToolError:
    if isinstance(error, DevfleetError):
        _logger.debug({"event": "tool_failed", "error_type": type(error).__name__, "details": error.details})
        return ToolError(json.dumps(error.to_dict(), default=str))
    return ToolError(str(error))


# =============================================================================
# Tools
# =============================================================================


def devfleet_start(
    command: Annotated[str, Field(description="Command to run, e.g. 'npm run dev -- --port {{port}}'")],
    cwd: CwdParam = None,
    name: NameParam = None,
    port: Annotated[int | None, Field(description="Preferred port within the configured range")] = None,
    protocol: Annotated[Literal["http", "https"] | None, Field(description="Protocol for {{url}}")] = None,
    env: Annotated[dict[str, str] | None, Field(description="Environment variables (templates allowed)")] = None,
    tags: Annotated[list[str] | None, Field(description="Tags for a new server")] = None,
    description: Annotated[str | None, Field(description="Server description")] = None,
    rename_from: Annotated[str | None, Field(description="Rename this existing server to 'name'")] = None,
) -> dict[str, Any]:
    """Start a dev server, or reuse the one already registered for it."""
    try:
        fleet = _open(cwd)
        result = fleet.start(
            StartRequest(
                command=command,
                cwd=fleet.cwd,
                name=name,
                port=port,
                protocol=protocol,
                env=env or {},
                tags=tuple(tags or ()),
                description=description,
                previous_name=rename_from,
            )
        )
    except DevfleetError as e:
        raise _tool_error(e) from e
    return result.to_dict()


def devfleet_stop(
    name: NameParam = None,
    tag: TagParam = None,
    all: AllParam = False,
    force: Annotated[bool, Field(description="Kill immediately (SIGKILL) instead of a graceful stop")] = False,
    cwd: CwdParam = None,
) -> list[dict[str, Any]]:
    """Stop servers without unregistering them."""
    try:
        fleet = _open(cwd)
        results = fleet.stop(fleet.select(name, tag=tag, all_=all), force=force)
    except (DevfleetError, ValueError) as e:
        raise _tool_error(e) from e
    return [r.to_dict() for r in results]


def devfleet_restart(
    name: NameParam = None, tag: TagParam = None, all: AllParam = False, cwd: CwdParam = None
) -> list[dict[str, Any]]:
    """Restart servers, re-resolving drifted ones under refreshOnChange=on-start."""
    try:
        fleet = _open(cwd)
        results = fleet.restart(fleet.select(name, tag=tag, all_=all))
    except (DevfleetError, ValueError) as e:
        raise _tool_error(e) from e
    return [r.to_dict() for r in results]


def devfleet_refresh(
    name: NameParam = None,
    tag: TagParam = None,
    all: AllParam = False,
    dry_run: Annotated[bool, Field(description="Report changes without restarting")] = False,
    cwd: CwdParam = None,
) -> dict[str, Any]:
    """Re-resolve servers whose config changed since they started."""
    try:
        fleet = _open(cwd)
        targets = fleet.select(name, tag=tag, all_=all or (name is None and tag is None))
        outcomes = fleet.refresh(targets, dry_run=dry_run)
    except (DevfleetError, ValueError) as e:
        raise _tool_error(e) from e
    return {"dryRun": dry_run, "servers": [o.to_dict() for o in outcomes]}


def devfleet_remove(
    name: NameParam = None,
    tag: TagParam = None,
    all: AllParam = False,
    force: Annotated[bool, Field(description="Required: confirms the removal")] = False,
    cwd: CwdParam = None,
) -> list[dict[str, Any]]:
    """Stop servers and delete them from the registry. Requires force=true."""
    try:
        fleet = _open(cwd)
        results = fleet.remove(fleet.select(name, tag=tag, all_=all), force=force)
    except (DevfleetError, ValueError) as e:
        raise _tool_error(e) from e
    return [r.to_dict() for r in results]


def devfleet_list(
    running: Annotated[bool, Field(description="Only running servers")] = False,
    stopped: Annotated[bool, Field(description="Only stopped or errored servers")] = False,
    tag: Annotated[str | None, Field(description="Filter by tag")] = None,
    cwd: Annotated[str | None, Field(description="Filter by working directory")] = None,
    command: Annotated[str | None, Field(description="Filter by command glob, e.g. '*vite*'")] = None,
) -> list[dict[str, Any]]:
    """List registered servers with live status and drift."""
    try:
        fleet = _open(None)
        infos = fleet.list(
            ServerFilter(tag=tag, cwd=cwd, command=command),
            running_only=running,
            stopped_only=stopped,
        )
    except (DevfleetError, ValueError) as e:
        raise _tool_error(e) from e
    return [i.to_dict() for i in infos]


def devfleet_info(name: Annotated[str, Field(description="Server name")], cwd: CwdParam = None) -> dict[str, Any]:
    """Details for one server: endpoint, process state and config drift."""
    try:
        result = _open(cwd).info(name)
    except DevfleetError as e:
        raise _tool_error(e) from e
    return result.to_dict()


def devfleet_logs(
    name: NameParam = None,
    lines: Annotated[int, Field(ge=0, description="Lines from the end; ignored when head is set")] = DEFAULT_LOG_LINES,
    error: Annotated[bool, Field(description="Read the error log (stderr) instead of output")] = False,
    since: Annotated[str | None, Field(description="Only lines since a duration ('1h', '30m') or ISO date")] = None,
    head: Annotated[int | None, Field(ge=0, description="First N lines instead of the last")] = None,
    flush: Annotated[bool, Field(description="Clear the logs instead of returning them")] = False,
    all: Annotated[bool, Field(description="With flush, clear logs of every server")] = False,
    cwd: CwdParam = None,
) -> dict[str, Any] | list[dict[str, Any]]:
    """Recent output or error log lines of a server, or flush its logs."""
    try:
        fleet = _open(cwd)
        if flush:
            if name is None and not all:
                raise ToolError("'name' is required unless all=true")
            return [r.to_dict() for r in fleet.flush_logs(fleet.select(name, all_=all))]
        if name is None:
            raise ToolError("'name' is required")
        since_at = parse_time_filter(since) if since else None
        result = fleet.logs(name, error=error, lines=lines, head=head, since=since_at)
    except (DevfleetError, ValueError) as e:
        raise _tool_error(e) from e
    return result.to_dict()


def devfleet_config(
    show: Annotated[bool, Field(description="Return the merged configuration")] = False,
    get: Annotated[str | None, Field(description="Return one key, e.g. 'portRange.min'")] = None,
    set: Annotated[str | None, Field(description=f"Key to set ({', '.join(CONFIG_KEYS)}); requires value")] = None,
    add: Annotated[str | None, Field(description="User variable to add; requires value")] = None,
    remove: Annotated[str | None, Field(description="User variable to remove")] = None,
    reset: Annotated[bool, Field(description="Restore the global config to defaults")] = False,
    value: Annotated[str | None, Field(description="Value for set/add")] = None,
    cwd: CwdParam = None,
) -> dict[str, Any]:
    """Show or change devfleet configuration.

    After set/add, dependent servers are refreshed when refreshOnChange=auto.
    """
    try:
        if reset:
            defaults = _open(cwd).reset_config()
            return {"reset": True, "config": defaults.to_file_dict()}

        if set is not None or add is not None:
            if value is None:
                raise ToolError("'value' is required with set/add")
            if set is not None:
                set_config_value(set, value)
                changed_key = set
            else:
                set_variable(add, value)  # type: ignore[arg-type]
                changed_key = f"variables.{add}"
            refreshed = _open(cwd).apply_config_change(changed_key)
            return {"updated": changed_key, "value": value, "refreshed": [o.to_dict() for o in refreshed]}

        if remove is not None:
            return {"variable": remove, "removed": remove_variable(remove)}

        data = load_global_config(Path(cwd) if cwd else None).to_file_dict()
        if get is not None:
            current: Any = data
            for part in get.split("."):
                if not isinstance(current, dict) or part not in current:
                    raise ToolError(f"Unknown config key {get!r}")
                current = current[part]
            return {"key": get, "value": current}
        return data
    except DevfleetError as e:
        raise _tool_error(e) from e


_TOOLS = (
    devfleet_start,
    devfleet_stop,
    devfleet_restart,
    devfleet_refresh,
    devfleet_remove,
    devfleet_list,
    devfleet_info,
    devfleet_logs,
    devfleet_config,
)


# =============================================================================
# Resources
# =============================================================================


def read_server_resource(name: str) -> str:
    """JSON details for one registered server."""
    try:
        info = _open(None).info(name)
    except DevfleetError as e:
        raise ResourceError(e.message) from e
    return json.dumps(info.to_dict(), indent=2, default=str)


def read_server_logs_resource(name: str) -> str:
    """Recent output log lines for one registered server."""
    try:
        result = _open(None).logs(name, lines=RESOURCE_LOG_LINES)
    except DevfleetError as e:
        raise ResourceError(e.message) from e
    return result.text or "(no logs available)"


# =============================================================================
# Server
# =============================================================================


def create_server() -> FastMCP:
    """Build the FastMCP server with every devfleet tool and resource registered."""
    server: FastMCP = FastMCP(name=APP_NAME)
    for tool in _TOOLS:
        server.tool(tool)
    server.resource(
        "devfleet://servers/{name}",
        name="Server Details",
        description="Details about a managed server",
        mime_type="application/json",
    )(read_server_resource)
    server.resource(
        "devfleet://servers/{name}/logs",
        name="Server Logs",
        description="Recent output logs from a managed server",
        mime_type="text/plain",
    )(read_server_logs_resource)
    return server


def run_stdio() -> None:
    """Serve the tools over stdio until the client disconnects."""
    _logger.info({"event": "mcp_server_starting", "message": "Serving devfleet tools over stdio"})
    create_server().run(transport="stdio")
