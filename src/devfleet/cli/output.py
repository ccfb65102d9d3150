"""Text and JSON rendering of fleet results for the CLI.

JSON output is wrapped as {"success": true, "data": ...} or
{"success": false, "data": null, "error": {...}} so scripts can branch on
one key.
"""

from __future__ import annotations

__all__ = [
    "emit_json",
    "fail",
    "format_action_results",
    "format_logs",
    "format_refresh_outcomes",
    "format_server_info",
    "format_server_table",
    "format_start_result",
    "format_uptime",
]

import json
import sys
from typing import Any, NoReturn

import click

from devfleet.cli.styling import (
    style_dim,
    style_error,
    style_header,
    style_label,
    style_status,
    style_success,
    style_url,
    style_warning,
)
from devfleet.core.drift import format_drift
from devfleet.core.reconciler import RefreshOutcome, StartResult
from devfleet.exceptions import DevfleetError
from devfleet.fleet import LogsResult, ServerActionResult, ServerInfo


def emit_json(data: Any) -> None:
    click.echo(json.dumps({"success": True, "data": data}, indent=2, default=str))


def fail(error: Exception, as_json: bool = False) -> NoReturn:
    """Report an error and exit with status 1."""
    if as_json:
        if isinstance(error, DevfleetError):
            payload = error.to_dict()
        else:
            payload = {"error": "UNKNOWN_ERROR", "message": str(error)}
        click.echo(json.dumps({"success": False, "data": None, "error": payload}, indent=2, default=str))
    else:
        click.echo(style_error(f"Error: {error}"), err=True)
    sys.exit(1)


def format_uptime(seconds: float | None) -> str:
    """Compact duration such as "3h 12m"."""
    if seconds is None:
        return "-"
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


_START_HEADLINES = {
    "started": 'Server "{name}" started',
    "existing": 'Server "{name}" already running',
    "restarted": 'Server "{name}" restarted',
    "refreshed": 'Server "{name}" refreshed (config changed)',
}


def format_start_result(result: StartResult) -> str:
    entry = result.entry
    if result.action == "renamed":
        headline = style_success(f'Server renamed from "{result.previous_name}" to "{entry.name}"')
    elif result.action == "existing":
        headline = click.style(_START_HEADLINES["existing"].format(name=entry.name), fg="blue")
    else:
        headline = style_success(_START_HEADLINES[result.action].format(name=entry.name))

    lines = [
        headline,
        f"  {style_label('Name')}   {entry.name}",
        f"  {style_label('Port')}   {entry.port}",
        f"  {style_label('URL')}    {style_url(entry.url)}",
        f"  {style_label('Status')} {style_status(result.status)}",
        f"  {style_label('CWD')}    {entry.cwd}",
    ]
    if result.port_reassigned and result.original_port is not None:
        lines.append("  " + style_warning(f"Port reassigned: {result.original_port} → {entry.port}"))
    if result.action == "refreshed" and result.config_drift:
        lines.append("  " + style_label("Config changes applied"))
        lines.extend("  " + line for line in format_drift(result.drift).splitlines()[1:])
    if result.declined_refresh:
        lines.append("  " + style_warning(f"Config has changed; run 'devfleet refresh {entry.name}' to apply"))
    return "\n".join(lines)


def format_action_results(results: list[ServerActionResult], verb: str) -> str:
    """One line per server for stop/restart/remove."""
    if not results:
        return style_dim(f"No servers to {verb}.")
    lines = []
    past = {"stop": "stopped", "restart": "restarted", "remove": "removed", "flush": "logs flushed"}.get(verb, verb)
    for r in results:
        if r.cancelled:
            lines.append(style_dim(f'Cancelled: "{r.name}" not {past}'))
        elif r.success:
            suffix = " (config refreshed)" if r.config_refreshed else ""
            lines.append(style_success(f'Server "{r.name}" {past}{suffix}'))
        else:
            lines.append(style_error(f'Failed to {verb} "{r.name}": {r.message}'))
    return "\n".join(lines)


def format_refresh_outcomes(outcomes: list[RefreshOutcome], dry_run: bool = False) -> str:
    if not outcomes:
        return style_dim("No servers have config drift.")
    lines = []
    for o in outcomes:
        if dry_run:
            lines.append(f'Would refresh "{o.entry.name}"')
        else:
            lines.append(style_success(f'Refreshed "{o.entry.name}"'))
        lines.extend("  " + line for line in format_drift(o.drift).splitlines()[1:])
        if o.port_reassigned:
            lines.append("  " + style_warning(f"Port reassigned: {o.original_port} → {o.entry.port}"))
    return "\n".join(lines)


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


def format_server_table(infos: list[ServerInfo]) -> str:
    if not infos:
        return style_dim("No servers registered.")

    rows = [
        (
            info.entry.name + (" *" if info.drift.has_drift else ""),
            info.status,
            str(info.entry.port),
            _truncate(info.entry.command, 30),
            _truncate(info.entry.cwd, 40),
        )
        for info in infos
    ]
    name_w = max(4, *(len(r[0]) for r in rows))
    cmd_w = max(7, *(len(r[3]) for r in rows))

    header = f"{'NAME':<{name_w}}  {'STATUS':<8}  {'PORT':<5}  {'COMMAND':<{cmd_w}}  CWD"
    lines = [click.style(header, bold=True)]
    for name, status, port, command, cwd in rows:
        # Pad before styling so escape codes don't skew the columns
        status_cell = style_status(status) + " " * (8 - len(status.value))
        lines.append(f"{name:<{name_w}}  {status_cell}  {port:<5}  {command:<{cmd_w}}  {cwd}")

    if any(info.drift.has_drift for info in infos):
        lines.append("")
        lines.append(style_warning("* config changed since start; run 'devfleet refresh' to update"))
    return "\n".join(lines)


def format_server_info(info: ServerInfo) -> str:
    entry = info.entry
    lines = [
        style_header(f"Server: {entry.name}"),
        f"  {style_label('Status')}      {style_status(info.status)}",
        f"  {style_label('URL')}         {style_url(entry.url)}",
        f"  {style_label('Port')}        {entry.port}",
        f"  {style_label('Hostname')}    {entry.hostname}",
        f"  {style_label('Protocol')}    {entry.protocol}",
        f"  {style_label('CWD')}         {entry.cwd}",
        f"  {style_label('Command')}     {entry.command}",
        f"  {style_label('Resolved')}    {entry.resolved_command}",
        f"  {style_label('Created')}     {entry.created_at}",
    ]
    if info.process is not None and info.process.pid is not None:
        lines.append(f"  {style_label('PID')}         {info.process.pid}")
        lines.append(f"  {style_label('Uptime')}      {format_uptime(info.process.uptime_seconds)}")
    if entry.tags:
        lines.append(f"  {style_label('Tags')}        {', '.join(entry.tags)}")
    if entry.description:
        lines.append(f"  {style_label('Description')} {entry.description}")
    if entry.env:
        lines.append(f"  {style_label('Environment')}")
        lines.extend(f"    {key}={value}" for key, value in sorted(entry.env.items()))
    if info.drift.has_drift:
        lines.append("")
        lines.append(style_warning(format_drift(info.drift)))
    return "\n".join(lines)


def format_logs(result: LogsResult) -> str:
    """Header line followed by the log lines."""
    header = f"{style_header(f'Logs for {result.name}')} ({result.log_type}, {style_status(result.status)})"
    lines = [header, style_dim(str(result.log_path))]
    if not result.exists:
        lines.append(style_dim("(no log file yet)"))
    elif not result.lines:
        lines.append(style_dim("(no logs available)"))
    else:
        lines.extend(result.lines)
    return "\n".join(lines)
