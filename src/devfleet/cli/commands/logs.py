"""Logs command for devfleet CLI.

Shows the tail (or head) of a server's stdout or stderr log, follows it in
real time, or flushes it.
"""

from __future__ import annotations

__all__ = ["logs"]

import time
from datetime import datetime

import click

from devfleet.cli.context import open_fleet
from devfleet.cli.output import emit_json, fail, format_action_results, format_logs
from devfleet.cli.styling import style_dim, style_warning
from devfleet.constants import DEFAULT_LOG_LINES, LOG_FOLLOW_POLL_SECONDS
from devfleet.core.logs import follow_log, parse_time_filter
from devfleet.exceptions import DevfleetError
from devfleet.fleet import Fleet, LogsResult


def _flush(ctx: click.Context, fleet: Fleet, name: str | None, all_: bool, as_json: bool) -> None:
    if not all_ and name is None:
        fail(ValueError("Server name is required (or use --all to flush all logs)"), as_json)
    try:
        results = fleet.flush_logs(fleet.select(name, all_=all_))
    except (DevfleetError, ValueError) as e:
        fail(e, as_json)

    if as_json:
        emit_json([r.to_dict() for r in results])
    else:
        click.echo(format_action_results(results, "flush"))
    if any(not r.success for r in results):
        ctx.exit(1)


def _follow(result: LogsResult, since: datetime | None) -> None:
    """Stream new lines until Ctrl+C."""
    click.echo(style_dim("Following logs (Ctrl+C to stop)..."))
    try:
        while not result.log_path.exists():
            time.sleep(LOG_FOLLOW_POLL_SECONDS)
        follow_log(result.log_path, click.echo, since=since)
    except KeyboardInterrupt:
        pass
    click.echo(style_dim("Stopped following logs."))


@click.command()
@click.argument("name", required=False)
@click.option(
    "--lines",
    "-n",
    type=click.IntRange(min=0),
    default=DEFAULT_LOG_LINES,
    show_default=True,
    help="Number of lines from the end",
)
@click.option("--head", type=click.IntRange(min=0), help="Show the first N lines instead")
@click.option("--error", "-e", is_flag=True, help="Show the error log (stderr)")
@click.option("--since", help="Only lines since a time: duration (1h, 30m, 2d) or ISO date")
@click.option("--follow", "-f", is_flag=True, help="Keep printing new lines")
@click.option("--flush", is_flag=True, help="Clear the logs instead of showing them")
@click.option("--all", "-a", "all_", is_flag=True, help="With --flush, clear logs of all servers")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def logs(
    ctx: click.Context,
    name: str | None,
    lines: int,
    head: int | None,
    error: bool,
    since: str | None,
    follow: bool,
    flush: bool,
    all_: bool,
    as_json: bool,
) -> None:
    """Show a server's log output.

    \b
    Examples:
      devfleet logs api                 Last 50 lines of stdout
      devfleet logs api -e --since 1h   Errors from the last hour
      devfleet logs api -f              Follow output (Ctrl+C to stop)
      devfleet logs --flush --all       Clear every server's logs
    """
    try:
        fleet = open_fleet(ctx, interactive=False)
    except DevfleetError as e:
        fail(e, as_json)

    if flush:
        _flush(ctx, fleet, name, all_, as_json)
        return

    if name is None:
        fail(ValueError("Server name is required"), as_json)

    try:
        since_at = parse_time_filter(since) if since else None
        result = fleet.logs(name, error=error, lines=lines, head=head, since=since_at)
    except DevfleetError as e:
        fail(e, as_json)

    if as_json:
        if follow:
            click.echo(style_warning("--follow is ignored with --json"), err=True)
        emit_json(result.to_dict())
        return

    click.echo(format_logs(result))
    if follow:
        _follow(result, since_at)
