"""List command for devfleet CLI."""

from __future__ import annotations

__all__ = ["list_servers"]

from pathlib import Path

import click

from devfleet.cli.context import open_fleet
from devfleet.cli.output import emit_json, fail, format_server_table
from devfleet.exceptions import DevfleetError
from devfleet.registry.models import ServerFilter


@click.command("list")
@click.option("--running", "-r", is_flag=True, help="Only show running servers")
@click.option("--stopped", "-s", is_flag=True, help="Only show stopped or errored servers")
@click.option("--tag", "-t", help="Filter by tag")
@click.option(
    "--cwd", "-c", "cwd", type=click.Path(file_okay=False, path_type=Path), help="Filter by working directory"
)
@click.option("--cmd", "command", help="Filter by command glob (e.g. '*storybook*')")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_servers(
    ctx: click.Context,
    running: bool,
    stopped: bool,
    tag: str | None,
    cwd: Path | None,
    command: str | None,
    as_json: bool,
) -> None:
    """List registered servers with their live status."""
    server_filter = ServerFilter(
        tag=tag,
        cwd=str(cwd.resolve()) if cwd is not None else None,
        command=command,
    )
    try:
        fleet = open_fleet(ctx, interactive=False)
        infos = fleet.list(server_filter, running_only=running, stopped_only=stopped)
    except (DevfleetError, ValueError) as e:
        fail(e, as_json)

    if as_json:
        emit_json([i.to_dict() for i in infos])
    else:
        click.echo(format_server_table(infos))
