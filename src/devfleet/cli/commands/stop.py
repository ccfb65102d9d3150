"""Stop command for devfleet CLI."""

from __future__ import annotations

__all__ = ["stop"]

import click

from devfleet.cli.context import open_fleet
from devfleet.cli.output import emit_json, fail, format_action_results
from devfleet.exceptions import DevfleetError


@click.command()
@click.argument("name", required=False)
@click.option("--all", "-a", "all_", is_flag=True, help="Stop all servers")
@click.option("--tag", "-t", help="Stop servers with this tag")
@click.option("--force", "-f", is_flag=True, help="Kill immediately (SIGKILL) without waiting for a graceful exit")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def stop(
    ctx: click.Context,
    name: str | None,
    all_: bool,
    tag: str | None,
    force: bool,
    as_json: bool,
) -> None:
    """Stop servers (they stay registered)."""
    try:
        fleet = open_fleet(ctx, interactive=not as_json)
        results = fleet.stop(fleet.select(name, tag=tag, all_=all_), force=force)
    except (DevfleetError, ValueError) as e:
        fail(e, as_json)

    if as_json:
        emit_json([r.to_dict() for r in results])
    else:
        click.echo(format_action_results(results, "stop"))
    if any(not r.success for r in results):
        ctx.exit(1)
