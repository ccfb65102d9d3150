"""Restart command for devfleet CLI."""

from __future__ import annotations

__all__ = ["restart"]

import click

from devfleet.cli.context import open_fleet
from devfleet.cli.output import emit_json, fail, format_action_results
from devfleet.exceptions import DevfleetError


@click.command()
@click.argument("name", required=False)
@click.option("--all", "-a", "all_", is_flag=True, help="Restart all servers")
@click.option("--tag", "-t", help="Restart servers with this tag")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def restart(ctx: click.Context, name: str | None, all_: bool, tag: str | None, as_json: bool) -> None:
    """Restart servers.

    With refreshOnChange=on-start, servers whose config drifted are
    re-resolved against the current config before restarting.
    """
    try:
        fleet = open_fleet(ctx, interactive=not as_json)
        results = fleet.restart(fleet.select(name, tag=tag, all_=all_))
    except (DevfleetError, ValueError) as e:
        fail(e, as_json)

    if as_json:
        emit_json([r.to_dict() for r in results])
    else:
        click.echo(format_action_results(results, "restart"))
    if any(not r.success for r in results):
        ctx.exit(1)
