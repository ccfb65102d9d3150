"""Refresh command for devfleet CLI."""

from __future__ import annotations

__all__ = ["refresh"]

import click

from devfleet.cli.context import open_fleet
from devfleet.cli.output import emit_json, fail, format_refresh_outcomes
from devfleet.exceptions import DevfleetError


@click.command()
@click.argument("name", required=False)
@click.option("--all", "-a", "all_", is_flag=True, help="Refresh all drifted servers (default)")
@click.option("--tag", "-t", help="Refresh drifted servers with this tag")
@click.option("--dry-run", is_flag=True, help="Show what would change without restarting")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def refresh(
    ctx: click.Context,
    name: str | None,
    all_: bool,
    tag: str | None,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Re-resolve servers whose config changed since they started.

    Servers whose port fell outside the current port range get a new port.
    """
    try:
        fleet = open_fleet(ctx, interactive=not as_json)
        targets = fleet.select(name, tag=tag, all_=all_ or (name is None and tag is None))
        outcomes = fleet.refresh(targets, dry_run=dry_run)
    except (DevfleetError, ValueError) as e:
        fail(e, as_json)

    if as_json:
        emit_json({"dryRun": dry_run, "servers": [o.to_dict() for o in outcomes]})
    else:
        click.echo(format_refresh_outcomes(outcomes, dry_run))
