"""Remove command for devfleet CLI."""

from __future__ import annotations

__all__ = ["remove"]

import click

from devfleet.cli.context import open_fleet
from devfleet.cli.output import emit_json, fail, format_action_results
from devfleet.exceptions import DevfleetError


@click.command()
@click.argument("name", required=False)
@click.option("--all", "-a", "all_", is_flag=True, help="Remove all servers")
@click.option("--tag", "-t", help="Remove servers with this tag")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def remove(
    ctx: click.Context,
    name: str | None,
    all_: bool,
    tag: str | None,
    force: bool,
    as_json: bool,
) -> None:
    """Stop servers and delete them from the registry.

    Asks for confirmation unless --force. In CI (or with --json) --force is
    required.
    """
    try:
        fleet = open_fleet(ctx, interactive=not as_json)
        results = fleet.remove(fleet.select(name, tag=tag, all_=all_), force=force)
    except (DevfleetError, ValueError) as e:
        fail(e, as_json)

    if as_json:
        emit_json([r.to_dict() for r in results])
    else:
        click.echo(format_action_results(results, "remove"))
    if any(not r.success and not r.cancelled for r in results):
        ctx.exit(1)
