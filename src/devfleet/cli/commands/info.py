"""Info command for devfleet CLI."""

from __future__ import annotations

__all__ = ["info"]

import click

from devfleet.cli.context import open_fleet
from devfleet.cli.output import emit_json, fail, format_server_info
from devfleet.exceptions import DevfleetError


@click.command()
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def info(ctx: click.Context, name: str, as_json: bool) -> None:
    """Show details for one server."""
    try:
        server = open_fleet(ctx, interactive=False).info(name)
    except DevfleetError as e:
        fail(e, as_json)

    if as_json:
        emit_json(server.to_dict())
    else:
        click.echo(format_server_info(server))
