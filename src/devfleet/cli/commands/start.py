"""Start command for devfleet CLI.

Starts a dev server, or reuses / restarts / refreshes the one already
registered for the same identity.
"""

from __future__ import annotations

__all__ = ["start"]

import shlex

import click

from devfleet.cli.context import open_fleet
from devfleet.cli.output import emit_json, fail, format_start_result
from devfleet.core.reconciler import StartRequest
from devfleet.core.templates import parse_env_strings
from devfleet.exceptions import DevfleetError


@click.command(context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--name", "-n", help="Server name (default: derived from command and env)")
@click.option("--port", "-p", type=int, help="Preferred port (must be within the configured range)")
@click.option("--protocol", type=click.Choice(["http", "https"]), help="Protocol for {{url}}")
@click.option(
    "--env", "-e", "env_items", multiple=True, metavar="KEY=VALUE", help="Environment variable (templates allowed)"
)
@click.option("--tag", "-t", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--description", "-d", help="Server description")
@click.option("--rename-from", "rename_from", metavar="OLD_NAME", help="Rename an existing server in this directory")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def start(
    ctx: click.Context,
    command: tuple[str, ...],
    name: str | None,
    port: int | None,
    protocol: str | None,
    env_items: tuple[str, ...],
    tags: tuple[str, ...],
    description: str | None,
    rename_from: str | None,
    as_json: bool,
) -> None:
    """Start a dev server.

    \b
    The command may use template variables:
      {{port}} {{hostname}} {{url}} {{https-cert}} {{https-key}}
      {{my-var}}              user variable (devfleet config add my-var VALUE)
      {{$ "api" "url"}}       another server's property

    \b
    Examples:
      devfleet start -- npm run dev -- --port {{port}}
      devfleet start -n api -e API_URL={{url}} -- python -m http.server {{port}}
    """
    try:
        env = parse_env_strings(env_items)
    except ValueError as e:
        fail(e, as_json)

    try:
        fleet = open_fleet(ctx, interactive=not as_json)
        request = StartRequest(
            command=shlex.join(command),
            cwd=fleet.cwd,
            name=name,
            port=port,
            protocol=protocol,  # type: ignore[arg-type]
            env=env,
            tags=tags,
            description=description,
            previous_name=rename_from,
        )
        result = fleet.start(request)
    except DevfleetError as e:
        fail(e, as_json)

    if as_json:
        emit_json(result.to_dict())
    else:
        click.echo(format_start_result(result))
