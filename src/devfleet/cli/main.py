"""Main CLI entry point for devfleet.

Defines the CLI group and registers all subcommands.

Commands:
    start    - Start a server (or reuse/restart/refresh the registered one)
    stop     - Stop servers
    restart  - Restart servers
    refresh  - Apply config changes to drifted servers
    remove   - Stop and unregister servers
    list     - List servers with live status
    info     - Show one server
    logs     - Show, follow or flush server logs
    config   - Configuration management (show, set, add, remove, reset, path)
    mcp      - Serve tools over MCP (stdio)

Subcommand help:
    devfleet COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli"]

import sys

import click

from devfleet import __version__

from .commands.config import config
from .commands.info import info
from .commands.list_cmd import list_servers
from .commands.logs import logs
from .commands.mcp import mcp
from .commands.refresh import refresh
from .commands.remove import remove
from .commands.restart import restart
from .commands.start import start
from .commands.stop import stop


class ReorderedGroup(click.Group):
    """Group that lists commands in workflow order and appends examples."""

    def list_commands(self, ctx: click.Context) -> list[str]:
        order = ["start", "stop", "restart", "refresh", "remove", "list", "info", "logs", "config", "mcp"]
        known = [name for name in order if name in self.commands]
        return known + sorted(set(self.commands) - set(known))

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Add extra help after commands section."""
        formatter.write(
            """
Quick Start:
  devfleet start -- npm run dev -- --port {{port}}
  devfleet start -n api -e DATABASE_URL={{db-url}} -- uvicorn app:app --port {{port}}
  devfleet list
  devfleet info api
  devfleet logs api --follow

Config Changes:
  devfleet config set portRange.min 4000     Dependent servers refresh per refreshOnChange
  devfleet config add db-url postgres://...  Define {{db-url}}
  devfleet refresh --dry-run                 Show servers whose config drifted

CI Mode (--ci, or detected from CI environment variables):
  Sequential port allocation, no prompts, remove requires --force
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option("--ci", "ci", is_flag=True, help="Force CI mode (sequential ports, no prompts)")
@click.option("--no-ci", "no_ci", is_flag=True, help="Ignore CI environment detection")
@click.pass_context
def cli(ctx: click.Context, version: bool, ci: bool, no_ci: bool) -> None:
    """devfleet: stable ports and drift-aware restarts for local dev servers."""
    if version:
        click.echo(f"devfleet {__version__}")
        sys.exit(0)
    ctx.obj = {"ci": ci, "no_ci": no_ci}
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(config)
cli.add_command(info)
cli.add_command(list_servers)
cli.add_command(logs)
cli.add_command(mcp)
cli.add_command(refresh)
cli.add_command(remove)
cli.add_command(restart)
cli.add_command(start)
cli.add_command(stop)


def main() -> None:
    """CLI entry point."""
    cli()
