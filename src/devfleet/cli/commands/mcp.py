"""MCP command for devfleet CLI."""

from __future__ import annotations

__all__ = ["mcp"]

import click

from devfleet.telemetry.system import configure_system_logger_file, get_system_logger


@click.command()
def mcp() -> None:
    """Serve devfleet tools to an MCP client over stdio.

    \b
    Example client configuration:
      {"command": "devfleet", "args": ["mcp"]}
    """
    from devfleet.config import get_system_log_path
    from devfleet.mcp import run_stdio

    get_system_logger()
    configure_system_logger_file(get_system_log_path())
    run_stdio()
