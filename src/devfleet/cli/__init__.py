"""Command-line interface for devfleet.

Provides commands for starting, inspecting and reconfiguring managed
dev servers.
"""

from .main import cli, main

__all__ = ["cli", "main"]
