"""MCP surface: fleet actions as tools for coding agents."""

from .server import create_server, run_stdio

__all__ = ["create_server", "run_stdio"]
