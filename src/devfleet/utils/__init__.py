"""Shared utilities: file helpers, CI detection, logging formatters."""
