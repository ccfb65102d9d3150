"""devfleet: stable ports and drift-aware restarts for local dev servers."""

__version__ = "0.3.0"
