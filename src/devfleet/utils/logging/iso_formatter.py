"""JSONL formatting for the system log file.

Several devfleet invocations may append to the same system.jsonl at once,
so every line carries the writing process id next to a UTC timestamp.
"""

from __future__ import annotations

__all__ = ["ISO8601Formatter", "iso_timestamp"]

import json
import logging
from datetime import datetime, timezone


def iso_timestamp(created: float) -> str:
    """Render a record's creation time as YYYY-MM-DDTHH:MM:SS.sssZ (UTC)."""
    return datetime.fromtimestamp(created, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ISO8601Formatter(logging.Formatter):
    """One JSON object per record: time, level, logger, pid, then the payload.

    Dict messages (the structured {"event": ..., "message": ...} convention)
    are merged into the line. Anything else lands under "message". When the
    record carries exception info, its traceback is stored under "exception".

    Example line:
        {"time": "2025-12-04T10:48:37.123Z", "level": "WARNING", "logger": "devfleet.registry",
         "pid": 4242, "event": "registry_invalid", "message": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = record.msg if isinstance(record.msg, dict) else {"message": record.getMessage()}
        entry = {
            "time": iso_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "pid": record.process,
            **payload,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        # Paths and exceptions in details are not JSON-native
        return json.dumps(entry, default=str)
