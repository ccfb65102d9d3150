"""The devfleet package logger.

Every module logs through a child of the ``devfleet`` logger
(``devfleet.registry``, ``devfleet.core.ports``, ...), so the two handlers
attached here see everything:

- stderr: WARNING and up, human readable. DEVFLEET_LOG_LEVEL lowers it
  (INFO shows port reassignments and refreshes, DEBUG shows CI detection).
- system.jsonl: WARNING and up as JSONL, attached by
  configure_system_logger_file() once the app directory is known.

Command output goes through click.echo, never through this logger.
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "configure_system_logger_file",
    "get_system_logger",
]

import logging
import os
import sys
from pathlib import Path

from devfleet.constants import APP_NAME
from devfleet.utils.logging.iso_formatter import ISO8601Formatter

_LOG_LEVEL_ENV_VAR = "DEVFLEET_LOG_LEVEL"


class ConsoleFormatter(logging.Formatter):
    """Renders records as "LEVEL: text" for stderr.

    For structured records the text is the "message" field, or the event
    name when a record has no message.
    """

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            text = record.msg.get("message") or record.msg.get("event", "")
        else:
            text = record.getMessage()
        return f"{record.levelname}: {text}"


_system_logger: logging.Logger | None = None
_file_handler_configured: bool = False


def _console_level() -> int:
    level = logging.getLevelName(os.environ.get(_LOG_LEVEL_ENV_VAR, "WARNING").upper())
    # getLevelName returns "Level X" for unknown names
    return level if isinstance(level, int) else logging.WARNING


def get_system_logger() -> logging.Logger:
    """Return the ``devfleet`` logger, creating its stderr handler on first use.

    The stderr level is read from DEVFLEET_LOG_LEVEL at creation time.

    Example:
        >>> logger = get_system_logger()
        >>> logger.warning({"event": "registry_invalid", "message": "..."})
    """
    global _system_logger

    if _system_logger is not None:
        return _system_logger

    logger = logging.getLogger(APP_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(_console_level())
    console.setFormatter(ConsoleFormatter())
    logger.addHandler(console)

    _system_logger = logger
    return logger


def configure_system_logger_file(log_path: Path) -> None:
    """Attach the system.jsonl handler (WARNING and up).

    Only the first successful call has an effect. If the log directory
    cannot be created the logger keeps working on stderr alone.

    Args:
        log_path: Destination file, normally config.get_system_log_path().
    """
    global _file_handler_configured

    if _file_handler_configured:
        return

    logger = get_system_logger()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if sys.platform != "win32":
            try:
                log_path.parent.chmod(0o700)
            except OSError:
                pass  # Not every filesystem allows it
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError:
        return

    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(ISO8601Formatter())
    logger.addHandler(file_handler)
    _file_handler_configured = True
