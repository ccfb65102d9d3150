"""Reading, filtering and following server log files.

Server logs are the raw stdout/stderr of the child process. Lines that start
with an ISO 8601 timestamp ("2025-01-11T09:51:49.598Z: listening",
"2025-01-11 09:51:49 GET /") can be filtered by time. Lines without one are
always kept, so a --since filter never hides output it cannot date.
"""

from __future__ import annotations

__all__ = [
    "filter_lines_since",
    "follow_log",
    "parse_log_timestamp",
    "parse_time_filter",
    "read_log",
    "truncate_log",
]

import os
import re
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable

from devfleet.constants import DEFAULT_LOG_LINES, LOG_FOLLOW_POLL_SECONDS
from devfleet.exceptions import CommandInvalidError

_DURATION_RE = re.compile(r"^(\d+)([smhdw])$")
_DURATION_UNITS: dict[str, timedelta] = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}
_LEADING_TIMESTAMP_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)")


def _parse_iso(value: str) -> datetime | None:
    """ISO 8601 date or datetime as an aware datetime (naive means local time)."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.astimezone()


def parse_time_filter(text: str, *, now: datetime | None = None) -> datetime:
    """Parse a --since value.

    Accepts a duration back from now (30s, 15m, 2h, 1d, 1w) or an ISO date
    or datetime (2024-01-15, 2024-01-15T10:30:00Z).

    Raises:
        CommandInvalidError: If the value is neither.
    """
    value = text.strip()
    match = _DURATION_RE.match(value)
    if match:
        now = now or datetime.now(timezone.utc)
        return now - int(match.group(1)) * _DURATION_UNITS[match.group(2)]

    parsed = _parse_iso(value)
    if parsed is None:
        raise CommandInvalidError(
            f"Invalid time format: {text!r}. Use a duration (1h, 30m) or an ISO date (2024-01-15)",
            value=text,
        )
    return parsed


def parse_log_timestamp(line: str) -> datetime | None:
    """Timestamp at the start of a log line, if there is one."""
    match = _LEADING_TIMESTAMP_RE.match(line)
    return _parse_iso(match.group(1)) if match else None


def _not_before(line: str, since: datetime) -> bool:
    timestamp = parse_log_timestamp(line)
    return timestamp is None or timestamp >= since


def filter_lines_since(lines: Iterable[str], since: datetime) -> list[str]:
    """Drop lines timestamped before since. Undated lines are kept."""
    return [line for line in lines if _not_before(line, since)]


def read_log(
    path: Path,
    *,
    lines: int = DEFAULT_LOG_LINES,
    head: int | None = None,
    since: datetime | None = None,
) -> list[str]:
    """Non-empty lines of a log file: the last `lines`, or the first `head`.

    Raises:
        FileNotFoundError: If the log file does not exist.
    """
    with path.open(encoding="utf-8", errors="replace") as f:
        entries = [line.rstrip("\n") for line in f if line.strip()]
    if since is not None:
        entries = filter_lines_since(entries, since)
    if head is not None:
        return entries[:head]
    return entries[-lines:] if lines > 0 else []


def truncate_log(path: Path) -> bool:
    """Empty a log file in place. Returns False if it does not exist.

    Supervised children append with O_APPEND, so they keep writing at the
    new end of file.
    """
    try:
        with path.open("r+b") as f:
            f.truncate(0)
    except FileNotFoundError:
        return False
    return True


def follow_log(
    path: Path,
    emit: Callable[[str], None],
    *,
    since: datetime | None = None,
    keep_going: Callable[[], bool] = lambda: True,
    poll_interval: float = LOG_FOLLOW_POLL_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Emit lines appended to path until keep_going() returns False.

    Starts at the current end of file. When the file shrinks (a flush) it is
    read again from the top. KeyboardInterrupt propagates to the caller.

    Raises:
        FileNotFoundError: If the log file does not exist.
    """
    pending = ""
    with path.open(encoding="utf-8", errors="replace") as f:
        f.seek(0, os.SEEK_END)
        while keep_going():
            chunk = f.readline()
            if chunk:
                pending += chunk
                if not pending.endswith("\n"):
                    continue  # Partial line, wait for the rest
                line, pending = pending.rstrip("\n"), ""
                if line.strip() and (since is None or _not_before(line, since)):
                    emit(line)
                continue

            try:
                truncated = path.stat().st_size < f.tell()
            except FileNotFoundError:
                truncated = False
            if truncated:
                f.seek(0)
                pending = ""
                continue
            sleep(poll_interval)
