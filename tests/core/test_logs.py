"""Tests for log reading, time filters and following."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from devfleet.core.logs import (
    filter_lines_since,
    follow_log,
    parse_log_timestamp,
    parse_time_filter,
    read_log,
    truncate_log,
)
from devfleet.exceptions import CommandInvalidError

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def log_file(tmp_path: Path) -> Path:
    path = tmp_path / "web-out.log"
    path.write_text("".join(f"line {i}\n" for i in range(1, 6)))
    return path


class TestParseTimeFilter:
    """Tests for --since values."""

    @pytest.mark.parametrize(
        "text, delta",
        [
            ("30s", timedelta(seconds=30)),
            ("15m", timedelta(minutes=15)),
            ("2h", timedelta(hours=2)),
            ("1d", timedelta(days=1)),
            ("1w", timedelta(weeks=1)),
        ],
    )
    def test_durations(self, text: str, delta: timedelta) -> None:
        assert parse_time_filter(text, now=NOW) == NOW - delta

    def test_iso_datetime_with_z(self) -> None:
        assert parse_time_filter("2024-01-15T10:30:00Z") == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_iso_date_is_local_midnight(self) -> None:
        parsed = parse_time_filter("2024-01-15")
        assert parsed.tzinfo is not None
        assert (parsed.year, parsed.month, parsed.day, parsed.hour) == (2024, 1, 15, 0)

    @pytest.mark.parametrize("text", ["", "yesterday", "10x", "-1h"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(CommandInvalidError, match="Invalid time format"):
            parse_time_filter(text)


class TestTimestamps:
    """Tests for line timestamps and the since filter."""

    def test_leading_timestamp(self) -> None:
        stamp = parse_log_timestamp("2025-01-11T09:51:49.598Z: listening on 3000")
        assert stamp == datetime(2025, 1, 11, 9, 51, 49, 598000, tzinfo=timezone.utc)

    def test_space_separated_with_offset(self) -> None:
        stamp = parse_log_timestamp("2025-01-11 09:51:49+02:00 GET /")
        assert stamp == datetime(2025, 1, 11, 7, 51, 49, tzinfo=timezone.utc)

    def test_no_timestamp(self) -> None:
        assert parse_log_timestamp("listening on 3000") is None
        assert parse_log_timestamp("at 2025-01-11T09:51:49Z") is None

    def test_undated_lines_are_kept(self) -> None:
        lines = [
            "2024-06-01T10:00:00Z: before",
            "  at stack frame",
            "2024-06-01T11:30:00Z: after",
        ]
        since = NOW - timedelta(hours=1)
        assert filter_lines_since(lines, since) == lines[1:]


class TestReadLog:
    """Tests for read_log and truncate_log."""

    def test_tail(self, log_file: Path) -> None:
        assert read_log(log_file, lines=2) == ["line 4", "line 5"]

    def test_head_wins_over_lines(self, log_file: Path) -> None:
        assert read_log(log_file, lines=1, head=2) == ["line 1", "line 2"]

    def test_zero_lines(self, log_file: Path) -> None:
        assert read_log(log_file, lines=0) == []

    def test_blank_lines_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "out.log"
        path.write_text("a\n\n  \nb\n")
        assert read_log(path) == ["a", "b"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            read_log(tmp_path / "nope.log")

    def test_truncate(self, log_file: Path, tmp_path: Path) -> None:
        assert truncate_log(log_file)
        assert log_file.read_text() == ""
        assert not truncate_log(tmp_path / "nope.log")


class ScriptedSleep:
    """Sleep that runs one scripted file action per call, then stops the loop."""

    def __init__(self, *actions) -> None:
        self.actions = list(actions)

    def __call__(self, seconds: float) -> None:
        if self.actions:
            self.actions.pop(0)()

    def keep_going(self) -> bool:
        return bool(self.actions)


def _append(path: Path, text: str):
    def action() -> None:
        with path.open("a") as f:
            f.write(text)

    return action


class TestFollowLog:
    """Tests for follow_log."""

    def test_emits_only_new_lines(self, log_file: Path) -> None:
        emitted: list[str] = []
        sleep = ScriptedSleep(_append(log_file, "line 6\n"), _append(log_file, "line 7\n"), lambda: None)

        follow_log(log_file, emitted.append, keep_going=sleep.keep_going, sleep=sleep)

        assert emitted == ["line 6", "line 7"]

    def test_partial_line_waits_for_newline(self, log_file: Path) -> None:
        emitted: list[str] = []
        sleep = ScriptedSleep(_append(log_file, "hal"), _append(log_file, "f done\n"), lambda: None)

        follow_log(log_file, emitted.append, keep_going=sleep.keep_going, sleep=sleep)

        assert emitted == ["half done"]

    def test_restarts_after_truncation(self, log_file: Path) -> None:
        emitted: list[str] = []

        def flush_and_write() -> None:
            log_file.write_text("fresh\n")

        sleep = ScriptedSleep(flush_and_write, lambda: None)

        follow_log(log_file, emitted.append, keep_going=sleep.keep_going, sleep=sleep)

        assert emitted == ["fresh"]

    def test_since_applies_to_new_lines(self, log_file: Path) -> None:
        emitted: list[str] = []
        sleep = ScriptedSleep(
            _append(log_file, "2020-01-01T00:00:00Z: old\n2099-01-01T00:00:00Z: new\n"),
            lambda: None,
        )

        follow_log(log_file, emitted.append, since=NOW, keep_going=sleep.keep_going, sleep=sleep)

        assert emitted == ["2099-01-01T00:00:00Z: new"]
