"""Tests for the system logger and its formatters."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

import pytest

from devfleet.constants import APP_NAME
from devfleet.telemetry.system import ConsoleFormatter, configure_system_logger_file, get_system_logger
from devfleet.utils.logging.iso_formatter import ISO8601Formatter


def _record(msg, level: int = logging.WARNING) -> logging.LogRecord:
    return logging.LogRecord(f"{APP_NAME}.registry", level, __file__, 1, msg, None, None)


class TestConsoleFormatter:
    """Tests for ConsoleFormatter."""

    def test_dict_message_prefers_message(self) -> None:
        record = _record({"event": "registry_invalid", "message": "Registry unreadable"})
        assert ConsoleFormatter().format(record) == "WARNING: Registry unreadable"

    def test_dict_message_falls_back_to_event(self) -> None:
        assert ConsoleFormatter().format(_record({"event": "registry_invalid"})) == "WARNING: registry_invalid"

    def test_plain_message(self) -> None:
        assert ConsoleFormatter().format(_record("plain text", logging.ERROR)) == "ERROR: plain text"


class TestISO8601Formatter:
    """Tests for ISO8601Formatter."""

    def test_dict_message_is_merged(self) -> None:
        record = _record({"event": "port_reassigned", "details": {"port": 3001, "path": Path("/tmp/x")}})
        entry = json.loads(ISO8601Formatter().format(record))

        assert entry["level"] == "WARNING"
        assert entry["logger"] == f"{APP_NAME}.registry"
        assert entry["event"] == "port_reassigned"
        assert entry["details"] == {"port": 3001, "path": "/tmp/x"}
        assert entry["time"].endswith("Z")

    def test_carries_pid(self) -> None:
        entry = json.loads(ISO8601Formatter().format(_record({"event": "x"})))
        assert entry["pid"] == os.getpid()

    def test_exception_info(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(APP_NAME, logging.ERROR, __file__, 1, {"event": "x"}, None, sys.exc_info())
        entry = json.loads(ISO8601Formatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]

    def test_plain_message(self) -> None:
        entry = json.loads(ISO8601Formatter().format(_record("hello")))
        assert entry["message"] == "hello"


class TestSystemLogger:
    """Tests for the singleton logger."""

    def test_singleton(self) -> None:
        assert get_system_logger() is get_system_logger()
        assert get_system_logger().name == APP_NAME

    def test_console_level_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVFLEET_LOG_LEVEL", "debug")
        [handler] = get_system_logger().handlers
        assert handler.level == logging.DEBUG

    def test_file_handler_writes_warnings_only(self, tmp_path: Path) -> None:
        log_path = tmp_path / "logs" / "system.jsonl"
        configure_system_logger_file(log_path)
        child = logging.getLogger(f"{APP_NAME}.fleet")

        child.info({"event": "quiet"})
        child.warning({"event": "loud", "message": "something broke"})
        for handler in get_system_logger().handlers:
            handler.flush()

        events = [json.loads(line)["event"] for line in log_path.read_text().splitlines()]
        assert events == ["loud"]

    def test_file_handler_configured_once(self, tmp_path: Path) -> None:
        configure_system_logger_file(tmp_path / "a.jsonl")
        configure_system_logger_file(tmp_path / "b.jsonl")
        assert len(get_system_logger().handlers) == 2
        assert not (tmp_path / "b.jsonl").exists()
