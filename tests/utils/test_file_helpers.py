"""Tests for file helpers."""

from __future__ import annotations

import json
import os
import stat
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from devfleet.utils.file_helpers import atomic_write_json, get_app_dir


class TestGetAppDir:
    """Tests for get_app_dir."""

    def test_home_override(self, app_dir: Path) -> None:
        assert get_app_dir() == app_dir

    def test_falls_back_to_click(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.delenv("DEVFLEET_HOME")
        with patch("devfleet.utils.file_helpers.click.get_app_dir", return_value=str(tmp_path / "cfg")) as mock:
            assert get_app_dir() == tmp_path / "cfg"
        mock.assert_called_once_with("devfleet")


class TestAtomicWriteJson:
    """Tests for atomic_write_json."""

    def test_writes_and_creates_parent(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "data.json"
        atomic_write_json(path, {"a": 1})
        assert json.loads(path.read_text()) == {"a": 1}

    def test_replaces_existing(self, tmp_path: Path) -> None:
        path = tmp_path / "data.json"
        path.write_text("old")
        atomic_write_json(path, [1, 2])
        assert json.loads(path.read_text()) == [1, 2]

    def test_no_temp_file_left_on_failure(self, tmp_path: Path) -> None:
        """A serialization error leaves the original and no stray temp file."""
        path = tmp_path / "data.json"
        path.write_text('{"keep": true}')
        with pytest.raises(TypeError):
            atomic_write_json(path, {"bad": object()})
        assert json.loads(path.read_text()) == {"keep": True}
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_secure_permissions(self, tmp_path: Path) -> None:
        path = tmp_path / "private" / "config.json"
        atomic_write_json(path, {}, secure=True)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(path.parent).st_mode) == 0o700
