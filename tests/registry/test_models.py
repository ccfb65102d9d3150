"""Tests for registry models."""

from __future__ import annotations

from devfleet.registry.models import ServerEntry, ServerFilter, supervisor_name_for


def _entry(**overrides) -> ServerEntry:
    data = {
        "id": "1",
        "name": "web",
        "command": "npm run storybook",
        "resolvedCommand": "npm run storybook",
        "cwd": "/app",
        "port": 6006,
        "hostname": "localhost",
        "tags": ["ui"],
    }
    data.update(overrides)
    return ServerEntry.model_validate(data)


class TestServerEntry:
    """Tests for ServerEntry."""

    def test_url(self) -> None:
        assert _entry().url == "http://localhost:6006"
        assert _entry(protocol="https").url == "https://localhost:6006"

    def test_to_dict_omits_none(self) -> None:
        data = _entry().to_dict()
        assert "description" not in data
        assert "envTemplate" not in data
        assert data["resolvedCommand"] == "npm run storybook"

    def test_unknown_keys_ignored(self) -> None:
        """Files written by newer versions still load."""
        assert _entry(futureField=True).name == "web"

    def test_supervisor_name_for(self) -> None:
        assert supervisor_name_for("web") == "devfleet-web"


class TestServerFilter:
    """Tests for ServerFilter."""

    def test_empty_matches_everything(self) -> None:
        assert ServerFilter().matches(_entry())

    def test_conjunction(self) -> None:
        entry = _entry()
        assert ServerFilter(name="web", tag="ui", cwd="/app").matches(entry)
        assert not ServerFilter(name="web", tag="api").matches(entry)

    def test_command_glob(self) -> None:
        entry = _entry()
        assert ServerFilter(command="*storybook*").matches(entry)
        assert not ServerFilter(command="uvicorn*").matches(entry)
