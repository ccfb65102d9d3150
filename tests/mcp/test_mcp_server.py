"""Tests for the MCP tools."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastmcp import Client
from fastmcp.exceptions import ResourceError, ToolError

from devfleet.mcp.server import (
    create_server,
    devfleet_config,
    devfleet_info,
    devfleet_list,
    devfleet_logs,
    devfleet_refresh,
    devfleet_remove,
    devfleet_restart,
    devfleet_start,
    devfleet_stop,
    read_server_logs_resource,
    read_server_resource,
)

COMMAND = "serve --host {{hostname}} --port {{port}}"


@pytest.fixture(autouse=True)
def wired(project_dir: Path, supervisor, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(project_dir)
    monkeypatch.setattr("devfleet.fleet.DirectSupervisor", lambda: supervisor)


def _error(exc_info) -> dict:
    return json.loads(str(exc_info.value))


class TestServerTools:
    """Tests for the server lifecycle tools."""

    def test_start_and_reuse(self, project_dir: Path) -> None:
        first = devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        assert first["action"] == "started"
        assert first["server"]["cwd"] == str(project_dir)

        again = devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        assert again["action"] == "existing"
        assert again["server"]["port"] == first["server"]["port"]

    def test_start_missing_variable_points_at_config_tool(self, project_dir: Path) -> None:
        with pytest.raises(ToolError) as exc_info:
            devfleet_start(command="serve --token {{token}}", cwd=str(project_dir))
        error = _error(exc_info)
        assert error["error"] == "CONFIG_VALIDATION_FAILED"
        assert 'devfleet_config tool with add="token"' in error["message"]

    def test_stop_restart(self, project_dir: Path, supervisor) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        assert devfleet_stop(name="web") == [{"name": "web", "success": True, "status": "stopped"}]
        [restarted] = devfleet_restart(all=True)
        assert restarted["status"] == "online"

    def test_stop_force_and_list_stopped(self, project_dir: Path, supervisor) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        devfleet_start(command="serve api {{port}}", cwd=str(project_dir), name="api")

        [killed] = devfleet_stop(name="web", force=True)
        assert killed["status"] == "stopped"
        assert len(supervisor.call_names("kill")) == 1
        assert [s["name"] for s in devfleet_list(stopped=True)] == ["web"]
        assert [s["name"] for s in devfleet_list(running=True)] == ["api"]

    def test_stop_without_selector(self) -> None:
        with pytest.raises(ToolError, match="Either a server name"):
            devfleet_stop()

    def test_remove_requires_force(self, project_dir: Path) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        with pytest.raises(ToolError) as exc_info:
            devfleet_remove(name="web")
        assert _error(exc_info)["error"] == "INTERACTIVE_NOT_AVAILABLE"

        assert devfleet_remove(name="web", force=True) == [{"name": "web", "success": True}]
        assert devfleet_list() == []

    def test_list_and_info(self, project_dir: Path) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web", tags=["ui"])
        [listed] = devfleet_list(tag="ui")
        assert listed["name"] == "web"
        assert listed["hasDrift"] is False
        assert devfleet_list(command="uvicorn*") == []

        info = devfleet_info(name="web")
        assert info["status"] == "online"
        assert info["url"].startswith("http://0.0.0.0:")

    def test_info_unknown(self) -> None:
        with pytest.raises(ToolError) as exc_info:
            devfleet_info(name="ghost")
        assert _error(exc_info)["error"] == "SERVER_NOT_FOUND"


class TestConfigTool:
    """Tests for devfleet_config and refresh."""

    def test_show_and_get(self) -> None:
        assert devfleet_config(show=True)["hostname"] == "0.0.0.0"
        assert devfleet_config(get="portRange.min") == {"key": "portRange.min", "value": 3000}

    def test_get_unknown_key(self) -> None:
        with pytest.raises(ToolError, match="Unknown config key"):
            devfleet_config(get="colour")

    def test_set_requires_value(self) -> None:
        with pytest.raises(ToolError, match="'value' is required"):
            devfleet_config(set="hostname")

    def test_set_invalid(self) -> None:
        with pytest.raises(ToolError) as exc_info:
            devfleet_config(set="protocol", value="gopher")
        assert _error(exc_info)["error"] == "CONFIG_INVALID"

    def test_add_and_remove_variable(self) -> None:
        result = devfleet_config(add="db-url", value="postgres://localhost/dev")
        assert result == {"updated": "variables.db-url", "value": "postgres://localhost/dev", "refreshed": []}
        assert devfleet_config(remove="db-url") == {"variable": "db-url", "removed": True}

    def test_set_then_refresh(self, project_dir: Path, supervisor) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        devfleet_config(set="hostname", value="127.0.0.1")

        planned = devfleet_refresh(dry_run=True)
        assert planned["dryRun"] is True
        assert [s["name"] for s in planned["servers"]] == ["web"]

        applied = devfleet_refresh(name="web")
        assert applied["servers"][0]["driftDetails"][0]["configKey"] == "hostname"
        [proc] = supervisor.processes.values()
        assert proc["args"][:2] == ["--host", "127.0.0.1"]

    def test_set_under_auto_refreshes(self, project_dir: Path) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        devfleet_config(set="refreshOnChange", value="auto")
        result = devfleet_config(set="hostname", value="127.0.0.1")
        assert [s["name"] for s in result["refreshed"]] == ["web"]

    def test_reset(self) -> None:
        devfleet_config(set="hostname", value="127.0.0.1")
        devfleet_config(add="token", value="abc")

        result = devfleet_config(reset=True)

        assert result["reset"] is True
        assert result["config"]["hostname"] == "0.0.0.0"
        assert devfleet_config(show=True)["variables"] == {}


def _web_log(supervisor, text: str, *, error: bool = False) -> Path:
    [name] = supervisor.processes
    stdout_path, stderr_path = supervisor.log_paths(name)
    path = stderr_path if error else stdout_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestLogsTool:
    """Tests for devfleet_logs."""

    def test_tail(self, project_dir: Path, supervisor) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        _web_log(supervisor, "one\ntwo\nthree\n")

        result = devfleet_logs(name="web", lines=2)
        assert result["logs"] == "two\nthree"
        assert result["lineCount"] == 2
        assert result["logType"] == "output"

    def test_error_since_head(self, project_dir: Path, supervisor) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        _web_log(supervisor, "2020-01-01T00:00:00Z: stale\nTraceback\nValueError\n", error=True)

        result = devfleet_logs(name="web", error=True, since="2h", head=1)
        assert result["logType"] == "error"
        assert result["lines"] == ["Traceback"]

    def test_flush(self, project_dir: Path, supervisor) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        path = _web_log(supervisor, "hello\n")

        assert devfleet_logs(flush=True, all=True) == [{"name": "web", "success": True}]
        assert path.read_text() == ""

    def test_flush_requires_target(self) -> None:
        with pytest.raises(ToolError, match="'name' is required unless all=true"):
            devfleet_logs(flush=True)

    def test_requires_name(self) -> None:
        with pytest.raises(ToolError, match="'name' is required"):
            devfleet_logs()

    def test_invalid_since(self, project_dir: Path) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        with pytest.raises(ToolError) as exc_info:
            devfleet_logs(name="web", since="soon")
        assert _error(exc_info)["error"] == "COMMAND_INVALID"


class TestResources:
    """Tests for the server and log resources."""

    def test_server_details(self, project_dir: Path) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        details = json.loads(read_server_resource("web"))
        assert details["name"] == "web"
        assert details["status"] == "online"

    def test_logs_placeholder_when_empty(self, project_dir: Path) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        assert read_server_logs_resource("web") == "(no logs available)"

    def test_logs_are_capped(self, project_dir: Path, supervisor) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        _web_log(supervisor, "".join(f"line {i}\n" for i in range(150)))
        lines = read_server_logs_resource("web").splitlines()
        assert len(lines) == 100
        assert lines[-1] == "line 149"

    @pytest.mark.parametrize("reader", [read_server_resource, read_server_logs_resource])
    def test_unknown_server(self, reader) -> None:
        with pytest.raises(ResourceError, match='Server "ghost" not found'):
            reader("ghost")



class TestServer:
    async def test_registers_every_tool(self) -> None:
        async with Client(create_server()) as client:
            tools = await client.list_tools()
        assert {t.name for t in tools} == {
            "devfleet_start",
            "devfleet_stop",
            "devfleet_restart",
            "devfleet_refresh",
            "devfleet_remove",
            "devfleet_list",
            "devfleet_info",
            "devfleet_logs",
            "devfleet_config",
        }

    async def test_reads_resources(self, project_dir: Path, supervisor) -> None:
        devfleet_start(command=COMMAND, cwd=str(project_dir), name="web")
        _web_log(supervisor, "listening\n")

        async with Client(create_server()) as client:
            templates = await client.list_resource_templates()
            details = await client.read_resource("devfleet://servers/web")
            logs = await client.read_resource("devfleet://servers/web/logs")

        assert {t.uriTemplate for t in templates} == {
            "devfleet://servers/{name}",
            "devfleet://servers/{name}/logs",
        }
        assert json.loads(details[0].text)["name"] == "web"
        assert logs[0].text == "listening"
