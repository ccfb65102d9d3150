"""Tests for template analysis and rendering."""

from __future__ import annotations

import pytest

from devfleet.config import GlobalConfig
from devfleet.core.templates import (
    TemplateContext,
    build_template_variables,
    extract_variables,
    find_missing_variables,
    format_missing_variables_error,
    format_missing_variables_for_mcp,
    parse_env_strings,
    render_env_templates,
    render_template,
    uses_server_lookup,
    uses_url_variable,
)
from devfleet.exceptions import TemplateMissingVariableError
from devfleet.registry.models import ServerEntry


def _entry(name: str, cwd: str, port: int) -> ServerEntry:
    return ServerEntry(
        id=f"id-{name}",
        name=name,
        command="cmd",
        resolved_command="cmd",
        cwd=cwd,
        port=port,
        hostname="localhost",
    )


@pytest.fixture
def context() -> TemplateContext:
    servers = {
        ("/app", "api"): _entry("api", "/app", 4100),
        ("/other", "db"): _entry("db", "/other", 5432),
    }
    return TemplateContext(cwd="/app", lookup_server=lambda name, cwd: servers.get((cwd, name)))


class TestRenderTemplate:
    """Tests for render_template."""

    def test_missing_variable_fails(self) -> None:
        """An unresolved placeholder raises instead of rendering partially."""
        with pytest.raises(TemplateMissingVariableError) as exc_info:
            render_template("start --port {{port}}", {})
        assert exc_info.value.variable == "port"

    def test_renders_exactly(self) -> None:
        """Substitution produces the exact string."""
        assert render_template("start --port {{port}}", {"port": 3000}) == "start --port 3000"

    def test_whitespace_inside_braces(self) -> None:
        """{{ port }} is the same placeholder as {{port}}."""
        assert render_template("{{ port }}", {"port": 1}) == "1"

    def test_case_sensitive(self) -> None:
        """{{PORT}} does not match port."""
        with pytest.raises(TemplateMissingVariableError):
            render_template("{{PORT}}", {"port": 1})

    def test_no_partial_output_on_second_failure(self) -> None:
        """A later missing variable still fails the whole render."""
        with pytest.raises(TemplateMissingVariableError) as exc_info:
            render_template("{{port}} {{hostname}}", {"port": 1})
        assert exc_info.value.variable == "hostname"

    def test_malformed_placeholder(self) -> None:
        """Placeholders that are not names or lookups are rejected."""
        with pytest.raises(TemplateMissingVariableError):
            render_template("{{not valid!}}", {})

    def test_text_without_placeholders(self) -> None:
        """Plain text passes through."""
        assert render_template("npm start", {}) == "npm start"


class TestServerLookup:
    """Tests for {{$ ...}} cross-server placeholders."""

    def test_positional_same_cwd(self, context: TemplateContext) -> None:
        """{{$ "api" "port"}} resolves against the context cwd."""
        assert render_template('--api {{$ "api" "port"}}', {}, context) == "--api 4100"

    def test_named_args_other_cwd(self, context: TemplateContext) -> None:
        """service/prop/cwd named arguments reach another directory."""
        assert render_template('{{$ service="db" prop="port" cwd="/other"}}', {}, context) == "5432"

    def test_url_property(self, context: TemplateContext) -> None:
        """url is composed from protocol, hostname and port."""
        assert render_template('{{$ "api" "url"}}', {}, context) == "http://localhost:4100"

    def test_unknown_server_fails(self, context: TemplateContext) -> None:
        """Referencing an unregistered server fails."""
        with pytest.raises(TemplateMissingVariableError) as exc_info:
            render_template('{{$ "nope" "port"}}', {}, context)
        assert exc_info.value.details["server_name"] == "nope"

    def test_without_context_fails(self) -> None:
        """Lookups need a registry-backed context."""
        with pytest.raises(TemplateMissingVariableError):
            render_template('{{$ "api" "port"}}', {})

    def test_detection(self) -> None:
        """uses_server_lookup spots lookups; extract_variables ignores them."""
        template = '{{$ "api" "port"}} {{port}}'
        assert uses_server_lookup(template)
        assert extract_variables(template) == ["port"]


class TestAnalysis:
    """Tests for variable extraction and missing-variable reports."""

    def test_extract_ordered_unique(self) -> None:
        """Variables come back in first-use order without duplicates."""
        assert extract_variables("{{port}} {{hostname}} {{port}} {{my-var}}") == ["port", "hostname", "my-var"]

    def test_uses_url_variable(self) -> None:
        assert uses_url_variable("--base {{url}}")
        assert not uses_url_variable("--port {{port}}")

    def test_missing_builtin_is_configurable(self) -> None:
        """https-cert maps to the httpsCert config key."""
        [missing] = find_missing_variables("--cert {{https-cert}} --port {{port}}", {"port": 1})
        assert missing.template_var == "https-cert"
        assert missing.config_key == "httpsCert"
        assert missing.configurable
        assert not missing.is_custom_var

    def test_missing_custom_variable(self) -> None:
        """Unknown names are custom variables, configurable via config add."""
        [missing] = find_missing_variables("{{api-key}}", {})
        assert missing.is_custom_var
        assert missing.configurable
        assert missing.config_key is None

    def test_empty_value_counts_as_missing(self) -> None:
        assert [m.template_var for m in find_missing_variables("{{x}}", {"x": ""})] == ["x"]

    def test_cli_error_hints(self) -> None:
        """CLI hints name the config command for each kind of variable."""
        missing = find_missing_variables("{{https-key}} {{token}}", {})
        message = format_missing_variables_error(missing)
        assert "devfleet config set httpsKey <value>" in message
        assert "devfleet config add token <value>" in message

    def test_mcp_error_hints(self) -> None:
        """MCP hints name the devfleet_config tool arguments."""
        message = format_missing_variables_for_mcp(find_missing_variables("{{token}}", {}))
        assert 'devfleet_config tool with add="token"' in message

    def test_no_missing_formats_empty(self) -> None:
        assert format_missing_variables_error([]) == ""


class TestBuildTemplateVariables:
    """Tests for build_template_variables."""

    def test_builtins(self) -> None:
        """port, hostname and url come from config and the port."""
        config = GlobalConfig(hostname="localhost", protocol="https")
        variables = build_template_variables(config, 4000)
        assert variables["port"] == 4000
        assert variables["hostname"] == "localhost"
        assert variables["url"] == "https://localhost:4000"
        assert "https-cert" not in variables

    def test_builtins_win_over_user_variables(self) -> None:
        """A user variable named port cannot shadow the real port."""
        config = GlobalConfig(variables={"port": "1", "api": "x"})
        variables = build_template_variables(config, 4000)
        assert variables["port"] == 4000
        assert variables["api"] == "x"

    def test_overrides(self) -> None:
        """Explicit hostname/protocol override config."""
        variables = build_template_variables(GlobalConfig(), 4000, hostname="127.0.0.1", protocol="https")
        assert variables["url"] == "https://127.0.0.1:4000"

    def test_cert_paths_when_set(self) -> None:
        config = GlobalConfig(https_cert="/c.pem", https_key="/k.pem")
        variables = build_template_variables(config, 1)
        assert variables["https-cert"] == "/c.pem"
        assert variables["https-key"] == "/k.pem"


class TestEnvTemplates:
    """Tests for env rendering and parsing."""

    def test_renders_values_not_keys(self) -> None:
        """Keys are kept literally."""
        env = {"{{port}}": "{{port}}"}
        assert render_env_templates(env, {"port": 1}) == {"{{port}}": "1"}

    def test_parse_env_strings(self) -> None:
        """KEY=VALUE splits on the first '='."""
        assert parse_env_strings(["A=1", "B=x=y", "C="]) == {"A": "1", "B": "x=y", "C": ""}

    @pytest.mark.parametrize("item", ["NOVALUE", "=value"])
    def test_parse_env_strings_invalid(self, item: str) -> None:
        with pytest.raises(ValueError):
            parse_env_strings([item])
