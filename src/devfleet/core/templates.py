"""Template rendering for server commands and environments.

Placeholders use double braces:

    {{port}} {{hostname}} {{url}} {{https-cert}} {{https-key}}
    {{my-variable}}                      user-defined (config "variables")
    {{$ "api" "port"}}                   another server's property, same cwd
    {{$ service="api" prop="url" cwd="/srv/api"}}

Built-in variables win over user-defined ones with the same name. Rendering
is all-or-nothing: the first unresolvable placeholder raises
TemplateMissingVariableError and no partial result is produced.
"""

from __future__ import annotations

__all__ = [
    "TEMPLATE_VAR_PROMPTS",
    "TEMPLATE_VAR_TO_CONFIG_KEY",
    "MissingVariable",
    "TemplateContext",
    "TemplateVariables",
    "build_template_variables",
    "extract_variables",
    "find_missing_variables",
    "format_missing_variables_error",
    "format_missing_variables_for_mcp",
    "parse_env_strings",
    "render_env_templates",
    "render_template",
    "uses_server_lookup",
    "uses_url_variable",
]

import re
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping, Union

from devfleet.config import GlobalConfig
from devfleet.constants import APP_NAME
from devfleet.exceptions import TemplateMissingVariableError

if TYPE_CHECKING:
    from devfleet.registry.models import ServerEntry
    from devfleet.registry.store import ServerRegistry

TemplateVariables = Mapping[str, Union[str, int, None]]

# Any {{...}} placeholder; no nesting.
_PLACEHOLDER_RE = re.compile(r"\{\{(.*?)\}\}")
# Simple variable placeholder.
_VARIABLE_RE = re.compile(r"\{\{\s*([\w-]+)\s*\}\}")
_VARIABLE_NAME_RE = re.compile(r"^[\w-]+$")
_SERVER_LOOKUP_RE = re.compile(r"\{\{\s*\$\s+")

# Template variable -> config key. None means auto-generated, not configurable.
TEMPLATE_VAR_TO_CONFIG_KEY: dict[str, str | None] = {
    "port": None,
    "hostname": "hostname",
    "url": None,
    "https-cert": "httpsCert",
    "https-key": "httpsKey",
}

TEMPLATE_VAR_PROMPTS: dict[str, str] = {
    "hostname": "Server hostname (e.g., localhost, 0.0.0.0):",
    "https-cert": "Path to HTTPS certificate file:",
    "https-key": "Path to HTTPS private key file:",
}


# =============================================================================
# Context
# =============================================================================


@dataclass(frozen=True, slots=True)
class TemplateContext:
    """Resolution context for cross-server placeholders.

    Attributes:
        cwd: Default directory for {{$ ...}} lookups.
        lookup_server: (name, cwd) -> entry or None.
    """

    cwd: str | None = None
    lookup_server: Callable[[str, str], "ServerEntry | None"] | None = None

    @classmethod
    def for_registry(cls, registry: "ServerRegistry", cwd: str) -> "TemplateContext":
        """Build a context that resolves {{$ ...}} against the server registry."""
        return cls(cwd=cwd, lookup_server=lambda name, where: registry.find_by_identity(where, name))


# =============================================================================
# Analysis
# =============================================================================


def extract_variables(template: str) -> list[str]:
    """Return unique simple variable names in order of first use.

    {{$ ...}} lookups are not included.
    """
    seen: dict[str, None] = {}
    for match in _VARIABLE_RE.finditer(template):
        seen.setdefault(match.group(1), None)
    return list(seen)


def uses_server_lookup(template: str) -> bool:
    """True if the template contains a {{$ ...}} lookup."""
    return bool(_SERVER_LOOKUP_RE.search(template))


def uses_url_variable(template: str) -> bool:
    """True if the template uses {{url}} (and so depends on protocol)."""
    return "url" in extract_variables(template)


@dataclass(frozen=True, slots=True)
class MissingVariable:
    """A template variable that is used but has no value.

    Attributes:
        template_var: Placeholder name (e.g. "https-cert").
        config_key: Config key that supplies it (e.g. "httpsCert"), if any.
        prompt: Human-readable prompt for interactive filling.
        configurable: Whether a config write can supply it.
        is_custom_var: True for user-defined variables.
    """

    template_var: str
    config_key: str | None
    prompt: str
    configurable: bool
    is_custom_var: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "templateVar": self.template_var,
            "configKey": self.config_key,
            "prompt": self.prompt,
            "configurable": self.configurable,
            "isCustomVar": self.is_custom_var,
        }


def find_missing_variables(template: str, variables: TemplateVariables) -> list[MissingVariable]:
    """Find variables used by template whose value is absent or empty.

    Custom variables are always configurable (via set_variable).
    """
    missing: list[MissingVariable] = []
    for name in extract_variables(template):
        value = variables.get(name)
        if value is not None and value != "":
            continue
        is_builtin = name in TEMPLATE_VAR_TO_CONFIG_KEY
        config_key = TEMPLATE_VAR_TO_CONFIG_KEY.get(name)
        missing.append(
            MissingVariable(
                template_var=name,
                config_key=config_key,
                prompt=TEMPLATE_VAR_PROMPTS.get(name, f"Value for {name}:"),
                configurable=config_key is not None or not is_builtin,
                is_custom_var=not is_builtin,
            )
        )
    return missing


def format_missing_variables_error(missing: list[MissingVariable]) -> str:
    """Format missing variables with CLI hints for setting each one."""
    if not missing:
        return ""

    lines = ["The following template variables are used but not configured:", ""]
    for v in missing:
        if v.is_custom_var:
            hint = f"Add with: {APP_NAME} config add {v.template_var} <value>"
        elif v.configurable:
            hint = f"Set with: {APP_NAME} config set {v.config_key} <value>"
        else:
            hint = "This variable is auto-generated and cannot be configured directly"
        lines.append(f"  {{{{{v.template_var}}}}} - {hint}")
    return "\n".join(lines)


def format_missing_variables_for_mcp(missing: list[MissingVariable]) -> str:
    """Format missing variables with hints for the devfleet_config tool."""
    configurable = [v for v in missing if v.configurable]
    if not missing:
        return ""
    if not configurable:
        return "Template uses auto-generated variables that have no value. This may indicate an internal error."

    lines = [
        "Cannot start server: required configuration is missing.",
        "",
        "The command uses template variables that are not configured:",
    ]
    for v in configurable:
        if v.is_custom_var:
            lines.append(
                f'  - {{{{{v.template_var}}}}}: Use {APP_NAME}_config tool with add="{v.template_var}" '
                'and value="<value>"'
            )
        else:
            lines.append(
                f'  - {{{{{v.template_var}}}}}: Use {APP_NAME}_config tool with set="{v.config_key}" '
                'and value="<path or value>"'
            )
    lines.append("")
    lines.append("Please configure these values first, then retry the start command.")
    return "\n".join(lines)


# =============================================================================
# Rendering
# =============================================================================


def build_template_variables(
    config: GlobalConfig,
    port: int,
    *,
    hostname: str | None = None,
    protocol: str | None = None,
) -> dict[str, str | int]:
    """Variables available to a server's templates.

    User variables are applied first so built-ins win on a name clash.
    Unset certificate paths are omitted, so using them fails to render.

    Args:
        config: Live configuration.
        port: The server's port.
        hostname: Overrides config.hostname (e.g. an existing entry's hostname).
        protocol: Overrides config.protocol.
    """
    hostname = hostname or config.hostname
    protocol = protocol or config.protocol
    variables: dict[str, str | int] = dict(config.variables)
    variables["port"] = port
    variables["hostname"] = hostname
    variables["url"] = f"{protocol}://{hostname}:{port}"
    for name, value in (("https-cert", config.https_cert), ("https-key", config.https_key)):
        if value:
            variables[name] = value
        else:
            variables.pop(name, None)
    return variables


def _parse_lookup_args(body: str) -> tuple[str | None, str | None, str | None]:
    """Parse the arguments of a {{$ ...}} placeholder."""
    try:
        tokens = shlex.split(body)
    except ValueError:
        return None, None, None

    positional = [t for t in tokens if "=" not in t]
    named = dict(t.split("=", 1) for t in tokens if "=" in t)

    if len(positional) >= 2:
        service, prop = positional[0], positional[1]
        cwd = positional[2] if len(positional) > 2 else named.get("cwd")
        return service, prop, cwd
    return (
        named.get("service") or named.get("svc"),
        named.get("prop") or named.get("property"),
        named.get("cwd"),
    )


def _server_property(entry: "ServerEntry", prop: str) -> Any:
    if prop == "url":
        return entry.url
    data = entry.model_dump(by_alias=True)
    if prop in data:
        return data[prop]
    return getattr(entry, prop, None)


def _resolve_lookup(body: str, placeholder: str, context: TemplateContext | None) -> str:
    service, prop, cwd = _parse_lookup_args(body)
    if not service or not prop:
        raise TemplateMissingVariableError(
            f"Server lookup {placeholder} needs a service name and a property",
            variable=placeholder,
        )

    effective_cwd = cwd or (context.cwd if context else None)
    if context is None or context.lookup_server is None or not effective_cwd:
        raise TemplateMissingVariableError(
            f"Server lookup {placeholder} cannot be resolved without a registry and cwd",
            variable=placeholder,
        )

    entry = context.lookup_server(service, effective_cwd)
    if entry is None:
        raise TemplateMissingVariableError(
            f'Server "{service}" not found in {effective_cwd}',
            variable=placeholder,
            server_name=service,
            cwd=effective_cwd,
        )

    value = _server_property(entry, prop)
    if value is None:
        raise TemplateMissingVariableError(
            f'Property "{prop}" not found on server "{service}"',
            variable=placeholder,
            server_name=service,
        )
    return str(value)


def render_template(
    template: str,
    variables: TemplateVariables,
    context: TemplateContext | None = None,
) -> str:
    """Substitute every placeholder in template.

    Args:
        template: String with {{...}} placeholders.
        variables: Variable values (see build_template_variables).
        context: Resolution context for {{$ ...}} lookups.

    Returns:
        The fully rendered string.

    Raises:
        TemplateMissingVariableError: On the first unresolvable placeholder.
    """

    def substitute(match: re.Match[str]) -> str:
        inner = match.group(1).strip()
        if inner.startswith("$") and (len(inner) == 1 or inner[1].isspace()):
            return _resolve_lookup(inner[1:], match.group(0), context)
        if not _VARIABLE_NAME_RE.match(inner):
            raise TemplateMissingVariableError(
                f"Malformed template placeholder {match.group(0)}",
                variable=inner,
            )
        value = variables.get(inner)
        if value is None:
            raise TemplateMissingVariableError(
                f"Template variable {{{{{inner}}}}} has no value",
                variable=inner,
            )
        return str(value)

    return _PLACEHOLDER_RE.sub(substitute, template)


def render_env_templates(
    env: Mapping[str, str],
    variables: TemplateVariables,
    context: TemplateContext | None = None,
) -> dict[str, str]:
    """Render every env value. Keys are never templated."""
    return {key: render_template(value, variables, context) for key, value in env.items()}


def parse_env_strings(env_strings: list[str] | tuple[str, ...]) -> dict[str, str]:
    """Parse KEY=VALUE strings into a dict.

    Raises:
        ValueError: If an entry has no '=' or an empty key.
    """
    result: dict[str, str] = {}
    for item in env_strings:
        key, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f'Invalid environment variable format: "{item}". Expected KEY=VALUE format.')
        if not key:
            raise ValueError(f'Invalid environment variable format: "{item}". Key cannot be empty.')
        result[key] = value
    return result
