"""Global configuration for devfleet.

GlobalConfig is loaded once per invocation by merging, lowest to highest
precedence: built-in defaults, the global config file, the nearest
project-local config file, and DEVFLEET_* environment overrides. The
loaded value is passed explicitly to every component that needs it.

The only mutation paths are set_config_value(), set_variable(),
remove_variable() and reset_global_config(), which rewrite the global file
immediately. Project files and environment overrides are never written back.

Example usage:
    config = load_global_config(Path.cwd())
    config.port_range.contains(4000)

    set_config_value("portRange.min", "4000")
"""

from __future__ import annotations

__all__ = [
    "CONFIG_KEYS",
    "GlobalConfig",
    "PortRange",
    "RefreshPolicy",
    "find_project_config",
    "get_global_config_path",
    "get_registry_path",
    "get_system_log_path",
    "load_global_config",
    "load_global_file",
    "remove_variable",
    "reset_global_config",
    "save_global_config",
    "set_config_value",
    "set_variable",
]

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field, ValidationError, model_validator

from devfleet.constants import (
    APP_NAME,
    CONFIG_ENV_PREFIX,
    DEFAULT_PORT_MAX,
    DEFAULT_PORT_MIN,
    GLOBAL_CONFIG_FILENAME,
    PROJECT_CONFIG_FILENAMES,
    REGISTRY_FILENAME,
)
from devfleet.exceptions import ConfigInvalidError
from devfleet.utils.file_helpers import atomic_write_json, get_app_dir

_logger = logging.getLogger(f"{APP_NAME}.config")

RefreshPolicy = Literal["manual", "prompt", "auto", "on-start"]

# Keys accepted by set_config_value(), in the on-disk (camelCase) spelling.
CONFIG_KEYS: tuple[str, ...] = (
    "hostname",
    "protocol",
    "httpsCert",
    "httpsKey",
    "refreshOnChange",
    "portRange.min",
    "portRange.max",
    "tempDir",
)

_VARIABLE_NAME_RE = re.compile(r"^[\w-]+$")


def _default_temp_dir() -> str:
    return str(Path(tempfile.gettempdir()) / APP_NAME)


# =============================================================================
# Models
# =============================================================================


class PortRange(BaseModel):
    """Inclusive port range servers are allocated from.

    Attributes:
        min: Lowest allocatable port.
        max: Highest allocatable port.
    """

    min: int = Field(default=DEFAULT_PORT_MIN, ge=1, le=65535)
    max: int = Field(default=DEFAULT_PORT_MAX, ge=1, le=65535)

    model_config = {"extra": "ignore", "frozen": True}

    @model_validator(mode="after")
    def _check_order(self) -> "PortRange":
        if self.min > self.max:
            raise ValueError("Port range min must be less than or equal to max")
        return self

    def contains(self, port: int) -> bool:
        """Return True if port lies within [min, max]."""
        return self.min <= port <= self.max

    @property
    def size(self) -> int:
        return self.max - self.min + 1


class GlobalConfig(BaseModel):
    """Merged, immutable-once-loaded devfleet configuration.

    Attributes:
        version: Config schema version.
        hostname: Hostname published in {{hostname}} and {{url}}.
        protocol: http or https, used in {{url}}.
        port_range: Allocation range for new and refreshed servers.
        temp_dir: Scratch directory (sequential port ledger lives here).
        https_cert: Certificate path published as {{https-cert}}.
        https_key: Key path published as {{https-key}}.
        refresh_on_change: Policy applied when drift is detected.
        variables: User-defined template variables.
    """

    version: str = "1"
    hostname: str = "0.0.0.0"
    protocol: Literal["http", "https"] = "http"
    port_range: PortRange = Field(default_factory=PortRange, alias="portRange")
    temp_dir: str = Field(default_factory=_default_temp_dir, alias="tempDir")
    https_cert: str | None = Field(default=None, alias="httpsCert")
    https_key: str | None = Field(default=None, alias="httpsKey")
    refresh_on_change: RefreshPolicy = Field(default="on-start", alias="refreshOnChange")
    variables: dict[str, str] = Field(default_factory=dict)

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    def to_file_dict(self) -> dict[str, Any]:
        """Serialize using the on-disk key spelling."""
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Paths
# =============================================================================


def get_global_config_path() -> Path:
    """Get the full path to the global config file.

    Returns:
        Path to config.json in the application directory.
    """
    return get_app_dir() / GLOBAL_CONFIG_FILENAME


def get_registry_path() -> Path:
    """Get the full path to the server registry file."""
    return get_app_dir() / REGISTRY_FILENAME


def get_system_log_path() -> Path:
    """Get the full path to the system log file (logs/system.jsonl)."""
    return get_app_dir() / "logs" / "system.jsonl"


def find_project_config(search_from: Path) -> Path | None:
    """Find the nearest project config file walking upward.

    Args:
        search_from: Directory to start from.

    Returns:
        Path to the first matching file, or None.
    """
    global_path = get_global_config_path().resolve()
    current = search_from.resolve()
    for directory in (current, *current.parents):
        for filename in PROJECT_CONFIG_FILENAMES:
            candidate = directory / filename
            if candidate.is_file() and candidate.resolve() != global_path:
                return candidate
    return None


# =============================================================================
# Loading
# =============================================================================


def _read_layer(path: Path, layer: str) -> dict[str, Any] | None:
    """Read one config file as a JSON object, logging and skipping failures."""
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        _logger.warning(
            {
                "event": "config_invalid_json",
                "message": f"Invalid JSON in {layer} config, ignoring: {e}",
                "error_type": type(e).__name__,
                "error_message": str(e),
                "details": {"config_path": str(path)},
            }
        )
        return None
    except OSError as e:
        _logger.warning(
            {
                "event": "config_read_failed",
                "message": f"Failed to read {layer} config file, ignoring: {e}",
                "error_type": type(e).__name__,
                "error_message": str(e),
                "details": {"config_path": str(path)},
            }
        )
        return None

    if not isinstance(data, dict):
        _logger.warning(
            {
                "event": "config_not_object",
                "message": f"{layer.capitalize()} config must be a JSON object, ignoring",
                "details": {"config_path": str(path)},
            }
        )
        return None
    return data


def _merge(base: dict[str, Any], partial: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow merge with per-key merging of portRange and variables."""
    merged = {**base, **partial}
    for key in ("portRange", "variables"):
        if isinstance(base.get(key), dict) and isinstance(partial.get(key), dict):
            merged[key] = {**base[key], **partial[key]}
    return merged


def _apply_layer(base: dict[str, Any], partial: dict[str, Any], path: Path, layer: str) -> dict[str, Any]:
    """Merge a layer, keeping the previous state if the result does not validate."""
    merged = _merge(base, partial)
    try:
        GlobalConfig.model_validate(merged)
    except ValidationError as e:
        _logger.warning(
            {
                "event": "config_validation_failed",
                "message": f"Invalid {layer} config values, ignoring file: {e.error_count()} error(s)",
                "error_type": type(e).__name__,
                "error_message": str(e),
                "details": {"config_path": str(path)},
            }
        )
        return base
    return merged


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect DEVFLEET_* overrides. Unparseable values are ignored."""
    overrides: dict[str, Any] = {}

    def env(name: str) -> str | None:
        return environ.get(f"{CONFIG_ENV_PREFIX}{name}") or None

    hostname = env("HOSTNAME")
    if hostname:
        overrides["hostname"] = hostname
    protocol = env("PROTOCOL")
    if protocol in ("http", "https"):
        overrides["protocol"] = protocol

    port_range: dict[str, int] = {}
    for bound in ("min", "max"):
        raw = env(f"PORT_{bound.upper()}")
        if raw is None:
            continue
        try:
            port_range[bound] = int(raw)
        except ValueError:
            continue
    if port_range:
        overrides["portRange"] = port_range

    for name, key in (("TEMP_DIR", "tempDir"), ("HTTPS_CERT", "httpsCert"), ("HTTPS_KEY", "httpsKey")):
        value = env(name)
        if value:
            overrides[key] = value
    return overrides


def load_global_config(
    search_from: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> GlobalConfig:
    """Load the merged configuration.

    Invalid files are logged and skipped, never fatal.

    Args:
        search_from: Directory to start the project-config search from
            (defaults to the current directory).
        environ: Environment for overrides (defaults to os.environ).

    Returns:
        GlobalConfig: The merged configuration.
    """
    data: dict[str, Any] = GlobalConfig().to_file_dict()

    global_path = get_global_config_path()
    global_layer = _read_layer(global_path, "global")
    if global_layer is not None:
        data = _apply_layer(data, global_layer, global_path, "global")

    project_path = find_project_config(search_from or Path.cwd())
    if project_path is not None:
        project_layer = _read_layer(project_path, "project")
        if project_layer is not None:
            data = _apply_layer(data, project_layer, project_path, "project")
            _logger.debug({"event": "project_config_loaded", "details": {"config_path": str(project_path)}})

    overrides = _env_overrides(os.environ if environ is None else environ)
    if overrides:
        data = _apply_layer(data, overrides, Path("<environment>"), "environment")

    return GlobalConfig.model_validate(data)


def load_global_file() -> GlobalConfig:
    """Load only the global file layer (defaults where absent or invalid).

    This is the baseline for mutations so project files and environment
    overrides are never persisted into the global file.
    """
    path = get_global_config_path()
    layer = _read_layer(path, "global")
    if layer is None:
        return GlobalConfig()
    data = _apply_layer(GlobalConfig().to_file_dict(), layer, path, "global")
    return GlobalConfig.model_validate(data)


# =============================================================================
# Mutation
# =============================================================================


def save_global_config(config: GlobalConfig) -> Path:
    """Save configuration to the global config file.

    Creates the config directory if it doesn't exist.
    Sets secure permissions (directory 0700, file 0600).

    Args:
        config: Configuration to save.

    Returns:
        Path the configuration was written to.

    Raises:
        OSError: If unable to write config file.
    """
    path = get_global_config_path()
    atomic_write_json(path, config.to_file_dict(), secure=True)
    return path


def _parse_port(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigInvalidError(f"{key} must be an integer, got {value!r}", config_key=key) from None


def set_config_value(key: str, value: str) -> GlobalConfig:
    """Validate and persist a single config key in the global file.

    Args:
        key: One of CONFIG_KEYS.
        value: Raw string value. An empty value clears httpsCert/httpsKey.

    Returns:
        GlobalConfig: The saved global-file configuration.

    Raises:
        ConfigInvalidError: If the key is unknown or the value is invalid.
    """
    if key not in CONFIG_KEYS:
        raise ConfigInvalidError(
            f"Unknown config key {key!r}. Valid keys: {', '.join(CONFIG_KEYS)}",
            config_key=key,
        )

    current = load_global_file()
    data = current.to_file_dict()

    if key in ("portRange.min", "portRange.max"):
        bound = key.split(".", 1)[1]
        data["portRange"] = {**data["portRange"], bound: _parse_port(key, value)}
    elif key in ("httpsCert", "httpsKey") and value == "":
        data.pop(key, None)
    else:
        data[key] = value

    try:
        updated = GlobalConfig.model_validate(data)
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise ConfigInvalidError(f"Invalid value for {key}: {messages}", config_key=key, value=value) from e

    save_global_config(updated)
    _logger.info({"event": "config_value_set", "message": f"Set {key}", "details": {"config_key": key}})
    return updated


def set_variable(name: str, value: str) -> GlobalConfig:
    """Add or replace a user-defined template variable.

    Raises:
        ConfigInvalidError: If the name is not usable in a {{placeholder}}.
    """
    if not _VARIABLE_NAME_RE.match(name):
        raise ConfigInvalidError(
            f"Invalid variable name {name!r}: use letters, digits, '_' or '-'",
            config_key=f"variables.{name}",
        )
    current = load_global_file()
    updated = current.model_copy(update={"variables": {**current.variables, name: value}})
    save_global_config(updated)
    return updated


def remove_variable(name: str) -> bool:
    """Remove a user-defined template variable.

    Returns:
        True if the variable existed and was removed.
    """
    current = load_global_file()
    if name not in current.variables:
        return False
    variables = {k: v for k, v in current.variables.items() if k != name}
    save_global_config(current.model_copy(update={"variables": variables}))
    return True


def reset_global_config() -> GlobalConfig:
    """Overwrite the global file with defaults, dropping all variables.

    Returns:
        GlobalConfig: The default configuration that was saved.
    """
    defaults = GlobalConfig()
    path = save_global_config(defaults)
    _logger.info(
        {"event": "config_reset", "message": "Reset configuration to defaults", "details": {"path": str(path)}}
    )
    return defaults
