"""Configuration drift detection.

When a server's templates are resolved, the config keys they depend on are
recorded (used_config_keys) along with their values (config_snapshot).
Drift is any difference between that snapshot and the live config.

Tracked keys:
    hostname, httpsCert, httpsKey   via {{hostname}}, {{https-cert}}, {{https-key}}
    protocol                        only when {{url}} is used
    portRange                       always; drifts only if the port left the range
    variables.<name>                user-defined variables the templates use
"""

from __future__ import annotations

__all__ = [
    "DriftResult",
    "DriftedValue",
    "create_config_snapshot",
    "detect_drift",
    "extract_used_config_keys",
    "find_servers_using_config_key",
    "find_servers_with_drift",
    "format_drift",
    "has_env_changed",
]

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from devfleet.config import GlobalConfig
from devfleet.core.templates import TEMPLATE_VAR_TO_CONFIG_KEY, extract_variables
from devfleet.registry.models import ConfigSnapshot, ServerEntry

_VARIABLES_PREFIX = "variables."

# Config key -> (template variable, snapshot attribute, config attribute)
_SIMPLE_KEYS: dict[str, tuple[str, str, str]] = {
    "hostname": ("hostname", "hostname", "hostname"),
    "httpsCert": ("https-cert", "https_cert", "https_cert"),
    "httpsKey": ("https-key", "https_key", "https_key"),
    "protocol": ("url", "protocol", "protocol"),
}


@dataclass(frozen=True, slots=True)
class DriftedValue:
    """One config key whose live value differs from the snapshot."""

    config_key: str
    template_var: str
    started_with: str | None
    current_value: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "configKey": self.config_key,
            "templateVar": self.template_var,
            "startedWith": self.started_with,
            "currentValue": self.current_value,
        }


@dataclass(frozen=True, slots=True)
class DriftResult:
    """Outcome of comparing a server's snapshot against live config.

    Attributes:
        drifted_values: Every differing key.
        port_out_of_range: The server's port is outside the live range.
        protocol_changed: The protocol used by {{url}} changed.
    """

    drifted_values: tuple[DriftedValue, ...] = field(default_factory=tuple)
    port_out_of_range: bool = False
    protocol_changed: bool = False

    @property
    def has_drift(self) -> bool:
        return bool(self.drifted_values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hasDrift": self.has_drift,
            "driftedValues": [d.to_dict() for d in self.drifted_values],
            "portOutOfRange": self.port_out_of_range,
            "protocolChanged": self.protocol_changed,
        }


NO_DRIFT = DriftResult()


# =============================================================================
# Recording
# =============================================================================


def extract_used_config_keys(command: str, env: Mapping[str, str] | None = None) -> list[str]:
    """Config keys a command (and env) template depends on.

    Args:
        command: Command template.
        env: Environment templates (values are scanned).

    Returns:
        Deduplicated keys, portRange always included.
    """
    templates = [command, *(env or {}).values()]
    names: dict[str, None] = {}
    for template in templates:
        for name in extract_variables(template):
            names.setdefault(name, None)

    keys: dict[str, None] = {}
    for name in names:
        if name in TEMPLATE_VAR_TO_CONFIG_KEY:
            config_key = TEMPLATE_VAR_TO_CONFIG_KEY[name]
            if config_key:
                keys.setdefault(config_key, None)
        else:
            keys.setdefault(f"{_VARIABLES_PREFIX}{name}", None)

    keys.setdefault("portRange", None)
    if "url" in names:
        keys.setdefault("protocol", None)
    return list(keys)


def create_config_snapshot(config: GlobalConfig, used_config_keys: Iterable[str]) -> ConfigSnapshot:
    """Capture the values of used_config_keys from config."""
    values: dict[str, Any] = {}
    custom: dict[str, str] = {}
    for key in used_config_keys:
        if key in _SIMPLE_KEYS:
            _, snapshot_attr, config_attr = _SIMPLE_KEYS[key]
            values[snapshot_attr] = getattr(config, config_attr)
        elif key == "portRange":
            values["port_range_min"] = config.port_range.min
            values["port_range_max"] = config.port_range.max
        elif key.startswith(_VARIABLES_PREFIX):
            name = key[len(_VARIABLES_PREFIX) :]
            if name in config.variables:
                custom[name] = config.variables[name]
    if custom:
        values["custom_variables"] = custom
    return ConfigSnapshot(**values)


# =============================================================================
# Detection
# =============================================================================


def detect_drift(entry: ServerEntry, config: GlobalConfig) -> DriftResult:
    """Compare an entry's snapshot with the live config.

    Entries without a snapshot or used keys report no drift.
    """
    snapshot = entry.config_snapshot
    if snapshot is None or not entry.used_config_keys:
        return NO_DRIFT

    drifted: list[DriftedValue] = []
    port_out_of_range = False
    protocol_changed = False

    for key in entry.used_config_keys:
        if key in _SIMPLE_KEYS:
            template_var, snapshot_attr, config_attr = _SIMPLE_KEYS[key]
            started = getattr(snapshot, snapshot_attr)
            current = getattr(config, config_attr)
            if started != current:
                drifted.append(DriftedValue(key, template_var, started, current))
                if key == "protocol":
                    protocol_changed = True
        elif key == "portRange":
            if not config.port_range.contains(entry.port):
                port_out_of_range = True
                started = (
                    f"{snapshot.port_range_min}-{snapshot.port_range_max}"
                    if snapshot.port_range_min is not None
                    else None
                )
                current = f"{config.port_range.min}-{config.port_range.max}"
                drifted.append(DriftedValue(key, "port", started, current))
        elif key.startswith(_VARIABLES_PREFIX):
            name = key[len(_VARIABLES_PREFIX) :]
            started = (snapshot.custom_variables or {}).get(name)
            current = config.variables.get(name)
            if started != current:
                drifted.append(DriftedValue(key, name, started, current))

    return DriftResult(tuple(drifted), port_out_of_range, protocol_changed)


def find_servers_with_drift(
    entries: Iterable[ServerEntry], config: GlobalConfig
) -> list[tuple[ServerEntry, DriftResult]]:
    """Entries with drift, paired with their drift result."""
    results = []
    for entry in entries:
        drift = detect_drift(entry, config)
        if drift.has_drift:
            results.append((entry, drift))
    return results


def find_servers_using_config_key(entries: Iterable[ServerEntry], config_key: str) -> list[ServerEntry]:
    """Entries whose templates depend on config_key.

    "portRange.min"/"portRange.max" match the "portRange" used key.
    """
    key = config_key.split(".", 1)[0] if config_key.startswith("portRange") else config_key
    return [entry for entry in entries if key in entry.used_config_keys]


def format_drift(drift: DriftResult) -> str:
    """Human-readable drift summary."""
    if not drift.has_drift:
        return "No config drift"

    lines = []
    for d in drift.drifted_values:
        started = d.started_with if d.started_with is not None else "(not set)"
        current = d.current_value if d.current_value is not None else "(not set)"
        lines.append(f'  {d.config_key}: "{started}" → "{current}"')
    return "Config drift detected:\n" + "\n".join(lines)


def has_env_changed(old_env: Mapping[str, str] | None, new_env: Mapping[str, str] | None) -> bool:
    """Order-independent env comparison. None equals {}."""
    return dict(old_env or {}) != dict(new_env or {})
