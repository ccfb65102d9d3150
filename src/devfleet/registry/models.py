"""Pydantic models for the server registry.

The registry file is a single JSON document:

    {"version": "1", "servers": [ServerEntry, ...]}

Keys are camelCase on disk (resolvedCommand, usedConfigKeys, ...) and
snake_case in Python.
"""

from __future__ import annotations

__all__ = [
    "ConfigSnapshot",
    "RegistryDocument",
    "ServerEntry",
    "ServerFilter",
    "supervisor_name_for",
]

import fnmatch
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from devfleet.constants import REGISTRY_SCHEMA_VERSION, SUPERVISOR_NAME_PREFIX


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def supervisor_name_for(name: str) -> str:
    """Supervisor process name for a server name."""
    return f"{SUPERVISOR_NAME_PREFIX}{name}"


class ConfigSnapshot(BaseModel):
    """Config values a server's templates depended on at last resolution.

    Only the keys listed in the entry's used_config_keys are populated.

    Attributes:
        hostname: Hostname at resolution time.
        https_cert: Certificate path at resolution time.
        https_key: Key path at resolution time.
        protocol: Protocol at resolution time ({{url}} users only).
        port_range_min: Range lower bound at resolution time.
        port_range_max: Range upper bound at resolution time.
        custom_variables: Values of the user variables the templates used.
    """

    hostname: str | None = None
    https_cert: str | None = Field(default=None, alias="httpsCert")
    https_key: str | None = Field(default=None, alias="httpsKey")
    protocol: str | None = None
    port_range_min: int | None = Field(default=None, alias="portRangeMin")
    port_range_max: int | None = Field(default=None, alias="portRangeMax")
    custom_variables: dict[str, str] | None = Field(default=None, alias="customVariables")

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class ServerEntry(BaseModel):
    """One managed server.

    (cwd, name) is the identity key. id, cwd and created_at never change
    after creation.

    Attributes:
        id: Opaque unique id (uuid4).
        name: Logical name, unique within cwd.
        command: Command template as given by the caller.
        resolved_command: Command after template substitution.
        cwd: Absolute working directory.
        port: Published port.
        protocol: http or https.
        hostname: Published hostname.
        env: Resolved environment (templates substituted).
        env_template: Environment as given by the caller, before substitution.
        created_at: ISO 8601 creation timestamp.
        supervisor_name: Name used to address the process supervisor.
        tags: Free-form tags.
        description: Optional description.
        used_config_keys: Config keys the templates depend on.
        config_snapshot: Values of used_config_keys at last resolution.
    """

    id: str
    name: str
    command: str
    resolved_command: str = Field(alias="resolvedCommand")
    cwd: str
    port: int
    protocol: Literal["http", "https"] = "http"
    hostname: str
    env: dict[str, str] = Field(default_factory=dict)
    env_template: dict[str, str] | None = Field(default=None, alias="envTemplate")
    created_at: str = Field(default_factory=_utc_now_iso, alias="createdAt")
    supervisor_name: str = Field(default="", alias="supervisorName")
    tags: list[str] = Field(default_factory=list)
    description: str | None = None
    used_config_keys: list[str] = Field(default_factory=list, alias="usedConfigKeys")
    config_snapshot: ConfigSnapshot | None = Field(default=None, alias="configSnapshot")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.hostname}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the on-disk key spelling."""
        return self.model_dump(by_alias=True, exclude_none=True)


class RegistryDocument(BaseModel):
    """The persisted registry file."""

    version: str = REGISTRY_SCHEMA_VERSION
    servers: list[ServerEntry] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


@dataclass(frozen=True, slots=True)
class ServerFilter:
    """Conjunctive filter for ServerRegistry.list().

    Attributes:
        name: Exact name.
        tag: Entry must carry this tag.
        cwd: Exact working directory.
        command: Glob pattern matched against the command template.
    """

    name: str | None = None
    tag: str | None = None
    cwd: str | None = None
    command: str | None = None

    def matches(self, entry: ServerEntry) -> bool:
        if self.name is not None and entry.name != self.name:
            return False
        if self.tag is not None and self.tag not in entry.tags:
            return False
        if self.cwd is not None and entry.cwd != self.cwd:
            return False
        if self.command is not None and not fnmatch.fnmatchcase(entry.command, self.command):
            return False
        return True
