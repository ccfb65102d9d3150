"""File-backed server registry.

The whole registry is loaded into memory, indexed by id with secondary
indices on (cwd, name) and (cwd, command), and rewritten atomically after
each mutation. Mutations run as lock -> reload -> mutate -> write -> unlock
so concurrent invocations serialize instead of losing updates. Readers do
not lock.

A missing or unreadable registry loads as empty. An unreadable file is
moved aside to "<name>.broken.<timestamp>.json" on the next write rather
than silently overwritten.
"""

from __future__ import annotations

__all__ = ["ServerRegistry"]

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from pydantic import ValidationError

from devfleet.constants import APP_NAME, REGISTRY_SCHEMA_VERSION
from devfleet.exceptions import RegistryCorruptError, ServerAlreadyExistsError, ServerNotFoundError
from devfleet.registry.locking import RegistryLock
from devfleet.registry.models import RegistryDocument, ServerEntry, ServerFilter, supervisor_name_for
from devfleet.utils.file_helpers import atomic_write_json

_logger = logging.getLogger(f"{APP_NAME}.registry")

R = TypeVar("R")

# Fields fixed at creation.
_IMMUTABLE_FIELDS = frozenset({"id", "cwd", "created_at", "supervisor_name"})


class ServerRegistry:
    """Durable index of managed servers.

    Args:
        path: Registry JSON file.
        lock_factory: Builds the lock guarding mutations (RegistryLock by default).
    """

    def __init__(
        self,
        path: Path,
        *,
        lock_factory: Callable[[Path], RegistryLock] = RegistryLock,
    ) -> None:
        self.path = path
        self._lock_factory = lock_factory
        self._loaded = False
        self._corrupt = False
        self._by_id: dict[str, ServerEntry] = {}
        self._by_identity: dict[tuple[str, str], str] = {}
        self._by_command: dict[tuple[str, str], str] = {}

    # =========================================================================
    # Loading
    # =========================================================================

    def _read(self) -> RegistryDocument:
        """Read and validate the registry file.

        Raises:
            FileNotFoundError: If the file does not exist.
            RegistryCorruptError: If it cannot be parsed or validated.
        """
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise
        except (OSError, json.JSONDecodeError) as e:
            raise RegistryCorruptError(f"Cannot read registry {self.path}: {e}", path=str(self.path)) from e

        try:
            return RegistryDocument.model_validate(data)
        except ValidationError as e:
            raise RegistryCorruptError(
                f"Invalid registry {self.path}: {e.error_count()} validation error(s)",
                path=str(self.path),
            ) from e

    def load(self) -> None:
        """(Re)load the registry from disk, falling back to empty."""
        self._corrupt = False
        try:
            document = self._read()
        except FileNotFoundError:
            document = RegistryDocument()
        except RegistryCorruptError as e:
            _logger.warning(
                {
                    "event": "registry_invalid",
                    "message": f"{e.message}; using empty registry",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "details": e.details,
                }
            )
            self._corrupt = True
            document = RegistryDocument()

        self._index(document.servers)
        self._loaded = True

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def _index(self, servers: list[ServerEntry]) -> None:
        self._by_id = {}
        self._by_identity = {}
        self._by_command = {}
        for entry in servers:
            self._put(entry)

    def _put(self, entry: ServerEntry) -> None:
        self._by_id[entry.id] = entry
        self._by_identity[(entry.cwd, entry.name)] = entry.id
        self._by_command.setdefault((entry.cwd, entry.command), entry.id)

    # =========================================================================
    # Lookups
    # =========================================================================

    def find_by_id(self, entry_id: str) -> ServerEntry | None:
        self._ensure_loaded()
        return self._by_id.get(entry_id)

    def find_by_identity(self, cwd: str, name: str) -> ServerEntry | None:
        """Find by the primary (cwd, name) identity."""
        self._ensure_loaded()
        entry_id = self._by_identity.get((cwd, name))
        return self._by_id.get(entry_id) if entry_id else None

    def find_by_legacy_command_hash(self, cwd: str, command: str) -> ServerEntry | None:
        """Find by the legacy (cwd, command template) identity."""
        self._ensure_loaded()
        entry_id = self._by_command.get((cwd, command))
        return self._by_id.get(entry_id) if entry_id else None

    def find_by_name(self, name: str) -> list[ServerEntry]:
        """All entries with this name across directories."""
        return self.list(ServerFilter(name=name))

    def list(self, server_filter: ServerFilter | None = None) -> list[ServerEntry]:
        """Entries matching every set filter field, in registration order."""
        self._ensure_loaded()
        entries = list(self._by_id.values())
        if server_filter is None:
            return entries
        return [e for e in entries if server_filter.matches(e)]

    def __iter__(self) -> Iterator[ServerEntry]:
        return iter(self.list())

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._by_id)

    # =========================================================================
    # Mutations
    # =========================================================================

    def _mutate(self, operation: Callable[[], R]) -> R:
        with self._lock_factory(self.path):
            self.load()
            result = operation()
            self._write()
        return result

    def _write(self) -> None:
        if self._corrupt and self.path.exists():
            timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
            backup = self.path.with_name(f"{self.path.stem}.broken.{timestamp}{self.path.suffix}")
            self.path.replace(backup)
            _logger.warning(
                {
                    "event": "registry_backed_up",
                    "message": f"Moved unreadable registry to {backup.name}",
                    "details": {"path": str(self.path), "backup": str(backup)},
                }
            )
            self._corrupt = False

        document = {
            "version": REGISTRY_SCHEMA_VERSION,
            "servers": [entry.to_dict() for entry in self._by_id.values()],
        }
        atomic_write_json(self.path, document, secure=True)

    def add(self, *, name: str, cwd: str, command: str, **fields: Any) -> ServerEntry:
        """Register a new server, assigning its id and supervisor name.

        Args:
            name: Logical name (unique within cwd).
            cwd: Absolute working directory.
            command: Command template.
            **fields: Remaining ServerEntry fields (snake_case).

        Raises:
            ServerAlreadyExistsError: If (cwd, name) is already registered.
        """

        def operation() -> ServerEntry:
            if (cwd, name) in self._by_identity:
                raise ServerAlreadyExistsError(
                    f'Server "{name}" already exists in {cwd}',
                    server_name=name,
                    cwd=cwd,
                )
            entry = ServerEntry.model_validate(
                {
                    **fields,
                    "id": str(uuid.uuid4()),
                    "name": name,
                    "cwd": cwd,
                    "command": command,
                    "supervisor_name": supervisor_name_for(name),
                }
            )
            self._put(entry)
            return entry

        entry = self._mutate(operation)
        _logger.info(
            {
                "event": "server_registered",
                "message": f"Registered {name} on port {entry.port}",
                "details": {"server_id": entry.id, "server_name": name, "cwd": cwd, "port": entry.port},
            }
        )
        return entry

    def update(self, entry_id: str, **changes: Any) -> ServerEntry:
        """Merge changes into an entry and persist.

        Nested values (config_snapshot, used_config_keys, env) are replaced
        wholesale. Renaming also renames the supervisor linkage.

        Raises:
            ServerNotFoundError: If entry_id is unknown.
            ServerAlreadyExistsError: If a rename collides within the cwd.
            ValueError: If an immutable field is changed.
        """
        fixed = _IMMUTABLE_FIELDS.intersection(changes)
        if fixed:
            raise ValueError(f"Cannot change immutable server fields: {', '.join(sorted(fixed))}")

        def operation() -> ServerEntry:
            current = self._by_id.get(entry_id)
            if current is None:
                raise ServerNotFoundError(f"Server with id {entry_id} not found", server_id=entry_id)

            new_name = changes.get("name", current.name)
            if new_name != current.name:
                holder = self._by_identity.get((current.cwd, new_name))
                if holder is not None and holder != entry_id:
                    raise ServerAlreadyExistsError(
                        f'Server "{new_name}" already exists in {current.cwd}',
                        server_name=new_name,
                        cwd=current.cwd,
                    )

            merged = {**current.model_dump(), **changes}
            merged["supervisor_name"] = supervisor_name_for(new_name)
            updated = ServerEntry.model_validate(merged)

            # Replace in place to keep registration order
            self._index([updated if e.id == entry_id else e for e in self._by_id.values()])
            return updated

        return self._mutate(operation)

    def remove(self, entry_id: str) -> ServerEntry:
        """Delete an entry.

        Raises:
            ServerNotFoundError: If entry_id is unknown.
        """

        def operation() -> ServerEntry:
            current = self._by_id.get(entry_id)
            if current is None:
                raise ServerNotFoundError(f"Server with id {entry_id} not found", server_id=entry_id)
            self._index([e for e in self._by_id.values() if e.id != entry_id])
            return current

        removed = self._mutate(operation)
        _logger.info(
            {
                "event": "server_unregistered",
                "message": f"Removed {removed.name} from registry",
                "details": {"server_id": removed.id, "server_name": removed.name},
            }
        )
        return removed
