"""Server registry: durable, file-backed record of every managed server.

Public API:
    - ServerEntry, ConfigSnapshot, RegistryDocument, ServerFilter: data model
    - ServerRegistry: load/lookup/mutate with cross-process locking
    - RegistryLock: advisory flock on "<registry>.lock"
"""

from devfleet.registry.locking import RegistryLock
from devfleet.registry.models import ConfigSnapshot, RegistryDocument, ServerEntry, ServerFilter
from devfleet.registry.store import ServerRegistry

__all__ = [
    "ConfigSnapshot",
    "RegistryDocument",
    "RegistryLock",
    "ServerEntry",
    "ServerFilter",
    "ServerRegistry",
]
