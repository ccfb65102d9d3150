"""Process supervisor collaborators.

The core only talks to a ProcessSupervisor. DirectSupervisor is the bundled
implementation that spawns detached processes and tracks them in state files.
"""

from devfleet.supervisor.base import ProcessDescription, ProcessStatus, ProcessSupervisor, teardown
from devfleet.supervisor.direct import DirectSupervisor

__all__ = [
    "DirectSupervisor",
    "ProcessDescription",
    "ProcessStatus",
    "ProcessSupervisor",
    "teardown",
]
