"""Custom exceptions for devfleet.

All errors raised by devfleet derive from DevfleetError, which carries an
ErrorCode and a details dict with enough context (server name, port,
command, config key) to render the error without re-deriving state.

Error codes are grouped by category:
    - 1xxx: Server identity and lookup
    - 2xxx: Port allocation
    - 3xxx: Process supervisor
    - 4xxx: Configuration
    - 5xxx: Registry persistence
    - 6xxx: Template rendering
    - 7xxx: Command/CLI usage

Propagation:
    Lookup and allocation failures are surfaced to the caller verbatim.
    RegistryCorruptError is absorbed by ServerRegistry.load() (empty
    registry fallback). ProcessNotFoundError is absorbed during teardown.

Usage:
    from devfleet.exceptions import ServerNotFoundError, PortAllocationFailedError
"""

from __future__ import annotations

__all__ = [
    "CommandInvalidError",
    "ConfigInvalidError",
    "ConfigValidationError",
    "DevfleetError",
    "ErrorCode",
    "InteractiveNotAvailableError",
    "PortAllocationFailedError",
    "PortOutOfRangeError",
    "ProcessNotFoundError",
    "RegistryCorruptError",
    "RegistryLockError",
    "ServerAlreadyExistsError",
    "ServerNotFoundError",
    "SupervisorError",
    "TemplateMissingVariableError",
]

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Numeric error codes for programmatic handling."""

    # Server errors (1xxx)
    SERVER_NOT_FOUND = 1001
    SERVER_ALREADY_EXISTS = 1002

    # Port errors (2xxx)
    PORT_OUT_OF_RANGE = 2002
    PORT_ALLOCATION_FAILED = 2003

    # Supervisor errors (3xxx)
    SUPERVISOR_FAILED = 3001
    PROCESS_NOT_FOUND = 3002

    # Configuration errors (4xxx)
    CONFIG_INVALID = 4003
    CONFIG_VALIDATION_FAILED = 4005

    # Registry errors (5xxx)
    REGISTRY_LOCK_FAILED = 5002
    REGISTRY_CORRUPT = 5003

    # Template errors (6xxx)
    TEMPLATE_MISSING_VARIABLE = 6002

    # Command errors (7xxx)
    COMMAND_INVALID = 7001
    INTERACTIVE_NOT_AVAILABLE = 7004


class DevfleetError(Exception):
    """Base exception for devfleet operations.

    Attributes:
        code: Numeric error code.
        message: Human-readable message.
        details: Structured context (server_name, port, command, config_key, ...).
    """

    code: ErrorCode = ErrorCode.SUPERVISOR_FAILED

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output (CLI --json and MCP tool errors)."""
        data: dict[str, Any] = {
            "error": self.code.name,
            "code": int(self.code),
            "message": self.message,
        }
        if self.details:
            data["details"] = self.details
        return data

    def __str__(self) -> str:
        return self.message


# =============================================================================
# Server identity
# =============================================================================


class ServerNotFoundError(DevfleetError):
    """No registered server matches the requested identity or id."""

    code = ErrorCode.SERVER_NOT_FOUND


class ServerAlreadyExistsError(DevfleetError):
    """A server with the same (cwd, name) identity is already registered."""

    code = ErrorCode.SERVER_ALREADY_EXISTS


# =============================================================================
# Port allocation
# =============================================================================


class PortOutOfRangeError(DevfleetError):
    """An explicit port lies outside the configured port range."""

    code = ErrorCode.PORT_OUT_OF_RANGE


class PortAllocationFailedError(DevfleetError):
    """Every port in the configured range is unavailable.

    Terminal for the current invocation; retrying with the same range
    will not help.
    """

    code = ErrorCode.PORT_ALLOCATION_FAILED


# =============================================================================
# Supervisor
# =============================================================================


class SupervisorError(DevfleetError):
    """The process supervisor failed to carry out a request."""

    code = ErrorCode.SUPERVISOR_FAILED


class ProcessNotFoundError(SupervisorError):
    """The supervisor has no process with the given name.

    Teardown paths treat this as success.
    """

    code = ErrorCode.PROCESS_NOT_FOUND


# =============================================================================
# Configuration
# =============================================================================


class ConfigInvalidError(DevfleetError):
    """A config file or config value failed validation."""

    code = ErrorCode.CONFIG_INVALID


class ConfigValidationError(DevfleetError):
    """A required configurable variable has no value and cannot be prompted for."""

    code = ErrorCode.CONFIG_VALIDATION_FAILED


# =============================================================================
# Registry
# =============================================================================


class RegistryCorruptError(DevfleetError):
    """The persisted registry could not be parsed or validated."""

    code = ErrorCode.REGISTRY_CORRUPT


class RegistryLockError(DevfleetError):
    """The registry lock could not be acquired in time."""

    code = ErrorCode.REGISTRY_LOCK_FAILED


# =============================================================================
# Templates
# =============================================================================


class TemplateMissingVariableError(DevfleetError):
    """A template placeholder could not be resolved.

    Attributes:
        variable: Name of the first unresolvable placeholder.
    """

    code = ErrorCode.TEMPLATE_MISSING_VARIABLE

    def __init__(self, message: str, *, variable: str, **details: Any) -> None:
        super().__init__(message, variable=variable, **details)
        self.variable = variable


# =============================================================================
# Command usage
# =============================================================================


class InteractiveNotAvailableError(DevfleetError):
    """An operation needs confirmation but the context cannot prompt."""

    code = ErrorCode.INTERACTIVE_NOT_AVAILABLE


class CommandInvalidError(DevfleetError):
    """A command argument has an unusable value (e.g. a bad --since time)."""

    code = ErrorCode.COMMAND_INVALID
