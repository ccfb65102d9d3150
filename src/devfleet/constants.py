"""Application-wide constants for devfleet.

Constants that define application behavior.
For user-configurable settings, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    "SUPERVISOR_NAME_PREFIX",
    "HOME_ENV_VAR",
    # Config files
    "GLOBAL_CONFIG_FILENAME",
    "PROJECT_CONFIG_FILENAMES",
    "CONFIG_ENV_PREFIX",
    # Registry persistence
    "REGISTRY_FILENAME",
    "REGISTRY_SCHEMA_VERSION",
    "REGISTRY_LOCK_TIMEOUT_SECONDS",
    "REGISTRY_LOCK_INITIAL_DELAY_SECONDS",
    "REGISTRY_LOCK_BACKOFF_MULTIPLIER",
    "REGISTRY_LOCK_MAX_DELAY_SECONDS",
    # Port allocation
    "DEFAULT_PORT_MIN",
    "DEFAULT_PORT_MAX",
    "PORT_PROBE_HOST",
    "SEQUENTIAL_PORTS_FILENAME",
    "SEQUENTIAL_PORTS_FRESHNESS_SECONDS",
    # Supervisor
    "PROCESS_STOP_GRACE_SECONDS",
    "PROCESS_POLL_INTERVAL_SECONDS",
    # Server logs
    "DEFAULT_LOG_LINES",
    "RESOURCE_LOG_LINES",
    "LOG_FOLLOW_POLL_SECONDS",
    # CI detection
    "CI_ENVIRONMENTS",
]

# ============================================================================
# Application Identity
# ============================================================================

APP_NAME: str = "devfleet"

# Supervisor process names are "devfleet-<server name>" so devfleet-owned
# processes can be told apart from anything else the supervisor runs.
SUPERVISOR_NAME_PREFIX: str = f"{APP_NAME}-"

# Overrides the application directory (config, registry, logs).
HOME_ENV_VAR: str = "DEVFLEET_HOME"

# ============================================================================
# Configuration Files
# ============================================================================

GLOBAL_CONFIG_FILENAME: str = "config.json"

# Searched from the working directory upward; first match wins.
PROJECT_CONFIG_FILENAMES: tuple[str, ...] = (
    ".devfleetrc.json",
    ".devfleetrc",
    "devfleet.config.json",
)

# Environment overrides are DEVFLEET_HOSTNAME, DEVFLEET_PORT_MIN, ...
CONFIG_ENV_PREFIX: str = "DEVFLEET_"

# ============================================================================
# Registry Persistence
# ============================================================================

REGISTRY_FILENAME: str = "registry.json"
REGISTRY_SCHEMA_VERSION: str = "1"

# Total time a writer waits for the lock before giving up.
REGISTRY_LOCK_TIMEOUT_SECONDS: float = 10.0
REGISTRY_LOCK_INITIAL_DELAY_SECONDS: float = 0.05
REGISTRY_LOCK_BACKOFF_MULTIPLIER: float = 2.0
REGISTRY_LOCK_MAX_DELAY_SECONDS: float = 1.0

# ============================================================================
# Port Allocation
# ============================================================================

DEFAULT_PORT_MIN: int = 3000
DEFAULT_PORT_MAX: int = 9999

# Bind probes use the wildcard address so a port held on any interface
# counts as taken.
PORT_PROBE_HOST: str = "0.0.0.0"

# Side file for sequential (batch/CI) allocation, stored in the temp dir.
SEQUENTIAL_PORTS_FILENAME: str = "ci-ports.json"

# Claimed ports older than this are discarded on load.
SEQUENTIAL_PORTS_FRESHNESS_SECONDS: int = 3600

# ============================================================================
# Supervisor
# ============================================================================

PROCESS_STOP_GRACE_SECONDS: float = 5.0
PROCESS_POLL_INTERVAL_SECONDS: float = 0.1

# ============================================================================
# Server Logs
# ============================================================================

DEFAULT_LOG_LINES: int = 50

# MCP log resources return a longer tail than the logs command.
RESOURCE_LOG_LINES: int = 100

LOG_FOLLOW_POLL_SECONDS: float = 0.5

# ============================================================================
# CI Detection
# ============================================================================

# (display name, environment variable) pairs checked before the generic CI var.
CI_ENVIRONMENTS: tuple[tuple[str, str], ...] = (
    ("GitHub Actions", "GITHUB_ACTIONS"),
    ("GitLab CI", "GITLAB_CI"),
    ("CircleCI", "CIRCLECI"),
    ("Travis CI", "TRAVIS"),
    ("Jenkins", "JENKINS_URL"),
    ("Buildkite", "BUILDKITE"),
    ("Azure Pipelines", "AZURE_PIPELINES"),
    ("TeamCity", "TEAMCITY_VERSION"),
)
