"""Default configuration values for Deployotron."""

from deployotron.lib.logging_config import get_logger

logger = get_logger(__name__)


# Environment variable names
ENV_SHADOW_MODE = "DEPLOYOTRON_SHADOW_MODE"
ENV_SHADOW_FAILURE_RATE = "DEPLOYOTRON_SHADOW_FAILURE_RATE"
ENV_HEALTH_POLL_INTERVAL = "DEPLOYOTRON_HEALTH_POLL_INTERVAL"
ENV_HEALTH_TIMEOUT = "DEPLOYOTRON_HEALTH_TIMEOUT"
ENV_AZURE_PREFIX = "DEPLOYOTRON_AZURE_"

# Health polling: 30 polls, 10 seconds apart
DEFAULT_HEALTH_POLL_INTERVAL = 10.0  # seconds
DEFAULT_HEALTH_TIMEOUT = 300.0  # seconds

# Service revision defaults
DEFAULT_REVISION_CPU = 0.5
DEFAULT_REVISION_MEMORY = "1Gi"
DEFAULT_DESIRED_COUNT = 1

# Local state
DEFAULT_STATE_PATH = ".deployotron/state.json"
DEFAULT_LOG_LIMIT = 100

# Container port exposed per framework
FRAMEWORK_PORTS: dict[str, int] = {
    "nextjs": 3000,
    "react": 3000,
    "vue": 3000,
    "angular": 3000,
    "node": 3000,
    "ruby": 3000,
    "python": 8000,
    "go": 8080,
    "rust": 8080,
    "other": 8080,
}

FALLBACK_PORT = 8080


def get_framework_port(framework: str) -> int:
    """Get the container port a framework listens on.

    Args:
        framework: Framework type value (e.g., "nextjs", "python")

    Returns:
        Port number, falling back to 8080 for unknown frameworks
    """
    port = FRAMEWORK_PORTS.get(framework)
    if port is None:
        logger.warning(
            f"Unknown framework '{framework}', assuming port {FALLBACK_PORT}."
        )
        return FALLBACK_PORT
    return port
