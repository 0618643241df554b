"""Custom exception hierarchy for Deployotron configuration and operations."""

from __future__ import annotations


class DeployotronError(Exception):
    """Base exception for all Deployotron errors.

    All Deployotron-specific exceptions inherit from this class, enabling
    centralized exception handling and error tracking.
    """

    pass


class ConfigError(DeployotronError):
    """Exception raised for configuration errors.

    This exception is raised when configuration loading or parsing fails.
    It includes field-specific information to help users identify and fix
    configuration issues.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class DeploymentError(DeployotronError):
    """Exception raised when a deployment operation fails.

    Every pipeline operation error derives from this class. Subclasses set
    ``summary`` to a short human-readable description of the error kind,
    which is what end users see in failure notifications.

    Attributes:
        operation: Name of the operation that failed (e.g. "clone", "push")
        message: Human-readable error message
    """

    summary = "deployment operation failed"

    def __init__(self, operation: str, message: str) -> None:
        """Create a deployment error for an operation.

        Args:
            operation: Operation name that failed
            message: Descriptive error message
        """
        self.operation = operation
        self.message = message
        super().__init__(message)


class CloneError(DeploymentError):
    """Raised when a repository cannot be cloned."""

    summary = "could not clone the repository"

    def __init__(self, message: str) -> None:
        super().__init__(operation="clone", message=message)


class NotARepositoryError(DeploymentError):
    """Raised when a path has no version-control metadata."""

    summary = "the source directory is not a git repository"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(
            operation="commit_info",
            message=f"Not a git repository: {path}",
        )


class AuthError(DeploymentError):
    """Raised when authenticating to the container registry fails."""

    summary = "could not authenticate with the container registry"

    def __init__(self, message: str) -> None:
        super().__init__(operation="authenticate", message=message)


class BuildError(DeploymentError):
    """Raised when a container image build fails.

    Attributes:
        output: Output of the failing build step, one entry per line
    """

    summary = "the container image failed to build"

    def __init__(self, message: str, output: list[str] | None = None) -> None:
        self.output = output or []
        super().__init__(operation="build", message=message)


class PushError(DeploymentError):
    """Raised when pushing an image to the registry fails."""

    summary = "could not push the image to the registry"

    def __init__(self, message: str) -> None:
        super().__init__(operation="push", message=message)


class ImageNotFoundError(PushError):
    """Raised when pushing a tag that was never built.

    This is an ordering violation on the caller's side, reported distinctly
    from transport failures.
    """

    summary = "the image to push was never built"

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Image not found: {tag}")


class RegistrationError(DeploymentError):
    """Raised when registering a service revision fails."""

    summary = "could not register the service revision"

    def __init__(self, message: str) -> None:
        super().__init__(operation="register_revision", message=message)


class ServiceUpdateError(DeploymentError):
    """Raised when rolling a revision out to the running service fails."""

    summary = "could not update the running service"

    def __init__(self, message: str) -> None:
        super().__init__(operation="update_service", message=message)


class HealthTimeoutError(DeploymentError):
    """Raised when a service does not become healthy in time.

    Attributes:
        service: Service that was polled
        waited_seconds: Total time spent polling
    """

    summary = "the service did not become healthy in time"

    def __init__(self, service: str, waited_seconds: float) -> None:
        self.service = service
        self.waited_seconds = waited_seconds
        super().__init__(
            operation="poll_health",
            message=(
                f"Deployment timeout: service '{service}' did not become "
                f"healthy within {waited_seconds:g}s"
            ),
        )


class DeploymentCancelledError(DeploymentError):
    """Raised when a deployment run is cancelled before or during a step."""

    summary = "the deployment was cancelled"

    def __init__(self, step: str, *, in_progress: bool = False) -> None:
        self.step = step
        position = "during" if in_progress else "before"
        super().__init__(
            operation="cancel",
            message=f"Deployment cancelled {position} step '{step}'",
        )


class TransientFaultError(DeploymentError):
    """Raised for a generic transient fault in an external system."""

    summary = "a transient infrastructure fault occurred"

    def __init__(self, operation: str, message: str | None = None) -> None:
        super().__init__(
            operation=operation,
            message=message or f"Simulated failure: {operation}",
        )


class InvalidTransitionError(DeployotronError):
    """Raised when a deployment status change is not allowed."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid status transition from '{current}' to '{requested}'"
        )


class PersistenceError(DeployotronError):
    """Raised when deployment state cannot be read or written."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ProjectNotFoundError(PersistenceError):
    """Raised when a project id is unknown to the store."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class DockerNotAvailableError(DeploymentError):
    """Raised when the Docker daemon cannot be reached."""

    summary = "docker is not available"

    def __init__(self, operation: str = "init") -> None:
        super().__init__(
            operation=operation,
            message=(
                "Docker daemon is not available.\n"
                "Ensure Docker is installed and running: docker info"
            ),
        )


class CloudSDKNotInstalledError(DeploymentError):
    """Raised when a cloud provider SDK is not installed.

    Attributes:
        provider: Cloud provider name
        sdk_name: Missing SDK package name
    """

    summary = "a cloud provider SDK is not installed"

    def __init__(self, provider: str, sdk_name: str) -> None:
        self.provider = provider
        self.sdk_name = sdk_name
        super().__init__(
            operation="init",
            message=(
                f"The {provider} SDK is not installed.\n"
                f"Install it with: pip install 'deployotron[{provider}]' "
                f"(missing: {sdk_name})"
            ),
        )
