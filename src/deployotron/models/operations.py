"""Value types exchanged with repository and deployment backends."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from deployotron.config.defaults import (
    DEFAULT_DESIRED_COUNT,
    DEFAULT_REVISION_CPU,
    DEFAULT_REVISION_MEMORY,
)


class CommitInfo(BaseModel):
    """Commit metadata read from a cloned repository."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    sha: str = Field(..., description="Full commit SHA")
    message: str | None = Field(default=None, description="Commit subject")
    author: str | None = Field(default=None, description="Commit author")
    timestamp: datetime | None = Field(default=None, description="Commit time")

    @property
    def short_sha(self) -> str:
        """First eight characters of the SHA."""
        return self.sha[:8]


class HealthStatus(BaseModel):
    """Snapshot of a service's running tasks. Produced fresh on every poll."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    is_healthy: bool = Field(..., description="Running count reached desired")
    running_count: int = Field(..., ge=0, description="Running tasks")
    desired_count: int = Field(..., ge=0, description="Desired tasks")
    pending_count: int = Field(default=0, ge=0, description="Pending tasks")

    @classmethod
    def from_counts(
        cls, running: int, desired: int, pending: int = 0
    ) -> "HealthStatus":
        """Build a status; healthy once running meets a non-zero desired count."""
        return cls(
            is_healthy=desired > 0 and running >= desired,
            running_count=running,
            desired_count=desired,
            pending_count=pending,
        )


class RevisionConfig(BaseModel):
    """Immutable description of how to run a container image on a service.

    Attributes:
        cluster: Compute cluster (Container Apps environment)
        service: Service name
        family: Revision family; revisions are numbered within it
        container_name: Name of the container in the revision
        image_uri: Fully qualified image URI in the registry
        cpu: vCPU allocation
        memory: Memory allocation (e.g., 1Gi)
        port: Container port
        desired_count: Tasks the service should run
        environment: Container environment variables
        log_group: Log group the container writes to
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    cluster: str = Field(..., description="Compute cluster")
    service: str = Field(..., description="Service name")
    family: str = Field(..., description="Revision family")
    container_name: str = Field(..., description="Container name")
    image_uri: str = Field(..., description="Image URI")
    cpu: float = Field(default=DEFAULT_REVISION_CPU, gt=0, description="vCPU")
    memory: str = Field(default=DEFAULT_REVISION_MEMORY, description="Memory")
    port: int = Field(..., ge=1, le=65535, description="Container port")
    desired_count: int = Field(
        default=DEFAULT_DESIRED_COUNT, ge=1, description="Desired tasks"
    )
    environment: dict[str, str] = Field(
        default_factory=dict, description="Environment variables"
    )
    log_group: str = Field(..., description="Log group")
