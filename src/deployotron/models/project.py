"""Pydantic models for deployment projects.

A project describes what to deploy (a repository and branch) and where to
deploy it (cluster, service, and registry repository).
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FrameworkType(str, Enum):
    """Application framework detected in, or declared for, a repository."""

    NEXTJS = "nextjs"
    REACT = "react"
    VUE = "vue"
    ANGULAR = "angular"
    NODE = "node"
    PYTHON = "python"
    RUBY = "ruby"
    GO = "go"
    RUST = "rust"
    OTHER = "other"


class Environment(str, Enum):
    """Target deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


PROJECT_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$|^[a-z0-9]$")
REPOSITORY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._/-]*[a-z0-9]$|^[a-z0-9]$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(BaseModel):
    """A deployable project.

    Attributes:
        id: Unique project identifier (UUID v4)
        name: Project name, used for image names and revision families
        repository_url: Git repository URL
        branch: Branch to deploy from
        framework: Declared framework, or None to detect it from the source
        environment: Target deployment environment
        cluster_name: Compute cluster (Container Apps environment) name
        service_name: Service (container app) name
        registry_repository: Repository name inside the container registry
        log_group: Log group the service writes to
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique project identifier",
    )
    name: str = Field(..., description="Project name")
    repository_url: str = Field(..., description="Git repository URL")
    branch: str = Field(default="main", description="Branch to deploy from")
    framework: FrameworkType | None = Field(
        default=None, description="Declared framework (None = detect)"
    )
    environment: Environment = Field(
        default=Environment.DEVELOPMENT, description="Target environment"
    )
    cluster_name: str = Field(..., description="Compute cluster name")
    service_name: str = Field(..., description="Service name")
    registry_repository: str = Field(
        ..., description="Repository name inside the container registry"
    )
    log_group: str | None = Field(
        default=None, description="Log group (defaults to /deployotron/<name>)"
    )
    created_at: datetime = Field(
        default_factory=_utcnow, description="Creation timestamp"
    )
    updated_at: datetime = Field(
        default_factory=_utcnow, description="Last update timestamp"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate project name pattern."""
        if not PROJECT_NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid project name: {v}. "
                "Must contain only lowercase letters, numbers, and '-'"
            )
        return v

    @field_validator("registry_repository")
    @classmethod
    def validate_registry_repository(cls, v: str) -> str:
        """Validate registry repository name pattern."""
        if not REPOSITORY_PATTERN.match(v):
            raise ValueError(
                f"Invalid repository name: {v}. "
                "Must contain only lowercase letters, numbers, '.', '_', '/', '-'"
            )
        return v

    @field_validator("branch", "repository_url", "cluster_name", "service_name")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject blank identifiers."""
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @model_validator(mode="after")
    def default_log_group(self) -> "Project":
        """Derive the log group from the project name when unset."""
        if self.log_group is None:
            self.log_group = f"/deployotron/{self.name}"
        return self

    def touch(self) -> "Project":
        """Return a copy with a refreshed updated_at timestamp."""
        return self.model_copy(update={"updated_at": _utcnow()})
