"""Data models for projects, deployments and backend operations."""

from deployotron.models.backend_config import (
    AzureTargetConfig,
    BackendConfig,
    OrchestratorSettings,
)
from deployotron.models.deployment import (
    DeploymentRecord,
    DeploymentStatus,
    ProgressEvent,
)
from deployotron.models.operations import CommitInfo, HealthStatus, RevisionConfig
from deployotron.models.project import Environment, FrameworkType, Project

__all__ = [
    "AzureTargetConfig",
    "BackendConfig",
    "CommitInfo",
    "DeploymentRecord",
    "DeploymentStatus",
    "Environment",
    "FrameworkType",
    "HealthStatus",
    "OrchestratorSettings",
    "ProgressEvent",
    "Project",
    "RevisionConfig",
]
