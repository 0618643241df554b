"""In-memory shadow backends for credential-free deployments and tests."""

from deployotron.deploy.shadow.deployment import ShadowDeploymentBackend
from deployotron.deploy.shadow.repository import ShadowRepositoryBackend
from deployotron.deploy.shadow.state import ImageBuild, ServiceStatus, ShadowState

__all__ = [
    "ImageBuild",
    "ServiceStatus",
    "ShadowDeploymentBackend",
    "ShadowRepositoryBackend",
    "ShadowState",
]
