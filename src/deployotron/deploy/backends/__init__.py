"""Operation backends and the factory that selects them."""

from __future__ import annotations

import random
from typing import NamedTuple

from deployotron.deploy.backends.base import DeploymentOperations, RepositoryOperations
from deployotron.deploy.shadow.state import ShadowState
from deployotron.lib.errors import ConfigError
from deployotron.lib.logging_config import get_logger
from deployotron.models.backend_config import AzureTargetConfig, BackendConfig

logger = get_logger(__name__)


class Backends(NamedTuple):
    """One implementation of each operation contract."""

    repository: RepositoryOperations
    deployment: DeploymentOperations


def create_backends(
    config: BackendConfig,
    state: ShadowState | None = None,
    azure: AzureTargetConfig | None = None,
    *,
    rng: random.Random | None = None,
) -> Backends:
    """Create repository and deployment backends for a configuration.

    This is the only place backends are constructed.

    Args:
        config: Backend selection and failure injection settings
        state: Shadow ledger, required in shadow mode
        azure: Azure target, required for real deployments
        rng: Random source for shadow failure sampling

    Returns:
        Backends satisfying both operation contracts

    Raises:
        ConfigError: If the collaborator for the selected mode is missing
        CloudSDKNotInstalledError: If real mode is selected without the Azure SDK
    """
    if config.shadow_mode_enabled:
        if state is None:
            raise ConfigError(
                "shadow_state", "Shadow mode requires a ShadowState instance"
            )
        from deployotron.deploy.shadow import (
            ShadowDeploymentBackend,
            ShadowRepositoryBackend,
        )

        logger.info(
            f"Using shadow backends (failure rate {config.failure_rate:.2f})"
        )
        return Backends(
            repository=ShadowRepositoryBackend(config, state, rng=rng),
            deployment=ShadowDeploymentBackend(config, state, rng=rng),
        )

    if azure is None:
        raise ConfigError(
            "azure", "Real deployments require an Azure target configuration"
        )
    from deployotron.deploy.backends.azure_containerapps import (
        AzureContainerAppsBackend,
    )
    from deployotron.deploy.backends.git import GitRepositoryBackend

    logger.info(f"Using Azure backends (resource group {azure.resource_group})")
    return Backends(
        repository=GitRepositoryBackend(),
        deployment=AzureContainerAppsBackend(azure),
    )


__all__ = [
    "Backends",
    "DeploymentOperations",
    "RepositoryOperations",
    "create_backends",
]
