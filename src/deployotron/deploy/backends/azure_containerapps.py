"""Azure deployment backend.

Images are built and pushed with Docker to Azure Container Registry; services
run on Azure Container Apps; logs are read from Log Analytics. Azure SDK
calls are synchronous and run in worker threads.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from deployotron.deploy.builder import (
    ContainerBuilder,
    ensure_dockerfile,
    get_oci_labels,
    split_image_reference,
)
from deployotron.lib.errors import (
    AuthError,
    CloudSDKNotInstalledError,
    DeploymentError,
    RegistrationError,
    ServiceUpdateError,
    TransientFaultError,
)
from deployotron.lib.logging_config import get_logger
from deployotron.models.backend_config import AzureTargetConfig
from deployotron.models.operations import HealthStatus, RevisionConfig
from deployotron.models.project import FrameworkType

if TYPE_CHECKING:
    from azure.mgmt.appcontainers import ContainerAppsAPIClient
    from azure.mgmt.containerregistry import ContainerRegistryManagementClient

logger = get_logger(__name__)

REGISTRY_SECRET_NAME = "registry-password"
LOG_QUERY_TIMESPAN = timedelta(hours=1)
FAILED_PROVISIONING_STATES = frozenset({"Failed", "Canceled"})

_SUFFIX_INVALID = re.compile(r"[^a-z0-9-]+")


def revision_suffix(image_uri: str) -> str:
    """Unique, Container Apps-safe revision suffix derived from the image tag.

    Example:
        >>> revision_suffix("acme.azurecr.io/web:1A2B3C4D").startswith("1a2b3c4d-")
        True
    """
    _, tag = split_image_reference(image_uri)
    base = _SUFFIX_INVALID.sub("-", tag.lower()).strip("-")[:20] or "rev"
    return f"{base}-{uuid.uuid4().hex[:6]}"


def build_log_query(stream: str, limit: int) -> str:
    """KQL query for the latest console lines of a container app."""
    app_name = stream.replace("'", "''")
    return (
        "ContainerAppConsoleLogs_CL"
        f" | where ContainerAppName_s == '{app_name}'"
        " | project TimeGenerated, Log_s"
        " | order by TimeGenerated desc"
        f" | take {int(limit)}"
    )


class AzureContainerAppsBackend:
    """Deployment operations against Azure Container Registry and Container Apps."""

    def __init__(
        self, config: AzureTargetConfig, builder: ContainerBuilder | None = None
    ) -> None:
        """Initialize the Azure clients.

        Args:
            config: Azure target configuration
            builder: Container builder; created on first use when omitted

        Raises:
            CloudSDKNotInstalledError: If Azure SDK dependencies are missing
        """
        try:
            from azure.identity import DefaultAzureCredential
            from azure.mgmt.appcontainers import ContainerAppsAPIClient
            from azure.mgmt.appcontainers import models as app_models
        except ImportError as exc:
            raise CloudSDKNotInstalledError(
                provider="azure", sdk_name="azure-mgmt-appcontainers"
            ) from exc
        try:
            from azure.mgmt.containerregistry import ContainerRegistryManagementClient
            from azure.mgmt.containerregistry import models as registry_models
        except ImportError as exc:
            raise CloudSDKNotInstalledError(
                provider="azure", sdk_name="azure-mgmt-containerregistry"
            ) from exc

        self._config = config
        self._credential = DefaultAzureCredential()
        self._apps: ContainerAppsAPIClient = ContainerAppsAPIClient(
            self._credential, config.subscription_id
        )
        self._registries: ContainerRegistryManagementClient = (
            ContainerRegistryManagementClient(self._credential, config.subscription_id)
        )
        self._app_models: Any = app_models
        self._registry_models: Any = registry_models
        self._builder = builder
        self._login_server: str | None = None
        self._registry_username: str | None = None
        self._registry_password: str | None = None
        self._prepared: dict[str, Any] = {}
        # service -> minimum replicas of the last submitted revision
        self._scaled_min: dict[str, int] = {}

    def _environment_id(self, environment_name: str) -> str:
        return (
            f"/subscriptions/{self._config.subscription_id}/resourceGroups/"
            f"{self._config.resource_group}/providers/Microsoft.App/"
            f"managedEnvironments/{environment_name}"
        )

    def _get_builder(self) -> ContainerBuilder:
        if self._builder is None:
            self._builder = ContainerBuilder()
        return self._builder

    # Registry

    def _ensure_login_server(self) -> str:
        if self._login_server is not None:
            return self._login_server

        from azure.core.exceptions import ResourceNotFoundError

        rg, name = self._config.resource_group, self._config.registry_name
        try:
            registry = self._registries.registries.get(rg, name)
        except ResourceNotFoundError:
            logger.info(f"Creating container registry {name} in {rg}")
            registry = self._registries.registries.begin_create(
                rg,
                name,
                self._registry_models.Registry(
                    location=self._config.location,
                    sku=self._registry_models.Sku(name="Basic"),
                    admin_user_enabled=True,
                ),
            ).result()
        self._login_server = registry.login_server
        return registry.login_server

    async def ensure_registry(self, name: str) -> str:
        try:
            login_server = await asyncio.to_thread(self._ensure_login_server)
        except Exception as exc:
            raise DeploymentError(
                operation="ensure_registry",
                message=(
                    f"Failed to ensure registry {self._config.registry_name}: {exc}"
                ),
            ) from exc
        # Repositories are created implicitly on first push
        return f"{login_server}/{name}"

    def _login(self) -> None:
        login_server = self._ensure_login_server()
        credentials = self._registries.registries.list_credentials(
            self._config.resource_group, self._config.registry_name
        )
        if not credentials.username or not credentials.passwords:
            raise AuthError(
                f"Registry {self._config.registry_name} has no admin credentials; "
                "enable the admin user"
            )
        self._registry_username = credentials.username
        self._registry_password = credentials.passwords[0].value
        self._get_builder().login(
            login_server, self._registry_username, self._registry_password
        )

    async def authenticate(self) -> None:
        try:
            await asyncio.to_thread(self._login)
        except DeploymentError:
            raise
        except Exception as exc:
            raise AuthError(f"Failed to read registry credentials: {exc}") from exc
        logger.debug(f"Authenticated to {self._login_server}")

    # Images

    def _build(self, source_path: Path, tag: str, framework: FrameworkType) -> None:
        project_name = tag.split(":", 1)[0]
        ensure_dockerfile(source_path, framework, project_name)
        _, short_sha = split_image_reference(tag)
        result = self._get_builder().build(
            source_path, tag, labels=get_oci_labels(project_name, short_sha)
        )
        logger.info(f"Built image {result.full_name} ({result.image_id[:19]})")

    async def build_image(
        self, source_path: Path, tag: str, framework: FrameworkType
    ) -> None:
        await asyncio.to_thread(self._build, Path(source_path), tag, framework)

    async def push_image(self, tag: str, destination_uri: str) -> None:
        await asyncio.to_thread(self._get_builder().push, tag, destination_uri)

    # Revisions

    async def register_revision(self, config: RevisionConfig) -> str:
        """Prepare a container app envelope for a new revision.

        Container Apps creates revisions as a side effect of updating the app,
        so the envelope is held until :meth:`update_service` submits it.
        """
        if self._login_server is None or self._registry_password is None:
            raise RegistrationError(
                "Registry credentials are unknown; authenticate first"
            )

        m = self._app_models
        suffix = revision_suffix(config.image_uri)
        min_replicas = self._min_replicas(config)
        try:
            container = m.Container(
                name=config.container_name,
                image=config.image_uri,
                resources=m.ContainerResources(cpu=config.cpu, memory=config.memory),
                env=[
                    m.EnvironmentVar(name=key, value=value)
                    for key, value in config.environment.items()
                ]
                or None,
            )
            envelope = m.ContainerApp(
                location=self._config.location,
                managed_environment_id=self._environment_id(config.cluster),
                configuration=m.Configuration(
                    ingress=m.Ingress(
                        external=self._config.ingress_external,
                        target_port=config.port,
                        traffic=[
                            m.TrafficWeight(percentage=100, latest_revision=True)
                        ],
                    ),
                    secrets=[
                        m.Secret(
                            name=REGISTRY_SECRET_NAME, value=self._registry_password
                        )
                    ],
                    registries=[
                        m.RegistryCredentials(
                            server=self._login_server,
                            username=self._registry_username,
                            password_secret_ref=REGISTRY_SECRET_NAME,
                        )
                    ],
                ),
                template=m.Template(
                    revision_suffix=suffix,
                    containers=[container],
                    scale=m.Scale(
                        min_replicas=min_replicas,
                        max_replicas=self._config.max_replicas,
                    ),
                ),
            )
        except (TypeError, ValueError) as exc:
            raise RegistrationError(f"Invalid revision configuration: {exc}") from exc

        revision_id = f"{config.service}--{suffix}"
        self._prepared[revision_id] = envelope
        logger.debug(f"Prepared revision {revision_id} for {config.image_uri}")
        return revision_id

    def _min_replicas(self, config: RevisionConfig) -> int:
        return max(self._config.min_replicas, config.desired_count)

    def _submit(self, config: RevisionConfig, envelope: Any) -> str:
        poller = self._apps.container_apps.begin_create_or_update(
            resource_group_name=self._config.resource_group,
            container_app_name=config.service,
            container_app_envelope=envelope,
        )
        result = poller.result()
        return result.provisioning_state or "Unknown"

    async def update_service(self, config: RevisionConfig, revision_id: str) -> None:
        envelope = self._prepared.pop(revision_id, None)
        if envelope is None:
            raise ServiceUpdateError(f"Unknown revision: {revision_id}")

        try:
            state = await asyncio.to_thread(self._submit, config, envelope)
        except Exception as exc:
            raise ServiceUpdateError(
                f"Azure Container Apps update of {config.service} failed: {exc}"
            ) from exc
        if state in FAILED_PROVISIONING_STATES:
            raise ServiceUpdateError(
                f"Container app {config.service} provisioning ended in state {state}"
            )
        self._scaled_min[config.service] = self._min_replicas(config)
        logger.info(f"Submitted revision {revision_id} ({state})")

    # Health and logs

    def _replica_counts(self, service: str) -> tuple[int, int]:
        rg = self._config.resource_group
        app = self._apps.container_apps.get(
            resource_group_name=rg, container_app_name=service
        )
        desired = max(self._scaled_min.get(service, self._config.min_replicas), 1)
        if not app.latest_revision_name:
            return 0, desired
        revision = self._apps.container_apps_revisions.get_revision(
            resource_group_name=rg,
            container_app_name=service,
            revision_name=app.latest_revision_name,
        )
        return revision.replicas or 0, desired

    async def poll_health(self, cluster: str, service: str) -> HealthStatus:
        try:
            running, desired = await asyncio.to_thread(self._replica_counts, service)
        except Exception as exc:
            raise TransientFaultError(
                "poll_health", f"Failed to read status of {service}: {exc}"
            ) from exc
        return HealthStatus.from_counts(
            running=running, desired=desired, pending=max(desired - running, 0)
        )

    def _query_logs(self, stream: str, limit: int) -> list[str]:
        try:
            from azure.monitor.query import LogsQueryClient, LogsQueryStatus
        except ImportError as exc:
            raise CloudSDKNotInstalledError(
                provider="azure", sdk_name="azure-monitor-query"
            ) from exc

        client = LogsQueryClient(self._credential)
        response = client.query_workspace(
            self._config.workspace_id,
            build_log_query(stream, limit),
            timespan=LOG_QUERY_TIMESPAN,
        )
        if response.status == LogsQueryStatus.SUCCESS:
            tables = response.tables
        else:
            tables = response.partial_data or []

        lines = [str(row[1]) for table in tables for row in table.rows]
        lines.reverse()
        return lines[-limit:]

    async def fetch_logs(self, group: str, stream: str, limit: int) -> list[str]:
        if limit <= 0:
            return []
        if not self._config.workspace_id:
            raise DeploymentError(
                operation="fetch_logs",
                message="Set DEPLOYOTRON_AZURE_WORKSPACE_ID to read container logs",
            )
        try:
            return await asyncio.to_thread(self._query_logs, stream, limit)
        except CloudSDKNotInstalledError:
            raise
        except Exception as exc:
            raise DeploymentError(
                operation="fetch_logs",
                message=f"Failed to query logs for {stream} ({group}): {exc}",
            ) from exc
