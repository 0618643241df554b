"""Shadow deployment backend.

Synthesizes registry URIs, image builds, revisions and service rollouts in
the shared :class:`ShadowState`. Services start with every task pending and
move one task to running per health poll.
"""

from __future__ import annotations

import hashlib
import random
from datetime import datetime, timezone
from pathlib import Path

from deployotron.deploy.dockerfile import generate_dockerfile
from deployotron.deploy.shadow.base import ShadowBackend
from deployotron.deploy.shadow.state import ImageBuild, ServiceStatus, ShadowState
from deployotron.lib.errors import BuildError, ImageNotFoundError, ServiceUpdateError
from deployotron.lib.logging_config import get_logger
from deployotron.models.backend_config import BackendConfig
from deployotron.models.operations import HealthStatus, RevisionConfig
from deployotron.models.project import FrameworkType

logger = get_logger(__name__)

DEFAULT_SHADOW_REGISTRY = "deployotronshadow.azurecr.io"


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


class ShadowDeploymentBackend(ShadowBackend):
    """Deployment operations against the shadow ledger.

    Args:
        config: Backend configuration (failure rate, delays)
        state: Ledger shared with the other shadow backends
        registry_host: Host used for synthesized registry URIs
        rng: Random source for failure sampling
    """

    def __init__(
        self,
        config: BackendConfig,
        state: ShadowState,
        registry_host: str = DEFAULT_SHADOW_REGISTRY,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(config, state, rng)
        self.registry_host = registry_host

    async def ensure_registry(self, name: str) -> str:
        await self._simulate_delay(0.1)
        self._check_failure("ensure_registry")

        uri, created = self.state.get_or_add_registry(
            name, f"{self.registry_host}/{name}"
        )
        if created:
            logger.debug(f"Created shadow registry repository {uri}")
        return uri

    async def authenticate(self) -> None:
        await self._simulate_delay(0.2)
        self._check_failure("authenticate")

    async def build_image(
        self, source_path: Path, tag: str, framework: FrameworkType
    ) -> None:
        await self._simulate_delay(2.0)
        self._check_failure("build")

        # Same rule as the real builder: repository Dockerfile, else template
        dockerfile_path = Path(source_path) / "Dockerfile"
        if dockerfile_path.is_file():
            try:
                dockerfile = dockerfile_path.read_text(encoding="utf-8")
            except OSError as e:
                raise BuildError(f"Failed to read {dockerfile_path}: {e}") from e
        else:
            dockerfile = generate_dockerfile(framework, tag.split(":", 1)[0])

        digest = hashlib.sha256(f"{tag}\n{dockerfile}".encode()).hexdigest()
        self.state.add_image(
            ImageBuild(
                tag=tag,
                framework=framework,
                source_path=str(source_path),
                dockerfile=dockerfile,
                image_id=f"sha256:{digest}",
            )
        )
        logger.debug(f"Shadow-built {tag} ({framework.value})")

    async def push_image(self, tag: str, destination_uri: str) -> None:
        # Ordering violations are caller bugs and are never masked by sampling
        if not self.state.has_image(tag):
            raise ImageNotFoundError(tag)

        await self._simulate_delay(3.0)
        self._check_failure("push")
        self.state.record_push(destination_uri, tag)

    async def register_revision(self, config: RevisionConfig) -> str:
        await self._simulate_delay(0.5)
        self._check_failure("register_revision")

        return self.state.add_revision(
            config.family,
            config.model_dump(mode="json"),
            lambda number: f"{config.service}--r{number}",
        )

    async def update_service(self, config: RevisionConfig, revision_id: str) -> None:
        await self._simulate_delay(0.8)
        self._check_failure("update_service")

        if self.state.revision_config(revision_id) is None:
            raise ServiceUpdateError(f"Unknown revision: {revision_id}")

        self.state.set_service_status(
            config.cluster,
            config.service,
            ServiceStatus(
                running_count=0,
                desired_count=config.desired_count,
                pending_count=config.desired_count,
            ),
        )
        for line in (
            f"[{_timestamp()}] Deploying revision {revision_id}",
            f"[{_timestamp()}] Pulling image {config.image_uri}",
        ):
            self.state.add_log(config.log_group, config.service, line)

    async def poll_health(self, cluster: str, service: str) -> HealthStatus:
        await self._simulate_delay(0.3)
        self._check_failure("poll_health")

        status = self.state.poll_service(cluster, service)
        if status is None:
            return HealthStatus.from_counts(running=0, desired=0)
        return HealthStatus.from_counts(
            running=status.running_count,
            desired=status.desired_count,
            pending=status.pending_count,
        )

    async def fetch_logs(self, group: str, stream: str, limit: int) -> list[str]:
        await self._simulate_delay(0.4)
        self._check_failure("fetch_logs")

        lines = self.state.get_logs(group, stream, limit)
        if lines or limit <= 0:
            return lines

        for line in (
            f"[{_timestamp()}] Container started",
            f"[{_timestamp()}] Application initializing...",
            f"[{_timestamp()}] Server listening for requests",
        ):
            self.state.add_log(group, stream, line)
        return self.state.get_logs(group, stream, limit)

