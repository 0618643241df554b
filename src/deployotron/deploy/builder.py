"""Container image builder.

Builds, tags and pushes images with the Docker SDK, and writes a generated
Dockerfile into the source tree when the repository has none.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import APIError, DockerException, ImageNotFound
from docker.errors import BuildError as DockerBuildError

from deployotron.deploy.dockerfile import generate_dockerfile
from deployotron.lib.errors import (
    AuthError,
    BuildError,
    DockerNotAvailableError,
    ImageNotFoundError,
    PushError,
)
from deployotron.lib.logging_config import get_logger
from deployotron.models.project import FrameworkType

if TYPE_CHECKING:
    from docker.models.images import Image

logger = get_logger(__name__)


@dataclass
class BuildResult:
    """Result of a container image build operation.

    Attributes:
        image_id: The SHA256 ID of the built image
        image_name: The repository/image name
        tag: The image tag
        full_name: Full image reference (name:tag)
        log_lines: Build log output lines
    """

    image_id: str
    image_name: str
    tag: str
    full_name: str
    log_lines: list[str] = field(default_factory=list)

    @classmethod
    def from_image(
        cls,
        image: Image,
        full_name: str,
        log_lines: list[str] | None = None,
    ) -> BuildResult:
        """Create BuildResult from a Docker image object."""
        image_name, _, tag = full_name.rpartition(":")
        return cls(
            image_id=image.id or "",
            image_name=image_name,
            tag=tag,
            full_name=full_name,
            log_lines=log_lines or [],
        )


def split_image_reference(reference: str) -> tuple[str, str]:
    """Split ``repo[:tag]`` into repository and tag.

    A colon inside the registry host (``host:5000/repo``) is not a tag.

    Example:
        >>> split_image_reference("acme.azurecr.io/web:1a2b3c4d")
        ('acme.azurecr.io/web', '1a2b3c4d')
    """
    repository, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, "latest"
    return repository, tag


def get_oci_labels(project_name: str, source_sha: str | None = None) -> dict[str, str]:
    """Generate OCI-compliant container image labels.

    Args:
        project_name: Project name for the image title
        source_sha: Optional commit SHA for source tracking

    Returns:
        Dictionary of OCI labels
    """
    labels = {
        "org.opencontainers.image.title": project_name,
        "org.opencontainers.image.created": datetime.now(timezone.utc).isoformat(),
        "dev.deployotron.managed": "true",
    }
    if source_sha:
        labels["org.opencontainers.image.revision"] = source_sha
    return labels


def ensure_dockerfile(
    source_path: str | Path, framework: FrameworkType, project_name: str
) -> Path:
    """Write a generated Dockerfile unless the source tree already has one.

    Returns:
        Path of the Dockerfile that will be built

    Raises:
        BuildError: If no Dockerfile exists and the framework has no template
    """
    dockerfile = Path(source_path) / "Dockerfile"
    if dockerfile.is_file():
        logger.debug(f"Using repository Dockerfile at {dockerfile}")
        return dockerfile

    content = generate_dockerfile(framework, project_name)
    try:
        dockerfile.write_text(content, encoding="utf-8")
    except OSError as e:
        raise BuildError(f"Failed to write Dockerfile: {e}") from e
    logger.info(f"Generated {framework.value} Dockerfile at {dockerfile}")
    return dockerfile


def _collect_log_lines(build_logs: Any) -> list[str]:
    log_lines: list[str] = []
    for log_entry in build_logs or []:
        # Docker SDK returns dict[str, Any] for log entries
        if isinstance(log_entry, dict):
            if "stream" in log_entry:
                stream_val = log_entry["stream"]
                if isinstance(stream_val, str) and stream_val.strip():
                    log_lines.append(stream_val.rstrip("\n"))
            elif "error" in log_entry:
                log_lines.append(f"ERROR: {log_entry['error']}")
    return log_lines


class ContainerBuilder:
    """Docker SDK wrapper for building and pushing application images.

    Example:
        >>> builder = ContainerBuilder()
        >>> result = builder.build("/tmp/src", "storefront:1a2b3c4d")
        >>> builder.push("storefront:1a2b3c4d", "acme.azurecr.io/web:1a2b3c4d")
    """

    def __init__(self) -> None:
        """Connect to the Docker daemon using the environment configuration.

        Raises:
            DockerNotAvailableError: If Docker daemon is not available
        """
        try:
            self.client = docker.from_env()  # type: ignore[attr-defined]
        except DockerException as e:
            raise DockerNotAvailableError(operation="init") from e

    def build(
        self,
        build_context: str | Path,
        full_tag: str,
        labels: dict[str, str] | None = None,
        dockerfile: str = "Dockerfile",
        platform: str = "linux/amd64",
    ) -> BuildResult:
        """Build an image from the specified context.

        Args:
            build_context: Path to the build context directory
            full_tag: Image reference to tag the result with (name:tag)
            labels: Optional OCI labels to apply
            dockerfile: Path to Dockerfile relative to context
            platform: Target platform for the image

        Returns:
            BuildResult with image details and build logs

        Raises:
            BuildError: If the build context is missing or the build fails
        """
        context_path = Path(build_context)
        if not context_path.exists():
            raise BuildError(f"Build context not found: {build_context}")

        try:
            image, build_logs = self.client.images.build(
                path=str(context_path),
                tag=full_tag,
                dockerfile=dockerfile,
                labels=labels or {},
                rm=True,
                platform=platform,
                pull=True,
            )
        except DockerBuildError as e:
            raise BuildError(
                f"Docker build failed: {e.msg}",
                output=_collect_log_lines(e.build_log),
            ) from e
        except DockerException as e:
            raise BuildError(f"Docker error during build: {e}") from e

        log_lines = _collect_log_lines(build_logs)
        logger.debug(f"Built {full_tag} ({len(log_lines)} log lines)")
        return BuildResult.from_image(image, full_tag, log_lines)

    def login(self, registry: str, username: str, password: str) -> None:
        """Log the Docker client in to a registry.

        Raises:
            AuthError: If the registry rejects the credentials
        """
        try:
            self.client.login(username=username, password=password, registry=registry)
        except APIError as e:
            raise AuthError(f"Docker login to {registry} failed: {e}") from e

    def push(self, local_tag: str, destination_uri: str) -> None:
        """Tag a locally built image with its registry URI and push it.

        Raises:
            ImageNotFoundError: If ``local_tag`` was never built
            PushError: If tagging or pushing fails
        """
        try:
            image = self.client.images.get(local_tag)
        except ImageNotFound as e:
            raise ImageNotFoundError(local_tag) from e
        except DockerException as e:
            raise PushError(f"Docker error looking up {local_tag}: {e}") from e

        repository, tag = split_image_reference(destination_uri)
        try:
            image.tag(repository, tag=tag)
            for chunk in self.client.images.push(
                repository, tag=tag, stream=True, decode=True
            ):
                if isinstance(chunk, dict) and "error" in chunk:
                    raise PushError(
                        f"Push of {destination_uri} failed: {chunk['error']}"
                    )
        except DockerException as e:
            raise PushError(f"Docker error during push: {e}") from e
        logger.debug(f"Pushed {local_tag} to {destination_uri}")
