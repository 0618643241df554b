"""Backend-agnostic operation interfaces.

The orchestrator depends only on these two protocols. Real backends (git,
Docker, Azure) and shadow backends (in-memory ledger) both satisfy them, and
nothing downstream can tell which one it holds.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from deployotron.models.operations import CommitInfo, HealthStatus, RevisionConfig
from deployotron.models.project import FrameworkType


@runtime_checkable
class RepositoryOperations(Protocol):
    """Source checkout and inspection."""

    async def clone(self, url: str, branch: str) -> Path:
        """Clone ``branch`` of ``url`` into a fresh local directory.

        Args:
            url: Repository URL.
            branch: Branch to check out.

        Returns:
            Path of the working tree.

        Raises:
            CloneError: If the URL or branch is invalid or unreachable.
        """
        ...

    async def detect_framework(self, path: Path) -> FrameworkType:
        """Detect the framework of a working tree.

        Never fails; returns ``FrameworkType.OTHER`` when no marker is found.
        """
        ...

    async def commit_info(self, path: Path, ref: str | None = None) -> CommitInfo:
        """Read the commit checked out at ``path`` (or ``ref``).

        Raises:
            NotARepositoryError: If the path has no version-control metadata.
        """
        ...

    async def cleanup(self, path: Path) -> None:
        """Remove a working tree. Best effort: errors are logged, not raised."""
        ...


@runtime_checkable
class DeploymentOperations(Protocol):
    """Container registry, image and compute service operations."""

    async def ensure_registry(self, name: str) -> str:
        """Return the URI of registry repository ``name``, creating it once.

        Idempotent: repeated calls return the same URI and create nothing.
        """
        ...

    async def authenticate(self) -> None:
        """Authenticate the image client against the registry.

        Raises:
            AuthError: If the registry rejects the credentials.
        """
        ...

    async def build_image(
        self, source_path: Path, tag: str, framework: FrameworkType
    ) -> None:
        """Build ``source_path`` into a local image tagged ``tag``.

        Raises:
            BuildError: Carrying the failing step's output.
        """
        ...

    async def push_image(self, tag: str, destination_uri: str) -> None:
        """Push a built image to ``destination_uri``.

        Only valid after a successful ``build_image`` for the same tag.

        Raises:
            ImageNotFoundError: If ``tag`` was never built.
            PushError: If the push itself fails.
        """
        ...

    async def register_revision(self, config: RevisionConfig) -> str:
        """Register a new service revision and return its identifier.

        Raises:
            RegistrationError: If the revision is rejected.
        """
        ...

    async def update_service(self, config: RevisionConfig, revision_id: str) -> None:
        """Roll ``revision_id`` out to the running service.

        Raises:
            ServiceUpdateError: If the update is rejected.
        """
        ...

    async def poll_health(self, cluster: str, service: str) -> HealthStatus:
        """Return a fresh snapshot of the service's task counts."""
        ...

    async def fetch_logs(self, group: str, stream: str, limit: int) -> list[str]:
        """Return at most ``limit`` of the latest log lines, oldest first."""
        ...
