"""In-memory ledger shared by the shadow backends.

A :class:`ShadowState` records every artifact the shadow backends synthesize
(registries, images, revisions, services, clones, logs) so tests can assert
on what a pipeline run did. One lock guards all maps; every method copies
values in and out so callers never hold references into the ledger.

Instances are created by the caller and passed to
:func:`deployotron.deploy.backends.create_backends`; there is no module-level
instance.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from deployotron.models.project import FrameworkType


@dataclass(frozen=True)
class ServiceStatus:
    """Task counters of a shadow service."""

    running_count: int
    desired_count: int
    pending_count: int


@dataclass(frozen=True)
class ImageBuild:
    """A synthesized image build.

    Attributes:
        tag: Local image tag
        framework: Framework the image was built for
        source_path: Source tree the build used
        dockerfile: Rendered Dockerfile content
        image_id: Synthetic image digest
        built_at: Build time
    """

    tag: str
    framework: FrameworkType
    source_path: str
    dockerfile: str
    image_id: str
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ShadowState:
    """Thread-safe ledger of shadow backend artifacts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._registries: dict[str, str] = {}
        self._images: dict[str, ImageBuild] = {}
        self._pushed: dict[str, str] = {}
        self._revisions: dict[str, list[str]] = {}
        self._revision_configs: dict[str, dict[str, Any]] = {}
        self._services: dict[tuple[str, str], ServiceStatus] = {}
        self._health_polls: dict[tuple[str, str], int] = {}
        self._cloned: dict[str, list[str]] = {}
        self._cleanups: list[str] = []
        self._logs: dict[tuple[str, str], list[str]] = {}

    # Registries

    def get_or_add_registry(self, name: str, uri: str) -> tuple[str, bool]:
        """Return the URI for ``name``, recording ``uri`` if it is new.

        Returns:
            Tuple of (registry URI, whether an entry was created)
        """
        with self._lock:
            existing = self._registries.get(name)
            if existing is not None:
                return existing, False
            self._registries[name] = uri
            return uri, True

    def get_registry(self, name: str) -> str | None:
        with self._lock:
            return self._registries.get(name)

    def registries(self) -> dict[str, str]:
        with self._lock:
            return dict(self._registries)

    # Images

    def add_image(self, build: ImageBuild) -> None:
        with self._lock:
            self._images[build.tag] = build

    def has_image(self, tag: str) -> bool:
        with self._lock:
            return tag in self._images

    def get_image(self, tag: str) -> ImageBuild | None:
        with self._lock:
            return self._images.get(tag)

    def images(self) -> dict[str, ImageBuild]:
        with self._lock:
            return dict(self._images)

    def record_push(self, destination_uri: str, tag: str) -> None:
        with self._lock:
            self._pushed[destination_uri] = tag

    def pushed_images(self) -> dict[str, str]:
        """Destination URI -> source tag of every pushed image."""
        with self._lock:
            return dict(self._pushed)

    # Revisions

    def add_revision(
        self, family: str, config: dict[str, Any], make_id: Callable[[int], str]
    ) -> str:
        """Append a revision to ``family``.

        Args:
            family: Revision family
            config: Revision configuration to record
            make_id: Builds the revision id from its 1-based number in the family

        Returns:
            The new revision id
        """
        with self._lock:
            revisions = self._revisions.setdefault(family, [])
            revision_id = make_id(len(revisions) + 1)
            revisions.append(revision_id)
            self._revision_configs[revision_id] = dict(config)
            return revision_id

    def revisions(self, family: str) -> list[str]:
        with self._lock:
            return list(self._revisions.get(family, []))

    def revision_config(self, revision_id: str) -> dict[str, Any] | None:
        with self._lock:
            config = self._revision_configs.get(revision_id)
            return dict(config) if config is not None else None

    # Services

    def set_service_status(
        self, cluster: str, service: str, status: ServiceStatus
    ) -> None:
        with self._lock:
            self._services[(cluster, service)] = status

    def get_service_status(self, cluster: str, service: str) -> ServiceStatus | None:
        with self._lock:
            return self._services.get((cluster, service))

    def services(self) -> dict[tuple[str, str], ServiceStatus]:
        with self._lock:
            return dict(self._services)

    def poll_service(self, cluster: str, service: str) -> ServiceStatus | None:
        """Count a health poll, report the status, then advance one task.

        The returned snapshot is taken before the advance, so a service with
        pending tasks is never reported healthy on the poll that starts it.
        """
        key = (cluster, service)
        with self._lock:
            self._health_polls[key] = self._health_polls.get(key, 0) + 1
            status = self._services.get(key)
            if status is None:
                return None
            if status.pending_count > 0:
                self._services[key] = replace(
                    status,
                    running_count=status.running_count + 1,
                    pending_count=status.pending_count - 1,
                )
            return status

    def health_poll_count(self, cluster: str, service: str) -> int:
        with self._lock:
            return self._health_polls.get((cluster, service), 0)

    # Repositories

    def add_cloned_repo(self, url: str, path: str) -> None:
        with self._lock:
            self._cloned.setdefault(url, []).append(path)

    def cloned_repos(self, url: str) -> list[str]:
        with self._lock:
            return list(self._cloned.get(url, []))

    def record_cleanup(self, path: str) -> None:
        with self._lock:
            self._cleanups.append(path)

    def cleanup_attempts(self, path: str | None = None) -> int:
        """Number of cleanup calls, optionally for one path."""
        with self._lock:
            if path is None:
                return len(self._cleanups)
            return self._cleanups.count(path)

    # Logs

    def add_log(self, log_group: str, stream: str, message: str) -> None:
        with self._lock:
            self._logs.setdefault((log_group, stream), []).append(message)

    def get_logs(self, log_group: str, stream: str, limit: int) -> list[str]:
        """Return the last ``limit`` lines of a stream, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._logs.get((log_group, stream), [])[-limit:])

    def log_streams(self) -> list[tuple[str, str]]:
        with self._lock:
            return list(self._logs)

    # Testing utilities

    def reset(self) -> None:
        """Empty every map."""
        with self._lock:
            self._registries.clear()
            self._images.clear()
            self._pushed.clear()
            self._revisions.clear()
            self._revision_configs.clear()
            self._services.clear()
            self._health_polls.clear()
            self._cloned.clear()
            self._cleanups.clear()
            self._logs.clear()

    def summary(self) -> dict[str, int]:
        """Entry counts per map."""
        with self._lock:
            return {
                "registries": len(self._registries),
                "images": len(self._images),
                "pushed_images": len(self._pushed),
                "revisions": sum(len(r) for r in self._revisions.values()),
                "services": len(self._services),
                "health_polls": sum(self._health_polls.values()),
                "cloned_repos": sum(len(p) for p in self._cloned.values()),
                "cleanups": len(self._cleanups),
                "log_lines": sum(len(lines) for lines in self._logs.values()),
            }

    def is_empty(self) -> bool:
        return not any(self.summary().values())
