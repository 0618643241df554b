"""Persistence of projects and deployment records.

The orchestrator only needs the three operations of :class:`DeploymentStore`.
:class:`JsonDeploymentStore` implements them on a local JSON state file and
adds the lookups used by the CLI.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from deployotron.lib.errors import PersistenceError, ProjectNotFoundError
from deployotron.lib.logging_config import get_logger
from deployotron.models.deployment import DeploymentRecord
from deployotron.models.project import Project

logger = get_logger(__name__)

STATE_VERSION = "1.0"


@runtime_checkable
class DeploymentStore(Protocol):
    """Persistence operations the orchestrator depends on."""

    def load_project(self, project_id: str) -> Project:
        """Return the project with ``project_id``.

        Raises:
            ProjectNotFoundError: If the id is unknown
        """
        ...

    def create_deployment_record(self, record: DeploymentRecord) -> None:
        """Persist a new deployment record."""
        ...

    def update_deployment_record(self, record: DeploymentRecord) -> None:
        """Overwrite an existing deployment record."""
        ...


class DeploymentState(BaseModel):
    """Top-level state stored on disk."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default=STATE_VERSION, description="State file version")
    projects: dict[str, Project] = Field(
        default_factory=dict, description="Projects keyed by id"
    )
    deployments: dict[str, DeploymentRecord] = Field(
        default_factory=dict, description="Deployments keyed by id"
    )


def load_state(state_path: Path) -> DeploymentState:
    """Load state data from disk; a missing or empty file is an empty state."""
    if not state_path.exists():
        return DeploymentState()

    try:
        content = state_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(
            f"Failed to read deployment state at {state_path}: {exc}"
        ) from exc
    if not content.strip():
        return DeploymentState()

    try:
        state = DeploymentState.model_validate_json(content)
    except ValidationError as exc:
        raise PersistenceError(
            f"Invalid deployment state format in {state_path}: {exc}"
        ) from exc

    if not state.version:
        state = state.model_copy(update={"version": STATE_VERSION})
    return state


def save_state(state_path: Path, state: DeploymentState) -> None:
    """Persist state data to disk, replacing the file atomically."""
    try:
        state_path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True)
        tmp_path = state_path.with_suffix(state_path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(state_path)
    except OSError as exc:
        raise PersistenceError(
            f"Failed to write deployment state to {state_path}: {exc}"
        ) from exc


class JsonDeploymentStore:
    """JSON-file deployment store.

    Every operation is a locked read-modify-write of the whole file, so
    concurrent runs in one process never interleave partial updates.
    """

    def __init__(self, state_path: str | Path) -> None:
        self.state_path = Path(state_path)
        self._lock = threading.Lock()

    def save_project(self, project: Project) -> Project:
        """Insert or replace a project, keeping its original creation time."""
        with self._lock:
            state = load_state(self.state_path)
            existing = state.projects.get(project.id)
            if existing is not None:
                project = project.model_copy(
                    update={"created_at": existing.created_at}
                ).touch()
            state.projects[project.id] = project
            save_state(self.state_path, state)
        return project

    def load_project(self, project_id: str) -> Project:
        with self._lock:
            state = load_state(self.state_path)
        project = state.projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def find_project_by_name(self, name: str) -> Project | None:
        """Return the project with ``name``, if any."""
        with self._lock:
            state = load_state(self.state_path)
        for project in state.projects.values():
            if project.name == name:
                return project
        return None

    def create_deployment_record(self, record: DeploymentRecord) -> None:
        with self._lock:
            state = load_state(self.state_path)
            if record.id in state.deployments:
                raise PersistenceError(f"Deployment already exists: {record.id}")
            state.deployments[record.id] = record.model_copy(deep=True)
            save_state(self.state_path, state)
        logger.debug(f"Created deployment record {record.id}")

    def update_deployment_record(self, record: DeploymentRecord) -> None:
        with self._lock:
            state = load_state(self.state_path)
            if record.id not in state.deployments:
                raise PersistenceError(f"Deployment not found: {record.id}")
            state.deployments[record.id] = record.model_copy(deep=True)
            save_state(self.state_path, state)

    def get_deployment(self, deployment_id: str) -> DeploymentRecord | None:
        """Return a deployment record by id."""
        with self._lock:
            state = load_state(self.state_path)
        return state.deployments.get(deployment_id)

    def list_deployments(self, project_id: str | None = None) -> list[DeploymentRecord]:
        """Return deployments, newest first, optionally for one project."""
        with self._lock:
            state = load_state(self.state_path)
        records = [
            record
            for record in state.deployments.values()
            if project_id is None or record.project_id == project_id
        ]
        return sorted(records, key=lambda r: r.started_at, reverse=True)
