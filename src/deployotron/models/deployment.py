"""Deployment record and progress models.

A deployment record tracks one pipeline run. Its status moves forward through
a small state machine; the only backward-looking move is the explicit
rollback transition out of a terminal state.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from deployotron.lib.errors import InvalidTransitionError
from deployotron.models.project import Project

MAX_LOG_LINES = 500


class DeploymentStatus(str, Enum):
    """Lifecycle states of a deployment."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        """Whether no forward pipeline step may change this status."""
        return self in _TERMINAL

    def can_transition_to(self, target: DeploymentStatus) -> bool:
        """Check whether moving to ``target`` is allowed."""
        return target in ALLOWED_TRANSITIONS.get(self, frozenset())


_TERMINAL = frozenset(
    {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.ROLLED_BACK}
)

ALLOWED_TRANSITIONS: dict[DeploymentStatus, frozenset[DeploymentStatus]] = {
    DeploymentStatus.PENDING: frozenset(
        {DeploymentStatus.IN_PROGRESS, DeploymentStatus.FAILED}
    ),
    DeploymentStatus.IN_PROGRESS: frozenset(
        {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED}
    ),
    DeploymentStatus.SUCCESS: frozenset({DeploymentStatus.ROLLED_BACK}),
    DeploymentStatus.FAILED: frozenset({DeploymentStatus.ROLLED_BACK}),
    DeploymentStatus.ROLLED_BACK: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentRecord(BaseModel):
    """Persisted record of a single deployment run.

    Attributes:
        id: Unique deployment identifier
        project_id: Project this deployment belongs to
        status: Current lifecycle status
        commit_sha: Deployed commit, empty until commit info is read
        commit_message: Commit message, if known
        image_tag: Local image tag
        started_at: When the run started
        completed_at: When the run reached a terminal status
        error_message: Error recorded on failure
        logs: Accumulated log excerpt
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique deployment identifier",
    )
    project_id: str = Field(..., description="Project identifier")
    status: DeploymentStatus = Field(
        default=DeploymentStatus.PENDING, description="Current status"
    )
    commit_sha: str = Field(default="", description="Deployed commit SHA")
    commit_message: str | None = Field(default=None, description="Commit message")
    image_tag: str = Field(..., description="Local image tag")
    started_at: datetime = Field(default_factory=_utcnow, description="Start time")
    completed_at: datetime | None = Field(
        default=None, description="Time the run reached a terminal status"
    )
    error_message: str | None = Field(default=None, description="Failure reason")
    logs: str | None = Field(default=None, description="Accumulated log excerpt")

    @classmethod
    def start(cls, project: Project) -> DeploymentRecord:
        """Create a pending record for a new run of ``project``.

        The image tag points at ``latest`` until the commit is known.
        """
        return cls(project_id=project.id, image_tag=f"{project.name}:latest")

    def transition(self, status: DeploymentStatus) -> None:
        """Move to ``status``.

        Raises:
            InvalidTransitionError: If the state machine forbids the move
        """
        if not self.status.can_transition_to(status):
            raise InvalidTransitionError(self.status.value, status.value)
        self.status = status

    def complete(
        self, status: DeploymentStatus, error_message: str | None = None
    ) -> None:
        """Transition to a terminal status and stamp ``completed_at``."""
        if not status.is_terminal:
            raise InvalidTransitionError(self.status.value, status.value)
        self.transition(status)
        self.completed_at = _utcnow()
        if error_message is not None:
            self.error_message = error_message

    def append_log(self, line: str) -> None:
        """Append a line to the log excerpt, keeping the most recent lines."""
        lines = self.logs.splitlines() if self.logs else []
        lines.append(line)
        self.logs = "\n".join(lines[-MAX_LOG_LINES:])

    @property
    def duration_seconds(self) -> float | None:
        """Wall-clock duration of a completed run."""
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class ProgressEvent(BaseModel):
    """Progress notification emitted after each pipeline step."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    deployment_id: str = Field(..., description="Deployment identifier")
    step: str = Field(..., description="Pipeline step name")
    progress_percent: int = Field(..., ge=0, le=100, description="Percent done")
    message: str = Field(..., description="Human-readable message")
