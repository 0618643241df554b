"""Pytest configuration and shared fixtures for Deployotron tests."""

from __future__ import annotations

import logging
import os
import random
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from deployotron.deploy.shadow.state import ShadowState
from deployotron.lib.errors import PersistenceError, ProjectNotFoundError
from deployotron.lib.logging_config import ROOT_LOGGER_NAME
from deployotron.models.backend_config import BackendConfig, OrchestratorSettings
from deployotron.models.deployment import DeploymentRecord, ProgressEvent
from deployotron.models.project import Project


class RecordingStore:
    """In-memory deployment store that keeps every saved record version."""

    def __init__(self, *projects: Project) -> None:
        self.projects = {project.id: project for project in projects}
        self.records: dict[str, DeploymentRecord] = {}
        self.history: list[DeploymentRecord] = []
        self.fail_updates = False

    def load_project(self, project_id: str) -> Project:
        project = self.projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def create_deployment_record(self, record: DeploymentRecord) -> None:
        if record.id in self.records:
            raise PersistenceError(f"Deployment already exists: {record.id}")
        self.records[record.id] = record
        self.history.append(record)

    def update_deployment_record(self, record: DeploymentRecord) -> None:
        if self.fail_updates:
            raise PersistenceError("disk full")
        self.records[record.id] = record
        self.history.append(record)


class RecordingSink:
    """Progress sink that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def publish(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def percentages(self) -> list[int]:
        return [event.progress_percent for event in self.events]


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None]:
    """Undo handler, level and propagation changes made by setup_logging."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    handlers, level, propagate = list(root.handlers), root.level, root.propagate
    yield
    root.handlers = handlers
    root.setLevel(level)
    root.propagate = propagate
    logging.getLogger("docker").setLevel(logging.NOTSET)


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for test file operations.

    Yields:
        Path to temporary directory

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def isolated_env() -> Generator[dict[str, str]]:
    """Provide isolated environment variables for testing.

    Saves current environment and restores after test.

    Yields:
        Dictionary of original environment variables
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def shadow_state() -> ShadowState:
    """Fresh shadow ledger."""
    return ShadowState()


@pytest.fixture
def shadow_config() -> BackendConfig:
    """Shadow mode without injected failures or delays."""
    return BackendConfig(shadow_mode_enabled=True, failure_rate=0.0)


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source for reproducible failure sampling."""
    return random.Random(1234)


@pytest.fixture
def fast_settings() -> OrchestratorSettings:
    """Health polling without waiting between polls."""
    return OrchestratorSettings(health_poll_interval=0.0, health_timeout=5.0)


@pytest.fixture
def project() -> Project:
    """Project whose repository URL hints at a Next.js application."""
    return Project(
        name="storefront",
        repository_url="https://github.com/acme/storefront-nextjs.git",
        branch="main",
        cluster_name="acme-env",
        service_name="storefront",
        registry_repository="acme/storefront",
    )


@pytest.fixture
def store(project: Project) -> RecordingStore:
    """Recording store that knows the default project."""
    return RecordingStore(project)


@pytest.fixture
def sink() -> RecordingSink:
    """Recording progress sink."""
    return RecordingSink()
