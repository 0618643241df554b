"""Unit tests for the deployment pipeline."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from deployotron.deploy.backends import create_backends
from deployotron.deploy.orchestrator import (
    PIPELINE_STEPS,
    STEP_PROGRESS,
    DeploymentOrchestrator,
    health_progress,
)
from deployotron.deploy.shadow import (
    ShadowDeploymentBackend,
    ShadowRepositoryBackend,
)
from deployotron.deploy.shadow.state import ShadowState
from deployotron.lib.errors import BuildError, ProjectNotFoundError
from deployotron.models.backend_config import BackendConfig, OrchestratorSettings
from deployotron.models.deployment import DeploymentStatus, ProgressEvent
from deployotron.models.operations import HealthStatus
from deployotron.models.project import Environment, FrameworkType, Project


class NeverHealthyDeployment(ShadowDeploymentBackend):
    """Shadow deployment whose service never gets a running task."""

    async def poll_health(self, cluster: str, service: str) -> HealthStatus:
        return HealthStatus.from_counts(running=0, desired=1, pending=1)


class HangingDeployment(ShadowDeploymentBackend):
    """Shadow deployment whose health poll never returns."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.polling = asyncio.Event()

    async def poll_health(self, cluster: str, service: str) -> HealthStatus:
        self.polling.set()
        await asyncio.sleep(3600)
        raise AssertionError("unreachable")


class SlowPollDeployment(ShadowDeploymentBackend):
    """Shadow deployment whose health poll stalls for seconds."""

    async def poll_health(self, cluster: str, service: str) -> HealthStatus:
        await asyncio.sleep(5)
        return HealthStatus.from_counts(running=1, desired=1)


class HangingCleanupRepository(ShadowRepositoryBackend):
    """Shadow repository whose cleanup never finishes."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.cleaning = asyncio.Event()

    async def cleanup(self, path: Path) -> None:
        self.cleaning.set()
        await asyncio.sleep(3600)


class ExplodingSink:
    def publish(self, event: ProgressEvent) -> None:
        raise RuntimeError("listener gone")


class AsyncSink:
    async def publish(self, event: ProgressEvent) -> None:
        return None


def _orchestrator(
    store: Any,
    state: ShadowState,
    settings: OrchestratorSettings,
    sink: Any = None,
    deployment: ShadowDeploymentBackend | None = None,
    repository: ShadowRepositoryBackend | None = None,
) -> DeploymentOrchestrator:
    config = BackendConfig(shadow_mode_enabled=True, failure_rate=0.0)
    backends = create_backends(config, state=state)
    return DeploymentOrchestrator(
        store,
        repository or backends.repository,
        deployment or backends.deployment,
        progress=sink,
        settings=settings,
    )


def _add_project(store: Any, project: Project, **updates: Any) -> Project:
    changed = Project.model_validate(
        {**project.model_dump(), "id": f"{project.id}-x", **updates}
    )
    store.projects[changed.id] = changed
    return changed


@pytest.mark.unit
class TestHealthProgress:
    """Tests for health step progress."""

    @pytest.mark.parametrize(
        "running, desired, percent",
        [(0, 1, 90), (1, 2, 95), (2, 2, 99), (5, 2, 99), (0, 0, 90), (1, 3, 93)],
    )
    def test_values(self, running: int, desired: int, percent: int) -> None:
        assert health_progress(running, desired) == percent

    def test_step_table(self) -> None:
        assert len(PIPELINE_STEPS) == 10
        assert [STEP_PROGRESS[s] for s in PIPELINE_STEPS] == [
            10, 20, 25, 30, 50, 55, 70, 80, 90, 100
        ]


@pytest.mark.unit
class TestDeploymentOrchestrator:
    """Tests for DeploymentOrchestrator.run."""

    @pytest.mark.asyncio
    async def test_successful_run(
        self,
        store: Any,
        sink: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        orchestrator = _orchestrator(store, shadow_state, fast_settings, sink)

        record = await orchestrator.run(project.id)

        assert record.status is DeploymentStatus.SUCCESS
        assert record.completed_at is not None
        assert len(record.commit_sha) == 40
        assert record.image_tag == f"storefront:{record.commit_sha[:8]}"
        assert record.commit_message == "Shadow commit on main"
        assert store.records[record.id].status is DeploymentStatus.SUCCESS

        assert sink.percentages == [10, 20, 25, 30, 50, 55, 70, 80, 90, 90, 100]
        assert sink.events[-1].message == "Deployment successful"
        assert {e.deployment_id for e in sink.events} == {record.id}

        assert shadow_state.cleanup_attempts() == 1
        assert shadow_state.health_poll_count("acme-env", "storefront") == 2
        pushed = shadow_state.pushed_images()
        assert list(pushed.values()) == [record.image_tag]

    @pytest.mark.asyncio
    async def test_records_saved_after_each_step(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        orchestrator = _orchestrator(store, shadow_state, fast_settings)

        record = await orchestrator.run(project.id)

        statuses = [saved.status for saved in store.history]
        assert statuses[0] is DeploymentStatus.PENDING
        assert statuses[1:-1] == [DeploymentStatus.IN_PROGRESS] * 9
        assert statuses[-1] is DeploymentStatus.SUCCESS
        assert store.history[-1] is not record

    @pytest.mark.asyncio
    async def test_revision_config(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        production = _add_project(store, project, environment="production")
        assert production.environment is Environment.PRODUCTION

        await _orchestrator(store, shadow_state, fast_settings).run(production.id)

        config = shadow_state.revision_config("storefront--r1")
        assert config is not None
        assert config["port"] == 3000
        assert config["environment"] == {
            "PORT": "3000",
            "DEPLOYOTRON_ENVIRONMENT": "production",
        }
        assert config["image_uri"].startswith(
            "deployotronshadow.azurecr.io/acme/storefront:"
        )

    @pytest.mark.asyncio
    async def test_unknown_project_creates_no_record(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
    ) -> None:
        with pytest.raises(ProjectNotFoundError):
            await _orchestrator(store, shadow_state, fast_settings).run("missing")
        assert store.records == {}

    @pytest.mark.asyncio
    async def test_build_failure(
        self,
        store: Any,
        sink: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        plain = _add_project(
            store, project, repository_url="https://github.com/acme/website.git"
        )

        record = await _orchestrator(store, shadow_state, fast_settings, sink).run(
            plain.id
        )

        assert record.status is DeploymentStatus.FAILED
        assert record.error_message is not None
        assert "Dockerfile" in record.error_message
        assert sink.percentages == [10, 20, 25, 30, 30]
        assert sink.events[-1].step == "build_image"
        assert sink.events[-1].message == (
            f"Deployment failed at build_image: {BuildError.summary}"
        )
        assert shadow_state.cleanup_attempts() == 1
        assert shadow_state.pushed_images() == {}

    @pytest.mark.asyncio
    async def test_declared_framework_wins(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        declared = _add_project(store, project, framework=FrameworkType.PYTHON)

        record = await _orchestrator(store, shadow_state, fast_settings).run(
            declared.id
        )

        image = shadow_state.get_image(record.image_tag)
        assert image is not None
        assert image.framework is FrameworkType.PYTHON

    @pytest.mark.asyncio
    async def test_health_timeout(
        self,
        store: Any,
        sink: Any,
        shadow_state: ShadowState,
        project: Project,
    ) -> None:
        settings = OrchestratorSettings(health_poll_interval=0.01, health_timeout=0.05)
        deployment = NeverHealthyDeployment(
            BackendConfig(shadow_mode_enabled=True), shadow_state
        )

        record = await _orchestrator(
            store, shadow_state, settings, sink, deployment=deployment
        ).run(project.id)

        assert record.status is DeploymentStatus.FAILED
        assert record.error_message is not None
        assert "Deployment timeout" in record.error_message
        assert sink.events[-1].step == "poll_health"
        assert sink.percentages[-1] == 90
        assert shadow_state.cleanup_attempts() == 1

    @pytest.mark.asyncio
    async def test_slow_health_poll_is_bounded_by_timeout(
        self,
        store: Any,
        shadow_state: ShadowState,
        project: Project,
    ) -> None:
        settings = OrchestratorSettings(health_poll_interval=0.01, health_timeout=0.2)
        deployment = SlowPollDeployment(
            BackendConfig(shadow_mode_enabled=True), shadow_state
        )
        loop = asyncio.get_running_loop()
        started = loop.time()

        record = await _orchestrator(
            store, shadow_state, settings, deployment=deployment
        ).run(project.id)

        assert loop.time() - started < 2.0
        assert record.status is DeploymentStatus.FAILED
        assert record.error_message is not None
        assert "within 0.2s" in record.error_message
        assert shadow_state.cleanup_attempts() == 1

    @pytest.mark.asyncio
    async def test_cancel_before_first_step(
        self,
        store: Any,
        sink: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        cancel = asyncio.Event()
        cancel.set()

        record = await _orchestrator(store, shadow_state, fast_settings, sink).run(
            project.id, cancel_event=cancel
        )

        assert record.status is DeploymentStatus.FAILED
        assert record.error_message == "Deployment cancelled before step 'clone'"
        assert sink.percentages == [10, 10]
        assert shadow_state.cleanup_attempts() == 0

    @pytest.mark.asyncio
    async def test_cancel_mid_run_cleans_up(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        cancel = asyncio.Event()

        class CancellingSink:
            def publish(self, event: ProgressEvent) -> None:
                if event.progress_percent == 20:
                    cancel.set()

        record = await _orchestrator(
            store, shadow_state, fast_settings, CancellingSink()
        ).run(project.id, cancel_event=cancel)

        assert record.status is DeploymentStatus.FAILED
        assert record.error_message is not None
        assert "detect_framework" in record.error_message
        assert shadow_state.cleanup_attempts() == 1

    @pytest.mark.asyncio
    async def test_task_cancellation_fails_record(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        deployment = HangingDeployment(
            BackendConfig(shadow_mode_enabled=True), shadow_state
        )
        orchestrator = _orchestrator(
            store, shadow_state, fast_settings, deployment=deployment
        )

        task = asyncio.create_task(orchestrator.run(project.id))
        await asyncio.wait_for(deployment.polling.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        (record,) = store.records.values()
        assert record.status is DeploymentStatus.FAILED
        assert record.error_message == (
            "Deployment cancelled during step 'poll_health'"
        )
        assert shadow_state.cleanup_attempts() == 1

    @pytest.mark.asyncio
    async def test_cancellation_during_failure_cleanup_stores_failed(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        plain = _add_project(
            store, project, repository_url="https://github.com/acme/website.git"
        )
        repository = HangingCleanupRepository(
            BackendConfig(shadow_mode_enabled=True), shadow_state
        )
        orchestrator = _orchestrator(
            store, shadow_state, fast_settings, repository=repository
        )

        task = asyncio.create_task(orchestrator.run(plain.id))
        await asyncio.wait_for(repository.cleaning.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        (record,) = store.records.values()
        assert record.status is DeploymentStatus.FAILED
        assert record.error_message is not None
        assert "Dockerfile" in record.error_message

    @pytest.mark.asyncio
    async def test_cancellation_during_success_cleanup_stores_failed(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        repository = HangingCleanupRepository(
            BackendConfig(shadow_mode_enabled=True), shadow_state
        )
        orchestrator = _orchestrator(
            store, shadow_state, fast_settings, repository=repository
        )

        task = asyncio.create_task(orchestrator.run(project.id))
        await asyncio.wait_for(repository.cleaning.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        (record,) = store.records.values()
        assert record.status is DeploymentStatus.FAILED
        assert record.completed_at is not None
        assert record.error_message == (
            "Deployment cancelled during step 'poll_health'"
        )

    @pytest.mark.asyncio
    async def test_sink_errors_do_not_fail_run(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        record = await _orchestrator(
            store, shadow_state, fast_settings, ExplodingSink()
        ).run(project.id)
        assert record.status is DeploymentStatus.SUCCESS

    def test_async_sink_must_be_wrapped(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
    ) -> None:
        with pytest.raises(TypeError, match="ProgressChannel"):
            _orchestrator(store, shadow_state, fast_settings, AsyncSink())

    @pytest.mark.asyncio
    async def test_persistence_failure_fails_run(
        self,
        store: Any,
        sink: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        store.fail_updates = True

        record = await _orchestrator(store, shadow_state, fast_settings, sink).run(
            project.id
        )

        assert record.status is DeploymentStatus.FAILED
        assert record.error_message == "disk full"
        assert sink.events[-1].message.endswith("an unexpected internal error occurred")
        assert store.records[record.id].status is DeploymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_clone_is_removed_after_run(
        self,
        store: Any,
        shadow_state: ShadowState,
        fast_settings: OrchestratorSettings,
        project: Project,
    ) -> None:
        await _orchestrator(store, shadow_state, fast_settings).run(project.id)

        (clone_path,) = shadow_state.cloned_repos(project.repository_url)
        assert not Path(clone_path).exists()
