"""Deployment pipeline.

:class:`DeploymentOrchestrator` drives one project from source repository to
a healthy running service in ten ordered steps:

====  ==================  ========
Step  Name                Progress
====  ==================  ========
1     create_record       0-10
2     clone               10-20
3     detect_framework    20-25
4     commit_info         25-30
5     build_image         30-50
6     authenticate        50-55
7     push_image          55-70
8     register_revision   70-80
9     update_service      80-90
10    poll_health         90-100
====  ==================  ========

After each step the deployment record is written through the store and one
progress event is published. The first failing step moves the record to
``failed``, the clone (if any) is cleaned up once, and a final failure event
is published. Steps are never retried.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from pathlib import Path

from deployotron.config.defaults import get_framework_port
from deployotron.deploy.backends.base import DeploymentOperations, RepositoryOperations
from deployotron.deploy.progress import NullProgressSink, ProgressSink
from deployotron.deploy.store import DeploymentStore
from deployotron.lib.errors import (
    DeploymentCancelledError,
    DeploymentError,
    HealthTimeoutError,
    PersistenceError,
)
from deployotron.lib.logging_config import get_logger
from deployotron.models.backend_config import OrchestratorSettings
from deployotron.models.deployment import (
    DeploymentRecord,
    DeploymentStatus,
    ProgressEvent,
)
from deployotron.models.operations import CommitInfo, RevisionConfig
from deployotron.models.project import FrameworkType, Project

logger = get_logger(__name__)

STEP_CREATE_RECORD = "create_record"
STEP_CLONE = "clone"
STEP_DETECT_FRAMEWORK = "detect_framework"
STEP_COMMIT_INFO = "commit_info"
STEP_BUILD_IMAGE = "build_image"
STEP_AUTHENTICATE = "authenticate"
STEP_PUSH_IMAGE = "push_image"
STEP_REGISTER_REVISION = "register_revision"
STEP_UPDATE_SERVICE = "update_service"
STEP_POLL_HEALTH = "poll_health"

PIPELINE_STEPS = (
    STEP_CREATE_RECORD,
    STEP_CLONE,
    STEP_DETECT_FRAMEWORK,
    STEP_COMMIT_INFO,
    STEP_BUILD_IMAGE,
    STEP_AUTHENTICATE,
    STEP_PUSH_IMAGE,
    STEP_REGISTER_REVISION,
    STEP_UPDATE_SERVICE,
    STEP_POLL_HEALTH,
)

# Progress published when each step completes
STEP_PROGRESS: dict[str, int] = {
    STEP_CREATE_RECORD: 10,
    STEP_CLONE: 20,
    STEP_DETECT_FRAMEWORK: 25,
    STEP_COMMIT_INFO: 30,
    STEP_BUILD_IMAGE: 50,
    STEP_AUTHENTICATE: 55,
    STEP_PUSH_IMAGE: 70,
    STEP_REGISTER_REVISION: 80,
    STEP_UPDATE_SERVICE: 90,
    STEP_POLL_HEALTH: 100,
}


def health_progress(running: int, desired: int) -> int:
    """Progress while waiting for health: 90 + 10 * running / desired, max 99."""
    return min(90 + (10 * running) // max(desired, 1), 99)


@dataclass
class _Run:
    """Mutable state of one pipeline run."""

    project: Project
    record: DeploymentRecord
    step: str = STEP_CREATE_RECORD
    last_percent: int = 0
    repo_path: Path | None = None
    cleaned_up: bool = False
    framework: FrameworkType | None = None
    commit: CommitInfo | None = None
    health_polls: int = 0


class DeploymentOrchestrator:
    """Runs the deployment pipeline against whichever backends it is given.

    Args:
        store: Persistence collaborator for projects and records
        repository: Repository operations backend
        deployment: Deployment operations backend
        progress: Progress sink; use a ProgressChannel for fire-and-forget delivery
        settings: Health polling settings
    """

    def __init__(
        self,
        store: DeploymentStore,
        repository: RepositoryOperations,
        deployment: DeploymentOperations,
        progress: ProgressSink | None = None,
        settings: OrchestratorSettings | None = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._deployment = deployment
        if progress is not None and inspect.iscoroutinefunction(progress.publish):
            raise TypeError("Wrap async progress sinks in a ProgressChannel")
        self._progress = progress or NullProgressSink()
        self._settings = settings or OrchestratorSettings()

    async def run(
        self, project_id: str, cancel_event: asyncio.Event | None = None
    ) -> DeploymentRecord:
        """Deploy a project.

        Args:
            project_id: Project to deploy
            cancel_event: Checked before steps 2-10; when set the run fails
                with a cancellation error

        Returns:
            The final deployment record, ``success`` or ``failed``

        Raises:
            ProjectNotFoundError: If the project is unknown (no record is created)
            PersistenceError: If the initial record cannot be created
        """
        project = await asyncio.to_thread(self._store.load_project, project_id)
        record = DeploymentRecord.start(project)
        await asyncio.to_thread(
            self._store.create_deployment_record, record.model_copy(deep=True)
        )
        run = _Run(project=project, record=record)
        logger.info(f"Deployment {record.id} started for project '{project.name}'")

        try:
            await self._execute(run, cancel_event)
            await self._succeed(run)
        except asyncio.CancelledError:
            cancelled = DeploymentCancelledError(run.step, in_progress=True)
            await self._fail(run, cancelled)
            raise
        except Exception as exc:  # noqa: BLE001
            await self._fail(run, exc)
        return run.record

    async def _execute(self, run: _Run, cancel_event: asyncio.Event | None) -> None:
        project, record = run.project, run.record

        # 1. Create record
        record.transition(DeploymentStatus.IN_PROGRESS)
        await self._complete_step(run, "Initializing deployment")

        # 2. Clone repository
        self._begin(run, STEP_CLONE, cancel_event)
        run.repo_path = await self._repository.clone(
            project.repository_url, project.branch
        )
        await self._complete_step(run, f"Repository cloned ({project.branch})")

        # 3. Detect framework
        self._begin(run, STEP_DETECT_FRAMEWORK, cancel_event)
        detected = await self._repository.detect_framework(run.repo_path)
        run.framework = project.framework or detected
        if project.framework is not None and detected not in (
            project.framework,
            FrameworkType.OTHER,
        ):
            logger.warning(
                f"Project '{project.name}' declares {project.framework.value} "
                f"but the repository looks like {detected.value}; using declared"
            )
        await self._complete_step(run, f"Framework detected: {run.framework.value}")

        # 4. Read commit info
        self._begin(run, STEP_COMMIT_INFO, cancel_event)
        run.commit = await self._repository.commit_info(run.repo_path)
        record.commit_sha = run.commit.sha
        record.commit_message = run.commit.message
        await self._complete_step(run, f"Commit: {run.commit.short_sha}")

        # 5. Build image
        self._begin(run, STEP_BUILD_IMAGE, cancel_event)
        image_tag = f"{project.name}:{run.commit.short_sha}"
        await self._deployment.build_image(run.repo_path, image_tag, run.framework)
        record.image_tag = image_tag
        await self._complete_step(run, f"Image {image_tag} built")

        # 6. Authenticate to registry
        self._begin(run, STEP_AUTHENTICATE, cancel_event)
        await self._deployment.authenticate()
        await self._complete_step(run, "Authenticated with container registry")

        # 7. Push image
        self._begin(run, STEP_PUSH_IMAGE, cancel_event)
        registry_uri = await self._deployment.ensure_registry(
            project.registry_repository
        )
        image_uri = f"{registry_uri}:{run.commit.short_sha}"
        await self._deployment.push_image(image_tag, image_uri)
        await self._complete_step(run, f"Image pushed to {image_uri}")

        # 8. Register revision
        self._begin(run, STEP_REGISTER_REVISION, cancel_event)
        revision = self._revision_config(project, run.framework, image_uri)
        revision_id = await self._deployment.register_revision(revision)
        await self._complete_step(run, f"Revision {revision_id} registered")

        # 9. Update service
        self._begin(run, STEP_UPDATE_SERVICE, cancel_event)
        await self._deployment.update_service(revision, revision_id)
        await self._complete_step(run, f"Rolling out {revision_id}")

        # 10. Poll health
        self._begin(run, STEP_POLL_HEALTH, cancel_event)
        await self._wait_until_healthy(run)

    def _begin(
        self, run: _Run, step: str, cancel_event: asyncio.Event | None
    ) -> None:
        run.step = step
        if cancel_event is not None and cancel_event.is_set():
            raise DeploymentCancelledError(step)
        logger.debug(f"Deployment {run.record.id}: starting {step}")

    async def _complete_step(self, run: _Run, message: str) -> None:
        run.record.append_log(message)
        await self._save(run.record)
        self._emit(run, STEP_PROGRESS[run.step], message)
        logger.info(f"Deployment {run.record.id}: {message}")

    def _revision_config(
        self, project: Project, framework: FrameworkType, image_uri: str
    ) -> RevisionConfig:
        port = get_framework_port(framework.value)
        return RevisionConfig(
            cluster=project.cluster_name,
            service=project.service_name,
            family=project.name,
            container_name=project.name,
            image_uri=image_uri,
            port=port,
            environment={
                "PORT": str(port),
                "DEPLOYOTRON_ENVIRONMENT": project.environment.value,
            },
            log_group=project.log_group or f"/deployotron/{project.name}",
        )

    async def _wait_until_healthy(self, run: _Run) -> None:
        timeout = self._settings.health_timeout
        try:
            await asyncio.wait_for(self._poll_until_healthy(run), timeout)
        except asyncio.TimeoutError:
            raise HealthTimeoutError(run.project.service_name, timeout) from None

    async def _poll_until_healthy(self, run: _Run) -> None:
        project = run.project
        interval = self._settings.health_poll_interval

        while True:
            health = await self._deployment.poll_health(
                project.cluster_name, project.service_name
            )
            run.health_polls += 1
            if health.is_healthy:
                logger.debug(
                    f"Service {project.service_name} healthy after "
                    f"{run.health_polls} polls"
                )
                return

            self._emit(
                run,
                health_progress(health.running_count, health.desired_count),
                "Waiting for service to stabilize "
                f"({health.running_count}/{health.desired_count})",
            )
            await asyncio.sleep(interval)

    async def _succeed(self, run: _Run) -> None:
        await self._cleanup(run)
        run.record.complete(DeploymentStatus.SUCCESS)
        run.record.append_log("Deployment successful")
        await self._save_terminal(run.record)
        self._emit(run, STEP_PROGRESS[STEP_POLL_HEALTH], "Deployment successful")
        logger.info(
            f"Deployment {run.record.id} succeeded "
            f"({run.record.duration_seconds or 0:.1f}s)"
        )

    async def _fail(self, run: _Run, exc: BaseException) -> None:
        if run.record.status.is_terminal:
            logger.error(
                f"Deployment {run.record.id} already {run.record.status.value} "
                f"when {run.step} raised: {exc!r}"
            )
            return

        if isinstance(exc, DeploymentError):
            logger.error(f"Deployment {run.record.id} failed at {run.step}: {exc}")
            summary = exc.summary
        else:
            logger.exception(
                f"Deployment {run.record.id} failed at {run.step} "
                "with an unexpected error",
                exc_info=exc,
            )
            summary = "an unexpected internal error occurred"

        error_message = str(exc) or type(exc).__name__
        # The failed record is written even if cleanup is cancelled
        try:
            await self._cleanup(run)
        finally:
            run.record.complete(DeploymentStatus.FAILED, error_message)
            run.record.append_log(f"Failed at {run.step}: {error_message}")
            await self._save_terminal(run.record)
            self._emit(
                run, run.last_percent, f"Deployment failed at {run.step}: {summary}"
            )

    async def _cleanup(self, run: _Run) -> None:
        if run.repo_path is None or run.cleaned_up:
            return
        run.cleaned_up = True
        try:
            await self._repository.cleanup(run.repo_path)
        except Exception:
            logger.warning(f"Cleanup of {run.repo_path} failed", exc_info=True)

    async def _save(self, record: DeploymentRecord) -> None:
        await asyncio.to_thread(
            self._store.update_deployment_record, record.model_copy(deep=True)
        )

    async def _save_terminal(self, record: DeploymentRecord) -> None:
        try:
            await self._save(record)
        except PersistenceError:
            logger.error(
                f"Could not store final status '{record.status.value}' of "
                f"deployment {record.id}",
                exc_info=True,
            )

    def _emit(self, run: _Run, percent: int, message: str) -> None:
        percent = max(percent, run.last_percent)
        run.last_percent = percent
        event = ProgressEvent(
            deployment_id=run.record.id,
            step=run.step,
            progress_percent=percent,
            message=message,
        )
        try:
            self._progress.publish(event)
        except Exception:
            logger.warning(
                f"Dropped progress event {run.step} ({percent}%) for "
                f"deployment {run.record.id}",
                exc_info=True,
            )
