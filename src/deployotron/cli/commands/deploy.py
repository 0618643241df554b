"""CLI commands for deploying projects.

Implements the 'deployotron deploy' command group: running the deployment
pipeline for a project file, and inspecting recorded deployments and
container logs.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Generator
from contextlib import contextmanager

import click

from deployotron.config.defaults import DEFAULT_LOG_LIMIT, DEFAULT_STATE_PATH
from deployotron.config.env_loader import load_env_file
from deployotron.config.loader import load_project
from deployotron.deploy.backends import Backends, create_backends
from deployotron.deploy.orchestrator import DeploymentOrchestrator
from deployotron.deploy.progress import ProgressChannel
from deployotron.deploy.shadow.state import ShadowState
from deployotron.deploy.store import JsonDeploymentStore
from deployotron.lib.errors import ConfigError, DeploymentError
from deployotron.lib.logging_config import get_logger, setup_logging
from deployotron.models.backend_config import (
    AzureTargetConfig,
    BackendConfig,
    OrchestratorSettings,
)
from deployotron.models.deployment import (
    DeploymentRecord,
    DeploymentStatus,
    ProgressEvent,
)
from deployotron.models.project import Project

logger = get_logger(__name__)

STATUS_COLORS = {
    DeploymentStatus.PENDING: "yellow",
    DeploymentStatus.IN_PROGRESS: "cyan",
    DeploymentStatus.SUCCESS: "green",
    DeploymentStatus.FAILED: "red",
    DeploymentStatus.ROLLED_BACK: "magenta",
}


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in deployment commands.

    Exit codes:
        2: Configuration error
        3: Deployment/execution error
    """
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)


class EchoProgressSink:
    """Prints progress events as they arrive."""

    def publish(self, event: ProgressEvent) -> None:
        click.echo(f"[{event.progress_percent:3d}%] {event.message}")


def _resolve_backend_config(shadow: bool, failure_rate: float | None) -> BackendConfig:
    from_env = BackendConfig.from_env()
    return BackendConfig(
        shadow_mode_enabled=shadow or from_env.shadow_mode_enabled,
        failure_rate=(
            failure_rate if failure_rate is not None else from_env.failure_rate
        ),
        simulate_delays=from_env.simulate_delays,
    )


def _build_backends(config: BackendConfig) -> Backends:
    if config.shadow_mode_enabled:
        return create_backends(config, state=ShadowState())
    return create_backends(config, azure=AzureTargetConfig.from_env())


def _register_project(store: JsonDeploymentStore, project: Project) -> Project:
    """Save a project file's contents, reusing the id of a same-named project."""
    existing = store.find_project_by_name(project.name)
    if existing is not None:
        project = project.model_copy(update={"id": existing.id})
    return store.save_project(project)


async def _run_pipeline(
    store: JsonDeploymentStore,
    backends: Backends,
    settings: OrchestratorSettings,
    project_id: str,
    quiet: bool,
) -> DeploymentRecord:
    if quiet:
        orchestrator = DeploymentOrchestrator(
            store, backends.repository, backends.deployment, settings=settings
        )
        return await orchestrator.run(project_id)

    async with ProgressChannel(EchoProgressSink()) as channel:
        orchestrator = DeploymentOrchestrator(
            store,
            backends.repository,
            backends.deployment,
            progress=channel,
            settings=settings,
        )
        return await orchestrator.run(project_id)


def _display_record(record: DeploymentRecord) -> None:
    click.echo(f"  Deployment: {record.id}")
    click.echo(f"  Project:    {record.project_id}")
    click.echo("  Status:     ", nl=False)
    click.secho(record.status.value, fg=STATUS_COLORS.get(record.status))
    if record.commit_sha:
        click.echo(f"  Commit:     {record.commit_sha}")
    if record.commit_message:
        click.echo(f"  Message:    {record.commit_message}")
    if record.image_tag:
        click.echo(f"  Image:      {record.image_tag}")
    click.echo(f"  Started:    {record.started_at.isoformat()}")
    if record.completed_at:
        click.echo(f"  Completed:  {record.completed_at.isoformat()}")
    duration = record.duration_seconds
    if duration is not None:
        click.echo(f"  Duration:   {duration:.1f}s")
    if record.error_message:
        click.echo(f"  Error:      {record.error_message}")


state_option = click.option(
    "--state",
    "state_path",
    type=click.Path(dir_okay=False),
    default=DEFAULT_STATE_PATH,
    show_default=True,
    help="Deployment state file",
)
verbose_option = click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose debug logging"
)
quiet_option = click.option(
    "--quiet", "-q", is_flag=True, help="Suppress progress output"
)


@click.group(name="deploy", invoke_without_command=True)
@click.pass_context
def deploy(ctx: click.Context) -> None:
    """Deploy projects and inspect their deployments.

    Subcommands:

        run     Deploy a project from its source repository
        status  Show one deployment
        list    List recorded deployments
        logs    Show a project's latest container logs

    Example:

        deployotron deploy run project.yaml --shadow
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@deploy.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False))
@state_option
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False),
    default=".env",
    show_default=True,
    help="Environment file to load (existing variables win)",
)
@click.option(
    "--shadow", is_flag=True, help="Use shadow backends instead of real services"
)
@click.option(
    "--failure-rate",
    type=click.FloatRange(0.0, 1.0),
    default=None,
    help="Shadow failure injection rate",
)
@verbose_option
@quiet_option
def run(
    project_file: str,
    state_path: str,
    env_file: str,
    shadow: bool,
    failure_rate: float | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Deploy the project described by PROJECT_FILE."""
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        load_env_file(env_file)
        project = load_project(project_file)
        config = _resolve_backend_config(shadow, failure_rate)
        settings = OrchestratorSettings.from_env()
        backends = _build_backends(config)

        store = JsonDeploymentStore(state_path)
        project = _register_project(store, project)

        if not quiet:
            click.echo()
            click.secho("Deploy Configuration:", bold=True)
            click.echo(f"  Project:    {project.name}")
            click.echo(f"  Repository: {project.repository_url}@{project.branch}")
            click.echo(f"  Service:    {project.cluster_name}/{project.service_name}")
            mode = "shadow" if config.shadow_mode_enabled else "azure"
            click.echo(f"  Mode:       {mode}")
            click.echo()

        record = asyncio.run(
            _run_pipeline(store, backends, settings, project.id, quiet)
        )

    if quiet:
        click.echo(record.id)
    else:
        click.echo()
        if record.status is DeploymentStatus.SUCCESS:
            click.secho("Deployment Successful!", fg="green", bold=True)
        else:
            click.secho("Deployment Failed", fg="red", bold=True)
        _display_record(record)
        click.echo()

    if record.status is not DeploymentStatus.SUCCESS:
        sys.exit(3)


@deploy.command()
@click.argument("deployment_id")
@state_option
def status(deployment_id: str, state_path: str) -> None:
    """Show the deployment with DEPLOYMENT_ID."""
    with handle_deployment_errors():
        record = JsonDeploymentStore(state_path).get_deployment(deployment_id)
        if record is None:
            raise ConfigError(
                field="deployment_id",
                message=f"No deployment found with id {deployment_id}",
            )

    click.echo()
    click.secho("Deployment Status", bold=True)
    _display_record(record)
    click.echo()


@deploy.command(name="list")
@click.option("--project", "project_id", default=None, help="Only this project id")
@state_option
def list_deployments(project_id: str | None, state_path: str) -> None:
    """List recorded deployments, newest first."""
    with handle_deployment_errors():
        records = JsonDeploymentStore(state_path).list_deployments(project_id)

    if not records:
        click.echo("No deployments found.")
        return

    for record in records:
        click.echo(f"{record.id}  {record.started_at:%Y-%m-%d %H:%M:%S}  ", nl=False)
        click.secho(
            f"{record.status.value:<12}",
            fg=STATUS_COLORS.get(record.status),
            nl=False,
        )
        click.echo(f"  {record.image_tag or '-'}")


@deploy.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=DEFAULT_LOG_LIMIT,
    show_default=True,
    help="Maximum number of log lines",
)
@click.option(
    "--shadow", is_flag=True, help="Use shadow backends instead of real services"
)
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False),
    default=".env",
    show_default=True,
    help="Environment file to load (existing variables win)",
)
@verbose_option
def logs(
    project_file: str, limit: int, shadow: bool, env_file: str, verbose: bool
) -> None:
    """Show the latest container logs of the project in PROJECT_FILE."""
    setup_logging(verbose=verbose, quiet=not verbose)

    with handle_deployment_errors():
        load_env_file(env_file)
        project = load_project(project_file)
        backends = _build_backends(_resolve_backend_config(shadow, None))
        lines = asyncio.run(
            backends.deployment.fetch_logs(
                project.log_group or "", project.service_name, limit
            )
        )

    for line in lines:
        click.echo(line)
