"""Tests for the exception hierarchy in deployotron.lib.errors."""

import pytest

from deployotron.lib.errors import (
    AuthError,
    BuildError,
    CloneError,
    CloudSDKNotInstalledError,
    ConfigError,
    DeploymentCancelledError,
    DeploymentError,
    DeployotronError,
    DockerNotAvailableError,
    HealthTimeoutError,
    ImageNotFoundError,
    InvalidTransitionError,
    NotARepositoryError,
    PersistenceError,
    ProjectNotFoundError,
    PushError,
    RegistrationError,
    ServiceUpdateError,
    TransientFaultError,
)


class TestConfigError:
    """Tests for ConfigError exception."""

    def test_config_error_includes_field_name(self) -> None:
        """Test that ConfigError includes field name in error message."""
        error = ConfigError("failure_rate", "Expected a number")
        assert "failure_rate" in str(error)
        assert error.field == "failure_rate"
        assert error.message == "Expected a number"

    def test_config_error_is_deployotron_error(self) -> None:
        """Test that ConfigError is a DeployotronError subclass."""
        assert isinstance(ConfigError("f", "m"), DeployotronError)


@pytest.mark.unit
class TestDeploymentErrors:
    """Tests for pipeline operation errors."""

    @pytest.mark.parametrize(
        "error, operation",
        [
            (CloneError("bad url"), "clone"),
            (NotARepositoryError("/tmp/x"), "commit_info"),
            (AuthError("denied"), "authenticate"),
            (BuildError("failed"), "build"),
            (PushError("refused"), "push"),
            (ImageNotFoundError("web:1"), "push"),
            (RegistrationError("rejected"), "register_revision"),
            (ServiceUpdateError("rejected"), "update_service"),
            (HealthTimeoutError("web", 300), "poll_health"),
            (DeploymentCancelledError("build_image"), "cancel"),
            (TransientFaultError("push"), "push"),
        ],
    )
    def test_operation_names(self, error: DeploymentError, operation: str) -> None:
        """Each error kind reports the operation that failed."""
        assert isinstance(error, DeploymentError)
        assert error.operation == operation

    def test_summaries_differ_per_kind(self) -> None:
        """Summaries are short, kind-specific descriptions."""
        summaries = {
            CloneError.summary,
            BuildError.summary,
            PushError.summary,
            ImageNotFoundError.summary,
            HealthTimeoutError.summary,
            TransientFaultError.summary,
        }
        assert len(summaries) == 6

    def test_image_not_found_is_push_error(self) -> None:
        """Pushing an unbuilt tag is a distinct kind of push error."""
        error = ImageNotFoundError("web:abc")
        assert isinstance(error, PushError)
        assert error.tag == "web:abc"
        assert "web:abc" in str(error)

    def test_build_error_carries_output(self) -> None:
        """BuildError keeps the failing step's output."""
        error = BuildError("step 3 failed", output=["RUN npm ci", "npm ERR!"])
        assert error.output == ["RUN npm ci", "npm ERR!"]
        assert BuildError("no output").output == []

    def test_health_timeout_message(self) -> None:
        """Timeout errors name the service and the wait."""
        error = HealthTimeoutError("storefront", 300.0)
        assert "Deployment timeout" in str(error)
        assert "storefront" in str(error)
        assert "300s" in str(error)

    def test_health_timeout_message_sub_second(self) -> None:
        """Short timeouts keep their fractional seconds."""
        assert "within 0.2s" in str(HealthTimeoutError("storefront", 0.2))

    def test_transient_fault_default_message(self) -> None:
        """Injected faults get a generic message."""
        assert str(TransientFaultError("clone")) == "Simulated failure: clone"
        assert str(TransientFaultError("clone", "boom")) == "boom"

    def test_cloud_sdk_not_installed_mentions_extra(self) -> None:
        """Missing SDK errors tell the user what to install."""
        error = CloudSDKNotInstalledError("azure", "azure-mgmt-appcontainers")
        assert "deployotron[azure]" in str(error)
        assert error.sdk_name == "azure-mgmt-appcontainers"

    def test_docker_not_available(self) -> None:
        """Docker availability errors explain how to check the daemon."""
        error = DockerNotAvailableError()
        assert "docker info" in error.message
        assert error.operation == "init"


class TestStateErrors:
    """Tests for persistence and state machine errors."""

    def test_project_not_found_is_persistence_error(self) -> None:
        error = ProjectNotFoundError("p-1")
        assert isinstance(error, PersistenceError)
        assert error.project_id == "p-1"

    def test_invalid_transition_message(self) -> None:
        error = InvalidTransitionError("success", "in_progress")
        assert "success" in str(error)
        assert "in_progress" in str(error)
        assert not isinstance(error, DeploymentError)
