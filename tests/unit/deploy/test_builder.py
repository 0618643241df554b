"""Unit tests for the Docker-backed container builder."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from docker.errors import APIError, DockerException, ImageNotFound
from docker.errors import BuildError as DockerBuildError

from deployotron.deploy.builder import (
    BuildResult,
    ContainerBuilder,
    ensure_dockerfile,
    get_oci_labels,
    split_image_reference,
)
from deployotron.lib.errors import (
    AuthError,
    BuildError,
    DockerNotAvailableError,
    ImageNotFoundError,
    PushError,
)
from deployotron.models.project import FrameworkType


@pytest.fixture
def docker_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def builder(docker_client: MagicMock) -> ContainerBuilder:
    with patch("docker.from_env", return_value=docker_client):
        return ContainerBuilder()


@pytest.mark.unit
class TestHelpers:
    """Tests for builder helper functions."""

    @pytest.mark.parametrize(
        "reference, expected",
        [
            ("web:1a2b", ("web", "1a2b")),
            ("acme.azurecr.io/acme/web:1a2b", ("acme.azurecr.io/acme/web", "1a2b")),
            ("localhost:5000/web", ("localhost:5000/web", "latest")),
            ("localhost:5000/web:v2", ("localhost:5000/web", "v2")),
            ("web", ("web", "latest")),
        ],
    )
    def test_split_image_reference(
        self, reference: str, expected: tuple[str, str]
    ) -> None:
        assert split_image_reference(reference) == expected

    def test_oci_labels(self) -> None:
        labels = get_oci_labels("storefront", "01234567")
        assert labels["org.opencontainers.image.title"] == "storefront"
        assert labels["org.opencontainers.image.revision"] == "01234567"
        assert labels["dev.deployotron.managed"] == "true"
        assert "org.opencontainers.image.revision" not in get_oci_labels("web")

    def test_build_result_from_image(self) -> None:
        image = MagicMock(id="sha256:abc")
        result = BuildResult.from_image(image, "web:1a2b", ["Step 1/2"])
        assert result.image_name == "web"
        assert result.tag == "1a2b"
        assert result.log_lines == ["Step 1/2"]


@pytest.mark.unit
class TestEnsureDockerfile:
    """Tests for ensure_dockerfile."""

    def test_keeps_repository_dockerfile(self, tmp_path: Path) -> None:
        dockerfile = tmp_path / "Dockerfile"
        dockerfile.write_text("FROM scratch\n")

        path = ensure_dockerfile(tmp_path, FrameworkType.OTHER, "web")

        assert path == dockerfile
        assert dockerfile.read_text() == "FROM scratch\n"

    def test_generates_for_known_framework(self, tmp_path: Path) -> None:
        path = ensure_dockerfile(tmp_path, FrameworkType.GO, "svc")
        assert "golang" in path.read_text()

    def test_other_without_dockerfile_fails(self, tmp_path: Path) -> None:
        with pytest.raises(BuildError):
            ensure_dockerfile(tmp_path, FrameworkType.OTHER, "web")
        assert not (tmp_path / "Dockerfile").exists()


@pytest.mark.unit
class TestContainerBuilder:
    """Tests for ContainerBuilder with a mocked Docker client."""

    def test_docker_unavailable(self) -> None:
        with (
            patch("docker.from_env", side_effect=DockerException("no socket")),
            pytest.raises(DockerNotAvailableError),
        ):
            ContainerBuilder()

    def test_build_success(
        self, builder: ContainerBuilder, docker_client: MagicMock, tmp_path: Path
    ) -> None:
        docker_client.images.build.return_value = (
            MagicMock(id="sha256:feed"),
            [{"stream": "Step 1/3 : FROM node\n"}, {"stream": "\n"}, {"aux": {}}],
        )

        result = builder.build(tmp_path, "web:1a2b", labels={"a": "b"})

        assert result.image_id == "sha256:feed"
        assert result.full_name == "web:1a2b"
        assert result.log_lines == ["Step 1/3 : FROM node"]
        kwargs = docker_client.images.build.call_args.kwargs
        assert kwargs["tag"] == "web:1a2b"
        assert kwargs["labels"] == {"a": "b"}
        assert kwargs["path"] == str(tmp_path)

    def test_build_missing_context(
        self, builder: ContainerBuilder, tmp_path: Path
    ) -> None:
        with pytest.raises(BuildError, match="Build context not found"):
            builder.build(tmp_path / "missing", "web:1")

    def test_build_failure_carries_output(
        self, builder: ContainerBuilder, docker_client: MagicMock, tmp_path: Path
    ) -> None:
        docker_client.images.build.side_effect = DockerBuildError(
            "npm ci failed",
            [{"stream": "RUN npm ci\n"}, {"error": "exit code 1"}],
        )

        with pytest.raises(BuildError) as exc_info:
            builder.build(tmp_path, "web:1")

        assert "npm ci failed" in exc_info.value.message
        assert exc_info.value.output == ["RUN npm ci", "ERROR: exit code 1"]

    def test_login_rejected(
        self, builder: ContainerBuilder, docker_client: MagicMock
    ) -> None:
        docker_client.login.side_effect = APIError("unauthorized")
        with pytest.raises(AuthError, match="acme.azurecr.io"):
            builder.login("acme.azurecr.io", "user", "secret")

    def test_push_tags_and_streams(
        self, builder: ContainerBuilder, docker_client: MagicMock
    ) -> None:
        image = MagicMock()
        docker_client.images.get.return_value = image
        docker_client.images.push.return_value = iter([{"status": "Pushed"}])

        builder.push("web:1a2b", "acme.azurecr.io/acme/web:1a2b")

        image.tag.assert_called_once_with("acme.azurecr.io/acme/web", tag="1a2b")
        docker_client.images.push.assert_called_once_with(
            "acme.azurecr.io/acme/web", tag="1a2b", stream=True, decode=True
        )

    def test_push_unbuilt_image(
        self, builder: ContainerBuilder, docker_client: MagicMock
    ) -> None:
        docker_client.images.get.side_effect = ImageNotFound("missing")
        with pytest.raises(ImageNotFoundError):
            builder.push("web:1a2b", "acme.azurecr.io/acme/web:1a2b")

    def test_push_error_chunk(
        self, builder: ContainerBuilder, docker_client: MagicMock
    ) -> None:
        docker_client.images.get.return_value = MagicMock()
        docker_client.images.push.return_value = iter([{"error": "denied"}])
        with pytest.raises(PushError, match="denied"):
            builder.push("web:1a2b", "acme.azurecr.io/acme/web:1a2b")
