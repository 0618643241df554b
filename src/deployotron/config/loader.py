"""Load project descriptors from YAML files.

A project file looks like::

    name: storefront
    repository_url: https://github.com/acme/storefront-nextjs.git
    branch: main
    cluster_name: acme-env
    service_name: storefront
    registry_repository: acme/storefront

``${VAR}`` references are substituted from the environment before parsing.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from deployotron.config.env_loader import substitute_env_vars
from deployotron.lib.errors import ConfigError
from deployotron.lib.logging_config import get_logger
from deployotron.models.project import Project

logger = get_logger(__name__)


def flatten_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten a Pydantic ValidationError into human-readable messages.

    Args:
        exc: Pydantic ValidationError exception

    Returns:
        List of messages, one per field error
    """
    errors: list[str] = []

    for error in exc.errors():
        loc = error.get("loc", ())
        field_path = ".".join(str(item) for item in loc) if loc else "unknown"
        msg = error.get("msg", "Unknown error")

        if error.get("type") == "value_error":
            input_val = error.get("input")
            formatted = f"Field '{field_path}': {msg} (received: {input_val!r})"
        else:
            formatted = f"Field '{field_path}': {msg}"
        errors.append(formatted)

    return errors if errors else ["Validation failed with unknown error"]


def _read_yaml(path: Path) -> dict[str, Any]:
    raw_text = path.read_text(encoding="utf-8")
    content = yaml.safe_load(substitute_env_vars(raw_text))
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(
            "yaml_parse", f"Expected a mapping at the top of {path}"
        )
    return content


def load_project(file_path: str | Path) -> Project:
    """Load and validate a project descriptor.

    Args:
        file_path: Path to the project YAML file

    Returns:
        Validated Project

    Raises:
        ConfigError: If the file is missing, unparseable or invalid
    """
    path = Path(file_path)
    try:
        data = _read_yaml(path)
    except OSError as e:
        raise ConfigError(
            "project_file", f"Project file not found at {file_path}"
        ) from e
    except yaml.YAMLError as e:
        raise ConfigError(
            "yaml_parse", f"Failed to parse YAML file {file_path}: {e}"
        ) from e

    try:
        project = Project(**data)
    except PydanticValidationError as e:
        error_text = "\n".join(flatten_pydantic_errors(e))
        raise ConfigError(
            "project_validation",
            f"Invalid project configuration in {file_path}:\n{error_text}",
        ) from e

    logger.debug(f"Loaded project '{project.name}' ({project.id}) from {path}")
    return project
