"""Configuration loading for Deployotron.

Main components:
- load_project: Load and validate a project YAML file
- Environment helpers (.env loading, ${VAR_NAME} substitution)
- Default values (polling, ports, revision sizing)
"""

from deployotron.config.env_loader import (
    get_env_var,
    load_env_file,
    substitute_env_vars,
)
from deployotron.config.loader import load_project

__all__ = [
    "get_env_var",
    "load_env_file",
    "load_project",
    "substitute_env_vars",
]
