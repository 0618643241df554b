"""Environment variable helpers for Deployotron configuration."""

from __future__ import annotations

import os
import re
from pathlib import Path

from dotenv import load_dotenv

from deployotron.lib.errors import ConfigError
from deployotron.lib.logging_config import get_logger

logger = get_logger(__name__)

_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


def load_env_file(path: str | Path = ".env") -> bool:
    """Load variables from a .env file without overriding the environment.

    Args:
        path: Path to the .env file

    Returns:
        True if the file existed and was loaded, False otherwise
    """
    env_path = Path(path)
    if not env_path.is_file():
        logger.debug(f"No env file at {env_path}")
        return False

    loaded = load_dotenv(env_path, override=False)
    logger.debug(f"Loaded env file {env_path}")
    return bool(loaded)


def get_env_var(name: str, default: str | None = None) -> str | None:
    """Read an environment variable.

    Args:
        name: Variable name
        default: Value returned when the variable is unset

    Returns:
        Variable value or the default
    """
    return os.environ.get(name, default)


def get_env_flag(name: str) -> bool:
    """Read a boolean switch; any value other than a false-like one enables it.

    Args:
        name: Variable name

    Returns:
        True if the variable is set to something other than 0/false/no/off
    """
    value = os.environ.get(name)
    if value is None:
        return False
    return value.strip().lower() not in _FALSE_VALUES


def get_env_float(name: str, default: float, *, strict: bool = False) -> float:
    """Read a float environment variable.

    Args:
        name: Variable name
        default: Value used when the variable is unset or unparseable
        strict: Raise ConfigError instead of falling back on bad values

    Returns:
        Parsed float value

    Raises:
        ConfigError: If strict and the value is not a number
    """
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        if strict:
            raise ConfigError(name, f"Expected a number, got '{raw}'") from None
        logger.warning(f"Ignoring non-numeric value for {name}: '{raw}'")
        return default


_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def substitute_env_vars(text: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` references in text.

    Args:
        text: Raw text, typically a YAML document

    Returns:
        Text with references replaced by environment values

    Raises:
        ConfigError: If a referenced variable is unset and has no default
    """

    def _replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = os.environ.get(name)
        if value is not None:
            return value
        if default is not None:
            return default
        raise ConfigError(name, f"Environment variable '{name}' is not set")

    return _ENV_PATTERN.sub(_replace, text)
