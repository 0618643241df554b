"""Logging configuration for Deployotron.

All loggers live under the ``deployotron`` namespace so a single handler on
the package root controls CLI and library output.
"""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER_NAME = "deployotron"

DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DEFAULT_DATE_FORMAT = "%H:%M:%S"

# Chatty third-party loggers kept at WARNING unless verbose
NOISY_LOGGERS = ("docker", "urllib3", "azure", "git")


def get_logger(name: str) -> logging.Logger:
    """Return a logger scoped under the deployotron namespace.

    Args:
        name: Logger name, usually ``__name__``

    Returns:
        Logger instance
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure console logging for the deployotron package.

    Args:
        verbose: Enable DEBUG output, including third-party loggers
        quiet: Only show warnings and errors
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    # Replace our own handler on repeated calls instead of stacking them
    for handler in list(root.handlers):
        if getattr(handler, "_deployotron_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, DEFAULT_DATE_FORMAT))
    handler._deployotron_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.propagate = False

    third_party_level = logging.DEBUG if verbose else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)
