"""Framework detection from marker files in a source tree.

Real and shadow repository backends both call :func:`detect_framework`, so a
given file tree maps to the same framework in either mode.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from deployotron.lib.logging_config import get_logger
from deployotron.models.project import FrameworkType

logger = get_logger(__name__)

NEXT_CONFIG_FILES = ("next.config.js", "next.config.mjs", "next.config.ts")
PYTHON_MARKERS = ("requirements.txt", "setup.py", "pyproject.toml")

# package.json dependency -> framework, checked in order
PACKAGE_JSON_FRAMEWORKS: tuple[tuple[str, FrameworkType], ...] = (
    ("next", FrameworkType.NEXTJS),
    ("react", FrameworkType.REACT),
    ("vue", FrameworkType.VUE),
    ("@angular/core", FrameworkType.ANGULAR),
)


def _package_dependencies(package_json: Path) -> dict[str, Any]:
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"Unreadable {package_json}: {e}")
        return {}
    if not isinstance(data, dict):
        return {}

    deps: dict[str, Any] = {}
    for key in ("dependencies", "devDependencies"):
        section = data.get(key)
        if isinstance(section, dict):
            deps.update(section)
    return deps


def detect_framework(path: str | Path) -> FrameworkType:
    """Detect the application framework of a source tree.

    Never raises: unreadable or missing files count as absent markers.

    Args:
        path: Root of the source tree

    Returns:
        Detected framework, ``FrameworkType.OTHER`` when nothing matches
    """
    root = Path(path)

    if any((root / name).is_file() for name in NEXT_CONFIG_FILES):
        return FrameworkType.NEXTJS

    package_json = root / "package.json"
    if package_json.is_file():
        deps = _package_dependencies(package_json)
        for dependency, framework in PACKAGE_JSON_FRAMEWORKS:
            if dependency in deps:
                return framework
        return FrameworkType.NODE

    if any((root / name).is_file() for name in PYTHON_MARKERS):
        return FrameworkType.PYTHON
    if (root / "Gemfile").is_file():
        return FrameworkType.RUBY
    if (root / "go.mod").is_file():
        return FrameworkType.GO
    if (root / "Cargo.toml").is_file():
        return FrameworkType.RUST

    return FrameworkType.OTHER
