"""Repository backend using the ``git`` command line."""

from __future__ import annotations

import asyncio
import shutil
import subprocess  # nosec B404
import tempfile
from datetime import datetime
from pathlib import Path

from deployotron.deploy.frameworks import detect_framework
from deployotron.lib.errors import CloneError, NotARepositoryError
from deployotron.lib.logging_config import get_logger
from deployotron.models.operations import CommitInfo
from deployotron.models.project import FrameworkType

logger = get_logger(__name__)

CLONE_TIMEOUT = 600  # seconds
LOG_FORMAT = "%H%x1f%s%x1f%an <%ae>%x1f%cI"


def _run_git(
    args: list[str], cwd: Path | None = None, timeout: int = 60
) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # noqa: S603  # nosec B603 B607
        ["git", *args],  # noqa: S607
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
        timeout=timeout,
    )


class GitRepositoryBackend:
    """Clones repositories into temporary directories with ``git``."""

    def __init__(self, workdir: str | Path | None = None) -> None:
        self._workdir = Path(workdir) if workdir else None

    def _clone(self, url: str, branch: str) -> Path:
        if self._workdir is not None:
            self._workdir.mkdir(parents=True, exist_ok=True)
        target = Path(tempfile.mkdtemp(prefix="deployotron-", dir=self._workdir))
        try:
            result = _run_git(
                [
                    "clone",
                    "--branch",
                    branch,
                    "--depth",
                    "1",
                    "--single-branch",
                    "--",
                    url,
                    str(target),
                ],
                timeout=CLONE_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            shutil.rmtree(target, ignore_errors=True)
            raise CloneError(f"git clone of {url} failed: {e}") from e

        if result.returncode != 0:
            shutil.rmtree(target, ignore_errors=True)
            stderr = result.stderr.strip().splitlines()
            detail = stderr[-1] if stderr else f"exit code {result.returncode}"
            raise CloneError(f"git clone of {url}@{branch} failed: {detail}")
        return target

    async def clone(self, url: str, branch: str) -> Path:
        if not branch or branch.startswith("-"):
            raise CloneError(f"Invalid branch name: '{branch}'")
        path = await asyncio.to_thread(self._clone, url, branch)
        logger.debug(f"Cloned {url}@{branch} into {path}")
        return path

    async def detect_framework(self, path: Path) -> FrameworkType:
        return await asyncio.to_thread(detect_framework, path)

    def _commit_info(self, path: Path, ref: str | None) -> CommitInfo:
        if not (Path(path) / ".git").exists():
            raise NotARepositoryError(str(path))
        try:
            result = _run_git(
                ["log", "-1", f"--format={LOG_FORMAT}", ref or "HEAD", "--"], cwd=path
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise NotARepositoryError(str(path)) from e
        if result.returncode != 0:
            raise NotARepositoryError(str(path))

        fields = result.stdout.strip().split("\x1f")
        sha, message, author, timestamp = (fields + [""] * 4)[:4]
        return CommitInfo(
            sha=sha,
            message=message or None,
            author=author or None,
            timestamp=datetime.fromisoformat(timestamp) if timestamp else None,
        )

    async def commit_info(self, path: Path, ref: str | None = None) -> CommitInfo:
        return await asyncio.to_thread(self._commit_info, path, ref)

    async def cleanup(self, path: Path) -> None:
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except FileNotFoundError:
            logger.debug(f"Clone {path} already removed")
        except OSError as e:
            logger.warning(f"Failed to clean up clone {path}: {e}")
