"""Shadow repository backend.

Clones are synthesized: a temporary directory with a ``.git`` folder and the
marker files of the framework the repository URL hints at. Commit SHAs are
derived from the URL and branch, so the same clone always yields the same
commit.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
import shutil
import tempfile
from pathlib import Path

from deployotron.deploy.frameworks import detect_framework
from deployotron.deploy.shadow.base import ShadowBackend
from deployotron.lib.errors import CloneError, NotARepositoryError
from deployotron.lib.logging_config import get_logger
from deployotron.models.operations import CommitInfo
from deployotron.models.project import FrameworkType

logger = get_logger(__name__)

URL_PATTERN = re.compile(r"^(https?|ssh|git|file)://\S+$|^[\w.-]+@[\w.-]+:\S+$")
BRANCH_PATTERN = re.compile(r"^(?!-)(?!.*\.\.)[A-Za-z0-9._/-]+$")

SHADOW_AUTHOR = "Shadow Developer <shadow@deployotron.dev>"

# URL token -> framework, checked in order
URL_HINTS: tuple[tuple[frozenset[str], FrameworkType], ...] = (
    (frozenset({"nextjs", "next"}), FrameworkType.NEXTJS),
    (frozenset({"react"}), FrameworkType.REACT),
    (frozenset({"vue"}), FrameworkType.VUE),
    (frozenset({"angular"}), FrameworkType.ANGULAR),
    (frozenset({"python", "flask", "django", "fastapi"}), FrameworkType.PYTHON),
    (frozenset({"node", "nodejs", "express"}), FrameworkType.NODE),
    (frozenset({"go", "golang"}), FrameworkType.GO),
    (frozenset({"rust"}), FrameworkType.RUST),
    (frozenset({"ruby", "rails"}), FrameworkType.RUBY),
)


def _package_json(name: str, dependencies: dict[str, str], **scripts: str) -> str:
    manifest = {
        "name": name,
        "version": "1.0.0",
        "dependencies": dependencies,
        "scripts": scripts,
    }
    return json.dumps(manifest, indent=2)


MARKER_FILES: dict[FrameworkType, dict[str, str]] = {
    FrameworkType.NEXTJS: {
        "package.json": _package_json(
            "shadow-nextjs-app",
            {"next": "14.2.0", "react": "18.2.0", "react-dom": "18.2.0"},
            build="next build",
            start="next start",
        ),
        "next.config.js": "module.exports = { output: 'standalone' };\n",
    },
    FrameworkType.REACT: {
        "package.json": _package_json(
            "shadow-react-app",
            {"react": "18.2.0", "react-dom": "18.2.0", "react-scripts": "5.0.1"},
            build="react-scripts build",
        ),
    },
    FrameworkType.VUE: {
        "package.json": _package_json("shadow-vue-app", {"vue": "3.4.0"}),
    },
    FrameworkType.ANGULAR: {
        "package.json": _package_json(
            "shadow-angular-app",
            {"@angular/core": "17.0.0", "@angular/common": "17.0.0"},
        ),
    },
    FrameworkType.NODE: {
        "package.json": _package_json(
            "shadow-node-app", {"express": "4.18.0"}, start="node index.js"
        ),
        "index.js": "console.log('Shadow Node.js app');\n",
    },
    FrameworkType.PYTHON: {
        "requirements.txt": "flask==3.0.0\nrequests==2.31.0\n",
        "main.py": "print('Shadow Python app')\n",
    },
    FrameworkType.GO: {
        "go.mod": "module example.com/shadow-app\n\ngo 1.22\n",
    },
    FrameworkType.RUST: {
        "Cargo.toml": (
            '[package]\nname = "shadow-rust-app"\nversion = "0.1.0"\n'
            'edition = "2021"\n\n[dependencies]\n'
        ),
    },
    FrameworkType.RUBY: {
        "Gemfile": "source 'https://rubygems.org'\ngem 'rack'\n",
        "config.ru": "run ->(env) { [200, {}, ['Shadow Ruby app']] }\n",
    },
}


def framework_hint(url: str) -> FrameworkType:
    """Framework suggested by the tokens of a repository URL.

    Example:
        >>> framework_hint("https://github.com/acme/storefront-nextjs.git")
        <FrameworkType.NEXTJS: 'nextjs'>
    """
    tokens = set(re.split(r"[^a-z0-9]+", url.lower()))
    for hints, framework in URL_HINTS:
        if tokens & hints:
            return framework
    return FrameworkType.OTHER


def shadow_commit_sha(url: str, branch: str) -> str:
    """Deterministic 40-character SHA for a URL and branch."""
    return hashlib.sha1(f"{url}#{branch}".encode(), usedforsecurity=False).hexdigest()


class ShadowRepositoryBackend(ShadowBackend):
    """Repository operations against synthesized file trees."""

    async def clone(self, url: str, branch: str) -> Path:
        await self._simulate_delay(1.0)
        self._check_failure("clone")

        if not URL_PATTERN.match(url):
            raise CloneError(f"Invalid repository URL: {url}")
        if not BRANCH_PATTERN.match(branch):
            raise CloneError(f"Invalid branch name: '{branch}'")

        try:
            path = await asyncio.to_thread(self._write_tree, url, branch)
        except OSError as e:
            raise CloneError(f"Failed to create shadow clone of {url}: {e}") from e

        self.state.add_cloned_repo(url, str(path))
        logger.debug(f"Shadow-cloned {url}@{branch} into {path}")
        return path

    async def detect_framework(self, path: Path) -> FrameworkType:
        await self._simulate_delay(0.1)
        return await asyncio.to_thread(detect_framework, path)

    async def commit_info(self, path: Path, ref: str | None = None) -> CommitInfo:
        await self._simulate_delay(0.2)
        self._check_failure("commit_info")

        head = Path(path) / ".git" / "HEAD"
        try:
            sha = head.read_text(encoding="utf-8").strip()
        except OSError:
            raise NotARepositoryError(str(path)) from None
        message_file = Path(path) / ".git" / "COMMIT_EDITMSG"
        try:
            message = message_file.read_text(encoding="utf-8").strip() or None
        except OSError:
            message = None

        return CommitInfo(
            sha=ref or sha,
            message=message,
            author=SHADOW_AUTHOR,
        )

    async def cleanup(self, path: Path) -> None:
        await self._simulate_delay(0.1)
        self.state.record_cleanup(str(path))
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except FileNotFoundError:
            logger.debug(f"Shadow clone {path} already removed")
        except OSError as e:
            logger.warning(f"Failed to clean up shadow clone {path}: {e}")

    def _write_tree(self, url: str, branch: str) -> Path:
        path = Path(tempfile.mkdtemp(prefix="deployotron-shadow-"))
        git_dir = path / ".git"
        git_dir.mkdir()
        (git_dir / "HEAD").write_text(
            shadow_commit_sha(url, branch) + "\n", encoding="utf-8"
        )
        (git_dir / "COMMIT_EDITMSG").write_text(
            f"Shadow commit on {branch}\n", encoding="utf-8"
        )

        files = MARKER_FILES.get(framework_hint(url), {})
        for name, content in files.items():
            (path / name).write_text(content, encoding="utf-8")
        (path / "README.md").write_text("# Shadow Application\n", encoding="utf-8")
        return path
