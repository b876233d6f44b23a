from __future__ import annotations

import asyncio
import io
import subprocess
from pathlib import Path

import pytest

from trunkline.commands import AppContext
from trunkline.config import TrunklineSettings, get_settings
from trunkline.output import Console

ISOLATED_ENV_VARS = (
    "WT_WORKTREE_PATH",
    "WT_DEFAULT_BRANCH",
    "WT_COMMIT_GENERATION_COMMAND",
    "WT_COMMIT_TEMPLATE_FILE",
    "WT_SQUASH_TEMPLATE_FILE",
    "WT_GENERATOR_TIMEOUT",
    "WT_APPROVALS_PATH",
    "WT_PROJECT_CONFIG",
    "WT_LOG_DIR",
    "WT_LOG_LEVEL",
    "FORCE_COLOR",
    "CLICOLOR_FORCE",
)


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return result.stdout.strip()


def commit_file(cwd: Path, name: str, content: str, message: str) -> str:
    path = Path(cwd) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    git(cwd, "add", name)
    git(cwd, "commit", "-q", "-m", message)
    return git(cwd, "rev-parse", "HEAD")


def add_worktree(repo: Path, branch: str, *, base: str = "main") -> Path:
    """Add a worktree at the default templated location for ``branch``."""

    path = repo.parent / f"{repo.name}.{branch.replace('/', '-')}"
    git(repo, "worktree", "add", "-q", "-b", branch, str(path), base)
    return path


def branches(repo: Path) -> list[str]:
    return git(repo, "for-each-ref", "--format=%(refname:short)", "refs/heads").splitlines()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WT_APPROVALS_PATH", str(tmp_path / "approvals.yaml"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    path = tmp_path / "repo"
    path.mkdir()
    git(path, "init", "-q", "-b", "main")
    git(path, "config", "user.name", "Test User")
    git(path, "config", "user.email", "test@example.com")
    git(path, "config", "commit.gpgsign", "false")
    commit_file(path, "README.md", "hello\n", "Initial commit")
    return path


@pytest.fixture
def settings() -> TrunklineSettings:
    return TrunklineSettings()


@pytest.fixture
def status_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def console(status_stream: io.StringIO) -> Console:
    return Console(stream=status_stream, out=io.StringIO())


@pytest.fixture
def make_context(settings: TrunklineSettings, console: Console):
    def factory(cwd: Path, *, prompter=None, settings_override: TrunklineSettings | None = None) -> AppContext:
        return asyncio.run(
            AppContext.create(
                cwd,
                settings=settings_override or settings,
                prompter=prompter or (lambda hook_type, commands: True),
                console=console,
            )
        )

    return factory
