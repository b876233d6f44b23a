"""Thin async facade over the git command line."""

from __future__ import annotations

import logging
from pathlib import Path

from ..errors import DetachedHeadError, GitCommandError
from ..process import CommandResult, CommandRunner
from .diff import DiffStats, parse_diff_shortstat
from .models import Worktree, parse_worktree_porcelain

logger = logging.getLogger(__name__)

HISTORY_KEY = "trunkline.previous-branch"


class Repository:
    """Issue git commands against the worktree at ``path``."""

    def __init__(self, path: Path, runner: CommandRunner | None = None) -> None:
        self._path = Path(path)
        self._runner = runner or CommandRunner()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def at(self, path: Path) -> "Repository":
        """Return a repository handle operating in another worktree."""

        return Repository(path, self._runner)

    async def run(self, *args: str, check: bool = True, stdin: str | None = None) -> CommandResult:
        result = await self._runner.run(["git", *args], cwd=self._path, stdin=stdin)
        if check and not result.ok:
            raise GitCommandError(args, result.returncode, result.stderr)
        return result

    async def output(self, *args: str) -> str:
        result = await self.run(*args)
        return result.stdout.strip()

    # -- locations -----------------------------------------------------------

    async def toplevel(self) -> Path:
        return Path(await self.output("rev-parse", "--show-toplevel"))

    async def common_dir(self) -> Path:
        raw = Path(await self.output("rev-parse", "--git-common-dir"))
        return raw if raw.is_absolute() else (self._path / raw).resolve()

    async def list_worktrees(self) -> list[Worktree]:
        return parse_worktree_porcelain(await self.output("worktree", "list", "--porcelain"))

    async def main_worktree(self) -> Worktree:
        worktrees = await self.list_worktrees()
        return worktrees[0]

    async def current_worktree(self) -> Worktree:
        top = (await self.toplevel()).resolve()
        for worktree in await self.list_worktrees():
            if worktree.path.resolve() == top:
                return worktree
        branch = await self.current_branch()
        return Worktree(path=top, branch=branch, detached=branch is None)

    async def repo_name(self) -> str:
        return (await self.main_worktree()).path.name

    # -- branches ------------------------------------------------------------

    async def current_branch(self) -> str | None:
        result = await self.run("symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    async def require_branch(self, action: str) -> str:
        branch = await self.current_branch()
        if branch is None:
            raise DetachedHeadError(action)
        return branch

    async def branch_exists(self, branch: str) -> bool:
        result = await self.run("show-ref", "--verify", "--quiet", f"refs/heads/{branch}", check=False)
        return result.ok

    async def default_branch(self, override: str | None = None) -> str:
        """Return the repository's default branch.

        Order: explicit override, ``origin/HEAD``, local ``main``/``master``,
        ``init.defaultBranch``, then ``main``.
        """

        if override:
            return override
        result = await self.run("symbolic-ref", "--quiet", "--short", "refs/remotes/origin/HEAD", check=False)
        if result.ok and result.stdout.strip():
            return result.stdout.strip().removeprefix("origin/")
        for candidate in ("main", "master"):
            if await self.branch_exists(candidate):
                return candidate
        configured = await self.get_config("init.defaultBranch", scope=None)
        return configured or "main"

    async def delete_branch(self, branch: str, *, force: bool = False) -> None:
        await self.run("branch", "-D" if force else "-d", branch)

    # -- commits and trees ---------------------------------------------------

    async def rev_parse(self, rev: str) -> str:
        return await self.output("rev-parse", "--verify", "--quiet", rev)

    async def tree_hash(self, rev: str) -> str:
        return await self.rev_parse(f"{rev}^{{tree}}")

    async def merge_base(self, left: str, right: str) -> str | None:
        result = await self.run("merge-base", left, right, check=False)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    async def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        result = await self.run("merge-base", "--is-ancestor", ancestor, descendant, check=False)
        return result.ok

    async def diff_names(self, base: str, head: str) -> list[str]:
        return _lines(await self.output("diff", "--name-only", base, head))

    async def commit_subjects(self, base: str, head: str = "HEAD") -> list[str]:
        """Subjects of commits in ``base..head``, oldest first."""

        return _lines(await self.output("log", "--reverse", "--format=%s", f"{base}..{head}"))

    async def oneline_log(self, base: str, head: str) -> list[str]:
        return _lines(await self.output("log", "--format=%h %s", f"{base}..{head}"))

    async def count_commits(self, base: str, head: str = "HEAD") -> int:
        return int(await self.output("rev-list", "--count", f"{base}..{head}") or 0)

    async def recent_subjects(self, limit: int = 5) -> list[str]:
        result = await self.run("log", f"-{limit}", "--format=%s", check=False)
        return _lines(result.stdout) if result.ok else []

    async def ahead_behind(self, base: str, head: str) -> tuple[int, int]:
        counts = await self.output("rev-list", "--left-right", "--count", f"{base}...{head}")
        behind, ahead = (int(value) for value in counts.split())
        return ahead, behind

    async def update_ref(self, ref: str, target: str, *, reason: str) -> None:
        await self.run("update-ref", "-m", reason, ref, target)

    # -- working tree --------------------------------------------------------

    async def is_dirty(self, *, include_untracked: bool = True) -> bool:
        args = ["status", "--porcelain"]
        if not include_untracked:
            args.append("--untracked-files=no")
        return bool(await self.output(*args))

    async def has_staged_changes(self) -> bool:
        result = await self.run("diff", "--cached", "--quiet", check=False)
        return result.returncode == 1

    async def staged_files(self) -> list[str]:
        return _lines(await self.output("diff", "--cached", "--name-only"))

    async def staged_diff(self) -> str:
        return (await self.run("diff", "--cached")).stdout

    async def stage(self, mode: str) -> None:
        if mode == "all":
            await self.run("add", "-A")
        elif mode == "tracked":
            await self.run("add", "-u")

    async def commit(self, message: str) -> str:
        await self.run("commit", "--quiet", "-F", "-", stdin=message)
        return await self.rev_parse("HEAD")

    async def working_diff_stats(self) -> DiffStats:
        return parse_diff_shortstat(await self.output("diff", "HEAD", "--shortstat"))

    async def diff_stats(self, base: str, head: str) -> DiffStats:
        return parse_diff_shortstat(await self.output("diff", "--shortstat", base, head))

    # -- worktrees -----------------------------------------------------------

    async def add_worktree(self, path: Path, branch: str, *, base: str | None = None, create: bool) -> None:
        if create:
            args = ["worktree", "add", "-b", branch, str(path)]
            if base:
                args.append(base)
        else:
            args = ["worktree", "add", str(path), branch]
        await self.run(*args)
        logger.info("Added worktree", extra={"path": str(path), "branch": branch, "created": create})

    # -- config --------------------------------------------------------------

    async def get_config(self, key: str, *, scope: str | None = "--local") -> str | None:
        args: list[str] = ["config"]
        if scope:
            args.append(scope)
        args.extend(["--get", key])
        result = await self.run(*args, check=False)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    async def set_config(self, key: str, value: str) -> None:
        await self.run("config", "--local", key, value)

    async def previous_branch(self) -> str | None:
        return await self.get_config(HISTORY_KEY)

    async def record_previous_branch(self, branch: str) -> None:
        await self.set_config(HISTORY_KEY, branch)


def _lines(text: str) -> list[str]:
    return [line for line in text.splitlines() if line.strip()]


__all__ = ["HISTORY_KEY", "Repository"]
