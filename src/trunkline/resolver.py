"""Map user-supplied branch tokens to worktrees.

Lookup is path-first: the token's templated worktree path is checked before
any branch-name search, so a worktree sitting at the expected location is
returned even if it has since switched branches. When that worktree and a
different worktree checked out on the token's branch both exist, the
resolver refuses to guess and raises ``ResolutionConflictError``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import AlreadyExistsError, NotFoundError, ResolutionConflictError
from .git import Repository, Worktree
from .templates import render_template

logger = logging.getLogger(__name__)

CURRENT = "@"
PREVIOUS = "-"
DEFAULT = "^"


@dataclass(slots=True, frozen=True)
class Resolution:
    worktree: Worktree
    branch: str

    @property
    def path(self) -> Path:
        return self.worktree.path


class WorktreeResolver:
    def __init__(self, repo: Repository, *, path_template: str, default_branch: str | None = None) -> None:
        self._repo = repo
        self._path_template = path_template
        self._default_branch_override = default_branch

    async def expand_token(self, token: str) -> str:
        """Turn a shortcut token into a branch name; other tokens pass through."""

        if token == CURRENT:
            return await self._repo.require_branch("resolve @")
        if token == PREVIOUS:
            previous = await self._repo.previous_branch()
            if previous is None:
                raise NotFoundError(token, detail="No previous branch recorded; switch at least once first")
            return previous
        if token == DEFAULT:
            return await self.default_branch()
        return token

    async def default_branch(self) -> str:
        return await self._repo.default_branch(self._default_branch_override)

    async def expected_path(self, branch: str) -> Path:
        main = await self._repo.main_worktree()
        rendered = render_template(
            self._path_template,
            {"repo": main.path.name, "repo_root": str(main.path), "branch": branch},
        )
        path = Path(rendered).expanduser()
        if not path.is_absolute():
            path = main.path / path
        return Path(os.path.normpath(path))

    async def resolve(self, token: str) -> Resolution:
        branch = await self.expand_token(token)
        expected = _canonical(await self.expected_path(branch))
        worktrees = await self._repo.list_worktrees()

        at_path = next((wt for wt in worktrees if _canonical(wt.path) == expected), None)
        on_branch = next((wt for wt in worktrees if wt.branch == branch), None)

        if at_path is not None:
            if on_branch is not None and _canonical(on_branch.path) != _canonical(at_path.path):
                raise ResolutionConflictError(branch, at_path.path, at_path.branch, on_branch.path)
            logger.debug("Resolved by path", extra={"token": token, "path": str(at_path.path)})
            return Resolution(worktree=at_path, branch=branch)

        if on_branch is not None:
            logger.debug("Resolved by branch", extra={"token": token, "path": str(on_branch.path)})
            return Resolution(worktree=on_branch, branch=branch)

        raise NotFoundError(branch)

    async def resolve_or_create(self, branch: str, *, base: str | None = None) -> Worktree:
        """Create ``branch`` from ``base`` and a worktree for it at the templated path."""

        if await self._repo.branch_exists(branch):
            raise AlreadyExistsError(branch)
        path = await self.expected_path(branch)
        if path.exists():
            raise AlreadyExistsError(branch, path=path)
        base = base or await self.default_branch()
        await self._repo.add_worktree(path, branch, base=base, create=True)
        return Worktree(path=path, branch=branch)

    async def ensure_worktree(self, token: str) -> tuple[Resolution, bool]:
        """Resolve ``token``; add a worktree for an existing branch that has none.

        Returns the resolution and whether a worktree was added.
        """

        try:
            return await self.resolve(token), False
        except NotFoundError:
            branch = await self.expand_token(token)
            if not await self._repo.branch_exists(branch):
                raise
        path = await self.expected_path(branch)
        if path.exists():
            raise AlreadyExistsError(branch, path=path)
        await self._repo.add_worktree(path, branch, create=False)
        return Resolution(worktree=Worktree(path=path, branch=branch), branch=branch), True

    async def record_switch(self, from_branch: str | None) -> None:
        if from_branch:
            await self._repo.record_previous_branch(from_branch)


def _canonical(path: Path) -> Path:
    return Path(os.path.realpath(path))


__all__ = ["CURRENT", "DEFAULT", "PREVIOUS", "Resolution", "WorktreeResolver"]
