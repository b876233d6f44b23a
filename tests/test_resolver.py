from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from trunkline.config import DEFAULT_WORKTREE_PATH
from trunkline.errors import AlreadyExistsError, NotFoundError, ResolutionConflictError
from trunkline.git import Repository
from trunkline.resolver import WorktreeResolver

from conftest import add_worktree, branches, git


def make_resolver(path: Path, template: str = DEFAULT_WORKTREE_PATH) -> WorktreeResolver:
    return WorktreeResolver(Repository(path), path_template=template)


def test_expected_path_uses_template(repo: Path) -> None:
    resolver = make_resolver(repo)

    path = asyncio.run(resolver.expected_path("feature/login"))

    assert path == repo.parent / "repo.feature-login"


def test_resolve_by_branch_when_path_differs(repo: Path) -> None:
    elsewhere = repo.parent / "custom-location"
    git(repo, "worktree", "add", "-q", "-b", "feature", str(elsewhere))
    resolver = make_resolver(repo)

    resolution = asyncio.run(resolver.resolve("feature"))

    assert resolution.path.resolve() == elsewhere.resolve()
    assert resolution.branch == "feature"


def test_resolve_prefers_worktree_at_templated_path(repo: Path) -> None:
    path = add_worktree(repo, "feature")
    # The worktree at feature's path has since switched to another branch.
    git(path, "switch", "-q", "-c", "other")
    resolver = make_resolver(repo)

    resolution = asyncio.run(resolver.resolve("feature"))

    assert resolution.path.resolve() == path.resolve()
    assert resolution.worktree.branch == "other"
    assert resolution.branch == "feature"


def test_resolve_conflict_when_path_and_branch_disagree(repo: Path) -> None:
    path = add_worktree(repo, "feature")
    git(path, "switch", "-q", "-c", "other")
    elsewhere = repo.parent / "elsewhere"
    git(repo, "worktree", "add", "-q", str(elsewhere), "feature")
    resolver = make_resolver(repo)

    with pytest.raises(ResolutionConflictError) as excinfo:
        asyncio.run(resolver.resolve("feature"))

    assert excinfo.value.path_branch == "other"
    assert excinfo.value.branch_worktree.resolve() == elsewhere.resolve()


def test_resolve_not_found(repo: Path) -> None:
    resolver = make_resolver(repo)

    with pytest.raises(NotFoundError):
        asyncio.run(resolver.resolve("missing"))


def test_shortcut_tokens(repo: Path) -> None:
    feature = add_worktree(repo, "feature")
    resolver = make_resolver(feature)

    assert asyncio.run(resolver.resolve("@")).branch == "feature"
    assert asyncio.run(resolver.resolve("^")).path.resolve() == repo.resolve()

    with pytest.raises(NotFoundError):
        asyncio.run(resolver.expand_token("-"))
    asyncio.run(resolver.record_switch("main"))
    assert asyncio.run(resolver.expand_token("-")) == "main"


def test_resolve_or_create(repo: Path) -> None:
    resolver = make_resolver(repo)

    worktree = asyncio.run(resolver.resolve_or_create("feature"))

    assert worktree.path == repo.parent / "repo.feature"
    assert worktree.path.is_dir()
    assert "feature" in branches(repo)
    assert git(worktree.path, "rev-parse", "HEAD") == git(repo, "rev-parse", "main")


def test_resolve_or_create_rejects_existing_branch(repo: Path) -> None:
    git(repo, "branch", "feature")
    resolver = make_resolver(repo)

    with pytest.raises(AlreadyExistsError):
        asyncio.run(resolver.resolve_or_create("feature"))


def test_resolve_or_create_rejects_existing_path(repo: Path) -> None:
    (repo.parent / "repo.feature").mkdir()
    resolver = make_resolver(repo)

    with pytest.raises(AlreadyExistsError) as excinfo:
        asyncio.run(resolver.resolve_or_create("feature"))

    assert excinfo.value.path == repo.parent / "repo.feature"
    assert "feature" not in branches(repo)


def test_ensure_worktree_adds_worktree_for_existing_branch(repo: Path) -> None:
    git(repo, "branch", "feature")
    resolver = make_resolver(repo)

    resolution, added = asyncio.run(resolver.ensure_worktree("feature"))

    assert added
    assert resolution.path == repo.parent / "repo.feature"
    assert git(resolution.path, "branch", "--show-current") == "feature"

    again, added_again = asyncio.run(resolver.ensure_worktree("feature"))
    assert not added_again
    assert again.path.resolve() == resolution.path.resolve()
