"""Data models for git worktree state."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True, frozen=True)
class Worktree:
    path: Path
    branch: str | None
    head: str | None = None
    is_main: bool = False
    detached: bool = False
    locked: bool = False
    prunable: bool = False


def parse_worktree_porcelain(output: str) -> list[Worktree]:
    """Parse ``git worktree list --porcelain`` output.

    The first entry is the main worktree. Bare entries are skipped.
    """

    worktrees: list[Worktree] = []
    for index, block in enumerate(_blocks(output)):
        fields: dict[str, str] = {}
        for line in block:
            key, _, value = line.partition(" ")
            fields[key] = value
        if "worktree" not in fields or "bare" in fields:
            continue
        branch_ref = fields.get("branch")
        branch = branch_ref.removeprefix("refs/heads/") if branch_ref else None
        worktrees.append(
            Worktree(
                path=Path(fields["worktree"]),
                branch=branch,
                head=fields.get("HEAD"),
                is_main=index == 0,
                detached="detached" in fields,
                locked="locked" in fields,
                prunable="prunable" in fields,
            )
        )
    return worktrees


def _blocks(output: str) -> list[list[str]]:
    blocks: list[list[str]] = []
    current: list[str] = []
    for line in output.splitlines():
        if not line.strip():
            if current:
                blocks.append(current)
                current = []
            continue
        current.append(line)
    if current:
        blocks.append(current)
    return blocks


__all__ = ["Worktree", "parse_worktree_porcelain"]
