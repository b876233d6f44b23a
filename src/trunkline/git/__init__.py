"""Git command facade and worktree models."""

from .diff import DiffStats, parse_diff_shortstat
from .models import Worktree, parse_worktree_porcelain
from .repository import HISTORY_KEY, Repository

__all__ = [
    "DiffStats",
    "HISTORY_KEY",
    "Repository",
    "Worktree",
    "parse_diff_shortstat",
    "parse_worktree_porcelain",
]
