"""Worktree workflow orchestration on top of git."""

__version__ = "0.1.0"

__all__ = ["__version__"]
