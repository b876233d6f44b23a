"""Error taxonomy for worktree and merge operations.

Every error carries a one-line message and an optional ``hint`` that the CLI
prints beneath it. ``exit_code`` is the process status used when the error
reaches the top level.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class TrunklineError(RuntimeError):
    """Base class for user-facing errors."""

    exit_code = 1

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class GitCommandError(TrunklineError):
    """A git invocation exited non-zero."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str) -> None:
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")
        self.command = tuple(args)
        self.returncode = returncode
        self.stderr = stderr


class NotFoundError(TrunklineError):
    """No worktree or branch matches the requested name."""

    def __init__(self, token: str, *, detail: str | None = None) -> None:
        message = detail or f"No worktree found for branch {token}"
        super().__init__(message, hint="Create one with 'wt switch --create <branch>'")
        self.token = token


class ResolutionConflictError(TrunklineError):
    """Path-based and branch-based lookups point at different worktrees."""

    def __init__(self, token: str, path_worktree: Path, path_branch: str | None, branch_worktree: Path) -> None:
        occupant = path_branch or "a detached HEAD"
        super().__init__(
            f"Ambiguous worktree for {token}: {path_worktree} is on {occupant}, "
            f"but {token} is checked out at {branch_worktree}",
            hint="Remove or rename one of the worktrees, then retry",
        )
        self.token = token
        self.path_worktree = path_worktree
        self.path_branch = path_branch
        self.branch_worktree = branch_worktree


class AlreadyExistsError(TrunklineError):
    """A branch or worktree path is already taken."""

    def __init__(self, branch: str, *, path: Path | None = None) -> None:
        if path is not None:
            message = f"Cannot create worktree for {branch}: directory already exists: {path}"
            hint = "Remove the directory or use a different branch name"
        else:
            message = f"Branch {branch} already exists"
            hint = "Remove the --create flag to switch to it"
        super().__init__(message, hint=hint)
        self.branch = branch
        self.path = path


class DetachedHeadError(TrunklineError):
    def __init__(self, action: str | None = None) -> None:
        message = "Not on a branch (detached HEAD)"
        if action:
            message = f"Cannot {action}: not on a branch (detached HEAD)"
        super().__init__(message, hint="Switch to a branch first with 'git switch <branch>'")
        self.action = action


class UncommittedChangesError(TrunklineError):
    def __init__(self, action: str | None = None, *, path: Path | None = None) -> None:
        base = "Working tree has uncommitted changes"
        if action:
            base = f"Cannot {action}: working tree has uncommitted changes"
        message = f"{base} ({path})" if path is not None else base
        super().__init__(message, hint="Commit or stash them first")
        self.action = action
        self.path = path


class MainWorktreeError(TrunklineError):
    def __init__(self, path: Path) -> None:
        super().__init__(
            f"Cannot remove the main worktree at {path}",
            hint="Remove linked worktrees only; the main worktree owns the repository",
        )
        self.path = path


class RebaseConflictError(TrunklineError):
    """Rebasing onto the target failed; the rebase has been aborted."""

    def __init__(self, target: str, output: str = "") -> None:
        super().__init__(
            f"Rebase onto {target} incomplete: conflict",
            hint=f"Rebase manually with 'git rebase {target}', resolve conflicts, then run 'wt merge' again",
        )
        self.target = target
        self.output = output


class NonFastForwardError(TrunklineError):
    """The target branch has commits the source branch does not contain."""

    def __init__(self, target: str, commits: Sequence[str] = (), *, in_merge: bool = True) -> None:
        message = f"Can't push to local {target} branch: it has newer commits"
        if commits:
            message += "\n" + "\n".join(f"  {line}" for line in commits)
        hint = (
            "Run 'wt merge' again to incorporate these changes"
            if in_merge
            else f"Use 'wt step rebase' or 'wt merge' to rebase onto {target}"
        )
        super().__init__(message, hint=hint)
        self.target = target
        self.commits = list(commits)


class PushFailedError(TrunklineError):
    def __init__(self, target: str, output: str) -> None:
        super().__init__(f"Push to {target} failed: {output.strip() or 'unknown error'}")
        self.target = target
        self.output = output


class ApprovalDeniedError(TrunklineError):
    """A hook command was not approved to run."""

    def __init__(self, hook_type: str, commands: Sequence[str]) -> None:
        listing = ", ".join(commands)
        super().__init__(
            f"{hook_type} commands not approved: {listing}",
            hint="Approve with --force, or revoke the stored decision with 'wt approvals revoke'",
        )
        self.hook_type = hook_type
        self.commands = list(commands)


class NotInteractiveError(ApprovalDeniedError):
    """Approval is required but there is no terminal to ask on."""

    def __init__(self, hook_type: str, commands: Sequence[str]) -> None:
        super().__init__(hook_type, commands)
        self.message = "Cannot prompt for approval in non-interactive environment"
        self.args = (self.message,)
        self.hint = "In CI, use --force to skip prompts"


class HookFailedError(TrunklineError):
    """A blocking hook command exited non-zero."""

    def __init__(self, hook_type: str, name: str | None, returncode: int, output: str = "") -> None:
        name_suffix = f": {name}" if name else ""
        super().__init__(
            f"{hook_type} command failed{name_suffix}: exit code {returncode}",
            hint=f"Use --no-verify to skip {hook_type} commands",
        )
        self.hook_type = hook_type
        self.name = name
        self.returncode = returncode
        self.output = output
        self.exit_code = returncode if returncode > 0 else 1


class CommandFailedError(TrunklineError):
    """A user-supplied command exited non-zero."""

    def __init__(self, command: str, returncode: int) -> None:
        super().__init__(f"Command failed with exit code {returncode}: {command}")
        self.command = command
        self.returncode = returncode
        self.exit_code = returncode if returncode > 0 else 1


class GeneratorUnavailableError(TrunklineError):
    """The commit message generator could not produce a message."""

    def __init__(self, reason: str, *, command: str | None = None) -> None:
        super().__init__(f"Commit generation command failed: {reason}")
        self.reason = reason
        self.command = command


class MergeAbortedError(TrunklineError):
    """A fatal error stopped the merge pipeline at ``stage``."""

    def __init__(self, stage: str, cause: TrunklineError, *, branch: str, backup_ref: str | None = None) -> None:
        recovery = f"branch {branch} preserved"
        if backup_ref:
            recovery += f", backup at {backup_ref}"
        super().__init__(f"{stage}: {cause.message} ({recovery})", hint=cause.hint)
        self.stage = stage
        self.cause = cause
        self.branch = branch
        self.backup_ref = backup_ref
        self.exit_code = cause.exit_code


__all__ = [
    "AlreadyExistsError",
    "ApprovalDeniedError",
    "CommandFailedError",
    "DetachedHeadError",
    "GeneratorUnavailableError",
    "GitCommandError",
    "HookFailedError",
    "MainWorktreeError",
    "MergeAbortedError",
    "NonFastForwardError",
    "NotFoundError",
    "NotInteractiveError",
    "PushFailedError",
    "RebaseConflictError",
    "ResolutionConflictError",
    "TrunklineError",
    "UncommittedChangesError",
]
