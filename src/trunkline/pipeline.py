"""The merge pipeline.

A merge walks a fixed sequence of stages::

    stage -> commit -> squash -> rebase -> pre-merge hooks -> push -> cleanup -> post-merge hooks

Which stages run is decided once, up front, from a frozen ``MergePolicy``.
Every stage up to cleanup either completes or aborts the whole session;
nothing already written to disk is rolled back. Post-merge hooks run after
the target has moved, so their problems are only reported as warnings. History rewrites are preceded by a backup
ref so the branch's earlier tip stays recoverable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from .errors import (
    ApprovalDeniedError,
    MergeAbortedError,
    NonFastForwardError,
    PushFailedError,
    RebaseConflictError,
    TrunklineError,
    UncommittedChangesError,
)
from .generator import GeneratedMessage, MessageGenerator
from .git import Repository, Worktree
from .hooks import HookRunner
from .integration import IntegrationChecker, should_delete_branch
from .jobs import BackgroundJob, BackgroundJobManager, removal_command
from .output import Console
from .process import CommandRunnerError
from .project import Discipline, HookType, ProjectConfig

logger = logging.getLogger(__name__)

BACKUP_REF_PREFIX = "refs/trunkline-backup/"
RECEIVE_PACK = "git -c receive.denyCurrentBranch=updateInstead receive-pack"
STAGE_MODES = ("all", "tracked", "none")


class Stage(str, Enum):
    STAGE = "stage"
    COMMIT = "commit"
    SQUASH = "squash"
    REBASE = "rebase"
    PRE_MERGE_HOOKS = "pre-merge"
    PUSH = "push"
    CLEANUP = "cleanup"
    POST_MERGE_HOOKS = "post-merge"


# Stages that move the branch relative to its target.
_TARGETED = frozenset({Stage.SQUASH, Stage.REBASE, Stage.PUSH})


@dataclass(slots=True, frozen=True)
class MergePolicy:
    squash: bool = True
    commit: bool = True
    rebase: bool = True
    remove: bool = True
    verify: bool = True
    force: bool = False
    stage_mode: str = "all"
    delete_branch: bool = True
    force_delete: bool = False
    background: bool = True

    def __post_init__(self) -> None:
        if self.stage_mode not in STAGE_MODES:
            raise ValueError(f"stage_mode must be one of {', '.join(STAGE_MODES)}")

    def active_stages(self) -> list[Stage]:
        skipped: set[Stage] = set()
        if not self.commit:
            skipped |= {Stage.STAGE, Stage.COMMIT, Stage.SQUASH}
        if not self.squash:
            skipped.add(Stage.SQUASH)
        if not self.rebase:
            skipped.add(Stage.REBASE)
        if not self.remove:
            skipped.add(Stage.CLEANUP)
        if not self.verify:
            skipped |= {Stage.PRE_MERGE_HOOKS, Stage.POST_MERGE_HOOKS}
        return [stage for stage in Stage if stage not in skipped]


@dataclass(slots=True)
class MergeSession:
    """State of one pipeline run. Discarded when the run ends."""

    source: str
    target: str
    worktree: Worktree
    main_path: Path
    target_path: Path
    default_branch: str
    stage: Stage | None = None
    completed: list[Stage] = field(default_factory=list)
    skipped: list[Stage] = field(default_factory=list)
    backup_ref: str | None = None
    commits: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    jobs: list[BackgroundJob] = field(default_factory=list)
    removed: bool = False
    branch_deleted: bool = False

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning(message, extra={"branch": self.source, "stage": self.stage.value if self.stage else None})


class MergePipeline:
    """Drive one merge of the current worktree's branch into ``target``."""

    def __init__(
        self,
        repo: Repository,
        *,
        policy: MergePolicy,
        checker: IntegrationChecker,
        hooks: HookRunner,
        jobs: BackgroundJobManager,
        generator: MessageGenerator,
        project: ProjectConfig,
        target: str | None = None,
        default_branch: str | None = None,
        console: Console | None = None,
    ) -> None:
        self._repo = repo
        self._policy = policy
        self._checker = checker
        self._hooks = hooks
        self._jobs = jobs
        self._generator = generator
        self._project = project
        self._target = target
        self._default_branch = default_branch
        self._console = console or Console()

    @property
    def policy(self) -> MergePolicy:
        return self._policy

    async def run(self, stages: Iterable[Stage] | None = None) -> MergeSession:
        """Run ``stages`` (default: the policy's active stages) in pipeline order."""

        selected = set(self._policy.active_stages() if stages is None else stages)
        plan = [stage for stage in Stage if stage in selected]

        session = await self._open_session(plan)
        session.skipped = [stage for stage in Stage if stage not in selected]
        await self._approve_upfront(session, plan)

        handlers = {
            Stage.STAGE: self._stage,
            Stage.COMMIT: self._commit,
            Stage.SQUASH: self._squash,
            Stage.REBASE: self._rebase,
            Stage.PRE_MERGE_HOOKS: self._pre_merge_hooks,
            Stage.PUSH: self._push,
            Stage.CLEANUP: self._cleanup,
            Stage.POST_MERGE_HOOKS: self._post_merge_hooks,
        }
        for stage in plan:
            session.stage = stage
            logger.debug("Entering stage", extra={"stage": stage.value, "branch": session.source})
            if stage is Stage.POST_MERGE_HOOKS:
                # The target already moved; nothing past this point can fail the merge.
                try:
                    await handlers[stage](session)
                except (TrunklineError, CommandRunnerError) as exc:
                    session.warn(f"post-merge hooks not started: {exc}")
                session.completed.append(stage)
                continue
            try:
                await handlers[stage](session)
            except MergeAbortedError:
                raise
            except TrunklineError as exc:
                logger.error(
                    "Merge aborted",
                    extra={"stage": stage.value, "branch": session.source, "backup_ref": session.backup_ref},
                )
                raise MergeAbortedError(
                    _stage_label(stage, session.target), exc, branch=session.source, backup_ref=session.backup_ref
                ) from exc
            session.completed.append(stage)
        return session

    async def _open_session(self, plan: list[Stage]) -> MergeSession:
        source = await self._repo.require_branch("merge")
        default_branch = await self._repo.default_branch(self._default_branch)
        target = self._target or default_branch
        if source == target and _TARGETED.intersection(plan):
            raise TrunklineError(
                f"Cannot merge {source} into itself",
                hint="Run this from a feature worktree, or pass a different target",
            )
        if _TARGETED.intersection(plan) and not await self._repo.branch_exists(target):
            raise TrunklineError(f"Target branch {target} does not exist")
        worktree = await self._repo.current_worktree()
        # Resolved now: cleanup may remove the worktree this repository handle runs in.
        worktrees = await self._repo.list_worktrees()
        main_path = worktrees[0].path
        target_path = next((entry.path for entry in worktrees if entry.branch == target), main_path)
        logger.info(
            "Starting merge",
            extra={"branch": source, "target": target, "stages": [stage.value for stage in plan]},
        )
        return MergeSession(
            source=source,
            target=target,
            worktree=worktree,
            main_path=main_path,
            target_path=target_path,
            default_branch=default_branch,
        )

    async def _approve_upfront(self, session: MergeSession, plan: list[Stage]) -> None:
        """Ask about every hook the run may need before anything is changed."""

        if not self._policy.verify:
            return
        hook_types = []
        if Stage.COMMIT in plan:
            hook_types.append(HookType.PRE_COMMIT)
        if Stage.PRE_MERGE_HOOKS in plan:
            hook_types.append(HookType.PRE_MERGE)
        if Stage.POST_MERGE_HOOKS in plan:
            hook_types.append(HookType.POST_MERGE)

        for hook_type in hook_types:
            spec = self._project.hook(hook_type)
            if spec.is_empty:
                continue
            try:
                _, denied = self._hooks.approve(spec, force=self._policy.force)
            except ApprovalDeniedError:
                if spec.discipline is Discipline.BLOCKING:
                    raise
                session.warn(f"{hook_type.value} commands will be skipped: approval unavailable")
                continue
            if denied and spec.discipline is Discipline.BLOCKING:
                raise ApprovalDeniedError(hook_type.value, [command.command for command in denied])

    def _hook_variables(self, session: MergeSession) -> dict[str, Any]:
        return {
            "repo": session.main_path.name,
            "repo_root": str(session.main_path),
            "branch": session.source,
            "worktree": str(session.worktree.path),
            "target": session.target,
            "default_branch": session.default_branch,
        }

    # -- stages --------------------------------------------------------------

    async def _stage(self, session: MergeSession) -> None:
        if self._policy.stage_mode == "none" or not await self._repo.is_dirty():
            return
        await self._repo.stage(self._policy.stage_mode)

    async def _commit(self, session: MergeSession) -> None:
        if not await self._repo.has_staged_changes():
            return

        if self._policy.verify:
            await self._hooks.run_blocking(
                self._project.hook(HookType.PRE_COMMIT),
                self._hook_variables(session),
                cwd=session.worktree.path,
                force=self._policy.force,
            )

        files = await self._repo.staged_files()
        self._console.progress(f"Generating commit message for {len(files)} file(s)")
        message = await self._generator.commit_message(
            files=files,
            git_diff=await self._repo.staged_diff(),
            branch=session.source,
            recent_commits=await self._repo.recent_subjects(),
            repo=await self._repo.repo_name(),
        )
        self._note_fallback(session, message)
        sha = await self._repo.commit(message.text)
        session.commits.append(sha)
        self._console.success(f"Committed {sha[:8]}: {message.text.splitlines()[0]}")

    async def _squash(self, session: MergeSession) -> None:
        base = await self._repo.merge_base(session.target, "HEAD")
        if base is None:
            raise TrunklineError(f"{session.source} has no common history with {session.target}")
        count = await self._repo.count_commits(base)
        if count <= 1:
            return

        subjects = await self._repo.commit_subjects(base)
        await self._write_backup(session, "squash")
        self._console.progress(f"Squashing {count} commits into 1")
        message = await self._generator.squash_message(
            commits=subjects,
            target_branch=session.target,
            branch=session.source,
            repo=await self._repo.repo_name(),
        )
        self._note_fallback(session, message)

        await self._repo.run("reset", "--soft", base)
        if not await self._repo.has_staged_changes():
            session.warn(f"Commits on {session.source} cancel out; nothing left to squash")
            return
        sha = await self._repo.commit(message.text)
        session.commits.append(sha)
        self._console.success(f"Squashed {count} commits into {sha[:8]}")

    async def _rebase(self, session: MergeSession) -> None:
        if await self._repo.is_ancestor(session.target, "HEAD"):
            return
        if await self._repo.is_dirty(include_untracked=False):
            raise UncommittedChangesError("rebase", path=session.worktree.path)

        await self._write_backup(session, "rebase")
        self._console.progress(f"Rebasing onto {session.target}")
        result = await self._repo.run("rebase", session.target, check=False)
        if not result.ok:
            await self._repo.run("rebase", "--abort", check=False)
            raise RebaseConflictError(session.target, result.output)

    async def _pre_merge_hooks(self, session: MergeSession) -> None:
        await self._hooks.run_blocking(
            self._project.hook(HookType.PRE_MERGE),
            self._hook_variables(session),
            cwd=session.worktree.path,
            force=self._policy.force,
        )

    async def _push(self, session: MergeSession) -> None:
        target = session.target
        if not await self._repo.is_ancestor(target, "HEAD"):
            raise NonFastForwardError(target, await self._repo.oneline_log("HEAD", target))

        ahead = await self._repo.count_commits(target)
        stats = await self._repo.diff_stats(target, "HEAD")
        result = await self._repo.run(
            "push",
            f"--receive-pack={RECEIVE_PACK}",
            str(session.target_path),
            f"HEAD:refs/heads/{target}",
            check=False,
        )
        if not result.ok:
            raise PushFailedError(target, result.output)

        summary = f"{ahead} commit{'s' if ahead != 1 else ''}"
        if not stats.is_empty:
            summary += f", {stats.format_summary()}"
        self._console.success(f"Merged to {target} ({summary})")
        logger.info("Pushed to target", extra={"branch": session.source, "target": target, "commits": ahead})

    async def _cleanup(self, session: MergeSession) -> None:
        worktree = session.worktree
        if worktree.is_main:
            session.warn(f"Not removing {worktree.path}: it is the main worktree")
            return

        delete, verdict = await should_delete_branch(
            self._checker,
            session.source,
            session.target,
            delete_branch=self._policy.delete_branch,
            force_delete=self._policy.force_delete,
        )
        if self._policy.delete_branch and not delete:
            session.warn(f"Keeping branch {session.source}: not integrated into {session.target}")

        await self._jobs.stop_fsmonitor(worktree.path)
        destination = session.target_path
        command = removal_command(worktree.path, session.source, delete_branch=delete)

        if self._policy.background:
            job = self._jobs.spawn(command, cwd=destination, branch=session.source, operation="remove")
            session.jobs.append(job)
            self._console.progress(f"Removing worktree {worktree.path} in background (log: {job.log_path})")
        else:
            result = await self._jobs.spawn_blocking(command, cwd=destination)
            if not result.ok:
                raise TrunklineError(f"Failed to remove worktree {worktree.path}: {result.output}")
            self._console.success(f"Removed worktree {worktree.path}")
        session.removed = True
        session.branch_deleted = delete
        if verdict is not None:
            logger.debug("Cleanup verdict", extra={"branch": session.source, "reason": verdict.reason.value})

    async def _post_merge_hooks(self, session: MergeSession) -> None:
        outcome = self._hooks.run_detached(
            self._project.hook(HookType.POST_MERGE),
            self._hook_variables(session),
            cwd=session.target_path,
            branch=session.source,
            force=self._policy.force,
        )
        session.jobs.extend(outcome.jobs)
        for command in outcome.skipped:
            session.warn(f"Skipped post-merge command {command.label}: not approved")
        for command, reason in outcome.failed:
            session.warn(f"Could not start post-merge command {command.label}: {reason}")

    # -- helpers -------------------------------------------------------------

    async def _write_backup(self, session: MergeSession, before: str) -> None:
        if session.backup_ref is not None:
            return
        ref = f"{BACKUP_REF_PREFIX}{session.source}"
        await self._repo.update_ref(ref, await self._repo.rev_parse("HEAD"), reason=f"trunkline: before {before}")
        session.backup_ref = ref
        logger.info("Wrote backup ref", extra={"branch": session.source, "ref": ref})

    def _note_fallback(self, session: MergeSession, message: GeneratedMessage) -> None:
        if message.is_fallback and self._generator.configured:
            session.warn(f"Commit generation failed ({message.fallback_reason}); used fallback message")


def _stage_label(stage: Stage, target: str) -> str:
    if stage is Stage.REBASE:
        return f"rebase onto {target}"
    if stage is Stage.PUSH:
        return f"push to {target}"
    return stage.value


__all__ = ["BACKUP_REF_PREFIX", "MergePipeline", "MergePolicy", "MergeSession", "STAGE_MODES", "Stage"]
