"""Command handlers shared by the ``wt`` CLI.

Each handler takes an ``AppContext`` wired for the repository containing the
working directory and returns plain data; printing is left to ``cli``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Sequence

from rich.table import Table
from rich.text import Text

from .approvals import ApprovalRecord, ApprovalStore
from .config import TrunklineSettings, get_settings
from .errors import (
    CommandFailedError,
    MainWorktreeError,
    NotFoundError,
    TrunklineError,
    UncommittedChangesError,
)
from .generator import MessageGenerator
from .git import Repository, Worktree
from .hooks import HookRunner, Prompter
from .integration import IntegrationChecker, should_delete_branch
from .jobs import BackgroundJob, BackgroundJobManager, JobStatus, removal_command
from .output import Console
from .pipeline import MergePipeline, MergePolicy, MergeSession, Stage
from .process import CommandRunner
from .project import Discipline, HookType, ProjectConfig, ProjectConfigLoader
from .resolver import WorktreeResolver

logger = logging.getLogger(__name__)

STEP_STAGES: dict[str, list[Stage]] = {
    "commit": [Stage.STAGE, Stage.COMMIT],
    "squash": [Stage.SQUASH],
    "rebase": [Stage.REBASE],
    "push": [Stage.PUSH],
}
STEP_HOOKS: dict[str, HookType] = {hook_type.value: hook_type for hook_type in HookType}
STEPS = [*STEP_STAGES, *STEP_HOOKS]


@dataclass(slots=True)
class AppContext:
    settings: TrunklineSettings
    runner: CommandRunner
    repo: Repository
    main_path: Path
    resolver: WorktreeResolver
    checker: IntegrationChecker
    approvals: ApprovalStore
    jobs: BackgroundJobManager
    hooks: HookRunner
    generator: MessageGenerator
    project: ProjectConfig
    console: Console

    @classmethod
    async def create(
        cls,
        cwd: Path,
        *,
        settings: TrunklineSettings | None = None,
        runner: CommandRunner | None = None,
        prompter: Prompter | None = None,
        console: Console | None = None,
    ) -> "AppContext":
        settings = settings or get_settings()
        runner = runner or CommandRunner()
        console = console or Console()
        repo = Repository(Path(cwd), runner)

        main = await repo.main_worktree()
        jobs = BackgroundJobManager(await repo.common_dir() / settings.log_dir_name, runner)
        approvals = ApprovalStore(settings.approvals_path.expanduser())
        hooks = HookRunner(runner, jobs, approvals, scope=str(main.path), prompter=prompter, console=console)
        project = ProjectConfigLoader(settings.project_config_path).load(main.path)
        return cls(
            settings=settings,
            runner=runner,
            repo=repo,
            main_path=main.path,
            resolver=WorktreeResolver(
                repo, path_template=settings.worktree_path_template, default_branch=settings.default_branch
            ),
            checker=IntegrationChecker(repo),
            approvals=approvals,
            jobs=jobs,
            hooks=hooks,
            generator=MessageGenerator.from_settings(settings, runner),
            project=project,
            console=console,
        )

    @property
    def scope(self) -> str:
        return str(self.main_path)

    async def variables(self, *, branch: str | None, worktree: Path, target: str | None = None) -> dict[str, Any]:
        """Template variables for hook commands. ``target`` defaults to the default branch."""

        default_branch = await self.resolver.default_branch()
        return {
            "repo": self.main_path.name,
            "repo_root": str(self.main_path),
            "branch": branch or "HEAD",
            "worktree": str(worktree),
            "target": target or default_branch,
            "default_branch": default_branch,
        }


# -- switch ------------------------------------------------------------------


@dataclass(slots=True)
class SwitchOutcome:
    branch: str
    path: Path
    created: bool
    jobs: list[BackgroundJob] = field(default_factory=list)


async def switch(
    ctx: AppContext,
    branch: str,
    *,
    create: bool = False,
    base: str | None = None,
    execute: str | None = None,
    force: bool = False,
    verify: bool = True,
) -> SwitchOutcome:
    if base is not None and not create:
        raise TrunklineError(
            f"--base only applies when creating a branch ({branch})",
            hint=f"Use 'wt switch --create {branch} --base {base}'",
        )
    previous = await ctx.repo.current_branch()

    if create:
        worktree = await ctx.resolver.resolve_or_create(branch, base=base)
        outcome = SwitchOutcome(branch=branch, path=worktree.path, created=True)
        ctx.console.success(f"Created branch {branch} and worktree at {worktree.path}")
    else:
        resolution, added = await ctx.resolver.ensure_worktree(branch)
        outcome = SwitchOutcome(branch=resolution.branch, path=resolution.path, created=added)
        verb = "Created worktree" if added else "Switched to worktree"
        ctx.console.success(f"{verb} for {resolution.branch} at {resolution.path}")

    if outcome.created and verify:
        variables = await ctx.variables(branch=outcome.branch, worktree=outcome.path)
        await ctx.hooks.run_blocking(
            ctx.project.hook(HookType.POST_CREATE), variables, cwd=outcome.path, force=force
        )
        started = ctx.hooks.run_detached(
            ctx.project.hook(HookType.POST_START), variables, cwd=outcome.path, branch=outcome.branch, force=force
        )
        outcome.jobs.extend(started.jobs)
        for command in started.skipped:
            ctx.console.warning(f"Skipped post-start command {command.label}: not approved")
        for command, reason in started.failed:
            ctx.console.warning(f"Could not start post-start command {command.label}: {reason}")

    if previous and previous != outcome.branch:
        await ctx.resolver.record_switch(previous)

    if execute:
        result = await ctx.runner.run_shell(execute, cwd=outcome.path, capture=False)
        if not result.ok:
            raise CommandFailedError(execute, result.returncode)
    return outcome


# -- remove ------------------------------------------------------------------


@dataclass(slots=True)
class RemovalOutcome:
    branch: str | None
    path: Path | None
    branch_deleted: bool
    job: BackgroundJob | None = None


async def remove(
    ctx: AppContext,
    tokens: Sequence[str] = (),
    *,
    delete_branch: bool = True,
    force_delete: bool = False,
    background: bool = True,
) -> list[RemovalOutcome]:
    target = await ctx.resolver.default_branch()
    outcomes = []
    for token in tokens or ["@"]:
        try:
            resolution = await ctx.resolver.resolve(token)
        except NotFoundError:
            branch = await ctx.resolver.expand_token(token)
            if not delete_branch or not await ctx.repo.branch_exists(branch):
                raise
            outcomes.append(await _remove_branch_only(ctx, branch, target, force_delete=force_delete))
            continue
        outcomes.append(
            await _remove_worktree(
                ctx,
                resolution.worktree,
                target,
                delete_branch=delete_branch,
                force_delete=force_delete,
                background=background,
            )
        )
    return outcomes


async def _remove_branch_only(ctx: AppContext, branch: str, target: str, *, force_delete: bool) -> RemovalOutcome:
    delete, _ = await should_delete_branch(ctx.checker, branch, target, force_delete=force_delete)
    if not delete:
        raise TrunklineError(
            f"Branch {branch} is not integrated into {target}",
            hint=f"Use 'wt remove -D {branch}' to delete it anyway",
        )
    await ctx.repo.delete_branch(branch, force=True)
    ctx.console.success(f"Deleted branch {branch} (no worktree found)")
    return RemovalOutcome(branch=branch, path=None, branch_deleted=True)


async def _remove_worktree(
    ctx: AppContext,
    worktree: Worktree,
    target: str,
    *,
    delete_branch: bool,
    force_delete: bool,
    background: bool,
) -> RemovalOutcome:
    if worktree.is_main:
        raise MainWorktreeError(worktree.path)
    if worktree.path.exists() and await ctx.repo.at(worktree.path).is_dirty():
        raise UncommittedChangesError("remove worktree", path=worktree.path)

    branch = worktree.branch
    delete = False
    if branch is not None and branch != target:
        delete, _ = await should_delete_branch(
            ctx.checker, branch, target, delete_branch=delete_branch, force_delete=force_delete
        )
        if delete_branch and not delete:
            ctx.console.warning(f"Keeping branch {branch}: not integrated into {target}")

    await ctx.jobs.stop_fsmonitor(worktree.path)
    command = removal_command(worktree.path, branch, delete_branch=delete)
    outcome = RemovalOutcome(branch=branch, path=worktree.path, branch_deleted=delete)
    if background:
        outcome.job = ctx.jobs.spawn(
            command, cwd=ctx.main_path, branch=branch or worktree.path.name, operation="remove"
        )
        ctx.console.progress(f"Removing worktree {worktree.path} in background (log: {outcome.job.log_path})")
    else:
        result = await ctx.jobs.spawn_blocking(command, cwd=ctx.main_path)
        if not result.ok:
            raise TrunklineError(f"Failed to remove worktree {worktree.path}: {result.output}")
        suffix = f" and branch {branch}" if delete else ""
        ctx.console.success(f"Removed worktree {worktree.path}{suffix}")
    logger.info(
        "Removing worktree",
        extra={"path": str(worktree.path), "branch": branch, "delete_branch": delete, "background": background},
    )
    return outcome


# -- merge and step ----------------------------------------------------------


def build_pipeline(ctx: AppContext, policy: MergePolicy, *, target: str | None = None) -> MergePipeline:
    return MergePipeline(
        ctx.repo,
        policy=policy,
        checker=ctx.checker,
        hooks=ctx.hooks,
        jobs=ctx.jobs,
        generator=ctx.generator,
        project=ctx.project,
        target=target,
        default_branch=ctx.settings.default_branch,
        console=ctx.console,
    )


async def merge(ctx: AppContext, policy: MergePolicy, *, target: str | None = None) -> MergeSession:
    session = await build_pipeline(ctx, policy, target=target).run()
    for warning in session.warnings:
        ctx.console.warning(warning)
    return session


async def step(
    ctx: AppContext,
    name: str,
    *,
    target: str | None = None,
    force: bool = False,
    stage_mode: str = "all",
    verify: bool = True,
) -> MergeSession | None:
    """Run one pipeline stage, or one hook type, against the current worktree."""

    if name in STEP_STAGES:
        policy = MergePolicy(force=force, stage_mode=stage_mode, verify=verify)
        session = await build_pipeline(ctx, policy, target=target).run(STEP_STAGES[name])
        for warning in session.warnings:
            ctx.console.warning(warning)
        return session

    if name not in STEP_HOOKS:
        raise TrunklineError(f"Unknown step {name}", hint=f"Choose one of: {', '.join(STEPS)}")
    hook_type = STEP_HOOKS[name]
    spec = ctx.project.hook(hook_type)
    if spec.is_empty:
        ctx.console.warning(f"No {hook_type.value} commands configured")
        return None

    worktree = await ctx.repo.current_worktree()
    variables = await ctx.variables(branch=worktree.branch, worktree=worktree.path, target=target)
    if spec.discipline is Discipline.BLOCKING:
        await ctx.hooks.run_blocking(spec, variables, cwd=worktree.path, force=force)
    else:
        outcome = ctx.hooks.run_detached(
            spec, variables, cwd=worktree.path, branch=worktree.branch or worktree.path.name, force=force
        )
        for command in outcome.skipped:
            ctx.console.warning(f"Skipped {hook_type.value} command {command.label}: not approved")
        for command, reason in outcome.failed:
            ctx.console.warning(f"Could not start {hook_type.value} command {command.label}: {reason}")
    return None


# -- list --------------------------------------------------------------------


@dataclass(slots=True)
class WorktreeStatus:
    branch: str | None
    path: Path
    is_main: bool
    head: str | None
    ahead: int | None = None
    behind: int | None = None
    files: int = 0
    insertions: int = 0
    deletions: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["path"] = str(self.path)
        return data


async def list_worktrees(ctx: AppContext) -> list[WorktreeStatus]:
    default = await ctx.resolver.default_branch()
    has_default = await ctx.repo.branch_exists(default)
    statuses = []
    for worktree in await ctx.repo.list_worktrees():
        status = WorktreeStatus(
            branch=worktree.branch, path=worktree.path, is_main=worktree.is_main, head=worktree.head
        )
        if has_default and worktree.branch and worktree.branch != default:
            status.ahead, status.behind = await ctx.repo.ahead_behind(default, worktree.branch)
        if worktree.path.exists():
            stats = await ctx.repo.at(worktree.path).working_diff_stats()
            status.files = stats.files or 0
            status.insertions = stats.insertions or 0
            status.deletions = stats.deletions or 0
        statuses.append(status)
    return statuses


def format_table(statuses: Sequence[WorktreeStatus]) -> Table:
    table = Table(box=None, pad_edge=False, header_style="bold")
    table.add_column("BRANCH", style="green", no_wrap=True)
    table.add_column("AHEAD/BEHIND", no_wrap=True)
    table.add_column("CHANGES", style="yellow", no_wrap=True)
    table.add_column("PATH", style="cyan", overflow="fold")
    for status in statuses:
        branch = status.branch or "(detached)"
        if status.is_main:
            branch += " *"
        ahead_behind = "" if status.ahead is None else f"+{status.ahead} -{status.behind}"
        changes = f"+{status.insertions} -{status.deletions}" if status.files else ""
        table.add_row(Text(branch), Text(ahead_behind), Text(changes), Text(str(status.path)))
    return table


# -- approvals and logs ------------------------------------------------------


def list_approvals(ctx: AppContext, *, all_projects: bool = False) -> list[ApprovalRecord]:
    return ctx.approvals.list_records(None if all_projects else ctx.scope)


def revoke_approval(ctx: AppContext, key: str) -> ApprovalRecord:
    """Revoke the decision whose fingerprint is ``key`` or starts with it."""

    matches = [record for record in ctx.approvals.list_records() if record.fingerprint.startswith(key)]
    if not matches:
        raise NotFoundError(key, detail=f"No stored approval matches {key}")
    if len(matches) > 1:
        raise TrunklineError(f"Fingerprint prefix {key} is ambiguous", hint="Use more characters")
    ctx.approvals.revoke(matches[0].fingerprint)
    return matches[0]


def clear_approvals(ctx: AppContext, *, all_projects: bool = False) -> int:
    return ctx.approvals.clear(None if all_projects else ctx.scope)


def list_logs(ctx: AppContext) -> list[tuple[Path, JobStatus]]:
    return ctx.jobs.list_logs()


__all__ = [
    "AppContext",
    "RemovalOutcome",
    "STEPS",
    "SwitchOutcome",
    "WorktreeStatus",
    "build_pipeline",
    "clear_approvals",
    "format_table",
    "list_approvals",
    "list_logs",
    "list_worktrees",
    "merge",
    "remove",
    "revoke_approval",
    "step",
    "switch",
]
