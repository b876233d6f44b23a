"""Run project hook commands behind an approval gate.

Blocking hooks (post-create, pre-commit, pre-merge) run one at a time in
declared order and stop at the first failure. Detached hooks (post-start,
post-merge) are all launched as background jobs at once; their failures end
up in their log files, or in the returned outcome when a command cannot be
started, and never reach the caller as exceptions.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from rich.console import Console as RichConsole
from rich.prompt import Confirm

from .approvals import ApprovalStore, Decision, fingerprint
from .errors import ApprovalDeniedError, HookFailedError, NotInteractiveError, TrunklineError
from .jobs import BackgroundJob, BackgroundJobManager
from .output import Console
from .process import CommandResult, CommandRunner
from .project import HookCommand, HookSpec, HookType
from .templates import render_template

logger = logging.getLogger(__name__)

Prompter = Callable[[HookType, Sequence[HookCommand]], bool]


def console_prompt(hook_type: HookType, commands: Sequence[HookCommand]) -> bool:
    """Ask on the terminal whether ``commands`` may run."""

    labels = [command.command for command in commands]
    if not sys.stdin.isatty():
        raise NotInteractiveError(hook_type.value, labels)
    console = RichConsole(stderr=True, highlight=False, emoji=False)
    console.print(f"The project wants to run these {hook_type.value} commands:", markup=False)
    for command in commands:
        prefix = f"{command.name}: " if command.name else ""
        console.print(f"  {prefix}{command.command}", style="cyan", markup=False)
    return Confirm.ask("Allow and remember?", console=console, default=False)


@dataclass(slots=True)
class DetachedOutcome:
    jobs: list[BackgroundJob] = field(default_factory=list)
    skipped: list[HookCommand] = field(default_factory=list)
    failed: list[tuple[HookCommand, str]] = field(default_factory=list)


class HookRunner:
    """Executes hook specs under their discipline after checking approvals."""

    def __init__(
        self,
        runner: CommandRunner,
        jobs: BackgroundJobManager,
        approvals: ApprovalStore,
        *,
        scope: str,
        prompter: Prompter | None = None,
        console: Console | None = None,
    ) -> None:
        self._runner = runner
        self._jobs = jobs
        self._approvals = approvals
        self._scope = scope
        self._prompter = prompter or console_prompt
        self._console = console or Console()

    def approve(self, spec: HookSpec, *, force: bool = False) -> tuple[list[HookCommand], list[HookCommand]]:
        """Split ``spec``'s commands into approved and denied.

        Unknown commands are put to the prompter in a single batch and the
        answer is persisted for each of them. ``force`` approves everything
        for this call only.
        """

        if force or not spec.requires_approval:
            return list(spec.commands), []

        decisions: dict[str, bool] = {}
        pending: dict[str, HookCommand] = {}
        for command in spec.commands:
            key = fingerprint(self._scope, command.command)
            if key in decisions or key in pending:
                continue
            record = self._approvals.get(key)
            if record is None:
                pending[key] = command
            else:
                decisions[key] = record.decision is Decision.APPROVED

        if pending:
            allowed = self._prompter(spec.hook_type, list(pending.values()))
            decision = Decision.APPROVED if allowed else Decision.DENIED
            for key, command in pending.items():
                self._approvals.record(scope=self._scope, command=command.command, decision=decision)
                decisions[key] = allowed

        approved: list[HookCommand] = []
        denied: list[HookCommand] = []
        for command in spec.commands:
            if decisions[fingerprint(self._scope, command.command)]:
                approved.append(command)
            else:
                denied.append(command)
        return approved, denied

    async def run_blocking(
        self,
        spec: HookSpec,
        variables: Mapping[str, Any],
        *,
        cwd: Path,
        force: bool = False,
    ) -> list[CommandResult]:
        if spec.is_empty:
            return []
        approved, denied = self.approve(spec, force=force)
        if denied:
            raise ApprovalDeniedError(spec.hook_type.value, [command.command for command in denied])

        results: list[CommandResult] = []
        for command in approved:
            rendered = render_template(command.command, variables)
            self._console.progress(f"Running {spec.hook_type.value} {command.label}")
            result = await self._runner.run_shell(rendered, cwd=cwd)
            if result.output:
                self._console.detail(result.output)
            results.append(result)
            if not result.ok:
                logger.warning(
                    "Hook command failed",
                    extra={"hook_type": spec.hook_type.value, "hook_name": command.name, "returncode": result.returncode},
                )
                raise HookFailedError(spec.hook_type.value, command.name, result.returncode, result.output)
        return results

    def run_detached(
        self,
        spec: HookSpec,
        variables: Mapping[str, Any],
        *,
        cwd: Path,
        branch: str,
        force: bool = False,
    ) -> DetachedOutcome:
        outcome = DetachedOutcome()
        if spec.is_empty:
            return outcome
        try:
            approved, denied = self.approve(spec, force=force)
        except ApprovalDeniedError as exc:
            logger.warning("Skipping detached hooks", extra={"hook_type": spec.hook_type.value, "reason": exc.message})
            outcome.skipped.extend(spec.commands)
            return outcome

        outcome.skipped.extend(denied)
        for index, command in enumerate(approved):
            operation = f"{spec.hook_type.value}-{command.name or index}"
            try:
                rendered = render_template(command.command, variables)
                job = self._jobs.spawn(rendered, cwd=cwd, branch=branch, operation=operation)
            except (TrunklineError, OSError) as exc:
                reason = exc.message if isinstance(exc, TrunklineError) else str(exc)
                logger.warning(
                    "Detached hook not started",
                    extra={"hook_type": spec.hook_type.value, "hook_name": command.name, "reason": reason},
                )
                outcome.failed.append((command, reason))
                continue
            self._console.progress(f"Started {spec.hook_type.value} {command.label} in background (log: {job.log_path})")
            outcome.jobs.append(job)
        return outcome


__all__ = ["DetachedOutcome", "HookRunner", "Prompter", "console_prompt"]
