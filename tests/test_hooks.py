from __future__ import annotations

import asyncio
import io
from pathlib import Path

import pytest

from trunkline.approvals import ApprovalStore, Decision, fingerprint
from trunkline.errors import ApprovalDeniedError, HookFailedError, NotInteractiveError
from trunkline.hooks import HookRunner
from trunkline.jobs import BackgroundJobManager, JobStatus
from trunkline.output import Console
from trunkline.process import CommandRunner
from trunkline.project import HookCommand, HookSpec, HookType

SCOPE = "/projects/demo"


class CountingPrompter:
    def __init__(self, answer: bool = True) -> None:
        self.answer = answer
        self.calls: list[list[str]] = []

    def __call__(self, hook_type, commands) -> bool:
        self.calls.append([command.command for command in commands])
        return self.answer


def make_runner(tmp_path: Path, prompter) -> tuple[HookRunner, ApprovalStore, BackgroundJobManager]:
    approvals = ApprovalStore(tmp_path / "approvals.yaml")
    jobs = BackgroundJobManager(tmp_path / "logs")
    hooks = HookRunner(
        CommandRunner(),
        jobs,
        approvals,
        scope=SCOPE,
        prompter=prompter,
        console=Console(stream=io.StringIO(), out=io.StringIO()),
    )
    return hooks, approvals, jobs


def spec(hook_type: HookType, *commands: str, names: tuple[str, ...] = ()) -> HookSpec:
    entries = [
        HookCommand(name=names[index] if index < len(names) else None, command=command)
        for index, command in enumerate(commands)
    ]
    return HookSpec(hook_type=hook_type, commands=tuple(entries))


def test_blocking_hooks_run_in_order_with_variables(tmp_path: Path) -> None:
    prompter = CountingPrompter()
    hooks, _, _ = make_runner(tmp_path, prompter)
    hook = spec(
        HookType.POST_CREATE,
        "echo first:{{ branch }} >> order.txt",
        "echo second >> order.txt",
    )

    results = asyncio.run(hooks.run_blocking(hook, {"branch": "feature"}, cwd=tmp_path))

    assert len(results) == 2
    assert (tmp_path / "order.txt").read_text(encoding="utf-8").splitlines() == ["first:feature", "second"]
    assert len(prompter.calls) == 1


def test_blocking_hook_failure_stops_remaining(tmp_path: Path) -> None:
    hooks, _, _ = make_runner(tmp_path, CountingPrompter())
    hook = spec(HookType.PRE_MERGE, "exit 4", "touch should-not-exist", names=("lint",))

    with pytest.raises(HookFailedError) as excinfo:
        asyncio.run(hooks.run_blocking(hook, {}, cwd=tmp_path))

    assert excinfo.value.exit_code == 4
    assert excinfo.value.name == "lint"
    assert not (tmp_path / "should-not-exist").exists()


def test_approval_prompted_at_most_once(tmp_path: Path) -> None:
    prompter = CountingPrompter()
    hooks, approvals, _ = make_runner(tmp_path, prompter)
    hook = spec(HookType.PRE_COMMIT, "true")

    for _ in range(3):
        asyncio.run(hooks.run_blocking(hook, {}, cwd=tmp_path))

    assert prompter.calls == [["true"]]
    assert approvals.get(fingerprint(SCOPE, "true")).decision is Decision.APPROVED


def test_force_bypasses_prompt_without_persisting(tmp_path: Path) -> None:
    prompter = CountingPrompter()
    hooks, approvals, _ = make_runner(tmp_path, prompter)
    hook = spec(HookType.PRE_COMMIT, "true")

    asyncio.run(hooks.run_blocking(hook, {}, cwd=tmp_path, force=True))
    asyncio.run(hooks.run_blocking(hook, {}, cwd=tmp_path, force=True))

    assert prompter.calls == []
    assert approvals.list_records() == []


def test_denied_decision_is_remembered(tmp_path: Path) -> None:
    prompter = CountingPrompter(answer=False)
    hooks, _, _ = make_runner(tmp_path, prompter)
    hook = spec(HookType.PRE_MERGE, "touch ran")

    for _ in range(2):
        with pytest.raises(ApprovalDeniedError):
            asyncio.run(hooks.run_blocking(hook, {}, cwd=tmp_path))

    assert len(prompter.calls) == 1
    assert not (tmp_path / "ran").exists()


def test_unknown_commands_batched_into_one_prompt(tmp_path: Path) -> None:
    prompter = CountingPrompter()
    hooks, approvals, _ = make_runner(tmp_path, prompter)
    approvals.record(scope=SCOPE, command="echo known", decision=Decision.APPROVED)
    hook = spec(HookType.POST_CREATE, "echo known", "echo a", "echo b", "echo a")

    approved, denied = hooks.approve(hook)

    assert prompter.calls == [["echo a", "echo b"]]
    assert [command.command for command in approved] == ["echo known", "echo a", "echo b", "echo a"]
    assert denied == []


def test_non_interactive_prompt_fails(tmp_path: Path) -> None:
    def refuse(hook_type, commands):
        raise NotInteractiveError(hook_type.value, [command.command for command in commands])

    hooks, approvals, _ = make_runner(tmp_path, refuse)

    with pytest.raises(NotInteractiveError):
        asyncio.run(hooks.run_blocking(spec(HookType.POST_CREATE, "true"), {}, cwd=tmp_path))
    assert approvals.list_records() == []


def test_detached_hooks_spawn_logged_jobs(tmp_path: Path) -> None:
    hooks, _, jobs = make_runner(tmp_path, CountingPrompter())
    hook = spec(HookType.POST_START, "echo started {{ branch }}", "exit 2", names=("greet",))

    outcome = hooks.run_detached(hook, {"branch": "feature"}, cwd=tmp_path, branch="feature")

    assert len(outcome.jobs) == 2
    statuses = [job.wait(timeout=10) for job in outcome.jobs]
    assert statuses == [JobStatus.SUCCEEDED, JobStatus.FAILED]
    assert outcome.jobs[0].log_path == jobs.log_dir / "feature-post-start-greet.log"
    assert "started feature" in outcome.jobs[0].log_path.read_text(encoding="utf-8")


def test_detached_hooks_skip_denied_commands(tmp_path: Path) -> None:
    hooks, _, _ = make_runner(tmp_path, CountingPrompter(answer=False))

    outcome = hooks.run_detached(spec(HookType.POST_MERGE, "true"), {}, cwd=tmp_path, branch="feature")

    assert outcome.jobs == []
    assert [command.command for command in outcome.skipped] == ["true"]


def test_detached_hooks_record_commands_that_cannot_start(tmp_path: Path) -> None:
    hooks, _, _ = make_runner(tmp_path, CountingPrompter())
    hook = spec(HookType.POST_MERGE, "echo {{ missing }}", "true", names=("broken", "fine"))

    outcome = hooks.run_detached(hook, {}, cwd=tmp_path, branch="feature")

    assert [job.operation for job in outcome.jobs] == ["post-merge-fine"]
    assert [command.name for command, _ in outcome.failed] == ["broken"]
    assert "missing" in outcome.failed[0][1]
    outcome.jobs[0].wait(timeout=10)


def test_detached_hooks_survive_a_missing_working_directory(tmp_path: Path) -> None:
    hooks, _, _ = make_runner(tmp_path, CountingPrompter())

    outcome = hooks.run_detached(
        spec(HookType.POST_START, "true"), {}, cwd=tmp_path / "removed", branch="feature"
    )

    assert outcome.jobs == []
    assert len(outcome.failed) == 1
