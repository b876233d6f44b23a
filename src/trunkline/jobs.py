"""Detached background operations with per-operation log files."""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping

from .process import CommandResult, CommandRunner, subprocess_environment
from .templates import sanitize

logger = logging.getLogger(__name__)

EXIT_MARKER = "trunkline: exit status"
_EXIT_RE = re.compile(rf"^{re.escape(EXIT_MARKER)} (\d+)$")


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


@dataclass(slots=True)
class BackgroundJob:
    """Handle for a detached operation.

    Status only moves forward: ``running`` to ``succeeded`` or ``failed``.
    """

    id: str
    operation: str
    branch: str
    log_path: Path
    command: str
    pid: int | None = None
    status: JobStatus = JobStatus.RUNNING
    returncode: int | None = None
    _process: subprocess.Popen | None = field(default=None, repr=False)

    def poll(self) -> JobStatus:
        if self.status.is_terminal:
            return self.status
        returncode: int | None = None
        if self._process is not None:
            returncode = self._process.poll()
        else:
            returncode = read_exit_status(self.log_path)
        if returncode is not None:
            self._finish(returncode)
        return self.status

    def wait(self, timeout: float | None = None) -> JobStatus:
        """Block until the job finishes or ``timeout`` elapses."""

        if self._process is not None and not self.status.is_terminal:
            try:
                self._finish(self._process.wait(timeout=timeout))
            except subprocess.TimeoutExpired:
                pass
            return self.status

        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.poll().is_terminal:
            if deadline is not None and time.monotonic() >= deadline:
                break
            time.sleep(0.05)
        return self.status

    def _finish(self, returncode: int) -> None:
        if self.status.is_terminal:
            return
        self.returncode = returncode
        self.status = JobStatus.SUCCEEDED if returncode == 0 else JobStatus.FAILED
        logger.info(
            "Background job finished",
            extra={"job_id": self.id, "operation": self.operation, "returncode": returncode},
        )


def read_exit_status(log_path: Path) -> int | None:
    """Return the exit status recorded at the end of ``log_path``, if any."""

    try:
        lines = Path(log_path).read_text(encoding="utf-8", errors="replace").splitlines()
    except FileNotFoundError:
        return None
    for line in reversed(lines):
        match = _EXIT_RE.match(line.strip())
        if match:
            return int(match.group(1))
        if line.strip():
            return None
    return None


def log_status(log_path: Path) -> JobStatus:
    returncode = read_exit_status(log_path)
    if returncode is None:
        return JobStatus.RUNNING
    return JobStatus.SUCCEEDED if returncode == 0 else JobStatus.FAILED


class BackgroundJobManager:
    """Spawn detached shell operations whose output lands in ``log_dir``."""

    def __init__(self, log_dir: Path, runner: CommandRunner | None = None) -> None:
        self._log_dir = Path(log_dir)
        self._runner = runner or CommandRunner()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def log_path(self, branch: str, operation: str) -> Path:
        return self._log_dir / f"{sanitize(branch)}-{sanitize(operation)}.log"

    def spawn(
        self,
        command: str,
        *,
        cwd: Path,
        branch: str,
        operation: str,
        env: Mapping[str, str] | None = None,
    ) -> BackgroundJob:
        """Start ``command`` detached from this process and return immediately."""

        log_path = self.log_path(branch, operation)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        wrapped = f"( {command}\n); status=$?; echo \"{EXIT_MARKER} $status\"; exit $status"
        with log_path.open("w", encoding="utf-8") as handle:
            handle.write(f"$ {command}\n")
            handle.flush()
            process = subprocess.Popen(
                ["sh", "-c", wrapped],
                cwd=str(cwd),
                stdin=subprocess.DEVNULL,
                stdout=handle,
                stderr=subprocess.STDOUT,
                env=subprocess_environment(env),
                start_new_session=True,
            )
        job = BackgroundJob(
            id=uuid.uuid4().hex[:8],
            operation=operation,
            branch=branch,
            log_path=log_path,
            command=command,
            pid=process.pid,
            _process=process,
        )
        logger.info(
            "Spawned background job",
            extra={"job_id": job.id, "operation": operation, "branch": branch, "log_path": str(log_path)},
        )
        return job

    async def spawn_blocking(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run ``command`` in the foreground and return its result."""

        return await self._runner.run_shell(command, cwd=cwd, env=subprocess_environment(env))

    async def stop_fsmonitor(self, worktree_path: Path) -> None:
        """Stop a filesystem-monitor daemon bound to ``worktree_path``.

        Absent daemons and git versions without fsmonitor are not errors.
        """

        if not Path(worktree_path).exists():
            return
        result = await self._runner.run(["git", "fsmonitor--daemon", "stop"], cwd=worktree_path)
        logger.debug(
            "Stopped fsmonitor daemon",
            extra={"worktree": str(worktree_path), "returncode": result.returncode},
        )

    def list_logs(self) -> list[tuple[Path, JobStatus]]:
        if not self._log_dir.exists():
            return []
        return [(path, log_status(path)) for path in sorted(self._log_dir.glob("*.log"))]


def removal_command(worktree_path: Path, branch: str | None, *, delete_branch: bool) -> str:
    """Shell line that removes a worktree and optionally its branch.

    The branch is force-deleted: whether it is safe to delete has already
    been decided by the integration check.
    """

    command = f"git worktree remove {shlex.quote(str(worktree_path))}"
    if delete_branch and branch:
        command += f" && git branch -D {shlex.quote(branch)}"
    return command


__all__ = [
    "BackgroundJob",
    "BackgroundJobManager",
    "EXIT_MARKER",
    "JobStatus",
    "log_status",
    "read_exit_status",
    "removal_command",
]
