"""Async runner for external commands (git, hooks, the message generator)."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Sequence

logger = logging.getLogger(__name__)

# Dropped from child environments: they pin a process to this interpreter or
# to one repository regardless of its working directory.
_SCRUBBED_VARS = frozenset(
    {
        "PYTHONHOME",
        "PYTHONPATH",
        "VIRTUAL_ENV",
        "PIP_RESPECT_VIRTUALENV",
        "GIT_DIR",
        "GIT_WORK_TREE",
        "GIT_INDEX_FILE",
        "GIT_COMMON_DIR",
        "GIT_OBJECT_DIRECTORY",
        "GIT_PREFIX",
    }
)


def subprocess_environment(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy of ``os.environ`` for child processes, with ``extra`` applied last."""

    env = {key: value for key, value in os.environ.items() if key not in _SCRUBBED_VARS}
    if extra:
        env.update(extra)
    return env


class CommandRunnerError(RuntimeError):
    """Base class for command runner errors."""


class CommandNotFoundError(CommandRunnerError):
    """Raised when the executable cannot be started."""


class MissingDirectoryError(CommandRunnerError):
    """Raised when the working directory for a command does not exist."""

    def __init__(self, cwd: Path | str) -> None:
        super().__init__(f"Working directory does not exist: {cwd}")
        self.cwd = Path(cwd)


class CommandTimeoutError(CommandRunnerError):
    """Raised when a command exceeds its timeout and is killed."""

    def __init__(self, args: Sequence[str], timeout: float) -> None:
        super().__init__(f"Command timed out after {timeout:g}s: {' '.join(args)}")
        self.command = tuple(args)
        self.timeout = timeout


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of a command invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, trimmed."""

        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class CommandRunner:
    """Execute external commands asynchronously."""

    async def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | str | None = None,
        stdin: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        capture: bool = True,
    ) -> CommandResult:
        return await self._invoke(
            tuple(argv), cwd=cwd, stdin=stdin, env=env, timeout=timeout, capture=capture
        )

    async def run_shell(
        self,
        command: str,
        *,
        cwd: Path | str | None = None,
        stdin: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        capture: bool = True,
    ) -> CommandResult:
        """Run a command string through ``sh -c``."""

        return await self.run(
            ["sh", "-c", command], cwd=cwd, stdin=stdin, env=env, timeout=timeout, capture=capture
        )

    async def _invoke(
        self,
        args: tuple[str, ...],
        *,
        cwd: Path | str | None,
        stdin: str | None,
        env: Mapping[str, str] | None,
        timeout: float | None,
        capture: bool,
    ) -> CommandResult:
        if cwd is not None and not Path(cwd).is_dir():
            raise MissingDirectoryError(cwd)
        pipe = asyncio.subprocess.PIPE if capture else None
        if stdin is not None:
            stdin_mode = asyncio.subprocess.PIPE
        else:
            # Captured commands never read the terminal.
            stdin_mode = asyncio.subprocess.DEVNULL if capture else None
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd is not None else None,
                stdin=stdin_mode,
                stdout=pipe,
                stderr=pipe,
                env=dict(env) if env is not None else subprocess_environment(),
                # Captured commands get their own process group so a timeout kills children too.
                start_new_session=capture,
            )
        except FileNotFoundError as exc:
            raise CommandNotFoundError(f"Executable not found: {args[0]}") from exc

        payload = stdin.encode("utf-8") if stdin is not None else None
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(payload), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            _kill(process, group=capture)
            await process.wait()
            raise CommandTimeoutError(args, timeout or 0) from exc

        stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
        stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")
        logger.debug(
            "Command finished",
            extra={"argv": list(args), "cwd": str(cwd) if cwd else None, "returncode": process.returncode},
        )
        return CommandResult(args=args, returncode=process.returncode, stdout=stdout, stderr=stderr)


def _kill(process: asyncio.subprocess.Process, *, group: bool) -> None:
    try:
        if group:
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass


class FakeCommandRunner(CommandRunner):
    """Test double that returns scripted results and records invocations."""

    def __init__(self, responses: Iterable[CommandResult] | None = None) -> None:
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._stdin: list[str | None] = []

    async def _invoke(  # type: ignore[override]
        self,
        args: tuple[str, ...],
        *,
        cwd: Path | str | None,
        stdin: str | None,
        env: Mapping[str, str] | None,
        timeout: float | None,
        capture: bool,
    ) -> CommandResult:
        self._invocations.append(args)
        self._stdin.append(stdin)
        if self._responses:
            return self._responses.pop(0)
        return CommandResult(args=args, returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def stdin_payloads(self) -> list[str | None]:
        return self._stdin


__all__ = [
    "CommandNotFoundError",
    "CommandResult",
    "CommandRunner",
    "CommandRunnerError",
    "CommandTimeoutError",
    "FakeCommandRunner",
    "MissingDirectoryError",
    "subprocess_environment",
]
