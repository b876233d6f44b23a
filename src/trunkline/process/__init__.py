"""External command execution."""

from .runner import (
    CommandNotFoundError,
    CommandResult,
    CommandRunner,
    CommandRunnerError,
    CommandTimeoutError,
    FakeCommandRunner,
    MissingDirectoryError,
    subprocess_environment,
)

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
