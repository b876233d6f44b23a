"""Commit message generation through an external command."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence

from .config import TrunklineSettings
from .errors import GeneratorUnavailableError
from .process import CommandRunner, CommandRunnerError
from .templates import TemplateRenderError, render_template

logger = logging.getLogger(__name__)

MAX_DIFF_CHARS = 200_000

DEFAULT_COMMIT_TEMPLATE = """\
Write a git commit message for the staged changes below.

Use a subject line of at most 50 characters in the imperative mood, then a
blank line and a short body if the change needs explaining. Output only the
message.
{% if recent_commits %}
Recent commit subjects on {{ branch }} for style reference:
{% for subject in recent_commits %}- {{ subject }}
{% endfor %}{% endif %}
Repository: {{ repo }}
Branch: {{ branch }}

<diff>
{{ git_diff }}
</diff>
"""

DEFAULT_SQUASH_TEMPLATE = """\
Combine these commits from {{ branch }} into a single commit message for
merging into {{ target_branch }}. Use a subject line of at most 50 characters
in the imperative mood, then a short body. Output only the message.

Repository: {{ repo }}
Commits, oldest first:
{% for message in commits %}- {{ message }}
{% endfor %}"""


class GenerationMode(str, Enum):
    COMMIT = "commit"
    SQUASH = "squash"


@dataclass(slots=True, frozen=True)
class GeneratedMessage:
    text: str
    fallback_reason: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None


def fallback_commit_message(files: Sequence[str]) -> str:
    """Deterministic message naming the changed files."""

    names = [Path(name).name for name in files]
    if not names:
        return "Changes"
    if len(names) == 1:
        return f"Changes to {names[0]}"
    if len(names) <= 3:
        return f"Changes to {', '.join(names[:-1])} & {names[-1]}"
    return f"Changes to {', '.join(names[:3])} & {len(names) - 3} more"


def fallback_squash_message(branch: str, subjects: Sequence[str]) -> str:
    """Deterministic message listing the squashed subjects in order."""

    body = "\n".join(f"- {subject}" for subject in subjects)
    return f"Squash commits from {branch}\n\n{body}" if body else f"Squash commits from {branch}"


class MessageGenerator:
    """Render a prompt and pipe it to the configured generator command."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        command: str | None,
        timeout: float = 120.0,
        commit_template: str | None = None,
        squash_template: str | None = None,
    ) -> None:
        self._runner = runner
        self._command = command
        self._timeout = timeout
        self._templates = {
            GenerationMode.COMMIT: commit_template or DEFAULT_COMMIT_TEMPLATE,
            GenerationMode.SQUASH: squash_template or DEFAULT_SQUASH_TEMPLATE,
        }

    @classmethod
    def from_settings(cls, settings: TrunklineSettings, runner: CommandRunner) -> "MessageGenerator":
        return cls(
            runner,
            command=settings.commit_generation_command,
            timeout=settings.generator_timeout,
            commit_template=_read_template(settings.commit_template_file),
            squash_template=_read_template(settings.squash_template_file),
        )

    @property
    def configured(self) -> bool:
        return self._command is not None

    def build_prompt(self, mode: GenerationMode, variables: Mapping[str, Any]) -> str:
        return render_template(self._templates[mode], variables)

    async def generate(self, mode: GenerationMode, variables: Mapping[str, Any]) -> str:
        if self._command is None:
            raise GeneratorUnavailableError("no commit generation command configured")

        try:
            prompt = self.build_prompt(mode, variables)
        except TemplateRenderError as exc:
            raise GeneratorUnavailableError(exc.message, command=self._command) from exc
        try:
            result = await self._runner.run_shell(self._command, stdin=prompt, timeout=self._timeout)
        except CommandRunnerError as exc:
            raise GeneratorUnavailableError(str(exc), command=self._command) from exc

        if not result.ok:
            raise GeneratorUnavailableError(
                result.stderr.strip() or f"exit code {result.returncode}", command=self._command
            )
        message = result.stdout.strip()
        if not message:
            raise GeneratorUnavailableError("generator produced no output", command=self._command)
        return message

    async def commit_message(
        self,
        *,
        files: Sequence[str],
        git_diff: str,
        branch: str,
        recent_commits: Sequence[str],
        repo: str,
    ) -> GeneratedMessage:
        variables = {
            "files": list(files),
            "git_diff": git_diff[:MAX_DIFF_CHARS],
            "branch": branch,
            "recent_commits": list(recent_commits),
            "repo": repo,
        }
        return await self._generate_or(GenerationMode.COMMIT, variables, fallback_commit_message(files))

    async def squash_message(
        self,
        *,
        commits: Sequence[str],
        target_branch: str,
        branch: str,
        repo: str,
    ) -> GeneratedMessage:
        variables = {
            "commits": list(commits),
            "target_branch": target_branch,
            "branch": branch,
            "repo": repo,
        }
        return await self._generate_or(GenerationMode.SQUASH, variables, fallback_squash_message(branch, commits))

    async def _generate_or(
        self, mode: GenerationMode, variables: Mapping[str, Any], fallback: str
    ) -> GeneratedMessage:
        try:
            return GeneratedMessage(await self.generate(mode, variables))
        except GeneratorUnavailableError as exc:
            log = logger.warning if self.configured else logger.info
            log("Using fallback commit message", extra={"mode": mode.value, "reason": exc.reason})
            return GeneratedMessage(fallback, fallback_reason=exc.reason)


def _read_template(path: Path | None) -> str | None:
    if path is None:
        return None
    return Path(path).expanduser().read_text(encoding="utf-8")


__all__ = [
    "DEFAULT_COMMIT_TEMPLATE",
    "DEFAULT_SQUASH_TEMPLATE",
    "GeneratedMessage",
    "GenerationMode",
    "MessageGenerator",
    "fallback_commit_message",
    "fallback_squash_message",
]
