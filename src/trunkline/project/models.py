"""Project hook declarations."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HookType(str, Enum):
    POST_CREATE = "post-create"
    POST_START = "post-start"
    PRE_COMMIT = "pre-commit"
    PRE_MERGE = "pre-merge"
    POST_MERGE = "post-merge"

    def __str__(self) -> str:
        return self.value


class Discipline(str, Enum):
    BLOCKING = "blocking"
    DETACHED = "detached"


DISCIPLINES: dict[HookType, Discipline] = {
    HookType.POST_CREATE: Discipline.BLOCKING,
    HookType.POST_START: Discipline.DETACHED,
    HookType.PRE_COMMIT: Discipline.BLOCKING,
    HookType.PRE_MERGE: Discipline.BLOCKING,
    HookType.POST_MERGE: Discipline.DETACHED,
}


class HookCommand(BaseModel):
    """A single command template, optionally named."""

    model_config = ConfigDict(frozen=True)

    name: str | None = Field(default=None, description="Label used in output and log file names.")
    command: str = Field(..., description="Jinja2 template for the shell command.")

    @field_validator("command")
    @classmethod
    def _require_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Hook command must not be empty")
        return value

    @property
    def label(self) -> str:
        return self.name or self.command


class HookSpec(BaseModel):
    """An ordered command list bound to one lifecycle point."""

    model_config = ConfigDict(frozen=True)

    hook_type: HookType
    commands: tuple[HookCommand, ...] = ()
    requires_approval: bool = True

    @property
    def discipline(self) -> Discipline:
        return DISCIPLINES[self.hook_type]

    @property
    def is_empty(self) -> bool:
        return not self.commands


class ProjectConfig(BaseModel):
    """Hooks declared by a project's ``.config/wt.yaml``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    post_create: list[HookCommand] = Field(default_factory=list, alias="post-create")
    post_start: list[HookCommand] = Field(default_factory=list, alias="post-start")
    pre_commit: list[HookCommand] = Field(default_factory=list, alias="pre-commit")
    pre_merge: list[HookCommand] = Field(default_factory=list, alias="pre-merge")
    post_merge: list[HookCommand] = Field(default_factory=list, alias="post-merge")

    @field_validator("post_create", "post_start", "pre_commit", "pre_merge", "post_merge", mode="before")
    @classmethod
    def _normalize_commands(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, str):
            return [{"command": value}]
        if isinstance(value, dict):
            return [{"name": str(name), "command": command} for name, command in value.items()]
        if isinstance(value, (list, tuple)):
            return [item if isinstance(item, dict) else {"command": item} for item in value]
        raise TypeError("Hook commands must be a string, a list of strings, or a name -> command mapping")

    def hook(self, hook_type: HookType) -> HookSpec:
        commands = getattr(self, hook_type.value.replace("-", "_"))
        return HookSpec(hook_type=hook_type, commands=tuple(commands))


__all__ = ["DISCIPLINES", "Discipline", "HookCommand", "HookSpec", "HookType", "ProjectConfig"]
