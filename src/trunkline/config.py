"""Configuration management for trunkline."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WORKTREE_PATH = "../{{ repo }}.{{ branch | sanitize }}"


class TrunklineSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    worktree_path_template: str = Field(
        default=DEFAULT_WORKTREE_PATH, validation_alias="WT_WORKTREE_PATH"
    )
    default_branch: str | None = Field(default=None, validation_alias="WT_DEFAULT_BRANCH")
    commit_generation_command: str | None = Field(
        default=None, validation_alias="WT_COMMIT_GENERATION_COMMAND"
    )
    commit_template_file: Path | None = Field(
        default=None, validation_alias="WT_COMMIT_TEMPLATE_FILE"
    )
    squash_template_file: Path | None = Field(
        default=None, validation_alias="WT_SQUASH_TEMPLATE_FILE"
    )
    generator_timeout: float = Field(default=120.0, validation_alias="WT_GENERATOR_TIMEOUT")
    approvals_path: Path = Field(
        default=Path("~/.config/trunkline/approvals.yaml"), validation_alias="WT_APPROVALS_PATH"
    )
    project_config_path: Path = Field(
        default=Path(".config/wt.yaml"), validation_alias="WT_PROJECT_CONFIG"
    )
    log_dir_name: str = Field(default="wt-logs", validation_alias="WT_LOG_DIR")
    log_level: str = Field(default="WARNING", validation_alias="WT_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "WT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("worktree_path_template")
    @classmethod
    def _require_branch_in_template(cls, value: str) -> str:
        if "branch" not in value:
            raise ValueError("WT_WORKTREE_PATH must reference {{ branch }}")
        return value

    @field_validator("default_branch", "commit_generation_command", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("generator_timeout")
    @classmethod
    def _validate_generator_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("WT_GENERATOR_TIMEOUT must be > 0")
        return value

    @field_validator("log_dir_name")
    @classmethod
    def _validate_log_dir_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized or "/" in normalized:
            raise ValueError("WT_LOG_DIR must be a plain directory name")
        return normalized


@lru_cache(maxsize=1)
def get_settings() -> TrunklineSettings:
    """Return cached settings instance."""

    settings = TrunklineSettings()
    settings.approvals_path = settings.approvals_path.expanduser()
    return settings


__all__ = ["DEFAULT_WORKTREE_PATH", "TrunklineSettings", "get_settings"]
