"""Project configuration loading."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import TrunklineError
from .models import ProjectConfig


class ProjectConfigError(TrunklineError):
    """Raised when the project configuration file cannot be parsed."""


class ProjectConfigLoader:
    """Loads hook declarations from a YAML file inside the repository."""

    def __init__(self, relative_path: Path) -> None:
        self._relative_path = Path(relative_path)

    def path_for(self, repo_root: Path) -> Path:
        return Path(repo_root) / self._relative_path

    def load(self, repo_root: Path) -> ProjectConfig:
        """Load the project config, returning an empty one when the file is absent."""

        path = self.path_for(repo_root)
        if not path.exists():
            return ProjectConfig()

        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - library type
            raise ProjectConfigError(f"Failed to parse YAML in {path}: {exc}") from exc

        if document is None:
            return ProjectConfig()
        if not isinstance(document, dict):
            raise ProjectConfigError(f"Project config in {path} must be a mapping")

        try:
            return ProjectConfig.model_validate(document)
        except ValidationError as exc:
            raise ProjectConfigError(f"Project config validation error in {path}: {exc}") from exc


__all__ = ["ProjectConfigError", "ProjectConfigLoader"]
