"""Project hook declarations and loader exports."""

from .loader import ProjectConfigError, ProjectConfigLoader
from .models import DISCIPLINES, Discipline, HookCommand, HookSpec, HookType, ProjectConfig

__all__ = [
    "DISCIPLINES",
    "Discipline",
    "HookCommand",
    "HookSpec",
    "HookType",
    "ProjectConfig",
    "ProjectConfigError",
    "ProjectConfigLoader",
]
