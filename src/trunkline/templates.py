"""Jinja2 rendering for worktree paths, hook commands and generator prompts."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Mapping

from jinja2 import Environment, StrictUndefined, TemplateError

from .errors import TrunklineError

_UNSAFE_PATH_CHARS = re.compile(r"[\\/]")


class TemplateRenderError(TrunklineError):
    """Raised when a template fails to parse or references an unknown variable."""


def sanitize(value: str) -> str:
    """Make a branch name safe to use as a single path component."""

    return _UNSAFE_PATH_CHARS.sub("-", str(value))


@lru_cache(maxsize=1)
def _environment() -> Environment:
    env = Environment(undefined=StrictUndefined, keep_trailing_newline=False, autoescape=False)
    env.filters["sanitize"] = sanitize
    return env


def render_template(source: str, variables: Mapping[str, Any]) -> str:
    try:
        return _environment().from_string(source).render(**variables)
    except TemplateError as exc:
        raise TemplateRenderError(f"Failed to render template {source!r}: {exc}") from exc


__all__ = ["TemplateRenderError", "render_template", "sanitize"]
