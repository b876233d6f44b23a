from __future__ import annotations

from pathlib import Path

import pytest

from trunkline.project import Discipline, HookType, ProjectConfigError, ProjectConfigLoader
from trunkline.templates import TemplateRenderError, render_template, sanitize


def write_config(root: Path, text: str) -> None:
    path = root / ".config" / "wt.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_returns_empty_config_when_missing(tmp_path: Path) -> None:
    config = ProjectConfigLoader(Path(".config/wt.yaml")).load(tmp_path)

    assert all(config.hook(hook_type).is_empty for hook_type in HookType)


def test_loader_normalizes_command_shapes(tmp_path: Path) -> None:
    write_config(
        tmp_path,
        """
post-create: npm ci
post-start:
  - npm run dev
  - npm run watch
pre-merge:
  test: pytest
  lint: ruff check .
""",
    )

    config = ProjectConfigLoader(Path(".config/wt.yaml")).load(tmp_path)

    post_create = config.hook(HookType.POST_CREATE)
    assert [command.command for command in post_create.commands] == ["npm ci"]
    assert post_create.discipline is Discipline.BLOCKING

    post_start = config.hook(HookType.POST_START)
    assert [command.command for command in post_start.commands] == ["npm run dev", "npm run watch"]
    assert post_start.discipline is Discipline.DETACHED

    pre_merge = config.hook(HookType.PRE_MERGE)
    assert [(command.name, command.command) for command in pre_merge.commands] == [
        ("test", "pytest"),
        ("lint", "ruff check ."),
    ]
    assert config.hook(HookType.POST_MERGE).is_empty


def test_loader_rejects_non_mapping(tmp_path: Path) -> None:
    write_config(tmp_path, "- just\n- a list\n")

    with pytest.raises(ProjectConfigError):
        ProjectConfigLoader(Path(".config/wt.yaml")).load(tmp_path)


def test_loader_rejects_empty_command(tmp_path: Path) -> None:
    write_config(tmp_path, "pre-commit:\n  - '   '\n")

    with pytest.raises(ProjectConfigError):
        ProjectConfigLoader(Path(".config/wt.yaml")).load(tmp_path)


def test_render_template_supports_filters_and_loops() -> None:
    rendered = render_template(
        "{{ repo }}.{{ branch | sanitize }}{% for f in files %} {{ f }}{% endfor %}",
        {"repo": "demo", "branch": "feature/x", "files": ["a", "b"]},
    )

    assert rendered == "demo.feature-x a b"
    assert sanitize("a\\b/c") == "a-b-c"


def test_render_template_rejects_unknown_variables() -> None:
    with pytest.raises(TemplateRenderError):
        render_template("{{ missing }}", {})
