from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from trunkline.errors import GeneratorUnavailableError
from trunkline.generator import (
    GenerationMode,
    MessageGenerator,
    fallback_commit_message,
    fallback_squash_message,
)
from trunkline.process import CommandResult, CommandRunner, FakeCommandRunner


def write_script(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "generate"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return script


@pytest.mark.parametrize(
    ("files", "expected"),
    [
        ([], "Changes"),
        (["src/a.py"], "Changes to a.py"),
        (["a.py", "b.py"], "Changes to a.py & b.py"),
        (["a.py", "b.py", "c.py"], "Changes to a.py, b.py & c.py"),
        (["a", "b", "c", "d", "e"], "Changes to a, b, c & 2 more"),
    ],
)
def test_fallback_commit_message(files, expected) -> None:
    assert fallback_commit_message(files) == expected


def test_fallback_squash_message_lists_subjects_in_order() -> None:
    message = fallback_squash_message("feature", ["First", "Second"])

    assert message == "Squash commits from feature\n\n- First\n- Second"


def test_generator_pipes_prompt_to_command(tmp_path: Path) -> None:
    captured = tmp_path / "prompt.txt"
    script = write_script(tmp_path, f"cat > {captured}\necho 'Add login form'")
    generator = MessageGenerator(CommandRunner(), command=str(script))

    message = asyncio.run(
        generator.commit_message(
            files=["login.py"],
            git_diff="+def login(): ...",
            branch="feature",
            recent_commits=["Earlier work"],
            repo="demo",
        )
    )

    assert message.text == "Add login form"
    assert not message.is_fallback
    prompt = captured.read_text(encoding="utf-8")
    assert "+def login(): ..." in prompt
    assert "- Earlier work" in prompt
    assert "Repository: demo" in prompt


def test_generator_failure_falls_back_to_file_names(tmp_path: Path) -> None:
    script = write_script(tmp_path, "echo 'model unavailable' >&2; exit 1")
    generator = MessageGenerator(CommandRunner(), command=str(script))

    message = asyncio.run(
        generator.commit_message(
            files=["a.py", "b.py"], git_diff="", branch="feature", recent_commits=[], repo="demo"
        )
    )

    assert message.text == "Changes to a.py & b.py"
    assert message.fallback_reason == "model unavailable"


def test_squash_fallback_when_generator_times_out(tmp_path: Path) -> None:
    script = write_script(tmp_path, "exec sleep 5")
    generator = MessageGenerator(CommandRunner(), command=str(script), timeout=0.2)

    message = asyncio.run(
        generator.squash_message(commits=["One", "Two"], target_branch="main", branch="feature", repo="demo")
    )

    assert message.is_fallback
    assert message.text == "Squash commits from feature\n\n- One\n- Two"


def test_unconfigured_generator_uses_fallback_without_running() -> None:
    runner = FakeCommandRunner()
    generator = MessageGenerator(runner, command=None)

    message = asyncio.run(
        generator.commit_message(files=["a.py"], git_diff="", branch="b", recent_commits=[], repo="r")
    )

    assert message.text == "Changes to a.py"
    assert runner.invocations == []


def test_generate_rejects_empty_output() -> None:
    runner = FakeCommandRunner([CommandResult(args=("sh",), returncode=0, stdout="  \n", stderr="")])
    generator = MessageGenerator(runner, command="llm")

    with pytest.raises(GeneratorUnavailableError):
        asyncio.run(generator.generate(GenerationMode.COMMIT, {"git_diff": "", "branch": "b", "repo": "r"}))


def test_custom_template_is_rendered() -> None:
    runner = FakeCommandRunner([CommandResult(args=("sh",), returncode=0, stdout="Subject\n", stderr="")])
    generator = MessageGenerator(runner, command="llm", squash_template="{{ commits | join(', ') }} -> {{ target_branch }}")

    message = asyncio.run(
        generator.squash_message(commits=["a", "b"], target_branch="main", branch="feature", repo="r")
    )

    assert message.text == "Subject"
    assert runner.stdin_payloads == ["a, b -> main"]
