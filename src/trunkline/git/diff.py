"""Parsing and formatting of ``git diff --shortstat`` output."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class DiffStats:
    files: int | None = None
    insertions: int | None = None
    deletions: int | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.files or self.insertions or self.deletions)

    def format_summary(self) -> str:
        """Format as e.g. ``3 files, +45, -12``."""

        parts: list[str] = []
        if self.files is not None:
            parts.append(f"{self.files} file{'' if self.files == 1 else 's'}")
        if self.insertions is not None:
            parts.append(f"+{self.insertions}")
        if self.deletions is not None:
            parts.append(f"-{self.deletions}")
        return ", ".join(parts)


def parse_diff_shortstat(output: str) -> DiffStats:
    # " 3 files changed, 45 insertions(+), 12 deletions(-)"
    stats = DiffStats()
    for part in output.split(","):
        part = part.strip()
        if not part:
            continue
        number = _leading_int(part)
        if "file" in part:
            stats.files = number
        elif "insertion" in part:
            stats.insertions = number
        elif "deletion" in part:
            stats.deletions = number
    return stats


def _leading_int(text: str) -> int | None:
    head = text.split(maxsplit=1)[0]
    return int(head) if head.isdigit() else None


__all__ = ["DiffStats", "parse_diff_shortstat"]
