"""Persisted approval decisions for project hook commands."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import TrunklineError

logger = logging.getLogger(__name__)


class ApprovalStoreError(TrunklineError):
    """Raised when the approval file cannot be read or written."""


class Decision(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"


class ApprovalRecord(BaseModel):
    fingerprint: str
    decision: Decision
    scope: str = Field(..., description="Project identifier the decision applies to.")
    command: str = Field(..., description="The command template that was approved or denied.")
    decided_at: datetime


def fingerprint(scope: str, command: str) -> str:
    """Stable identifier for ``command`` within project ``scope``."""

    digest = hashlib.sha256()
    digest.update(scope.encode("utf-8"))
    digest.update(b"\0")
    digest.update(command.encode("utf-8"))
    return digest.hexdigest()


class ApprovalStore:
    """YAML-backed store of approval decisions keyed by fingerprint."""

    def __init__(self, path: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self._path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, ApprovalRecord]:
        if not self._path.exists():
            return {}
        try:
            document = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:  # pragma: no cover - library type
            raise ApprovalStoreError(f"Failed to parse approvals in {self._path}: {exc}") from exc

        records: dict[str, ApprovalRecord] = {}
        for raw in document.get("approvals", []) or []:
            try:
                record = ApprovalRecord.model_validate(raw)
            except ValidationError as exc:
                raise ApprovalStoreError(f"Invalid approval record in {self._path}: {exc}") from exc
            records[record.fingerprint] = record
        return records

    def _save(self, records: dict[str, ApprovalRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"approvals": [record.model_dump(mode="json") for record in records.values()]}
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".approvals-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(payload, handle, sort_keys=False)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, fingerprint_: str) -> ApprovalRecord | None:
        return self._load().get(fingerprint_)

    def list_records(self, scope: str | None = None) -> list[ApprovalRecord]:
        records = list(self._load().values())
        if scope is not None:
            records = [record for record in records if record.scope == scope]
        return records

    def record(self, *, scope: str, command: str, decision: Decision) -> ApprovalRecord:
        records = self._load()
        record = ApprovalRecord(
            fingerprint=fingerprint(scope, command),
            decision=decision,
            scope=scope,
            command=command,
            decided_at=self._clock(),
        )
        records[record.fingerprint] = record
        self._save(records)
        logger.info(
            "Recorded approval decision",
            extra={"scope": scope, "decision": decision.value, "fingerprint": record.fingerprint},
        )
        return record

    def revoke(self, fingerprint_: str) -> bool:
        records = self._load()
        if records.pop(fingerprint_, None) is None:
            return False
        self._save(records)
        return True

    def clear(self, scope: str | None = None) -> int:
        records = self._load()
        keep = {
            key: record
            for key, record in records.items()
            if scope is not None and record.scope != scope
        }
        removed = len(records) - len(keep)
        if removed:
            self._save(keep)
        return removed


__all__ = [
    "ApprovalRecord",
    "ApprovalStore",
    "ApprovalStoreError",
    "Decision",
    "fingerprint",
]
