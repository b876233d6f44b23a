from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml

from trunkline.approvals import ApprovalStore, ApprovalStoreError, Decision, fingerprint


def fixed_clock() -> datetime:
    return datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_fingerprint_is_stable_and_scoped() -> None:
    assert fingerprint("/repo", "make test") == fingerprint("/repo", "make test")
    assert fingerprint("/repo", "make test") != fingerprint("/other", "make test")
    assert fingerprint("/repo", "make test") != fingerprint("/repo", "make lint")


def test_store_persists_decisions(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "approvals.yaml"
    store = ApprovalStore(path, clock=fixed_clock)

    record = store.record(scope="/repo", command="make test", decision=Decision.APPROVED)

    reloaded = ApprovalStore(path)
    stored = reloaded.get(record.fingerprint)
    assert stored is not None
    assert stored.decision is Decision.APPROVED
    assert stored.decided_at == fixed_clock()
    document = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert document["approvals"][0]["command"] == "make test"


def test_store_revoke_and_clear(tmp_path: Path) -> None:
    store = ApprovalStore(tmp_path / "approvals.yaml")
    first = store.record(scope="/repo", command="make test", decision=Decision.APPROVED)
    store.record(scope="/repo", command="rm -rf build", decision=Decision.DENIED)
    store.record(scope="/other", command="make test", decision=Decision.APPROVED)

    assert store.revoke(first.fingerprint)
    assert not store.revoke(first.fingerprint)
    assert [record.command for record in store.list_records("/repo")] == ["rm -rf build"]

    assert store.clear("/repo") == 1
    assert [record.scope for record in store.list_records()] == ["/other"]
    assert store.clear() == 1
    assert store.list_records() == []


def test_store_rejects_invalid_records(tmp_path: Path) -> None:
    path = tmp_path / "approvals.yaml"
    path.write_text("approvals:\n  - fingerprint: abc\n    decision: maybe\n", encoding="utf-8")

    with pytest.raises(ApprovalStoreError):
        ApprovalStore(path).list_records()
