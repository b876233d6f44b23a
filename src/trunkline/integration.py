"""Decide whether a branch's content already lives in its target."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .git import Repository

logger = logging.getLogger(__name__)


class IntegrationReason(str, Enum):
    CONTENT_DIFF_EMPTY = "content-diff-empty"
    TREE_HASH_EQUAL = "tree-hash-equal"
    NEITHER = "neither"


@dataclass(slots=True, frozen=True)
class IntegrationVerdict:
    branch: str
    target: str
    integrated: bool
    reason: IntegrationReason


class IntegrationChecker:
    """Checks integration against live repository state on every call.

    A branch counts as integrated when no file differs between its merge base
    with the target and its tip, or when its tip tree is identical to the
    target's tip tree. The second case covers squash and rebase merges done
    elsewhere, which keep content but not ancestry.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    async def is_integrated(self, branch: str, target: str) -> IntegrationVerdict:
        base = await self._repo.merge_base(target, branch)
        if base is not None and not await self._repo.diff_names(base, branch):
            return self._verdict(branch, target, IntegrationReason.CONTENT_DIFF_EMPTY)

        if await self._repo.tree_hash(branch) == await self._repo.tree_hash(target):
            return self._verdict(branch, target, IntegrationReason.TREE_HASH_EQUAL)

        return self._verdict(branch, target, IntegrationReason.NEITHER)

    def _verdict(self, branch: str, target: str, reason: IntegrationReason) -> IntegrationVerdict:
        verdict = IntegrationVerdict(
            branch=branch,
            target=target,
            integrated=reason is not IntegrationReason.NEITHER,
            reason=reason,
        )
        logger.debug(
            "Integration verdict",
            extra={"branch": branch, "target": target, "reason": reason.value},
        )
        return verdict


async def should_delete_branch(
    checker: IntegrationChecker,
    branch: str,
    target: str,
    *,
    delete_branch: bool = True,
    force_delete: bool = False,
) -> tuple[bool, IntegrationVerdict | None]:
    """Apply the deletion flags around the integration check.

    ``delete_branch=False`` never deletes; ``force_delete`` deletes without
    consulting the checker. Returns the decision and the verdict, if one was
    computed.
    """

    if not delete_branch:
        return False, None
    if force_delete:
        return True, None
    verdict = await checker.is_integrated(branch, target)
    return verdict.integrated, verdict


__all__ = ["IntegrationChecker", "IntegrationReason", "IntegrationVerdict", "should_delete_branch"]
