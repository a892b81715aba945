"""
PVECluster Quorum Safety Guard

Decides whether a removal or departure leaves a cluster able to keep
quorum, and gates every destructive operation behind an explicit
operator confirmation.

Thresholds:
- Removing a peer needs at least 3 members (at least 2 remain).
- Leaving needs at least 2 members. This lets a 2-node cluster shrink
  to 1, which is laxer than peer removal; kept as-is until the
  threshold is changed deliberately.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from pvecluster.exceptions import OperationCancelled, QuorumUnsafe

logger = structlog.get_logger(__name__)

Confirmer = Callable[[str], bool]

MIN_REMAINING_AFTER_REMOVAL = 2
MIN_MEMBERS_TO_LEAVE = 2


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def majority(member_count: int) -> int:
    """Votes needed for quorum with one vote per member."""
    return member_count // 2 + 1


def can_remove(current_member_count: int, is_self_departure: bool) -> GuardDecision:
    """Pure quorum check for removing a peer or leaving."""
    if current_member_count < 0:
        raise ValueError("member count cannot be negative")

    if is_self_departure:
        if current_member_count < MIN_MEMBERS_TO_LEAVE:
            return GuardDecision(False, "This is the last node, leaving is not meaningful")
        return GuardDecision(True, f"{current_member_count - 1} node(s) remain after leaving")

    remaining = current_member_count - 1
    if remaining < MIN_REMAINING_AFTER_REMOVAL:
        return GuardDecision(
            False,
            f"Removal would reduce the cluster to {max(remaining, 0)} node(s)",
        )
    return GuardDecision(True, f"{remaining} node(s) remain, quorum needs {majority(remaining)}")


class QuorumGuard:
    """Raises on unsafe removals and collects operator confirmation."""

    def __init__(self, confirmer: Optional[Confirmer] = None, auto_confirm: bool = False) -> None:
        self.confirmer = confirmer
        self.auto_confirm = auto_confirm

    def check_removal(
        self,
        current_member_count: int,
        is_self_departure: bool,
        node: Optional[str] = None,
    ) -> GuardDecision:
        decision = can_remove(current_member_count, is_self_departure)
        logger.info(
            "guard.decision",
            members=current_member_count,
            self_departure=is_self_departure,
            allowed=decision.allowed,
            node=node,
        )
        if not decision.allowed:
            raise QuorumUnsafe(
                decision.reason,
                node=node,
                step="leave" if is_self_departure else "remove-node",
            )
        return decision

    def confirm(self, prompt: str, node: Optional[str] = None) -> None:
        """
        Require a yes before a destructive step.

        Raises:
            OperationCancelled: If declined, or if no confirmer is available
                and auto-confirm is off
        """
        if self.auto_confirm:
            logger.debug("guard.auto_confirmed", prompt=prompt)
            return
        if self.confirmer is None or not self.confirmer(prompt):
            raise OperationCancelled(f"Cancelled: {prompt}", node=node)

    def ask(self, prompt: str) -> bool:
        """Non-raising variant for optional follow-up steps."""
        if self.auto_confirm:
            return True
        if self.confirmer is None:
            return False
        return bool(self.confirmer(prompt))
