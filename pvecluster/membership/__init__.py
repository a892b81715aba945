"""
PVECluster Membership

Public API surface for the membership sub-package:

- :class:`MembershipOrchestrator` -- create / join / add-others /
  remove-node / leave state machine
- :class:`QuorumGuard`            -- quorum safety checks and confirmation
- :class:`RemoteExecutor`         -- fail-fast remote fan-out
- :class:`StatusReporter`         -- read-only membership rendering
"""

from __future__ import annotations

from pvecluster.membership.fanout import RemoteExecutor
from pvecluster.membership.guard import GuardDecision, QuorumGuard, can_remove, majority
from pvecluster.membership.orchestrator import MembershipOrchestrator
from pvecluster.membership.status import StatusReporter

__all__ = [
    "GuardDecision",
    "MembershipOrchestrator",
    "QuorumGuard",
    "RemoteExecutor",
    "StatusReporter",
    "can_remove",
    "majority",
]
