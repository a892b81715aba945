"""
PVECluster - Proxmox VE cluster membership orchestrator

Safely forms, grows and shrinks a small, statically known cluster:
- Membership lifecycle (create, join, add-others, remove-node, leave)
- Quorum safety guard in front of every departure
- Idempotent corosync timing tuning for wide-area links
"""

__version__ = "1.0.0"

from pvecluster.config import ClusterToolConfig, TuningParameterSet
from pvecluster.membership.orchestrator import MembershipOrchestrator

__all__ = ["ClusterToolConfig", "MembershipOrchestrator", "TuningParameterSet", "__version__"]
