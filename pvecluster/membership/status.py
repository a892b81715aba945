"""
PVECluster Status Reporter

Read-only rendering of membership and quorum state.
"""

from __future__ import annotations

from typing import List, Optional

import structlog

from pvecluster.exceptions import ProtocolError
from pvecluster.membership.guard import majority
from pvecluster.protocol.base import ProtocolService
from pvecluster.types import ClusterMembership

logger = structlog.get_logger(__name__)

NO_STATUS = "  (no cluster status)"


class StatusReporter:
    def __init__(self, protocol: ProtocolService, local_name: Optional[str] = None) -> None:
        self.protocol = protocol
        self.local_name = local_name

    async def fetch(self) -> Optional[ClusterMembership]:
        try:
            return await self.protocol.status()
        except ProtocolError as e:
            logger.info("status.unavailable", error=e.message)
            return None

    def format(self, membership: Optional[ClusterMembership]) -> str:
        if membership is None:
            return NO_STATUS

        local = membership.local or self.local_name
        lines: List[str] = [
            f"  Cluster:  {membership.cluster_name or '-'}",
            f"  Quorate:  {'yes' if membership.quorate else 'no'}",
            f"  Members:  {membership.size} (quorum needs {majority(membership.size)})",
        ]
        for name in membership.members:
            marker = " (local)" if name == local else ""
            lines.append(f"    - {name}{marker}")
        return "\n".join(lines)

    async def render(self) -> str:
        return self.format(await self.fetch())
