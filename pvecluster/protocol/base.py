"""
PVECluster Protocol Service Interface

Abstract view of the consensus/membership service the orchestrator
drives. The service itself (voting, replication of the shared
configuration) is a black box; this interface is the whole contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from pvecluster.types import ClusterMembership


class ProtocolService(ABC):
    """
    Local membership service.

    Every method is bounded by a timeout and raises
    :class:`~pvecluster.exceptions.ProtocolError` when the underlying
    call fails, except the two boolean checks which report ``False``.
    """

    @abstractmethod
    async def is_member(self) -> bool:
        """Whether the local node currently belongs to a cluster."""
        pass

    @abstractmethod
    async def status(self) -> ClusterMembership:
        """Current roster and quorum state."""
        pass

    @abstractmethod
    async def list_members(self) -> List[str]:
        """Short names of all current members, in service order."""
        pass

    @abstractmethod
    async def create(self, name: str) -> None:
        """Found a new cluster named ``name`` with the local node as first member."""
        pass

    @abstractmethod
    async def add_node(self, primary_addr: str, force: bool = False) -> None:
        """Join the local node to the cluster reachable at ``primary_addr``."""
        pass

    @abstractmethod
    async def remove_node(self, short_name: str) -> None:
        """Remove another node from the cluster."""
        pass

    @abstractmethod
    async def leave(self) -> None:
        """Remove the local node from its cluster."""
        pass

    @abstractmethod
    async def reload_config(self) -> None:
        """Make the service pick up the shared configuration document."""
        pass

    @abstractmethod
    async def quorum_check(self) -> bool:
        """Whether the cluster is quorate right now."""
        pass
