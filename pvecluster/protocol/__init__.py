"""
PVECluster Protocol Service

- :class:`ProtocolService` -- abstract membership service contract
- :class:`PvecmService`    -- Proxmox ``pvecm`` / corosync implementation
"""

from __future__ import annotations

from pvecluster.protocol.base import ProtocolService
from pvecluster.protocol.pvecm import PvecmCommands, PvecmService, parse_nodes, parse_status

__all__ = [
    "ProtocolService",
    "PvecmCommands",
    "PvecmService",
    "parse_nodes",
    "parse_status",
]
