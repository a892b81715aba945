"""
PVECluster Remote Execution Fan-out

Checks and joins peer nodes over the authenticated remote channel.
Peers are processed strictly in order and the fan-out stops at the
first failure; peers after it are reported as not attempted. Nothing
is retried at this layer.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import structlog

from pvecluster.exceptions import Unreachable
from pvecluster.execution.ssh import RemoteChannel
from pvecluster.protocol.pvecm import PvecmCommands
from pvecluster.types import FanoutReport, Node, OperationResult

logger = structlog.get_logger(__name__)


class RemoteExecutor:
    """Runs membership commands on peers through a :class:`RemoteChannel`."""

    def __init__(
        self,
        channel: RemoteChannel,
        commands: Optional[PvecmCommands] = None,
        check_timeout: Optional[float] = None,
        join_timeout: Optional[float] = None,
        dry_run: bool = False,
    ) -> None:
        self.channel = channel
        self.commands = commands or PvecmCommands()
        self.check_timeout = check_timeout
        self.join_timeout = join_timeout
        self.dry_run = dry_run

    async def remote_check(self, node: Node) -> bool:
        """
        Whether ``node`` is already a cluster member.

        Raises:
            Unreachable: If the channel to the node failed
        """
        result = await self.channel.execute(
            node.address, self.commands.status(), timeout=self.check_timeout,
        )
        return result.ok

    async def remote_join(self, node: Node, primary_addr: str) -> OperationResult:
        """Ask ``node`` to join the cluster at ``primary_addr``."""
        if self.dry_run:
            return OperationResult.planned(f"would join {primary_addr}", node=node.name)

        try:
            result = await self.channel.execute(
                node.address, self.commands.add(primary_addr), timeout=self.join_timeout,
            )
        except Unreachable as e:
            return OperationResult.failed(e.message, node=node.name)

        if not result.ok:
            return OperationResult.failed(
                f"pvecm add exited with {result.exit_status}: {result.output or 'no output'}",
                node=node.name,
            )
        return OperationResult.success(node=node.name)

    async def join_peer(self, node: Node, primary_addr: str) -> OperationResult:
        """Check, then join one peer unless it is already a member."""
        try:
            if await self.remote_check(node):
                logger.info("fanout.already_member", node=node.name)
                return OperationResult.already_member(node=node.name)
        except Unreachable as e:
            return OperationResult.failed(e.message, node=node.name)

        logger.info("fanout.join", node=node.name, address=node.address, primary=primary_addr)
        return await self.remote_join(node, primary_addr)

    async def fan_out_join(self, peers: Sequence[Node], primary_addr: str) -> FanoutReport:
        """
        Join every peer in order, stopping at the first failure.

        The report lists every peer: processed ones with their outcome,
        the rest as ``not_attempted``.
        """
        results: List[Tuple[Node, OperationResult]] = []
        for index, node in enumerate(peers):
            outcome = await self.join_peer(node, primary_addr)
            results.append((node, outcome))
            if not outcome.ok:
                logger.error("fanout.failed", node=node.name, reason=outcome.reason)
                results.extend(
                    (rest, OperationResult.not_attempted(node=rest.name))
                    for rest in peers[index + 1:]
                )
                return FanoutReport(tuple(results))

        logger.info("fanout.done", peers=[n.name for n in peers])
        return FanoutReport(tuple(results))
