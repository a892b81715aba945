"""
PVECluster Membership Lifecycle Orchestrator

Top-level state machine for one node's cluster membership:

    Unaffiliated --create/join--> Member --leave (guarded)--> Unaffiliated

``remove_node`` moves a *different* node out of the cluster as observed
from here. Every action checks preconditions and the quorum guard before
any mutation, then calls the local protocol service and/or the remote
fan-out. Destructive calls are not cancelled or compensated once issued;
dry-run mode performs all checks and reports what would have been done.
"""

from __future__ import annotations

from typing import Optional, Sequence

import structlog

from pvecluster.config import ClusterToolConfig, TuningParameterSet
from pvecluster.exceptions import (
    AlreadyMember,
    ConfigNotFound,
    NotMember,
    ProtocolError,
    SelfRemovalRejected,
    TuningError,
)
from pvecluster.execution.ssh import SSHChannel
from pvecluster.membership.fanout import RemoteExecutor
from pvecluster.membership.guard import Confirmer, QuorumGuard
from pvecluster.protocol.base import ProtocolService
from pvecluster.protocol.pvecm import PvecmService
from pvecluster.tuning.engine import TuningEngine, TuningResult
from pvecluster.types import (
    Action,
    ActionReport,
    ActionRequest,
    FanoutReport,
    Node,
    OperationResult,
    OutcomeKind,
    Topology,
    short_name,
)

logger = structlog.get_logger(__name__)


class MembershipOrchestrator:
    """
    Sequences guard checks, protocol calls, fan-out and tuning.

    Assumes it is the only orchestrator acting on the cluster for the
    duration of a run.
    """

    def __init__(
        self,
        topology: Topology,
        local_name: str,
        protocol: ProtocolService,
        remote: RemoteExecutor,
        guard: QuorumGuard,
        tuner: Optional[TuningEngine] = None,
        wan_tuning: Optional[TuningParameterSet] = None,
        default_cluster_name: str = "acidcluster",
        default_primary_addr: Optional[str] = None,
        dry_run: bool = False,
    ) -> None:
        self.topology = topology
        self.local_name = short_name(local_name)
        self.protocol = protocol
        self.remote = remote
        self.guard = guard
        self.tuner = tuner
        self.wan_tuning = wan_tuning
        self.default_cluster_name = default_cluster_name
        self.default_primary_addr = default_primary_addr or topology.primary.address
        self.dry_run = dry_run

    @classmethod
    def from_config(
        cls,
        config: ClusterToolConfig,
        confirmer: Optional[Confirmer] = None,
    ) -> MembershipOrchestrator:
        """Wire the pvecm service, SSH fan-out and tuning engine from config."""
        protocol = PvecmService(config.protocol)
        remote = RemoteExecutor(
            SSHChannel(config.remote),
            commands=protocol.commands,
            check_timeout=config.remote.check_timeout_seconds,
            join_timeout=config.remote.command_timeout_seconds,
            dry_run=config.dry_run,
        )
        return cls(
            topology=config.topology.to_topology(),
            local_name=config.local_name(),
            protocol=protocol,
            remote=remote,
            guard=QuorumGuard(confirmer=confirmer, auto_confirm=config.auto_confirm),
            tuner=TuningEngine.from_config(protocol, config.protocol, dry_run=config.dry_run),
            wan_tuning=config.wan_tuning,
            default_cluster_name=config.topology.cluster_name,
            default_primary_addr=config.topology.primary_address(),
            dry_run=config.dry_run,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def is_member(self) -> bool:
        return await self.protocol.is_member()

    async def _require_member(self, step: str) -> None:
        if not await self.is_member():
            raise NotMember(
                "This node is not part of a cluster",
                node=self.local_name,
                step=step,
            )

    # ------------------------------------------------------------------
    # Unaffiliated -> Member
    # ------------------------------------------------------------------

    async def create(self, cluster_name: str, require_fresh: bool = False) -> OperationResult:
        """Found a new cluster. Reports ``already_member`` if this node is in one."""
        if await self.is_member():
            logger.warning("orchestrator.create.already_member", node=self.local_name)
            if require_fresh:
                raise AlreadyMember(
                    "This node is already part of a cluster",
                    node=self.local_name,
                    step="create",
                )
            return OperationResult.already_member(node=self.local_name)

        if self.dry_run:
            return OperationResult.planned(f"would create cluster '{cluster_name}'", node=self.local_name)

        logger.info("orchestrator.create.start", cluster=cluster_name, node=self.local_name)
        await self.protocol.create(cluster_name)
        logger.info("orchestrator.create.done", cluster=cluster_name)
        return OperationResult.success(node=self.local_name)

    async def join(self, primary_addr: str, require_fresh: bool = False) -> OperationResult:
        """Join the cluster at ``primary_addr``."""
        if await self.is_member():
            logger.warning("orchestrator.join.already_member", node=self.local_name)
            if require_fresh:
                raise AlreadyMember(
                    "This node is already part of a cluster",
                    node=self.local_name,
                    step="join",
                )
            return OperationResult.already_member(node=self.local_name)

        if self.dry_run:
            return OperationResult.planned(f"would join {primary_addr}", node=self.local_name)

        logger.info("orchestrator.join.start", primary=primary_addr, node=self.local_name)
        await self.protocol.add_node(primary_addr, force=True)
        logger.info("orchestrator.join.done", primary=primary_addr)
        return OperationResult.success(node=self.local_name)

    async def add_others(
        self,
        primary_addr: str,
        peers: Optional[Sequence[Node]] = None,
        assume_member: bool = False,
    ) -> FanoutReport:
        """
        Join every other node to the cluster at ``primary_addr``.

        Raises:
            NotMember: If this node is not in a cluster itself
            PartialFanoutFailure: At the first peer that failed; the
                exception carries the full report
        """
        if not assume_member:
            await self._require_member("add-others")

        if peers is None:
            peers = self.topology.peers(exclude=self.local_name)
        else:
            peers = [p for p in peers if not p.matches(self.local_name)]

        logger.info("orchestrator.add_others.start", peers=[p.name for p in peers])
        report = await self.remote.fan_out_join(peers, primary_addr)
        report.raise_for_failure()
        return report

    # ------------------------------------------------------------------
    # Member -> Unaffiliated
    # ------------------------------------------------------------------

    async def remove_node(self, node_id: str) -> OperationResult:
        """Remove another node. The local node must use :meth:`leave`."""
        await self._require_member("remove-node")

        # configured nodes resolve by FQDN, short name or address
        known = self.topology.find(node_id) if node_id else None
        target = known.name if known is not None else short_name(node_id)
        if not target:
            raise NotMember("No node given to remove", step="remove-node")
        if target == self.local_name:
            raise SelfRemovalRejected(
                "Use leave to remove the local node",
                node=target,
                step="remove-node",
            )

        members = await self.protocol.list_members()
        if target not in members:
            raise NotMember(f"Node {target} is not in the cluster", node=target, step="remove-node")

        self.guard.check_removal(len(members), is_self_departure=False, node=target)

        if self.dry_run:
            return OperationResult.planned(f"would remove {target}", node=target)

        self.guard.confirm(
            f"Remove node {target}? Make sure it is shut down or empty.", node=target,
        )

        logger.info("orchestrator.remove_node.start", node=target, members=len(members))
        await self.protocol.remove_node(target)
        logger.info("orchestrator.remove_node.done", node=target)
        return OperationResult.success(node=target)

    async def leave(self) -> OperationResult:
        """Remove the local node from its cluster."""
        await self._require_member("leave")

        members = await self.protocol.list_members()
        self.guard.check_removal(len(members), is_self_departure=True, node=self.local_name)

        if self.dry_run:
            return OperationResult.planned("would leave the cluster", node=self.local_name)

        self.guard.confirm(f"Remove local node ({self.local_name}) from the cluster?", node=self.local_name)

        logger.info("orchestrator.leave.start", node=self.local_name, members=len(members))
        await self.protocol.leave()
        logger.info("orchestrator.leave.done", node=self.local_name)
        return OperationResult.success(node=self.local_name)

    # ------------------------------------------------------------------
    # Tuning
    # ------------------------------------------------------------------

    async def apply_tuning(self, params: Optional[TuningParameterSet] = None) -> TuningResult:
        if self.tuner is None:
            raise TuningError("No tuning engine configured", step="tuning")
        params = params or self.wan_tuning
        if params is None:
            raise TuningError("No tuning parameters configured", step="tuning")
        return await self.tuner.apply(params)

    async def _tune(self, request: ActionRequest, report: ActionReport) -> None:
        """Apply the requested tuning, if any. Failures are recorded, not raised."""
        if not request.wan_tune and request.tuning is None:
            return
        try:
            report.tuning.append(await self.apply_tuning(request.tuning))
        except ConfigNotFound as e:
            if self.dry_run:
                # nothing to tune before the planned create/join has run
                logger.info("orchestrator.tuning_skipped", reason=e.message)
                return
            logger.error("orchestrator.tuning_failed", error=e.message, step=e.step)
            report.tuning_errors.append(e)
        except (TuningError, ProtocolError) as e:
            logger.error("orchestrator.tuning_failed", error=e.message, step=e.step)
            report.tuning_errors.append(e)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def run(self, request: ActionRequest) -> ActionReport:
        """
        Execute one requested action.

        Precondition, guard, protocol and fan-out errors propagate and
        abort the action. Tuning errors land on the report.
        """
        report = ActionReport(action=request.action)
        primary_addr = request.primary_addr or self.default_primary_addr
        require_fresh = not request.allow_existing

        logger.info("orchestrator.run", action=request.action.value, dry_run=self.dry_run)

        if request.action == Action.CREATE:
            cluster_name = request.cluster_name or self.default_cluster_name
            created = await self.create(cluster_name, require_fresh=require_fresh)
            report.record("create", created)
            await self._tune(request, report)
            if self.guard.ask("Join the other nodes automatically?"):
                report.fanout = await self._add_others(
                    primary_addr, report, assume_member=created.kind == OutcomeKind.PLANNED,
                )
                await self._tune(request, report)

        elif request.action == Action.ADD_OTHERS:
            report.fanout = await self._add_others(primary_addr, report)
            await self._tune(request, report)

        elif request.action == Action.JOIN:
            report.record("join", await self.join(primary_addr, require_fresh=require_fresh))
            await self._tune(request, report)

        elif request.action == Action.REMOVE_NODE:
            if not request.remove_node:
                raise NotMember("remove-node needs a node name", step="remove-node")
            report.record("remove-node", await self.remove_node(request.remove_node))

        elif request.action == Action.LEAVE:
            report.record("leave", await self.leave())

        else:
            raise ValueError(f"Unknown action: {request.action}")

        return report

    async def _add_others(
        self,
        primary_addr: str,
        report: ActionReport,
        assume_member: bool = False,
    ) -> FanoutReport:
        fanout = await self.add_others(primary_addr, assume_member=assume_member)
        for node, result in fanout:
            report.record(f"add-others:{node.name}", result)
        return fanout
