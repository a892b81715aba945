"""
PVECluster Types

Core type definitions for the membership lifecycle orchestrator:
- Static node identities and the immutable cluster topology
- Live membership snapshots as reported by the protocol service
- Per-operation and fan-out outcomes
- Action requests and reports for a single CLI invocation
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Tuple

from pvecluster.exceptions import PartialFanoutFailure

if TYPE_CHECKING:
    from pvecluster.config import TuningParameterSet
    from pvecluster.tuning.engine import TuningResult


# =============================================================================
# Node Types
# =============================================================================


class NodeRole(str, Enum):
    """Role of a node in the static topology."""
    PRIMARY = "primary"
    PEER = "peer"


class MembershipStatus(str, Enum):
    """Membership of a node as observed through the protocol service."""
    ABSENT = "absent"
    MEMBER = "member"


def short_name(name: str) -> str:
    """Strip the domain part of a host name (``strato.example.org`` -> ``strato``)."""
    return name.strip().split(".", 1)[0]


@dataclass(frozen=True)
class Node:
    """A statically known cluster node."""

    name: str
    fqdn: str
    address: str
    role: NodeRole = NodeRole.PEER

    @property
    def is_primary(self) -> bool:
        return self.role == NodeRole.PRIMARY

    def matches(self, identifier: str) -> bool:
        """Check a short name, FQDN or address against this node."""
        identifier = identifier.strip()
        return identifier in (self.name, self.fqdn, self.address) or (
            short_name(identifier) == self.name
        )

    def __str__(self) -> str:
        return f"{self.fqdn} ({self.address})"


@dataclass(frozen=True)
class Topology:
    """
    Immutable, ordered node set of the deployment.

    Built once from configuration and handed to the orchestrator; nothing
    in the package reads the node map from global state.
    """

    nodes: Tuple[Node, ...]

    def __post_init__(self) -> None:
        if not self.nodes:
            raise ValueError("topology needs at least one node")
        primaries = [n for n in self.nodes if n.is_primary]
        if len(primaries) != 1:
            raise ValueError(
                f"topology needs exactly one primary node, got {len(primaries)}"
            )
        names = [n.name for n in self.nodes]
        if len(set(names)) != len(names):
            raise ValueError("node short names must be unique")

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def primary(self) -> Node:
        return next(n for n in self.nodes if n.is_primary)

    def find(self, identifier: str) -> Optional[Node]:
        for node in self.nodes:
            if node.matches(identifier):
                return node
        return None

    def peers(self, exclude: Optional[str] = None) -> List[Node]:
        """All nodes except ``exclude`` (short name or FQDN), in configured order."""
        if exclude is None:
            return list(self.nodes)
        return [n for n in self.nodes if not n.matches(exclude)]


# =============================================================================
# Membership
# =============================================================================


@dataclass(frozen=True)
class ClusterMembership:
    """Live roster returned by the protocol service. Never persisted."""

    members: Tuple[str, ...] = ()
    quorate: bool = False
    cluster_name: Optional[str] = None
    local: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.members)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and short_name(name) in self.members


# =============================================================================
# Operation outcomes
# =============================================================================


class OutcomeKind(str, Enum):
    """Outcome of a single local or remote operation."""
    SUCCESS = "success"
    ALREADY_MEMBER = "already_member"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"
    PLANNED = "planned"         # Dry-run: would have been executed


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a fan-out or local operation."""

    kind: OutcomeKind
    reason: Optional[str] = None
    node: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind != OutcomeKind.FAILED

    @classmethod
    def success(cls, node: Optional[str] = None) -> OperationResult:
        return cls(OutcomeKind.SUCCESS, node=node)

    @classmethod
    def already_member(cls, node: Optional[str] = None) -> OperationResult:
        return cls(OutcomeKind.ALREADY_MEMBER, node=node)

    @classmethod
    def failed(cls, reason: str, node: Optional[str] = None) -> OperationResult:
        return cls(OutcomeKind.FAILED, reason=reason, node=node)

    @classmethod
    def not_attempted(cls, node: Optional[str] = None) -> OperationResult:
        return cls(OutcomeKind.NOT_ATTEMPTED, node=node)

    @classmethod
    def planned(cls, reason: str, node: Optional[str] = None) -> OperationResult:
        return cls(OutcomeKind.PLANNED, reason=reason, node=node)


@dataclass(frozen=True)
class FanoutReport:
    """Ordered per-peer results of a fan-out, possibly cut short at a failure."""

    results: Tuple[Tuple[Node, OperationResult], ...] = ()

    def __iter__(self) -> Iterator[Tuple[Node, OperationResult]]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def by_name(self) -> Dict[str, OutcomeKind]:
        return {node.name: result.kind for node, result in self.results}

    def get(self, name: str) -> Optional[OperationResult]:
        for node, result in self.results:
            if node.matches(name):
                return result
        return None

    @property
    def failed_node(self) -> Optional[Node]:
        for node, result in self.results:
            if result.kind == OutcomeKind.FAILED:
                return node
        return None

    @property
    def succeeded(self) -> bool:
        return self.failed_node is None

    def raise_for_failure(self) -> None:
        """Raise :class:`PartialFanoutFailure` naming the first failed peer."""
        node = self.failed_node
        if node is None:
            return
        result = self.get(node.name)
        raise PartialFanoutFailure(
            f"Remote join failed on {node}: {result.reason if result else 'unknown'}",
            node=node.name,
            report=self,
        )


# =============================================================================
# Actions
# =============================================================================


class Action(str, Enum):
    """Actions accepted by the orchestrator (CLI ``--mode`` values)."""
    CREATE = "create"
    ADD_OTHERS = "add-others"
    JOIN = "join"
    REMOVE_NODE = "remove-node"
    LEAVE = "leave"


@dataclass(frozen=True)
class ActionRequest:
    """
    One requested action plus its parameters.

    ``wan_tune`` applies the configured WAN timings; ``tuning`` applies an
    explicit parameter set instead (e.g. the stock LAN values).
    """

    action: Action
    cluster_name: Optional[str] = None
    primary_addr: Optional[str] = None
    remove_node: Optional[str] = None
    wan_tune: bool = False
    allow_existing: bool = False
    tuning: Optional[TuningParameterSet] = None


@dataclass
class ActionReport:
    """Aggregated outcome of :meth:`MembershipOrchestrator.run`."""

    action: Action
    steps: List[Tuple[str, OperationResult]] = field(default_factory=list)
    fanout: Optional[FanoutReport] = None
    tuning: List[TuningResult] = field(default_factory=list)
    tuning_errors: List[Exception] = field(default_factory=list)

    def record(self, step: str, result: OperationResult) -> None:
        self.steps.append((step, result))

    @property
    def succeeded(self) -> bool:
        if self.tuning_errors:
            return False
        if self.fanout is not None and not self.fanout.succeeded:
            return False
        return all(result.ok for _, result in self.steps)
