"""
Shared fixtures for the pvecluster tests.

Provides an in-memory protocol service and a scripted remote channel so
the orchestrator can be exercised without pvecm, corosync or SSH.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

import pytest

from pvecluster.exceptions import ProtocolError, Unreachable
from pvecluster.execution.runner import CommandResult
from pvecluster.execution.ssh import RemoteChannel
from pvecluster.membership.fanout import RemoteExecutor
from pvecluster.membership.guard import QuorumGuard
from pvecluster.membership.orchestrator import MembershipOrchestrator
from pvecluster.protocol.base import ProtocolService
from pvecluster.types import ClusterMembership, Node, NodeRole, Topology


SAMPLE_COROSYNC_CONF = """\
logging {
  debug: off
  to_syslog: yes
}

nodelist {
  node {
    name: netcup
    nodeid: 1
    quorum_votes: 1
    ring0_addr: 152.53.108.232
  }
}

quorum {
  provider: corosync_votequorum
}

totem {
  cluster_name: acidcluster
  config_version: 3
  interface {
    linknumber: 0
    token: 999
  }
  ip_version: ipv4-6
  link_mode: passive
  secauth: on
  token: 1000
  version: 2
}
"""


class FakeProtocolService(ProtocolService):
    """In-memory protocol service recording every mutating call."""

    def __init__(
        self,
        local: str = "netcup",
        members: Sequence[str] = (),
        quorate: bool = True,
        cluster_name: str = "acidcluster",
    ) -> None:
        self.local = local
        self.members: List[str] = list(members)
        self.quorate = quorate
        self.cluster_name = cluster_name
        self.calls: List[Tuple[str, tuple]] = []
        self.fail_on: Set[str] = set()
        self.quorum_answers: List[bool] = []

    def _call(self, name: str, *args: object) -> None:
        self.calls.append((name, args))
        if name in self.fail_on:
            raise ProtocolError(f"{name} failed", step=name)

    def called(self, name: str) -> bool:
        return any(call == name for call, _ in self.calls)

    async def is_member(self) -> bool:
        return self.local in self.members

    async def status(self) -> ClusterMembership:
        if "status" in self.fail_on or self.local not in self.members:
            raise ProtocolError("pvecm status failed", step="status")
        return ClusterMembership(
            members=tuple(self.members),
            quorate=self.quorate,
            cluster_name=self.cluster_name,
            local=self.local,
        )

    async def list_members(self) -> List[str]:
        if "nodes" in self.fail_on:
            raise ProtocolError("pvecm nodes failed", step="nodes")
        return list(self.members)

    async def create(self, name: str) -> None:
        self._call("create", name)
        self.cluster_name = name
        self.members = [self.local]

    async def add_node(self, primary_addr: str, force: bool = False) -> None:
        self._call("add_node", primary_addr, force)
        self.members.append(self.local)

    async def remove_node(self, short_name: str) -> None:
        self._call("remove_node", short_name)
        self.members.remove(short_name)

    async def leave(self) -> None:
        self._call("leave")
        self.members.remove(self.local)

    async def reload_config(self) -> None:
        self._call("reload_config")

    async def quorum_check(self) -> bool:
        if self.quorum_answers:
            return self.quorum_answers.pop(0)
        return self.quorate


Script = Union[int, Exception]


class FakeChannel(RemoteChannel):
    """
    Scripted remote channel.

    ``script[address][subcommand]`` is an exit status or an exception to
    raise; unscripted calls exit 1 for ``status`` and 0 otherwise.
    """

    def __init__(self, script: Optional[Dict[str, Dict[str, Script]]] = None) -> None:
        self.script = script or {}
        self.calls: List[Tuple[str, Tuple[str, ...]]] = []

    async def execute(self, address, argv, timeout=None) -> CommandResult:
        argv = tuple(argv)
        self.calls.append((address, argv))
        subcommand = argv[1] if len(argv) > 1 else argv[0]
        outcome = self.script.get(address, {}).get(subcommand, 1 if subcommand == "status" else 0)
        if isinstance(outcome, Exception):
            raise outcome
        return CommandResult(argv, outcome, stdout="", stderr="boom" if outcome else "")

    def addresses(self, subcommand: str) -> List[str]:
        return [addr for addr, argv in self.calls if len(argv) > 1 and argv[1] == subcommand]


def unreachable(address: str) -> Unreachable:
    return Unreachable(f"SSH to {address} failed", node=address)


# ==================== Fixtures ====================


@pytest.fixture
def topology() -> Topology:
    return Topology((
        Node("netcup", "netcup.acidhosting.de", "152.53.108.232", NodeRole.PRIMARY),
        Node("strato", "strato.acidhosting.de", "217.160.15.117"),
        Node("hetzner", "hetzner.acidhosting.de", "65.21.192.102"),
    ))


@pytest.fixture
def protocol() -> FakeProtocolService:
    return FakeProtocolService(local="netcup")


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def make_orchestrator(topology, protocol, channel):
    """Factory building an orchestrator around the fakes."""

    def _make(
        auto_confirm: bool = True,
        confirmer=None,
        dry_run: bool = False,
        tuner=None,
        wan_tuning=None,
    ) -> MembershipOrchestrator:
        return MembershipOrchestrator(
            topology=topology,
            local_name=protocol.local,
            protocol=protocol,
            remote=RemoteExecutor(channel, dry_run=dry_run),
            guard=QuorumGuard(confirmer=confirmer, auto_confirm=auto_confirm),
            tuner=tuner,
            wan_tuning=wan_tuning,
            dry_run=dry_run,
        )

    return _make


@pytest.fixture
def corosync_conf(tmp_path):
    path = tmp_path / "corosync.conf"
    path.write_text(SAMPLE_COROSYNC_CONF)
    return path
