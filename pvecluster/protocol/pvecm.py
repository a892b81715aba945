"""
PVECluster pvecm Service

Protocol service backed by the Proxmox VE cluster manager CLI (``pvecm``)
and the corosync tools. Output of ``pvecm status`` and ``pvecm nodes`` is
parsed into :class:`ClusterMembership`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import structlog

from pvecluster.config import ProtocolConfig
from pvecluster.exceptions import CommandTimeout, ProtocolError
from pvecluster.execution.runner import CommandResult, CommandRunner
from pvecluster.protocol.base import ProtocolService
from pvecluster.types import ClusterMembership

logger = structlog.get_logger(__name__)

_NAME_RE = re.compile(r"^\s*Name:\s*(\S+)", re.MULTILINE)
_QUORATE_RE = re.compile(r"^\s*Quorate:\s*(\w+)", re.MULTILINE)
_NODE_ID_RE = re.compile(r"^(0x[0-9a-fA-F]+|\d+)$")


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------


def parse_nodes(text: str) -> Tuple[List[str], Optional[str]]:
    """
    Parse ``pvecm nodes`` output.

    Returns the member names in listed order and the name flagged
    ``(local)``, if any. Header and separator lines are skipped.
    """
    members: List[str] = []
    local: Optional[str] = None
    for line in text.splitlines():
        tokens = line.split()
        if len(tokens) < 3:
            continue
        if not _NODE_ID_RE.match(tokens[0]) or not tokens[1].isdigit():
            continue
        name = tokens[2]
        members.append(name)
        if "(local)" in tokens[3:]:
            local = name
    return members, local


def parse_status(text: str) -> Tuple[Optional[str], bool]:
    """Parse cluster name and quorate flag from ``pvecm status`` output."""
    name_match = _NAME_RE.search(text)
    quorate_match = _QUORATE_RE.search(text)
    name = name_match.group(1) if name_match else None
    quorate = bool(quorate_match) and quorate_match.group(1).lower() == "yes"
    return name, quorate


# ---------------------------------------------------------------------------
# Command lines
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PvecmCommands:
    """Argument vectors for ``pvecm``, shared by local and remote execution."""

    binary: str = "pvecm"

    def status(self) -> List[str]:
        return [self.binary, "status"]

    def nodes(self) -> List[str]:
        return [self.binary, "nodes"]

    def create(self, name: str) -> List[str]:
        return [self.binary, "create", name]

    def add(self, primary_addr: str, force: bool = False) -> List[str]:
        argv = [self.binary, "add", primary_addr]
        if force:
            argv.append("--force")
        return argv

    def delnode(self, short_name: str) -> List[str]:
        return [self.binary, "delnode", short_name]

    def leave(self) -> List[str]:
        return [self.binary, "leave"]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class PvecmService(ProtocolService):
    """Local protocol service driving ``pvecm`` as subprocesses."""

    def __init__(self, config: ProtocolConfig, runner: Optional[CommandRunner] = None) -> None:
        self.config = config
        self.runner = runner or CommandRunner()
        self.commands = PvecmCommands(config.pvecm_binary)

    async def _run(
        self,
        step: str,
        argv: Sequence[str],
        timeout: Optional[float] = None,
    ) -> CommandResult:
        timeout = timeout if timeout is not None else self.config.command_timeout_seconds
        try:
            result = await self.runner.run(argv, timeout=timeout)
        except CommandTimeout as e:
            raise ProtocolError(f"{step} timed out", step=step, cause=e)

        if not result.ok:
            logger.warning(
                "pvecm.call_failed",
                step=step,
                exit_status=result.exit_status,
                output=result.output,
            )
            raise ProtocolError(
                f"{step} failed with exit status {result.exit_status}",
                step=step,
                output=result.output,
            )
        return result

    async def is_member(self) -> bool:
        try:
            result = await self.runner.run(
                self.commands.status(), timeout=self.config.status_timeout_seconds,
            )
        except CommandTimeout as e:
            raise ProtocolError("pvecm status timed out", step="status", cause=e)
        return result.ok

    async def list_members(self) -> List[str]:
        result = await self._run(
            "nodes", self.commands.nodes(), timeout=self.config.status_timeout_seconds,
        )
        members, _ = parse_nodes(result.stdout)
        return members

    async def status(self) -> ClusterMembership:
        result = await self._run(
            "status", self.commands.status(), timeout=self.config.status_timeout_seconds,
        )
        cluster_name, quorate = parse_status(result.stdout)
        nodes = await self._run(
            "nodes", self.commands.nodes(), timeout=self.config.status_timeout_seconds,
        )
        members, local = parse_nodes(nodes.stdout)
        return ClusterMembership(
            members=tuple(members),
            quorate=quorate,
            cluster_name=cluster_name,
            local=local,
        )

    async def create(self, name: str) -> None:
        logger.info("pvecm.create", cluster=name)
        await self._run("create", self.commands.create(name))

    async def add_node(self, primary_addr: str, force: bool = False) -> None:
        logger.info("pvecm.add", primary=primary_addr, force=force)
        await self._run("add", self.commands.add(primary_addr, force=force))

    async def remove_node(self, short_name: str) -> None:
        logger.info("pvecm.delnode", node=short_name)
        try:
            await self._run("delnode", self.commands.delnode(short_name))
        except ProtocolError as e:
            e.node = short_name
            raise

    async def leave(self) -> None:
        logger.info("pvecm.leave")
        await self._run("leave", self.commands.leave())

    async def reload_config(self) -> None:
        logger.info("corosync.reload", command=self.config.reload_command)
        await self._run("reload", self.config.reload_command)

    async def quorum_check(self) -> bool:
        try:
            result = await self.runner.run(
                self.config.quorum_command, timeout=self.config.status_timeout_seconds,
            )
        except CommandTimeout:
            logger.warning("corosync.quorum_check_timeout")
            return False
        return result.ok
