"""
PVECluster Remote Channel

Authenticated command execution against peer nodes. The SSH channel
runs the system ``ssh`` client in batch mode (key or agent auth only,
never a password prompt) with a bounded connect timeout, and bounds the
whole call with a response timeout.
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import structlog

from pvecluster.config import RemoteConfig
from pvecluster.exceptions import CommandTimeout, Unreachable
from pvecluster.execution.runner import CommandResult, CommandRunner

logger = structlog.get_logger(__name__)

# ssh(1) exits with 255 when the connection itself failed
SSH_CHANNEL_FAILURE = 255


class RemoteChannel(ABC):
    """
    Abstract authenticated channel to a peer.

    Implementations return the remote command's exit status and output.
    Channel failures raise :class:`Unreachable`; they are never retried here.
    """

    @abstractmethod
    async def execute(
        self,
        address: str,
        argv: Sequence[str],
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run ``argv`` on ``address``.

        Raises:
            Unreachable: If the channel could not be established or the
                call exceeded its time budget
        """
        pass


class SSHChannel(RemoteChannel):
    """Remote channel over OpenSSH."""

    def __init__(self, config: RemoteConfig, runner: Optional[CommandRunner] = None) -> None:
        self.config = config
        self.runner = runner or CommandRunner()

    def build_argv(self, address: str, argv: Sequence[str]) -> List[str]:
        options = [
            "BatchMode=yes",
            f"ConnectTimeout={self.config.connect_timeout_seconds}",
            *self.config.extra_options,
        ]
        cmd = [self.config.ssh_binary]
        for option in options:
            cmd.extend(["-o", option])
        cmd.append(f"{self.config.user}@{address}")
        cmd.append(shlex.join(argv))
        return cmd

    async def execute(
        self,
        address: str,
        argv: Sequence[str],
        timeout: Optional[float] = None,
    ) -> CommandResult:
        timeout = timeout if timeout is not None else self.config.command_timeout_seconds
        try:
            result = await self.runner.run(self.build_argv(address, argv), timeout=timeout)
        except CommandTimeout as e:
            raise Unreachable(
                f"No response from {address} within {timeout:.0f}s",
                node=address,
                step=argv[0] if argv else None,
                cause=e,
            )

        # a remote exit of 127 (command missing there) is passed through
        if result.exit_status == SSH_CHANNEL_FAILURE or not result.spawned:
            logger.warning(
                "ssh.channel_failed",
                address=address,
                exit_status=result.exit_status,
                output=result.stderr.strip(),
            )
            raise Unreachable(
                f"SSH to {address} failed: {result.stderr.strip() or 'no output'}",
                node=address,
                step=argv[0] if argv else None,
            )

        return result
