"""
PVECluster Command Execution

- :class:`CommandRunner` -- bounded asyncio subprocess execution
- :class:`RemoteChannel` -- abstract authenticated peer channel
- :class:`SSHChannel`    -- OpenSSH batch-mode implementation
"""

from __future__ import annotations

from pvecluster.execution.runner import CommandResult, CommandRunner
from pvecluster.execution.ssh import RemoteChannel, SSHChannel

__all__ = [
    "CommandResult",
    "CommandRunner",
    "RemoteChannel",
    "SSHChannel",
]
