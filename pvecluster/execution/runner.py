"""
PVECluster Command Runner

Runs a command as an asyncio subprocess with a hard time budget and
captures its exit status and output. Both the local protocol service
and the SSH channel sit on top of this.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import structlog

from pvecluster.exceptions import CommandTimeout

logger = structlog.get_logger(__name__)

# Exit status reported when the command could not be spawned at all
SPAWN_FAILED = 127


@dataclass(frozen=True)
class CommandResult:
    """
    Exit status and captured output of a finished command.

    ``spawned`` is False when the executable could not be started; the
    exit status is then SPAWN_FAILED.
    """

    argv: tuple
    exit_status: int
    stdout: str = ""
    stderr: str = ""
    spawned: bool = True

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        """stdout and stderr combined, for error reporting."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class CommandRunner:
    """
    Subprocess executor.

    Commands never inherit stdin, so a tool that unexpectedly prompts
    fails instead of hanging the orchestration.
    """

    def __init__(self, env: Optional[Dict[str, str]] = None) -> None:
        self.env = env or {}

    async def run(self, argv: Sequence[str], timeout: float) -> CommandResult:
        """
        Run ``argv`` and wait at most ``timeout`` seconds.

        Raises:
            CommandTimeout: If the command did not finish in time. The
                child is killed before the exception propagates.
        """
        argv = tuple(argv)
        full_env = os.environ.copy()
        full_env.update(self.env)

        logger.debug("command.start", argv=list(argv), timeout=timeout)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=full_env,
            )
        except FileNotFoundError:
            logger.warning("command.not_found", command=argv[0])
            return CommandResult(
                argv, SPAWN_FAILED, stderr=f"Command not found: {argv[0]}", spawned=False,
            )
        except PermissionError:
            logger.warning("command.permission_denied", command=argv[0])
            return CommandResult(
                argv, SPAWN_FAILED, stderr=f"Permission denied: {argv[0]}", spawned=False,
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("command.timeout", argv=list(argv), timeout=timeout)
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            raise CommandTimeout(
                f"Command timed out after {timeout:.0f}s: {' '.join(argv)}",
                step=argv[0],
            )

        result = CommandResult(
            argv=argv,
            exit_status=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        logger.debug("command.finished", argv=list(argv), exit_status=result.exit_status)
        return result
