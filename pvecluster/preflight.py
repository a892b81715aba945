"""
PVECluster Preflight Checks

Host requirements checked before any membership action: root
privileges and a Proxmox VE 8.x installation.
"""

from __future__ import annotations

import os
import re
from typing import Optional

import structlog

from pvecluster.exceptions import CommandTimeout, PreflightError
from pvecluster.execution.runner import CommandRunner

logger = structlog.get_logger(__name__)

SUPPORTED_PVE_RE = re.compile(r"pve-manager/8\.\d")


def require_root() -> None:
    if os.geteuid() != 0:
        raise PreflightError("Must be run as root", step="preflight.root")


async def check_pve_version(
    runner: Optional[CommandRunner] = None,
    timeout: float = 15.0,
) -> str:
    """Return the ``pveversion`` line, or raise if it is not PVE 8.x."""
    runner = runner or CommandRunner()
    try:
        result = await runner.run(["pveversion"], timeout=timeout)
    except CommandTimeout as e:
        raise PreflightError("pveversion timed out", step="preflight.version", cause=e)

    if not result.ok:
        raise PreflightError("pveversion not found (not a Proxmox host?)", step="preflight.version")

    version = result.stdout.strip()
    if not SUPPORTED_PVE_RE.search(version):
        raise PreflightError(f"Proxmox VE 8.x required, found: {version}", step="preflight.version")

    logger.info("preflight.version_ok", version=version)
    return version


async def run_preflight(runner: Optional[CommandRunner] = None) -> None:
    require_root()
    await check_pve_version(runner)
