"""
PVECluster Config Tuning Engine

Applies consensus timing parameters to the shared corosync configuration:

1. Read and parse the document (missing file or section -> ConfigNotFound).
2. Update-or-insert all five parameters in the ``totem`` section and bump
   ``config_version`` once if anything changed.
3. Write through a sibling temp file and an atomic rename.
4. Read back and verify every parameter (mismatch -> PartialApplyError).
5. Reload the service and wait, bounded, for quorum
   (timeout -> TuningVerificationFailed).

Failures are surfaced, never rolled back.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

import structlog

from pvecluster.config import TUNING_KEYS, ProtocolConfig, TuningParameterSet
from pvecluster.exceptions import (
    ConfigNotFound,
    PartialApplyError,
    ProtocolError,
    TuningError,
    TuningVerificationFailed,
)
from pvecluster.protocol.base import ProtocolService
from pvecluster.tuning.document import CorosyncDocument, DocumentSyntaxError

logger = structlog.get_logger(__name__)


class TuningStatus(str, Enum):
    """Outcome of a tuning run."""
    APPLIED = "applied"
    UNCHANGED = "unchanged"     # Document already carried the values
    PLANNED = "planned"         # Dry-run


@dataclass(frozen=True)
class TuningResult:
    """Outcome of :meth:`TuningEngine.apply`."""

    status: TuningStatus
    parameters: TuningParameterSet
    previous: Dict[str, Optional[str]] = field(default_factory=dict)
    config_version: Optional[str] = None
    reloaded: bool = False


def apply_tuning(
    doc: CorosyncDocument,
    params: TuningParameterSet,
    section: str = "totem",
) -> CorosyncDocument:
    """
    Pure find-or-insert of ``params`` into ``section``.

    Idempotent: applying the result again returns an identical document.
    ``config_version`` is incremented only when a parameter changed.

    Raises:
        ConfigNotFound: If the section is missing
    """
    if doc.section(section) is None:
        raise ConfigNotFound(f"Section '{section}' not found in configuration", step="tuning.parse")

    tuned = doc.with_values(section, params.items())
    if tuned == doc:
        return doc
    return tuned.bump_version(section)


class TuningEngine:
    """Applies a :class:`TuningParameterSet` to the live configuration document."""

    def __init__(
        self,
        protocol: ProtocolService,
        path: Path,
        section: str = "totem",
        quorum_wait_seconds: float = 30.0,
        quorum_poll_interval_seconds: float = 2.0,
        dry_run: bool = False,
    ) -> None:
        self.protocol = protocol
        self.path = Path(path)
        self.section = section
        self.quorum_wait_seconds = quorum_wait_seconds
        self.quorum_poll_interval_seconds = quorum_poll_interval_seconds
        self.dry_run = dry_run

    @classmethod
    def from_config(
        cls,
        protocol: ProtocolService,
        config: ProtocolConfig,
        dry_run: bool = False,
    ) -> TuningEngine:
        return cls(
            protocol,
            config.corosync_conf,
            section=config.tuning_section,
            quorum_wait_seconds=config.quorum_wait_seconds,
            quorum_poll_interval_seconds=config.quorum_poll_interval_seconds,
            dry_run=dry_run,
        )

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def read(self) -> CorosyncDocument:
        if not self.path.is_file():
            raise ConfigNotFound(f"Configuration not found: {self.path}", step="tuning.read")
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TuningError(f"Cannot read {self.path}: {e}", step="tuning.read", cause=e)
        try:
            return CorosyncDocument.parse(text)
        except DocumentSyntaxError as e:
            raise TuningError(f"Cannot parse {self.path}: {e}", step="tuning.parse", cause=e)

    def write(self, doc: CorosyncDocument) -> None:
        """
        Replace the document through a sibling temp file.

        Raises:
            TuningError: If the file could not be written, e.g. because
                /etc/pve is read-only on a node without quorum
        """
        tmp_path = self.path.with_name(self.path.name + ".new")
        try:
            tmp_path.write_text(doc.render(), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("tuning.write_failed", path=str(self.path), error=str(e))
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise TuningError(f"Cannot write {self.path}: {e}", step="tuning.write", cause=e)

    def verify(self, params: TuningParameterSet) -> None:
        """
        Re-read the document and compare every parameter.

        Raises:
            PartialApplyError: If any parameter is missing or differs
        """
        doc = self.read()
        mismatched: Dict[str, Optional[str]] = {}
        for key, expected in params.items():
            found = doc.get(self.section, key)
            if found is None or not found.isdigit() or int(found) != expected:
                mismatched[key] = found
        if mismatched:
            raise PartialApplyError(
                f"Tuning parameters not applied: {', '.join(sorted(mismatched))}",
                mismatched=mismatched,
            )

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    async def apply(self, params: TuningParameterSet) -> TuningResult:
        doc = self.read()
        previous = {key: doc.get(self.section, key) for key in TUNING_KEYS}
        tuned = apply_tuning(doc, params, self.section)
        changed = tuned != doc
        version = tuned.get(self.section, "config_version")

        logger.info(
            "tuning.start",
            path=str(self.path),
            changed=changed,
            dry_run=self.dry_run,
            parameters=params.as_dict(),
        )

        if self.dry_run:
            return TuningResult(
                status=TuningStatus.PLANNED if changed else TuningStatus.UNCHANGED,
                parameters=params,
                previous=previous,
                config_version=version,
            )

        if changed:
            self.write(tuned)
        self.verify(params)

        if changed:
            try:
                await self.protocol.reload_config()
            except ProtocolError as e:
                raise TuningVerificationFailed(
                    f"Service reload failed after tuning: {e}",
                    step="tuning.reload",
                    cause=e,
                )

        await self.wait_for_quorum()

        logger.info("tuning.done", changed=changed, config_version=version)
        return TuningResult(
            status=TuningStatus.APPLIED if changed else TuningStatus.UNCHANGED,
            parameters=params,
            previous=previous,
            config_version=version,
            reloaded=changed,
        )

    async def wait_for_quorum(self) -> None:
        """
        Poll quorum until reachable or the wait budget is spent.

        Raises:
            TuningVerificationFailed: If quorum was not reached in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.quorum_wait_seconds

        while True:
            if await self.protocol.quorum_check():
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TuningVerificationFailed(
                    f"Quorum not reachable within {self.quorum_wait_seconds:.0f}s after tuning",
                    step="tuning.quorum",
                )
            await asyncio.sleep(min(self.quorum_poll_interval_seconds, remaining))
