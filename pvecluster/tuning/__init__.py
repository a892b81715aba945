"""
PVECluster Configuration Tuning

- :class:`CorosyncDocument` -- structured, line-preserving corosync.conf
- :func:`apply_tuning`      -- pure, idempotent find-or-insert of timing keys
- :class:`TuningEngine`     -- write, verify, reload and quorum check
"""

from __future__ import annotations

from pvecluster.tuning.document import CorosyncDocument, DocumentSyntaxError
from pvecluster.tuning.engine import TuningEngine, TuningResult, TuningStatus, apply_tuning

__all__ = [
    "CorosyncDocument",
    "DocumentSyntaxError",
    "TuningEngine",
    "TuningResult",
    "TuningStatus",
    "apply_tuning",
]
