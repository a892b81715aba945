"""
PVECluster Exceptions

Typed error hierarchy for membership operations. Every error carries
the node and step it relates to so an operator can retry manually, plus
the process exit code the CLI terminates with.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ClusterError(Exception):
    """Base exception for all cluster orchestration errors."""

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        step: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.node = node
        self.step = step
        self.cause = cause
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "node": self.node,
            "step": self.step,
        }


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


class PreconditionViolation(ClusterError):
    """The local or target node is in the wrong membership state."""
    exit_code = 2


class AlreadyMember(PreconditionViolation):
    """The node is already part of a cluster."""
    pass


class NotMember(PreconditionViolation):
    """The node is not part of the cluster."""
    pass


class SelfRemovalRejected(PreconditionViolation):
    """remove-node was pointed at the local node; leave must be used instead."""
    pass


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


class QuorumUnsafe(ClusterError):
    """The operation would strand or fragment the cluster."""
    exit_code = 3


class OperationCancelled(ClusterError):
    """The operator declined a destructive operation."""
    exit_code = 4


# ---------------------------------------------------------------------------
# Protocol service / remote channel
# ---------------------------------------------------------------------------


class CommandTimeout(ClusterError):
    """A local or remote command exceeded its time budget."""
    pass


class ProtocolError(ClusterError):
    """A call into the underlying membership service failed."""
    exit_code = 5

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        step: Optional[str] = None,
        cause: Optional[Exception] = None,
        output: str = "",
    ):
        self.output = output
        super().__init__(message, node=node, step=step, cause=cause)


class RemoteError(ClusterError):
    """Base exception for remote peer failures."""
    exit_code = 6


class Unreachable(RemoteError):
    """The authenticated channel to a peer could not be used."""
    pass


class PartialFanoutFailure(RemoteError):
    """A fan-out stopped at the first failed peer."""

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        report: Any = None,
        cause: Optional[Exception] = None,
    ):
        self.report = report
        super().__init__(message, node=node, step="add-others", cause=cause)


# ---------------------------------------------------------------------------
# Configuration tuning
# ---------------------------------------------------------------------------


class TuningError(ClusterError):
    """Base exception for configuration tuning failures."""
    exit_code = 7


class ConfigNotFound(TuningError):
    """The configuration document or its target section does not exist."""
    pass


class PartialApplyError(TuningError):
    """Read-back after writing found parameters that do not match."""

    def __init__(
        self,
        message: str,
        mismatched: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        self.mismatched = mismatched or {}
        super().__init__(message, step="tuning.verify", cause=cause)


class TuningVerificationFailed(TuningError):
    """Quorum was not reachable within the wait budget after a reload."""
    pass


# ---------------------------------------------------------------------------
# Preflight
# ---------------------------------------------------------------------------


class PreflightError(ClusterError):
    """The local host does not satisfy the tool's requirements."""
    exit_code = 8
