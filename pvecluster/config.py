"""
PVECluster Configuration

Configuration for the membership orchestrator using Pydantic for
validation and environment variable support:
- Static node topology (defaults to the three acidhosting nodes)
- Remote channel (SSH) and local protocol service timeouts
- Consensus timing parameter sets (LAN defaults and WAN overrides)

The loaded configuration is passed explicitly into the orchestrator;
there is no process-wide configuration singleton.
"""

from __future__ import annotations

import json
import socket
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from pvecluster.types import Node, NodeRole, Topology, short_name


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# Consensus timing
# =============================================================================

TUNING_KEYS: Tuple[str, ...] = ("token", "consensus", "join", "hold", "max_messages")


class TuningParameterSet(BaseModel):
    """
    Consensus timing overrides for the ``totem`` section.

    All five parameters are required; a partial set cannot be built.
    Values are milliseconds except ``max_messages`` (a message count).
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    token: int = Field(gt=0, description="Token timeout (ms)")
    consensus: int = Field(gt=0, description="Consensus timeout (ms)")
    join: int = Field(gt=0, description="Join message timeout (ms)")
    hold: int = Field(gt=0, description="Token hold timeout (ms)")
    max_messages: int = Field(gt=0, description="Messages per token rotation")

    @field_validator(*TUNING_KEYS, mode="before")
    @classmethod
    def reject_bool(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("must be an integer, not a boolean")
        return v

    def items(self) -> Iterator[Tuple[str, int]]:
        """Parameters in canonical order, independent of construction order."""
        for key in TUNING_KEYS:
            yield key, getattr(self, key)

    def as_dict(self) -> Dict[str, int]:
        return dict(self.items())


# stock corosync values for a LAN cluster
DEFAULT_TUNING = TuningParameterSet(
    token=1000, consensus=2000, join=50, hold=180, max_messages=17,
)

# Geo-distributed links (>10ms RTT, occasional loss)
WAN_TUNING = TuningParameterSet(
    token=5000, consensus=15000, join=60000, hold=180000, max_messages=20,
)


# =============================================================================
# Topology
# =============================================================================


class NodeConfig(BaseModel):
    """A statically known node."""
    fqdn: str = Field(min_length=1)
    address: str = Field(min_length=1)
    name: Optional[str] = Field(default=None, description="Short name, derived from fqdn")

    @model_validator(mode="after")
    def derive_name(self) -> "NodeConfig":
        if not self.name:
            self.name = short_name(self.fqdn)
        return self


def _default_nodes() -> List[NodeConfig]:
    return [
        NodeConfig(fqdn="netcup.acidhosting.de", address="152.53.108.232"),
        NodeConfig(fqdn="strato.acidhosting.de", address="217.160.15.117"),
        NodeConfig(fqdn="hetzner.acidhosting.de", address="65.21.192.102"),
    ]


class TopologyConfig(BaseModel):
    """Cluster identity and node set."""
    cluster_name: str = Field(default="acidcluster", min_length=1)
    primary_host: str = Field(default="netcup.acidhosting.de", min_length=1)
    primary_ip: Optional[str] = Field(
        default=None, description="Primary address, defaults to the primary node's address",
    )
    nodes: List[NodeConfig] = Field(default_factory=_default_nodes, min_length=1)

    @model_validator(mode="after")
    def primary_in_nodes(self) -> "TopologyConfig":
        if not any(
            n.fqdn == self.primary_host or n.name == short_name(self.primary_host)
            for n in self.nodes
        ):
            raise ValueError(f"primary_host {self.primary_host!r} is not a configured node")
        return self

    def to_topology(self) -> Topology:
        primary = short_name(self.primary_host)
        return Topology(tuple(
            Node(
                name=n.name or short_name(n.fqdn),
                fqdn=n.fqdn,
                address=n.address,
                role=NodeRole.PRIMARY if n.name == primary else NodeRole.PEER,
            )
            for n in self.nodes
        ))

    def primary_address(self) -> str:
        if self.primary_ip:
            return self.primary_ip
        return self.to_topology().primary.address


# =============================================================================
# Channels
# =============================================================================


class RemoteConfig(BaseModel):
    """Authenticated remote command channel (SSH)."""
    ssh_binary: str = "ssh"
    user: str = "root"
    connect_timeout_seconds: int = Field(default=5, ge=1)
    command_timeout_seconds: float = Field(default=300.0, gt=0)
    check_timeout_seconds: float = Field(default=20.0, gt=0)
    extra_options: List[str] = Field(
        default_factory=list, description="Additional -o options, e.g. StrictHostKeyChecking=yes",
    )


class ProtocolConfig(BaseModel):
    """Local protocol service commands and budgets."""
    pvecm_binary: str = "pvecm"
    status_timeout_seconds: float = Field(default=15.0, gt=0)
    command_timeout_seconds: float = Field(default=300.0, gt=0)
    reload_command: List[str] = Field(
        default_factory=lambda: ["systemctl", "restart", "corosync"], min_length=1,
    )
    quorum_command: List[str] = Field(
        default_factory=lambda: ["corosync-quorumtool", "-s"], min_length=1,
    )
    corosync_conf: Path = Field(default=Path("/etc/pve/corosync.conf"))
    tuning_section: str = Field(default="totem", min_length=1)
    quorum_wait_seconds: float = Field(default=30.0, gt=0)
    quorum_poll_interval_seconds: float = Field(default=2.0, gt=0)

    @field_validator("corosync_conf", mode="before")
    @classmethod
    def ensure_path(cls, v: Any) -> Path:
        if isinstance(v, str):
            return Path(v)
        return v


# =============================================================================
# Root configuration
# =============================================================================


class ClusterToolConfig(BaseSettings):
    """
    Root configuration.

    Loads from environment variables and/or a JSON file. Environment
    variables are prefixed with PVECLUSTER_ (e.g. PVECLUSTER_LOG_LEVEL=DEBUG,
    PVECLUSTER_REMOTE__USER=admin).

    ``wan_tuning`` overrides may name single parameters
    (PVECLUSTER_WAN_TUNING__TOKEN=6000); the others keep their WAN values.
    """

    local_node: Optional[str] = Field(
        default=None, description="Override the local short name (default: hostname -s)",
    )
    topology: TopologyConfig = Field(default_factory=TopologyConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    protocol: ProtocolConfig = Field(default_factory=ProtocolConfig)
    wan_tuning: TuningParameterSet = Field(default=WAN_TUNING)

    auto_confirm: bool = False
    dry_run: bool = False

    log_level: LogLevel = LogLevel.INFO
    log_json: bool = False

    model_config = {
        "env_prefix": "PVECLUSTER_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @field_validator("wan_tuning", mode="before")
    @classmethod
    def merge_wan_tuning(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {**WAN_TUNING.as_dict(), **v}
        return v

    def local_name(self) -> str:
        """Short name of the node this process runs on."""
        if self.local_node:
            return short_name(self.local_node)
        return short_name(socket.gethostname())

    @classmethod
    def from_file(cls, config_path: Path) -> "ClusterToolConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)
