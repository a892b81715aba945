"""
Tests for configuration loading and topology construction.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from pvecluster.config import (
    WAN_TUNING,
    ClusterToolConfig,
    NodeConfig,
    TopologyConfig,
)
from pvecluster.types import NodeRole, Topology, Node


class TestTopologyConfig:

    def test_default_topology(self):
        topology = TopologyConfig().to_topology()
        assert [n.name for n in topology] == ["netcup", "strato", "hetzner"]
        assert topology.primary.name == "netcup"
        assert topology.primary.address == "152.53.108.232"
        assert [n.role for n in topology].count(NodeRole.PRIMARY) == 1

    def test_primary_address_override(self):
        assert TopologyConfig().primary_address() == "152.53.108.232"
        assert TopologyConfig(primary_ip="10.1.1.1").primary_address() == "10.1.1.1"

    def test_unknown_primary_rejected(self):
        with pytest.raises(ValidationError):
            TopologyConfig(primary_host="nowhere.example.org")

    def test_node_name_derived(self):
        assert NodeConfig(fqdn="a.b.c", address="10.0.0.1").name == "a"

    def test_peers_and_find(self):
        topology = TopologyConfig().to_topology()
        assert [n.name for n in topology.peers(exclude="netcup.acidhosting.de")] == ["strato", "hetzner"]
        assert topology.find("65.21.192.102").name == "hetzner"
        assert topology.find("hetzner").fqdn == "hetzner.acidhosting.de"
        assert topology.find("nope") is None

    def test_topology_requires_single_primary(self):
        with pytest.raises(ValueError):
            Topology((Node("a", "a.x", "1.1.1.1"), Node("b", "b.x", "1.1.1.2")))
        with pytest.raises(ValueError):
            Topology(())


class TestClusterToolConfig:

    def test_defaults(self):
        config = ClusterToolConfig()
        assert config.wan_tuning == WAN_TUNING
        assert config.protocol.corosync_conf == Path("/etc/pve/corosync.conf")
        assert config.remote.connect_timeout_seconds == 5
        assert config.auto_confirm is False

    def test_local_name_override(self):
        assert ClusterToolConfig(local_node="strato.acidhosting.de").local_name() == "strato"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("PVECLUSTER_AUTO_CONFIRM", "true")
        monkeypatch.setenv("PVECLUSTER_REMOTE__USER", "admin")
        config = ClusterToolConfig()
        assert config.auto_confirm is True
        assert config.remote.user == "admin"

    def test_wan_tuning_single_key_env_override(self, monkeypatch):
        monkeypatch.setenv("PVECLUSTER_WAN_TUNING__TOKEN", "6000")
        tuning = ClusterToolConfig().wan_tuning
        assert tuning.token == 6000
        assert tuning.consensus == WAN_TUNING.consensus
        assert tuning.max_messages == WAN_TUNING.max_messages

    def test_wan_tuning_invalid_env_override(self, monkeypatch):
        monkeypatch.setenv("PVECLUSTER_WAN_TUNING__HOLD", "0")
        with pytest.raises(ValidationError):
            ClusterToolConfig()

    def test_from_file(self, tmp_path):
        path = tmp_path / "pvecluster.json"
        path.write_text(json.dumps({
            "local_node": "hetzner",
            "topology": {"cluster_name": "lab"},
            "wan_tuning": {"max_messages": 30},
        }))
        loaded = ClusterToolConfig.from_file(path)
        assert loaded.topology.cluster_name == "lab"
        assert loaded.local_node == "hetzner"
        assert loaded.wan_tuning.max_messages == 30
        assert loaded.wan_tuning.token == WAN_TUNING.token

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ClusterToolConfig.from_file(tmp_path / "absent.json")
