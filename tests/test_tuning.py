"""
Tests for the corosync document and the config tuning engine.

Covers:
- Structured find-or-insert inside the totem section only
- Idempotence and parameter-order independence
- config_version handling
- Write / verify / reload / quorum wait of the engine
"""

from __future__ import annotations

import itertools

import pytest
from pydantic import ValidationError

from pvecluster.config import DEFAULT_TUNING, TUNING_KEYS, WAN_TUNING, TuningParameterSet
from pvecluster.exceptions import (
    ConfigNotFound,
    PartialApplyError,
    TuningError,
    TuningVerificationFailed,
)
from pvecluster.tuning import (
    CorosyncDocument,
    DocumentSyntaxError,
    TuningEngine,
    TuningStatus,
    apply_tuning,
)

from conftest import SAMPLE_COROSYNC_CONF, FakeProtocolService


# =============================================================================
# Parameter set
# =============================================================================


class TestTuningParameterSet:

    def test_wan_constants(self):
        assert WAN_TUNING.as_dict() == {
            "token": 5000,
            "consensus": 15000,
            "join": 60000,
            "hold": 180000,
            "max_messages": 20,
        }

    def test_partial_set_rejected(self):
        with pytest.raises(ValidationError):
            TuningParameterSet(token=5000, consensus=15000)

    @pytest.mark.parametrize("value", [0, -1, "-5", 1.5, True, "fast"])
    def test_invalid_values_rejected(self, value):
        params = WAN_TUNING.as_dict()
        params["token"] = value
        with pytest.raises(ValidationError):
            TuningParameterSet(**params)

    def test_numeric_strings_accepted(self):
        params = {key: str(value) for key, value in WAN_TUNING.items()}
        assert TuningParameterSet(**params) == WAN_TUNING

    def test_immutable(self):
        with pytest.raises(ValidationError):
            WAN_TUNING.token = 1

    def test_items_canonical_order(self):
        params = TuningParameterSet(max_messages=1, hold=2, join=3, consensus=4, token=5)
        assert [k for k, _ in params.items()] == list(TUNING_KEYS)


# =============================================================================
# Document
# =============================================================================


class TestCorosyncDocument:

    def test_render_round_trip(self):
        doc = CorosyncDocument.parse(SAMPLE_COROSYNC_CONF)
        assert doc.render() == SAMPLE_COROSYNC_CONF

    def test_sections_indexed(self):
        doc = CorosyncDocument.parse(SAMPLE_COROSYNC_CONF)
        assert [s.name for s in doc.sections] == ["logging", "nodelist", "quorum", "totem"]

    def test_get_ignores_nested_keys(self):
        doc = CorosyncDocument.parse(SAMPLE_COROSYNC_CONF)
        # interface { token: 999 } must not shadow totem's own token
        assert doc.get("totem", "token") == "1000"
        assert doc.get("totem", "consensus") is None
        assert doc.get("missing", "token") is None

    def test_unbalanced_braces(self):
        with pytest.raises(DocumentSyntaxError):
            CorosyncDocument.parse("totem {\n  token: 1\n")
        with pytest.raises(DocumentSyntaxError):
            CorosyncDocument.parse("}\n")

    def test_insert_uses_section_indent(self):
        doc = CorosyncDocument.parse("totem {\n\tversion: 2\n}\n")
        tuned = doc.with_values("totem", [("token", 5000)])
        assert tuned.render() == "totem {\n\tversion: 2\n\ttoken: 5000\n}\n"

    def test_bump_version(self):
        doc = CorosyncDocument.parse(SAMPLE_COROSYNC_CONF).bump_version()
        assert doc.get("totem", "config_version") == "4"

    def test_bump_version_without_key(self):
        doc = CorosyncDocument.parse("totem {\n  version: 2\n}\n")
        assert doc.bump_version() == doc


# =============================================================================
# apply_tuning
# =============================================================================


class TestApplyTuning:

    def test_updates_and_inserts(self):
        doc = apply_tuning(CorosyncDocument.parse(SAMPLE_COROSYNC_CONF), WAN_TUNING)
        for key, value in WAN_TUNING.items():
            assert doc.get("totem", key) == str(value)
        text = doc.render()
        assert "    token: 999" in text  # nested interface untouched
        assert "  token: 5000" in text
        assert text.count("token: 1000") == 0

    def test_only_totem_touched(self):
        before = CorosyncDocument.parse(SAMPLE_COROSYNC_CONF)
        after = apply_tuning(before, WAN_TUNING)
        totem = before.section("totem")
        assert after.lines[: totem.start] == before.lines[: totem.start]

    def test_config_version_bumped_once(self):
        doc = apply_tuning(CorosyncDocument.parse(SAMPLE_COROSYNC_CONF), WAN_TUNING)
        assert doc.get("totem", "config_version") == "4"

    def test_idempotent(self):
        once = apply_tuning(CorosyncDocument.parse(SAMPLE_COROSYNC_CONF), WAN_TUNING)
        twice = apply_tuning(once, WAN_TUNING)
        assert twice.render() == once.render()

    def test_order_independent(self):
        values = WAN_TUNING.as_dict()
        base = CorosyncDocument.parse(SAMPLE_COROSYNC_CONF)
        expected = apply_tuning(base, WAN_TUNING).render()
        for order in itertools.permutations(TUNING_KEYS):
            params = TuningParameterSet(**{key: values[key] for key in order})
            assert apply_tuning(base, params).render() == expected

    def test_missing_section(self):
        with pytest.raises(ConfigNotFound):
            apply_tuning(CorosyncDocument.parse("quorum {\n}\n"), WAN_TUNING)

    def test_switching_sets(self):
        base = CorosyncDocument.parse(SAMPLE_COROSYNC_CONF)
        wan = apply_tuning(base, WAN_TUNING)
        lan = apply_tuning(wan, DEFAULT_TUNING)
        assert lan.get("totem", "token") == "1000"
        assert lan.get("totem", "config_version") == "5"


# =============================================================================
# Engine
# =============================================================================


class TestTuningEngine:

    def _engine(self, path, protocol, **kwargs):
        kwargs.setdefault("quorum_wait_seconds", 0.2)
        kwargs.setdefault("quorum_poll_interval_seconds", 0.01)
        return TuningEngine(protocol, path, **kwargs)

    @pytest.mark.asyncio
    async def test_apply_writes_and_reloads(self, corosync_conf):
        protocol = FakeProtocolService(members=["netcup"])
        result = await self._engine(corosync_conf, protocol).apply(WAN_TUNING)

        assert result.status == TuningStatus.APPLIED
        assert result.reloaded is True
        assert result.previous["token"] == "1000"
        assert result.previous["consensus"] is None
        assert result.config_version == "4"
        assert protocol.called("reload_config")
        doc = CorosyncDocument.parse(corosync_conf.read_text())
        assert doc.get("totem", "max_messages") == "20"
        assert not corosync_conf.with_name("corosync.conf.new").exists()

    @pytest.mark.asyncio
    async def test_second_apply_is_noop(self, corosync_conf):
        protocol = FakeProtocolService(members=["netcup"])
        engine = self._engine(corosync_conf, protocol)
        await engine.apply(WAN_TUNING)
        content = corosync_conf.read_text()
        protocol.calls.clear()

        result = await engine.apply(WAN_TUNING)
        assert result.status == TuningStatus.UNCHANGED
        assert result.reloaded is False
        assert corosync_conf.read_text() == content
        assert not protocol.called("reload_config")

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        engine = self._engine(tmp_path / "absent.conf", FakeProtocolService())
        with pytest.raises(ConfigNotFound):
            await engine.apply(WAN_TUNING)

    @pytest.mark.asyncio
    async def test_undecodable_file(self, tmp_path):
        path = tmp_path / "corosync.conf"
        path.write_bytes(b"totem {\n  token: 1\xff\n}\n")
        with pytest.raises(TuningError) as exc:
            await self._engine(path, FakeProtocolService()).apply(WAN_TUNING)
        assert exc.value.step == "tuning.read"

    @pytest.mark.asyncio
    async def test_read_only_filesystem(self, corosync_conf, monkeypatch):
        protocol = FakeProtocolService(members=["netcup"])

        def read_only(src, dst):
            raise OSError(30, "Read-only file system")

        monkeypatch.setattr("pvecluster.tuning.engine.os.replace", read_only)
        with pytest.raises(TuningError) as exc:
            await self._engine(corosync_conf, protocol).apply(WAN_TUNING)

        assert exc.value.step == "tuning.write"
        assert isinstance(exc.value.cause, OSError)
        assert corosync_conf.read_text() == SAMPLE_COROSYNC_CONF
        assert not corosync_conf.with_name("corosync.conf.new").exists()
        assert not protocol.called("reload_config")

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, corosync_conf):
        protocol = FakeProtocolService(members=["netcup"])
        result = await self._engine(corosync_conf, protocol, dry_run=True).apply(WAN_TUNING)
        assert result.status == TuningStatus.PLANNED
        assert corosync_conf.read_text() == SAMPLE_COROSYNC_CONF
        assert protocol.calls == []

    @pytest.mark.asyncio
    async def test_read_back_mismatch(self, corosync_conf, monkeypatch):
        protocol = FakeProtocolService(members=["netcup"])
        engine = self._engine(corosync_conf, protocol)

        def lossy_write(doc):
            # simulate an interrupted write: only the first two keys land
            partial = CorosyncDocument.parse(SAMPLE_COROSYNC_CONF).with_values(
                "totem", list(WAN_TUNING.items())[:2],
            )
            corosync_conf.write_text(partial.render())

        monkeypatch.setattr(engine, "write", lossy_write)
        with pytest.raises(PartialApplyError) as exc:
            await engine.apply(WAN_TUNING)
        assert set(exc.value.mismatched) == {"join", "hold", "max_messages"}
        assert not protocol.called("reload_config")

    @pytest.mark.asyncio
    async def test_quorum_not_reached(self, corosync_conf):
        protocol = FakeProtocolService(members=["netcup"], quorate=False)
        with pytest.raises(TuningVerificationFailed):
            await self._engine(corosync_conf, protocol).apply(WAN_TUNING)
        # no rollback: the tuned values stay in place
        doc = CorosyncDocument.parse(corosync_conf.read_text())
        assert doc.get("totem", "token") == "5000"

    @pytest.mark.asyncio
    async def test_quorum_reached_after_polling(self, corosync_conf):
        protocol = FakeProtocolService(members=["netcup"])
        protocol.quorum_answers = [False, False, True]
        result = await self._engine(corosync_conf, protocol).apply(WAN_TUNING)
        assert result.status == TuningStatus.APPLIED
        assert protocol.quorum_answers == []

    @pytest.mark.asyncio
    async def test_reload_failure(self, corosync_conf):
        protocol = FakeProtocolService(members=["netcup"])
        protocol.fail_on.add("reload_config")
        with pytest.raises(TuningVerificationFailed) as exc:
            await self._engine(corosync_conf, protocol).apply(WAN_TUNING)
        assert exc.value.step == "tuning.reload"
