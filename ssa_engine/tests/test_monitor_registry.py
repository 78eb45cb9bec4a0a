"""Tests for ssa_engine.monitoring.registry.

Covers:
- enable / disable / touch semantics
- Target normalization and key format
- Validation (cadence, kind, malformed targets)
- Persistence round trip and malformed entries
- Monitoring status reasons
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from conftest import COIN_TYPE, FA_ADDRESS

from ssa_engine.core.errors import InvalidArgumentError, RegistryError
from ssa_engine.core.types import TargetKind
from ssa_engine.monitoring.registry import (
    MonitorEntry,
    MonitorRegistry,
    compute_monitoring_status,
    registry_key,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def registry(tmp_path) -> MonitorRegistry:
    return MonitorRegistry(tmp_path / "registry.json")


def _entry(**overrides) -> MonitorEntry:
    values = {
        "kind": TargetKind.FA,
        "target": FA_ADDRESS,
        "cadence_hours": 6,
        "started_at": "2026-01-01T00:00:00+00:00",
    }
    values.update(overrides)
    return MonitorEntry(**values)


# ── Mutations ────────────────────────────────────────────────────────────────


class TestRegistryMutations:
    def test_starts_empty(self, registry):
        assert len(registry) == 0
        assert registry.entries() == []

    def test_enable(self, registry):
        entry = registry.enable("fa", FA_ADDRESS.upper().replace("0X", "0x"), 12)
        assert entry.target == FA_ADDRESS
        assert entry.enabled is True
        assert entry.cadence_hours == 12
        assert entry.key == f"fa:{FA_ADDRESS}"
        assert registry.get(TargetKind.FA, FA_ADDRESS) is entry

    def test_enable_coin(self, registry):
        entry = registry.enable(TargetKind.COIN, COIN_TYPE, 24)
        assert entry.key == f"coin:{COIN_TYPE}"

    def test_enable_replaces(self, registry):
        registry.enable("fa", FA_ADDRESS, 12)
        registry.enable("fa", FA_ADDRESS, 1)
        assert len(registry) == 1
        assert registry.get("fa", FA_ADDRESS).cadence_hours == 1

    @pytest.mark.parametrize("cadence", [0, -1])
    def test_enable_rejects_cadence(self, registry, cadence):
        with pytest.raises(RegistryError):
            registry.enable("fa", FA_ADDRESS, cadence)

    def test_enable_rejects_kind(self, registry):
        with pytest.raises(RegistryError):
            registry.enable("nft", FA_ADDRESS, 1)

    def test_enable_rejects_bad_target(self, registry):
        with pytest.raises(InvalidArgumentError):
            registry.enable("coin", "0x1::missing_struct", 1)

    def test_disable(self, registry):
        registry.enable("fa", FA_ADDRESS, 12)
        entry = registry.disable("fa", FA_ADDRESS)
        assert entry.enabled is False
        assert len(registry) == 1
        assert registry.enabled_entries() == []

    def test_disable_unknown(self, registry):
        assert registry.disable("fa", FA_ADDRESS) is None

    def test_touch_enabled(self, registry):
        registry.enable("fa", FA_ADDRESS, 12)
        assert registry.touch("fa", FA_ADDRESS, "ping-abc") is True
        entry = registry.get("fa", FA_ADDRESS)
        assert entry.last_scan_id == "ping-abc"
        assert entry.last_run_utc is not None

    def test_touch_disabled(self, registry):
        registry.enable("fa", FA_ADDRESS, 12)
        registry.disable("fa", FA_ADDRESS)
        assert registry.touch("fa", FA_ADDRESS, "ping-abc") is False
        assert registry.get("fa", FA_ADDRESS).last_scan_id is None

    def test_touch_unregistered(self, registry):
        assert registry.touch("fa", FA_ADDRESS, "ping-abc") is False
        assert len(registry) == 0

    def test_registry_key(self):
        assert registry_key("coin", COIN_TYPE) == f"coin:{COIN_TYPE}"


# ── Persistence ──────────────────────────────────────────────────────────────


class TestRegistryPersistence:
    def test_not_written_until_save(self, registry):
        registry.enable("fa", FA_ADDRESS, 12)
        assert not registry.path.exists()

    def test_round_trip(self, registry):
        registry.enable("fa", FA_ADDRESS, 12)
        registry.enable("coin", COIN_TYPE, 24)
        registry.save()
        loaded = MonitorRegistry.load(registry.path)
        assert [e.key for e in loaded.entries()] == [f"coin:{COIN_TYPE}", f"fa:{FA_ADDRESS}"]
        assert loaded.get("coin", COIN_TYPE).cadence_hours == 24

    def test_saved_sorted(self, registry):
        registry.enable("fa", FA_ADDRESS, 12)
        registry.enable("coin", COIN_TYPE, 24)
        registry.save()
        assert list(json.loads(registry.path.read_text())) == [f"coin:{COIN_TYPE}", f"fa:{FA_ADDRESS}"]

    def test_load_missing_file(self, tmp_path):
        assert len(MonitorRegistry.load(tmp_path / "none.json")) == 0

    def test_load_default_path(self):
        registry = MonitorRegistry.load()
        assert registry.path.name == "monitor_registry.json"

    def test_load_skips_malformed(self, tmp_path):
        path = tmp_path / "registry.json"
        path.write_text(json.dumps({
            f"fa:{FA_ADDRESS}": _entry().model_dump(mode="json"),
            "fa:0xbad": {"kind": "fa"},
        }))
        registry = MonitorRegistry.load(path)
        assert len(registry) == 1

    def test_load_non_object(self, tmp_path):
        path = tmp_path / "registry.json"
        path.write_text("[1, 2]")
        assert len(MonitorRegistry.load(path)) == 0

    def test_listing(self, registry):
        registry.enable("fa", FA_ADDRESS, 12)
        (key, entry, status), = registry.listing(NOW)
        assert key == entry.key
        assert status.reason == "no_monitor_run_yet"


# ── Status ───────────────────────────────────────────────────────────────────


class TestMonitoringStatus:
    def test_not_registered(self):
        status = compute_monitoring_status(None)
        assert status.enabled is False
        assert status.monitoring_active is False
        assert status.reason == "not_registered"

    def test_disabled(self):
        status = compute_monitoring_status(_entry(enabled=False))
        assert status.reason == "monitoring_disabled"
        assert status.monitoring_active is False

    def test_never_run(self):
        status = compute_monitoring_status(_entry())
        assert status.enabled is True
        assert status.monitoring_active is False
        assert status.cadence_hours == 6
        assert status.reason == "no_monitor_run_yet"

    def test_active(self):
        last = NOW - timedelta(hours=11)
        status = compute_monitoring_status(_entry(last_run_utc=last.isoformat()), now=NOW)
        assert status.monitoring_active is True
        assert status.reason is None
        assert status.next_scheduled_utc == (last + timedelta(hours=6)).isoformat()

    def test_active_at_boundary(self):
        last = NOW - timedelta(hours=12)
        assert compute_monitoring_status(_entry(last_run_utc=last.isoformat()), now=NOW).monitoring_active is True

    def test_stale(self):
        last = NOW - timedelta(hours=13)
        status = compute_monitoring_status(_entry(last_run_utc=last.isoformat()), now=NOW)
        assert status.monitoring_active is False
        assert status.reason == "monitoring_stale"

    def test_z_suffix_parsed(self):
        status = compute_monitoring_status(_entry(last_run_utc="2026-03-01T10:00:00Z"), now=NOW)
        assert status.monitoring_active is True
