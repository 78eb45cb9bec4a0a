"""Tests for ssa_engine.monitoring.drift.

Covers:
- Drift key construction for FA and coin targets
- Fingerprint determinism
- build_snapshot with a mocked RPC client (success, missing resources, transport failure)
- Structural diffs (scalars, hooks, hashes, capabilities, ABI surface)
- Baseline / stable / changed classification
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import COIN_PUBLISHER, COIN_TYPE, FA_ADDRESS, HOOK_ADDRESS, coin_drift_keys, fa_drift_keys

from ssa_engine.core.errors import RpcTransportError
from ssa_engine.core.hashing import fingerprint
from ssa_engine.core.types import DriftClass, TargetKind
from ssa_engine.ingestion.rpc_client import ModuleArtifact
from ssa_engine.monitoring.drift import build_snapshot, diff_snapshots, drift_class

HOOK_ABI = {
    "name": "hooks",
    "exposed_functions": [
        {"name": "on_deposit", "visibility": "friend", "is_entry": False},
        {"name": "set_fee", "visibility": "public", "is_entry": True},
    ],
}


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def rpc_client(fa_resources) -> MagicMock:
    client = MagicMock()
    client.rpc_url = "https://rpc.test.supra"
    client.get_resources = AsyncMock(return_value=fa_resources)
    client.get_module = AsyncMock(side_effect=lambda address, name, api="v3": ModuleArtifact(
        module_id=f"{address}::{name}", bytecode_hex="0xa11ceb0b", abi=HOOK_ABI, fetched_from="rpc_v3",
    ))
    client.list_modules = AsyncMock(return_value=[])
    client.close = AsyncMock()
    return client


# ── Snapshot building ────────────────────────────────────────────────────────


class TestBuildSnapshot:
    @pytest.mark.asyncio
    async def test_fa_snapshot(self, rpc_client):
        snapshot = await build_snapshot(TargetKind.FA, FA_ADDRESS.upper().replace("0X", "0x"), client=rpc_client)
        assert snapshot is not None
        assert snapshot.identity.id == FA_ADDRESS
        assert snapshot.meta.kind is TargetKind.FA
        assert snapshot.meta.rpc == "https://rpc.test.supra"
        keys = snapshot.drift_keys
        assert keys["owner"] == "0xABC"
        assert keys["supply_current"] == "1000000"
        assert keys["supply_max"] == "5000000"
        assert keys["hooks"] == [
            {"module_address": HOOK_ADDRESS, "module_name": "hooks", "function_name": "on_deposit"}
        ]
        assert list(keys["hook_module_hashes"]) == [f"{HOOK_ADDRESS}::hooks"]
        assert keys["capabilities"]["mint"] is True
        assert keys["entry_functions"] == [f"{HOOK_ADDRESS}::hooks::set_fee"]
        assert snapshot.fingerprint == fingerprint(keys)
        assert len(snapshot.fingerprint) == 16
        rpc_client.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transfer_hook_drift(self, rpc_client, fa_resources):
        before = await build_snapshot(TargetKind.FA, FA_ADDRESS, client=rpc_client)
        dispatch = next(r for r in fa_resources if r["type"].endswith("::DispatchFunctionStore"))
        dispatch["data"]["transfer_function"] = {"vec": [{
            "module_address": HOOK_ADDRESS, "module_name": "hooks", "function_name": "on_transfer",
        }]}
        after = await build_snapshot(TargetKind.FA, FA_ADDRESS, client=rpc_client)

        assert before.drift_keys["capabilities"]["transfer_hook"] is False
        assert after.drift_keys["capabilities"]["transfer_hook"] is True
        fields = [c.field for c in diff_snapshots(before, after).changes]
        assert "capabilities.transfer_hook" in fields

    @pytest.mark.asyncio
    async def test_fingerprint_deterministic(self, rpc_client):
        first = await build_snapshot(TargetKind.FA, FA_ADDRESS, client=rpc_client)
        second = await build_snapshot(TargetKind.FA, FA_ADDRESS, client=rpc_client)
        assert first.fingerprint == second.fingerprint
        assert first.drift_keys == second.drift_keys

    @pytest.mark.asyncio
    async def test_coin_snapshot(self, rpc_client, coin_resources):
        rpc_client.get_resources = AsyncMock(return_value=coin_resources)
        rpc_client.list_modules = AsyncMock(return_value=[{"name": "token"}, {"abi": {"name": "vault"}}])
        snapshot = await build_snapshot("coin", COIN_TYPE, client=rpc_client)
        assert snapshot.identity.id == COIN_TYPE
        keys = snapshot.drift_keys
        assert set(keys) == {
            "supply_current", "supply_max", "decimals", "coin_capabilities",
            "publisher_module_hashes", "entry_functions",
        }
        assert keys["decimals"] == 8
        assert keys["coin_capabilities"]["mint"] is True
        assert set(keys["publisher_module_hashes"]) == {f"{COIN_PUBLISHER}::token", f"{COIN_PUBLISHER}::vault"}

    @pytest.mark.asyncio
    async def test_coin_listing_failure_tolerated(self, rpc_client, coin_resources):
        rpc_client.get_resources = AsyncMock(return_value=coin_resources)
        rpc_client.list_modules = AsyncMock(side_effect=RpcTransportError("boom"))
        snapshot = await build_snapshot(TargetKind.COIN, COIN_TYPE, client=rpc_client)
        assert list(snapshot.drift_keys["publisher_module_hashes"]) == [f"{COIN_PUBLISHER}::token"]

    @pytest.mark.asyncio
    async def test_no_resources(self, rpc_client):
        rpc_client.get_resources = AsyncMock(return_value=[])
        assert await build_snapshot(TargetKind.FA, FA_ADDRESS, client=rpc_client) is None

    @pytest.mark.asyncio
    async def test_transport_failure(self, rpc_client):
        rpc_client.get_resources = AsyncMock(side_effect=RpcTransportError("timeout"))
        assert await build_snapshot(TargetKind.FA, FA_ADDRESS, client=rpc_client) is None

    @pytest.mark.asyncio
    async def test_invalid_target(self, rpc_client):
        assert await build_snapshot(TargetKind.FA, "not-an-address", client=rpc_client) is None
        assert await build_snapshot(TargetKind.COIN, "0x1::only_two", client=rpc_client) is None
        rpc_client.get_resources.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wallet_unsupported(self, rpc_client):
        assert await build_snapshot(TargetKind.WALLET, FA_ADDRESS, client=rpc_client) is None


# ── Diff ─────────────────────────────────────────────────────────────────────


class TestDiffSnapshots:
    def test_baseline(self, make_snapshot):
        curr = make_snapshot()
        diff = diff_snapshots(None, curr)
        assert diff.changed is False
        assert diff.prev_fingerprint is None
        assert diff.curr_fingerprint == curr.fingerprint
        assert drift_class(None, diff) is DriftClass.BASELINE

    def test_stable(self, make_snapshot):
        prev, curr = make_snapshot(), make_snapshot(ts="2026-01-02T00:00:00+00:00")
        diff = diff_snapshots(prev, curr)
        assert diff.changed is False
        assert diff.changes == []
        assert drift_class(prev, diff) is DriftClass.STABLE

    def test_supply_delta(self, make_snapshot):
        diff = diff_snapshots(make_snapshot(), make_snapshot(fa_drift_keys(supply_current="1500")))
        assert diff.changed is True
        assert len(diff.changes) == 1
        change = diff.changes[0]
        assert change.field == "supply_current"
        assert change.before == "1000"
        assert change.after == "1500"
        assert change.delta == "500"

    def test_negative_supply_delta(self, make_snapshot):
        diff = diff_snapshots(make_snapshot(), make_snapshot(fa_drift_keys(supply_current="400")))
        assert diff.changes[0].delta == "-600"

    def test_hooks_added_and_removed(self, make_snapshot):
        old_hook = {"module_address": "0xAA", "module_name": "h", "function_name": "f"}
        new_hook = {"module_address": "0xbb", "module_name": "h", "function_name": "f"}
        prev = make_snapshot(fa_drift_keys(hooks=[old_hook]))
        curr = make_snapshot(fa_drift_keys(hooks=[new_hook]))
        changes = diff_snapshots(prev, curr).changes
        assert [(c.field, c.type) for c in changes] == [("hooks", "added"), ("hooks", "removed")]
        assert changes[0].after == new_hook
        assert changes[1].before == old_hook

    def test_hook_address_case_ignored(self, make_snapshot):
        prev = make_snapshot(fa_drift_keys(hooks=[{"module_address": "0xAA", "module_name": "h", "function_name": "f"}]))
        curr = make_snapshot(fa_drift_keys(hooks=[{"module_address": "0xaa", "module_name": "h", "function_name": "f"}]))
        assert [c.field for c in diff_snapshots(prev, curr).changes] == []

    def test_hook_module_hash_changes(self, make_snapshot):
        prev = make_snapshot(fa_drift_keys(hook_module_hashes={"0xb::x": "aa", "0xb::gone": "cc"}))
        curr = make_snapshot(fa_drift_keys(hook_module_hashes={"0xb::x": "bb", "0xb::new": "dd"}))
        changes = {c.field: c for c in diff_snapshots(prev, curr).changes}
        assert changes["hook_module_hash.0xb::x"].type == "modified"
        assert changes["hook_module_hash.0xb::x"].before == "aa"
        assert changes["hook_module_hash.0xb::gone"].type == "removed"
        assert changes["hook_module_hash.0xb::new"].type == "added"

    def test_publisher_module_added(self, make_snapshot):
        prev = make_snapshot(coin_drift_keys(), kind=TargetKind.COIN, target_id=COIN_TYPE)
        hashes = {**prev.drift_keys["publisher_module_hashes"], f"{COIN_PUBLISHER}::extra": "ee"}
        curr = make_snapshot(coin_drift_keys(publisher_module_hashes=hashes), kind=TargetKind.COIN, target_id=COIN_TYPE)
        changes = diff_snapshots(prev, curr).changes
        assert [(c.field, c.type) for c in changes] == [(f"publisher_module_hash.{COIN_PUBLISHER}::extra", "added")]

    def test_capability_flag(self, make_snapshot):
        caps = dict(fa_drift_keys()["capabilities"], mint=True)
        changes = diff_snapshots(make_snapshot(), make_snapshot(fa_drift_keys(capabilities=caps))).changes
        assert [(c.field, c.before, c.after) for c in changes] == [("capabilities.mint", False, True)]

    def test_abi_surface(self, make_snapshot):
        prev = make_snapshot(fa_drift_keys(entry_functions=["0x1::m::a", "0x1::m::b"]))
        curr = make_snapshot(fa_drift_keys(entry_functions=["0x1::m::b", "0x1::m::mint"]))
        (change,) = diff_snapshots(prev, curr).changes
        assert change.field == "abi_surface"
        assert change.before == ["0x1::m::a"]
        assert change.after == ["0x1::m::mint"]

    def test_changed_fingerprints_recorded(self, make_snapshot):
        prev = make_snapshot()
        curr = make_snapshot(fa_drift_keys(owner="0xdef"))
        diff = diff_snapshots(prev, curr)
        assert diff.prev_fingerprint == prev.fingerprint
        assert diff.curr_fingerprint == curr.fingerprint
        assert drift_class(prev, diff) is DriftClass.CHANGED
