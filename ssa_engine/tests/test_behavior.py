"""Tests for ssa_engine.verifier.behavior.

Covers:
- Function id parsing and extraction from transaction shapes
- Pinned entry inventory construction
- Phantom detection (undeclared functions, unpinned modules on pinned addresses, foreign modules)
- sample_recent_behavior status outcomes
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import HOOK_ADDRESS

from ssa_engine.core.errors import RpcTransportError
from ssa_engine.core.types import AbiPresence, BehaviorStatus, HookModule
from ssa_engine.verifier.behavior import (
    UNKNOWN_MODULE,
    build_pinned_entry_map,
    extract_function_id,
    find_phantom_entries,
    parse_function_id,
    sample_recent_behavior,
)

HOOKS_MODULE = f"{HOOK_ADDRESS}::hooks"


@pytest.fixture
def pinned() -> dict[str, list[str]]:
    return {HOOKS_MODULE: ["on_deposit", "set_fee"]}


def _tx_source(*batches) -> MagicMock:
    source = MagicMock()
    source.get_transactions = AsyncMock(side_effect=list(batches))
    return source


# ── Parsing ──────────────────────────────────────────────────────────────────


class TestFunctionIds:
    def test_parse_full_id(self):
        entry = parse_function_id("0xABC::vault::withdraw")
        assert entry.module_id == "0xabc::vault"
        assert entry.function_name == "withdraw"
        assert entry.function_id == "0xabc::vault::withdraw"

    def test_parse_short_id(self):
        entry = parse_function_id("transfer")
        assert entry.module_id == UNKNOWN_MODULE
        assert entry.function_id == f"{UNKNOWN_MODULE}::transfer"

    def test_extract_top_level(self):
        assert extract_function_id({"function": "0x1::m::f"}) == "0x1::m::f"

    def test_extract_from_payload(self):
        assert extract_function_id({"payload": {"entry_function_id": "0x1::m::g"}}) == "0x1::m::g"

    def test_extract_from_json_payload(self):
        assert extract_function_id({"payload": '{"function": "0x1::m::h"}'}) == "0x1::m::h"

    def test_extract_missing(self):
        assert extract_function_id({"payload": "not json"}) is None


# ── Inventory ────────────────────────────────────────────────────────────────


class TestPinnedInventory:
    def test_from_abis_and_hooks(self):
        presence = [AbiPresence(module_id=HOOKS_MODULE.upper().replace("0X", "0x"), has_abi=True)]
        abis = {HOOKS_MODULE: {"exposed_functions": [{"name": "set_fee"}, {"name": "on_deposit"}]}}
        hooks = [HookModule(module_address=HOOK_ADDRESS, module_name="hooks", function_name="on_deposit")]
        pinned = build_pinned_entry_map(presence, hooks, abis)
        assert pinned == {HOOKS_MODULE: ["set_fee", "on_deposit"]}

    def test_module_without_abi_skipped(self):
        presence = [AbiPresence(module_id="0x1::m", has_abi=False)]
        assert build_pinned_entry_map(presence) == {}


class TestPhantoms:
    def test_undeclared_function(self, pinned):
        invoked = [parse_function_id(f"{HOOKS_MODULE}::drain"), parse_function_id(f"{HOOKS_MODULE}::set_fee")]
        phantoms = find_phantom_entries(invoked, pinned)
        assert [p.function_name for p in phantoms] == ["drain"]

    def test_unpinned_module_on_pinned_address(self, pinned):
        invoked = [parse_function_id(f"{HOOK_ADDRESS}::shadow::run")]
        assert len(find_phantom_entries(invoked, pinned)) == 1

    def test_foreign_module_ignored(self, pinned):
        invoked = [parse_function_id("0x1::coin::transfer")]
        assert find_phantom_entries(invoked, pinned) == []

    def test_case_insensitive(self, pinned):
        invoked = [parse_function_id(f"{HOOKS_MODULE}::SET_FEE")]
        assert find_phantom_entries(invoked, pinned) == []

    def test_empty_inventory(self):
        assert find_phantom_entries([parse_function_id("0x1::m::f")], {}) == []


# ── Sampling ─────────────────────────────────────────────────────────────────


class TestSampleRecentBehavior:
    @pytest.mark.asyncio
    async def test_sampled_with_phantom(self, pinned):
        source = _tx_source([
            {"function": f"{HOOKS_MODULE}::set_fee", "timestamp": 2},
            {"function": f"{HOOKS_MODULE}::drain", "timestamp": 3},
        ])
        behavior = await sample_recent_behavior(source, [HOOK_ADDRESS], pinned)
        assert behavior.status is BehaviorStatus.SAMPLED
        assert behavior.tx_count == 2
        assert [e.function_name for e in behavior.invoked_entries] == ["drain", "set_fee"]
        assert [p.function_name for p in behavior.phantom_entries] == ["drain"]

    @pytest.mark.asyncio
    async def test_all_addresses_fail(self, pinned):
        source = _tx_source(RpcTransportError("down"), RpcTransportError("down"))
        behavior = await sample_recent_behavior(source, [HOOK_ADDRESS, "0x1"], pinned)
        assert behavior.status is BehaviorStatus.UNAVAILABLE
        assert len(behavior.warnings) == 2

    @pytest.mark.asyncio
    async def test_ok_empty(self, pinned):
        behavior = await sample_recent_behavior(_tx_source([]), [HOOK_ADDRESS], pinned)
        assert behavior.status is BehaviorStatus.OK_EMPTY

    @pytest.mark.asyncio
    async def test_no_activity(self, pinned):
        behavior = await sample_recent_behavior(_tx_source([{"hash": "0x1"}]), [HOOK_ADDRESS], pinned)
        assert behavior.status is BehaviorStatus.NO_ACTIVITY
        assert behavior.tx_count == 1

    @pytest.mark.asyncio
    async def test_no_addresses(self, pinned):
        behavior = await sample_recent_behavior(_tx_source(), [None, ""], pinned)
        assert behavior.status is BehaviorStatus.ERROR

    @pytest.mark.asyncio
    async def test_opaque_active(self):
        source = _tx_source([{"function": "0x9::m::f"}])
        behavior = await sample_recent_behavior(source, ["0x9"], {}, has_opaque_abi=True)
        assert behavior.status is BehaviorStatus.SAMPLED
        assert behavior.opaque_active is True
        assert behavior.opaque_active_reason

    @pytest.mark.asyncio
    async def test_invalid_probe_warns(self, pinned):
        source = _tx_source([])
        behavior = await sample_recent_behavior(source, [HOOK_ADDRESS], pinned, probe_addresses=["0x12"])
        assert any("Invalid probe address" in w for w in behavior.warnings)
        assert behavior.sampled_addresses == [HOOK_ADDRESS]

    @pytest.mark.asyncio
    async def test_limit_applied(self, pinned):
        txs = [{"function": f"{HOOKS_MODULE}::set_fee", "timestamp": i} for i in range(30)]
        behavior = await sample_recent_behavior(_tx_source(txs), [HOOK_ADDRESS], pinned, limit=5)
        assert behavior.tx_count == 5
