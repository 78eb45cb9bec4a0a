"""Tests for ssa_engine.analyzer.resources.

Covers:
- FA capability extraction (owner, supply, hooks, refs)
- FA metadata findings, including the opaque-resources finding
- Legacy coin extraction (nested supply, decimals, capabilities, restrictions)
- Malformed input handling
"""

from __future__ import annotations

import json

from conftest import COIN_TYPE, HOOK_ADDRESS

from ssa_engine.analyzer.resources import (
    analyze_coin_resources,
    analyze_fa_resources,
    coerce_resources,
)
from ssa_engine.core.types import EvidenceKind, Severity


# ── Input coercion ───────────────────────────────────────────────────────────


class TestCoerceResources:
    def test_accepts_list(self, fa_resources):
        assert len(coerce_resources(fa_resources)) == 4

    def test_accepts_json_string(self, fa_resources):
        assert len(coerce_resources(json.dumps(fa_resources))) == 4

    def test_invalid_json_is_empty(self):
        assert coerce_resources("{not json") == []

    def test_drops_entries_without_type(self):
        assert coerce_resources([{"data": {}}, {"type": "0x1::a::B", "data": {}}, "junk"]) == [
            {"type": "0x1::a::B", "data": {}}
        ]

    def test_non_list_is_empty(self):
        assert coerce_resources({"type": "0x1::a::B"}) == []


# ── FA ───────────────────────────────────────────────────────────────────────


class TestFaResources:
    def test_owner_and_supply(self, fa_resources):
        caps = analyze_fa_resources(fa_resources).caps
        assert caps.owner == "0xABC"
        assert caps.supply_current == "1000000"
        assert caps.supply_max == "5000000"

    def test_hooks(self, fa_resources):
        caps = analyze_fa_resources(fa_resources).caps
        assert caps.has_deposit_hook is True
        assert caps.has_withdraw_hook is False
        assert len(caps.hook_modules) == 1
        assert caps.hook_modules[0].key == f"{HOOK_ADDRESS}::hooks::on_deposit"
        assert "deposit_hook" in caps.hooks

    def test_refs(self, fa_resources):
        caps = analyze_fa_resources(fa_resources).caps
        assert caps.has_mint_ref is True
        assert caps.has_burn_ref is True
        assert caps.has_transfer_ref is False

    def test_capability_flags(self, fa_resources):
        flags = analyze_fa_resources(fa_resources).caps.capability_flags()
        assert flags == {
            "mint": True,
            "burn": True,
            "transfer": False,
            "deposit_hook": True,
            "withdraw_hook": False,
            "derived_balance_hook": False,
            "transfer_hook": False,
        }

    def test_transfer_hook(self, fa_resources):
        dispatch = next(r for r in fa_resources if r["type"].endswith("::DispatchFunctionStore"))
        dispatch["data"]["pre_transfer_function"] = {"vec": [{
            "module_address": HOOK_ADDRESS, "module_name": "gate", "function_name": "check",
        }]}
        analysis = analyze_fa_resources(fa_resources)
        assert analysis.caps.has_transfer_hook is True
        assert analysis.caps.capability_flags()["transfer_hook"] is True
        hooks = next(f for f in analysis.findings if f.id == "FA-HOOKS-001")
        assert f"{HOOK_ADDRESS}::gate::check" in hooks.matched_patterns

    def test_transfer_hook_alone_reported(self):
        dispatch = {"transfer_function": {"vec": [{
            "module_address": HOOK_ADDRESS, "module_name": "gate", "function_name": "check",
        }]}}
        analysis = analyze_fa_resources([{"type": "0x1::fungible_asset::DispatchFunctionStore", "data": dispatch}])
        assert analysis.caps.has_deposit_hook is False
        assert [f.id for f in analysis.findings] == ["FA-HOOKS-001"]

    def test_findings(self, fa_resources):
        findings = {f.id: f for f in analyze_fa_resources(fa_resources).findings}
        assert set(findings) == {"FA-MINT-001", "FA-BURN-001", "FA-HOOKS-001", "FA-OWNER-001", "FA-SUPPLY-001"}
        assert findings["FA-MINT-001"].severity is Severity.MEDIUM
        assert findings["FA-BURN-001"].severity is Severity.INFO
        assert all(f.evidence_kind is EvidenceKind.METADATA for f in findings.values())

    def test_no_critical_findings(self, fa_resources):
        assert all(f.severity is not Severity.CRITICAL for f in analyze_fa_resources(fa_resources).findings)

    def test_standalone_mint_ref_holder(self):
        resources = [{"type": "0xfeed::fungible_asset::MintRef", "data": {}}]
        assert analyze_fa_resources(resources).caps.mint_ref_holder == "0xfeed"

    def test_opaque_resources_finding(self):
        resources = [{"type": f"0x1::custom::Thing{i}", "data": {}} for i in range(6)]
        ids = [f.id for f in analyze_fa_resources(resources).findings]
        assert ids == ["FA-OPAQUE-001"]

    def test_few_unknown_resources_not_opaque(self):
        resources = [{"type": "0x1::custom::Thing", "data": {}}]
        assert analyze_fa_resources(resources).findings == []

    def test_empty(self):
        analysis = analyze_fa_resources([])
        assert analysis.parsed_count == 0
        assert analysis.caps.owner is None
        assert analysis.findings == []

    def test_resource_types_recorded(self, fa_resources):
        analysis = analyze_fa_resources(fa_resources)
        assert analysis.parsed_count == 4
        assert analysis.resource_types[0] == "0x1::object::ObjectCore"


# ── Coin ─────────────────────────────────────────────────────────────────────


class TestCoinResources:
    def test_nested_supply_and_decimals(self, coin_resources):
        caps = analyze_coin_resources(coin_resources, struct_name="TOKEN").caps
        assert caps.supply_current == "250000000"
        assert caps.decimals == 8
        assert caps.supply_formatted == "2.50000000"
        assert caps.supply_unknown is False

    def test_capabilities(self, coin_resources):
        caps = analyze_coin_resources(coin_resources, struct_name="TOKEN").caps
        assert caps.capability_flags() == {
            "mint": True,
            "burn": True,
            "freeze": False,
            "transfer_restrictions": False,
        }

    def test_findings(self, coin_resources):
        ids = [f.id for f in analyze_coin_resources(coin_resources).findings]
        assert ids == ["COIN-MINT-001", "COIN-BURN-001"]

    def test_decimals_default(self):
        resources = [{"type": f"0x1::coin::CoinInfo<{COIN_TYPE}>", "data": {"supply": "10"}}]
        assert analyze_coin_resources(resources).caps.decimals == 6

    def test_unparseable_supply_flagged(self):
        resources = [{"type": f"0x1::coin::CoinInfo<{COIN_TYPE}>", "data": {"supply": "12.5"}}]
        analysis = analyze_coin_resources(resources)
        assert analysis.caps.supply_current is None
        assert analysis.supply_normalization_failed is True

    def test_struct_name_selects_coin_info(self):
        resources = [
            {"type": "0x1::coin::CoinInfo<0xc3::token::OTHER>", "data": {"supply": "1", "decimals": 2}},
            {"type": "0x1::coin::CoinInfo<0xc3::token::TOKEN>", "data": {"supply": "2", "decimals": 4}},
        ]
        caps = analyze_coin_resources(resources, struct_name="TOKEN").caps
        assert caps.supply_current == "2"
        assert caps.decimals == 4

    def test_restrictions(self):
        resources = [
            {"type": f"0x1::coin::CoinInfo<{COIN_TYPE}>", "data": {"supply": "1"}},
            {"type": "0xc3::token::PauseCapability", "data": {}},
        ]
        analysis = analyze_coin_resources(resources)
        assert analysis.caps.has_transfer_restrictions is True
        assert [f.id for f in analysis.findings] == ["COIN-FREEZE-001"]

    def test_owner_capability(self):
        resources = [{"type": "0xc3::token::OwnerCapability", "data": {"owner": "0xdead"}}]
        analysis = analyze_coin_resources(resources)
        assert analysis.caps.owner == "0xdead"
        assert [f.id for f in analysis.findings] == ["COIN-OWNER-001"]
