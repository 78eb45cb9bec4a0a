"""Tests for ssa_engine.risk.severity_rules.

Covers:
- Field to change-type mapping
- Supply severity for FA and coin targets
- Owner/hook escalation, mint-like ABI additions, capability grants
- Ordering of classified changes and the maximum severity
"""

from __future__ import annotations

from conftest import COIN_PUBLISHER, coin_drift_keys, fa_drift_keys

from ssa_engine.core.types import DriftChange, DriftDiff, Severity, TargetKind
from ssa_engine.risk.severity_rules import (
    DriftChangeType,
    change_type_for,
    classify_drift_changes,
    max_drift_severity,
    supply_delta,
)


def _diff(*changes: DriftChange) -> DriftDiff:
    return DriftDiff(changed=bool(changes), changes=list(changes), prev_fingerprint="a" * 16, curr_fingerprint="b" * 16)


def _classify(kind: TargetKind, drift_keys: dict, *changes: DriftChange) -> list[DriftChange]:
    return classify_drift_changes(_diff(*changes), kind, drift_keys).changes


# ── Change types ─────────────────────────────────────────────────────────────


class TestChangeTypeFor:
    def test_scalars(self):
        assert change_type_for(DriftChange(field="owner", type="modified")) is DriftChangeType.OWNER_CHANGED
        assert change_type_for(DriftChange(field="supply_max", type="modified")) is DriftChangeType.SUPPLY_MAX_CHANGED
        assert change_type_for(DriftChange(field="decimals", type="modified")) is DriftChangeType.DECIMALS_CHANGED

    def test_publisher_module_hash(self):
        field = f"publisher_module_hash.{COIN_PUBLISHER}::extra"
        assert change_type_for(DriftChange(field=field, type="added")) is DriftChangeType.MODULE_ADDED
        assert change_type_for(DriftChange(field=field, type="removed")) is DriftChangeType.MODULE_REMOVED
        assert change_type_for(DriftChange(field=field, type="modified")) is DriftChangeType.COIN_MODULE_CODE_CHANGED

    def test_capabilities(self):
        assert change_type_for(DriftChange(field="capabilities.mint", type="modified")) is DriftChangeType.CAPABILITIES_CHANGED
        assert change_type_for(DriftChange(field="coin_capabilities.freeze", type="modified")) is DriftChangeType.CAPABILITIES_CHANGED

    def test_unknown_field(self):
        assert change_type_for(DriftChange(field="something_else", type="modified")) is None


class TestSupplyDelta:
    def test_increase(self):
        assert supply_delta("100", "250") == 150

    def test_decrease(self):
        assert supply_delta(250, "100") == -150

    def test_not_computable(self):
        assert supply_delta(None, "100") is None
        assert supply_delta("abc", "100") is None


# ── Supply rules ─────────────────────────────────────────────────────────────


class TestSupplySeverity:
    def test_fa_increase_above_max_is_critical(self):
        keys = fa_drift_keys(supply_current="6000", supply_max="5000")
        change = DriftChange(field="supply_current", type="modified", before="1000", after="6000")
        assert _classify(TargetKind.FA, keys, change)[0].severity is Severity.CRITICAL

    def test_fa_increase_with_mint_is_high(self):
        keys = fa_drift_keys(capabilities={"mint": True})
        change = DriftChange(field="supply_current", type="modified", before="1000", after="2000")
        assert _classify(TargetKind.FA, keys, change)[0].severity is Severity.HIGH

    def test_fa_increase_without_mint_is_info(self):
        change = DriftChange(field="supply_current", type="modified", before="1000", after="2000")
        assert _classify(TargetKind.FA, fa_drift_keys(), change)[0].severity is Severity.INFO

    def test_fa_decrease_is_info(self):
        keys = fa_drift_keys(capabilities={"mint": True})
        change = DriftChange(field="supply_current", type="modified", before="2000", after="1000")
        assert _classify(TargetKind.FA, keys, change)[0].severity is Severity.INFO

    def test_coin_increase_with_mint_is_critical(self):
        keys = coin_drift_keys(coin_capabilities={"mint": True})
        change = DriftChange(field="supply_current", type="modified", before="1000", after="2000")
        assert _classify(TargetKind.COIN, keys, change)[0].severity is Severity.CRITICAL

    def test_coin_increase_without_mint_is_high(self):
        change = DriftChange(field="supply_current", type="modified", before="1000", after="2000")
        assert _classify(TargetKind.COIN, coin_drift_keys(), change)[0].severity is Severity.HIGH

    def test_unknown_delta_is_info(self):
        change = DriftChange(field="supply_current", type="modified", before=None, after="2000")
        assert _classify(TargetKind.COIN, coin_drift_keys(), change)[0].severity is Severity.INFO


# ── Other rules ──────────────────────────────────────────────────────────────


class TestOtherRules:
    def test_supply_max_is_critical(self):
        change = DriftChange(field="supply_max", type="modified", before="5000", after="9000")
        assert _classify(TargetKind.FA, fa_drift_keys(), change)[0].severity is Severity.CRITICAL

    def test_owner_alone_is_high(self):
        change = DriftChange(field="owner", type="modified", before="0xabc", after="0xdef")
        assert _classify(TargetKind.FA, fa_drift_keys(), change)[0].severity is Severity.HIGH

    def test_owner_with_hooks_is_critical(self):
        owner = DriftChange(field="owner", type="modified", before="0xabc", after="0xdef")
        hooks = DriftChange(field="hooks", type="added", after={"module_address": "0x1"})
        classified = {c.field: c for c in _classify(TargetKind.FA, fa_drift_keys(), owner, hooks)}
        assert classified["owner"].severity is Severity.CRITICAL
        assert classified["hooks"].severity is Severity.HIGH

    def test_abi_surface_mint_like_is_critical(self):
        change = DriftChange(field="abi_surface", type="modified", before=[], after=["0x1::token::mint_to"])
        assert _classify(TargetKind.FA, fa_drift_keys(), change)[0].severity is Severity.CRITICAL

    def test_abi_surface_other_is_high(self):
        change = DriftChange(field="abi_surface", type="modified", before=["0x1::token::old"], after=["0x1::token::swap"])
        assert _classify(TargetKind.FA, fa_drift_keys(), change)[0].severity is Severity.HIGH

    def test_mint_like_matches_function_name_only(self):
        change = DriftChange(field="abi_surface", type="modified", before=[], after=["0x1::minter_v2::swap"])
        assert _classify(TargetKind.FA, fa_drift_keys(), change)[0].severity is Severity.HIGH

    def test_capability_granted_is_high(self):
        change = DriftChange(field="capabilities.mint", type="modified", before=False, after=True)
        assert _classify(TargetKind.FA, fa_drift_keys(), change)[0].severity is Severity.HIGH

    def test_capability_revoked_is_info(self):
        change = DriftChange(field="capabilities.mint", type="modified", before=True, after=False)
        assert _classify(TargetKind.FA, fa_drift_keys(), change)[0].severity is Severity.INFO

    def test_module_code_change_is_high(self):
        change = DriftChange(field="hook_module_hash.0xb2::hooks", type="modified", before="aa", after="bb")
        result = _classify(TargetKind.FA, fa_drift_keys(), change)[0]
        assert result.change_type == DriftChangeType.HOOK_MODULE_CODE_CHANGED.value
        assert result.severity is Severity.HIGH

    def test_decimals_is_high(self):
        change = DriftChange(field="decimals", type="modified", before=8, after=6)
        assert _classify(TargetKind.COIN, coin_drift_keys(), change)[0].severity is Severity.HIGH

    def test_never_downgraded(self):
        change = DriftChange(
            field="capabilities.burn", type="modified", before=True, after=False, severity=Severity.CRITICAL,
        )
        assert _classify(TargetKind.FA, fa_drift_keys(), change)[0].severity is Severity.CRITICAL


# ── Ordering ─────────────────────────────────────────────────────────────────


class TestClassification:
    def test_unchanged_diff_returned_as_is(self):
        diff = DriftDiff(changed=False, curr_fingerprint="b" * 16)
        assert classify_drift_changes(diff, TargetKind.FA, fa_drift_keys()) is diff

    def test_sorted_by_severity_then_type(self):
        changes = _classify(
            TargetKind.FA,
            fa_drift_keys(),
            DriftChange(field="supply_current", type="modified", before="1", after="2"),
            DriftChange(field="abi_surface", type="modified", before=[], after=["0x1::m::swap"]),
            DriftChange(field="owner", type="modified", before="0xa", after="0xb"),
            DriftChange(field="supply_max", type="modified", before="1", after="2"),
        )
        assert [c.change_type for c in changes] == [
            "SUPPLY_MAX_CHANGED",
            "OWNER_CHANGED",
            "ABI_SURFACE_CHANGED",
            "SUPPLY_CHANGED",
        ]

    def test_input_not_mutated(self):
        change = DriftChange(field="owner", type="modified", before="0xa", after="0xb")
        diff = _diff(change)
        classify_drift_changes(diff, TargetKind.FA, fa_drift_keys())
        assert diff.changes[0].severity is None

    def test_max_severity(self):
        diff = classify_drift_changes(
            _diff(
                DriftChange(field="owner", type="modified", before="0xa", after="0xb"),
                DriftChange(field="supply_max", type="modified", before="1", after="2"),
            ),
            TargetKind.FA,
            fa_drift_keys(),
        )
        assert max_drift_severity(diff) is Severity.CRITICAL

    def test_max_severity_empty(self):
        assert max_drift_severity(DriftDiff(changed=False, curr_fingerprint="x")) is None
