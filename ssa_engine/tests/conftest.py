"""Shared fixtures for the SSA engine test suite."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from ssa_engine.core.config import get_settings
from ssa_engine.core.hashing import fingerprint
from ssa_engine.core.types import (
    AbiPresence,
    HookModule,
    MiniSurface,
    ModuleHashPin,
    PingSnapshot,
    SnapshotMeta,
    TargetKind,
    TargetRef,
)

FA_ADDRESS = "0x" + "a1" * 32
HOOK_ADDRESS = "0x" + "b2" * 32
COIN_PUBLISHER = "0x" + "c3" * 32
COIN_TYPE = f"{COIN_PUBLISHER}::token::TOKEN"


# ── Settings ─────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Point every storage path at the test's tmp dir and reset the settings cache."""
    monkeypatch.setenv("SSA_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("SSA_TMP_DIR", str(tmp_path / "tmp"))
    monkeypatch.setenv("SSA_REGISTRY_PATH", str(tmp_path / "data" / "monitor_registry.json"))
    monkeypatch.setenv("SSA_RPC_URL", "https://rpc.test.supra")
    monkeypatch.delenv("SUPRA_RPC_URL", raising=False)
    monkeypatch.delenv("SSA_RPC_URL_SECONDARY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ── Raw resources ────────────────────────────────────────────────────────────


@pytest.fixture
def fa_resources() -> list[dict[str, Any]]:
    """Resources of an FA object with owner, supply, one deposit hook and mint/burn refs."""
    return [
        {"type": "0x1::object::ObjectCore", "data": {"owner": "0xABC", "allow_ungated_transfer": True}},
        {
            "type": "0x1::fungible_asset::ConcurrentSupply",
            "data": {"current": {"value": "1000000", "max_value": "5000000"}},
        },
        {
            "type": "0x1::fungible_asset::DispatchFunctionStore",
            "data": {
                "deposit_function": {"vec": [{
                    "module_address": HOOK_ADDRESS,
                    "module_name": "hooks",
                    "function_name": "on_deposit",
                }]},
                "withdraw_function": {"vec": []},
                "derived_balance_function": {"vec": []},
            },
        },
        {
            "type": f"{FA_ADDRESS}::dispatchable_fa_store::ManagedFungibleAsset",
            "data": {
                "mint_ref": {"metadata": {"inner": FA_ADDRESS}},
                "burn_ref": {"metadata": {"inner": FA_ADDRESS}},
                "transfer_ref": None,
            },
        },
    ]


@pytest.fixture
def coin_resources() -> list[dict[str, Any]]:
    """Publisher resources of a legacy coin with mint and burn capabilities."""
    return [
        {
            "type": f"0x1::coin::CoinInfo<{COIN_TYPE}>",
            "data": {
                "name": "Token",
                "symbol": "TOK",
                "decimals": 8,
                "supply": {"vec": [{"aggregator": {"vec": []}, "integer": {"vec": [{"value": "250000000"}]}}]},
            },
        },
        {"type": f"0x1::coin::MintCapability<{COIN_TYPE}>", "data": {"dummy_field": False}},
        {"type": f"0x1::coin::BurnCapability<{COIN_TYPE}>", "data": {"dummy_field": False}},
    ]


# ── Surfaces ─────────────────────────────────────────────────────────────────


@pytest.fixture
def make_surface() -> Callable[..., MiniSurface]:
    """Factory for MiniSurfaces with sensible FA defaults."""

    def _make(**overrides: Any) -> MiniSurface:
        values: dict[str, Any] = {
            "owner": "0xabc",
            "supply_current": "1000000",
            "supply_max": None,
            "hook_modules": [],
            "capabilities": {"mint": False, "burn": False},
            "abi_presence": [],
            "hook_module_hashes": [],
        }
        values.update(overrides)
        return MiniSurface(**values)

    return _make


@pytest.fixture
def hooked_surface() -> MiniSurface:
    hook = HookModule(module_address=HOOK_ADDRESS, module_name="hooks", function_name="on_deposit")
    return MiniSurface(
        owner="0xabc",
        supply_current="1000000",
        hook_modules=[hook],
        capabilities={"mint": True, "burn": False},
        abi_presence=[AbiPresence(module_id=f"{HOOK_ADDRESS}::hooks", has_abi=True, entry_fns=2, exposed_fns=3)],
        hook_module_hashes=[ModuleHashPin(module_id=f"{HOOK_ADDRESS}::hooks", code_hash="ab" * 32, hash_basis="bytecode")],
    )


# ── Snapshots ────────────────────────────────────────────────────────────────


@pytest.fixture
def make_snapshot() -> Callable[..., PingSnapshot]:
    """Factory for ping snapshots; the fingerprint is derived from the drift keys."""

    def _make(
        drift_keys: dict[str, Any] | None = None,
        *,
        kind: TargetKind = TargetKind.FA,
        target_id: str = FA_ADDRESS,
        ts: str = "2026-01-01T00:00:00+00:00",
    ) -> PingSnapshot:
        if drift_keys is None:
            drift_keys = fa_drift_keys()
        return PingSnapshot(
            meta=SnapshotMeta(ts=ts, rpc="https://rpc.test.supra", kind=kind),
            identity=TargetRef(kind=kind, id=target_id),
            drift_keys=drift_keys,
            fingerprint=fingerprint(drift_keys),
        )

    return _make


def fa_drift_keys(**overrides: Any) -> dict[str, Any]:
    keys: dict[str, Any] = {
        "owner": "0xabc",
        "supply_current": "1000",
        "supply_max": "5000",
        "hooks": [],
        "hook_module_hashes": {},
        "capabilities": {
            "mint": False,
            "burn": False,
            "transfer": False,
            "deposit_hook": False,
            "withdraw_hook": False,
            "derived_balance_hook": False,
            "transfer_hook": False,
        },
        "entry_functions": [f"{FA_ADDRESS}::token::transfer"],
    }
    keys.update(overrides)
    return keys


def coin_drift_keys(**overrides: Any) -> dict[str, Any]:
    keys: dict[str, Any] = {
        "supply_current": "1000",
        "supply_max": None,
        "decimals": 8,
        "coin_capabilities": {"mint": False, "burn": False, "freeze": False, "transfer_restrictions": False},
        "publisher_module_hashes": {f"{COIN_PUBLISHER}::token": "aa" * 32},
        "entry_functions": [f"{COIN_PUBLISHER}::token::transfer"],
    }
    keys.update(overrides)
    return keys
