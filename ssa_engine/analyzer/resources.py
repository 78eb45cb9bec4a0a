"""Capability extraction from raw on-chain resources.

Turns the ``[{type, data}, ...]`` list an RPC or the indexer returns for an
address into a normalized capability record for an FA object or a legacy
coin publisher, plus a handful of metadata findings.

FA resources consulted:
    ``::object::ObjectCore``                        owner
    ``::fungible_asset::ConcurrentSupply``          current / max supply
    ``::fungible_asset::DispatchFunctionStore``     dispatch hooks
    ``::dispatchable_fa_store::ManagedFungibleAsset`` mint / burn / transfer refs
    ``::fungible_asset::{Mint,Burn,Transfer}Ref``   standalone refs

Coin resources consulted:
    ``::coin::CoinInfo``                            supply, max supply, decimals
    ``::coin::CoinStore``                           frozen / denylist hints
    ``::coin::{Mint,Burn,Freeze}Capability``        capabilities
    ``SignerCapability`` / ``AdminCapability`` / ``OwnerCapability``
    ``PauseCapability`` / ``Denylist`` / ``Blacklist`` / ``Restriction``
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from ssa_engine.core.identifiers import normalize_supply
from ssa_engine.core.types import EvidenceKind, Finding, HookModule, Severity

_HOOK_FIELDS = (
    ("deposit", "deposit_function"),
    ("withdraw", "withdraw_function"),
    ("derived_balance", "derived_balance_function"),
    ("transfer", "transfer_function"),
    ("pre_transfer", "pre_transfer_function"),
    ("post_transfer", "post_transfer_function"),
)
_REF_HOLDER_FIELDS = ("holder", "owner", "controller", "address", "account", "object_id", "id")


# ── Types ────────────────────────────────────────────────────────────────────


@dataclass
class FaCapabilities:
    has_mint_ref: bool = False
    has_burn_ref: bool = False
    has_transfer_ref: bool = False
    has_deposit_hook: bool = False
    has_withdraw_hook: bool = False
    has_derived_balance_hook: bool = False
    has_transfer_hook: bool = False
    owner: str | None = None
    supply_current: str | None = None
    supply_max: str | None = None
    mint_ref_holder: str | None = None
    burn_ref_holder: str | None = None
    transfer_ref_holder: str | None = None
    hook_modules: list[HookModule] = field(default_factory=list)
    hooks: dict[str, HookModule] = field(default_factory=dict)

    def capability_flags(self) -> dict[str, bool]:
        return {
            "mint": self.has_mint_ref,
            "burn": self.has_burn_ref,
            "transfer": self.has_transfer_ref,
            "deposit_hook": self.has_deposit_hook,
            "withdraw_hook": self.has_withdraw_hook,
            "derived_balance_hook": self.has_derived_balance_hook,
            "transfer_hook": self.has_transfer_hook,
        }


@dataclass
class CoinCapabilities:
    has_mint_cap: bool = False
    has_burn_cap: bool = False
    has_freeze_cap: bool = False
    has_transfer_restrictions: bool = False
    owner: str | None = None
    admin: str | None = None
    supply_current: str | None = None
    supply_max: str | None = None
    decimals: int | None = None
    supply_formatted: str | None = None

    @property
    def supply_unknown(self) -> bool:
        return self.supply_current is None

    def capability_flags(self) -> dict[str, bool]:
        return {
            "mint": self.has_mint_cap,
            "burn": self.has_burn_cap,
            "freeze": self.has_freeze_cap,
            "transfer_restrictions": self.has_transfer_restrictions,
        }


@dataclass
class ResourceAnalysis:
    """Capabilities extracted from one resource list, plus metadata findings."""

    caps: FaCapabilities | CoinCapabilities
    findings: list[Finding] = field(default_factory=list)
    parsed_count: int = 0
    resource_types: list[str] = field(default_factory=list)
    supply_normalization_failed: bool = False


# ── Helpers ──────────────────────────────────────────────────────────────────


def coerce_resources(raw: Any) -> list[dict[str, Any]]:
    """Accept a list or a JSON string; anything else is an empty list."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    if not isinstance(raw, list):
        return []
    return [r for r in raw if isinstance(r, dict) and isinstance(r.get("type"), str)]


def _pick_suffix(resources: list[dict[str, Any]], suffix: str) -> dict[str, Any] | None:
    return next((r for r in resources if r["type"].endswith(suffix)), None)


def _pick_contains(resources: list[dict[str, Any]], needle: str) -> dict[str, Any] | None:
    return next((r for r in resources if needle in r["type"]), None)


def _data(resource: dict[str, Any] | None) -> dict[str, Any]:
    if not resource:
        return {}
    data = resource.get("data")
    return data if isinstance(data, dict) else {}


def _type_short(type_tag: str) -> str:
    parts = type_tag.split("::")
    return f"{parts[1]}::{parts[2]}" if len(parts) >= 3 else type_tag


def _ref_holder(ref: Any) -> str | None:
    """Find an address inside a ref object (``holder``, ``inner``, ``vec[0]``, ...)."""
    if not isinstance(ref, dict):
        return None
    for key in _REF_HOLDER_FIELDS:
        value = ref.get(key)
        if isinstance(value, str) and value.startswith("0x"):
            return value
    if isinstance(ref.get("inner"), dict):
        found = _ref_holder(ref["inner"])
        if found:
            return found
    vec = ref.get("vec")
    if isinstance(vec, list) and vec:
        return _ref_holder(vec[0])
    return None


def _standalone_ref_holder(resource: dict[str, Any]) -> str | None:
    head = resource["type"].split("::")[0]
    if head.startswith("0x"):
        return head
    return _ref_holder(_data(resource))


def _vec(value: Any) -> list[Any]:
    if isinstance(value, dict) and isinstance(value.get("vec"), list):
        return value["vec"]
    return []


def _finding(
    fid: str, title: str, severity: Severity, description: str,
    recommendation: str = "", matched: list[str] | None = None,
) -> Finding:
    return Finding(
        id=fid,
        title=title,
        severity=severity,
        confidence=0.9,
        description=description,
        recommendation=recommendation,
        evidence_kind=EvidenceKind.METADATA,
        matched_patterns=matched or [],
    )


# ── FA ───────────────────────────────────────────────────────────────────────


def analyze_fa_resources(raw: Any) -> ResourceAnalysis:
    """Extract FA capabilities from an FA object's resources."""
    caps = FaCapabilities()
    resources = coerce_resources(raw)
    analysis = ResourceAnalysis(
        caps=caps,
        parsed_count=len(resources),
        resource_types=[r["type"] for r in resources],
    )
    if not resources:
        return analysis

    owner = _data(_pick_suffix(resources, "::object::ObjectCore")).get("owner")
    if owner:
        caps.owner = str(owner)

    current = _data(_pick_suffix(resources, "::fungible_asset::ConcurrentSupply")).get("current")
    if isinstance(current, dict):
        caps.supply_current = normalize_supply(current.get("value"))
        caps.supply_max = normalize_supply(current.get("max_value"))

    dispatch = _data(_pick_suffix(resources, "::fungible_asset::DispatchFunctionStore"))
    for hook_type, data_key in _HOOK_FIELDS:
        entries = _vec(dispatch.get(data_key))
        if hook_type == "deposit":
            caps.has_deposit_hook = bool(entries)
        elif hook_type == "withdraw":
            caps.has_withdraw_hook = bool(entries)
        elif hook_type == "derived_balance":
            caps.has_derived_balance_hook = bool(entries)
        elif entries:
            # transfer, pre_transfer and post_transfer share one flag
            caps.has_transfer_hook = True
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            if entry.get("module_address") and entry.get("module_name") and entry.get("function_name"):
                hook = HookModule(
                    module_address=str(entry["module_address"]),
                    module_name=str(entry["module_name"]),
                    function_name=str(entry["function_name"]),
                )
                caps.hook_modules.append(hook)
                caps.hooks[f"{hook_type}_hook"] = hook

    managed = _data(_pick_contains(resources, "::dispatchable_fa_store::ManagedFungibleAsset"))
    if managed:
        caps.has_mint_ref = bool(managed.get("mint_ref"))
        caps.has_burn_ref = bool(managed.get("burn_ref"))
        caps.has_transfer_ref = bool(managed.get("transfer_ref"))
        caps.mint_ref_holder = _ref_holder(managed.get("mint_ref"))
        caps.burn_ref_holder = _ref_holder(managed.get("burn_ref"))
        caps.transfer_ref_holder = _ref_holder(managed.get("transfer_ref"))

    for suffix, attr in (
        ("::fungible_asset::MintRef", "mint_ref_holder"),
        ("::fungible_asset::BurnRef", "burn_ref_holder"),
        ("::fungible_asset::TransferRef", "transfer_ref_holder"),
    ):
        resource = _pick_suffix(resources, suffix)
        if resource and not getattr(caps, attr):
            setattr(caps, attr, _standalone_ref_holder(resource))

    analysis.findings = _fa_findings(caps, resources)
    return analysis


def _fa_findings(caps: FaCapabilities, resources: list[dict[str, Any]]) -> list[Finding]:
    findings: list[Finding] = []
    if caps.has_mint_ref:
        findings.append(_finding(
            "FA-MINT-001", "Mint reference present (supply can be increased)", Severity.MEDIUM,
            "This FA exposes a mint reference in ManagedFungibleAsset. Supply is not provably immutable.",
            "If minting is intended, document it. Otherwise rotate or lock mint authority.",
            ["mint_ref"],
        ))
    if caps.has_burn_ref:
        findings.append(_finding(
            "FA-BURN-001", "Burn reference present", Severity.INFO,
            "This FA exposes a burn reference. Burning may be possible by an authority.",
            "Document the burn policy and how burn authority is controlled.",
            ["burn_ref"],
        ))
    if (
        caps.has_deposit_hook or caps.has_withdraw_hook
        or caps.has_derived_balance_hook or caps.has_transfer_hook
    ):
        findings.append(_finding(
            "FA-HOOKS-001", "FA has dispatch hooks (custom transfer/deposit/withdraw logic)", Severity.MEDIUM,
            "DispatchFunctionStore contains hook functions. Transfers may execute additional Move code.",
            "Analyze the hook modules for blacklisting, fee siphons or transfer restrictions.",
            [h.key for h in caps.hook_modules],
        ))
    if caps.owner:
        findings.append(_finding(
            "FA-OWNER-001", "FA object owner present", Severity.INFO,
            f"ObjectCore.owner is {caps.owner}. The owner may hold administrative abilities.",
            "Verify the owner is a trusted account (multisig or DAO).",
        ))
    if caps.supply_current or caps.supply_max:
        findings.append(_finding(
            "FA-SUPPLY-001", "Supply info detected", Severity.INFO,
            f"ConcurrentSupply current={caps.supply_current} max={caps.supply_max}.",
        ))
    strong = (
        caps.has_mint_ref or caps.has_burn_ref or caps.has_deposit_hook
        or caps.has_withdraw_hook or caps.has_transfer_hook
        or bool(caps.owner) or bool(caps.supply_current)
    )
    if not strong and len(resources) > 5:
        findings.append(_finding(
            "FA-OPAQUE-001", "FA resources did not expose expected authority/supply fields", Severity.MEDIUM,
            "Resources parsed, but none matched ManagedFungibleAsset, DispatchFunctionStore, "
            "ObjectCore or ConcurrentSupply.",
            "Capture indexer data or extend the extractor for this FA architecture.",
            [_type_short(r["type"]) for r in resources[:20]],
        ))
    return findings


# ── Coin ─────────────────────────────────────────────────────────────────────


def _format_units(base: str, decimals: int) -> str:
    value = int(base)
    if decimals <= 0:
        return str(value)
    whole, frac = divmod(value, 10 ** decimals)
    return str(whole) if frac == 0 else f"{whole}.{str(frac).zfill(decimals)}"


def analyze_coin_resources(raw: Any, struct_name: str | None = None) -> ResourceAnalysis:
    """Extract legacy coin capabilities from the publisher account's resources.

    When ``struct_name`` is given, a ``CoinInfo<...::Struct>`` matching it is
    preferred over any other CoinInfo the publisher holds.
    """
    caps = CoinCapabilities()
    resources = coerce_resources(raw)
    analysis = ResourceAnalysis(
        caps=caps,
        parsed_count=len(resources),
        resource_types=[r["type"] for r in resources],
    )
    if not resources:
        return analysis

    coin_info = None
    if struct_name:
        coin_info = next(
            (r for r in resources if "::coin::CoinInfo" in r["type"] and r["type"].rstrip(">").endswith(f"::{struct_name}")),
            None,
        )
    coin_info = coin_info or _pick_contains(resources, "::coin::CoinInfo")
    info = _data(coin_info)
    if info:
        supply_value = info.get("supply") or info.get("total_supply") or info.get("value")
        if supply_value is not None:
            caps.supply_current = normalize_supply(supply_value)
            analysis.supply_normalization_failed = caps.supply_current is None
        if info.get("max_supply") is not None:
            caps.supply_max = normalize_supply(info["max_supply"])
        decimals = info.get("decimals")
        try:
            caps.decimals = int(decimals) if decimals is not None else 6
        except (TypeError, ValueError):
            caps.decimals = None
        if caps.supply_current is not None and caps.decimals is not None:
            caps.supply_formatted = _format_units(caps.supply_current, caps.decimals)
        if info.get("owner"):
            caps.owner = str(info["owner"])
        if info.get("admin"):
            caps.admin = str(info["admin"])

    store = _data(_pick_contains(resources, "::coin::CoinStore"))
    if "frozen" in store or store.get("is_frozen") or store.get("denylist") or store.get("blacklist"):
        caps.has_transfer_restrictions = True

    mint_cap = _pick_contains(resources, "::coin::MintCapability") or _pick_contains(resources, "MintCap")
    if mint_cap:
        caps.has_mint_cap = True
        if _data(mint_cap).get("owner"):
            caps.owner = str(_data(mint_cap)["owner"])
    if _pick_contains(resources, "::coin::BurnCapability") or _pick_contains(resources, "BurnCap"):
        caps.has_burn_cap = True
    freeze_cap = _pick_contains(resources, "::coin::FreezeCapability") or _pick_contains(resources, "FreezeCap")
    if freeze_cap:
        caps.has_freeze_cap = True
        if _data(freeze_cap).get("owner"):
            caps.owner = str(_data(freeze_cap)["owner"])

    for needle, role in (("SignerCapability", "admin"), ("AdminCapability", "admin"), ("OwnerCapability", "owner")):
        resource = _pick_contains(resources, needle)
        if not resource:
            continue
        data = _data(resource)
        if role == "admin":
            caps.admin = str(data.get("admin") or data.get("owner") or "present")
        else:
            caps.owner = str(data.get("owner") or "present")

    for needle in ("PauseCapability", "Denylist", "Blacklist", "Restriction"):
        if _pick_contains(resources, needle):
            caps.has_transfer_restrictions = True

    analysis.findings = _coin_findings(caps)
    return analysis


def _coin_findings(caps: CoinCapabilities) -> list[Finding]:
    findings: list[Finding] = []
    if caps.has_mint_cap:
        findings.append(_finding(
            "COIN-MINT-001", "MintCap present (supply can be increased)", Severity.MEDIUM,
            "MintCapability resource found. Supply is not provably immutable.",
            "Verify mint authority is properly controlled, or destroy the MintCapability.",
            ["MintCapability"],
        ))
    if caps.has_burn_cap:
        findings.append(_finding(
            "COIN-BURN-001", "BurnCap present", Severity.INFO,
            "BurnCapability resource found. Burning may be possible.",
            "Document the burn policy.",
            ["BurnCapability"],
        ))
    if caps.has_freeze_cap or caps.has_transfer_restrictions:
        findings.append(_finding(
            "COIN-FREEZE-001", "FreezeCap or transfer restrictions present", Severity.MEDIUM,
            "FreezeCapability or restriction resources found. Transfers may be frozen or restricted.",
            "Review freeze authority. Unauthorized freezes could lock user funds.",
        ))
    if caps.owner or caps.admin:
        findings.append(_finding(
            "COIN-OWNER-001", "Owner/admin present", Severity.INFO,
            f"Owner: {caps.owner or '-'} Admin: {caps.admin or '-'}",
            "Treat owner/admin as an admin surface and verify it is trusted.",
        ))
    return findings
