"""Risk synthesis: fold claims, findings and behavior into signals and one level.

Pure functions only.  Signals are derived independently of the level; the
level is then chosen by descending priority, first match wins:

    DANGEROUS          phantom entry points in sampled transactions
    ELEVATED_RISK      any conflict, hook control with unverified privileges,
                       or unavailable behavior over an opaque interface
    OPAQUE_BUT_ACTIVE  opaque interface with confirmed activity
    SAFE_DYNAMIC       pinned or multi-RPC, no conflict, behavior matched
    SAFE_STATIC        pinned or multi-RPC, no conflict, no behavior
    fallback           view_only -> ELEVATED_RISK, else multi-RPC -> SAFE_STATIC
"""

from __future__ import annotations

import re
from typing import Any, Iterable

from ssa_engine.analyzer.artifact_view import abi_entry_functions
from ssa_engine.core.types import (
    BehaviorEvidence,
    BehaviorStatus,
    Claim,
    ClaimStatus,
    ClaimType,
    EvidenceTier,
    Finding,
    IndexerParityRecord,
    IndexerParityStatus,
    MiniSurface,
    RiskLevel,
    RiskSignal,
    RiskSynthesis,
    Severity,
    SurfaceFlags,
)

PRIVILEGED_FUNCTION_RE = re.compile(r"mint|burn|admin|upgrade|set_owner|transfer_ownership|freeze|pause", re.I)

CONFLICT_SIGNALS = frozenset({
    RiskSignal.MULTI_RPC_CONFLICT,
    RiskSignal.HASH_CONFLICT,
    RiskSignal.INDEXER_CONFLICT,
    RiskSignal.SUPPLY_CONFLICT,
    RiskSignal.OWNER_CONFLICT,
    RiskSignal.CAPS_CONFLICT,
})

# Static rules whose findings mean the privilege model is not established.
PRIVILEGE_RULE_IDS = ("SVSSA-MOVE-001", "SVSSA-MOVE-002", "SVSSA-MOVE-008", "SVSSA-MOVE-014")

_CLAIM_CONFLICT_SIGNALS = {
    ClaimType.SUPPLY: (RiskSignal.SUPPLY_CONFLICT, "Supply values conflict across sources."),
    ClaimType.SUPPLY_MAX: (RiskSignal.SUPPLY_CONFLICT, "Max supply values conflict across sources."),
    ClaimType.OWNER: (RiskSignal.OWNER_CONFLICT, "Owner values conflict across sources."),
    ClaimType.CAPS: (RiskSignal.CAPS_CONFLICT, "Capability flags conflict across sources."),
}

_NO_BEHAVIOR = (BehaviorStatus.UNAVAILABLE, BehaviorStatus.NO_ACTIVITY, BehaviorStatus.OK_EMPTY)


# ── Surface flags ────────────────────────────────────────────────────────────


def derive_surface_flags(
    surface: MiniSurface | None,
    abis: dict[str, Any] | None = None,
    findings: Iterable[Finding] = (),
) -> SurfaceFlags:
    """Static reachability flags from a primary surface and the pinned module ABIs."""
    flags = SurfaceFlags()
    if surface is None:
        return flags
    abis = abis or {}

    presence = surface.abi_presence or []
    flags.has_opaque_abi = bool(presence) and all(
        not p.has_abi or (p.entry_fns == 0 and p.exposed_fns == 0) for p in presence
    )
    flags.hook_controlled = bool(surface.hook_modules)

    entries = [fn.lower() for abi in abis.values() for fn in abi_entry_functions(abi)]
    flags.mint_reachable = any("mint" in fn for fn in entries)
    flags.burn_reachable = any("burn" in fn for fn in entries)
    flags.admin_reachable = any(
        k in fn for fn in entries for k in ("admin", "upgrade", "set_owner", "transfer_ownership", "pause", "freeze")
    )

    unpinned_hooks = flags.hook_controlled and any(
        pin.code_hash is None for pin in surface.hook_module_hashes or []
    )
    opaque_hooks = flags.hook_controlled and any(not p.has_abi for p in presence)
    privilege_findings = any(
        f.id.startswith(PRIVILEGE_RULE_IDS) and f.severity.rank >= Severity.MEDIUM.rank for f in findings
    )
    flags.privilege_unverified = unpinned_hooks or opaque_hooks or privilege_findings
    return flags


# ── Synthesis ────────────────────────────────────────────────────────────────


def _claim(claims: list[Claim], *types: ClaimType) -> Claim | None:
    return next((c for c in claims if c.claim_type in types), None)


def _is_privileged_phantom(behavior: BehaviorEvidence) -> bool:
    phantom_ids = {p.function_id for p in behavior.phantom_entries}
    return any(
        PRIVILEGED_FUNCTION_RE.search(e.function_name) and e.function_id in phantom_ids
        for e in behavior.invoked_entries
    )


def _determine_level(
    signals: set[RiskSignal],
    behavior: BehaviorEvidence | None,
    tier: EvidenceTier,
) -> RiskLevel:
    sampled = behavior is not None and behavior.status is BehaviorStatus.SAMPLED
    if RiskSignal.PHANTOM_ENTRYPOINTS in signals:
        return RiskLevel.DANGEROUS
    if sampled and _is_privileged_phantom(behavior):
        return RiskLevel.DANGEROUS

    has_conflict = bool(signals & CONFLICT_SIGNALS)
    if has_conflict:
        return RiskLevel.ELEVATED_RISK
    if RiskSignal.HOOK_CONTROLLED in signals and RiskSignal.PRIVILEGE_UNVERIFIED in signals:
        return RiskLevel.ELEVATED_RISK
    if RiskSignal.BEHAVIOR_UNAVAILABLE in signals and RiskSignal.ABI_OPAQUE in signals:
        return RiskLevel.ELEVATED_RISK

    if RiskSignal.ABI_OPAQUE_ACTIVE in signals:
        return RiskLevel.OPAQUE_BUT_ACTIVE
    if RiskSignal.INDEXER_UNSUPPORTED in signals and sampled and behavior.tx_count > 10:
        return RiskLevel.OPAQUE_BUT_ACTIVE
    if RiskSignal.ABI_OPAQUE in signals and sampled and behavior.tx_count > 0:
        return RiskLevel.OPAQUE_BUT_ACTIVE

    anchored = RiskSignal.HASH_PINNED in signals or RiskSignal.MULTI_RPC_CONFIRMED in signals
    if anchored and RiskSignal.BEHAVIOR_MATCHED in signals:
        return RiskLevel.SAFE_DYNAMIC
    if anchored and (behavior is None or behavior.status in _NO_BEHAVIOR):
        return RiskLevel.SAFE_STATIC
    if anchored and sampled and not behavior.phantom_entries and not behavior.opaque_active:
        return RiskLevel.SAFE_DYNAMIC

    if tier is EvidenceTier.VIEW_ONLY:
        return RiskLevel.ELEVATED_RISK
    if RiskSignal.MULTI_RPC_CONFIRMED in signals:
        return RiskLevel.SAFE_STATIC
    return RiskLevel.ELEVATED_RISK


def synthesize_risk(
    claims: list[Claim],
    findings: list[Finding] | None = None,
    behavior: BehaviorEvidence | None = None,
    surface_flags: SurfaceFlags | None = None,
    indexer_parity: IndexerParityRecord | None = None,
    tier: EvidenceTier = EvidenceTier.VIEW_ONLY,
) -> RiskSynthesis:
    """Map verification evidence to sorted signals, a level and a rationale."""
    signals: set[RiskSignal] = set()
    rationale: list[str] = []

    def add(signal: RiskSignal, reason: str | None = None) -> None:
        if reason and signal not in signals:
            rationale.append(reason)
        signals.add(signal)

    # Hash pinning
    hash_claim = _claim(claims, ClaimType.HOOK_MODULE_HASHES, ClaimType.MODULE_HASHES)
    if hash_claim is not None:
        if hash_claim.status is ClaimStatus.CONFIRMED and hash_claim.value:
            add(RiskSignal.HASH_PINNED)
        elif hash_claim.status is ClaimStatus.CONFLICT:
            add(RiskSignal.HASH_CONFLICT, "Module code hashes conflict across sources.")
        elif hash_claim.status is ClaimStatus.UNAVAILABLE:
            add(RiskSignal.HASH_UNAVAILABLE)

    # Multi-RPC
    any_conflict = any(c.status is ClaimStatus.CONFLICT for c in claims)
    if tier.is_multi_rpc:
        if any_conflict:
            add(RiskSignal.MULTI_RPC_CONFLICT, "Multi-RPC sources returned conflicting data.")
        else:
            add(RiskSignal.MULTI_RPC_CONFIRMED)

    # Indexer
    if indexer_parity is not None:
        status = indexer_parity.status
        if status in (IndexerParityStatus.SUPPORTED, IndexerParityStatus.PARTIAL):
            if indexer_parity.mismatches:
                add(RiskSignal.INDEXER_CONFLICT, "Indexer data conflicts with RPC data.")
            else:
                add(RiskSignal.INDEXER_CORROBORATED)
        elif status in (IndexerParityStatus.UNSUPPORTED, IndexerParityStatus.UNSUPPORTED_SCHEMA):
            add(RiskSignal.INDEXER_UNSUPPORTED, "Indexer does not support this target.")
        elif status is IndexerParityStatus.ERROR:
            add(RiskSignal.INDEXER_UNSUPPORTED, "Indexer query failed.")
        elif status is IndexerParityStatus.NOT_REQUESTED:
            add(RiskSignal.INDEXER_NOT_REQUESTED)

    # Per-field conflicts
    for claim in claims:
        if claim.status is ClaimStatus.CONFLICT and claim.claim_type in _CLAIM_CONFLICT_SIGNALS:
            signal, reason = _CLAIM_CONFLICT_SIGNALS[claim.claim_type]
            add(signal, reason)

    # Behavior
    if behavior is not None:
        if behavior.status is BehaviorStatus.SAMPLED:
            if behavior.phantom_entries:
                add(
                    RiskSignal.PHANTOM_ENTRYPOINTS,
                    f"{len(behavior.phantom_entries)} phantom entry point(s) invoked but not in ABI.",
                )
            elif behavior.invoked_entries:
                add(RiskSignal.BEHAVIOR_MATCHED)
            else:
                add(RiskSignal.BEHAVIOR_NO_ACTIVITY)
            if behavior.opaque_active:
                add(RiskSignal.ABI_OPAQUE_ACTIVE, "ABI is opaque but transaction activity exists.")
        elif behavior.status in (BehaviorStatus.NO_ACTIVITY, BehaviorStatus.OK_EMPTY):
            add(RiskSignal.BEHAVIOR_NO_ACTIVITY)
        else:
            add(RiskSignal.BEHAVIOR_UNAVAILABLE)

    # Surface
    if surface_flags is not None:
        if surface_flags.has_opaque_abi and RiskSignal.ABI_OPAQUE_ACTIVE not in signals:
            add(RiskSignal.ABI_OPAQUE)
        if surface_flags.hook_controlled:
            add(RiskSignal.HOOK_CONTROLLED)
        if surface_flags.mint_reachable:
            add(RiskSignal.MINT_REACHABLE, "Public mint entry point detected.")
        if surface_flags.burn_reachable:
            add(RiskSignal.BURN_REACHABLE, "Public burn entry point detected.")
        if surface_flags.admin_reachable:
            add(RiskSignal.ADMIN_REACHABLE, "Public admin entry point detected.")
        if surface_flags.privilege_unverified:
            add(RiskSignal.PRIVILEGE_UNVERIFIED, "Privilege model could not be fully verified.")

    hooks_claim = _claim(claims, ClaimType.HOOKS)
    if hooks_claim is not None and hooks_claim.status is ClaimStatus.CONFIRMED and hooks_claim.value:
        add(RiskSignal.HOOK_CONTROLLED)

    high_findings = [f for f in findings or [] if f.severity.rank >= Severity.HIGH.rank]
    if high_findings:
        rationale.append(f"{len(high_findings)} high-severity finding(s) reported.")

    level = _determine_level(signals, behavior, tier)
    rationale.append(f"Risk level: {level.value}")
    return RiskSynthesis(signals=sorted(signals, key=lambda s: s.value), risk_level=level, rationale=rationale)
