"""Evidence corroboration: reconcile per-source MiniSurfaces into typed claims.

For every tracked field the non-null sources are counted:

    n == 0                  UNAVAILABLE / LOW
    n == 1                  PARTIAL     / MEDIUM
    n >= 2, all equal       CONFIRMED   / HIGH
    n >= 2, any unequal     CONFLICT    / HIGH  + one Discrepancy per disagreeing pair

Claims are rebuilt from scratch on every call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Mapping

from ssa_engine.core.hashing import canonical_json, normalize_module_id
from ssa_engine.core.types import (
    Claim,
    ClaimConfirmation,
    ClaimStatus,
    ClaimType,
    Confidence,
    Discrepancy,
    EvidenceSource,
    EvidenceTier,
    MiniSurface,
    TargetKind,
    VerificationStatus,
)

CLAIM_PRIORITY: tuple[ClaimType, ...] = (
    ClaimType.OWNER,
    ClaimType.SUPPLY,
    ClaimType.SUPPLY_MAX,
    ClaimType.DECIMALS,
    ClaimType.HOOKS,
    ClaimType.CAPS,
    ClaimType.HOOK_MODULE_HASHES,
    ClaimType.MODULE_HASHES,
    ClaimType.ABI_PRESENCE,
)
_PRIORITY_INDEX = {ct: i for i, ct in enumerate(CLAIM_PRIORITY)}

TRACKED_CLAIMS: dict[TargetKind, tuple[ClaimType, ...]] = {
    TargetKind.FA: (
        ClaimType.OWNER,
        ClaimType.SUPPLY,
        ClaimType.SUPPLY_MAX,
        ClaimType.HOOKS,
        ClaimType.CAPS,
        ClaimType.HOOK_MODULE_HASHES,
        ClaimType.ABI_PRESENCE,
    ),
    TargetKind.COIN: (
        ClaimType.OWNER,
        ClaimType.SUPPLY,
        ClaimType.SUPPLY_MAX,
        ClaimType.DECIMALS,
        ClaimType.CAPS,
        ClaimType.MODULE_HASHES,
        ClaimType.ABI_PRESENCE,
    ),
}

SOURCE_ORDER: tuple[EvidenceSource, ...] = (
    EvidenceSource.RPC_V3,
    EvidenceSource.RPC_V1,
    EvidenceSource.RPC_V3_2,
    EvidenceSource.INDEXER,
)

# Endpoint each source was served by; v3 and v1 share the primary endpoint.
_ENDPOINT = {
    EvidenceSource.RPC_V3: "primary",
    EvidenceSource.RPC_V1: "primary",
    EvidenceSource.RPC_V3_2: "secondary",
}


@dataclass
class CorroborationResult:
    claims: list[Claim] = field(default_factory=list)
    discrepancies: list[Discrepancy] = field(default_factory=list)
    status: VerificationStatus = VerificationStatus.OK
    tier: EvidenceTier = EvidenceTier.VIEW_ONLY

    @property
    def has_conflict(self) -> bool:
        return self.status is VerificationStatus.CONFLICT

    def claim(self, claim_type: ClaimType) -> Claim | None:
        return next((c for c in self.claims if c.claim_type is claim_type), None)


# ── Field extraction ─────────────────────────────────────────────────────────


def _pins_map(pins: list[Any] | None) -> dict[str, str | None] | None:
    if pins is None:
        return None
    return {normalize_module_id(p.module_id): p.code_hash for p in sorted(pins, key=lambda p: p.module_id)}


def claim_value(surface: MiniSurface, claim_type: ClaimType) -> Any:
    """The JSON-able value a surface reports for ``claim_type``, or None."""
    if claim_type is ClaimType.OWNER:
        return surface.owner
    if claim_type is ClaimType.SUPPLY:
        return surface.supply_current
    if claim_type is ClaimType.SUPPLY_MAX:
        return surface.supply_max
    if claim_type is ClaimType.DECIMALS:
        return surface.decimals
    if claim_type is ClaimType.HOOKS:
        if surface.hook_modules is None:
            return None
        return sorted({h.key for h in surface.hook_modules})
    if claim_type is ClaimType.CAPS:
        return dict(sorted(surface.capabilities.items())) if surface.capabilities is not None else None
    if claim_type is ClaimType.HOOK_MODULE_HASHES:
        return _pins_map(surface.hook_module_hashes)
    if claim_type is ClaimType.MODULE_HASHES:
        return _pins_map(surface.module_hashes)
    if claim_type is ClaimType.ABI_PRESENCE:
        if surface.abi_presence is None:
            return None
        return {
            normalize_module_id(a.module_id): a.has_abi
            for a in sorted(surface.abi_presence, key=lambda a: a.module_id)
        }
    return None


def _comparable(claim_type: ClaimType, value: Any) -> str:
    if claim_type is ClaimType.OWNER and isinstance(value, str):
        value = value.strip().lower()
    return canonical_json(value)


# ── Corroboration ────────────────────────────────────────────────────────────


def _corroborate_field(
    claim_type: ClaimType, reported: list[tuple[EvidenceSource, Any]],
) -> tuple[Claim, list[Discrepancy]]:
    confirmations = [
        ClaimConfirmation(source=src, ok=True, value=value) for src, value in reported
    ]
    n = len(reported)
    if n == 0:
        return Claim(claim_type=claim_type, status=ClaimStatus.UNAVAILABLE, confidence=Confidence.LOW), []
    if n == 1:
        return Claim(
            claim_type=claim_type, status=ClaimStatus.PARTIAL, confidence=Confidence.MEDIUM,
            value=reported[0][1], confirmations=confirmations,
        ), []

    keys = [_comparable(claim_type, value) for _src, value in reported]
    if len(set(keys)) == 1:
        return Claim(
            claim_type=claim_type, status=ClaimStatus.CONFIRMED, confidence=Confidence.HIGH,
            value=reported[0][1], confirmations=confirmations,
        ), []

    discrepancies = [
        Discrepancy(
            claim_type=claim_type,
            sources=[a_src, b_src],
            values={a_src.value: a_val, b_src.value: b_val},
            detail=f"{claim_type.value}: {a_src.value} and {b_src.value} disagree",
        )
        for (a_src, a_val), (b_src, b_val) in combinations(reported, 2)
        if _comparable(claim_type, a_val) != _comparable(claim_type, b_val)
    ]
    claim = Claim(
        claim_type=claim_type, status=ClaimStatus.CONFLICT, confidence=Confidence.HIGH,
        value=None, confirmations=confirmations,
    )
    return claim, discrepancies


def compute_evidence_tier(
    sources: Mapping[EvidenceSource, MiniSurface | None], has_conflict: bool,
) -> EvidenceTier:
    """Ordinal tier from the independently operated sources that returned data.

    The primary endpoint counts once whether it answered on v3 or v1.
    """
    endpoints = {_ENDPOINT[s] for s, v in sources.items() if v is not None and s in _ENDPOINT}
    indexer = sources.get(EvidenceSource.INDEXER) is not None
    if len(endpoints) < 2:
        return EvidenceTier.VIEW_ONLY
    if indexer and not has_conflict:
        return EvidenceTier.MULTI_SOURCE_CONFIRMED
    if indexer:
        return EvidenceTier.MULTI_RPC_PLUS_INDEXER
    return EvidenceTier.MULTI_RPC_CONFIRMED


def corroborate(
    sources: Mapping[EvidenceSource, MiniSurface | None],
    kind: TargetKind = TargetKind.FA,
    claim_types: tuple[ClaimType, ...] | None = None,
) -> CorroborationResult:
    """Reconcile per-source surfaces into claims, discrepancies, status and tier."""
    tracked = claim_types or TRACKED_CLAIMS.get(kind, TRACKED_CLAIMS[TargetKind.FA])
    ordered = [s for s in SOURCE_ORDER if s in sources] + [s for s in sources if s not in SOURCE_ORDER]

    result = CorroborationResult()
    for claim_type in sorted(tracked, key=lambda ct: _PRIORITY_INDEX.get(ct, len(CLAIM_PRIORITY))):
        reported: list[tuple[EvidenceSource, Any]] = []
        for src in ordered:
            surface = sources[src]
            if surface is None:
                continue
            value = claim_value(surface, claim_type)
            if value is not None:
                reported.append((src, value))
        claim, discrepancies = _corroborate_field(claim_type, reported)
        result.claims.append(claim)
        result.discrepancies.extend(discrepancies)

    if any(c.status is ClaimStatus.CONFLICT for c in result.claims):
        result.status = VerificationStatus.CONFLICT
    result.tier = compute_evidence_tier(sources, result.has_conflict)
    return result
