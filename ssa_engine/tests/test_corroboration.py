"""Tests for ssa_engine.verifier.corroboration.

Covers:
- Claim status and confidence for 0, 1 and 2+ sources
- Pairwise discrepancies on conflicting values
- Case-insensitive owner comparison
- Evidence tier from independent endpoints and the indexer
- Tracked claim sets per target kind
"""

from __future__ import annotations

from ssa_engine.core.types import (
    AbiPresence,
    ClaimStatus,
    ClaimType,
    Confidence,
    EvidenceSource,
    EvidenceTier,
    MiniSurface,
    ModuleHashPin,
    TargetKind,
    VerificationStatus,
)
from ssa_engine.verifier.corroboration import (
    CLAIM_PRIORITY,
    claim_value,
    compute_evidence_tier,
    corroborate,
)


# ── Claim statuses ───────────────────────────────────────────────────────────


class TestClaimStatuses:
    def test_two_sources_agree(self, make_surface):
        surface = make_surface(owner="0xABC", supply_current="1000000")
        result = corroborate({
            EvidenceSource.RPC_V3: surface,
            EvidenceSource.RPC_V3_2: surface.model_copy(),
        })
        for claim_type in (ClaimType.OWNER, ClaimType.SUPPLY):
            claim = result.claim(claim_type)
            assert claim.status is ClaimStatus.CONFIRMED
            assert claim.confidence is Confidence.HIGH
        assert result.claim(ClaimType.SUPPLY).value == "1000000"
        assert result.status is VerificationStatus.OK
        assert result.discrepancies == []

    def test_owner_conflict(self, make_surface):
        result = corroborate({
            EvidenceSource.RPC_V3: make_surface(owner="0xABC"),
            EvidenceSource.RPC_V3_2: make_surface(owner="0xDEF"),
        })
        claim = result.claim(ClaimType.OWNER)
        assert claim.status is ClaimStatus.CONFLICT
        assert claim.confidence is Confidence.HIGH
        assert claim.value is None
        assert len(result.discrepancies) == 1
        discrepancy = result.discrepancies[0]
        assert discrepancy.claim_type is ClaimType.OWNER
        assert discrepancy.values == {"rpc_v3": "0xABC", "rpc_v3_2": "0xDEF"}
        assert discrepancy.sources == [EvidenceSource.RPC_V3, EvidenceSource.RPC_V3_2]
        assert result.status is VerificationStatus.CONFLICT
        assert result.has_conflict is True

    def test_single_source_partial(self, make_surface):
        result = corroborate({
            EvidenceSource.RPC_V3: make_surface(owner="0xABC"),
            EvidenceSource.RPC_V1: None,
            EvidenceSource.RPC_V3_2: None,
            EvidenceSource.INDEXER: None,
        })
        claim = result.claim(ClaimType.OWNER)
        assert claim.status is ClaimStatus.PARTIAL
        assert claim.confidence is Confidence.MEDIUM
        assert claim.value == "0xABC"
        assert result.status is VerificationStatus.OK

    def test_no_sources_unavailable(self):
        result = corroborate({
            EvidenceSource.RPC_V3: None,
            EvidenceSource.RPC_V3_2: None,
        })
        claim = result.claim(ClaimType.OWNER)
        assert claim.status is ClaimStatus.UNAVAILABLE
        assert claim.confidence is Confidence.LOW
        assert claim.value is None
        assert result.tier is EvidenceTier.VIEW_ONLY

    def test_null_field_is_not_a_vote(self, make_surface):
        result = corroborate({
            EvidenceSource.RPC_V3: make_surface(supply_max="10"),
            EvidenceSource.RPC_V3_2: make_surface(supply_max=None),
        })
        assert result.claim(ClaimType.SUPPLY_MAX).status is ClaimStatus.PARTIAL

    def test_owner_case_insensitive(self, make_surface):
        result = corroborate({
            EvidenceSource.RPC_V3: make_surface(owner="0xABC"),
            EvidenceSource.RPC_V3_2: make_surface(owner="0xabc"),
        })
        assert result.claim(ClaimType.OWNER).status is ClaimStatus.CONFIRMED

    def test_three_way_conflict_pairs(self, make_surface):
        result = corroborate({
            EvidenceSource.RPC_V3: make_surface(supply_current="1"),
            EvidenceSource.RPC_V3_2: make_surface(supply_current="2"),
            EvidenceSource.INDEXER: make_surface(supply_current="1"),
        })
        supply = [d for d in result.discrepancies if d.claim_type is ClaimType.SUPPLY]
        assert len(supply) == 2
        assert {tuple(d.sources) for d in supply} == {
            (EvidenceSource.RPC_V3, EvidenceSource.RPC_V3_2),
            (EvidenceSource.RPC_V3_2, EvidenceSource.INDEXER),
        }

    def test_hash_conflict(self, make_surface):
        module_id = "0xb2::hooks"
        a = make_surface(hook_module_hashes=[ModuleHashPin(module_id=module_id, code_hash="aa")])
        b = make_surface(hook_module_hashes=[ModuleHashPin(module_id=module_id, code_hash="bb")])
        result = corroborate({EvidenceSource.RPC_V3: a, EvidenceSource.RPC_V3_2: b})
        assert result.claim(ClaimType.HOOK_MODULE_HASHES).status is ClaimStatus.CONFLICT


# ── Claim sets ───────────────────────────────────────────────────────────────


class TestTrackedClaims:
    def test_fa_claims_in_priority_order(self, make_surface):
        result = corroborate({EvidenceSource.RPC_V3: make_surface()}, TargetKind.FA)
        types = [c.claim_type for c in result.claims]
        assert types == sorted(types, key=CLAIM_PRIORITY.index)
        assert ClaimType.HOOKS in types
        assert ClaimType.DECIMALS not in types

    def test_coin_claims(self, make_surface):
        result = corroborate({EvidenceSource.RPC_V3: make_surface(decimals=8)}, TargetKind.COIN)
        types = {c.claim_type for c in result.claims}
        assert ClaimType.DECIMALS in types
        assert ClaimType.MODULE_HASHES in types
        assert ClaimType.HOOKS not in types

    def test_claims_rebuilt_each_call(self, make_surface):
        sources = {EvidenceSource.RPC_V3: make_surface()}
        first = corroborate(sources)
        second = corroborate(sources)
        assert first.claims == second.claims
        assert first.claims is not second.claims


# ── Claim values ─────────────────────────────────────────────────────────────


class TestClaimValue:
    def test_hooks_sorted_keys(self, hooked_surface):
        value = claim_value(hooked_surface, ClaimType.HOOKS)
        assert value == [hooked_surface.hook_modules[0].key]

    def test_abi_presence_map(self):
        surface = MiniSurface(abi_presence=[AbiPresence(module_id="0xAB::m", has_abi=True)])
        assert claim_value(surface, ClaimType.ABI_PRESENCE) == {"0xab::m": True}

    def test_missing_hooks_is_none(self):
        assert claim_value(MiniSurface(), ClaimType.HOOKS) is None


# ── Evidence tier ────────────────────────────────────────────────────────────


class TestEvidenceTier:
    def test_single_endpoint_view_only(self, make_surface):
        sources = {EvidenceSource.RPC_V3: make_surface(), EvidenceSource.RPC_V1: make_surface()}
        assert compute_evidence_tier(sources, has_conflict=False) is EvidenceTier.VIEW_ONLY

    def test_two_endpoints(self, make_surface):
        sources = {EvidenceSource.RPC_V3: make_surface(), EvidenceSource.RPC_V3_2: make_surface()}
        assert compute_evidence_tier(sources, has_conflict=False) is EvidenceTier.MULTI_RPC_CONFIRMED

    def test_v1_counts_as_primary(self, make_surface):
        sources = {EvidenceSource.RPC_V1: make_surface(), EvidenceSource.RPC_V3_2: make_surface()}
        assert compute_evidence_tier(sources, has_conflict=False) is EvidenceTier.MULTI_RPC_CONFIRMED

    def test_indexer_without_conflict(self, make_surface):
        sources = {
            EvidenceSource.RPC_V3: make_surface(),
            EvidenceSource.RPC_V3_2: make_surface(),
            EvidenceSource.INDEXER: make_surface(),
        }
        assert compute_evidence_tier(sources, has_conflict=False) is EvidenceTier.MULTI_SOURCE_CONFIRMED

    def test_indexer_with_conflict(self, make_surface):
        sources = {
            EvidenceSource.RPC_V3: make_surface(),
            EvidenceSource.RPC_V3_2: make_surface(),
            EvidenceSource.INDEXER: make_surface(),
        }
        assert compute_evidence_tier(sources, has_conflict=True) is EvidenceTier.MULTI_RPC_PLUS_INDEXER

    def test_indexer_alone_view_only(self, make_surface):
        sources = {EvidenceSource.RPC_V3: make_surface(), EvidenceSource.INDEXER: make_surface()}
        assert compute_evidence_tier(sources, has_conflict=False) is EvidenceTier.VIEW_ONLY

    def test_tier_ordering(self):
        assert EvidenceTier.VIEW_ONLY.rank < EvidenceTier.MULTI_RPC_CONFIRMED.rank
        assert EvidenceTier.MULTI_RPC_PLUS_INDEXER.rank < EvidenceTier.MULTI_SOURCE_CONFIRMED.rank
