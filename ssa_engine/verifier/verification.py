"""Multi-source verification pass for one FA or coin target.

    validate args ──► fan out providers (all settled) ──► corroborate
        ──► indexer parity ──► static rules over pinned modules
        ──► behavior sampling ──► risk synthesis ──► VerificationReport

A pass always returns a complete report.  Invalid input yields
``status=INVALID_ARGS`` / ``verdict=FAIL_InvalidArgs`` without any network
call; source failures only lower the evidence tier.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable

from ssa_engine.analyzer.artifact_view import build_artifact_view
from ssa_engine.analyzer.move.base_rule import RuleContext
from ssa_engine.analyzer.move.registry import RULESET_VERSION, run_rules
from ssa_engine.core.config import get_settings
from ssa_engine.core.errors import InvalidArgumentError
from ssa_engine.core.identifiers import parse_address, parse_coin_type, validate_rpc_url
from ssa_engine.core.types import (
    BehaviorEvidence,
    BehaviorStatus,
    EvidenceKind,
    EvidenceSource,
    EvidenceTier,
    Finding,
    FindingLocation,
    IndexerParityRecord,
    MiniSurface,
    ProviderResult,
    Severity,
    TargetKind,
    TargetRef,
    VerificationReport,
    VerificationStatus,
)
from ssa_engine.ingestion.indexer import SupraScanIndexer
from ssa_engine.ingestion.rpc_client import RpcOptions, SupraRpcClient
from ssa_engine.risk.synthesizer import derive_surface_flags, synthesize_risk
from ssa_engine.verifier.behavior import build_pinned_entry_map, sample_recent_behavior
from ssa_engine.verifier.corroboration import SOURCE_ORDER, compute_evidence_tier, corroborate
from ssa_engine.verifier.providers import (
    SourceOutcome,
    build_indexer_parity,
    coin_indexer_provider,
    coin_rpc_provider,
    fa_indexer_provider,
    fa_rpc_provider,
)
from ssa_engine.verifier.views import fetch_module_views

logger = logging.getLogger(__name__)

VERDICT_INVALID_ARGS = "FAIL_InvalidArgs"
VERDICT_UNSUPPORTED_KIND = "FAIL_UnsupportedTargetKind"
VERDICT_CORROBORATION = "FAIL_Corroboration"
UNSUPPORTED_TARGET_KIND = "unsupported_target_kind"


@dataclass
class VerifyOptions:
    """Knobs for one verification pass."""

    rpc_url: str = ""
    rpc_url_secondary: str | None = None
    with_indexer: bool = True
    tx_sample: bool = True
    tx_limit: int = 20
    probe_addresses: list[str] = field(default_factory=list)
    mode: str = "fast"
    rpc_options: RpcOptions | None = None

    @classmethod
    def from_settings(cls, **overrides: Any) -> "VerifyOptions":
        s = get_settings()
        values: dict[str, Any] = {
            "rpc_url": s.rpc_url,
            "rpc_url_secondary": s.rpc_url_secondary or None,
            "with_indexer": s.indexer_enabled,
            "tx_sample": s.tx_sample_enabled,
            "tx_limit": s.tx_sample_limit,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sort_results(results: list[ProviderResult]) -> list[ProviderResult]:
    order = {s: i for i, s in enumerate(SOURCE_ORDER)}
    return sorted(results, key=lambda r: order.get(r.source, len(order)))


def _attempted(options: VerifyOptions) -> list[EvidenceSource]:
    sources = [EvidenceSource.RPC_V3, EvidenceSource.RPC_V1]
    if options.rpc_url_secondary:
        sources.append(EvidenceSource.RPC_V3_2)
    if options.with_indexer:
        sources.append(EvidenceSource.INDEXER)
    return sources


def _failed_report(
    target: TargetRef,
    options: VerifyOptions,
    attempted: list[EvidenceSource],
    results: list[ProviderResult],
    verdict: str,
    error: str,
) -> VerificationReport:
    seen = {r.source for r in results}
    results = results + [
        ProviderResult(source=s, ok=False, error="skipped", hint="invalid arguments")
        for s in attempted if s not in seen
    ]
    return VerificationReport(
        target=target,
        timestamp_iso=_now_iso(),
        rpc_url=options.rpc_url,
        mode=options.mode,
        sources_attempted=attempted,
        provider_results=_sort_results(results),
        ruleset_version=RULESET_VERSION,
        status=VerificationStatus.INVALID_ARGS,
        verdict=verdict,
        error=error,
    )


# ── Findings ─────────────────────────────────────────────────────────────────


def behavior_findings(behavior: BehaviorEvidence | None) -> list[Finding]:
    """Confirmed-behavior findings; the only findings allowed to be critical."""
    if behavior is None or behavior.status is not BehaviorStatus.SAMPLED:
        return []
    findings: list[Finding] = []
    if behavior.phantom_entries:
        findings.append(Finding(
            id="BEHAVIOR-PHANTOM-001",
            title="Phantom entry points invoked on-chain",
            severity=Severity.CRITICAL,
            confidence=0.9,
            description=(
                f"{len(behavior.phantom_entries)} function(s) were invoked in recent transactions "
                "but are absent from the declared module interface."
            ),
            recommendation="Fetch and review the deployed bytecode of the invoked modules.",
            evidence_kind=EvidenceKind.METADATA,
            matched_patterns=[p.function_id for p in behavior.phantom_entries],
            locations=[FindingLocation(fn=p.function_id, note="Invoked but not declared") for p in behavior.phantom_entries],
        ))
    if behavior.opaque_active:
        findings.append(Finding(
            id="BEHAVIOR-OPAQUE-001",
            title="Opaque interface with on-chain activity",
            severity=Severity.MEDIUM,
            confidence=0.8,
            description=behavior.opaque_active_reason or "",
            recommendation="Obtain the module ABI or source to check what is being invoked.",
            evidence_kind=EvidenceKind.METADATA,
            matched_patterns=[e.function_id for e in behavior.invoked_entries[:20]],
        ))
    return findings


async def pinned_module_findings(
    outcome: SourceOutcome | None, client: SupraRpcClient | None = None,
) -> list[Finding]:
    """Run the Move ruleset over every pinned module the primary source fetched.

    Modules without ABI or bytecode are scanned view-only from whatever their
    view functions return; that needs ``client``.
    """
    if outcome is None or outcome.pins is None:
        return []
    findings: list[Finding] = []
    for module_id, artifact in sorted(outcome.pins.artifacts.items()):
        view = build_artifact_view(module_id, abi=artifact.abi, bytecode_hex=artifact.bytecode_hex)
        findings.extend(run_rules(RuleContext(artifact=view)))
    if client is None:
        return findings
    for module_id in outcome.pins.opaque:
        view_data = await fetch_module_views(client, module_id)
        view = build_artifact_view(module_id, view_results=view_data.results)
        findings.extend(run_rules(RuleContext(artifact=view, view_errors=view_data.errors)))
    return findings


# ── Verification ─────────────────────────────────────────────────────────────


async def _settle(tasks: dict[EvidenceSource, Awaitable[SourceOutcome]]) -> dict[EvidenceSource, SourceOutcome]:
    """Await all providers; an exception becomes a failed outcome, never a cancellation."""
    sources = list(tasks)
    settled = await asyncio.gather(*tasks.values(), return_exceptions=True)
    outcomes: dict[EvidenceSource, SourceOutcome] = {}
    for source, value in zip(sources, settled):
        if isinstance(value, BaseException):
            if not isinstance(value, Exception):
                raise value
            logger.warning("Provider %s raised: %s", source.value, value, extra={"source": source.value})
            outcomes[source] = SourceOutcome(source=source, error=str(value), hint="exception")
        else:
            outcomes[source] = value
    return outcomes


async def verify_target(
    kind: str | TargetKind,
    target_id: str,
    options: VerifyOptions | None = None,
    *,
    primary: SupraRpcClient | None = None,
    secondary: SupraRpcClient | None = None,
    indexer: SupraScanIndexer | None = None,
) -> VerificationReport:
    """Run one verification pass.

    Clients passed in are used as-is and left open; clients created here
    are closed before returning.
    """
    options = options or VerifyOptions.from_settings()
    started = time.monotonic()
    attempted = _attempted(options)

    try:
        target_kind = TargetKind(kind)
    except ValueError:
        return _failed_report(
            TargetRef(kind=TargetKind.FA, id=target_id), options, attempted, [],
            VERDICT_INVALID_ARGS, f"Unknown target kind: {kind!r}",
        )
    target = TargetRef(kind=target_kind, id=target_id)
    if target_kind is TargetKind.WALLET:
        return _failed_report(target, options, attempted, [], VERDICT_UNSUPPORTED_KIND, UNSUPPORTED_TARGET_KIND)

    results: list[ProviderResult] = []
    try:
        validate_rpc_url(options.rpc_url, "rpc")
    except InvalidArgumentError as exc:
        for source in (EvidenceSource.RPC_V3, EvidenceSource.RPC_V1):
            results.append(ProviderResult(
                source=source, ok=False, error="invalid rpc url",
                hint="rpc contains placeholder or malformed URL",
            ))
        return _failed_report(target, options, attempted, results, VERDICT_INVALID_ARGS, exc.message)
    if options.rpc_url_secondary:
        try:
            validate_rpc_url(options.rpc_url_secondary, "rpc2")
        except InvalidArgumentError as exc:
            results.append(ProviderResult(
                source=EvidenceSource.RPC_V3_2, ok=False, error="invalid rpc url",
                hint="rpc2 contains placeholder or malformed URL",
            ))
            return _failed_report(target, options, attempted, results, VERDICT_INVALID_ARGS, exc.message)

    try:
        if target_kind is TargetKind.FA:
            fa_address = parse_address(target_id)
            coin = None
        else:
            coin = parse_coin_type(target_id)
            fa_address = None
    except InvalidArgumentError as exc:
        return _failed_report(target, options, attempted, [], VERDICT_INVALID_ARGS, exc.message)

    owned: list[Any] = []
    rpc_options = options.rpc_options or RpcOptions.from_settings()
    if primary is None:
        primary = SupraRpcClient(options.rpc_url, rpc_options)
        owned.append(primary)
    if secondary is None and options.rpc_url_secondary:
        secondary = SupraRpcClient(options.rpc_url_secondary, rpc_options)
        owned.append(secondary)
    if indexer is None and options.with_indexer:
        indexer = SupraScanIndexer(timeout=rpc_options.timeout, retries=rpc_options.retries)
        owned.append(indexer)

    try:
        tasks: dict[EvidenceSource, Awaitable[SourceOutcome]] = {}
        if fa_address is not None:
            tasks[EvidenceSource.RPC_V3] = fa_rpc_provider(primary, fa_address, EvidenceSource.RPC_V3)
            tasks[EvidenceSource.RPC_V1] = fa_rpc_provider(primary, fa_address, EvidenceSource.RPC_V1, api="v1")
            if secondary is not None:
                tasks[EvidenceSource.RPC_V3_2] = fa_rpc_provider(secondary, fa_address, EvidenceSource.RPC_V3_2)
            if options.with_indexer and indexer is not None:
                tasks[EvidenceSource.INDEXER] = fa_indexer_provider(indexer, fa_address)
        else:
            tasks[EvidenceSource.RPC_V3] = coin_rpc_provider(primary, coin, EvidenceSource.RPC_V3)
            tasks[EvidenceSource.RPC_V1] = coin_rpc_provider(primary, coin, EvidenceSource.RPC_V1, api="v1")
            if secondary is not None:
                tasks[EvidenceSource.RPC_V3_2] = coin_rpc_provider(secondary, coin, EvidenceSource.RPC_V3_2)
            if options.with_indexer and indexer is not None:
                tasks[EvidenceSource.INDEXER] = coin_indexer_provider(indexer, coin)

        outcomes = await _settle(tasks)
        surfaces: dict[EvidenceSource, MiniSurface | None] = {s: o.surface for s, o in outcomes.items()}
        corroboration = corroborate(surfaces, kind=target_kind)

        primary_outcome = next(
            (outcomes[s] for s in (EvidenceSource.RPC_V3, EvidenceSource.RPC_V1, EvidenceSource.RPC_V3_2)
             if s in outcomes and outcomes[s].ok),
            None,
        )
        primary_surface = primary_outcome.surface if primary_outcome else None

        parity = build_indexer_parity(
            options.with_indexer, primary_surface, outcomes.get(EvidenceSource.INDEXER),
        )
        tier = _adjust_tier(corroboration.tier, surfaces, parity, corroboration.has_conflict)

        findings = list(primary_outcome.findings) if primary_outcome else []
        view_client = primary
        if primary_outcome is not None and primary_outcome.source is EvidenceSource.RPC_V3_2:
            view_client = secondary
        findings.extend(await pinned_module_findings(primary_outcome, view_client))

        behavior: BehaviorEvidence | None = None
        if options.tx_sample:
            behavior = await _sample_behavior(primary, primary_outcome, fa_address, coin, options)
            findings.extend(behavior_findings(behavior))

        flags = derive_surface_flags(
            primary_surface, primary_outcome.pins.abis if primary_outcome and primary_outcome.pins else None,
            findings,
        )
        risk = synthesize_risk(
            corroboration.claims, findings, behavior, flags, parity, tier,
        )
    finally:
        for client in owned:
            await client.close()

    report = VerificationReport(
        target=target,
        timestamp_iso=_now_iso(),
        rpc_url=options.rpc_url,
        mode=options.mode,
        sources_attempted=attempted,
        sources_succeeded=[s for s in SOURCE_ORDER if s in outcomes and outcomes[s].ok],
        provider_results=_sort_results([o.to_result() for o in outcomes.values()]),
        claims=corroboration.claims,
        overall_evidence_tier=tier,
        discrepancies=corroboration.discrepancies,
        indexer_parity=parity,
        behavior=behavior,
        findings=findings,
        ruleset_version=RULESET_VERSION,
        risk=risk,
        status=corroboration.status,
        verdict=VERDICT_CORROBORATION if corroboration.has_conflict else None,
    )
    logger.info(
        "Verified %s %s: tier=%s status=%s risk=%s",
        target_kind.value, target_id, tier.value, report.status.value, risk.risk_level.value,
        extra={"target": target_id, "duration_ms": int((time.monotonic() - started) * 1000)},
    )
    return report


def _adjust_tier(
    tier: EvidenceTier,
    surfaces: dict[EvidenceSource, MiniSurface | None],
    parity: IndexerParityRecord,
    has_conflict: bool,
) -> EvidenceTier:
    """Do not credit an indexer whose data matched nothing."""
    if parity.evidence_tier_impact == "multi_rpc" and EvidenceSource.INDEXER in surfaces:
        without = {s: v for s, v in surfaces.items() if s is not EvidenceSource.INDEXER}
        return compute_evidence_tier(without, has_conflict)
    return tier


async def _sample_behavior(
    client: SupraRpcClient,
    outcome: SourceOutcome | None,
    fa_address: str | None,
    coin: Any,
    options: VerifyOptions,
) -> BehaviorEvidence:
    surface = outcome.surface if outcome else None
    pins = outcome.pins if outcome else None
    hooks = (surface.hook_modules or []) if surface else []

    pinned = build_pinned_entry_map(
        pins.abi_presence if pins else [], hooks, pins.abis if pins else None,
    )
    presence = pins.abi_presence if pins else []
    has_opaque_abi = bool(presence) and all(
        not p.has_abi or (p.entry_fns == 0 and p.exposed_fns == 0) for p in presence
    )

    addresses: list[str | None] = []
    if fa_address is not None:
        addresses.append(surface.owner if surface else None)
        addresses.extend(h.module_address for h in hooks)
        addresses.append(fa_address)
    else:
        addresses.append(coin.publisher_address)

    try:
        return await sample_recent_behavior(
            client,
            addresses,
            pinned,
            has_opaque_abi=has_opaque_abi,
            limit=options.tx_limit,
            probe_addresses=options.probe_addresses,
        )
    except Exception as exc:
        logger.exception("Behavior sampling failed")
        return BehaviorEvidence(
            status=BehaviorStatus.UNAVAILABLE,
            sampled_at=_now_iso(),
            error=f"Behavior sampling failed: {exc}",
        )
