"""Per-source providers: fetch one source and reduce it to a MiniSurface.

Each provider returns a :class:`SourceOutcome` and never raises for
transport or shape failures; the surface is ``None`` and the error is kept
for the report's provider results.

    rpc_v3     primary endpoint, v3 API (v2 fallback)
    rpc_v1     primary endpoint, v1 API
    rpc_v3_2   secondary endpoint, v3 API
    suprascan  GraphQL indexer
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ssa_engine.analyzer.resources import (
    CoinCapabilities,
    FaCapabilities,
    ResourceAnalysis,
    analyze_coin_resources,
    analyze_fa_resources,
)
from ssa_engine.core.errors import RpcTransportError
from ssa_engine.core.identifiers import CoinType, decimal_to_base_units, normalize_address
from ssa_engine.core.types import (
    EvidenceSource,
    Finding,
    HookModule,
    IndexerParityRecord,
    IndexerParityStatus,
    MiniSurface,
    ParityMismatch,
    ProviderResult,
)
from ssa_engine.ingestion.indexer import IndexerSchemaError, SupraScanIndexer
from ssa_engine.ingestion.rpc_client import SupraRpcClient
from ssa_engine.verifier.pins import ModulePins, pin_coin_module, pin_hook_modules

logger = logging.getLogger(__name__)


@dataclass
class SourceOutcome:
    """What one provider produced."""

    source: EvidenceSource
    surface: MiniSurface | None = None
    error: str | None = None
    hint: str | None = None
    pins: ModulePins | None = None
    findings: list[Finding] = field(default_factory=list)
    indexer_status: IndexerParityStatus | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.surface is not None

    def to_result(self) -> ProviderResult:
        return ProviderResult(source=self.source, ok=self.ok, error=self.error, hint=self.hint)


def _error_text(exc: Exception) -> str:
    text = exc.message if isinstance(exc, RpcTransportError) else str(exc)
    return "timeout" if "timeout" in text.lower() else text


def _owner(value: str | None) -> str | None:
    # Coin owner/admin may be a presence marker rather than an address.
    if value and value.strip().lower().startswith("0x"):
        return normalize_address(value)
    return None


def _sorted_hooks(hooks: list[HookModule]) -> list[HookModule]:
    normalized = {
        h.key: h
        for h in (
            HookModule(
                module_address=normalize_address(h.module_address) or h.module_address,
                module_name=h.module_name,
                function_name=h.function_name,
            )
            for h in hooks
        )
    }
    return [normalized[k] for k in sorted(normalized)]


# ── Surfaces ─────────────────────────────────────────────────────────────────


def fa_surface(analysis: ResourceAnalysis, pins: ModulePins | None = None) -> MiniSurface:
    caps: FaCapabilities = analysis.caps  # type: ignore[assignment]
    return MiniSurface(
        owner=normalize_address(caps.owner),
        supply_current=caps.supply_current,
        supply_max=caps.supply_max,
        hook_modules=_sorted_hooks(caps.hook_modules),
        capabilities=caps.capability_flags(),
        abi_presence=pins.abi_presence if pins else None,
        hook_module_hashes=pins.pins if pins else None,
        resource_types=analysis.resource_types,
    )


def coin_surface(analysis: ResourceAnalysis, pins: ModulePins | None = None) -> MiniSurface:
    caps: CoinCapabilities = analysis.caps  # type: ignore[assignment]
    return MiniSurface(
        owner=_owner(caps.owner) or _owner(caps.admin),
        supply_current=caps.supply_current,
        supply_max=caps.supply_max,
        decimals=caps.decimals,
        capabilities=caps.capability_flags(),
        abi_presence=pins.abi_presence if pins else None,
        module_hashes=pins.pins if pins else None,
        resource_types=analysis.resource_types,
    )


# ── RPC providers ────────────────────────────────────────────────────────────


async def _rpc_resources(client: SupraRpcClient, address: str, api: str) -> list[dict[str, Any]]:
    if api == "v1":
        return await client.get_resources_v1(address)
    return await client.get_resources(address)


async def fa_rpc_provider(
    client: SupraRpcClient, fa_address: str, source: EvidenceSource, api: str = "v3",
) -> SourceOutcome:
    """FA object resources from one RPC endpoint, with hook-module pins."""
    label = f"RPC {api} resources"
    try:
        resources = await _rpc_resources(client, fa_address, api)
    except RpcTransportError as exc:
        logger.info("FA resources fetch failed", extra={"target": fa_address, "source": source.value})
        return SourceOutcome(source=source, error=_error_text(exc), hint=f"{label} fetch failed")
    if not resources:
        return SourceOutcome(source=source, error="empty response", hint=f"RPC {api} returned no resources")

    analysis = analyze_fa_resources(resources)
    pins = await pin_hook_modules(client, analysis.caps.hook_modules, api=api)
    return SourceOutcome(
        source=source,
        surface=fa_surface(analysis, pins),
        hint=label,
        pins=pins,
        findings=analysis.findings,
    )


async def coin_rpc_provider(
    client: SupraRpcClient, coin: CoinType, source: EvidenceSource, api: str = "v3",
) -> SourceOutcome:
    """Coin publisher resources from one RPC endpoint, with the coin-defining module pin."""
    label = f"RPC {api} resources"
    try:
        resources = await _rpc_resources(client, coin.publisher_address, api)
    except RpcTransportError as exc:
        logger.info("Coin resources fetch failed", extra={"target": str(coin), "source": source.value})
        return SourceOutcome(source=source, error=_error_text(exc), hint=f"{label} fetch failed")
    if not resources:
        return SourceOutcome(source=source, error="empty response", hint=f"RPC {api} returned no resources")

    analysis = analyze_coin_resources(resources, struct_name=coin.struct_name)
    pins = await pin_coin_module(client, coin, api=api)
    return SourceOutcome(
        source=source,
        surface=coin_surface(analysis, pins),
        hint=label,
        pins=pins,
        findings=analysis.findings,
    )


# ── Indexer providers ────────────────────────────────────────────────────────


async def fa_indexer_provider(indexer: SupraScanIndexer, fa_address: str) -> SourceOutcome:
    """FA evidence from the indexer: ``getFaDetails`` plus ``addressDetail`` resources.

    ``supported`` when resources parsed, ``partial`` when only the FA
    summary answered, ``unsupported`` when neither carried owner or supply.
    """
    source = EvidenceSource.INDEXER
    errors: list[Exception] = []

    details: dict[str, Any] | None = None
    try:
        details = await indexer.get_fa_details(fa_address)
    except (RpcTransportError, IndexerSchemaError) as exc:
        errors.append(exc)

    analysis: ResourceAnalysis | None = None
    try:
        resources = await indexer.get_resources(fa_address)
        if resources:
            analysis = analyze_fa_resources(resources)
    except (RpcTransportError, IndexerSchemaError) as exc:
        errors.append(exc)

    if details is None and analysis is None:
        if errors and all(isinstance(e, IndexerSchemaError) for e in errors):
            status = IndexerParityStatus.UNSUPPORTED_SCHEMA
        elif errors:
            status = IndexerParityStatus.ERROR
        else:
            status = IndexerParityStatus.UNSUPPORTED
        error = "; ".join(_error_text(e) for e in errors) or "unsupported"
        return SourceOutcome(source=source, error=error, hint="SupraScan FA provider", indexer_status=status)

    decimals = _int_or_none((details or {}).get("decimals"))
    summary_supply = decimal_to_base_units((details or {}).get("totalSupply"), decimals)
    if analysis is not None and (analysis.caps.owner or analysis.caps.supply_current):
        surface = fa_surface(analysis)
        surface.supply_current = surface.supply_current or summary_supply
        surface.decimals = decimals
        status, hint = IndexerParityStatus.SUPPORTED, "getFaDetails + addressDetail"
    elif summary_supply:
        surface = MiniSurface(supply_current=summary_supply, decimals=decimals)
        status, hint = IndexerParityStatus.PARTIAL, "getFaDetails"
    else:
        return SourceOutcome(
            source=source, error="unsupported", hint="indexer returned no owner or supply",
            indexer_status=IndexerParityStatus.UNSUPPORTED,
        )

    extra: dict[str, Any] = {}
    if details:
        extra = {
            k: details[k] for k in ("faName", "faSymbol", "verified", "holders", "creatorAddress")
            if details.get(k) is not None
        }
    return SourceOutcome(source=source, surface=surface, hint=hint, indexer_status=status, details=extra)


async def coin_indexer_provider(indexer: SupraScanIndexer, coin: CoinType) -> SourceOutcome:
    """Coin evidence from the publisher's resources as the indexer holds them."""
    source = EvidenceSource.INDEXER
    try:
        resources = await indexer.get_resources(coin.publisher_address)
    except IndexerSchemaError as exc:
        return SourceOutcome(
            source=source, error=str(exc), hint="addressDetail query",
            indexer_status=IndexerParityStatus.UNSUPPORTED_SCHEMA,
        )
    except RpcTransportError as exc:
        return SourceOutcome(
            source=source, error=_error_text(exc), hint="SupraScan GraphQL fetch failed",
            indexer_status=IndexerParityStatus.ERROR,
        )
    if not resources:
        return SourceOutcome(
            source=source, error="indexer returned no resources", hint="addressDetail resources",
            indexer_status=IndexerParityStatus.UNSUPPORTED,
        )
    analysis = analyze_coin_resources(resources, struct_name=coin.struct_name)
    return SourceOutcome(
        source=source,
        surface=coin_surface(analysis),
        hint="addressDetail resources",
        indexer_status=IndexerParityStatus.SUPPORTED,
    )


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


# ── Indexer parity ───────────────────────────────────────────────────────────


def _compare(
    field_name: str, rpc_value: Any, indexer_value: Any, mismatches: list[ParityMismatch],
) -> str:
    if rpc_value is None and indexer_value is None:
        return "insufficient"
    if indexer_value is None:
        return "unsupported"
    if rpc_value is None:
        return "insufficient"
    if rpc_value == indexer_value:
        return "match"
    mismatches.append(ParityMismatch(
        field=field_name,
        rpc_value=rpc_value,
        indexer_value=indexer_value,
        reason=f"{field_name} mismatch: RPC={rpc_value}, indexer={indexer_value}",
    ))
    return "mismatch"


def build_indexer_parity(
    requested: bool,
    primary: MiniSurface | None,
    outcome: SourceOutcome | None,
) -> IndexerParityRecord:
    """Explain whether and how the indexer corroborated the primary RPC surface."""
    not_applicable = {"owner_parity": "n/a", "supply_parity": "n/a", "hooks_parity": "n/a"}
    if not requested or outcome is None:
        return IndexerParityRecord(
            status=IndexerParityStatus.NOT_REQUESTED,
            reason="Indexer was not requested. Enable it to add indexer parity checks.",
            details=not_applicable,
        )
    if outcome.surface is None:
        status = outcome.indexer_status or IndexerParityStatus.ERROR
        if status is IndexerParityStatus.UNSUPPORTED_SCHEMA:
            reason = f"Indexer schema mismatch: {outcome.error}. Evidence tier limited to multi_rpc."
        elif status is IndexerParityStatus.UNSUPPORTED:
            reason = f"Indexer does not support this target: {outcome.error}. Evidence tier limited to multi_rpc."
        else:
            reason = f"Indexer query failed: {outcome.error}. Evidence tier limited to multi_rpc."
        return IndexerParityRecord(status=status, reason=reason, details=not_applicable)

    indexer = outcome.surface
    mismatches: list[ParityMismatch] = []
    details = {
        "owner_parity": _compare("owner", primary.owner if primary else None, indexer.owner, mismatches),
        "supply_parity": _compare(
            "supply", primary.supply_current if primary else None, indexer.supply_current, mismatches,
        ),
        "hooks_parity": _compare(
            "hooks",
            sorted(h.key for h in primary.hook_modules) if primary and primary.hook_modules is not None else None,
            sorted(h.key for h in indexer.hook_modules) if indexer.hook_modules is not None else None,
            mismatches,
        ),
    }
    compared = [k.removesuffix("_parity") for k, v in details.items() if v in ("match", "mismatch")]
    any_match = any(v == "match" for v in details.values())
    status = outcome.indexer_status or IndexerParityStatus.SUPPORTED
    reason = (
        "Indexer returned partial evidence (supply only); owner and hooks not available."
        if status is IndexerParityStatus.PARTIAL
        else "Indexer returned data for corroboration."
    )
    return IndexerParityRecord(
        status=status,
        reason=reason,
        fields_compared=compared,
        evidence_tier_impact="multi_rpc_plus_indexer" if any_match else "multi_rpc",
        details=details,
        mismatches=mismatches,
    )
