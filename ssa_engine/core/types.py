"""Shared enums and types used across the engine."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class TargetKind(str, enum.Enum):
    """Kind of on-chain target."""

    FA = "fa"
    COIN = "coin"
    WALLET = "wallet"


class Severity(str, enum.Enum):
    """Finding severity level."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class EvidenceKind(str, enum.Enum):
    """Evidentiary basis a finding was derived from."""

    BYTECODE_PATTERN = "bytecode_pattern"
    ABI_PATTERN = "abi_pattern"
    METADATA = "metadata"
    HEURISTIC = "heuristic"


class EvidenceSource(str, enum.Enum):
    """Independent source a mini-surface was collected from."""

    RPC_V3 = "rpc_v3"
    RPC_V1 = "rpc_v1"
    RPC_V3_2 = "rpc_v3_2"
    INDEXER = "suprascan"


class ClaimType(str, enum.Enum):
    OWNER = "OWNER"
    SUPPLY = "SUPPLY"
    SUPPLY_MAX = "SUPPLY_MAX"
    DECIMALS = "DECIMALS"
    HOOKS = "HOOKS"
    CAPS = "CAPS"
    ABI_PRESENCE = "ABI_PRESENCE"
    HOOK_MODULE_HASHES = "HOOK_MODULE_HASHES"
    MODULE_HASHES = "MODULE_HASHES"


class ClaimStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    CONFLICT = "CONFLICT"
    PARTIAL = "PARTIAL"
    UNAVAILABLE = "UNAVAILABLE"


class Confidence(str, enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class EvidenceTier(str, enum.Enum):
    """Ordinal measure of independent corroboration."""

    VIEW_ONLY = "view_only"
    MULTI_RPC_CONFIRMED = "multi_rpc_confirmed"
    MULTI_RPC_PLUS_INDEXER = "multi_rpc_plus_indexer"
    MULTI_SOURCE_CONFIRMED = "multi_source_confirmed"

    @property
    def rank(self) -> int:
        return list(EvidenceTier).index(self)

    @property
    def is_multi_rpc(self) -> bool:
        return self is not EvidenceTier.VIEW_ONLY


class VerificationStatus(str, enum.Enum):
    OK = "OK"
    CONFLICT = "CONFLICT"
    INVALID_ARGS = "INVALID_ARGS"


class IndexerParityStatus(str, enum.Enum):
    SUPPORTED = "supported"
    PARTIAL = "partial"
    UNSUPPORTED = "unsupported"
    UNSUPPORTED_SCHEMA = "unsupported_schema"
    ERROR = "error"
    NOT_REQUESTED = "not_requested"


class BehaviorStatus(str, enum.Enum):
    SAMPLED = "sampled"
    OK_EMPTY = "ok_empty"
    UNAVAILABLE = "unavailable"
    NO_ACTIVITY = "no_activity"
    ERROR = "error"


class RiskSignal(str, enum.Enum):
    """Stable signal identifiers emitted by the risk synthesizer."""

    HASH_PINNED = "HASH_PINNED"
    HASH_CONFLICT = "HASH_CONFLICT"
    HASH_UNAVAILABLE = "HASH_UNAVAILABLE"
    INDEXER_CORROBORATED = "INDEXER_CORROBORATED"
    INDEXER_CONFLICT = "INDEXER_CONFLICT"
    INDEXER_UNSUPPORTED = "INDEXER_UNSUPPORTED"
    INDEXER_NOT_REQUESTED = "INDEXER_NOT_REQUESTED"
    BEHAVIOR_MATCHED = "BEHAVIOR_MATCHED"
    BEHAVIOR_NO_ACTIVITY = "BEHAVIOR_NO_ACTIVITY"
    BEHAVIOR_UNAVAILABLE = "BEHAVIOR_UNAVAILABLE"
    ABI_OPAQUE = "ABI_OPAQUE"
    ABI_OPAQUE_ACTIVE = "ABI_OPAQUE_ACTIVE"
    PHANTOM_ENTRYPOINTS = "PHANTOM_ENTRYPOINTS"
    HOOK_CONTROLLED = "HOOK_CONTROLLED"
    PRIVILEGE_UNVERIFIED = "PRIVILEGE_UNVERIFIED"
    MULTI_RPC_CONFIRMED = "MULTI_RPC_CONFIRMED"
    MULTI_RPC_CONFLICT = "MULTI_RPC_CONFLICT"
    SUPPLY_CONFLICT = "SUPPLY_CONFLICT"
    OWNER_CONFLICT = "OWNER_CONFLICT"
    CAPS_CONFLICT = "CAPS_CONFLICT"
    MINT_REACHABLE = "MINT_REACHABLE"
    BURN_REACHABLE = "BURN_REACHABLE"
    ADMIN_REACHABLE = "ADMIN_REACHABLE"


class RiskLevel(str, enum.Enum):
    """Discrete risk verdict, ordered from safest to most dangerous."""

    SAFE_STATIC = "SAFE_STATIC"
    SAFE_DYNAMIC = "SAFE_DYNAMIC"
    OPAQUE_BUT_ACTIVE = "OPAQUE_BUT_ACTIVE"
    ELEVATED_RISK = "ELEVATED_RISK"
    DANGEROUS = "DANGEROUS"


class DriftClass(str, enum.Enum):
    """Outcome of one ping cycle for a monitored target."""

    BASELINE = "baseline"
    STABLE = "stable"
    CHANGED = "changed"


# ── Findings ─────────────────────────────────────────────────────────────────


class FindingLocation(BaseModel):
    """Function a finding points at."""

    fn: str
    note: str = ""


class Finding(BaseModel):
    """Finding produced by a rule, an extractor or behavior evidence."""

    id: str
    title: str
    severity: Severity
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    description: str = ""
    recommendation: str = ""
    evidence_kind: EvidenceKind = EvidenceKind.HEURISTIC
    matched_patterns: list[str] = Field(default_factory=list)
    locations: list[FindingLocation] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)


# ── Evidence schemas ─────────────────────────────────────────────────────────


class HookModule(BaseModel):
    """Dispatch hook target declared by an FA."""

    module_address: str
    module_name: str
    function_name: str

    @property
    def key(self) -> str:
        return f"{self.module_address}::{self.module_name}::{self.function_name}"


class ModuleHashPin(BaseModel):
    """Code hash pinned for one module."""

    module_id: str
    code_hash: str | None = None
    hash_basis: str = "none"  # bytecode, abi, none
    fetched_from: str = "unknown"
    role: str = ""


class AbiPresence(BaseModel):
    module_id: str
    has_abi: bool = False
    entry_fns: int = 0
    exposed_fns: int = 0


class MiniSurface(BaseModel):
    """Minimal single-source capability snapshot used for cross-source comparison."""

    owner: str | None = None
    supply_current: str | None = None
    supply_max: str | None = None
    decimals: int | None = None
    hook_modules: list[HookModule] | None = None
    capabilities: dict[str, bool] | None = None
    abi_presence: list[AbiPresence] | None = None
    hook_module_hashes: list[ModuleHashPin] | None = None
    module_hashes: list[ModuleHashPin] | None = None
    resource_types: list[str] = Field(default_factory=list)


class ClaimConfirmation(BaseModel):
    source: EvidenceSource
    ok: bool = True
    value: Any = None
    raw_hint: str = ""


class Claim(BaseModel):
    claim_type: ClaimType
    status: ClaimStatus
    confidence: Confidence
    value: Any = None
    confirmations: list[ClaimConfirmation] = Field(default_factory=list)


class Discrepancy(BaseModel):
    claim_type: ClaimType
    sources: list[EvidenceSource]
    values: dict[str, Any] = Field(default_factory=dict)
    detail: str = ""


class ProviderResult(BaseModel):
    source: EvidenceSource
    ok: bool
    error: str | None = None
    hint: str | None = None


class ParityMismatch(BaseModel):
    field: str
    rpc_value: Any = None
    indexer_value: Any = None
    reason: str = ""


class IndexerParityRecord(BaseModel):
    """Explains whether and how the indexer corroborated RPC evidence."""

    status: IndexerParityStatus
    reason: str = ""
    fields_compared: list[str] = Field(default_factory=list)
    evidence_tier_impact: str = "multi_rpc"
    details: dict[str, str] = Field(default_factory=dict)
    mismatches: list[ParityMismatch] = Field(default_factory=list)


class InvokedEntry(BaseModel):
    """Entry function observed in a sampled transaction."""

    function_id: str
    module_id: str
    function_name: str


class BehaviorEvidence(BaseModel):
    """Recent on-chain activity compared against the declared interface."""

    status: BehaviorStatus
    tx_count: int = 0
    invoked_entries: list[InvokedEntry] = Field(default_factory=list)
    phantom_entries: list[InvokedEntry] = Field(default_factory=list)
    opaque_active: bool = False
    opaque_active_reason: str | None = None
    source: str = "rpc"
    sampled_at: str = ""
    sampled_addresses: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


class SurfaceFlags(BaseModel):
    """Static reachability flags derived from the capability surface."""

    has_opaque_abi: bool = False
    hook_controlled: bool = False
    mint_reachable: bool = False
    burn_reachable: bool = False
    admin_reachable: bool = False
    privilege_unverified: bool = False


class RiskSynthesis(BaseModel):
    signals: list[RiskSignal] = Field(default_factory=list)
    risk_level: RiskLevel
    rationale: list[str] = Field(default_factory=list)


class TargetRef(BaseModel):
    kind: TargetKind
    id: str


class VerificationReport(BaseModel):
    """Unit of output for one verification pass."""

    target: TargetRef
    timestamp_iso: str
    rpc_url: str
    mode: str = "fast"
    sources_attempted: list[EvidenceSource] = Field(default_factory=list)
    sources_succeeded: list[EvidenceSource] = Field(default_factory=list)
    provider_results: list[ProviderResult] = Field(default_factory=list)
    claims: list[Claim] = Field(default_factory=list)
    overall_evidence_tier: EvidenceTier = EvidenceTier.VIEW_ONLY
    discrepancies: list[Discrepancy] = Field(default_factory=list)
    indexer_parity: IndexerParityRecord | None = None
    behavior: BehaviorEvidence | None = None
    findings: list[Finding] = Field(default_factory=list)
    ruleset_version: str = ""
    risk: RiskSynthesis | None = None
    status: VerificationStatus = VerificationStatus.OK
    verdict: str | None = None
    error: str | None = None


# ── Drift schemas ────────────────────────────────────────────────────────────


class SnapshotMeta(BaseModel):
    ts: str
    rpc: str
    rpc2: str | None = None
    version: str = "1.0"
    kind: TargetKind


class PingSnapshot(BaseModel):
    """Cheap fingerprint of a target's drift keys."""

    meta: SnapshotMeta
    identity: TargetRef
    drift_keys: dict[str, Any]
    fingerprint: str


class DriftChange(BaseModel):
    field: str
    type: str  # added, removed, modified
    before: Any = None
    after: Any = None
    delta: str | None = None
    change_type: str | None = None
    severity: Severity | None = None


class DriftDiff(BaseModel):
    changed: bool
    changes: list[DriftChange] = Field(default_factory=list)
    prev_fingerprint: str | None = None
    curr_fingerprint: str
