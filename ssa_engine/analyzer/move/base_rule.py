"""Base rule class: all Move heuristic rules inherit from this."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Iterable

from ssa_engine.analyzer.artifact_view import ArtifactView
from ssa_engine.analyzer.move.safe_exceptions import SafeExceptions
from ssa_engine.core.types import EvidenceKind, Finding, FindingLocation, Severity

VIEW_ONLY_NOTE = " Note: View-only scan; cannot verify access control without ABI/bytecode."


@dataclass(frozen=True)
class EvidenceCapabilities:
    """What evidence a scan actually has; every rule consults it before picking severity."""

    view_only: bool = False
    has_abi: bool = False
    has_bytecode_or_source: bool = False
    artifact_mode: str = "view_only"

    @classmethod
    def from_artifact(cls, artifact: ArtifactView) -> "EvidenceCapabilities":
        mode = artifact.artifact_mode
        return cls(
            view_only=mode == "view_only",
            has_abi=artifact.abi is not None,
            has_bytecode_or_source=artifact.has_bytecode or artifact.has_source,
            artifact_mode=mode,
        )


# View functions a view-only scan calls on a module with no published artifact.
REQUIRED_VIEWS = ("pool_stats", "total_staked")
OPTIONAL_VIEWS: tuple[str, ...] = ()


@dataclass
class ViewError:
    """A view function that could not be called during a view-based scan."""

    view_name: str
    function_id: str
    error: str
    type: str = "error"  # error, skipped, unsupported


@dataclass
class RuleContext:
    """Context passed to every rule."""

    artifact: ArtifactView
    capabilities: EvidenceCapabilities | None = None
    safe_exceptions: SafeExceptions = field(default_factory=SafeExceptions.from_settings)
    view_errors: list[ViewError] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.capabilities is None:
            self.capabilities = EvidenceCapabilities.from_artifact(self.artifact)

    # ── Helper accessors ─────────────────────────────────────────────────

    @property
    def caps(self) -> EvidenceCapabilities:
        assert self.capabilities is not None
        return self.capabilities

    def strings_contain(self, keywords: Iterable[str]) -> bool:
        """True if any scraped string contains any keyword (case-insensitive)."""
        kws = tuple(keywords)
        return any(kw in s.lower() for s in self.artifact.strings for kw in kws)

    def function_names_contain(self, keywords: Iterable[str]) -> bool:
        kws = tuple(keywords)
        return any(kw in fn.lower() for fn in self.artifact.function_names for kw in kws)

    def matched_in_strings(self, keywords: Iterable[str]) -> list[str]:
        lowered = [s.lower() for s in self.artifact.strings]
        return [kw for kw in keywords if any(kw in s for s in lowered)]

    def abi_function(self, name: str) -> dict[str, Any] | None:
        if not self.caps.has_abi or self.artifact.abi is None:
            return None
        return find_function_in_abi(self.artifact.abi, name)


def find_function_in_abi(abi: Any, function_name: str) -> dict[str, Any] | None:
    """Look a function up in ``functions``, ``entry_functions``, a bare list, or ``exposed_functions``."""
    candidates: list[Any] = []
    if isinstance(abi, list):
        candidates = abi
    elif isinstance(abi, dict):
        for key in ("functions", "entry_functions", "exposed_functions"):
            if isinstance(abi.get(key), list):
                candidates.extend(abi[key])
    for fn in candidates:
        if isinstance(fn, dict) and fn.get("name") == function_name:
            return fn
    return None


def has_signer_parameter(fn_def: dict[str, Any]) -> bool:
    params = fn_def.get("params")
    if not isinstance(params, list):
        return False
    for p in params:
        if isinstance(p, dict) and p.get("type") in ("&signer", "&mut signer"):
            return True
        if isinstance(p, str) and "signer" in p:
            return True
    return False


class BaseRule(abc.ABC):
    """Abstract base class for Move heuristic rules.

    Rule metadata:
        - RULE_ID: Stable identifier (e.g., "SVSSA-MOVE-001")
        - NAME: Human-readable rule name
        - DESCRIPTION: What the rule looks for
        - SEVERITY: Default severity level
        - CATEGORY: High-level category for grouping
        - CONFIDENCE: Default confidence score (0.0 to 1.0)
    """

    RULE_ID: str = ""
    NAME: str = ""
    DESCRIPTION: str = ""
    SEVERITY: Severity = Severity.MEDIUM
    CATEGORY: str = ""
    CONFIDENCE: float = 0.5

    @abc.abstractmethod
    def detect(self, ctx: RuleContext) -> list[Finding]:
        """Run the rule against the given context. Empty list if nothing matched."""
        ...

    def _make_finding(
        self,
        title: str,
        description: str,
        *,
        severity: Severity | None = None,
        confidence: float | None = None,
        evidence_kind: EvidenceKind = EvidenceKind.HEURISTIC,
        matched: list[str] | None = None,
        locations: list[tuple[str, str]] | None = None,
        recommendation: str = "",
        finding_id: str | None = None,
    ) -> Finding:
        return Finding(
            id=finding_id or self.RULE_ID,
            title=title,
            severity=severity or self.SEVERITY,
            confidence=confidence if confidence is not None else self.CONFIDENCE,
            description=description,
            recommendation=recommendation,
            evidence_kind=evidence_kind,
            matched_patterns=matched or [],
            locations=[FindingLocation(fn=fn, note=note) for fn, note in (locations or [])],
        )

    def _evidence_tiered(
        self, ctx: RuleContext, *, abi: tuple[Severity, float], code: tuple[Severity, float],
    ) -> tuple[Severity, float, EvidenceKind]:
        """Severity/confidence keyed by the strongest evidence the scan has."""
        if ctx.caps.has_abi:
            return abi[0], abi[1], EvidenceKind.ABI_PATTERN
        if ctx.caps.has_bytecode_or_source:
            return code[0], code[1], EvidenceKind.BYTECODE_PATTERN
        return Severity.MEDIUM, 0.5, EvidenceKind.HEURISTIC

