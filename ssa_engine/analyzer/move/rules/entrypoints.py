"""Entrypoint access-control rules.

Flag entry functions whose names suggest privileged or value-moving
operations when no access-control evidence is visible:
  - Open / dangerous entrypoints (mint, drain, set_owner, ...)
  - Re-initialization (init, setup, reinit)
  - Upgrade hooks (upgrade, set_code, publish, migrate)
  - Asset outflow primitives (transfer, withdraw, sweep, ...)
"""

from __future__ import annotations

from ssa_engine.analyzer.move.base_rule import (
    VIEW_ONLY_NOTE,
    BaseRule,
    RuleContext,
    has_signer_parameter,
)
from ssa_engine.core.types import EvidenceKind, Finding, Severity


def _matches(name: str, patterns: tuple[str, ...]) -> list[str]:
    lowered = name.lower()
    return [p for p in patterns if p in lowered]


class OpenEntrypointRule(BaseRule):
    """Entry functions with dangerous names that may lack access control."""

    RULE_ID = "SVSSA-MOVE-001"
    NAME = "Open/Dangerous Entrypoints"
    DESCRIPTION = (
        "Detects entry functions whose names match privileged operations "
        "(mint, drain, set_owner, upgrade, pause, ...) without visible gating."
    )
    CATEGORY = "access_control"

    DANGEROUS_PATTERNS = (
        "mint", "withdraw", "drain", "set_admin", "set_owner", "upgrade", "pause",
        "unpause", "set_config", "set_fee", "claim_admin", "transfer", "burn", "destroy",
    )
    GATING_MARKERS = (
        "only_admin", "only_owner", "require_admin", "assert_owner",
        "check_capability", "verify_signer",
    )

    def detect(self, ctx: RuleContext) -> list[Finding]:
        findings: list[Finding] = []
        caps = ctx.caps
        has_gating_strings = ctx.strings_contain(self.GATING_MARKERS)

        for fn in ctx.artifact.entry_functions:
            if ctx.safe_exceptions.is_safe_entrypoint(fn):
                findings.append(self._make_finding(
                    "Expected Staking Flow Detected",
                    f'Entry function "{fn}" matches an expected staking flow pattern. '
                    "Verify access control is enforced via the request/fulfill pattern.",
                    severity=Severity.INFO,
                    confidence=0.8,
                    matched=[fn],
                    locations=[(fn, "Expected staking flow pattern")],
                    recommendation="Ensure this function uses proper access control "
                    "(request/fulfill pattern, signer verification).",
                    finding_id=f"{self.RULE_ID}-INFO",
                ))
                continue

            matched = _matches(fn, self.DANGEROUS_PATTERNS)
            if not matched:
                continue

            has_gating = bool(_matches(fn, self.GATING_MARKERS)) or has_gating_strings
            fn_def = ctx.abi_function(fn)
            has_signer = bool(fn_def) and has_signer_parameter(fn_def)

            if caps.view_only:
                severity, confidence, kind = Severity.MEDIUM, 0.4, EvidenceKind.HEURISTIC
            elif fn_def is not None:
                if has_signer:
                    severity, confidence, kind = Severity.HIGH, 0.6, EvidenceKind.ABI_PATTERN
                elif has_gating:
                    severity, confidence, kind = Severity.MEDIUM, 0.5, EvidenceKind.HEURISTIC
                else:
                    severity, confidence, kind = Severity.HIGH, 0.6, EvidenceKind.ABI_PATTERN
            else:
                severity, confidence, kind = Severity.MEDIUM, 0.4, EvidenceKind.HEURISTIC

            findings.append(self._make_finding(
                "Open/Dangerous Entrypoint Detected",
                f'Entry function "{fn}" matches dangerous patterns ({", ".join(matched)}) '
                "and may lack proper access control." + (VIEW_ONLY_NOTE if caps.view_only else ""),
                severity=severity,
                confidence=confidence,
                evidence_kind=kind,
                matched=matched,
                locations=[(fn, "Entry function with dangerous name pattern")],
                recommendation=(
                    "Verify that access control checks are properly enforced at runtime."
                    if has_gating or has_signer else
                    "Add access control checks (admin/owner verification, capability checks) "
                    "before executing sensitive operations."
                ),
            ))
        return findings


class ReinitializationRule(BaseRule):
    """Init-like entry functions that may be callable more than once."""

    RULE_ID = "SVSSA-MOVE-003"
    NAME = "Re-initialization Risk"
    DESCRIPTION = "Detects init/setup entry functions without a one-time guard."
    CATEGORY = "initialization"
    SEVERITY = Severity.HIGH

    INIT_PATTERNS = ("init", "initialize", "setup", "reinit", "reinitialize")
    GUARD_KEYWORDS = ("one_time", "init_once", "already_init", "initialized")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        findings: list[Finding] = []
        has_guard = ctx.strings_contain(self.GUARD_KEYWORDS) or ctx.function_names_contain(self.GUARD_KEYWORDS)
        for fn in ctx.artifact.entry_functions:
            matched = _matches(fn, self.INIT_PATTERNS)
            if not matched:
                continue
            findings.append(self._make_finding(
                "Potentially Callable Initialization Function",
                f'Entry function "{fn}" appears to be an initialization function. '
                "If callable multiple times, it may allow re-initialization attacks.",
                severity=Severity.MEDIUM if has_guard else Severity.HIGH,
                confidence=0.5 if has_guard else 0.8,
                evidence_kind=EvidenceKind.ABI_PATTERN,
                matched=matched,
                locations=[(fn, "Initialization function detected")],
                recommendation=(
                    "Verify that initialization guards are properly enforced at runtime."
                    if has_guard else
                    "Add a one-time initialization guard to prevent re-initialization attacks."
                ),
            ))
        return findings


class UpgradeHookRule(BaseRule):
    """Upgrade / migration entry functions."""

    RULE_ID = "SVSSA-MOVE-004"
    NAME = "Upgrade Hooks Risk"
    DESCRIPTION = "Detects upgrade or code-publishing entry functions that must be tightly gated."
    CATEGORY = "upgradeability"

    UPGRADE_PATTERNS = ("upgrade", "set_code", "publish", "migrate", "update_code")
    ACCESS_KEYWORDS = ("only_admin", "only_owner", "require_admin", "governance")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        findings: list[Finding] = []
        caps = ctx.caps
        has_access = ctx.strings_contain(self.ACCESS_KEYWORDS) or ctx.function_names_contain(self.ACCESS_KEYWORDS)
        for fn in ctx.artifact.entry_functions:
            matched = _matches(fn, self.UPGRADE_PATTERNS)
            if not matched:
                continue
            fn_def = ctx.abi_function(fn)
            has_signer = bool(fn_def) and has_signer_parameter(fn_def)
            if caps.view_only or fn_def is None:
                severity, confidence, kind = Severity.MEDIUM, 0.4, EvidenceKind.HEURISTIC
            else:
                severity, confidence, kind = Severity.HIGH, 0.6, EvidenceKind.ABI_PATTERN

            findings.append(self._make_finding(
                "Upgrade Function Without Clear Access Control",
                f'Entry function "{fn}" appears to handle code upgrades or migrations. '
                "Upgrade functions are critical security points and must be properly gated."
                + (VIEW_ONLY_NOTE if caps.view_only else ""),
                severity=severity,
                confidence=confidence,
                evidence_kind=kind,
                matched=matched,
                locations=[(fn, "Upgrade-related function detected")],
                recommendation=(
                    "Verify that upgrade access control is enforced and consider a timelock or multisig."
                    if has_access or has_signer else
                    "Gate upgrade functions behind admin/owner/governance checks and add timelock delays."
                ),
            ))
        return findings


class AssetOutflowRule(BaseRule):
    """Transfer / withdraw style entry functions."""

    RULE_ID = "SVSSA-MOVE-005"
    NAME = "Asset Outflow Primitives"
    DESCRIPTION = "Detects asset outflow entry functions that may lack access control."
    CATEGORY = "asset_flow"
    SEVERITY = Severity.HIGH

    OUTFLOW_PATTERNS = (
        "transfer", "withdraw", "burn", "mint", "deposit", "withdraw_request", "drain", "sweep",
    )
    ACCESS_KEYWORDS = ("only_admin", "only_owner", "assert_owner", "require_admin")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        findings: list[Finding] = []
        caps = ctx.caps
        has_access = ctx.strings_contain(self.ACCESS_KEYWORDS) or ctx.function_names_contain(self.ACCESS_KEYWORDS)

        for fn in ctx.artifact.entry_functions:
            if ctx.safe_exceptions.is_safe_outflow(fn):
                findings.append(self._make_finding(
                    "Expected Staking Outflow Pattern",
                    f'Entry function "{fn}" matches an expected staking outflow pattern. '
                    "Verify access control is enforced via the request/fulfill pattern.",
                    severity=Severity.INFO,
                    confidence=0.8,
                    matched=[fn],
                    locations=[(fn, "Expected staking outflow pattern")],
                    recommendation="Ensure this function uses proper access control "
                    "(request/fulfill pattern, signer verification).",
                    finding_id=f"{self.RULE_ID}-INFO",
                ))
                continue

            matched = _matches(fn, self.OUTFLOW_PATTERNS)
            if not matched:
                continue

            fn_def = ctx.abi_function(fn)
            has_signer = bool(fn_def) and has_signer_parameter(fn_def)
            if fn_def is not None:
                kind = EvidenceKind.ABI_PATTERN
                if has_signer:
                    severity, confidence = Severity.HIGH, 0.6
                elif has_access:
                    severity, confidence = Severity.MEDIUM, 0.5
                else:
                    severity, confidence = Severity.HIGH, 0.6
            elif caps.has_bytecode_or_source:
                kind = EvidenceKind.BYTECODE_PATTERN
                severity, confidence = Severity.HIGH, 0.6 if has_access else 0.5
            else:
                kind = EvidenceKind.HEURISTIC
                severity, confidence = (Severity.HIGH, 0.5) if has_access else (Severity.MEDIUM, 0.4)

            if caps.view_only and kind in (EvidenceKind.HEURISTIC, EvidenceKind.METADATA):
                severity, confidence = Severity.MEDIUM, 0.4

            if caps.view_only:
                recommendation = (
                    "Cannot verify access control without ABI/bytecode; review on-chain code "
                    "to confirm proper access control."
                )
            elif has_access or has_signer:
                recommendation = (
                    "Verify that access control checks are enforced and consider withdrawal "
                    "limits or rate limiting."
                )
            else:
                recommendation = (
                    "Implement proper access control (admin/owner checks or signer verification) "
                    "for asset outflow functions."
                )

            findings.append(self._make_finding(
                "Asset Outflow Function Without Clear Access Control",
                f'Entry function "{fn}" handles asset transfers/outflows ({", ".join(matched)}) '
                "and may lack proper access control." + (VIEW_ONLY_NOTE if caps.view_only else ""),
                severity=severity,
                confidence=confidence,
                evidence_kind=kind,
                matched=matched,
                locations=[(fn, "Asset outflow function detected")],
                recommendation=recommendation,
            ))
        return findings
