"""Observability and input-validation rules.

  - Sensitive operations without event emissions
  - Sensitive operations without input validation
  - Signature-authorized operations without replay protection
  - View functions that could not be fetched
"""

from __future__ import annotations

from ssa_engine.analyzer.move.base_rule import OPTIONAL_VIEWS, REQUIRED_VIEWS, BaseRule, RuleContext
from ssa_engine.core.types import EvidenceKind, Finding, Severity


class MissingEventsRule(BaseRule):
    RULE_ID = "SVSSA-MOVE-007"
    NAME = "Missing Event Emissions"
    DESCRIPTION = "Detects sensitive entry functions in modules with no event emission hints."
    CATEGORY = "observability"
    SEVERITY = Severity.LOW

    SENSITIVE_OPERATIONS = ("mint", "withdraw", "transfer", "burn", "admin", "upgrade", "pause")
    EVENT_KEYWORDS = ("event", "emit", "handle", "log")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        sensitive = [
            fn for fn in ctx.artifact.entry_functions
            if any(op in fn.lower() for op in self.SENSITIVE_OPERATIONS)
        ]
        # View-only scans cannot inspect events at all.
        if not sensitive or ctx.caps.view_only:
            return []
        if ctx.strings_contain(self.EVENT_KEYWORDS) or not ctx.caps.has_bytecode_or_source:
            return []
        return [self._make_finding(
            "Missing Event Emissions for Sensitive Operations",
            "Detected sensitive operations (mint/withdraw/admin/upgrade) but no event emission "
            "patterns in bytecode/source. Events are needed for off-chain monitoring.",
            evidence_kind=EvidenceKind.BYTECODE_PATTERN,
            matched=[op for op in self.SENSITIVE_OPERATIONS if any(op in fn.lower() for fn in sensitive)],
            locations=[(fn, "Sensitive operation without clear event emission") for fn in sensitive],
            recommendation="Emit events for transfers, mints, burns and admin actions.",
        )]


class InputValidationRule(BaseRule):
    RULE_ID = "SVSSA-MOVE-020"
    NAME = "Missing Input Validation"
    DESCRIPTION = "Detects sensitive entry functions with no validation markers or typed parameters."
    CATEGORY = "input_validation"

    SENSITIVE_OPERATIONS = ("transfer", "mint", "burn", "withdraw", "deposit", "set", "update", "create")
    CRITICAL_OPERATIONS = ("transfer", "mint", "withdraw", "burn")
    VALIDATION_MARKERS = (
        "assert", "require", "check", "validate", "verify", "ensure", "guard", "bound", "limit",
    )

    @staticmethod
    def _has_typed_params(fn_def: dict | None) -> bool:
        if not fn_def or not isinstance(fn_def.get("params"), list):
            return False
        for param in fn_def["params"]:
            ptype = param.get("type") if isinstance(param, dict) else param
            if isinstance(ptype, str) and ("::" in ptype or "Option" in ptype or "vector" in ptype):
                return True
        return False

    def detect(self, ctx: RuleContext) -> list[Finding]:
        if ctx.caps.view_only:
            return []
        validation_in_strings = ctx.strings_contain(self.VALIDATION_MARKERS)

        findings: list[Finding] = []
        for fn in ctx.artifact.entry_functions:
            lowered = fn.lower()
            matched = [op for op in self.SENSITIVE_OPERATIONS if op in lowered]
            if not matched:
                continue
            if validation_in_strings or any(m in lowered for m in self.VALIDATION_MARKERS):
                continue
            if self._has_typed_params(ctx.abi_function(fn)):
                continue

            critical = any(op in lowered for op in self.CRITICAL_OPERATIONS)
            if ctx.caps.has_abi:
                severity = Severity.HIGH if critical else Severity.MEDIUM
                confidence, kind = (0.7 if critical else 0.6), EvidenceKind.ABI_PATTERN
            elif ctx.caps.has_bytecode_or_source:
                severity = Severity.HIGH if critical else Severity.MEDIUM
                confidence, kind = (0.6 if critical else 0.5), EvidenceKind.BYTECODE_PATTERN
            else:
                severity, confidence, kind = Severity.MEDIUM, 0.4, EvidenceKind.HEURISTIC

            findings.append(self._make_finding(
                "Missing Input Validation",
                f'Entry function "{fn}" performs sensitive operations but no input validation '
                "was detected.",
                severity=severity,
                confidence=confidence,
                evidence_kind=kind,
                matched=matched,
                locations=[(fn, "Sensitive operation without clear validation")],
                recommendation="Validate all user-provided parameters before sensitive operations.",
            ))
        return findings


class SignatureReplayRule(BaseRule):
    RULE_ID = "SVSSA-MOVE-021"
    NAME = "Signature Replay Attacks"
    DESCRIPTION = "Detects signature-authorized operations without nonce or expiry markers."
    CATEGORY = "signature"
    SEVERITY = Severity.HIGH

    SIGNATURE_MARKERS = ("signature", "sign", "verify", "ecdsa", "ed25519", "schnorr", "crypto")
    OPERATIONS = ("transfer", "mint", "withdraw", "claim", "execute", "permit")
    PROTECTION_MARKERS = (
        "nonce", "replay", "used", "consumed", "expired", "deadline", "chain_id", "domain_separator",
    )

    def detect(self, ctx: RuleContext) -> list[Finding]:
        if ctx.caps.view_only or not ctx.strings_contain(self.SIGNATURE_MARKERS):
            return []
        protected_in_strings = ctx.strings_contain(self.PROTECTION_MARKERS)

        findings: list[Finding] = []
        for fn in ctx.artifact.entry_functions:
            lowered = fn.lower()
            sig_markers = [m for m in self.SIGNATURE_MARKERS if m in lowered]
            if not sig_markers or not any(op in lowered for op in self.OPERATIONS):
                continue
            if protected_in_strings or any(m in lowered for m in self.PROTECTION_MARKERS):
                continue
            severity, confidence, kind = self._evidence_tiered(
                ctx, abi=(Severity.HIGH, 0.7), code=(Severity.HIGH, 0.6),
            )
            findings.append(self._make_finding(
                "Potential Signature Replay Vulnerability",
                f'Entry function "{fn}" uses signatures for authorization but no replay '
                "protection was detected. Signed messages may be reused.",
                severity=severity,
                confidence=confidence,
                evidence_kind=kind,
                matched=sig_markers,
                locations=[(fn, "Signature-based operation without replay protection")],
                recommendation="Add nonces, expiry timestamps or chain-specific domain separators.",
            ))
        return findings


class ViewAvailabilityRule(BaseRule):
    """Required or optional view functions that failed during a view-based scan."""

    RULE_ID = "SVSSA-MOVE-VIEW"
    NAME = "View Function Availability"
    DESCRIPTION = "Reports required and optional view functions that could not be fetched."
    CATEGORY = "availability"

    def detect(self, ctx: RuleContext) -> list[Finding]:
        errors = [e for e in ctx.view_errors if e.type == "error"]
        required = [e for e in errors if e.view_name in REQUIRED_VIEWS]
        optional = [e for e in errors if e.view_name in OPTIONAL_VIEWS]

        findings: list[Finding] = []
        if required:
            names = [e.view_name for e in required]
            findings.append(self._make_finding(
                "Missing Required View Functions",
                f"Failed to fetch {len(required)} required view function(s): {', '.join(names)}. "
                "This prevents complete security analysis.",
                severity=Severity.HIGH,
                confidence=1.0,
                evidence_kind=EvidenceKind.METADATA,
                matched=names,
                locations=[(e.function_id, f"Failed: {e.error}") for e in required],
                recommendation="Check RPC connectivity and the module's deployment status.",
                finding_id="SVSSA-MOVE-VIEW-001",
            ))
        if optional:
            names = [e.view_name for e in optional]
            findings.append(self._make_finding(
                "Missing Optional View Functions",
                f"Failed to fetch {len(optional)} optional view function(s): {', '.join(names)}.",
                severity=Severity.MEDIUM if len(optional) > 3 else Severity.LOW,
                confidence=0.8,
                evidence_kind=EvidenceKind.METADATA,
                matched=names,
                locations=[(e.function_id, f"Failed: {e.error}") for e in optional],
                recommendation="Optional views add context but are not critical.",
                finding_id="SVSSA-MOVE-VIEW-002",
            ))
        return findings
