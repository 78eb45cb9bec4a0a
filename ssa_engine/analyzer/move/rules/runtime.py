"""Runtime-behavior rules.

  - Unbounded loops over dynamic vectors
  - External dependency / oracle usage without bounds
  - Reentrancy (state change around external calls, no guard)
  - Timestamp dependence
  - Denial of service via batch / loop entrypoints
"""

from __future__ import annotations

from ssa_engine.analyzer.move.base_rule import BaseRule, RuleContext
from ssa_engine.core.types import EvidenceKind, Finding, Severity


class UnboundedLoopRule(BaseRule):
    RULE_ID = "SVSSA-MOVE-006"
    NAME = "Unbounded Loops"
    DESCRIPTION = "Detects loop hints in module strings when entry functions exist."
    CATEGORY = "denial_of_service"

    LOOP_KEYWORDS = ("vector", "length", "for", "while", "iter", "loop", "foreach")
    BOUND_KEYWORDS = ("max", "limit", "bound", "cap", "threshold")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        matched = ctx.matched_in_strings(self.LOOP_KEYWORDS)
        if not matched or not ctx.artifact.entry_functions:
            return []
        bounded = ctx.strings_contain(self.BOUND_KEYWORDS)
        return [self._make_finding(
            "Potential Unbounded Loops in Entry Functions",
            "Detected loop-related patterns in module strings. Entry functions iterating over "
            "user-controlled vectors without bounds may be used for DoS.",
            severity=Severity.MEDIUM if bounded else Severity.HIGH,
            evidence_kind=EvidenceKind.BYTECODE_PATTERN,
            matched=matched,
            locations=[(fn, "Entry function may contain loops") for fn in ctx.artifact.entry_functions],
            recommendation=(
                "Verify that loop bounds are enforced and add maximum iteration limits."
                if bounded else
                "Add explicit bounds for loops over user-controlled or dynamic data."
            ),
        )]


class ExternalDependencyRule(BaseRule):
    RULE_ID = "SVSSA-MOVE-009"
    NAME = "External Dependency/Oracle Usage"
    DESCRIPTION = "Detects oracle and external-feed usage without bounds checking hints."
    CATEGORY = "oracle"
    CONFIDENCE = 0.6

    ORACLE_KEYWORDS = ("oracle", "price", "feed", "vrf", "random", "external")
    BOUND_KEYWORDS = ("bounds", "max", "min", "limit", "threshold", "sanity")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        matched = ctx.matched_in_strings(self.ORACLE_KEYWORDS)
        if not matched:
            return []
        bounded = ctx.strings_contain(self.BOUND_KEYWORDS)
        return [self._make_finding(
            "External Dependency/Oracle Usage Without Clear Bounds",
            f"Detected oracle/external dependency patterns ({', '.join(matched)}) but "
            f"{'limited' if bounded else 'no'} bounds checking hints. Oracle manipulation or "
            "stale data can lead to financial losses.",
            severity=Severity.MEDIUM if bounded else Severity.HIGH,
            evidence_kind=EvidenceKind.BYTECODE_PATTERN,
            matched=matched,
            locations=[(fn, "Function may use external dependencies") for fn in ctx.artifact.entry_functions],
            recommendation=(
                "Verify oracle values are bounded and add staleness checks."
                if bounded else
                "Add min/max bounds, staleness checks and multiple oracle sources for price feeds."
            ),
        )]


class ReentrancyRule(BaseRule):
    RULE_ID = "SVSSA-MOVE-012"
    NAME = "Reentrancy Risks"
    DESCRIPTION = "Detects value-moving entry functions with external-call and state-change markers but no guard."
    CATEGORY = "reentrancy"
    SEVERITY = Severity.HIGH

    TRANSFER_LIKE = ("transfer", "withdraw", "claim", "mint")
    EXTERNAL_CALL_MARKERS = (
        "transfer", "call", "delegate_call", "external_call", "invoke", "borrow_global_mut", "move_to",
    )
    STATE_CHANGE_MARKERS = ("borrow_global_mut", "move_to", "move_from", "transfer", "deposit", "withdraw")
    GUARD_MARKERS = ("non_reentrant", "reentrancy_guard", "locked", "mutex", "guard")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        if ctx.caps.view_only:
            return []
        if not (ctx.strings_contain(self.EXTERNAL_CALL_MARKERS) and ctx.strings_contain(self.STATE_CHANGE_MARKERS)):
            return []
        if ctx.strings_contain(self.GUARD_MARKERS):
            return []

        findings: list[Finding] = []
        for fn in ctx.artifact.entry_functions:
            if not any(t in fn.lower() for t in self.TRANSFER_LIKE):
                continue
            severity, confidence, kind = self._evidence_tiered(
                ctx, abi=(Severity.HIGH, 0.7), code=(Severity.HIGH, 0.6),
            )
            findings.append(self._make_finding(
                "Potential Reentrancy Vulnerability",
                f'Entry function "{fn}" performs external calls and state changes but no '
                "reentrancy guard was detected.",
                severity=severity,
                confidence=confidence,
                evidence_kind=kind,
                matched=["external_call", "state_change"],
                locations=[(fn, "Potential reentrancy pattern")],
                recommendation=(
                    "Use a reentrancy guard or the checks-effects-interactions pattern."
                ),
            ))
        return findings


class TimestampDependenceRule(BaseRule):
    RULE_ID = "SVSSA-MOVE-015"
    NAME = "Timestamp Dependence"
    DESCRIPTION = "Detects time-dependent entry functions in modules that read the clock."
    CATEGORY = "time_manipulation"

    TIMESTAMP_MARKERS = ("timestamp", "now", "time", "block_time", "current_time", "clock")
    TIME_OPERATIONS = ("vest", "unlock", "release", "expire", "deadline", "timeout", "delay", "schedule")
    MITIGATION_MARKERS = ("tolerance", "buffer", "window", "grace_period", "min_duration", "max_duration")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        if ctx.caps.view_only:
            return []
        timestamps = ctx.matched_in_strings(self.TIMESTAMP_MARKERS)
        if not timestamps:
            return []
        mitigated = ctx.strings_contain(self.MITIGATION_MARKERS)

        findings: list[Finding] = []
        for fn in ctx.artifact.entry_functions:
            if not any(op in fn.lower() for op in self.TIME_OPERATIONS):
                continue
            if mitigated:
                severity, confidence, kind = self._evidence_tiered(
                    ctx, abi=(Severity.MEDIUM, 0.6), code=(Severity.MEDIUM, 0.5),
                )
            else:
                severity, confidence, kind = self._evidence_tiered(
                    ctx, abi=(Severity.HIGH, 0.7), code=(Severity.HIGH, 0.6),
                )
            findings.append(self._make_finding(
                "Timestamp Dependence Risk",
                f'Entry function "{fn}" depends on block timestamps which validators may '
                "influence. "
                + ("Some mitigations detected, verify robustness." if mitigated else "No clear mitigations detected."),
                severity=severity,
                confidence=confidence,
                evidence_kind=kind,
                matched=timestamps,
                locations=[(fn, "Time-dependent operation")],
                recommendation=(
                    "Ensure timestamp logic uses tolerance windows."
                    if mitigated else
                    "Add tolerance windows or minimum durations; avoid critical logic that "
                    "depends solely on block timestamps."
                ),
            ))
        return findings


class DenialOfServiceRule(BaseRule):
    RULE_ID = "SVSSA-MOVE-017"
    NAME = "Denial of Service Risks"
    DESCRIPTION = "Detects batch and looping value operations without limits."
    CATEGORY = "denial_of_service"

    LOOP_PATTERNS = ("loop", "iterate", "foreach", "while", "for", "map", "filter")
    OPERATIONS = ("transfer", "mint", "batch", "process", "claim", "withdraw")
    BATCH_MARKERS = ("batch", "multi", "bulk")
    MITIGATION_MARKERS = ("limit", "max", "bound", "cap", "threshold", "chunk", "paginate")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        if ctx.caps.view_only:
            return []
        loops = ctx.matched_in_strings(self.LOOP_PATTERNS)
        if not loops:
            return []
        mitigation_in_strings = ctx.strings_contain(self.MITIGATION_MARKERS)

        findings: list[Finding] = []
        for fn in ctx.artifact.entry_functions:
            lowered = fn.lower()
            is_batch = any(b in lowered for b in self.BATCH_MARKERS)
            if not (is_batch or any(op in lowered for op in self.OPERATIONS)):
                continue
            if mitigation_in_strings or any(m in lowered for m in self.MITIGATION_MARKERS):
                continue
            if is_batch:
                severity, confidence, kind = self._evidence_tiered(
                    ctx, abi=(Severity.HIGH, 0.7), code=(Severity.HIGH, 0.6),
                )
            else:
                severity, confidence, kind = self._evidence_tiered(
                    ctx, abi=(Severity.MEDIUM, 0.6), code=(Severity.MEDIUM, 0.5),
                )
            findings.append(self._make_finding(
                "Potential Denial of Service Risk",
                f'Entry function "{fn}" performs operations that may be vulnerable to DoS '
                "(unbounded loops, batch operations without limits). "
                + ("Batch operations detected." if is_batch else "Loop patterns detected."),
                severity=severity,
                confidence=confidence,
                evidence_kind=kind,
                matched=loops,
                locations=[(fn, "Potential DoS vulnerability")],
                recommendation=(
                    "Limit batch sizes, paginate large datasets and bound loop iterations."
                ),
            ))
        return findings
