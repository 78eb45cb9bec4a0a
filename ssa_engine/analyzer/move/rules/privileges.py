"""Privilege and centralization rules.

  - Hardcoded privileged addresses
  - Admin functions with no multisig / timelock hints
  - Emergency pause mechanisms
  - Access-control bypass entrypoints
"""

from __future__ import annotations

import re

from ssa_engine.analyzer.move.base_rule import BaseRule, RuleContext, has_signer_parameter
from ssa_engine.core.types import EvidenceKind, Finding, Severity

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40,}")


class HardcodedPrivilegedAddressRule(BaseRule):
    """Long hex addresses appearing next to privileged-role keywords."""

    RULE_ID = "SVSSA-MOVE-002"
    NAME = "Privileged Role Hardcoding"
    DESCRIPTION = "Detects hardcoded addresses alongside admin/owner/treasury keywords."
    CATEGORY = "centralization"
    CONFIDENCE = 0.7

    PRIVILEGED_KEYWORDS = ("admin", "owner", "treasury", "authority", "governance")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        addresses: list[str] = []
        for s in ctx.artifact.strings:
            addresses.extend(_ADDRESS_RE.findall(s))
        keywords = ctx.matched_in_strings(self.PRIVILEGED_KEYWORDS)
        if not addresses or not keywords:
            return []

        unique = list(dict.fromkeys(addresses))
        return [self._make_finding(
            "Potential Hardcoded Privileged Addresses",
            f"Found hardcoded addresses ({len(unique)} unique) alongside privileged role "
            f"keywords ({', '.join(keywords)}). This may indicate hardcoded admin/owner addresses.",
            evidence_kind=EvidenceKind.BYTECODE_PATTERN,
            matched=unique[:5] + keywords,
            recommendation=(
                "Use capability-based access control or keep privileged addresses in "
                "configurable storage instead of hardcoding them."
            ),
        )]


class CentralizationRule(BaseRule):
    """Admin entry functions with no decentralization mechanism in sight."""

    RULE_ID = "SVSSA-MOVE-008"
    NAME = "Centralization Risk"
    DESCRIPTION = "Detects admin/owner entry functions without multisig, timelock or governance hints."
    CATEGORY = "centralization"

    ADMIN_PATTERNS = ("admin", "owner", "authority", "governance")
    DECENTRALIZATION_HINTS = ("multisig", "timelock", "delay", "proposal", "vote", "council")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        admin_fns = [
            fn for fn in ctx.artifact.entry_functions
            if any(p in fn.lower() for p in self.ADMIN_PATTERNS)
        ]
        if not admin_fns or ctx.strings_contain(self.DECENTRALIZATION_HINTS):
            return []
        return [self._make_finding(
            "Centralization Risk: Admin Functions Without Decentralization Mechanisms",
            "Detected admin/owner functions but no hints of multisig, timelock or governance "
            "mechanisms. Single-point-of-failure admin accounts pose centralization risks.",
            matched=[p for p in self.ADMIN_PATTERNS if any(p in fn.lower() for fn in admin_fns)],
            locations=[(fn, "Admin function without decentralization hints") for fn in admin_fns],
            recommendation=(
                "Consider multisig, timelock delays or governance mechanisms for admin functions."
            ),
        )]


class EmergencyPauseRule(BaseRule):
    """Pause / unpause / emergency entry functions."""

    RULE_ID = "SVSSA-MOVE-010"
    NAME = "Emergency Pause Abuse"
    DESCRIPTION = "Detects pause mechanisms and whether pause/unpause are separate functions."
    CATEGORY = "centralization"
    CONFIDENCE = 0.7

    PAUSE_PATTERNS = ("pause", "unpause", "emergency")

    def detect(self, ctx: RuleContext) -> list[Finding]:
        entries = ctx.artifact.entry_functions
        if not any(p in fn.lower() for fn in entries for p in self.PAUSE_PATTERNS):
            return []
        pause_fns = [fn for fn in entries if "pause" in fn.lower()]
        separated = len(pause_fns) >= 2
        return [self._make_finding(
            "Emergency Pause Mechanism Detected",
            "Detected pause/unpause functions. Emergency pause mechanisms must be designed "
            "to prevent abuse.",
            severity=Severity.INFO if separated else Severity.MEDIUM,
            evidence_kind=EvidenceKind.ABI_PATTERN,
            matched=[p for p in self.PAUSE_PATTERNS if any(p in fn.lower() for fn in entries)],
            locations=[(fn, "Pause-related function detected") for fn in pause_fns],
            recommendation=(
                "Keep separate roles for pause and unpause, and document the pause policy."
                if separated else
                "Separate pause and unpause roles, document pause policies and consider "
                "time-based restrictions or multisig requirements."
            ),
        )]


class AccessControlBypassRule(BaseRule):
    """Entry functions named like bypasses with no access-control marker."""

    RULE_ID = "SVSSA-MOVE-014"
    NAME = "Access Control Bypass"
    DESCRIPTION = "Detects bypass/override/force entry functions without access-control evidence."
    CATEGORY = "access_control"
    SEVERITY = Severity.HIGH

    BYPASS_PATTERNS = ("bypass", "skip", "override", "force", "emergency", "admin_override", "unchecked")
    ACCESS_MARKERS = (
        "only_admin", "only_owner", "require_admin", "assert_owner",
        "check_capability", "verify_signer", "has_permission", "is_authorized",
    )

    def detect(self, ctx: RuleContext) -> list[Finding]:
        if ctx.caps.view_only:
            return []
        findings: list[Finding] = []
        access_in_strings = ctx.strings_contain(self.ACCESS_MARKERS)
        for fn in ctx.artifact.entry_functions:
            lowered = fn.lower()
            matched = [p for p in self.BYPASS_PATTERNS if p in lowered]
            if not matched:
                continue
            has_access = access_in_strings or any(m in lowered for m in self.ACCESS_MARKERS)
            fn_def = ctx.abi_function(fn)
            if has_access or (fn_def is not None and has_signer_parameter(fn_def)):
                continue
            severity, confidence, kind = self._evidence_tiered(
                ctx, abi=(Severity.HIGH, 0.7), code=(Severity.HIGH, 0.6),
            )
            findings.append(self._make_finding(
                "Potential Access Control Bypass",
                f'Entry function "{fn}" contains bypass-related patterns but no clear access '
                "control markers. This may allow unauthorized access to privileged operations.",
                severity=severity,
                confidence=confidence,
                evidence_kind=kind,
                matched=matched,
                locations=[(fn, "Bypass pattern without clear access control")],
                recommendation=(
                    "Gate bypass functions with admin/owner checks or capability verification."
                ),
            ))
        return findings
