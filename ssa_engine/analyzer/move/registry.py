"""Rule registry: discovers the Move ruleset and runs it with the evidence clamp."""

from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import Type

from ssa_engine.analyzer.move.base_rule import BaseRule, EvidenceCapabilities, RuleContext
from ssa_engine.core.types import EvidenceKind, Finding, Severity

logger = logging.getLogger(__name__)

RULESET_VERSION = "move-ruleset-0.1.0"

_CONFIDENCE_CAPS = {
    EvidenceKind.ABI_PATTERN: 0.6,
    EvidenceKind.HEURISTIC: 0.5,
}


class RuleRegistry:
    """Registry for all Move heuristic rules.

    Discovers rules from the ``rules`` package. Iteration order is fixed
    (sorted by rule id) so reports list findings in a stable order.
    """

    def __init__(self) -> None:
        self._rules: dict[str, Type[BaseRule]] = {}
        self._loaded = False

    def discover(self) -> None:
        """Auto-discover all rule classes from the rules package."""
        if self._loaded:
            return

        import ssa_engine.analyzer.move.rules as rules_pkg

        for _finder, module_name, _is_pkg in pkgutil.walk_packages(
            rules_pkg.__path__,
            prefix=rules_pkg.__name__ + ".",
        ):
            try:
                module = importlib.import_module(module_name)
            except ImportError as e:
                logger.warning("Failed to load rule module %s: %s", module_name, e)
                continue
            for attr_name in dir(module):
                attr = getattr(module, attr_name)
                if (
                    isinstance(attr, type)
                    and issubclass(attr, BaseRule)
                    and attr is not BaseRule
                    and attr.RULE_ID
                ):
                    self._rules[attr.RULE_ID] = attr

        self._loaded = True

    def get_all(self) -> list[Type[BaseRule]]:
        """Return all registered rule classes in registry order."""
        self.discover()
        return [self._rules[k] for k in sorted(self._rules)]

    def get_by_id(self, rule_id: str) -> Type[BaseRule] | None:
        self.discover()
        return self._rules.get(rule_id)

    def get_by_category(self, category: str) -> list[Type[BaseRule]]:
        return [r for r in self.get_all() if r.CATEGORY == category]

    def count(self) -> int:
        self.discover()
        return len(self._rules)

    def categories(self) -> list[str]:
        """Return all unique rule categories."""
        self.discover()
        return sorted(set(r.CATEGORY for r in self._rules.values() if r.CATEGORY))


def clamp_finding(finding: Finding, caps: EvidenceCapabilities) -> Finding:
    """Bound a static finding by the evidence the scan actually had.

    Static rules never emit critical; view-only scans never exceed medium;
    ABI-backed and heuristic confidence is capped.
    """
    severity = finding.severity
    if severity is Severity.CRITICAL:
        severity = Severity.HIGH
    if caps.view_only and severity.rank > Severity.MEDIUM.rank:
        severity = Severity.MEDIUM

    confidence = finding.confidence
    cap = _CONFIDENCE_CAPS.get(finding.evidence_kind)
    if cap is not None and severity is not Severity.INFO:
        confidence = min(confidence, cap)

    if severity is finding.severity and confidence == finding.confidence:
        return finding
    return finding.model_copy(update={"severity": severity, "confidence": confidence})


def run_rules(ctx: RuleContext, rule_registry: RuleRegistry | None = None) -> list[Finding]:
    """Run every registered rule; a failing rule is logged and skipped."""
    reg = rule_registry or registry
    findings: list[Finding] = []
    for rule_cls in reg.get_all():
        try:
            produced = rule_cls().detect(ctx)
        except Exception:
            logger.exception("Rule %s failed", rule_cls.RULE_ID, extra={"rule_id": rule_cls.RULE_ID})
            continue
        findings.extend(clamp_finding(f, ctx.caps) for f in produced)
    return findings


# Global registry singleton
registry = RuleRegistry()
