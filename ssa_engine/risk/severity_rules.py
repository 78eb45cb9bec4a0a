"""Severity classification for ping drift changes.

Each raw change from :func:`ssa_engine.monitoring.drift.diff_snapshots` is
tagged with a change type and a severity.  Severities only ever go up: a
change that already carries a higher severity keeps it.
"""

from __future__ import annotations

import enum
import logging
import re
from typing import Any

from ssa_engine.core.types import DriftChange, DriftDiff, Severity, TargetKind

logger = logging.getLogger(__name__)

MINT_LIKE_RE = re.compile(r"mint|issue|create|increase_supply", re.IGNORECASE)


class DriftChangeType(str, enum.Enum):
    SUPPLY_MAX_CHANGED = "SUPPLY_MAX_CHANGED"
    OWNER_CHANGED = "OWNER_CHANGED"
    HOOKS_CHANGED = "HOOKS_CHANGED"
    HOOK_MODULE_CODE_CHANGED = "HOOK_MODULE_CODE_CHANGED"
    COIN_MODULE_CODE_CHANGED = "COIN_MODULE_CODE_CHANGED"
    CAPABILITIES_CHANGED = "CAPABILITIES_CHANGED"
    ABI_SURFACE_CHANGED = "ABI_SURFACE_CHANGED"
    MODULE_ADDED = "MODULE_ADDED"
    MODULE_REMOVED = "MODULE_REMOVED"
    DECIMALS_CHANGED = "DECIMALS_CHANGED"
    SUPPLY_CHANGED = "SUPPLY_CHANGED"


# Lower sorts first among changes of equal severity.
_TYPE_PRIORITY = {
    DriftChangeType.SUPPLY_MAX_CHANGED: 1,
    DriftChangeType.OWNER_CHANGED: 3,
    DriftChangeType.HOOKS_CHANGED: 5,
    DriftChangeType.HOOK_MODULE_CODE_CHANGED: 5.5,
    DriftChangeType.COIN_MODULE_CODE_CHANGED: 5.5,
    DriftChangeType.CAPABILITIES_CHANGED: 6,
    DriftChangeType.ABI_SURFACE_CHANGED: 7,
    DriftChangeType.MODULE_ADDED: 8,
    DriftChangeType.MODULE_REMOVED: 9,
    DriftChangeType.DECIMALS_CHANGED: 10,
    DriftChangeType.SUPPLY_CHANGED: 16,
}


# ── Change typing ────────────────────────────────────────────────────────────


def change_type_for(change: DriftChange) -> DriftChangeType | None:
    """Map a raw diff field onto its change type."""
    name = change.field
    if name == "owner":
        return DriftChangeType.OWNER_CHANGED
    if name == "supply_current":
        return DriftChangeType.SUPPLY_CHANGED
    if name == "supply_max":
        return DriftChangeType.SUPPLY_MAX_CHANGED
    if name == "decimals":
        return DriftChangeType.DECIMALS_CHANGED
    if name == "hooks":
        return DriftChangeType.HOOKS_CHANGED
    if name == "abi_surface":
        return DriftChangeType.ABI_SURFACE_CHANGED
    if name.startswith("hook_module_hash."):
        return DriftChangeType.HOOK_MODULE_CODE_CHANGED
    if name.startswith("publisher_module_hash."):
        if change.type == "added":
            return DriftChangeType.MODULE_ADDED
        if change.type == "removed":
            return DriftChangeType.MODULE_REMOVED
        return DriftChangeType.COIN_MODULE_CODE_CHANGED
    if name.startswith(("capabilities.", "coin_capabilities.")):
        return DriftChangeType.CAPABILITIES_CHANGED
    logger.debug("No change type for drift field %s", name)
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def supply_delta(before: Any, after: Any) -> int | None:
    b, a = _as_int(before), _as_int(after)
    if b is None or a is None:
        return None
    return a - b


# ── Rules ────────────────────────────────────────────────────────────────────


def _supply_severity(
    change: DriftChange, kind: TargetKind, drift_keys: dict[str, Any],
) -> Severity:
    delta = supply_delta(change.before, change.after)
    if delta is None or delta <= 0:
        return Severity.INFO
    if kind is TargetKind.FA:
        supply_max = _as_int(drift_keys.get("supply_max"))
        after = _as_int(change.after)
        if supply_max is not None and after is not None and after > supply_max:
            return Severity.CRITICAL
        if (drift_keys.get("capabilities") or {}).get("mint"):
            return Severity.HIGH
        return Severity.INFO
    if (drift_keys.get("coin_capabilities") or {}).get("mint"):
        return Severity.CRITICAL
    return Severity.HIGH


def _rule_severity(
    change: DriftChange,
    change_type: DriftChangeType,
    kind: TargetKind,
    drift_keys: dict[str, Any],
    hooks_changed: bool,
) -> Severity:
    if change_type is DriftChangeType.SUPPLY_CHANGED:
        return _supply_severity(change, kind, drift_keys)
    if change_type is DriftChangeType.SUPPLY_MAX_CHANGED:
        return Severity.CRITICAL
    if change_type is DriftChangeType.OWNER_CHANGED:
        return Severity.CRITICAL if hooks_changed else Severity.HIGH
    if change_type is DriftChangeType.ABI_SURFACE_CHANGED:
        added = change.after if isinstance(change.after, list) else []
        if any(MINT_LIKE_RE.search(str(fn).split("::")[-1]) for fn in added):
            return Severity.CRITICAL
        return Severity.HIGH
    if change_type is DriftChangeType.CAPABILITIES_CHANGED:
        return Severity.HIGH if change.after is True and not change.before else Severity.INFO
    # Hooks, module code, module set and decimals changes.
    return Severity.HIGH


def _sort_key(change: DriftChange) -> tuple[int, float]:
    try:
        priority = _TYPE_PRIORITY[DriftChangeType(change.change_type)]
    except ValueError:
        priority = 999
    return -(change.severity.rank if change.severity else 0), priority


def classify_drift_changes(
    diff: DriftDiff, kind: TargetKind | str, drift_keys: dict[str, Any],
) -> DriftDiff:
    """Return a copy of ``diff`` with change types and severities assigned.

    ``drift_keys`` are the current snapshot's keys; they decide whether a
    supply increase is backed by a mint capability or exceeds max supply.
    """
    if not diff.changed:
        return diff
    kind = TargetKind(kind)
    typed = [(c, change_type_for(c)) for c in diff.changes]
    hooks_changed = any(t is DriftChangeType.HOOKS_CHANGED for _, t in typed)

    classified: list[DriftChange] = []
    for change, change_type in typed:
        severity = change.severity or Severity.INFO
        if change_type is not None:
            ruled = _rule_severity(change, change_type, kind, drift_keys, hooks_changed)
            if ruled.rank > severity.rank:
                severity = ruled
        classified.append(change.model_copy(update={
            "change_type": change_type.value if change_type else change.change_type,
            "severity": severity,
        }))

    classified.sort(key=_sort_key)
    return diff.model_copy(update={"changes": classified})


def max_drift_severity(diff: DriftDiff) -> Severity | None:
    severities = [c.severity for c in diff.changes if c.severity is not None]
    if not severities:
        return None
    return max(severities, key=lambda s: s.rank)
