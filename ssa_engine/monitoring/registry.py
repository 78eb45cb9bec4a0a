"""Monitor registry: the operator-owned list of continuously monitored targets.

The registry starts empty.  Only explicit ``enable``/``disable`` calls add
or switch off entries; scans never register targets.  The scheduler may
``touch`` an entry to record its last run, and only when it is enabled.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel, ValidationError

from ssa_engine.core.config import get_settings
from ssa_engine.core.errors import RegistryError
from ssa_engine.core.identifiers import parse_address, parse_coin_type
from ssa_engine.core.types import TargetKind
from ssa_engine.monitoring.store import read_json, write_json_atomic

logger = logging.getLogger(__name__)


class MonitorEntry(BaseModel):
    kind: TargetKind
    target: str
    enabled: bool = True
    cadence_hours: float
    started_at: str
    last_run_utc: str | None = None
    last_scan_id: str | None = None

    @property
    def key(self) -> str:
        return registry_key(self.kind, self.target)


class MonitoringStatus(BaseModel):
    """Read-only view of whether a target is being monitored on schedule."""

    enabled: bool
    monitoring_active: bool
    cadence_hours: float | None = None
    last_run_utc: str | None = None
    next_scheduled_utc: str | None = None
    reason: str | None = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_kind(kind: TargetKind | str) -> TargetKind:
    try:
        return TargetKind(kind)
    except ValueError:
        raise RegistryError(f"Unknown target kind: {kind!r}") from None


def normalize_target(kind: TargetKind | str, target: str) -> str:
    """Canonical target id; raises InvalidArgumentError when malformed."""
    if _parse_kind(kind) is TargetKind.COIN:
        return str(parse_coin_type(target))
    return parse_address(target)


def registry_key(kind: TargetKind | str, target: str) -> str:
    return f"{_parse_kind(kind).value}:{target}"


def compute_monitoring_status(entry: MonitorEntry | None, now: datetime | None = None) -> MonitoringStatus:
    """Status of one entry.

    Monitoring counts as active while the last run is at most two cadences old.
    """
    if entry is None:
        return MonitoringStatus(enabled=False, monitoring_active=False, reason="not_registered")
    if not entry.enabled:
        return MonitoringStatus(enabled=False, monitoring_active=False, reason="monitoring_disabled")

    last_run = _parse_iso(entry.last_run_utc)
    if last_run is None:
        return MonitoringStatus(
            enabled=True,
            monitoring_active=False,
            cadence_hours=entry.cadence_hours,
            reason="no_monitor_run_yet",
        )

    cadence = timedelta(hours=entry.cadence_hours)
    active = (now or _now()) - last_run <= cadence * 2
    return MonitoringStatus(
        enabled=True,
        monitoring_active=active,
        cadence_hours=entry.cadence_hours,
        last_run_utc=entry.last_run_utc,
        next_scheduled_utc=(last_run + cadence).isoformat(),
        reason=None if active else "monitoring_stale",
    )


# ── Repository ───────────────────────────────────────────────────────────────


class MonitorRegistry:
    """JSON-backed map of ``"{kind}:{target}"`` to :class:`MonitorEntry`.

    Mutations stay in memory until :meth:`save` is called.
    """

    def __init__(self, path: str | Path, entries: dict[str, MonitorEntry] | None = None) -> None:
        self.path = Path(path)
        self._entries: dict[str, MonitorEntry] = dict(entries or {})

    @classmethod
    def load(cls, path: str | Path | None = None) -> "MonitorRegistry":
        path = Path(path or get_settings().registry_path)
        raw = read_json(path)
        entries: dict[str, MonitorEntry] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                try:
                    entries[key] = MonitorEntry.model_validate(value)
                except ValidationError as exc:
                    logger.warning("Skipping malformed registry entry %s: %d errors", key, exc.error_count())
        elif raw is not None:
            logger.warning("Registry %s is not a JSON object; starting empty", path)
        return cls(path, entries)

    def save(self) -> Path:
        payload = {key: entry.model_dump(mode="json") for key, entry in sorted(self._entries.items())}
        return write_json_atomic(self.path, payload)

    def get(self, kind: TargetKind | str, target: str) -> MonitorEntry | None:
        return self._entries.get(registry_key(kind, normalize_target(kind, target)))

    def enable(self, kind: TargetKind | str, target: str, cadence_hours: float) -> MonitorEntry:
        if cadence_hours <= 0:
            raise RegistryError("cadence_hours must be > 0", {"cadence_hours": cadence_hours})
        target_kind = _parse_kind(kind)
        target_id = normalize_target(target_kind, target)
        entry = MonitorEntry(
            kind=target_kind,
            target=target_id,
            enabled=True,
            cadence_hours=cadence_hours,
            started_at=_now().isoformat(),
        )
        self._entries[entry.key] = entry
        logger.info("Monitoring enabled for %s every %sh", entry.key, cadence_hours, extra={"target": target_id})
        return entry

    def disable(self, kind: TargetKind | str, target: str) -> MonitorEntry | None:
        entry = self.get(kind, target)
        if entry is None:
            return None
        entry.enabled = False
        logger.info("Monitoring disabled for %s", entry.key, extra={"target": entry.target})
        return entry

    def touch(self, kind: TargetKind | str, target: str, scan_id: str) -> bool:
        """Record a run on an enabled entry.  Returns False when nothing was touched."""
        entry = self._entries.get(registry_key(kind, target))
        if entry is None or not entry.enabled:
            return False
        entry.last_run_utc = _now().isoformat()
        entry.last_scan_id = scan_id
        return True

    def entries(self) -> list[MonitorEntry]:
        return [self._entries[key] for key in sorted(self._entries)]

    def enabled_entries(self) -> list[MonitorEntry]:
        return [e for e in self.entries() if e.enabled]

    def listing(self, now: datetime | None = None) -> list[tuple[str, MonitorEntry, MonitoringStatus]]:
        return [(e.key, e, compute_monitoring_status(e, now)) for e in self.entries()]

    def __len__(self) -> int:
        return len(self._entries)
