"""Monitor scheduler: ping every enabled target, escalate drift to a deep scan.

Targets are processed one after another.  Each gets a fresh ping snapshot
which is always persisted, then diffed against the previous one.  Changed
targets are re-verified up to ``max_deep_scans`` per run; the rest are
marked ``queued``.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable

from pydantic import BaseModel

from ssa_engine.core.config import get_settings
from ssa_engine.core.errors import InvalidArgumentError, PersistenceError
from ssa_engine.core.logging import RunContextFilter
from ssa_engine.core.types import (
    DriftClass,
    DriftDiff,
    PingSnapshot,
    Severity,
    TargetKind,
    TargetRef,
    VerificationReport,
    VerificationStatus,
)
from ssa_engine.ingestion.rpc_client import RpcOptions
from ssa_engine.monitoring.drift import build_snapshot, diff_snapshots, drift_class
from ssa_engine.monitoring.registry import MonitorRegistry, normalize_target
from ssa_engine.monitoring.store import SnapshotStore, write_json_atomic
from ssa_engine.risk.severity_rules import classify_drift_changes, max_drift_severity
from ssa_engine.verifier.verification import VerifyOptions, verify_target

logger = logging.getLogger(__name__)

PingFn = Callable[..., Awaitable[PingSnapshot | None]]
VerifyFn = Callable[..., Awaitable[VerificationReport]]


class DeepScanOutcome(BaseModel):
    success: bool
    output_path: str | None = None
    status: VerificationStatus | None = None
    risk_level: str | None = None
    error: str | None = None


class MonitorResult(BaseModel):
    """Outcome of one target in one monitor run."""

    target: TargetRef
    ping_success: bool = False
    snapshot: PingSnapshot | None = None
    drift: DriftClass | None = None
    diff: DriftDiff | None = None
    max_severity: Severity | None = None
    deep_scan_triggered: bool = False
    deep_scan: DeepScanOutcome | None = None
    queued: bool = False
    touched: bool = False
    error: str | None = None


@dataclass
class MonitorOptions:
    rpc_url: str = ""
    rpc_url_secondary: str | None = None
    state_dir: str = "state"
    tmp_dir: str = "tmp"
    max_targets: int = 50
    max_deep_scans: int = 3
    deep_timeout: float = 60.0
    with_indexer: bool = False
    tx_sample: int = 0

    @classmethod
    def from_settings(cls, **overrides) -> "MonitorOptions":
        s = get_settings()
        values = {
            "rpc_url": s.rpc_url,
            "rpc_url_secondary": s.rpc_url_secondary or None,
            "state_dir": s.state_dir,
            "tmp_dir": s.tmp_dir,
            "max_targets": s.monitor_max_targets_per_run,
            "max_deep_scans": s.monitor_max_deep_scans_per_run,
            "deep_timeout": s.monitor_deep_timeout_seconds,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ── Display ──────────────────────────────────────────────────────────────────


def shorten_id(kind: TargetKind, target_id: str) -> str:
    if kind is TargetKind.FA:
        return target_id[:10]
    return target_id if len(target_id) <= 20 else target_id[:20] + "..."


def format_result_line(result: MonitorResult) -> str:
    """One console line per target, e.g. ``FA 0x12345678 | PING baseline | fp=ab12cd34``."""
    head = f"{result.target.kind.value.upper()} {shorten_id(result.target.kind, result.target.id)}"
    if not result.ping_success:
        return f"{head} | PING FAILED | {result.error or 'unknown error'}"
    fp = result.snapshot.fingerprint[:8] if result.snapshot else "unknown"
    if result.drift is not DriftClass.CHANGED:
        drift = result.drift.value if result.drift else "stable"
        return f"{head} | PING {drift} | fp={fp}"
    fields = ",".join(c.field for c in result.diff.changes) if result.diff else ""
    severity = result.max_severity.value if result.max_severity else "info"
    line = f"{head} | PING CHANGED ({fields}) | severity={severity}"
    if result.queued:
        return f"{line} | deep=QUEUED"
    if result.deep_scan is None:
        return line
    if result.deep_scan.success:
        return f"{line} | DEEP OK | out={result.deep_scan.output_path}"
    return f"{line} | DEEP FAIL | {result.deep_scan.error or 'unknown error'}"


def deep_scan_path(tmp_dir: str | Path, target: TargetRef, now: datetime | None = None) -> Path:
    """``tmp/deep_<kind>_<short id>_<YYYY-MM-DDTHH_MM_SS>.json``."""
    stamp = re.sub(r"[:.]", "_", (now or datetime.now(timezone.utc)).isoformat())[:19]
    if target.kind is TargetKind.FA:
        short = target.id[:16]
    else:
        short = re.sub(r"[^a-zA-Z0-9]", "_", target.id)[:30]
    return Path(tmp_dir) / f"deep_{target.kind.value}_{short}_{stamp}.json"


# ── Deep scan ────────────────────────────────────────────────────────────────


async def run_deep_scan(
    target: TargetRef, options: MonitorOptions, verify: VerifyFn = verify_target,
) -> DeepScanOutcome:
    """Re-verify a drifted target at reduced depth and write the report to ``tmp_dir``."""
    verify_options = VerifyOptions(
        rpc_url=options.rpc_url,
        rpc_url_secondary=options.rpc_url_secondary,
        with_indexer=options.with_indexer,
        tx_sample=options.tx_sample > 0,
        tx_limit=options.tx_sample or 20,
        mode="fast",
        rpc_options=RpcOptions(timeout=options.deep_timeout, retries=2, retry_delay=0.5),
    )
    try:
        report = await verify(target.kind, target.id, verify_options)
    except Exception as exc:
        logger.exception("Deep scan crashed for %s", target.id, extra={"target": target.id})
        return DeepScanOutcome(success=False, error=str(exc))
    path = deep_scan_path(options.tmp_dir, target)
    try:
        write_json_atomic(path, report)
    except PersistenceError as exc:
        logger.warning("Deep scan report not written: %s", exc.message, extra={"target": target.id})
        return DeepScanOutcome(success=False, status=report.status, error=exc.message)
    return DeepScanOutcome(
        success=report.status is VerificationStatus.OK,
        output_path=str(path),
        status=report.status,
        risk_level=report.risk.risk_level.value if report.risk else None,
        error=report.error,
    )


# ── Runner ───────────────────────────────────────────────────────────────────


async def run_monitor(
    registry: MonitorRegistry,
    options: MonitorOptions | None = None,
    *,
    targets: list[TargetRef] | None = None,
    store: SnapshotStore | None = None,
    ping: PingFn = build_snapshot,
    verify: VerifyFn = verify_target,
) -> list[MonitorResult]:
    """Run one monitor pass.

    ``targets`` defaults to the registry's enabled entries.  The registry is
    never grown or shrunk here; enabled entries are touched and saved.
    """
    options = options or MonitorOptions.from_settings()
    store = store or SnapshotStore(options.state_dir)
    run_id = uuid.uuid4().hex[:12]
    started = time.monotonic()

    if targets is None:
        targets = [TargetRef(kind=e.kind, id=e.target) for e in registry.enabled_entries()]
    if len(targets) > options.max_targets:
        logger.info("Limited targets to %d (%d requested)", options.max_targets, len(targets))
        targets = targets[: options.max_targets]

    run_filter = RunContextFilter(f"ping-{run_id}")
    logger.addFilter(run_filter)
    try:
        results: list[MonitorResult] = []
        deep_scans = 0
        touched = False
        for target in targets:
            result = MonitorResult(target=target)
            results.append(result)

            try:
                canonical = TargetRef(kind=target.kind, id=normalize_target(target.kind, target.id))
            except InvalidArgumentError as exc:
                result.error = exc.message
                logger.info(format_result_line(result), extra={"target": target.id})
                continue

            previous = store.load(canonical.kind, canonical.id)
            snapshot = await ping(
                canonical.kind, canonical.id, options.rpc_url, rpc_url_secondary=options.rpc_url_secondary,
            )
            if snapshot is None:
                result.error = "Ping failed: could not build snapshot"
                logger.info(format_result_line(result), extra={"target": target.id})
                continue
            result.ping_success = True
            result.snapshot = snapshot

            try:
                store.save(snapshot)
            except PersistenceError as exc:
                logger.warning("Snapshot not persisted: %s", exc.message, extra={"target": target.id})
                result.error = exc.message

            diff = classify_drift_changes(diff_snapshots(previous, snapshot), target.kind, snapshot.drift_keys)
            result.diff = diff
            result.drift = drift_class(previous, diff)
            result.max_severity = max_drift_severity(diff)

            scan_id = f"ping-{run_id}"
            if result.drift is DriftClass.CHANGED:
                if deep_scans >= options.max_deep_scans:
                    result.queued = True
                else:
                    deep_scans += 1
                    result.deep_scan_triggered = True
                    result.deep_scan = await run_deep_scan(canonical, options, verify)
                    if result.deep_scan.output_path:
                        scan_id = Path(result.deep_scan.output_path).stem

            result.touched = registry.touch(target.kind, snapshot.identity.id, scan_id)
            touched = touched or result.touched
            logger.info(format_result_line(result), extra={"target": target.id, "fingerprint": snapshot.fingerprint})

        if touched:
            try:
                registry.save()
            except PersistenceError as exc:
                logger.warning("Monitor registry not saved: %s", exc.message)

        logger.info(
            "Monitor run %s finished: %d targets, %d deep scans, %d queued",
            run_id, len(results), deep_scans, sum(r.queued for r in results),
            extra={"duration_ms": int((time.monotonic() - started) * 1000)},
        )
    finally:
        logger.removeFilter(run_filter)
    return results
