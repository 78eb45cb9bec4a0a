"""Scan orchestrator: coordinates verification, ping and monitor runs."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from ssa_engine.core.config import Settings, get_settings
from ssa_engine.core.types import (
    DriftClass,
    DriftDiff,
    PingSnapshot,
    TargetKind,
    TargetRef,
    VerificationReport,
)
from ssa_engine.monitoring.drift import build_snapshot, diff_snapshots, drift_class
from ssa_engine.monitoring.registry import MonitorRegistry
from ssa_engine.monitoring.scheduler import MonitorOptions, MonitorResult, run_monitor
from ssa_engine.monitoring.store import SnapshotStore, write_json_atomic
from ssa_engine.risk.severity_rules import classify_drift_changes
from ssa_engine.verifier.verification import VerifyOptions, verify_target

logger = logging.getLogger(__name__)


@dataclass
class PingOutcome:
    target: TargetRef
    snapshot: PingSnapshot | None = None
    diff: DriftDiff | None = None
    drift: DriftClass | None = None
    snapshot_path: str | None = None

    @property
    def ok(self) -> bool:
        return self.snapshot is not None


class ScanOrchestrator:
    """Coordinates the verification and drift pipeline.

    Verify flow:
    1. Fan out to every configured source and corroborate the mini-surfaces
    2. Run the Move ruleset over pinned module artifacts
    3. Sample recent behavior
    4. Synthesize risk and build the report

    Ping flow: snapshot, persist, diff against the previous snapshot.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._store = SnapshotStore(self._settings.state_dir)

    @property
    def store(self) -> SnapshotStore:
        return self._store

    async def run_verify(
        self,
        kind: TargetKind | str,
        target_id: str,
        *,
        rpc_url: str | None = None,
        rpc_url_secondary: str | None = None,
        with_indexer: bool | None = None,
        tx_sample: bool | None = None,
        tx_limit: int | None = None,
        probe_addresses: list[str] | None = None,
        output: str | Path | None = None,
    ) -> VerificationReport:
        """Run one verification pass; write the report when ``output`` is given.

        A failed write raises PersistenceError: an explicit artifact request
        must not fail silently.
        """
        options = VerifyOptions.from_settings(
            rpc_url=rpc_url,
            rpc_url_secondary=rpc_url_secondary,
            with_indexer=with_indexer,
            tx_sample=tx_sample,
            tx_limit=tx_limit,
            probe_addresses=probe_addresses,
        )
        report = await verify_target(kind, target_id, options)
        if output:
            self.write_report(report, output)
        return report

    async def run_ping(
        self,
        kind: TargetKind | str,
        target_id: str,
        *,
        rpc_url: str | None = None,
        rpc_url_secondary: str | None = None,
        persist: bool = True,
    ) -> PingOutcome:
        """Snapshot one target and diff it against the stored snapshot."""
        kind = TargetKind(kind)
        started = time.monotonic()
        outcome = PingOutcome(target=TargetRef(kind=kind, id=target_id))

        snapshot = await build_snapshot(
            kind, target_id,
            rpc_url or self._settings.rpc_url,
            rpc_url_secondary=rpc_url_secondary or self._settings.rpc_url_secondary or None,
        )
        if snapshot is None:
            return outcome
        outcome.target = snapshot.identity
        outcome.snapshot = snapshot

        previous = self._store.load(kind, snapshot.identity.id)
        diff = classify_drift_changes(diff_snapshots(previous, snapshot), kind, snapshot.drift_keys)
        outcome.diff = diff
        outcome.drift = drift_class(previous, diff)
        if persist:
            outcome.snapshot_path = str(self._store.save(snapshot))

        logger.info(
            "Ping %s: %s", snapshot.identity.id, outcome.drift.value,
            extra={
                "target": snapshot.identity.id,
                "fingerprint": snapshot.fingerprint,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return outcome

    async def run_monitor(
        self,
        registry: MonitorRegistry | None = None,
        *,
        targets: list[TargetRef] | None = None,
        max_targets: int | None = None,
        max_deep_scans: int | None = None,
        with_indexer: bool | None = None,
        tx_sample: int | None = None,
    ) -> list[MonitorResult]:
        registry = registry or MonitorRegistry.load(self._settings.registry_path)
        options = MonitorOptions.from_settings(
            max_targets=max_targets,
            max_deep_scans=max_deep_scans,
            with_indexer=with_indexer,
            tx_sample=tx_sample,
        )
        return await run_monitor(registry, options, targets=targets, store=self._store)

    @staticmethod
    def write_report(report: VerificationReport, path: str | Path) -> Path:
        written = write_json_atomic(path, report)
        logger.info("Report written to %s", written, extra={"target": report.target.id})
        return written
