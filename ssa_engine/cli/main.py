"""SSA CLI: surface verification and drift monitoring for Supra FA and coin assets.

Usage:
    ssa verify fa <address>              Corroborate an FA across sources and synthesize risk
    ssa verify coin <type>               Same for a legacy coin (0xaddr::module::Struct)
    ssa ping fa|coin <id>                Snapshot drift keys and diff against the last ping
    ssa monitor enable fa|coin <id>      Register a target for continuous monitoring
    ssa monitor disable fa|coin <id>     Stop monitoring a target
    ssa monitor status fa|coin <id>      Show monitoring status for one target
    ssa monitor list                     List registered targets
    ssa monitor run                      Ping every enabled target, escalate drift
    ssa rules                            List the Move ruleset
    ssa config                           Show current configuration

Examples:
    ssa verify fa 0x1a2b... --rpc2 https://rpc-testnet.supra.com --json
    ssa verify coin 0x1::supra_coin::SupraCoin --tx-sample 0 -o report.json
    ssa monitor enable fa 0x1a2b... --cadence-hours 6
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from ssa_engine.core.errors import InvalidArgumentError, PersistenceError, RegistryError
from ssa_engine.core.types import (
    DriftClass,
    RiskLevel,
    TargetKind,
    VerificationReport,
    VerificationStatus,
)

__version__ = "0.1.0"


# ── Coloured output helpers ──────────────────────────────────────────────────

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"

_SEV_COLOR = {
    "critical": _RED,
    "high": "\033[38;5;208m",  # orange
    "medium": _YELLOW,
    "low": _CYAN,
    "info": _DIM,
}

_RISK_COLOR = {
    RiskLevel.SAFE_STATIC: _GREEN,
    RiskLevel.SAFE_DYNAMIC: _GREEN,
    RiskLevel.OPAQUE_BUT_ACTIVE: _YELLOW,
    RiskLevel.ELEVATED_RISK: "\033[38;5;208m",
    RiskLevel.DANGEROUS: _RED,
}


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


# ── Banner ───────────────────────────────────────────────────────────────────

BANNER = rf"""
{_BOLD}{_CYAN}  ____ ____    _
 / ___/ ___|  / \
 \___ \___ \ / _ \
  ___) |__) / ___ \
 |____/____/_/   \_\{_RESET}
  {_DIM}Supra Surface Assurance v{__version__}{_RESET}
"""

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_RISK = 2


# ── CLI argument parser ─────────────────────────────────────────────────────


def _add_rpc_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--rpc", help="Primary RPC URL (default: SSA_RPC_URL)")
    p.add_argument("--rpc2", help="Independent second RPC URL")


def _add_target_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("kind", choices=[k.value for k in TargetKind], help="Target kind")
    p.add_argument("target", help="FA address or coin type")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ssa",
        description="SSA: Supra FA/coin surface verification and drift monitoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--no-banner", action="store_true", help="Suppress the startup banner")
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")

    sub = parser.add_subparsers(dest="command")

    # ── verify ───────────────────────────────────────────────────────────────
    verify_p = sub.add_parser("verify", help="Verify an FA or coin across independent sources")
    _add_target_args(verify_p)
    _add_rpc_args(verify_p)
    verify_p.add_argument("--no-indexer", action="store_true", help="Skip the SupraScan indexer source")
    verify_p.add_argument(
        "--tx-sample", type=int, default=None, metavar="N",
        help="Sample the N most recent transactions (0 disables sampling)",
    )
    verify_p.add_argument(
        "--probe-address", action="append", default=[], metavar="ADDR",
        help="Extra address to sample transactions from (repeatable)",
    )
    verify_p.add_argument("--output", "-o", help="Write the JSON report to this file")
    verify_p.add_argument("--json", action="store_true", help="Print the JSON report to stdout")

    # ── ping ─────────────────────────────────────────────────────────────────
    ping_p = sub.add_parser("ping", help="Cheap drift snapshot of one target")
    _add_target_args(ping_p)
    _add_rpc_args(ping_p)
    ping_p.add_argument("--no-persist", action="store_true", help="Do not overwrite the stored snapshot")
    ping_p.add_argument("--json", action="store_true", help="Print the snapshot and diff as JSON")

    # ── monitor ──────────────────────────────────────────────────────────────
    monitor_p = sub.add_parser("monitor", help="Continuous monitoring registry and runner")
    monitor_sub = monitor_p.add_subparsers(dest="monitor_command")

    enable_p = monitor_sub.add_parser("enable", help="Register a target for monitoring")
    _add_target_args(enable_p)
    enable_p.add_argument("--cadence-hours", type=float, default=24.0, help="Expected run cadence")

    disable_p = monitor_sub.add_parser("disable", help="Disable monitoring for a target")
    _add_target_args(disable_p)

    status_p = monitor_sub.add_parser("status", help="Show monitoring status for a target")
    _add_target_args(status_p)
    status_p.add_argument("--json", action="store_true")

    list_p = monitor_sub.add_parser("list", help="List registered targets")
    list_p.add_argument("--json", action="store_true")

    run_p = monitor_sub.add_parser("run", help="Ping enabled targets and escalate drift")
    run_p.add_argument("--max-targets", type=int, default=None)
    run_p.add_argument("--max-deep-scans", type=int, default=None)
    run_p.add_argument("--with-indexer", action="store_true", help="Include the indexer in deep scans")
    run_p.add_argument("--tx-sample", type=int, default=None, metavar="N", help="Sample N txs in deep scans")
    run_p.add_argument("--json", action="store_true")

    # ── rules / config ───────────────────────────────────────────────────────
    sub.add_parser("rules", help="List the Move ruleset")
    sub.add_parser("config", help="Show current configuration")

    return parser


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


# ── Verify command ───────────────────────────────────────────────────────────


def exit_code_for(report: VerificationReport) -> int:
    """0 for OK, 1 for invalid arguments, 2 for a conflict or a dangerous verdict."""
    if report.status is VerificationStatus.INVALID_ARGS:
        return EXIT_FAILED
    if report.status is VerificationStatus.CONFLICT:
        return EXIT_RISK
    if report.risk and report.risk.risk_level is RiskLevel.DANGEROUS:
        return EXIT_RISK
    return EXIT_OK


def _print_report(report: VerificationReport, quiet: bool = False) -> None:
    """Pretty-print a verification report."""
    target = f"{report.target.kind.value.upper()} {report.target.id}"
    status_col = _GREEN if report.status is VerificationStatus.OK else _RED
    print(f"\n{_BOLD}Verification{_RESET} — {target}")
    print(
        f"  Status: {_c(report.status.value, status_col)}"
        f"  |  Tier: {report.overall_evidence_tier.value}"
        f"  |  Sources: {len(report.sources_succeeded)}/{len(report.sources_attempted)}"
    )
    if report.error:
        print(_c(f"  Error: {report.error}", _RED))
    if report.risk:
        level = report.risk.risk_level
        print(f"  Risk: {_c(level.value, _RISK_COLOR.get(level, '') + _BOLD)}")
        if report.risk.signals:
            print(f"  {_DIM}Signals: {', '.join(s.value for s in report.risk.signals)}{_RESET}")

    if report.claims and not quiet:
        print(f"\n  {_BOLD}Claims{_RESET}")
        for claim in report.claims:
            col = _RED if claim.status.value == "CONFLICT" else _DIM
            value = claim.value if not isinstance(claim.value, (list, dict)) else f"<{len(claim.value)} items>"
            print(f"    {claim.claim_type.value:<20} {_c(claim.status.value, col):<24} {value}")

    for d in report.discrepancies:
        print(_c(f"  ! {d.claim_type.value}: {d.detail}", _YELLOW))

    if report.findings:
        print(f"\n  {_BOLD}Findings{_RESET}")
        for i, f in enumerate(report.findings, 1):
            sev = f.severity.value
            badge = _c(f" {sev.upper()} ", _SEV_COLOR.get(sev, "") + _BOLD)
            print(f"  {_DIM}{i:>3}.{_RESET} {badge} {f.id}  {f.title}")
            if f.description and not quiet:
                desc = f.description[:200] + ("…" if len(f.description) > 200 else "")
                print(f"       {_DIM}{desc}{_RESET}")

    if report.risk and report.risk.rationale and not quiet:
        print(f"\n  {_BOLD}Rationale{_RESET}")
        for line in report.risk.rationale:
            print(f"    - {line}")
    print()


async def _run_verify(args: argparse.Namespace) -> int:
    from ssa_engine.pipeline.orchestrator import ScanOrchestrator

    orchestrator = ScanOrchestrator()
    tx_sample = None if args.tx_sample is None else args.tx_sample > 0
    try:
        report = await orchestrator.run_verify(
            args.kind, args.target,
            rpc_url=args.rpc,
            rpc_url_secondary=args.rpc2,
            with_indexer=False if args.no_indexer else None,
            tx_sample=tx_sample,
            tx_limit=args.tx_sample if args.tx_sample else None,
            probe_addresses=args.probe_address or None,
            output=args.output,
        )
    except PersistenceError as exc:
        print(_c(f"Error: {exc.message}", _RED), file=sys.stderr)
        return EXIT_FAILED

    if args.json:
        print(_dump(report.model_dump(mode="json")))
    else:
        _print_report(report, quiet=args.quiet)
        if args.output and not args.quiet:
            print(f"  Written to {_c(args.output, _CYAN)}")
    return exit_code_for(report)


# ── Ping command ─────────────────────────────────────────────────────────────


async def _run_ping(args: argparse.Namespace) -> int:
    from ssa_engine.pipeline.orchestrator import ScanOrchestrator

    orchestrator = ScanOrchestrator()
    try:
        outcome = await orchestrator.run_ping(
            args.kind, args.target,
            rpc_url=args.rpc, rpc_url_secondary=args.rpc2, persist=not args.no_persist,
        )
    except PersistenceError as exc:
        print(_c(f"Error: {exc.message}", _RED), file=sys.stderr)
        return EXIT_FAILED

    if args.json:
        print(_dump({
            "target": outcome.target.model_dump(mode="json"),
            "snapshot": outcome.snapshot.model_dump(mode="json") if outcome.snapshot else None,
            "drift": outcome.drift.value if outcome.drift else None,
            "diff": outcome.diff.model_dump(mode="json") if outcome.diff else None,
        }))
        return EXIT_OK if outcome.ok else EXIT_FAILED

    if not outcome.ok:
        print(_c(f"PING FAILED: could not build snapshot for {args.target}", _RED), file=sys.stderr)
        return EXIT_FAILED

    fp = outcome.snapshot.fingerprint
    drift = outcome.drift or DriftClass.BASELINE
    col = _YELLOW if drift is DriftClass.CHANGED else _GREEN
    print(f"  {outcome.target.kind.value.upper()} {outcome.target.id} | PING {_c(drift.value, col)} | fp={fp}")
    if outcome.diff:
        for change in outcome.diff.changes:
            sev = change.severity.value if change.severity else "info"
            print(
                f"    {_c(sev.upper(), _SEV_COLOR.get(sev, ''))} {change.change_type or change.field}"
                f"  {change.field}: {change.before!r} → {change.after!r}"
            )
    return EXIT_OK


# ── Monitor command ──────────────────────────────────────────────────────────


async def _run_monitor(args: argparse.Namespace) -> int:
    from ssa_engine.core.config import get_settings
    from ssa_engine.monitoring.registry import MonitorRegistry, compute_monitoring_status
    from ssa_engine.monitoring.scheduler import format_result_line
    from ssa_engine.pipeline.orchestrator import ScanOrchestrator

    registry = MonitorRegistry.load(get_settings().registry_path)
    cmd = args.monitor_command

    try:
        if cmd == "enable":
            entry = registry.enable(args.kind, args.target, args.cadence_hours)
            registry.save()
            print(f"  Monitoring {_c('enabled', _GREEN)} for {entry.key} (every {entry.cadence_hours:g}h)")
            return EXIT_OK

        if cmd == "disable":
            disabled = registry.disable(args.kind, args.target)
            if disabled is None:
                print(_c(f"  {args.kind}:{args.target} is not registered", _YELLOW))
                return EXIT_OK
            registry.save()
            print(f"  Monitoring {_c('disabled', _YELLOW)} for {disabled.key}")
            return EXIT_OK

        if cmd == "status":
            status = compute_monitoring_status(registry.get(args.kind, args.target))
            if args.json:
                print(_dump(status.model_dump(mode="json")))
            else:
                state = _c("active", _GREEN) if status.monitoring_active else _c(status.reason or "inactive", _YELLOW)
                print(f"  {args.kind}:{args.target} | {state}")
                if status.next_scheduled_utc:
                    print(f"  {_DIM}last run {status.last_run_utc}, next {status.next_scheduled_utc}{_RESET}")
            return EXIT_OK

        if cmd == "list":
            rows = registry.listing()
            if args.json:
                print(_dump([
                    {"key": key, "entry": e.model_dump(mode="json"), "status": s.model_dump(mode="json")}
                    for key, e, s in rows
                ]))
                return EXIT_OK
            if not rows:
                print(_c("  No monitored targets. Use `ssa monitor enable` to add one.", _DIM))
            for key, entry, status in rows:
                state = "active" if status.monitoring_active else (status.reason or "inactive")
                print(f"  {key}  {_DIM}cadence={entry.cadence_hours:g}h{_RESET}  {state}")
            return EXIT_OK

        if cmd == "run":
            results = await ScanOrchestrator().run_monitor(
                registry,
                max_targets=args.max_targets,
                max_deep_scans=args.max_deep_scans,
                with_indexer=True if args.with_indexer else None,
                tx_sample=args.tx_sample,
            )
            if args.json:
                print(_dump([r.model_dump(mode="json") for r in results]))
            else:
                for result in results:
                    print(f"  {format_result_line(result)}")
            return EXIT_OK
    except (InvalidArgumentError, RegistryError) as exc:
        print(_c(f"Error: {exc.message}", _RED), file=sys.stderr)
        return EXIT_FAILED
    except PersistenceError as exc:
        print(_c(f"Error: {exc.message}", _RED), file=sys.stderr)
        return EXIT_FAILED

    print(_c("Error: choose one of enable, disable, status, list, run.", _RED), file=sys.stderr)
    return EXIT_FAILED


# ── Rules command ────────────────────────────────────────────────────────────


def _run_rules() -> int:
    from ssa_engine.analyzer.move.registry import RULESET_VERSION, registry

    print(f"\n{_BOLD}Move ruleset {RULESET_VERSION}{_RESET} ({registry.count()} rules)\n")
    for rule in registry.get_all():
        sev = rule.SEVERITY.value
        print(f"  {rule.RULE_ID:<16} {_c(sev.upper(), _SEV_COLOR.get(sev, '')):<20} {rule.NAME}")
        if rule.CATEGORY:
            print(f"  {'':<16} {_DIM}{rule.CATEGORY}{_RESET}")
    print()
    return EXIT_OK


# ── Config command ───────────────────────────────────────────────────────────


def _run_config() -> int:
    """Print current settings."""
    from ssa_engine.core.config import get_settings

    s = get_settings()
    print(f"\n{_BOLD}SSA Configuration{_RESET}\n")
    for field_name in sorted(type(s).model_fields.keys()):
        val = getattr(s, field_name, "")
        print(f"  {_DIM}{field_name}:{_RESET}  {val}")
    print()
    return EXIT_OK


# ── Entrypoint ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    from ssa_engine.core.config import get_settings
    from ssa_engine.core.logging import setup_logging

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"ssa {__version__}")
        return EXIT_OK

    settings = get_settings()
    setup_logging(settings.app_env, "WARNING" if args.quiet else settings.log_level)

    if not args.no_banner and not getattr(args, "json", False):
        print(BANNER, file=sys.stderr)

    if not args.command:
        parser.print_help()
        return EXIT_OK

    if args.command == "config":
        return _run_config()

    if args.command == "rules":
        return _run_rules()

    if args.command == "verify":
        return asyncio.run(_run_verify(args))

    if args.command == "ping":
        return asyncio.run(_run_ping(args))

    if args.command == "monitor":
        return asyncio.run(_run_monitor(args))

    parser.print_help()
    return EXIT_OK


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
