"""Ping snapshots: cheap drift fingerprints and snapshot diffs.

A ping fetches one resource list plus the relevant module artifacts,
reduces them to a small source-agnostic ``drift_keys`` document and
fingerprints it.  Comparing two snapshots is a plain structural diff; the
severity of each change is assigned later by
:mod:`ssa_engine.risk.severity_rules`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ssa_engine.analyzer.artifact_view import abi_entry_functions
from ssa_engine.analyzer.resources import (
    CoinCapabilities,
    FaCapabilities,
    analyze_coin_resources,
    analyze_fa_resources,
)
from ssa_engine.core.config import get_settings
from ssa_engine.core.errors import InvalidArgumentError, RpcTransportError
from ssa_engine.core.hashing import fingerprint
from ssa_engine.core.identifiers import CoinType, parse_address, parse_coin_type
from ssa_engine.core.types import (
    DriftChange,
    DriftClass,
    DriftDiff,
    PingSnapshot,
    SnapshotMeta,
    TargetKind,
    TargetRef,
)
from ssa_engine.ingestion.rpc_client import RpcOptions, SupraRpcClient
from ssa_engine.risk.severity_rules import supply_delta
from ssa_engine.verifier.pins import (
    ROLE_COIN_DEFINING,
    ModulePins,
    pin_coin_module,
    pin_hook_modules,
    pin_modules,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"

_SCALAR_KEYS = ("owner", "supply_current", "supply_max", "decimals")
_HASH_MAPS = (
    ("hook_module_hashes", "hook_module_hash"),
    ("publisher_module_hashes", "publisher_module_hash"),
)
_CAPABILITY_MAPS = ("capabilities", "coin_capabilities")


# ── Drift keys ───────────────────────────────────────────────────────────────


def _hash_map(pins: ModulePins) -> dict[str, str | None]:
    return {pin.module_id: pin.code_hash for pin in pins.pins}


def _entry_functions(pins: ModulePins) -> list[str]:
    return sorted({
        f"{module_id}::{name}"
        for module_id, abi in pins.abis.items()
        for name in abi_entry_functions(abi)
    })


def build_drift_keys_fa(caps: FaCapabilities, pins: ModulePins) -> dict[str, Any]:
    hooks = sorted(
        (h.model_dump() for h in caps.hook_modules),
        key=lambda h: (h["module_address"], h["module_name"], h["function_name"]),
    )
    return {
        "owner": caps.owner,
        "supply_current": caps.supply_current,
        "supply_max": caps.supply_max,
        "hooks": hooks,
        "hook_module_hashes": _hash_map(pins),
        "capabilities": caps.capability_flags(),
        "entry_functions": _entry_functions(pins),
    }


def build_drift_keys_coin(caps: CoinCapabilities, pins: ModulePins) -> dict[str, Any]:
    return {
        "supply_current": caps.supply_current,
        "supply_max": caps.supply_max,
        "decimals": caps.decimals,
        "coin_capabilities": caps.capability_flags(),
        "publisher_module_hashes": _hash_map(pins),
        "entry_functions": _entry_functions(pins),
    }


def _module_name(module: dict[str, Any]) -> str | None:
    name = module.get("name")
    if not name and isinstance(module.get("abi"), dict):
        name = module["abi"].get("name")
    return name if isinstance(name, str) and name else None


async def _fa_drift_keys(client: SupraRpcClient, fa_address: str) -> dict[str, Any] | None:
    resources = await client.get_resources(fa_address)
    if not resources:
        return None
    caps: FaCapabilities = analyze_fa_resources(resources).caps  # type: ignore[assignment]
    pins = await pin_hook_modules(client, caps.hook_modules)
    return build_drift_keys_fa(caps, pins)


async def _coin_drift_keys(client: SupraRpcClient, coin: CoinType) -> dict[str, Any] | None:
    resources = await client.get_resources(coin.publisher_address)
    if not resources:
        return None
    caps: CoinCapabilities = analyze_coin_resources(resources, struct_name=coin.struct_name).caps  # type: ignore[assignment]
    pins = await pin_coin_module(client, coin)
    try:
        listed = await client.list_modules(coin.publisher_address)
    except RpcTransportError as exc:
        logger.debug("Publisher module listing failed for %s: %s", coin, exc.message)
        listed = []
    others = [
        (coin.publisher_address, name)
        for name in (_module_name(m) for m in listed)
        if name and name != coin.module_name
    ]
    if others:
        extra = await pin_modules(client, others, ROLE_COIN_DEFINING)
        pins.pins.extend(extra.pins)
        pins.abis.update(extra.abis)
    return build_drift_keys_coin(caps, pins)


async def build_snapshot(
    kind: TargetKind | str,
    target_id: str,
    rpc_url: str | None = None,
    *,
    rpc_url_secondary: str | None = None,
    client: SupraRpcClient | None = None,
) -> PingSnapshot | None:
    """Build a ping snapshot, or ``None`` when the target cannot be read.

    Uses the ping transport policy (one retry, longer timeout) unless a
    client is passed in.
    """
    kind = TargetKind(kind)
    rpc_url = rpc_url or (client.rpc_url if client else get_settings().rpc_url)
    try:
        if kind is TargetKind.FA:
            identity = parse_address(target_id)
            coin = None
        elif kind is TargetKind.COIN:
            coin = parse_coin_type(target_id)
            identity = str(coin)
        else:
            logger.warning("Ping does not support target kind %s", kind.value)
            return None
        owned = client is None
        rpc = client or SupraRpcClient(rpc_url, RpcOptions.for_ping())
    except InvalidArgumentError as exc:
        logger.warning("Ping skipped for %s: %s", target_id, exc.message, extra={"target": target_id})
        return None

    try:
        if coin is None:
            drift_keys = await _fa_drift_keys(rpc, identity)
        else:
            drift_keys = await _coin_drift_keys(rpc, coin)
    except RpcTransportError as exc:
        logger.warning("Ping failed for %s: %s", identity, exc.message, extra={"target": identity})
        return None
    finally:
        if owned:
            await rpc.close()

    if drift_keys is None:
        logger.info("Ping found no resources for %s", identity, extra={"target": identity})
        return None

    fp = fingerprint(drift_keys)
    logger.debug("Ping snapshot built", extra={"target": identity, "fingerprint": fp})
    return PingSnapshot(
        meta=SnapshotMeta(
            ts=datetime.now(timezone.utc).isoformat(),
            rpc=rpc.rpc_url,
            rpc2=rpc_url_secondary,
            version=SNAPSHOT_VERSION,
            kind=kind,
        ),
        identity=TargetRef(kind=kind, id=identity),
        drift_keys=drift_keys,
        fingerprint=fp,
    )


# ── Diff ─────────────────────────────────────────────────────────────────────


def _hook_key(hook: dict[str, Any]) -> tuple[str, str, str]:
    return (
        str(hook.get("module_address", "")).lower(),
        str(hook.get("module_name", "")),
        str(hook.get("function_name", "")),
    )


def _diff_hooks(prev: list[dict[str, Any]], curr: list[dict[str, Any]]) -> list[DriftChange]:
    prev_keys = {_hook_key(h) for h in prev}
    curr_keys = {_hook_key(h) for h in curr}
    changes = [DriftChange(field="hooks", type="added", after=h) for h in curr if _hook_key(h) not in prev_keys]
    changes += [DriftChange(field="hooks", type="removed", before=h) for h in prev if _hook_key(h) not in curr_keys]
    return changes


def _diff_hash_map(prefix: str, prev: dict[str, Any], curr: dict[str, Any]) -> list[DriftChange]:
    changes: list[DriftChange] = []
    for module_id in sorted(set(prev) | set(curr)):
        name = f"{prefix}.{module_id}"
        if module_id not in prev:
            changes.append(DriftChange(field=name, type="added", after=curr[module_id]))
        elif module_id not in curr:
            changes.append(DriftChange(field=name, type="removed", before=prev[module_id]))
        elif prev[module_id] != curr[module_id]:
            changes.append(DriftChange(field=name, type="modified", before=prev[module_id], after=curr[module_id]))
    return changes


def diff_snapshots(prev: PingSnapshot | None, curr: PingSnapshot) -> DriftDiff:
    """Structural diff of two snapshots' drift keys.

    A missing previous snapshot is a baseline: ``changed`` is False.
    """
    if prev is None:
        return DriftDiff(changed=False, curr_fingerprint=curr.fingerprint)

    before, after = prev.drift_keys, curr.drift_keys
    changes: list[DriftChange] = []

    for key in _SCALAR_KEYS:
        old, new = before.get(key), after.get(key)
        if old == new:
            continue
        delta = None
        if key == "supply_current":
            signed = supply_delta(old, new)
            delta = str(signed) if signed is not None else None
        changes.append(DriftChange(field=key, type="modified", before=old, after=new, delta=delta))

    changes += _diff_hooks(before.get("hooks") or [], after.get("hooks") or [])

    for key, prefix in _HASH_MAPS:
        changes += _diff_hash_map(prefix, before.get(key) or {}, after.get(key) or {})

    for key in _CAPABILITY_MAPS:
        old_caps, new_caps = before.get(key) or {}, after.get(key) or {}
        for flag in sorted(set(old_caps) | set(new_caps)):
            if old_caps.get(flag) != new_caps.get(flag):
                changes.append(DriftChange(
                    field=f"{key}.{flag}", type="modified",
                    before=old_caps.get(flag), after=new_caps.get(flag),
                ))

    old_entries, new_entries = set(before.get("entry_functions") or []), set(after.get("entry_functions") or [])
    if old_entries != new_entries:
        changes.append(DriftChange(
            field="abi_surface", type="modified",
            before=sorted(old_entries - new_entries),
            after=sorted(new_entries - old_entries),
        ))

    return DriftDiff(
        changed=bool(changes),
        changes=changes,
        prev_fingerprint=prev.fingerprint,
        curr_fingerprint=curr.fingerprint,
    )


def drift_class(prev: PingSnapshot | None, diff: DriftDiff) -> DriftClass:
    if prev is None:
        return DriftClass.BASELINE
    return DriftClass.CHANGED if diff.changed else DriftClass.STABLE
