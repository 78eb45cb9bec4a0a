"""Transaction behavior sampling.

Pulls a bounded list of recent transactions for the target's related
addresses and compares the entry functions they invoked against the
declared interface (the pinned ABI inventory).  Only the function id of
each transaction is consumed.

A *phantom* entry is an invoked function whose module is part of the pinned
inventory but which that module does not declare, or a function on a
pinned publisher address whose module is missing from the inventory.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from ssa_engine.analyzer.artifact_view import abi_function_names
from ssa_engine.core.errors import RpcTransportError
from ssa_engine.core.identifiers import is_full_address, normalize_address
from ssa_engine.core.types import (
    AbiPresence,
    BehaviorEvidence,
    BehaviorStatus,
    HookModule,
    InvokedEntry,
)

logger = logging.getLogger(__name__)

UNKNOWN_MODULE = "unknown::unknown"

_TIMESTAMP_KEYS = ("timestamp", "created_at", "block_timestamp")
_HEIGHT_KEYS = ("height", "block_height", "version")


class TransactionSource(Protocol):
    async def get_transactions(self, address: str, limit: int = 20) -> list[dict[str, Any]]: ...


# ── Function ids ─────────────────────────────────────────────────────────────


def parse_function_id(function_id: str) -> InvokedEntry:
    """Split ``addr::module::fn``; anything shorter lands under ``unknown::unknown``."""
    parts = function_id.split("::")
    if len(parts) >= 3:
        address = parts[0].strip().lower()
        module_id = f"{address}::{parts[1]}"
        name = "::".join(parts[2:])
        return InvokedEntry(function_id=f"{module_id}::{name}", module_id=module_id, function_name=name)
    return InvokedEntry(
        function_id=f"{UNKNOWN_MODULE}::{function_id}",
        module_id=UNKNOWN_MODULE,
        function_name=function_id,
    )


def _function_from_payload(payload: Any) -> str | None:
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            return None
    if not isinstance(payload, dict):
        return None
    for key in ("function", "entry_function_id"):
        if isinstance(payload.get(key), str) and payload[key]:
            return payload[key]
    return None


def extract_function_id(tx: dict[str, Any]) -> str | None:
    """Entry function id of one transaction, from whichever field the node used."""
    for key in ("function", "entry_function_id", "entryFunctionId"):
        value = tx.get(key)
        if isinstance(value, str) and value:
            return value
    from_payload = _function_from_payload(tx.get("payload"))
    if from_payload:
        return from_payload
    for key in ("functionName", "function_name"):
        value = tx.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _first_number(tx: dict[str, Any], keys: tuple[str, ...]) -> float:
    for key in keys:
        value = tx.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                try:
                    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
                except ValueError:
                    continue
    return 0.0


def _sort_key(tx: dict[str, Any]) -> tuple[float, float]:
    return _first_number(tx, _TIMESTAMP_KEYS), _first_number(tx, _HEIGHT_KEYS)


# ── Pinned inventory ─────────────────────────────────────────────────────────


def build_pinned_entry_map(
    abi_presence: Iterable[AbiPresence],
    hook_modules: Iterable[HookModule] = (),
    abis: dict[str, Any] | None = None,
) -> dict[str, list[str]]:
    """Declared functions per module id (lowercased address).

    Modules with an ABI contribute every function it names (when the ABI
    itself is supplied in ``abis``); hook modules contribute their hook
    function.
    """
    abis = {k.lower(): v for k, v in (abis or {}).items()}
    pinned: dict[str, list[str]] = {}
    for presence in abi_presence:
        if not presence.has_abi:
            continue
        module_id = presence.module_id.lower()
        names = pinned.setdefault(module_id, [])
        for name in abi_function_names(abis.get(module_id)):
            if name not in names:
                names.append(name)
    for hook in hook_modules:
        module_id = f"{hook.module_address.lower()}::{hook.module_name}"
        names = pinned.setdefault(module_id, [])
        if hook.function_name not in names:
            names.append(hook.function_name)
    return pinned


def find_phantom_entries(
    invoked: list[InvokedEntry], pinned: dict[str, list[str]],
) -> list[InvokedEntry]:
    """Invoked entries absent from the pinned inventory.

    Calls into modules published at addresses the inventory does not cover
    are foreign and ignored.
    """
    if not pinned:
        return []
    declared = {m.lower(): {f.lower() for f in fns} for m, fns in pinned.items()}
    pinned_addresses = {m.split("::")[0] for m in declared}
    phantoms: list[InvokedEntry] = []
    for entry in invoked:
        if entry.module_id == UNKNOWN_MODULE:
            continue
        module_key = entry.module_id.lower()
        functions = declared.get(module_key)
        if functions is None:
            if module_key.split("::")[0] in pinned_addresses:
                phantoms.append(entry)
            continue
        if functions and entry.function_name.lower() not in functions:
            phantoms.append(entry)
    return phantoms


# ── Sampling ─────────────────────────────────────────────────────────────────


def _collect_addresses(
    addresses: Iterable[str | None], probe_addresses: Iterable[str], warnings: list[str],
) -> list[str]:
    ordered: list[str] = []
    for addr in addresses:
        normalized = normalize_address(addr)
        if normalized and normalized not in ordered:
            ordered.append(normalized)
    for probe in probe_addresses:
        normalized = normalize_address(probe)
        if not normalized or not is_full_address(normalized):
            warnings.append(f"Invalid probe address {probe!r}: expected 0x followed by 64 hex characters")
            continue
        if normalized not in ordered:
            ordered.append(normalized)
    return ordered


def summarize_behavior(
    transactions: list[dict[str, Any]],
    pinned: dict[str, list[str]],
    has_opaque_abi: bool,
) -> tuple[list[InvokedEntry], list[InvokedEntry], bool, str | None]:
    """``(invoked, phantom, opaque_active, reason)`` for a transaction list."""
    invoked: dict[str, InvokedEntry] = {}
    for tx in transactions:
        function_id = extract_function_id(tx)
        if not function_id:
            continue
        entry = parse_function_id(function_id)
        invoked.setdefault(entry.function_id, entry)
    entries = list(invoked.values())
    phantoms = find_phantom_entries(entries, pinned)

    opaque_active, reason = False, None
    if has_opaque_abi and transactions:
        opaque_active = True
        reason = (
            f"ABI is opaque/empty but {len(transactions)} recent transactions found. "
            "Activity cannot be checked against a declared interface."
        )
    elif not pinned and entries:
        opaque_active = True
        reason = (
            f"No modules in pinned ABI inventory but {len(entries)} unique entry points invoked. "
            "Activity cannot be checked against a declared interface."
        )
    return entries, phantoms, opaque_active, reason


async def sample_recent_behavior(
    tx_source: TransactionSource,
    addresses: Iterable[str | None],
    pinned: dict[str, list[str]],
    *,
    has_opaque_abi: bool = False,
    limit: int = 20,
    probe_addresses: Iterable[str] = (),
) -> BehaviorEvidence:
    """Sample recent transactions and compare them with the pinned inventory.

    Never raises: transport failure on every address yields ``unavailable``.
    """
    sampled_at = datetime.now(timezone.utc).isoformat()
    warnings: list[str] = []
    targets = _collect_addresses(addresses, probe_addresses, warnings)
    if not targets:
        return BehaviorEvidence(
            status=BehaviorStatus.ERROR,
            sampled_at=sampled_at,
            warnings=warnings,
            error="No address provided for transaction sampling",
        )

    transactions: list[dict[str, Any]] = []
    answered = 0
    errors: list[str] = []
    for address in targets:
        try:
            txs = await tx_source.get_transactions(address, limit=limit)
        except RpcTransportError as exc:
            logger.debug("Transaction sampling failed for %s: %s", address, exc)
            errors.append(f"{address}: {exc.message}")
            continue
        answered += 1
        transactions.extend(txs)

    if answered == 0:
        return BehaviorEvidence(
            status=BehaviorStatus.UNAVAILABLE,
            sampled_at=sampled_at,
            sampled_addresses=targets,
            warnings=warnings + errors,
            error="RPC account transaction endpoints unavailable",
        )

    transactions.sort(key=_sort_key, reverse=True)
    transactions = transactions[:limit]
    if not transactions:
        return BehaviorEvidence(
            status=BehaviorStatus.OK_EMPTY,
            sampled_at=sampled_at,
            sampled_addresses=targets,
            warnings=warnings,
        )

    invoked, phantoms, opaque_active, reason = summarize_behavior(transactions, pinned, has_opaque_abi)
    if not invoked and not opaque_active:
        # Transactions exist but none carried an entry function id.
        return BehaviorEvidence(
            status=BehaviorStatus.NO_ACTIVITY,
            tx_count=len(transactions),
            sampled_at=sampled_at,
            sampled_addresses=targets,
            warnings=warnings,
        )
    if phantoms:
        logger.warning(
            "Phantom entry points observed: %s",
            ", ".join(p.function_id for p in phantoms),
        )
    return BehaviorEvidence(
        status=BehaviorStatus.SAMPLED,
        tx_count=len(transactions),
        invoked_entries=invoked,
        phantom_entries=phantoms,
        opaque_active=opaque_active,
        opaque_active_reason=reason,
        sampled_at=sampled_at,
        sampled_addresses=targets,
        warnings=warnings,
    )
