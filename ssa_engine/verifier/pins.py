"""Module code-hash pins and ABI presence for hook and coin-defining modules."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ssa_engine.analyzer.artifact_view import abi_entry_functions, abi_function_names
from ssa_engine.core.hashing import hash_module_artifact, normalize_module_id
from ssa_engine.core.identifiers import CoinType
from ssa_engine.core.types import AbiPresence, HookModule, ModuleHashPin
from ssa_engine.ingestion.rpc_client import ModuleArtifact, SupraRpcClient

logger = logging.getLogger(__name__)

ROLE_HOOK = "hook"
ROLE_COIN_DEFINING = "coin_defining"


@dataclass
class ModulePins:
    """Pins, ABI presence and fetched artifacts for one set of modules, sorted by module id.

    ``opaque`` lists modules the node returned neither ABI nor bytecode for.
    """

    pins: list[ModuleHashPin] = field(default_factory=list)
    abi_presence: list[AbiPresence] = field(default_factory=list)
    abis: dict[str, Any] = field(default_factory=dict)
    artifacts: dict[str, ModuleArtifact] = field(default_factory=dict)
    opaque: list[str] = field(default_factory=list)


def pin_artifact(artifact: ModuleArtifact, role: str) -> ModuleHashPin:
    hashed = hash_module_artifact(artifact.bytecode_hex, artifact.abi)
    return ModuleHashPin(
        module_id=normalize_module_id(artifact.module_id),
        code_hash=hashed[0] if hashed else None,
        hash_basis=hashed[1] if hashed else "none",
        fetched_from=artifact.fetched_from,
        role=role,
    )


def abi_presence_for(artifact: ModuleArtifact) -> AbiPresence:
    return AbiPresence(
        module_id=normalize_module_id(artifact.module_id),
        has_abi=artifact.abi is not None,
        entry_fns=len(abi_entry_functions(artifact.abi)),
        exposed_fns=len(abi_function_names(artifact.abi)),
    )


async def pin_modules(
    client: SupraRpcClient,
    modules: Iterable[tuple[str, str]],
    role: str,
    api: str = "v3",
) -> ModulePins:
    """Fetch each unique ``(address, module)`` once and pin it.

    A module that cannot be fetched still gets a pin with ``code_hash=None``.
    """
    unique: dict[str, tuple[str, str]] = {}
    for address, name in modules:
        unique.setdefault(normalize_module_id(f"{address}::{name}"), (address, name))

    result = ModulePins()
    for module_id in sorted(unique):
        address, name = unique[module_id]
        artifact = await client.get_module(address, name, api=api)
        if not artifact.available:
            logger.debug("Module %s unavailable for pinning", module_id)
        result.pins.append(pin_artifact(artifact, role))
        result.abi_presence.append(abi_presence_for(artifact))
        if artifact.abi is not None:
            result.abis[module_id] = artifact.abi
        if artifact.available:
            result.artifacts[module_id] = artifact
        else:
            result.opaque.append(module_id)
    return result


async def pin_hook_modules(client: SupraRpcClient, hooks: Iterable[HookModule], api: str = "v3") -> ModulePins:
    return await pin_modules(client, ((h.module_address, h.module_name) for h in hooks), ROLE_HOOK, api=api)


async def pin_coin_module(client: SupraRpcClient, coin: CoinType, api: str = "v3") -> ModulePins:
    return await pin_modules(client, [(coin.publisher_address, coin.module_name)], ROLE_COIN_DEFINING, api=api)
