"""ArtifactView: the immutable, normalized view of a module the rules run over.

Built once per scan from whatever was available: an ABI descriptor, raw
bytecode, Move source, and/or the results of view-function calls.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from ssa_engine.analyzer.move.source_parser import parse_move_source
from ssa_engine.core.hashing import normalize_module_id

_MIN_BYTECODE_STRING = 3
_VIEW_IDENT_RE = re.compile(r'"([a-zA-Z_][a-zA-Z0-9_]*)"')


@dataclass(frozen=True)
class ArtifactView:
    module_id: str
    entry_functions: tuple[str, ...] = ()
    function_names: tuple[str, ...] = ()
    strings: tuple[str, ...] = ()
    abi: Any = field(default=None, compare=False, hash=False)
    has_bytecode: bool = False
    has_source: bool = False
    view_results: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def artifact_mode(self) -> str:
        has_code = self.abi is not None or self.has_bytecode or self.has_source
        if not has_code:
            return "view_only"
        if self.has_source:
            return "hybrid_local" if self.view_results else "artifact_only"
        return "view_plus_onchain_module"


def _dedupe(items: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(i for i in items if i))


def _abi_function_lists(abi: Any) -> list[list[Any]]:
    if isinstance(abi, list):
        return [abi]
    if not isinstance(abi, dict):
        return []
    lists = [abi.get(k) for k in ("functions", "entry_functions", "exposed_functions")]
    nested = abi.get("abi")
    if isinstance(nested, dict):
        lists.extend(nested.get(k) for k in ("functions", "entry_functions", "exposed_functions"))
    return [lst for lst in lists if isinstance(lst, list)]


def abi_function_names(abi: Any) -> list[str]:
    """All function names an ABI descriptor declares."""
    names: list[str] = []
    for fns in _abi_function_lists(abi):
        for fn in fns:
            if isinstance(fn, dict) and isinstance(fn.get("name"), str):
                names.append(fn["name"])
            elif isinstance(fn, str):
                names.append(fn)
    return list(dict.fromkeys(names))


def abi_entry_functions(abi: Any) -> list[str]:
    """Entry functions: everything under ``entry_functions`` plus functions marked entry."""
    if not isinstance(abi, (dict, list)):
        return []
    entries: list[str] = []
    if isinstance(abi, dict) and isinstance(abi.get("entry_functions"), list):
        for fn in abi["entry_functions"]:
            if isinstance(fn, dict) and isinstance(fn.get("name"), str):
                entries.append(fn["name"])
            elif isinstance(fn, str):
                entries.append(fn)
    for fns in _abi_function_lists(abi):
        for fn in fns:
            if not isinstance(fn, dict) or not isinstance(fn.get("name"), str):
                continue
            if fn.get("is_entry") is True or fn.get("visibility") in ("entry", "public"):
                entries.append(fn["name"])
    return list(dict.fromkeys(entries))


def bytecode_strings(bytecode_hex: str) -> list[str]:
    """Printable ASCII runs of at least three characters in hex-encoded bytecode."""
    cleaned = bytecode_hex.strip().lower()
    if cleaned.startswith("0x"):
        cleaned = cleaned[2:]
    try:
        raw = bytes.fromhex(cleaned)
    except ValueError:
        return []
    found: list[str] = []
    current: list[str] = []
    for byte in raw:
        if 32 <= byte <= 126:
            current.append(chr(byte))
            continue
        if len(current) >= _MIN_BYTECODE_STRING:
            found.append("".join(current))
        current = []
    if len(current) >= _MIN_BYTECODE_STRING:
        found.append("".join(current))
    return found


def build_artifact_view(
    module_id: str,
    *,
    abi: Any = None,
    bytecode_hex: str | None = None,
    source: str | None = None,
    view_results: dict[str, Any] | None = None,
) -> ArtifactView:
    """Merge every available artifact for ``module_id`` into one ArtifactView."""
    entry: list[str] = []
    names: list[str] = []
    strings: list[str] = []

    if abi is not None:
        names.extend(abi_function_names(abi))
        entry.extend(abi_entry_functions(abi))

    if source:
        parsed = parse_move_source(source)
        entry.extend(parsed.entry_functions)
        names.extend(f.name for f in parsed.functions)
        strings.extend(parsed.strings)
        strings.extend(f.name for f in parsed.functions)

    if bytecode_hex:
        strings.extend(bytecode_strings(bytecode_hex))

    view_results = view_results or {}
    if view_results:
        names.extend(view_results)
        if not entry:
            entry.extend(
                fn for fn in view_results
                if fn.startswith("view_") or "_of" in fn or "stats" in fn or "length" in fn
            )
        for value in view_results.values():
            if isinstance(value, str):
                strings.append(value)
            elif value is not None:
                strings.extend(_VIEW_IDENT_RE.findall(json.dumps(value, default=str)))

    return ArtifactView(
        module_id=normalize_module_id(module_id),
        entry_functions=_dedupe(entry),
        function_names=_dedupe(names),
        strings=_dedupe(strings),
        abi=abi,
        has_bytecode=bool(bytecode_hex),
        has_source=bool(source),
        view_results=dict(view_results),
    )
