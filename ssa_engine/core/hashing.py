"""Canonical JSON and hashing helpers used for fingerprints and code pins."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

FINGERPRINT_LENGTH = 16

_HEX_RE = re.compile(r"^[0-9a-f]*$")


def canonical_json(value: Any) -> str:
    """Serialize with recursively sorted object keys; array order is kept."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def sha256_hex(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def fingerprint(value: Any) -> str:
    """Truncated SHA-256 of the canonical JSON form of ``value``."""
    return sha256_hex(canonical_json(value))[:FINGERPRINT_LENGTH]


def normalize_module_id(module_id: str) -> str:
    """Lowercase the address half of ``addr::module``; the module name is kept."""
    parts = module_id.split("::")
    if len(parts) < 2:
        return module_id
    address = parts[0].strip().lower()
    if not address.startswith("0x"):
        address = "0x" + address
    return f"{address}::{'::'.join(parts[1:])}"


def hash_module_artifact(
    bytecode_hex: str | None, abi: Any | None,
) -> tuple[str, str] | None:
    """Return ``(hash, basis)`` for a module, preferring bytecode over ABI.

    Bytecode hashes the raw bytes; ABI hashes its canonical JSON.  ``None``
    when neither is available.
    """
    if bytecode_hex:
        stripped = bytecode_hex.strip()
        cleaned = stripped.lower()
        if cleaned.startswith("0x"):
            cleaned = cleaned[2:]
        if cleaned and len(cleaned) % 2 == 0 and _HEX_RE.match(cleaned):
            return sha256_hex(bytes.fromhex(cleaned)), "bytecode"
        if cleaned:
            # Not hex (e.g. base64 from some nodes): hash the text as given.
            return sha256_hex(stripped), "bytecode"
    if abi:
        return sha256_hex(canonical_json(abi)), "abi"
    return None
