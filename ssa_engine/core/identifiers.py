"""Validation and normalization of addresses, coin types, supplies and URLs."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from ssa_engine.core.errors import InvalidArgumentError

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{1,64}$")
_FULL_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{64}$")
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DIGITS_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class CoinType:
    """Legacy coin identity: ``publisher::module::Struct``."""

    publisher_address: str
    module_name: str
    struct_name: str

    @property
    def module_id(self) -> str:
        return f"{self.publisher_address}::{self.module_name}"

    def __str__(self) -> str:
        return f"{self.publisher_address}::{self.module_name}::{self.struct_name}"


def normalize_address(addr: str | None) -> str | None:
    """Lowercase, trim and ensure a ``0x`` prefix.  ``None`` for empty input."""
    if addr is None:
        return None
    cleaned = str(addr).strip().lower()
    if not cleaned:
        return None
    if not cleaned.startswith("0x"):
        cleaned = "0x" + cleaned
    return cleaned


def is_full_address(addr: str) -> bool:
    return bool(_FULL_ADDRESS_RE.match(addr))


def parse_address(addr: str) -> str:
    """Validate a target address, raising InvalidArgumentError if malformed."""
    normalized = normalize_address(addr)
    if not normalized or not _ADDRESS_RE.match(normalized):
        raise InvalidArgumentError(f"Invalid address: {addr!r}")
    return normalized


def parse_coin_type(coin_type: str) -> CoinType:
    """Parse ``0xaddr::module::Struct``, raising InvalidArgumentError if malformed."""
    parts = (coin_type or "").strip().split("::")
    if len(parts) != 3:
        raise InvalidArgumentError(
            f"Invalid coin type {coin_type!r}: expected <address>::<module>::<Struct>"
        )
    address = parse_address(parts[0])
    module_name, struct_name = parts[1], parts[2]
    if not _IDENT_RE.match(module_name) or not _IDENT_RE.match(struct_name):
        raise InvalidArgumentError(f"Invalid coin type {coin_type!r}: bad identifier")
    return CoinType(address, module_name, struct_name)


def validate_rpc_url(url: str, source_name: str = "rpc") -> str:
    """Reject placeholders and non-http(s) URLs; return the URL without trailing slashes."""
    if not url or "<" in url or ">" in url:
        raise InvalidArgumentError(f"{source_name}: RPC URL looks like a placeholder: {url!r}")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise InvalidArgumentError(f"{source_name}: RPC URL must be http or https: {url!r}")
    if not parsed.hostname:
        raise InvalidArgumentError(f"{source_name}: RPC URL has no hostname: {url!r}")
    return url.rstrip("/")


def normalize_supply(value: Any) -> str | None:
    """Reduce a supply value to a base-unit decimal-digit string.

    Handles plain digit strings, non-negative ints, and the nested wrappers
    nodes use (``vec``, ``aggregator``, ``integer``, ``value``, ``magnitude``).
    Floats and anything ambiguous yield ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value) if value >= 0 else None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if _DIGITS_RE.match(stripped) else None
    if isinstance(value, list):
        return normalize_supply(value[0]) if value else None
    if isinstance(value, dict):
        for key in ("value", "vec", "aggregator", "integer", "magnitude", "current"):
            if key in value:
                found = normalize_supply(value[key])
                if found is not None:
                    return found
        for key, val in value.items():
            lowered = key.lower()
            if any(k in lowered for k in ("value", "amount", "supply", "total")):
                found = normalize_supply(val)
                if found is not None:
                    return found
    return None


def decimal_to_base_units(value: Any, decimals: int | None) -> str | None:
    """Convert a human-unit amount (``"968895573.712588"``) to base units with string math.

    Excess fractional digits are truncated; ``decimals=None`` only accepts
    plain base-unit values.
    """
    if value is None or isinstance(value, bool):
        return None
    if decimals is None:
        return normalize_supply(value)
    text = str(value).strip()
    if not text or decimals < 0:
        return None
    whole, _, frac = text.partition(".")
    whole = whole or "0"
    if not _DIGITS_RE.match(whole) or (frac and not _DIGITS_RE.match(frac)):
        return None
    frac = (frac + "0" * decimals)[:decimals]
    return (whole + frac).lstrip("0") or "0"
