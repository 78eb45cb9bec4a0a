"""JSON persistence for ping snapshots and other engine artifacts.

Writes are atomic: a temp file in the target directory, then ``os.replace``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from ssa_engine.core.errors import PersistenceError
from ssa_engine.core.types import PingSnapshot, TargetKind

logger = logging.getLogger(__name__)

_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9._-]")
_UNDERSCORES_RE = re.compile(r"_+")


def ensure_dir(path: str | Path) -> Path:
    directory = Path(path)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PersistenceError(f"Cannot create directory {directory}: {exc}") from exc
    return directory


def read_json(path: str | Path) -> Any | None:
    """Parsed JSON at ``path``, or ``None`` if the file is missing or unreadable.

    A leading UTF-8 BOM is tolerated.
    """
    file_path = Path(path)
    if not file_path.exists():
        return None
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Cannot read %s: %s", file_path, exc)
        return None
    text = text.lstrip("\ufeff")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Invalid JSON in %s: %s", file_path, exc)
        return None


def write_json_atomic(path: str | Path, value: Any) -> Path:
    """Serialize ``value`` (a pydantic model or plain JSON data) and swap it into place."""
    file_path = Path(path)
    ensure_dir(file_path.parent)
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    tmp_name: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=file_path.parent,
            prefix=f".{file_path.name}.", suffix=".tmp", delete=False,
        ) as fh:
            tmp_name = fh.name
            json.dump(value, fh, indent=2, default=str)
            fh.write("\n")
        os.replace(tmp_name, file_path)
    except (OSError, TypeError, ValueError) as exc:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise PersistenceError(f"Failed to write {file_path}: {exc}") from exc
    return file_path


def sanitize_filename_part(value: str | None) -> str:
    """Keep ``[a-zA-Z0-9._-]``, collapse runs of ``_`` and trim them from the ends."""
    if not value:
        return "UNKNOWN"
    cleaned = _UNDERSCORES_RE.sub("_", _UNSAFE_RE.sub("_", value)).strip("_")
    return cleaned or "UNKNOWN"


def snapshot_path(state_dir: str | Path, kind: TargetKind | str, target_id: str) -> Path:
    """``<state>/ping/fa/<addr>.json`` or ``<state>/ping/coin/<addr>__<module>__<Struct>.json``.

    Coin publisher addresses lose their ``0x`` prefix.
    """
    kind = TargetKind(kind)
    base = Path(state_dir) / "ping" / kind.value
    if kind is TargetKind.COIN:
        parts = target_id.strip().split("::")
        if parts:
            parts[0] = parts[0].lower().removeprefix("0x")
        name = "__".join(sanitize_filename_part(p) for p in parts)
    else:
        name = sanitize_filename_part(target_id.strip().lower())
    return base / f"{name}.json"


class SnapshotStore:
    """One current ping snapshot per target, overwritten on every run."""

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir)

    def path_for(self, kind: TargetKind | str, target_id: str) -> Path:
        return snapshot_path(self.state_dir, kind, target_id)

    def load(self, kind: TargetKind | str, target_id: str) -> PingSnapshot | None:
        path = self.path_for(kind, target_id)
        raw = read_json(path)
        if raw is None:
            return None
        try:
            return PingSnapshot.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed snapshot %s: %s", path, exc.error_count())
            return None

    def save(self, snapshot: PingSnapshot) -> Path:
        path = self.path_for(snapshot.identity.kind, snapshot.identity.id)
        return write_json_atomic(path, snapshot)
