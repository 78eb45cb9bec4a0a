"""Move source parser.

Regex-level parse of a Move module's source: module header, function
signatures (visibility, ``entry``, signer parameters) and string literals.
Only what the ArtifactView needs is extracted; no type checking happens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field


# ── Types ────────────────────────────────────────────────────────────────────


@dataclass
class MoveFunction:
    """Parsed Move function signature."""
    name: str
    line: int
    visibility: str = ""  # public, public(friend), public(package), ""
    is_entry: bool = False
    is_view: bool = False
    has_signer_param: bool = False
    params: list[str] = field(default_factory=list)


@dataclass
class MoveSourceSummary:
    """Result of parsing one Move source file."""
    module_name: str = ""
    module_address: str = ""
    functions: list[MoveFunction] = field(default_factory=list)
    strings: list[str] = field(default_factory=list)
    lines_analyzed: int = 0

    @property
    def entry_functions(self) -> list[str]:
        return [f.name for f in self.functions if f.is_entry]

    @property
    def public_functions(self) -> list[str]:
        return [f.name for f in self.functions if f.visibility.startswith("public")]


# ── Patterns ─────────────────────────────────────────────────────────────────

_MODULE_RE = re.compile(
    r"module\s+(?:(\w+)::)?(\w+)\s*\{", re.MULTILINE,
)
_FUNCTION_RE = re.compile(
    r"(#\[view\]\s*)?"
    r"(public(?:\((?:friend|package)\))?\s+)?(entry\s+)?fun\s+(\w+)"
    r"(?:<[^>]*>)?\s*\(([^)]*)\)",
    re.MULTILINE,
)
_STRING_LITERAL_RE = re.compile(r'b?"((?:[^"\\]|\\.)*)"')
_LINE_COMMENT_RE = re.compile(r"//[^\n]*")


def _split_params(params: str) -> list[str]:
    return [p.strip() for p in params.split(",") if p.strip()]


def parse_move_source(source: str) -> MoveSourceSummary:
    """Parse a Move module into function signatures and string literals."""
    summary = MoveSourceSummary(lines_analyzed=source.count("\n") + 1)

    mod_match = _MODULE_RE.search(source)
    if mod_match:
        summary.module_address = mod_match.group(1) or ""
        summary.module_name = mod_match.group(2) or ""

    code = _LINE_COMMENT_RE.sub("", source)

    for m in _FUNCTION_RE.finditer(code):
        params = _split_params(m.group(5))
        summary.functions.append(MoveFunction(
            name=m.group(4),
            line=code[:m.start()].count("\n") + 1,
            visibility=(m.group(2) or "").strip(),
            is_entry=bool(m.group(3)),
            is_view=bool(m.group(1)),
            has_signer_param=any("signer" in p for p in params),
            params=params,
        ))

    seen: set[str] = set()
    for m in _STRING_LITERAL_RE.finditer(code):
        literal = m.group(1)
        if literal and literal not in seen:
            seen.add(literal)
            summary.strings.append(literal)

    return summary
