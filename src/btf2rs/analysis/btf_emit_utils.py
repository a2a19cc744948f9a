from __future__ import annotations

from bisect import bisect_left

from .btf_emit_types import BtfType


ANON_PREFIX = "__anon_"

# Rust keywords that need escaping when used as field or variable names,
# minus the ones that are already reserved in C. Must stay sorted.
RESERVED_KEYWORDS = (
    "Self",
    "abstract",
    "as",
    "async",
    "await",
    "become",
    "box",
    "crate",
    "dyn",
    "enum",
    "final",
    "fn",
    "impl",
    "in",
    "let",
    "loop",
    "macro",
    "match",
    "mod",
    "move",
    "mut",
    "override",
    "priv",
    "pub",
    "ref",
    "self",
    "super",
    "trait",
    "try",
    "type",
    "typeof",
    "unsafe",
    "unsized",
    "use",
    "virtual",
    "where",
    "yield",
)


def escape_reserved_keyword(identifier: str) -> str:
    idx = bisect_left(RESERVED_KEYWORDS, identifier)
    if idx < len(RESERVED_KEYWORDS) and RESERVED_KEYWORDS[idx] == identifier:
        return f"r#{identifier}"
    return identifier


def _sanitize_identifier(name: str) -> str:
    if not name:
        return name
    cleaned = []
    for ch in name:
        if ch.isalnum() or ch == "_":
            cleaned.append(ch)
        else:
            cleaned.append("_")
    out = "".join(cleaned)
    if out[0].isdigit():
        out = "_" + out
    return out


class AnonTypes:
    """Hands out `__anon_N` names for unnamed types, one per type node.

    Numbers are 1-based and assigned in first-request order, so output is
    stable for a given graph and traversal order. Share one instance across
    every root that goes into the same output.
    """

    def __init__(self) -> None:
        self._types: dict[BtfType, int] = {}

    def type_name_or_anon(self, ty: BtfType) -> str:
        if ty.name:
            return escape_reserved_keyword(ty.name)
        anon_id = self._types.get(ty)
        if anon_id is None:
            anon_id = len(self._types) + 1
            self._types[ty] = anon_id
        return f"{ANON_PREFIX}{anon_id}"
