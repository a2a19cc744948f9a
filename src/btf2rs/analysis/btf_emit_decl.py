from __future__ import annotations

from .btf_emit_types import (
    ARRAY,
    ENUM,
    ENUM64,
    FLOAT,
    FUNC,
    FUNC_PROTO,
    FWD,
    INT,
    INT_BOOL,
    INT_SIGNED,
    PTR,
    STRUCT,
    UNION,
    VAR,
    VOID,
    BtfType,
)
from .btf_emit_utils import AnonTypes
from .btf_errors import InvalidWidth, UnsupportedTypeKind
from .btf_graph import Btf


INT_WIDTHS = {
    1: "8",
    2: "16",
    4: "32",
    8: "64",
    16: "128",
}

FLOAT_WIDTHS = {
    4: "32",
    8: "64",
}

UNSUPPORTED_FLOAT_WIDTHS = {2, 12, 16}

RUST_BOOL_BITS = 8


def type_declaration(btf: Btf, ty: BtfType, anon_types: AnonTypes) -> str:
    """Return the Rust spelling of `ty` as used for a field or variable.

    Qualifiers and typedefs are discarded.
    """
    ty = btf.skip_mods_and_typedefs(ty)

    if ty.kind == VOID:
        return "std::ffi::c_void"

    if ty.kind == INT:
        width = INT_WIDTHS.get(((ty.bits or 0) + 7) // 8)
        if width is None:
            raise InvalidWidth(f"Invalid integer width {ty.bits} bits for {ty.describe()}")
        if ty.encoding == INT_SIGNED:
            return f"i{width}"
        if ty.encoding == INT_BOOL:
            if ty.bits != RUST_BOOL_BITS:
                raise InvalidWidth(f"Boolean {ty.describe()} is {ty.bits} bits wide, expected {RUST_BOOL_BITS}")
            return "bool"
        return f"u{width}"

    if ty.kind == FLOAT:
        if ty.size in UNSUPPORTED_FLOAT_WIDTHS:
            raise InvalidWidth(f"Unsupported float width {ty.size} for {ty.describe()}")
        width = FLOAT_WIDTHS.get(ty.size or 0)
        if width is None:
            raise InvalidWidth(f"Invalid float width {ty.size} for {ty.describe()}")
        return f"f{width}"

    if ty.kind == PTR:
        pointee = type_declaration(btf, btf.type_by_id(ty.ref or 0), anon_types)
        return f"*mut {pointee}"

    if ty.kind == ARRAY:
        element = type_declaration(btf, btf.type_by_id(ty.ref or 0), anon_types)
        return f"[{element}; {ty.count or 0}]"

    if ty.kind in (STRUCT, UNION, ENUM, ENUM64):
        return anon_types.type_name_or_anon(ty)

    # Functions and forward declarations are only reachable through a
    # pointer, which then reads `*mut c_void`.
    if ty.kind in (FWD, FUNC, FUNC_PROTO):
        return "std::ffi::c_void"

    if ty.kind == VAR:
        return type_declaration(btf, btf.type_by_id(ty.ref or 0), anon_types)

    raise UnsupportedTypeKind(f"Invalid type: {ty.describe()}")


def type_default(btf: Btf, ty: BtfType, anon_types: AnonTypes) -> str:
    """Return an expression evaluating to the default value of `ty`.

    Used to fill in explicit `impl Default` blocks. `ty` must be a type a
    variable can have; qualifiers are discarded.
    """
    ty = btf.skip_mods_and_typedefs(ty)

    if ty.kind in (INT, FLOAT):
        return f"{type_declaration(btf, ty, anon_types)}::default()"

    if ty.kind == PTR:
        return "std::ptr::null_mut()"

    if ty.kind == ARRAY:
        element = btf.type_by_id(ty.ref or 0)
        try:
            element_default = type_default(btf, element, anon_types)
        except UnsupportedTypeKind as exc:
            raise UnsupportedTypeKind(f"in {ty.describe()}: {exc}") from exc
        return f"[{element_default}; {ty.count or 0}]"

    if ty.kind in (STRUCT, UNION, ENUM, ENUM64):
        return f"{anon_types.type_name_or_anon(ty)}::default()"

    if ty.kind == VAR:
        return f"{type_declaration(btf, btf.type_by_id(ty.ref or 0), anon_types)}::default()"

    raise UnsupportedTypeKind(f"No default value for {ty.describe()}")
