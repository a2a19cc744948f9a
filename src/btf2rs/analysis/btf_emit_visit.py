from __future__ import annotations

from collections import deque
from typing import Optional

from .btf_emit_types import ARRAY, COMPOSITE_KINDS, DATASEC, DEFINITION_KINDS, ENUM_KINDS, BtfType
from .btf_errors import UnsupportedTypeKind
from .btf_graph import Btf


def next_type(btf: Btf, ty: BtfType) -> Optional[BtfType]:
    """Find the type that needs its own definition for a value of type `ty`.

    Walks through qualifiers, typedefs, pointers, variables and array
    elements. Returns None when the chain ends in a scalar or opaque type.
    """
    while True:
        if ty.kind in DEFINITION_KINDS:
            return ty
        if ty.kind == ARRAY:
            ty = btf.type_by_id(ty.ref or 0)
            continue
        following = btf.next_type(ty)
        if following is None:
            return None
        ty = following


def visit_type_hierarchy(btf: Btf, ty: BtfType, visitor) -> None:
    """Visit `ty` and every type it depends on, breadth first.

    `visitor` provides `visit_composite`, `visit_datasec` (both receiving
    the dependents list to append to) and `visit_enum`.
    """
    dependents: deque[BtfType] = deque([ty])
    while dependents:
        current = dependents.popleft()
        if current.kind in COMPOSITE_KINDS:
            visitor.visit_composite(current, dependents)
        elif current.kind in ENUM_KINDS:
            visitor.visit_enum(current)
        elif current.kind == DATASEC:
            visitor.visit_datasec(current, dependents)
        else:
            raise UnsupportedTypeKind(f"encountered unsupported type: {current.describe()}")
