from __future__ import annotations

from .btf_emit_types import (
    ARRAY,
    DATASEC,
    ENUM,
    ENUM64,
    FLOAT,
    INT,
    INT_BOOL,
    PTR,
    STRUCT,
    UNION,
    VAR,
    BtfType,
)
from .btf_errors import LayoutInconsistency, UnsupportedTypeKind
from .btf_graph import Btf


# Padding alignment is capped at 4 bytes so the same layout holds on 32-bit
# targets. Explicit padding fields pin every offset.
MAX_PADDING_ALIGN = 4


def is_unsafe(btf: Btf, ty: BtfType) -> bool:
    """Return True if not every bit pattern is a valid value of `ty`."""
    ty = btf.skip_mods_and_typedefs(ty)
    if ty.kind == INT:
        return ty.encoding == INT_BOOL
    return ty.kind in (ENUM, ENUM64)


def is_struct_packed(btf: Btf, ty: BtfType, log=None) -> bool:
    if ty.kind != STRUCT:
        return False

    align = btf.natural_alignment(ty)

    if (ty.size or 0) % align != 0:
        if log is not None:
            log(f"{ty.describe()} packed: size {ty.size} not a multiple of alignment {align}")
        return True

    for member in ty.members:
        if member.is_bitfield:
            continue
        member_align = btf.alignment(btf.type_by_id(member.type_id))
        if member.bit_offset % (member_align * 8) != 0:
            if log is not None:
                log(f"{ty.describe()} packed: member {member.name} at bit {member.bit_offset} misaligned")
            return True

    # Even if the source struct was declared packed, nothing is misaligned,
    # so packing has no effect on its layout.
    return False


def required_padding(btf: Btf, current_offset: int, required_offset: int, ty: BtfType, packed: bool) -> int:
    """Bytes of padding to insert at `current_offset` so `ty` lands on `required_offset`."""
    if current_offset > required_offset:
        raise LayoutInconsistency(
            f"current offset ({current_offset}) ahead of required offset ({required_offset})"
        )

    if packed:
        align = 1
    else:
        align = min(btf.alignment(ty), MAX_PADDING_ALIGN)

    aligned_offset = (current_offset + align - 1) // align * align
    if aligned_offset == required_offset:
        return 0
    return required_offset - current_offset


def size_of_type(btf: Btf, ty: BtfType) -> int:
    ty = btf.skip_mods_and_typedefs(ty)

    if ty.kind == INT:
        return ((ty.bits or 0) + 7) // 8
    if ty.kind == PTR:
        return btf.ptr_size
    if ty.kind == ARRAY:
        return (ty.count or 0) * size_of_type(btf, btf.type_by_id(ty.ref or 0))
    if ty.kind in (STRUCT, UNION, ENUM, ENUM64, DATASEC, FLOAT):
        return ty.size or 0
    if ty.kind == VAR:
        return size_of_type(btf, btf.type_by_id(ty.ref or 0))
    raise UnsupportedTypeKind(f"Cannot get size of {ty.describe()}")
