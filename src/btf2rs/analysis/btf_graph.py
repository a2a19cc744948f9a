from __future__ import annotations

import struct
from typing import Iterable, Iterator, Optional

from .btf_emit_types import (
    ARRAY,
    CONST,
    DATASEC,
    DECL_TAG,
    ENUM,
    ENUM64,
    FLOAT,
    FUNC,
    FUNC_PROTO,
    FWD,
    INT,
    INT_BOOL,
    INT_CHAR,
    INT_SIGNED,
    INT_UNSIGNED,
    LINKAGE_GLOBAL,
    MODIFIER_KINDS,
    PTR,
    REFERENCE_KINDS,
    RESTRICT,
    STRUCT,
    TYPE_TAG,
    TYPEDEF,
    UNION,
    VAR,
    VOID,
    VOLATILE,
    BtfEnumValue,
    BtfMember,
    BtfParam,
    BtfType,
    BtfVarSecInfo,
)
from .btf_errors import UnsupportedTypeKind


LONG_ALIASES = {
    "long",
    "long int",
    "int long",
    "unsigned long",
    "long unsigned int",
    "unsigned long int",
    "int unsigned long",
    "long unsigned",
    "unsigned int long",
    "int long unsigned",
    "long int unsigned",
}

INT_ENCODINGS = {INT_SIGNED, INT_UNSIGNED, INT_CHAR, INT_BOOL}


class Btf:
    """An immutable-by-convention BTF type graph.

    Type id 0 is always `void`. Types are appended either by the reader
    (`btf_types.parse_btf`) or through the `add_*` helpers, which mirror
    libbpf's `btf__add_*` API and are handy for building graphs by hand.
    """

    def __init__(self, ptr_size: Optional[int] = None) -> None:
        self._types: list[BtfType] = [BtfType(type_id=0, kind=VOID)]
        self._ptr_size = ptr_size

    def __len__(self) -> int:
        return len(self._types)

    def type_by_id(self, type_id: int) -> BtfType:
        if type_id < 0 or type_id >= len(self._types):
            raise ValueError(f"BTF type id {type_id} out of range (have {len(self._types)} types)")
        return self._types[type_id]

    def types(self) -> Iterator[BtfType]:
        return iter(self._types[1:])

    def find_by_name(self, name: str, kinds: Optional[Iterable[str]] = None) -> list[BtfType]:
        wanted = set(kinds) if kinds is not None else None
        return [
            ty
            for ty in self._types
            if ty.name == name and (wanted is None or ty.kind in wanted)
        ]

    @property
    def ptr_size(self) -> int:
        if self._ptr_size is None:
            self._ptr_size = self._guess_ptr_size()
        return self._ptr_size

    def _guess_ptr_size(self) -> int:
        for ty in self.types():
            if ty.kind != INT or ty.size not in (4, 8):
                continue
            if ty.name in LONG_ALIASES:
                return ty.size
        return struct.calcsize("P")

    def add_type(self, ty: BtfType) -> int:
        ty.type_id = len(self._types)
        self._types.append(ty)
        return ty.type_id

    def next_type(self, ty: BtfType) -> Optional[BtfType]:
        if ty.kind in REFERENCE_KINDS and ty.ref is not None:
            return self.type_by_id(ty.ref)
        return None

    def skip_mods_and_typedefs(self, ty: BtfType) -> BtfType:
        while ty.kind in MODIFIER_KINDS or ty.kind == TYPEDEF:
            ty = self.type_by_id(ty.ref or 0)
        return ty

    def alignment(self, ty: BtfType) -> int:
        if ty.kind in (INT, ENUM, ENUM64, FLOAT):
            return min(self.ptr_size, ty.size or 0) or 1
        if ty.kind == PTR:
            return self.ptr_size
        if ty.kind in MODIFIER_KINDS or ty.kind in (TYPEDEF, VAR, ARRAY):
            return self.alignment(self.type_by_id(ty.ref or 0))
        if ty.kind in (STRUCT, UNION):
            max_align = 1
            for member in ty.members:
                align = self.alignment(self.type_by_id(member.type_id))
                max_align = max(max_align, align)
                # A misaligned normal member means the composite is packed.
                if not member.is_bitfield and member.bit_offset % (8 * align) != 0:
                    return 1
            if (ty.size or 0) % max_align != 0:
                return 1
            return max_align
        raise UnsupportedTypeKind(f"Cannot get alignment of {ty.describe()}")

    def natural_alignment(self, ty: BtfType) -> int:
        """Alignment a composite would have without packing: its widest member."""
        if ty.kind not in (STRUCT, UNION):
            return self.alignment(ty)
        align = 1
        for member in ty.members:
            align = max(align, self.alignment(self.type_by_id(member.type_id)))
        return align

    def add_int(self, name: str, size: int, encoding: str = INT_SIGNED, bits: Optional[int] = None) -> int:
        if encoding not in INT_ENCODINGS:
            raise ValueError(f"Unknown int encoding '{encoding}'")
        return self.add_type(
            BtfType(
                type_id=0,
                kind=INT,
                name=name,
                size=size,
                bits=size * 8 if bits is None else bits,
                encoding=encoding,
            )
        )

    def add_float(self, name: str, size: int) -> int:
        return self.add_type(BtfType(type_id=0, kind=FLOAT, name=name, size=size))

    def add_ptr(self, ref: int) -> int:
        return self.add_type(BtfType(type_id=0, kind=PTR, ref=ref))

    def add_array(self, elem: int, count: int) -> int:
        return self.add_type(BtfType(type_id=0, kind=ARRAY, ref=elem, count=count))

    def _add_composite(self, kind: str, name: Optional[str], size: int, members) -> int:
        converted: list[BtfMember] = []
        for member in members:
            if isinstance(member, BtfMember):
                converted.append(member)
            else:
                converted.append(BtfMember(*member))
        return self.add_type(BtfType(type_id=0, kind=kind, name=name, size=size, members=converted))

    def add_struct(self, name: Optional[str], size: int, members=()) -> int:
        """Members are `BtfMember`s or `(name, type_id, bit_offset[, bit_size])` tuples."""
        return self._add_composite(STRUCT, name, size, members)

    def add_union(self, name: Optional[str], size: int, members=()) -> int:
        return self._add_composite(UNION, name, size, members)

    def add_enum(self, name: Optional[str], size: int, values=()) -> int:
        return self.add_type(
            BtfType(
                type_id=0,
                kind=ENUM,
                name=name,
                size=size,
                values=[BtfEnumValue(n, v) for n, v in values],
            )
        )

    def add_enum64(self, name: Optional[str], size: int, values=()) -> int:
        return self.add_type(
            BtfType(
                type_id=0,
                kind=ENUM64,
                name=name,
                size=size,
                values=[BtfEnumValue(n, v) for n, v in values],
            )
        )

    def add_fwd(self, name: str, fwd_kind: str = STRUCT) -> int:
        return self.add_type(BtfType(type_id=0, kind=FWD, name=name, fwd_kind=fwd_kind))

    def add_typedef(self, name: str, ref: int) -> int:
        return self.add_type(BtfType(type_id=0, kind=TYPEDEF, name=name, ref=ref))

    def add_const(self, ref: int) -> int:
        return self.add_type(BtfType(type_id=0, kind=CONST, ref=ref))

    def add_volatile(self, ref: int) -> int:
        return self.add_type(BtfType(type_id=0, kind=VOLATILE, ref=ref))

    def add_restrict(self, ref: int) -> int:
        return self.add_type(BtfType(type_id=0, kind=RESTRICT, ref=ref))

    def add_type_tag(self, name: str, ref: int) -> int:
        return self.add_type(BtfType(type_id=0, kind=TYPE_TAG, name=name, ref=ref))

    def add_decl_tag(self, name: str, ref: int, component_idx: int = -1) -> int:
        return self.add_type(BtfType(type_id=0, kind=DECL_TAG, name=name, ref=ref, component_idx=component_idx))

    def add_func_proto(self, ret: int, params=()) -> int:
        return self.add_type(
            BtfType(
                type_id=0,
                kind=FUNC_PROTO,
                ref=ret,
                params=[BtfParam(n, t) for n, t in params],
            )
        )

    def add_func(self, name: str, proto: int, linkage: str = LINKAGE_GLOBAL) -> int:
        return self.add_type(BtfType(type_id=0, kind=FUNC, name=name, ref=proto, linkage=linkage))

    def add_var(self, name: str, ref: int, linkage: str = LINKAGE_GLOBAL) -> int:
        return self.add_type(BtfType(type_id=0, kind=VAR, name=name, ref=ref, linkage=linkage))

    def add_datasec(self, name: str, size: int, secinfos=()) -> int:
        """`secinfos` are `BtfVarSecInfo`s or `(var_type_id, offset, size)` tuples."""
        converted: list[BtfVarSecInfo] = []
        for info in secinfos:
            if isinstance(info, BtfVarSecInfo):
                converted.append(info)
            else:
                converted.append(BtfVarSecInfo(*info))
        return self.add_type(BtfType(type_id=0, kind=DATASEC, name=name, size=size, secinfos=converted))
