import struct
from typing import Optional

from .btf_emit_types import (
    ARRAY,
    DATASEC,
    DECL_TAG,
    DEFINITION_KINDS,
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
    KIND_BY_VALUE,
    LINKAGE_EXTERN,
    LINKAGE_GLOBAL,
    LINKAGE_STATIC,
    MODIFIER_KINDS,
    PTR,
    STRUCT,
    TYPEDEF,
    UNION,
    VAR,
    BtfEnumValue,
    BtfMember,
    BtfParam,
    BtfType,
    BtfVarSecInfo,
)
from .btf_errors import BtfFormatError
from .btf_graph import Btf


BTF_MAGIC = 0xEB9F
BTF_VERSION = 1

BTF_INT_SIGNED = 1 << 0
BTF_INT_CHAR = 1 << 1
BTF_INT_BOOL = 1 << 2

LINKAGE_BY_VALUE = {
    0: LINKAGE_STATIC,
    1: LINKAGE_GLOBAL,
    2: LINKAGE_EXTERN,
}

# Kinds listed by `print_types`.
SUMMARY_KINDS = DEFINITION_KINDS | {TYPEDEF, INT, FLOAT, VAR, FUNC, FWD}


def btf_byte_order(data: bytes) -> Optional[str]:
    if data[:2] == b"\x9f\xeb":
        return "<"
    if data[:2] == b"\xeb\x9f":
        return ">"
    return None


def read_cstring(data: bytes, offset: int) -> tuple[str, int]:
    end = data.find(b"\x00", offset)
    if end < 0:
        end = len(data)
    return data[offset:end].decode("utf-8", "replace"), end + 1


def _int_encoding(flags: int) -> str:
    if flags & BTF_INT_BOOL:
        return INT_BOOL
    if flags & BTF_INT_CHAR:
        return INT_CHAR
    if flags & BTF_INT_SIGNED:
        return INT_SIGNED
    return INT_UNSIGNED


class _Reader:
    def __init__(self, data: bytes, start: int, end: int, order: str) -> None:
        self.data = data
        self.offset = start
        self.end = end
        self.u32 = struct.Struct(order + "I")
        self.s32 = struct.Struct(order + "i")

    def _take(self, fmt: struct.Struct) -> int:
        if self.offset + fmt.size > self.end:
            raise BtfFormatError(f"Truncated BTF type data at offset 0x{self.offset:x}")
        value = fmt.unpack_from(self.data, self.offset)[0]
        self.offset += fmt.size
        return value

    def uint(self) -> int:
        return self._take(self.u32)

    def sint(self) -> int:
        return self._take(self.s32)


def parse_btf(data: bytes, ptr_size: Optional[int] = None) -> Btf:
    order = btf_byte_order(data)
    if order is None:
        raise BtfFormatError("Missing BTF magic")

    header = struct.Struct(order + "HBBIIIII")
    if len(data) < header.size:
        raise BtfFormatError("BTF header is truncated")
    magic, version, _flags, hdr_len, type_off, type_len, str_off, str_len = header.unpack_from(data, 0)
    if magic != BTF_MAGIC:
        raise BtfFormatError(f"Bad BTF magic 0x{magic:x}")
    if version != BTF_VERSION:
        raise BtfFormatError(f"Unsupported BTF version {version}")
    if hdr_len < header.size:
        raise BtfFormatError(f"BTF header length {hdr_len} is too small")

    types_start = hdr_len + type_off
    types_end = types_start + type_len
    strs_start = hdr_len + str_off
    strs_end = strs_start + str_len
    if types_end > len(data) or strs_end > len(data):
        raise BtfFormatError("BTF sections extend past the end of the data")

    strings = data[strs_start:strs_end]

    def name_at(name_off: int) -> Optional[str]:
        if name_off == 0:
            return None
        if name_off >= len(strings):
            raise BtfFormatError(f"BTF string offset {name_off} out of range")
        name, _ = read_cstring(strings, name_off)
        return name or None

    btf = Btf(ptr_size=ptr_size)
    reader = _Reader(data, types_start, types_end, order)
    while reader.offset < types_end:
        btf.add_type(_read_type(reader, name_at))
    return btf


def _read_type(reader: _Reader, name_at) -> BtfType:
    name_off = reader.uint()
    info = reader.uint()
    size_or_type = reader.uint()

    vlen = info & 0xFFFF
    kind_value = (info >> 24) & 0x1F
    kind_flag = bool(info >> 31)
    if kind_value == 0 or kind_value >= len(KIND_BY_VALUE):
        raise BtfFormatError(f"Unknown BTF kind {kind_value}")
    kind = KIND_BY_VALUE[kind_value]

    ty = BtfType(type_id=0, kind=kind, name=name_at(name_off))

    if kind == INT:
        data = reader.uint()
        ty.size = size_or_type
        ty.encoding = _int_encoding((data >> 24) & 0x0F)
        ty.bit_offset = (data >> 16) & 0xFF
        ty.bits = data & 0xFF
    elif kind == ARRAY:
        ty.ref = reader.uint()
        reader.uint()  # index type
        ty.count = reader.uint()
    elif kind in (STRUCT, UNION):
        ty.size = size_or_type
        for _ in range(vlen):
            member_name = name_at(reader.uint())
            member_type = reader.uint()
            offset = reader.uint()
            if kind_flag and offset >> 24:
                ty.members.append(BtfMember(member_name, member_type, offset & 0xFFFFFF, offset >> 24))
            elif kind_flag:
                ty.members.append(BtfMember(member_name, member_type, offset & 0xFFFFFF))
            else:
                ty.members.append(BtfMember(member_name, member_type, offset))
    elif kind == ENUM:
        ty.size = size_or_type
        for _ in range(vlen):
            value_name = name_at(reader.uint())
            value = reader.sint() if kind_flag else reader.uint()
            ty.values.append(BtfEnumValue(value_name, value))
    elif kind == ENUM64:
        ty.size = size_or_type
        for _ in range(vlen):
            value_name = name_at(reader.uint())
            lo = reader.uint()
            hi = reader.uint()
            value = (hi << 32) | lo
            if kind_flag and value >= 1 << 63:
                value -= 1 << 64
            ty.values.append(BtfEnumValue(value_name, value))
    elif kind == FWD:
        ty.fwd_kind = UNION if kind_flag else STRUCT
    elif kind == PTR or kind == TYPEDEF or kind in MODIFIER_KINDS:
        ty.ref = size_or_type
    elif kind == FUNC:
        ty.ref = size_or_type
        ty.linkage = LINKAGE_BY_VALUE.get(vlen, LINKAGE_GLOBAL)
    elif kind == FUNC_PROTO:
        ty.ref = size_or_type
        for _ in range(vlen):
            param_name = name_at(reader.uint())
            ty.params.append(BtfParam(param_name, reader.uint()))
    elif kind == VAR:
        ty.ref = size_or_type
        linkage = reader.uint()
        if linkage not in LINKAGE_BY_VALUE:
            raise BtfFormatError(f"Unknown linkage {linkage} for var {ty.name}")
        ty.linkage = LINKAGE_BY_VALUE[linkage]
    elif kind == DATASEC:
        ty.size = size_or_type
        for _ in range(vlen):
            var_type = reader.uint()
            var_offset = reader.uint()
            var_size = reader.uint()
            ty.secinfos.append(BtfVarSecInfo(var_type, var_offset, var_size))
    elif kind == FLOAT:
        ty.size = size_or_type
    elif kind == DECL_TAG:
        ty.ref = size_or_type
        ty.component_idx = reader.sint()
    return ty


def build_types_summary(
    btf: Btf,
    name_filter: Optional[str],
    limit: int,
) -> tuple[int, dict[str, int], list[tuple[str, str]]]:
    filter_lower = name_filter.lower() if name_filter else None
    counts: dict[str, int] = {}
    sample: list[tuple[str, str]] = []
    sample_seen: set[tuple[str, str]] = set()

    for ty in btf.types():
        if ty.kind not in SUMMARY_KINDS or not ty.name:
            continue
        if filter_lower is not None and filter_lower not in ty.name.lower():
            continue
        counts[ty.kind] = counts.get(ty.kind, 0) + 1
        key = (ty.kind, ty.name)
        if limit > 0 and len(sample) < limit and key not in sample_seen:
            sample_seen.add(key)
            sample.append(key)

    return sum(counts.values()), counts, sample
