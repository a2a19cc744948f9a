from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


VOID = "void"
INT = "int"
PTR = "ptr"
ARRAY = "array"
STRUCT = "struct"
UNION = "union"
ENUM = "enum"
FWD = "fwd"
TYPEDEF = "typedef"
VOLATILE = "volatile"
CONST = "const"
RESTRICT = "restrict"
FUNC = "func"
FUNC_PROTO = "func_proto"
VAR = "var"
DATASEC = "datasec"
FLOAT = "float"
DECL_TAG = "decl_tag"
TYPE_TAG = "type_tag"
ENUM64 = "enum64"

# Indexed by the kind number stored in a BTF type record.
KIND_BY_VALUE = [
    VOID,
    INT,
    PTR,
    ARRAY,
    STRUCT,
    UNION,
    ENUM,
    FWD,
    TYPEDEF,
    VOLATILE,
    CONST,
    RESTRICT,
    FUNC,
    FUNC_PROTO,
    VAR,
    DATASEC,
    FLOAT,
    DECL_TAG,
    TYPE_TAG,
    ENUM64,
]

COMPOSITE_KINDS = {STRUCT, UNION}
ENUM_KINDS = {ENUM, ENUM64}
MODIFIER_KINDS = {VOLATILE, CONST, RESTRICT, TYPE_TAG}
REFERENCE_KINDS = MODIFIER_KINDS | {PTR, TYPEDEF, FUNC, VAR, DECL_TAG}
DEFINITION_KINDS = COMPOSITE_KINDS | ENUM_KINDS | {DATASEC}
OPAQUE_KINDS = {VOID, FWD, FUNC, FUNC_PROTO}

INT_SIGNED = "signed"
INT_UNSIGNED = "unsigned"
INT_CHAR = "char"
INT_BOOL = "bool"

LINKAGE_STATIC = "static"
LINKAGE_GLOBAL = "global"
LINKAGE_EXTERN = "extern"


@dataclass
class BtfMember:
    name: Optional[str]
    type_id: int
    bit_offset: int
    bit_size: Optional[int] = None

    @property
    def is_bitfield(self) -> bool:
        return self.bit_size is not None


@dataclass
class BtfEnumValue:
    name: Optional[str]
    value: int


@dataclass
class BtfVarSecInfo:
    type_id: int
    offset: int
    size: int


@dataclass
class BtfParam:
    name: Optional[str]
    type_id: int


@dataclass(eq=False)
class BtfType:
    type_id: int
    kind: str
    name: Optional[str] = None
    size: Optional[int] = None
    ref: Optional[int] = None
    bits: Optional[int] = None
    bit_offset: int = 0
    encoding: Optional[str] = None
    count: Optional[int] = None
    linkage: Optional[str] = None
    fwd_kind: Optional[str] = None
    component_idx: Optional[int] = None
    members: list[BtfMember] = field(default_factory=list)
    values: list[BtfEnumValue] = field(default_factory=list)
    secinfos: list[BtfVarSecInfo] = field(default_factory=list)
    params: list[BtfParam] = field(default_factory=list)

    @property
    def is_struct(self) -> bool:
        return self.kind == STRUCT

    def describe(self) -> str:
        if self.name:
            return f"{self.kind} '{self.name}' (id {self.type_id})"
        return f"{self.kind} <anon> (id {self.type_id})"
