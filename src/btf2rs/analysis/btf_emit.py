from __future__ import annotations

import sys
from typing import Iterable, Optional

from .btf_emit_decl import INT_WIDTHS, type_declaration, type_default
from .btf_emit_layout import is_struct_packed, is_unsafe, required_padding, size_of_type
from .btf_emit_types import (
    ARRAY,
    DATASEC,
    DEFINITION_KINDS,
    ENUM,
    ENUM64,
    LINKAGE_STATIC,
    PTR,
    STRUCT,
    TYPEDEF,
    UNION,
    VAR,
    BtfType,
)
from .btf_emit_utils import AnonTypes, _sanitize_identifier, escape_reserved_keyword
from .btf_emit_visit import next_type, visit_type_hierarchy
from .btf_errors import BtfGenError, EmptyEnum, InvalidWidth, MalformedName, UnsupportedTypeKind
from .btf_graph import Btf


# Rust only implements `Default` for arrays of up to 32 elements.
MAX_DERIVE_DEFAULT_ARRAY_LEN = 32

ROOT_KIND_PREFERENCE = (STRUCT, UNION, ENUM, ENUM64, DATASEC)

ROOT_KIND_PREFIXES = {
    "struct ": (STRUCT,),
    "union ": (UNION,),
    "enum ": (ENUM, ENUM64),
}


def _needs_impl_default(btf: Btf, field_ty: BtfType) -> bool:
    """Whether a struct holding a `field_ty` member cannot `#[derive(Default)]`."""
    # Rust has no `Default` for raw pointers, nor for `MaybeUninit`, which
    # wraps unsafe types.
    if field_ty.kind == PTR or is_unsafe(btf, field_ty):
        return True
    current = field_ty
    while current.kind == ARRAY:
        if (current.count or 0) > MAX_DERIVE_DEFAULT_ARRAY_LEN:
            return True
        current = btf.skip_mods_and_typedefs(btf.type_by_id(current.ref or 0))
        if current.kind == PTR:
            return True
    return False


class DefinitionVisitor:
    def __init__(self, btf: Btf, anon_types: AnonTypes, visited: set[int], log=None) -> None:
        self.btf = btf
        self.anon_types = anon_types
        self.visited = visited
        self._log = log
        self.lines: list[str] = []

    @property
    def definition(self) -> str:
        if not self.lines:
            return ""
        return "\n".join(self.lines) + "\n"

    def log(self, channel: str, message: str) -> None:
        if self._log is not None:
            self._log(channel, message)

    def _first_visit(self, ty: BtfType) -> bool:
        if ty.type_id in self.visited:
            self.log("visit", f"skip {ty.describe()}: already emitted")
            return False
        self.visited.add(ty.type_id)
        self.log("visit", f"emit {ty.describe()}")
        return True

    def _schedule(self, ty: BtfType, dependents) -> None:
        dependent = next_type(self.btf, ty)
        if dependent is None:
            return
        if dependent.type_id not in self.visited:
            self.log("visit", f"queue {dependent.describe()}")
        dependents.append(dependent)

    def visit_datasec(self, ty: BtfType, dependents) -> None:
        if not self._first_visit(ty):
            return

        if not ty.name:
            raise MalformedName("Datasec name is empty")
        if not ty.name.startswith("."):
            raise MalformedName(f"Datasec name is invalid: {ty.name}")
        sec_name = _sanitize_identifier(ty.name[1:])
        if not sec_name:
            raise MalformedName(f"Datasec name is invalid: {ty.name}")

        lines = [
            "#[derive(Debug, Copy, Clone)]",
            "#[repr(C)]",
            f"pub struct {sec_name} {{",
        ]

        offset = 0
        for info in ty.secinfos:
            var = self.btf.type_by_id(info.type_id)
            if var.kind != VAR:
                raise UnsupportedTypeKind(f"Datasec {ty.name} entry does not point to a var: {var.describe()}")

            if var.linkage == LINKAGE_STATIC:
                continue

            self._schedule(var, dependents)

            padding = required_padding(self.btf, offset, info.offset, var, False)
            if padding != 0:
                self.log("layout", f"{ty.name}: {padding} bytes of padding at {offset}")
                lines.append(f"    __pad_{offset}: [u8; {padding}],")

            offset = info.offset + info.size

            if not var.name:
                raise MalformedName(f"Datasec {ty.name} has a var without a name (id {var.type_id})")
            var_type = type_declaration(self.btf, var, self.anon_types)
            lines.append(f"    pub {escape_reserved_keyword(var.name)}: {var_type},")

        lines.append("}")
        self.lines.extend(lines)

    def visit_composite(self, ty: BtfType, dependents) -> None:
        if not self._first_visit(ty):
            return

        packed = is_struct_packed(self.btf, ty, log=lambda msg: self.log("layout", msg))

        agg_content: list[str] = []
        impl_default: list[str] = []
        default_errors: list[BtfGenError] = []
        gen_impl_default = False

        offset = 0
        for member in ty.members:
            # Bitfields are not decoded; they end up covered by padding bytes.
            if member.is_bitfield:
                continue

            member_ty = self.btf.type_by_id(member.type_id)
            field_ty = self.btf.skip_mods_and_typedefs(member_ty)
            self._schedule(field_ty, dependents)

            if member.name:
                field_name = escape_reserved_keyword(member.name)
            else:
                # Only anonymous unions/structs go unnamed, and each can
                # appear once, so naming the field after its type is unique.
                field_name = self.anon_types.type_name_or_anon(field_ty)

            member_offset = member.bit_offset // 8
            if ty.is_struct:
                padding = required_padding(self.btf, offset, member_offset, member_ty, packed)
                if padding != 0:
                    self.log("layout", f"{ty.describe()}: {padding} bytes of padding at {offset}")
                    agg_content.append(f"    pub __pad_{offset}: [u8; {padding}],")
                    impl_default.append(f"            __pad_{offset}: [u8::default(); {padding}]")

                if _needs_impl_default(self.btf, field_ty):
                    gen_impl_default = True

            unsafe = is_unsafe(self.btf, field_ty)
            try:
                default = type_default(self.btf, field_ty, self.anon_types)
            except BtfGenError as exc:
                default_errors.append(exc)
            else:
                if unsafe:
                    default = f"std::mem::MaybeUninit::new({default})"
                impl_default.append(f"            {field_name}: {default}")

            offset = member_offset + size_of_type(self.btf, field_ty)

            field_ty_str = type_declaration(self.btf, field_ty, self.anon_types)
            if unsafe:
                field_ty_str = f"std::mem::MaybeUninit<{field_ty_str}>"
            agg_content.append(f"    pub {field_name}: {field_ty_str},")

        if ty.is_struct:
            padding = required_padding(self.btf, offset, ty.size or 0, ty, packed)
            if padding != 0:
                self.log("layout", f"{ty.describe()}: {padding} bytes of trailing padding at {offset}")
                agg_content.append(f"    pub __pad_{offset}: [u8; {padding}],")
                impl_default.append(f"            __pad_{offset}: [u8::default(); {padding}]")

        if default_errors and (gen_impl_default or not ty.is_struct):
            exc = default_errors[0]
            raise type(exc)(f"Could not construct a necessary Default impl for {ty.describe()}: {exc}") from exc
        if not ty.is_struct and not impl_default:
            raise UnsupportedTypeKind(f"{ty.describe()} has no members to build a Default impl from")

        name = self.anon_types.type_name_or_anon(ty)
        lines: list[str] = []
        if ty.is_struct and not gen_impl_default:
            lines.append("#[derive(Debug, Default, Copy, Clone)]")
        elif ty.is_struct:
            lines.append("#[derive(Debug, Copy, Clone)]")
        else:
            lines.append("#[derive(Copy, Clone)]")

        packed_repr = ", packed" if packed else ""
        aggregate_type = "struct" if ty.is_struct else "union"
        lines.append(f"#[repr(C{packed_repr})]")
        lines.append(f"pub {aggregate_type} {name} {{")
        lines.extend(agg_content)
        lines.append("}")

        if gen_impl_default:
            lines.extend(_impl_default(name, impl_default))
        elif not ty.is_struct:
            # Only one union member is live at a time, so there is nothing
            # generic to print.
            lines.append(f"impl std::fmt::Debug for {name} {{")
            lines.append("    fn fmt(&self, f: &mut std::fmt::Formatter<'_>) -> std::fmt::Result {")
            lines.append('        write!(f, "(???)")')
            lines.append("    }")
            lines.append("}")
            lines.extend(_impl_default(name, impl_default[:1]))

        self.lines.extend(lines)

    def visit_enum(self, ty: BtfType) -> None:
        if not self._first_visit(ty):
            return

        repr_size = INT_WIDTHS.get(ty.size or 0)
        if repr_size is None:
            raise InvalidWidth(f"Invalid enum size: {ty.size}")
        if not ty.values:
            raise EmptyEnum(f"{ty.describe()} has no enumerators")

        signed = "i" if any(value.value < 0 for value in ty.values) else "u"

        lines = [
            "#[derive(Debug, Copy, Clone, Default, PartialEq, Eq)]",
            f"#[repr({signed}{repr_size})]",
            f"pub enum {self.anon_types.type_name_or_anon(ty)} {{",
        ]
        for idx, value in enumerate(ty.values):
            if not value.name:
                raise MalformedName(f"{ty.describe()} has an enumerator without a name")
            if idx == 0:
                lines.append("    #[default]")
            lines.append(f"    {value.name} = {value.value},")
        lines.append("}")
        self.lines.extend(lines)


def _impl_default(name: str, field_defaults: list[str]) -> list[str]:
    lines = [
        f"impl Default for {name} {{",
        "    fn default() -> Self {",
        f"        {name} {{",
    ]
    lines.extend(f"{field}," for field in field_defaults)
    lines.append("        }")
    lines.append("    }")
    lines.append("}")
    return lines


class GenBtf:
    """One generation session over a BTF graph.

    Owns the anonymous-type names; pair it with a single `processed` set to
    emit several roots into one output without duplicates.
    """

    def __init__(self, btf: Btf, verbose: Optional[set[str]] = None) -> None:
        self.btf = btf
        self.anon_types = AnonTypes()
        self._verbose = verbose or set()

    def log(self, channel: str, message: str) -> None:
        if channel in self._verbose or "all" in self._verbose:
            print(f"[btf2rs:{channel}] {message}", file=sys.stderr)

    def type_definition(self, ty: BtfType, processed: set[int]) -> str:
        """Return the Rust definition of `ty` followed by its dependent types.

        `ty` must be a struct, union, enum or datasec. Types already in
        `processed` are skipped; `processed` is only updated when the whole
        hierarchy was emitted successfully.
        """
        if ty.kind not in DEFINITION_KINDS:
            raise UnsupportedTypeKind(f"terminal type cannot be a definition root: {ty.describe()}")

        visited = set(processed)
        visitor = DefinitionVisitor(self.btf, self.anon_types, visited, log=self.log)
        visit_type_hierarchy(self.btf, ty, visitor)
        processed.update(visited)
        return visitor.definition


def find_root_type(btf: Btf, type_name: str) -> BtfType:
    name = type_name.strip()
    kinds = ROOT_KIND_PREFERENCE
    for prefix, prefixed_kinds in ROOT_KIND_PREFIXES.items():
        if name.startswith(prefix):
            name = name[len(prefix):].strip()
            kinds = prefixed_kinds
            break

    candidates = btf.find_by_name(name)
    if not candidates and not name.startswith("."):
        candidates = btf.find_by_name("." + name, kinds=(DATASEC,))
    if not candidates:
        raise ValueError(f"Type '{type_name}' not found in BTF.")

    for preferred in kinds:
        for ty in candidates:
            if ty.kind == preferred:
                return ty

    for ty in candidates:
        if ty.kind == TYPEDEF:
            return btf.skip_mods_and_typedefs(ty)

    return candidates[0]


def generate_rust_for_types(
    btf: Btf,
    type_names: Iterable[str],
    keep_going: bool = False,
    verbose: Optional[set[str]] = None,
) -> str:
    gen = GenBtf(btf, verbose=verbose)
    processed: set[int] = set()
    chunks: list[str] = ["// Generated by btf2rs\n"]
    for type_name in type_names:
        try:
            root = find_root_type(btf, type_name)
            chunks.append(gen.type_definition(root, processed))
        except ValueError as exc:
            if not keep_going:
                raise
            print(f"[btf2rs] failed to generate {type_name}: {exc}", file=sys.stderr)
    return "".join(chunks)
