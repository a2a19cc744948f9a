import os
import sys
import unittest


REPO_ROOT = os.path.dirname(os.path.dirname(__file__))
SRC_ROOT = os.path.join(REPO_ROOT, "src")
sys.path.insert(0, SRC_ROOT)


from btf2rs.analysis.btf_emit_decl import type_declaration, type_default  # noqa: E402
from btf2rs.analysis.btf_emit_layout import (  # noqa: E402
    is_struct_packed,
    is_unsafe,
    required_padding,
    size_of_type,
)
from btf2rs.analysis.btf_emit_types import INT_BOOL, INT_CHAR, INT_UNSIGNED  # noqa: E402
from btf2rs.analysis.btf_emit_utils import RESERVED_KEYWORDS, AnonTypes, escape_reserved_keyword  # noqa: E402
from btf2rs.analysis.btf_errors import InvalidWidth, LayoutInconsistency, UnsupportedTypeKind  # noqa: E402
from btf2rs.analysis.btf_graph import Btf  # noqa: E402


class LayoutTests(unittest.TestCase):
    def setUp(self) -> None:
        self.btf = Btf(ptr_size=8)
        self.char_id = self.btf.add_int("char", 1, encoding=INT_CHAR)
        self.int_id = self.btf.add_int("int", 4)
        self.long_id = self.btf.add_int("long", 8)

    def test_padding_is_capped_at_four_bytes(self) -> None:
        long_ty = self.btf.type_by_id(self.long_id)
        # 8-byte alignment would round 4 up to 8, but the cap keeps it at 4.
        self.assertEqual(required_padding(self.btf, 4, 8, long_ty, False), 4)
        self.assertEqual(required_padding(self.btf, 4, 4, long_ty, False), 0)

    def test_implicit_alignment_needs_no_padding(self) -> None:
        int_ty = self.btf.type_by_id(self.int_id)
        self.assertEqual(required_padding(self.btf, 1, 4, int_ty, False), 0)
        self.assertEqual(required_padding(self.btf, 1, 4, int_ty, True), 3)

    def test_padding_rejects_backwards_offsets(self) -> None:
        int_ty = self.btf.type_by_id(self.int_id)
        with self.assertRaises(LayoutInconsistency):
            required_padding(self.btf, 8, 4, int_ty, False)

    def test_packed_detection(self) -> None:
        plain = self.btf.add_struct("plain", 8, [("a", self.int_id, 0), ("b", self.char_id, 32)])
        odd_size = self.btf.add_struct("odd", 5, [("a", self.int_id, 0), ("b", self.char_id, 32)])
        misaligned = self.btf.add_struct("mis", 8, [("c", self.char_id, 0), ("a", self.int_id, 8)])
        only_bits = self.btf.add_struct("bits", 4, [("x", self.int_id, 3, 5)])

        self.assertFalse(is_struct_packed(self.btf, self.btf.type_by_id(plain)))
        self.assertTrue(is_struct_packed(self.btf, self.btf.type_by_id(odd_size)))
        self.assertTrue(is_struct_packed(self.btf, self.btf.type_by_id(misaligned)))
        self.assertFalse(is_struct_packed(self.btf, self.btf.type_by_id(only_bits)))

    def test_unions_are_never_packed(self) -> None:
        u = self.btf.add_union("u", 5, [("a", self.int_id, 0)])
        self.assertFalse(is_struct_packed(self.btf, self.btf.type_by_id(u)))

    def test_size_of(self) -> None:
        arr = self.btf.add_array(self.btf.add_const(self.int_id), 3)
        ptr = self.btf.add_ptr(self.int_id)
        td = self.btf.add_typedef("arr_t", arr)
        bits = self.btf.add_int("u24", 4, encoding=INT_UNSIGNED, bits=24)

        self.assertEqual(size_of_type(self.btf, self.btf.type_by_id(td)), 12)
        self.assertEqual(size_of_type(self.btf, self.btf.type_by_id(ptr)), 8)
        self.assertEqual(size_of_type(self.btf, self.btf.type_by_id(bits)), 3)
        with self.assertRaises(UnsupportedTypeKind):
            size_of_type(self.btf, self.btf.type_by_id(0))

    def test_unsafe_types(self) -> None:
        bool_id = self.btf.add_int("_Bool", 1, encoding=INT_BOOL)
        enum_id = self.btf.add_enum("e", 4, [("A", 0)])
        const_enum = self.btf.add_const(enum_id)

        self.assertTrue(is_unsafe(self.btf, self.btf.type_by_id(bool_id)))
        self.assertTrue(is_unsafe(self.btf, self.btf.type_by_id(const_enum)))
        self.assertFalse(is_unsafe(self.btf, self.btf.type_by_id(self.int_id)))
        self.assertFalse(is_unsafe(self.btf, self.btf.type_by_id(self.btf.add_ptr(bool_id))))


class AlignmentTests(unittest.TestCase):
    def test_pointer_size_from_long(self) -> None:
        btf = Btf()
        btf.add_int("long int", 4)
        self.assertEqual(btf.ptr_size, 4)
        self.assertEqual(btf.alignment(btf.type_by_id(btf.add_ptr(0))), 4)

    def test_packed_composite_reports_byte_alignment(self) -> None:
        btf = Btf(ptr_size=8)
        int_id = btf.add_int("int", 4)
        char_id = btf.add_int("char", 1, encoding=INT_CHAR)
        s = btf.add_struct("s", 5, [("a", int_id, 0), ("b", char_id, 32)])

        self.assertEqual(btf.alignment(btf.type_by_id(s)), 1)
        self.assertEqual(btf.natural_alignment(btf.type_by_id(s)), 4)


class DeclarationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.btf = Btf(ptr_size=8)
        self.anon = AnonTypes()

    def decl(self, type_id: int) -> str:
        return type_declaration(self.btf, self.btf.type_by_id(type_id), self.anon)

    def default(self, type_id: int) -> str:
        return type_default(self.btf, self.btf.type_by_id(type_id), self.anon)

    def test_integers(self) -> None:
        self.assertEqual(self.decl(self.btf.add_int("short", 2)), "i16")
        self.assertEqual(self.decl(self.btf.add_int("__u128", 16, encoding=INT_UNSIGNED)), "u128")
        self.assertEqual(self.decl(self.btf.add_int("char", 1, encoding=INT_CHAR)), "u8")
        self.assertEqual(self.decl(self.btf.add_int("_Bool", 1, encoding=INT_BOOL)), "bool")

    def test_bad_widths(self) -> None:
        with self.assertRaises(InvalidWidth):
            self.decl(self.btf.add_int("u24", 3, encoding=INT_UNSIGNED, bits=24))
        with self.assertRaises(InvalidWidth):
            self.decl(self.btf.add_int("wide_bool", 4, encoding=INT_BOOL))
        with self.assertRaises(InvalidWidth):
            self.decl(self.btf.add_float("long double", 16))

    def test_floats(self) -> None:
        self.assertEqual(self.decl(self.btf.add_float("float", 4)), "f32")
        self.assertEqual(self.decl(self.btf.add_float("double", 8)), "f64")

    def test_pointers_and_arrays(self) -> None:
        int_id = self.btf.add_int("int", 4)
        const_ptr = self.btf.add_const(self.btf.add_ptr(self.btf.add_volatile(int_id)))
        self.assertEqual(self.decl(const_ptr), "*mut i32")

        matrix = self.btf.add_array(self.btf.add_array(int_id, 2), 3)
        self.assertEqual(self.decl(matrix), "[[i32; 2]; 3]")
        self.assertEqual(self.default(matrix), "[[i32::default(); 2]; 3]")

    def test_opaque_types_become_void(self) -> None:
        fwd = self.btf.add_fwd("task_struct")
        proto = self.btf.add_func_proto(0, [("x", 0)])
        self.assertEqual(self.decl(self.btf.add_ptr(0)), "*mut std::ffi::c_void")
        self.assertEqual(self.decl(self.btf.add_ptr(fwd)), "*mut std::ffi::c_void")
        self.assertEqual(self.decl(self.btf.add_ptr(proto)), "*mut std::ffi::c_void")

    def test_named_and_anonymous_composites(self) -> None:
        int_id = self.btf.add_int("int", 4)
        named = self.btf.add_struct("named", 4, [("v", int_id, 0)])
        first = self.btf.add_union(None, 4, [("v", int_id, 0)])
        second = self.btf.add_enum(None, 4, [("A", 0)])
        typedef = self.btf.add_typedef("first_t", first)

        self.assertEqual(self.decl(named), "named")
        self.assertEqual(self.decl(second), "__anon_1")
        self.assertEqual(self.decl(typedef), "__anon_2")
        self.assertEqual(self.decl(first), "__anon_2")
        self.assertEqual(self.default(second), "__anon_1::default()")

    def test_defaults(self) -> None:
        int_id = self.btf.add_int("int", 4)
        self.assertEqual(self.default(int_id), "i32::default()")
        self.assertEqual(self.default(self.btf.add_ptr(int_id)), "std::ptr::null_mut()")
        self.assertEqual(self.default(self.btf.add_var("v", int_id)), "i32::default()")

    def test_default_of_void_array_fails(self) -> None:
        arr = self.btf.add_array(self.btf.add_fwd("opaque"), 2)
        with self.assertRaises(UnsupportedTypeKind) as ctx:
            self.default(arr)
        self.assertIn("in array", str(ctx.exception))


class AnonRegistryTests(unittest.TestCase):
    def test_unrelated_graphs_never_collide(self) -> None:
        anon = AnonTypes()
        types = []
        for _ in range(2):
            btf = Btf(ptr_size=8)
            int_id = btf.add_int("int", 4)
            types.append(btf.type_by_id(btf.add_struct(None, 4, [("v", int_id, 0)])))

        self.assertEqual(types[0].type_id, types[1].type_id)
        self.assertEqual(anon.type_name_or_anon(types[0]), "__anon_1")
        self.assertEqual(anon.type_name_or_anon(types[1]), "__anon_2")
        self.assertEqual(anon.type_name_or_anon(types[0]), "__anon_1")

    def test_named_types_keep_their_name(self) -> None:
        btf = Btf(ptr_size=8)
        anon = AnonTypes()
        self.assertEqual(anon.type_name_or_anon(btf.type_by_id(btf.add_struct("task", 0))), "task")
        self.assertEqual(anon.type_name_or_anon(btf.type_by_id(btf.add_struct("match", 0))), "r#match")


class KeywordTests(unittest.TestCase):
    def test_table_is_sorted(self) -> None:
        self.assertEqual(list(RESERVED_KEYWORDS), sorted(RESERVED_KEYWORDS))

    def test_escape(self) -> None:
        self.assertEqual(escape_reserved_keyword("type"), "r#type")
        self.assertEqual(escape_reserved_keyword("Self"), "r#Self")
        self.assertEqual(escape_reserved_keyword("yield"), "r#yield")
        self.assertEqual(escape_reserved_keyword("types"), "types")
        self.assertEqual(escape_reserved_keyword("int"), "int")


if __name__ == "__main__":
    unittest.main()
