#    test_layout_resolver.py
#        Test the expansion of types into layout trees with absolute addresses
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

from test import DwarfcalUnitTest
from test.core.entry_builder import EntryBuilder
from test.core.update_test_fixture import UpdateTestFixture

from dwarfcal.core.basic_types import Endianness, EmbeddedDataType
from dwarfcal.core.debug_entry import Attrs, Tags, DwarfEncoding
from dwarfcal.core.layout import *
from dwarfcal.core.layout_resolver import LayoutResolver
from dwarfcal.core.target import TargetDescriptor
from dwarfcal.core.type_graph_builder import TypeGraphBuilder
from dwarfcal.exceptions import DanglingTypeReference, RecursionLimitExceeded, TypeResolutionError

from dwarfcal.tools.typing import *


class TestLayoutResolverFixture(DwarfcalUnitTest):

    @classmethod
    def setUpClass(cls):
        cls.fixture = UpdateTestFixture()
        cls.graph = TypeGraphBuilder(cls.fixture.target).build(cls.fixture.store)
        cls.resolver = LayoutResolver(cls.graph)
        cls.variables = {}
        for entry in cls.fixture.store.entries():
            if entry.tag == Tags.DW_TAG_variable:
                cls.variables[entry.get_name()] = entry

    def resolve(self, name: str, address: Optional[int] = None) -> LayoutNode:
        entry = self.variables[name]
        if address is None:
            address = self.fixture.addresses[name]
        return self.resolver.resolve(entry.get_type_ref(), address, name)

    def test_scalars(self):
        expected = {
            'val_u8': (EmbeddedDataType.uint8, 'uint8_t'),
            'val_s8': (EmbeddedDataType.sint8, 'int8_t'),
            'val_u16': (EmbeddedDataType.uint16, 'uint16_t'),
            'val_s16': (EmbeddedDataType.sint16, 'int16_t'),
            'val_u32': (EmbeddedDataType.uint32, 'uint32_t'),
            'val_s32': (EmbeddedDataType.sint32, 'int32_t'),
            'val_u64': (EmbeddedDataType.uint64, 'uint64_t'),
            'val_s64': (EmbeddedDataType.sint64, 'int64_t'),
            'val_float': (EmbeddedDataType.float32, 'float'),
            'val_double': (EmbeddedDataType.float64, 'double'),
            'val_bool': (EmbeddedDataType.boolean, '_Bool'),
        }
        for name, (datatype, type_name) in expected.items():
            with self.subTest(name):
                leaf = self.assertIsInstanceAndReturn(self.resolve(name), ScalarLeaf)
                self.assertEqual(leaf.datatype, datatype)
                self.assertEqual(leaf.type_name, type_name)
                self.assertEqual(leaf.byte_size, datatype.get_size_byte())
                self.assertEqual(leaf.name, name)
                self.assertEqual(leaf.path, name)
                self.assert_address(leaf, self.fixture.addresses[name])
                self.assertFalse(leaf.is_bitfield())
                self.assertEqual(leaf.bit_offset, 0)
                self.assertEqual(leaf.get_bit_width(), datatype.get_size_byte() * 8)
                self.assertIsNone(leaf.enum)

    def test_enum(self):
        leaf = self.assertIsInstanceAndReturn(self.resolve('val_e'), ScalarLeaf)
        self.assertEqual(leaf.datatype, EmbeddedDataType.uint32)
        self.assertEqual(leaf.type_name, 'MyEnum')
        self.assertIsNotNone(leaf.enum)
        self.assertEqual(leaf.enum.get_value_name(11111), 'VALUE_3')

    def test_void_pointer(self):
        leaf = self.assertIsInstanceAndReturn(self.resolve('val_ptr'), PointerLeaf)
        self.assertEqual(leaf.byte_size, 4)
        self.assertEqual(leaf.target_type_name, 'void')
        self.assertEqual(leaf.type_name, 'void*')
        self.assertFalse(leaf.is_function_pointer)

    def test_cyclic_struct(self):
        base = self.fixture.addresses['struct_b']
        layout = self.assertIsInstanceAndReturn(self.resolve('struct_b'), CompositeNode)
        self.assertEqual(layout.type_name, 'StructB')
        self.assertEqual(layout.byte_size, 64)
        self.assertFalse(layout.is_union)
        self.assertEqual(layout.child_names(), ['pPrev', 'pNext', 's1', 's2', 'func'])

        for name, offset in [('pPrev', 0), ('pNext', 4)]:
            ptr = self.assertIsInstanceAndReturn(layout.get_child(name), PointerLeaf)
            self.assert_address(ptr, base + offset)
            self.assertEqual(ptr.byte_size, 4)
            self.assertEqual(ptr.target_type_name, 'StructB')
            self.assertEqual(list(ptr.iter_children()), [])

        s2 = self.assertIsInstanceAndReturn(layout.get_child('s2'), CompositeNode)
        self.assertEqual(s2.path, 'struct_b.s2')
        self.assert_address(s2, base + 32)
        self.assert_address(s2.get_child('enumval'), base + 32)
        self.assert_address(s2.get_child('val_i32'), base + 36)
        self.assert_address(s2.get_child('val_i64'), base + 40)
        self.assert_address(s2.get_child('val_f32'), base + 48)
        self.assertEqual(s2.get_child('val_f32').path, 'struct_b.s2.val_f32')

        leaves = list(layout.iter_leaves())
        self.assertEqual(len(leaves), 2 + 4 + 4 + 1)
        self.assertEqual([leaf.address for leaf in leaves], sorted([leaf.address for leaf in leaves]))

    def test_function_pointer(self):
        leaf = self.assertIsInstanceAndReturn(self.resolve('func'), PointerLeaf)
        self.assertTrue(leaf.is_function_pointer)
        self.assertEqual(leaf.byte_size, 4)
        self.assertEqual(leaf.type_name, 'funcptr_t')
        self.assertEqual(leaf.target_type_name, 'uint32_t (*)(uint16_t*, float)')
        self.assertIsNotNone(leaf.signature)
        self.assertEqual(len(leaf.signature.parameter_refs), 2)

        struct_b = self.resolve('struct_b')
        func = self.assertIsInstanceAndReturn(struct_b.find('func'), PointerLeaf)
        self.assertTrue(func.is_function_pointer)
        self.assert_address(func, self.fixture.addresses['struct_b'] + 56)

    def test_empty_struct(self):
        layout = self.assertIsInstanceAndReturn(self.resolve('basic'), CompositeNode)
        self.assertEqual(layout.byte_size, 0)
        self.assertEqual(layout.children, [])
        self.assertEqual(list(layout.iter_leaves()), [])

    def test_anonymous_union_and_bitfields(self):
        base = self.fixture.addresses['reg']
        layout = self.assertIsInstanceAndReturn(self.resolve('reg'), CompositeNode)
        self.assertEqual(layout.child_names(), ['Value', 'Bits_ABC', 'Bits_DEF', 'Bits_GHI', 'Bits_JKL'])
        for child in layout.children:
            self.assert_address(child, base)
            self.assertEqual(child.byte_size, 4)
        self.assertEqual(layout.get_child('Bits_JKL').path, 'reg.Bits_JKL')

        value = self.assertIsInstanceAndReturn(layout.get_child('Value'), ScalarLeaf)
        self.assertFalse(value.is_bitfield())
        self.assertEqual(value.get_bit_width(), 32)

        for i, name in enumerate(['Bits_ABC', 'Bits_DEF', 'Bits_GHI', 'Bits_JKL']):
            leaf = self.assertIsInstanceAndReturn(layout.get_child(name), ScalarLeaf)
            self.assertTrue(leaf.is_bitfield())
            self.assertEqual(leaf.bit_offset, i * 5)
            self.assertEqual(leaf.bit_size, 5)

        units = layout.bitfield_units()
        self.assertEqual(len(units), 1)
        self.assertEqual(units[0].address, base)
        self.assertEqual(len(units[0].fields), 4)
        self.assertEqual(units[0].used_bits, 20)
        self.assertEqual(units[0].padding_bits, 12)
        self.assertEqual(units[0].used_bits + units[0].padding_bits, 32)

    def test_measurement_bitfield(self):
        layout = self.assertIsInstanceAndReturn(self.resolve('Measurement_Bitfield'), CompositeNode)
        units = layout.bitfield_units()
        self.assertEqual(len(units), 1)
        self.assertEqual(units[0].byte_size, 2)
        self.assertEqual([f.bit_offset for f in units[0].fields], [0, 3, 8])
        self.assertEqual(units[0].padding_bits, 0)

    def test_array_2x10_row_major(self):
        base = self.fixture.addresses['TEST_structarr_arr']
        layout = self.assertIsInstanceAndReturn(self.resolve('TEST_structarr_arr'), ArrayNode)
        self.assertEqual(layout.dims, (2, 10))
        self.assertEqual(layout.stride, 4)
        self.assertEqual(layout.byte_size, 80)
        self.assertEqual(layout.element_type_name, 'TestStruct')
        self.assertEqual(len(layout.elements), 20)

        for i in range(2):
            for j in range(10):
                element = self.assertIsInstanceAndReturn(layout.element_at((i, j)), CompositeNode)
                self.assert_address(element, base + (i * 10 + j) * 4)
                self.assertEqual(element.name, f'[{i}][{j}]')
                self.assertEqual(element.path, f'TEST_structarr_arr[{i}][{j}]')
                self.assert_address(element.get_child('value'), base + (i * 10 + j) * 4)

        self.assertIs(layout.find('[1][3].value'), layout.element_at((1, 3)).get_child('value'))
        self.assertIsNone(layout.element_at((2, 0)))
        self.assertIsNone(layout.find('[1]'))
        self.assertIsNone(layout.find('[1][10]'))

        leaves = list(layout.iter_leaves())
        self.assertEqual([leaf.address for leaf in leaves], [base + i * 4 for i in range(20)])

    def test_pointer_and_array_combinations(self):
        layout = self.resolve('TEST_structptr')
        self.assertIsInstance(layout, PointerLeaf)
        self.assertEqual(layout.target_type_name, 'TestStruct')

        layout = self.assertIsInstanceAndReturn(self.resolve('TEST_structptr_ptr'), PointerLeaf)
        self.assertEqual(layout.target_type_name, 'TestStruct*')
        self.assertEqual(layout.bit_offset, 0)
        self.assertEqual(layout.get_bit_width(), 32)

        layout = self.assertIsInstanceAndReturn(self.resolve('TEST_structarr'), ArrayNode)
        self.assertEqual(layout.dims, (10,))
        self.assertEqual(len(list(layout.iter_leaves())), 10)

        layout = self.assertIsInstanceAndReturn(self.resolve('TEST_structarr_ptr'), PointerLeaf)
        self.assertEqual(layout.byte_size, 4)
        self.assertEqual(layout.target_type_name, 'TestStruct[10]')

        layout = self.assertIsInstanceAndReturn(self.resolve('TEST_structarr_ptr_arr'), ArrayNode)
        self.assertEqual(layout.dims, (2,))
        self.assertEqual(layout.byte_size, 8)
        for element in layout.elements:
            self.assertIsInstance(element, PointerLeaf)
            self.assertEqual(element.target_type_name, 'TestStruct[10]')

        layout = self.assertIsInstanceAndReturn(self.resolve('TEST_structptr_arr'), ArrayNode)
        self.assertEqual(layout.dims, (4,))
        self.assertTrue(all([isinstance(e, PointerLeaf) for e in layout.elements]))
        self.assertFalse(layout.is_scalar_array())
        self.assertIsNone(layout.get_element_datatype())

        layout = self.assertIsInstanceAndReturn(self.resolve('TEST_structptr_arr_ptr'), PointerLeaf)
        self.assertEqual(layout.target_type_name, 'TestStruct*[4]')

    def test_map_value_row_major(self):
        base = self.fixture.addresses['Map_InternalAxis']
        layout = self.assertIsInstanceAndReturn(self.resolve('Map_InternalAxis'), CompositeNode)
        value = self.assertIsInstanceAndReturn(layout.get_child('value'), ArrayNode)
        self.assertEqual(value.dims, (3, 4))
        self.assertEqual(value.get_element_datatype(), EmbeddedDataType.float32)
        for i in range(3):
            for j in range(4):
                self.assert_address(value.element_at((i, j)), base + 28 + (i * 4 + j) * 4)
        self.assertIs(layout.find('value[2][3]'), value.element_at((2, 3)))

    def test_idempotence(self):
        layout1 = self.resolve('struct_b')
        layout2 = self.resolve('struct_b')
        self.assertIsNot(layout1, layout2)
        self.assertEqual(layout1, layout2)

    def test_shared_type_same_shape(self):
        layout1 = self.resolve('TEST_struct')
        layout2 = self.resolve('TEST_struct2')
        self.assertNotEqual(layout1.address, layout2.address)
        self.assertEqual(layout1.shape(), layout2.shape())

        # Same type placed anywhere gives the same shape
        relocated = self.resolve('struct_b', address=0x12340000)
        self.assertEqual(relocated.shape(), self.resolve('struct_b').shape())
        self.assertEqual(relocated.find('s1.val_i64').address, 0x12340000 + 16)


class TestLayoutResolver(DwarfcalUnitTest):
    target = TargetDescriptor(pointer_width_bytes=4, endianness=Endianness.Little, default_alignment_bytes=4)

    def test_depth_guard(self):
        b = EntryBuilder()
        uint8 = b.base_type('unsigned char', 1, DwarfEncoding.DW_ATE_unsigned_char)
        # 10 levels of nested structs
        inner = b.struct('Level0', 1)
        b.member(inner, 'leaf', uint8, 0)
        for i in range(1, 10):
            outer = b.struct(f'Level{i}', 1)
            b.member(outer, 'inner', inner, 0)
            inner = outer

        graph = TypeGraphBuilder(self.target).build(b.store())
        deep = LayoutResolver(graph, max_depth=10).resolve(inner.ref_id, 0x1000, 'deep')
        self.assertEqual(deep.find('inner.inner.inner.inner.inner.inner.inner.inner.inner.leaf').address, 0x1000)

        with self.assertRaises(RecursionLimitExceeded) as cm:
            LayoutResolver(graph, max_depth=5).resolve(inner.ref_id, 0x1000, 'deep')
        self.assertEqual(cm.exception.name, 'deep')
        self.assertEqual(cm.exception.depth, 5)

        with self.assertRaises(ValueError):
            LayoutResolver(graph, max_depth=0)

    def test_base_class_members_spliced(self):
        b = EntryBuilder(cu_name='test.cpp')
        int32 = b.base_type('int', 4, DwarfEncoding.DW_ATE_signed)
        base = b.struct('Base', 4, tag=Tags.DW_TAG_class_type)
        b.member(base, 'a', int32, 0)
        derived = b.struct('Derived', 8, tag=Tags.DW_TAG_class_type)
        b.inheritance(derived, base, 0)
        b.member(derived, 'b', int32, 4)

        graph = TypeGraphBuilder(self.target).build(b.store())
        layout = self.assertIsInstanceAndReturn(LayoutResolver(graph).resolve(derived.ref_id, 0x100, 'obj'), CompositeNode)
        self.assertEqual(layout.child_names(), ['a', 'b'])
        self.assertEqual(layout.get_child('a').address, 0x100)
        self.assertEqual(layout.get_child('a').path, 'obj.a')
        self.assertEqual(layout.get_child('b').address, 0x104)

    def test_union_members_at_base(self):
        b = EntryBuilder()
        uint32 = b.base_type('unsigned int', 4, DwarfEncoding.DW_ATE_unsigned)
        uint8 = b.base_type('unsigned char', 1, DwarfEncoding.DW_ATE_unsigned_char)
        u = b.union('U', 4)
        b.member(u, 'word', uint32, 0)
        b.member(u, 'bytes', b.array(uint8, [4]), 0)

        graph = TypeGraphBuilder(self.target).build(b.store())
        layout = self.assertIsInstanceAndReturn(LayoutResolver(graph).resolve(u.ref_id, 0x2000, 'u'), CompositeNode)
        self.assertTrue(layout.is_union)
        self.assertEqual(layout.alternative_count, 2)
        self.assertEqual(layout.get_child('word').address, 0x2000)
        self.assertEqual(layout.find('bytes[3]').address, 0x2003)

    def test_flexible_array(self):
        b = EntryBuilder()
        uint32 = b.base_type('unsigned int', 4, DwarfEncoding.DW_ATE_unsigned)
        s = b.struct('Packet', 4)
        b.member(s, 'length', uint32, 0)
        flexible = b.entry(Tags.DW_TAG_array_type, {Attrs.DW_AT_type: uint32.ref_id})
        b.entry(Tags.DW_TAG_subrange_type, {}, parent=flexible)
        b.member(s, 'data', flexible, 4)

        graph = TypeGraphBuilder(self.target).build(b.store())
        layout = self.assertIsInstanceAndReturn(LayoutResolver(graph).resolve(s.ref_id, 0x3000, 'pkt'), CompositeNode)
        data = self.assertIsInstanceAndReturn(layout.get_child('data'), ArrayNode)
        self.assertEqual(data.dims, (0,))
        self.assertEqual(data.byte_size, 0)
        self.assertEqual(data.elements, [])

    def test_array_of_typedef_arrays(self):
        b = EntryBuilder()
        float_t = b.base_type('float', 4, DwarfEncoding.DW_ATE_float)
        row_t = b.typedef('row_t', b.array(float_t, [4]))
        table = b.array(row_t, [3])
        # Rows padded to 16 bytes cannot be seen as a single 2 dimensions array
        padded_row = b.array(float_t, [3])
        padded = b.entry(Tags.DW_TAG_array_type, {Attrs.DW_AT_type: padded_row.ref_id, Attrs.DW_AT_byte_stride: 16})
        b.entry(Tags.DW_TAG_subrange_type, {Attrs.DW_AT_upper_bound: 1}, parent=padded)

        graph = TypeGraphBuilder(self.target).build(b.store())
        resolver = LayoutResolver(graph)

        layout = self.assertIsInstanceAndReturn(resolver.resolve(table.ref_id, 0x1000, 'table'), ArrayNode)
        self.assertEqual(layout.dims, (3, 4))
        self.assertEqual(layout.stride, 4)
        self.assertEqual(layout.byte_size, 48)
        self.assertEqual(layout.element_type_name, 'float')
        self.assertEqual(layout.get_element_datatype(), EmbeddedDataType.float32)
        self.assertEqual(len(layout.elements), 12)
        element = self.assertIsInstanceAndReturn(layout.element_at((2, 1)), ScalarLeaf)
        self.assert_address(element, 0x1000 + (2 * 4 + 1) * 4)
        self.assertEqual(element.path, 'table[2][1]')
        self.assertIs(layout.find('[2][1]'), element)
        self.assertIs(layout.find('_2_._1_'), element)

        layout = self.assertIsInstanceAndReturn(resolver.resolve(padded.ref_id, 0x2000, 'padded'), ArrayNode)
        self.assertEqual(layout.dims, (2,))
        self.assertEqual(layout.stride, 16)
        row = self.assertIsInstanceAndReturn(layout.element_at((1,)), ArrayNode)
        self.assertEqual(row.dims, (3,))
        self.assert_address(row.element_at((2,)), 0x2000 + 16 + 8)

    def test_type_missing_from_graph(self):
        b = EntryBuilder()
        broken = b.entry(Tags.DW_TAG_base_type, {Attrs.DW_AT_name: 'broken'})
        s = b.struct('S', 4)
        b.member(s, 'x', broken, 0)

        with self.assertLogs('TypeGraphBuilder', level='WARNING'):
            graph = TypeGraphBuilder(self.target).build(b.store())

        with self.assertRaises(TypeResolutionError) as cm:
            LayoutResolver(graph).resolve(s.ref_id, 0x1000, 'sym')
        self.assertEqual(cm.exception.name, 'sym')
        self.assertEqual(cm.exception.ref_id, s.ref_id)
        self.assertIsInstance(cm.exception.__cause__, DanglingTypeReference)

    def test_opaque_member(self):
        b = EntryBuilder(cu_name='test.cpp')
        nullptr_t = b.entry(Tags.DW_TAG_unspecified_type, {Attrs.DW_AT_name: 'decltype(nullptr)'})
        s = b.struct('S', 4)
        b.member(s, 'n', nullptr_t, 0)

        graph = TypeGraphBuilder(self.target).build(b.store())
        layout = LayoutResolver(graph).resolve(s.ref_id, 0x100, 's')
        leaf = self.assertIsInstanceAndReturn(layout.find('n'), ScalarLeaf)
        self.assertEqual(leaf.datatype, EmbeddedDataType.NA)
        self.assertEqual(leaf.byte_size, 0)
        self.assertEqual(leaf.type_name, 'decltype(nullptr)')
        self.assertFalse(leaf.is_numeric())


class TestSplitPath(DwarfcalUnitTest):
    def test_split(self):
        self.assertEqual(split_path('a'), ['a'])
        self.assertEqual(split_path('a.b.c'), ['a', 'b', 'c'])
        self.assertEqual(split_path('a.b[1][2]'), ['a', 'b', 1, 2])
        self.assertEqual(split_path('[3].x'), [3, 'x'])
        self.assertEqual(split_path('a.b._1_._2_'), ['a', 'b', 1, 2])
        self.assertEqual(split_path('a._1_.x'), ['a', 1, 'x'])
        self.assertEqual(split_path('_3_'), [3])
        self.assertEqual(split_path('a._x_'), ['a', '_x_'])
        self.assertEqual(split_path('my_1_var'), ['my_1_var'])
        self.assertEqual(split_path(''), [])
        with self.assertRaises(ValueError):
            split_path('a[x]')
        with self.assertRaises(ValueError):
            split_path('a..b')
