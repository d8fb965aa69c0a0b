#    debug_entry.py
#        The already decoded debug information entries consumed by the type graph builder,
#        and an in-memory store holding them
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = [
    'Attrs',
    'Tags',
    'DwarfEncoding',
    'DebugEntry',
    'DebugEntryStore',
    'InMemoryDebugEntryStore',
]

from enum import Enum

from dwarfcal.tools.typing import *


class Attrs:
    DW_AT_declaration = 'DW_AT_declaration'
    DW_AT_comp_dir = 'DW_AT_comp_dir'
    DW_AT_specification = 'DW_AT_specification'
    DW_AT_abstract_origin = 'DW_AT_abstract_origin'
    DW_AT_name = 'DW_AT_name'
    DW_AT_linkage_name = 'DW_AT_linkage_name'
    DW_AT_MIPS_linkage_name = 'DW_AT_MIPS_linkage_name'
    DW_AT_external = 'DW_AT_external'
    DW_AT_byte_size = 'DW_AT_byte_size'
    DW_AT_encoding = 'DW_AT_encoding'
    DW_AT_const_value = 'DW_AT_const_value'
    DW_AT_type = 'DW_AT_type'
    DW_AT_data_member_location = 'DW_AT_data_member_location'
    DW_AT_bit_offset = 'DW_AT_bit_offset'
    DW_AT_bit_size = 'DW_AT_bit_size'
    DW_AT_data_bit_offset = 'DW_AT_data_bit_offset'
    DW_AT_location = 'DW_AT_location'
    DW_AT_producer = 'DW_AT_producer'
    DW_AT_upper_bound = 'DW_AT_upper_bound'
    DW_AT_lower_bound = 'DW_AT_lower_bound'
    DW_AT_count = 'DW_AT_count'
    DW_AT_byte_stride = 'DW_AT_byte_stride'
    DW_AT_prototyped = 'DW_AT_prototyped'


class Tags:
    DW_TAG_structure_type = 'DW_TAG_structure_type'
    DW_TAG_enumeration_type = 'DW_TAG_enumeration_type'
    DW_TAG_union_type = 'DW_TAG_union_type'
    DW_TAG_compile_unit = 'DW_TAG_compile_unit'
    DW_TAG_variable = 'DW_TAG_variable'
    DW_TAG_enumerator = 'DW_TAG_enumerator'
    DW_TAG_base_type = 'DW_TAG_base_type'
    DW_TAG_class_type = 'DW_TAG_class_type'
    DW_TAG_array_type = 'DW_TAG_array_type'
    DW_TAG_subrange_type = 'DW_TAG_subrange_type'
    DW_TAG_pointer_type = 'DW_TAG_pointer_type'
    DW_TAG_reference_type = 'DW_TAG_reference_type'
    DW_TAG_rvalue_reference_type = 'DW_TAG_rvalue_reference_type'
    DW_TAG_member = 'DW_TAG_member'
    DW_TAG_inheritance = 'DW_TAG_inheritance'
    DW_TAG_typedef = 'DW_TAG_typedef'
    DW_TAG_const_type = 'DW_TAG_const_type'
    DW_TAG_volatile_type = 'DW_TAG_volatile_type'
    DW_TAG_restrict_type = 'DW_TAG_restrict_type'
    DW_TAG_packed_type = 'DW_TAG_packed_type'
    DW_TAG_atomic_type = 'DW_TAG_atomic_type'
    DW_TAG_immutable_type = 'DW_TAG_immutable_type'
    DW_TAG_subroutine_type = 'DW_TAG_subroutine_type'
    DW_TAG_formal_parameter = 'DW_TAG_formal_parameter'
    DW_TAG_unspecified_parameters = 'DW_TAG_unspecified_parameters'
    DW_TAG_unspecified_type = 'DW_TAG_unspecified_type'
    DW_TAG_subprogram = 'DW_TAG_subprogram'
    DW_TAG_lexical_block = 'DW_TAG_lexical_block'
    DW_TAG_namespace = 'DW_TAG_namespace'
    DW_TAG_partial_unit = 'DW_TAG_partial_unit'


class DwarfEncoding(Enum):
    DW_ATE_address = 0x1
    DW_ATE_boolean = 0x2
    DW_ATE_complex_float = 0x3
    DW_ATE_float = 0x4
    DW_ATE_signed = 0x5
    DW_ATE_signed_char = 0x6
    DW_ATE_unsigned = 0x7
    DW_ATE_unsigned_char = 0x8
    DW_ATE_imaginary_float = 0x9
    DW_ATE_packed_decimal = 0xa
    DW_ATE_numeric_string = 0xb
    DW_ATE_edited = 0xc
    DW_ATE_signed_fixed = 0xd
    DW_ATE_unsigned_fixed = 0xe
    DW_ATE_decimal_float = 0xf
    DW_ATE_UTF = 0x10


class DebugEntry:
    """
    One debug information entry. Attributes are already decoded: names are str,
    type references are the ref-id of the referenced entry, locations are absolute addresses.
    """
    __slots__ = ('ref_id', 'tag', 'attributes', 'children', 'parent')

    ref_id: int
    tag: str
    attributes: Dict[str, Any]
    children: List["DebugEntry"]
    parent: Optional["DebugEntry"]

    def __init__(self, ref_id: int, tag: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        if not isinstance(ref_id, int):
            raise ValueError('ref_id must be an integer')
        self.ref_id = ref_id
        self.tag = tag
        self.attributes = {} if attributes is None else dict(attributes)
        self.children = []
        self.parent = None

    def add_child(self, child: "DebugEntry") -> "DebugEntry":
        child.parent = self
        self.children.append(child)
        return child

    def iter_children(self) -> Iterator["DebugEntry"]:
        return iter(self.children)

    def has_attr(self, name: str) -> bool:
        return name in self.attributes

    def get_attr(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def get_name(self) -> Optional[str]:
        name = self.attributes.get(Attrs.DW_AT_name, None)
        if name is None or name == '':
            return None
        return cast(str, name)

    def get_type_ref(self) -> Optional[int]:
        return cast(Optional[int], self.attributes.get(Attrs.DW_AT_type, None))

    def get_byte_size(self) -> Optional[int]:
        return cast(Optional[int], self.attributes.get(Attrs.DW_AT_byte_size, None))

    def is_declaration(self) -> bool:
        return bool(self.attributes.get(Attrs.DW_AT_declaration, False))

    def __repr__(self) -> str:
        name = self.get_name()
        return f'<{self.__class__.__name__} {self.tag} <{self.ref_id:x}> "{name if name is not None else ""}">'


@runtime_checkable
class DebugEntryStore(Protocol):
    """What the type graph builder needs from a decoded DWARF section"""

    def entries(self) -> Sequence[DebugEntry]:
        ...

    def resolve_ref(self, ref_id: int) -> Optional[DebugEntry]:
        ...


class InMemoryDebugEntryStore:
    """A debug entry store built from a list of root entries (compile units, usually)"""

    _roots: List[DebugEntry]
    _entries: List[DebugEntry]
    _index: Dict[int, DebugEntry]

    def __init__(self, roots: Iterable[DebugEntry] = ()) -> None:
        self._roots = []
        self._entries = []
        self._index = {}
        for root in roots:
            self.add_root(root)

    def add_root(self, root: DebugEntry) -> None:
        self._roots.append(root)
        # Depth first, document order.
        stack = [root]
        while len(stack) > 0:
            entry = stack.pop()
            if entry.ref_id in self._index:
                raise ValueError(f'Duplicate ref-id <{entry.ref_id:x}>')
            self._index[entry.ref_id] = entry
            self._entries.append(entry)
            stack.extend(reversed(entry.children))

    def get_roots(self) -> List[DebugEntry]:
        return self._roots

    def entries(self) -> Sequence[DebugEntry]:
        return self._entries

    def resolve_ref(self, ref_id: int) -> Optional[DebugEntry]:
        return self._index.get(ref_id, None)

    def __len__(self) -> int:
        return len(self._entries)
