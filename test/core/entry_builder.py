#    entry_builder.py
#        Helper to write synthetic debug entry trees in the unit tests, without a compiler
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['EntryBuilder']

from dwarfcal.core.debug_entry import Attrs, Tags, DwarfEncoding, DebugEntry, InMemoryDebugEntryStore
from dwarfcal.tools.typing import *


RefOrEntry = Union[int, DebugEntry]


def _ref(x: RefOrEntry) -> int:
    if isinstance(x, DebugEntry):
        return x.ref_id
    return x


class EntryBuilder:
    """Creates debug entries under a single compile unit, with increasing ref-ids"""

    cu: DebugEntry
    _next_ref: int

    def __init__(self, cu_name: str = 'test.c', first_ref: int = 0x100) -> None:
        self._next_ref = first_ref
        self.cu = DebugEntry(self._new_ref(), Tags.DW_TAG_compile_unit, {Attrs.DW_AT_name: cu_name})

    def _new_ref(self) -> int:
        ref = self._next_ref
        self._next_ref += 0x10
        return ref

    def entry(self, tag: str, attributes: Optional[Dict[str, Any]] = None, parent: Optional[DebugEntry] = None) -> DebugEntry:
        entry = DebugEntry(self._new_ref(), tag, attributes)
        (parent if parent is not None else self.cu).add_child(entry)
        return entry

    def store(self) -> InMemoryDebugEntryStore:
        return InMemoryDebugEntryStore([self.cu])

    def base_type(self, name: str, byte_size: int, encoding: DwarfEncoding) -> DebugEntry:
        return self.entry(Tags.DW_TAG_base_type, {
            Attrs.DW_AT_name: name,
            Attrs.DW_AT_byte_size: byte_size,
            Attrs.DW_AT_encoding: encoding.value
        })

    def typedef(self, name: str, target: Optional[RefOrEntry]) -> DebugEntry:
        attrs: Dict[str, Any] = {Attrs.DW_AT_name: name}
        if target is not None:
            attrs[Attrs.DW_AT_type] = _ref(target)
        return self.entry(Tags.DW_TAG_typedef, attrs)

    def qualifier(self, tag: str, target: Optional[RefOrEntry]) -> DebugEntry:
        attrs: Dict[str, Any] = {}
        if target is not None:
            attrs[Attrs.DW_AT_type] = _ref(target)
        return self.entry(tag, attrs)

    def pointer(self, target: Optional[RefOrEntry], byte_size: Optional[int] = 4) -> DebugEntry:
        attrs: Dict[str, Any] = {}
        if byte_size is not None:
            attrs[Attrs.DW_AT_byte_size] = byte_size
        if target is not None:
            attrs[Attrs.DW_AT_type] = _ref(target)
        return self.entry(Tags.DW_TAG_pointer_type, attrs)

    def enum(self, name: Optional[str], byte_size: Optional[int], values: Dict[str, int], underlying: Optional[RefOrEntry] = None) -> DebugEntry:
        attrs: Dict[str, Any] = {}
        if name is not None:
            attrs[Attrs.DW_AT_name] = name
        if byte_size is not None:
            attrs[Attrs.DW_AT_byte_size] = byte_size
        if underlying is not None:
            attrs[Attrs.DW_AT_type] = _ref(underlying)
        enum = self.entry(Tags.DW_TAG_enumeration_type, attrs)
        for enumerator_name, value in values.items():
            self.entry(Tags.DW_TAG_enumerator, {Attrs.DW_AT_name: enumerator_name, Attrs.DW_AT_const_value: value}, parent=enum)
        return enum

    def array(self, element: RefOrEntry, dims: List[int], byte_size: Optional[int] = None, use_count: bool = False) -> DebugEntry:
        attrs: Dict[str, Any] = {Attrs.DW_AT_type: _ref(element)}
        if byte_size is not None:
            attrs[Attrs.DW_AT_byte_size] = byte_size
        array = self.entry(Tags.DW_TAG_array_type, attrs)
        for dim in dims:
            if use_count:
                self.entry(Tags.DW_TAG_subrange_type, {Attrs.DW_AT_count: dim}, parent=array)
            else:
                self.entry(Tags.DW_TAG_subrange_type, {Attrs.DW_AT_upper_bound: dim - 1}, parent=array)
        return array

    def struct(self, name: Optional[str], byte_size: Optional[int], tag: str = Tags.DW_TAG_structure_type, declaration: bool = False) -> DebugEntry:
        attrs: Dict[str, Any] = {}
        if name is not None:
            attrs[Attrs.DW_AT_name] = name
        if byte_size is not None:
            attrs[Attrs.DW_AT_byte_size] = byte_size
        if declaration:
            attrs[Attrs.DW_AT_declaration] = True
        return self.entry(tag, attrs)

    def union(self, name: Optional[str], byte_size: Optional[int]) -> DebugEntry:
        return self.struct(name, byte_size, tag=Tags.DW_TAG_union_type)

    def member(self,
               parent: DebugEntry,
               name: Optional[str],
               type_: RefOrEntry,
               offset: Optional[int] = 0,
               bit_size: Optional[int] = None,
               bit_offset: Optional[int] = None,
               data_bit_offset: Optional[int] = None,
               byte_size: Optional[int] = None) -> DebugEntry:
        attrs: Dict[str, Any] = {Attrs.DW_AT_type: _ref(type_)}
        if name is not None:
            attrs[Attrs.DW_AT_name] = name
        if offset is not None:
            attrs[Attrs.DW_AT_data_member_location] = offset
        if bit_size is not None:
            attrs[Attrs.DW_AT_bit_size] = bit_size
        if bit_offset is not None:
            attrs[Attrs.DW_AT_bit_offset] = bit_offset
        if data_bit_offset is not None:
            attrs[Attrs.DW_AT_data_bit_offset] = data_bit_offset
        if byte_size is not None:
            attrs[Attrs.DW_AT_byte_size] = byte_size
        return self.entry(Tags.DW_TAG_member, attrs, parent=parent)

    def inheritance(self, parent: DebugEntry, base: RefOrEntry, offset: int = 0) -> DebugEntry:
        return self.entry(Tags.DW_TAG_inheritance, {Attrs.DW_AT_type: _ref(base), Attrs.DW_AT_data_member_location: offset}, parent=parent)

    def subroutine(self, return_type: Optional[RefOrEntry], params: List[RefOrEntry], variadic: bool = False) -> DebugEntry:
        attrs: Dict[str, Any] = {Attrs.DW_AT_prototyped: True}
        if return_type is not None:
            attrs[Attrs.DW_AT_type] = _ref(return_type)
        sub = self.entry(Tags.DW_TAG_subroutine_type, attrs)
        for param in params:
            self.entry(Tags.DW_TAG_formal_parameter, {Attrs.DW_AT_type: _ref(param)}, parent=sub)
        if variadic:
            self.entry(Tags.DW_TAG_unspecified_parameters, {}, parent=sub)
        return sub

    def variable(self, name: str, type_: RefOrEntry, location: Optional[int] = None,
                 declaration: bool = False, parent: Optional[DebugEntry] = None) -> DebugEntry:
        attrs: Dict[str, Any] = {Attrs.DW_AT_name: name, Attrs.DW_AT_type: _ref(type_)}
        if location is not None:
            attrs[Attrs.DW_AT_location] = location
        if declaration:
            attrs[Attrs.DW_AT_declaration] = True
        return self.entry(Tags.DW_TAG_variable, attrs, parent=parent)
