#    type_graph_builder.py
#        Turns a store of debug entries into a TypeGraph. Every type entry is built once
#        and shared by all of its users.
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['TypeGraphBuilder']

import logging
import inspect

from dwarfcal.core.basic_types import Endianness, EmbeddedDataType
from dwarfcal.core.debug_entry import Attrs, Tags, DwarfEncoding, DebugEntry, DebugEntryStore
from dwarfcal.core.target import TargetDescriptor
from dwarfcal.core.type_graph import *
from dwarfcal.core.logging import DUMPDATA_LOGLEVEL
from dwarfcal.exceptions import DanglingTypeReference, MalformedType, TypeGraphError
from dwarfcal import tools

from dwarfcal.tools.typing import *


class TypeGraphBuilder:
    """
    Builds the type graph of a debug entry store. The build is deterministic and does not modify the store.
    Faulty types are left out of the graph. The dangling references and the malformed entries responsible for it
    are reported in TypeGraph.errors
    """

    ALIAS_TAGS = (
        Tags.DW_TAG_typedef,
        Tags.DW_TAG_const_type,
        Tags.DW_TAG_volatile_type,
        Tags.DW_TAG_restrict_type,
        Tags.DW_TAG_packed_type,
        Tags.DW_TAG_atomic_type,
        Tags.DW_TAG_immutable_type,
    )

    POINTER_TAGS = (
        Tags.DW_TAG_pointer_type,
        Tags.DW_TAG_reference_type,
        Tags.DW_TAG_rvalue_reference_type,
    )

    COMPOSITE_TAGS = (
        Tags.DW_TAG_structure_type,
        Tags.DW_TAG_class_type,
        Tags.DW_TAG_union_type,
    )

    TYPE_TAGS = ALIAS_TAGS + POINTER_TAGS + COMPOSITE_TAGS + (
        Tags.DW_TAG_base_type,
        Tags.DW_TAG_enumeration_type,
        Tags.DW_TAG_array_type,
        Tags.DW_TAG_subroutine_type,
        Tags.DW_TAG_unspecified_type,
    )

    # Compilers use an all-ones upper bound for arrays of unknown size
    UNKNOWN_UPPER_BOUNDS = (0xFFFFFFFF, 0xFFFFFFFFFFFFFFFF, -1)

    ENCODING_MAP: Dict[DwarfEncoding, Dict[int, EmbeddedDataType]] = {
        DwarfEncoding.DW_ATE_address: {
            1: EmbeddedDataType.uint8,
            2: EmbeddedDataType.uint16,
            4: EmbeddedDataType.uint32,
            8: EmbeddedDataType.uint64,
        },
        DwarfEncoding.DW_ATE_boolean: {
            1: EmbeddedDataType.boolean,
            2: EmbeddedDataType.uint16,
            4: EmbeddedDataType.uint32,
            8: EmbeddedDataType.uint64
        },
        DwarfEncoding.DW_ATE_complex_float: {
            2: EmbeddedDataType.cfloat16,
            4: EmbeddedDataType.cfloat32,
            8: EmbeddedDataType.cfloat64,
            16: EmbeddedDataType.cfloat128,
            32: EmbeddedDataType.cfloat256
        },
        DwarfEncoding.DW_ATE_float: {
            2: EmbeddedDataType.float16,
            4: EmbeddedDataType.float32,
            8: EmbeddedDataType.float64,
            16: EmbeddedDataType.float128,
            32: EmbeddedDataType.float256
        },
        DwarfEncoding.DW_ATE_signed: {
            1: EmbeddedDataType.sint8,
            2: EmbeddedDataType.sint16,
            4: EmbeddedDataType.sint32,
            8: EmbeddedDataType.sint64,
            16: EmbeddedDataType.sint128,
            32: EmbeddedDataType.sint256
        },
        DwarfEncoding.DW_ATE_signed_char: {
            1: EmbeddedDataType.sint8,
            2: EmbeddedDataType.sint16,
            4: EmbeddedDataType.sint32,
        },
        DwarfEncoding.DW_ATE_unsigned: {
            1: EmbeddedDataType.uint8,
            2: EmbeddedDataType.uint16,
            4: EmbeddedDataType.uint32,
            8: EmbeddedDataType.uint64,
            16: EmbeddedDataType.uint128,
            32: EmbeddedDataType.uint256
        },
        DwarfEncoding.DW_ATE_unsigned_char: {
            1: EmbeddedDataType.uint8,
            2: EmbeddedDataType.uint16,
            4: EmbeddedDataType.uint32,
        },
        DwarfEncoding.DW_ATE_UTF: {
            1: EmbeddedDataType.uint8,
            2: EmbeddedDataType.uint16,
            4: EmbeddedDataType.uint32,
        }
    }

    logger: logging.Logger
    target: TargetDescriptor

    _store: DebugEntryStore
    _graph: TypeGraph
    _failures: Dict[int, TypeGraphError]
    _error_keys: Set[Tuple[int, Optional[int]]]
    _aliases_in_progress: Set[int]
    _definitions: Optional[Dict[Tuple[str, str], int]]
    _initial_stack_depth: int

    def __init__(self, target: TargetDescriptor) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self.target = target
        self._initial_stack_depth = 0

    def build(self, store: DebugEntryStore) -> TypeGraph:
        """Build the type node of every type entry in the store"""
        self._store = store
        self._graph = TypeGraph(self.target)
        self._failures = {}
        self._error_keys = set()
        self._aliases_in_progress = set()
        self._definitions = None
        self._initial_stack_depth = len(inspect.stack())

        for entry in store.entries():
            if entry.tag not in self.TYPE_TAGS:
                continue
            try:
                self._build_ref(entry.ref_id, None)
            except TypeGraphError as e:
                self.logger.debug(f"Skipped {self._make_name_for_log(entry)}. {e}")

        if len(self._graph.errors) > 0:
            self.logger.warning(f"Type graph built with {len(self._graph.errors)} errors")
        self.logger.debug(f"Type graph built. {len(self._graph)} types")

        return self._graph

    def _make_name_for_log(self, entry: Optional[DebugEntry]) -> str:
        if entry is None:
            return "<None>"
        name = entry.get_name()
        return f'{entry.tag} <{entry.ref_id:x}> "{name if name is not None else ""}"'

    def _log_debug_process_entry(self, entry: DebugEntry) -> None:
        if self.logger.isEnabledFor(DUMPDATA_LOGLEVEL):  # pragma: no cover
            stack_depth = len(inspect.stack()) - self._initial_stack_depth - 1
            stack_depth = max(stack_depth, 1)
            funcname = inspect.stack()[1][3]
            pad = '|  ' * (stack_depth - 1) + '|--'
            self.logger.log(DUMPDATA_LOGLEVEL, f"{pad}{funcname}({self._make_name_for_log(entry)})")

    def _dangling(self, ref_id: int, referenced_by: Optional[int]) -> DanglingTypeReference:
        """Record a dangling reference once and return the exception to raise"""
        error = DanglingTypeReference(ref_id, referenced_by)
        key = (ref_id, referenced_by)
        if key not in self._error_keys:
            self._error_keys.add(key)
            self._graph.add_error(error)
        return error

    def _get_entry(self, ref_id: int, referenced_by: Optional[int]) -> DebugEntry:
        entry = self._store.resolve_ref(ref_id)
        if entry is None:
            raise self._dangling(ref_id, referenced_by)
        return entry

    def _build_ref(self, ref_id: int, referenced_by: Optional[int]) -> None:
        """Make sure the type behind a ref-id exists in the graph, as a node or as an alias"""
        if self._graph.has(ref_id):
            return
        if ref_id in self._failures:
            raise self._failures[ref_id]

        entry = self._get_entry(ref_id, referenced_by)
        try:
            if entry.tag in self.ALIAS_TAGS:
                self._process_alias(entry)
            elif entry.tag in self.POINTER_TAGS:
                self._process_pointer(entry)
            elif entry.tag in self.COMPOSITE_TAGS:
                self._process_composite(entry)
            elif entry.tag == Tags.DW_TAG_base_type:
                self._process_base_type(entry)
            elif entry.tag == Tags.DW_TAG_enumeration_type:
                self._process_enum(entry)
            elif entry.tag == Tags.DW_TAG_array_type:
                self._process_array(entry)
            elif entry.tag == Tags.DW_TAG_subroutine_type:
                self._process_subroutine(entry)
            else:
                # DW_TAG_unspecified_type (C++ nullptr_t) and tags we do not know
                if entry.tag != Tags.DW_TAG_unspecified_type:
                    self.logger.warning(f"Type entry {self._make_name_for_log(entry)} is not supported. Treated as opaque")
                self._graph.add_node(OpaqueType(ref_id=entry.ref_id, name=entry.get_name(), byte_size=entry.get_byte_size()))
        except TypeGraphError as e:
            self._failures[ref_id] = e
            raise
        except Exception as e:
            error = self._malformed(entry, e)
            self._failures[ref_id] = error
            raise error from e

    def _malformed(self, entry: DebugEntry, cause: Exception) -> MalformedType:
        """Record a type entry that cannot be built and return the exception to raise"""
        tools.log_exception(self.logger, cause, f"Failed to build type {self._make_name_for_log(entry)}.", str_level=logging.WARNING)
        error = MalformedType(entry.ref_id, str(cause))
        self._graph.add_error(error)
        return error

    def _process_alias(self, entry: DebugEntry) -> None:
        self._log_debug_process_entry(entry)
        typedef_name = entry.get_name() if entry.tag == Tags.DW_TAG_typedef else None
        target_ref = entry.get_type_ref()
        if target_ref is None:
            # typedef void x; const void
            self._graph.add_node(VoidType(ref_id=entry.ref_id, name=typedef_name if typedef_name is not None else 'void'))
            return

        if target_ref in self._aliases_in_progress or target_ref == entry.ref_id:
            raise self._dangling(target_ref, entry.ref_id)

        self._aliases_in_progress.add(entry.ref_id)
        try:
            self._build_ref(target_ref, entry.ref_id)
        finally:
            self._aliases_in_progress.discard(entry.ref_id)

        self._graph.add_alias(entry.ref_id, target_ref, typedef_name)

    def _peel_entry_aliases(self, entry: DebugEntry) -> Optional[DebugEntry]:
        """Follow typedefs and qualifiers directly in the store, without building anything"""
        visited: Set[int] = set()
        current: Optional[DebugEntry] = entry
        while current is not None and current.tag in self.ALIAS_TAGS:
            if current.ref_id in visited:
                return None
            visited.add(current.ref_id)
            target_ref = current.get_type_ref()
            if target_ref is None:
                return None
            current = self._get_entry(target_ref, current.ref_id)
        return current

    def _process_pointer(self, entry: DebugEntry) -> None:
        # The target is not built here. Self referencing types would never end otherwise
        self._log_debug_process_entry(entry)
        target_ref = entry.get_type_ref()
        is_function_pointer = False
        if target_ref is not None:
            target_entry = self._peel_entry_aliases(self._get_entry(target_ref, entry.ref_id))
            if target_entry is not None and target_entry.tag == Tags.DW_TAG_subroutine_type:
                is_function_pointer = True

        byte_size = entry.get_byte_size()
        if byte_size is None:
            byte_size = self.target.pointer_width_bytes

        self._graph.add_node(PointerType(
            ref_id=entry.ref_id,
            name=entry.get_name(),
            target_ref=target_ref,
            byte_size=byte_size,
            is_function_pointer=is_function_pointer,
            is_reference=entry.tag != Tags.DW_TAG_pointer_type
        ))

    def _get_core_base_type(self, encoding: Optional[DwarfEncoding], bytesize: int) -> EmbeddedDataType:
        if encoding is None or encoding not in self.ENCODING_MAP:
            return EmbeddedDataType.NA
        return self.ENCODING_MAP[encoding].get(bytesize, EmbeddedDataType.NA)

    def _read_encoding(self, entry: DebugEntry) -> Optional[DwarfEncoding]:
        raw = entry.get_attr(Attrs.DW_AT_encoding)
        if raw is None:
            return None
        try:
            return DwarfEncoding(int(raw))
        except ValueError:
            self.logger.warning(f"Unknown encoding 0x{int(raw):x} on {self._make_name_for_log(entry)}")
            return None

    def _process_base_type(self, entry: DebugEntry) -> None:
        self._log_debug_process_entry(entry)
        byte_size = entry.get_byte_size()
        if byte_size is None:
            raise ValueError(f'Missing {Attrs.DW_AT_byte_size} on base type {self._make_name_for_log(entry)}')
        encoding = self._read_encoding(entry)
        datatype = self._get_core_base_type(encoding, byte_size)
        if datatype == EmbeddedDataType.NA:
            self.logger.debug(f"Base type {self._make_name_for_log(entry)} has no known representation")

        self._graph.add_node(ScalarType(
            ref_id=entry.ref_id,
            name=entry.get_name(),
            encoding=encoding,
            byte_size=byte_size,
            datatype=datatype
        ))

    def _process_enum(self, entry: DebugEntry) -> None:
        self._log_debug_process_entry(entry)
        enumerators: List[Tuple[str, int]] = []
        for child in entry.iter_children():
            if child.tag != Tags.DW_TAG_enumerator:
                continue
            enumerator_name = child.get_name()
            value = child.get_attr(Attrs.DW_AT_const_value)
            if enumerator_name is None or value is None:
                self.logger.error(f'Enumerator without name or value in {self._make_name_for_log(entry)}')
                continue
            enumerators.append((enumerator_name, int(value)))

        byte_size = entry.get_byte_size()
        datatype = EmbeddedDataType.NA
        underlying_ref = entry.get_type_ref()
        if underlying_ref is not None:
            self._build_ref(underlying_ref, entry.ref_id)
            underlying = self._graph.resolve(underlying_ref)
            if isinstance(underlying, (ScalarType, EnumType)):
                datatype = underlying.datatype
                if byte_size is None:
                    byte_size = underlying.byte_size

        if byte_size is None:
            raise ValueError(f"Cannot determine enum size of {self._make_name_for_log(entry)}")

        if datatype == EmbeddedDataType.NA or datatype.get_size_byte() != byte_size:
            # Clang DWARF V2 gives no underlying type. Deduce from the enumerators
            encoding = self._read_encoding(entry)
            if encoding is None:
                if datatype != EmbeddedDataType.NA:
                    signed = datatype.is_signed()
                else:
                    signed = any([value < 0 for _, value in enumerators])
                encoding = DwarfEncoding.DW_ATE_signed if signed else DwarfEncoding.DW_ATE_unsigned
            datatype = self._get_core_base_type(encoding, byte_size)

        self._graph.add_node(EnumType(
            ref_id=entry.ref_id,
            name=entry.get_name(),
            byte_size=byte_size,
            datatype=datatype,
            enumerators=enumerators
        ))

    def _read_dimension(self, entry: DebugEntry) -> int:
        if entry.tag == Tags.DW_TAG_enumeration_type:
            return len([child for child in entry.iter_children() if child.tag == Tags.DW_TAG_enumerator])

        count = entry.get_attr(Attrs.DW_AT_count)
        if count is not None:
            return max(int(count), 0)

        upper_bound = entry.get_attr(Attrs.DW_AT_upper_bound)
        if upper_bound is None or upper_bound in self.UNKNOWN_UPPER_BOUNDS:
            return 0
        lower_bound = int(entry.get_attr(Attrs.DW_AT_lower_bound, 0))
        return max(int(upper_bound) - lower_bound + 1, 0)

    def _size_of(self, ref_id: int) -> Optional[int]:
        """Size of a type, None if not known yet (type under construction)"""
        node = self._graph.get(ref_id)
        if isinstance(node, UnresolvedType):
            return None
        return self._graph.get_byte_size(ref_id)

    def _process_array(self, entry: DebugEntry) -> None:
        self._log_debug_process_entry(entry)
        element_ref = entry.get_type_ref()
        if element_ref is None:
            raise ValueError(f"Array {self._make_name_for_log(entry)} has no element type")
        self._build_ref(element_ref, entry.ref_id)

        dims: List[int] = []
        for child in entry.iter_children():
            if child.tag in (Tags.DW_TAG_subrange_type, Tags.DW_TAG_enumeration_type):
                dims.append(self._read_dimension(child))
        if len(dims) == 0:
            dims.append(0)

        explicit_stride = entry.get_attr(Attrs.DW_AT_byte_stride)
        stride = int(explicit_stride) if explicit_stride is not None else self._size_of(element_ref)
        byte_size = entry.get_byte_size()

        # Unknown bound, but the total size tells us how many elements there are
        if len(dims) == 1 and dims[0] == 0 and stride and byte_size is not None:
            dims[0] = byte_size // stride

        self._graph.add_node(ArrayType(
            ref_id=entry.ref_id,
            name=entry.get_name(),
            element_ref=element_ref,
            dims=tuple(dims),
            stride=int(explicit_stride) if explicit_stride is not None else None,
            byte_size=byte_size
        ))

    def _process_subroutine(self, entry: DebugEntry) -> None:
        # Metadata only. Return and parameter types are checked for existence, not built.
        self._log_debug_process_entry(entry)
        return_ref = entry.get_type_ref()
        if return_ref is not None:
            self._get_entry(return_ref, entry.ref_id)

        parameter_refs: List[int] = []
        is_variadic = False
        for child in entry.iter_children():
            if child.tag == Tags.DW_TAG_formal_parameter:
                param_ref = child.get_type_ref()
                if param_ref is None:
                    continue
                self._get_entry(param_ref, child.ref_id)
                parameter_refs.append(param_ref)
            elif child.tag == Tags.DW_TAG_unspecified_parameters:
                is_variadic = True

        self._graph.add_node(FunctionSignatureType(
            ref_id=entry.ref_id,
            name=entry.get_name(),
            return_ref=return_ref,
            parameter_refs=parameter_refs,
            is_variadic=is_variadic
        ))

    def _composite_family(self, tag: str) -> str:
        if tag == Tags.DW_TAG_class_type:
            return Tags.DW_TAG_structure_type
        return tag

    def _find_definition(self, entry: DebugEntry) -> Optional[int]:
        """Find the complete definition of a forward declared composite, by name"""
        name = entry.get_name()
        if name is None:
            return None
        if self._definitions is None:
            self._definitions = {}
            for candidate in self._store.entries():
                if candidate.tag not in self.COMPOSITE_TAGS or candidate.is_declaration():
                    continue
                candidate_name = candidate.get_name()
                if candidate_name is None:
                    continue
                key = (self._composite_family(candidate.tag), candidate_name)
                if key not in self._definitions:
                    self._definitions[key] = candidate.ref_id
        return self._definitions.get((self._composite_family(entry.tag), name), None)

    def _process_composite(self, entry: DebugEntry) -> None:
        self._log_debug_process_entry(entry)

        if entry.is_declaration():
            definition_ref = self._find_definition(entry)
            if definition_ref is not None:
                self._build_ref(definition_ref, entry.ref_id)
                self._graph.add_alias(entry.ref_id, definition_ref)
                return
            self.logger.debug(f"No definition found for {self._make_name_for_log(entry)}. Kept as incomplete type")

        is_union = entry.tag == Tags.DW_TAG_union_type
        self._graph.add_placeholder(entry.ref_id)
        try:
            members: List[Member] = []
            for child in entry.iter_children():
                member: Optional[Member] = None
                if child.tag == Tags.DW_TAG_member:
                    member = self._get_member_from_entry(child, is_union)
                elif child.tag == Tags.DW_TAG_inheritance:
                    member = self._get_base_class_member(child)
                if member is not None:
                    members.append(member)

            byte_size = entry.get_byte_size()
            if byte_size is None and not entry.is_declaration():
                byte_size = self._deduce_composite_size(members, is_union)

            node_class: Type[CompositeType] = UnionType if is_union else StructType
            node = node_class(
                ref_id=entry.ref_id,
                name=entry.get_name(),
                byte_size=byte_size,
                members=members,
                is_class=entry.tag == Tags.DW_TAG_class_type
            )
            self._graph.fill_placeholder(node)
        except Exception:
            self._graph.discard_placeholder(entry.ref_id)
            raise

    def _deduce_composite_size(self, members: List[Member], is_union: bool) -> int:
        end = 0
        for member in members:
            size = self._size_of(member.type_ref)
            if size is None:
                continue
            end = max(end, (0 if is_union else member.byte_offset) + size)
        if end == 0:
            return 0
        return self.target.align(end)

    def _get_member_byte_offset(self, entry: DebugEntry) -> int:
        # DWARF V4. 5.5.6: If the beginning of the data member is the same as the beginning of the containing entity then neither attribute is required.
        val = entry.get_attr(Attrs.DW_AT_data_member_location)
        if val is None:
            return 0
        if not isinstance(val, int):
            raise ValueError(f"Does not know how to read member location of {self._make_name_for_log(entry)}")
        return val

    def _get_base_class_member(self, entry: DebugEntry) -> Optional[Member]:
        self._log_debug_process_entry(entry)
        type_ref = entry.get_type_ref()
        if type_ref is None:
            return None
        self._build_ref(type_ref, entry.ref_id)
        base = self._graph.get(type_ref)
        if not isinstance(base, (StructType, UnresolvedType)):
            self.logger.warning(f"Inheritance from {self._graph.describe(type_ref)} in {self._make_name_for_log(entry.parent)}. Not supported")
            return None

        return Member(
            name=None,
            type_ref=type_ref,
            byte_offset=self._get_member_byte_offset(entry),
            is_base_class=True
        )

    def _get_member_from_entry(self, entry: DebugEntry, is_in_union: bool) -> Optional[Member]:
        self._log_debug_process_entry(entry)

        # Static data members have no storage in the instance
        if entry.is_declaration():
            return None

        type_ref = entry.get_type_ref()
        if type_ref is None:
            self.logger.warning(f"Member {self._make_name_for_log(entry)} has no type")
            return None
        self._build_ref(type_ref, entry.ref_id)

        name = entry.get_name()
        byte_offset = self._get_member_byte_offset(entry)
        if is_in_union and byte_offset != 0:
            self.logger.warning(f"Union member {self._make_name_for_log(entry)} has a non-zero location {byte_offset}. Forced to 0")
            byte_offset = 0

        bit_size = entry.get_attr(Attrs.DW_AT_bit_size)
        bit_offset: Optional[int] = None
        if bit_size is not None:
            if name is None:
                return None     # Padding. Ex: unsigned int :12;
            bit_size = int(bit_size)
            byte_offset, bit_offset = self._normalize_bitfield(entry, type_ref, byte_offset, bit_size)
        elif name is None:
            member_type = self._graph.get(type_ref)
            if not isinstance(member_type, (CompositeType, UnresolvedType)):
                self.logger.warning(f"Unnamed member {self._make_name_for_log(entry)} is not a struct or an union. Ignored")
                return None

        return Member(
            name=name,
            type_ref=type_ref,
            byte_offset=byte_offset,
            bit_offset=bit_offset,
            bit_size=bit_size
        )

    def _normalize_bitfield(self, entry: DebugEntry, type_ref: int, byte_offset: int, bit_size: int) -> Tuple[int, int]:
        """
        Return (byte offset of the storage unit, bit offset from the LSB of the storage unit) for a bitfield member.
        DW_AT_bit_offset (DWARF 2/3) counts from the MSB of the unit.
        DW_AT_data_bit_offset (DWARF 4+) counts from the beginning of the containing entity, in memory order.
        """
        unit_size = entry.get_byte_size()
        if unit_size is None:
            unit_size = self._size_of(type_ref)
        if not unit_size:
            raise ValueError(f'Cannot get the storage unit size of bitfield {self._make_name_for_log(entry)}')
        unit_bits = unit_size * 8

        if entry.has_attr(Attrs.DW_AT_bit_offset):
            bit_offset = unit_bits - int(entry.get_attr(Attrs.DW_AT_bit_offset)) - bit_size
        else:
            data_bit_offset = int(entry.get_attr(Attrs.DW_AT_data_bit_offset, 0))
            if data_bit_offset >= unit_bits:
                byte_offset += (data_bit_offset // unit_bits) * unit_size
                data_bit_offset %= unit_bits
            bit_offset = data_bit_offset
            if self.target.endianness == Endianness.Big:
                bit_offset = unit_bits - bit_offset - bit_size

        if bit_offset < 0 or bit_size <= 0 or bit_offset + bit_size > unit_bits:
            raise ValueError(f"Bitfield {self._make_name_for_log(entry)} does not fit in its {unit_size} bytes storage unit. Offset={bit_offset}, size={bit_size}")

        return (byte_offset, bit_offset)
