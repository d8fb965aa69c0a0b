#    layout.py
#        The layout tree of a symbol: every scalar, pointer, composite and array it is made of,
#        with absolute addresses
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = [
    'LayoutNode',
    'ScalarLeaf',
    'PointerLeaf',
    'CompositeNode',
    'ArrayNode',
    'BitfieldStorageUnit',
    'split_path',
]

import re
from dataclasses import dataclass, field

from dwarfcal.core.array import ArrayShape
from dwarfcal.core.basic_types import EmbeddedDataType
from dwarfcal.core.type_graph import EnumType, FunctionSignatureType
from dwarfcal.tools.typing import *

PathSegment: TypeAlias = Union[str, int]

_PATH_TOKEN_REGEX = re.compile(r'\[(\d+)\]|\.?_(\d+)_(?=[.\[]|$)|\.?([^.\[\]]+)')


def split_path(path: str) -> List[PathSegment]:
    """Split a path like "a.b[1][2]" or "a.b._1_._2_" into ['a', 'b', 1, 2]"""
    segments: List[PathSegment] = []
    pos = 0
    path = path.strip()
    while pos < len(path):
        m = _PATH_TOKEN_REGEX.match(path, pos)
        if m is None or m.end() == pos:
            raise ValueError(f'Invalid path "{path}"')
        if m.group(1) is not None:
            segments.append(int(m.group(1)))
        elif m.group(2) is not None:
            segments.append(int(m.group(2)))
        else:
            segments.append(m.group(3))
        pos = m.end()
    return segments


@dataclass
class LayoutNode:
    name: str       # Symbol name, member name or element indices like "[1][2]"
    path: str       # Full path from the symbol. Ex: "MySymbol.a.b[1][2]"
    address: int
    byte_size: int
    type_name: Optional[str]

    def iter_children(self) -> Iterator["LayoutNode"]:
        return iter([])

    def iter_leaves(self) -> Iterator[Union["ScalarLeaf", "PointerLeaf"]]:
        """All scalars and pointers under this node, in memory layout order"""
        for child in self.iter_children():
            yield from child.iter_leaves()

    def iter_nodes(self) -> Iterator["LayoutNode"]:
        yield self
        for child in self.iter_children():
            yield from child.iter_nodes()

    def find(self, path: str) -> Optional["LayoutNode"]:
        """Find a node from a path relative to this one. Ex: "a.b[1][2]". None if it does not exist"""
        segments = split_path(path)
        node: Optional[LayoutNode] = self
        i = 0
        while i < len(segments):
            segment = segments[i]
            if isinstance(segment, str):
                if not isinstance(node, CompositeNode):
                    return None
                node = node.get_child(segment)
                i += 1
            else:
                if not isinstance(node, ArrayNode):
                    return None
                nbdim = len(node.dims)
                indices = segments[i:i + nbdim]
                if len(indices) != nbdim or not all([isinstance(x, int) for x in indices]):
                    return None
                node = node.element_at(cast(Tuple[int, ...], tuple(indices)))
                i += nbdim
            if node is None:
                return None
        return node

    def shape(self) -> Tuple[Any, ...]:
        """The structure of the node without any address. Two instances of the same type have the same shape"""
        return (self.__class__.__name__, self.type_name, self.byte_size)


@dataclass
class ScalarLeaf(LayoutNode):
    datatype: EmbeddedDataType
    bit_offset: int = 0     # From the LSB of the storage unit
    bit_size: Optional[int] = None     # Bitfields only
    enum: Optional[EnumType] = None

    def iter_leaves(self) -> Iterator[Union["ScalarLeaf", "PointerLeaf"]]:
        yield self

    def is_bitfield(self) -> bool:
        return self.bit_size is not None

    def get_bit_width(self) -> int:
        if self.bit_size is not None:
            return self.bit_size
        return self.byte_size * 8

    def is_numeric(self) -> bool:
        return self.datatype.is_numeric()

    def shape(self) -> Tuple[Any, ...]:
        return super().shape() + (self.datatype, self.bit_offset, self.bit_size)


@dataclass
class PointerLeaf(LayoutNode):
    """A pointer. Only its own storage is described, the pointed data is never followed"""
    target_type_name: str
    is_function_pointer: bool = False
    signature: Optional[FunctionSignatureType] = None

    @property
    def bit_offset(self) -> int:
        return 0

    def get_bit_width(self) -> int:
        return self.byte_size * 8

    def iter_leaves(self) -> Iterator[Union["ScalarLeaf", "PointerLeaf"]]:
        yield self

    def shape(self) -> Tuple[Any, ...]:
        return super().shape() + (self.target_type_name, self.is_function_pointer)


@dataclass
class BitfieldStorageUnit:
    address: int
    byte_size: int
    fields: List[ScalarLeaf]

    @property
    def used_bits(self) -> int:
        return sum([f.get_bit_width() for f in self.fields])

    @property
    def padding_bits(self) -> int:
        return self.byte_size * 8 - self.used_bits


@dataclass
class CompositeNode(LayoutNode):
    """A struct or an union. Members of anonymous structs/unions and base classes are spliced in"""
    children: List[LayoutNode] = field(default_factory=list)
    is_union: bool = False
    alternative_count: int = 0     # Union only. Number of declared members

    def iter_children(self) -> Iterator[LayoutNode]:
        return iter(self.children)

    def get_child(self, name: str) -> Optional[LayoutNode]:
        for child in self.children:
            if child.name == name:
                return child
        return None

    def child_names(self) -> List[str]:
        return [child.name for child in self.children]

    def bitfield_units(self) -> List[BitfieldStorageUnit]:
        """Group the bitfields found directly in this composite by storage unit"""
        units: Dict[Tuple[int, int], BitfieldStorageUnit] = {}
        for child in self.children:
            if isinstance(child, ScalarLeaf) and child.is_bitfield():
                key = (child.address, child.byte_size)
                if key not in units:
                    units[key] = BitfieldStorageUnit(address=child.address, byte_size=child.byte_size, fields=[])
                units[key].fields.append(child)
        return sorted(units.values(), key=lambda unit: unit.address)

    def shape(self) -> Tuple[Any, ...]:
        return super().shape() + (
            self.is_union,
            tuple([(child.name, child.address - self.address, child.shape()) for child in self.children])
        )


@dataclass
class ArrayNode(LayoutNode):
    """A N dimensions array. Elements are stored in row-major order"""
    array_shape: ArrayShape
    element_type_name: Optional[str]
    elements: List[LayoutNode] = field(default_factory=list)

    @property
    def dims(self) -> Tuple[int, ...]:
        return self.array_shape.dims

    @property
    def stride(self) -> int:
        return self.array_shape.stride

    def get_element_count(self) -> int:
        return self.array_shape.get_element_count()

    def iter_children(self) -> Iterator[LayoutNode]:
        return iter(self.elements)

    def element_at(self, pos: Tuple[int, ...]) -> Optional[LayoutNode]:
        try:
            return self.elements[self.array_shape.position_of(pos)]
        except ValueError:
            return None

    def is_scalar_array(self) -> bool:
        """True when the elements are plain scalars, not bitfields, pointers or composites"""
        if len(self.elements) == 0:
            return False
        first = self.elements[0]
        return isinstance(first, ScalarLeaf) and not first.is_bitfield()

    def get_element_datatype(self) -> Optional[EmbeddedDataType]:
        if not self.is_scalar_array():
            return None
        return cast(ScalarLeaf, self.elements[0]).datatype

    def shape(self) -> Tuple[Any, ...]:
        first = self.elements[0].shape() if len(self.elements) > 0 else None
        return super().shape() + (self.array_shape.dims, self.array_shape.stride, first)
