#    type_graph.py
#        The type graph: one node per type entry, stored in an arena keyed by ref-id.
#        Nodes refer to each other by ref-id, which makes reference cycles harmless
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = [
    'TypeNode',
    'ScalarType',
    'EnumType',
    'PointerType',
    'ArrayType',
    'Member',
    'CompositeType',
    'StructType',
    'UnionType',
    'FunctionSignatureType',
    'VoidType',
    'OpaqueType',
    'UnresolvedType',
    'TypeGraph',
]

from dataclasses import dataclass, field

from dwarfcal.core.basic_types import EmbeddedDataType
from dwarfcal.core.debug_entry import DwarfEncoding
from dwarfcal.core.target import TargetDescriptor
from dwarfcal.exceptions import DanglingTypeReference, TypeGraphError
from dwarfcal.tools.typing import *


@dataclass(slots=True)
class TypeNode:
    ref_id: int
    name: Optional[str]

    def get_byte_size(self) -> Optional[int]:
        return None


@dataclass(slots=True)
class ScalarType(TypeNode):
    encoding: Optional[DwarfEncoding]
    byte_size: int
    datatype: EmbeddedDataType

    def get_byte_size(self) -> Optional[int]:
        return self.byte_size


@dataclass(slots=True)
class EnumType(TypeNode):
    byte_size: int
    datatype: EmbeddedDataType
    enumerators: List[Tuple[str, int]] = field(default_factory=list)

    def get_byte_size(self) -> Optional[int]:
        return self.byte_size

    def get_value_name(self, value: int) -> Optional[str]:
        for name, enum_value in self.enumerators:
            if enum_value == value:
                return name
        return None

    def has_signed_value(self) -> bool:
        for _, value in self.enumerators:
            if value < 0:
                return True
        return False


@dataclass(slots=True)
class PointerType(TypeNode):
    target_ref: Optional[int]   # None for void*
    byte_size: int
    is_function_pointer: bool = False
    is_reference: bool = False

    def get_byte_size(self) -> Optional[int]:
        return self.byte_size


@dataclass(slots=True)
class ArrayType(TypeNode):
    element_ref: int
    dims: Tuple[int, ...]
    stride: Optional[int] = None     # Explicit DW_AT_byte_stride, element size otherwise
    byte_size: Optional[int] = None

    def get_byte_size(self) -> Optional[int]:
        return self.byte_size


@dataclass(slots=True)
class Member:
    """A data member of a struct or union. An unnamed member is an anonymous aggregate or a base class"""
    name: Optional[str]
    type_ref: int
    byte_offset: int = 0
    bit_offset: Optional[int] = None    # From the LSB of the storage unit
    bit_size: Optional[int] = None
    is_base_class: bool = False

    def is_anonymous(self) -> bool:
        return self.name is None

    def is_bitfield(self) -> bool:
        return self.bit_size is not None


@dataclass(slots=True)
class CompositeType(TypeNode):
    byte_size: Optional[int]
    members: List[Member] = field(default_factory=list)
    is_class: bool = False

    def get_byte_size(self) -> Optional[int]:
        return self.byte_size

    def get_member(self, name: str) -> Optional[Member]:
        for member in self.members:
            if member.name == name:
                return member
        return None


@dataclass(slots=True)
class StructType(CompositeType):
    pass


@dataclass(slots=True)
class UnionType(CompositeType):
    pass


@dataclass(slots=True)
class FunctionSignatureType(TypeNode):
    return_ref: Optional[int]   # None for void
    parameter_refs: List[int] = field(default_factory=list)
    is_variadic: bool = False


@dataclass(slots=True)
class VoidType(TypeNode):
    def get_byte_size(self) -> Optional[int]:
        return 0


@dataclass(slots=True)
class OpaqueType(TypeNode):
    """A type we know nothing about except maybe its size. DW_TAG_unspecified_type or exotic tags"""
    byte_size: Optional[int] = None

    def get_byte_size(self) -> Optional[int]:
        return self.byte_size


@dataclass(slots=True)
class UnresolvedType(TypeNode):
    """Placeholder inserted while a composite is being built"""
    pass


class TypeGraph:
    """
    Arena of type nodes keyed by the ref-id of the entry that defines them.
    Typedefs and qualifiers have no node, their ref-id is an alias of the underlying node ref-id.
    Read only once built.
    """

    MAX_NAME_DEPTH = 16

    target: TargetDescriptor
    errors: List[TypeGraphError]
    _nodes: Dict[int, TypeNode]
    _aliases: Dict[int, int]
    _typedef_names: Dict[int, str]

    def __init__(self, target: TargetDescriptor) -> None:
        self.target = target
        self.errors = []
        self._nodes = {}
        self._aliases = {}
        self._typedef_names = {}

    def add_node(self, node: TypeNode) -> None:
        existing = self._nodes.get(node.ref_id, None)
        if existing is not None and not isinstance(existing, UnresolvedType):
            raise KeyError(f'Type <{node.ref_id:x}> is already defined')
        if node.ref_id in self._aliases:
            raise KeyError(f'Type <{node.ref_id:x}> is already an alias')
        self._nodes[node.ref_id] = node

    def add_placeholder(self, ref_id: int) -> UnresolvedType:
        if ref_id in self._nodes or ref_id in self._aliases:
            raise KeyError(f'Type <{ref_id:x}> is already defined')
        placeholder = UnresolvedType(ref_id=ref_id, name=None)
        self._nodes[ref_id] = placeholder
        return placeholder

    def fill_placeholder(self, node: TypeNode) -> None:
        """Replace a placeholder by the real node. Allowed exactly once"""
        existing = self._nodes.get(node.ref_id, None)
        if not isinstance(existing, UnresolvedType):
            raise KeyError(f'No placeholder to fill for type <{node.ref_id:x}>')
        self._nodes[node.ref_id] = node

    def discard_placeholder(self, ref_id: int) -> None:
        if isinstance(self._nodes.get(ref_id, None), UnresolvedType):
            del self._nodes[ref_id]

    def add_alias(self, ref_id: int, target_ref: int, typedef_name: Optional[str] = None) -> None:
        if ref_id in self._nodes or ref_id in self._aliases:
            raise KeyError(f'Type <{ref_id:x}> is already defined')
        self._aliases[ref_id] = target_ref
        if typedef_name is not None:
            self._typedef_names[ref_id] = typedef_name

    def add_error(self, error: TypeGraphError) -> None:
        self.errors.append(error)

    def canonical_ref(self, ref_id: int) -> int:
        """Follow the aliases down to the ref-id of a node"""
        visited: Set[int] = set()
        while ref_id in self._aliases:
            if ref_id in visited:
                raise DanglingTypeReference(ref_id)
            visited.add(ref_id)
            ref_id = self._aliases[ref_id]
        return ref_id

    def has(self, ref_id: int) -> bool:
        return ref_id in self._aliases or ref_id in self._nodes

    def is_alias(self, ref_id: int) -> bool:
        return ref_id in self._aliases

    def get(self, ref_id: int) -> TypeNode:
        """Return the node behind a ref-id, placeholders included"""
        canonical = self.canonical_ref(ref_id)
        node = self._nodes.get(canonical, None)
        if node is None:
            raise DanglingTypeReference(canonical, ref_id if canonical != ref_id else None)
        return node

    def resolve(self, ref_id: int) -> TypeNode:
        """Return the node behind a ref-id. A placeholder left unfilled is an error"""
        node = self.get(ref_id)
        if isinstance(node, UnresolvedType):
            raise DanglingTypeReference(node.ref_id)
        return node

    def get_type_name(self, ref_id: int) -> Optional[str]:
        """The name under which a ref-id is known: the first typedef on the alias chain, then the node name"""
        visited: Set[int] = set()
        while ref_id in self._aliases:
            if ref_id in self._typedef_names:
                return self._typedef_names[ref_id]
            if ref_id in visited:
                return None
            visited.add(ref_id)
            ref_id = self._aliases[ref_id]
        node = self._nodes.get(ref_id, None)
        if node is None:
            return None
        return node.name

    def describe(self, ref_id: Optional[int], _depth: int = 0) -> str:
        """A C like spelling of a type, for display and for pointer targets"""
        if ref_id is None:
            return 'void'
        name = self.get_type_name(ref_id)
        if name is not None:
            return name
        if _depth > self.MAX_NAME_DEPTH:
            return '...'
        try:
            node = self.get(ref_id)
        except DanglingTypeReference:
            return '<unresolved>'

        if isinstance(node, PointerType):
            if node.is_function_pointer:
                return self.describe(node.target_ref, _depth + 1)
            return self.describe(node.target_ref, _depth + 1) + '*'
        if isinstance(node, ArrayType):
            return self.describe(node.element_ref, _depth + 1) + ''.join([f'[{d}]' for d in node.dims])
        if isinstance(node, FunctionSignatureType):
            params = ', '.join([self.describe(p, _depth + 1) for p in node.parameter_refs])
            if node.is_variadic:
                params = params + ', ...' if params else '...'
            return f'{self.describe(node.return_ref, _depth + 1)} (*)({params})'
        if isinstance(node, UnionType):
            return 'union <anonymous>'
        if isinstance(node, StructType):
            return 'struct <anonymous>'
        if isinstance(node, EnumType):
            return 'enum <anonymous>'
        if isinstance(node, VoidType):
            return 'void'
        return '<unknown>'

    def get_byte_size(self, ref_id: int) -> Optional[int]:
        node = self.resolve(ref_id)
        if isinstance(node, ArrayType):
            if node.byte_size is not None:
                return node.byte_size
            stride = self.get_array_stride(node)
            if stride is None:
                return None
            count = 1
            for dim in node.dims:
                count *= dim
            return count * stride
        return node.get_byte_size()

    def get_array_stride(self, node: ArrayType) -> Optional[int]:
        if node.stride is not None:
            return node.stride
        return self.get_byte_size(node.element_ref)

    def nodes(self) -> Iterator[TypeNode]:
        return iter(self._nodes.values())

    def aliases(self) -> Iterator[Tuple[int, int]]:
        return iter(self._aliases.items())

    def __contains__(self, ref_id: object) -> bool:
        return isinstance(ref_id, int) and self.has(ref_id)

    def __len__(self) -> int:
        return len(self._nodes)
