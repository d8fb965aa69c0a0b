#    layout_resolver.py
#        Expands the type of a symbol into a layout tree with absolute addresses
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['LayoutResolver']

import logging
import math

from dwarfcal.core.array import ArrayShape
from dwarfcal.core.basic_types import EmbeddedDataType
from dwarfcal.core.layout import *
from dwarfcal.core.type_graph import *
from dwarfcal.exceptions import DanglingTypeReference, RecursionLimitExceeded, TypeResolutionError
from dwarfcal.tools.typing import *


class LayoutResolver:
    """
    Builds the layout tree of a type instantiated at a given address. Pointers are never followed,
    arrays are fully expanded. Each call produces a new tree, the type graph is only read.
    """

    DEFAULT_MAX_DEPTH = 64

    logger: logging.Logger
    graph: TypeGraph
    max_depth: int

    def __init__(self, graph: TypeGraph, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        if not isinstance(max_depth, int) or max_depth < 1:
            raise ValueError("max_depth must be a positive integer")
        self.logger = logging.getLogger(self.__class__.__name__)
        self.graph = graph
        self.max_depth = max_depth

    def resolve(self, root_ref: int, base_address: int, name: str) -> LayoutNode:
        """
        Layout of the type ``root_ref`` placed at ``base_address``, for a symbol called ``name``.
        Raise TypeResolutionError when a type on the way was left out of the type graph
        """
        try:
            return self._resolve(root_ref, base_address, name, name, 0, name)
        except DanglingTypeReference as e:
            raise TypeResolutionError(name, e.ref_id) from e

    def _resolve(self, ref_id: int, address: int, name: str, path: str, depth: int, symbol: str) -> LayoutNode:
        if depth > self.max_depth:
            raise RecursionLimitExceeded(symbol, self.max_depth)

        node = self.graph.resolve(ref_id)
        type_name = self.graph.get_type_name(ref_id)

        if isinstance(node, (ScalarType, EnumType)):
            return ScalarLeaf(
                name=name,
                path=path,
                address=address,
                byte_size=node.byte_size,
                type_name=type_name,
                datatype=node.datatype,
                enum=node if isinstance(node, EnumType) else None
            )

        if isinstance(node, PointerType):
            return self._make_pointer_leaf(node, address, name, path, type_name)

        if isinstance(node, ArrayType):
            return self._make_array_node(ref_id, node, address, name, path, depth, symbol)

        if isinstance(node, CompositeType):
            return self._make_composite_node(node, address, name, path, depth, symbol, type_name)

        # void, opaque, function
        size = node.get_byte_size()
        return ScalarLeaf(
            name=name,
            path=path,
            address=address,
            byte_size=size if size is not None else 0,
            type_name=type_name if type_name is not None else self.graph.describe(ref_id),
            datatype=EmbeddedDataType.NA
        )

    def _make_pointer_leaf(self, node: PointerType, address: int, name: str, path: str, type_name: Optional[str]) -> PointerLeaf:
        signature: Optional[FunctionSignatureType] = None
        if node.is_function_pointer and node.target_ref is not None:
            target = self.graph.get(node.target_ref)
            if isinstance(target, FunctionSignatureType):
                signature = target

        return PointerLeaf(
            name=name,
            path=path,
            address=address,
            byte_size=node.byte_size,
            type_name=type_name if type_name is not None else self.graph.describe(node.ref_id),
            target_type_name=self.graph.describe(node.target_ref),
            is_function_pointer=node.is_function_pointer,
            signature=signature
        )

    def _fold_nested_arrays(self, node: ArrayType) -> Tuple[Tuple[int, ...], int, Optional[int]]:
        """
        An array of arrays, usually built through a typedef (typedef float row_t[4]; row_t v[3];) is a
        multi dimensional array. Return (dims, element ref, element stride) with the nested dimensions appended,
        as long as the inner arrays are contiguous in the outer one.
        """
        dims = node.dims
        element_ref = node.element_ref
        stride = self.graph.get_array_stride(node)
        while True:
            inner = self.graph.resolve(element_ref)
            if not isinstance(inner, ArrayType) or 0 in inner.dims:
                break
            inner_stride = self.graph.get_array_stride(inner)
            if inner_stride is None or stride != inner_stride * math.prod(inner.dims):
                break
            dims = dims + inner.dims
            element_ref = inner.element_ref
            stride = inner_stride
        return (dims, element_ref, stride)

    def _make_array_node(self, ref_id: int, node: ArrayType, address: int, name: str, path: str, depth: int, symbol: str) -> ArrayNode:
        dims, element_ref, stride = self._fold_nested_arrays(node)
        shape = ArrayShape(dims, stride if stride is not None else 0)
        byte_size = self.graph.get_byte_size(ref_id)

        elements: List[LayoutNode] = []
        for pos in shape.iter_positions():
            element_name = ''.join([f'[{i}]' for i in pos])
            elements.append(self._resolve(
                element_ref,
                address + shape.byte_position_of(pos),
                element_name,
                path + element_name,
                depth + 1,
                symbol
            ))

        return ArrayNode(
            name=name,
            path=path,
            address=address,
            byte_size=byte_size if byte_size is not None else shape.get_total_byte_size(),
            type_name=self.graph.get_type_name(ref_id),
            array_shape=shape,
            element_type_name=self.graph.describe(element_ref),
            elements=elements
        )

    def _make_composite_node(self, node: CompositeType, address: int, name: str, path: str, depth: int, symbol: str, type_name: Optional[str]) -> CompositeNode:
        is_union = isinstance(node, UnionType)
        children: List[LayoutNode] = []
        for member in node.members:
            member_address = address if is_union else address + member.byte_offset

            if member.name is None:
                # Anonymous struct/union or base class. Its members are declared at our level
                sub = self._resolve(member.type_ref, member_address, '', path, depth + 1, symbol)
                if isinstance(sub, CompositeNode):
                    for subchild in sub.children:
                        self._add_child(children, subchild, path)
                continue

            child = self._resolve(member.type_ref, member_address, member.name, f'{path}.{member.name}', depth + 1, symbol)
            if member.is_bitfield() and isinstance(child, ScalarLeaf):
                child.bit_offset = member.bit_offset if member.bit_offset is not None else 0
                child.bit_size = member.bit_size
            self._add_child(children, child, path)

        return CompositeNode(
            name=name,
            path=path,
            address=address,
            byte_size=node.byte_size if node.byte_size is not None else 0,
            type_name=type_name if type_name is not None else self.graph.describe(node.ref_id),
            children=children,
            is_union=is_union,
            alternative_count=len(node.members) if is_union else 0
        )

    def _add_child(self, children: List[LayoutNode], child: LayoutNode, path: str) -> None:
        for existing in children:
            if existing.name == child.name:
                self.logger.warning(f"Duplicate member {child.name} in {path}")
                break
        children.append(child)
