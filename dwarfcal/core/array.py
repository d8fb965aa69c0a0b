#    array.py
#        Shape of a N dimensions array: dimensions, stride and the row-major index math
#        shared by the type graph and the layout tree
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['ArrayShape']

import math
import itertools

from dwarfcal.tools.typing import *


class ArrayShape:
    """
    Dimensions of a N dimensions array and the distance between two consecutive elements.
    A dimension of 0 is legal and denotes an array of unknown bound (flexible array member)
    """
    __slots__ = ('dims', 'stride', '_multipliers')

    dims: Tuple[int, ...]
    stride: int
    _multipliers: Tuple[int, ...]

    def __init__(self, dims: Tuple[int, ...], stride: int) -> None:
        if len(dims) == 0:
            raise ValueError("No dimensions set")
        for dim in dims:
            if not isinstance(dim, int) or dim < 0:
                raise ValueError(f"Invalid dimension {dim}")
        if not isinstance(stride, int) or stride < 0:
            raise ValueError(f"Invalid stride {stride}")

        self.dims = tuple(dims)
        self.stride = stride
        self._multipliers = tuple([math.prod(dims[i + 1:]) for i in range(len(dims))])    # prod([]) = 1

    def get_element_count(self) -> int:
        """Returns the total number of element in the array"""
        return math.prod(self.dims)

    def get_total_byte_size(self) -> int:
        return self.get_element_count() * self.stride

    def is_empty(self) -> bool:
        return self.get_element_count() == 0

    def position_of(self, pos: Tuple[int, ...]) -> int:
        """Return the linear index of an element based on a N-dimension position"""
        if len(pos) != len(self.dims):
            raise ValueError("Shape mismatch")

        index = 0
        for i in range(len(pos)):
            if pos[i] >= self.dims[i] or pos[i] < 0:
                raise ValueError("Index out of bound")
            index += pos[i] * self._multipliers[i]

        return index

    def byte_position_of(self, pos: Tuple[int, ...]) -> int:
        """Return the byte offset of an element relative to the start of the array"""
        return self.position_of(pos) * self.stride

    def iter_positions(self) -> Iterator[Tuple[int, ...]]:
        """All the positions, last index varying fastest"""
        return itertools.product(*[range(dim) for dim in self.dims])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArrayShape):
            return False
        return self.dims == other.dims and self.stride == other.stride

    def __hash__(self) -> int:
        return hash((self.dims, self.stride))

    def __repr__(self) -> str:
        dims_str = ''.join([f'[{d}]' for d in self.dims])
        return f'<{self.__class__.__name__} {dims_str} stride={self.stride}>'
