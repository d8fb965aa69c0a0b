#    target.py
#        Fixed facts about the compiled target: pointer width, endianness and default alignment
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['TargetDescriptor', 'TargetDescriptorDict']

from dataclasses import dataclass

from dwarfcal.core.basic_types import Endianness
from dwarfcal.tools import validation
from dwarfcal.tools.typing import *


class TargetDescriptorDict(TypedDict):
    pointer_width_bytes: int
    endianness: str
    default_alignment_bytes: int


@dataclass(frozen=True)
class TargetDescriptor:
    pointer_width_bytes: int
    endianness: Endianness
    default_alignment_bytes: int

    def __post_init__(self) -> None:
        validation.assert_int_range(self.pointer_width_bytes, 'pointer_width_bytes', minval=1, maxval=16)
        validation.assert_type(self.endianness, 'endianness', Endianness)
        validation.assert_int_range(self.default_alignment_bytes, 'default_alignment_bytes', minval=1, maxval=64)

    @classmethod
    def from_dict(cls, d: TargetDescriptorDict) -> Self:
        validation.assert_dict_key(d, 'pointer_width_bytes', int)
        validation.assert_dict_key(d, 'endianness', str)
        validation.assert_dict_key(d, 'default_alignment_bytes', int)

        return cls(
            pointer_width_bytes=d['pointer_width_bytes'],
            endianness=Endianness.from_str(d['endianness']),
            default_alignment_bytes=d['default_alignment_bytes']
        )

    def to_dict(self) -> TargetDescriptorDict:
        return {
            'pointer_width_bytes': self.pointer_width_bytes,
            'endianness': self.endianness.to_str(),
            'default_alignment_bytes': self.default_alignment_bytes
        }

    def align(self, size: int) -> int:
        """Round a size up to the default alignment"""
        align = self.default_alignment_bytes
        return ((size + align - 1) // align) * align
