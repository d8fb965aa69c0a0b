#    basic_types.py
#        Some global basic types used everywhere: endianness and the scalar data types
#        a layout leaf can hold
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = [
    'Endianness',
    'DataTypeType',
    'DataTypeSize',
    'EmbeddedDataType',
]

from enum import Enum
from dwarfcal.tools.typing import *


class Endianness(Enum):
    Little = 0
    Big = 1

    def to_str(self) -> str:
        return 'little' if self == Endianness.Little else 'big'

    @classmethod
    def from_str(cls, s: str) -> "Endianness":
        s = s.strip().lower()
        if s == 'little':
            return cls.Little
        if s == 'big':
            return cls.Big
        raise ValueError(f'Unknown endianness "{s}"')


class DataTypeType(Enum):
    _sint = (0 << 4)
    _uint = (1 << 4)
    _float = (2 << 4)
    _boolean = (3 << 4)
    _cfloat = (4 << 4)
    _NA = (0xF << 4)


class DataTypeSize(Enum):
    _8 = 0
    _16 = 1
    _32 = 2
    _64 = 3
    _128 = 4
    _256 = 5
    _NA = 0xF


class EmbeddedDataType(Enum):
    """
    Represent a datatype that can be read from the target memory.
    The value encodes the family on the high nibble and the size on the low nibble.
    """
    sint8 = DataTypeType._sint.value | DataTypeSize._8.value
    sint16 = DataTypeType._sint.value | DataTypeSize._16.value
    sint32 = DataTypeType._sint.value | DataTypeSize._32.value
    sint64 = DataTypeType._sint.value | DataTypeSize._64.value
    sint128 = DataTypeType._sint.value | DataTypeSize._128.value
    sint256 = DataTypeType._sint.value | DataTypeSize._256.value

    uint8 = DataTypeType._uint.value | DataTypeSize._8.value
    uint16 = DataTypeType._uint.value | DataTypeSize._16.value
    uint32 = DataTypeType._uint.value | DataTypeSize._32.value
    uint64 = DataTypeType._uint.value | DataTypeSize._64.value
    uint128 = DataTypeType._uint.value | DataTypeSize._128.value
    uint256 = DataTypeType._uint.value | DataTypeSize._256.value

    float8 = DataTypeType._float.value | DataTypeSize._8.value
    float16 = DataTypeType._float.value | DataTypeSize._16.value
    float32 = DataTypeType._float.value | DataTypeSize._32.value
    float64 = DataTypeType._float.value | DataTypeSize._64.value
    float128 = DataTypeType._float.value | DataTypeSize._128.value
    float256 = DataTypeType._float.value | DataTypeSize._256.value

    cfloat8 = DataTypeType._cfloat.value | DataTypeSize._8.value
    cfloat16 = DataTypeType._cfloat.value | DataTypeSize._16.value
    cfloat32 = DataTypeType._cfloat.value | DataTypeSize._32.value
    cfloat64 = DataTypeType._cfloat.value | DataTypeSize._64.value
    cfloat128 = DataTypeType._cfloat.value | DataTypeSize._128.value
    cfloat256 = DataTypeType._cfloat.value | DataTypeSize._256.value

    boolean = DataTypeType._boolean.value | DataTypeSize._8.value

    NA = DataTypeType._NA.value | DataTypeSize._NA.value

    def get_size_byte(self) -> int:
        """Return the size of the type in bytes"""
        size_nibble = self.value & 0xF
        if size_nibble == DataTypeSize._NA.value:
            return 0
        return 1 << size_nibble

    def get_size_bit(self) -> int:
        """Return the size of the type in bits"""
        return self.get_size_byte() * 8

    def _type_nibble(self) -> int:
        return self.value & 0xF0

    def is_signed(self) -> bool:
        return self._type_nibble() in (DataTypeType._sint.value, DataTypeType._float.value, DataTypeType._cfloat.value)

    def is_integer(self) -> bool:
        return self._type_nibble() in (DataTypeType._sint.value, DataTypeType._uint.value)

    def is_float(self) -> bool:
        return self._type_nibble() == DataTypeType._float.value

    def is_complex(self) -> bool:
        return self._type_nibble() == DataTypeType._cfloat.value

    def is_numeric(self) -> bool:
        """True for the types that can hold a calibration value or an axis breakpoint"""
        return self.is_integer() or self.is_float() or self == EmbeddedDataType.boolean
