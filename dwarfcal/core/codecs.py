#    codecs.py
#        Decode raw memory content into python values for scalar layout leaves.
#        Used to read the initial content of axes from the binary
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['Decodable', 'decode_scalar', 'can_decode']

import struct

from dwarfcal.core.basic_types import Endianness, EmbeddedDataType
from dwarfcal.tools.typing import *

Decodable: TypeAlias = Union[int, float, bool]

MASK_MAP: Dict[int, int] = {}
for i in range(1, 65):
    MASK_MAP[i] = (1 << i) - 1

_STRUCT_FORMATS: Dict[EmbeddedDataType, str] = {
    EmbeddedDataType.sint8: 'b',
    EmbeddedDataType.sint16: 'h',
    EmbeddedDataType.sint32: 'l',
    EmbeddedDataType.sint64: 'q',
    EmbeddedDataType.uint8: 'B',
    EmbeddedDataType.uint16: 'H',
    EmbeddedDataType.uint32: 'L',
    EmbeddedDataType.uint64: 'Q',
    EmbeddedDataType.float16: 'e',
    EmbeddedDataType.float32: 'f',
    EmbeddedDataType.float64: 'd',
    EmbeddedDataType.boolean: '?',
}


def can_decode(datatype: EmbeddedDataType) -> bool:
    return datatype in _STRUCT_FORMATS


def decode_scalar(data: bytes,
                  datatype: EmbeddedDataType,
                  endianness: Endianness,
                  bitoffset: Optional[int] = None,
                  bitsize: Optional[int] = None) -> Decodable:
    """Decode the binary content in memory to a python value. Bitfields are extracted from their storage unit first"""
    if datatype not in _STRUCT_FORMATS:
        raise NotImplementedError(f'Cannot decode data of type {datatype.name}')

    size = datatype.get_size_byte()
    if len(data) != size:
        raise ValueError(f'Expected {size} bytes to decode a {datatype.name}. Got {len(data)}')

    byteorder: Literal['little', 'big'] = 'little' if endianness == Endianness.Little else 'big'

    if bitoffset is not None and bitsize is not None and bitsize < size * 8:
        if datatype.is_float():
            raise ValueError('Bitfield on float value is not possible')
        uint_data = int.from_bytes(data, byteorder=byteorder, signed=False)
        uint_data >>= bitoffset
        uint_data &= MASK_MAP[bitsize]
        if datatype.is_signed() and (uint_data >> (bitsize - 1)) & 1:
            uint_data -= (1 << bitsize)
        if datatype == EmbeddedDataType.boolean:
            return bool(uint_data)
        return uint_data

    prefix = '<' if endianness == Endianness.Little else '>'
    return cast(Decodable, struct.unpack(prefix + _STRUCT_FORMATS[datatype], data)[0])
