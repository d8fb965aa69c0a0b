#    exceptions.py
#        Exceptions raised by the type graph builder, the layout resolver and the facade
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = [
    'DwarfcalError',
    'TypeGraphError',
    'DanglingTypeReference',
    'MalformedType',
    'ResolutionError',
    'UnmappedSymbol',
    'UnknownSymbol',
    'RecursionLimitExceeded',
    'TypeResolutionError',
    'ElfParsingError',
]

from dwarfcal.tools.typing import *


class DwarfcalError(Exception):
    pass


class TypeGraphError(DwarfcalError):
    """Base class of the errors collected while building the type graph. ref_id is the faulty type"""
    ref_id: int


class DanglingTypeReference(TypeGraphError):
    """A debug entry refers to a ref-id that does not exist in the store"""
    referenced_by: Optional[int]

    def __init__(self, ref_id: int, referenced_by: Optional[int] = None) -> None:
        self.ref_id = ref_id
        self.referenced_by = referenced_by
        if referenced_by is None:
            msg = f'Unresolved type reference <{ref_id:x}>'
        else:
            msg = f'Unresolved type reference <{ref_id:x}> used by entry <{referenced_by:x}>'
        super().__init__(msg)


class MalformedType(TypeGraphError):
    """A type entry exists but cannot be turned into a type node. Ex: a bitfield outside of its storage unit"""
    reason: str

    def __init__(self, ref_id: int, reason: str) -> None:
        self.ref_id = ref_id
        self.reason = reason
        super().__init__(f'Malformed type <{ref_id:x}>. {reason}')


class ResolutionError(DwarfcalError):
    """Base class of the errors affecting a single symbol"""
    pass


class UnmappedSymbol(ResolutionError):
    symbol: Union[str, int]

    def __init__(self, symbol: Union[str, int], msg: Optional[str] = None) -> None:
        self.symbol = symbol
        if msg is None:
            if isinstance(symbol, int):
                msg = f'No symbol backs address 0x{symbol:08X}'
            else:
                msg = f'Symbol "{symbol}" has no backing storage'
        super().__init__(msg)


class UnknownSymbol(UnmappedSymbol):
    def __init__(self, symbol: Union[str, int]) -> None:
        super().__init__(symbol, f'No debug information for symbol "{symbol}"')


class RecursionLimitExceeded(ResolutionError):
    name: str
    depth: int

    def __init__(self, name: str, depth: int) -> None:
        self.name = name
        self.depth = depth
        super().__init__(f'Layout of "{name}" is nested deeper than {depth} levels. Malformed type graph?')


class TypeResolutionError(ResolutionError):
    """The type of a symbol, or one of the types it is made of, is missing from the type graph"""
    name: str
    ref_id: int

    def __init__(self, name: str, ref_id: int) -> None:
        self.name = name
        self.ref_id = ref_id
        super().__init__(f'Layout of "{name}" cannot be resolved. Type <{ref_id:x}> is not in the type graph')


class ElfParsingError(DwarfcalError):
    pass
