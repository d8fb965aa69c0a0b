#    symbol_table.py
#        The ELF side of the inputs: symbol table, addressable regions and raw memory content,
#        with in-memory implementations indexed by address
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = [
    'ElfSymbolTable',
    'MemoryReader',
    'InMemorySymbolTable',
    'InMemoryMemoryReader',
    'AddressRegion',
    'AddressableRegions',
]

from sortedcontainers import SortedDict

from dwarfcal.tools.typing import *


@runtime_checkable
class ElfSymbolTable(Protocol):
    def lookup(self, name: str) -> Optional[Tuple[int, int]]:
        ...

    def lookup_by_address(self, address: int) -> Optional[str]:
        ...


@runtime_checkable
class MemoryReader(Protocol):
    def read(self, address: int, size: int) -> Optional[bytes]:
        ...


class _Symbol(NamedTuple):
    address: int
    size: int
    is_local: bool


class InMemorySymbolTable:
    """
    Symbol name to (address, size). Reverse lookups find the symbol whose storage covers an address.
    Local symbols (static variables) may share a name, a lookup by that name is then ambiguous and gives nothing
    """

    _by_name: Dict[str, List[_Symbol]]
    _by_address: SortedDict  # address -> List[Tuple[name, size]]

    def __init__(self, symbols: Optional[Iterable[Tuple[str, int, int]]] = None) -> None:
        self._by_name = {}
        self._by_address = SortedDict()
        if symbols is not None:
            for name, address, size in symbols:
                self.add(name, address, size)

    def add(self, name: str, address: int, size: int, is_local: bool = False) -> None:
        if address < 0 or size < 0:
            raise ValueError(f'Invalid symbol {name} at {address} with size {size}')
        for symbol in self._by_name.get(name, []):
            if (symbol.address, symbol.size) == (address, size):
                return
            if not symbol.is_local and not is_local:
                raise KeyError(f'Duplicate symbol {name}')
        if name not in self._by_name:
            self._by_name[name] = []
        self._by_name[name].append(_Symbol(address, size, is_local))
        if address not in self._by_address:
            self._by_address[address] = []
        self._by_address[address].append((name, size))

    def lookup(self, name: str) -> Optional[Tuple[int, int]]:
        """The global symbol with that name, or the only local one"""
        symbols = self._by_name.get(name, [])
        global_symbols = [symbol for symbol in symbols if not symbol.is_local]
        if len(global_symbols) == 1:
            return (global_symbols[0].address, global_symbols[0].size)
        if len(symbols) == 1:
            return (symbols[0].address, symbols[0].size)
        return None

    def lookup_all(self, name: str) -> List[Tuple[int, int]]:
        return [(symbol.address, symbol.size) for symbol in self._by_name.get(name, [])]

    def lookup_by_address(self, address: int) -> Optional[str]:
        index = self._by_address.bisect_right(address) - 1
        # Zero sized symbols share addresses with their neighbors. Walk back until one covers the address
        while index >= 0:
            start = self._by_address.keys()[index]
            for name, size in self._by_address[start]:
                if start <= address < start + max(size, 1):
                    return name
            if start < address:
                break
            index -= 1
        return None

    def names(self) -> Iterable[str]:
        return self._by_name.keys()

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return sum([len(symbols) for symbols in self._by_name.values()])


class InMemoryMemoryReader:
    """Raw content of the target memory, made of non overlapping segments"""

    _segments: SortedDict  # start address -> bytes

    def __init__(self) -> None:
        self._segments = SortedDict()

    def add_segment(self, address: int, data: bytes) -> None:
        if len(data) == 0:
            return
        end = address + len(data)
        index = self._segments.bisect_left(end)
        if index > 0:
            prev_start = self._segments.keys()[index - 1]
            if prev_start + len(self._segments[prev_start]) > address:
                raise ValueError(f'Segment at 0x{address:08X} overlaps segment at 0x{prev_start:08X}')
        self._segments[address] = bytes(data)

    def read(self, address: int, size: int) -> Optional[bytes]:
        index = self._segments.bisect_right(address) - 1
        if index < 0:
            return None
        start = self._segments.keys()[index]
        data = self._segments[start]
        offset = address - start
        if offset + size > len(data):
            return None
        return cast(bytes, data[offset:offset + size])


class AddressRegion(NamedTuple):
    start: int
    end: int    # Exclusive


class AddressableRegions:
    """A set of memory ranges where a symbol may legitimately live"""

    _regions: SortedDict  # start -> end

    def __init__(self, regions: Iterable[Union[AddressRegion, Tuple[int, int]]] = ()) -> None:
        self._regions = SortedDict()
        for start, end in regions:
            self.add(start, end)

    def add(self, start: int, end: int) -> None:
        if end <= start:
            raise ValueError(f'Empty region 0x{start:08X}-0x{end:08X}')
        if start in self._regions:
            end = max(end, self._regions[start])
        self._regions[start] = end

    def contains(self, address: int, size: int = 0) -> bool:
        index = self._regions.bisect_right(address) - 1
        while index >= 0:
            start = self._regions.keys()[index]
            end = self._regions[start]
            if start <= address and address + max(size, 1) <= end:
                return True
            index -= 1
        return False

    def __iter__(self) -> Iterator[AddressRegion]:
        for start, end in self._regions.items():
            yield AddressRegion(start, end)

    def __len__(self) -> int:
        return len(self._regions)
