#    facade.py
#        Entry point of the library. Builds the type graph once, then resolves and classifies
#        the global symbols on demand, by name or by address
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['SymbolResolutionFacade', 'ResolutionResult']

import logging
from dataclasses import dataclass

from sortedcontainers import SortedDict

from dwarfcal.core.calibration import CalibrationClassifier, CalibrationObject
from dwarfcal.core.classifier_config import ClassifierConfig
from dwarfcal.core.debug_entry import Attrs, Tags, DebugEntry, DebugEntryStore
from dwarfcal.core.layout import LayoutNode
from dwarfcal.core.layout_resolver import LayoutResolver
from dwarfcal.core.symbol_table import ElfSymbolTable, MemoryReader, AddressableRegions
from dwarfcal.core.target import TargetDescriptor
from dwarfcal.core.type_graph import TypeGraph
from dwarfcal.core.type_graph_builder import TypeGraphBuilder
from dwarfcal.exceptions import *
from dwarfcal import tools
from dwarfcal.tools.typing import *


@dataclass
class ResolutionResult:
    name: str
    layout: Optional[LayoutNode] = None
    calibration: Optional[CalibrationObject] = None
    error: Optional[DwarfcalError] = None

    def is_ok(self) -> bool:
        return self.error is None


@dataclass
class _Variable:
    """A variable entry and the scope it is declared in"""
    name: str                       # Source name, with the namespaces and classes around it. Ex: "ns::counter"
    entry: DebugEntry
    function: Optional[str] = None  # Set for the static variables of a function
    unit: Optional[str] = None      # Simple compile unit name. Ex: "motor_c"
    link_name: Optional[str] = None     # Name in the ELF symbol table, when known
    qualified: bool = False

    def get_location(self) -> Optional[int]:
        location = self.entry.get_attr(Attrs.DW_AT_location)
        return location if isinstance(location, int) else None

    def get_qualified_name(self) -> str:
        name = self.name
        if self.function is not None:
            name += f'{{Function:{self.function}}}'
        if self.unit is not None:
            name += f'{{CompileUnit:{self.unit}}}'
        return name


class _SiblingLayouts(Mapping[str, LayoutNode]):
    """The other symbols of the binary, resolved only when looked up. Symbols that fail to resolve are absent"""

    _facade: "SymbolResolutionFacade"
    _exclude: str
    _cache: Dict[str, Optional[LayoutNode]]

    def __init__(self, facade: "SymbolResolutionFacade", exclude: str) -> None:
        self._facade = facade
        self._exclude = exclude
        self._cache = {}

    def __getitem__(self, name: str) -> LayoutNode:
        if name == self._exclude:
            raise KeyError(name)
        if name not in self._cache:
            try:
                self._cache[name] = self._facade.resolve_layout(name)
            except DwarfcalError as e:
                self._facade.logger.debug(f"Sibling {name} cannot be resolved. {e}")
                self._cache[name] = None
        layout = self._cache[name]
        if layout is None:
            raise KeyError(name)
        return layout

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str) or name == self._exclude:
            return False
        return self._facade.has_symbol(name)

    def __iter__(self) -> Iterator[str]:
        for name in self._facade.all_symbols():
            if name != self._exclude:
                yield name

    def __len__(self) -> int:
        return len(self._facade.all_symbols()) - (1 if self._facade.has_symbol(self._exclude) else 0)


class SymbolResolutionFacade:
    """
    Resolve the layout of the global symbols of a binary and classify them as calibration data.

    The type graph is built once, in the constructor. Everything else is computed on demand:
    each call returns fresh layout trees and calibration objects.
    """

    FUNCTION_SCOPE_TAGS = (Tags.DW_TAG_subprogram, Tags.DW_TAG_lexical_block)
    NAMED_SCOPE_TAGS = (Tags.DW_TAG_namespace, Tags.DW_TAG_structure_type, Tags.DW_TAG_class_type, Tags.DW_TAG_union_type)
    UNIT_TAGS = (Tags.DW_TAG_compile_unit, Tags.DW_TAG_partial_unit)

    logger: logging.Logger
    graph: TypeGraph
    symbols: ElfSymbolTable
    regions: Optional[AddressableRegions]
    resolver: LayoutResolver
    classifier: CalibrationClassifier
    _store: DebugEntryStore
    _variables: Dict[str, _Variable]
    _names: Tuple[str, ...]
    _by_link_name: Dict[str, str]
    _by_location: SortedDict  # address -> symbol name

    def __init__(self,
                 store: DebugEntryStore,
                 symbols: ElfSymbolTable,
                 target: TargetDescriptor,
                 regions: Optional[AddressableRegions] = None,
                 memory_reader: Optional[MemoryReader] = None,
                 classifier_config: Optional[ClassifierConfig] = None,
                 max_depth: int = LayoutResolver.DEFAULT_MAX_DEPTH
                 ) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self._store = store
        self.symbols = symbols
        self.regions = regions
        self.graph = TypeGraphBuilder(target).build(store)
        self.resolver = LayoutResolver(self.graph, max_depth=max_depth)
        self.classifier = CalibrationClassifier(classifier_config, memory_reader=memory_reader, endianness=target.endianness)
        self._variables = self._index_variables(store)
        self._names = tuple(self._variables.keys())
        self._by_link_name = {}
        self._by_location = SortedDict()
        self._index_addresses()

    @property
    def errors(self) -> List[TypeGraphError]:
        """Errors found while building the type graph"""
        return self.graph.errors

    def _get_origin(self, entry: DebugEntry) -> Optional[DebugEntry]:
        """The entry that declares this one: DW_AT_specification for definitions, DW_AT_abstract_origin for concrete instances"""
        for attr in (Attrs.DW_AT_specification, Attrs.DW_AT_abstract_origin):
            ref = entry.get_attr(attr)
            if ref is not None:
                return self._store.resolve_ref(ref)
        return None

    def _get_entry_name(self, entry: DebugEntry) -> Optional[str]:
        name = entry.get_name()
        if name is None:
            origin = self._get_origin(entry)
            if origin is not None:
                name = origin.get_name()
        return name

    def _get_linkage_name(self, entry: DebugEntry) -> Optional[str]:
        origin = self._get_origin(entry)
        for candidate in (entry, origin):
            if candidate is None:
                continue
            for attr in (Attrs.DW_AT_linkage_name, Attrs.DW_AT_MIPS_linkage_name):
                name = candidate.get_attr(attr)
                if isinstance(name, str):
                    return name
        return None

    def _make_simple_unit_name(self, entry: DebugEntry) -> Optional[str]:
        root = entry
        while root.parent is not None:
            root = root.parent
        if root.tag not in self.UNIT_TAGS:
            return None
        full_name = root.get_name()
        if full_name is None:
            return None
        return full_name.replace('\\', '/').rsplit('/', 1)[-1].replace('.', '_')

    def _make_variable(self, entry: DebugEntry) -> Optional[_Variable]:
        name = self._get_entry_name(entry)
        if name is None:
            return None

        function: Optional[str] = None
        in_function = False
        parent = entry.parent
        while parent is not None:
            if parent.tag in self.FUNCTION_SCOPE_TAGS:
                in_function = True
                if function is None and parent.tag == Tags.DW_TAG_subprogram:
                    function = self._get_entry_name(parent)
            parent = parent.parent

        if in_function:
            # Only static variables have a storage that outlives the function
            if entry.is_declaration() or not isinstance(entry.get_attr(Attrs.DW_AT_location), int):
                return None
            if function is None:
                function = '<anonymous>'

        # A definition is scoped where its declaration is (C++ static members and namespace variables)
        declaration = self._get_origin(entry)
        scope_entry = declaration if declaration is not None else entry
        scopes: List[str] = []
        parent = scope_entry.parent
        while parent is not None:
            if parent.tag in self.NAMED_SCOPE_TAGS:
                scope_name = parent.get_name()
                scopes.insert(0, scope_name if scope_name is not None else '(anonymous)')
            parent = parent.parent
        full_name = '::'.join(scopes + [name])

        link_name = self._get_linkage_name(entry)
        if link_name is None and not in_function and len(scopes) == 0:
            link_name = name

        return _Variable(
            name=full_name,
            entry=entry,
            function=function,
            unit=self._make_simple_unit_name(entry),
            link_name=link_name
        )

    def _unique_definitions(self, group: List[_Variable]) -> List[_Variable]:
        """
        The distinct definitions of a name. Definitions at the same address are one variable (common symbols).
        A definition without location is dropped when another one has a location
        """
        definitions: List[_Variable] = []
        without_location: List[_Variable] = []
        for variable in group:
            if variable.entry.is_declaration():
                continue
            location = variable.get_location()
            if location is None:
                without_location.append(variable)
            elif location in [other.get_location() for other in definitions]:
                self.logger.debug(f"Symbol {variable.name} is defined more than once at 0x{location:08X}. Keeping the first definition")
            else:
                definitions.append(variable)

        if len(definitions) == 0 and len(without_location) > 0:
            if len(without_location) > 1:
                self.logger.debug(f"Symbol {without_location[0].name} is defined more than once. Keeping <{without_location[0].entry.ref_id:x}>")
            definitions.append(without_location[0])
        return definitions

    def _index_variables(self, store: DebugEntryStore) -> Dict[str, _Variable]:
        """
        Map each symbol name to its variable. Definitions win over declarations.
        Static variables of a function, and file scope variables that share their name with other file scope variables
        (static variables of different files), are known under a qualified name: name{Function:func}{CompileUnit:file_c}
        """
        groups: Dict[str, List[_Variable]] = {}
        for entry in store.entries():
            if entry.tag != Tags.DW_TAG_variable:
                continue
            variable = self._make_variable(entry)
            if variable is None:
                continue
            if variable.name not in groups:
                groups[variable.name] = []
            groups[variable.name].append(variable)

        variables: Dict[str, _Variable] = {}
        for name, group in groups.items():
            file_scope_group = [variable for variable in group if variable.function is None]
            file_scope = self._unique_definitions(file_scope_group)
            statics = self._unique_definitions([variable for variable in group if variable.function is not None])
            if len(file_scope) == 0 and len(file_scope_group) > 0:
                file_scope = [file_scope_group[0]]     # Declarations only. No storage
            if len(file_scope) == 1:
                variables[name] = file_scope[0]
                file_scope = []
            for variable in file_scope + statics:
                variable.qualified = True
                key = variable.get_qualified_name()
                if key in variables:
                    self.logger.debug(f"Symbol {key} is defined more than once. Keeping <{variables[key].entry.ref_id:x}>")
                    continue
                variables[key] = variable
        return variables

    def _index_addresses(self) -> None:
        for key, variable in self._variables.items():
            if variable.link_name is not None and not variable.qualified:
                self._by_link_name.setdefault(variable.link_name, key)
            location = variable.get_location()
            if location is not None and location not in self._by_location:
                self._by_location[location] = key

    def _get_variable_type_ref(self, entry: DebugEntry) -> Optional[int]:
        type_ref = entry.get_type_ref()
        if type_ref is None:
            origin = self._get_origin(entry)
            if origin is not None:
                type_ref = origin.get_type_ref()
        return type_ref

    def has_symbol(self, name: str) -> bool:
        return name in self._variables

    def all_symbols(self) -> Sequence[str]:
        """Names of every symbol with debug information. Can be iterated any number of times"""
        return self._names

    def _locate(self, variable: _Variable) -> Tuple[Optional[int], int]:
        """Address and size of a variable. The symbol table wins, except for names it cannot tell apart"""
        if not variable.qualified and variable.link_name is not None:
            symbol = self.symbols.lookup(variable.link_name)
            if symbol is not None:
                return symbol
        return (variable.get_location(), 0)

    def get_address(self, name: str) -> int:
        """Address of a symbol. Raise UnmappedSymbol when it has no storage in the addressable memory"""
        variable = self._variables.get(name, None)
        if variable is None:
            raise UnknownSymbol(name)

        address, size = self._locate(variable)
        if address is None or address == 0:
            raise UnmappedSymbol(name)

        if self.regions is not None and not self.regions.contains(address, size):
            raise UnmappedSymbol(name, f'Symbol "{name}" at 0x{address:08X} is outside the addressable memory')

        return address

    def resolve_layout(self, name: str) -> LayoutNode:
        """Layout tree of a symbol, without classification"""
        variable = self._variables.get(name, None)
        if variable is None:
            raise UnknownSymbol(name)
        type_ref = self._get_variable_type_ref(variable.entry)
        if type_ref is None:
            raise UnknownSymbol(name)
        address = self.get_address(name)
        return self.resolver.resolve(type_ref, address, name)

    def resolve(self, name: str) -> Tuple[LayoutNode, Optional[CalibrationObject]]:
        """Layout tree and calibration object of a symbol. The calibration object is None for non calibration data"""
        layout = self.resolve_layout(name)
        calibration = self.classifier.classify(name, layout, _SiblingLayouts(self, exclude=name))
        return (layout, calibration)

    def try_resolve(self, name: str) -> Optional[Tuple[LayoutNode, Optional[CalibrationObject]]]:
        """Same as resolve(), but a symbol without storage gives None instead of an exception"""
        try:
            return self.resolve(name)
        except UnmappedSymbol as e:
            self.logger.debug(str(e))
            return None

    def _find_by_location(self, address: int) -> Optional[str]:
        """The variable whose debug location covers an address. For the variables the symbol table does not name"""
        index = self._by_location.bisect_right(address) - 1
        if index < 0:
            return None
        location = self._by_location.keys()[index]
        key = cast(str, self._by_location[location])
        if address == location:
            return key
        type_ref = self._get_variable_type_ref(self._variables[key].entry)
        if type_ref is None:
            return None
        try:
            size = self.graph.get_byte_size(type_ref)
        except DwarfcalError:
            return None
        if size is None or address >= location + size:
            return None
        return key

    def resolve_address(self, address: int) -> Tuple[str, LayoutNode, Optional[CalibrationObject]]:
        """Find the symbol that covers an address and resolve it"""
        name: Optional[str] = None
        symbol_name = self.symbols.lookup_by_address(address)
        if symbol_name is not None:
            name = self._by_link_name.get(symbol_name, None)
        if name is None:
            name = self._find_by_location(address)
        if name is None:
            raise UnmappedSymbol(address)
        layout, calibration = self.resolve(name)
        return (name, layout, calibration)

    def resolve_all(self) -> Iterator[ResolutionResult]:
        """Resolve every symbol. A failing symbol is reported in its result and does not stop the others"""
        for name in self.all_symbols():
            try:
                layout, calibration = self.resolve(name)
                yield ResolutionResult(name=name, layout=layout, calibration=calibration)
            except DwarfcalError as e:
                level = logging.DEBUG if isinstance(e, UnmappedSymbol) else logging.WARNING
                tools.log_exception(self.logger, e, f"Cannot resolve {name}.", str_level=level)
                yield ResolutionResult(name=name, error=e)
