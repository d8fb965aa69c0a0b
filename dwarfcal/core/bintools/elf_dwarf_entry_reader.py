#    elf_dwarf_entry_reader.py
#        Reads a .elf file with pyelftools and produces everything the core needs:
#        the decoded debug entries, the symbol table, the addressable regions,
#        the initial memory content and the target description
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['ElfDwarfEntryReader', 'ElfMemoryReader']

from elftools.dwarf.die import DIE
from elftools.dwarf.compileunit import CompileUnit
from elftools.elf.elffile import ELFFile
from elftools.elf.constants import SH_FLAGS
from elftools.elf.sections import SymbolTableSection

import os
import logging
from fnmatch import fnmatch

from dwarfcal.core.basic_types import Endianness
from dwarfcal.core.debug_entry import Attrs, Tags, DebugEntry, InMemoryDebugEntryStore
from dwarfcal.core.symbol_table import InMemorySymbolTable, InMemoryMemoryReader, AddressableRegions
from dwarfcal.core.target import TargetDescriptor
from dwarfcal.core.logging import DUMPDATA_LOGLEVEL
from dwarfcal.core.facade import SymbolResolutionFacade
from dwarfcal.exceptions import ElfParsingError
from dwarfcal import tools

from dwarfcal.tools.typing import *


class ElfMemoryReader(InMemoryMemoryReader):
    """Initial content of the allocated sections of an ELF file. Sections without content (.bss) read as zeros"""

    logger: logging.Logger

    def __init__(self, elffile: ELFFile) -> None:
        super().__init__()
        self.logger = logging.getLogger(self.__class__.__name__)
        for section in elffile.iter_sections():
            if not (section['sh_flags'] & SH_FLAGS.SHF_ALLOC) or section['sh_size'] == 0:
                continue
            if section['sh_flags'] & SH_FLAGS.SHF_TLS:
                continue    # Thread local. Addresses are not absolute
            if section['sh_type'] == 'SHT_NOBITS':
                data = bytes(section['sh_size'])
            else:
                data = section.data()
            try:
                self.add_segment(section['sh_addr'], data)
            except ValueError as e:
                self.logger.debug(f"Section {section.name} not loaded. {e}")


class ElfDwarfEntryReader:
    """
    Converts the DWARF debugging information of an ELF file into debug entries.
    Attributes are decoded to plain python values: strings, ints, and absolute ref-ids for references.
    """

    DW_OP_addr = 0x03
    DW_OP_plus_uconst = 0x23

    REFERENCE_ATTRIBUTES = (
        Attrs.DW_AT_type,
        Attrs.DW_AT_specification,
        Attrs.DW_AT_abstract_origin,
    )

    CU_RELATIVE_REF_FORMS = ('DW_FORM_ref1', 'DW_FORM_ref2', 'DW_FORM_ref4', 'DW_FORM_ref8', 'DW_FORM_ref_udata')

    # Bound attributes may be a reference to a variable for variable length arrays. Only constants are kept
    BOUND_ATTRIBUTES = (
        Attrs.DW_AT_upper_bound,
        Attrs.DW_AT_lower_bound,
        Attrs.DW_AT_count,
    )

    logger: logging.Logger
    store: InMemoryDebugEntryStore
    symbols: InMemorySymbolTable
    regions: AddressableRegions
    memory: ElfMemoryReader
    target: TargetDescriptor
    _ignore_cu_patterns: List[str]
    _endianness: Endianness
    _address_size: int

    def __init__(self, filename: str, ignore_cu_patterns: List[str] = []) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self._ignore_cu_patterns = list(ignore_cu_patterns)
        self.store = InMemoryDebugEntryStore()
        self.symbols = InMemorySymbolTable()
        self.regions = AddressableRegions()
        self._load_from_elf_file(filename)

    def _load_from_elf_file(self, filename: str) -> None:
        with open(filename, 'rb') as f:
            elffile = ELFFile(f)

            # has_dwarf_info() is also true with .eh_frame alone
            if not elffile.has_dwarf_info() or not self._has_debug_info_section(elffile):
                raise ElfParsingError('File has no DWARF info')

            self._endianness = Endianness.Little if elffile.little_endian else Endianness.Big
            self._address_size = elffile.elfclass // 8
            self.target = TargetDescriptor(
                pointer_width_bytes=self._address_size,
                endianness=self._endianness,
                default_alignment_bytes=self._address_size
            )

            self._read_symbols(elffile)
            self._read_regions(elffile)
            self.memory = ElfMemoryReader(elffile)

            dwarfinfo = elffile.get_dwarf_info()
            bad_support_warning_written = False
            for cu in dwarfinfo.iter_CUs():
                die = cu.get_top_DIE()

                cu_raw_name = self._get_str_attr(die, Attrs.DW_AT_name)
                if cu_raw_name is not None and self._must_skip_cu(cu_raw_name):
                    self.logger.debug(f"Skipping Compile Unit: {cu_raw_name}")
                    continue

                if cu.header['version'] not in (2, 3, 4, 5):
                    if not bad_support_warning_written:
                        bad_support_warning_written = True
                        self.logger.warning(f"DWARF format version {cu.header['version']} is not well supported, output may be incomplete")

                root = self._convert_recursive(die, cu)
                if root is not None:
                    self.store.add_root(root)

        self.logger.debug(f"Loaded {len(self.store)} debug entries and {len(self.symbols)} symbols from {filename}")

    def _has_debug_info_section(self, elffile: ELFFile) -> bool:
        for name in ('.debug_info', '.zdebug_info'):
            if elffile.get_section_by_name(name) is not None:
                return True
        return False

    def _must_skip_cu(self, cu_raw_name: str) -> bool:
        cu_basename = os.path.basename(cu_raw_name)
        for pattern in self._ignore_cu_patterns:
            if cu_basename == pattern or fnmatch(cu_raw_name, pattern):
                return True
        return False

    def _read_symbols(self, elffile: ELFFile) -> None:
        for section in elffile.iter_sections():
            if not isinstance(section, SymbolTableSection):
                continue
            for symbol in section.iter_symbols():
                if symbol['st_info']['type'] != 'STT_OBJECT' or not symbol.name:
                    continue
                if symbol['st_shndx'] == 'SHN_UNDEF':
                    continue
                # Local statics with the same name in different files are all kept
                is_local = symbol['st_info']['bind'] == 'STB_LOCAL'
                try:
                    self.symbols.add(symbol.name, symbol['st_value'], symbol['st_size'], is_local=is_local)
                except KeyError as e:
                    self.logger.debug(f"{e}. Keeping the first one")

    def _read_regions(self, elffile: ELFFile) -> None:
        for section in elffile.iter_sections():
            if not (section['sh_flags'] & SH_FLAGS.SHF_ALLOC) or section['sh_size'] == 0:
                continue
            if section['sh_flags'] & SH_FLAGS.SHF_TLS:
                continue
            self.regions.add(section['sh_addr'], section['sh_addr'] + section['sh_size'])

    def _get_str_attr(self, die: DIE, name: str) -> Optional[str]:
        if name not in die.attributes:
            return None
        value = die.attributes[name].value
        if isinstance(value, bytes):
            return value.decode('utf8', errors='replace')
        return str(value)

    def _make_name_for_log(self, die: DIE) -> str:
        name = self._get_str_attr(die, Attrs.DW_AT_name)
        return f'{die.tag} <{die.offset:x}> "{name if name is not None else ""}"'

    def _convert_recursive(self, die: DIE, cu: CompileUnit) -> Optional[DebugEntry]:
        if self.logger.isEnabledFor(DUMPDATA_LOGLEVEL):  # pragma: no cover
            self.logger.log(DUMPDATA_LOGLEVEL, f"Converting {self._make_name_for_log(die)}")

        if not isinstance(die.tag, str):
            return None     # Null entries

        entry = DebugEntry(die.offset, die.tag, self._convert_attributes(die, cu))
        for child in die.iter_children():
            try:
                child_entry = self._convert_recursive(child, cu)
                if child_entry is not None:
                    entry.add_child(child_entry)
            except Exception as e:
                tools.log_exception(self.logger, e, f"Failed to read debug entry {self._make_name_for_log(child)}.")

        return entry

    def _convert_attributes(self, die: DIE, cu: CompileUnit) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {}
        for name, attr in die.attributes.items():
            if not isinstance(name, str):
                continue    # Vendor attributes unknown to pyelftools
            if name in self.REFERENCE_ATTRIBUTES:
                ref = self._decode_reference(attr.form, attr.value, cu)
                if ref is not None:
                    attributes[name] = ref
            elif name == Attrs.DW_AT_location:
                address = self._decode_location(attr.value)
                if address is not None:
                    attributes[name] = address
            elif name == Attrs.DW_AT_data_member_location:
                attributes[name] = self._decode_member_location(die, attr.value)
            elif name in self.BOUND_ATTRIBUTES:
                if isinstance(attr.value, int) and not attr.form.startswith('DW_FORM_ref'):
                    attributes[name] = attr.value
            elif name == Attrs.DW_AT_declaration:
                attributes[name] = bool(attr.value)
            elif isinstance(attr.value, bytes):
                attributes[name] = attr.value.decode('utf8', errors='replace')
            else:
                attributes[name] = attr.value
        return attributes

    def _decode_reference(self, form: str, value: Any, cu: CompileUnit) -> Optional[int]:
        if form in self.CU_RELATIVE_REF_FORMS:
            return int(value) + cu.cu_offset
        if form == 'DW_FORM_ref_addr':
            return int(value)
        self.logger.debug(f"Unsupported reference form {form}")
        return None

    def _decode_location(self, value: Any) -> Optional[int]:
        """Absolute address of a variable. Only the static DW_OP_addr expression is supported"""
        if not isinstance(value, list) or len(value) < 1 + self._address_size:
            return None
        if value[0] != self.DW_OP_addr:
            return None
        byteorder: Literal['little', 'big'] = 'little' if self._endianness == Endianness.Little else 'big'
        return int.from_bytes(bytes(value[1:1 + self._address_size]), byteorder=byteorder)

    def _decode_member_location(self, die: DIE, value: Any) -> int:
        if isinstance(value, int):
            return value

        if isinstance(value, list):
            if len(value) < 2:
                raise ElfParsingError(f"Invalid member offset data length for {self._make_name_for_log(die)}")
            if value[0] != self.DW_OP_plus_uconst:
                raise ElfParsingError(f"Does not know how to read member location for {self._make_name_for_log(die)}. Operator is unsupported")
            # ULEB128 operand
            result = 0
            shift = 0
            for byte in value[1:]:
                result |= (byte & 0x7F) << shift
                shift += 7
                if byte & 0x80 == 0:
                    break
            return result

        raise ElfParsingError(f"Does not know how to read member location for {self._make_name_for_log(die)}")

    def make_facade(self, **kwargs: Any) -> SymbolResolutionFacade:
        """Build a SymbolResolutionFacade on the content of this file. kwargs are passed to the facade"""
        kwargs.setdefault('regions', self.regions)
        kwargs.setdefault('memory_reader', self.memory)
        return SymbolResolutionFacade(self.store, self.symbols, self.target, **kwargs)
