#    __init__.py
#        dwarfcal: rebuild typed memory layouts of global symbols from DWARF debug info
#        and classify them into calibration shapes
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__version__ = '0.1.0'
