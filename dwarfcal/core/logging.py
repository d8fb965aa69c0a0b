#    logging.py
#        Logging related constants
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['DUMPDATA_LOGLEVEL']

import logging

# Below DEBUG. Used to trace every debug entry visited while building a type graph
DUMPDATA_LOGLEVEL = logging.DEBUG - 5
logging.addLevelName(DUMPDATA_LOGLEVEL, 'DUMPDATA')
