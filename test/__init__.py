#    __init__.py
#        Common tools for the unit tests
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['logger', 'DwarfcalUnitTest']

import unittest
import logging

from dwarfcal.tools.typing import *

logger = logging.getLogger('unittest')


class DwarfcalUnitTest(unittest.TestCase):

    def assertIsInstanceAndReturn(self, obj: Any, cls: Type[Any]) -> Any:
        self.assertIsInstance(obj, cls)
        return obj

    def assert_address(self, node: Any, address: int) -> None:
        self.assertEqual(node.address, address, f"{node.path} is at 0x{node.address:08X}. Expected 0x{address:08X}")
