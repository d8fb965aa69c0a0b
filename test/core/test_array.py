#    test_array.py
#        Test the row-major index math of N dimensions arrays
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

from test import DwarfcalUnitTest
from dwarfcal.core.array import ArrayShape


class TestArrayShape(DwarfcalUnitTest):
    def test_position(self):
        shape = ArrayShape((2, 3, 4), stride=8)
        self.assertEqual(shape.get_element_count(), 24)
        self.assertEqual(shape.get_total_byte_size(), 192)
        self.assertFalse(shape.is_empty())

        self.assertEqual(shape.position_of((0, 0, 0)), 0)
        self.assertEqual(shape.position_of((0, 0, 1)), 1)
        self.assertEqual(shape.position_of((0, 1, 0)), 4)
        self.assertEqual(shape.position_of((1, 0, 0)), 12)
        self.assertEqual(shape.position_of((1, 2, 3)), 23)
        self.assertEqual(shape.byte_position_of((1, 2, 3)), 23 * 8)

        with self.assertRaises(ValueError):
            shape.position_of((2, 0, 0))
        with self.assertRaises(ValueError):
            shape.position_of((0, -1, 0))
        with self.assertRaises(ValueError):
            shape.position_of((0, 0))

    def test_iter_positions_row_major(self):
        shape = ArrayShape((2, 10), stride=4)
        positions = list(shape.iter_positions())
        self.assertEqual(len(positions), 20)
        self.assertEqual(positions[0], (0, 0))
        self.assertEqual(positions[1], (0, 1))
        self.assertEqual(positions[10], (1, 0))
        for i, pos in enumerate(positions):
            self.assertEqual(shape.position_of(pos), i)
            self.assertEqual(shape.byte_position_of(pos), (pos[0] * 10 + pos[1]) * 4)

    def test_unknown_bound(self):
        shape = ArrayShape((0,), stride=4)
        self.assertTrue(shape.is_empty())
        self.assertEqual(shape.get_total_byte_size(), 0)
        self.assertEqual(list(shape.iter_positions()), [])

    def test_bad_values(self):
        with self.assertRaises(ValueError):
            ArrayShape((), 4)
        with self.assertRaises(ValueError):
            ArrayShape((-1,), 4)
        with self.assertRaises(ValueError):
            ArrayShape((2,), -4)

    def test_equality(self):
        self.assertEqual(ArrayShape((2, 3), 4), ArrayShape((2, 3), 4))
        self.assertNotEqual(ArrayShape((2, 3), 4), ArrayShape((3, 2), 4))
        self.assertNotEqual(ArrayShape((2, 3), 4), ArrayShape((2, 3), 8))
        self.assertEqual(len(set([ArrayShape((2, 3), 4), ArrayShape((2, 3), 4)])), 1)
