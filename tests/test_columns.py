import pathlib  # filesystem paths
import sys  # import local engine modules
import unittest  # test framework

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))  # allow `import columns`, etc

from columns import ColumnStore, IncompleteColumn, OutOfRange, Redefinition, Unassigned
from field import GoldilocksField as F
from machine import DefinitionError, FixedColumn, Machine, UndeclaredColumn, WitnessColumn


def _store(degree=4):
    m = Machine(
        "M",
        degree,
        columns=[
            FixedColumn.cyclic("LATCH", [0, 1]),
            FixedColumn.from_row("STEP", lambda i: i),
            WitnessColumn("w"),
        ],
    )
    return ColumnStore.for_machine(m, F)


class ColumnStoreTests(unittest.TestCase):  # Write-once cells, lazy fixed columns, finalize.
    def test_fixed_columns_are_indexed_lazily(self):
        s = _store(8)
        self.assertEqual(s.get("LATCH", 5), 1)
        self.assertEqual(s.get("STEP", 6), 6)
        self.assertEqual([int(v) for v in s.column("LATCH")], [0, 1] * 4)
        self.assertTrue(s.is_fixed("STEP"))
        self.assertIn("w", s)
        self.assertNotIn("v", s)

    def test_write_once(self):
        s = _store()
        s.set("w", 0, 3)
        s.set("w", 0, F(3))  # same value is a no-op
        with self.assertRaises(Redefinition):
            s.set("w", 0, 4)
        s.set("LATCH", 1, 1)  # agreeing with a fixed cell is allowed
        with self.assertRaises(Redefinition):
            s.set("LATCH", 0, 1)

    def test_unassigned_and_out_of_range(self):
        s = _store()
        self.assertIsNone(s.maybe_get("w", 1))
        with self.assertRaises(Unassigned):
            s.get("w", 1)
        with self.assertRaises(OutOfRange):
            s.set("w", 4, 0)
        with self.assertRaises(OutOfRange):
            s.maybe_get("STEP", -1)
        with self.assertRaises(UndeclaredColumn):
            s.set("v", 0, 0)

    def test_finalize_requires_complete_columns(self):
        s = _store()
        s.set("w", 0, 1)
        with self.assertRaises(IncompleteColumn):
            s.finalize()
        for row in s.unassigned_rows("w"):
            s.set("w", row, row * 2)
        s.finalize()
        self.assertTrue(s.frozen)
        self.assertEqual(s.as_ints()["w"], [1, 2, 4, 6])

    def test_fixed_column_degree_checks(self):
        FixedColumn.cyclic("p", [0, 0, 0, 1]).check_degree(8)
        with self.assertRaises(DefinitionError):
            FixedColumn.cyclic("p", [0, 0, 1]).check_degree(8)
        with self.assertRaises(DefinitionError):
            FixedColumn.explicit("x", [1, 2, 3]).check_degree(4)
        with self.assertRaises(DefinitionError):
            FixedColumn.explicit("x", []).check_degree(4)


if __name__ == "__main__":
    unittest.main()
