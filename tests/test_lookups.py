import pathlib  # filesystem paths
import sys  # import local engine modules
import unittest  # test framework

ROOT = pathlib.Path(__file__).resolve().parents[1]  # repo root
sys.path.insert(0, str(ROOT))  # allow `import engine`, etc

import engine  # run / verify entry points
from columns import ColumnStore
from diagnostics import LookupMiss, NonInvertibleConstraint
from field import GoldilocksField as F
from lookups import LookupEngine
from machine import FixedColumn, Lookup, LookupKind, Machine, WitnessColumn
from tests.machines import INC_X_VALUES, increasing_lookup


def _filled_store(machine, **cols):
    s = ColumnStore.for_machine(machine, F)
    for name, values in cols.items():
        for row, v in enumerate(values):
            s.set(name, row, v)
    return s.finalize()


class IncrementLookupTests(unittest.TestCase):  # [x, y] in [INC_X, INC_Y] with INC_Y = INC_X + 1.
    def test_y_is_derived_from_table(self):
        res = engine.run(increasing_lookup())
        self.assertTrue(res.ok, str(res.report))
        self.assertEqual(res.main.as_ints()["y"], [x + 1 for x in INC_X_VALUES])

    def test_supplied_table_values_are_accepted(self):
        res = engine.run(increasing_lookup(), witness={"y": [x + 1 for x in INC_X_VALUES]})
        self.assertTrue(res.ok, str(res.report))

    def test_wrong_y_is_a_miss_at_that_row(self):
        y = [x + 1 for x in INC_X_VALUES]
        y[7] = 5  # x = 3 needs y = 4
        res = engine.run(increasing_lookup(), witness={"y": y})
        self.assertFalse(res.ok)
        self.assertEqual(len(res.report), 1)
        miss = res.report.lookup_misses[0]
        self.assertEqual((miss.machine, miss.row, miss.values), ("Inc", 7, (3, 5)))
        self.assertEqual(miss.lookup, "[x, y] in [INC_X, INC_Y]")

    def test_x_outside_table_is_reported_not_raised(self):  # y[0] cannot be derived; the run still returns.
        res = engine.run(increasing_lookup([9, 5, 2, 6, 4, 2, 6, 3]))
        (nic,) = res.report.of(NonInvertibleConstraint)
        self.assertEqual((nic.row, nic.unknowns), (0, ("y",)))
        (miss,) = res.report.lookup_misses
        self.assertEqual((miss.row, miss.values), (0, (9, 0)))
        self.assertEqual(res.main.as_ints()["y"][1:], [6, 3, 7, 5, 3, 7, 4])

    def test_deterministic(self):
        y = [x + 1 for x in INC_X_VALUES]
        y[2] = 0
        a = engine.run(increasing_lookup(), witness={"y": y})
        b = engine.run(increasing_lookup(), witness={"y": y})
        self.assertEqual(a.main.as_ints(), b.main.as_ints())
        self.assertEqual(a.report.violations, b.report.violations)


class LookupEngineTests(unittest.TestCase):  # Selectors and permutation semantics on hand-filled stores.
    def _machine(self, lookup):
        return Machine(
            "T",
            4,
            columns=[
                FixedColumn.cyclic("sel", [0]),
                FixedColumn.explicit("T", [1, 2, 3, 4]),
                WitnessColumn("a"),
                WitnessColumn("b"),
                WitnessColumn("on"),
            ],
            lookups=[lookup],
        )

    def test_zero_selector_is_vacuous(self):
        m = self._machine("sel $ [a] in [T]")
        s = _filled_store(m, a=[9, 9, 9, 9], b=[0] * 4, on=[0] * 4)
        self.assertEqual(LookupEngine(F).check_machine(m, s), [])

    def test_target_selector_restricts_table(self):
        m = self._machine("[a] in on $ [T]")
        s = _filled_store(m, a=[1, 1, 2, 2], b=[0] * 4, on=[1, 0, 0, 0])
        misses = LookupEngine(F).check_machine(m, s)
        self.assertEqual([x.row for x in misses], [2, 3])
        self.assertTrue(all(isinstance(x, LookupMiss) for x in misses))

    def test_permutation_counts_multiplicity(self):
        m = self._machine("[a] is [b]")
        self.assertEqual(m.lookups[0].kind, LookupKind.Permutation)
        ok = _filled_store(m, a=[1, 2, 2, 3], b=[2, 3, 1, 2], on=[0] * 4)
        self.assertEqual(LookupEngine(F).check_machine(m, ok), [])
        bad = _filled_store(m, a=[1, 2, 2, 3], b=[2, 3, 1, 1], on=[0] * 4)
        misses = LookupEngine(F).check_machine(m, bad)
        self.assertEqual(sorted((x.side, x.row, x.values) for x in misses), [("source", 2, (2,)), ("target", 3, (1,))])

    def test_permutation_reports_surplus_targets_without_sources(self):
        m = self._machine("on $ [a] is [b]")
        s = _filled_store(m, a=[0] * 4, b=[5, 6, 7, 8], on=[0] * 4)
        self.assertEqual(len(LookupEngine(F).check_machine(m, s)), 4)

    def test_parse(self):
        lk = Lookup.parse("instr_load $ [1, ADDR, X] is m_selector $ [m_is_write, m_addr, m_value]")
        self.assertEqual(len(lk.source), 3)
        self.assertEqual(lk.source_selector.names(), {"instr_load"})
        self.assertEqual(lk.target_selector.names(), {"m_selector"})


if __name__ == "__main__":
    unittest.main()
