import pathlib  # filesystem paths
import sys  # import local engine modules
import unittest  # test framework

ROOT = pathlib.Path(__file__).resolve().parents[1]  # repo root
sys.path.insert(0, str(ROOT))  # allow `import linker`, etc

import engine  # instantiate executor trees
from diagnostics import Report
from field import GoldilocksField as F
from linker import Linker, OperationTable, ReentrantCall
from machine import ArityMismatch, SubMachineNotFound, SubMachineOperationNotFound
from tests.machines import arith, double_square_vm, main_with_subvm


class OperationTableTests(unittest.TestCase):
    def test_dispatch_by_name_and_id(self):
        t = OperationTable(arith())
        self.assertEqual(len(t), 2)
        self.assertEqual(t.get("square").operation_id, 1)
        self.assertEqual(t.by_id(0).name, "double")
        self.assertEqual([op.name for op in t], ["double", "square"])
        with self.assertRaises(SubMachineOperationNotFound):
            t.get("cube")
        with self.assertRaises(SubMachineOperationNotFound):
            t.by_id(5)


class _Recursive:  # Executor stand-in that calls back into the same instance mid-call.
    def __init__(self, machine):
        self.machine = machine
        self.linker = None
        self.owner = None

    def invoke(self, op, args):
        return self.owner.call("arith", op.name, args)


class LinkerTests(unittest.TestCase):
    def test_calls_are_counted_and_walked(self):
        root = engine.instantiate(double_square_vm(), F, Report())
        self.assertEqual(root.linker.call("arith", "double", [F(4)]), [8])
        self.assertEqual(root.linker.calls, 1)
        self.assertEqual([p for p, _ in root.linker.walk()], ["Main.arith"])

    def test_nested_walk(self):
        root = engine.instantiate(main_with_subvm(), F, Report())
        self.assertEqual([p for p, _ in engine.executors(root)], ["MainVM", "MainVM.subvm"])

    def test_bad_calls(self):
        root = engine.instantiate(double_square_vm(), F, Report())
        with self.assertRaises(SubMachineNotFound):
            root.linker.call("nope", "double", [F(1)])
        with self.assertRaises(ArityMismatch):
            root.linker.call("arith", "double", [F(1), F(2)])

    def test_reentrant_call(self):
        ex = _Recursive(arith())
        lk = Linker("Main", {"arith": ex})
        ex.owner = lk
        with self.assertRaises(ReentrantCall):
            lk.call("arith", "double", [F(1)])
        self.assertEqual(lk.calls, 0)


if __name__ == "__main__":
    unittest.main()
