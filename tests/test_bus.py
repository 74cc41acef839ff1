import pathlib  # filesystem paths
import sys  # import local engine modules
import unittest  # test framework

ROOT = pathlib.Path(__file__).resolve().parents[1]  # repo root
sys.path.insert(0, str(ROOT))  # allow `import bus`, etc

import engine  # run entry point
from bus import BusLedger
from diagnostics import BusImbalance
from field import GoldilocksField as F
from tests.machines import BUS_ID, bus_system, bus_witness


class BusArgumentTests(unittest.TestCase):  # Sends and receives net to zero across machines.
    def test_matched_sends_and_receives_balance(self):
        res = engine.run(bus_system(), witness=bus_witness())
        self.assertTrue(res.ok, str(res.report))
        self.assertEqual(sorted(res.stores), ["System", "System.receiver", "System.sender"])

    def test_extra_receive_is_one_imbalance(self):
        res = engine.run(bus_system(), witness=bus_witness(extra_receive=True))
        self.assertEqual(res.report.violations, [BusImbalance(BUS_ID, (0, 5, 50, 9), -1)])
        self.assertEqual(res.report.bus_imbalances, res.report.violations)

    def test_changed_receive_tuple_is_two_imbalances(self):  # The sent tuple goes unmatched and the new one is unsent.
        witness = bus_witness()
        witness["receiver.X"] = [3, 1, 0, 5]
        res = engine.run(bus_system(), witness=witness)
        self.assertEqual(sorted(res.report.bus_imbalances, key=lambda b: b.values), [
            BusImbalance(BUS_ID, (0, 2, 20, 8), 1),
            BusImbalance(BUS_ID, (0, 3, 20, 8), -1),
        ])
        self.assertEqual(len(res.report), 2)

    def test_ledger_nets_per_tuple(self):
        ledger = BusLedger(F)
        t = (F(1), F(2))
        ledger.add(7, t, F(2))
        ledger.add(7, t, -F(1))
        self.assertEqual(ledger.net(7, t), 1)
        ledger.add(7, t, -F(1))
        ledger.add(3, (F(9),), F(1))
        self.assertEqual(ledger.bus_ids(), [3, 7])
        self.assertEqual(ledger.imbalances(), [BusImbalance(3, (9,), 1)])


if __name__ == "__main__":
    unittest.main()
