import pathlib  # filesystem paths
import sys  # import local engine modules
import unittest  # test framework

ROOT = pathlib.Path(__file__).resolve().parents[1]  # repo root
sys.path.insert(0, str(ROOT))  # allow `import engine`, etc

import engine  # run configuration + orchestration
from field import BabyBearField, GoldilocksField
from machine import DefinitionError
from tests.machines import double_square_vm, main_with_subvm


class RunConfigTests(unittest.TestCase):
    def test_defaults(self):
        cfg = engine.RunConfig.from_env({})
        self.assertIs(cfg.field, GoldilocksField)
        self.assertIsNone(cfg.entry)
        self.assertTrue(cfg.verify)

    def test_from_env(self):
        cfg = engine.RunConfig.from_env({
            "MACHINE_ENGINE_FIELD": "babybear",
            "MACHINE_ENGINE_ENTRY": "main",
            "MACHINE_ENGINE_VERIFY": "0",
        })
        self.assertEqual(cfg, engine.RunConfig(BabyBearField, "main", False))

    def test_unknown_field(self):
        with self.assertRaises(ValueError):
            engine.RunConfig.from_env({"MACHINE_ENGINE_FIELD": "nope"})


class RunTests(unittest.TestCase):
    def test_same_result_in_another_field(self):
        res = engine.run(main_with_subvm(), config=engine.RunConfig(field=BabyBearField))
        self.assertTrue(res.ok, str(res.report))
        self.assertIs(res.main.field, BabyBearField)

    def test_verify_can_be_skipped(self):
        res = engine.run(double_square_vm(expected_double=7), config=engine.RunConfig(verify=False))
        self.assertTrue(res.ok)
        self.assertFalse(engine.run(double_square_vm(expected_double=7)).ok)

    def test_unknown_entry(self):
        with self.assertRaises(DefinitionError):
            engine.run(double_square_vm(), config=engine.RunConfig(entry="other"))

    def test_run_summary_is_logged(self):
        with self.assertLogs("engine", level="INFO") as logs:
            engine.run(double_square_vm())
        self.assertTrue(any("0 violation(s)" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
