from __future__ import annotations  # keep type hints lightweight

import logging
import os  # env-var configuration
from dataclasses import dataclass  # config + result containers

from bus import BusArgumentEngine, BusLedger  # multiset balance
from columns import ColumnStore  # per-instance storage
from constraints import ConstraintChecker  # identities + helper derivation
from diagnostics import Report  # collected violations
from executor import Executor  # witness production
from field import GoldilocksField, field_by_name  # default field + config lookup
from linker import Linker, OperationTable  # sub-machine ownership and dispatch
from lookups import LookupEngine  # lookup / permutation checks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunConfig:  # Per-run knobs.
    field: type = GoldilocksField  # MontgomeryField subclass used for every cell
    entry: str | None = None  # entry function override for the root VM
    verify: bool = True  # run the three verification passes after execution

    @classmethod
    def from_env(cls, environ=None):  # MACHINE_ENGINE_FIELD / MACHINE_ENGINE_ENTRY / MACHINE_ENGINE_VERIFY.
        env = os.environ if environ is None else environ
        field = field_by_name(env["MACHINE_ENGINE_FIELD"]) if env.get("MACHINE_ENGINE_FIELD") else GoldilocksField
        return cls(
            field=field,
            entry=env.get("MACHINE_ENGINE_ENTRY") or None,
            verify=env.get("MACHINE_ENGINE_VERIFY", "1") != "0",
        )


@dataclass
class RunResult:  # Finalized stores (instance path -> ColumnStore) plus the violation report.
    root: str
    stores: dict
    report: Report
    outputs: list

    @property
    def main(self): return self.stores[self.root]

    @property
    def ok(self): return self.report.ok

    def store(self, path=""):  # "" -> root, "arith" -> root.arith
        return self.stores[f"{self.root}.{path}" if path else self.root]


def input_query(values):  # Query callback answering Query::Input(i, ...) from a list.
    values = list(values)

    def resolve(kind, args):
        if str(kind).lower() != "input" or not args:
            return None
        idx = int(args[0])
        return values[idx] if 0 <= idx < len(values) else None

    return resolve


def load(machine):  # Validate the whole machine tree; structural errors raise.
    machine.validate()
    logger.debug("loaded %s (degree %d, %d sub-machine(s))", machine.name, machine.degree, len(machine.submachines))
    return machine


def instantiate(machine, field, report, query=None, path=None):  # Executor tree with fresh stores.
    path = path or machine.name
    children = {s.name: instantiate(s.machine, field, report, query, f"{path}.{s.name}") for s in machine.submachines}
    store = ColumnStore.for_machine(machine, field, path)
    return Executor(machine, store, field, path=path, report=report, query=query, linker=Linker(path, children))


def executors(root):  # [(path, executor)] root first.
    return [(root.path, root), *root.linker.walk()]


def _preload(root, witness):  # {"y": [...], "arith.x": [...]} -> pre-assigned witness cells.
    by_path = dict(executors(root))
    for key, values in (witness or {}).items():
        inst, _, col = key.rpartition(".")
        ex = by_path[f"{root.path}.{inst}" if inst else root.path]
        for row, v in enumerate(values):
            if v is not None:
                ex.store.set(col, row, v)


def finalize(root):  # Settle undetermined cells, then freeze every store.
    for _, ex in executors(root):
        ex.settle()
        ex.store.finalize()


def verify(root, report=None):  # Constraint, lookup and bus passes over finalized stores.
    report = Report() if report is None else report
    field = root.field
    lookups = LookupEngine(field)
    buses = BusArgumentEngine(field)
    ledger = BusLedger(field)
    for path, ex in executors(root):
        report.extend(ConstraintChecker(ex.machine, field).check(ex.store, path))
        children = {name: child.store for name, child in ex.linker.instances.items()}
        report.extend(lookups.check_machine(ex.machine, ex.store, children, path))
        buses.accumulate(ex.machine, ex.store, ledger)
    report.extend(ledger.imbalances())
    return report


def run(machine, *, query=None, witness=None, config=None):  # load -> execute -> derive -> finalize -> verify.
    config = config or RunConfig()
    load(machine)
    report = Report()
    root = instantiate(machine, config.field, report, query)
    _preload(root, witness)
    outputs = root.run(config.entry)
    root.pad()
    finalize(root)
    if config.verify:
        verify(root, report)
    stores = {path: ex.store for path, ex in executors(root)}
    logger.info("%s: %d row(s) over %d instance(s), %d violation(s)", machine.name, machine.degree, len(stores),
                len(report))
    return RunResult(root.path, stores, report, outputs)


def execute_operation(machine, operation, args, *, query=None, config=None):  # Call one operation in isolation.
    config = config or RunConfig()
    load(machine)
    report = Report()
    ex = instantiate(machine, config.field, report, query)
    op = OperationTable(machine).get(operation)
    outputs = ex.invoke(op, args)
    for diag in report:
        logger.warning("%s.%s: %s", machine.name, operation, diag)
    return outputs
