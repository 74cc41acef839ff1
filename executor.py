from __future__ import annotations  # keep type hints lightweight

import logging

from columns import Unassigned  # statement operand read before it is known
from constraints import ConstraintChecker  # helper derivation before finalize
from diagnostics import MissingQueryResponse, NonInvertibleConstraint  # runtime diagnostics
from expressions import Expr, Ref  # statement operands
from machine import HALT, START, ArityMismatch, Assign, Call, DefinitionError, MachineError, Query, RegisterKind, Return
from registers import RegisterBank  # two-buffer register state
from solver import RowSolver, StoreView  # per-row back-solving

logger = logging.getLogger(__name__)


class DegreeExceeded(MachineError):  # Execution needs more rows than the machine's degree.
    pass


class ExecView:  # Row view used while executing: next-row register refs go to the staged buffer.
    def __init__(self, store, row, bank, params=None):
        self.store = store
        self.row = row
        self.bank = bank
        self.params = params or {}

    def _row(self, ref): return (self.row + 1) % self.store.degree if ref.next else self.row

    def get(self, ref):
        if not ref.next and ref.name in self.params:
            return self.params[ref.name]
        if ref.next and ref.name in self.bank.kinds:
            return self.bank.staged_value(ref.name)
        return self.store.maybe_get(ref.name, self._row(ref))

    def set(self, ref, value):
        if ref.next and ref.name in self.bank.kinds:
            self.bank.stage(ref.name, value)
            return
        self.store.set(ref.name, self._row(ref), value)
        if not ref.next and ref.name in self.bank.kinds:
            self.bank.set(ref.name, value)


class Executor:  # Produces the witness of one machine instance, row by row.
    def __init__(self, machine, store, field, *, path=None, report, query=None, linker=None):
        self.machine = machine
        self.store = store
        self.field = field
        self.path = path or machine.name
        self.report = report
        self.query = query
        self.linker = linker
        self.bank = RegisterBank(machine, field) if machine.is_vm else None
        self.solver = RowSolver(machine, field)
        self.row = 0  # next unused row

    # -- entry points -----------------------------------------------------

    def run(self, entry=None):  # Execute a root machine: its entry function, or the implicit pass.
        if not self.machine.is_vm:
            self.run_implicit()
            return []
        name = entry or self.machine.entry
        fn = self.machine.function_map.get(name)
        if fn is None:
            raise DefinitionError(f"{self.path}: entry function {name!r} not found")
        return self._run_function(fn, [], None)

    def run_implicit(self):  # Machines without a pc: compute every row from its defining expressions.
        for row in range(self.row, self.store.degree):
            self.solver.solve(StoreView(self.store, row))
        self.row = self.store.degree

    def invoke(self, op, args):  # One call of `op` (driven by the parent's Linker); returns outputs.
        args = [self.field.coerce(a) for a in args]
        if self.machine.is_vm:
            fn = self.machine.function_map[op.function or op.name]
            return self._run_function(fn, args, op)
        return self._run_block(op, args)

    def pad(self):  # Fill rows after the last call/return; sub-machines first.
        if self.linker is not None:
            for child in self.linker.instances.values():
                child.pad()
        if self.machine.is_vm:
            self._pad_vm()
        else:
            self._pad_block()

    def settle(self):  # Derive helper cells; cells their defining constraints leave open are reported and zeroed.
        checker = ConstraintChecker(self.machine, self.field)
        defining = self.machine.defining_constraints
        while True:
            checker.derive(self.store, self.solver)
            holes = {c: rows for c in defining if (rows := self.store.unassigned_rows(c))}
            if not holes:
                return
            row = min(rows[0] for rows in holes.values())
            for col in sorted(c for c, rows in holes.items() if rows[0] == row):
                self.report.add(NonInvertibleConstraint(self.path, defining[col], row, (col,)))
                logger.warning("%s row %d: %s leaves %s undetermined", self.path, row, defining[col], col)
                self.store.set(col, row, 0)

    # -- VM execution -----------------------------------------------------

    def _claim_row(self):
        if self.row >= self.store.degree:
            raise DegreeExceeded(f"{self.path} needs more than {self.store.degree} rows")
        return self.row

    def _run_function(self, fn, args, op):
        if len(args) != len(fn.params):
            raise ArityMismatch(f"{self.path}.{fn.name} takes {len(fn.params)} arguments, got {len(args)}")
        params = dict(zip(fn.params, args))
        prog = self.machine.program
        pc_name = self.machine.pc
        self.bank.jump(prog.starts[fn.name])
        first = True
        logger.debug("%s: enter %s%s at row %d", self.path, fn.name, tuple(int(a) for a in args), self.row)
        while True:
            row = self._claim_row()
            self.bank.begin_row()
            view = ExecView(self.store, row, self.bank, params)
            pc = int(self.bank.get(pc_name))
            if pc >= len(prog.statements) or prog.statements[pc][0] != fn.name:
                raise DefinitionError(f"{self.path}: pc {pc} left function {fn.name}")
            st = prog.statements[pc][1]
            logger.debug("%s row %d pc %d: %s", self.path, row, pc, st)
            for name, v in self.bank.current.items():
                self.store.set(name, row, v)
            active = st.value.instruction if isinstance(st, Assign) and isinstance(st.value, Call) else (
                st.instruction if isinstance(st, Call) else None)
            for ins in self.machine.instructions:
                self.store.set(ins.flag, row, 1 if ins.name == active else 0)
            self.store.set(START, row, 1 if first else 0)
            self.store.set(HALT, row, 1 if isinstance(st, Return) else 0)
            first = False
            self._write_call_inputs(row, op, args)
            if isinstance(st, Return):
                outs = [self._eval(v, view) for v in st.values]
                self._write_call_outputs(row, op, outs)
                self._close_row(view)
                self.bank.stage(pc_name, pc)
                self.bank.commit()
                self.row += 1
                return outs
            self._step(st, view, fn)
            self._close_row(view)
            self.bank.commit()
            self.row += 1

    def _step(self, st, view, fn):
        if isinstance(st, Call):
            self._issue(self.machine.instruction_map[st.instruction], st.args, view, fn)
            return
        if isinstance(st.value, Call):
            ins = self.machine.instruction_map[st.value.instruction]
            self._issue(ins, st.value.args, view, fn)
            via = ins.outputs
            values = [view.get(Ref(o)) for o in via]
        else:
            via = st.via
            v = self._query(st.value, view.row) if isinstance(st.value, Query) else self._eval(st.value, view)
            view.set(Ref(via[0]), v)
            values = [v]
        for target, name, v in zip(st.targets, via, values):
            if self.bank.kinds[target] != RegisterKind.Assignment:
                self.bank.stage(target, v)
                sel = self.machine.write_selectors.get((name, target))
                if sel is not None:
                    self.store.set(sel, view.row, 1)

    def _issue(self, ins, args, view, fn):  # Bind operands, then solve the body or call the linked operation.
        for p, a in zip(ins.params, args):
            if p.label:
                self.store.set(ins.param_column(p.name), view.row, self.machine.program.label_pc(fn.name, a.name))
            else:
                view.set(Ref(p.name), self._eval(a, view))
        if ins.link is not None:
            lk = ins.link
            inputs = [self._eval(e, view) for e in lk.args]
            outputs = self.linker.call(lk.instance, lk.operation, inputs)
            for name, v in zip(lk.outputs, outputs):
                view.set(Ref(name), v)
            self.solver.solve(view)
            return
        self.solver.solve(view)
        missing = [o for o in ins.outputs if view.get(Ref(o)) is None]
        pc_name = self.machine.pc
        if ins in self.machine.jump_instructions and self.bank.staged_value(pc_name) is None:
            missing.append(f"{pc_name}'")
        if missing:
            self.report.add(NonInvertibleConstraint(self.path, ins.name, view.row, tuple(missing)))
            logger.warning("%s row %d: cannot solve %s for %s", self.path, view.row, ins.name, missing)
            for o in ins.outputs:
                if view.get(Ref(o)) is None:
                    view.set(Ref(o), 0)

    def _close_row(self, view):  # Zero every cell of this row the statement did not touch.
        zero = self.field.zero()
        names = [r.name for r in self.machine.registers if r.kind == RegisterKind.Assignment]
        for ins in self.machine.instructions:
            names += [ins.param_column(l) for l in ins.labels]
        names += self.machine.write_selectors.values()
        cc = self.machine.call_columns
        if cc:
            names += [cc["operation_id"], cc["latch"], *cc["inputs"], *cc["outputs"]]
        for name in names:
            if self.store.maybe_get(name, view.row) is None:
                view.set(Ref(name), zero)

    def _write_call_inputs(self, row, op, args):
        cc = self.machine.call_columns
        if not cc or op is None:
            return
        self.store.set(cc["operation_id"], row, op.operation_id)
        for col, a in zip(cc["inputs"], args):
            self.store.set(col, row, a)

    def _write_call_outputs(self, row, op, outs):
        cc = self.machine.call_columns
        if not cc or op is None:
            return
        self.store.set(cc["latch"], row, 1)
        for col, v in zip(cc["outputs"], outs):
            self.store.set(col, row, v)

    def _pad_vm(self):  # Registers persist, pc stays put, everything else is zero.
        pc_name = self.machine.pc
        for row in range(self.row, self.store.degree):
            self.bank.begin_row()
            view = ExecView(self.store, row, self.bank)
            for name, v in self.bank.current.items():
                self.store.set(name, row, v)
            for ins in self.machine.instructions:
                self.store.set(ins.flag, row, 0)
            self.store.set(START, row, 0)
            self.store.set(HALT, row, 1)
            self._close_row(view)
            self.bank.stage(pc_name, self.bank.get(pc_name))
            self.bank.commit()
        self.row = self.store.degree

    # -- block machines ---------------------------------------------------

    def _latch_open(self, row):
        latch = self.machine.latch
        if latch is None or not self.store.is_fixed(latch):
            return True
        return not self.store.get(latch, row).is_zero()

    def _run_block(self, op, args):  # One call fills one latched row: ids and inputs in, outputs solved.
        while True:
            row = self._claim_row()
            if self._latch_open(row):
                break
            self.row += 1
        m = self.machine
        if m.operation_id is not None:
            self.store.set(m.operation_id, row, op.operation_id)
        if m.latch is not None and not self.store.is_fixed(m.latch):
            self.store.set(m.latch, row, 1)
        for col, a in zip(op.inputs, args):
            self.store.set(col, row, a)
        view = StoreView(self.store, row)
        self.solver.solve(view)
        outs = []
        for col in op.outputs:
            v = view.get(Ref(col))
            if v is None:
                self.report.add(NonInvertibleConstraint(self.path, op.name, row, (col,)))
                logger.warning("%s row %d: operation %s leaves %s undetermined", self.path, row, op.name, col)
                v = self.field.zero()
                self.store.set(col, row, v)
            outs.append(v)
        logger.debug("%s row %d: %s%s -> %s", self.path, row, op.name, tuple(int(a) for a in args),
                     tuple(int(v) for v in outs))
        self.row = row + 1
        return outs

    def _pad_block(self):  # Uncalled rows: zero ids, latches and operation inputs.
        m = self.machine
        if not m.operations:
            self.run_implicit()
            return
        names = {c for op in m.operations for c in op.inputs}
        if m.operation_id is not None:
            names.add(m.operation_id)
        if m.latch is not None and not self.store.is_fixed(m.latch):
            names.add(m.latch)
        for name in sorted(names):
            for row in self.store.unassigned_rows(name):
                self.store.set(name, row, 0)
        self.row = self.store.degree

    # -- operands ---------------------------------------------------------

    def _eval(self, expr: Expr, view):
        vals = {}
        for r in expr.refs():
            v = view.get(r)
            if v is None:
                raise Unassigned(f"{self.path} row {view.row}: {r} unknown while evaluating {expr}")
            vals[r] = v
        return expr.evaluate(vals.__getitem__, self.field)

    def _query(self, q: Query, row):
        v = self.query(q.kind, tuple(q.args)) if self.query is not None else None
        if v is None:
            self.report.add(MissingQueryResponse(self.path, str(q), row))
            logger.warning("%s row %d: no response to %s", self.path, row, q)
            return self.field.zero()
        return self.field.coerce(v)
