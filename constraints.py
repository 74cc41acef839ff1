from __future__ import annotations  # keep type hints lightweight

import logging

from columns import Unassigned  # check runs over complete stores only
from diagnostics import ConstraintViolation  # per-row identity failure
from solver import RowSolver, StoreView, evaluate  # back-solve + evaluation helpers

logger = logging.getLogger(__name__)


class ConstraintChecker:  # Evaluates every identity of a machine on every row.
    def __init__(self, machine, field):
        self.machine = machine
        self.field = field

    def derive(self, store, solver=None):  # Fill helper cells (inverses, defined columns) before finalize.
        solver = solver or RowSolver(self.machine, self.field)
        total = 0
        while True:
            filled = sum(solver.solve(StoreView(store, row)) for row in range(store.degree))
            total += filled
            if not filled:
                break
        if total:
            logger.debug("%s: derived %d helper cells", store.name, total)
        return total

    def check(self, store, path=None):  # -> list[ConstraintViolation]; read-only, every row checked.
        name = path or store.name
        out = []
        for ident in self.machine.all_identities:
            for row in range(store.degree):
                v = evaluate(ident.expr, StoreView(store, row), self.field)
                if v is None:
                    raise Unassigned(f"{name}: identity {ident} has unassigned inputs at row {row}")
                if not v.is_zero():
                    out.append(ConstraintViolation(name, str(ident), row, v.to_signed()))
        if out:
            logger.info("%s: %d constraint violation(s)", name, len(out))
        return out
