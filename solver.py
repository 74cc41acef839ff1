from __future__ import annotations  # keep type hints lightweight

import logging

from expressions import Ref  # column references

logger = logging.getLogger(__name__)


class StoreView:  # Cell access relative to one row of a Column Store; next-row reads wrap cyclically.
    def __init__(self, store, row):
        self.store = store
        self.row = int(row)

    def _row(self, ref): return (self.row + 1) % self.store.degree if ref.next else self.row

    def get(self, ref): return self.store.maybe_get(ref.name, self._row(ref))

    def set(self, ref, value): self.store.set(ref.name, self._row(ref), value)


def evaluate(expr, view, field):  # Value of `expr` at the view's row, or None if any input is unknown.
    vals = {}
    for r in expr.refs():
        v = view.get(r)
        if v is None:
            return None
        vals[r] = v
    return expr.evaluate(vals.__getitem__, field)


def solve_for(expr, unknown, view, field):  # x such that expr(unknown=x) == 0, or None if not uniquely solvable.
    if expr.degree_in(unknown) != 1:
        return None
    known = {}
    for r in expr.refs():
        if r != unknown:
            v = view.get(r)
            if v is None:
                return None
            known[r] = v

    def at(x):
        known[unknown] = x
        return expr.evaluate(known.__getitem__, field)

    b = at(field.zero())
    a = at(field.one()) - b
    if a.is_zero():
        return None
    return -b / a


def unknowns(expr, view): return [r for r in expr.refs() if view.get(r) is None]


class RowSolver:  # Fills unknown cells of one row from identities, lookups and inverse helpers.
    def __init__(self, machine, field):
        self.machine = machine
        self.field = field
        self._targets = {}  # Lookup -> target tuples, cached once every target cell is known

    def solve(self, view, identities=None, lookups=None, helpers=None):  # Run to a fixpoint; returns cells filled.
        identities = self.machine.all_identities if identities is None else identities
        lookups = self.machine.all_lookups if lookups is None else lookups
        helpers = self.machine.inverse_helpers if helpers is None else helpers
        filled = 0
        progress = True
        while progress:
            progress = False
            for helper, src in helpers.items():
                if view.get(Ref(helper)) is not None:
                    continue
                x = view.get(Ref(src))
                if x is None:
                    continue
                view.set(Ref(helper), self.field.zero() if x.is_zero() else x.inv())
                filled += 1
                progress = True
            for ident in identities:
                todo = unknowns(ident.expr, view)
                if len(todo) != 1:
                    continue
                v = solve_for(ident.expr, todo[0], view, self.field)
                if v is None:
                    continue
                view.set(todo[0], v)
                filled += 1
                progress = True
            for lk in lookups:
                n = self._solve_lookup(view, lk)
                if n:
                    filled += n
                    progress = True
        return filled

    def _solve_lookup(self, view, lk):  # Fill bare-reference holes of a selected source row from the first matching target row.
        if lk.target_machine is not None:
            return 0
        sel = evaluate(lk.source_selector, view, self.field)
        if sel is None or sel.is_zero():
            return 0
        known, holes = [], []
        for i, e in enumerate(lk.source):
            v = evaluate(e, view, self.field)
            if v is not None:
                known.append((i, v))
            elif isinstance(e, Ref):
                holes.append((i, e))
            else:
                return 0
        if not holes:
            return 0
        rows = self._target_tuples(view.store, lk)
        if rows is None:
            return 0
        for t in rows:
            if all(t[i] == v for i, v in known):
                for i, ref in holes:
                    view.set(ref, t[i])
                logger.debug("%s row %d: filled %s from lookup %s", self.machine.name, view.row,
                             [str(r) for _, r in holes], lk)
                return len(holes)
        return 0

    def _target_tuples(self, store, lk):
        cached = self._targets.get(lk)
        if cached is not None:
            return cached
        out = []
        for row in range(store.degree):
            v = StoreView(store, row)
            sel = evaluate(lk.target_selector, v, self.field)
            if sel is None:
                return None
            if sel.is_zero():
                continue
            t = tuple(evaluate(e, v, self.field) for e in lk.target)
            if any(x is None for x in t):
                return None
            out.append(t)
        self._targets[lk] = out
        return out
