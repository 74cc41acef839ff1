from __future__ import annotations  # keep type hints lightweight

import logging
from collections import defaultdict

from columns import Unassigned  # lookups run over complete stores only
from diagnostics import LookupMiss  # per-row lookup failure
from machine import LookupKind  # containment vs permutation
from solver import StoreView, evaluate  # row-relative evaluation

logger = logging.getLogger(__name__)


class LookupEngine:  # Selector-gated tuple containment (`in`) and multiset equality (`is`).
    def __init__(self, field):
        self.field = field

    def _eval(self, store, row, expr, where):
        v = evaluate(expr, StoreView(store, row), self.field)
        if v is None:
            raise Unassigned(f"{store.name}: lookup {where} has unassigned inputs at row {row}")
        return v

    def selected_tuples(self, store, selector, exprs, where):  # -> [(row, tuple)] for rows with selector != 0.
        out = []
        for row in range(store.degree):
            if self._eval(store, row, selector, where).is_zero():
                continue
            out.append((row, tuple(self._eval(store, row, e, where) for e in exprs)))
        return out

    def check(self, name, lookup, source_store, target_store=None):  # -> list[LookupMiss]
        target_store = source_store if target_store is None else target_store
        label = str(lookup)
        sources = self.selected_tuples(source_store, lookup.source_selector, lookup.source, label)
        if not sources and lookup.kind == LookupKind.Containment:
            return []
        targets = self.selected_tuples(target_store, lookup.target_selector, lookup.target, label)
        if lookup.kind == LookupKind.Permutation:
            return self._check_permutation(name, label, sources, targets)
        table = {t for _, t in targets}
        return [LookupMiss(name, label, row, tuple(int(v) for v in t)) for row, t in sources if t not in table]

    def _check_permutation(self, name, label, sources, targets):
        pending = defaultdict(list)  # tuple -> target rows not yet matched
        for row, t in targets:
            pending[t].append(row)
        out = []
        for row, t in sources:
            rows = pending.get(t)
            if rows:
                rows.pop(0)
            else:
                out.append(LookupMiss(name, label, row, tuple(int(v) for v in t)))
        for t, rows in pending.items():
            out += [LookupMiss(name, label, row, tuple(int(v) for v in t), side="target") for row in rows]
        return out

    def check_machine(self, machine, store, children=None, path=None):  # All lookups of one instance.
        name = path or store.name
        children = children or {}
        out = []
        for lk in machine.all_lookups:
            target = children[lk.target_machine] if lk.target_machine is not None else store
            out += self.check(name, lk, store, target)
        if out:
            logger.info("%s: %d lookup miss(es)", name, len(out))
        return out
