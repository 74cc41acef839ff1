from __future__ import annotations  # keep type hints lightweight

import logging

from columns import Unassigned  # bus pass runs over complete stores only
from diagnostics import BusImbalance  # per-tuple imbalance
from machine import BusKind  # send (+m) / receive (-m)
from solver import StoreView, evaluate  # row-relative evaluation

logger = logging.getLogger(__name__)


class BusLedger:  # Run-scoped signed multiset per bus id, shared by every machine's bus pass.
    def __init__(self, field):
        self.field = field
        self._acc = {}  # bus_id -> {tuple: net multiplicity}

    def add(self, bus_id, values, multiplicity):
        acc = self._acc.setdefault(int(bus_id), {})
        key = tuple(values)
        acc[key] = acc.get(key, self.field.zero()) + multiplicity

    def bus_ids(self): return sorted(self._acc)

    def net(self, bus_id, values):  # Current net multiplicity of one tuple.
        return self._acc.get(int(bus_id), {}).get(tuple(values), self.field.zero())

    def imbalances(self):  # -> list[BusImbalance] for every tuple not netting to zero.
        out = []
        for bus_id in self.bus_ids():
            for t, m in self._acc[bus_id].items():
                if not m.is_zero():
                    out.append(BusImbalance(bus_id, tuple(int(v) for v in t), m.to_signed()))
        return out


class BusArgumentEngine:  # Feeds each machine's bus entries into a shared ledger.
    def __init__(self, field):
        self.field = field

    def accumulate(self, machine, store, ledger):  # Adds (tuple, ±m) for every row with m != 0.
        rows = 0
        for entry in machine.buses:
            for row in range(store.degree):
                view = StoreView(store, row)
                m = evaluate(entry.multiplicity, view, self.field)
                if m is None:
                    raise Unassigned(f"{store.name}: {entry} multiplicity unassigned at row {row}")
                if m.is_zero():
                    continue
                values = tuple(evaluate(e, view, self.field) for e in entry.values)
                if any(v is None for v in values):
                    raise Unassigned(f"{store.name}: {entry} tuple unassigned at row {row}")
                ledger.add(entry.bus_id, values, m if entry.kind == BusKind.Send else -m)
                rows += 1
        if rows:
            logger.debug("%s: %d bus row(s) accumulated", store.name, rows)
        return rows
