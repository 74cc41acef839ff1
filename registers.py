from __future__ import annotations  # keep type hints lightweight

from columns import Redefinition  # write-once semantics shared with the Column Store
from machine import RegisterKind  # register kinds


class RegisterBank:  # Two-buffer register state: current row values + staged next-row writes.
    def __init__(self, machine, field):
        self.machine = machine
        self.field = field
        self.kinds = {r.name: r.kind for r in machine.registers}
        self._committed = {n: field.zero() for n, k in self.kinds.items() if k != RegisterKind.Assignment}
        self.current = {}
        self.staged = {}

    @property
    def pc(self): return self.machine.pc

    def begin_row(self):  # Load persisted registers; assignment registers start empty each row.
        self.current = dict(self._committed)
        self.staged = {}

    def get(self, name): return self.current.get(name)  # None when not yet known this row

    def set(self, name, value):  # Current-row write; a second, different write is a modeling error.
        value = self.field.coerce(value)
        old = self.current.get(name)
        if old is not None and old != value and self.kinds[name] == RegisterKind.Assignment:
            raise Redefinition(f"register {name} already holds {old} this row, got {value}")
        self.current[name] = value

    def stage(self, name, value):  # Next-row write (`A' = X`, `pc' = l`).
        value = self.field.coerce(value)
        old = self.staged.get(name)
        if old is not None and old != value:
            raise Redefinition(f"register {name}' already staged as {old}, got {value}")
        self.staged[name] = value

    def staged_value(self, name): return self.staged.get(name)

    def commit(self):  # Advance one row: staged values win, pc defaults to pc + 1.
        nxt = {}
        for name in self._committed:
            if name in self.staged:
                nxt[name] = self.staged[name]
            elif name == self.pc:
                nxt[name] = self.current[name] + 1
            else:
                nxt[name] = self.current.get(name, self._committed[name])
        self._committed = nxt
        return nxt

    def jump(self, pc):  # Set the committed pc directly (function entry on a call).
        self._committed[self.pc] = self.field(pc)

    def persisted(self): return dict(self._committed)
