from __future__ import annotations  # keep type hints lightweight

from machine import MachineError, UndeclaredColumn  # structural error hierarchy


class ColumnStoreError(MachineError):  # Base class for Column Store contract violations.
    pass


class OutOfRange(ColumnStoreError):  # Row index outside 0..degree-1.
    pass


class Redefinition(ColumnStoreError):  # Write-once cell written with a different value.
    pass


class Unassigned(ColumnStoreError):  # Read of a witness cell before any write.
    pass


class IncompleteColumn(ColumnStoreError):  # Witness column still has holes at finalize time.
    pass


class ColumnStore:  # Fixed + witness columns of one machine instance, `degree` rows each.
    def __init__(self, name, degree, field, fixed=None, witness=()):  # `fixed`: name -> FixedColumn.
        self.name = name
        self.degree = int(degree)
        self.field = field
        self._fixed = dict(fixed or {})
        self._fixed_cache = {}
        self._witness = {w: [None] * self.degree for w in witness}
        self.frozen = False

    @classmethod
    def for_machine(cls, machine, field, name=None):  # Fresh store laid out for `machine`.
        return cls(name or machine.name, machine.degree, field, machine.fixed, machine.witness_names)

    def __contains__(self, column): return column in self._witness or column in self._fixed

    @property
    def witness_names(self): return tuple(self._witness)

    @property
    def fixed_names(self): return tuple(self._fixed)

    def _row(self, column, row):
        row = int(row)
        if row < 0 or row >= self.degree:
            raise OutOfRange(f"{self.name}.{column}: row {row} outside 0..{self.degree - 1}")
        return row

    def _fixed_value(self, column, row):  # Fixed cells are materialized lazily, one row at a time.
        key = (column, row)
        v = self._fixed_cache.get(key)
        if v is None:
            v = self.field(self._fixed[column].value_at(row))
            self._fixed_cache[key] = v
        return v

    def is_fixed(self, column): return column in self._fixed

    def set(self, column, row, value):  # Write-once witness assignment.
        row = self._row(column, row)
        value = self.field.coerce(value)
        if column in self._fixed:
            if self._fixed_value(column, row) != value:
                raise Redefinition(f"{self.name}.{column}[{row}] is fixed to {self._fixed_value(column, row)}, got {value}")
            return
        cells = self._witness.get(column)
        if cells is None:
            raise UndeclaredColumn(f"{self.name} has no column {column!r}")
        old = cells[row]
        if old is not None:
            if old != value:
                raise Redefinition(f"{self.name}.{column}[{row}] already {old}, got {value}")
            return
        if self.frozen:
            raise Redefinition(f"{self.name} is finalized; cannot assign {column}[{row}]")
        cells[row] = value

    def maybe_get(self, column, row):  # Value or None when unassigned.
        row = self._row(column, row)
        if column in self._fixed:
            return self._fixed_value(column, row)
        cells = self._witness.get(column)
        if cells is None:
            raise UndeclaredColumn(f"{self.name} has no column {column!r}")
        return cells[row]

    def get(self, column, row):
        v = self.maybe_get(column, row)
        if v is None:
            raise Unassigned(f"{self.name}.{column}[{row}] read before assignment")
        return v

    def is_assigned(self, column, row): return self.maybe_get(column, row) is not None

    def unassigned_rows(self, column):
        return [i for i, v in enumerate(self._witness.get(column, ())) if v is None]

    def column(self, column):  # Full value list (fixed columns materialized for this call only).
        if column in self._fixed:
            return [self._fixed_value(column, i) for i in range(self.degree)]
        return [self.get(column, i) for i in range(self.degree)]

    def finalize(self):  # Freeze; every witness column must be complete.
        holes = {c: rows for c in self._witness if (rows := self.unassigned_rows(c))}
        if holes:
            desc = ", ".join(f"{c}{rows[:4]}{'...' if len(rows) > 4 else ''}" for c, rows in holes.items())
            raise IncompleteColumn(f"{self.name}: unassigned witness cells: {desc}")
        self.frozen = True
        return self

    def as_ints(self):  # name -> canonical ints, for comparisons and downstream commitment.
        return {c: [int(v) for v in self.column(c)] for c in (*self._fixed, *self._witness)}

    def __repr__(self): return f"ColumnStore({self.name!r}, degree={self.degree}, witness={len(self._witness)})"
