from __future__ import annotations  # keep type hints lightweight

from dataclasses import dataclass, field  # frozen diagnostic records


def _fmt(values): return "(" + ", ".join(str(int(v)) for v in values) + ")"


@dataclass(frozen=True)
class ConstraintViolation:  # Identity nonzero at a row.
    machine: str
    identity: str
    row: int
    value: int = 0

    def __str__(self): return f"{self.machine}: identity `{self.identity}` is {self.value} at row {self.row}"


@dataclass(frozen=True)
class LookupMiss:  # Selected source tuple without a selected target row (or surplus target for `is`).
    machine: str
    lookup: str
    row: int
    values: tuple = ()
    side: str = "source"

    def __str__(self): return f"{self.machine}: lookup `{self.lookup}` {self.side} row {self.row} {_fmt(self.values)} unmatched"


@dataclass(frozen=True)
class BusImbalance:  # Tuple whose signed multiplicity does not net to zero over a bus.
    bus_id: int
    values: tuple
    net_multiplicity: int

    def __str__(self): return f"bus {self.bus_id}: tuple {_fmt(self.values)} nets to {self.net_multiplicity}"


@dataclass(frozen=True)
class NonInvertibleConstraint:  # Instruction output not determined by its body at this row.
    machine: str
    instruction: str
    row: int
    unknowns: tuple = ()

    def __str__(self):
        return f"{self.machine}: `{self.instruction}` cannot be solved for {', '.join(self.unknowns)} at row {self.row}"


@dataclass(frozen=True)
class MissingQueryResponse:  # Query callback returned nothing for a free-input register.
    machine: str
    query: str
    row: int

    def __str__(self): return f"{self.machine}: no response to {self.query} at row {self.row}"


@dataclass
class Report:  # Accumulated semantic diagnostics of one run (empty = valid witness).
    violations: list = field(default_factory=list)

    def add(self, diag): self.violations.append(diag)

    def extend(self, diags): self.violations.extend(diags)

    @property
    def ok(self): return not self.violations

    def of(self, kind): return [v for v in self.violations if isinstance(v, kind)]

    @property
    def constraint_violations(self): return self.of(ConstraintViolation)

    @property
    def lookup_misses(self): return self.of(LookupMiss)

    @property
    def bus_imbalances(self): return self.of(BusImbalance)

    def __len__(self): return len(self.violations)

    def __iter__(self): return iter(self.violations)

    def __str__(self):
        if self.ok:
            return "ok"
        return "\n".join(str(v) for v in self.violations)
