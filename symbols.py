"""Semantic index over a loaded machine tree.

Collects every named thing an editor or report would point at (machines,
callables, registers, columns) together with the details shown when hovering
over it, and renders that hover text as Markdown.
"""

from __future__ import annotations  # keep type hints lightweight

from dataclasses import dataclass, field  # symbol records
from enum import StrEnum  # typed string identifiers

from machine import ColumnKind, RegisterKind


class SymbolKind(StrEnum):
    Machine = "machine"
    Instruction = "instruction"
    Operation = "operation"
    Register = "register"
    Column = "column"


@dataclass(frozen=True)
class Symbol:
    kind: SymbolKind
    name: str
    path: str  # owning machine instance path, e.g. "MainVM.subvm"
    details: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def qualified(self): return self.path if self.kind == SymbolKind.Machine else f"{self.path}.{self.name}"


_REGISTER_TYPE = {RegisterKind.Pc: "@pc", RegisterKind.Assignment: "<=", RegisterKind.Write: ""}


class SemanticIndex:  # name -> symbols, in definition order.
    def __init__(self):
        self.symbols = []
        self._by_name = {}

    def add(self, symbol):
        self.symbols.append(symbol)
        self._by_name.setdefault(symbol.name, []).append(symbol)
        return len(self.symbols) - 1

    def find(self, name, kind=None):  # All symbols called `name` (optionally of one kind).
        out = self._by_name.get(name, [])
        return [s for s in out if kind is None or s.kind == kind]

    def lookup(self, qualified):  # Exact "path.name" (or machine path) match, or None.
        for s in self.symbols:
            if s.qualified == qualified:
                return s
        return None

    def of_kind(self, kind): return [s for s in self.symbols if s.kind == kind]

    def __len__(self): return len(self.symbols)


def build_index(machine, path=None, index=None):  # Walk the machine tree depth-first.
    index = SemanticIndex() if index is None else index
    path = path or machine.name
    index.add(Symbol(SymbolKind.Machine, machine.name, path, {"degree": machine.degree, "instance": path}))
    for r in machine.registers:
        index.add(Symbol(SymbolKind.Register, r.name, path, {"type": _REGISTER_TYPE[r.kind]}))
    for c in machine.columns:
        details = {"column": c.kind.value}
        if c.kind == ColumnKind.Witness and c.inverse_of:
            details["inverse_of"] = c.inverse_of
        index.add(Symbol(SymbolKind.Column, c.name, path, details))
    for ins in machine.instructions:
        details = {"inputs": ", ".join(p.name if not p.label else f"{p.name}: label" for p in ins.params),
                   "outputs": ", ".join(ins.outputs)}
        if ins.link is not None:
            details["link"] = f"{ins.link.instance}.{ins.link.operation}"
        index.add(Symbol(SymbolKind.Instruction, ins.name, path, details))
    for op in machine.operations:
        n_in, n_out = machine.operation_arity(op)
        index.add(Symbol(SymbolKind.Operation, op.name, path,
                         {"operation_id": op.operation_id, "inputs": n_in, "outputs": n_out}))
    for sub in machine.submachines:
        build_index(sub.machine, f"{path}.{sub.name}", index)
    return index


def hover(symbol):  # Markdown hover text for one symbol.
    d = symbol.details
    if symbol.kind == SymbolKind.Machine:
        return f"### Machine\n\nName: {symbol.name}\nDegree: {d['degree']}\n"
    if symbol.kind == SymbolKind.Register:
        if not d.get("type"):
            return f"### Register\n\nName: {symbol.name}\n"
        return f"### Register\n\nName: {symbol.name}\nType: {d['type']}\n"
    if symbol.kind == SymbolKind.Instruction:
        text = f"### Instruction\n\nName: {symbol.name}\n\nInputs: {d['inputs']}\n\nOutputs: {d['outputs']}\n"
        if "link" in d:
            text += f"\nLink: {d['link']}\n"
        return text
    if symbol.kind == SymbolKind.Operation:
        return (f"### Operation\n\nName: {symbol.name}\n\nId: {d['operation_id']}\n\n"
                f"Inputs: {d['inputs']}\n\nOutputs: {d['outputs']}\n")
    text = f"### Definition\n\nName: {symbol.name}\nKind: {d['column']}\n"
    if "inverse_of" in d:
        text += f"Inverse of: {d['inverse_of']}\n"
    return text
