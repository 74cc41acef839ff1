from __future__ import annotations  # keep type hints lightweight

from dataclasses import dataclass  # immutable definition records
from enum import StrEnum  # typed string identifiers
from functools import cached_property  # derived layout computed once per definition
from typing import Callable

from expressions import Expr, Number, Ref, lift, parse_equation, parse_expr, split_top_level


class MachineError(Exception):  # Base class for structural (fatal) errors.
    pass


class DefinitionError(MachineError):  # Malformed machine definition (degree, identity, program shape).
    pass


class UndeclaredColumn(DefinitionError):  # Reference to a column/register the machine does not declare.
    pass


class UnknownInstruction(DefinitionError):  # Program statement names an undeclared instruction.
    pass


class ArityMismatch(DefinitionError):  # Wrong operand/output count for an instruction or operation.
    pass


class MissingLabel(DefinitionError):  # Jump target label not found in the enclosing function.
    pass


class SubMachineNotFound(DefinitionError):  # Link names an undeclared sub-machine instance.
    pass


class SubMachineOperationNotFound(DefinitionError):  # Link names an operation the callee does not expose.
    pass


START = "_start"  # 1 on the first row of each function invocation
HALT = "_halt"  # 1 on `return` rows and on padding rows after them


class ColumnKind(StrEnum):
    Fixed = "fixed"
    Witness = "witness"


class RegisterKind(StrEnum):
    Pc = "pc"  # reg pc[@pc]
    Assignment = "assignment"  # reg X[<=]
    Write = "write"  # reg A


class LookupKind(StrEnum):
    Containment = "in"  # every selected source tuple appears among selected target tuples
    Permutation = "is"  # selected source and target multisets are equal


class BusKind(StrEnum):
    Send = "send"
    Receive = "receive"


@dataclass(frozen=True)
class FixedColumn:  # Column known before execution: literal, periodic pattern, or row-index function.
    name: str
    values: tuple[int, ...] = ()
    periodic: bool = False
    fn: Callable[[int], int] | None = None
    kind = ColumnKind.Fixed

    @classmethod
    def explicit(cls, name, values): return cls(name, tuple(int(v) for v in values))  # col fixed x = [1, 5, 2]

    @classmethod
    def cyclic(cls, name, pattern): return cls(name, tuple(int(v) for v in pattern), periodic=True)  # [0, 0, 0, 1]*

    @classmethod
    def from_row(cls, name, fn): return cls(name, fn=fn)  # col fixed STEP(i) { i }

    def check_degree(self, degree):  # Raise unless this column can fill exactly `degree` rows.
        if self.fn is not None:
            return
        if not self.values:
            raise DefinitionError(f"fixed column {self.name} has no values")
        if self.periodic:
            if degree % len(self.values) != 0:
                raise DefinitionError(f"period {len(self.values)} of {self.name} does not divide degree {degree}")
        elif len(self.values) != degree:
            raise DefinitionError(f"fixed column {self.name} has {len(self.values)} values, degree is {degree}")

    def value_at(self, row):  # Integer value at `row` (periodic patterns are indexed, never expanded).
        if self.fn is not None:
            return int(self.fn(row))
        if self.periodic:
            return self.values[row % len(self.values)]
        return self.values[row]


@dataclass(frozen=True)
class WitnessColumn:  # Column produced by execution; `inverse_of` marks a zero-test inverse helper.
    name: str
    inverse_of: str | None = None
    kind = ColumnKind.Witness


@dataclass(frozen=True)
class Register:
    name: str
    kind: RegisterKind = RegisterKind.Write


@dataclass(frozen=True)
class Identity:  # Polynomial that must vanish on every row.
    expr: Expr
    label: str = ""

    @classmethod
    def parse(cls, text):  # "X + Y = Z" or a bare polynomial "XIsZero * X".
        text = str(text)
        if "=" in text:
            lhs, rhs = parse_equation(text)
            return cls(lhs - rhs, text.strip())
        return cls(parse_expr(text), text.strip())

    def gated(self, flag):  # flag * expr, labelled after the original identity.
        return Identity(Ref(flag) * self.expr, f"{flag}: {self.label or self.expr}")

    def __str__(self): return self.label or f"{self.expr} = 0"


@dataclass(frozen=True)
class Lookup:  # selector $ [source...] in|is selector $ [target...]; target may live in a sub-machine.
    source: tuple[Expr, ...]
    target: tuple[Expr, ...]
    source_selector: Expr = Number(1)
    target_selector: Expr = Number(1)
    kind: LookupKind = LookupKind.Containment
    target_machine: str | None = None  # sub-machine instance holding the target columns
    label: str = ""

    @classmethod
    def parse(cls, text):  # "[x, y] in [INC_X, INC_Y]" / "[1, ADDR, X] is m_selector $ [m_is_write, m_addr, m_value]".
        text = str(text)
        for kind in (LookupKind.Containment, LookupKind.Permutation):
            parts = _split_keyword(text, f" {kind.value} ")
            if parts is not None:
                break
        else:
            raise DefinitionError(f"lookup needs ' in ' or ' is ': {text!r}")
        src_sel, src = _parse_side(parts[0])
        tgt_sel, tgt = _parse_side(parts[1])
        if len(src) != len(tgt):
            raise ArityMismatch(f"lookup sides differ in width: {text!r}")
        return cls(src, tgt, src_sel, tgt_sel, kind, label=text.strip())

    def rename(self, mapping):  # Copy with references renamed on both sides.
        if not mapping:
            return self
        return Lookup(tuple(e.rename(mapping) for e in self.source), tuple(e.rename(mapping) for e in self.target),
                      self.source_selector.rename(mapping), self.target_selector.rename(mapping), self.kind,
                      self.target_machine, self.label)

    def gated(self, flag):  # AND the source selector with an instruction flag.
        sel = Ref(flag) if self.source_selector == Number(1) else Ref(flag) * self.source_selector
        return Lookup(self.source, self.target, sel, self.target_selector, self.kind, self.target_machine,
                      f"{flag}: {self.label}")

    def __str__(self): return self.label or f"{list(map(str, self.source))} {self.kind.value} {list(map(str, self.target))}"


def _split_keyword(text, kw):  # Split once on `kw` outside brackets, or None.
    depth = 0
    for i, ch in enumerate(text):
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif depth == 0 and text.startswith(kw, i):
            return text[:i], text[i + len(kw):]
    return None


def _parse_side(text):  # "sel $ [a, b]" or "[a, b]" -> (selector, tuple).
    text = text.strip()
    sel = Number(1)
    if "$" in text:
        s, text = text.split("$", 1)
        sel = parse_expr(s)
        text = text.strip()
    if not (text.startswith("[") and text.endswith("]")):
        raise DefinitionError(f"expected bracketed tuple, got {text!r}")
    return sel, tuple(parse_expr(p) for p in split_top_level(text[1:-1]))


@dataclass(frozen=True)
class BusEntry:  # bus_send / bus_receive of a tuple with a multiplicity.
    bus_id: int
    values: tuple[Expr, ...]
    multiplicity: Expr
    kind: BusKind = BusKind.Send

    @classmethod
    def send(cls, bus_id, values, multiplicity=1):
        return cls(int(bus_id), tuple(lift(v) for v in values), lift(multiplicity), BusKind.Send)

    @classmethod
    def receive(cls, bus_id, values, multiplicity=1):
        return cls(int(bus_id), tuple(lift(v) for v in values), lift(multiplicity), BusKind.Receive)

    def __str__(self): return f"bus_{self.kind.value}({self.bus_id}, [{', '.join(map(str, self.values))}], {self.multiplicity})"


@dataclass(frozen=True)
class Param:  # Instruction parameter: a register, or a `label` resolved to a pc value.
    name: str
    label: bool = False


@dataclass(frozen=True)
class Link:  # `link => Z = subvm.compute(X, Y)`
    instance: str
    operation: str
    args: tuple[Expr, ...] = ()
    outputs: tuple[str, ...] = ()


@dataclass(frozen=True)
class Instruction:
    name: str
    params: tuple[Param, ...] = ()
    outputs: tuple[str, ...] = ()
    body: tuple[Identity | Lookup, ...] = ()
    link: Link | None = None

    @property
    def inputs(self): return tuple(p.name for p in self.params if not p.label)  # register params

    @property
    def labels(self): return tuple(p.name for p in self.params if p.label)  # label params

    @property
    def flag(self): return f"instr_{self.name}"  # 1 on rows issuing this instruction

    def param_column(self, label): return f"instr_{self.name}_param_{label}"

    def _label_columns(self): return {l: self.param_column(l) for l in self.labels}

    def identities(self):  # Body identities with label params read from their param columns.
        m = self._label_columns()
        return tuple(Identity(b.expr.rename(m), b.label) for b in self.body if isinstance(b, Identity))

    def lookups(self):
        m = self._label_columns()
        return tuple(b.rename(m) for b in self.body if isinstance(b, Lookup))


def instr(name, params="", outputs="", *body, link=None) -> Instruction:  # instr("add", "X, Y", "Z", "X + Y = Z")
    ps = []
    for p in split_top_level(params):
        nm, _, ty = p.partition(":")
        ps.append(Param(nm.strip(), label=ty.strip() == "label"))
    outs = tuple(o.strip() for o in split_top_level(outputs))
    items = tuple(b if isinstance(b, (Identity, Lookup)) else _parse_body(b) for b in body)
    lk = None
    if link is not None:
        if isinstance(link, Link):
            lk = link
        else:
            instance, _, op = str(link).partition(".")
            lk = Link(instance.strip(), op.strip(), tuple(Ref(p.name) for p in ps if not p.label), outs)
    return Instruction(name, tuple(ps), outs, items, lk)


def _parse_body(text):
    text = str(text)
    return Lookup.parse(text) if text.lstrip().startswith("[") or "$" in text else Identity.parse(text)


@dataclass(frozen=True)
class Query:  # ${ Query::Input(0, 1) } -> resolve("input", (0, 1))
    kind: str
    args: tuple[int, ...] = ()

    def __str__(self): return f"Query::{self.kind}({', '.join(map(str, self.args))})"


@dataclass(frozen=True)
class Call:  # instruction invocation; label params are passed as bare names
    instruction: str
    args: tuple[Expr, ...] = ()

    def __str__(self): return f"{self.instruction}({', '.join(map(str, self.args))})"


@dataclass(frozen=True)
class Assign:  # A <=X= expr ; X <== mload() ; Y, Z <=Y,Z= square_and_double(X)
    targets: tuple[str, ...]
    value: Expr | Query | Call
    via: tuple[str, ...] | None = None

    def __str__(self):
        arrow = f"<={','.join(self.via)}=" if self.via else "<=="
        return f"{', '.join(self.targets)} {arrow} {self.value}"


@dataclass(frozen=True)
class Label:
    name: str


@dataclass(frozen=True)
class Return:
    values: tuple[Expr, ...] = ()

    def __str__(self): return f"return {', '.join(map(str, self.values))}".rstrip()


def assign(targets, value, via=None) -> Assign:  # assign("A", "X + 1", via="X")
    ts = tuple(t.strip() for t in split_top_level(targets))
    vs = None if via is None else tuple(v.strip() for v in split_top_level(via))
    if isinstance(value, str):
        value = lift(value)
    elif isinstance(value, int):
        value = Number(value)
    return Assign(ts, value, vs)


def call(instruction, *args) -> Call:  # call("jmpz", "CNT", "done")
    return Call(instruction, tuple(lift(a) for a in args))


def ret(*values) -> Return:
    return Return(tuple(lift(v) for v in values))


@dataclass(frozen=True)
class Function:  # function compute x: field, y: field -> field { ... }
    name: str
    params: tuple[str, ...] = ()
    outputs: int = 0
    statements: tuple = ()


@dataclass(frozen=True)
class Operation:  # Callable entry point; VM machines name a function, block machines name columns.
    name: str
    operation_id: int = 0
    function: str | None = None
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()


@dataclass(frozen=True)
class SubMachine:  # `SubVM subvm;` -- an owned instance of another machine.
    name: str
    machine: Machine


@dataclass(frozen=True)
class Program:  # Flattened statement ROM with per-function starts and label table.
    statements: tuple  # (function name, statement) per pc value
    starts: dict
    labels: dict  # (function, label) -> pc

    def label_pc(self, function, label):
        try:
            return self.labels[(function, label)]
        except KeyError:
            raise MissingLabel(f"label {label!r} not found in function {function!r}") from None


@dataclass(frozen=True)
class Machine:
    name: str
    degree: int
    columns: tuple = ()
    registers: tuple = ()
    instructions: tuple = ()
    identities: tuple = ()
    lookups: tuple = ()
    buses: tuple = ()
    submachines: tuple = ()
    operations: tuple = ()
    functions: tuple = ()
    latch: str | None = None
    operation_id: str | None = None
    entry: str = "main"

    def __post_init__(self):  # Normalize list inputs and string identities/lookups.
        for name in ("columns", "registers", "instructions", "buses", "submachines", "operations", "functions"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        object.__setattr__(self, "identities", tuple(
            i if isinstance(i, Identity) else Identity.parse(i) for i in self.identities))
        object.__setattr__(self, "lookups", tuple(
            lk if isinstance(lk, Lookup) else Lookup.parse(lk) for lk in self.lookups))

    # -- lookup helpers ---------------------------------------------------

    @cached_property
    def register_map(self): return {r.name: r for r in self.registers}

    @cached_property
    def instruction_map(self): return {i.name: i for i in self.instructions}

    @cached_property
    def submachine_map(self): return {s.name: s for s in self.submachines}

    @cached_property
    def function_map(self): return {f.name: f for f in self.functions}

    @cached_property
    def fixed(self): return {c.name: c for c in self.columns if c.kind == ColumnKind.Fixed}

    @property
    def pc(self):  # Name of the program-counter register, if any.
        for r in self.registers:
            if r.kind == RegisterKind.Pc:
                return r.name
        return None

    @property
    def is_vm(self): return self.pc is not None

    @cached_property
    def inverse_helpers(self): return {c.name: c.inverse_of for c in self.columns if getattr(c, "inverse_of", None)}

    # -- call boundary ----------------------------------------------------

    @cached_property
    def call_columns(self):  # Synthesized call-boundary columns of a VM that exposes operations.
        if not (self.is_vm and self.operations):
            return {}
        fns = [self.function_map[op.function or op.name] for op in self.operations if (op.function or op.name) in self.function_map]
        n_in = max((len(f.params) for f in fns), default=0)
        n_out = max((f.outputs for f in fns), default=0)
        return {
            "operation_id": self.operation_id or "_operation_id",
            "latch": self.latch or "_latch",
            "inputs": tuple(f"_input_{i}" for i in range(n_in)),
            "outputs": tuple(f"_output_{i}" for i in range(n_out)),
        }

    def call_latch(self) -> Expr:  # Selector marking rows where a call's tuple is complete.
        latch = self.call_columns.get("latch") or self.latch
        return Ref(latch) if latch else Number(1)

    def call_tuple(self, op: Operation) -> tuple[Expr, ...]:  # [operation_id, inputs..., outputs...]
        if self.call_columns:
            fn = self.function_map[op.function or op.name]
            cc = self.call_columns
            head = Ref(cc["operation_id"])
            ins = tuple(Ref(c) for c in cc["inputs"][: len(fn.params)])
            outs = tuple(Ref(c) for c in cc["outputs"][: fn.outputs])
            return (head,) + ins + outs
        head = Ref(self.operation_id) if self.operation_id else Number(op.operation_id)
        return (head,) + tuple(Ref(c) for c in op.inputs) + tuple(Ref(c) for c in op.outputs)

    def operation_arity(self, op: Operation):  # (inputs, outputs)
        if self.is_vm:
            fn = self.function_map[op.function or op.name]
            return len(fn.params), fn.outputs
        return len(op.inputs), len(op.outputs)

    # -- derived layout ---------------------------------------------------

    @cached_property
    def witness_names(self) -> tuple[str, ...]:  # Every witness column, declared or synthesized, in stable order.
        out = [c.name for c in self.columns if c.kind == ColumnKind.Witness]
        out += [r.name for r in self.registers]
        for ins in self.instructions:
            if self.is_vm:
                out.append(ins.flag)
            out += [ins.param_column(l) for l in ins.labels]
        cc = self.call_columns
        if cc:
            out += [cc["operation_id"], cc["latch"], *cc["inputs"], *cc["outputs"]]
        if self.is_vm:
            out += [START, HALT, *self.write_selectors.values()]
        return tuple(n for n in dict.fromkeys(out) if n not in self.fixed)

    @cached_property
    def column_names(self) -> frozenset[str]:
        return frozenset(self.witness_names) | frozenset(self.fixed)

    @cached_property
    def all_identities(self) -> tuple[Identity, ...]:  # Declared identities + flag-gated instruction bodies.
        out = list(self.identities)
        for ins in self.instructions:
            out += [i.gated(ins.flag) if self.is_vm else i for i in ins.identities()]
        return tuple(out) + self.transition_identities

    @cached_property
    def write_selectors(self) -> dict:  # (via register, write register) -> selector column, per program assignment.
        out = {}
        if not self.is_vm:
            return out
        for fn in self.functions:
            for st in fn.statements:
                if not isinstance(st, Assign):
                    continue
                via = st.via
                if isinstance(st.value, Call) and via is None:
                    ins = self.instruction_map.get(st.value.instruction)
                    via = ins.outputs if ins is not None else ()
                for target, v in zip(st.targets, via or ()):
                    reg = self.register_map.get(target)
                    if reg is not None and reg.kind == RegisterKind.Write:
                        out.setdefault((v, target), f"reg_write_{v}_{target}")
        return out

    @cached_property
    def jump_instructions(self) -> tuple[Instruction, ...]:  # Instructions whose body constrains pc'.
        return tuple(i for i in self.instructions
                     if any(r.next and r.name == self.pc for b in i.identities() for r in b.expr.refs()))

    @cached_property
    def transition_identities(self) -> tuple[Identity, ...]:  # Register and pc updates of a VM as row identities.
        if not self.is_vm:
            return ()
        start, halt, pc = Ref(START), Ref(HALT), Ref(self.pc)
        gate = 1 - start.shifted  # no constraint into the first row of an invocation
        out = [Identity(start * (1 - start)), Identity(halt * (1 - halt))]
        step = pc.shifted - pc - 1 + halt  # pc advances by one, or stays once halted
        if self.jump_instructions:
            not_jump = Number(1)
            for ins in self.jump_instructions:
                not_jump = not_jump - Ref(ins.flag)
            step = not_jump * step
        out.append(Identity(gate * step))
        for r in self.registers:
            if r.kind != RegisterKind.Write:
                continue
            reg = Ref(r.name)
            update = reg
            for (via, target), col in self.write_selectors.items():
                if target == r.name:
                    update = update + Ref(col) * (Ref(via) - reg)
            out.append(Identity(gate * (reg.shifted - update)))
        return tuple(out)

    @cached_property
    def defining_constraints(self) -> dict:  # witness column -> first identity/lookup that can determine its cells.
        witness = set(self.witness_names)
        out = {}
        for ident in self.all_identities:
            for n in sorted(ident.expr.names() & witness):
                out.setdefault(n, str(ident))
        for lk in self.all_lookups:
            exprs = lk.source + (lk.source_selector,)
            if lk.target_machine is None:
                exprs += lk.target + (lk.target_selector,)
            for e in exprs:
                for n in sorted(e.names() & witness):
                    out.setdefault(n, str(lk))
        return out

    @cached_property
    def all_lookups(self) -> tuple[Lookup, ...]:  # Declared lookups + gated body lookups + link lookups.
        out = list(self.lookups)
        for ins in self.instructions:
            out += [lk.gated(ins.flag) if self.is_vm else lk for lk in ins.lookups()]
            if ins.link is not None:
                out.append(self.link_lookup(ins))
        return tuple(out)

    def link_lookup(self, ins: Instruction) -> Lookup:  # Parent row tuple must match a callee call row.
        lk = ins.link
        callee = self.submachine(lk.instance).machine
        op = callee.operation(lk.operation)
        src = (Number(op.operation_id),) + tuple(lk.args) + tuple(Ref(o) for o in lk.outputs)
        return Lookup(src, callee.call_tuple(op), Ref(ins.flag) if self.is_vm else Number(1),
                      callee.call_latch(), LookupKind.Containment, lk.instance,
                      f"link {ins.name} => {lk.instance}.{lk.operation}")

    def submachine(self, name) -> SubMachine:
        try:
            return self.submachine_map[name]
        except KeyError:
            raise SubMachineNotFound(f"machine {self.name} has no sub-machine {name!r}") from None

    def operation(self, name) -> Operation:
        for op in self.operations:
            if op.name == name:
                return op
        raise SubMachineOperationNotFound(f"machine {self.name} has no operation {name!r}")

    @cached_property
    def program(self) -> Program:  # Labels resolve to the pc of the next statement in the same function.
        stmts, starts, labels = [], {}, {}
        for fn in self.functions:
            starts[fn.name] = len(stmts)
            pending = []
            for st in fn.statements:
                if isinstance(st, Label):
                    pending.append(st.name)
                    continue
                for l in pending:
                    labels[(fn.name, l)] = len(stmts)
                pending = []
                stmts.append((fn.name, st))
            if pending:
                raise DefinitionError(f"label(s) {pending} at end of function {fn.name} mark no statement")
        return Program(tuple(stmts), starts, labels)

    # -- validation -------------------------------------------------------

    def validate(self):  # Raise the first structural error found in this machine tree.
        d = int(self.degree)
        if d <= 0 or d & (d - 1):
            raise DefinitionError(f"degree of {self.name} must be a power of two, got {d}")
        for c in self.fixed.values():
            c.check_degree(d)
        for sub in self.submachines:
            sub.machine.validate()
        known = self.column_names
        for h, src in self.inverse_helpers.items():
            if src not in known:
                raise UndeclaredColumn(f"{self.name}: inverse helper {h} refers to undeclared {src!r}")
        for ident in self.all_identities:
            _check_refs(self, ident.expr, known, str(ident))
        for lk in self.all_lookups:
            target_known = known
            if lk.target_machine is not None:
                target_known = self.submachine(lk.target_machine).machine.column_names
            for e in lk.source + (lk.source_selector,):
                _check_refs(self, e, known, str(lk))
            for e in lk.target + (lk.target_selector,):
                _check_refs(self, e, target_known, str(lk))
        for bus in self.buses:
            for e in bus.values + (bus.multiplicity,):
                _check_refs(self, e, known, str(bus))
        for ins in self.instructions:
            for name in ins.inputs + ins.outputs:
                if name not in self.register_map:
                    raise UndeclaredColumn(f"{self.name}: instruction {ins.name} uses undeclared register {name!r}")
            if ins.link is not None:
                callee = self.submachine(ins.link.instance).machine
                op = callee.operation(ins.link.operation)
                n_in, n_out = callee.operation_arity(op)
                if (n_in, n_out) != (len(ins.link.args), len(ins.link.outputs)):
                    raise ArityMismatch(f"{self.name}: link {ins.name} passes {len(ins.link.args)}->{len(ins.link.outputs)}, "
                                        f"{ins.link.instance}.{op.name} takes {n_in}->{n_out}")
        self._validate_operations()
        if self.is_vm:
            self._validate_program()
        return self

    def _validate_operations(self):
        ids = [op.operation_id for op in self.operations]
        if len(set(ids)) != len(ids):
            raise DefinitionError(f"{self.name}: duplicate operation ids {ids}")
        for op in self.operations:
            if self.is_vm:
                if (op.function or op.name) not in self.function_map:
                    raise DefinitionError(f"{self.name}: operation {op.name} names unknown function")
            else:
                for c in op.inputs + op.outputs:
                    if c not in self.column_names:
                        raise UndeclaredColumn(f"{self.name}: operation {op.name} uses undeclared column {c!r}")
        if len(self.operations) > 1 and not self.is_vm and self.operation_id is None:
            raise DefinitionError(f"{self.name}: several operations need an operation_id column")

    def _validate_program(self):
        prog = self.program
        if self.operations == () and self.entry not in self.function_map:
            raise DefinitionError(f"{self.name}: entry function {self.entry!r} not found")
        for fn in self.functions:
            body = [s for s in fn.statements if not isinstance(s, Label)]
            if not body or not isinstance(body[-1], Return):
                raise DefinitionError(f"{self.name}: function {fn.name} must end with return")
            clash = sorted(set(fn.params) & self.column_names)
            if clash:
                raise DefinitionError(f"{self.name}.{fn.name}: parameters {clash} shadow columns or registers")
            env = set(fn.params) | self.column_names
            for st in body:
                self._validate_statement(fn, st, env, prog)

    def _validate_statement(self, fn, st, env, prog):
        if isinstance(st, Return):
            if len(st.values) != fn.outputs:
                raise ArityMismatch(f"{self.name}.{fn.name}: return of {len(st.values)} values, expected {fn.outputs}")
            for v in st.values:
                _check_refs(self, v, env, str(st))
            return
        if isinstance(st, Assign):
            if isinstance(st.value, Call):
                ins = self._validate_call(fn, st.value, env, prog)
                via = st.via if st.via is not None else ins.outputs
                if tuple(via) != ins.outputs:
                    raise ArityMismatch(f"{self.name}: {st} assigns via {via}, {ins.name} outputs {ins.outputs}")
            else:
                if st.via is None or len(st.via) != 1:
                    raise ArityMismatch(f"{self.name}: {st} needs exactly one assignment register")
                if isinstance(st.value, Expr):
                    _check_refs(self, st.value, env, str(st))
                via = st.via
            if len(st.targets) != len(via):
                raise ArityMismatch(f"{self.name}: {st} has {len(st.targets)} targets for {len(via)} values")
            for r in tuple(st.targets) + tuple(via):
                if r not in self.register_map:
                    raise UndeclaredColumn(f"{self.name}: {st} uses undeclared register {r!r}")
            return
        if isinstance(st, Call):
            self._validate_call(fn, st, env, prog)
            return
        raise DefinitionError(f"{self.name}: unsupported statement {st!r}")

    def _validate_call(self, fn, c, env, prog):
        ins = self.instruction_map.get(c.instruction)
        if ins is None:
            raise UnknownInstruction(f"{self.name}: unknown instruction {c.instruction!r}")
        if len(c.args) != len(ins.params):
            raise ArityMismatch(f"{self.name}: {ins.name} takes {len(ins.params)} operands, got {len(c.args)}")
        for p, a in zip(ins.params, c.args):
            if p.label:
                if not isinstance(a, Ref):
                    raise DefinitionError(f"{self.name}: label operand of {ins.name} must be a name, got {a}")
                prog.label_pc(fn.name, a.name)
            else:
                _check_refs(self, a, env, str(c))
        return ins


def _check_refs(machine, expr, known, where):
    for r in expr.refs():
        if r.name not in known:
            raise UndeclaredColumn(f"{machine.name}: {where!r} references undeclared {r.name!r}")
