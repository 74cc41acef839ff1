from __future__ import annotations  # keep type hints lightweight

import re  # tokenizer
from dataclasses import dataclass  # immutable expression nodes


class ExpressionError(ValueError):  # Raised on malformed expression text.
    pass


class Expr:  # Algebraic expression over column references (operators build trees).
    def __add__(self, other): return BinaryOp("+", self, lift(other))
    def __radd__(self, other): return BinaryOp("+", lift(other), self)
    def __sub__(self, other): return BinaryOp("-", self, lift(other))
    def __rsub__(self, other): return BinaryOp("-", lift(other), self)
    def __mul__(self, other): return BinaryOp("*", self, lift(other))
    def __rmul__(self, other): return BinaryOp("*", lift(other), self)
    def __neg__(self): return Neg(self)

    def refs(self) -> set[Ref]:  # All column/register references in this expression.
        out = set()
        self._collect(out)
        return out

    def names(self) -> set[str]:  # Referenced names regardless of row offset.
        return {r.name for r in self.refs()}

    def rename(self, mapping):  # Copy with references renamed per `mapping` (row offsets kept).
        if not mapping:
            return self
        return self._rename(mapping)


@dataclass(frozen=True, eq=True)
class Number(Expr):  # Integer literal (reduced into the field at evaluation time).
    value: int

    def _collect(self, out): pass

    def _rename(self, mapping): return self

    def evaluate(self, resolve, field): return field(self.value)

    def degree_in(self, ref): return 0

    def __str__(self): return str(self.value)


@dataclass(frozen=True, eq=True)
class Ref(Expr):  # Reference to a column or register, optionally on the next row (`x'`).
    name: str
    next: bool = False

    def _collect(self, out): out.add(self)

    def _rename(self, mapping): return Ref(mapping.get(self.name, self.name), self.next)

    def evaluate(self, resolve, field): return resolve(self)

    def degree_in(self, ref): return 1 if self == ref else 0

    @property
    def shifted(self): return Ref(self.name, True)  # `name'`

    def __str__(self): return f"{self.name}'" if self.next else self.name


@dataclass(frozen=True, eq=True)
class Neg(Expr):  # Unary minus.
    inner: Expr

    def _collect(self, out): self.inner._collect(out)

    def _rename(self, mapping): return Neg(self.inner._rename(mapping))

    def evaluate(self, resolve, field): return -self.inner.evaluate(resolve, field)

    def degree_in(self, ref): return self.inner.degree_in(ref)

    def __str__(self): return f"-{_wrap(self.inner, 3)}"


_PREC = {"+": 1, "-": 1, "*": 2}


@dataclass(frozen=True, eq=True)
class BinaryOp(Expr):  # Binary +, -, * node.
    op: str
    left: Expr
    right: Expr

    def _collect(self, out):
        self.left._collect(out)
        self.right._collect(out)

    def _rename(self, mapping): return BinaryOp(self.op, self.left._rename(mapping), self.right._rename(mapping))

    def evaluate(self, resolve, field):
        a = self.left.evaluate(resolve, field)
        b = self.right.evaluate(resolve, field)
        if self.op == "+":
            return a + b
        if self.op == "-":
            return a - b
        return a * b

    def degree_in(self, ref):  # Structural degree of this polynomial in `ref`.
        a = self.left.degree_in(ref)
        b = self.right.degree_in(ref)
        return a + b if self.op == "*" else max(a, b)

    def __str__(self):
        p = _PREC[self.op]
        left = _wrap(self.left, p)
        right = _wrap(self.right, p + 1 if self.op == "-" else p)
        return f"{left} {self.op} {right}"


def _wrap(e, min_prec):  # Parenthesize sub-expression when it binds looser than its context.
    if isinstance(e, BinaryOp) and _PREC[e.op] < min_prec:
        return f"({e})"
    return str(e)


def lift(x) -> Expr:  # Coerce ints/names into expression nodes.
    if isinstance(x, Expr):
        return x
    if isinstance(x, bool):
        return Number(int(x))
    if isinstance(x, int):
        return Number(x)
    if isinstance(x, str):
        return parse_expr(x)
    raise TypeError(f"cannot build expression from {type(x).__name__}")


_TOKEN = re.compile(r"\s*(?:(0x[0-9a-fA-F]+|\d+)|([A-Za-z_][A-Za-z0-9_]*'?)|(.))")


def _tokenize(text):  # -> list of (kind, value), kind in {"num", "name", "op"}.
    out = []
    for m in _TOKEN.finditer(text):
        num, name, op = m.groups()
        if num is not None:
            out.append(("num", int(num, 0)))
        elif name is not None:
            out.append(("name", name))
        elif op is not None and not op.isspace():
            if op not in "+-*()":
                raise ExpressionError(f"unexpected character {op!r} in {text!r}")
            out.append(("op", op))
    return out


class _Parser:  # Recursive-descent parser: sum := term (('+'|'-') term)*; term := unary ('*' unary)*.
    def __init__(self, text):
        self.text = text
        self.toks = _tokenize(text)
        self.i = 0

    def peek(self):
        return self.toks[self.i] if self.i < len(self.toks) else (None, None)

    def take(self):
        tok = self.peek()
        self.i += 1
        return tok

    def sum(self):
        e = self.term()
        while self.peek() in (("op", "+"), ("op", "-")):
            _, op = self.take()
            e = BinaryOp(op, e, self.term())
        return e

    def term(self):
        e = self.unary()
        while self.peek() == ("op", "*"):
            self.take()
            e = BinaryOp("*", e, self.unary())
        return e

    def unary(self):
        if self.peek() == ("op", "-"):
            self.take()
            inner = self.unary()
            return Number(-inner.value) if isinstance(inner, Number) else Neg(inner)
        return self.atom()

    def atom(self):
        kind, val = self.take()
        if kind == "num":
            return Number(val)
        if kind == "name":
            return Ref(val[:-1], True) if val.endswith("'") else Ref(val)
        if (kind, val) == ("op", "("):
            e = self.sum()
            if self.take() != ("op", ")"):
                raise ExpressionError(f"missing ')' in {self.text!r}")
            return e
        raise ExpressionError(f"unexpected token {val!r} in {self.text!r}")


def parse_expr(text) -> Expr:  # Parse `XIsZero * (1 - XIsZero)`, `pc + 1`, `l`, `pc'`.
    p = _Parser(str(text))
    if not p.toks:
        raise ExpressionError("empty expression")
    e = p.sum()
    if p.i != len(p.toks):
        raise ExpressionError(f"trailing input in {text!r}")
    return e


def parse_equation(text) -> tuple[Expr, Expr]:  # `lhs = rhs` -> (lhs, rhs).
    s = str(text)
    if s.count("=") != 1:
        raise ExpressionError(f"expected exactly one '=' in {s!r}")
    lhs, rhs = s.split("=")
    return parse_expr(lhs), parse_expr(rhs)


def split_top_level(text, sep=","):  # Split on `sep` outside parentheses/brackets.
    parts, depth, cur = [], 0, []
    for ch in str(text):
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(cur).strip())
            cur = []
            continue
        cur.append(ch)
    tail = "".join(cur).strip()
    if tail:
        parts.append(tail)
    return parts
