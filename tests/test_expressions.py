import pathlib  # filesystem paths
import sys  # import local engine modules
import unittest  # test framework

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))  # allow `import expressions`, etc

from expressions import BinaryOp, ExpressionError, Neg, Number, Ref, lift, parse_equation, parse_expr, split_top_level
from field import GoldilocksField as F


def _eval(expr, **cells):  # Evaluate with `name_next=` keyword for next-row cells.
    def resolve(ref):
        return F(cells[f"{ref.name}_next" if ref.next else ref.name])

    return expr.evaluate(resolve, F)


class ParseTests(unittest.TestCase):  # Text -> expression tree.
    def test_precedence(self):
        e = parse_expr("a + b * c")
        self.assertEqual(e, BinaryOp("+", Ref("a"), BinaryOp("*", Ref("b"), Ref("c"))))
        self.assertEqual(_eval(e, a=1, b=2, c=3), 7)

    def test_parentheses_and_next_row(self):
        e = parse_expr("XIsZero * (1 - XIsZero) + pc'")
        self.assertIn(Ref("pc", next=True), e.refs())
        self.assertEqual(e.names(), {"XIsZero", "pc"})
        self.assertEqual(_eval(e, XIsZero=1, pc_next=9), 9)

    def test_unary_minus_and_hex(self):
        self.assertEqual(parse_expr("-3"), Number(-3))
        self.assertEqual(parse_expr("-x"), Neg(Ref("x")))
        self.assertEqual(parse_expr("0x10"), Number(16))

    def test_str_round_trips_structure(self):
        for text in ["a - (b - c)", "(a + b) * c", "pc' - (l + 1)", "x * x * x"]:
            e = parse_expr(text)
            self.assertEqual(parse_expr(str(e)), e, text)

    def test_errors(self):
        for text in ["", "a +", "(a + b", "a / b", "a b"]:
            with self.assertRaises(ExpressionError, msg=text):
                parse_expr(text)

    def test_equation(self):
        lhs, rhs = parse_equation("y = 2 * x")
        self.assertEqual(lhs, Ref("y"))
        self.assertEqual(_eval(lhs - rhs, y=6, x=3), 0)
        with self.assertRaises(ExpressionError):
            parse_equation("a = b = c")
        with self.assertRaises(ExpressionError):
            parse_equation("a + b")


class TreeTests(unittest.TestCase):  # Operator overloads, renaming and degree.
    def test_operator_overloads(self):
        x = Ref("x")
        e = 2 * x + 1 - x.shifted
        self.assertEqual(_eval(e, x=5, x_next=4), 7)
        self.assertEqual(lift(7), Number(7))
        self.assertEqual(lift("x"), x)
        self.assertIs(lift(x), x)
        with self.assertRaises(TypeError):
            lift(1.5)

    def test_rename_keeps_row_offsets(self):
        e = parse_expr("pc' - l * l")
        r = e.rename({"l": "instr_jmp_param_l"})
        self.assertEqual(r.names(), {"pc", "instr_jmp_param_l"})
        self.assertIn(Ref("pc", next=True), r.refs())
        self.assertIs(e.rename({}), e)

    def test_degree_in(self):
        e = parse_expr("instr_mul * (X * Y - Z)")
        self.assertEqual(e.degree_in(Ref("Z")), 1)
        self.assertEqual(e.degree_in(Ref("X")), 1)
        self.assertEqual(parse_expr("x * x - 4").degree_in(Ref("x")), 2)
        self.assertEqual(e.degree_in(Ref("Z", next=True)), 0)

    def test_split_top_level(self):
        self.assertEqual(split_top_level("a, f(b, c), [d, e]"), ["a", "f(b, c)", "[d, e]"])
        self.assertEqual(split_top_level(""), [])


if __name__ == "__main__":
    unittest.main()
