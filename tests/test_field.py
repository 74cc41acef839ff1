import random
import pathlib
import sys
import unittest

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))
from field import BabyBearField, Bn254Field, GoldilocksField, field_by_name


class FieldTests(unittest.TestCase):
    def check_field(self, cls):
        p = cls.MODULUS
        rng = random.Random(0)
        for _ in range(64):
            a = rng.randrange(0, p)
            b = rng.randrange(1, p)
            x, y = cls(a), cls(b)
            self.assertEqual(int(x + y), (a + b) % p)
            self.assertEqual(int(x - y), (a - b) % p)
            self.assertEqual(int(x * y), (a * b) % p)
            self.assertEqual(int(x / y), (a * pow(b, -1, p)) % p)
            self.assertEqual(int(x**7), pow(a, 7, p))
            self.assertEqual(cls.from_montgomery(x.v), x)
            if a:
                self.assertEqual(int(x * x.inv()), 1)
            else:
                with self.assertRaises(ZeroDivisionError):
                    x.inv()

        self.assertEqual(int(cls.zero()), 0)
        self.assertEqual(int(cls.one()), 1)

    def test_goldilocks(self):
        self.check_field(GoldilocksField)

    def test_babybear(self):
        self.check_field(BabyBearField)

    def test_bn254(self):
        self.check_field(Bn254Field)

    def test_negative_ints_reduce(self):  # -1 is p - 1, and signs round-trip through to_signed.
        F = GoldilocksField
        self.assertEqual(int(F(-1)), F.MODULUS - 1)
        self.assertEqual(F(-5).to_signed(), -5)
        self.assertEqual(F(5).to_signed(), 5)

    def test_coerce_and_int_mixing(self):
        F = GoldilocksField
        x = F.coerce(3)
        self.assertIs(F.coerce(x), x)
        self.assertEqual(2 * x + 1, 7)
        self.assertEqual(10 - x, 7)
        self.assertEqual(F.coerce(BabyBearField(9)), 9)
        self.assertEqual(hash(F(4)), hash(F(2) * 2))

    def test_field_by_name(self):
        self.assertIs(field_by_name("Goldilocks"), GoldilocksField)
        self.assertIs(field_by_name("babybear"), BabyBearField)
        with self.assertRaises(ValueError):
            field_by_name("mersenne31")


if __name__ == "__main__":
    unittest.main()
