class MontgomeryField:  # Prime field element in Montgomery representation.
    def __init_subclass__(cls):  # Precompute Montgomery constants for each concrete field.
        if "MODULUS" not in cls.__dict__:
            return
        p = cls.MODULUS
        if p % 2 == 0 or p < 3:
            raise ValueError("MODULUS must be an odd prime")
        cls.R_BITS = 64 * ((p.bit_length() + 63) // 64)  # Radix rounded up to whole 64-bit limbs.
        cls.R = 1 << cls.R_BITS
        cls.MASK = cls.R - 1
        cls.NP = (-pow(p, -1, cls.R)) & cls.MASK
        cls.R1 = cls.R % p
        cls.R2 = (cls.R1 * cls.R1) % p

    def __init__(self, x=0, mont=False):  # Build element from canonical int or raw Montgomery value.
        p = type(self).MODULUS
        self.v = x % p if mont else type(self)._red((int(x) % p) * type(self).R2)

    @classmethod
    def _red(cls, t):  # Montgomery reduction: t * R^-1 mod MODULUS.
        m = ((t & cls.MASK) * cls.NP) & cls.MASK
        u = (t + m * cls.MODULUS) >> cls.R_BITS
        return u - cls.MODULUS if u >= cls.MODULUS else u

    zero = classmethod(lambda cls: cls(0, mont=True))  # Additive identity in Montgomery form.

    one = classmethod(lambda cls: cls(cls.R1, mont=True))  # Multiplicative identity in Montgomery form.

    from_montgomery = classmethod(lambda cls, x: cls(x, mont=True))  # Wrap raw Montgomery residue.

    @classmethod
    def coerce(cls, x):  # Accept an element of this field, another field element or an int.
        if isinstance(x, cls):
            return x
        if isinstance(x, MontgomeryField):
            return cls(x.to_int())
        return cls(int(x))

    def to_int(self): return type(self)._red(self.v)  # Convert to canonical integer form.

    def to_signed(self):  # Canonical representative in (-p/2, p/2].
        n = self.to_int()
        p = type(self).MODULUS
        return n - p if n > p // 2 else n

    def is_zero(self): return self.v == 0  # Zero test without leaving Montgomery form.

    def inv(self):  # Multiplicative inverse in the same field.
        if self.v == 0: raise ZeroDivisionError("cannot invert zero")
        return type(self)(pow(self.to_int(), -1, type(self).MODULUS))

    def _c(self, other):  # Coerce int/same-type operand into field element.
        cls = type(self)
        if isinstance(other, cls):
            return other
        if isinstance(other, int):
            return cls(other)
        raise TypeError(f"expected {cls.__name__} or int")

    def __add__(self, other):  # Field addition modulo MODULUS.
        v = self.v + self._c(other).v
        return type(self)(v - type(self).MODULUS if v >= type(self).MODULUS else v, mont=True)

    def __sub__(self, other):  # Field subtraction modulo MODULUS.
        v = self.v - self._c(other).v
        return type(self)(v + type(self).MODULUS if v < 0 else v, mont=True)

    def __mul__(self, other):  # Field multiplication via Montgomery reduction.
        return type(self)(type(self)._red(self.v * self._c(other).v), mont=True)

    __radd__ = __add__
    __rmul__ = __mul__

    def __rsub__(self, other): return self._c(other) - self  # int - element.

    def __pow__(self, e):  # Exponentiation with modular power semantics.
        return (self.inv()) ** (-e) if e < 0 else type(self)(pow(self.to_int(), e, type(self).MODULUS))

    def __truediv__(self, other):  # Division as multiply by inverse.
        return self * self._c(other).inv()

    def __neg__(self):  # Additive inverse modulo MODULUS.
        return self if self.v == 0 else type(self)(type(self).MODULUS - self.v, mont=True)

    def __eq__(self, other):  # Equality with field elements or canonical ints.
        if isinstance(other, type(self)):
            return self.v == other.v
        return self.to_int() == (other % type(self).MODULUS) if isinstance(other, int) else False

    def __hash__(self): return hash((type(self).__name__, self.v))  # Usable as multiset key.

    def __int__(self): return self.to_int()  # int(...) exposes canonical integer.

    def __repr__(self): return f"{type(self).__name__}({self.to_int()})"  # Debug-friendly printable form.

class GoldilocksField(MontgomeryField):  # 64-bit Goldilocks prime field (default machine field).
    MODULUS = 0xFFFFFFFF00000001  # 2^64 - 2^32 + 1

class BabyBearField(MontgomeryField):  # 31-bit BabyBear prime field.
    MODULUS = 0x78000001  # 15 * 2^27 + 1

class Bn254Field(MontgomeryField):  # BN254 scalar field.
    MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617  # BN254 Fr modulus

FIELDS = {  # Name -> field class, for configuration lookups.
    "goldilocks": GoldilocksField,
    "babybear": BabyBearField,
    "bn254": Bn254Field,
}

def field_by_name(name):  # Resolve a configured field name.
    try:
        return FIELDS[str(name).lower()]
    except KeyError:
        raise ValueError(f"unknown field {name!r}; expected one of {sorted(FIELDS)}") from None
