"""
Dual numbers (jets) for forward-mode automatic differentiation.

A jet is a number of the form

    s + e_1 * d_1 + e_2 * d_2 + ... + e_N * d_N

where ``s`` is the value and ``e`` is the vector of partial derivatives with
respect to N independent variables. Evaluating an ordinary function on jets
yields both the value of the function and its exact Jacobian, which is how the
filters and the bundle adjuster obtain their linearisations.

Supported operations:
    - ``+ - * /`` and unary ``-``, mixed freely with plain floats
    - ``**`` with a constant exponent
    - ``sqrt``, ``sin``, ``cos`` (also through ``np.sqrt``/``np.sin``/``np.cos``
      on object arrays of jets)
    - ordering and equality, comparing the value part only, so that generic
      code may branch on jets exactly as it branches on floats
"""

import math
import numbers
from typing import Optional, Sequence, Union

import numpy as np


class Jet:
    """
    Scalar value paired with a dense vector of partial derivatives.

    Attributes:
        s: Value (scalar part).
        e: Partial derivatives (vector part), shape (N,).
    """

    __slots__ = ("s", "e")

    def __init__(
        self,
        s: float,
        index: Optional[int] = None,
        size: int = 0,
        e: Optional[np.ndarray] = None,
    ):
        """
        Create a jet.

        Args:
            s: Value of the jet.
            index: If given, the jet is variable ``index`` (unit derivative).
                If omitted, the jet is a constant (zero derivative).
            size: Dimension N of the derivative vector.
            e: Explicit derivative vector; overrides ``index`` and ``size``.

        Raises:
            IndexError: If ``index`` is outside [0, size).
        """
        self.s = float(s)
        if e is not None:
            self.e = np.asarray(e, dtype=float)
            return
        self.e = np.zeros(size)
        if index is not None:
            if not 0 <= index < size:
                raise IndexError(f"Variable index {index} outside [0, {size})")
            self.e[index] = 1.0

    @property
    def size(self) -> int:
        return self.e.shape[0]

    # Arithmetic

    def __add__(self, other):
        if isinstance(other, Jet):
            return Jet(self.s + other.s, e=self.e + other.e)
        if isinstance(other, numbers.Real):
            return Jet(self.s + other, e=self.e)
        return NotImplemented

    def __radd__(self, other):
        if isinstance(other, numbers.Real):
            return Jet(other + self.s, e=self.e)
        return NotImplemented

    def __sub__(self, other):
        if isinstance(other, Jet):
            return Jet(self.s - other.s, e=self.e - other.e)
        if isinstance(other, numbers.Real):
            return Jet(self.s - other, e=self.e)
        return NotImplemented

    def __rsub__(self, other):
        if isinstance(other, numbers.Real):
            return Jet(other - self.s, e=-self.e)
        return NotImplemented

    def __mul__(self, other):
        if isinstance(other, Jet):
            return Jet(self.s * other.s, e=self.s * other.e + other.s * self.e)
        if isinstance(other, numbers.Real):
            return Jet(self.s * other, e=self.e * other)
        return NotImplemented

    def __rmul__(self, other):
        if isinstance(other, numbers.Real):
            return Jet(other * self.s, e=other * self.e)
        return NotImplemented

    def __truediv__(self, other):
        if isinstance(other, Jet):
            s = self.s / other.s
            return Jet(s, e=(self.e - other.e * s) / other.s)
        if isinstance(other, numbers.Real):
            return Jet(self.s / other, e=self.e / other)
        return NotImplemented

    def __rtruediv__(self, other):
        if isinstance(other, numbers.Real):
            s = other / self.s
            return Jet(s, e=-self.e * (s / self.s))
        return NotImplemented

    def __pow__(self, exponent):
        if not isinstance(exponent, numbers.Real):
            return NotImplemented
        if exponent == 2:
            return self * self
        return Jet(self.s**exponent, e=exponent * self.s ** (exponent - 1) * self.e)

    def __neg__(self):
        return Jet(-self.s, e=-self.e)

    def __pos__(self):
        return self

    # Elementary functions. numpy dispatches np.sqrt/np.sin/np.cos on object
    # arrays to these methods.

    def sqrt(self) -> "Jet":
        ss = math.sqrt(self.s)
        return Jet(ss, e=self.e / (2.0 * ss))

    def sin(self) -> "Jet":
        return Jet(math.sin(self.s), e=math.cos(self.s) * self.e)

    def cos(self) -> "Jet":
        return Jet(math.cos(self.s), e=-math.sin(self.s) * self.e)

    # Comparison on the value part only

    def __lt__(self, other):
        return self.s < _value(other)

    def __le__(self, other):
        return self.s <= _value(other)

    def __gt__(self, other):
        return self.s > _value(other)

    def __ge__(self, other):
        return self.s >= _value(other)

    def __eq__(self, other):
        if not isinstance(other, (Jet, numbers.Real)):
            return NotImplemented
        return self.s == _value(other)

    def __ne__(self, other):
        if not isinstance(other, (Jet, numbers.Real)):
            return NotImplemented
        return self.s != _value(other)

    __hash__ = None

    def __repr__(self) -> str:
        return f"Jet(s={self.s:.6g}, e={np.array2string(self.e, precision=4)})"


Scalar = Union[float, Jet]


def _value(x) -> float:
    return x.s if isinstance(x, Jet) else float(x)


def _elementwise(x, jet_fn, float_fn, array_fn):
    if isinstance(x, Jet):
        return jet_fn(x)
    if isinstance(x, np.ndarray):
        if x.dtype == object:
            scalar = np.frompyfunc(
                lambda v: jet_fn(v) if isinstance(v, Jet) else float_fn(v), 1, 1
            )
            return scalar(x)
        return array_fn(x)
    return float_fn(x)


def sqrt(x):
    """Square root of a float, jet, or array of either."""
    return _elementwise(x, Jet.sqrt, math.sqrt, np.sqrt)


def sin(x):
    """Sine of a float, jet, or array of either."""
    return _elementwise(x, Jet.sin, math.sin, np.sin)


def cos(x):
    """Cosine of a float, jet, or array of either."""
    return _elementwise(x, Jet.cos, math.cos, np.cos)


def is_jet_array(x) -> bool:
    """True if ``x`` holds jets (a jet, or an object array)."""
    return isinstance(x, Jet) or (isinstance(x, np.ndarray) and x.dtype == object)


def make_variables(values: Sequence[float], offset: int, size: int) -> np.ndarray:
    """
    Seed a vector of independent jet variables.

    Element ``i`` becomes variable ``offset + i`` of a ``size``-dimensional
    derivative space.

    Args:
        values: Values of the variables, shape (n,).
        offset: Index of the first variable.
        size: Total number of variables N.

    Returns:
        Object array of jets, shape (n,).

    Raises:
        ValueError: If the variables do not fit in the derivative space.
    """
    values = np.asarray(values, dtype=float).reshape(-1)
    if offset < 0 or offset + values.shape[0] > size:
        raise ValueError(
            f"Cannot place {values.shape[0]} variables at offset {offset} "
            f"in a space of size {size}"
        )
    out = np.empty(values.shape[0], dtype=object)
    for i, v in enumerate(values):
        out[i] = Jet(v, offset + i, size)
    return out


def values(x) -> np.ndarray:
    """Value parts of a vector of jets and/or floats."""
    if isinstance(x, Jet):
        return np.array([x.s])
    x = np.asarray(x)
    if x.dtype != object:
        return x.astype(float).reshape(-1)
    return np.array([_value(v) for v in x.reshape(-1)], dtype=float)


def jacobian(x, size: int) -> np.ndarray:
    """
    Jacobian of a vector of jets and/or floats.

    Plain floats (constants) contribute a zero row.

    Args:
        x: Result vector, shape (m,).
        size: Number of variables N the jets were seeded over.

    Returns:
        Jacobian matrix, shape (m, N).

    Raises:
        ValueError: If a jet has a derivative vector of the wrong size.
    """
    if isinstance(x, Jet):
        x = [x]
    flat = np.asarray(x, dtype=object).reshape(-1)
    J = np.zeros((flat.shape[0], size))
    for i, v in enumerate(flat):
        if isinstance(v, Jet):
            if v.e.shape[0] != size:
                raise ValueError(
                    f"Jet {i} has {v.e.shape[0]} derivatives, expected {size}"
                )
            J[i] = v.e
    return J
