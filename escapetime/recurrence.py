"""Escape-time recurrence ``z -> z**2 + c`` evaluated in double precision."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# Squared magnitude; an orbit has escaped once |z| > 4.
ESCAPE_THRESHOLD = 16.0


@dataclass(frozen=True)
class Complex:
    """A complex value as a pair of doubles."""

    real: float
    imag: float

    def add(self, other: "Complex") -> "Complex":
        return Complex(self.real + other.real, self.imag + other.imag)

    def square(self) -> "Complex":
        return Complex(
            self.real * self.real - self.imag * self.imag,
            (self.real + self.real) * self.imag,
        )

    def squared_magnitude(self) -> float:
        return self.real * self.real + self.imag * self.imag


ORIGIN = Complex(0.0, 0.0)


def escape_count(c: Complex, iteration_cap: int) -> int:
    """Return the iteration at which the orbit of ``c`` escaped, or 0 if it never did."""

    z = ORIGIN
    for i in range(iteration_cap):
        if z.squared_magnitude() > ESCAPE_THRESHOLD:
            return i
        z = z.square().add(c)
    return 0


def escape_counts(real: np.ndarray, imag: np.ndarray, iteration_cap: int) -> np.ndarray:
    """Vectorised :func:`escape_count` over arrays of plane coordinates.

    Produces exactly the counts the scalar recurrence produces: each point
    runs the same float64 operations in the same order, and escaped points
    are frozen so they never overflow.
    """

    c_real = np.asarray(real, dtype=np.float64)
    c_imag = np.asarray(imag, dtype=np.float64)
    c_real, c_imag = np.broadcast_arrays(c_real, c_imag)

    z_real = np.zeros(c_real.shape, dtype=np.float64)
    z_imag = np.zeros(c_real.shape, dtype=np.float64)
    escapes = np.zeros(c_real.shape, dtype=np.int64)
    active = np.ones(c_real.shape, dtype=bool)

    with np.errstate(over="ignore", invalid="ignore"):
        for i in range(iteration_cap):
            magnitude = z_real * z_real + z_imag * z_imag
            escaped = active & (magnitude > ESCAPE_THRESHOLD)
            escapes[escaped] = i
            active &= ~escaped
            if not active.any():
                break
            next_real = z_real * z_real - z_imag * z_imag + c_real
            next_imag = (z_real + z_real) * z_imag + c_imag
            z_real = np.where(active, next_real, z_real)
            z_imag = np.where(active, next_imag, z_imag)

    return escapes
