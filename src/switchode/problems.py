# problems.py
"""
Reference problems with analytic Jacobians.

Each factory returns a ``Problem``; pass ``problem.f`` and ``problem.jac``
straight to ``Lsoda`` or ``odeint``.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import torch


@dataclass(frozen=True)
class Problem:
    name: str
    f:    Callable
    y0:   torch.Tensor
    t0:   float = 0.0
    jac:  Optional[Callable] = None
    band: Optional[Tuple[int, int]] = None


def exponential_decay(k: float = 1.0) -> Problem:
    """y' = -k y, y(0) = 1; exact solution exp(-k t)."""
    def f(t, y):
        return -k * y

    def jac(t, y):
        return torch.full((1, 1), -k, dtype=y.dtype)

    return Problem("decay", f, torch.tensor([1.0], dtype=torch.float64),
                   jac=jac)


# ----------------------------------------------------------------------
#  Robertson chemical kinetics (stiff)
# ----------------------------------------------------------------------
ROBERTSON_RTOL = (1.0e-4, 1.0e-8, 1.0e-4)
ROBERTSON_ATOL = (1.0e-6, 1.0e-10, 1.0e-6)

# y(t) at t = 0.4 * 10**i, i = 0..11
ROBERTSON_TIMES = tuple(0.4 * 10.0 ** i for i in range(12))
ROBERTSON_REFERENCE = (
    (9.851712e-01, 3.386380e-05, 1.479493e-02),
    (9.055333e-01, 2.240655e-05, 9.444430e-02),
    (7.158403e-01, 9.186334e-06, 2.841505e-01),
    (4.505250e-01, 3.222964e-06, 5.494717e-01),
    (1.831976e-01, 8.941773e-07, 8.168015e-01),
    (3.898729e-02, 1.621940e-07, 9.610125e-01),
    (4.936362e-03, 1.984221e-08, 9.950636e-01),
    (5.161833e-04, 2.065787e-09, 9.994838e-01),
    (5.179804e-05, 2.072027e-10, 9.999482e-01),
    (5.283675e-06, 2.113481e-11, 9.999947e-01),
    (4.658667e-07, 1.863468e-12, 9.999995e-01),
    (1.431100e-08, 5.724404e-14, 1.000000e+00),
)


def robertson() -> Problem:
    def f(t, y):
        a = -0.04 * y[0] + 1.0e4 * y[1] * y[2]
        c = 3.0e7 * y[1] * y[1]
        return torch.stack([a, -a - c, c])

    def jac(t, y):
        _, y2, y3 = y.tolist()
        return torch.tensor([
            [-0.04, 1.0e4 * y3, 1.0e4 * y2],
            [0.04, -1.0e4 * y3 - 6.0e7 * y2, -1.0e4 * y2],
            [0.0, 6.0e7 * y2, 0.0],
        ], dtype=y.dtype)

    return Problem("robertson", f,
                   torch.tensor([1.0, 0.0, 0.0], dtype=torch.float64), jac=jac)


def van_der_pol(mu: float = 1000.0) -> Problem:
    """Van der Pol oscillator; stiff for large ``mu``."""
    def f(t, y):
        return torch.stack([y[1], mu * ((1.0 - y[0] ** 2) * y[1] - y[0])])

    def jac(t, y):
        x, v = y.tolist()
        return torch.tensor([
            [0.0, 1.0],
            [mu * (-2.0 * x * v - 1.0), mu * (1.0 - x * x)],
        ], dtype=y.dtype)

    return Problem(f"vdp(mu={mu:g})", f,
                   torch.tensor([2.0, 0.0], dtype=torch.float64), jac=jac)


def banded_diffusion(n: int = 20, d: float = 1.0) -> Problem:
    """
    Method-of-lines heat equation on (0, 1), zero Dirichlet ends; the
    Jacobian is tridiagonal and is returned in band layout (ml = mu = 1).
    """
    dx2 = (1.0 / (n + 1)) ** 2
    c   = d / dx2

    def f(t, y):
        left  = torch.cat([y.new_zeros(1), y[:-1]])
        right = torch.cat([y[1:], y.new_zeros(1)])
        return c * (left - 2.0 * y + right)

    def jac(t, y):
        ab = torch.zeros(3, n, dtype=y.dtype)
        ab[0, 1:]  = c          # super-diagonal
        ab[1, :]   = -2.0 * c
        ab[2, :-1] = c          # sub-diagonal
        return ab

    x  = torch.arange(1, n + 1, dtype=torch.float64) / (n + 1)
    y0 = torch.sin(torch.pi * x)
    return Problem(f"diffusion(n={n})", f, y0, jac=jac, band=(1, 1))
