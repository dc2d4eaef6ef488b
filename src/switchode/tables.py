# tables.py
"""
Method coefficients for the Nordsieck formulation of the implicit Adams
(orders 1..12) and fixed-leading-coefficient BDF (orders 1..5) families.

For order ``q`` the tables give

* ``el[q]``    - ``q + 1`` corrector coefficients, ``el[q][0]`` is the
                 scalar that multiplies ``h * J`` in the iteration matrix
                 and ``el[q][1] == 1``,
* ``tesco[q]`` - error-test constants for orders ``q - 1``, ``q`` and
                 ``q + 1`` (in that order),
* ``cm[q]``    - ``tesco[q][1] * el[q][q]``, used by the method switch.

Entries are indexed directly by order; index 0 is a placeholder.  Tables
are immutable and cached, so every integrator instance shares one copy.
"""
import functools
from dataclasses import dataclass
from typing import Tuple

from .options import Method

MAX_ORDER = {Method.ADAMS: 12, Method.BDF: 5}

# Adams stability bounds on |h| * ||J|| per order (index 0 unused)
SM1 = (0.0, 0.5, 0.575, 0.55, 0.45, 0.35, 0.25,
       0.2, 0.15, 0.1, 0.075, 0.05, 0.025)


@dataclass(frozen=True)
class MethodTable:
    method:    Method
    max_order: int
    el:        Tuple[Tuple[float, ...], ...]
    tesco:     Tuple[Tuple[float, float, float], ...]
    cm:        Tuple[float, ...]

    def corrector(self, q: int) -> Tuple[float, ...]:
        return self.el[q]

    def test_constants(self, q: int) -> Tuple[float, float, float]:
        return self.tesco[q]


def _adams_coefficients(maxord: int):
    # elco/tesco/pc are 1-based scratch arrays
    elco  = [[0.0] * (maxord + 2) for _ in range(maxord + 1)]
    tesco = [[0.0] * 4 for _ in range(maxord + 2)]
    pc    = [0.0] * (maxord + 1)

    elco[1][1] = 1.0
    elco[1][2] = 1.0
    tesco[1][1] = 0.0
    tesco[1][2] = 2.0
    tesco[2][1] = 1.0
    tesco[maxord][3] = 0.0
    pc[1]  = 1.0
    rqfac  = 1.0
    for nq in range(2, maxord + 1):
        # pc holds the coefficients of p(x) = (x+1)(x+2)...(x+nq-1)
        rq1fac = rqfac
        rqfac  = rqfac / nq
        nqm1   = nq - 1
        fnqm1  = float(nqm1)
        pc[nq] = 0.0
        for ib in range(1, nqm1 + 1):
            i = nq + 1 - ib
            pc[i] = pc[i - 1] + fnqm1 * pc[i]
        pc[1] = fnqm1 * pc[1]

        # integrals of p(x) and x*p(x) over [-1, 0]
        pint  = pc[1]
        xpin  = pc[1] / 2.0
        tsign = 1.0
        for i in range(2, nq + 1):
            tsign = -tsign
            pint += tsign * pc[i] / i
            xpin += tsign * pc[i] / (i + 1)

        elco[nq][1] = pint * rq1fac
        elco[nq][2] = 1.0
        for i in range(2, nq + 1):
            elco[nq][i + 1] = rq1fac * pc[i] / i
        agamq = rqfac * xpin
        ragq  = 1.0 / agamq
        tesco[nq][2] = ragq
        if nq < maxord:
            tesco[nq + 1][1] = ragq * rqfac / (nq + 1)
        tesco[nqm1][3] = ragq
    return elco, tesco


def _bdf_coefficients(maxord: int):
    elco  = [[0.0] * (maxord + 2) for _ in range(maxord + 1)]
    tesco = [[0.0] * 4 for _ in range(maxord + 1)]
    pc    = [0.0] * (maxord + 2)

    pc[1]  = 1.0
    rq1fac = 1.0
    for nq in range(1, maxord + 1):
        # pc holds the coefficients of x(x+1)...(x+nq-1)
        fnq  = float(nq)
        nqp1 = nq + 1
        pc[nqp1] = 0.0
        for ib in range(1, nq + 1):
            i = nq + 2 - ib
            pc[i] = pc[i - 1] + fnq * pc[i]
        pc[1] = fnq * pc[1]
        for i in range(1, nqp1 + 1):
            elco[nq][i] = pc[i] / pc[2]
        elco[nq][2] = 1.0
        tesco[nq][1] = rq1fac
        tesco[nq][2] = nqp1 / elco[nq][1]
        tesco[nq][3] = (nq + 2) / elco[nq][1]
        rq1fac /= fnq
    return elco, tesco


@functools.lru_cache(maxsize=None)
def coefficients(method: Method) -> MethodTable:
    """Return the shared coefficient table of *method*."""
    method = Method(method)
    maxord = MAX_ORDER[method]
    if method == Method.ADAMS:
        elco, tesco = _adams_coefficients(maxord)
    else:
        elco, tesco = _bdf_coefficients(maxord)

    el = [()] + [tuple(elco[q][1:q + 2]) for q in range(1, maxord + 1)]
    ts = [(0.0, 0.0, 0.0)] + [tuple(tesco[q][1:4])
                              for q in range(1, maxord + 1)]
    cm = [0.0] + [tesco[q][2] * elco[q][q + 1] for q in range(1, maxord + 1)]
    return MethodTable(method, maxord, tuple(el), tuple(ts), tuple(cm))
