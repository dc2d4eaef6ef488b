# options.py
import enum
import math
from dataclasses import dataclass, fields, replace
from typing import Optional, Tuple

import torch


class Task(enum.IntEnum):
    """What one ``integrate`` call is asked to do (LSODA itask)."""
    NORMAL         = 1      # overshoot tout and interpolate
    ONE_STEP       = 2      # one internal step
    STOP_AT_MESH   = 3      # stop at first mesh point at/after tout
    NORMAL_TCRIT   = 4      # NORMAL, never passing tcrit
    ONE_STEP_TCRIT = 5      # ONE_STEP, never passing tcrit

    @property
    def uses_tcrit(self) -> bool:
        return self in (Task.NORMAL_TCRIT, Task.ONE_STEP_TCRIT)


class Method(enum.IntEnum):
    ADAMS = 1
    BDF   = 2


@dataclass(frozen=True)
class Dense:
    """Full ``(n, n)`` Jacobian storage."""


@dataclass(frozen=True)
class Banded:
    """Band Jacobian with ``ml`` sub- and ``mu`` super-diagonals."""
    ml: int
    mu: int

    @property
    def width(self) -> int:
        return self.ml + self.mu + 1


JacobianKind = Dense | Banded


def jacobian_kind(band: Optional[Tuple[int, int]]) -> JacobianKind:
    if band is None:
        return Dense()
    ml, mu = band
    return Banded(int(ml), int(mu))


@dataclass
class SolverOptions:
    """Optional inputs; every field has the LSODA default."""
    task:                     Task  = Task.NORMAL
    tcrit:                    Optional[float] = None
    max_steps:                int   = 500           # mxstep
    max_hnil_warnings:        int   = 10            # mxhnil
    first_step:               float = 0.0           # h0, 0 = automatic
    max_step:                 float = math.inf      # hmax
    min_step:                 float = 0.0           # hmin
    max_order_nonstiff:       int   = 12            # mxordn
    max_order_stiff:          int   = 5             # mxords
    max_corrector_iters:      int   = 3             # maxcor
    max_convergence_failures: int   = 10            # mxncf
    max_error_test_failures:  int   = 10
    jacobian_max_age:         int   = 20            # msbp
    jacobian_rate_change:     float = 0.3           # ccmax
    max_growth_first:         float = 10.0
    max_growth:               float = 2.0
    log_switches:             bool  = False         # ixpr
    dtype:                    torch.dtype = torch.float64

    def updated(self, **changes) -> "SolverOptions":
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise TypeError(f"unknown solver option(s): {sorted(unknown)}")
        return replace(self, **changes)

    def validate(self) -> Optional[str]:
        """Return a message describing the first illegal field, or None."""
        try:
            Task(self.task)
        except ValueError:
            return f"task = {self.task!r} is not a legal task"
        if Task(self.task).uses_tcrit and self.tcrit is None:
            return f"task = {Task(self.task).name} requires tcrit"
        if self.max_steps <= 0:
            return f"max_steps = {self.max_steps} is less than 1"
        if self.max_hnil_warnings < 0:
            return f"max_hnil_warnings = {self.max_hnil_warnings} is negative"
        if not self.max_step > 0.0:
            return f"max_step = {self.max_step} is not positive"
        if self.min_step < 0.0:
            return f"min_step = {self.min_step} is negative"
        if self.max_order_nonstiff < 1 or self.max_order_stiff < 1:
            return "maximum orders must be at least 1"
        if self.max_corrector_iters < 1:
            return f"max_corrector_iters = {self.max_corrector_iters} is less than 1"
        if self.max_convergence_failures < 1 or self.max_error_test_failures < 1:
            return "failure limits must be at least 1"
        if self.jacobian_max_age < 1:
            return f"jacobian_max_age = {self.jacobian_max_age} is less than 1"
        if self.max_growth_first < 1.0 or self.max_growth < 1.0:
            return "growth bounds must be at least 1"
        if not self.dtype.is_floating_point:
            return f"dtype = {self.dtype} is not a floating dtype"
        return None

    # derived values used by the stepper
    @property
    def mxordn(self) -> int:
        return min(self.max_order_nonstiff, 12)

    @property
    def mxords(self) -> int:
        return min(self.max_order_stiff, 5)

    @property
    def hmxi(self) -> float:
        return 0.0 if math.isinf(self.max_step) else 1.0 / self.max_step
