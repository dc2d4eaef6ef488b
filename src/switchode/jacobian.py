# jacobian.py
"""
Jacobian cache and iteration-matrix factorisation.

The Jacobian is reused across steps while the corrector converges; it is
marked stale when

* ``jacobian_max_age`` steps have passed since the last refresh,
* ``h * el0`` has changed by more than ``jacobian_rate_change`` relatively,
* the corrector fails to converge with an old Jacobian.
"""
import math
from typing import Callable, Optional

import torch

from .errweight import weighted_matrix_norm, weighted_rms
from .linsolve import Solver, factor_banded, factor_dense
from .logger import get_logger
from .options import Banded, Dense, JacobianKind
from .stepcontext import StepperState

log = get_logger(__name__)


class JacobianManager:

    def __init__(self, f: Callable, jac: Optional[Callable],
                 kind: JacobianKind = Dense()):
        self.f     = f
        self.jac   = jac
        self.kind  = kind
        self.matrix: Optional[torch.Tensor] = None   # J, dense or band layout
        self.solve:  Optional[Solver]       = None   # LU of I - h*el0*J
        self.stale  = True

    # ---- refresh policy ---------------------------------------------------
    def steps_since_refresh(self, state: StepperState) -> int:
        return state.counters.nst - state.nslp

    def check_refresh(self, state: StepperState) -> None:
        """Flag a refresh for the next corrector pass if the cache is old."""
        if abs(state.rc - 1.0) > state.ccmax:
            state.ipup = state.newton
        if self.steps_since_refresh(state) >= state.msbp:
            state.ipup = state.newton
        if state.ipup:
            self.stale = True

    def mark_stale(self, state: StepperState) -> None:
        state.ipup = state.newton
        self.stale = True

    # ---- Jacobian evaluation ------------------------------------------------
    def _user_jacobian(self, t: float, y: torch.Tensor) -> torch.Tensor:
        J = torch.as_tensor(self.jac(t, y.clone()), dtype=y.dtype, device=y.device)
        n = y.numel()
        expected = (self.kind.width, n) if isinstance(self.kind, Banded) else (n, n)
        if tuple(J.shape) != expected:
            raise ValueError(f"jacobian returned shape {tuple(J.shape)}, "
                             f"expected {expected}")
        return J.clone()

    def _difference_increment(self, state: StepperState) -> tuple:
        eps = state.eps
        fac = weighted_rms(state.savf, state.ewt)
        r0  = 1000.0 * abs(state.h) * eps * state.n * fac
        if r0 == 0.0:
            r0 = 1.0
        # per-component increments  max(sqrt(eps)*|y_j|, r0*ewt_j)
        return torch.maximum(math.sqrt(eps) * state.y.abs(), r0 * state.ewt)

    def _dense_differences(self, state: StepperState) -> torch.Tensor:
        n, y = state.n, state.y
        inc  = self._difference_increment(state)
        J    = torch.empty(n, n, dtype=y.dtype, device=y.device)
        for j in range(n):
            yj   = y[j].item()
            r    = inc[j].item()
            y[j] = yj + r
            ftem = self.f(state.tn, y.clone())
            J[:, j] = (ftem - state.savf) / r
            y[j] = yj
        state.counters.nfe += n
        return J

    def _banded_differences(self, state: StepperState) -> torch.Tensor:
        n, y = state.n, state.y
        ml, mu = self.kind.ml, self.kind.mu
        mband = ml + mu + 1
        inc   = self._difference_increment(state)
        ab    = torch.zeros(mband, n, dtype=y.dtype, device=y.device)
        y0    = y.clone()
        ngroups = min(mband, n)
        # columns j, j+mband, ... never share a row, so one f call per group
        for g in range(ngroups):
            cols = torch.arange(g, n, mband, device=y.device)
            y[cols] += inc[cols]
            ftem = self.f(state.tn, y.clone())
            y[cols] = y0[cols]
            for jj in cols.tolist():
                i1 = max(jj - mu, 0)
                i2 = min(jj + ml, n - 1)
                rows = slice(mu + i1 - jj, mu + i2 - jj + 1)
                ab[rows, jj] = (ftem[i1:i2 + 1] - state.savf[i1:i2 + 1]) / inc[jj]
        state.counters.nfe += ngroups
        return ab

    def evaluate(self, state: StepperState) -> torch.Tensor:
        """J(tn, y) by the user routine or by forward differences."""
        state.counters.nje += 1
        if self.jac is not None:
            return self._user_jacobian(state.tn, state.y)
        if isinstance(self.kind, Banded):
            return self._banded_differences(state)
        return self._dense_differences(state)

    # ---- iteration matrix ---------------------------------------------------
    def refresh(self, state: StepperState) -> bool:
        """
        Rebuild J and factor P = I - h*el0*J.

        Updates ``state.pdnorm``; returns False if P is singular.
        """
        state.jcur = True
        hl0 = state.h * state.el0
        J   = self.evaluate(state)
        self.matrix = J
        self.stale  = False
        state.pdnorm = weighted_matrix_norm(J, state.ewt, self.kind)

        P = -hl0 * J
        if isinstance(self.kind, Banded):
            P[self.kind.mu] += 1.0
            self.solve = factor_banded(P, self.kind.ml, self.kind.mu)
        else:
            P.diagonal().add_(1.0)
            self.solve = factor_dense(P)
        state.counters.nlu += 1
        if self.solve is None:
            log.debug("singular iteration matrix at t = %g, h = %g",
                      state.tn, state.h)
            return False
        return True
