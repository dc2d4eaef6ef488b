# corrector.py
"""
Corrector iteration for one attempted step.

    Predict -> Iterate -> {Converged, Diverged, MaxIterationsExceeded}

Functional iteration evaluates f directly (Adams, nonstiff); the chord
method solves with the cached LU of  I - h*el0*J  (BDF, stiff).  On failure
the history is retracted and the caller retries with a smaller step.
"""
import enum
from dataclasses import dataclass


from . import nordsieck
from .errweight import weighted_rms
from .jacobian import JacobianManager
from .options import Method
from .stepcontext import StepperState


class CorrectorFlag(enum.IntEnum):
    CONVERGED = 0
    RETRY     = 1       # history retracted, retry with h * rh
    FATAL     = 2       # |h| at hmin or mxncf failures in a row


@dataclass
class CorrectorResult:
    flag:  CorrectorFlag
    m:     int   = 0            # iterations beyond the first
    dcor:  float = 0.0          # norm of the last correction increment
    rh:    float = 1.0          # step ratio requested on RETRY


def corrector_failure(state: StepperState, jacobian: JacobianManager,
                      told: float) -> CorrectorResult:
    """Retract the prediction and decide between retry and abort."""
    c = state.counters
    c.ncf  += 1
    c.ncfn += 1
    state.rmax = min(2.0, state.growth)
    state.tn   = told
    nordsieck.retract(state.yh, state.nq)
    if abs(state.h) <= state.hmin * 1.00001 or c.ncf == state.mxncf:
        return CorrectorResult(CorrectorFlag.FATAL)
    jacobian.mark_stale(state)
    return CorrectorResult(CorrectorFlag.RETRY, rh=0.25)


def correct(state: StepperState, f, jacobian: JacobianManager,
            pnorm: float, told: float) -> CorrectorResult:
    """
    Iterate the corrector at ``state.tn`` on the predicted history.

    On convergence ``state.acor`` holds the total correction and ``state.y``
    the corrected solution.
    """
    c     = state.counters
    eps   = state.eps
    ewt   = state.ewt
    m     = 0
    rate  = 0.0
    dcor  = 0.0
    delp  = 0.0

    state.y.copy_(state.yh[0])
    state.savf = f(state.tn, state.y.clone())
    c.nfe += 1

    while True:
        if m == 0:
            if state.ipup:
                ok = jacobian.refresh(state)
                state.ipup  = False
                state.rc    = 1.0
                state.nslp  = c.nst
                state.crate = 0.7
                if not ok:
                    return corrector_failure(state, jacobian, told)
            state.acor.zero_()

        el1 = state.el[0]
        if not state.newton:
            # functional iteration: y = yh0 + el1 * (h f - yh1)
            g      = state.h * state.savf - state.yh[1]
            dcor   = weighted_rms(g - state.acor, ewt)
            state.acor = g
            state.y    = state.yh[0] + el1 * g
        else:
            # chord method: solve P dy = h f - (yh1 + acor)
            rhs  = state.h * state.savf - (state.yh[1] + state.acor)
            dy   = jacobian.solve(rhs)
            dcor = weighted_rms(dy, ewt)
            state.acor = state.acor + dy
            state.y    = state.yh[0] + el1 * state.acor

        # convergence test; a change at roundoff level is accepted at once
        if dcor <= 100.0 * pnorm * eps:
            break
        if m != 0 or state.meth != Method.ADAMS:
            if m != 0:
                rm = 1024.0
                if dcor <= 1024.0 * delp:
                    rm = dcor / delp
                rate = max(rate, rm)
                state.crate = max(0.2 * state.crate, rm)
            tq   = state.table.test_constants(state.nq)[1]
            dcon = dcor * min(1.0, 1.5 * state.crate) / (tq * state.conit)
            if dcon <= 1.0:
                state.pdest = max(state.pdest, rate / abs(state.h * el1))
                if state.pdest != 0.0:
                    state.pdlast = state.pdest
                break

        m += 1
        if m == state.maxcor or (m >= 2 and dcor > 2.0 * delp):
            if not state.newton or state.jcur:
                return corrector_failure(state, jacobian, told)
            # retry once with a fresh Jacobian
            jacobian.mark_stale(state)
            m, rate, dcor = 0, 0.0, 0.0
            state.y.copy_(state.yh[0])
        else:
            delp = dcor
        state.savf = f(state.tn, state.y.clone())
        c.nfe += 1

    return CorrectorResult(CorrectorFlag.CONVERGED, m=m, dcor=dcor)
