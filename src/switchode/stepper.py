# stepper.py
"""
One internal step of the variable-order, variable-step, method-switching
multistep integrator.

``step(state, f, jacobian)`` advances ``state`` by one accepted step or
gives up, and returns ``state.kflag``:

*  0 - step accepted,
* -1 - error test failed repeatedly or with |h| = hmin,
* -2 - corrector failed repeatedly or with |h| = hmin.

``state.jstart`` tells it how to begin: 0 first step, 1 continue, -1 the
caller changed parameters (or a method switch must be completed), -2 the
caller changed only ``h``.
"""
from . import nordsieck
from .corrector import CorrectorFlag, correct
from .errweight import weighted_rms
from .jacobian import JacobianManager
from .logger import get_logger
from .options import Method
from .stepcontext import StepperState
from .tables import SM1, coefficients

log = get_logger(__name__)


# ---- coefficient / step-size helpers ----------------------------------------

def reset_coefficients(state: StepperState) -> None:
    """Load el for the current (method, order) and refresh derived scalars."""
    state.el    = state.table.corrector(state.nq)
    state.rc    = state.rc * state.el[0] / state.el0
    state.el0   = state.el[0]
    state.conit = 0.5 / (state.nq + 2)


def rescale(state: StepperState, rh: float) -> float:
    """
    Change h by the ratio rh (after bounding it) and rescale the history.

    Returns |h|*||J|| for the Adams stability check (0 for BDF).
    """
    rh = min(rh, state.rmax)
    rh = rh / max(1.0, abs(state.h) * state.hmxi * rh)
    pdh = 0.0
    if state.meth == Method.ADAMS:
        # also keep h inside the Adams stability region
        state.irflag = 0
        pdh = max(abs(state.h) * state.pdlast, 0.000001)
        if rh * pdh * 1.00001 >= SM1[state.nq]:
            rh = SM1[state.nq] / pdh
            state.irflag = 1
    nordsieck.rescale(state.yh, state.l, rh)
    state.h  *= rh
    state.rc *= rh
    state.ialth = state.l
    return pdh


def _end_step(state: StepperState) -> None:
    state.acor = state.acor * (1.0 / state.table.test_constants(state.counters.nqu)[1])
    state.hold   = state.h
    state.jstart = 1


def _initialize(state: StepperState) -> None:
    state.lmax   = state.maxord + 1
    state.nq     = 1
    state.l      = 2
    state.ialth  = 2
    state.rmax   = state.growth_first
    state.rc     = 0.0
    state.el0    = 1.0
    state.crate  = 0.7
    state.hold   = state.h
    state.nslp   = 0
    state.ipup   = state.newton
    state.icount = 20
    state.irflag = 0
    state.pdest  = 0.0
    state.pdlast = 0.0
    state.ratio  = 5.0
    state.table  = coefficients(state.meth)
    reset_coefficients(state)


def _apply_changes(state: StepperState) -> None:
    state.ipup = state.newton
    state.lmax = state.maxord + 1
    if state.ialth == 1:
        state.ialth = 2
    if state.meth != state.counters.mused:
        state.table = coefficients(state.meth)
        state.ialth = state.l
        reset_coefficients(state)
    if state.h != state.hold:
        rh = state.h / state.hold
        state.h = state.hold
        rescale(state, rh)


# ---- order selection ----------------------------------------------------------

def _rh_from(d: float, exponent: float, bias: float) -> float:
    return 1.0 / (bias * d ** exponent + bias * 1e-6)


def select_order(state: StepperState, rhup: float, dsm: float) -> tuple:
    """
    Compare the step ratios allowed at orders q-1, q and q+1.

    Returns ``(flag, rh)``: flag 0 keeps h and q, 1 changes h only, 2 changes
    q (state.nq/l are already updated) and h.
    """
    nq, l = state.nq, state.l
    rhsm = _rh_from(dsm, 1.0 / l, 1.2)
    rhdn = 0.0
    if nq != 1:
        ddn  = weighted_rms(state.yh[l - 1], state.ewt) / state.table.test_constants(nq)[0]
        rhdn = _rh_from(ddn, 1.0 / nq, 1.3)

    pdh = 0.0
    if state.meth == Method.ADAMS:
        # bound each candidate by the Adams stability region
        pdh = max(abs(state.h) * state.pdlast, 0.000001)
        if l < state.lmax:
            rhup = min(rhup, SM1[l] / pdh)
        rhsm = min(rhsm, SM1[nq] / pdh)
        if nq > 1:
            rhdn = min(rhdn, SM1[nq - 1] / pdh)
        state.pdest = 0.0

    if rhsm >= rhup:
        if rhsm >= rhdn:
            newq, rh = nq, rhsm
        else:
            newq, rh = nq - 1, rhdn
            if state.kflag < 0 and rh > 1.0:
                rh = 1.0
    elif rhup <= rhdn:
        newq, rh = nq - 1, rhdn
        if state.kflag < 0 and rh > 1.0:
            rh = 1.0
    else:
        rh = rhup
        if rh >= 1.1:
            # raise the order using the saved correction
            r = state.el[l - 1] / l
            state.nq = l
            state.l  = l + 1
            state.yh[l] = state.acor * r
            return 2, rh
        state.ialth = 3
        return 0, rh

    if state.meth == Method.ADAMS:
        if rh * pdh * 1.00001 < SM1[newq] and state.kflag == 0 and rh < 1.1:
            state.ialth = 3
            return 0, rh
    elif state.kflag == 0 and rh < 1.1:
        state.ialth = 3
        return 0, rh

    if state.kflag <= -2:
        rh = min(rh, 0.2)
    if newq == nq:
        return 1, rh
    state.nq = newq
    state.l  = newq + 1
    return 2, rh


# ---- stiffness detection --------------------------------------------------------

def switch_method(state: StepperState, dsm: float, pnorm: float) -> float:
    """
    Decide whether to switch between Adams and BDF.

    On a switch ``state.meth``, ``newton``, ``nq`` and ``l`` are updated and
    the suggested step ratio is returned; otherwise the result is unused.
    """
    eps   = state.eps
    adams = coefficients(Method.ADAMS)
    bdf   = coefficients(Method.BDF)
    h     = abs(state.h)
    nq, l = state.nq, state.l

    if state.meth == Method.ADAMS:
        if nq > 5:
            return 1.0
        if dsm <= 100.0 * pnorm * eps or state.pdest == 0.0:
            # estimates polluted by roundoff: switch only if h was
            # restricted for stability on the last step
            if state.irflag == 0:
                return 1.0
            rh2  = 2.0
            nqm2 = min(nq, state.mxords)
        else:
            exsm  = 1.0 / l
            rh1   = _rh_from(dsm, exsm, 1.2)
            rh1it = 2.0 * rh1
            pdh   = state.pdlast * h
            if pdh * rh1 > 0.00001:
                rh1it = SM1[nq] / pdh
            rh1 = min(rh1, rh1it)
            if nq > state.mxords:
                nqm2 = state.mxords
                dm2  = weighted_rms(state.yh[nqm2 + 1], state.ewt) / bdf.cm[nqm2]
                rh2  = _rh_from(dm2, 1.0 / (nqm2 + 1), 1.2)
            else:
                nqm2 = nq
                dm2  = dsm * (adams.cm[nq] / bdf.cm[nq])
                rh2  = _rh_from(dm2, exsm, 1.2)
            if rh2 < state.ratio * rh1:
                return 1.0
        state.meth   = Method.BDF
        state.newton = True
        state.nq     = nqm2
    else:
        exsm = 1.0 / l
        if state.mxordn < nq:
            nqm1 = state.mxordn
            exm1 = 1.0 / (nqm1 + 1)
            dm1  = weighted_rms(state.yh[nqm1 + 1], state.ewt) / adams.cm[nqm1]
            rh1  = _rh_from(dm1, exm1, 1.2)
        else:
            nqm1 = nq
            exm1 = exsm
            dm1  = dsm * (bdf.cm[nq] / adams.cm[nq])
            rh1  = _rh_from(dm1, exsm, 1.2)
        rh1it = 2.0 * rh1
        pdh   = state.pdnorm * h
        if pdh * rh1 > 0.00001:
            rh1it = SM1[nqm1] / pdh
        rh1 = min(rh1, rh1it)
        rh2 = _rh_from(dsm, exsm, 1.2)
        if rh1 * state.ratio < 5.0 * rh2:
            return 1.0
        alpha = max(0.001, rh1)
        dm1 *= alpha ** exm1
        # stay with BDF if the Adams step would be in the roundoff regime
        if dm1 <= 1000.0 * eps * pnorm:
            return 1.0
        rh2 = rh1
        state.meth   = Method.ADAMS
        state.newton = False
        state.nq     = nqm1

    state.icount = 20
    state.pdlast = 0.0
    state.l      = state.nq + 1
    return rh2


# ---- the step -------------------------------------------------------------------

def _accept(state: StepperState, dsm: float, pnorm: float) -> None:
    c = state.counters
    state.kflag = 0
    c.nst  += 1
    c.hu    = state.h
    c.nqu   = state.nq
    c.mused = int(state.meth)
    nordsieck.correct(state.yh, state.el, state.acor)

    state.icount -= 1
    if state.icount < 0:
        rh = switch_method(state, dsm, pnorm)
        if state.meth != c.mused:
            rh = max(rh, state.hmin / abs(state.h))
            rescale(state, rh)
            state.rmax = state.growth
            _end_step(state)
            return

    state.ialth -= 1
    if state.ialth == 0:
        rhup = 0.0
        if state.l != state.lmax:
            dup  = (weighted_rms(state.acor - state.yh[state.lmax - 1], state.ewt)
                    / state.table.test_constants(state.nq)[2])
            rhup = _rh_from(dup, 1.0 / (state.l + 1), 1.4)
        flag, rh = select_order(state, rhup, dsm)
        if flag == 0:
            _end_step(state)
            return
        if flag == 2:
            reset_coefficients(state)
        rh = max(rh, state.hmin / abs(state.h))
        rescale(state, rh)
        state.rmax = state.growth
        _end_step(state)
        return

    if state.ialth > 1 or state.l == state.lmax:
        _end_step(state)
        return
    # save acor for a possible order increase on the next step
    state.yh[state.lmax - 1] = state.acor
    _end_step(state)


def _error_test_failure(state: StepperState, f, dsm: float, told: float) -> bool:
    """Prepare a retry after a failed error test; False means give up."""
    c = state.counters
    state.kflag -= 1
    c.netf  += 1
    c.netfn += 1
    state.tn = told
    nordsieck.retract(state.yh, state.nq)
    state.rmax = min(2.0, state.growth)
    if abs(state.h) <= state.hmin * 1.00001 or -state.kflag >= state.mxnef:
        return False

    if state.kflag > -3:
        flag, rh = select_order(state, 0.0, dsm)
        if flag == 0:
            rh = min(rh, 0.2)
        if flag == 2:
            reset_coefficients(state)
        rh = max(rh, state.hmin / abs(state.h))
        rescale(state, rh)
        return True

    # three or more failures: the higher history rows are suspect, so
    # restart at order 1 from a fresh derivative with h cut tenfold
    rh = max(state.hmin / abs(state.h), 0.1)
    state.h *= rh
    state.y.copy_(state.yh[0])
    state.savf = f(state.tn, state.y.clone())
    c.nfe += 1
    state.yh[1] = state.h * state.savf
    state.ipup  = state.newton
    state.ialth = 5
    if state.nq != 1:
        state.nq = 1
        state.l  = 2
        reset_coefficients(state)
    return True


def step(state: StepperState, f, jacobian: JacobianManager) -> int:
    """Take one internal step; see the module docstring for the return codes."""
    c = state.counters
    state.kflag = 0
    told = state.tn
    c.ncf  = 0
    c.netf = 0
    state.jcur = False

    if state.jstart == 0:
        _initialize(state)
    elif state.jstart == -1:
        _apply_changes(state)
    elif state.jstart == -2 and state.h != state.hold:
        rh = state.h / state.hold
        state.h = state.hold
        rescale(state, rh)

    while True:
        # predict and correct until the corrector converges
        while True:
            jacobian.check_refresh(state)
            state.tn += state.h
            nordsieck.predict(state.yh, state.nq)
            pnorm = weighted_rms(state.yh[0], state.ewt)
            res = correct(state, f, jacobian, pnorm, told)
            if res.flag == CorrectorFlag.CONVERGED:
                break
            if res.flag == CorrectorFlag.RETRY:
                rh = max(res.rh, state.hmin / abs(state.h))
                rescale(state, rh)
                log.debug2("corrector failure at t = %g, retry with h = %g",
                           told, state.h)
                continue
            state.kflag  = -2
            state.hold   = state.h
            state.jstart = 1
            return state.kflag

        state.jcur = False
        tq = state.table.test_constants(state.nq)[1]
        if res.m == 0:
            dsm = res.dcor / tq
        else:
            dsm = weighted_rms(state.acor, state.ewt) / tq

        if dsm <= 1.0:
            _accept(state, dsm, pnorm)
            log.debug2("step %d: t = %g, h = %g, q = %d, method = %s",
                       c.nst, state.tn, c.hu, c.nqu, Method(c.mused).name)
            return state.kflag

        if not _error_test_failure(state, f, dsm, told):
            state.kflag  = -1
            state.hold   = state.h
            state.jstart = 1
            return state.kflag
        log.debug2("error test failed at t = %g (dsm = %.3g), retry with "
                   "h = %g, q = %d", told, dsm, state.h, state.nq)
