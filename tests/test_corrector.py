"""Tests for switchode.corrector: functional and chord iterations."""
import math

import pytest
import torch

from switchode import nordsieck, stepper
from switchode.corrector import CorrectorFlag, correct, corrector_failure
from switchode.errweight import error_weights, weighted_rms
from switchode.jacobian import JacobianManager
from switchode.options import Method, SolverOptions
from switchode.stepcontext import StepperState

DT = torch.float64


def _decay(t, y):
    """dy/dt = -y"""
    return -y


def _stiff_decay(t, y):
    """dy/dt = -1000 y"""
    return -1000.0 * y


def _prepared(f, h, meth=Method.ADAMS):
    st = StepperState.allocate(1, SolverOptions())
    y0 = torch.ones(1, dtype=DT)
    st.ewt = error_weights(y0, torch.tensor(1e-6, dtype=DT),
                           torch.tensor(1e-6, dtype=DT))
    st.yh[0] = y0
    st.yh[1] = h * f(0.0, y0)
    st.h      = h
    st.meth   = meth
    st.newton = meth == Method.BDF
    st.maxord = st.mxordn if meth == Method.ADAMS else st.mxords
    stepper._initialize(st)
    return st


def _attempt(st, f, mgr):
    told = st.tn
    st.tn += st.h
    nordsieck.predict(st.yh, st.nq)
    pnorm = weighted_rms(st.yh[0], st.ewt)
    return correct(st, f, mgr, pnorm, told), told


class TestConvergence:

    def test_functional_iteration(self):
        st = _prepared(_decay, 0.01)
        res, _ = _attempt(st, _decay, JacobianManager(_decay, None))
        assert res.flag == CorrectorFlag.CONVERGED
        assert st.y.item() == pytest.approx(math.exp(-0.01), rel=1e-4)
        assert st.counters.nje == 0

    def test_chord_iteration_on_stiff_problem(self):
        st  = _prepared(_stiff_decay, 0.01, Method.BDF)
        mgr = JacobianManager(_stiff_decay, None)
        res, _ = _attempt(st, _stiff_decay, mgr)
        assert res.flag == CorrectorFlag.CONVERGED
        # backward Euler: y1 = 1/(1 + 1000 h)
        assert st.y.item() == pytest.approx(1.0 / 11.0, rel=1e-8)
        assert st.counters.nje == 1 and st.counters.nlu == 1
        assert st.jcur and not st.ipup


class TestFailure:

    def test_divergent_functional_iteration_retracts(self):
        st  = _prepared(_stiff_decay, 0.01)
        ref = st.yh.clone()
        res, told = _attempt(st, _stiff_decay, JacobianManager(_stiff_decay, None))
        assert res.flag == CorrectorFlag.RETRY
        assert res.rh == 0.25
        assert st.tn == told
        torch.testing.assert_close(st.yh, ref)
        assert st.counters.ncf == 1 and st.counters.ncfn == 1

    def test_failure_at_hmin_is_fatal(self):
        st = _prepared(_decay, 0.5)
        st.hmin = 0.5
        nordsieck.predict(st.yh, st.nq)
        res = corrector_failure(st, JacobianManager(_decay, None), 0.0)
        assert res.flag == CorrectorFlag.FATAL

    def test_failure_limit(self):
        st = _prepared(_decay, 0.5)
        mgr = JacobianManager(_decay, None)
        st.mxncf = 2
        flags = []
        for _ in range(2):
            nordsieck.predict(st.yh, st.nq)
            flags.append(corrector_failure(st, mgr, 0.0).flag)
        assert flags == [CorrectorFlag.RETRY, CorrectorFlag.FATAL]
        assert st.rmax == 2.0
