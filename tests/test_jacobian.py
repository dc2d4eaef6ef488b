"""
Tests for switchode.jacobian: finite-difference vs analytic Jacobians,
iteration-matrix factorisation and the refresh policy.
"""
import pytest
import torch

from switchode import problems
from switchode.errweight import error_weights
from switchode.jacobian import JacobianManager
from switchode.options import Banded, Dense, SolverOptions
from switchode.stepcontext import StepperState

DT = torch.float64


def _state(f, y, h=1.0e-3, rtol=1e-6, atol=1.0):
    st = StepperState.allocate(y.numel(), SolverOptions())
    st.y    = y.clone()
    st.savf = f(0.0, y.clone())
    st.ewt  = error_weights(y, torch.tensor(rtol, dtype=DT),
                            torch.tensor(atol, dtype=DT))
    st.h    = h
    return st


class TestFiniteDifferences:

    def test_dense_matches_analytic(self):
        vdp = problems.van_der_pol(10.0)
        y   = torch.tensor([2.0, 1.0], dtype=DT)
        st  = _state(vdp.f, y)
        J   = JacobianManager(vdp.f, None, Dense()).evaluate(st)
        torch.testing.assert_close(J, vdp.jac(0.0, y), rtol=1e-5, atol=1e-5)
        assert st.counters.nfe == 2
        assert st.counters.nje == 1
        torch.testing.assert_close(st.y, y)

    def test_banded_matches_analytic(self):
        prob = problems.banded_diffusion(8)
        st   = _state(prob.f, prob.y0)
        ab   = JacobianManager(prob.f, None, Banded(1, 1)).evaluate(st)
        ref  = prob.jac(0.0, prob.y0)
        torch.testing.assert_close(ab, ref, rtol=1e-5, atol=1e-3)
        # three column groups for a tridiagonal matrix
        assert st.counters.nfe == 3
        torch.testing.assert_close(st.y, prob.y0)

    def test_user_jacobian_shape_checked(self):
        f   = lambda t, y: -y
        st  = _state(f, torch.ones(3, dtype=DT))
        mgr = JacobianManager(f, lambda t, y: torch.eye(2, dtype=DT))
        with pytest.raises(ValueError, match="shape"):
            mgr.evaluate(st)


class TestRefresh:

    def test_iteration_matrix_solves(self):
        vdp = problems.van_der_pol(10.0)
        y   = torch.tensor([2.0, 1.0], dtype=DT)
        st  = _state(vdp.f, y, h=0.05)
        st.el0 = 2.0 / 3.0
        mgr = JacobianManager(vdp.f, vdp.jac)
        assert mgr.refresh(st)
        P = torch.eye(2, dtype=DT) - st.h * st.el0 * vdp.jac(0.0, y)
        b = torch.tensor([1.0, -1.0], dtype=DT)
        torch.testing.assert_close(P @ mgr.solve(b), b)
        assert st.jcur and not mgr.stale
        assert (st.counters.nje, st.counters.nlu) == (1, 1)
        assert st.pdnorm > 0.0

    def test_banded_iteration_matrix(self):
        prob = problems.banded_diffusion(6)
        st   = _state(prob.f, prob.y0, h=0.01)
        mgr  = JacobianManager(prob.f, prob.jac, Banded(1, 1))
        assert mgr.refresh(st)
        n = 6
        c = float((n + 1) ** 2)
        J = (torch.diag(torch.full((n,), -2.0 * c, dtype=DT))
             + torch.diag(torch.full((n - 1,), c, dtype=DT), 1)
             + torch.diag(torch.full((n - 1,), c, dtype=DT), -1))
        P = torch.eye(n, dtype=DT) - st.h * J
        b = torch.arange(n, dtype=DT)
        torch.testing.assert_close(P @ mgr.solve(b), b)

    def test_singular_iteration_matrix(self):
        f   = lambda t, y: y
        st  = _state(f, torch.ones(2, dtype=DT), h=1.0)
        mgr = JacobianManager(f, lambda t, y: torch.eye(2, dtype=DT))
        assert not mgr.refresh(st)
        assert mgr.solve is None
        assert st.counters.nlu == 1


class TestPolicy:

    def test_rate_change_forces_refresh(self):
        f   = lambda t, y: -y
        st  = _state(f, torch.ones(1, dtype=DT))
        mgr = JacobianManager(f, None)
        st.newton, st.rc = True, 1.0
        mgr.check_refresh(st)
        assert not st.ipup
        st.rc = 1.5
        mgr.check_refresh(st)
        assert st.ipup and mgr.stale

    def test_age_forces_refresh(self):
        f   = lambda t, y: -y
        st  = _state(f, torch.ones(1, dtype=DT))
        mgr = JacobianManager(f, None)
        st.newton, st.rc, st.nslp = True, 1.0, 0
        st.counters.nst = st.msbp
        mgr.check_refresh(st)
        assert st.ipup

    def test_functional_iteration_never_refreshes(self):
        f   = lambda t, y: -y
        st  = _state(f, torch.ones(1, dtype=DT))
        mgr = JacobianManager(f, None)
        st.newton, st.rc = False, 5.0
        mgr.check_refresh(st)
        assert not st.ipup
