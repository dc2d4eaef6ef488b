"""
Tests for the task modes of Lsoda and for dense output.
"""
import math

import pytest
import torch

from switchode import InterpolationError, Lsoda, SolverOptions, StatusCode, Task

DT = torch.float64


def _decay(t, y):
    """dy/dt = -y  =>  y(t) = exp(-t)"""
    return -y


def _solver(**opts):
    return Lsoda(_decay, 1e-8, 1e-10, options=SolverOptions(**opts))


class TestOneStep:

    def test_each_call_takes_one_step(self):
        solver = _solver(task=Task.ONE_STEP)
        y, t = torch.ones(1, dtype=DT), 0.0
        for k in range(1, 6):
            r = solver.integrate(y, t, 1.0)
            assert r.ok
            assert r.counters.nst == k
            assert r.t == solver.t and r.t > t
            assert y.item() == pytest.approx(math.exp(-r.t), rel=1e-6)
            t = r.t

    def test_steps_past_tout(self):
        solver = _solver(task=Task.ONE_STEP)
        y, t = torch.ones(1, dtype=DT), 0.0
        while t < 0.01:
            t = solver.integrate(y, t, 0.01).t
        assert t >= 0.01


class TestStopAtMesh:

    def test_returns_first_mesh_point_beyond_tout(self):
        solver = _solver(task=Task.STOP_AT_MESH)
        y = torch.ones(1, dtype=DT)
        r = solver.integrate(y, 0.0, 1.0)
        assert r.ok
        assert r.t >= 1.0
        assert r.t == solver.t
        assert r.t - solver.counters.hu < 1.0
        assert y.item() == pytest.approx(math.exp(-r.t), rel=1e-6)

    def test_tout_behind_last_step_rejected(self):
        solver = _solver(task=Task.STOP_AT_MESH)
        y = torch.ones(1, dtype=DT)
        r = solver.integrate(y, 0.0, 1.0)
        r = solver.integrate(y, r.t, 0.1)
        assert r.status == StatusCode.INPUT_ERROR


class TestCriticalTime:

    def test_normal_never_passes_tcrit(self):
        solver = _solver(task=Task.NORMAL_TCRIT, tcrit=1.5)
        y = torch.ones(1, dtype=DT)
        r = solver.integrate(y, 0.0, 1.0)
        assert r.ok and r.t == 1.0
        assert solver.t <= 1.5
        r = solver.integrate(y, 1.0, 1.5)
        assert r.ok and r.t == 1.5
        assert solver.t <= 1.5 * (1.0 + 1e-12)
        assert y.item() == pytest.approx(math.exp(-1.5), rel=1e-6)

    def test_one_step_lands_on_tcrit(self):
        tcrit  = 0.3
        solver = _solver(task=Task.ONE_STEP_TCRIT, tcrit=tcrit)
        y, t = torch.ones(1, dtype=DT), 0.0
        for _ in range(1000):
            r = solver.integrate(y, t, tcrit)
            assert r.ok
            assert solver.t <= tcrit * (1.0 + 1e-12)
            t = r.t
            if t == tcrit:
                break
        assert t == tcrit
        assert y.item() == pytest.approx(math.exp(-tcrit), rel=1e-6)

    def test_tcrit_behind_tout_rejected(self):
        r = _solver(task=Task.NORMAL_TCRIT, tcrit=0.5).integrate(
            torch.ones(1, dtype=DT), 0.0, 1.0)
        assert r.status == StatusCode.INPUT_ERROR
        assert r.counters.nfe == 0

    def test_tcrit_behind_current_time_rejected(self):
        solver = _solver(task=Task.NORMAL_TCRIT, tcrit=2.0)
        y = torch.ones(1, dtype=DT)
        solver.integrate(y, 0.0, 2.0)
        solver.update_options(tcrit=1.0)
        r = solver.integrate(y, 2.0, 3.0)
        assert r.status == StatusCode.INPUT_ERROR


class TestDenseOutput:

    def _run(self):
        solver = _solver()
        y = torch.ones(1, dtype=DT)
        solver.integrate(y, 0.0, 1.0)
        return solver

    def test_value_and_derivative_inside_last_step(self):
        solver = self._run()
        tn, hu = solver.t, solver.counters.hu
        for frac in (0.0, 0.25, 0.5, 1.0):
            t = tn - frac * hu
            assert solver.interpolate(t).item() == pytest.approx(math.exp(-t), rel=1e-6)
            assert solver.interpolate(t, k=1).item() == \
                pytest.approx(-math.exp(-t), rel=1e-4)

    def test_no_step_taken_by_interpolation(self):
        solver = self._run()
        nst, nfe = solver.counters.nst, solver.counters.nfe
        solver.interpolate(solver.t)
        assert (solver.counters.nst, solver.counters.nfe) == (nst, nfe)

    def test_outside_last_step(self):
        solver = self._run()
        with pytest.raises(InterpolationError):
            solver.interpolate(solver.t - 2.0 * solver.counters.hu)
        with pytest.raises(InterpolationError):
            solver.interpolate(solver.t + 1.0)

    def test_derivative_order_above_current_order(self):
        solver = self._run()
        with pytest.raises(InterpolationError):
            solver.interpolate(solver.t, k=solver.order + 1)

    def test_before_first_step(self):
        with pytest.raises(InterpolationError):
            _solver().interpolate(0.0)
