# integrator.py
"""
Driver for the automatic stiff/nonstiff multistep integrator.

    solver = Lsoda(f, rtol=1e-6, atol=1e-8)
    result = solver.integrate(y, 0.0, 10.0)     # y is updated in place

The first ``integrate`` call initialises the problem from ``(t, y)``; later
calls continue from the internal state and only use ``y`` as the output
buffer.  Failures never raise: they come back as ``result.status``.
"""
import logging
import math
from typing import Callable, Optional, Sequence, Tuple, Union

import torch

from . import nordsieck, stepper
from .errors import InterpolationError
from .errweight import error_weights, weighted_rms, weights_positive
from .jacobian import JacobianManager
from .logger import get_logger
from .options import Banded, Method, SolverOptions, Task, jacobian_kind
from .stepcontext import Counters, StepperState
from .status import IntegrationResult, Phase, StatusCode

log = get_logger(__name__)

Tolerance = Union[float, Sequence[float], torch.Tensor]


class Lsoda:
    """Livermore-style solver with automatic Adams/BDF switching."""

    # ---- construction -----------------------------------------------------
    def __init__(self, f: Callable, rtol: Tolerance = 1.0e-6,
                 atol: Tolerance = 1.0e-6, *,
                 jac: Optional[Callable] = None,
                 band: Optional[Tuple[int, int]] = None,
                 options: Optional[SolverOptions] = None):
        self.f       = f
        self.jac     = jac
        self.kind    = jacobian_kind(band)
        self.options = options or SolverOptions()
        self._rtol_in = rtol
        self._atol_in = atol
        self.reset()

    def reset(self) -> None:
        """Forget the current problem; the next call is a first call."""
        self.phase    = Phase.UNINITIALIZED
        self.state: Optional[StepperState] = None
        self.jacobian: Optional[JacobianManager] = None
        self.rtol = self.atol = None
        self.method_switches: list = []
        self._pending = False
        self._ntrep   = 0
        self._nhnil   = 0
        self._switches_now: list = []

    # ---- continuation with changes ----------------------------------------
    def set_tolerances(self, rtol: Tolerance, atol: Tolerance) -> None:
        self._rtol_in, self._atol_in = rtol, atol
        self._pending = self.phase != Phase.UNINITIALIZED

    def update_options(self, **changes) -> None:
        """
        Revise options between calls.  ``first_step``, the maximum orders
        and ``dtype`` only take effect on a first call.
        """
        self.options  = self.options.updated(**changes)
        self._pending = self.phase != Phase.UNINITIALIZED

    # ---- read-only views --------------------------------------------------
    @property
    def t(self) -> Optional[float]:
        return None if self.state is None else self.state.tn

    @property
    def step_size(self) -> Optional[float]:
        return None if self.state is None else self.state.h

    @property
    def order(self) -> Optional[int]:
        return None if self.state is None else self.state.nq

    @property
    def method(self) -> Optional[Method]:
        return None if self.state is None else self.state.meth

    @property
    def counters(self) -> Counters:
        return Counters() if self.state is None else self.state.counters.snapshot()

    def interpolate(self, t: float, k: int = 0) -> torch.Tensor:
        """k-th derivative of y at t inside the last step (dense output)."""
        st = self.state
        if st is None or st.counters.nst == 0:
            raise InterpolationError("no step has been taken yet")
        return nordsieck.interpolate(st.yh, st.nq, float(t), st.tn, st.h,
                                     st.counters.hu, k)

    # ---- helpers -----------------------------------------------------------
    def _rhs(self, t: float, y: torch.Tensor) -> torch.Tensor:
        dy = torch.as_tensor(self.f(t, y), dtype=y.dtype, device=y.device)
        if dy.numel() != y.numel():
            raise ValueError(f"f returned {dy.numel()} values for a "
                             f"system of size {y.numel()}")
        return dy.reshape(-1)

    def _tolerance(self, tol, n: int, dtype, name: str):
        tol = torch.as_tensor(tol, dtype=dtype)
        if tol.ndim > 1 or (tol.ndim == 1 and tol.numel() != n):
            return None, f"{name} must be a scalar or have length n = {n}"
        if not bool(torch.isfinite(tol).all()):
            return None, f"{name} must be finite"
        if bool((tol < 0.0).any()):
            bad = tol.min().item()
            return None, f"{name} = {bad:g} is less than 0."
        return tol, None

    def _result(self, status: StatusCode, t: float, y_out: torch.Tensor,
                y_buf=None, message: str = "", **diag) -> IntegrationResult:
        if isinstance(y_buf, torch.Tensor) and y_buf.numel() == y_out.numel():
            y_buf.copy_(y_out.reshape(y_buf.shape))
        if status != StatusCode.SUCCESS:
            log.warning(message)
        counters = self.counters
        return IntegrationResult(status, t, y_out.clone(), counters, message,
                                 method_switches=list(self._switches_now), **diag)

    def _input_error(self, message: str, t: float, y) -> IntegrationResult:
        if self.state is not None:
            st = self.state
            return self._result(StatusCode.INPUT_ERROR, st.tn, st.yh[0],
                                y, message)
        y_out = torch.as_tensor(y, dtype=self.options.dtype).reshape(-1)
        return self._result(StatusCode.INPUT_ERROR, t, y_out, None, message)

    def _stop(self, status: StatusCode, message: str, y, fatal: bool = True,
              **diag) -> IntegrationResult:
        """Return at the last accepted state (tn, yh[0])."""
        st = self.state
        self.phase = Phase.FATAL if fatal else Phase.RUNNING
        return self._result(status, st.tn, st.yh[0], y, message, **diag)

    def _success(self, t: float, y_out: torch.Tensor, y) -> IntegrationResult:
        self.phase = Phase.RUNNING
        return self._result(StatusCode.SUCCESS, t, y_out, y)

    def _mesh_return(self, y, ihit: bool = False) -> IntegrationResult:
        st = self.state
        t  = self.options.tcrit if ihit else st.tn
        return self._success(t, st.yh[0], y)

    # ---- validation (no f evaluations) -------------------------------------
    def _validate(self, y, t: float, tout: float, first: bool) -> Optional[str]:
        opts = self.options
        msg = opts.validate()
        if msg:
            return msg
        task = Task(opts.task)

        if first:
            y0 = torch.as_tensor(y, dtype=opts.dtype)
            if y0.ndim > 1:
                return f"y must be one-dimensional, got shape {tuple(y0.shape)}"
            n = y0.numel()
            if n <= 0:
                return f"neq = {n} is less than 1"
            if not bool(torch.isfinite(y0).all()):
                return "initial y contains non-finite values"
        else:
            n = self.state.n

        rtol, msg = self._tolerance(self._rtol_in, n, opts.dtype, "rtol")
        if msg:
            return msg
        atol, msg = self._tolerance(self._atol_in, n, opts.dtype, "atol")
        if msg:
            return msg
        self.rtol, self.atol = rtol, atol

        if isinstance(self.kind, Banded):
            if not 0 <= self.kind.ml < n:
                return f"ml = {self.kind.ml} is not between 0 and neq - 1"
            if not 0 <= self.kind.mu < n:
                return f"mu = {self.kind.mu} is not between 0 and neq - 1"

        if not first:
            return None

        h0 = opts.first_step
        if (tout - t) * h0 < 0.0:
            return (f"tout = {tout:g} behind t = {t:g}; integration "
                    f"direction is given by first_step = {h0:g}")
        if task.uses_tcrit and (opts.tcrit - tout) * (tout - t) < 0.0:
            return f"tcrit = {opts.tcrit:g} is behind tout = {tout:g}"
        if h0 == 0.0:
            eps = torch.finfo(opts.dtype).eps
            if abs(tout - t) < 2.0 * eps * max(abs(t), abs(tout)):
                return (f"tout = {tout:g} too close to t = {t:g} "
                        f"to start integration")
        return None

    # ---- first call --------------------------------------------------------
    def _start(self, y, t: float, tout: float) -> Optional[IntegrationResult]:
        opts = self.options
        y0 = torch.as_tensor(y, dtype=opts.dtype).reshape(-1).clone()
        n  = y0.numel()

        ewt = error_weights(y0, self.rtol, self.atol)
        bad = weights_positive(ewt)
        if bad >= 0:
            return self._result(StatusCode.ZERO_ERROR_WEIGHT, t, y0, None,
                                f"ewt[{bad}] = {ewt[bad].item():g} <= 0.")

        st = StepperState.allocate(n, opts, device=y0.device)
        st.tn, st.ewt = t, ewt
        st.counters.tsw = t
        st.maxord = st.mxordn
        st.meth   = Method.ADAMS
        st.newton = False
        st.jstart = 0
        self.state    = st
        self.jacobian = JacobianManager(self._rhs, self.jac, self.kind)
        self._nhnil   = 0

        h0 = opts.first_step
        if Task(opts.task).uses_tcrit and h0 != 0.0 and (t + h0 - opts.tcrit) * h0 > 0.0:
            h0 = opts.tcrit - t

        st.yh[0] = y0
        st.yh[1] = self._rhs(t, y0.clone())
        st.counters.nfe = 1
        st.nq, st.h = 1, 1.0

        if h0 == 0.0:
            # h0**-2 = 1/(tol*w0**2) + tol*||f0||**2
            eps   = st.eps
            tdist = abs(tout - t)
            w0    = max(abs(t), abs(tout))
            tol   = self.rtol.max().item()
            if tol <= 0.0:
                atol = self.atol.expand(n)
                nz   = y0 != 0.0
                if bool(nz.any()):
                    tol = (atol[nz] / y0[nz].abs()).max().item()
            tol = min(max(tol, 100.0 * eps), 0.001)
            fnorm = weighted_rms(st.yh[1], ewt)
            h0 = 1.0 / math.sqrt(1.0 / (tol * w0 * w0) + tol * fnorm * fnorm)
            h0 = min(h0, tdist)
            h0 = math.copysign(h0, tout - t)

        rh = abs(h0) * st.hmxi
        if rh > 1.0:
            h0 /= rh
        st.h = h0
        st.yh[1] *= h0
        self.phase = Phase.RUNNING
        log.debug("start: n = %d, t = %g, h0 = %g", n, t, h0)
        return None

    # ---- stop tests before stepping (continuation calls) --------------------
    def _pre_step_checks(self, y, tout: float):
        """Return a result if the request is already satisfied, else None."""
        st   = self.state
        opts = self.options
        task = Task(opts.task)
        eps  = st.eps
        tn, h = st.tn, st.h

        if task == Task.NORMAL:
            if (tn - tout) * h >= 0.0:
                return self._interpolated(y, tout, task)
            return None
        if task == Task.ONE_STEP:
            return None
        if task == Task.STOP_AT_MESH:
            tp = tn - st.counters.hu * (1.0 + 100.0 * eps)
            if (tp - tout) * h > 0.0:
                return self._input_error(f"task = {task.name} and tout = "
                                         f"{tout:g} behind tcur - hu = {tp:g}",
                                         tn, y)
            if (tn - tout) * h < 0.0:
                return None
            return self._mesh_return(y)

        tcrit = opts.tcrit
        if (tn - tcrit) * h > 0.0:
            return self._input_error(f"task = {task.name} and tcrit = {tcrit:g} "
                                     f"behind tcur = {tn:g}", tn, y)
        if task == Task.NORMAL_TCRIT:
            if (tcrit - tout) * h < 0.0:
                return self._input_error(f"task = {task.name} and tcrit = "
                                         f"{tcrit:g} behind tout = {tout:g}",
                                         tn, y)
            if (tn - tout) * h >= 0.0:
                return self._interpolated(y, tout, task)
        hmx  = abs(tn) + abs(h)
        if abs(tn - tcrit) <= 100.0 * eps * hmx:
            return self._mesh_return(y, ihit=True)
        tnext = tn + h * (1.0 + 4.0 * eps)
        if (tnext - tcrit) * h > 0.0:
            st.h = (tcrit - tn) * (1.0 - 4.0 * eps)
            if st.jstart != -1:
                st.jstart = -2
        return None

    def _interpolated(self, y, tout: float, task: Task) -> IntegrationResult:
        st = self.state
        try:
            y_out = nordsieck.interpolate(st.yh, st.nq, tout, st.tn, st.h,
                                          st.counters.hu)
        except InterpolationError as exc:
            return self._input_error(f"trouble from interpolation, task = "
                                     f"{task.name}, tout = {tout:g}: {exc}",
                                     st.tn, y)
        return self._success(tout, y_out, y)

    # ---- method switch bookkeeping -----------------------------------------
    def _record_switch(self) -> None:
        st = self.state
        st.counters.tsw = st.tn
        st.maxord = st.mxordn if st.meth == Method.ADAMS else st.mxords
        st.jstart = -1
        entry = (st.tn, Method(st.counters.mused), st.meth)
        self.method_switches.append(entry)
        self._switches_now.append(entry)
        name  = "BDF (stiff)" if st.meth == Method.BDF else "Adams (nonstiff)"
        level = logging.INFO if self.options.log_switches else logging.DEBUG
        log.log(level, "a switch to the %s method has occurred at t = %g, "
                "tentative step size h = %g, step nst = %d",
                name, st.tn, st.h, st.counters.nst)

    # ---- main entry --------------------------------------------------------
    def integrate(self, y, t: float, tout: float) -> IntegrationResult:
        """
        Advance toward ``tout`` according to ``options.task``.

        ``y`` is read on the first call and, if it is a tensor, overwritten
        with the returned state on every call.  ``t`` is only read on the
        first call; the time reached is ``result.t``.
        """
        self._switches_now = []
        t, tout = float(t), float(tout)
        opts    = self.options
        first   = self.phase == Phase.UNINITIALIZED

        if self.phase == Phase.FATAL and not self._pending:
            return self._input_error("integrator stopped after a fatal error; "
                                     "revise tolerances or options, or call "
                                     "reset()", t, y)
        if first and tout == t:
            self._ntrep += 1
            y0 = torch.as_tensor(y, dtype=opts.dtype).reshape(-1)
            if self._ntrep < 5:
                return self._result(StatusCode.SUCCESS, t, y0, None)
            return self._input_error("repeated calls with tout = t; run "
                                     "aborted (apparent infinite loop)", t, y)

        if first or self._pending:
            msg = self._validate(y, t, tout, first)
            if msg:
                return self._input_error(msg, t, y)
            self._ntrep = 0

        if first:
            failed = self._start(y, t, tout)
            if failed is not None:
                return failed
        else:
            if self._pending:
                self.state.apply_options(opts)
                self.state.jstart = -1
                self._pending = False
            done = self._pre_step_checks(y, tout)
            if done is not None:
                return done

        st, c = self.state, self.state.counters
        task  = Task(opts.task)
        eps   = st.eps
        nslast = c.nst

        while True:
            if not (first and c.nst == 0):
                if c.nst - nslast >= opts.max_steps:
                    return self._stop(StatusCode.EXCESS_WORK,
                                      f"{opts.max_steps} steps taken before "
                                      f"reaching tout = {tout:g}",
                                      y, fatal=False)
                st.ewt = error_weights(st.yh[0], self.rtol, self.atol)
                bad = weights_positive(st.ewt)
                if bad >= 0:
                    return self._stop(StatusCode.ZERO_ERROR_WEIGHT,
                                      f"at t = {st.tn:g}, ewt[{bad}] = "
                                      f"{st.ewt[bad].item():g} <= 0.", y)

            tolsf = eps * weighted_rms(st.yh[0], st.ewt)
            if tolsf > 0.01:
                tolsf *= 200.0
                if c.nst == 0:
                    # nothing to continue from: the next call starts afresh
                    result = self._result(StatusCode.EXCESS_ACCURACY, t, st.yh[0], y,
                                        "at start of problem, too much accuracy "
                                        "requested for precision of machine, "
                                        f"suggested scaling factor = {tolsf:g}",
                                        tolerance_scale=tolsf)
                    self.reset()
                    return result
                return self._stop(StatusCode.EXCESS_ACCURACY,
                                  f"at t = {st.tn:g}, too much accuracy requested "
                                  "for precision of machine, suggested scaling "
                                  f"factor = {tolsf:g}", y, tolerance_scale=tolsf)

            if st.tn + st.h == st.tn:
                self._nhnil += 1
                if self._nhnil <= opts.max_hnil_warnings:
                    log.warning("internal t = %g and h = %g are such that "
                                "t + h = t on the next step; solver will "
                                "continue anyway", st.tn, st.h)
                    if self._nhnil == opts.max_hnil_warnings:
                        log.warning("above warning has been issued %d times, "
                                    "it will not be issued again for this "
                                    "problem", self._nhnil)

            kflag = stepper.step(st, self._rhs, self.jacobian)

            if kflag == 0:
                if st.meth != c.mused:
                    self._record_switch()
                tn, h = st.tn, st.h
                if task == Task.NORMAL:
                    if (tn - tout) * h < 0.0:
                        continue
                    return self._interpolated(y, tout, task)
                if task == Task.ONE_STEP:
                    return self._mesh_return(y)
                if task == Task.STOP_AT_MESH:
                    if (tn - tout) * h >= 0.0:
                        return self._mesh_return(y)
                    continue
                hmx  = abs(tn) + abs(h)
                ihit = abs(tn - opts.tcrit) <= 100.0 * eps * hmx
                if task == Task.ONE_STEP_TCRIT:
                    return self._mesh_return(y, ihit)
                # NORMAL_TCRIT
                if (tn - tout) * h >= 0.0:
                    return self._interpolated(y, tout, task)
                if ihit:
                    return self._mesh_return(y, ihit)
                tnext = tn + h * (1.0 + 4.0 * eps)
                if (tnext - opts.tcrit) * h <= 0.0:
                    continue
                st.h = (opts.tcrit - tn) * (1.0 - 4.0 * eps)
                if st.jstart != -1:
                    st.jstart = -2
                continue

            # repeated failures: report the component with the largest error
            worst = int(torch.argmax(st.acor.abs() / st.ewt))
            if kflag == -1:
                return self._stop(StatusCode.REPEATED_ERROR_TEST_FAILURES,
                                  f"at t = {st.tn:g} and step size h = {st.h:g}, "
                                  "the error test failed repeatedly or with "
                                  "|h| = hmin", y, worst_component=worst)
            return self._stop(StatusCode.REPEATED_CONVERGENCE_FAILURES,
                              f"at t = {st.tn:g} and step size h = {st.h:g}, "
                              "the corrector convergence failed repeatedly or "
                              "with |h| = hmin", y, worst_component=worst)
