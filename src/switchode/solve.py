# solve.py
"""Trajectory driver: integrate through a sequence of output times."""
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import torch

from .integrator import Lsoda
from .logger import get_logger
from .options import SolverOptions, Task
from .status import IntegrationResult

log = get_logger(__name__)


@dataclass
class Solution:
    t: List[float]            = field(default_factory=list)
    y: List[torch.Tensor]     = field(default_factory=list)
    result: Optional[IntegrationResult] = None
    switch_times: List[float] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.result is not None and self.result.ok

    def stacked(self) -> Tuple[torch.Tensor, torch.Tensor]:
        """Return ``(t (m,), y (m, n))`` tensors."""
        return (torch.tensor(self.t, dtype=self.y[0].dtype),
                torch.stack(self.y))


def odeint(f: Callable, y0, t_eval: Sequence[float],
           rtol=1.0e-6, atol=1.0e-6, *,
           jac: Optional[Callable] = None,
           band: Optional[Tuple[int, int]] = None,
           options: Optional[SolverOptions] = None) -> Solution:
    """
    Integrate ``y' = f(t, y)`` from ``t_eval[0]`` through every later entry
    of ``t_eval`` (which must be monotone).  Stops at the first failure and
    keeps the points reached so far in the returned ``Solution``.
    """
    t_eval = [float(t) for t in t_eval]
    if len(t_eval) < 1:
        raise ValueError("t_eval needs at least the initial time")
    steps = [b - a for a, b in zip(t_eval, t_eval[1:])]
    if any(s > 0 for s in steps) and any(s < 0 for s in steps):
        raise ValueError("t_eval must be monotone")

    options = options or SolverOptions()
    if options.task not in (Task.NORMAL, Task.NORMAL_TCRIT):
        options = options.updated(task=Task.NORMAL)

    solver = Lsoda(f, rtol, atol, jac=jac, band=band, options=options)
    dtype  = options.dtype
    y      = torch.as_tensor(y0, dtype=dtype).reshape(-1).clone()

    out = Solution()
    out.t.append(t_eval[0])
    out.y.append(y.clone())

    t = t_eval[0]
    for tout in t_eval[1:]:
        result = solver.integrate(y, t, tout)
        out.result = result
        out.switch_times.extend(ts for ts, _, _ in result.method_switches)
        if not result.ok:
            log.warning("odeint stopped at t = %g: %s", result.t, result.message)
            break
        t = result.t
        out.t.append(t)
        out.y.append(y.clone())
    return out
