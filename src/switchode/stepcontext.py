# stepcontext.py ------------------------------------------------------------
from dataclasses import dataclass, field, replace
from typing import Tuple

import torch

from .options import Method, SolverOptions
from .tables import MethodTable, coefficients


@dataclass
class Counters:
    """Diagnostic counters; they never change results, only gate escalation."""
    nst:   int   = 0         # steps taken
    nfe:   int   = 0         # f evaluations
    nje:   int   = 0         # Jacobian evaluations
    nlu:   int   = 0         # LU factorisations
    ncf:   int   = 0         # consecutive convergence failures (this step)
    netf:  int   = 0         # consecutive error-test failures (this step)
    ncfn:  int   = 0         # convergence failures, total
    netfn: int   = 0         # error-test failures, total
    nqu:   int   = 0         # order of the last successful step
    hu:    float = 0.0       # step size of the last successful step
    mused: int   = 0         # method of the last successful step, 0 = none
    tsw:   float = 0.0       # time of the last method switch

    def snapshot(self) -> "Counters":
        return replace(self)


@dataclass
class StepperState:
    # user-visible state
    n:       int
    yh:      torch.Tensor                 # (lenyh, n) Nordsieck history
    ewt:     torch.Tensor                 # (n,)       error weights
    savf:    torch.Tensor                 # (n,)       last f evaluation
    acor:    torch.Tensor                 # (n,)       accumulated correction
    y:       torch.Tensor                 # (n,)       corrector iterate
    tn:      float = 0.0
    h:       float = 0.0

    # step / order bookkeeping
    hold:    float = 0.0
    hmin:    float = 0.0
    hmxi:    float = 0.0
    rmax:    float = 10.0
    nq:      int   = 1
    l:       int   = 2
    lmax:    int   = 13
    maxord:  int   = 12
    mxordn:  int   = 12
    mxords:  int   = 5
    ialth:   int   = 2
    jstart:  int   = 0
    kflag:   int   = 0

    # method and coefficients
    meth:    Method = Method.ADAMS
    table:   MethodTable = field(default_factory=lambda: coefficients(Method.ADAMS))
    el:      Tuple[float, ...] = (1.0, 1.0)
    el0:     float = 1.0
    rc:      float = 0.0
    conit:   float = 0.0
    crate:   float = 0.7

    # Jacobian / corrector flags
    newton:  bool  = False                # chord-Newton instead of functional
    ipup:    bool  = False                # refresh iteration matrix before use
    jcur:    bool  = False                # Jacobian is current
    nslp:    int   = 0                    # nst at last refresh

    # stiffness detection
    pdnorm:  float = 0.0
    pdest:   float = 0.0
    pdlast:  float = 0.0
    ratio:   float = 5.0
    icount:  int   = 20
    irflag:  int   = 0

    # tunables copied from SolverOptions
    maxcor:     int   = 3
    mxncf:      int   = 10
    mxnef:      int   = 10
    msbp:       int   = 20
    ccmax:      float = 0.3
    growth:     float = 2.0
    growth_first: float = 10.0

    counters: Counters = field(default_factory=Counters)

    @classmethod
    def allocate(cls, n: int, opts: SolverOptions,
                 device=None) -> "StepperState":
        lenyh = 1 + max(opts.mxordn, opts.mxords)
        zeros = lambda *shape: torch.zeros(*shape, dtype=opts.dtype, device=device)
        state = cls(n=n, yh=zeros(lenyh + 1, n), ewt=zeros(n),
                    savf=zeros(n), acor=zeros(n), y=zeros(n),
                    mxordn=opts.mxordn, mxords=opts.mxords)
        state.apply_options(opts)
        return state

    def apply_options(self, opts: SolverOptions) -> None:
        self.hmin   = opts.min_step
        self.hmxi   = opts.hmxi
        self.maxcor = opts.max_corrector_iters
        self.mxncf  = opts.max_convergence_failures
        self.mxnef  = opts.max_error_test_failures
        self.msbp   = opts.jacobian_max_age
        self.ccmax  = opts.jacobian_rate_change
        self.growth = opts.max_growth
        self.growth_first = opts.max_growth_first

    @property
    def eps(self) -> float:
        return torch.finfo(self.yh.dtype).eps
