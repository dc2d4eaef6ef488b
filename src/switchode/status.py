# status.py
import enum
from dataclasses import dataclass, field
from typing import Optional

import torch

from . import errors
from .stepcontext import Counters


class StatusCode(enum.IntEnum):
    """Return codes of ``Lsoda.integrate`` (numbering follows LSODA istate)."""
    SUCCESS                       = 2
    EXCESS_WORK                   = -1
    EXCESS_ACCURACY               = -2
    INPUT_ERROR                   = -3
    REPEATED_ERROR_TEST_FAILURES  = -4
    REPEATED_CONVERGENCE_FAILURES = -5
    ZERO_ERROR_WEIGHT             = -6


class Phase(enum.Enum):
    """Lifecycle of one integrator instance."""
    UNINITIALIZED = "uninitialized"
    RUNNING       = "running"
    FATAL         = "fatal"


_EXCEPTIONS = {
    StatusCode.EXCESS_WORK:                   errors.ExcessWorkError,
    StatusCode.EXCESS_ACCURACY:               errors.ExcessAccuracyError,
    StatusCode.INPUT_ERROR:                   errors.InputError,
    StatusCode.REPEATED_ERROR_TEST_FAILURES:  errors.RepeatedErrorTestFailures,
    StatusCode.REPEATED_CONVERGENCE_FAILURES: errors.RepeatedConvergenceFailures,
    StatusCode.ZERO_ERROR_WEIGHT:             errors.ZeroErrorWeightError,
}


@dataclass
class IntegrationResult:
    status:    StatusCode
    t:         float
    y:         torch.Tensor
    counters:  Counters
    message:   str = ""

    # diagnostics, only filled for the matching failures
    tolerance_scale: Optional[float] = None     # EXCESS_ACCURACY
    worst_component: Optional[int]   = None     # repeated test/conv. failures
    method_switches: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == StatusCode.SUCCESS

    def raise_for_status(self) -> "IntegrationResult":
        """Raise the exception matching ``status``; return self on success."""
        if self.ok:
            return self
        raise _EXCEPTIONS[self.status](self.message, result=self)
