"""switchode: adaptive-order multistep ODE integration with automatic
Adams/BDF switching."""
from .errors import (ExcessAccuracyError, ExcessWorkError, InputError,
                     IntegrationError, InterpolationError,
                     RepeatedConvergenceFailures, RepeatedErrorTestFailures,
                     ZeroErrorWeightError)
from .integrator import Lsoda
from .options import Banded, Dense, Method, SolverOptions, Task
from .solve import Solution, odeint
from .status import IntegrationResult, Phase, StatusCode

__version__ = "0.1.0"

__all__ = [
    "Lsoda", "odeint", "Solution",
    "SolverOptions", "Task", "Method", "Dense", "Banded",
    "IntegrationResult", "StatusCode", "Phase",
    "IntegrationError", "InputError", "ExcessWorkError", "ExcessAccuracyError",
    "RepeatedErrorTestFailures", "RepeatedConvergenceFailures",
    "ZeroErrorWeightError", "InterpolationError",
]
