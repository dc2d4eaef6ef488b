# errors.py
"""
Exception hierarchy for switchode.

``Lsoda.integrate`` never raises for numerical failures; it reports them
through ``IntegrationResult.status``.  The classes below are what
``IntegrationResult.raise_for_status()`` turns those codes into, for callers
who prefer exceptions.
"""


class IntegrationError(RuntimeError):
    """Base class; carries the failing result for inspection."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class InputError(IntegrationError):
    """Illegal input detected before any step was attempted."""


class ExcessWorkError(IntegrationError):
    """``max_steps`` internal steps taken without reaching ``tout``."""


class ExcessAccuracyError(IntegrationError):
    """Requested tolerances are below what float arithmetic can deliver."""


class RepeatedErrorTestFailures(IntegrationError):
    """The local error test failed repeatedly or with ``|h| == hmin``."""


class RepeatedConvergenceFailures(IntegrationError):
    """The corrector failed to converge repeatedly or with ``|h| == hmin``."""


class ZeroErrorWeightError(IntegrationError):
    """Some error weight ``rtol*|y| + atol`` became non-positive."""


class InterpolationError(ValueError):
    """Dense output requested outside the last step or above the order."""
