"""
Thin wrapper around Python's ``logging`` module for switchode.

Usage
-----
>>> from switchode.logger import get_logger
>>> log = get_logger(__name__)
>>> log.info("method switch at t = %g", t)
>>> log.debug2("step %d accepted", nst)     # per-step trace
"""

import logging
import sys

# ── Custom level (below DEBUG=10) ───────────────────────────────────────
DEBUG2 = 9

logging.addLevelName(DEBUG2, "DEBUG2")


class _SwitchodeLogger(logging.Logger):
    """Logger subclass that adds a ``debug2`` convenience method."""

    def debug2(self, msg, *args, **kwargs):
        if self.isEnabledFor(DEBUG2):
            self._log(DEBUG2, msg, args, **kwargs)


def get_logger(name: str | None = None) -> _SwitchodeLogger:
    """Return a logger under the ``switchode`` hierarchy.

    The logger class is swapped in only for this lookup so that loggers
    belonging to other libraries keep their own class.
    """
    previous = logging.getLoggerClass()
    logging.setLoggerClass(_SwitchodeLogger)
    try:
        return logging.getLogger(name or "switchode")
    finally:
        logging.setLoggerClass(previous)


def set_level(level: int | str = logging.INFO) -> None:
    """Set the log level for *all* switchode loggers at once."""
    logging.getLogger("switchode").setLevel(level)


def setup(level: int | str = logging.INFO, stream=None) -> None:
    """One-time setup: attach a stderr handler with the switchode format.

    Safe to call multiple times, extra calls are no-ops.
    """
    root = logging.getLogger("switchode")
    if root.handlers:
        return
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)-7s: %(message)s"))
    root.addHandler(handler)
    set_level(level)
