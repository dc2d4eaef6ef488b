# nordsieck.py
"""
History-array operations.

Row ``j`` of ``yh`` holds ``h**j / j! * y^(j)(t)``.  Only rows ``0..q`` are
meaningful at order ``q``; row ``maxord`` may additionally hold the saved
correction used to raise the order.
"""
import functools
import math

import torch

from .errors import InterpolationError


@functools.lru_cache(maxsize=None)
def _pascal(q: int, sign: int) -> tuple:
    """Upper-triangular Pascal matrix P[i, j] = C(j, i) (times sign**(j-i))."""
    return tuple(tuple(float(math.comb(j, i) * sign ** (j - i)) if j >= i else 0.0
                       for j in range(q + 1))
                 for i in range(q + 1))


def _apply(yh: torch.Tensor, q: int, sign: int) -> None:
    P = torch.tensor(_pascal(q, sign), dtype=yh.dtype, device=yh.device)
    yh[:q + 1] = P @ yh[:q + 1]


def predict(yh: torch.Tensor, q: int) -> None:
    """Taylor-extrapolate the history one step ahead, in place."""
    _apply(yh, q, 1)


def retract(yh: torch.Tensor, q: int) -> None:
    """Undo :func:`predict`, restoring the history of the last accepted step."""
    _apply(yh, q, -1)


def correct(yh: torch.Tensor, el, acor: torch.Tensor) -> None:
    """Fold the accumulated correction into rows ``0..len(el)-1``."""
    l = len(el)
    coef = torch.tensor(el, dtype=yh.dtype, device=yh.device)
    yh[:l] += coef.unsqueeze(1) * acor.unsqueeze(0)


def rescale(yh: torch.Tensor, l: int, rh: float) -> None:
    """Rescale rows ``1..l-1`` for a step-size ratio ``rh``."""
    if l < 2:
        return
    powers = rh ** torch.arange(1, l, dtype=yh.dtype, device=yh.device)
    yh[1:l] *= powers.unsqueeze(1)


def interpolate(yh: torch.Tensor, q: int, t: float, tn: float,
                h: float, hu: float, k: int = 0) -> torch.Tensor:
    """
    k-th derivative of the interpolating polynomial at ``t``.

    ``t`` must lie in ``[tn - hu, tn]`` (up to rounding) and ``0 <= k <= q``.
    """
    if k < 0 or k > q:
        raise InterpolationError(f"derivative order k = {k} illegal, "
                                 f"must be in 0..{q}")
    eps = torch.finfo(yh.dtype).eps
    tp = tn - hu - 100.0 * eps * math.copysign(abs(tn) + abs(hu), hu)
    if (t - tp) * (t - tn) > 0.0:
        raise InterpolationError(f"t = {t:g} illegal, not in interval "
                                 f"tcur - hu = {tn - hu:g} to tcur = {tn:g}")

    s = (t - tn) / h
    # Horner over rows q..k with falling-factorial weights j!/(j-k)!
    dky = math.perm(q, k) * yh[q]
    for j in range(q - 1, k - 1, -1):
        dky = math.perm(j, k) * yh[j] + s * dky
    if k == 0:
        return dky.clone()
    return dky * h ** (-k)
