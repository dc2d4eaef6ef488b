# errweight.py
import math
import torch

from .options import Banded, Dense, JacobianKind


def error_weights(y: torch.Tensor, rtol: torch.Tensor,
                  atol: torch.Tensor) -> torch.Tensor:
    """EWT = rtol*|y| + atol  (rtol/atol scalar tensors or length-n)."""
    return rtol * y.abs() + atol


def weights_positive(ewt: torch.Tensor) -> int:
    """Index of the first non-positive weight, or -1 if all are positive."""
    bad = torch.nonzero(~(ewt > 0.0))
    return int(bad[0, 0]) if bad.numel() else -1


def weighted_rms(v: torch.Tensor, ewt: torch.Tensor) -> float:
    """sqrt(mean((v/ewt)**2)), scaled by the largest ratio so it cannot overflow."""
    r = (v / ewt).abs()
    m = r.max().item()
    if m == 0.0 or not math.isfinite(m):
        return m
    return m * math.sqrt(torch.mean((r / m) ** 2).item())


def weighted_matrix_norm(a: torch.Tensor, ewt: torch.Tensor,
                         kind: JacobianKind = Dense()) -> float:
    """
    Weighted row-sum norm  max_i  sum_j |a_ij| * ewt_j / ewt_i.

    This is the norm induced by the weighted max-norm; it is the Lipschitz
    estimate fed to the stiffness test.  ``a`` is dense ``(n, n)`` or in the
    band layout ``(ml + mu + 1, n)`` with ``a[mu + i - j, j] = A[i, j]``.
    """
    if isinstance(kind, Banded):
        n   = a.shape[1]
        wa  = a.abs() * ewt.unsqueeze(0)                  # (width, n)
        row = torch.zeros(n, dtype=a.dtype, device=a.device)
        for r in range(kind.width):
            d = r - kind.mu                               # d = i - j
            if d >= 0:
                row[d:] += wa[r, :n - d]
            else:
                row[:n + d] += wa[r, -d:]
        return (row / ewt).max().item()
    return ((a.abs() @ ewt) / ewt).max().item()
