# linsolve.py
"""
LU factorisation of the iteration matrix  P = I - h*el0*J.

Each factor routine returns a closure ``solve(b) -> x`` or ``None`` when
the matrix is singular; singularity is a status, never an exception.
"""
from typing import Callable, Optional

import numpy as np
import torch
from scipy.linalg import lapack

Solver = Callable[[torch.Tensor], torch.Tensor]


def factor_dense(P: torch.Tensor) -> Optional[Solver]:
    """Dense LU with partial pivoting (torch)."""
    LU, piv, info = torch.linalg.lu_factor_ex(P)
    if int(info) != 0:
        return None

    def solve(b: torch.Tensor, LU=LU, piv=piv) -> torch.Tensor:
        b_col = b.unsqueeze(-1)                                 # (n,1)
        return torch.linalg.lu_solve(LU, piv, b_col).squeeze(-1)

    return solve


def _gbtrf_trs(dtype: np.dtype):
    return lapack.get_lapack_funcs(("gbtrf", "gbtrs"), dtype=dtype)


def factor_banded(ab: torch.Tensor, ml: int, mu: int) -> Optional[Solver]:
    """
    Band LU (LAPACK gbtrf) of a matrix in band layout
    ``ab[mu + i - j, j] = P[i, j]``, shape ``(ml + mu + 1, n)``.
    """
    proto = ab
    a_np  = ab.detach().cpu().numpy()
    n     = a_np.shape[1]

    # gbtrf wants ml extra rows on top for fill-in
    lab = np.zeros((2 * ml + mu + 1, n), dtype=a_np.dtype, order="F")
    lab[ml:, :] = a_np
    gbtrf, gbtrs = _gbtrf_trs(lab.dtype)
    lu, ipiv, info = gbtrf(lab, ml, mu)
    if info != 0:
        return None

    def solve(b: torch.Tensor) -> torch.Tensor:
        x, info = gbtrs(lu, ml, mu, b.detach().cpu().numpy(), ipiv)
        if info != 0:                               # only on bad arguments
            raise ValueError(f"gbtrs: illegal value in argument {-info}")
        return torch.as_tensor(x, dtype=proto.dtype, device=proto.device).clone()

    return solve
