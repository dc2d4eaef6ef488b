"""Tests for switchode.linsolve: dense and band LU, singular reporting."""
import torch

from switchode.linsolve import factor_banded, factor_dense

DT = torch.float64


def _tridiagonal(n, lo, d, up):
    A = torch.diag(torch.full((n,), d, dtype=DT))
    A += torch.diag(torch.full((n - 1,), lo, dtype=DT), -1)
    A += torch.diag(torch.full((n - 1,), up, dtype=DT), 1)
    return A


def _to_band(A, ml, mu):
    n  = A.shape[0]
    ab = torch.zeros(ml + mu + 1, n, dtype=A.dtype)
    for j in range(n):
        for i in range(max(0, j - mu), min(n, j + ml + 1)):
            ab[mu + i - j, j] = A[i, j]
    return ab


class TestDense:

    def test_solves_system(self):
        gen = torch.Generator().manual_seed(0)
        A = torch.randn(5, 5, generator=gen, dtype=DT) + 5.0 * torch.eye(5, dtype=DT)
        b = torch.randn(5, generator=gen, dtype=DT)
        solve = factor_dense(A)
        assert solve is not None
        torch.testing.assert_close(A @ solve(b), b)

    def test_singular_reported(self):
        assert factor_dense(torch.zeros(3, 3, dtype=DT)) is None
        assert factor_dense(torch.tensor([[1.0, 2.0], [2.0, 4.0]], dtype=DT)) is None


class TestBanded:

    def test_tridiagonal(self):
        A  = _tridiagonal(8, -1.0, 4.0, -2.0)
        b  = torch.linspace(-1.0, 1.0, 8, dtype=DT)
        solve = factor_banded(_to_band(A, 1, 1), 1, 1)
        assert solve is not None
        x = solve(b)
        assert x.dtype == DT
        torch.testing.assert_close(x, torch.linalg.solve(A, b))

    def test_unsymmetric_band(self):
        gen = torch.Generator().manual_seed(3)
        n, ml, mu = 9, 2, 1
        A = torch.randn(n, n, generator=gen, dtype=DT)
        A = torch.triu(torch.tril(A, mu), -ml) + 4.0 * torch.eye(n, dtype=DT)
        b = torch.randn(n, generator=gen, dtype=DT)
        solve = factor_banded(_to_band(A, ml, mu), ml, mu)
        torch.testing.assert_close(solve(b), torch.linalg.solve(A, b))

    def test_reusable_factorisation(self):
        A = _tridiagonal(4, 1.0, 3.0, 1.0)
        solve = factor_banded(_to_band(A, 1, 1), 1, 1)
        for k in range(3):
            b = torch.full((4,), float(k), dtype=DT)
            torch.testing.assert_close(A @ solve(b), b)

    def test_singular_reported(self):
        assert factor_banded(torch.zeros(3, 5, dtype=DT), 1, 1) is None
