import numpy as np
import pytest
from scipy.sparse import csr_matrix, diags
from scipy.sparse.linalg import spsolve

from blackoil.config import Config
from blackoil.errors import SolverError, ValidationError
from blackoil.linear import (
    PRECONDITIONERS,
    SOLVERS,
    SparseLinearSolver,
    build_block_jacobi_preconditioner,
    build_diagonal_preconditioner,
    solve_linear_system,
)


@pytest.fixture
def system():
    """Diagonally dominant tridiagonal system with a known solution."""
    n = 30
    A = diags(
        [-1.0 * np.ones(n - 1), 4.0 * np.ones(n), -1.0 * np.ones(n - 1)],
        offsets=[-1, 0, 1],
        format="csr",
    )
    x = np.linspace(1.0, 2.0, n)
    return csr_matrix(A), A @ x, x


def test_builtin_names():
    assert set(SOLVERS) == {"bicgstab", "gmres", "lgmres", "tfqmr", "direct"}
    assert set(PRECONDITIONERS) == {"ilu", "amg", "diagonal", "block_jacobi"}


@pytest.mark.parametrize("solver", ["bicgstab", "gmres", "lgmres", "tfqmr", "direct"])
def test_each_solver_solves(system, solver):
    A, b, expected = system
    x, _ = solve_linear_system(A, b, max_iterations=200, rtol=1e-12, atol=0.0, solver=solver)
    np.testing.assert_allclose(x, expected, rtol=1e-8)


@pytest.mark.parametrize("preconditioner", ["ilu", "amg", "diagonal", "block_jacobi", None])
def test_each_preconditioner_works(system, preconditioner):
    A, b, expected = system
    x, _ = solve_linear_system(
        A, b, max_iterations=200, rtol=1e-12, atol=0.0, preconditioner=preconditioner
    )
    np.testing.assert_allclose(x, expected, rtol=1e-8)


def test_unknown_names_raise(system):
    A, b, _ = system
    with pytest.raises(ValidationError):
        solve_linear_system(A, b, max_iterations=10, solver="conjugate-something")
    with pytest.raises(ValidationError):
        solve_linear_system(A, b, max_iterations=10, solver=["bicgstab", 42])
    with pytest.raises(ValidationError):
        solve_linear_system(A, b, max_iterations=10, preconditioner="nope")


def test_falls_back_to_direct_solve(system):
    A, b, expected = system

    def never_converges(A, b, x0, *, rtol, atol, maxiter, M, callback):
        return np.zeros_like(b), 1

    x, M = solve_linear_system(
        A, b, max_iterations=5, solver=[never_converges], fallback_to_direct=True
    )
    np.testing.assert_allclose(x, expected, rtol=1e-10)
    assert M is None

    with pytest.raises(SolverError):
        solve_linear_system(A, b, max_iterations=5, solver=[never_converges])


def test_custom_solver_and_preconditioner(system):
    A, b, expected = system
    seen = []

    def exact(A, b, x0, *, rtol, atol, maxiter, M, callback):
        seen.append(M)
        return spsolve(A.tocsc(), b), 0

    x, M = solve_linear_system(
        A, b, max_iterations=10, solver=exact, preconditioner=build_diagonal_preconditioner
    )
    np.testing.assert_allclose(x, expected, rtol=1e-10)
    assert len(seen) == 1 and seen[0] is M
    assert M is not None


def test_diagonal_preconditioner_leaves_zero_pivots_unscaled():
    A = csr_matrix(np.diag([2.0, 0.0, 4.0]))
    M = build_diagonal_preconditioner(A)
    np.testing.assert_allclose(M.matvec(np.ones(3)), [0.5, 1.0, 0.25])


def test_block_jacobi_inverts_cell_blocks():
    block = np.array([[2.0, 1.0], [1.0, 3.0]])
    A = csr_matrix(np.kron(np.eye(2), block))
    M = build_block_jacobi_preconditioner(A, block_size=2)
    rhs = np.array([1.0, 2.0, 3.0, 4.0])
    np.testing.assert_allclose(A @ M.matvec(rhs), rhs)


def test_sparse_linear_solver_from_config(system):
    A, b, expected = system
    config = Config(linear_solver=["tfqmr", "bicgstab"], preconditioner="block_jacobi")
    solver = SparseLinearSolver.from_config(config, block_size=3)
    assert solver.block_size == 3
    assert solver.rtol == config.linear_rtol
    np.testing.assert_allclose(solver(A, b), expected, rtol=1e-8)
