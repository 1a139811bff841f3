import logging
import typing

import attrs
import numpy as np
import pyamg  # type: ignore[import-untyped]
from scipy.sparse import csr_array, csr_matrix, diags  # type: ignore[import-untyped]
from scipy.sparse.linalg import (  # type: ignore[import-untyped]
    LinearOperator,
    bicgstab,
    gmres,
    lgmres,
    spilu,
    spsolve,
    tfqmr,
)

from blackoil._precision import get_floating_point_info
from blackoil.config import Config
from blackoil.errors import PreconditionerError, SolverError, ValidationError
from blackoil.types import (
    Preconditioner,
    PreconditionerFactory,
    Solver,
    SolverFunc,
)

logger = logging.getLogger(__name__)


__all__ = [
    "build_ilu_preconditioner",
    "build_diagonal_preconditioner",
    "build_amg_preconditioner",
    "build_block_jacobi_preconditioner",
    "solve_linear_system",
    "PRECONDITIONERS",
    "SOLVERS",
    "SparseLinearSolver",
]


def build_amg_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix], cycle: str = "V", **kwargs: typing.Any
) -> LinearOperator:
    """
    Creates an Algebraic Multigrid (AMG) preconditioner using PyAMG.

    :param A_csr: The coefficient matrix in CSR format.
    :param cycle: Multigrid cycle type ('V', 'W', 'F').
    :param kwargs: Additional arguments for `pyamg.smoothed_aggregation_solver`.
    :return: A SciPy `LinearOperator` that represents the AMG preconditioner.
    """
    ml_solver = pyamg.smoothed_aggregation_solver(A_csr, **kwargs)
    return ml_solver.aspreconditioner(cycle=cycle)


def build_diagonal_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix],
) -> LinearOperator:
    """
    Creates a diagonal (Jacobi) preconditioner from the coefficient matrix.

    :param A_csr: The coefficient matrix in CSR format.
    :return: A SciPy `LinearOperator` that represents the diagonal preconditioner.
    """
    diag_elements = A_csr.diagonal()
    epsilon = get_floating_point_info().eps
    threshold = max(1e-10, 100 * epsilon)
    # Zero pivots (e.g. saturation rows of absent phases) are left unscaled
    diag_elements = np.where(np.abs(diag_elements) < threshold, 1.0, diag_elements)
    M_diag = diags(1.0 / diag_elements, format="csr")
    return LinearOperator(shape=A_csr.shape, matvec=M_diag.dot)  # type: ignore[arg-type]


def _invert_block(block: np.typing.NDArray, threshold: float) -> np.typing.NDArray:
    try:
        return np.linalg.inv(block)
    except np.linalg.LinAlgError:
        # Singular block, fall back to its diagonal
        diag = np.diag(block)
        diag = np.where(np.abs(diag) < threshold, 1.0, diag)
        return np.diag(1.0 / diag)


def build_block_jacobi_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix],
    block_size: int = 3,
) -> LinearOperator:
    """
    Creates a Block Jacobi preconditioner for cell-blocked systems.

    Each block holds the equations and unknowns of one cell, so the coupling between
    pressure and the switching variables of a cell is inverted exactly.

    :param A_csr: The coefficient matrix in CSR format.
    :param block_size: Number of unknowns per cell.
    :return: A SciPy `LinearOperator` that represents the Block Jacobi preconditioner.
    """
    n = A_csr.shape[0]
    epsilon = get_floating_point_info().eps
    threshold = max(1e-10, 100 * epsilon)
    starts = list(range(0, n, block_size))
    block_inverses = [
        _invert_block(
            A_csr[start : min(start + block_size, n), start : min(start + block_size, n)].toarray(),  # type: ignore
            threshold,
        )
        for start in starts
    ]

    def matvec(x: np.typing.NDArray) -> np.typing.NDArray:
        y = np.zeros_like(x)
        for start, block_inverse in zip(starts, block_inverses):
            stop = min(start + block_size, n)
            y[start:stop] = block_inverse @ x[start:stop]
        return y

    return LinearOperator(shape=A_csr.shape, matvec=matvec)  # type: ignore[arg-type]


def build_ilu_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix], **kwargs: typing.Any
) -> LinearOperator:
    """
    Creates an Incomplete LU (ILU) preconditioner using `spilu`.

    :param A_csr: The coefficient matrix in CSR format. It will be
        converted to CSC for efficiency with `spilu`.
    :return: A SciPy `LinearOperator` that solves the preconditioned system.
    """
    A_csc = A_csr.tocsc()
    kwargs.setdefault("drop_tol", 1e-4)
    kwargs.setdefault("fill_factor", 10)
    ilu_factor = spilu(A_csc, **kwargs)
    return LinearOperator(shape=A_csc.shape, matvec=ilu_factor.solve)  # type: ignore[arg-type]


def _spsolve(
    A: typing.Any,
    b: typing.Any,
    x0: typing.Optional[typing.Any],
    *,
    rtol: float,
    atol: float,
    maxiter: typing.Optional[int],
    M: typing.Optional[typing.Any],
    callback: typing.Optional[typing.Callable[[np.typing.NDArray], None]],
) -> typing.Tuple[np.typing.NDArray, int]:
    return spsolve(A, b), 0


def _lgmres(
    A: typing.Any,
    b: typing.Any,
    x0: typing.Optional[typing.Any],
    *,
    rtol: float,
    atol: float,
    maxiter: typing.Optional[int],
    M: typing.Optional[typing.Any],
    callback: typing.Optional[typing.Callable[[np.typing.NDArray], None]],
    inner_m: int = 50,
    outer_k: int = 5,
) -> typing.Tuple[np.typing.NDArray, int]:
    """
    LGMRES solver with configurable inner/outer iteration parameters.

    :param inner_m: Number of inner GMRES iterations per restart.
    :param outer_k: Number of vectors to carry between inner GMRES iterations.
    """
    return lgmres(  # type: ignore[return-value]
        A,
        b,
        x0=x0,
        M=M,
        rtol=rtol,
        atol=atol,
        maxiter=maxiter,
        callback=callback,
        inner_m=inner_m,
        outer_k=outer_k,
    )


PRECONDITIONERS: typing.Dict[str, PreconditionerFactory] = {
    "amg": build_amg_preconditioner,
    "ilu": build_ilu_preconditioner,
    "diagonal": build_diagonal_preconditioner,
    "block_jacobi": build_block_jacobi_preconditioner,
}
"""Built-in preconditioner factories by name."""

SOLVERS: typing.Dict[str, SolverFunc] = {
    "lgmres": _lgmres,
    "bicgstab": bicgstab,  # type: ignore[dict-item]
    "tfqmr": tfqmr,  # type: ignore[dict-item]
    "gmres": gmres,  # type: ignore[dict-item]
    "direct": _spsolve,
}
"""Built-in solvers by name."""


def _build_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix],
    preconditioner: typing.Optional[Preconditioner],
    block_size: int,
) -> typing.Optional[LinearOperator]:
    """
    Build the preconditioner of a Jacobian.

    :param A_csr: The coefficient matrix in CSR format.
    :param preconditioner: Name of a built-in preconditioner, a factory taking the
        matrix, a `LinearOperator`, or None.
    :param block_size: Unknowns per cell, used by the block Jacobi preconditioner.
    :return: A SciPy `LinearOperator` representing the preconditioner, or None.
    :raises ValidationError: If the name is unknown.
    """
    if preconditioner is None or isinstance(preconditioner, LinearOperator):
        return preconditioner
    if not isinstance(preconditioner, str):
        return preconditioner(A_csr)

    factory = PRECONDITIONERS.get(preconditioner)
    if factory is None:
        raise ValidationError(
            f"Unknown preconditioner {preconditioner!r}. Available: {sorted(PRECONDITIONERS)}"
        )
    if factory is build_block_jacobi_preconditioner:
        return build_block_jacobi_preconditioner(A_csr, block_size=block_size)
    return factory(A_csr)


def _resolve_solvers(
    solver: typing.Union[Solver, typing.Iterable[Solver]],
) -> typing.List[SolverFunc]:
    """
    Turn solver names into solver functions, keeping callables as they are.

    :raises ValidationError: If a name is unknown or an entry is neither a name nor callable.
    """
    if isinstance(solver, str) or callable(solver):
        solver = [solver]  # type: ignore[list-item]

    solver_funcs = []
    for entry in solver:  # type: ignore[union-attr]
        if callable(entry):
            solver_funcs.append(entry)
        elif isinstance(entry, str) and entry in SOLVERS:
            solver_funcs.append(SOLVERS[entry])
        else:
            raise ValidationError(
                f"Unknown linear solver {entry!r}. Available: {sorted(SOLVERS)}"
            )
    return solver_funcs


def solve_linear_system(
    A_csr: typing.Union[csr_array, csr_matrix],
    b: np.typing.NDArray,
    max_iterations: int,
    rtol: typing.Optional[float] = None,
    atol: typing.Optional[float] = None,
    solver: typing.Union[Solver, typing.Iterable[Solver]] = "bicgstab",
    preconditioner: typing.Optional[Preconditioner] = "ilu",
    fallback_to_direct: bool = False,
    block_size: int = 1,
) -> typing.Tuple[np.typing.NDArray, typing.Optional[LinearOperator]]:
    """
    Solves the linear system A·x = b, trying each solver in turn.

    :param A_csr: Coefficient matrix in CSR format.
    :param b: Right-hand side vector.
    :param max_iterations: Maximum number of iterations for each solver.
    :param rtol: Relative tolerance for convergence.
    :param atol: Absolute tolerance for convergence.
    :param solver: (Iterative) solver or sequence of solvers to use ("bicgstab", "gmres",
        "lgmres", "tfqmr", "direct"), or custom callable(s). Solvers are tried in order
        until one converges.
    :param preconditioner: Preconditioner name ("ilu", "amg", "diagonal", "block_jacobi"),
        a preconditioner factory taking A, a `LinearOperator`, or None.
    :param fallback_to_direct: Whether to fall back to a direct solve if all iterative solvers fail.
    :param block_size: Unknowns per cell, used by the block Jacobi preconditioner.
    :return: A tuple (x, M) where x is the solution vector and M is the preconditioner used.
    :raises PreconditionerError: If the preconditioner cannot be built.
    :raises SolverError: If every solver (and the direct fallback, if enabled) fails.
    """
    solver_funcs = _resolve_solvers(solver)
    is_direct = _spsolve in solver_funcs
    if is_direct:
        M = None
    else:
        try:
            M = _build_preconditioner(A_csr, preconditioner, block_size)
        except ValidationError:
            raise
        except Exception as exc:
            raise PreconditionerError(f"Error building preconditioner: {exc}") from exc

    b_norm = np.linalg.norm(b)
    rtol = rtol if rtol is not None else 1e-6
    atol = atol if atol is not None else float(max(1e-8, 1e-6 * b_norm))

    for func in solver_funcs:
        x, info = func(
            A=A_csr,
            b=b,
            x0=None,
            M=M,
            rtol=rtol,
            atol=atol,
            maxiter=max_iterations,
            callback=None,
        )
        if info == 0 and np.all(np.isfinite(x)):
            return np.ascontiguousarray(x), M
        logger.warning(
            f"Solver {getattr(func, '__name__', func)!r} failed to converge within {max_iterations} iterations. Info: {info}"
        )

    if not fallback_to_direct or is_direct:
        raise SolverError(f"All solvers failed to converge within {max_iterations} iterations.")

    logger.info("Falling back to direct solver (spsolve).")
    try:
        x = spsolve(A_csr, b)
    except Exception as exc:
        logger.error(f"Direct solver failed: {exc}")
        raise SolverError(
            "All iterative solvers and direct solver failed to solve the system."
        ) from exc
    if not np.all(np.isfinite(x)):
        logger.error("Direct solver returned non-finite values.")
        raise SolverError("Direct solver returned non-finite values (singular system).")
    return np.ascontiguousarray(x), None


@attrs.frozen
class SparseLinearSolver:
    """
    Linear solve collaborator of the Newton driver.

    Called with the Jacobian and the residual, returns the Newton update.
    """

    solver: typing.Union[Solver, typing.Sequence[Solver]] = "bicgstab"
    """Solver(s) tried in order."""
    preconditioner: typing.Optional[Preconditioner] = "ilu"
    """Preconditioner name, factory or operator."""
    max_iterations: int = 500
    rtol: float = 1e-10
    atol: float = 0.0
    fallback_to_direct: bool = True
    block_size: int = 1
    """Unknowns per cell, used by the block Jacobi preconditioner."""

    @classmethod
    def from_config(cls, config: Config, block_size: int = 1) -> "SparseLinearSolver":
        return cls(
            solver=config.linear_solver,
            preconditioner=config.preconditioner,
            max_iterations=config.linear_max_iterations,
            rtol=config.linear_rtol,
            atol=config.linear_atol,
            fallback_to_direct=config.fallback_to_direct,
            block_size=block_size,
        )

    def __call__(
        self, A_csr: typing.Union[csr_array, csr_matrix], b: np.typing.NDArray
    ) -> np.typing.NDArray:
        x, _ = solve_linear_system(
            A_csr,
            b,
            max_iterations=self.max_iterations,
            rtol=self.rtol,
            atol=self.atol,
            solver=self.solver,
            preconditioner=self.preconditioner,
            fallback_to_direct=self.fallback_to_direct,
            block_size=self.block_size,
        )
        return x
