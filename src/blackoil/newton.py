"""
Newton-Raphson driver with time step halving and doubling.

One call to `NewtonMethod.advance` solves the conservation equations over one time
step. Each iteration assembles the residual and Jacobian, solves for the update,
applies the full update, switches primary variables and checks a weighted residual
criterion. A failed attempt restores the state of the start of the step and retries
with half the step size.
"""

import enum
import logging
import typing

import attrs
import numpy as np
import numpy.typing as npt
from scipy.sparse import csr_matrix  # type: ignore[import-untyped]

from blackoil.config import Config
from blackoil.constants import c
from blackoil.errors import (
    MinimumStepSizeError,
    PreconditionerError,
    SolverError,
)
from blackoil.switching import adapt_all
from blackoil.types import BrineMeaning, GasMeaning, WaterMeaning
from blackoil.variables import PrimaryVariableSet

if typing.TYPE_CHECKING:
    from blackoil.assembly import ResidualAssembler

logger = logging.getLogger(__name__)

__all__ = [
    "NewtonState",
    "WeightedResidualReductionCriterion",
    "AdvanceResult",
    "NewtonMethod",
]


class NewtonState(enum.Enum):
    """States of one time step attempt."""

    ITERATING = "iterating"
    CONVERGED = "converged"
    TIME_STEP_REJECTED = "time_step_rejected"
    FATAL = "fatal"


@attrs.define
class WeightedResidualReductionCriterion:
    """
    Convergence test on the largest weighted residual, relative to its value at the
    first iteration of the attempt.
    """

    weights: npt.NDArray[np.floating]
    """Weight of every equation."""
    tolerance: float
    """Required reduction of the error."""
    absolute_tolerance: float = 0.0
    """Error at or below which the state is converged regardless of the reduction."""
    initial_error: typing.Optional[float] = None
    error: float = np.inf

    def update(self, residual: npt.NDArray[np.floating]) -> float:
        """
        Record the error of a new residual.

        :param residual: Flat residual vector.
        :return: The error, `max |w_i * r_i|`.
        """
        self.error = float(np.max(np.abs(self.weights * residual))) if residual.size else 0.0
        if self.initial_error is None:
            self.initial_error = max(self.error, float(c.MIN_INITIAL_ERROR))
        return self.error

    @property
    def accuracy(self) -> float:
        """Error relative to the initial error."""
        if self.initial_error is None:
            return np.inf
        return self.error / self.initial_error

    def is_converged(self) -> bool:
        return self.accuracy <= self.tolerance or self.error <= self.absolute_tolerance


@attrs.frozen
class AdvanceResult:
    """Outcome of a converged time step."""

    converged: bool
    new_step_size: float
    """Step size proposed for the next time step (s)."""
    step_size: float
    """Step size that converged (s). Smaller than requested if the step was halved."""
    iterations: int
    """Newton iterations of the converged attempt."""
    errors: typing.Tuple[float, ...]
    """Errors of the converged attempt, one per assembly, the first one unnormalized."""
    switched_cells: int
    """Number of cell switches during the converged attempt."""
    rejected_step_sizes: typing.Tuple[float, ...] = ()
    """Step sizes of the rejected attempts, in order."""


LinearSolver = typing.Callable[[csr_matrix, npt.NDArray[np.floating]], npt.NDArray[np.floating]]


class NewtonMethod:
    """Newton-Raphson driver over a `ResidualAssembler`."""

    def __init__(
        self,
        assembler: "ResidualAssembler",
        linear_solver: LinearSolver,
        config: Config,
        weights: typing.Optional[typing.Callable[[float], npt.NDArray[np.floating]]] = None,
    ) -> None:
        """
        :param assembler: Residual and Jacobian assembly of the model.
        :param linear_solver: Callable returning `x` with `J x = r`. Raises `SolverError` on failure.
        :param config: Run configuration.
        :param weights: Callable returning the convergence weights for a step size.
            Defaults to `assembler.weights`.
        """
        self.assembler = assembler
        self.linear_solver = linear_solver
        self.config = config
        self.weights = weights or assembler.weights

    def _enforce_bounds(self, primary_variables: PrimaryVariableSet) -> bool:
        """
        Check the saturation-like slots against the hard box and clamp low pressures.

        :return: False if any saturation-like slot left the box.
        """
        bounds = self.config.saturation_bounds
        minimum_pressure = self.config.minimum_pressure
        clamped = 0
        for cell, variables in enumerate(primary_variables):
            if (
                (variables.water_meaning is WaterMeaning.WATER_SATURATION and variables.water not in bounds)
                or (variables.gas_meaning is GasMeaning.GAS_SATURATION and variables.gas not in bounds)
                or (
                    variables.brine_meaning is BrineMeaning.PRECIPITATED_SALT
                    and variables.brine not in bounds
                )
            ):
                logger.warning(
                    f"Saturation update of cell {cell} left the bounds [{bounds.min}, {bounds.max}]"
                )
                return False
            if variables.pressure < minimum_pressure:
                variables.pressure = minimum_pressure
                clamped += 1

        if clamped:
            logger.warning(
                f"Clamped pressure of {clamped} cell(s) to the minimum of {minimum_pressure} Pa"
            )
        return True

    def _attempt(
        self,
        primary_variables: PrimaryVariableSet,
        old_storage: npt.NDArray[np.floating],
        step_size: float,
    ) -> typing.Tuple[NewtonState, int, typing.List[float], int]:
        config = self.config
        model = self.assembler.model
        criterion = WeightedResidualReductionCriterion(
            weights=self.weights(step_size),
            tolerance=config.newton_tolerance,
            absolute_tolerance=config.absolute_tolerance,
        )
        errors: typing.List[float] = []
        iterations = 0
        switched = 0
        state = NewtonState.ITERATING

        while state is NewtonState.ITERATING:
            residual, jacobian = self.assembler.linearize(primary_variables, old_storage, step_size)
            if not np.all(np.isfinite(residual)):
                logger.warning(f"Non-finite residual at Newton iteration {iterations}")
                state = NewtonState.TIME_STEP_REJECTED
                break

            errors.append(criterion.update(residual))
            logger.debug(
                f"Newton iteration {iterations}: error {criterion.error:.6e}, "
                f"accuracy {criterion.accuracy:.6e}"
            )
            if criterion.is_converged():
                state = NewtonState.CONVERGED
                break
            if iterations >= config.max_newton_iterations:
                logger.warning(
                    f"Newton did not converge within {config.max_newton_iterations} iterations "
                    f"(accuracy {criterion.accuracy:.3e})"
                )
                state = NewtonState.TIME_STEP_REJECTED
                break

            try:
                update = self.linear_solver(jacobian, residual)
            except (SolverError, PreconditionerError) as exc:
                logger.warning(f"Linear solve failed at Newton iteration {iterations}: {exc}")
                state = NewtonState.TIME_STEP_REJECTED
                break
            if not np.all(np.isfinite(update)):
                logger.warning(f"Non-finite Newton update at iteration {iterations}")
                state = NewtonState.TIME_STEP_REJECTED
                break

            primary_variables.apply_update(update, scale=-1.0)
            iterations += 1
            if not self._enforce_bounds(primary_variables):
                state = NewtonState.TIME_STEP_REJECTED
                break

            switched += adapt_all(primary_variables, model, config)
            if config.project_saturations:
                for variables in primary_variables:
                    variables.chop_and_normalize_saturations()

        return state, iterations, errors, switched

    def advance(
        self, primary_variables: PrimaryVariableSet, step_size: float
    ) -> AdvanceResult:
        """
        Advance the primary variables over one time step.

        :param primary_variables: Primary variables at the start of the step. Updated in
            place to the end of the step. Left unchanged if the step fails.
        :param step_size: Requested step size (s).
        :return: The converged result, with the step size proposed for the next step.
        :raises MinimumStepSizeError: If halving would take the step size to or below
            `config.min_step_size`.
        """
        config = self.config
        snapshot = primary_variables.snapshot()
        old_storage = self.assembler.storage(primary_variables)
        divided = False
        rejected: typing.List[float] = []

        while True:
            state, iterations, errors, switched = self._attempt(
                primary_variables, old_storage, step_size
            )
            if state is NewtonState.CONVERGED:
                break

            primary_variables.restore(snapshot)
            rejected.append(step_size)
            halved = step_size * 0.5
            if halved <= config.min_step_size:
                logger.error(
                    f"Time step of {step_size}s failed and halving it to {halved}s "
                    f"would breach the minimum of {config.min_step_size}s"
                )
                raise MinimumStepSizeError(
                    f"Time step size {halved} would fall below the minimum of {config.min_step_size}",
                    step_size=step_size,
                    min_step_size=config.min_step_size,
                    rejected_step_sizes=tuple(rejected),
                )
            logger.warning(f"Time step of {step_size}s rejected, retrying with {halved}s")
            step_size = halved
            divided = True

        new_step_size = step_size
        if not divided and iterations < config.good_newton_iterations:
            new_step_size = step_size * 2.0
        new_step_size = min(new_step_size, config.max_step_size)
        logger.debug(
            f"Converged in {iterations} iteration(s) with step size {step_size}s, "
            f"next step size {new_step_size}s"
        )
        return AdvanceResult(
            converged=True,
            new_step_size=new_step_size,
            step_size=step_size,
            iterations=iterations,
            errors=tuple(errors),
            switched_cells=switched,
            rejected_step_sizes=tuple(rejected),
        )
