"""Run a simulation on a reservoir model."""

import logging
import typing

from blackoil.assembly import ResidualAssembler
from blackoil.config import Config
from blackoil.errors import MinimumStepSizeError, SimulationError, TimingError
from blackoil.linear import SparseLinearSolver
from blackoil.models import ReservoirModel
from blackoil.newton import NewtonMethod
from blackoil.states import ModelState
from blackoil.timing import Timer
from blackoil.variables import CellCondition, PrimaryVariableSet

logger = logging.getLogger(__name__)

__all__ = ["run", "log_progress"]


def log_progress(
    step: int,
    step_size: float,
    time_elapsed: float,
    total_time: float,
    is_last_step: bool = False,
    interval: int = 3,
):
    """Logs the simulation progress at specified intervals."""
    if step <= 1 or step % interval == 0 or is_last_step:
        percent_complete = (time_elapsed / total_time) * 100.0
        logger.info(
            f"Time Step {step} with Δt = {step_size:.4f}s - "
            f"({percent_complete:.4f}%) - "
            f"Elapsed Time: {time_elapsed:.4f}s / {total_time:.4f}s"
        )


def run(
    model: ReservoirModel,
    timer: Timer,
    initial_conditions: typing.Union[
        PrimaryVariableSet, CellCondition, typing.Sequence[CellCondition]
    ],
    config: typing.Optional[Config] = None,
) -> typing.Generator[ModelState, None, None]:
    """
    Runs a fully implicit black-oil simulation on a reservoir model.

    Each time step is solved with Newton's method. Steps that fail to converge are
    retried with half the step size, and steps that converge quickly let the next
    step grow.

    :param model: The reservoir model containing grid, rock, and fluid properties.
    :param timer: The time manager for controlling simulation time steps.
    :param initial_conditions: Primary variables to start from, or the phase-presence
        description of every cell (one for all cells or one per cell).
    :param config: Simulation run configuration and parameters.
    :yield: The initial model state, then the model state at specified output intervals.
    :raises SimulationError: If a time step cannot be completed at or above the minimum step
        size, or the timer refuses it. The primary variables are left at the start of that step.
    """
    if config is None:
        config = Config()

    logger.info("Starting reservoir simulation workflow...")
    logger.debug(f"Number of cells: {model.num_cells}")
    logger.debug(f"Total simulation time: {timer.simulation_time} seconds")
    logger.debug(f"Output frequency: every {config.output_frequency} steps")
    logger.debug(f"Newton tolerance: {config.newton_tolerance}")

    with config.constants():
        if isinstance(initial_conditions, PrimaryVariableSet):
            primary_variables = initial_conditions
            model.update_histories(primary_variables)
        else:
            primary_variables = model.initialize(initial_conditions)

        assembler = ResidualAssembler(model, config)
        linear_solver = SparseLinearSolver.from_config(
            config, block_size=model.indices.num_equations
        )
        # Newton halves no further than the timer allows
        newton_config = config
        if timer.min_step_size > config.min_step_size:
            newton_config = config.with_updates(min_step_size=timer.min_step_size)
        newton = NewtonMethod(assembler, linear_solver, newton_config)

        logger.debug("Yielding initial model state")
        yield ModelState.capture(
            model,
            primary_variables,
            step=0,
            time=0.0,
            step_size=timer.step_size,
        )

        while not timer.done():
            new_step = timer.next_step
            step_size = timer.propose_step_size()
            logger.debug(f"Attempting time step {new_step} with size {step_size} seconds...")
            snapshot = primary_variables.snapshot()
            try:
                result = newton.advance(primary_variables, step_size)
            except MinimumStepSizeError as exc:
                raise SimulationError(
                    f"Simulation failed at time step {new_step} and cannot reduce time step further. {exc}"
                ) from exc

            try:
                for rejected_step_size in result.rejected_step_sizes:
                    timer.reject_step(rejected_step_size)
            except TimingError as exc:
                # Discard the converged state of the refused step
                primary_variables.restore(snapshot)
                raise SimulationError(
                    f"Simulation failed at time step {new_step}. {exc}"
                ) from exc

            timer.accept_step(
                step_size=result.step_size,
                next_step_size=result.new_step_size,
                newton_iterations=result.iterations,
            )
            model.update_histories(primary_variables)
            log_progress(
                step=timer.step,
                step_size=result.step_size,
                time_elapsed=timer.elapsed_time,
                total_time=timer.simulation_time,
                is_last_step=timer.is_last_step,
                interval=config.log_interval,
            )

            if (timer.step % config.output_frequency == 0) or timer.is_last_step:
                logger.debug(f"Capturing model state at time step {timer.step}")
                yield ModelState.capture(
                    model,
                    primary_variables,
                    step=timer.step,
                    time=timer.elapsed_time,
                    step_size=result.step_size,
                    newton_iterations=result.iterations,
                )

    logger.info(f"Simulation completed after {timer.step} time step(s)")
