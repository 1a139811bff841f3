import typing


class BlackOilError(Exception):
    """Base class for all blackoil-related errors."""

    pass


class ValidationError(BlackOilError, ValueError):
    """Raised when input data fails validation checks."""

    pass


class PreconditionerError(BlackOilError):
    """Raised when there is an error related to preconditioners."""

    pass


class SolverError(BlackOilError):
    """Raised when the linear solve fails to produce an update."""

    pass


class ComputationError(BlackOilError):
    """Raised when there is an error during numerical computations."""

    pass


class PrimaryVariableError(ComputationError):
    """
    Raised when no primary variable meaning matches the phases present in a cell.

    This is a logic error. It is never silently defaulted.
    """

    pass


class SimulationError(BlackOilError):
    """Base class for simulation-related errors."""

    pass


class TimingError(SimulationError):
    """Raised when there is an error related to simulation timing."""

    pass


class MinimumStepSizeError(SimulationError):
    """Raised when the time step would have to drop below the configured minimum."""

    def __init__(
        self,
        message: str,
        step_size: float,
        min_step_size: float,
        rejected_step_sizes: typing.Tuple[float, ...] = (),
    ) -> None:
        super().__init__(message)
        self.step_size = step_size
        """The last time step size that was attempted."""
        self.min_step_size = min_step_size
        """The configured minimum time step size."""
        self.rejected_step_sizes = rejected_step_sizes
        """Every step size attempted and rejected, in order."""
