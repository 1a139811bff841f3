import typing

import attrs

from blackoil.constants import Constants
from blackoil.errors import ValidationError
from blackoil.types import Preconditioner, Range, Solver

__all__ = ["Config"]


def _default_gravity(instance: "Config") -> float:
    return float(instance.constants.ACCELERATION_DUE_TO_GRAVITY)


def _default_water_filled_tolerance(instance: "Config") -> float:
    return instance.switching_tolerance


@attrs.frozen
class Config:
    """Simulation run configuration and parameters."""

    constants: Constants = attrs.field(factory=Constants)
    """Physical constants and numerical defaults used in the simulation."""
    newton_tolerance: float = attrs.field(
        default=1e-6,
        validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.le(1e-2)),
    )
    """Required reduction of the weighted residual error relative to its value at the start of the step."""
    absolute_tolerance: float = attrs.field(default=1e-10, validator=attrs.validators.ge(0))
    """
    Weighted residual error at or below which the state counts as converged,
    regardless of the reduction achieved. Lets already-converged states pass.
    """
    max_newton_iterations: int = attrs.field(
        default=12,
        validator=attrs.validators.and_(attrs.validators.ge(1), attrs.validators.le(100)),
    )
    """Maximum number of Newton iterations per time step attempt before the attempt is rejected."""
    good_newton_iterations: int = attrs.field(default=5, validator=attrs.validators.ge(1))
    """Steps converging in fewer iterations than this (without halving) double the next step size."""
    min_step_size: float = attrs.field(default=1e-5, validator=attrs.validators.gt(0))
    """Smallest step size (s) the driver may retry with. Halving at or below this is fatal."""
    max_step_size: float = attrs.field(default=float("inf"), validator=attrs.validators.gt(0))
    """Upper bound on the step size (s) when it grows after easy convergence."""
    switching_tolerance: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """
    Tolerance used when testing phase appearance/disappearance during primary variable switching.

    Saturations must fall below `-switching_tolerance` before a phase disappears,
    and dissolution factors must exceed the saturated value by the relative amount
    `switching_tolerance` before the free phase reappears.
    """
    water_filled_tolerance: float = attrs.field(
        default=attrs.Factory(_default_water_filled_tolerance, takes_self=True),
        validator=attrs.validators.and_(attrs.validators.ge(0), attrs.validators.lt(1)),
    )
    """
    Cells with water saturation at or above `1 - water_filled_tolerance` are treated as
    fully water filled. Defaults to `switching_tolerance`.
    """
    saturation_bounds: Range = attrs.field(default=Range(min=-1.0, max=2.0))
    """
    Hard box for saturation-like primary variables after a Newton update.

    An update leaving any saturation slot outside this range rejects the
    time step attempt.
    """
    minimum_pressure: float = attrs.field(default=1e3, validator=attrs.validators.ge(0))
    """Pressures (Pa) below this value are clamped after a Newton update."""
    project_saturations: bool = True
    """Whether to chop and normalize saturations after each Newton update and switch."""
    conserve_surface_volume: bool = False
    """Whether to conserve surface volumes instead of masses (no reference density scaling)."""
    jacobian_perturbation: float = attrs.field(
        default=1e-7,
        validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.lt(1e-2)),
    )
    """Relative perturbation of the forward differences used to build the Jacobian."""
    linear_solver: typing.Union[Solver, typing.Sequence[Solver]] = "bicgstab"
    """Iterative solver(s) to use for solving linear systems, tried in order."""
    preconditioner: typing.Optional[Preconditioner] = "ilu"
    """Preconditioner to use for iterative solvers."""
    linear_max_iterations: int = attrs.field(
        default=500,
        validator=attrs.validators.and_(attrs.validators.ge(1), attrs.validators.le(5000)),
    )
    """Maximum number of iterations of each iterative linear solver."""
    linear_rtol: float = attrs.field(default=1e-10, validator=attrs.validators.gt(0))
    """Relative tolerance of the iterative linear solvers."""
    linear_atol: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Absolute tolerance of the iterative linear solvers."""
    fallback_to_direct: bool = True
    """Whether to fall back to a sparse direct solve when every iterative solver fails."""
    gravity: float = attrs.field(
        default=attrs.Factory(_default_gravity, takes_self=True),
        validator=attrs.validators.ge(0),
    )
    """Gravitational acceleration (m/s²), acting along increasing depth. Set to 0 to disable gravity."""
    log_interval: int = attrs.field(default=3, validator=attrs.validators.ge(1))
    """Interval (in time steps) at which to log simulation progress."""
    output_frequency: int = attrs.field(default=1, validator=attrs.validators.ge(1))
    """Frequency at which model states are yielded/outputted during the simulation."""

    def __attrs_post_init__(self) -> None:
        if self.min_step_size > self.max_step_size:
            raise ValidationError("`min_step_size` cannot be greater than `max_step_size`.")
        if self.saturation_bounds.min > 0.0 or self.saturation_bounds.max < 1.0:
            raise ValidationError("`saturation_bounds` must contain [0, 1].")

    def with_updates(self, **kwargs: typing.Any) -> "Config":
        """Return a copy of this config with the given fields replaced."""
        return attrs.evolve(self, **kwargs)
