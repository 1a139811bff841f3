import logging
import typing
from collections import deque
from datetime import timedelta

import attrs

from blackoil.errors import TimingError, ValidationError

__all__ = ["Time", "StepMetrics", "Timer"]

logger = logging.getLogger(__name__)


def Time(
    milliseconds: float = 0,
    seconds: float = 0,
    minutes: float = 0,
    hours: float = 0,
    days: float = 0,
    weeks: float = 0,
) -> float:
    """
    Expresses time components as total seconds.

    :param milliseconds: Number of milliseconds.
    :param seconds: Number of seconds.
    :param minutes: Number of minutes.
    :param hours: Number of hours.
    :param days: Number of days.
    :param weeks: Number of weeks.
    :return: Total time in seconds.
    """
    delta = timedelta(
        weeks=weeks,
        days=days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        milliseconds=milliseconds,
    )
    return delta.total_seconds()


@attrs.frozen(slots=True)
class StepMetrics:
    """Metrics for a single time step attempt."""

    step_number: int
    step_size: float
    newton_iterations: typing.Optional[int] = None
    success: bool = True


@attrs.define
class Timer:
    """
    Simulation time manager.

    Step sizes are halved on rejection and follow the size proposed by the
    Newton driver on acceptance, within `[min_step_size, max_step_size]`.
    The last step is shortened to end exactly at `simulation_time`.
    """

    initial_step_size: float
    """Initial time step size in seconds."""
    max_step_size: float
    """Maximum allowable time step size in seconds."""
    min_step_size: float
    """Minimum allowable time step size in seconds."""
    simulation_time: float
    """Total simulation time in seconds."""
    backoff_factor: float = 0.5
    """Factor by which to reduce time step size on rejected steps."""
    max_steps: typing.Optional[int] = None
    """Maximum number of time steps to run for."""
    max_rejects: int = 20
    """Maximum number of consecutive time step rejections allowed."""
    metrics_history_size: int = 10
    """Number of recent steps to track."""

    elapsed_time: float = attrs.field(init=False, default=0.0)
    """Current simulation time in seconds (sum of all accepted steps)."""
    step_size: float = attrs.field(init=False, default=0.0)
    """The time step size (in seconds) that was used for the most recently accepted step."""
    next_step_size: float = attrs.field(init=False, default=0.0)
    """Time step size (in seconds) to propose for the next step."""
    step: int = attrs.field(init=False, default=0)
    """Number of accepted time steps completed so far."""
    rejection_count: int = attrs.field(init=False, default=0)
    """Count of consecutive time step rejections."""
    recent_metrics: deque = attrs.field(init=False)
    """Recent step metrics."""

    def __attrs_post_init__(self) -> None:
        if self.min_step_size <= 0.0:
            raise ValidationError("`min_step_size` must be positive.")
        if not self.min_step_size <= self.initial_step_size <= self.max_step_size:
            raise ValidationError(
                "`initial_step_size` must lie between `min_step_size` and `max_step_size`."
            )
        if self.simulation_time <= 0.0:
            raise ValidationError("`simulation_time` must be positive.")
        if not 0.0 < self.backoff_factor < 1.0:
            raise ValidationError("`backoff_factor` must lie in (0, 1).")
        self.next_step_size = self.initial_step_size
        self.step_size = self.initial_step_size
        self.recent_metrics = deque(maxlen=self.metrics_history_size)

    @property
    def next_step(self) -> int:
        """Returns the next time step count."""
        return self.step + 1

    def done(self) -> bool:
        """
        Checks if the simulation has reached its end criteria.

        If True, simulation has reached it ends.
        """
        if self.elapsed_time >= self.simulation_time:
            return True
        if self.max_steps is not None and self.step >= self.max_steps:
            return True
        return False

    @property
    def time_remaining(self) -> float:
        """Calculates the remaining simulation time in seconds."""
        return max(self.simulation_time - self.elapsed_time, 0.0)

    @property
    def is_last_step(self) -> bool:
        """Determines if the latest accepted step was the last one."""
        return self.done()

    def propose_step_size(self) -> float:
        """Proposes the next time step size without updating state."""
        dt = min(self.next_step_size, self.time_remaining)
        logger.debug(
            f"Proposing time step of size {dt} for time step {self.next_step} "
            f"at elapsed time {self.elapsed_time}."
        )
        return dt

    def reject_step(self, step_size: float) -> float:
        """
        Registers a rejected time step attempt.

        :param step_size: The step size that was rejected.
        :return: The new time step size in seconds.
        :raises TimingError: If too many consecutive attempts were rejected, or the
            reduced step would drop below `min_step_size`.
        """
        if self.rejection_count >= self.max_rejects:
            raise TimingError("Maximum number of consecutive time step rejections exceeded")

        self.recent_metrics.append(
            StepMetrics(step_number=self.next_step, step_size=step_size, success=False)
        )
        reduced = step_size * self.backoff_factor
        if reduced <= self.min_step_size:
            raise TimingError(
                f"Reducing the step size {step_size} would breach the minimum of {self.min_step_size}"
            )
        self.next_step_size = reduced
        self.rejection_count += 1
        logger.debug(
            f"Time step of size {step_size} rejected for time step {self.next_step} "
            f"at elapsed time {self.elapsed_time}. New size: {self.next_step_size}"
        )
        return self.next_step_size

    def accept_step(
        self,
        step_size: float,
        next_step_size: typing.Optional[float] = None,
        newton_iterations: typing.Optional[int] = None,
    ) -> float:
        """
        Registers an accepted time step.

        :param step_size: The time step size that was just accepted.
        :param next_step_size: Step size proposed for the next step. Keeps the current
            proposal when omitted.
        :param newton_iterations: Number of Newton iterations taken.
        :return: The next proposed time step size.
        """
        if step_size > self.time_remaining * (1.0 + 1e-12):
            raise TimingError(
                f"Step size {step_size} exceeds remaining time {self.time_remaining}. "
                "This indicates a bug in the time stepping logic."
            )

        self.elapsed_time += step_size
        self.step_size = step_size
        self.step += 1
        self.recent_metrics.append(
            StepMetrics(
                step_number=self.step,
                step_size=step_size,
                newton_iterations=newton_iterations,
                success=True,
            )
        )

        dt = next_step_size if next_step_size is not None else self.next_step_size
        self.next_step_size = min(max(dt, self.min_step_size), self.max_step_size)
        self.rejection_count = 0
        logger.debug(
            f"Time step of size {step_size} accepted for time step {self.step} "
            f"at elapsed time {self.elapsed_time}. Next size: {self.next_step_size:.6f}"
        )
        return self.next_step_size
