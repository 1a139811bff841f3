import logging
import typing

import attrs
import numpy as np
import numpy.typing as npt

from blackoil.models import ReservoirModel
from blackoil.types import OIL_INDEX
from blackoil.variables import PrimaryVariables, PrimaryVariableSet

logger = logging.getLogger(__name__)

__all__ = ["ModelState"]


@attrs.frozen(slots=True)
class ModelState:
    """
    The state of the reservoir model at a specific time step during a simulation.
    """

    step: int
    """The time step index of the model state."""
    time: float
    """Simulation time at this state (s)."""
    step_size: float
    """The time step size in seconds."""
    primary_variables: typing.Tuple[PrimaryVariables, ...]
    """Copies of the primary variables of every cell."""
    pressures: npt.NDArray[np.floating]
    """Phase pressures per cell (Pa), shape `(num_cells, 3)`."""
    saturations: npt.NDArray[np.floating]
    """Phase saturations per cell, shape `(num_cells, 3)`."""
    gas_dissolution_factors: npt.NDArray[np.floating]
    """Gas dissolution factor (Rs) per cell."""
    oil_vaporization_factors: npt.NDArray[np.floating]
    """Oil vaporization factor (Rv) per cell."""
    newton_iterations: int = 0
    """Newton iterations of the step that produced this state."""

    @classmethod
    def capture(
        cls,
        model: ReservoirModel,
        primary_variables: PrimaryVariableSet,
        *,
        step: int,
        time: float,
        step_size: float,
        newton_iterations: int = 0,
    ) -> "ModelState":
        """
        Snapshot the primary variables and the main fluid state quantities of a model.

        :param model: The reservoir model.
        :param primary_variables: Primary variables at this state.
        :param step: The time step index.
        :param time: Simulation time (s).
        :param step_size: Size of the step that led to this state (s).
        :param newton_iterations: Newton iterations of that step.
        :return: The model state.
        """
        num_cells = len(primary_variables)
        pressures = np.zeros((num_cells, 3), dtype=np.float64)
        saturations = np.zeros((num_cells, 3), dtype=np.float64)
        rs = np.zeros(num_cells, dtype=np.float64)
        rv = np.zeros(num_cells, dtype=np.float64)
        for cell, variables in enumerate(primary_variables):
            fluid_state = model.fluid_state(cell, variables)
            pressures[cell] = fluid_state.pressures
            saturations[cell] = fluid_state.saturations
            rs[cell] = fluid_state.gas_dissolution_factor
            rv[cell] = fluid_state.oil_vaporization_factor

        logger.debug(f"Captured model state at time step {step}")
        return cls(
            step=step,
            time=time,
            step_size=step_size,
            primary_variables=tuple(primary_variables.snapshot()),
            pressures=pressures,
            saturations=saturations,
            gas_dissolution_factors=rs,
            oil_vaporization_factors=rv,
            newton_iterations=newton_iterations,
        )

    @property
    def oil_pressures(self) -> npt.NDArray[np.floating]:
        """Oil pressure per cell (Pa)."""
        return self.pressures[:, OIL_INDEX]

    @property
    def average_pressure(self) -> float:
        """Arithmetic average of the oil pressure over all cells (Pa)."""
        return float(np.mean(self.oil_pressures)) if self.oil_pressures.size else 0.0
