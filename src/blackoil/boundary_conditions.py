"""Boundary conditions applied on boundary faces."""

import enum
import typing

import attrs
import numpy as np
import numpy.typing as npt

from blackoil.errors import ValidationError
from blackoil.types import BoundaryType
from blackoil.variables import CellCondition

__all__ = [
    "Boundary",
    "BoundaryCondition",
    "RateBoundary",
    "FreeBoundary",
    "DirichletBoundary",
    "NoFlowBoundary",
]


class Boundary(enum.Enum):
    """Enumeration of the sides of a Cartesian grid."""

    LEFT = "left"
    """The negative X direction (left/west face)."""
    RIGHT = "right"
    """The positive X direction (right/east face)."""
    FRONT = "front"
    """The negative Y direction (south face)."""
    BACK = "back"
    """The positive Y direction (north face)."""
    TOP = "top"
    """The shallowest Z face."""
    BOTTOM = "bottom"
    """The deepest Z face."""


def _as_rates(value: typing.Any) -> npt.NDArray[np.floating]:
    return np.asarray(value, dtype=np.float64).ravel()


@attrs.frozen
class BoundaryCondition:
    """
    Condition on a boundary face.

    `RATE` conditions prescribe component mass rates and bypass the flux computation.
    `FREE` and `DIRICHLET` conditions describe the fluid outside the face, and the flux
    follows from the potential difference to it.
    """

    type: BoundaryType
    """Kind of boundary condition."""
    mass_rates: typing.Optional[npt.NDArray[np.floating]] = attrs.field(
        default=None,
        converter=attrs.converters.optional(_as_rates),
    )
    """
    Component mass rates through the face (kg/s), indexed by canonical component index.
    Positive values flow into the domain. Used by `RATE` conditions only.
    """
    exterior: typing.Optional[CellCondition] = None
    """Fluid outside the face. Used by `FREE` and `DIRICHLET` conditions."""

    def __attrs_post_init__(self) -> None:
        if self.type is BoundaryType.RATE:
            if self.mass_rates is None:
                raise ValidationError("Rate boundary conditions need `mass_rates`.")
        elif self.exterior is None:
            raise ValidationError(
                f"{self.type.value.title()} boundary conditions need an `exterior` condition."
            )

    @property
    def is_rate(self) -> bool:
        return self.type is BoundaryType.RATE

    def component_rate(self, component: int) -> float:
        """Prescribed rate of a component (kg/s), zero if not given."""
        if self.mass_rates is None or component >= self.mass_rates.size:
            return 0.0
        return float(self.mass_rates[component])


def RateBoundary(mass_rates: typing.Sequence[float]) -> BoundaryCondition:
    """
    Prescribed component mass rates (kg/s, positive into the domain).

    :param mass_rates: Rates indexed by canonical component index (water, oil, gas[, salt]).
    """
    return BoundaryCondition(type=BoundaryType.RATE, mass_rates=mass_rates)


def NoFlowBoundary() -> BoundaryCondition:
    """Sealed face. Equivalent to a zero-rate condition."""
    return BoundaryCondition(type=BoundaryType.RATE, mass_rates=np.zeros(4))


def FreeBoundary(exterior: CellCondition) -> BoundaryCondition:
    """Face open to a fluid described by `exterior`."""
    return BoundaryCondition(type=BoundaryType.FREE, exterior=exterior)


def DirichletBoundary(exterior: CellCondition) -> BoundaryCondition:
    """Face held at the pressure and saturations described by `exterior`."""
    return BoundaryCondition(type=BoundaryType.DIRICHLET, exterior=exterior)
