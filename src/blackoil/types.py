import enum
import typing

import attrs
import numpy as np
import numpy.typing as npt
from scipy.sparse import csr_array, csr_matrix
from scipy.sparse.linalg import LinearOperator
from typing_extensions import TypeAlias, TypedDict

from blackoil.errors import ValidationError


__all__ = [
    "FluidPhase",
    "PHASES",
    "WATER_INDEX",
    "OIL_INDEX",
    "GAS_INDEX",
    "SALT_INDEX",
    "PressureMeaning",
    "WaterMeaning",
    "GasMeaning",
    "BrineMeaning",
    "BoundaryType",
    "CapillaryPressures",
    "RelativePermeabilities",
    "FluidSystem",
    "MaterialLaw",
    "Preconditioner",
    "PreconditionerFactory",
    "Solver",
    "SolverFunc",
    "Range",
    "FloatOrArray",
]

T = typing.TypeVar("T")

FloatOrArray = typing.Union[float, npt.NDArray[np.floating]]
Vector: TypeAlias = npt.NDArray[np.floating]
"""One-dimensional array of floats"""


WATER_INDEX = 0
"""Canonical index of the water phase and of the water component."""
OIL_INDEX = 1
"""Canonical index of the oil phase and of the oil component."""
GAS_INDEX = 2
"""Canonical index of the gas phase and of the gas component."""
SALT_INDEX = 3
"""Canonical index of the salt component (brine extension only)."""


class FluidPhase(enum.Enum):
    """Enum representing the phase of the fluid in the reservoir."""

    WATER = "water"
    OIL = "oil"
    GAS = "gas"

    @property
    def index(self) -> int:
        """Canonical index of the phase (water=0, oil=1, gas=2)."""
        return _PHASE_INDICES[self]


_PHASE_INDICES = {FluidPhase.WATER: 0, FluidPhase.OIL: 1, FluidPhase.GAS: 2}

PHASES: typing.Tuple[FluidPhase, ...] = (FluidPhase.WATER, FluidPhase.OIL, FluidPhase.GAS)
"""All phases ordered by canonical index."""


class PressureMeaning(enum.Enum):
    """Which phase pressure the pressure primary variable holds."""

    OIL_PRESSURE = "po"
    GAS_PRESSURE = "pg"
    WATER_PRESSURE = "pw"


class WaterMeaning(enum.Enum):
    """Interpretation of the water switching slot."""

    WATER_SATURATION = "sw"
    VAPORIZED_WATER = "rvw"
    """Water vaporized in the gas phase (Rvw)."""
    DISSOLVED_GAS_IN_WATER = "rsw"
    """Gas dissolved in the water phase (Rsw)."""
    DISABLED = "disabled"


class GasMeaning(enum.Enum):
    """Interpretation of the gas (composition) switching slot."""

    GAS_SATURATION = "sg"
    DISSOLVED_GAS = "rs"
    """Gas dissolved in the oil phase (Rs)."""
    VAPORIZED_OIL = "rv"
    """Oil vaporized in the gas phase (Rv)."""
    DISABLED = "disabled"


class BrineMeaning(enum.Enum):
    """Interpretation of the brine slot."""

    SALT_CONCENTRATION = "cs"
    PRECIPITATED_SALT = "sp"
    """Saturation of precipitated solid salt."""
    DISABLED = "disabled"


class BoundaryType(enum.Enum):
    """Kinds of boundary conditions applied on boundary faces."""

    RATE = "rate"
    """Prescribed component mass rate. Bypasses the flux computation."""
    FREE = "free"
    """Flow driven by the potential difference to an exterior fluid state."""
    DIRICHLET = "dirichlet"
    """Fixed exterior pressure/saturations. Treated like `FREE` for flux purposes."""


class RelativePermeabilities(TypedDict):
    """Dictionary holding relative permeabilities for different phases."""

    water: float
    oil: float
    gas: float


class CapillaryPressures(TypedDict):
    """Dictionary containing capillary pressures for different phase pairs."""

    oil_water: float  # Pcow = Po - Pw
    gas_oil: float  # Pcgo = Pg - Po


@typing.runtime_checkable
class FluidSystem(typing.Protocol):
    """
    Read-only fluid property collaborator, keyed by PVT region and phase.

    All property functions are pure functions of temperature, pressure and composition.
    """

    enable_dissolved_gas: bool
    enable_vaporized_oil: bool
    enable_vaporized_water: bool
    enable_dissolved_gas_in_water: bool

    def phase_is_active(self, phase: FluidPhase) -> bool: ...

    @property
    def num_active_phases(self) -> int: ...

    def reference_density(self, phase: FluidPhase, region: int) -> float: ...

    def inverse_formation_volume_factor(
        self,
        phase: FluidPhase,
        region: int,
        temperature: float,
        pressure: float,
        dissolution_factor: float = 0.0,
    ) -> float: ...

    def viscosity(
        self,
        phase: FluidPhase,
        region: int,
        temperature: float,
        pressure: float,
        dissolution_factor: float = 0.0,
    ) -> float: ...

    def saturated_gas_dissolution_factor(
        self, region: int, temperature: float, pressure: float
    ) -> float: ...

    def saturated_oil_vaporization_factor(
        self, region: int, temperature: float, pressure: float
    ) -> float: ...

    def saturated_water_vaporization_factor(
        self,
        region: int,
        temperature: float,
        pressure: float,
        salt_concentration: float = 0.0,
    ) -> float: ...

    def saturated_gas_dissolution_factor_in_water(
        self,
        region: int,
        temperature: float,
        pressure: float,
        salt_concentration: float = 0.0,
    ) -> float: ...


@typing.runtime_checkable
class MaterialLaw(typing.Protocol):
    """
    Saturation-dependent rock-fluid functions of a cell.
    """

    def capillary_pressures(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> CapillaryPressures:
        """
        :return: Oil-water (Po - Pw) and gas-oil (Pg - Po) capillary pressures in Pa.
        """
        ...

    def relative_permeabilities(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> RelativePermeabilities: ...


PreconditionerStr = typing.Literal["ilu", "amg", "diagonal", "block_jacobi"]
PreconditionerFactory = typing.Callable[
    [typing.Union[csr_array, csr_matrix]], LinearOperator
]
Preconditioner = typing.Union[
    LinearOperator, PreconditionerStr, PreconditionerFactory, str
]

SolverStr = typing.Literal["gmres", "lgmres", "bicgstab", "tfqmr", "direct"]


class SolverFunc(typing.Protocol):
    """
    Protocol for a linear solver function compatible with SciPy's sparse solvers.
    """

    def __call__(
        self,
        A: typing.Any,
        b: typing.Any,
        x0: typing.Optional[typing.Any],
        *,
        rtol: float,
        atol: float,
        maxiter: typing.Optional[int],
        M: typing.Optional[typing.Any],
        callback: typing.Optional[typing.Callable[[npt.NDArray], None]],
    ) -> typing.Tuple[npt.NDArray, int]: ...


Solver = typing.Union[SolverFunc, SolverStr, str]


@attrs.frozen(slots=True)
class Range:
    """
    Class representing minimum and maximum values.
    """

    min: float
    """Minimum value."""
    max: float
    """Maximum value."""

    def __attrs_post_init__(self) -> None:
        if self.min > self.max:
            raise ValidationError("Minimum value cannot be greater than maximum value.")

    def clip(self, value: T) -> T:
        """
        Clips the given value between the minimum and maximum values.

        :param value: The value to be clipped.
        :return: The clipped value.
        """
        return np.clip(value, self.min, self.max)  # type: ignore[return-value]

    def __len__(self) -> int:
        return 2

    def __iter__(self) -> typing.Iterator[float]:
        yield self.min
        yield self.max

    def __contains__(self, item: float) -> bool:
        return self.min <= item <= self.max

    def __getitem__(self, index: int) -> float:
        if index == 0:
            return self.min
        elif index == 1:
            return self.max
        else:
            raise IndexError("Index out of range for Range. Valid indices are 0 and 1.")
