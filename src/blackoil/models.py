import typing

import attrs
import numpy as np
import numpy.typing as npt

from blackoil.capillary_pressures import NoCapillaryPressureModel
from blackoil.constants import c
from blackoil.errors import ValidationError
from blackoil.extensions import CombinedExtension, Extension
from blackoil.fluid_state import FluidState, compute_fluid_state
from blackoil.grids import Grid
from blackoil.relperm import CoreyThreePhaseRelPermModel
from blackoil.types import (
    CapillaryPressures,
    FluidSystem,
    RelativePermeabilities,
)
from blackoil.utils import as_float_array, clip_scalar
from blackoil.variables import (
    CellCondition,
    Indices,
    PrimaryVariables,
    PrimaryVariableSet,
)

__all__ = [
    "RockFluidProperties",
    "CellHistory",
    "ReservoirModel",
]


class CapillaryPressureModel(typing.Protocol):
    def get_capillary_pressures(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> CapillaryPressures: ...


class RelativePermeabilityModel(typing.Protocol):
    def get_relative_permeabilities(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> RelativePermeabilities: ...


@attrs.frozen(slots=True)
class RockFluidProperties:
    """
    Combined rock and fluid saturation functions of a cell.

    Serves as the material law of the cells it is assigned to.
    """

    relative_permeability_model: RelativePermeabilityModel = attrs.field(
        factory=CoreyThreePhaseRelPermModel
    )
    """Model that evaluates the relative permeability curves based on fluid saturations."""
    capillary_pressure_model: CapillaryPressureModel = attrs.field(
        factory=NoCapillaryPressureModel
    )
    """Model that evaluates the capillary pressure curves based on fluid saturations."""

    def capillary_pressures(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> CapillaryPressures:
        return self.capillary_pressure_model.get_capillary_pressures(
            water_saturation, oil_saturation, gas_saturation
        )

    def relative_permeabilities(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> RelativePermeabilities:
        return self.relative_permeability_model.get_relative_permeabilities(
            water_saturation, oil_saturation, gas_saturation
        )


@attrs.define(slots=True)
class CellHistory:
    """
    Historical maxima of a cell, used to damp oscillatory phase switching.

    Dissolution factor maxima default to infinity, which means no cap.
    """

    max_oil_saturation: float = 0.0
    """Largest oil saturation seen in the cell."""
    max_gas_dissolution_factor: float = np.inf
    """Cap on the dissolved gas factor Rs."""
    max_oil_vaporization_factor: float = np.inf
    """Cap on the vaporized oil factor Rv."""

    def update(self, fluid_state: FluidState, track_dissolution: bool = False) -> None:
        """
        Record the state of an accepted step. Values are clamped before they are stored.

        :param fluid_state: Fluid state at the end of the accepted step.
        :param track_dissolution: Whether Rs and Rv maxima are tracked. When True, Rs and Rv
            can no longer rise above the largest values seen so far.
        """
        oil_saturation = clip_scalar(float(fluid_state.saturations[1]), 0.0, 1.0)
        self.max_oil_saturation = max(self.max_oil_saturation, oil_saturation)
        if not track_dissolution:
            return

        rs = max(fluid_state.gas_dissolution_factor, 0.0)
        rv = max(fluid_state.oil_vaporization_factor, 0.0)
        if np.isinf(self.max_gas_dissolution_factor):
            self.max_gas_dissolution_factor = rs
        else:
            self.max_gas_dissolution_factor = max(self.max_gas_dissolution_factor, rs)
        if np.isinf(self.max_oil_vaporization_factor):
            self.max_oil_vaporization_factor = rv
        else:
            self.max_oil_vaporization_factor = max(self.max_oil_vaporization_factor, rv)


def _as_extensions(value: typing.Any) -> typing.Tuple[Extension, ...]:
    if isinstance(value, Extension):
        return (value,)
    return tuple(value)


def _as_rock_fluid(
    value: typing.Any,
) -> typing.Union[RockFluidProperties, typing.Tuple[RockFluidProperties, ...]]:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return value


@attrs.define
class ReservoirModel:
    """
    Reservoir description consumed by the residual assembly.

    Static properties (grid, rock, fluids, sources, extensions) plus the per-cell
    histories, which are updated after every accepted time step.
    """

    grid: Grid
    """Cell and face geometry."""
    fluid_system: FluidSystem
    """PVT collaborator."""
    porosity: npt.NDArray[np.floating]
    """Reference porosity per cell (fraction). A scalar applies to every cell."""
    rock_fluid_properties: typing.Union[
        RockFluidProperties, typing.Tuple[RockFluidProperties, ...]
    ] = attrs.field(factory=RockFluidProperties, converter=_as_rock_fluid)
    """Material law shared by all cells, or one per cell."""
    rock_compressibility: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Rock compressibility (1/Pa)."""
    reference_pressure: float = attrs.field(factory=lambda: float(c.STANDARD_PRESSURE))
    """Pressure at which `porosity` applies (Pa)."""
    temperature: float = attrs.field(
        factory=lambda: float(c.STANDARD_TEMPERATURE), validator=attrs.validators.gt(0)
    )
    """Reservoir temperature (K)."""
    pvt_regions: typing.Optional[npt.NDArray[np.integer]] = None
    """PVT region index per cell. All cells use region 0 when omitted."""
    sources: typing.Optional[npt.NDArray[np.floating]] = None
    """
    Component source rates per cell, shape (num_cells, 4), indexed by canonical component
    index. Mass rates in kg/s (surface volume rates in sm³/s when conserving surface volume).
    Positive values inject.
    """
    extensions: typing.Tuple[Extension, ...] = attrs.field(
        factory=tuple, converter=_as_extensions
    )
    """Optional physics modules, applied in order. A single extension may be passed as is."""
    track_dissolution_history: bool = False
    """Whether Rs/Rv may not rise above their historical maxima."""
    histories: typing.List[CellHistory] = attrs.field(factory=list)
    """Per-cell histories. Filled with defaults when empty."""
    extension: CombinedExtension = attrs.field(init=False)
    """`extensions` acting as one."""

    def __attrs_post_init__(self) -> None:
        num_cells = self.grid.num_cells
        self.extension = CombinedExtension(self.extensions)
        self.porosity = as_float_array(self.porosity, num_cells, "porosity")
        if np.any(self.porosity <= 0.0) or np.any(self.porosity > 1.0):
            raise ValidationError("Porosity must lie in (0, 1].")

        if isinstance(self.rock_fluid_properties, tuple) and (
            len(self.rock_fluid_properties) != num_cells
        ):
            raise ValidationError(
                f"Got {len(self.rock_fluid_properties)} rock-fluid properties for {num_cells} cells."
            )

        if self.pvt_regions is None:
            self.pvt_regions = np.zeros(num_cells, dtype=np.intp)
        else:
            self.pvt_regions = np.asarray(self.pvt_regions, dtype=np.intp).ravel()
            if self.pvt_regions.size != num_cells:
                raise ValidationError(
                    f"`pvt_regions` must have {num_cells} entries, got {self.pvt_regions.size}."
                )

        if self.sources is None:
            self.sources = np.zeros((num_cells, 4), dtype=np.float64)
        else:
            sources = np.asarray(self.sources, dtype=np.float64)
            if sources.ndim != 2 or sources.shape[0] != num_cells or sources.shape[1] > 4:
                raise ValidationError(
                    f"`sources` must have shape ({num_cells}, <=4), got {sources.shape}."
                )
            padded = np.zeros((num_cells, 4), dtype=np.float64)
            padded[:, : sources.shape[1]] = sources
            self.sources = padded

        if not self.histories:
            self.histories = [CellHistory() for _ in range(num_cells)]
        elif len(self.histories) != num_cells:
            raise ValidationError(
                f"Got {len(self.histories)} cell histories for {num_cells} cells."
            )

    @property
    def num_cells(self) -> int:
        return self.grid.num_cells

    @property
    def enables_brine(self) -> bool:
        return self.extension.enables_brine

    @property
    def indices(self) -> Indices:
        return Indices.from_fluid_system(self.fluid_system, enable_brine=self.enables_brine)

    def material_law(self, cell: int) -> RockFluidProperties:
        if isinstance(self.rock_fluid_properties, tuple):
            return self.rock_fluid_properties[cell]
        return self.rock_fluid_properties

    def pore_volumes(self) -> npt.NDArray[np.floating]:
        """Reference pore volume of every cell (m³)."""
        return self.grid.volumes * self.porosity

    def fluid_state(self, cell: int, primary_variables: PrimaryVariables) -> FluidState:
        """Fluid state of `cell` for the given primary variables."""
        return compute_fluid_state(
            primary_variables,
            fluid_system=self.fluid_system,
            material_law=self.material_law(cell),
            temperature=self.temperature,
            reference_porosity=float(self.porosity[cell]),
            rock_compressibility=self.rock_compressibility,
            reference_pressure=self.reference_pressure,
            history=self.histories[cell],
            salt_solubility=self.extension.salt_solubility(primary_variables.pvt_region),
        )

    def initialize(
        self, conditions: typing.Union[CellCondition, typing.Sequence[CellCondition]]
    ) -> PrimaryVariableSet:
        """
        Assign primary variables to every cell from phase-presence descriptions.

        :param conditions: One condition for all cells, or one per cell.
        :return: The primary variable set of the model.
        """
        if isinstance(conditions, CellCondition):
            conditions = [conditions] * self.num_cells
        if len(conditions) != self.num_cells:
            raise ValidationError(
                f"Got {len(conditions)} initial conditions for {self.num_cells} cells."
            )
        variables = [
            PrimaryVariables.from_condition(
                condition,
                self.fluid_system,
                pvt_region=int(self.pvt_regions[cell]),  # type: ignore[index]
                enable_brine=self.enables_brine,
            )
            for cell, condition in enumerate(conditions)
        ]
        primary_variables = PrimaryVariableSet(variables, self.indices)
        self.update_histories(primary_variables)
        return primary_variables

    def update_histories(self, primary_variables: PrimaryVariableSet) -> None:
        """Record the fluid states of an accepted step in the cell histories."""
        for cell, variables in enumerate(primary_variables):
            self.histories[cell].update(
                self.fluid_state(cell, variables),
                track_dissolution=self.track_dissolution_history,
            )
