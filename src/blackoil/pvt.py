"""Tabulated black-oil PVT properties and the fluid system built from them."""

import math
import typing

import attrs
import numpy as np
import numpy.typing as npt

from blackoil.errors import ValidationError
from blackoil.types import FluidPhase


__all__ = [
    "OilPVT",
    "GasPVT",
    "WaterPVT",
    "PVTRegion",
    "BlackOilFluidSystem",
]


def _as_table(values: typing.Any) -> npt.NDArray[np.floating]:
    return np.asarray(values, dtype=np.float64)


def _validate_table(
    pressures: npt.NDArray, columns: typing.Dict[str, npt.NDArray], name: str
) -> None:
    if pressures.ndim != 1 or pressures.size < 2:
        raise ValidationError(f"{name}: at least 2 pressure points are required.")
    if not np.all(np.diff(pressures) > 0):
        raise ValidationError(f"{name}: pressures must be strictly increasing.")
    for column, values in columns.items():
        if values.shape != pressures.shape:
            raise ValidationError(
                f"{name}: `{column}` must have the same length as `pressures`. "
                f"Got {values.size} vs {pressures.size}"
            )


def _interp(pressure: float, pressures: npt.NDArray, values: npt.NDArray) -> float:
    # Constant extrapolation outside the table range
    return float(np.interp(pressure, pressures, values))


@attrs.frozen
class OilPVT:
    """
    Live or dead oil table.

    Saturated properties are tabulated against pressure. Undersaturated oil
    (less dissolved gas than the saturated value) is handled through the
    bubble-point pressure of its dissolved gas and a constant compressibility:

        Bo(p, Rs) = Bo_sat(pb(Rs)) * exp(-co * (p - pb(Rs)))
    """

    pressures: npt.NDArray[np.floating] = attrs.field(converter=_as_table)
    """Table pressures in Pa, strictly increasing."""
    formation_volume_factors: npt.NDArray[np.floating] = attrs.field(converter=_as_table)
    """Saturated oil formation volume factors (m³/sm³)."""
    viscosities: npt.NDArray[np.floating] = attrs.field(converter=_as_table)
    """Oil viscosities in Pa·s."""
    saturated_gas_dissolution_factors: typing.Optional[npt.NDArray[np.floating]] = (
        attrs.field(default=None, converter=attrs.converters.optional(_as_table))
    )
    """Saturated dissolved gas-oil ratios Rs (sm³/sm³). None for dead oil."""
    compressibility: float = attrs.field(default=1e-9, validator=attrs.validators.ge(0))
    """Undersaturated oil compressibility in 1/Pa."""

    def __attrs_post_init__(self) -> None:
        columns = {
            "formation_volume_factors": self.formation_volume_factors,
            "viscosities": self.viscosities,
        }
        if self.saturated_gas_dissolution_factors is not None:
            columns["saturated_gas_dissolution_factors"] = (
                self.saturated_gas_dissolution_factors
            )
            if not np.all(np.diff(self.saturated_gas_dissolution_factors) > 0):
                raise ValidationError(
                    "Oil PVT: saturated gas dissolution factors must increase with pressure."
                )
        _validate_table(self.pressures, columns, name="Oil PVT")
        if np.any(self.formation_volume_factors <= 0):
            raise ValidationError("Oil PVT: formation volume factors must be positive.")

    @property
    def is_live(self) -> bool:
        return self.saturated_gas_dissolution_factors is not None

    def saturated_gas_dissolution_factor(self, pressure: float) -> float:
        if self.saturated_gas_dissolution_factors is None:
            return 0.0
        return _interp(pressure, self.pressures, self.saturated_gas_dissolution_factors)

    def bubble_point_pressure(self, gas_dissolution_factor: float) -> float:
        """
        Pressure at which oil holding `gas_dissolution_factor` is exactly saturated.

        :param gas_dissolution_factor: Dissolved gas-oil ratio Rs.
        :return: Bubble-point pressure in Pa.
        """
        if self.saturated_gas_dissolution_factors is None:
            raise ValidationError("Dead oil has no bubble-point pressure.")
        return _interp(
            gas_dissolution_factor, self.saturated_gas_dissolution_factors, self.pressures
        )

    def inverse_formation_volume_factor(
        self, pressure: float, gas_dissolution_factor: float = 0.0
    ) -> float:
        if not self.is_live:
            return 1.0 / _interp(pressure, self.pressures, self.formation_volume_factors)

        bubble_point = self.bubble_point_pressure(gas_dissolution_factor)
        saturated_fvf = _interp(bubble_point, self.pressures, self.formation_volume_factors)
        return math.exp(self.compressibility * (pressure - bubble_point)) / saturated_fvf

    def viscosity(self, pressure: float) -> float:
        return _interp(pressure, self.pressures, self.viscosities)


@attrs.frozen
class GasPVT:
    """Gas table with optional vaporized oil and vaporized water columns."""

    pressures: npt.NDArray[np.floating] = attrs.field(converter=_as_table)
    """Table pressures in Pa, strictly increasing."""
    formation_volume_factors: npt.NDArray[np.floating] = attrs.field(converter=_as_table)
    """Gas formation volume factors (m³/sm³)."""
    viscosities: npt.NDArray[np.floating] = attrs.field(converter=_as_table)
    """Gas viscosities in Pa·s."""
    saturated_oil_vaporization_factors: typing.Optional[npt.NDArray[np.floating]] = (
        attrs.field(default=None, converter=attrs.converters.optional(_as_table))
    )
    """Saturated vaporized oil-gas ratios Rv (sm³/sm³)."""
    saturated_water_vaporization_factors: typing.Optional[npt.NDArray[np.floating]] = (
        attrs.field(default=None, converter=attrs.converters.optional(_as_table))
    )
    """Saturated vaporized water-gas ratios Rvw (sm³/sm³)."""

    def __attrs_post_init__(self) -> None:
        columns = {
            "formation_volume_factors": self.formation_volume_factors,
            "viscosities": self.viscosities,
        }
        if self.saturated_oil_vaporization_factors is not None:
            columns["saturated_oil_vaporization_factors"] = (
                self.saturated_oil_vaporization_factors
            )
        if self.saturated_water_vaporization_factors is not None:
            columns["saturated_water_vaporization_factors"] = (
                self.saturated_water_vaporization_factors
            )
        _validate_table(self.pressures, columns, name="Gas PVT")
        if np.any(self.formation_volume_factors <= 0):
            raise ValidationError("Gas PVT: formation volume factors must be positive.")

    def inverse_formation_volume_factor(self, pressure: float) -> float:
        return 1.0 / _interp(pressure, self.pressures, self.formation_volume_factors)

    def viscosity(self, pressure: float) -> float:
        return _interp(pressure, self.pressures, self.viscosities)

    def saturated_oil_vaporization_factor(self, pressure: float) -> float:
        if self.saturated_oil_vaporization_factors is None:
            return 0.0
        return _interp(pressure, self.pressures, self.saturated_oil_vaporization_factors)

    def saturated_water_vaporization_factor(self, pressure: float) -> float:
        if self.saturated_water_vaporization_factors is None:
            return 0.0
        return _interp(pressure, self.pressures, self.saturated_water_vaporization_factors)


@attrs.frozen
class WaterPVT:
    """
    Water properties in the constant-compressibility form

        1/Bw = (1 + X + X²/2) / Bw_ref,   X = cw * (p - p_ref)
    """

    reference_pressure: float
    """Pressure (Pa) at which `reference_formation_volume_factor` applies."""
    reference_formation_volume_factor: float = attrs.field(
        default=1.0, validator=attrs.validators.gt(0)
    )
    compressibility: float = attrs.field(
        default=4.6e-10, validator=attrs.validators.ge(0)
    )
    """Water compressibility in 1/Pa."""
    viscosity_value: float = attrs.field(default=5e-4, validator=attrs.validators.gt(0))
    """Water viscosity in Pa·s."""
    gas_dissolution_pressures: typing.Optional[npt.NDArray[np.floating]] = attrs.field(
        default=None, converter=attrs.converters.optional(_as_table)
    )
    saturated_gas_dissolution_factors: typing.Optional[npt.NDArray[np.floating]] = (
        attrs.field(default=None, converter=attrs.converters.optional(_as_table))
    )
    """Saturated gas dissolved in water Rsw (sm³/sm³) at `gas_dissolution_pressures`."""

    def __attrs_post_init__(self) -> None:
        has_pressures = self.gas_dissolution_pressures is not None
        has_factors = self.saturated_gas_dissolution_factors is not None
        if has_pressures != has_factors:
            raise ValidationError(
                "Water PVT: gas dissolution pressures and factors must be given together."
            )
        if has_pressures:
            _validate_table(
                self.gas_dissolution_pressures,  # type: ignore[arg-type]
                {"saturated_gas_dissolution_factors": self.saturated_gas_dissolution_factors},  # type: ignore[dict-item]
                name="Water PVT",
            )

    def inverse_formation_volume_factor(self, pressure: float) -> float:
        x = self.compressibility * (pressure - self.reference_pressure)
        return (1.0 + x * (1.0 + 0.5 * x)) / self.reference_formation_volume_factor

    def viscosity(self, pressure: float) -> float:
        return self.viscosity_value

    def saturated_gas_dissolution_factor(self, pressure: float) -> float:
        if self.saturated_gas_dissolution_factors is None:
            return 0.0
        return _interp(
            pressure,
            self.gas_dissolution_pressures,  # type: ignore[arg-type]
            self.saturated_gas_dissolution_factors,
        )


@attrs.frozen
class PVTRegion:
    """Fluid property tables shared by all cells of one PVT region."""

    oil: typing.Optional[OilPVT] = None
    gas: typing.Optional[GasPVT] = None
    water: typing.Optional[WaterPVT] = None
    oil_reference_density: float = attrs.field(default=850.0, validator=attrs.validators.gt(0))
    """Stock-tank oil density in kg/m³."""
    gas_reference_density: float = attrs.field(default=0.9, validator=attrs.validators.gt(0))
    """Surface gas density in kg/m³."""
    water_reference_density: float = attrs.field(default=998.2, validator=attrs.validators.gt(0))
    """Surface water density in kg/m³."""

    def reference_density(self, phase: FluidPhase) -> float:
        if phase is FluidPhase.OIL:
            return self.oil_reference_density
        elif phase is FluidPhase.GAS:
            return self.gas_reference_density
        return self.water_reference_density


def _to_phase_set(phases: typing.Iterable[typing.Union[FluidPhase, str]]) -> typing.FrozenSet[FluidPhase]:
    return frozenset(FluidPhase(phase) for phase in phases)


@attrs.frozen
class BlackOilFluidSystem:
    """
    Black-oil fluid system over one or more PVT regions.

    Tables are isothermal. The temperature arguments exist so the fluid system can be
    swapped for a thermal one without touching callers.
    """

    regions: typing.Tuple[PVTRegion, ...] = attrs.field(converter=tuple)
    """PVT regions, indexed by the `pvt_region` of each cell."""
    active_phases: typing.FrozenSet[FluidPhase] = attrs.field(converter=_to_phase_set)
    """Phases that are modelled."""
    enable_dissolved_gas: bool = False
    """Whether gas can dissolve in oil (Rs)."""
    enable_vaporized_oil: bool = False
    """Whether oil can vaporize into gas (Rv)."""
    enable_vaporized_water: bool = False
    """Whether water can vaporize into gas (Rvw)."""
    enable_dissolved_gas_in_water: bool = False
    """Whether gas can dissolve in water (Rsw)."""

    def __attrs_post_init__(self) -> None:
        if not self.regions:
            raise ValidationError("At least one PVT region is required.")
        if not self.active_phases:
            raise ValidationError("At least one phase must be active.")

        has = self.phase_is_active
        requirements = {
            "enable_dissolved_gas": (FluidPhase.OIL, FluidPhase.GAS),
            "enable_vaporized_oil": (FluidPhase.OIL, FluidPhase.GAS),
            "enable_vaporized_water": (FluidPhase.WATER, FluidPhase.GAS),
            "enable_dissolved_gas_in_water": (FluidPhase.WATER, FluidPhase.GAS),
        }
        for flag, phases in requirements.items():
            if getattr(self, flag) and not all(has(phase) for phase in phases):
                raise ValidationError(
                    f"`{flag}` requires the {[p.value for p in phases]} phases to be active."
                )

        for index, region in enumerate(self.regions):
            for phase in self.active_phases:
                if getattr(region, phase.value) is None:
                    raise ValidationError(
                        f"PVT region {index} has no {phase.value} table but the phase is active."
                    )
            if self.enable_dissolved_gas and not region.oil.is_live:  # type: ignore[union-attr]
                raise ValidationError(
                    f"PVT region {index}: dissolved gas requires a live oil table."
                )

    def phase_is_active(self, phase: FluidPhase) -> bool:
        return phase in self.active_phases

    @property
    def num_active_phases(self) -> int:
        return len(self.active_phases)

    @property
    def num_regions(self) -> int:
        return len(self.regions)

    def region(self, index: int) -> PVTRegion:
        try:
            return self.regions[index]
        except IndexError:
            raise ValidationError(
                f"PVT region {index} does not exist. {len(self.regions)} region(s) defined."
            ) from None

    def reference_density(self, phase: FluidPhase, region: int) -> float:
        return self.region(region).reference_density(phase)

    def inverse_formation_volume_factor(
        self,
        phase: FluidPhase,
        region: int,
        temperature: float,
        pressure: float,
        dissolution_factor: float = 0.0,
    ) -> float:
        """
        Inverse formation volume factor of a phase.

        :param phase: The phase.
        :param region: PVT region index.
        :param temperature: Temperature in K.
        :param pressure: Phase pressure in Pa.
        :param dissolution_factor: Rs for oil. Ignored for the other phases.
        :return: 1/B (sm³/m³).
        """
        tables = self.region(region)
        if phase is FluidPhase.OIL:
            return tables.oil.inverse_formation_volume_factor(  # type: ignore[union-attr]
                pressure, dissolution_factor
            )
        elif phase is FluidPhase.GAS:
            return tables.gas.inverse_formation_volume_factor(pressure)  # type: ignore[union-attr]
        return tables.water.inverse_formation_volume_factor(pressure)  # type: ignore[union-attr]

    def viscosity(
        self,
        phase: FluidPhase,
        region: int,
        temperature: float,
        pressure: float,
        dissolution_factor: float = 0.0,
    ) -> float:
        tables = self.region(region)
        return getattr(tables, phase.value).viscosity(pressure)

    def saturated_gas_dissolution_factor(
        self, region: int, temperature: float, pressure: float
    ) -> float:
        if not self.enable_dissolved_gas:
            return 0.0
        return self.region(region).oil.saturated_gas_dissolution_factor(pressure)  # type: ignore[union-attr]

    def saturated_oil_vaporization_factor(
        self, region: int, temperature: float, pressure: float
    ) -> float:
        if not self.enable_vaporized_oil:
            return 0.0
        return self.region(region).gas.saturated_oil_vaporization_factor(pressure)  # type: ignore[union-attr]

    def saturated_water_vaporization_factor(
        self,
        region: int,
        temperature: float,
        pressure: float,
        salt_concentration: float = 0.0,
    ) -> float:
        if not self.enable_vaporized_water:
            return 0.0
        return self.region(region).gas.saturated_water_vaporization_factor(pressure)  # type: ignore[union-attr]

    def saturated_gas_dissolution_factor_in_water(
        self,
        region: int,
        temperature: float,
        pressure: float,
        salt_concentration: float = 0.0,
    ) -> float:
        if not self.enable_dissolved_gas_in_water:
            return 0.0
        return self.region(region).water.saturated_gas_dissolution_factor(pressure)  # type: ignore[union-attr]
