"""Capillary pressure models and tables for three-phase black-oil cells."""

import typing

import attrs
import numba
import numpy as np
import numpy.typing as npt

from blackoil.errors import ValidationError
from blackoil.types import CapillaryPressures
from blackoil.utils import clip_scalar


__all__ = [
    "NoCapillaryPressureModel",
    "BrooksCoreyCapillaryPressureModel",
    "TwoPhaseCapillaryPressureTable",
    "TabulatedCapillaryPressureModel",
    "compute_brooks_corey_capillary_pressures",
]


@numba.njit(cache=True)
def compute_brooks_corey_capillary_pressures(
    water_saturation: float,
    gas_saturation: float,
    irreducible_water_saturation: float,
    residual_oil_saturation_water: float,
    residual_oil_saturation_gas: float,
    residual_gas_saturation: float,
    oil_water_entry_pressure: float,
    oil_water_pore_size_distribution_index: float,
    gas_oil_entry_pressure: float,
    gas_oil_pore_size_distribution_index: float,
    max_capillary_pressure: float,
) -> typing.Tuple[float, float]:
    """
    Computes capillary pressures (Pcow, Pcgo) of a water-wet cell using the Brooks-Corey model.

    Brooks-Corey model: Pc = Pd * (Se)^(-1/λ)
    where:
    - Pd is the displacement/entry pressure
    - Se is the effective saturation
    - λ is the pore size distribution index

    Pcow is defined as Po - Pw. Pcgo is defined as Pg - Po.
    Both are capped at `max_capillary_pressure`, so saturations that
    stray slightly outside [0, 1] during Newton iterations stay finite.

    :param water_saturation: Water saturation (fraction).
    :param gas_saturation: Gas saturation (fraction).
    :param irreducible_water_saturation: Irreducible water saturation (Swc).
    :param residual_oil_saturation_water: Residual oil saturation during water flooding (Sorw).
    :param residual_oil_saturation_gas: Residual oil saturation during gas flooding (Sorg).
    :param residual_gas_saturation: Residual gas saturation (Sgr).
    :param oil_water_entry_pressure: Entry pressure for oil-water (Pa).
    :param oil_water_pore_size_distribution_index: Pore size distribution index (λ) for oil-water.
    :param gas_oil_entry_pressure: Entry pressure for gas-oil (Pa).
    :param gas_oil_pore_size_distribution_index: Pore size distribution index (λ) for gas-oil.
    :param max_capillary_pressure: Upper bound on either capillary pressure (Pa).
    :return: Tuple of (oil_water_capillary_pressure, gas_oil_capillary_pressure) in Pa.
    """
    mobile_water_pore_space = (
        1.0 - irreducible_water_saturation - residual_oil_saturation_water
    )
    mobile_gas_pore_space = (
        1.0
        - irreducible_water_saturation
        - residual_oil_saturation_gas
        - residual_gas_saturation
    )

    pcow = 0.0
    if mobile_water_pore_space > 1e-9 and oil_water_entry_pressure > 0.0:
        effective_water_saturation = clip_scalar(
            (water_saturation - irreducible_water_saturation) / mobile_water_pore_space,
            1e-6,
            1.0,
        )
        if effective_water_saturation < 1.0 - 1e-6:
            pcow = oil_water_entry_pressure * effective_water_saturation ** (
                -1.0 / oil_water_pore_size_distribution_index
            )

    pcgo = 0.0
    if mobile_gas_pore_space > 1e-9 and gas_oil_entry_pressure > 0.0:
        # Gas is the non-wetting phase, so Pcgo rises with gas saturation
        effective_liquid_saturation = clip_scalar(
            1.0 - (gas_saturation - residual_gas_saturation) / mobile_gas_pore_space,
            1e-6,
            1.0,
        )
        if effective_liquid_saturation < 1.0 - 1e-6:
            pcgo = gas_oil_entry_pressure * effective_liquid_saturation ** (
                -1.0 / gas_oil_pore_size_distribution_index
            )

    return (
        min(pcow, max_capillary_pressure),
        min(pcgo, max_capillary_pressure),
    )


@attrs.frozen
class NoCapillaryPressureModel:
    """Model with zero capillary pressure between every phase pair."""

    def get_capillary_pressures(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> CapillaryPressures:
        return CapillaryPressures(oil_water=0.0, gas_oil=0.0)

    def __call__(
        self,
        *,
        water_saturation: float,
        oil_saturation: float,
        gas_saturation: float,
        **kwargs: typing.Any,
    ) -> CapillaryPressures:
        return self.get_capillary_pressures(
            water_saturation, oil_saturation, gas_saturation
        )


@attrs.frozen
class BrooksCoreyCapillaryPressureModel:
    """
    Brooks-Corey capillary pressure model for water-wet three-phase cells.

    Implements the Brooks-Corey model: Pc = Pd * (Se)^(-1/λ)

    Setting an entry pressure to zero disables the corresponding capillary pressure.
    """

    irreducible_water_saturation: float = attrs.field(
        default=0.0, validator=attrs.validators.and_(attrs.validators.ge(0), attrs.validators.lt(1))
    )
    """Irreducible water saturation (Swc)."""
    residual_oil_saturation_water: float = attrs.field(
        default=0.0, validator=attrs.validators.and_(attrs.validators.ge(0), attrs.validators.lt(1))
    )
    """Residual oil saturation after water flood (Sorw)."""
    residual_oil_saturation_gas: float = attrs.field(
        default=0.0, validator=attrs.validators.and_(attrs.validators.ge(0), attrs.validators.lt(1))
    )
    """Residual oil saturation after gas flood (Sorg)."""
    residual_gas_saturation: float = attrs.field(
        default=0.0, validator=attrs.validators.and_(attrs.validators.ge(0), attrs.validators.lt(1))
    )
    """Residual gas saturation (Sgr)."""
    oil_water_entry_pressure: float = attrs.field(
        default=3.4e4, validator=attrs.validators.ge(0)
    )
    """Entry pressure for oil-water (Pa)."""
    oil_water_pore_size_distribution_index: float = attrs.field(
        default=2.0, validator=attrs.validators.gt(0)
    )
    """Pore size distribution index (λ) for oil-water."""
    gas_oil_entry_pressure: float = attrs.field(
        default=6.9e3, validator=attrs.validators.ge(0)
    )
    """Entry pressure for gas-oil (Pa)."""
    gas_oil_pore_size_distribution_index: float = attrs.field(
        default=2.0, validator=attrs.validators.gt(0)
    )
    """Pore size distribution index (λ) for gas-oil."""
    max_capillary_pressure: float = attrs.field(
        default=1e7, validator=attrs.validators.gt(0)
    )
    """Cap on either capillary pressure (Pa)."""

    def get_capillary_pressures(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> CapillaryPressures:
        """
        Compute capillary pressures using Brooks-Corey model.

        :param water_saturation: Water saturation (fraction).
        :param oil_saturation: Oil saturation (fraction). Unused, oil fills the remainder.
        :param gas_saturation: Gas saturation (fraction).
        :return: Dictionary with oil_water and gas_oil capillary pressures.
        """
        pcow, pcgo = compute_brooks_corey_capillary_pressures(
            float(water_saturation),
            float(gas_saturation),
            self.irreducible_water_saturation,
            self.residual_oil_saturation_water,
            self.residual_oil_saturation_gas,
            self.residual_gas_saturation,
            self.oil_water_entry_pressure,
            self.oil_water_pore_size_distribution_index,
            self.gas_oil_entry_pressure,
            self.gas_oil_pore_size_distribution_index,
            self.max_capillary_pressure,
        )
        return CapillaryPressures(oil_water=pcow, gas_oil=pcgo)

    def __call__(
        self,
        *,
        water_saturation: float,
        oil_saturation: float,
        gas_saturation: float,
        **kwargs: typing.Any,
    ) -> CapillaryPressures:
        return self.get_capillary_pressures(
            water_saturation, oil_saturation, gas_saturation
        )


@attrs.frozen
class TwoPhaseCapillaryPressureTable:
    """
    Two-phase capillary pressure lookup table.

    Interpolates capillary pressure linearly in the wetting phase saturation
    with `np.interp`. Out-of-range saturations use the edge values.
    """

    wetting_phase_saturation: npt.NDArray[np.floating] = attrs.field(
        converter=lambda value: np.asarray(value, dtype=np.float64)
    )
    """Wetting phase saturations, monotonically increasing."""
    capillary_pressure: npt.NDArray[np.floating] = attrs.field(
        converter=lambda value: np.asarray(value, dtype=np.float64)
    )
    """Capillary pressure values (Pa) corresponding to saturations."""

    def __attrs_post_init__(self) -> None:
        if len(self.wetting_phase_saturation) != len(self.capillary_pressure):
            raise ValidationError(
                f"Saturation and pressure arrays must have same length. "
                f"Got {len(self.wetting_phase_saturation)} vs {len(self.capillary_pressure)}"
            )
        if len(self.wetting_phase_saturation) < 2:
            raise ValidationError("At least 2 points required for interpolation")
        if not np.all(np.diff(self.wetting_phase_saturation) >= 0):
            raise ValidationError(
                "Wetting phase saturation must be monotonically increasing"
            )

    def get_capillary_pressure(self, wetting_phase_saturation: float) -> float:
        return float(
            np.interp(
                wetting_phase_saturation,
                self.wetting_phase_saturation,
                self.capillary_pressure,
            )
        )

    def __call__(self, wetting_phase_saturation: float) -> float:
        return self.get_capillary_pressure(wetting_phase_saturation)


@attrs.frozen
class TabulatedCapillaryPressureModel:
    """
    Capillary pressures from an oil-water table (keyed by Sw) and
    a gas-oil table (keyed by the liquid saturation 1 - Sg).

    A missing table yields zero capillary pressure for that phase pair.
    """

    oil_water_table: typing.Optional[TwoPhaseCapillaryPressureTable] = None
    """Pcow as a function of water saturation."""
    gas_oil_table: typing.Optional[TwoPhaseCapillaryPressureTable] = None
    """Pcgo as a function of total liquid saturation."""

    def get_capillary_pressures(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> CapillaryPressures:
        pcow = 0.0
        if self.oil_water_table is not None:
            pcow = self.oil_water_table(water_saturation)
        pcgo = 0.0
        if self.gas_oil_table is not None:
            pcgo = self.gas_oil_table(1.0 - gas_saturation)
        return CapillaryPressures(oil_water=pcow, gas_oil=pcgo)

    def __call__(
        self,
        *,
        water_saturation: float,
        oil_saturation: float,
        gas_saturation: float,
        **kwargs: typing.Any,
    ) -> CapillaryPressures:
        return self.get_capillary_pressures(
            water_saturation, oil_saturation, gas_saturation
        )
