"""Fluid state of a cell, derived from its primary variables."""

import typing

import attrs
import numpy as np
import numpy.typing as npt

from blackoil.constants import c
from blackoil.errors import PrimaryVariableError
from blackoil.types import (
    GAS_INDEX,
    OIL_INDEX,
    PHASES,
    WATER_INDEX,
    BrineMeaning,
    FluidPhase,
    FluidSystem,
    GasMeaning,
    MaterialLaw,
    PressureMeaning,
    WaterMeaning,
)
from blackoil.utils import clip_scalar
from blackoil.variables import PrimaryVariables

if typing.TYPE_CHECKING:
    from blackoil.models import CellHistory

__all__ = [
    "FluidState",
    "compute_fluid_state",
    "phase_capillary_pressures",
    "pressure_phase_index",
    "saturations_from_primary_variables",
]

_PRESSURE_PHASE_INDICES = {
    PressureMeaning.OIL_PRESSURE: OIL_INDEX,
    PressureMeaning.GAS_PRESSURE: GAS_INDEX,
    PressureMeaning.WATER_PRESSURE: WATER_INDEX,
}


@attrs.frozen(slots=True)
class FluidState:
    """
    Thermodynamic state of one cell.

    Phase arrays are indexed by the canonical phase index (water=0, oil=1, gas=2).
    Inactive phases have zero saturation, inverse formation volume factor, density and mobility.
    """

    saturations: npt.NDArray[np.floating]
    """Phase saturations (fraction), as implied by the primary variables (not clamped)."""
    pressures: npt.NDArray[np.floating]
    """Phase pressures (Pa)."""
    inverse_formation_volume_factors: npt.NDArray[np.floating]
    """Phase inverse formation volume factors, 1/B (sm³/m³)."""
    densities: npt.NDArray[np.floating]
    """Phase mass densities at reservoir conditions (kg/m³)."""
    viscosities: npt.NDArray[np.floating]
    """Phase viscosities (Pa·s)."""
    mobilities: npt.NDArray[np.floating]
    """Phase mobilities kr/μ (1/(Pa·s))."""
    gas_dissolution_factor: float
    """Rs, gas dissolved in oil (sm³/sm³)."""
    oil_vaporization_factor: float
    """Rv, oil vaporized in gas (sm³/sm³)."""
    water_vaporization_factor: float
    """Rvw, water vaporized in gas (sm³/sm³)."""
    gas_dissolution_factor_in_water: float
    """Rsw, gas dissolved in water (sm³/sm³)."""
    porosity: float
    """Pressure-corrected porosity (fraction)."""
    temperature: float
    """Temperature (K)."""
    pvt_region: int
    salt_concentration: float = 0.0
    """Salt concentration in water (kg/sm³). Zero without brine."""
    precipitated_salt_saturation: float = 0.0
    """Pore fraction occupied by solid salt. Zero without brine."""

    def saturation(self, phase: FluidPhase) -> float:
        return float(self.saturations[phase.index])

    def pressure(self, phase: FluidPhase) -> float:
        return float(self.pressures[phase.index])

    @property
    def oil_pressure(self) -> float:
        return float(self.pressures[OIL_INDEX])


def saturations_from_primary_variables(
    primary_variables: PrimaryVariables, fluid_system: FluidSystem
) -> typing.Tuple[float, float, float]:
    """
    Phase saturations implied by the tags and values of a cell's primary variables.

    :return: (water_saturation, oil_saturation, gas_saturation)
    """
    water_active = fluid_system.phase_is_active(FluidPhase.WATER)
    gas_active = fluid_system.phase_is_active(FluidPhase.GAS)

    water_meaning = primary_variables.water_meaning
    if water_meaning is WaterMeaning.WATER_SATURATION:
        sw = primary_variables.water
    elif water_meaning is WaterMeaning.VAPORIZED_WATER:
        sw = 0.0
    elif water_meaning is WaterMeaning.DISSOLVED_GAS_IN_WATER:
        sw = 1.0
    elif water_active:
        sw = 1.0
    else:
        sw = 0.0

    gas_meaning = primary_variables.gas_meaning
    if gas_meaning is GasMeaning.GAS_SATURATION:
        sg = primary_variables.gas
    elif gas_meaning is GasMeaning.VAPORIZED_OIL:
        sg = 1.0 - sw
    elif gas_meaning is GasMeaning.DISSOLVED_GAS:
        sg = 0.0
    elif gas_active:
        sg = 1.0 - sw
    else:
        sg = 0.0

    so = 1.0 - sw - sg if fluid_system.phase_is_active(FluidPhase.OIL) else 0.0
    return sw, so, sg


def pressure_phase_index(meaning: PressureMeaning) -> int:
    """Canonical index of the phase whose pressure the pressure variable holds."""
    return _PRESSURE_PHASE_INDICES[meaning]


def phase_capillary_pressures(
    material_law: MaterialLaw,
    water_saturation: float,
    oil_saturation: float,
    gas_saturation: float,
) -> npt.NDArray[np.floating]:
    """
    Capillary pressure of each phase relative to the oil phase.

    `pC[oil] = 0`, `pC[gas] = Pg - Po`, `pC[water] = Pw - Po`, so that
    `p_alpha = p_ref + pC[alpha] - pC[ref]` for any reference phase.
    Saturations are clamped to [0, 1] before evaluating the material law.
    """
    capillary_pressures = material_law.capillary_pressures(
        clip_scalar(water_saturation, 0.0, 1.0),
        clip_scalar(oil_saturation, 0.0, 1.0),
        clip_scalar(gas_saturation, 0.0, 1.0),
    )
    pc = np.zeros(3, dtype=np.float64)
    pc[GAS_INDEX] = capillary_pressures["gas_oil"]
    pc[WATER_INDEX] = -capillary_pressures["oil_water"]
    return pc


def compute_fluid_state(
    primary_variables: PrimaryVariables,
    *,
    fluid_system: FluidSystem,
    material_law: MaterialLaw,
    temperature: float,
    reference_porosity: float,
    rock_compressibility: float = 0.0,
    reference_pressure: float = 0.0,
    history: typing.Optional["CellHistory"] = None,
    salt_solubility: float = 0.0,
) -> FluidState:
    """
    Evaluate the fluid state of a cell from its primary variables.

    :param primary_variables: The cell's primary variables.
    :param fluid_system: PVT collaborator.
    :param material_law: Saturation functions of the cell.
    :param temperature: Cell temperature (K).
    :param reference_porosity: Porosity at `reference_pressure`.
    :param rock_compressibility: Rock compressibility (1/Pa).
    :param reference_pressure: Pressure at which `reference_porosity` applies (Pa).
    :param history: Cell history capping Rs and Rv. No cap when omitted.
    :param salt_solubility: Salt concentration of brine in equilibrium with solid salt (kg/sm³).
    :return: The cell's `FluidState`.
    :raises PrimaryVariableError: If the pressure meaning names an inactive phase.
    """
    region = primary_variables.pvt_region
    sw, so, sg = saturations_from_primary_variables(primary_variables, fluid_system)
    saturations = np.array([sw, so, sg], dtype=np.float64)

    reference_index = pressure_phase_index(primary_variables.pressure_meaning)
    if not fluid_system.phase_is_active(PHASES[reference_index]):
        raise PrimaryVariableError(
            f"Pressure meaning {primary_variables.pressure_meaning.name} refers to an inactive phase."
        )
    pc = phase_capillary_pressures(material_law, sw, so, sg)
    pressures = primary_variables.pressure + pc - pc[reference_index]

    salt_concentration = 0.0
    precipitated_salt_saturation = 0.0
    if primary_variables.brine_meaning is BrineMeaning.SALT_CONCENTRATION:
        salt_concentration = primary_variables.brine
    elif primary_variables.brine_meaning is BrineMeaning.PRECIPITATED_SALT:
        salt_concentration = salt_solubility
        precipitated_salt_saturation = primary_variables.brine

    po = float(pressures[OIL_INDEX])
    pg = float(pressures[GAS_INDEX])
    pw = float(pressures[WATER_INDEX])
    max_rs = history.max_gas_dissolution_factor if history is not None else np.inf
    max_rv = history.max_oil_vaporization_factor if history is not None else np.inf

    if primary_variables.gas_meaning is GasMeaning.DISSOLVED_GAS:
        rs = primary_variables.gas
    elif fluid_system.enable_dissolved_gas:
        rs = min(max_rs, fluid_system.saturated_gas_dissolution_factor(region, temperature, po))
    else:
        rs = 0.0

    if primary_variables.gas_meaning is GasMeaning.VAPORIZED_OIL:
        rv = primary_variables.gas
    elif fluid_system.enable_vaporized_oil:
        rv = min(max_rv, fluid_system.saturated_oil_vaporization_factor(region, temperature, pg))
    else:
        rv = 0.0

    if primary_variables.water_meaning is WaterMeaning.VAPORIZED_WATER:
        rvw = primary_variables.water
    elif fluid_system.enable_vaporized_water:
        rvw = fluid_system.saturated_water_vaporization_factor(
            region, temperature, pg, salt_concentration
        )
    else:
        rvw = 0.0

    if primary_variables.water_meaning is WaterMeaning.DISSOLVED_GAS_IN_WATER:
        rsw = primary_variables.water
    elif fluid_system.enable_dissolved_gas_in_water:
        rsw = fluid_system.saturated_gas_dissolution_factor_in_water(
            region, temperature, pw, salt_concentration
        )
    else:
        rsw = 0.0

    inverse_fvfs = np.zeros(3, dtype=np.float64)
    densities = np.zeros(3, dtype=np.float64)
    viscosities = np.ones(3, dtype=np.float64)
    mobilities = np.zeros(3, dtype=np.float64)
    relative_permeabilities = material_law.relative_permeabilities(
        clip_scalar(sw, 0.0, 1.0), clip_scalar(so, 0.0, 1.0), clip_scalar(sg, 0.0, 1.0)
    )
    water_active = fluid_system.phase_is_active(FluidPhase.WATER)
    oil_active = fluid_system.phase_is_active(FluidPhase.OIL)
    gas_active = fluid_system.phase_is_active(FluidPhase.GAS)
    rho_w_ref = fluid_system.reference_density(FluidPhase.WATER, region) if water_active else 0.0
    rho_o_ref = fluid_system.reference_density(FluidPhase.OIL, region) if oil_active else 0.0
    rho_g_ref = fluid_system.reference_density(FluidPhase.GAS, region) if gas_active else 0.0
    min_mobility = c.MIN_RELATIVE_MOBILITY

    if water_active:
        inverse_fvfs[WATER_INDEX] = fluid_system.inverse_formation_volume_factor(
            FluidPhase.WATER, region, temperature, pw
        )
        densities[WATER_INDEX] = inverse_fvfs[WATER_INDEX] * (rho_w_ref + rsw * rho_g_ref)
        viscosities[WATER_INDEX] = fluid_system.viscosity(
            FluidPhase.WATER, region, temperature, pw
        )
        mobilities[WATER_INDEX] = max(
            relative_permeabilities["water"] / viscosities[WATER_INDEX], min_mobility
        )
    if oil_active:
        inverse_fvfs[OIL_INDEX] = fluid_system.inverse_formation_volume_factor(
            FluidPhase.OIL, region, temperature, po, rs
        )
        densities[OIL_INDEX] = inverse_fvfs[OIL_INDEX] * (rho_o_ref + rs * rho_g_ref)
        viscosities[OIL_INDEX] = fluid_system.viscosity(
            FluidPhase.OIL, region, temperature, po, rs
        )
        mobilities[OIL_INDEX] = max(
            relative_permeabilities["oil"] / viscosities[OIL_INDEX], min_mobility
        )
    if gas_active:
        inverse_fvfs[GAS_INDEX] = fluid_system.inverse_formation_volume_factor(
            FluidPhase.GAS, region, temperature, pg, rv
        )
        densities[GAS_INDEX] = inverse_fvfs[GAS_INDEX] * (
            rho_g_ref + rv * rho_o_ref + rvw * rho_w_ref
        )
        viscosities[GAS_INDEX] = fluid_system.viscosity(
            FluidPhase.GAS, region, temperature, pg, rv
        )
        mobilities[GAS_INDEX] = max(
            relative_permeabilities["gas"] / viscosities[GAS_INDEX], min_mobility
        )

    # Rock pressure follows the oil phase, or the first active phase without oil
    if oil_active:
        rock_pressure = po
    elif gas_active:
        rock_pressure = pg
    else:
        rock_pressure = pw
    porosity = reference_porosity * (
        1.0 + rock_compressibility * (rock_pressure - reference_pressure)
    )
    porosity *= 1.0 - precipitated_salt_saturation

    return FluidState(
        saturations=saturations,
        pressures=pressures,
        inverse_formation_volume_factors=inverse_fvfs,
        densities=densities,
        viscosities=viscosities,
        mobilities=mobilities,
        gas_dissolution_factor=float(rs),
        oil_vaporization_factor=float(rv),
        water_vaporization_factor=float(rvw),
        gas_dissolution_factor_in_water=float(rsw),
        porosity=float(porosity),
        temperature=float(temperature),
        pvt_region=region,
        salt_concentration=float(salt_concentration),
        precipitated_salt_saturation=float(precipitated_salt_saturation),
    )
