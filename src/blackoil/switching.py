"""
Primary variable switching.

When a phase appears or disappears in a cell, the slot that described it changes
meaning. A vanishing gas phase turns the gas slot from a saturation into the
dissolved gas factor Rs of the remaining oil, a vanishing oil phase turns it into the
vaporized oil factor Rv of the remaining gas, and so on. Tags and values always change
together, and when the pressure variable changes phase the value is corrected by the
capillary pressure so the physical pressure of the cell is unchanged.
"""

import logging
import typing

import numpy as np
import numpy.typing as npt

from blackoil.fluid_state import (
    phase_capillary_pressures,
    pressure_phase_index,
    saturations_from_primary_variables,
)
from blackoil.types import (
    GAS_INDEX,
    OIL_INDEX,
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

if typing.TYPE_CHECKING:
    from blackoil.config import Config
    from blackoil.models import CellHistory, ReservoirModel
    from blackoil.variables import PrimaryVariables, PrimaryVariableSet

logger = logging.getLogger(__name__)

__all__ = ["adapt_primary_variables", "adapt_all"]


def _capillary_pressures(
    primary_variables: "PrimaryVariables",
    fluid_system: FluidSystem,
    material_law: MaterialLaw,
) -> npt.NDArray[np.floating]:
    """Phase capillary pressures at the saturations the record currently implies."""
    sw, so, sg = saturations_from_primary_variables(primary_variables, fluid_system)
    return phase_capillary_pressures(material_law, sw, so, sg)


def _phase_pressure(
    primary_variables: "PrimaryVariables",
    phase_index: int,
    capillary_pressures: npt.NDArray[np.floating],
) -> float:
    reference_index = pressure_phase_index(primary_variables.pressure_meaning)
    return float(
        primary_variables.pressure
        + capillary_pressures[phase_index]
        - capillary_pressures[reference_index]
    )


def _switch_pressure(
    primary_variables: "PrimaryVariables",
    meaning: PressureMeaning,
    capillary_pressures: npt.NDArray[np.floating],
) -> None:
    """Make the pressure variable hold the pressure of another phase."""
    if primary_variables.pressure_meaning is meaning:
        return
    primary_variables.pressure = _phase_pressure(
        primary_variables, pressure_phase_index(meaning), capillary_pressures
    )
    primary_variables.pressure_meaning = meaning


def _adapt_brine(
    primary_variables: "PrimaryVariables", salt_solubility: float, eps: float
) -> bool:
    if primary_variables.brine_meaning is BrineMeaning.PRECIPITATED_SALT:
        if primary_variables.brine < -eps:
            # Precipitate dissolved completely
            primary_variables.brine_meaning = BrineMeaning.SALT_CONCENTRATION
            primary_variables.brine = salt_solubility
            return True
    elif primary_variables.brine_meaning is BrineMeaning.SALT_CONCENTRATION:
        if primary_variables.brine > salt_solubility + eps:
            primary_variables.brine_meaning = BrineMeaning.PRECIPITATED_SALT
            primary_variables.brine = 0.0
            return True
    return False


def _salt_concentration(
    primary_variables: "PrimaryVariables", salt_solubility: float
) -> float:
    if primary_variables.brine_meaning is BrineMeaning.SALT_CONCENTRATION:
        return primary_variables.brine
    if primary_variables.brine_meaning is BrineMeaning.PRECIPITATED_SALT:
        return salt_solubility
    return 0.0


def _clamp_factors(primary_variables: "PrimaryVariables") -> None:
    if primary_variables.water_meaning in (
        WaterMeaning.VAPORIZED_WATER,
        WaterMeaning.DISSOLVED_GAS_IN_WATER,
    ):
        primary_variables.water = max(primary_variables.water, 0.0)
    if primary_variables.gas_meaning in (
        GasMeaning.DISSOLVED_GAS,
        GasMeaning.VAPORIZED_OIL,
    ):
        primary_variables.gas = max(primary_variables.gas, 0.0)
    if primary_variables.brine_meaning is BrineMeaning.SALT_CONCENTRATION:
        primary_variables.brine = max(primary_variables.brine, 0.0)


def adapt_primary_variables(
    primary_variables: "PrimaryVariables",
    *,
    fluid_system: FluidSystem,
    material_law: MaterialLaw,
    temperature: float,
    history: typing.Optional["CellHistory"] = None,
    eps: float = 0.0,
    water_filled_eps: typing.Optional[float] = None,
    salt_solubility: typing.Optional[float] = None,
) -> bool:
    """
    Re-interpret the slots of a cell after a phase appeared or disappeared.

    Checks run in a fixed order: brine, the water-filled shortcut, then at most one
    water slot transition and at most one gas slot transition. Every pressure
    conversion evaluates capillary pressures at the saturations implied by the
    switched record, so the pressure of the phase that was held before the switch is
    preserved exactly.

    :param primary_variables: Record of the cell. Modified in place.
    :param fluid_system: PVT collaborator supplying the saturated factors.
    :param material_law: Saturation functions of the cell.
    :param temperature: Cell temperature (K).
    :param history: Historical maxima of the cell. Rs and Rv are capped by them.
    :param eps: Switching tolerance. Saturations must drop below `-eps` before a phase
        disappears, and factors must exceed the saturated value by the relative amount
        `eps` before the free phase reappears.
    :param water_filled_eps: Cells with `Sw >= 1 - water_filled_eps` are water filled.
        Defaults to `eps`.
    :param salt_solubility: Salt solubility of the cell (kg/sm³). None without brine.
    :return: True if any tag was reassigned.
    """
    water_meaning = primary_variables.water_meaning
    gas_meaning = primary_variables.gas_meaning
    if water_meaning is WaterMeaning.DISABLED and gas_meaning is GasMeaning.DISABLED:
        return False

    region = primary_variables.pvt_region
    gas_active = fluid_system.phase_is_active(FluidPhase.GAS)
    oil_active = fluid_system.phase_is_active(FluidPhase.OIL)

    sw = primary_variables.water if water_meaning is WaterMeaning.WATER_SATURATION else 0.0
    if gas_meaning is GasMeaning.GAS_SATURATION:
        sg = primary_variables.gas
    elif gas_meaning is GasMeaning.DISABLED and gas_active:
        sg = 1.0 - sw
    else:
        sg = 0.0

    if water_filled_eps is None:
        water_filled_eps = eps

    changed = False
    if salt_solubility is not None and primary_variables.brine_meaning is not BrineMeaning.DISABLED:
        changed = _adapt_brine(primary_variables, salt_solubility, eps)
    salt_concentration = _salt_concentration(primary_variables, salt_solubility or 0.0)

    max_rs = history.max_gas_dissolution_factor if history is not None else np.inf
    max_rv = history.max_oil_vaporization_factor if history is not None else np.inf

    if sw >= 1.0 - water_filled_eps and not fluid_system.enable_dissolved_gas_in_water:
        primary_variables.water = 1.0
        if gas_meaning is not GasMeaning.DISABLED:
            primary_variables.gas = 0.0
            if gas_meaning is not GasMeaning.GAS_SATURATION:
                primary_variables.gas_meaning = GasMeaning.GAS_SATURATION
                if oil_active and primary_variables.pressure_meaning is PressureMeaning.GAS_PRESSURE:
                    _switch_pressure(
                        primary_variables,
                        PressureMeaning.OIL_PRESSURE,
                        _capillary_pressures(primary_variables, fluid_system, material_law),
                    )
                logger.debug(f"Cell water filled, gas slot {gas_meaning.name} -> GAS_SATURATION")
                changed = True
        return changed

    # Water slot
    if water_meaning is WaterMeaning.WATER_SATURATION:
        if sw < -eps and sg > eps and fluid_system.enable_vaporized_water:
            primary_variables.water_meaning = WaterMeaning.VAPORIZED_WATER
            pc = _capillary_pressures(primary_variables, fluid_system, material_law)
            pg = _phase_pressure(primary_variables, GAS_INDEX, pc)
            primary_variables.water = fluid_system.saturated_water_vaporization_factor(
                region, temperature, pg, salt_concentration
            )
            changed = True
        elif sg < -eps and sw > eps and fluid_system.enable_dissolved_gas_in_water:
            primary_variables.water_meaning = WaterMeaning.DISSOLVED_GAS_IN_WATER
            pc = _capillary_pressures(primary_variables, fluid_system, material_law)
            _switch_pressure(primary_variables, PressureMeaning.WATER_PRESSURE, pc)
            primary_variables.water = fluid_system.saturated_gas_dissolution_factor_in_water(
                region, temperature, primary_variables.pressure, salt_concentration
            )
            changed = True

    elif water_meaning is WaterMeaning.VAPORIZED_WATER:
        pc = _capillary_pressures(primary_variables, fluid_system, material_law)
        pg = _phase_pressure(primary_variables, GAS_INDEX, pc)
        rvw_sat = fluid_system.saturated_water_vaporization_factor(
            region, temperature, pg, salt_concentration
        )
        if primary_variables.water > rvw_sat * (1.0 + eps):
            primary_variables.water_meaning = WaterMeaning.WATER_SATURATION
            primary_variables.water = 0.0
            changed = True

    elif water_meaning is WaterMeaning.DISSOLVED_GAS_IN_WATER:
        pc = _capillary_pressures(primary_variables, fluid_system, material_law)
        pw = _phase_pressure(primary_variables, WATER_INDEX, pc)
        rsw_sat = fluid_system.saturated_gas_dissolution_factor_in_water(
            region, temperature, pw, salt_concentration
        )
        if primary_variables.water > rsw_sat:
            primary_variables.water_meaning = WaterMeaning.WATER_SATURATION
            primary_variables.water = 1.0
            pc = _capillary_pressures(primary_variables, fluid_system, material_law)
            _switch_pressure(primary_variables, PressureMeaning.GAS_PRESSURE, pc)
            changed = True

    if primary_variables.water_meaning is not water_meaning:
        logger.debug(
            f"Water slot {water_meaning.name} -> {primary_variables.water_meaning.name}"
        )

    # Gas slot
    if gas_meaning is GasMeaning.GAS_SATURATION:
        so = 1.0 - sw - sg
        if sg < -eps and 1.0 - sw > 0.0 and fluid_system.enable_dissolved_gas:
            primary_variables.gas_meaning = GasMeaning.DISSOLVED_GAS
            pc = _capillary_pressures(primary_variables, fluid_system, material_law)
            po = _phase_pressure(primary_variables, OIL_INDEX, pc)
            rs_sat = fluid_system.saturated_gas_dissolution_factor(region, temperature, po)
            primary_variables.gas = min(max_rs, rs_sat)
            changed = True
        elif so < -eps and sg > 0.0 and fluid_system.enable_vaporized_oil:
            primary_variables.gas_meaning = GasMeaning.VAPORIZED_OIL
            pc = _capillary_pressures(primary_variables, fluid_system, material_law)
            _switch_pressure(primary_variables, PressureMeaning.GAS_PRESSURE, pc)
            rv_sat = fluid_system.saturated_oil_vaporization_factor(
                region, temperature, primary_variables.pressure
            )
            primary_variables.gas = min(max_rv, rv_sat)
            changed = True

    elif gas_meaning is GasMeaning.DISSOLVED_GAS:
        pc = _capillary_pressures(primary_variables, fluid_system, material_law)
        po = _phase_pressure(primary_variables, OIL_INDEX, pc)
        rs_sat = fluid_system.saturated_gas_dissolution_factor(region, temperature, po)
        if primary_variables.gas > min(max_rs, rs_sat * (1.0 + eps)):
            primary_variables.gas_meaning = GasMeaning.GAS_SATURATION
            primary_variables.gas = 0.0
            changed = True

    elif gas_meaning is GasMeaning.VAPORIZED_OIL:
        pc = _capillary_pressures(primary_variables, fluid_system, material_law)
        pg = _phase_pressure(primary_variables, GAS_INDEX, pc)
        rv_sat = fluid_system.saturated_oil_vaporization_factor(region, temperature, pg)
        if primary_variables.gas > min(max_rv, rv_sat * (1.0 + eps)):
            # Oil reappears at zero saturation, gas takes the rest of the hydrocarbon space
            primary_variables.gas_meaning = GasMeaning.GAS_SATURATION
            primary_variables.gas = clip_scalar(1.0 - sw, 0.0, 1.0)
            pc = _capillary_pressures(primary_variables, fluid_system, material_law)
            _switch_pressure(primary_variables, PressureMeaning.OIL_PRESSURE, pc)
            changed = True

    if primary_variables.gas_meaning is not gas_meaning:
        logger.debug(f"Gas slot {gas_meaning.name} -> {primary_variables.gas_meaning.name}")

    _clamp_factors(primary_variables)
    return changed


def adapt_all(
    primary_variables: "PrimaryVariableSet",
    model: "ReservoirModel",
    config: "Config",
) -> int:
    """
    Run the switching logic on every cell of the model.

    :param primary_variables: Primary variables of every cell. Modified in place.
    :param model: Reservoir model supplying the material laws, histories and extension.
    :param config: Run configuration supplying the switching tolerances.
    :return: Number of cells whose tags changed.
    """
    enables_brine = model.enables_brine
    switched = 0
    for cell, variables in enumerate(primary_variables):
        salt_solubility = (
            model.extension.salt_solubility(variables.pvt_region) if enables_brine else None
        )
        if adapt_primary_variables(
            variables,
            fluid_system=model.fluid_system,
            material_law=model.material_law(cell),
            temperature=model.temperature,
            history=model.histories[cell],
            eps=config.switching_tolerance,
            water_filled_eps=config.water_filled_tolerance,
            salt_solubility=salt_solubility,
        ):
            switched += 1

    if switched:
        logger.debug(f"Switched primary variables in {switched} cell(s)")
    return switched
