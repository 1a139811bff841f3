"""Per-cell primary variables, their interpretation tags and the Newton vector layout."""

import copy
import typing

import attrs
import numpy as np
import numpy.typing as npt

from blackoil.errors import PrimaryVariableError, ValidationError
from blackoil.types import (
    BrineMeaning,
    FluidPhase,
    FluidSystem,
    GasMeaning,
    PressureMeaning,
    WaterMeaning,
)
from blackoil.utils import clip_scalar

__all__ = [
    "CellCondition",
    "PrimaryVariables",
    "PrimaryVariableSet",
    "Indices",
]


def _phase_mapping(
    value: typing.Union[float, typing.Mapping[typing.Any, float]],
) -> typing.Dict[FluidPhase, float]:
    if isinstance(value, typing.Mapping):
        return {FluidPhase(phase): float(v) for phase, v in value.items()}
    return {phase: float(value) for phase in FluidPhase}


@attrs.frozen
class CellCondition:
    """
    Phase-presence description of a cell, from which primary variables are assigned.

    Used for initial conditions and for the exterior state of pressure-controlled boundaries.
    """

    pressures: typing.Dict[FluidPhase, float] = attrs.field(converter=_phase_mapping)
    """Phase pressures (Pa). A single value sets every phase to that pressure."""
    saturations: typing.Dict[FluidPhase, float] = attrs.field(converter=_phase_mapping)
    """Phase saturations (fraction). Missing phases have zero saturation."""
    gas_dissolution_factor: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Gas dissolved in oil, Rs (sm³/sm³)."""
    oil_vaporization_factor: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Oil vaporized in gas, Rv (sm³/sm³)."""
    water_vaporization_factor: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Water vaporized in gas, Rvw (sm³/sm³)."""
    gas_dissolution_factor_in_water: float = attrs.field(
        default=0.0, validator=attrs.validators.ge(0)
    )
    """Gas dissolved in water, Rsw (sm³/sm³)."""
    salt_concentration: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Salt concentration in water (kg/sm³)."""
    precipitated_salt_saturation: float = attrs.field(
        default=0.0, validator=attrs.validators.ge(0)
    )
    """Volume fraction of pore space occupied by precipitated salt."""

    def saturation(self, phase: FluidPhase) -> float:
        return self.saturations.get(phase, 0.0)

    def pressure(self, phase: FluidPhase) -> float:
        try:
            return self.pressures[phase]
        except KeyError:
            raise ValidationError(f"No {phase.value} pressure given for the cell condition.") from None


@attrs.define(slots=True)
class PrimaryVariables:
    """
    Primary variables of one cell.

    Every slot carries a tag stating how its value must currently be read. The switching
    logic in `blackoil.switching` changes tags and values together.
    """

    pressure: float
    """Pressure of the phase named by `pressure_meaning` (Pa)."""
    water: float = 0.0
    """Water switching slot. Sw, Rvw or Rsw depending on `water_meaning`."""
    gas: float = 0.0
    """Gas switching slot. Sg, Rs or Rv depending on `gas_meaning`."""
    brine: float = 0.0
    """Brine slot. Salt concentration or precipitated salt saturation depending on `brine_meaning`."""
    pressure_meaning: PressureMeaning = PressureMeaning.OIL_PRESSURE
    water_meaning: WaterMeaning = WaterMeaning.DISABLED
    gas_meaning: GasMeaning = GasMeaning.DISABLED
    brine_meaning: BrineMeaning = BrineMeaning.DISABLED
    pvt_region: int = attrs.field(default=0, on_setattr=attrs.setters.frozen)
    """PVT region index. Fixed once the record exists."""

    @classmethod
    def from_condition(
        cls,
        condition: CellCondition,
        fluid_system: FluidSystem,
        pvt_region: int = 0,
        enable_brine: bool = False,
    ) -> "PrimaryVariables":
        """
        Build primary variables for a cell described by `condition`.

        See `assign_naive`.
        """
        primary_variables = cls(pressure=0.0, pvt_region=pvt_region)
        primary_variables.assign_naive(condition, fluid_system, enable_brine=enable_brine)
        return primary_variables

    def assign_naive(
        self,
        condition: CellCondition,
        fluid_system: FluidSystem,
        enable_brine: bool = False,
    ) -> None:
        """
        Derive tags and values from the phases present in `condition`.

        The pressure variable holds the oil pressure whenever oil is active, the gas pressure
        if oil is absent and vaporized oil is modelled (or only gas is active), and the water
        pressure otherwise.

        :param condition: Phase-presence description of the cell.
        :param fluid_system: Fluid system defining the active phases and dissolution options.
        :param enable_brine: Whether the brine slot is in use.
        :raises PrimaryVariableError: If no pressure meaning fits the active phases.
        """
        water_active = fluid_system.phase_is_active(FluidPhase.WATER)
        oil_active = fluid_system.phase_is_active(FluidPhase.OIL)
        gas_active = fluid_system.phase_is_active(FluidPhase.GAS)
        water_present = water_active and condition.saturation(FluidPhase.WATER) > 0.0
        oil_present = oil_active and condition.saturation(FluidPhase.OIL) > 0.0
        gas_present = gas_active and condition.saturation(FluidPhase.GAS) > 0.0
        one_active_phase = fluid_system.num_active_phases == 1

        if gas_present and fluid_system.enable_vaporized_oil and not oil_present:
            self.pressure_meaning = PressureMeaning.GAS_PRESSURE
        elif oil_active:
            self.pressure_meaning = PressureMeaning.OIL_PRESSURE
        elif (
            water_present
            and fluid_system.enable_dissolved_gas_in_water
            and not gas_present
        ):
            self.pressure_meaning = PressureMeaning.WATER_PRESSURE
        elif gas_active:
            self.pressure_meaning = PressureMeaning.GAS_PRESSURE
        elif water_active:
            self.pressure_meaning = PressureMeaning.WATER_PRESSURE
        else:
            raise PrimaryVariableError("No valid primary variable for pressure: no phase is active.")

        if water_present and gas_present:
            self.water_meaning = WaterMeaning.WATER_SATURATION
        elif gas_present and fluid_system.enable_vaporized_water:
            self.water_meaning = WaterMeaning.VAPORIZED_WATER
        elif water_present and fluid_system.enable_dissolved_gas_in_water:
            self.water_meaning = WaterMeaning.DISSOLVED_GAS_IN_WATER
        elif water_active and not one_active_phase:
            self.water_meaning = WaterMeaning.WATER_SATURATION
        else:
            self.water_meaning = WaterMeaning.DISABLED

        if gas_present and oil_present:
            self.gas_meaning = GasMeaning.GAS_SATURATION
        elif oil_present and fluid_system.enable_dissolved_gas:
            self.gas_meaning = GasMeaning.DISSOLVED_GAS
        elif gas_present and fluid_system.enable_vaporized_oil:
            self.gas_meaning = GasMeaning.VAPORIZED_OIL
        elif gas_active and oil_active:
            self.gas_meaning = GasMeaning.GAS_SATURATION
        else:
            self.gas_meaning = GasMeaning.DISABLED

        if enable_brine:
            if condition.precipitated_salt_saturation > 0.0:
                self.brine_meaning = BrineMeaning.PRECIPITATED_SALT
                self.brine = condition.precipitated_salt_saturation
            else:
                self.brine_meaning = BrineMeaning.SALT_CONCENTRATION
                self.brine = condition.salt_concentration
        else:
            self.brine_meaning = BrineMeaning.DISABLED
            self.brine = 0.0

        if self.pressure_meaning is PressureMeaning.OIL_PRESSURE:
            self.pressure = condition.pressure(FluidPhase.OIL)
        elif self.pressure_meaning is PressureMeaning.GAS_PRESSURE:
            self.pressure = condition.pressure(FluidPhase.GAS)
        else:
            self.pressure = condition.pressure(FluidPhase.WATER)

        if self.water_meaning is WaterMeaning.WATER_SATURATION:
            self.water = condition.saturation(FluidPhase.WATER)
        elif self.water_meaning is WaterMeaning.VAPORIZED_WATER:
            self.water = condition.water_vaporization_factor
        elif self.water_meaning is WaterMeaning.DISSOLVED_GAS_IN_WATER:
            self.water = condition.gas_dissolution_factor_in_water
        else:
            self.water = 0.0

        if self.gas_meaning is GasMeaning.GAS_SATURATION:
            self.gas = condition.saturation(FluidPhase.GAS)
        elif self.gas_meaning is GasMeaning.DISSOLVED_GAS:
            self.gas = condition.gas_dissolution_factor
        elif self.gas_meaning is GasMeaning.VAPORIZED_OIL:
            self.gas = condition.oil_vaporization_factor
        else:
            self.gas = 0.0

    def water_saturation(self) -> float:
        """Raw water slot if it holds a saturation, else 0."""
        if self.water_meaning is WaterMeaning.WATER_SATURATION:
            return self.water
        return 0.0

    def gas_saturation(self) -> float:
        """Raw gas slot if it holds a saturation, else 0."""
        if self.gas_meaning is GasMeaning.GAS_SATURATION:
            return self.gas
        return 0.0

    def chop_and_normalize_saturations(self) -> bool:
        """
        Clamp the saturations to [0, 1] and scale them so they sum to one.

        Only slots that hold saturations are written back.

        :return: True if the clamped saturations did not sum to one.
        """
        if (
            self.water_meaning is WaterMeaning.DISABLED
            and self.gas_meaning is GasMeaning.DISABLED
        ):
            return False

        sw = self.water_saturation()
        sg = self.gas_saturation()
        so = 1.0 - sw - sg
        sw = clip_scalar(sw, 0.0, 1.0)
        so = clip_scalar(so, 0.0, 1.0)
        sg = clip_scalar(sg, 0.0, 1.0)
        total = sw + so + sg
        if self.water_meaning is WaterMeaning.WATER_SATURATION:
            self.water = sw / total
        if self.gas_meaning is GasMeaning.GAS_SATURATION:
            self.gas = sg / total
        return total != 1.0

    def copy(self) -> "PrimaryVariables":
        return copy.copy(self)


@attrs.frozen
class Indices:
    """
    Layout of the per-cell unknowns and conservation equations.

    Unknowns are ordered pressure, water slot, gas slot, brine slot, skipping unused slots.
    Equations are ordered water, oil, gas, salt over the active components.
    """

    pressure: int
    water: typing.Optional[int]
    """Position of the water slot among the cell unknowns, None if unused."""
    gas: typing.Optional[int]
    """Position of the gas slot among the cell unknowns, None if unused."""
    brine: typing.Optional[int]
    """Position of the brine slot among the cell unknowns, None if unused."""
    components: typing.Tuple[int, ...]
    """Canonical indices of the conserved components, in equation order."""

    @classmethod
    def from_fluid_system(
        cls, fluid_system: FluidSystem, enable_brine: bool = False
    ) -> "Indices":
        water_active = fluid_system.phase_is_active(FluidPhase.WATER)
        oil_active = fluid_system.phase_is_active(FluidPhase.OIL)
        gas_active = fluid_system.phase_is_active(FluidPhase.GAS)

        position = 1
        water = None
        if water_active and fluid_system.num_active_phases > 1:
            water = position
            position += 1
        gas = None
        if oil_active and gas_active:
            gas = position
            position += 1
        brine = None
        if enable_brine:
            brine = position
            position += 1

        components = tuple(
            phase.index
            for phase in (FluidPhase.WATER, FluidPhase.OIL, FluidPhase.GAS)
            if fluid_system.phase_is_active(phase)
        )
        if enable_brine:
            components = components + (3,)

        indices = cls(pressure=0, water=water, gas=gas, brine=brine, components=components)
        if position != indices.num_equations:
            raise PrimaryVariableError(
                f"{position} unknowns per cell but {indices.num_equations} conservation equations."
            )
        return indices

    @property
    def num_equations(self) -> int:
        return len(self.components)

    def equation_index(self, component: int) -> int:
        """Equation index of a canonical component index."""
        return self.components.index(component)


class PrimaryVariableSet:
    """Primary variables of every cell, owned by the simulation state."""

    __slots__ = ("_variables", "indices")

    def __init__(
        self, variables: typing.Iterable[PrimaryVariables], indices: Indices
    ) -> None:
        self._variables: typing.List[PrimaryVariables] = list(variables)
        self.indices = indices

    def __len__(self) -> int:
        return len(self._variables)

    def __getitem__(self, cell: int) -> PrimaryVariables:
        return self._variables[cell]

    def __setitem__(self, cell: int, value: PrimaryVariables) -> None:
        self._variables[cell] = value

    def __iter__(self) -> typing.Iterator[PrimaryVariables]:
        return iter(self._variables)

    def snapshot(self) -> typing.List[PrimaryVariables]:
        """Independent copy of every record."""
        return [variables.copy() for variables in self._variables]

    def restore(self, snapshot: typing.Sequence[PrimaryVariables]) -> None:
        """Replace every record by a copy of the record in `snapshot`."""
        if len(snapshot) != len(self._variables):
            raise ValidationError(
                f"Snapshot holds {len(snapshot)} cells, expected {len(self._variables)}."
            )
        self._variables = [variables.copy() for variables in snapshot]

    def copy(self) -> "PrimaryVariableSet":
        return PrimaryVariableSet(self.snapshot(), self.indices)

    def to_vector(self) -> npt.NDArray[np.floating]:
        """Flat vector of all unknowns, cell by cell."""
        num_equations = self.indices.num_equations
        vector = np.zeros(len(self._variables) * num_equations, dtype=np.float64)
        for cell, variables in enumerate(self._variables):
            offset = cell * num_equations
            vector[offset : offset + num_equations] = self.cell_values(variables)
        return vector

    def cell_values(self, variables: PrimaryVariables) -> typing.List[float]:
        indices = self.indices
        values = [variables.pressure]
        if indices.water is not None:
            values.append(variables.water)
        if indices.gas is not None:
            values.append(variables.gas)
        if indices.brine is not None:
            values.append(variables.brine)
        return values

    def set_slot(self, variables: PrimaryVariables, position: int, value: float) -> None:
        """Write `value` into the slot at `position` among the cell unknowns."""
        indices = self.indices
        if position == indices.pressure:
            variables.pressure = value
        elif position == indices.water:
            variables.water = value
        elif position == indices.gas:
            variables.gas = value
        elif position == indices.brine:
            variables.brine = value
        else:
            raise IndexError(f"No unknown at position {position}.")

    def apply_update(self, delta: npt.NDArray[np.floating], scale: float = -1.0) -> None:
        """
        Add `scale * delta` to every unknown.

        :param delta: Flat update vector in `to_vector` layout.
        :param scale: Factor applied to `delta`. Newton steps use -1.
        """
        num_equations = self.indices.num_equations
        if delta.shape != (len(self._variables) * num_equations,):
            raise ValidationError(
                f"Update has shape {delta.shape}, expected ({len(self._variables) * num_equations},)."
            )
        for cell, variables in enumerate(self._variables):
            offset = cell * num_equations
            for position, current in enumerate(self.cell_values(variables)):
                self.set_slot(
                    variables, position, current + scale * float(delta[offset + position])
                )
