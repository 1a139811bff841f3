"""
Storage, flux and source terms of the component conservation equations.

All component vectors have four entries indexed by canonical component index
(water, oil, gas, salt). Storage is per unit bulk volume, fluxes are per unit face
area and sources are per cell. Quantities are masses (kg) unless surface volumes
are conserved, in which case the hydrocarbon and water entries are standard volumes (sm³).
"""

import typing

import attrs
import numpy as np
import numpy.typing as npt

from blackoil.constants import c
from blackoil.errors import ValidationError
from blackoil.extensions import Extension
from blackoil.fluid_state import FluidState
from blackoil.grids import BoundaryFace, Face
from blackoil.types import (
    GAS_INDEX,
    OIL_INDEX,
    PHASES,
    SALT_INDEX,
    WATER_INDEX,
    FluidPhase,
    FluidSystem,
)
from blackoil.utils import face_density

__all__ = [
    "FaceFlux",
    "BOUNDARY",
    "compute_storage",
    "compute_flux",
    "compute_boundary_flux",
    "compute_source",
]

BOUNDARY = -1
"""Upstream marker for the exterior side of a boundary face."""


@attrs.frozen(slots=True)
class FaceFlux:
    """Fluxes across one face. Recomputed on every assembly."""

    upstream: typing.Tuple[int, int, int]
    """Upstream cell per phase. `BOUNDARY` for the outside of a boundary face."""
    darcy: npt.NDArray[np.floating]
    """Darcy flux per phase (m/s), positive from the interior to the exterior side."""
    flux: npt.NDArray[np.floating]
    """Component flux per unit area (kg/(m²·s)), positive from the interior to the exterior side."""


def _component_densities(
    fluid_system: FluidSystem, pvt_region: int, conserve_surface_volume: bool
) -> npt.NDArray[np.floating]:
    """Factors converting standard volumes to conserved quantities, per component."""
    densities = np.ones(4, dtype=np.float64)
    if conserve_surface_volume:
        return densities
    for phase in PHASES:
        if fluid_system.phase_is_active(phase):
            densities[phase.index] = fluid_system.reference_density(phase, pvt_region)
    return densities


def compute_storage(
    fluid_state: FluidState,
    fluid_system: FluidSystem,
    extension: Extension,
    conserve_surface_volume: bool = False,
) -> npt.NDArray[np.floating]:
    """
    Amount of every component stored per unit bulk volume of a cell.

    Each phase contributes `phi * S * invB` standard volumes of its own component, plus the
    dissolved shares it carries: gas in oil (Rs) and in water (Rsw), oil in gas (Rv) and water
    in gas (Rvw).

    :param fluid_state: Fluid state of the cell.
    :param fluid_system: PVT collaborator supplying reference densities.
    :param extension: Optional physics module adding its own storage.
    :param conserve_surface_volume: Whether to skip the conversion to mass.
    :return: Storage per component, kg/m³ (sm³/m³ when conserving surface volume).
    """
    storage = np.zeros(4, dtype=np.float64)
    porosity = fluid_state.porosity
    saturations = fluid_state.saturations
    inverse_fvfs = fluid_state.inverse_formation_volume_factors

    if fluid_system.phase_is_active(FluidPhase.WATER):
        water = porosity * saturations[WATER_INDEX] * inverse_fvfs[WATER_INDEX]
        storage[WATER_INDEX] += water
        storage[GAS_INDEX] += water * fluid_state.gas_dissolution_factor_in_water
    if fluid_system.phase_is_active(FluidPhase.OIL):
        oil = porosity * saturations[OIL_INDEX] * inverse_fvfs[OIL_INDEX]
        storage[OIL_INDEX] += oil
        storage[GAS_INDEX] += oil * fluid_state.gas_dissolution_factor
    if fluid_system.phase_is_active(FluidPhase.GAS):
        gas = porosity * saturations[GAS_INDEX] * inverse_fvfs[GAS_INDEX]
        storage[GAS_INDEX] += gas
        storage[OIL_INDEX] += gas * fluid_state.oil_vaporization_factor
        storage[WATER_INDEX] += gas * fluid_state.water_vaporization_factor

    storage[:SALT_INDEX] *= _component_densities(
        fluid_system, fluid_state.pvt_region, conserve_surface_volume
    )[:SALT_INDEX]
    extension.add_storage(storage, fluid_state)
    return storage


def _add_phase_flux(
    flux: npt.NDArray[np.floating],
    phase: FluidPhase,
    darcy: float,
    upstream: FluidState,
    densities: npt.NDArray[np.floating],
) -> None:
    """Route the Darcy flux of one phase to the components it carries."""
    index = phase.index
    surface_flux = upstream.inverse_formation_volume_factors[index] * darcy
    if phase is FluidPhase.WATER:
        flux[WATER_INDEX] += surface_flux * densities[WATER_INDEX]
        flux[GAS_INDEX] += (
            surface_flux * upstream.gas_dissolution_factor_in_water * densities[GAS_INDEX]
        )
    elif phase is FluidPhase.OIL:
        flux[OIL_INDEX] += surface_flux * densities[OIL_INDEX]
        flux[GAS_INDEX] += surface_flux * upstream.gas_dissolution_factor * densities[GAS_INDEX]
    else:
        flux[GAS_INDEX] += surface_flux * densities[GAS_INDEX]
        flux[OIL_INDEX] += surface_flux * upstream.oil_vaporization_factor * densities[OIL_INDEX]
        flux[WATER_INDEX] += (
            surface_flux * upstream.water_vaporization_factor * densities[WATER_INDEX]
        )


def _two_point_flux(
    interior_state: FluidState,
    exterior_state: FluidState,
    *,
    interior_cell: int,
    exterior_cell: int,
    transmissibility: float,
    area: float,
    interior_depth: float,
    exterior_depth: float,
    threshold_pressure: float,
    gravity: float,
    fluid_system: FluidSystem,
    extension: Extension,
    conserve_surface_volume: bool,
) -> FaceFlux:
    presence_saturation = c.PHASE_PRESENCE_SATURATION
    darcy = np.zeros(3, dtype=np.float64)
    flux = np.zeros(4, dtype=np.float64)
    upstream_cells = [interior_cell, interior_cell, interior_cell]
    upstream_states = [interior_state, interior_state, interior_state]

    for phase in PHASES:
        if not fluid_system.phase_is_active(phase):
            continue
        index = phase.index
        density = face_density(
            interior_state.densities[index],
            exterior_state.densities[index],
            interior_state.saturations[index],
            exterior_state.saturations[index],
            presence_saturation,
        )
        potential_difference = (
            interior_state.pressures[index] - exterior_state.pressures[index]
        ) - density * gravity * (interior_depth - exterior_depth)

        if threshold_pressure > 0.0:
            if abs(potential_difference) <= threshold_pressure:
                potential_difference = 0.0
            elif potential_difference > 0.0:
                potential_difference -= threshold_pressure
            else:
                potential_difference += threshold_pressure

        if potential_difference == 0.0:
            continue

        if potential_difference > 0.0:
            upstream = interior_state
        else:
            upstream = exterior_state
            upstream_cells[index] = exterior_cell
        upstream_states[index] = upstream

        darcy[index] = (
            potential_difference * upstream.mobilities[index] * transmissibility / area
        )
        densities = _component_densities(
            fluid_system, upstream.pvt_region, conserve_surface_volume
        )
        _add_phase_flux(flux, phase, float(darcy[index]), upstream, densities)

    extension.add_flux(flux, darcy, upstream_states)
    return FaceFlux(
        upstream=(upstream_cells[0], upstream_cells[1], upstream_cells[2]),
        darcy=darcy,
        flux=flux,
    )


def compute_flux(
    interior_state: FluidState,
    exterior_state: FluidState,
    face: Face,
    *,
    gravity: float,
    fluid_system: FluidSystem,
    extension: Extension,
    conserve_surface_volume: bool = False,
) -> FaceFlux:
    """
    Two-point upwind fluxes across an interior face.

    The potential difference of each phase is the pressure difference minus the gravity
    head, with the face density weighted by how present the phase is on either side.
    It is reduced by the face's threshold pressure. The side with the higher potential
    is upstream and supplies the mobility, the inverse formation volume factor and the
    dissolved shares. Phases with zero potential difference do not flow.

    Swapping the interior and exterior sides negates every entry of the result.

    :param interior_state: Fluid state of `face.interior`.
    :param exterior_state: Fluid state of `face.exterior`.
    :param face: The face.
    :param gravity: Gravitational acceleration (m/s²).
    :param fluid_system: PVT collaborator.
    :param extension: Optional physics module adding its own flux.
    :param conserve_surface_volume: Whether to skip the conversion to mass.
    :return: The fluxes of the face.
    """
    return _two_point_flux(
        interior_state,
        exterior_state,
        interior_cell=face.interior,
        exterior_cell=face.exterior,
        transmissibility=face.transmissibility,
        area=face.area,
        interior_depth=face.interior_depth,
        exterior_depth=face.exterior_depth,
        threshold_pressure=face.threshold_pressure,
        gravity=gravity,
        fluid_system=fluid_system,
        extension=extension,
        conserve_surface_volume=conserve_surface_volume,
    )


def compute_boundary_flux(
    inside_state: FluidState,
    boundary_face: BoundaryFace,
    *,
    gravity: float,
    fluid_system: FluidSystem,
    extension: Extension,
    exterior_state: typing.Optional[FluidState] = None,
    conserve_surface_volume: bool = False,
) -> FaceFlux:
    """
    Fluxes across a boundary face, positive out of the domain.

    Rate conditions prescribe the component rates directly. Other conditions use the
    two-point flux against the exterior fluid state, with the half transmissibility
    of the inside cell and no threshold pressure.

    :param inside_state: Fluid state of the inside cell.
    :param boundary_face: The boundary face.
    :param gravity: Gravitational acceleration (m/s²).
    :param fluid_system: PVT collaborator.
    :param extension: Optional physics module adding its own flux.
    :param exterior_state: Fluid state outside the face. Required unless the condition is a rate.
    :param conserve_surface_volume: Whether to skip the conversion to mass.
    :return: The fluxes of the face.
    """
    condition = boundary_face.condition
    cell = boundary_face.cell
    if condition.is_rate:
        flux = np.array(
            [-condition.component_rate(component) / boundary_face.area for component in range(4)],
            dtype=np.float64,
        )
        return FaceFlux(upstream=(cell, cell, cell), darcy=np.zeros(3), flux=flux)

    if exterior_state is None:
        raise ValidationError(
            f"An exterior fluid state is needed for the {condition.type.value} boundary of cell {cell}."
        )
    return _two_point_flux(
        inside_state,
        exterior_state,
        interior_cell=cell,
        exterior_cell=BOUNDARY,
        transmissibility=boundary_face.transmissibility,
        area=boundary_face.area,
        interior_depth=boundary_face.cell_depth,
        exterior_depth=boundary_face.depth,
        threshold_pressure=0.0,
        gravity=gravity,
        fluid_system=fluid_system,
        extension=extension,
        conserve_surface_volume=conserve_surface_volume,
    )


def compute_source(
    cell: int,
    rates: npt.NDArray[np.floating],
    fluid_state: FluidState,
    extension: Extension,
) -> npt.NDArray[np.floating]:
    """
    Component source rates of a cell, positive for injection.

    :param cell: Cell index.
    :param rates: Prescribed component rates of the cell (kg/s, or sm³/s when conserving
        surface volume).
    :param fluid_state: Fluid state of the cell.
    :param extension: Optional physics module adding its own sources.
    :return: Source per component.
    """
    source = np.zeros(4, dtype=np.float64)
    source[: rates.size] = rates
    extension.add_source(source, cell, fluid_state)
    return source
