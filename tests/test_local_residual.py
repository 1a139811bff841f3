import numpy as np
import pytest

from blackoil.boundary_conditions import DirichletBoundary, RateBoundary
from blackoil.errors import ValidationError
from blackoil.extensions import BrineExtension, CombinedExtension, NoExtension
from blackoil.fluid_state import compute_fluid_state
from blackoil.grids import BoundaryFace, Face
from blackoil.local_residual import (
    BOUNDARY,
    compute_boundary_flux,
    compute_flux,
    compute_source,
    compute_storage,
)
from blackoil.models import RockFluidProperties
from blackoil.types import GAS_INDEX, OIL_INDEX, SALT_INDEX, WATER_INDEX, FluidPhase
from blackoil.variables import CellCondition, PrimaryVariables

GRAVITY = 9.80665


def fluid_state(fluid_system, condition, material_law=None, enable_brine=False, salt_solubility=0.0):
    variables = PrimaryVariables.from_condition(condition, fluid_system, enable_brine=enable_brine)
    return compute_fluid_state(
        variables,
        fluid_system=fluid_system,
        material_law=material_law or RockFluidProperties(),
        temperature=350.0,
        reference_porosity=0.2,
        salt_solubility=salt_solubility,
    )


@pytest.fixture
def gas_cap_state(three_phase_fluid_system, capillary_rock_fluid):
    return fluid_state(
        three_phase_fluid_system,
        CellCondition(pressures=2.1e7, saturations={"water": 0.2, "oil": 0.4, "gas": 0.4}),
        capillary_rock_fluid,
    )


@pytest.fixture
def undersaturated_state(three_phase_fluid_system, capillary_rock_fluid):
    return fluid_state(
        three_phase_fluid_system,
        CellCondition(
            pressures=2e7, saturations={"water": 0.3, "oil": 0.7}, gas_dissolution_factor=60.0
        ),
        capillary_rock_fluid,
    )


def test_water_storage_is_mass_per_bulk_volume(water_fluid_system, water_condition):
    state = fluid_state(water_fluid_system, water_condition)
    storage = compute_storage(state, water_fluid_system, NoExtension())

    expected = 0.2 * state.inverse_formation_volume_factors[WATER_INDEX] * 998.2
    assert storage[WATER_INDEX] == pytest.approx(expected)
    assert storage[OIL_INDEX] == 0.0
    assert storage[GAS_INDEX] == 0.0

    surface = compute_storage(state, water_fluid_system, NoExtension(), conserve_surface_volume=True)
    assert surface[WATER_INDEX] == pytest.approx(expected / 998.2)


def test_dissolved_gas_is_stored_in_gas_component(three_phase_fluid_system, gas_cap_state):
    state = gas_cap_state
    storage = compute_storage(
        state, three_phase_fluid_system, NoExtension(), conserve_surface_volume=True
    )
    porosity = state.porosity
    inverse_fvfs = state.inverse_formation_volume_factors
    oil = porosity * 0.4 * inverse_fvfs[OIL_INDEX]
    gas = porosity * 0.4 * inverse_fvfs[GAS_INDEX]

    assert storage[OIL_INDEX] == pytest.approx(oil + gas * state.oil_vaporization_factor)
    assert storage[GAS_INDEX] == pytest.approx(gas + oil * state.gas_dissolution_factor)


def test_brine_extension_stores_salt(three_phase_fluid_system):
    condition = CellCondition(
        pressures=2e7,
        saturations={"water": 0.5, "oil": 0.5},
        gas_dissolution_factor=20.0,
        salt_concentration=35.0,
    )
    state = fluid_state(three_phase_fluid_system, condition, enable_brine=True, salt_solubility=300.0)
    extension = BrineExtension(salt_solubility_limits=300.0)
    storage = compute_storage(state, three_phase_fluid_system, extension)

    expected = state.porosity * 0.5 * state.inverse_formation_volume_factors[WATER_INDEX] * 35.0
    assert storage[SALT_INDEX] == pytest.approx(expected)


class WaterSourceExtension(NoExtension):
    def add_source(self, source, cell, fluid_state):
        source[WATER_INDEX] += 1.0


def test_combined_extensions_apply_in_turn(three_phase_fluid_system):
    condition = CellCondition(
        pressures=2e7, saturations={"water": 0.5, "oil": 0.5}, salt_concentration=35.0
    )
    state = fluid_state(three_phase_fluid_system, condition, enable_brine=True, salt_solubility=300.0)
    brine = BrineExtension(salt_solubility_limits=300.0)
    combined = CombinedExtension([brine, WaterSourceExtension()])

    assert combined.enables_brine
    assert combined.salt_solubility(0) == 300.0
    np.testing.assert_allclose(
        compute_storage(state, three_phase_fluid_system, combined),
        compute_storage(state, three_phase_fluid_system, brine),
    )
    np.testing.assert_allclose(
        compute_source(0, np.array([2.0]), state, combined), [3.0, 0.0, 0.0, 0.0]
    )

    with pytest.raises(ValidationError):
        CombinedExtension([brine, BrineExtension(salt_solubility_limits=100.0)])
    assert not CombinedExtension([]).enables_brine


def test_flux_is_antisymmetric(three_phase_fluid_system, gas_cap_state, undersaturated_state):
    face = Face(
        interior=0,
        exterior=1,
        transmissibility=1e-12,
        area=100.0,
        interior_depth=100.0,
        exterior_depth=110.0,
        threshold_pressure=10.0,
    )
    kwargs = dict(gravity=GRAVITY, fluid_system=three_phase_fluid_system, extension=NoExtension())
    forward = compute_flux(gas_cap_state, undersaturated_state, face, **kwargs)
    backward = compute_flux(undersaturated_state, gas_cap_state, face.reversed(), **kwargs)

    np.testing.assert_array_equal(forward.flux, -backward.flux)
    np.testing.assert_array_equal(forward.darcy, -backward.darcy)
    assert forward.upstream == backward.upstream
    assert np.any(forward.flux != 0.0)


def test_identical_cells_at_equal_depth_do_not_flow(three_phase_fluid_system, gas_cap_state):
    face = Face(
        interior=0,
        exterior=1,
        transmissibility=1e-12,
        area=100.0,
        interior_depth=100.0,
        exterior_depth=100.0,
    )
    result = compute_flux(
        gas_cap_state,
        gas_cap_state,
        face,
        gravity=GRAVITY,
        fluid_system=three_phase_fluid_system,
        extension=NoExtension(),
    )
    np.testing.assert_array_equal(result.flux, np.zeros(4))
    np.testing.assert_array_equal(result.darcy, np.zeros(3))


def test_higher_pressure_side_is_upstream(water_fluid_system):
    high = fluid_state(water_fluid_system, CellCondition(pressures=2e7, saturations={"water": 1.0}))
    low = fluid_state(water_fluid_system, CellCondition(pressures=1e7, saturations={"water": 1.0}))
    face = Face(
        interior=0,
        exterior=1,
        transmissibility=1e-12,
        area=100.0,
        interior_depth=100.0,
        exterior_depth=100.0,
    )
    kwargs = dict(gravity=GRAVITY, fluid_system=water_fluid_system, extension=NoExtension())

    result = compute_flux(high, low, face, **kwargs)
    assert result.upstream[WATER_INDEX] == 0
    expected_darcy = 1e7 * high.mobilities[WATER_INDEX] * 1e-12 / 100.0
    assert result.darcy[WATER_INDEX] == pytest.approx(expected_darcy)
    assert result.flux[WATER_INDEX] == pytest.approx(
        expected_darcy * high.inverse_formation_volume_factors[WATER_INDEX] * 998.2
    )

    result = compute_flux(low, high, face, **kwargs)
    assert result.upstream[WATER_INDEX] == 1
    assert result.flux[WATER_INDEX] < 0.0


def test_threshold_pressure_blocks_small_potential_differences(water_fluid_system):
    inner = fluid_state(water_fluid_system, CellCondition(pressures=1e7 + 50.0, saturations={"water": 1.0}))
    outer = fluid_state(water_fluid_system, CellCondition(pressures=1e7, saturations={"water": 1.0}))
    face = Face(
        interior=0,
        exterior=1,
        transmissibility=1e-12,
        area=100.0,
        interior_depth=100.0,
        exterior_depth=100.0,
        threshold_pressure=100.0,
    )
    result = compute_flux(
        inner, outer, face, gravity=GRAVITY, fluid_system=water_fluid_system, extension=NoExtension()
    )
    assert result.flux[WATER_INDEX] == 0.0


def test_rate_boundary_prescribes_flux(water_fluid_system, water_condition):
    state = fluid_state(water_fluid_system, water_condition)
    boundary_face = BoundaryFace(
        cell=0,
        condition=RateBoundary([2e-3, 0.0, 0.0]),
        transmissibility=1e-12,
        area=50.0,
        depth=100.0,
        cell_depth=100.0,
    )
    result = compute_boundary_flux(
        state,
        boundary_face,
        gravity=GRAVITY,
        fluid_system=water_fluid_system,
        extension=NoExtension(),
    )
    assert result.flux[WATER_INDEX] == pytest.approx(-2e-3 / 50.0)
    assert result.upstream == (0, 0, 0)


def test_pressure_boundary_drains_overpressured_cell(water_fluid_system):
    inside = fluid_state(water_fluid_system, CellCondition(pressures=1.2e7, saturations={"water": 1.0}))
    exterior_condition = CellCondition(pressures=1e7, saturations={"water": 1.0})
    exterior = fluid_state(water_fluid_system, exterior_condition)
    boundary_face = BoundaryFace(
        cell=3,
        condition=DirichletBoundary(exterior_condition),
        transmissibility=2e-12,
        area=100.0,
        depth=100.0,
        cell_depth=100.0,
    )
    kwargs = dict(gravity=GRAVITY, fluid_system=water_fluid_system, extension=NoExtension())

    result = compute_boundary_flux(inside, boundary_face, exterior_state=exterior, **kwargs)
    assert result.flux[WATER_INDEX] > 0.0
    assert result.upstream[WATER_INDEX] == 3

    result = compute_boundary_flux(exterior, boundary_face, exterior_state=inside, **kwargs)
    assert result.flux[WATER_INDEX] < 0.0
    assert result.upstream[WATER_INDEX] == BOUNDARY

    with pytest.raises(ValidationError):
        compute_boundary_flux(inside, boundary_face, **kwargs)


def test_source_is_padded_to_all_components(water_fluid_system, water_condition):
    state = fluid_state(water_fluid_system, water_condition)
    source = compute_source(0, np.array([1e-3]), state, NoExtension())
    np.testing.assert_array_equal(source, [1e-3, 0.0, 0.0, 0.0])


def test_inactive_phase_has_no_density(water_fluid_system, water_condition):
    state = fluid_state(water_fluid_system, water_condition)
    assert state.densities[OIL_INDEX] == 0.0
    assert state.saturation(FluidPhase.WATER) == 1.0
