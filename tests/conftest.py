import numpy as np
import pytest

from blackoil.boundary_conditions import Boundary, DirichletBoundary
from blackoil.capillary_pressures import BrooksCoreyCapillaryPressureModel
from blackoil.grids import build_cartesian_grid
from blackoil.models import ReservoirModel, RockFluidProperties
from blackoil.pvt import BlackOilFluidSystem, GasPVT, OilPVT, PVTRegion, WaterPVT
from blackoil.variables import CellCondition

TABLE_PRESSURES = [1e5, 1e7, 2e7, 3e7]


@pytest.fixture
def water_pvt():
    return WaterPVT(reference_pressure=1e7, compressibility=4.6e-10, viscosity_value=5e-4)


@pytest.fixture
def live_oil_pvt():
    return OilPVT(
        pressures=TABLE_PRESSURES,
        formation_volume_factors=[1.05, 1.20, 1.30, 1.40],
        viscosities=[2.0e-3, 1.5e-3, 1.2e-3, 1.0e-3],
        saturated_gas_dissolution_factors=[1.0, 50.0, 100.0, 150.0],
        compressibility=1.5e-9,
    )


@pytest.fixture
def wet_gas_pvt():
    return GasPVT(
        pressures=TABLE_PRESSURES,
        formation_volume_factors=[1.0, 0.012, 0.006, 0.0042],
        viscosities=[1.2e-5, 1.6e-5, 2.0e-5, 2.4e-5],
        saturated_oil_vaporization_factors=[0.0, 1e-5, 2e-5, 3e-5],
    )


@pytest.fixture
def water_fluid_system(water_pvt):
    return BlackOilFluidSystem(regions=[PVTRegion(water=water_pvt)], active_phases=["water"])


@pytest.fixture
def three_phase_fluid_system(water_pvt, live_oil_pvt, wet_gas_pvt):
    return BlackOilFluidSystem(
        regions=[PVTRegion(oil=live_oil_pvt, gas=wet_gas_pvt, water=water_pvt)],
        active_phases=["water", "oil", "gas"],
        enable_dissolved_gas=True,
        enable_vaporized_oil=True,
    )


@pytest.fixture
def water_gas_fluid_system():
    """Water and gas with vaporized water and gas dissolved in water."""
    water = WaterPVT(
        reference_pressure=1e7,
        gas_dissolution_pressures=TABLE_PRESSURES,
        saturated_gas_dissolution_factors=[0.0, 5.0, 10.0, 15.0],
    )
    gas = GasPVT(
        pressures=TABLE_PRESSURES,
        formation_volume_factors=[1.0, 0.012, 0.006, 0.0042],
        viscosities=[1.2e-5, 1.6e-5, 2.0e-5, 2.4e-5],
        saturated_water_vaporization_factors=[0.0, 1.5e-5, 3e-5, 4.5e-5],
    )
    return BlackOilFluidSystem(
        regions=[PVTRegion(gas=gas, water=water)],
        active_phases=["water", "gas"],
        enable_vaporized_water=True,
        enable_dissolved_gas_in_water=True,
    )


@pytest.fixture
def capillary_rock_fluid():
    return RockFluidProperties(capillary_pressure_model=BrooksCoreyCapillaryPressureModel())


@pytest.fixture
def two_cell_water_model(water_fluid_system):
    """Two cells along x, open to water at 10 MPa on the right, 1e-3 kg/s injected into cell 0."""
    grid = build_cartesian_grid(
        cell_counts=(2, 1, 1),
        cell_dimensions=(10.0, 10.0, 10.0),
        permeability=1e-13,
        boundary_conditions={
            Boundary.RIGHT: DirichletBoundary(
                CellCondition(pressures=1e7, saturations={"water": 1.0})
            )
        },
    )
    sources = np.zeros((2, 4))
    sources[0, 0] = 1e-3
    return ReservoirModel(
        grid=grid,
        fluid_system=water_fluid_system,
        porosity=0.2,
        sources=sources,
    )


@pytest.fixture
def water_condition():
    return CellCondition(pressures=1e7, saturations={"water": 1.0})


@pytest.fixture
def two_cell_three_phase_model(three_phase_fluid_system, capillary_rock_fluid):
    grid = build_cartesian_grid(
        cell_counts=(2, 1, 1),
        cell_dimensions=(10.0, 10.0, 10.0),
        permeability=1e-13,
    )
    return ReservoirModel(
        grid=grid,
        fluid_system=three_phase_fluid_system,
        porosity=0.25,
        rock_fluid_properties=capillary_rock_fluid,
        rock_compressibility=1e-9,
        reference_pressure=1e7,
    )
