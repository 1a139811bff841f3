import math

import pytest

from blackoil.errors import ValidationError
from blackoil.pvt import BlackOilFluidSystem, OilPVT, PVTRegion, WaterPVT
from blackoil.types import FluidPhase


def test_water_inverse_formation_volume_factor_follows_pvtw_form(water_pvt):
    pressure = 2e7
    x = water_pvt.compressibility * (pressure - water_pvt.reference_pressure)
    expected = (1.0 + x + x * x / 2.0) / water_pvt.reference_formation_volume_factor
    assert water_pvt.inverse_formation_volume_factor(pressure) == pytest.approx(expected)
    assert water_pvt.inverse_formation_volume_factor(1e7) == pytest.approx(1.0)


def test_saturated_oil_matches_table(live_oil_pvt):
    assert live_oil_pvt.saturated_gas_dissolution_factor(1e7) == pytest.approx(50.0)
    assert live_oil_pvt.saturated_gas_dissolution_factor(1.5e7) == pytest.approx(75.0)
    assert live_oil_pvt.inverse_formation_volume_factor(1e7, 50.0) == pytest.approx(1.0 / 1.2)


def test_undersaturated_oil_is_compressed_above_bubble_point(live_oil_pvt):
    bubble_point = live_oil_pvt.bubble_point_pressure(50.0)
    assert bubble_point == pytest.approx(1e7)
    inverse_fvf = live_oil_pvt.inverse_formation_volume_factor(2e7, 50.0)
    assert inverse_fvf == pytest.approx(math.exp(1.5e-9 * 1e7) / 1.2)
    assert inverse_fvf > live_oil_pvt.inverse_formation_volume_factor(1e7, 50.0)


def test_dead_oil_has_no_bubble_point():
    dead_oil = OilPVT(
        pressures=[1e5, 3e7], formation_volume_factors=[1.1, 1.05], viscosities=[1e-3, 1e-3]
    )
    assert not dead_oil.is_live
    assert dead_oil.saturated_gas_dissolution_factor(1e7) == 0.0
    with pytest.raises(ValidationError):
        dead_oil.bubble_point_pressure(10.0)


def test_table_pressures_must_increase():
    with pytest.raises(ValidationError):
        OilPVT(
            pressures=[3e7, 1e5],
            formation_volume_factors=[1.1, 1.05],
            viscosities=[1e-3, 1e-3],
        )


def test_fluid_system_rejects_dissolution_without_both_phases(water_pvt, live_oil_pvt):
    with pytest.raises(ValidationError):
        BlackOilFluidSystem(
            regions=[PVTRegion(oil=live_oil_pvt, water=water_pvt)],
            active_phases=["water", "oil"],
            enable_dissolved_gas=True,
        )


def test_fluid_system_requires_tables_of_active_phases(water_pvt):
    with pytest.raises(ValidationError):
        BlackOilFluidSystem(regions=[PVTRegion(water=water_pvt)], active_phases=["water", "gas"])


def test_disabled_dissolution_reports_zero(three_phase_fluid_system, water_pvt, live_oil_pvt):
    assert three_phase_fluid_system.saturated_gas_dissolution_factor(0, 300.0, 1e7) == pytest.approx(50.0)
    assert three_phase_fluid_system.saturated_water_vaporization_factor(0, 300.0, 1e7) == 0.0

    dead = BlackOilFluidSystem(
        regions=[PVTRegion(oil=live_oil_pvt, water=water_pvt)], active_phases=["water", "oil"]
    )
    assert dead.saturated_gas_dissolution_factor(0, 300.0, 1e7) == 0.0


def test_unknown_region_raises(three_phase_fluid_system):
    with pytest.raises(ValidationError):
        three_phase_fluid_system.reference_density(FluidPhase.OIL, 3)


def test_water_pvt_needs_both_dissolution_columns():
    with pytest.raises(ValidationError):
        WaterPVT(reference_pressure=1e7, gas_dissolution_pressures=[1e5, 1e7])
