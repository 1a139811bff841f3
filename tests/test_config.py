import pytest

from blackoil.config import Config
from blackoil.constants import Constants, c
from blackoil.errors import ValidationError
from blackoil.types import Range


def test_defaults():
    config = Config()
    assert config.linear_solver == "bicgstab"
    assert config.preconditioner == "ilu"
    assert config.max_newton_iterations == 12
    assert config.gravity == pytest.approx(9.80665)
    assert 0.0 in config.saturation_bounds and 1.0 in config.saturation_bounds


def test_gravity_follows_constants():
    constants = Constants()
    constants.ACCELERATION_DUE_TO_GRAVITY = 9.0
    assert Config(constants=constants).gravity == 9.0
    assert Config(gravity=0.0).gravity == 0.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"newton_tolerance": 0.1},
        {"newton_tolerance": 0.0},
        {"max_newton_iterations": 0},
        {"min_step_size": 10.0, "max_step_size": 1.0},
        {"saturation_bounds": Range(min=0.1, max=2.0)},
        {"water_filled_tolerance": 1.0},
        {"jacobian_perturbation": 0.1},
    ],
)
def test_invalid_settings_are_rejected(kwargs):
    with pytest.raises((ValidationError, ValueError)):
        Config(**kwargs)


def test_with_updates_returns_new_config():
    config = Config()
    updated = config.with_updates(newton_tolerance=1e-4, output_frequency=5)
    assert updated.newton_tolerance == 1e-4
    assert updated.output_frequency == 5
    assert config.newton_tolerance == 1e-6


def test_constants_context_overrides_global_proxy():
    constants = Constants()
    constants.ACCELERATION_DUE_TO_GRAVITY = 1.0
    default = c.ACCELERATION_DUE_TO_GRAVITY
    with constants():
        assert c.ACCELERATION_DUE_TO_GRAVITY == 1.0
    assert c.ACCELERATION_DUE_TO_GRAVITY == default


def test_water_filled_tolerance_follows_switching_tolerance():
    assert Config().water_filled_tolerance == 0.0
    assert Config(switching_tolerance=1e-4).water_filled_tolerance == 1e-4
    assert Config(switching_tolerance=1e-4, water_filled_tolerance=1e-6).water_filled_tolerance == 1e-6
