import numpy as np
import pytest

from blackoil.assembly import ResidualAssembler
from blackoil.config import Config
from blackoil.errors import MinimumStepSizeError, SolverError
from blackoil.linear import SparseLinearSolver
from blackoil.newton import NewtonMethod, WeightedResidualReductionCriterion
from blackoil.types import GasMeaning
from blackoil.variables import CellCondition

ONE_DAY = 86400.0


def newton_for(model, config, linear_solver=None):
    assembler = ResidualAssembler(model, config)
    linear_solver = linear_solver or SparseLinearSolver.from_config(
        config, block_size=model.indices.num_equations
    )
    return NewtonMethod(assembler, linear_solver, config)


def test_criterion_measures_weighted_reduction():
    criterion = WeightedResidualReductionCriterion(
        weights=np.array([2.0, 0.5]), tolerance=1e-3
    )
    assert criterion.update(np.array([1.0, -4.0])) == pytest.approx(2.0)
    assert criterion.initial_error == pytest.approx(2.0)
    assert not criterion.is_converged()

    criterion.update(np.array([1e-4, 0.0]))
    assert criterion.accuracy == pytest.approx(1e-4)
    assert criterion.is_converged()


def test_injection_into_water_cell_converges(two_cell_water_model, water_condition):
    config = Config(newton_tolerance=1e-8)
    primary_variables = two_cell_water_model.initialize(water_condition)
    newton = newton_for(two_cell_water_model, config)

    result = newton.advance(primary_variables, ONE_DAY)

    assert result.converged
    assert result.step_size == ONE_DAY
    assert result.rejected_step_sizes == ()
    assert result.new_step_size == 2.0 * ONE_DAY
    assert 1 <= result.iterations < config.good_newton_iterations
    assert all(later < earlier for earlier, later in zip(result.errors, result.errors[1:]))
    assert primary_variables[0].pressure > primary_variables[1].pressure > 1e7


def test_next_step_size_is_capped(two_cell_water_model, water_condition):
    config = Config(max_step_size=1.5 * ONE_DAY)
    primary_variables = two_cell_water_model.initialize(water_condition)
    result = newton_for(two_cell_water_model, config).advance(primary_variables, ONE_DAY)
    assert result.new_step_size == pytest.approx(1.5 * ONE_DAY)


def test_failed_attempts_halve_until_minimum(two_cell_water_model, water_condition):
    config = Config(min_step_size=0.2, max_newton_iterations=2, absolute_tolerance=0.0)
    primary_variables = two_cell_water_model.initialize(water_condition)
    before = primary_variables.to_vector()
    solves = []

    def no_progress(jacobian, residual):
        solves.append(residual.size)
        return np.zeros_like(residual)

    newton = newton_for(two_cell_water_model, config, linear_solver=no_progress)
    with pytest.raises(MinimumStepSizeError) as exc_info:
        newton.advance(primary_variables, 1.0)

    # 1.0 -> 0.5 -> 0.25, and halving 0.25 would reach the minimum
    assert exc_info.value.step_size == pytest.approx(0.25)
    assert exc_info.value.min_step_size == pytest.approx(0.2)
    assert exc_info.value.rejected_step_sizes == pytest.approx((1.0, 0.5, 0.25))
    assert len(solves) == 3 * config.max_newton_iterations
    np.testing.assert_array_equal(primary_variables.to_vector(), before)


def test_linear_solver_failure_rejects_attempt(two_cell_water_model, water_condition):
    config = Config(min_step_size=100.0)
    primary_variables = two_cell_water_model.initialize(water_condition)
    calls = []
    solver = SparseLinearSolver.from_config(config)

    def flaky(jacobian, residual):
        calls.append(residual.size)
        if len(calls) == 1:
            raise SolverError("no convergence")
        return solver(jacobian, residual)

    result = newton_for(two_cell_water_model, config, linear_solver=flaky).advance(
        primary_variables, ONE_DAY
    )
    assert result.rejected_step_sizes == (ONE_DAY,)
    assert result.step_size == pytest.approx(ONE_DAY / 2.0)
    # Halved steps do not grow straight away
    assert result.new_step_size == pytest.approx(ONE_DAY / 2.0)


def test_closed_system_conserves_mass(two_cell_three_phase_model):
    conditions = [
        CellCondition(pressures=2e7, saturations={"water": 0.2, "oil": 0.79, "gas": 0.01}),
        CellCondition(
            pressures=2e7, saturations={"water": 0.2, "oil": 0.8}, gas_dissolution_factor=50.0
        ),
    ]
    primary_variables = two_cell_three_phase_model.initialize(conditions)
    config = Config(newton_tolerance=1e-8)
    newton = newton_for(two_cell_three_phase_model, config)
    volumes = two_cell_three_phase_model.grid.volumes[:, None]
    before = (volumes * newton.assembler.storage(primary_variables)).sum(axis=0)

    result = newton.advance(primary_variables, ONE_DAY)

    assert result.converged
    after = (volumes * newton.assembler.storage(primary_variables)).sum(axis=0)
    np.testing.assert_allclose(after[:3], before[:3], rtol=1e-6)
    for variables in primary_variables:
        assert variables.gas_meaning in (GasMeaning.GAS_SATURATION, GasMeaning.DISSOLVED_GAS)
