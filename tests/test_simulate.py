import numpy as np
import pytest
from scipy.sparse.linalg import spsolve

from blackoil.assembly import ResidualAssembler
from blackoil.config import Config
from blackoil.errors import MinimumStepSizeError, SimulationError, TimingError
from blackoil.simulate import run
from blackoil.states import ModelState
from blackoil.timing import Time, Timer
from blackoil.types import WATER_INDEX
from blackoil.variables import CellCondition, PrimaryVariableSet

ONE_DAY = Time(days=1)


@pytest.fixture
def timer():
    return Timer(
        initial_step_size=ONE_DAY,
        max_step_size=4 * ONE_DAY,
        min_step_size=1.0,
        simulation_time=5 * ONE_DAY,
    )


def test_run_yields_initial_and_every_step(two_cell_water_model, water_condition, timer):
    states = list(run(two_cell_water_model, timer, water_condition, Config()))

    assert [state.step for state in states] == [0, 1, 2, 3]
    assert [state.step_size for state in states[1:]] == pytest.approx(
        [ONE_DAY, 2 * ONE_DAY, 2 * ONE_DAY]
    )
    assert states[-1].time == pytest.approx(5 * ONE_DAY)
    assert all(isinstance(state, ModelState) for state in states)
    # Injection raises the pressure next to the source, which settles within a day
    pressures = [state.pressures[0, WATER_INDEX] for state in states]
    assert pressures[1] > pressures[0] == pytest.approx(1e7)
    assert pressures[-1] == pytest.approx(pressures[1], rel=1e-8)


def test_injected_water_is_accounted_for(two_cell_water_model, water_condition, timer):
    config = Config(newton_tolerance=1e-8)
    states = list(run(two_cell_water_model, timer, water_condition, config))
    assembler = ResidualAssembler(two_cell_water_model, config)
    volumes = two_cell_water_model.grid.volumes[:, None]
    indices = two_cell_water_model.indices

    for previous, current in zip(states, states[1:]):
        old = PrimaryVariableSet(list(previous.primary_variables), indices)
        new = PrimaryVariableSet(list(current.primary_variables), indices)
        old_storage = assembler.storage(old)
        evaluation = assembler.evaluate(new, old_storage, current.step_size)

        accumulated = np.sum(volumes * (evaluation.storage - old_storage), axis=0)
        net_inflow = evaluation.sources.sum(axis=0) - evaluation.boundary_fluxes.sum(axis=0)
        injected = 1e-3 * current.step_size
        assert accumulated[WATER_INDEX] == pytest.approx(
            net_inflow[WATER_INDEX] * current.step_size, abs=1e-6 * injected
        )
        assert evaluation.boundary_fluxes[0, WATER_INDEX] == pytest.approx(1e-3, rel=1e-3)


def test_output_frequency_skips_states(two_cell_water_model, water_condition, timer):
    states = list(
        run(two_cell_water_model, timer, water_condition, Config(output_frequency=2))
    )
    # The last step is always yielded
    assert [state.step for state in states] == [0, 2, 3]


def test_run_accepts_primary_variables(two_cell_three_phase_model):
    conditions = [
        CellCondition(pressures=2e7, saturations={"water": 0.2, "oil": 0.5, "gas": 0.3}),
        CellCondition(pressures=2e7, saturations={"water": 0.2, "oil": 0.5, "gas": 0.3}),
    ]
    primary_variables = two_cell_three_phase_model.initialize(conditions)
    timer = Timer(
        initial_step_size=ONE_DAY,
        max_step_size=ONE_DAY,
        min_step_size=1.0,
        simulation_time=2 * ONE_DAY,
    )

    states = list(run(two_cell_three_phase_model, timer, primary_variables))

    assert len(states) == 3
    assert states[-1].average_pressure == pytest.approx(2e7, rel=1e-9)
    np.testing.assert_allclose(states[-1].saturations[:, WATER_INDEX], 0.2, atol=1e-9)


def test_unrecoverable_step_raises_simulation_error(two_cell_water_model, water_condition):
    def stalled(A, b, x0, *, rtol, atol, maxiter, M, callback):
        return np.zeros_like(b), 0

    config = Config(
        linear_solver=[stalled],
        preconditioner=None,
        max_newton_iterations=1,
        min_step_size=ONE_DAY / 3.0,
    )
    timer = Timer(
        initial_step_size=ONE_DAY,
        max_step_size=ONE_DAY,
        min_step_size=1.0,
        simulation_time=2 * ONE_DAY,
    )
    states = run(two_cell_water_model, timer, water_condition, config)
    assert next(states).step == 0

    with pytest.raises(SimulationError) as exc_info:
        next(states)
    assert isinstance(exc_info.value.__cause__, MinimumStepSizeError)
    assert timer.step == 0


def failing_first_solve():
    calls = []

    def solve(A, b, x0, *, rtol, atol, maxiter, M, callback):
        calls.append(b.size)
        if len(calls) == 1:
            return np.zeros_like(b), 1
        return spsolve(A, b), 0

    return solve


def test_newton_halves_no_further_than_the_timer(two_cell_water_model, water_condition):
    config = Config(
        linear_solver=[failing_first_solve()], preconditioner=None, fallback_to_direct=False
    )
    timer = Timer(
        initial_step_size=100.0,
        max_step_size=100.0,
        min_step_size=60.0,
        simulation_time=1000.0,
    )
    primary_variables = two_cell_water_model.initialize(water_condition)
    before = primary_variables.to_vector()
    states = run(two_cell_water_model, timer, primary_variables, config)
    next(states)

    with pytest.raises(SimulationError) as exc_info:
        next(states)
    assert isinstance(exc_info.value.__cause__, MinimumStepSizeError)
    assert exc_info.value.__cause__.min_step_size == 60.0
    assert timer.elapsed_time == 0.0
    np.testing.assert_array_equal(primary_variables.to_vector(), before)


def test_refused_step_leaves_state_untouched(two_cell_water_model, water_condition):
    config = Config(
        linear_solver=[failing_first_solve()], preconditioner=None, fallback_to_direct=False
    )
    timer = Timer(
        initial_step_size=100.0,
        max_step_size=100.0,
        min_step_size=1.0,
        simulation_time=1000.0,
        max_rejects=0,
    )
    primary_variables = two_cell_water_model.initialize(water_condition)
    before = primary_variables.to_vector()
    states = run(two_cell_water_model, timer, primary_variables, config)
    next(states)

    # Newton converges on half the step, but the timer accepts no rejection
    with pytest.raises(SimulationError) as exc_info:
        next(states)
    assert isinstance(exc_info.value.__cause__, TimingError)
    assert timer.step == 0
    assert timer.elapsed_time == 0.0
    np.testing.assert_array_equal(primary_variables.to_vector(), before)
