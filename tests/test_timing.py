import pytest

from blackoil.errors import TimingError, ValidationError
from blackoil.timing import Time, Timer


def make_timer(**kwargs):
    options = dict(
        initial_step_size=10.0,
        max_step_size=40.0,
        min_step_size=1.0,
        simulation_time=100.0,
    )
    options.update(kwargs)
    return Timer(**options)


def test_time_converts_to_seconds():
    assert Time(days=1) == 86400.0
    assert Time(hours=1, minutes=30, milliseconds=500) == pytest.approx(5400.5)
    assert Time(weeks=2) == Time(days=14)


def test_accept_step_follows_proposed_size():
    timer = make_timer()
    assert timer.propose_step_size() == 10.0

    assert timer.accept_step(10.0, next_step_size=20.0, newton_iterations=3) == 20.0
    assert timer.step == 1
    assert timer.elapsed_time == 10.0
    assert timer.recent_metrics[-1].newton_iterations == 3

    # Proposals are clamped to the allowed range
    assert timer.accept_step(20.0, next_step_size=1000.0) == 40.0
    assert timer.accept_step(40.0, next_step_size=0.01) == 1.0
    assert timer.accept_step(1.0) == 1.0


def test_last_step_ends_at_simulation_time():
    timer = make_timer(initial_step_size=30.0)
    for _ in range(3):
        timer.accept_step(timer.propose_step_size(), next_step_size=30.0)
    assert timer.propose_step_size() == pytest.approx(10.0)
    assert not timer.is_last_step

    timer.accept_step(timer.propose_step_size())
    assert timer.done()
    assert timer.is_last_step
    assert timer.time_remaining == 0.0


def test_step_larger_than_remaining_time_is_an_error():
    timer = make_timer(simulation_time=5.0, initial_step_size=5.0)
    with pytest.raises(TimingError):
        timer.accept_step(6.0)


def test_reject_step_backs_off():
    timer = make_timer()
    assert timer.reject_step(10.0) == 5.0
    assert timer.rejection_count == 1
    assert timer.propose_step_size() == 5.0
    assert not timer.recent_metrics[-1].success

    timer.accept_step(5.0)
    assert timer.rejection_count == 0


def test_reject_step_stops_at_minimum():
    timer = make_timer()
    with pytest.raises(TimingError):
        timer.reject_step(1.5)


def test_too_many_rejections():
    timer = make_timer(max_rejects=2)
    timer.reject_step(10.0)
    timer.reject_step(5.0)
    with pytest.raises(TimingError):
        timer.reject_step(2.5)


def test_max_steps_ends_run():
    timer = make_timer(max_steps=2)
    timer.accept_step(10.0)
    assert not timer.done()
    timer.accept_step(10.0)
    assert timer.done()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"min_step_size": 0.0},
        {"initial_step_size": 50.0},
        {"initial_step_size": 0.5},
        {"simulation_time": 0.0},
        {"backoff_factor": 1.0},
    ],
)
def test_invalid_timer_settings(kwargs):
    with pytest.raises(ValidationError):
        make_timer(**kwargs)
