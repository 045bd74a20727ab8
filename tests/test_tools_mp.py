import pytest

from RXNmap import MAX_WORKERS, bounded_workers, tp_calc_keyed


def square(x):
    return x * x


def fail(x):
    raise ValueError(f"bad input {x}")


def test_bounded_workers_limits():
    """
    Test that the pool size never exceeds the cap or the number of jobs and is at least one.
    """
    assert 1 <= bounded_workers() <= MAX_WORKERS
    assert bounded_workers(1) == 1
    assert bounded_workers(0) == 1
    assert bounded_workers(100, cap=2) <= 2


def test_tp_calc_keyed_collects_errors():
    """
    Test that a failing job is reported under its key without stopping the other jobs.
    """
    jobs = {'a': (square, (2,)), 'b': (fail, (3,)), 'c': (square, (4,))}
    results, errors = tp_calc_keyed(jobs, n=2)
    assert results == {'a': 4, 'c': 16}
    assert set(errors) == {'b'}
    with pytest.raises(ValueError):
        raise errors['b']
    assert tp_calc_keyed({}) == ({}, {})
