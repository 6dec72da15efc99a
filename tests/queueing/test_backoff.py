import pytest

from kubevent._core.reactor.queueing import ExponentialBackoff


def test_delays_grow_exponentially():
    backoff = ExponentialBackoff(base=0.5, cap=1000)
    delays = [backoff.when('a') for _ in range(5)]
    assert delays == [0.5, 1.0, 2.0, 4.0, 8.0]
    assert backoff.failures('a') == 5


def test_delays_are_capped():
    backoff = ExponentialBackoff(base=1, cap=3)
    delays = [backoff.when('a') for _ in range(4)]
    assert delays == [1, 2, 3, 3]


def test_delays_are_capped_even_for_huge_exponents():
    backoff = ExponentialBackoff(base=1, cap=3)
    for _ in range(100):
        delay = backoff.when('a')
    assert delay == 3


def test_delays_are_per_item():
    backoff = ExponentialBackoff(base=1)
    backoff.when('a')
    backoff.when('a')
    assert backoff.when('b') == 1


@pytest.mark.parametrize('failures', [0, 1, 10])
def test_forgetting_resets_the_delays(failures):
    backoff = ExponentialBackoff(base=1)
    for _ in range(failures):
        backoff.when('a')
    backoff.forget('a')
    assert backoff.failures('a') == 0
    assert backoff.when('a') == 1
