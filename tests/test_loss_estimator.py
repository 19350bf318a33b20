from concurrent.futures import ThreadPoolExecutor

import pytest

from lvsmon.health.loss_estimator import LossEstimator


def test_empty_history_averages_zero():
    estimator = LossEstimator(window_size=3)

    assert estimator.average("10.1.1.2") == 0
    assert estimator.history("10.1.1.2") == ()
    assert estimator.latest("10.1.1.2") is None


def test_average_is_truncated_mean():
    estimator = LossEstimator(window_size=5)
    for sample in (0, 0, 100):
        estimator.record("b", sample)
    assert estimator.average("b") == 33

    estimator.record("c", 1)
    estimator.record("c", 2)
    assert estimator.average("c") == 1


def test_history_never_exceeds_window():
    estimator = LossEstimator(window_size=3)
    recorded = []
    for sample in range(10):
        estimator.record("b", sample)
        recorded.append(sample)
        assert len(estimator.history("b")) <= 3
        assert estimator.history("b") == tuple(recorded[-3:])
    assert estimator.latest("b") == 9


def test_samples_are_clamped():
    estimator = LossEstimator(window_size=2)
    estimator.record("b", 150)
    estimator.record("b", -5)

    assert estimator.history("b") == (100, 0)


def test_reset_forgets_history():
    estimator = LossEstimator(window_size=2)
    estimator.record("b", 100)
    estimator.reset("b")

    assert estimator.average("b") == 0


@pytest.mark.parametrize("window", [0, -1])
def test_invalid_window(window):
    with pytest.raises(ValueError):
        LossEstimator(window_size=window)


def test_concurrent_backends_do_not_interfere():
    estimator = LossEstimator(window_size=20)
    backends = [f"10.0.0.{i}" for i in range(8)]

    def work(index):
        backend = backends[index]
        for _ in range(500):
            estimator.record(backend, index * 10)
            estimator.average(backend)

    with ThreadPoolExecutor(max_workers=len(backends)) as pool:
        list(pool.map(work, range(len(backends))))

    for index, backend in enumerate(backends):
        history = estimator.history(backend)
        assert len(history) == 20
        assert set(history) == {index * 10}
        assert estimator.average(backend) == index * 10
