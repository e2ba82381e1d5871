# -*- encoding: utf-8 -*-

import threading
from time import sleep

import pytest

from amrproj import ThreadScheduler


class ConcurrencyProbe:
    """A task that records how many copies of itself run at the same time"""

    def __init__(self):
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.threads = set()

    def __call__(self):
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.threads.add(threading.current_thread().name)

        sleep(0.02)

        with self.lock:
            self.active -= 1

        return threading.current_thread().name


@pytest.mark.parametrize("max_concurrency", [2, 3, 8])
def test_concurrency_budget(max_concurrency):
    probe = ConcurrencyProbe()
    scheduler = ThreadScheduler(max_concurrency)
    outcomes = scheduler.run([(f"task{i}", probe) for i in range(10)])

    assert len(outcomes) == 10
    assert [x.name for x in outcomes] == [f"task{i}" for i in range(10)]
    assert all(x.error is None for x in outcomes)

    assert probe.peak <= max_concurrency
    assert scheduler.peak_concurrency <= max_concurrency
    assert len(probe.threads) <= max_concurrency


def test_sequential_execution():
    probe = ConcurrencyProbe()
    scheduler = ThreadScheduler(1)
    outcomes = scheduler.run([("a", probe), ("b", probe), ("c", probe)])

    assert probe.peak == 1
    assert scheduler.peak_concurrency == 1

    # Everything runs in the calling thread
    assert probe.threads == {threading.current_thread().name}
    assert [x.result for x in outcomes] == [threading.current_thread().name] * 3


def test_failures_are_isolated():
    def failing_task():
        raise RuntimeError("something went wrong")

    scheduler = ThreadScheduler(2)
    outcomes = scheduler.run(
        [("ok1", lambda: 1), ("bad", failing_task), ("ok2", lambda: 2)]
    )

    assert outcomes[0].result == 1
    assert outcomes[2].result == 2
    assert isinstance(outcomes[1].error, RuntimeError)
    assert outcomes[1].result is None


def test_profiling_and_completion_callback():
    completed = []

    def on_complete(outcome, index, total):
        completed.append((outcome.name, index, total))

    scheduler = ThreadScheduler(4, on_complete=on_complete)
    outcomes = scheduler.run([(name, lambda: None) for name in ("a", "b", "c")])

    assert sorted(x[0] for x in completed) == ["a", "b", "c"]
    assert sorted(x[1] for x in completed) == [1, 2, 3]
    assert all(x[2] == 3 for x in completed)

    for outcome in outcomes:
        assert outcome.profiler.valid()
        assert outcome.profiler.name == outcome.name


@pytest.mark.parametrize("max_concurrency", [1, 2])
def test_failing_completion_callback(max_concurrency, caplog):
    def on_complete(outcome, index, total):
        raise RuntimeError("cannot report progress")

    scheduler = ThreadScheduler(max_concurrency, on_complete=on_complete)
    outcomes = scheduler.run([(f"task{i}", lambda i=i: i) for i in range(5)])

    assert [x.result for x in outcomes] == list(range(5))
    assert all(x.error is None for x in outcomes)
    assert "completion callback" in caplog.text
