import pytest

from easytask.local.registry import TaskRegistry
from easytask.local.supervisor.worker import WorkerLoop, WorkerState, WorkerTerminated


class FakeClock:
    """A monotonic clock advanced only by sleeps and simulated work."""

    def __init__(self, stop_after_sleeps=None):
        self.now = 0.0
        self.sleeps = []
        self.stop_after_sleeps = stop_after_sleeps

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        if self.stop_after_sleeps is not None and len(self.sleeps) >= self.stop_after_sleeps:
            # What the SIGTERM handler does while the worker sleeps.
            raise WorkerTerminated()


def make_task(func, interval=1):
    registry = TaskRegistry().register_function(func, "job", interval=interval)
    return next(iter(registry))


def make_loop(func, interval=1, clock=None, **kwargs):
    clock = clock or FakeClock(stop_after_sleeps=3)
    return WorkerLoop(make_task(func, interval), 0, sleep=clock.sleep, clock=clock, **kwargs), clock


def test_failures_do_not_end_the_loop():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) <= 2:
            raise ValueError("boom")

    loop, clock = make_loop(flaky, interval=2, clock=FakeClock(stop_after_sleeps=4))

    assert loop.run() == 0
    assert len(calls) == 4
    assert loop.iterations == 4
    assert loop.failures == 2
    assert clock.sleeps == [2, 2, 2, 2]
    assert loop.state is WorkerState.EXITED


def test_failure_is_logged(caplog):
    def broken():
        raise RuntimeError("task exploded")

    loop, _ = make_loop(broken, clock=FakeClock(stop_after_sleeps=1))
    with caplog.at_level("ERROR"):
        loop.run()

    assert "task exploded" in caplog.text


def test_short_invocations_start_one_interval_apart():
    clock = FakeClock(stop_after_sleeps=3)
    starts = []

    def work():
        starts.append(clock.now)
        clock.now += 0.5

    loop, _ = make_loop(work, interval=2, clock=clock)
    loop.run()

    assert starts == [0.0, 2.0, 4.0]
    assert clock.sleeps == [1.5, 1.5, 1.5]


def test_overrunning_invocation_is_followed_immediately_without_overlap():
    clock = FakeClock()
    spans = []

    def slow():
        start = clock.now
        clock.now += 3
        spans.append((start, clock.now))
        if len(spans) == 3:
            loop.request_stop()

    loop, _ = make_loop(slow, interval=2, clock=clock)
    loop.run()

    assert spans == [(0, 3), (3, 6), (6, 9)]
    assert clock.sleeps == []


def test_stop_requested_mid_invocation_lets_it_finish():
    finished = []

    def work():
        loop.request_stop()
        finished.append(True)

    loop, clock = make_loop(work)

    assert loop.run() == 0
    assert finished == [True]
    assert loop.iterations == 1
    assert clock.sleeps == []


def test_terminate_handler_interrupts_sleep_only():
    loop, _ = make_loop(lambda: None)

    loop.state = WorkerState.RUNNING
    loop._handle_terminate(15, None)
    assert loop.should_stop()

    loop.state = WorkerState.SLEEPING
    with pytest.raises(WorkerTerminated):
        loop._handle_terminate(15, None)


def test_stop_check_is_polled_between_sleep_slices():
    clock = FakeClock()
    loop = WorkerLoop(
        make_task(lambda: None, interval=1), 0,
        stop_check=lambda: len(clock.sleeps) >= 2,
        sleep=clock.sleep, clock=clock, poll_interval=0.25,
    )

    assert loop.run() == 0
    assert clock.sleeps == [0.25, 0.25]
    assert loop.iterations == 1


def test_stop_check_before_first_invocation_runs_nothing():
    calls = []
    loop = WorkerLoop(make_task(lambda: calls.append(1)), 0, stop_check=lambda: True)

    assert loop.run() == 0
    assert calls == []
