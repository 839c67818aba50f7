"""Unit tests for the timer schedulers."""

import threading
import time

import pytest

from notifier.resilience import ManualScheduler, ThreadedScheduler


@pytest.mark.unit
class TestManualScheduler:
    def test_callbacks_run_when_due(self):
        scheduler = ManualScheduler(start=100.0)
        calls = []
        scheduler.call_later(5, calls.append, "a")

        assert scheduler.advance(4.999) == 0
        assert calls == []

        assert scheduler.advance(0.001) == 1
        assert calls == ["a"]

    def test_order_is_due_time_then_insertion(self):
        scheduler = ManualScheduler(start=0.0)
        calls = []
        scheduler.call_later(2, calls.append, "late")
        scheduler.call_later(1, calls.append, "first")
        scheduler.call_later(1, calls.append, "second")

        scheduler.advance(10)

        assert calls == ["first", "second", "late"]

    def test_clock_is_set_to_due_time_during_callback(self):
        scheduler = ManualScheduler(start=0.0)
        seen = []
        scheduler.call_later(3, lambda: seen.append(scheduler.now()))

        scheduler.advance(10)

        assert seen == [3.0]
        assert scheduler.now() == 10.0

    def test_cancelled_handles_do_not_run(self):
        scheduler = ManualScheduler(start=0.0)
        calls = []
        handle = scheduler.call_later(1, calls.append, "x")

        handle.cancel()
        scheduler.advance(5)

        assert calls == []
        assert scheduler.pending_count() == 0

    def test_callbacks_scheduled_during_advance_run_if_due(self):
        scheduler = ManualScheduler(start=0.0)
        calls = []

        def chain():
            calls.append("chain")
            scheduler.call_later(1, calls.append, "follow-up")

        scheduler.call_later(1, chain)
        scheduler.advance(5)

        assert calls == ["chain", "follow-up"]

    def test_call_every_repeats_until_cancelled(self):
        scheduler = ManualScheduler(start=0.0)
        ticks = []
        repeating = scheduler.call_every(10, lambda: ticks.append(scheduler.now()))

        scheduler.advance(35)
        repeating.cancel()
        scheduler.advance(100)

        assert ticks == [10.0, 20.0, 30.0]

    def test_failing_callback_does_not_stop_others(self):
        scheduler = ManualScheduler(start=0.0)
        calls = []

        def boom():
            raise RuntimeError("boom")

        scheduler.call_later(1, boom)
        scheduler.call_later(2, calls.append, "ok")
        scheduler.advance(5)

        assert calls == ["ok"]

    def test_cannot_go_backwards(self):
        with pytest.raises(ValueError):
            ManualScheduler().advance(-1)


@pytest.mark.unit
class TestThreadedScheduler:
    def test_runs_callback_on_background_thread(self):
        scheduler = ThreadedScheduler(name="test-scheduler")
        done = threading.Event()
        thread_names = []

        def callback():
            thread_names.append(threading.current_thread().name)
            done.set()

        scheduler.start()
        try:
            scheduler.call_later(0.01, callback)
            assert done.wait(2.0)
        finally:
            scheduler.stop()

        assert thread_names == ["test-scheduler"]

    def test_cancelled_callback_does_not_run(self):
        scheduler = ThreadedScheduler()
        fired = threading.Event()
        scheduler.start()
        try:
            handle = scheduler.call_later(0.05, fired.set)
            handle.cancel()
            assert not fired.wait(0.2)
        finally:
            scheduler.stop()

    def test_stop_is_idempotent(self):
        scheduler = ThreadedScheduler()
        scheduler.start()
        scheduler.stop()
        scheduler.stop()


class SteppedWallClockScheduler(ThreadedScheduler):
    """ThreadedScheduler whose wall clock can be stepped by the test."""

    def __init__(self):
        super().__init__(name="stepped-scheduler")
        self.step_s = 0.0

    def now(self) -> float:
        return time.time() + self.step_s


@pytest.mark.unit
class TestThreadedSchedulerClock:
    def test_now_is_epoch_time(self):
        scheduler = ThreadedScheduler()

        assert scheduler.now() == pytest.approx(time.time(), abs=1.0)

    def test_due_times_use_monotonic_clock(self):
        scheduler = ThreadedScheduler()

        handle = scheduler.call_later(10, lambda: None)

        assert handle.due == pytest.approx(time.monotonic() + 10, abs=1.0)

    def test_wall_clock_step_does_not_fire_timers_early(self):
        scheduler = SteppedWallClockScheduler()
        late = threading.Event()
        soon = threading.Event()
        scheduler.call_later(60, late.set)
        scheduler.step_s = 3600

        scheduler.start()
        try:
            scheduler.call_later(0.01, soon.set)
            assert soon.wait(2.0)
            assert not late.is_set()
        finally:
            scheduler.stop()
