"""Tests for rate-limited reading uploads."""

import threading
from concurrent.futures import Executor, Future
from datetime import datetime, timezone
from typing import List, Tuple

from compression_lib.errors import PersistenceError
from compression_lib.models import Reading
from compression_lib.throttle import UploadThrottler


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ImmediateExecutor(Executor):
    """Runs submitted calls synchronously on the caller's thread."""

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.calls: List[Tuple[str, Reading]] = []
        self.fail = fail

    def append_reading(self, session_id: str, reading: Reading) -> Reading:
        self.calls.append((session_id, reading))
        if self.fail:
            raise PersistenceError("backend down")
        return reading


def _reading(pressure: float = 20.0) -> Reading:
    return Reading(measured_pressure=pressure, temperature=30.0, recorded_at=datetime.now(timezone.utc))


def test_burst_within_interval_sends_once() -> None:
    """Test that a burst of readings inside one interval yields one upload."""
    clock = FakeClock()
    sink = RecordingSink()
    throttler = UploadThrottler(sink, clock=clock, executor=ImmediateExecutor())

    sent = []
    for _ in range(10):
        sent.append(throttler.offer("s1", _reading()))
        clock.advance(0.05)

    assert sent.count(True) == 1
    assert sent[0] is True
    assert len(sink.calls) == 1
    assert sink.calls[0][0] == "s1"


def test_spaced_readings_all_sent() -> None:
    """Test that readings spaced at least one interval apart are all forwarded."""
    clock = FakeClock()
    sink = RecordingSink()
    throttler = UploadThrottler(sink, clock=clock, executor=ImmediateExecutor())

    for i in range(5):
        assert throttler.offer("s1", _reading(float(i)))
        clock.advance(1.0)

    assert [r.measured_pressure for _, r in sink.calls] == [0.0, 1.0, 2.0, 3.0, 4.0]
    assert throttler.sent_count == 5


def test_interval_boundary() -> None:
    clock = FakeClock()
    sink = RecordingSink()
    throttler = UploadThrottler(sink, clock=clock, executor=ImmediateExecutor())

    assert throttler.offer("s1", _reading())
    clock.advance(0.999)
    assert not throttler.offer("s1", _reading())
    clock.advance(0.001)
    assert throttler.offer("s1", _reading())


def test_failed_upload_is_swallowed_and_counted() -> None:
    """Test that a backend failure neither raises nor resets the window."""
    clock = FakeClock()
    sink = RecordingSink(fail=True)
    throttler = UploadThrottler(sink, clock=clock, executor=ImmediateExecutor())

    assert throttler.offer("s1", _reading())
    assert throttler.failed_count == 1

    # No retry within the same window
    assert not throttler.offer("s1", _reading())
    assert len(sink.calls) == 1


def test_last_sent_set_before_dispatch() -> None:
    """Test that a slow upload does not let a second one through."""
    clock = FakeClock()
    release = threading.Event()
    started = threading.Event()

    class SlowSink:
        def append_reading(self, session_id, reading):
            started.set()
            release.wait(timeout=2.0)
            return reading

    throttler = UploadThrottler(SlowSink(), clock=clock)
    try:
        assert throttler.offer("s1", _reading())
        assert started.wait(timeout=2.0)
        assert throttler.last_sent_at == 1000.0
        assert not throttler.offer("s1", _reading())
    finally:
        release.set()
        throttler.shutdown(wait=True)


def test_reset_allows_next_offer() -> None:
    clock = FakeClock()
    sink = RecordingSink()
    throttler = UploadThrottler(sink, clock=clock, executor=ImmediateExecutor())

    assert throttler.offer("s1", _reading())
    throttler.reset()

    assert throttler.last_sent_at is None
    assert throttler.offer("s1", _reading())
    assert len(sink.calls) == 2
