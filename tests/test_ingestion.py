"""Tests for the background ingestion loop."""

import time

import pytest

from compression_lib.errors import DeviceIOError
from compression_lib.ingestion import IngestionLoop
from compression_lib.models import LoopState
from compression_lib.transport import DeviceLink
from fakes.fake_device import FakeCompressionDevice


class Collector:
    def __init__(self) -> None:
        self.readings = []
        self.finished = []

    def on_reading(self, reading) -> None:
        self.readings.append(reading)

    def on_finished(self, error) -> None:
        self.finished.append(error)


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_mixed_stream_yields_clamped_readings_in_order() -> None:
    """Test that noise is skipped and readings are clamped in arrival order."""
    fake = FakeCompressionDevice(lines=[
        "hello",
        '{"pressure": 250, "temperature": -5}',
        '{"pressure": 10',
        '{"p":"15.5","t":"30"}',
    ])
    fake.hang_up()
    collector = Collector()
    loop = IngestionLoop(DeviceLink(fake), collector.on_reading, collector.on_finished)

    loop.start()
    assert loop.join(timeout=2.0)

    assert [(r.measured_pressure, r.temperature) for r in collector.readings] == [
        (200.0, 0.0),
        (15.5, 30.0),
    ]
    assert collector.finished == [None]
    assert loop.state == LoopState.STOPPED


def test_loop_survives_unparseable_number() -> None:
    """Test that a line with an out-of-range number does not end the loop."""
    fake = FakeCompressionDevice(lines=[
        '{"p": ' + "9" * 400 + ', "t": 20}',
        '{"pressure": 12, "temperature": 31}',
    ])
    fake.hang_up()
    collector = Collector()
    loop = IngestionLoop(DeviceLink(fake), collector.on_reading, collector.on_finished)

    loop.start()
    assert loop.join(timeout=2.0)

    assert [r.measured_pressure for r in collector.readings] == [12.0]
    assert collector.finished == [None]


def test_loop_survives_failing_reading_handler() -> None:
    """Test that an error raised while handling one reading is logged and skipped."""
    fake = FakeCompressionDevice(lines=[
        '{"pressure": 5, "temperature": 30}',
        '{"pressure": 6, "temperature": 30}',
    ])
    fake.hang_up()
    handled = []

    def on_reading(reading) -> None:
        if not handled:
            handled.append(None)
            raise RuntimeError("handler failed")
        handled.append(reading.measured_pressure)

    finished = []
    loop = IngestionLoop(DeviceLink(fake), on_reading, finished.append)

    loop.start()
    assert loop.join(timeout=2.0)

    assert handled == [None, 6.0]
    assert finished == [None]


def test_cancel_stops_loop() -> None:
    fake = FakeCompressionDevice()
    link = DeviceLink(fake)
    collector = Collector()
    loop = IngestionLoop(link, collector.on_reading, collector.on_finished)

    loop.start()
    assert loop.state == LoopState.READING

    loop.cancel()
    link.close()

    assert loop.join(timeout=2.0)
    assert loop.cancelled
    assert collector.finished == [None]


def test_read_error_ends_loop() -> None:
    """Test that a read failure is reported once through on_finished."""
    fake = FakeCompressionDevice(lines=['{"pressure": 5, "temperature": 30}'])
    collector = Collector()
    loop = IngestionLoop(DeviceLink(fake), collector.on_reading, collector.on_finished)

    loop.start()
    assert _wait_for(lambda: len(collector.readings) == 1)
    fake.fail_next_read()

    assert loop.join(timeout=2.0)
    assert len(collector.finished) == 1
    assert isinstance(collector.finished[0], DeviceIOError)


def test_start_twice_raises() -> None:
    fake = FakeCompressionDevice()
    link = DeviceLink(fake)
    loop = IngestionLoop(link, lambda r: None, lambda e: None)

    loop.start()
    with pytest.raises(RuntimeError):
        loop.start()

    loop.cancel()
    link.close()
    loop.join(timeout=2.0)
