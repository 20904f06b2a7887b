"""Tests for the bounded reading buffer."""

from datetime import datetime, timezone

import pytest

from compression_lib.models import Reading
from compression_lib.ring_buffer import RingBuffer


def _reading(i: int) -> Reading:
    return Reading(
        measured_pressure=float(i % 200),
        temperature=30.0,
        cycle_index=i,
        recorded_at=datetime.now(timezone.utc),
    )


def test_keeps_most_recent_200() -> None:
    """Test that 300 appends leave the last 200 in arrival order."""
    buffer = RingBuffer()
    for i in range(300):
        buffer.append(_reading(i))

    snapshot = buffer.snapshot()
    assert len(snapshot) == 200
    assert [r.cycle_index for r in snapshot] == list(range(100, 300))
    assert buffer.latest().cycle_index == 299
    assert buffer.total_appended == 300


def test_empty_buffer() -> None:
    buffer = RingBuffer(maxlen=5)

    assert len(buffer) == 0
    assert buffer.latest() is None
    assert buffer.snapshot() == []
    assert buffer.since(0) == ([], 0)


def test_since_returns_only_new_readings() -> None:
    """Test incremental reads used by streaming observers."""
    buffer = RingBuffer(maxlen=10)
    for i in range(3):
        buffer.append(_reading(i))
    seen = buffer.total_appended

    buffer.append(_reading(3))
    buffer.append(_reading(4))

    readings, cursor = buffer.since(seen)
    assert [r.cycle_index for r in readings] == [3, 4]
    assert cursor == 5
    assert buffer.since(cursor) == ([], 5)


def test_since_after_overflow_returns_retained_only() -> None:
    buffer = RingBuffer(maxlen=3)
    for i in range(10):
        buffer.append(_reading(i))

    readings, cursor = buffer.since(0)
    assert [r.cycle_index for r in readings] == [7, 8, 9]
    assert cursor == 10


def test_append_between_polls_is_not_skipped() -> None:
    """Test that a reading appended after since() returns is seen on the next poll."""
    buffer = RingBuffer(maxlen=10)
    buffer.append(_reading(0))

    readings, cursor = buffer.since(0)
    assert [r.cycle_index for r in readings] == [0]

    # Arrives while the observer is still handling the first batch
    buffer.append(_reading(1))
    assert buffer.total_appended == 2

    readings, cursor = buffer.since(cursor)
    assert [r.cycle_index for r in readings] == [1]
    assert cursor == 2


def test_clear_keeps_sequence_counter() -> None:
    buffer = RingBuffer(maxlen=3)
    buffer.append(_reading(0))
    buffer.clear()

    assert len(buffer) == 0
    assert buffer.total_appended == 1


def test_invalid_maxlen() -> None:
    with pytest.raises(ValueError):
        RingBuffer(maxlen=0)
