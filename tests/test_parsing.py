"""Tests for telemetry line decoding."""

from datetime import timezone

import pytest

from compression_lib.parsing import coerce_number, first_present, parse_line


def test_parse_canonical_line() -> None:
    """Test that a full telemetry object decodes to a Reading."""
    reading = parse_line('{"pressure": 23.4, "temperature": 32.1, "cycle": 1}')

    assert reading is not None
    assert reading.measured_pressure == 23.4
    assert reading.temperature == 32.1
    assert reading.cycle_index == 1
    assert reading.recorded_at.tzinfo == timezone.utc


def test_parse_aliases_and_numeric_strings() -> None:
    """Test alias keys and numeric strings ("p"/"t" with string values)."""
    reading = parse_line('{"p":"15.5","t":"30"}')

    assert reading is not None
    assert reading.measured_pressure == 15.5
    assert reading.temperature == 30.0
    assert reading.cycle_index is None


@pytest.mark.parametrize("line,pressure,temperature", [
    ('{"measuredPressure": 12, "temp": 31}', 12.0, 31.0),
    ('{"pr": 8.5, "t": 29.5}', 8.5, 29.5),
    ('{"pressure": 10, "p": 99, "temperature": 30}', 10.0, 30.0),
])
def test_parse_alias_precedence(line, pressure, temperature) -> None:
    """Test that the first alias present wins."""
    reading = parse_line(line)

    assert reading is not None
    assert reading.measured_pressure == pressure
    assert reading.temperature == temperature


def test_parse_null_alias_falls_through() -> None:
    """Test that a null value does not shadow a later alias."""
    reading = parse_line('{"pressure": null, "p": 5, "temperature": 30}')

    assert reading is not None
    assert reading.measured_pressure == 5.0


@pytest.mark.parametrize("line", [
    "hello",
    "",
    "   ",
    '{"pressure": 10',
    '["pressure", 10]',
    '{"pressure": 10}',
    '{"temperature": 30}',
    '{"pressure": "abc", "temperature": 30}',
    '{"pressure": true, "temperature": 30}',
    '{"pressure": "", "temperature": 30}',
    '{"pressure": NaN, "temperature": 30}',
    '{"pressure": Infinity, "temperature": 30}',
    '{"pressure": {"value": 1}, "temperature": 30}',
])
def test_parse_rejects(line) -> None:
    """Test that unusable lines are rejected without raising."""
    assert parse_line(line) is None


def test_parse_does_not_clamp() -> None:
    """Test that out-of-range values are returned as sent."""
    reading = parse_line('{"pressure": 250, "temperature": -5}')

    assert reading is not None
    assert reading.measured_pressure == 250.0
    assert reading.temperature == -5.0

    clamped = reading.clamped()
    assert clamped.measured_pressure == 200.0
    assert clamped.temperature == 0.0


@pytest.mark.parametrize("cycle", ['"x"', "-1", "1.5", "true", "null"])
def test_parse_drops_unusable_cycle(cycle) -> None:
    """Test that a non-numeric or non-integral cycle is dropped, not rejected."""
    reading = parse_line('{"pressure": 10, "temperature": 30, "cycle": %s}' % cycle)

    assert reading is not None
    assert reading.cycle_index is None


def test_parse_cycle_alias_and_string() -> None:
    reading = parse_line('{"pressure": 10, "temperature": 30, "cycleIndex": "4"}')

    assert reading is not None
    assert reading.cycle_index == 4


def test_parse_tolerates_crlf_and_whitespace() -> None:
    reading = parse_line('  {"pressure": 10, "temperature": 30}\r\n')

    assert reading is not None
    assert reading.measured_pressure == 10.0


def test_parse_rejects_integer_beyond_float_range() -> None:
    """Test that a huge integer literal is rejected instead of raising."""
    assert parse_line('{"p": ' + "9" * 400 + ', "t": 20}') is None
    assert parse_line('{"p": 10, "t": 20, "cycle": ' + "9" * 400 + "}").cycle_index is None


def test_coerce_number() -> None:
    """Test JSON value coercion rules."""
    assert coerce_number(3) == 3.0
    assert coerce_number(" 2.5 ") == 2.5
    assert coerce_number(False) is None
    assert coerce_number(None) is None
    assert coerce_number("") is None
    assert coerce_number("inf") is None
    assert coerce_number([1]) is None
    assert coerce_number(10**400) is None
    assert coerce_number("1e400") is None


def test_first_present() -> None:
    assert first_present({"b": 2, "a": 1}, ("a", "b")) == 1
    assert first_present({"a": None, "b": 2}, ("a", "b")) == 2
    assert first_present({}, ("a",)) is None
