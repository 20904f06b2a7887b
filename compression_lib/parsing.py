"""Pure functions for decoding telemetry lines from the compression controller."""

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from compression_lib import protocol
from compression_lib.models import Reading

logger = logging.getLogger(__name__)


def coerce_number(value: Any) -> Optional[float]:
    """Coerce a JSON value to a finite float.

    Numbers and numeric strings are accepted. Booleans, empty strings, null
    and non-finite values are not.

    Args:
        value: Decoded JSON value

    Returns:
        Finite float, or None if the value is not numeric
    """
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, (int, float)):
        source = value
    elif isinstance(value, str):
        source = value.strip()
        if not source:
            return None
    else:
        return None

    try:
        number = float(source)
    except (ValueError, OverflowError):
        # Integers beyond float range overflow instead of becoming inf
        return None

    if not math.isfinite(number):
        return None
    return number


def first_present(obj: Dict[str, Any], keys: Iterable[str]) -> Any:
    """Return the value of the first key present with a non-null value."""
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return None


def _coerce_cycle(value: Any) -> Optional[int]:
    number = coerce_number(value)
    if number is None or number < 0 or not number.is_integer():
        return None
    return int(number)


def parse_line(raw: str) -> Optional[Reading]:
    """Decode one telemetry line into a Reading.

    Expected format: a JSON object on a single line, e.g.
    ``{"pressure": 23.4, "temperature": 32.1, "cycle": 1}``.
    Pressure and temperature accept several aliases (see protocol); the first
    alias present wins. A missing or non-numeric cycle is dropped without
    rejecting the line.

    This decoder is lenient: it never raises. Values are returned as sent;
    range clamping is the caller's job.

    Args:
        raw: Raw line from the device (terminator may or may not be stripped)

    Returns:
        Reading, or None if the line is not a usable telemetry object
    """
    if not isinstance(raw, str):
        return None

    text = raw.strip()
    if not text or not (text.startswith("{") and text.endswith("}")):
        return None

    try:
        obj = json.loads(text)
    except (ValueError, RecursionError):
        logger.debug(f"Discarding malformed line: {text[:80]!r}")
        return None

    if not isinstance(obj, dict):
        return None

    pressure = coerce_number(first_present(obj, protocol.PRESSURE_KEYS))
    temperature = coerce_number(first_present(obj, protocol.TEMPERATURE_KEYS))
    if pressure is None or temperature is None:
        logger.debug(f"Discarding line without pressure/temperature: {text[:80]!r}")
        return None

    return Reading(
        measured_pressure=pressure,
        temperature=temperature,
        cycle_index=_coerce_cycle(first_present(obj, protocol.CYCLE_KEYS)),
        recorded_at=datetime.now(timezone.utc),
    )
