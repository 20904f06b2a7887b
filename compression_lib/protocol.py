"""Wire protocol constants for the compression band controller.

The controller streams one JSON object per line over USB serial and accepts
single-character commands. There is no acknowledgment frame.
"""

from typing import Final, Tuple

# ============================================================================
# Serial Link
# ============================================================================

BAUD_RATE: Final[int] = 115200

# Read timeout for the underlying port. Bounds how long a pending read takes
# to notice a concurrent close.
READ_POLL_TIMEOUT_S: Final[float] = 0.2

# Commands are terminated with LF; device output uses LF (CRLF tolerated)
LINE_TERMINATOR: Final[bytes] = b"\n"

# Longest accepted line. Longer input is discarded up to the next terminator.
MAX_LINE_BYTES: Final[int] = 4096

# ============================================================================
# Commands (single ASCII character + LF)
# ============================================================================

CMD_START: Final[str] = "I"  # Start inflate/hold/deflate cycle execution
CMD_STOP: Final[str] = "S"  # Stop cycle execution

# ============================================================================
# Telemetry Field Aliases (first present wins)
# ============================================================================

PRESSURE_KEYS: Final[Tuple[str, ...]] = ("pressure", "measuredPressure", "p", "pr")
TEMPERATURE_KEYS: Final[Tuple[str, ...]] = ("temperature", "temp", "t")
CYCLE_KEYS: Final[Tuple[str, ...]] = ("cycle", "cycleIndex")

# ============================================================================
# Value Ranges
# ============================================================================

PRESSURE_RANGE_KPA: Final[Tuple[float, float]] = (0.0, 200.0)
TEMPERATURE_RANGE_C: Final[Tuple[float, float]] = (0.0, 80.0)

# ============================================================================
# Session Defaults and Limits
# ============================================================================

BUFFER_CAPACITY: Final[int] = 200
UPLOAD_INTERVAL_S: Final[float] = 1.0

DEFAULT_TARGET_PRESSURE_KPA: Final[float] = 30.0
DEFAULT_HOLD_TIME_S: Final[int] = 10


def encode_command(command: str) -> bytes:
    """Encode a command for transmission: ASCII text plus LF.

    Args:
        command: Command text (e.g., "I" or "S")

    Returns:
        Bytes ready to write to the port
    """
    return command.encode("ascii") + LINE_TERMINATOR
