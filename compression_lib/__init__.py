"""
compression_lib - Session orchestration and telemetry ingestion for a pneumatic
compression band controller.

Speaks the controller's JSON-lines serial protocol at 115200 baud.
"""

from compression_lib.controller import SessionController
from compression_lib.errors import (
    CompressionMonitorError,
    DeviceConnectionError,
    DeviceIOError,
    PersistenceError,
    SessionNotFoundError,
    ValidationError,
)
from compression_lib.models import (
    ControlState,
    DevicePort,
    LoopState,
    Permissions,
    Reading,
    Session,
)
from compression_lib.parsing import parse_line
from compression_lib.transport import DeviceLink, PortRegistry

__version__ = "0.1.0"

__all__ = [
    "SessionController",
    "DeviceLink",
    "PortRegistry",
    "parse_line",
    "Session",
    "Reading",
    "ControlState",
    "Permissions",
    "DevicePort",
    "LoopState",
    "CompressionMonitorError",
    "ValidationError",
    "DeviceConnectionError",
    "DeviceIOError",
    "PersistenceError",
    "SessionNotFoundError",
]
