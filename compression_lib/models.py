"""Data models for the compression monitor library."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional

from compression_lib import protocol


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into the closed range [low, high]."""
    return max(low, min(high, value))


class LoopState(Enum):
    """Lifecycle of the ingestion reader thread."""

    IDLE = "idle"
    READING = "reading"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Reading:
    """One decoded telemetry sample.

    Attributes:
        measured_pressure: Band pressure in kPa.
        temperature: Sensor temperature in Celsius.
        cycle_index: Cycle number reported by the controller, if any.
        recorded_at: UTC timestamp when the line was decoded (or stored, for
            readings returned by the backend).
    """

    measured_pressure: float
    temperature: float
    recorded_at: datetime
    cycle_index: Optional[int] = None

    def clamped(self) -> "Reading":
        """Return a copy with pressure in [0, 200] kPa and temperature in [0, 80] C."""
        return replace(
            self,
            measured_pressure=clamp(self.measured_pressure, *protocol.PRESSURE_RANGE_KPA),
            temperature=clamp(self.temperature, *protocol.TEMPERATURE_RANGE_C),
        )


@dataclass(frozen=True)
class Session:
    """A configured compression run for one patient.

    Configuration is fixed at creation. A session with ``ended_at`` set is
    terminal and accepts no further readings.
    """

    id: str
    patient_id: str
    target_pressure: float
    hold_time_seconds: int
    started_at: datetime
    ended_at: Optional[datetime] = None
    readings: List[Reading] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.target_pressure <= 0:
            raise ValueError(f"target_pressure must be > 0, got {self.target_pressure}")
        if self.hold_time_seconds <= 0:
            raise ValueError(f"hold_time_seconds must be > 0, got {self.hold_time_seconds}")

    @property
    def is_ended(self) -> bool:
        return self.ended_at is not None


@dataclass(frozen=True)
class DevicePort:
    """A serial device node the operator can connect to."""

    device: str
    description: str = ""
    hwid: str = ""


@dataclass(frozen=True)
class ControlState:
    """The single authoritative control tuple.

    Every operator permission is derived from this value; it is replaced,
    never mutated.
    """

    patient_id: Optional[str] = None
    session: Optional[Session] = None
    target_pressure: float = protocol.DEFAULT_TARGET_PRESSURE_KPA
    hold_time_seconds: int = protocol.DEFAULT_HOLD_TIME_S
    selected_port: Optional[DevicePort] = None
    connected: bool = False
    monitoring: bool = False
    started_from_device: bool = False


@dataclass(frozen=True)
class Permissions:
    """Operator actions permitted by a given ControlState."""

    can_create_session: bool
    can_pick_device: bool
    can_connect: bool
    can_start: bool
    can_stop: bool
    can_reset: bool
