"""Wire and row schemas for sessions and readings.

The backend speaks camelCase JSON; the core library uses snake_case
dataclasses. Pydantic models here validate responses and build request bodies.
Rows are the flat dict form used by the local DataFrame store.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from compression_lib.models import Reading, Session

# DataFrame schema: column names and their dtypes
# cycle_index is optional; missing values become NaN in the DataFrame
SCHEMA = {
    "session_id": str,
    "recorded_at": str,  # UTC ISO 8601 format
    "measured_pressure": float,  # kPa, clamped 0-200
    "temperature": float,  # Celsius, clamped 0-80
    "cycle_index": float,
}


def to_utc(ts: datetime) -> datetime:
    """Normalize a timestamp to UTC, treating naive values as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def reading_to_row(session_id: str, reading: Reading) -> Dict[str, Any]:
    """Convert a Reading to a DataFrame row dictionary with all SCHEMA keys."""
    return {
        "session_id": session_id,
        "recorded_at": to_utc(reading.recorded_at).isoformat(),
        "measured_pressure": reading.measured_pressure,
        "temperature": reading.temperature,
        "cycle_index": reading.cycle_index,
    }


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateSessionBody(_CamelModel):
    """Request body for create session."""

    patient_id: str = Field(alias="patientId")
    target_pressure: float = Field(alias="targetPressure", gt=0)
    hold_time_seconds: int = Field(alias="holdTimeSeconds", gt=0)


class ReadingBody(_CamelModel):
    """Request body for append reading."""

    measured_pressure: float = Field(alias="measuredPressure", ge=0, le=200)
    temperature: float = Field(ge=0, le=80)
    cycle_index: Optional[int] = Field(default=None, alias="cycleIndex", ge=0)

    @classmethod
    def from_reading(cls, reading: Reading) -> "ReadingBody":
        return cls(
            measured_pressure=reading.measured_pressure,
            temperature=reading.temperature,
            cycle_index=reading.cycle_index,
        )


class ReadingRecord(_CamelModel):
    """A stored reading as returned by the backend."""

    id: Optional[str] = None
    measured_pressure: float = Field(alias="measuredPressure")
    temperature: float
    cycle_index: Optional[int] = Field(default=None, alias="cycleIndex")
    recorded_at: Optional[datetime] = Field(default=None, alias="recordedAt")

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @classmethod
    def from_reading(cls, reading: Reading) -> "ReadingRecord":
        return cls(
            measured_pressure=reading.measured_pressure,
            temperature=reading.temperature,
            cycle_index=reading.cycle_index,
            recorded_at=reading.recorded_at,
        )

    def to_reading(self) -> Reading:
        recorded_at = to_utc(self.recorded_at) if self.recorded_at else datetime.now(timezone.utc)
        return Reading(
            measured_pressure=self.measured_pressure,
            temperature=self.temperature,
            cycle_index=self.cycle_index,
            recorded_at=recorded_at,
        )


class PatientRef(_CamelModel):
    id: str

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        return str(value)


class SessionRecord(_CamelModel):
    """A session as returned by the backend.

    The backend may embed the patient object instead of a flat patientId.
    """

    id: str
    patient_id: Optional[str] = Field(default=None, alias="patientId")
    patient: Optional[PatientRef] = None
    target_pressure: float = Field(alias="targetPressure")
    hold_time_seconds: int = Field(alias="holdTimeSeconds")
    started_at: datetime = Field(alias="startedAt")
    ended_at: Optional[datetime] = Field(default=None, alias="endedAt")
    records: List[ReadingRecord] = Field(default_factory=list)

    @field_validator("id", "patient_id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @classmethod
    def from_session(cls, session: Session) -> "SessionRecord":
        return cls(
            id=session.id,
            patient_id=session.patient_id,
            target_pressure=session.target_pressure,
            hold_time_seconds=session.hold_time_seconds,
            started_at=session.started_at,
            ended_at=session.ended_at,
            records=[ReadingRecord.from_reading(r) for r in session.readings],
        )

    def to_session(self) -> Session:
        """Convert to the core Session model.

        Raises:
            ValueError: If the record carries no patient id or invalid configuration
        """
        patient_id = self.patient_id or (self.patient.id if self.patient else None)
        if not patient_id:
            raise ValueError(f"Session {self.id} has no patient id")

        return Session(
            id=self.id,
            patient_id=patient_id,
            target_pressure=self.target_pressure,
            hold_time_seconds=self.hold_time_seconds,
            started_at=to_utc(self.started_at),
            ended_at=to_utc(self.ended_at) if self.ended_at else None,
            readings=[r.to_reading() for r in self.records],
        )
