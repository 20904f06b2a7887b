"""Thread-safe in-process session store backed by a pandas DataFrame.

Used when no remote backend is configured (bench use, demos) and in tests.
Implements the same operations as HttpSessionStore.

Design notes:
- Sessions are kept in a dict; readings of all sessions share one DataFrame
- Oldest rows are trimmed once max_rows is exceeded
- Readings sent to an ended session are rejected, like the backend does
"""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional

import pandas as pd

from compression_lib.errors import PersistenceError, SessionNotFoundError
from compression_lib.models import Reading, Session
from data_store.schemas import SCHEMA, reading_to_row

logger = logging.getLogger(__name__)


class LocalSessionStore:
    """In-memory session store with DataFrame storage of readings.

    Supports concurrent appends (upload threads) and reads (API handlers),
    per-session statistics and CSV export.
    """

    def __init__(self, max_rows: int = 100000) -> None:
        """Initialize empty store.

        Args:
            max_rows: Maximum reading rows to keep in memory. Older rows are trimmed after appends.
        """
        self._lock = RLock()
        self._sessions: Dict[str, Session] = {}
        self._df = pd.DataFrame(columns=list(SCHEMA.keys()))
        self._max_rows = max_rows

    # ========================================================================
    # Backend Operations
    # ========================================================================

    def create_session(
        self, patient_id: str, target_pressure: float, hold_time_seconds: int
    ) -> Session:
        try:
            session = Session(
                id=str(uuid.uuid4()),
                patient_id=patient_id,
                target_pressure=target_pressure,
                hold_time_seconds=hold_time_seconds,
                started_at=datetime.now(timezone.utc),
            )
        except ValueError as e:
            raise PersistenceError(f"Invalid session: {e}") from e

        with self._lock:
            self._sessions[session.id] = session
        logger.info(f"Created session {session.id} for patient {patient_id}")
        return session

    def append_reading(self, session_id: str, reading: Reading) -> Reading:
        """Store one reading, stamped with the store's receive time."""
        stored = Reading(
            measured_pressure=reading.measured_pressure,
            temperature=reading.temperature,
            cycle_index=reading.cycle_index,
            recorded_at=datetime.now(timezone.utc),
        )

        with self._lock:
            session = self._get(session_id)
            if session.is_ended:
                raise PersistenceError(f"Session {session_id} has ended")

            new_df = pd.DataFrame([reading_to_row(session_id, stored)], columns=list(SCHEMA.keys()))
            if self._df.empty:
                self._df = new_df
            else:
                self._df = pd.concat([self._df, new_df], ignore_index=True)

            if len(self._df) > self._max_rows:
                excess = len(self._df) - self._max_rows
                self._df = self._df.iloc[excess:].reset_index(drop=True)
                logger.debug(f"Trimmed {excess} oldest rows, now {len(self._df)} rows")

        return stored

    def fetch_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._get(session_id)
            return self._with_readings(session)

    def list_sessions(self) -> List[Session]:
        with self._lock:
            return [self._with_readings(s) for s in self._sessions.values()]

    def list_sessions_by_patient(self, patient_id: str) -> List[Session]:
        with self._lock:
            return [
                self._with_readings(s)
                for s in self._sessions.values()
                if s.patient_id == patient_id
            ]

    def end_session(self, session_id: str) -> Session:
        """Mark a session as ended. No further readings are accepted.

        Models the backend closing a session record. The controller never
        calls this: stopping cycles or resetting leaves the session open and
        its end is managed by the backend, outside this process.
        """
        with self._lock:
            session = self._get(session_id)
            if not session.is_ended:
                session = Session(
                    id=session.id,
                    patient_id=session.patient_id,
                    target_pressure=session.target_pressure,
                    hold_time_seconds=session.hold_time_seconds,
                    started_at=session.started_at,
                    ended_at=datetime.now(timezone.utc),
                )
                self._sessions[session_id] = session
                logger.info(f"Session {session_id} ended")
            return session

    # ========================================================================
    # DataFrame Access
    # ========================================================================

    def get_dataframe(self, session_id: Optional[str] = None) -> pd.DataFrame:
        """Copy of the reading rows, optionally for one session."""
        with self._lock:
            if session_id is None:
                return self._df.copy()
            return self._df[self._df["session_id"] == session_id].reset_index(drop=True)

    def get_stats(self, session_id: str) -> dict:
        """Summary statistics of one session's stored readings.

        Returns:
            Dictionary with keys row_count, start_time, end_time, duration_s,
            mean_pressure, max_pressure, mean_temperature, last_cycle
        """
        with self._lock:
            self._get(session_id)
            df = self.get_dataframe(session_id)

        if df.empty:
            return {
                "row_count": 0,
                "start_time": None,
                "end_time": None,
                "duration_s": 0.0,
                "mean_pressure": None,
                "max_pressure": None,
                "mean_temperature": None,
                "last_cycle": None,
            }

        timestamps = pd.to_datetime(df["recorded_at"], format="ISO8601", utc=True)
        start = timestamps.iloc[0]
        end = timestamps.iloc[-1]
        cycles = pd.to_numeric(df["cycle_index"], errors="coerce").dropna()

        return {
            "row_count": len(df),
            "start_time": start.isoformat(),
            "end_time": end.isoformat(),
            "duration_s": (end - start).total_seconds(),
            "mean_pressure": float(pd.to_numeric(df["measured_pressure"]).mean()),
            "max_pressure": float(pd.to_numeric(df["measured_pressure"]).max()),
            "mean_temperature": float(pd.to_numeric(df["temperature"]).mean()),
            "last_cycle": int(cycles.iloc[-1]) if not cycles.empty else None,
        }

    def export_csv(self, session_id: str, path: Optional[str] = None) -> str:
        """Export one session's readings to CSV.

        Args:
            session_id: Session to export
            path: Output file path. If None, generates a timestamped filename.

        Returns:
            Absolute path to exported file
        """
        df = self.get_dataframe(session_id)
        if path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            path = f"session_{session_id[:8]}_{timestamp}.csv"

        df.to_csv(path, index=False)
        abs_path = str(Path(path).resolve())
        logger.info(f"Exported {len(df)} rows to CSV: {abs_path}")
        return abs_path

    def clear(self) -> None:
        """Remove all sessions and readings."""
        with self._lock:
            self._sessions.clear()
            self._df = pd.DataFrame(columns=list(SCHEMA.keys()))
            logger.debug("LocalSessionStore cleared")

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def _with_readings(self, session: Session) -> Session:
        rows = self._df[self._df["session_id"] == session.id]
        readings = [
            Reading(
                measured_pressure=float(row.measured_pressure),
                temperature=float(row.temperature),
                cycle_index=None if pd.isna(row.cycle_index) else int(row.cycle_index),
                recorded_at=datetime.fromisoformat(row.recorded_at),
            )
            for row in rows.itertuples(index=False)
        ]
        return Session(
            id=session.id,
            patient_id=session.patient_id,
            target_pressure=session.target_pressure,
            hold_time_seconds=session.hold_time_seconds,
            started_at=session.started_at,
            ended_at=session.ended_at,
            readings=readings,
        )
