"""Interface of the session persistence backend consumed by the controller."""

from typing import List, Protocol

from compression_lib.models import Reading, Session


class SessionStore(Protocol):
    """Remote (or local) store of sessions and their readings.

    Implementations raise PersistenceError on any failure.
    """

    def create_session(
        self, patient_id: str, target_pressure: float, hold_time_seconds: int
    ) -> Session:
        ...

    def append_reading(self, session_id: str, reading: Reading) -> Reading:
        """Store one reading. Values are already clamped by the caller."""
        ...

    def fetch_session(self, session_id: str) -> Session:
        ...

    def list_sessions(self) -> List[Session]:
        ...

    def list_sessions_by_patient(self, patient_id: str) -> List[Session]:
        ...
