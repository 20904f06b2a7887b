"""HTTP client for the remote session backend."""

import logging
from typing import Any, List, Optional

import requests
from pydantic import ValidationError as SchemaError

from compression_lib.errors import PersistenceError, SessionNotFoundError
from compression_lib.models import Reading, Session
from data_store.schemas import CreateSessionBody, ReadingBody, ReadingRecord, SessionRecord

logger = logging.getLogger(__name__)


class HttpSessionStore:
    """Session store backed by the REST service.

    Endpoints:
        POST /sessions                       create session
        POST /sessions/{id}/data             append reading
        GET  /sessions/{id}                  fetch session with records
        GET  /sessions                       list sessions
        GET  /sessions/by-patient/{patient}  list sessions of one patient

    Every failure (transport, non-2xx status, undecodable body) is raised as
    PersistenceError.
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 5.0,
        http_session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Backend root URL (e.g., "http://localhost:3000/api")
            timeout_s: Per-request timeout in seconds
            http_session: Pre-configured requests.Session (auth headers, tests)
        """
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._http = http_session or requests.Session()

    def create_session(
        self, patient_id: str, target_pressure: float, hold_time_seconds: int
    ) -> Session:
        try:
            body = CreateSessionBody(
                patient_id=patient_id,
                target_pressure=target_pressure,
                hold_time_seconds=hold_time_seconds,
            )
        except SchemaError as e:
            raise PersistenceError(f"Invalid session request: {e}") from e
        data = self._request("POST", "/sessions", json=body.model_dump(by_alias=True))
        session = self._to_session(data)
        logger.info(f"Backend created session {session.id}")
        return session

    def append_reading(self, session_id: str, reading: Reading) -> Reading:
        body = ReadingBody.from_reading(reading).model_dump(by_alias=True, exclude_none=True)
        data = self._request("POST", f"/sessions/{session_id}/data", json=body)
        try:
            return ReadingRecord.model_validate(data).to_reading()
        except SchemaError as e:
            raise PersistenceError(f"Unexpected reading response: {e}") from e

    def fetch_session(self, session_id: str) -> Session:
        return self._to_session(self._request("GET", f"/sessions/{session_id}"))

    def list_sessions(self) -> List[Session]:
        return self._to_sessions(self._request("GET", "/sessions"))

    def list_sessions_by_patient(self, patient_id: str) -> List[Session]:
        return self._to_sessions(self._request("GET", f"/sessions/by-patient/{patient_id}"))

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._http.request(method, url, json=json, timeout=self._timeout_s)
        except requests.RequestException as e:
            raise PersistenceError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise SessionNotFoundError(f"{method} {path}: not found")
        if not 200 <= response.status_code < 300:
            raise PersistenceError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise PersistenceError(f"{method} {path} returned invalid JSON: {e}") from e

    @staticmethod
    def _to_session(data: Any) -> Session:
        try:
            return SessionRecord.model_validate(data).to_session()
        except (SchemaError, ValueError) as e:
            raise PersistenceError(f"Unexpected session response: {e}") from e

    def _to_sessions(self, data: Any) -> List[Session]:
        if not isinstance(data, list):
            raise PersistenceError(f"Expected a list of sessions, got {type(data).__name__}")
        return [self._to_session(item) for item in data]
