"""FastAPI REST and WebSocket interface for the compression band monitor.

Single-process, single-device lifecycle around one SessionController:
- Session creation against the configured backend (remote HTTP or local store)
- Port authorization, selection and connection
- Start/stop of cycle execution and reset
- Live readings (REST snapshot and WebSocket push)

Error mapping:
- ValidationError → 400
- SessionNotFoundError → 404
- PersistenceError → 502
- DeviceConnectionError / DeviceIOError → 503
- Other exceptions → 500
"""

import asyncio
import logging
import os
from threading import RLock
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field

from compression_lib import SessionController, protocol
from compression_lib.backend import SessionStore
from compression_lib.errors import (
    DeviceConnectionError,
    DeviceIOError,
    PersistenceError,
    SessionNotFoundError,
    ValidationError,
)
from compression_lib.models import DevicePort
from compression_lib.reconciler import progress_steps
from compression_lib.transport import PortRegistry
from data_store import HttpSessionStore, LocalSessionStore
from data_store.schemas import ReadingRecord, SessionRecord

# =============================================================================
# Environment Configuration
# =============================================================================

# Read configuration from environment variables
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "9160"))
DEFAULT_SERIAL_BAUD = int(os.getenv("SERIAL_BAUD", str(protocol.BAUD_RATE)))
AUTHORIZED_PORTS = os.getenv("AUTHORIZED_PORTS", "")
BACKEND_URL = os.getenv("BACKEND_URL", "")
BACKEND_TIMEOUT_S = float(os.getenv("BACKEND_TIMEOUT_S", "5.0"))
UPLOAD_INTERVAL_S = float(os.getenv("UPLOAD_INTERVAL_S", str(protocol.UPLOAD_INTERVAL_S)))
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173"
).split(",")

API_VERSION = "0.1.0"

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# =============================================================================
# Global Singletons
# =============================================================================

_controller: Optional[SessionController] = None
_store: Optional[SessionStore] = None
_registry: Optional[PortRegistry] = None
_lock = RLock()  # Protects singleton creation and state-changing operations


def _build_store() -> SessionStore:
    if BACKEND_URL:
        logger.info(f"Using remote session backend at {BACKEND_URL}")
        return HttpSessionStore(BACKEND_URL, timeout_s=BACKEND_TIMEOUT_S)
    logger.info("No BACKEND_URL set, using local in-memory session store")
    return LocalSessionStore()


def get_store() -> SessionStore:
    global _store
    with _lock:
        if _store is None:
            _store = _build_store()
        return _store


def get_registry() -> PortRegistry:
    global _registry
    with _lock:
        if _registry is None:
            _registry = PortRegistry.from_env(AUTHORIZED_PORTS)
        return _registry


def get_controller() -> SessionController:
    global _controller
    with _lock:
        if _controller is None:
            _controller = SessionController(
                store=get_store(),
                registry=get_registry(),
                upload_interval_s=UPLOAD_INTERVAL_S,
            )
        return _controller


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Compression Monitor API",
    description="Session control and live telemetry for a pneumatic compression band",
    version=API_VERSION
)

# CORS for the operator web UI (configurable via CORS_ORIGINS env var)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Request/Response Models
# =============================================================================

class ConfigRequest(BaseModel):
    """Request body for POST /config."""
    target_pressure: Optional[float] = None
    hold_time_seconds: Optional[int] = None


class CreateSessionRequest(BaseModel):
    """Request body for POST /session. Omitted fields use the pending selection."""
    patient_id: Optional[str] = None
    target_pressure: Optional[float] = None
    hold_time_seconds: Optional[int] = None


class PortResponse(BaseModel):
    device: str
    description: str = ""
    hwid: str = ""


class StatusResponse(BaseModel):
    """Response for GET /status."""
    patient_id: Optional[str]
    session_id: Optional[str]
    target_pressure: float
    hold_time_seconds: int
    selected_port: Optional[str]
    connected: bool
    monitoring: bool
    started_from_device: bool
    loop_state: str
    last_error: Optional[str]
    buffered: int
    uploads: Dict[str, int]
    permissions: Dict[str, bool]
    steps: List[Dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Map ValidationError to 400 Bad Request."""
    logger.warning(f"ValidationError: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(SessionNotFoundError)
async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
    """Map SessionNotFoundError to 404 Not Found."""
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    """Map PersistenceError to 502 Bad Gateway."""
    logger.error(f"PersistenceError: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(DeviceConnectionError)
async def device_connection_error_handler(request: Request, exc: DeviceConnectionError):
    """Map DeviceConnectionError to 503 Service Unavailable."""
    logger.error(f"DeviceConnectionError: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(DeviceIOError)
async def device_io_error_handler(request: Request, exc: DeviceIOError):
    """Map DeviceIOError to 503 Service Unavailable."""
    logger.error(f"DeviceIOError: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# =============================================================================
# Read-Only Endpoints (Low Latency)
# =============================================================================

@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Get control state, permitted actions and ingestion health."""
    controller = get_controller()
    state, readings = controller.snapshot()

    return StatusResponse(
        patient_id=state.patient_id,
        session_id=state.session.id if state.session else None,
        target_pressure=state.target_pressure,
        hold_time_seconds=state.hold_time_seconds,
        selected_port=state.selected_port.device if state.selected_port else None,
        connected=state.connected,
        monitoring=state.monitoring,
        started_from_device=state.started_from_device,
        loop_state=controller.loop_state.value,
        last_error=controller.last_error,
        buffered=len(readings),
        uploads=controller.upload_stats(),
        permissions=vars(controller.permissions()),
        steps=[{"label": label, "done": done} for label, done in progress_steps(state)],
    )


@app.get("/latest")
async def get_latest():
    """Get the most recent buffered reading, or {} if none."""
    latest = get_controller().read_latest()
    if latest is None:
        return {}
    return ReadingRecord.from_reading(latest).model_dump(by_alias=True, mode="json")


@app.get("/recent")
async def get_recent(limit: int = Query(protocol.BUFFER_CAPACITY, ge=1, le=protocol.BUFFER_CAPACITY)):
    """Get up to `limit` most recent buffered readings, oldest first."""
    readings = get_controller().read_buffer_snapshot()[-limit:]
    return {
        "rows": [ReadingRecord.from_reading(r).model_dump(by_alias=True, mode="json") for r in readings]
    }


# =============================================================================
# Session Configuration Endpoints
# =============================================================================

@app.post("/patient")
async def select_patient(patient_id: str = Query(..., description="Patient id")):
    """Select the patient for the next session."""
    with _lock:
        state = get_controller().select_patient(patient_id)
    return {"patient_id": state.patient_id}


@app.post("/config")
async def set_config(config: ConfigRequest):
    """Set target pressure (kPa) and hold time (s) for the next session."""
    with _lock:
        state = get_controller().configure(
            target_pressure=config.target_pressure,
            hold_time_seconds=config.hold_time_seconds,
        )
    return {"target_pressure": state.target_pressure, "hold_time_seconds": state.hold_time_seconds}


@app.post("/session")
async def create_session(req: Optional[CreateSessionRequest] = None):
    """Create the session in the backend and make it active.

    Raises:
        400: If a session exists, no patient is selected, or values are not positive
        502: If the backend fails
    """
    req = req or CreateSessionRequest()
    with _lock:
        session = get_controller().create_session(
            patient_id=req.patient_id,
            target_pressure=req.target_pressure,
            hold_time_seconds=req.hold_time_seconds,
        )
    return SessionRecord.from_session(session).model_dump(by_alias=True, mode="json")


# =============================================================================
# Device Endpoints
# =============================================================================

@app.get("/ports", response_model=List[PortResponse])
async def list_ports():
    """List authorized ports that are currently attached."""
    return [PortResponse(**vars(p)) for p in get_controller().discover_ports()]


@app.post("/ports/request")
async def request_port(port: str = Query(..., description="Device path to grant, e.g. /dev/ttyUSB0")):
    """Grant access to an attached port and select it.

    The operator's choice is the `port` parameter; if it is not attached the
    request is treated as cancelled.
    """
    def choose(candidates: List[DevicePort]) -> Optional[DevicePort]:
        return next((c for c in candidates if c.device == port), None)

    with _lock:
        granted = get_controller().request_port(choose)

    if granted is None:
        return {"status": "cancelled", "port": None}
    return {"status": "granted", "port": granted.device}


@app.post("/ports/select")
async def select_port(port: str = Query(..., description="Authorized device path")):
    """Select an authorized port for connection."""
    with _lock:
        selected = get_controller().select_port(port)
    return {"port": selected.device}


@app.post("/connect")
async def connect(baud: int = Query(DEFAULT_SERIAL_BAUD, description="Baud rate")):
    """Open the selected port and start reading telemetry.

    Raises:
        400: If there is no session or port, or already connected
        503: If the port cannot be opened
    """
    with _lock:
        controller = get_controller()
        controller.connect(baud=baud)
        port = controller.state.selected_port
    return {"status": "connected", "port": port.device if port else None}


@app.post("/disconnect")
async def disconnect():
    """Close the device connection (idempotent)."""
    with _lock:
        get_controller().disconnect()
    return {"status": "disconnected"}


@app.post("/start")
async def start_cycles():
    """Send the start command to the device."""
    with _lock:
        get_controller().start()
    return {"status": "started"}


@app.post("/stop")
async def stop_cycles():
    """Send the stop command to the device. The session record stays open."""
    with _lock:
        get_controller().stop()
    return {"status": "stopped"}


@app.post("/reset")
async def reset():
    """Close the connection and clear session, patient, buffer and configuration."""
    with _lock:
        get_controller().reset()
    return {"status": "reset"}


# =============================================================================
# Session History (read-only pass-through)
# =============================================================================

@app.get("/sessions")
async def list_sessions(patient_id: Optional[str] = Query(None)):
    """List sessions, optionally for one patient."""
    store = get_store()
    sessions = store.list_sessions_by_patient(patient_id) if patient_id else store.list_sessions()
    return [SessionRecord.from_session(s).model_dump(by_alias=True, mode="json") for s in sessions]


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Fetch one session with its stored readings."""
    session = get_store().fetch_session(session_id)
    return SessionRecord.from_session(session).model_dump(by_alias=True, mode="json")


@app.get("/sessions/{session_id}/stats")
async def get_session_stats(session_id: str):
    """Summary statistics of a session (local store only)."""
    store = get_store()
    if not isinstance(store, LocalSessionStore):
        raise HTTPException(status_code=400, detail="Statistics are only available with the local store")
    return store.get_stats(session_id)


@app.get("/sessions/{session_id}/export/csv")
async def export_session_csv(session_id: str):
    """Export a session's readings to CSV (local store only)."""
    store = get_store()
    if not isinstance(store, LocalSessionStore):
        raise HTTPException(status_code=400, detail="Export is only available with the local store")
    store.fetch_session(session_id)
    path = store.export_csv(session_id)
    return FileResponse(path=path, media_type="text/csv", filename=os.path.basename(path))


# =============================================================================
# WebSocket Streaming
# =============================================================================

@app.websocket("/stream")
async def websocket_stream(websocket: WebSocket):
    """WebSocket endpoint pushing each new buffered reading as JSON.

    Messages use the backend's reading keys: measuredPressure, temperature,
    cycleIndex, recordedAt.
    """
    await websocket.accept()
    logger.info(f"WebSocket client connected: {websocket.client}")

    buffer = get_controller().buffer
    seen = buffer.total_appended

    try:
        while True:
            readings, seen = buffer.since(seen)
            for reading in readings:
                await websocket.send_json(
                    ReadingRecord.from_reading(reading).model_dump(by_alias=True, mode="json")
                )

            # 10 Hz poll of the ring buffer
            await asyncio.sleep(0.1)

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected: {websocket.client}")


# =============================================================================
# Health Check
# =============================================================================

@app.get("/")
async def root():
    return {
        "service": "Compression Monitor API",
        "version": API_VERSION,
        "status": "online"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    controller = get_controller()
    return {
        "service": "Compression Monitor API",
        "version": API_VERSION,
        "status": "online",
        "connected": controller.is_connected(),
        "backend": "remote" if BACKEND_URL else "local",
    }


# =============================================================================
# Startup/Shutdown Events
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Log startup configuration."""
    logger.info("=" * 60)
    logger.info("Compression Monitor API started")
    logger.info(f"Version: {API_VERSION}")
    logger.info(f"Host: {API_HOST}")
    logger.info(f"Port: {API_PORT}")
    logger.info(f"Default Serial Baud: {DEFAULT_SERIAL_BAUD}")
    logger.info(f"Authorized Ports: {AUTHORIZED_PORTS or '(none)'}")
    logger.info(f"Backend: {BACKEND_URL or 'local store'}")
    logger.info(f"Upload Interval: {UPLOAD_INTERVAL_S}s")
    logger.info(f"CORS Origins: {CORS_ORIGINS}")
    logger.info(f"Log Level: {LOG_LEVEL}")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up resources on shutdown."""
    logger.info("Shutting down Compression Monitor API...")
    if _controller is not None:
        _controller.shutdown()
    logger.info("Shutdown complete")
