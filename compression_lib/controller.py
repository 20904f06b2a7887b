"""High-level controller for a compression session with state management."""

import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple, Union

from compression_lib import protocol, reconciler
from compression_lib.backend import SessionStore
from compression_lib.errors import DeviceIOError, ValidationError
from compression_lib.ingestion import IngestionLoop
from compression_lib.models import (
    ControlState,
    DevicePort,
    LoopState,
    Permissions,
    Reading,
    Session,
)
from compression_lib.ring_buffer import RingBuffer
from compression_lib.throttle import UploadThrottler
from compression_lib.transport import DeviceLink, PortChooser, PortRegistry, SerialLike

logger = logging.getLogger(__name__)


class SessionController:
    """Orchestrates one compression session: create, connect, start, stop, reset.

    Owns the control tuple, the reading buffer, the upload throttler and the
    device link. A single lock guards the control tuple and the buffer as one
    unit; observers should use snapshot() for a consistent view.
    """

    def __init__(
        self,
        store: SessionStore,
        registry: Optional[PortRegistry] = None,
        buffer_size: int = protocol.BUFFER_CAPACITY,
        upload_interval_s: float = protocol.UPLOAD_INTERVAL_S,
        throttler: Optional[UploadThrottler] = None,
        link_factory: Optional[Callable[..., DeviceLink]] = None,
    ) -> None:
        """Initialize controller.

        Args:
            store: Session backend (HTTP client or local store)
            registry: Authorized ports. Defaults to an empty registry.
            buffer_size: Maximum number of readings kept for display. Default 200.
            upload_interval_s: Minimum spacing between backend uploads. Default 1.0s.
            throttler: Pre-built throttler (tests inject one with a fake clock).
            link_factory: Opens a DeviceLink for a port. Defaults to DeviceLink.open.
        """
        self._store = store
        self._registry = registry or PortRegistry()
        self._buffer = RingBuffer(maxlen=buffer_size)
        self._throttler = throttler or UploadThrottler(store, interval_s=upload_interval_s)
        self._link_factory = link_factory

        self._lock = threading.RLock()
        self._state: ControlState = reconciler.initial_state()
        self._link: Optional[DeviceLink] = None
        self._loop: Optional[IngestionLoop] = None
        self._last_error: Optional[str] = None

    # ========================================================================
    # Session Configuration
    # ========================================================================

    def select_patient(self, patient_id: str) -> ControlState:
        """Choose the patient for the next session."""
        with self._lock:
            if self._state.session is not None:
                raise ValidationError("Patient cannot change once a session exists")
            self._state = replace(self._state, patient_id=patient_id or None)
            return self._state

    def configure(
        self,
        target_pressure: Optional[float] = None,
        hold_time_seconds: Optional[int] = None,
    ) -> ControlState:
        """Set the compression protocol for the next session.

        Raises:
            ValidationError: If a session already exists (configuration is fixed)
        """
        with self._lock:
            if self._state.session is not None:
                raise ValidationError("Session configuration is fixed after creation")
            self._state = self._with_config(self._state, target_pressure, hold_time_seconds)
            return self._state

    def create_session(
        self,
        patient_id: Optional[str] = None,
        target_pressure: Optional[float] = None,
        hold_time_seconds: Optional[int] = None,
    ) -> Session:
        """Create the session record in the backend and make it active.

        Arguments that are given override the pending selection/configuration.

        Raises:
            ValidationError: If a session exists, no patient is selected, or the
                             protocol values are not positive
            PersistenceError: If the backend rejects or cannot be reached
        """
        with self._lock:
            candidate = self._state
            if self._state.session is None:
                if patient_id is not None:
                    candidate = replace(candidate, patient_id=patient_id or None)
                candidate = self._with_config(candidate, target_pressure, hold_time_seconds)

            if not reconciler.permissions(candidate).can_create_session:
                raise ValidationError(self._create_rejection_reason(candidate))

            assert candidate.patient_id is not None
            session = self._store.create_session(
                patient_id=candidate.patient_id,
                target_pressure=candidate.target_pressure,
                hold_time_seconds=candidate.hold_time_seconds,
            )
            self._state = reconciler.on_session_created(candidate, session)
            logger.info(
                f"Session {session.id} created for patient {session.patient_id}: "
                f"target={session.target_pressure} kPa, hold={session.hold_time_seconds}s"
            )
            return session

    # ========================================================================
    # Device Selection & Connection
    # ========================================================================

    def discover_ports(self) -> List[DevicePort]:
        """Previously authorized ports that are currently attached."""
        return self._registry.discover_authorized()

    def request_port(self, chooser: PortChooser) -> Optional[DevicePort]:
        """Ask the operator to grant a new port; selects it if granted.

        Returns:
            Granted port, or None if the operator cancelled
        """
        self._require(reconciler.permissions(self._state).can_pick_device, "pick a device")
        port = self._registry.request_access(chooser)
        if port is not None:
            with self._lock:
                self._state = reconciler.on_port_selected(self._state, port)
        return port

    def select_port(self, port: Union[str, DevicePort]) -> DevicePort:
        """Select one of the authorized ports for connection."""
        device = port if isinstance(port, str) else port.device
        with self._lock:
            self._require(reconciler.permissions(self._state).can_pick_device, "pick a device")
            if not self._registry.is_authorized(device):
                raise ValidationError(f"Port {device} has not been authorized")
            selected = port if isinstance(port, DevicePort) else DevicePort(device=device)
            self._state = reconciler.on_port_selected(self._state, selected)
            return selected

    def connect(
        self,
        baud: int = protocol.BAUD_RATE,
        serial_port: Optional[SerialLike] = None,
    ) -> None:
        """Open the selected port and start the ingestion loop.

        Args:
            baud: Baud rate. Default 115200.
            serial_port: Pre-opened serial port object (for testing). If given,
                         the selected port is not opened.

        Raises:
            ValidationError: If there is no session, no selected port, or a
                             connection is already open
            DeviceConnectionError: If the port cannot be opened
        """
        with self._lock:
            state = self._state
            self._require(reconciler.permissions(state).can_connect, "connect")
            assert state.selected_port is not None

            if serial_port is not None:
                link = DeviceLink(serial_port, state.selected_port)
            else:
                open_link = self._link_factory or DeviceLink.open
                link = open_link(state.selected_port, baud)

            loop = IngestionLoop(
                link,
                on_reading=lambda reading: self._on_reading(link, reading),
                on_finished=lambda error: self._on_loop_finished(link, error),
            )
            self._link = link
            self._loop = loop
            self._last_error = None
            self._state = reconciler.on_connected(state)
            logger.info(f"Connected to {state.selected_port.device}")
            loop.start()

    def disconnect(self) -> None:
        """Stop the ingestion loop and close the port. Safe when not connected."""
        with self._lock:
            link, loop = self._detach_link()
            self._state = reconciler.on_disconnected(self._state)
        self._close_link(link, loop)

    # ========================================================================
    # Cycle Control
    # ========================================================================

    def start(self) -> None:
        """Send the start command and mark monitoring as operator-started.

        Raises:
            ValidationError: If there is no session/connection or already monitoring
            DeviceIOError: If the command cannot be written (the connection is closed)
        """
        self._send_command(
            protocol.CMD_START, "start", lambda p: p.can_start, reconciler.on_start
        )
        logger.info("Cycle execution started by operator")

    def stop(self) -> None:
        """Send the stop command and clear monitoring, however it began.

        The session record stays open in the backend.

        Raises:
            ValidationError: If not monitoring
            DeviceIOError: If the command cannot be written (the connection is closed)
        """
        self._send_command(protocol.CMD_STOP, "stop", lambda p: p.can_stop, reconciler.on_stop)
        logger.info("Cycle execution stopped by operator")

    def reset(self) -> None:
        """Close any connection and return to the initial, empty state.

        Raises:
            ValidationError: If monitoring is active or there is nothing to reset
        """
        with self._lock:
            self._require(reconciler.permissions(self._state).can_reset, "reset")
            link, loop = self._detach_link()
            self._state = reconciler.initial_state()
            self._buffer.clear()
            self._throttler.reset()
            self._last_error = None
        self._close_link(link, loop)
        logger.info("Controller reset")

    def shutdown(self) -> None:
        """Disconnect and stop background upload workers."""
        self.disconnect()
        self._throttler.shutdown(wait=False)

    # ========================================================================
    # Observers
    # ========================================================================

    @property
    def state(self) -> ControlState:
        """Current control tuple (immutable snapshot)."""
        return self._state

    def permissions(self) -> Permissions:
        return reconciler.permissions(self._state)

    def snapshot(self) -> Tuple[ControlState, List[Reading]]:
        """Consistent view of the control tuple and buffered readings."""
        with self._lock:
            return self._state, self._buffer.snapshot()

    def read_buffer_snapshot(self) -> List[Reading]:
        """Buffered readings, oldest to newest."""
        return self._buffer.snapshot()

    def read_latest(self) -> Optional[Reading]:
        return self._buffer.latest()

    @property
    def buffer(self) -> RingBuffer:
        return self._buffer

    @property
    def last_error(self) -> Optional[str]:
        """Message of the read failure that ended the last connection, if any."""
        return self._last_error

    @property
    def loop_state(self) -> LoopState:
        loop = self._loop
        return loop.state if loop is not None else LoopState.IDLE

    def is_connected(self) -> bool:
        link = self._link
        return link is not None and link.is_open

    def upload_stats(self) -> Dict[str, int]:
        return {
            "sent": self._throttler.sent_count,
            "failed": self._throttler.failed_count,
        }

    # ========================================================================
    # Internal Helpers
    # ========================================================================

    def _on_reading(self, link: DeviceLink, reading: Reading) -> None:
        """Called on the reader thread for every accepted (clamped) reading."""
        with self._lock:
            if self._link is not link:
                return

            state = self._state
            if not reconciler.accepts_readings(state):
                return

            if reconciler.is_device_start(state):
                logger.info("Device started cycling without a start command")
            self._state = reconciler.on_reading(state)
            self._buffer.append(reading)

            assert state.session is not None
            self._throttler.offer(state.session.id, reading)

    def _on_loop_finished(self, link: DeviceLink, error: Optional[DeviceIOError]) -> None:
        """Called on the reader thread when the ingestion loop exits."""
        with self._lock:
            if self._link is link:
                self._link = None
                self._loop = None
                self._state = reconciler.on_disconnected(self._state)
                if error is not None:
                    self._last_error = str(error)
        link.close()

    def _send_command(
        self,
        command: str,
        action: str,
        allowed: Callable[[Permissions], bool],
        transition: Callable[[ControlState], ControlState],
    ) -> None:
        with self._lock:
            self._require(allowed(reconciler.permissions(self._state)), action)
            link = self._link
            if link is None:
                raise DeviceIOError("Serial port is not open")

            try:
                link.write_line(command)
            except DeviceIOError as e:
                logger.error(f"Failed to send {command!r}, closing connection: {e}")
                self._last_error = str(e)
                detached = self._detach_link()
                self._state = reconciler.on_disconnected(self._state)
                error = e
            else:
                self._state = transition(self._state)
                return

        self._close_link(*detached)
        raise error

    def _detach_link(self) -> Tuple[Optional[DeviceLink], Optional[IngestionLoop]]:
        link, loop = self._link, self._loop
        self._link = None
        self._loop = None
        return link, loop

    def _close_link(self, link: Optional[DeviceLink], loop: Optional[IngestionLoop]) -> None:
        # Called without the lock held: the reader thread needs it to finish.
        if loop is not None:
            loop.cancel()
        if link is not None:
            link.close()
        if loop is not None and not loop.join(timeout=5.0):
            logger.warning("Ingestion thread did not stop cleanly")

    @staticmethod
    def _with_config(
        state: ControlState,
        target_pressure: Optional[float],
        hold_time_seconds: Optional[int],
    ) -> ControlState:
        if target_pressure is not None:
            state = replace(state, target_pressure=target_pressure)
        if hold_time_seconds is not None:
            state = replace(state, hold_time_seconds=hold_time_seconds)
        return state

    @staticmethod
    def _create_rejection_reason(state: ControlState) -> str:
        if state.session is not None:
            return "A session already exists. Reset first."
        if not state.patient_id:
            return "Select a patient first"
        if state.target_pressure <= 0:
            return f"target_pressure must be > 0, got {state.target_pressure}"
        return f"hold_time_seconds must be > 0, got {state.hold_time_seconds}"

    def _require(self, allowed: bool, action: str) -> None:
        if not allowed:
            raise ValidationError(f"Cannot {action} in current state: {self._describe_state()}")

    def _describe_state(self) -> str:
        s = self._state
        return (
            f"patient={s.patient_id or '-'}, session={s.session.id if s.session else '-'}, "
            f"port={s.selected_port.device if s.selected_port else '-'}, "
            f"connected={s.connected}, monitoring={s.monitoring}"
        )
