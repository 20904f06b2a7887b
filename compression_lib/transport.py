"""Serial transport layer for the compression band controller."""

import logging
import os
import threading
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Union

from compression_lib import protocol
from compression_lib.errors import DeviceConnectionError, DeviceIOError
from compression_lib.models import DevicePort

logger = logging.getLogger(__name__)

PortChooser = Callable[[Sequence[DevicePort]], Optional[DevicePort]]


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    def write(self, data: bytes) -> int:
        """Write bytes to serial port."""
        ...

    def readline(self) -> bytes:
        """Read a line (or a partial line on timeout) from serial port."""
        ...

    def flush(self) -> None:
        """Flush output buffer (force transmission)."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


def list_present_ports() -> List[DevicePort]:
    """Enumerate serial ports attached to this machine (requires pyserial).

    Only called from PortRegistry.request_access(), the consent path.
    """
    try:
        from serial.tools import list_ports  # type: ignore
    except ImportError as e:
        raise DeviceConnectionError("pyserial not installed. Run: pip install pyserial") from e

    return [
        DevicePort(device=info.device, description=info.description or "", hwid=info.hwid or "")
        for info in list_ports.comports()
    ]


class PortRegistry:
    """Set of device ports the operator has granted access to.

    discover_authorized() only checks whether previously granted ports are
    still present. Enumerating hardware happens exclusively in
    request_access(), which asks the operator to choose.
    """

    def __init__(
        self,
        authorized: Iterable[Union[str, DevicePort]] = (),
        is_present: Callable[[str], bool] = os.path.exists,
        enumerate_ports: Callable[[], List[DevicePort]] = list_present_ports,
    ) -> None:
        self._lock = threading.Lock()
        self._ports: Dict[str, DevicePort] = {}
        self._is_present = is_present
        self._enumerate_ports = enumerate_ports
        for port in authorized:
            self.authorize(port)

    @classmethod
    def from_env(cls, value: Optional[str], **kwargs) -> "PortRegistry":
        """Build a registry from a comma-separated list of device paths."""
        paths = [p.strip() for p in (value or "").split(",") if p.strip()]
        return cls(authorized=paths, **kwargs)

    def authorize(self, port: Union[str, DevicePort]) -> DevicePort:
        """Grant access to a port and return its descriptor."""
        if isinstance(port, str):
            port = DevicePort(device=port)
        with self._lock:
            self._ports[port.device] = port
        logger.info(f"Authorized port {port.device}")
        return port

    def is_authorized(self, device: str) -> bool:
        with self._lock:
            return device in self._ports

    def discover_authorized(self) -> List[DevicePort]:
        """Return previously granted ports that are currently present."""
        with self._lock:
            ports = list(self._ports.values())
        return [p for p in ports if self._is_present(p.device)]

    def request_access(self, chooser: PortChooser) -> Optional[DevicePort]:
        """Ask the operator to grant access to a new port.

        Args:
            chooser: Called with the ports present on this machine. Returns the
                     chosen port, or None if the operator cancelled.

        Returns:
            The granted port, or None on cancellation (not an error)
        """
        candidates = self._enumerate_ports()
        choice = chooser(candidates)
        if choice is None:
            logger.info("Port selection cancelled by operator")
            return None
        return self.authorize(choice)


class DeviceLink:
    """Owned line-oriented connection to one compression controller.

    Wraps a pyserial port (or a test double). read_line() polls the port with a
    short timeout so that close() from another thread is noticed promptly.
    """

    def __init__(self, serial_port: SerialLike, port: Optional[DevicePort] = None) -> None:
        """Initialize link with an already-open serial port.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakeCompressionDevice for testing)
            port: Descriptor of the device node, for logging and status
        """
        self._port = serial_port
        self._device = port or DevicePort(device="<injected>")
        self._pending = bytearray()
        self._discarding = False
        self._closed = threading.Event()
        self._close_lock = threading.Lock()

    @classmethod
    def open(
        cls,
        port: Union[str, DevicePort],
        baud: int = protocol.BAUD_RATE,
        timeout_s: float = protocol.READ_POLL_TIMEOUT_S,
    ) -> "DeviceLink":
        """Open a real serial port (requires pyserial).

        Args:
            port: Device path (e.g., "/dev/ttyUSB0") or DevicePort
            baud: Baud rate. Default 115200 matches the controller firmware.
            timeout_s: Read poll timeout in seconds.

        Returns:
            DeviceLink owning the opened port

        Raises:
            DeviceConnectionError: If the port cannot be claimed
        """
        if isinstance(port, str):
            port = DevicePort(device=port)

        try:
            import serial  # type: ignore
        except ImportError as e:
            raise DeviceConnectionError("pyserial not installed. Run: pip install pyserial") from e

        try:
            ser = serial.Serial(
                port=port.device,
                baudrate=baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout_s,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            raise DeviceConnectionError(f"Failed to open {port.device} at {baud} baud: {e}") from e

        logger.info(f"Opened serial port {port.device} at {baud} baud, timeout={timeout_s}s")
        return cls(ser, port)

    @property
    def port(self) -> DevicePort:
        return self._device

    @property
    def is_open(self) -> bool:
        """Check if link is usable (not closed locally, port still open)."""
        return not self._closed.is_set() and self._port.is_open

    def close(self) -> None:
        """Close the link. Safe to call more than once."""
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()
            self._pending.clear()
            self._discarding = False
            try:
                if self._port.is_open:
                    self._port.close()
            except Exception as e:
                logger.warning(f"Error closing {self._device.device}: {e}")
            logger.info(f"Closed serial port {self._device.device}")

    def read_line(self) -> Optional[str]:
        """Read one complete line from the device.

        Blocks until a full LF-terminated line arrives. Partial chunks returned
        by a timed-out port read are accumulated. Lines longer than
        MAX_LINE_BYTES are dropped and reading resumes after their terminator.

        Returns:
            Line with CR/LF stripped, or None on end-of-stream (port closed
            by either side)

        Raises:
            DeviceIOError: If the read fails while the link is open
        """
        while True:
            if not self.is_open:
                return None

            try:
                chunk = self._port.readline()
            except Exception as e:
                if self._closed.is_set():
                    return None
                raise DeviceIOError(f"Failed to read line: {e}") from e

            if not chunk:
                continue

            if self._discarding:
                # Resynchronize at the end of the oversized line
                if chunk.endswith(protocol.LINE_TERMINATOR):
                    self._discarding = False
                continue

            self._pending.extend(chunk)
            if len(self._pending) > protocol.MAX_LINE_BYTES:
                logger.warning(
                    f"Discarding {len(self._pending)} bytes exceeding {protocol.MAX_LINE_BYTES}-byte line limit"
                )
                self._discarding = not self._pending.endswith(protocol.LINE_TERMINATOR)
                self._pending.clear()
                continue
            if not self._pending.endswith(protocol.LINE_TERMINATOR):
                continue

            line = self._pending.decode("utf-8", errors="replace").rstrip("\r\n")
            self._pending.clear()
            logger.debug(f"Received line: {line!r}")
            return line

    def write_line(self, command: str) -> None:
        """Write a command terminated with LF.

        Success only means the bytes were handed to the port; the device does
        not acknowledge commands.

        Raises:
            DeviceIOError: If the link is closed or the write fails
        """
        if not self.is_open:
            raise DeviceIOError("Serial port is not open")

        data = protocol.encode_command(command)
        try:
            self._port.write(data)
            self._port.flush()
        except Exception as e:
            raise DeviceIOError(f"Failed to write to port: {e}") from e
        logger.debug(f"Sent command: {data!r}")
