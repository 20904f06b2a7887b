"""Background reader that turns the device byte stream into readings."""

import logging
import threading
from typing import Callable, Optional

from compression_lib import parsing
from compression_lib.errors import DeviceIOError
from compression_lib.models import LoopState, Reading
from compression_lib.transport import DeviceLink

logger = logging.getLogger(__name__)


class IngestionLoop:
    """Long-lived reader thread for one DeviceLink.

    Reads lines until cancelled, end-of-stream, or a read error. Accepted
    readings are clamped and handed to ``on_reading`` in arrival order.
    Rejected lines are dropped without a trace. ``on_finished`` is called
    exactly once on exit with the read error, or None for a clean exit.
    """

    def __init__(
        self,
        link: DeviceLink,
        on_reading: Callable[[Reading], None],
        on_finished: Callable[[Optional[DeviceIOError]], None],
    ) -> None:
        self._link = link
        self._on_reading = on_reading
        self._on_finished = on_finished
        self._cancel_event = threading.Event()
        self._state = LoopState.IDLE
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the reader thread."""
        with self._state_lock:
            if self._state != LoopState.IDLE:
                raise RuntimeError(f"Ingestion loop already started (state: {self._state.value})")
            self._state = LoopState.READING

        self._thread = threading.Thread(target=self._run, name="IngestionReader", daemon=True)
        self._thread.start()
        logger.debug("Started ingestion reader thread")

    def cancel(self) -> None:
        """Request the loop to stop before its next read."""
        self._cancel_event.set()
        with self._state_lock:
            if self._state == LoopState.READING:
                self._state = LoopState.STOPPING

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the reader thread to exit.

        Returns:
            True if the thread has stopped
        """
        if self._thread is None:
            return True
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    @property
    def state(self) -> LoopState:
        with self._state_lock:
            return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _run(self) -> None:
        logger.info(f"Ingestion loop started on {self._link.port.device}")
        error: Optional[DeviceIOError] = None

        try:
            while not self._cancel_event.is_set():
                try:
                    line = self._link.read_line()
                except DeviceIOError as e:
                    if not self._cancel_event.is_set():
                        logger.error(f"Device read failed, ingestion stopped: {e}")
                        error = e
                    break

                if line is None:
                    logger.info("Device stream ended")
                    break

                try:
                    reading = parsing.parse_line(line)
                    if reading is None:
                        continue
                    self._on_reading(reading.clamped())
                except Exception as e:
                    # One bad sample must not end monitoring
                    logger.error(f"Error handling line {line[:80]!r}: {e}", exc_info=True)
        finally:
            with self._state_lock:
                self._state = LoopState.STOPPED
            logger.info("Ingestion loop stopped")
            self._on_finished(error)
