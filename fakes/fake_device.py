"""Fake serial port that simulates the compression band controller.

Emulates the controller's JSON-lines protocol closely enough to exercise the
ingestion loop without hardware:
- Scripted output lines (valid telemetry, noise, malformed JSON)
- Partial-line delivery (chunk_size) like a timed-out pyserial read
- Start/stop commands ("I"/"S") driving a cycle simulator
- The hardware button (press_button) starting cycles without a command
- Hang-up (end of stream) and injected read/write failures
"""

import json
import logging
import threading
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class FakeCompressionDevice:
    """Deterministic, thread-safe stand-in for serial.Serial.

    Reads follow pyserial semantics: readline() returns a full line, a partial
    line, or b"" when nothing arrived within ``timeout``.
    """

    def __init__(
        self,
        lines: Optional[List[Union[str, bytes]]] = None,
        chunk_size: Optional[int] = None,
        timeout: float = 0.05,
        target_pressure: float = 30.0,
        sample_period_s: float = 0.05,
        streaming: bool = True,
    ) -> None:
        """Initialize fake device.

        Args:
            lines: Lines queued for output before anything else
            chunk_size: If set, readline() returns at most this many bytes
            timeout: Readline timeout in seconds
            target_pressure: Plateau pressure of simulated cycles (kPa)
            sample_period_s: Interval between simulated telemetry lines
            streaming: If False, cycling emits nothing; tests feed lines themselves
        """
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.target_pressure = target_pressure
        self.sample_period_s = sample_period_s
        self.streaming = streaming

        # Port state
        self.is_open = True
        self.commands: List[str] = []

        self._rx = bytearray()
        self._tx = bytearray()
        self._cond = threading.Condition()
        self._hangup_pending = False
        self._read_error: Optional[Exception] = None
        self._write_error: Optional[Exception] = None

        # Cycle simulation
        self._cycling = threading.Event()
        self._stop_streaming = threading.Event()
        self._stream_thread: Optional[threading.Thread] = None
        self._sample_index = 0

        for line in lines or []:
            self.feed(line)

    # ========================================================================
    # SerialLike Interface
    # ========================================================================

    def readline(self) -> bytes:
        """Read up to and including the next LF, or a partial line on timeout."""
        with self._cond:
            if not self.is_open:
                raise RuntimeError("Port is closed")

            if not self._rx and self._read_error is None and not self._hangup_pending:
                self._cond.wait(timeout=self.timeout)

            if self._read_error is not None:
                error, self._read_error = self._read_error, None
                raise error

            if not self._rx:
                if self._hangup_pending:
                    self.is_open = False
                    logger.debug("FakeCompressionDevice hung up")
                return b""

            idx = self._rx.find(b"\n")
            end = idx + 1 if idx >= 0 else len(self._rx)
            if self.chunk_size:
                end = min(end, self.chunk_size)
            data = bytes(self._rx[:end])
            del self._rx[:end]
            return data

    def write(self, data: bytes) -> int:
        """Receive bytes from the host; LF-terminated commands are handled."""
        with self._cond:
            if not self.is_open:
                raise RuntimeError("Port is closed")
            if self._write_error is not None:
                error, self._write_error = self._write_error, None
                raise error

            self._tx.extend(data)
            commands = []
            while b"\n" in self._tx:
                idx = self._tx.index(b"\n")
                commands.append(self._tx[:idx].decode("ascii", errors="ignore").strip())
                del self._tx[: idx + 1]

        for command in commands:
            logger.debug(f"FakeCompressionDevice received: {command!r}")
            self.commands.append(command)
            self._handle_command(command)
        return len(data)

    def flush(self) -> None:
        """Flush output buffer (no-op for fake device)."""
        pass

    def close(self) -> None:
        """Close the fake port and stop any simulated cycling."""
        with self._cond:
            self.is_open = False
            self._cond.notify_all()
        self._stop_cycles()
        logger.debug("FakeCompressionDevice closed")

    # ========================================================================
    # Test Controls
    # ========================================================================

    def feed(self, line: Union[str, bytes, dict]) -> None:
        """Queue one line of device output (LF appended)."""
        if isinstance(line, dict):
            line = json.dumps(line)
        if isinstance(line, str):
            line = line.encode("utf-8")
        self.feed_raw(line + b"\n")

    def feed_raw(self, data: bytes) -> None:
        """Queue raw bytes of device output (no terminator added)."""
        with self._cond:
            self._rx.extend(data)
            self._cond.notify_all()

    def hang_up(self) -> None:
        """End the stream once queued output has been read."""
        with self._cond:
            self._hangup_pending = True
            self._cond.notify_all()

    def fail_next_read(self, error: Optional[Exception] = None) -> None:
        with self._cond:
            self._read_error = error or OSError("device disconnected")
            self._cond.notify_all()

    def fail_next_write(self, error: Optional[Exception] = None) -> None:
        with self._cond:
            self._write_error = error or OSError("write failed")

    def press_button(self) -> None:
        """Start cycling from the hardware button (no command from the host)."""
        self._start_cycles()

    @property
    def cycling(self) -> bool:
        return self._cycling.is_set()

    # ========================================================================
    # Internal: Cycle Simulation
    # ========================================================================

    def _handle_command(self, command: str) -> None:
        if command == "I":
            self._start_cycles()
        elif command == "S":
            self._stop_cycles()

    def _start_cycles(self) -> None:
        if self._cycling.is_set():
            return
        self._cycling.set()
        if not self.streaming:
            return
        self._stop_streaming.clear()
        self._stream_thread = threading.Thread(
            target=self._streaming_loop,
            name="FakeCompressionStream",
            daemon=True,
        )
        self._stream_thread.start()

    def _stop_cycles(self) -> None:
        self._cycling.clear()
        if self._stream_thread and self._stream_thread.is_alive():
            self._stop_streaming.set()
            if self._stream_thread is not threading.current_thread():
                self._stream_thread.join(timeout=2.0)
        self._stream_thread = None

    def _streaming_loop(self) -> None:
        """Emit inflate/hold/deflate telemetry, 10 samples per cycle."""
        while not self._stop_streaming.is_set() and self.is_open:
            cycle, phase = divmod(self._sample_index, 10)
            if phase < 3:
                pressure = self.target_pressure * (phase + 1) / 3
            elif phase < 7:
                pressure = self.target_pressure
            else:
                pressure = self.target_pressure * (9 - phase) / 3
            self.feed({"pressure": round(pressure, 2), "temperature": 32.0, "cycle": cycle + 1})
            self._sample_index += 1
            self._stop_streaming.wait(self.sample_period_s)
