"""Thread-safe ring buffer for recent telemetry readings."""

import logging
import threading
from collections import deque
from typing import List, Optional, Tuple

from compression_lib import protocol
from compression_lib.models import Reading

logger = logging.getLogger(__name__)


class RingBuffer:
    """Thread-safe fixed-size FIFO buffer for readings.

    Once the buffer reaches maxlen, the oldest reading is discarded when a new
    one is appended. Order is arrival order.
    """

    def __init__(self, maxlen: int = protocol.BUFFER_CAPACITY) -> None:
        """Initialize ring buffer.

        Args:
            maxlen: Maximum number of readings to store. Defaults to 200.
        """
        if maxlen <= 0:
            raise ValueError(f"maxlen must be positive, got {maxlen}")

        self._buffer: deque[Reading] = deque(maxlen=maxlen)
        self._lock = threading.Lock()
        self._maxlen = maxlen
        self._total_appended = 0

    def append(self, reading: Reading) -> None:
        """Append a reading, evicting the oldest one if full."""
        with self._lock:
            self._buffer.append(reading)
            self._total_appended += 1

    def snapshot(self) -> List[Reading]:
        """Get a copy of all current readings, ordered oldest to newest."""
        with self._lock:
            return list(self._buffer)

    def latest(self) -> Optional[Reading]:
        with self._lock:
            return self._buffer[-1] if self._buffer else None

    def since(self, total_seen: int) -> Tuple[List[Reading], int]:
        """Get readings appended after the given sequence position.

        Used by streaming observers to pick up only new readings. If more
        readings arrived than the buffer holds, only the retained ones are
        returned. The readings and the new cursor are taken under the same
        lock, so passing the cursor back on the next call never skips an
        append.

        Args:
            total_seen: Cursor returned by the observer's previous call, or
                ``total_appended`` when it started observing

        Returns:
            Tuple of (new readings ordered oldest to newest, new cursor)
        """
        with self._lock:
            cursor = self._total_appended
            missed = cursor - total_seen
            if missed <= 0:
                return [], cursor
            missed = min(missed, len(self._buffer))
            return list(self._buffer)[-missed:], cursor

    def clear(self) -> None:
        """Remove all readings from buffer."""
        with self._lock:
            count = len(self._buffer)
            self._buffer.clear()
            logger.debug(f"Cleared {count} readings from buffer")

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def total_appended(self) -> int:
        """Number of readings appended since creation (not reset by clear)."""
        with self._lock:
            return self._total_appended

    @property
    def maxlen(self) -> int:
        """Maximum capacity of buffer."""
        return self._maxlen
