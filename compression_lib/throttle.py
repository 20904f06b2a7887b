"""Rate-limited, fire-and-forget forwarding of readings to the session backend.

Live monitoring is favored over durability: at most one reading per interval
is forwarded, and a failed upload is dropped. There is no retry and no queue.
"""

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Optional, Protocol

from compression_lib import protocol
from compression_lib.models import Reading

logger = logging.getLogger(__name__)


class ReadingSink(Protocol):
    """The part of the session backend the throttler needs."""

    def append_reading(self, session_id: str, reading: Reading) -> Reading:
        ...


class UploadThrottler:
    """Forwards at most one reading per interval to the backend.

    ``last_sent_at`` is updated before the upload is dispatched, so slow
    overlapping uploads never cause a burst of calls.
    """

    def __init__(
        self,
        sink: ReadingSink,
        interval_s: float = protocol.UPLOAD_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        executor: Optional[Executor] = None,
    ) -> None:
        """Initialize throttler.

        Args:
            sink: Backend exposing append_reading()
            interval_s: Minimum spacing between uploads in seconds. Default 1.0.
            clock: Monotonic time source (injectable for tests)
            executor: Where uploads run. Defaults to a small thread pool.
        """
        self._sink = sink
        self._interval_s = interval_s
        self._clock = clock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="Upload")
        self._lock = threading.Lock()
        self._last_sent_at: Optional[float] = None
        self._sent_count = 0
        self._failed_count = 0

    def offer(self, session_id: str, reading: Reading) -> bool:
        """Forward the reading if the interval has elapsed since the last upload.

        Returns immediately; the upload result is never awaited.

        Returns:
            True if an upload was dispatched
        """
        with self._lock:
            now = self._clock()
            if self._last_sent_at is not None and now - self._last_sent_at < self._interval_s:
                return False
            self._last_sent_at = now
            self._sent_count += 1

        future = self._executor.submit(self._sink.append_reading, session_id, reading)
        future.add_done_callback(self._on_upload_done)
        return True

    def _on_upload_done(self, future: Future) -> None:
        error = future.exception()
        if error is None:
            return
        with self._lock:
            self._failed_count += 1
        logger.warning(f"Dropped reading after failed upload: {error}")

    def reset(self) -> None:
        """Forget the last upload time so the next offer is sent."""
        with self._lock:
            self._last_sent_at = None

    def shutdown(self, wait: bool = True) -> None:
        """Stop the upload executor (only if this throttler created it)."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    @property
    def last_sent_at(self) -> Optional[float]:
        with self._lock:
            return self._last_sent_at

    @property
    def sent_count(self) -> int:
        """Uploads dispatched (successful or not)."""
        with self._lock:
            return self._sent_count

    @property
    def failed_count(self) -> int:
        with self._lock:
            return self._failed_count
