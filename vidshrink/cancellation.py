"""
Cancellation & Timeout Controller
Cooperative cancellation checked at suspension points, plus a wall-clock
deadline raced against the native encode call.

The encode itself is never preempted on cancellation: a running ffmpeg is
left to finish and its output discarded. Only deadline expiry (or an explicit
terminate-on-cancel policy) stops the process.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, List, Optional

from .errors import Cancelled, CompressionError, TimedOut

logger = logging.getLogger(__name__)


class CancellationToken:
    """Out-of-band cancel flag passed alongside a compress call"""

    def __init__(self):
        self._event = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def request_cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        logger.info("Cancellation requested")
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback raised: {e}")

    def on_cancel(self, callback: Callable[[], None]):
        """Run callback on cancellation (immediately if already cancelled)"""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def raise_if_cancelled(self, checkpoint: str = ''):
        if self._event.is_set():
            if checkpoint:
                logger.debug(f"Cancellation observed at checkpoint: {checkpoint}")
            raise Cancelled()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class TimeoutController:
    """Runs a blocking call on a dedicated worker and races it against a deadline"""

    def __init__(self, poll_interval: float = 0.25, clock: Callable[[], float] = time.monotonic,
                 abort_wait_seconds: float = 10.0):
        self.poll_interval = poll_interval
        self.abort_wait_seconds = abort_wait_seconds
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='vidshrink-encode')

    def run(self, func: Callable[[], object], budget_seconds: float,
            on_timeout: Optional[Callable[[], None]] = None):
        """Return func()'s result, re-raise its error, or raise TimedOut.

        on_timeout is called once the deadline passes and should stop the
        native work; the worker is then given a bounded grace period to unwind.
        """
        future: Future = self._executor.submit(func)
        deadline = self._clock() + budget_seconds

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            try:
                return future.result(timeout=min(self.poll_interval, remaining))
            except FutureTimeout:
                continue

        logger.warning(f"Encode exceeded its {budget_seconds:.0f}s budget, stopping it")
        if on_timeout:
            on_timeout()
        try:
            future.result(timeout=self.abort_wait_seconds)
        except FutureTimeout:
            logger.error("Encode worker did not stop after timeout; abandoning it")
        except CompressionError as e:
            # The aborted process usually fails; the timeout is what the caller sees
            logger.debug(f"Aborted encode ended with: {e}")
        raise TimedOut(budget_seconds)

    def shutdown(self):
        self._executor.shutdown(wait=False)
