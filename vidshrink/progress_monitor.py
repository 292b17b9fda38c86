"""
Progress Monitor
Normalizes native encoder progress into a bounded, monotonic percentage and
synthesizes estimates while the encoder is silent.

Two sources feed one sink: native progress events and the fallback ticker.
The sink (emit) owns the non-decreasing invariant, so neither source can move
the displayed value backwards.
"""

import logging
import threading
import time
from typing import Callable, Optional

from .models import ProgressEvent, ProgressStage

logger = logging.getLogger(__name__)

START_PERCENT = 5
FINALIZING_PERCENT = 95
COMPLETE_PERCENT = 100


class ProgressMonitor:
    def __init__(self, callback: Optional[Callable[[ProgressEvent], None]] = None,
                 poll_interval: float = 2.0, fallback_ceiling: int = 90,
                 clock: Callable[[], float] = time.monotonic):
        self.callback = callback
        self.poll_interval = poll_interval
        self.fallback_ceiling = fallback_ceiling
        self._clock = clock

        self._lock = threading.RLock()
        self._last_percent = -1
        self._last_real_increase = clock()
        self._closed = False

        self._stop_fallback = threading.Event()
        self._fallback_thread: Optional[threading.Thread] = None

    @property
    def last_percent(self) -> int:
        return self._last_percent

    def emit(self, percent: int, stage: ProgressStage, message: str, estimated: bool = False) -> bool:
        """Forward the event only if it strictly increases the displayed percent"""
        percent = max(0, min(int(percent), COMPLETE_PERCENT))
        with self._lock:
            if self._closed or percent <= self._last_percent:
                return False
            self._last_percent = percent
            if not estimated:
                self._last_real_increase = self._clock()
            event = ProgressEvent(percent=percent, stage=stage, message=message, estimated=estimated)
            if self.callback:
                try:
                    self.callback(event)
                except Exception as e:
                    logger.warning(f"Progress callback raised: {e}")
        return True

    def on_native_progress(self, payload: dict):
        """Engine listener: map a 0.0-1.0 fraction into the 5-95 band.

        95 itself is reserved for the finalizing stage, so native progress tops out at 94.
        """
        try:
            fraction = float(payload.get('progress', 0.0))
        except (TypeError, ValueError):
            return
        fraction = max(0.0, min(fraction, 1.0))
        percent = round(START_PERCENT + fraction * (FINALIZING_PERCENT - START_PERCENT))
        percent = min(percent, FINALIZING_PERCENT - 1)
        self.emit(percent, ProgressStage.COMPRESSING, f"Compressing video... {percent}%")

    def tick(self) -> bool:
        """One fallback step: nudge the estimate if real progress has gone quiet"""
        with self._lock:
            if self._closed:
                return False
            quiet_for = self._clock() - self._last_real_increase
            if quiet_for < self.poll_interval:
                return False
            next_percent = max(self._last_percent + 1, START_PERCENT)
            if next_percent > self.fallback_ceiling:
                return False
            return self.emit(next_percent, ProgressStage.COMPRESSING,
                             f"Compressing video... {next_percent}% (estimated)", estimated=True)

    def start_fallback(self):
        if self._fallback_thread is not None:
            return
        self._stop_fallback.clear()
        self._fallback_thread = threading.Thread(target=self._run_fallback,
                                                 name='vidshrink-progress-fallback', daemon=True)
        self._fallback_thread.start()

    def _run_fallback(self):
        while not self._stop_fallback.wait(self.poll_interval):
            self.tick()

    def stop_fallback(self):
        thread = self._fallback_thread
        if thread is None:
            return
        self._stop_fallback.set()
        if thread is not threading.current_thread():
            thread.join(timeout=self.poll_interval + 1)
        self._fallback_thread = None

    def close(self):
        """Stop the fallback and drop every later event (cancelled or failed call)"""
        self.stop_fallback()
        with self._lock:
            self._closed = True
