"""
Video Compression Module
Public entry point: negotiate a codec, plan the encode and drive the pipeline,
reporting progress and honoring cancellation throughout.
"""

import math
import os
import threading
import logging
from concurrent.futures import Future
from typing import Callable, Optional

from .cancellation import CancellationToken
from .capability import CapabilityProber, CodecNegotiator, create_prober
from .config_manager import ConfigManager
from .encode_pipeline import EncodePipeline
from .engine import get_engine
from .errors import Cancelled, CompressionError, InvalidInput, UnsupportedEnvironment
from .models import CompressionOptions, CompressionResult, ProgressEvent, ProgressStage
from .parameter_planner import ParameterPlanner
from .progress_monitor import COMPLETE_PERCENT, FINALIZING_PERCENT, START_PERCENT, ProgressMonitor

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class CompressionJob:
    """Handle for a compress call running on its own thread"""

    def __init__(self, token: CancellationToken):
        self.token = token
        self._future: Future = Future()

    def cancel(self):
        self.token.request_cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.is_cancelled

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> CompressionResult:
        """Block for the result; re-raises the call's CompressionError"""
        return self._future.result(timeout=timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self._future.exception(timeout=timeout)


class VideoCompressor:
    def __init__(self, config_manager: Optional[ConfigManager] = None, engine=None,
                 prober: Optional[CapabilityProber] = None, planner: Optional[ParameterPlanner] = None):
        self.config = config_manager or ConfigManager()
        self.engine = engine or get_engine(self.config)
        self.pipeline = EncodePipeline(
            self.engine,
            terminate_on_cancel=bool(self.config.get('compression.cancellation.terminate_on_cancel', False)),
        )
        self.negotiator = CodecNegotiator(prober or create_prober(self.config, self.engine))
        self.planner = planner or ParameterPlanner.from_config(self.config)
        self.poll_interval = self.config.get('compression.progress.poll_interval_seconds', 2)
        self.fallback_ceiling = self.config.get('compression.progress.fallback_ceiling', 90)

        self._token_lock = threading.Lock()
        self._current_token: Optional[CancellationToken] = None

        # Statistics
        self._stats_lock = threading.Lock()
        self.stats = {
            'total_compressions': 0,
            'successful_compressions': 0,
            'failed_compressions': 0,
            'cancelled_compressions': 0,
        }

    def _count(self, key: str):
        with self._stats_lock:
            self.stats[key] += 1

    def is_supported(self) -> bool:
        return self.engine.is_supported()

    @staticmethod
    def estimate_compression_time(file_size_mb: float) -> int:
        """Rough estimate in seconds: about one minute per 50MB"""
        return int(math.ceil((file_size_mb / 50) * 60))

    def cancel(self):
        """Cancel the most recent compress call made through this instance"""
        with self._token_lock:
            token = self._current_token
        if token is not None:
            token.request_cancel()

    def start(self, file_bytes: bytes, filename: str, options: Optional[CompressionOptions] = None,
              on_progress: Optional[ProgressCallback] = None) -> CompressionJob:
        """Run compress() on a worker thread and return a cancellable handle"""
        job = CompressionJob(CancellationToken())

        def _run():
            if not job._future.set_running_or_notify_cancel():
                return
            try:
                job._future.set_result(self.compress(file_bytes, filename, options, on_progress, job.token))
            except BaseException as e:
                job._future.set_exception(e)

        threading.Thread(target=_run, name=f'vidshrink-job-{filename}', daemon=True).start()
        return job

    def compress(self, file_bytes: bytes, filename: str, options: Optional[CompressionOptions] = None,
                 on_progress: Optional[ProgressCallback] = None,
                 token: Optional[CancellationToken] = None) -> CompressionResult:
        """Compress one video held in memory.

        Returns a complete CompressionResult or raises a CompressionError
        (UnsupportedEnvironment, InitializationFailure, InvalidInput,
        EncodeFailure, Cancelled, TimedOut). Partial output is never returned.
        """
        token = token or CancellationToken()
        with self._token_lock:
            self._current_token = token
        options = options or CompressionOptions()
        monitor = ProgressMonitor(on_progress, poll_interval=self.poll_interval,
                                  fallback_ceiling=self.fallback_ceiling)
        self._count('total_compressions')

        try:
            if not file_bytes:
                raise InvalidInput(f"Input file is empty: {filename}")
            if not self.engine.is_supported():
                raise UnsupportedEnvironment("Video compression needs ffmpeg and ffprobe on PATH")

            monitor.emit(0, ProgressStage.LOADING, 'Loading video file...')
            with self.pipeline.session(token) as session:
                codec = self.negotiator.negotiate()
                session.stage(file_bytes, filename)
                metadata = session.probe()
                plan = self.planner.plan(metadata, options, codec)

                monitor.emit(START_PERCENT, ProgressStage.COMPRESSING, 'Starting compression...')
                monitor.start_fallback()
                try:
                    session.encode(plan, monitor.on_native_progress)
                finally:
                    monitor.stop_fallback()

                monitor.emit(FINALIZING_PERCENT, ProgressStage.FINALIZING, 'Finalizing compressed video...')
                output_bytes = session.extract()

            result = self._build_result(output_bytes, len(file_bytes), filename, plan)
        except CompressionError as e:
            monitor.close()
            if isinstance(e, Cancelled):
                self._count('cancelled_compressions')
                logger.info(f"Compression of {filename} cancelled")
            else:
                self._count('failed_compressions')
                logger.error(f"Compression of {filename} failed: {e}")
            raise
        finally:
            with self._token_lock:
                if self._current_token is token:
                    self._current_token = None

        monitor.emit(COMPLETE_PERCENT, ProgressStage.FINALIZING, 'Compression complete!')
        monitor.close()
        self._count('successful_compressions')
        logger.info(f"Compressed {filename}: {result.original_size_bytes / 1024 / 1024:.2f}MB -> "
                    f"{result.compressed_size_bytes / 1024 / 1024:.2f}MB "
                    f"({result.compression_ratio_percent:.1f}% smaller, {result.codec_id})")
        return result

    @staticmethod
    def _build_result(output_bytes: bytes, original_size: int, filename: str, plan) -> CompressionResult:
        compressed_size = len(output_bytes)
        ratio = ((original_size - compressed_size) / original_size) * 100 if original_size else 0.0
        stem = os.path.splitext(os.path.basename(filename))[0] or 'video'
        return CompressionResult(
            output_bytes=output_bytes,
            original_size_bytes=original_size,
            compressed_size_bytes=compressed_size,
            compression_ratio_percent=ratio,
            codec_id=plan.codec.codec_id,
            mime_type=plan.codec.container_mime_type,
            file_extension=plan.codec.file_extension,
            output_filename=f"{stem}.{plan.codec.file_extension}",
            output_width=plan.output_width,
            output_height=plan.output_height,
        )
