"""
Encode Pipeline
Owns the engine lifecycle around one encode: lazy load, staging the input into
working storage, issuing the encode command, extracting the output and
cleaning up whatever was staged, on every exit path.

The engine and its working storage are process-wide, so sessions are
serialized on the engine's session lock: one encode in flight at a time.
"""

import logging
import os
import re
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, List, Optional

from .cancellation import CancellationToken, TimeoutController
from .errors import Cancelled, CompressionError, EncodeFailure
from .ffmpeg_utils import FFmpegUtils
from .models import EncodePlan, InputMetadata

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    STAGED = "staged"
    ENCODING = "encoding"
    EXTRACTING = "extracting"
    IDLE = "idle"
    CANCELLED = "cancelled"
    FAILED = "failed"


def _input_extension(filename: str) -> str:
    ext = os.path.splitext(filename or '')[1].lstrip('.').lower()
    return ext if ext and re.fullmatch(r'[a-z0-9]{1,8}', ext) else 'bin'


class EncodeSession:
    """One staged encode. Created by EncodePipeline.session(), never directly."""

    def __init__(self, pipeline: 'EncodePipeline', token: CancellationToken):
        self.pipeline = pipeline
        self.engine = pipeline.engine
        self.token = token
        self.input_name: Optional[str] = None
        self.output_name: Optional[str] = None
        self.input_size = 0
        self.metadata: Optional[InputMetadata] = None
        self._staged: List[str] = []
        self._listener: Optional[Callable[[dict], None]] = None

    def stage(self, input_bytes: bytes, filename: str = 'input.mp4'):
        """Ready -> Staged: write the input into working storage"""
        self.token.raise_if_cancelled('before staging')
        self.input_name = f"input.{_input_extension(filename)}"
        self._staged.append(self.input_name)
        self.engine.write_file(self.input_name, input_bytes)
        self.input_size = len(input_bytes)
        self.pipeline._set_state(PipelineState.STAGED)
        logger.debug(f"Staged {self.input_size} bytes as {self.input_name}")
        self.token.raise_if_cancelled('after staging')

    def probe(self) -> InputMetadata:
        if self.input_name is None:
            raise RuntimeError("Nothing staged to probe")
        self.metadata = self.engine.probe(self.input_name)
        logger.debug(f"Input metadata: {self.metadata}")
        return self.metadata

    def encode(self, plan: EncodePlan, on_native_progress: Optional[Callable[[dict], None]] = None):
        """Staged -> Encoding: run the encode command, racing the plan's time budget"""
        if self.input_name is None:
            raise RuntimeError("Nothing staged to encode")
        self.token.raise_if_cancelled('before encoding')

        self.output_name = f"output.{plan.codec.file_extension}"
        self._staged.append(self.output_name)
        args = FFmpegUtils.build_encode_command(self.input_name, self.output_name, plan)
        duration = self.metadata.duration if self.metadata else None

        # Attach before issuing the command so early events are not missed
        if on_native_progress is not None:
            self._listener = on_native_progress
            self.engine.on('progress', on_native_progress)

        abort_on_cancel = self.engine.abort if self.pipeline.terminate_on_cancel else None
        if abort_on_cancel:
            self.token.on_cancel(abort_on_cancel)

        self.engine.reset_abort()
        self.pipeline._set_state(PipelineState.ENCODING)
        logger.info(f"Encoding {plan.source_width}x{plan.source_height} -> "
                    f"{plan.output_width}x{plan.output_height} with {plan.codec.encoder_name}")
        try:
            self.pipeline.timeout_controller.run(
                lambda: self.engine.exec(args, duration=duration),
                plan.time_budget_seconds,
                on_timeout=self.engine.abort,
            )
        except EncodeFailure:
            # A process aborted by cancellation fails; report the cancellation instead
            self.token.raise_if_cancelled('encode aborted')
            raise
        finally:
            if abort_on_cancel:
                self.token.remove_callback(abort_on_cancel)
            self._remove_listener()

        # The native call ran to completion; a cancel that arrived meanwhile still wins
        self.token.raise_if_cancelled('after encoding')

    def extract(self) -> bytes:
        """Encoding -> Extracting: read the produced artifact"""
        if self.output_name is None:
            raise RuntimeError("Nothing encoded to extract")
        self.token.raise_if_cancelled('before extraction')
        self.pipeline._set_state(PipelineState.EXTRACTING)
        try:
            data = self.engine.read_file(self.output_name)
        except FileNotFoundError as e:
            raise EncodeFailure("FFmpeg reported success but produced no output",
                                diagnostic=self.output_name) from e
        if not data:
            raise EncodeFailure("FFmpeg produced an empty output file", diagnostic=self.output_name)
        self.token.raise_if_cancelled('after extraction')
        return data

    def _remove_listener(self):
        if self._listener is not None:
            self.engine.off('progress', self._listener)
            self._listener = None

    def cleanup(self):
        """Delete every staged entry and listener; safe to call more than once"""
        self._remove_listener()
        for name in self._staged:
            try:
                self.engine.delete_file(name)
            except OSError as e:
                logger.warning(f"Could not delete working storage entry {name}: {e}")
        if self._staged:
            logger.debug(f"Cleaned up working storage entries: {', '.join(self._staged)}")
        self._staged = []


class EncodePipeline:
    def __init__(self, engine, timeout_controller: Optional[TimeoutController] = None,
                 terminate_on_cancel: bool = False):
        self.engine = engine
        self.timeout_controller = timeout_controller or TimeoutController()
        self.terminate_on_cancel = terminate_on_cancel
        self._state = PipelineState.UNINITIALIZED
        self._state_lock = threading.Lock()
        self._active_token: Optional[CancellationToken] = None

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            if self._state in (PipelineState.UNINITIALIZED, PipelineState.INITIALIZING) and self.engine.is_loaded:
                return PipelineState.READY
            return self._state

    def _set_state(self, state: PipelineState):
        with self._state_lock:
            self._state = state

    def ensure_loaded(self):
        """Uninitialized -> Initializing -> Ready, at most once per engine"""
        if self.engine.is_loaded:
            return
        self._set_state(PipelineState.INITIALIZING)
        try:
            self.engine.load()
        except CompressionError:
            self._set_state(PipelineState.UNINITIALIZED)
            raise
        self._set_state(PipelineState.READY)

    def cancel(self):
        """Cancel the encode currently holding the engine, if any"""
        token = self._active_token
        if token is not None:
            token.request_cancel()

    @contextmanager
    def session(self, token: Optional[CancellationToken] = None) -> Iterator[EncodeSession]:
        token = token or CancellationToken()
        token.raise_if_cancelled('before initialization')
        self.ensure_loaded()

        with self.engine.session_lock:
            self._active_token = token
            session = EncodeSession(self, token)
            try:
                token.raise_if_cancelled('session start')
                self._set_state(PipelineState.READY)
                yield session
                self._set_state(PipelineState.IDLE)
            except Cancelled:
                self._set_state(PipelineState.CANCELLED)
                raise
            except CompressionError:
                self._set_state(PipelineState.FAILED)
                raise
            except OSError as e:
                self._set_state(PipelineState.FAILED)
                raise EncodeFailure("Working storage operation failed", diagnostic=str(e)) from e
            except Exception as e:
                self._set_state(PipelineState.FAILED)
                raise EncodeFailure("FFmpeg engine error", diagnostic=f"{type(e).__name__}: {e}") from e
            finally:
                session.cleanup()
                self._active_token = None

    def execute(self, input_bytes: bytes, plan: EncodePlan,
                on_native_progress: Optional[Callable[[dict], None]] = None,
                token: Optional[CancellationToken] = None, filename: str = 'input.mp4') -> bytes:
        """Stage, encode and extract in one call when the plan is already known"""
        with self.session(token) as session:
            session.stage(input_bytes, filename)
            session.probe()
            session.encode(plan, on_native_progress)
            return session.extract()
