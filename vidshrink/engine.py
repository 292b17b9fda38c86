"""
FFmpeg Engine
Process-wide wrapper around the ffmpeg/ffprobe toolchain exposing the
primitives the encode pipeline drives: load, working-storage file access,
probe, exec with progress/log events, and abort.

Loading is single-flight: concurrent first callers share one in-progress
initialization and a failed load leaves the engine Uninitialized so a later
call can try again.
"""

import atexit
import os
import platform
import shutil
import subprocess
import tempfile
import threading
import logging
from collections import deque
from concurrent.futures import Future
from enum import Enum
from typing import Callable, Dict, List, Optional

import psutil

from .errors import CompressionError, EncodeFailure, InitializationFailure, InvalidInput, UnsupportedEnvironment
from .ffmpeg_utils import FFmpegUtils
from .models import InputMetadata

logger = logging.getLogger(__name__)

# Lines of stderr kept for the diagnostic attached to EncodeFailure
DIAGNOSTIC_TAIL_LINES = 20


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class FFmpegEngine:
    EVENTS = ('progress', 'log')

    def __init__(self, ffmpeg_path: str = 'ffmpeg', ffprobe_path: str = 'ffprobe',
                 work_dir: Optional[str] = None, probe_timeout: float = 30,
                 abort_grace_seconds: float = 5):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.probe_timeout = probe_timeout
        self.abort_grace_seconds = abort_grace_seconds
        self._requested_work_dir = work_dir

        self.state = EngineState.UNINITIALIZED
        self.work_dir: Optional[str] = None
        self.encoders: Dict[str, str] = {}
        self.decoders: Dict[str, str] = {}
        self.version: Optional[str] = None

        self._state_lock = threading.Lock()
        self._init_future: Optional[Future] = None
        self._listeners: Dict[str, List[Callable[[dict], None]]] = {event: [] for event in self.EVENTS}
        self._listener_lock = threading.Lock()
        self._process_lock = threading.Lock()
        # Held by the encode pipeline for a whole stage/encode/extract session
        self.session_lock = threading.Lock()
        self._current_process: Optional[subprocess.Popen] = None
        # Set by an abort that lands before exec has spawned ffmpeg
        self._abort_pending = False

    @classmethod
    def from_config(cls, config_manager) -> 'FFmpegEngine':
        return cls(
            ffmpeg_path=config_manager.get('compression.engine.ffmpeg_path', 'ffmpeg'),
            ffprobe_path=config_manager.get('compression.engine.ffprobe_path', 'ffprobe'),
            work_dir=config_manager.get('compression.engine.work_dir'),
            probe_timeout=config_manager.get('compression.engine.probe_timeout_seconds', 30),
            abort_grace_seconds=config_manager.get('compression.engine.abort_grace_seconds', 5),
        )

    # ===== Lifecycle =====

    def is_supported(self) -> bool:
        """Whether both binaries can be found"""
        return shutil.which(self.ffmpeg_path) is not None and shutil.which(self.ffprobe_path) is not None

    @property
    def is_loaded(self) -> bool:
        return self.state is EngineState.READY

    def load(self):
        """Initialize once; concurrent callers wait on the same attempt"""
        with self._state_lock:
            if self.state is EngineState.READY:
                return
            owner = self._init_future is None
            if owner:
                self._init_future = Future()
                self.state = EngineState.INITIALIZING
            future = self._init_future

        if not owner:
            logger.debug("Engine initialization already in flight, waiting for it")
            future.result()
            return

        try:
            self._initialize()
        except Exception as e:
            with self._state_lock:
                self.state = EngineState.UNINITIALIZED
                self._init_future = None
            error = e if isinstance(e, CompressionError) else InitializationFailure(f"Failed to initialize FFmpeg: {e}")
            future.set_exception(error)
            logger.error(f"FFmpeg engine initialization failed: {error}")
            if error is e:
                raise
            raise error from e

        with self._state_lock:
            self.state = EngineState.READY
            self._init_future = None
        future.set_result(None)

    def _initialize(self):
        if not self.is_supported():
            raise UnsupportedEnvironment(
                f"FFmpeg toolchain not found (ffmpeg={self.ffmpeg_path!r}, ffprobe={self.ffprobe_path!r})"
            )

        try:
            result = subprocess.run([self.ffmpeg_path, '-hide_banner', '-version'],
                                    capture_output=True, text=True, encoding='utf-8',
                                    errors='replace', timeout=15)
        except (subprocess.TimeoutExpired, OSError) as e:
            raise InitializationFailure(f"FFmpeg did not respond: {e}") from e
        if result.returncode != 0:
            raise InitializationFailure(f"'ffmpeg -version' exited with code {result.returncode}")
        first_line = (result.stdout or '').splitlines()[:1]
        self.version = first_line[0] if first_line else 'unknown'

        self.encoders = self._list_codecs('-encoders')
        self.decoders = self._list_codecs('-decoders')

        if self._requested_work_dir:
            os.makedirs(self._requested_work_dir, exist_ok=True)
            self.work_dir = self._requested_work_dir
        else:
            self.work_dir = tempfile.mkdtemp(prefix='vidshrink-')
            atexit.register(shutil.rmtree, self.work_dir, True)

        logger.info(f"FFmpeg engine ready: {self.version}")
        logger.debug(f"Engine working storage: {self.work_dir}")
        logger.debug(f"System: {self.get_system_info()}")
        logger.debug(f"Detected {len(self.encoders)} encoders and {len(self.decoders)} decoders")

    def _list_codecs(self, flag: str) -> Dict[str, str]:
        try:
            result = subprocess.run([self.ffmpeg_path, '-hide_banner', flag],
                                    capture_output=True, text=True, encoding='utf-8',
                                    errors='replace', timeout=15)
        except (subprocess.TimeoutExpired, OSError) as e:
            raise InitializationFailure(f"Could not list FFmpeg {flag.lstrip('-')}: {e}") from e
        return FFmpegUtils.parse_codec_listing(result.stdout + result.stderr)

    @staticmethod
    def get_system_info() -> Dict[str, object]:
        """Get basic system information"""
        return {
            'platform': platform.system(),
            'architecture': platform.architecture()[0],
            'cpu_count': psutil.cpu_count(),
            'memory_gb': round(psutil.virtual_memory().total / (1024 ** 3), 2)
        }

    def has_encoder(self, name: str) -> bool:
        return name in self.encoders

    def has_decoder(self, name: str) -> bool:
        return name in self.decoders

    # ===== Working storage =====

    def _path(self, name: str) -> str:
        if self.work_dir is None:
            raise InitializationFailure("FFmpeg engine is not loaded")
        if not name or os.path.basename(name) != name or name in ('.', '..'):
            raise ValueError(f"Invalid working storage entry name: {name!r}")
        return os.path.join(self.work_dir, name)

    def write_file(self, name: str, data: bytes):
        with open(self._path(name), 'wb') as f:
            f.write(data)

    def read_file(self, name: str) -> bytes:
        with open(self._path(name), 'rb') as f:
            return f.read()

    def delete_file(self, name: str):
        try:
            os.remove(self._path(name))
        except FileNotFoundError:
            pass

    def list_files(self) -> List[str]:
        if self.work_dir is None:
            return []
        return sorted(os.listdir(self.work_dir))

    # ===== Events =====

    def on(self, event: str, handler: Callable[[dict], None]):
        with self._listener_lock:
            self._listeners[event].append(handler)

    def off(self, event: str, handler: Optional[Callable[[dict], None]] = None):
        """Remove one handler, or all handlers for the event when none is given"""
        with self._listener_lock:
            if handler is None:
                self._listeners[event].clear()
            elif handler in self._listeners[event]:
                self._listeners[event].remove(handler)

    def listener_count(self, event: str) -> int:
        with self._listener_lock:
            return len(self._listeners[event])

    def _emit(self, event: str, payload: dict):
        with self._listener_lock:
            handlers = list(self._listeners[event])
        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                logger.warning(f"{event} listener raised: {e}")

    # ===== Native operations =====

    def probe(self, name: str) -> InputMetadata:
        path = self._path(name)
        cmd = [self.ffprobe_path, '-v', 'quiet', '-print_format', 'json',
               '-show_format', '-show_streams', path]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, encoding='utf-8',
                                    errors='replace', timeout=self.probe_timeout)
        except subprocess.TimeoutExpired as e:
            raise InvalidInput(f"ffprobe timed out on {name}") from e
        except OSError as e:
            raise InitializationFailure(f"ffprobe could not be started: {e}") from e

        if result.returncode != 0:
            raise InvalidInput(f"ffprobe could not read {name}: {result.stderr.strip()[-300:]}")

        metadata = FFmpegUtils.parse_probe_output(result.stdout, os.path.getsize(path))
        if metadata is None:
            raise InvalidInput(f"No video stream found in {name}")
        return metadata

    def exec(self, args: List[str], duration: Optional[float] = None) -> int:
        """Run ffmpeg in the working storage directory, blocking until it exits"""
        cmd = [self.ffmpeg_path] + list(args)
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")
        tail = deque(maxlen=DIAGNOSTIC_TAIL_LINES)

        with self._process_lock:
            try:
                process = subprocess.Popen(
                    cmd,
                    cwd=self.work_dir,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    universal_newlines=True,
                    bufsize=1,
                    encoding='utf-8',
                    errors='replace'
                )
            except OSError as e:
                raise EncodeFailure("FFmpeg could not be started", diagnostic=str(e)) from e
            self._current_process = process
            if self._abort_pending:
                self._abort_pending = False
                logger.warning("Abort requested before FFmpeg started, killing it")
                process.kill()

        try:
            # Universal newlines split FFmpeg's carriage-return stats lines too
            for line in process.stderr:
                line = line.rstrip()
                if not line:
                    continue
                tail.append(line)
                self._emit('log', {'message': line})

                if duration:
                    current = FFmpegUtils.extract_progress_time(line)
                    if current is not None:
                        self._emit('progress', {'progress': max(0.0, min(current / duration, 1.0)),
                                                'time': current})
            returncode = process.wait()
        finally:
            with self._process_lock:
                if process.poll() is None:
                    process.kill()
                    process.wait()
                self._current_process = None

        if returncode != 0:
            raise EncodeFailure(f"FFmpeg exited with code {returncode}",
                                diagnostic='\n'.join(tail), returncode=returncode)
        return returncode

    def reset_abort(self):
        """Forget an abort left over from an earlier encode"""
        with self._process_lock:
            self._abort_pending = False

    def abort(self) -> bool:
        """Terminate the running ffmpeg. Returns True if one was stopped.

        With no process yet, the next exec kills its ffmpeg as soon as it spawns.
        """
        with self._process_lock:
            process = self._current_process
            if process is None:
                self._abort_pending = True
                return False
            if process.poll() is not None:
                return False
            try:
                # Try graceful termination first
                process.terminate()
                try:
                    process.wait(timeout=self.abort_grace_seconds)
                except subprocess.TimeoutExpired:
                    logger.warning("FFmpeg process did not terminate gracefully, forcing kill...")
                    process.kill()
                    process.wait()
            except OSError as e:
                logger.error(f"Error terminating FFmpeg process: {e}")
                return False
        logger.info("FFmpeg process terminated")
        return True


_engine: Optional[FFmpegEngine] = None
_engine_lock = threading.Lock()


def get_engine(config_manager=None) -> FFmpegEngine:
    """Return the process-wide engine, constructing it (unloaded) on first use"""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = FFmpegEngine.from_config(config_manager) if config_manager else FFmpegEngine()
        return _engine


def reset_engine():
    """Forget the process-wide engine (tests and reconfiguration)"""
    global _engine
    with _engine_lock:
        _engine = None
