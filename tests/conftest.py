"""
Shared fixtures: an FFmpegEngine stand-in that never spawns ffmpeg.

It keeps the real working-storage, listener and single-flight load code and
replaces only the parts that would touch the FFmpeg binaries.
"""

import os
import threading
import time

import pytest

from vidshrink.engine import FFmpegEngine, reset_engine
from vidshrink.errors import EncodeFailure
from vidshrink.models import InputMetadata

FULL_ENCODERS = {'libx264': 'V....D', 'libx265': 'V....D', 'libvpx-vp9': 'V....D', 'aac': 'A....D',
                 'libopus': 'A....D'}
FULL_DECODERS = {'h264': 'VFS..D', 'hevc': 'VFS..D', 'vp9': 'VFS..D'}


class FakeEngine(FFmpegEngine):
    def __init__(self, work_dir, metadata=None, output_bytes=b'compressed-video',
                 encoders=None, decoders=None, progress_fractions=(0.25, 0.5, 1.0)):
        super().__init__(work_dir=work_dir, abort_grace_seconds=0.1)
        self.supported = True
        self.metadata = metadata or InputMetadata(width=1920, height=1080, size_bytes=10 * 1024 * 1024,
                                                  duration=10.0, fps=30.0)
        self.output_bytes = output_bytes
        self.fake_encoders = dict(FULL_ENCODERS if encoders is None else encoders)
        self.fake_decoders = dict(FULL_DECODERS if decoders is None else decoders)
        self.progress_fractions = progress_fractions

        self.init_calls = 0
        self.init_delay = 0.0
        self.init_error = None
        self.probe_error = None
        self.exec_error = None
        self.write_output = True
        self.exec_calls = []
        self.exec_started = threading.Event()
        # When set to an Event, exec blocks until it is set (or abort is called)
        self.exec_release = None
        self.aborted = threading.Event()
        self.files_during_exec = []

    def is_supported(self):
        return self.supported

    def _initialize(self):
        self.init_calls += 1
        if self.init_delay:
            time.sleep(self.init_delay)
        if self.init_error is not None:
            raise self.init_error
        os.makedirs(self._requested_work_dir, exist_ok=True)
        self.work_dir = self._requested_work_dir
        self.version = 'ffmpeg version 6.1-fake'
        self.encoders = dict(self.fake_encoders)
        self.decoders = dict(self.fake_decoders)

    def probe(self, name):
        self._path(name)
        if self.probe_error is not None:
            raise self.probe_error
        return self.metadata

    def exec(self, args, duration=None):
        self.exec_calls.append(list(args))
        self.files_during_exec = self.list_files()
        self.exec_started.set()
        for fraction in self.progress_fractions:
            self._emit('progress', {'progress': fraction, 'time': fraction * (duration or 0)})

        if self.exec_release is not None:
            self.exec_release.wait(10)
        if self.aborted.is_set():
            raise EncodeFailure("FFmpeg exited with code 255", diagnostic='Exiting normally, received signal 15.',
                                returncode=255)
        if self.exec_error is not None:
            raise self.exec_error
        if self.write_output:
            self.write_file(args[-1], self.output_bytes)
        return 0

    def abort(self):
        self.aborted.set()
        if self.exec_release is not None:
            self.exec_release.set()
        return True


@pytest.fixture(autouse=True)
def _fresh_engine_singleton():
    reset_engine()
    yield
    reset_engine()


@pytest.fixture
def make_engine(tmp_path):
    def _make(**kwargs):
        return FakeEngine(str(tmp_path / 'work'), **kwargs)
    return _make


@pytest.fixture
def fake_engine(make_engine):
    return make_engine()
