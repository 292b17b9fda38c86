"""vidshrink package root.

Export primary classes and CLI for convenience when installed via pip.
"""

from .cli import main as cli_main  # noqa: F401
from .video_compressor import VideoCompressor, CompressionJob  # noqa: F401
from .cancellation import CancellationToken  # noqa: F401
from .capability import CapabilityProber, StaticCapabilityProber, FFmpegCapabilityProber, CodecNegotiator  # noqa: F401
from .config_manager import ConfigManager  # noqa: F401
from .engine import FFmpegEngine, get_engine, reset_engine  # noqa: F401
from .errors import (  # noqa: F401
    CompressionError, UnsupportedEnvironment, InitializationFailure, EncodeFailure,
    InvalidInput, Cancelled, TimedOut, ErrorCategory,
)
from .models import CompressionOptions, CompressionResult, ProgressEvent, ProgressStage, QualityPreset  # noqa: F401
