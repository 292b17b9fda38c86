"""
Data model for the compression pipeline
Options, input metadata, encode plans, progress events and results
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class QualityPreset(Enum):
    FAST = "fast"
    BALANCED = "balanced"
    HIGH = "high"

    @classmethod
    def parse(cls, value) -> 'QualityPreset':
        """Accept a preset, its string value or None (balanced)."""
        if value is None:
            return cls.BALANCED
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown quality preset: {value!r} (expected fast, balanced or high)")


class ProgressStage(Enum):
    LOADING = "loading"
    COMPRESSING = "compressing"
    FINALIZING = "finalizing"


@dataclass(frozen=True)
class CodecDescriptor:
    """One negotiable output codec and its container"""
    codec_id: str
    encoder_name: str
    container_mime_type: str
    file_extension: str
    audio_encoder: str = 'aac'


@dataclass
class CompressionOptions:
    """Caller-supplied knobs; every field is optional"""
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    max_bitrate_mbps: Optional[float] = None
    quality_preset: QualityPreset = QualityPreset.BALANCED

    def __post_init__(self):
        self.quality_preset = QualityPreset.parse(self.quality_preset)
        for name in ('max_width', 'max_height', 'max_bitrate_mbps'):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class InputMetadata:
    """What the planner needs to know about the source"""
    width: int
    height: int
    size_bytes: int
    duration: Optional[float] = None
    fps: Optional[float] = None
    has_audio: bool = True
    codec: str = 'unknown'

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


@dataclass(frozen=True)
class QualityParams:
    """Encoder effort plus exactly one of a CRF or a bitrate target"""
    effort_flag: str
    effort_value: str
    crf: Optional[int] = None
    bitrate_kbps: Optional[int] = None
    extra_args: tuple = ()

    @property
    def is_bitrate_driven(self) -> bool:
        return self.bitrate_kbps is not None


@dataclass(frozen=True)
class EncodePlan:
    codec: CodecDescriptor
    output_width: int
    output_height: int
    quality_params: QualityParams
    time_budget_seconds: float
    source_width: int = 0
    source_height: int = 0
    keyframe_interval: int = 120
    keyframe_min_interval: int = 60

    @property
    def needs_scaling(self) -> bool:
        return (self.output_width, self.output_height) != (self.source_width, self.source_height)


@dataclass(frozen=True)
class ProgressEvent:
    percent: int
    stage: ProgressStage
    message: str
    estimated: bool = False


@dataclass(frozen=True)
class CompressionResult:
    """Completed artifact plus size metrics. Never partial."""
    output_bytes: bytes = field(repr=False)
    original_size_bytes: int
    compressed_size_bytes: int
    compression_ratio_percent: float
    codec_id: str
    mime_type: str
    file_extension: str
    output_filename: str
    output_width: int
    output_height: int

    def to_dict(self) -> dict:
        return {
            'output_filename': self.output_filename,
            'original_size_bytes': self.original_size_bytes,
            'compressed_size_bytes': self.compressed_size_bytes,
            'compression_ratio_percent': round(self.compression_ratio_percent, 2),
            'codec_id': self.codec_id,
            'mime_type': self.mime_type,
            'file_extension': self.file_extension,
            'output_width': self.output_width,
            'output_height': self.output_height,
        }


def even_floor(value: float) -> int:
    """Floor to the nearest even integer, never below 2."""
    result = int(value)
    if result % 2:
        result -= 1
    return max(result, 2)
