"""
Codec Catalog
Built-in output codecs in negotiation priority order, and the per-codec
quality tables the planner draws encoder settings from.
"""

from typing import Dict, Any, List

from .models import CodecDescriptor, QualityPreset

H265 = CodecDescriptor(
    codec_id='h265',
    encoder_name='libx265',
    container_mime_type='video/mp4',
    file_extension='mp4',
    audio_encoder='aac',
)

VP9 = CodecDescriptor(
    codec_id='vp9',
    encoder_name='libvpx-vp9',
    container_mime_type='video/webm',
    file_extension='webm',
    audio_encoder='libopus',
)

H264 = CodecDescriptor(
    codec_id='h264',
    encoder_name='libx264',
    container_mime_type='video/mp4',
    file_extension='mp4',
    audio_encoder='aac',
)

# High-efficiency -> royalty-free -> universal fallback
PRIORITY: List[CodecDescriptor] = [H265, VP9, H264]
FALLBACK = H264

# Decoder names as listed by `ffmpeg -decoders` for each elementary stream
DECODER_NAMES: Dict[str, str] = {
    'h265': 'hevc',
    'vp9': 'vp9',
    'h264': 'h264',
}

# effort_flag: encoder option controlling speed/effort
# effort: per preset; the 'fast' entry is always the fastest value the encoder accepts
# crf: per preset constant-quality value
# cq_args: only valid in constant-quality mode
QUALITY_TABLE: Dict[str, Dict[str, Any]] = {
    'h264': {
        'effort_flag': '-preset',
        'effort': {QualityPreset.FAST: 'ultrafast', QualityPreset.BALANCED: 'ultrafast', QualityPreset.HIGH: 'medium'},
        'crf': {QualityPreset.FAST: 32, QualityPreset.BALANCED: 30, QualityPreset.HIGH: 20},
        'extra_args': ('-tune', 'fastdecode', '-profile:v', 'baseline', '-level', '4.0'),
        'cq_args': (),
    },
    'h265': {
        'effort_flag': '-preset',
        'effort': {QualityPreset.FAST: 'ultrafast', QualityPreset.BALANCED: 'ultrafast', QualityPreset.HIGH: 'medium'},
        'crf': {QualityPreset.FAST: 32, QualityPreset.BALANCED: 26, QualityPreset.HIGH: 22},
        # Safari only plays HEVC in MP4 with the hvc1 sample entry
        'extra_args': ('-tag:v', 'hvc1'),
        'cq_args': (),
    },
    'vp9': {
        'effort_flag': '-speed',
        'effort': {QualityPreset.FAST: '8', QualityPreset.BALANCED: '4', QualityPreset.HIGH: '1'},
        'crf': {QualityPreset.FAST: 40, QualityPreset.BALANCED: 32, QualityPreset.HIGH: 24},
        'extra_args': ('-row-mt', '1'),
        # libvpx needs an explicit zero bitrate for pure constant quality
        'cq_args': ('-b:v', '0'),
    },
}

AUDIO_BITRATE_KBPS = 96


def get_codec(codec_id: str) -> CodecDescriptor:
    """Look up a built-in descriptor by id."""
    for codec in PRIORITY:
        if codec.codec_id == codec_id:
            return codec
    raise KeyError(f"Unknown codec id: {codec_id!r} (known: {', '.join(c.codec_id for c in PRIORITY)})")


def fastest_effort(codec_id: str) -> str:
    return QUALITY_TABLE[codec_id]['effort'][QualityPreset.FAST]
