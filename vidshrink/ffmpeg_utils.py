"""
FFmpeg Utilities Module
Shared helpers for FFmpeg command building and ffprobe/stderr parsing
"""

import json
import logging
from fractions import Fraction
from typing import Dict, Any, List, Optional

from .codec_catalog import AUDIO_BITRATE_KBPS
from .models import EncodePlan, InputMetadata

logger = logging.getLogger(__name__)


class FFmpegUtils:
    """Shared utilities for FFmpeg operations"""

    @staticmethod
    def parse_fps(rate_str: str) -> Optional[float]:
        """Safely parse FFmpeg r_frame_rate like '30000/1001' into float FPS."""
        if not rate_str:
            return None
        try:
            fps = float(Fraction(rate_str))
        except (ValueError, ZeroDivisionError):
            try:
                fps = float(rate_str)
            except ValueError:
                return None
        return fps if fps > 0 else None

    @staticmethod
    def parse_time_to_seconds(time_str: str) -> Optional[float]:
        """Parse FFmpeg 'time=HH:MM:SS.ms' values; None for N/A or garbage"""
        if not time_str or time_str.startswith('N/A') or time_str.startswith('-'):
            return None
        parts = time_str.split(':')
        try:
            if len(parts) == 3:
                hours, minutes, seconds = parts
                return float(hours) * 3600 + float(minutes) * 60 + float(seconds)
            return float(time_str)
        except ValueError:
            return None

    @staticmethod
    def extract_progress_time(line: str) -> Optional[float]:
        """Pull the encoded-timestamp out of an FFmpeg stats line"""
        if 'time=' not in line:
            return None
        time_str = line.split('time=')[1].split()
        if not time_str:
            return None
        return FFmpegUtils.parse_time_to_seconds(time_str[0])

    @staticmethod
    def parse_probe_output(stdout_text: str, size_bytes: int) -> Optional[InputMetadata]:
        """Turn `ffprobe -print_format json -show_format -show_streams` output into metadata.

        Returns None when there is no usable video stream.
        """
        try:
            data = json.loads(stdout_text) if stdout_text and stdout_text.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Unparseable ffprobe output: {e}")
            return None

        video_stream = None
        has_audio = False
        for stream in data.get('streams', []):
            if stream.get('codec_type') == 'video' and video_stream is None:
                video_stream = stream
            elif stream.get('codec_type') == 'audio':
                has_audio = True

        if not video_stream:
            return None

        try:
            width = int(video_stream.get('width', 0))
            height = int(video_stream.get('height', 0))
        except (TypeError, ValueError):
            return None
        if width <= 0 or height <= 0:
            return None

        duration = None
        for candidate in (data.get('format', {}).get('duration'), video_stream.get('duration')):
            try:
                if candidate not in (None, 'N/A') and float(candidate) > 0:
                    duration = float(candidate)
                    break
            except (TypeError, ValueError):
                continue

        return InputMetadata(
            width=width,
            height=height,
            size_bytes=size_bytes,
            duration=duration,
            fps=FFmpegUtils.parse_fps(video_stream.get('r_frame_rate', '')),
            has_audio=has_audio,
            codec=video_stream.get('codec_name', 'unknown'),
        )

    @staticmethod
    def add_video_settings(cmd: List[str], plan: EncodePlan) -> List[str]:
        """Add encoder, effort and quality/bitrate settings"""
        params = plan.quality_params
        cmd.extend(['-map', '0:v:0', '-c:v', plan.codec.encoder_name])
        cmd.extend([params.effort_flag, params.effort_value])

        if params.is_bitrate_driven:
            FFmpegUtils.add_bitrate_control(cmd, params.bitrate_kbps)
        else:
            cmd.extend(['-crf', str(params.crf)])

        cmd.extend(params.extra_args)
        return cmd

    @staticmethod
    def add_bitrate_control(cmd: List[str], bitrate_kbps: int, buffer_multiplier: float = 2.0) -> List[str]:
        """Add explicit bitrate target with a matching cap and VBV buffer"""
        cmd.extend(['-b:v', f"{bitrate_kbps}k"])
        cmd.extend(['-maxrate', f"{bitrate_kbps}k"])
        cmd.extend(['-bufsize', f"{int(bitrate_kbps * buffer_multiplier)}k"])
        return cmd

    @staticmethod
    def add_audio_settings(cmd: List[str], plan: EncodePlan) -> List[str]:
        """Map only the first audio track, if any, and re-encode it"""
        cmd.extend(['-map', '0:a:0?', '-c:a', plan.codec.audio_encoder, '-b:a', f"{AUDIO_BITRATE_KBPS}k"])
        return cmd

    @staticmethod
    def add_output_optimizations(cmd: List[str], plan: EncodePlan, output_name: str) -> List[str]:
        """Strip metadata, scale, keyframe policy and container layout"""
        cmd.extend(['-map_metadata', '-1'])

        # Only add scale filter if we're actually scaling
        if plan.needs_scaling:
            cmd.extend(['-vf', f"scale={plan.output_width}:{plan.output_height}"])

        cmd.extend(['-threads', '0', '-pix_fmt', 'yuv420p'])

        if plan.codec.file_extension == 'mp4':
            cmd.extend(['-movflags', '+faststart'])

        cmd.extend([
            '-g', str(plan.keyframe_interval),
            '-keyint_min', str(plan.keyframe_min_interval),
            '-sc_threshold', '0',
        ])
        cmd.append(output_name)
        return cmd

    @staticmethod
    def build_encode_command(input_name: str, output_name: str, plan: EncodePlan) -> List[str]:
        """Build the ffmpeg argument list (without the binary) for one encode"""
        cmd = ['-hide_banner', '-nostdin', '-y', '-i', input_name]
        FFmpegUtils.add_video_settings(cmd, plan)
        FFmpegUtils.add_audio_settings(cmd, plan)
        FFmpegUtils.add_output_optimizations(cmd, plan, output_name)
        return cmd

    @staticmethod
    def parse_codec_listing(output: str) -> Dict[str, Any]:
        """Parse `ffmpeg -encoders` / `-decoders` listings into {name: flags}"""
        entries = {}
        in_body = False
        for line in output.splitlines():
            stripped = line.strip()
            if stripped.startswith('------'):
                in_body = True
                continue
            if not in_body or not stripped:
                continue
            parts = stripped.split(None, 2)
            if len(parts) >= 2:
                entries[parts[1]] = parts[0]
        return entries
