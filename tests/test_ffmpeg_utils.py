"""
Tests for FFmpeg command construction and output parsing
"""

import json

import pytest

from vidshrink.codec_catalog import H264, H265, VP9
from vidshrink.ffmpeg_utils import FFmpegUtils
from vidshrink.models import CompressionOptions, InputMetadata
from vidshrink.parameter_planner import ParameterPlanner

MB = 1024 * 1024


def _plan(codec, width=1920, height=1080, size_mb=80, **options):
    metadata = InputMetadata(width=width, height=height, size_bytes=size_mb * MB, duration=12.0)
    return ParameterPlanner().plan(metadata, CompressionOptions(**options), codec)


def _value_after(cmd, flag):
    return cmd[cmd.index(flag) + 1]


def test_h264_command_layout():
    cmd = FFmpegUtils.build_encode_command('input.mov', 'output.mp4', _plan(H264))

    assert cmd[:5] == ['-hide_banner', '-nostdin', '-y', '-i', 'input.mov']
    assert cmd[-1] == 'output.mp4'
    assert _value_after(cmd, '-c:v') == 'libx264'
    assert _value_after(cmd, '-preset') == 'ultrafast'
    assert _value_after(cmd, '-crf') == '30'
    assert _value_after(cmd, '-tune') == 'fastdecode'
    assert _value_after(cmd, '-profile:v') == 'baseline'
    assert _value_after(cmd, '-vf') == 'scale=1280:720'
    assert _value_after(cmd, '-movflags') == '+faststart'
    assert _value_after(cmd, '-g') == '120'
    assert _value_after(cmd, '-keyint_min') == '60'
    assert _value_after(cmd, '-sc_threshold') == '0'
    assert _value_after(cmd, '-map_metadata') == '-1'
    assert _value_after(cmd, '-pix_fmt') == 'yuv420p'
    assert _value_after(cmd, '-c:a') == 'aac'
    assert _value_after(cmd, '-b:a') == '96k'
    # Audio mapping is optional so silent inputs still encode
    assert '0:a:0?' in cmd


def test_vp9_command_uses_webm_settings():
    cmd = FFmpegUtils.build_encode_command('input.mp4', 'output.webm', _plan(VP9))

    assert _value_after(cmd, '-c:v') == 'libvpx-vp9'
    assert _value_after(cmd, '-speed') == '4'
    assert _value_after(cmd, '-b:v') == '0'
    assert _value_after(cmd, '-row-mt') == '1'
    assert _value_after(cmd, '-c:a') == 'libopus'
    assert '-movflags' not in cmd


def test_hevc_command_tags_hvc1_for_safari():
    for options in ({}, {'max_bitrate_mbps': 1.5}):
        cmd = FFmpegUtils.build_encode_command('input.mp4', 'output.mp4', _plan(H265, **options))
        assert _value_after(cmd, '-c:v') == 'libx265'
        assert _value_after(cmd, '-tag:v') == 'hvc1'


def test_no_scale_filter_when_resolution_is_kept():
    cmd = FFmpegUtils.build_encode_command('input.mp4', 'output.mp4', _plan(H265, 640, 360, 5))
    assert '-vf' not in cmd


def test_bitrate_driven_command_has_no_crf():
    cmd = FFmpegUtils.build_encode_command('input.mp4', 'output.mp4', _plan(H265, max_bitrate_mbps=1.5))
    assert '-crf' not in cmd
    assert _value_after(cmd, '-b:v') == '1500k'
    assert _value_after(cmd, '-maxrate') == '1500k'
    assert _value_after(cmd, '-bufsize') == '3000k'


@pytest.mark.parametrize("rate,expected", [
    ('30/1', 30.0),
    ('30000/1001', 30000 / 1001),
    ('25', 25.0),
    ('0/0', None),
    ('', None),
    ('garbage', None),
])
def test_parse_fps(rate, expected):
    assert FFmpegUtils.parse_fps(rate) == expected


def test_progress_time_extraction():
    line = "frame=  240 fps= 60 q=28.0 size=    1024kB time=00:01:02.50 bitrate= 134.2kbits/s speed=2.01x"
    assert FFmpegUtils.extract_progress_time(line) == pytest.approx(62.5)
    assert FFmpegUtils.extract_progress_time("frame=    0 fps=0.0 q=0.0 size=0kB time=N/A bitrate=N/A") is None
    assert FFmpegUtils.extract_progress_time("Stream mapping:") is None


def test_parse_probe_output():
    probe = {
        'streams': [
            {'codec_type': 'video', 'codec_name': 'h264', 'width': 1920, 'height': 1080,
             'r_frame_rate': '30000/1001'},
            {'codec_type': 'audio', 'codec_name': 'aac'},
        ],
        'format': {'duration': '12.480000'},
    }
    metadata = FFmpegUtils.parse_probe_output(json.dumps(probe), 5 * MB)

    assert (metadata.width, metadata.height) == (1920, 1080)
    assert metadata.duration == pytest.approx(12.48)
    assert metadata.has_audio
    assert metadata.codec == 'h264'
    assert metadata.size_mb == pytest.approx(5.0)


def test_parse_probe_output_without_video_stream():
    probe = {'streams': [{'codec_type': 'audio'}], 'format': {'duration': '3.0'}}
    assert FFmpegUtils.parse_probe_output(json.dumps(probe), 100) is None
    assert FFmpegUtils.parse_probe_output('not json', 100) is None
    assert FFmpegUtils.parse_probe_output('', 100) is None


def test_parse_codec_listing():
    listing = """Encoders:
 V..... = Video
 A..... = Audio
 ------
 V....D libx264              libx264 H.264 / AVC / MPEG-4 AVC / MPEG-4 part 10 (codec h264)
 V....D libvpx-vp9           libvpx VP9 (codec vp9)
 A....D aac                  AAC (Advanced Audio Coding)
"""
    entries = FFmpegUtils.parse_codec_listing(listing)
    assert set(entries) == {'libx264', 'libvpx-vp9', 'aac'}
    assert entries['aac'] == 'A....D'
