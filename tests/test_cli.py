"""
CLI tests: argument parsing and the compress command against a fake engine
"""

import logging
import signal
from unittest.mock import patch

import pytest

from vidshrink.cli import VidshrinkCLI
from vidshrink.errors import ErrorCategory
from vidshrink.video_compressor import VideoCompressor


@pytest.fixture
def cli(fake_engine, tmp_path, monkeypatch):
    """CLI wired to the fake engine, with signal handlers and logging left alone"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(VidshrinkCLI, '_setup_signal_handlers', lambda self: None)
    monkeypatch.setattr('vidshrink.cli.setup_logging', lambda *a, **k: logging.getLogger('vidshrink'))

    original_init = VideoCompressor.__init__

    def init_with_fake_engine(self, config_manager=None, engine=None, prober=None, planner=None):
        original_init(self, config_manager, engine=fake_engine, prober=prober, planner=planner)

    monkeypatch.setattr(VideoCompressor, '__init__', init_with_fake_engine)
    return VidshrinkCLI()


def test_parse_compress_arguments():
    args = VidshrinkCLI()._parse_arguments(
        ['c', 'a.mp4', 'b.mov', '-o', 'out', '--quality', 'high', '--max-width', '1280', '--max-bitrate', '2.5',
         '--codec', 'vp9'])
    assert args.command == 'compress'
    assert args.inputs == ['a.mp4', 'b.mov']
    assert args.output_dir == 'out'
    assert args.quality == 'high'
    assert args.max_width == 1280
    assert args.max_bitrate == 2.5
    assert args.codec == 'vp9'


def test_parse_requires_a_command():
    with pytest.raises(SystemExit):
        VidshrinkCLI()._parse_arguments([])


def test_compress_writes_output_files(cli, tmp_path):
    (tmp_path / 'clip.mov').write_bytes(b'\x01' * 2048)

    code = cli.main(['compress', str(tmp_path / 'clip.mov'), '-o', str(tmp_path / 'out'), '--no-progress'])

    assert code == 0
    assert (tmp_path / 'out' / 'clip.mp4').read_bytes() == b'compressed-video'


def test_codec_flag_restricts_negotiation(cli, tmp_path):
    (tmp_path / 'clip.mp4').write_bytes(b'\x01' * 2048)

    code = cli.main(['compress', str(tmp_path / 'clip.mp4'), '-o', str(tmp_path / 'out'), '--codec', 'vp9',
                     '--no-progress'])

    assert code == 0
    assert (tmp_path / 'out' / 'clip.webm').exists()


def test_output_never_overwrites_input(cli, tmp_path):
    source = tmp_path / 'clip.mp4'
    source.write_bytes(b'\x01' * 2048)

    assert cli.main(['compress', str(source), '-o', str(tmp_path), '--no-progress']) == 0

    assert source.read_bytes() == b'\x01' * 2048
    assert (tmp_path / 'clip_compressed.mp4').read_bytes() == b'compressed-video'


def test_batch_continues_past_failures(cli, tmp_path):
    (tmp_path / 'good.mp4').write_bytes(b'\x01' * 2048)

    code = cli.main(['compress', str(tmp_path / 'missing.mp4'), str(tmp_path / 'good.mp4'),
                     '-o', str(tmp_path / 'out'), '--no-progress'])

    assert code == 1
    assert (tmp_path / 'out' / 'good.mp4').exists()
    assert cli.error_handler.error_counts[ErrorCategory.INPUT] == 1


def test_info_command(cli, capsys):
    assert cli.main(['info']) == 0
    out = capsys.readouterr().out
    assert 'ffmpeg version 6.1-fake' in out
    assert 'h265: supported' in out
    assert 'Negotiated: h265' in out


def test_signal_handler_cancels_current_job():
    cli = VidshrinkCLI()
    cli.current_job = type('Job', (), {'cancelled': False, 'cancel': lambda self: setattr(self, 'cancelled', True)})()
    with patch('vidshrink.cli.signal.signal') as mock_signal:
        cli._setup_signal_handlers()
    handler = mock_signal.call_args_list[0][0][1]

    handler(signal.SIGINT, None)

    assert cli.current_job.cancelled
    assert cli.shutdown_requested
