"""
Tests for capability probing and codec negotiation
"""

import unittest
from unittest.mock import Mock

import pytest

from vidshrink.capability import (
    CapabilityProber, CodecNegotiator, FFmpegCapabilityProber, StaticCapabilityProber, create_prober,
)
from vidshrink.codec_catalog import FALLBACK, H264, H265, PRIORITY, VP9, get_codec
from vidshrink.config_manager import ConfigManager


class NothingProber(CapabilityProber):
    def supports(self, codec_id):
        return False


class TestCodecNegotiator(unittest.TestCase):

    def test_prefers_high_efficiency_codec(self):
        negotiator = CodecNegotiator(StaticCapabilityProber(['h265', 'vp9']))
        self.assertIs(negotiator.negotiate(), H265)

    def test_degrades_to_royalty_free_codec(self):
        negotiator = CodecNegotiator(StaticCapabilityProber(['vp9']))
        self.assertIs(negotiator.negotiate(), VP9)

    def test_falls_back_when_nothing_else_decodes(self):
        negotiator = CodecNegotiator(StaticCapabilityProber([]))
        self.assertIs(negotiator.negotiate(), H264)

    def test_fallback_is_returned_even_if_prober_denies_it(self):
        negotiator = CodecNegotiator(NothingProber())
        self.assertIs(negotiator.negotiate(), FALLBACK)

    def test_custom_priority_gets_fallback_appended(self):
        negotiator = CodecNegotiator(NothingProber(), priority=[VP9])
        self.assertEqual(negotiator.priority, [VP9, H264])
        self.assertIs(negotiator.negotiate(), H264)

    def test_capability_report(self):
        negotiator = CodecNegotiator(StaticCapabilityProber(['vp9']))
        self.assertEqual(negotiator.capability_report(), {'h265': False, 'vp9': True, 'h264': True})


@pytest.mark.parametrize("supported", [[], ['h265'], ['vp9'], ['h265', 'vp9'], ['av1'], ['H265']])
def test_negotiation_is_total(supported):
    prober = StaticCapabilityProber(supported)
    codec = CodecNegotiator(prober).negotiate()
    assert codec in PRIORITY
    assert prober.supports(codec.codec_id)


def test_ffmpeg_prober_requires_decoder_and_encoder():
    engine = Mock()
    engine.is_loaded = True
    engine.has_decoder.side_effect = lambda name: name in {'hevc', 'vp9'}
    engine.has_encoder.side_effect = lambda name: name in {'libvpx-vp9'}

    prober = FFmpegCapabilityProber(engine)
    assert not prober.supports('h265')
    assert prober.supports('vp9')
    assert prober.supports('h264')
    assert CodecNegotiator(prober).negotiate() is VP9


def test_ffmpeg_prober_caches_answers():
    engine = Mock()
    engine.is_loaded = True
    engine.has_decoder.return_value = True
    engine.has_encoder.return_value = True

    prober = FFmpegCapabilityProber(engine)
    assert prober.supports('h265')
    assert prober.supports('h265')
    assert engine.has_decoder.call_count == 1


def test_ffmpeg_prober_never_raises():
    engine = Mock()
    engine.is_loaded = True
    engine.has_decoder.side_effect = RuntimeError("listing unavailable")

    prober = FFmpegCapabilityProber(engine)
    assert prober.supports('h265') is False
    assert prober.supports('unknown-codec') is False


def test_ffmpeg_prober_on_unloaded_engine():
    engine = Mock()
    engine.is_loaded = False
    prober = FFmpegCapabilityProber(engine)
    assert not prober.supports('vp9')
    assert CodecNegotiator(prober).negotiate() is H264


def test_create_prober_honors_configured_codecs():
    config = ConfigManager()
    config.update_from_args({'compression.codec_negotiation.supported_codecs': ['vp9']})
    prober = create_prober(config, engine=Mock())
    assert isinstance(prober, StaticCapabilityProber)
    assert CodecNegotiator(prober).negotiate() is VP9


def test_create_prober_defaults_to_ffmpeg_build():
    assert isinstance(create_prober(ConfigManager(), engine=Mock()), FFmpegCapabilityProber)


def test_get_codec():
    assert get_codec('vp9') is VP9
    with pytest.raises(KeyError):
        get_codec('av1')
