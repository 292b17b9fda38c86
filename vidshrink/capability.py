"""
Capability probing and codec negotiation
Decides which output codec the playback target can decode, degrading from the
high-efficiency codec to the universally decodable fallback.
"""

import logging
from typing import Dict, Iterable, List, Optional

from .codec_catalog import DECODER_NAMES, FALLBACK, PRIORITY
from .models import CodecDescriptor

logger = logging.getLogger(__name__)


class CapabilityProber:
    """Answers whether the playback target decodes a codec.

    Implementations must not raise; unknown means unsupported.
    """

    def supports(self, codec_id: str) -> bool:
        raise NotImplementedError


class StaticCapabilityProber(CapabilityProber):
    """Fixed capability table, e.g. a declared playback target or a test double"""

    def __init__(self, supported: Iterable[str]):
        self.supported = {codec_id.lower() for codec_id in supported}

    def supports(self, codec_id: str) -> bool:
        return codec_id == FALLBACK.codec_id or codec_id.lower() in self.supported


class FFmpegCapabilityProber(CapabilityProber):
    """A codec counts as supported when the local FFmpeg build can both decode
    its elementary stream and encode it."""

    def __init__(self, engine):
        self.engine = engine
        self._cache: Dict[str, bool] = {}

    def supports(self, codec_id: str) -> bool:
        if codec_id == FALLBACK.codec_id:
            return True
        if codec_id in self._cache:
            return self._cache[codec_id]
        try:
            if not self.engine.is_loaded:
                return False
            descriptor = next((c for c in PRIORITY if c.codec_id == codec_id), None)
            if descriptor is None:
                return False
            decoder = DECODER_NAMES.get(codec_id, codec_id)
            supported = self.engine.has_decoder(decoder) and self.engine.has_encoder(descriptor.encoder_name)
        except Exception as e:
            logger.debug(f"Capability probe for {codec_id} failed: {e}")
            return False
        self._cache[codec_id] = supported
        return supported


class CodecNegotiator:
    def __init__(self, prober: CapabilityProber, priority: Optional[List[CodecDescriptor]] = None):
        self.prober = prober
        self.priority = list(priority or PRIORITY)
        if FALLBACK not in self.priority:
            self.priority.append(FALLBACK)

    def negotiate(self) -> CodecDescriptor:
        """First descriptor in priority order the prober accepts; never fails"""
        for codec in self.priority:
            # The fallback is decodable everywhere, whatever the prober says
            if codec == FALLBACK or self.prober.supports(codec.codec_id):
                logger.debug(f"Negotiated codec: {codec.codec_id} ({codec.encoder_name})")
                return codec
            logger.debug(f"Codec {codec.codec_id} not supported by playback target, trying next")
        return FALLBACK

    def capability_report(self) -> Dict[str, bool]:
        return {codec.codec_id: self.prober.supports(codec.codec_id) for codec in self.priority}


def create_prober(config_manager, engine) -> CapabilityProber:
    """Configured playback table if present, else the local FFmpeg build"""
    supported = config_manager.get_supported_codecs_override() if config_manager else None
    if supported is not None:
        logger.info(f"Using configured playback codecs: {', '.join(supported) or '(fallback only)'}")
        return StaticCapabilityProber(supported)
    return FFmpegCapabilityProber(engine)
