"""
Parameter Planner
Derives output resolution, quality parameters and a time budget from the
input metadata, the caller's options and the negotiated codec.

Pure computation: no I/O and no shared state, so every (size, options, codec)
combination can be checked directly.
"""

import logging
from typing import Dict, Any, Optional, Tuple

from .codec_catalog import QUALITY_TABLE
from .models import (
    CodecDescriptor, CompressionOptions, EncodePlan, InputMetadata, QualityParams, even_floor,
)

logger = logging.getLogger(__name__)

DEFAULT_POLICY = {
    'large_file_threshold_mb': 50,
    'small_file_threshold_mb': 30,
    'default_max': (1920, 1080),
    'large_file_max': (1280, 720),
    'secondary_cap': (1280, 720),
    'keyframe_interval': 120,
    'keyframe_min_interval': 60,
}

DEFAULT_TIMEOUT = {
    'min_seconds': 300,
    'max_seconds': 1800,
    'seconds_per_mb': 12,
}


def _nearest_even(value: float, limit: int) -> int:
    return min(max(2 * round(value / 2), 2), even_floor(limit))


def scale_to_fit(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Scale down preserving aspect ratio.

    The limiting side is floored to an even integer. The other side is scaled by
    the exact ratio, not by the floored side, and rounded to the nearest even
    integer, so each side stays within one pixel of exact scaling.
    """
    if max_width / width <= max_height / height:
        out_width = even_floor(max_width)
        out_height = _nearest_even(height * max_width / width, max_height)
    else:
        out_height = even_floor(max_height)
        out_width = _nearest_even(width * max_height / height, max_width)
    return out_width, out_height


class ParameterPlanner:
    def __init__(self, policy: Optional[Dict[str, Any]] = None, timeout: Optional[Dict[str, Any]] = None):
        self.policy = dict(DEFAULT_POLICY)
        if policy:
            self.policy.update(policy)
        self.timeout = dict(DEFAULT_TIMEOUT)
        if timeout:
            self.timeout.update(timeout)

    @classmethod
    def from_config(cls, config_manager) -> 'ParameterPlanner':
        return cls(config_manager.get_planner_config(), config_manager.get_timeout_config())

    def plan(self, input_meta: InputMetadata, options: Optional[CompressionOptions],
             codec: CodecDescriptor) -> EncodePlan:
        options = options or CompressionOptions()
        output_width, output_height = self.plan_resolution(input_meta, options)
        quality_params = self.plan_quality(options, codec)
        time_budget = self.plan_time_budget(input_meta)

        plan = EncodePlan(
            codec=codec,
            output_width=output_width,
            output_height=output_height,
            quality_params=quality_params,
            time_budget_seconds=time_budget,
            source_width=input_meta.width,
            source_height=input_meta.height,
            keyframe_interval=self.policy['keyframe_interval'],
            keyframe_min_interval=self.policy['keyframe_min_interval'],
        )

        mode = f"{quality_params.bitrate_kbps}k bitrate" if quality_params.is_bitrate_driven else f"CRF {quality_params.crf}"
        logger.debug(
            f"Plan: {input_meta.width}x{input_meta.height} ({input_meta.size_mb:.1f}MB) -> "
            f"{output_width}x{output_height} {codec.encoder_name} "
            f"{quality_params.effort_flag} {quality_params.effort_value}, {mode}, "
            f"budget {time_budget:.0f}s"
        )
        return plan

    def plan_resolution(self, input_meta: InputMetadata, options: CompressionOptions) -> Tuple[int, int]:
        width, height = input_meta.width, input_meta.height
        size_mb = input_meta.size_mb

        if size_mb > self.policy['large_file_threshold_mb']:
            default_width, default_height = self.policy['large_file_max']
        else:
            default_width, default_height = self.policy['default_max']
        max_width = options.max_width or default_width
        max_height = options.max_height or default_height

        if width > max_width or height > max_height:
            return scale_to_fit(width, height, max_width, max_height)

        cap_width, cap_height = self.policy['secondary_cap']
        if size_mb < self.policy['small_file_threshold_mb'] and width <= cap_width and height <= cap_height:
            # Small file already at or under the cap: keep source resolution
            return even_floor(width), even_floor(height)

        if width > cap_width or height > cap_height:
            return scale_to_fit(width, height, cap_width, cap_height)

        return even_floor(width), even_floor(height)

    def plan_quality(self, options: CompressionOptions, codec: CodecDescriptor) -> QualityParams:
        table = QUALITY_TABLE[codec.codec_id]
        preset = options.quality_preset
        effort_value = table['effort'][preset]

        if options.max_bitrate_mbps:
            # Bitrate-driven: the preset still picks encoder effort, never the quality constant
            return QualityParams(
                effort_flag=table['effort_flag'],
                effort_value=effort_value,
                crf=None,
                bitrate_kbps=int(round(options.max_bitrate_mbps * 1000)),
                extra_args=tuple(table['extra_args']),
            )

        return QualityParams(
            effort_flag=table['effort_flag'],
            effort_value=effort_value,
            crf=table['crf'][preset],
            bitrate_kbps=None,
            extra_args=tuple(table['cq_args']) + tuple(table['extra_args']),
        )

    def plan_time_budget(self, input_meta: InputMetadata) -> float:
        """Wall-clock ceiling proportional to input size, clamped to [min, max]"""
        budget = input_meta.size_mb * self.timeout['seconds_per_mb']
        return float(min(max(budget, self.timeout['min_seconds']), self.timeout['max_seconds']))
