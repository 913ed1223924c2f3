"""
Bitrate Allocation Module
Translates a byte budget into per-track encoder bitrates
"""

import logging
from dataclasses import dataclass

from .error_handler import BudgetInfeasibleError

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
BITS_PER_KBIT = 1024
MAX_BITRATE = 2 ** 63 - 1


def linear_scale(value: float, input_min: float, input_max: float,
                 output_min: float, output_max: float) -> float:
    """Map value from [input_min, input_max] onto [output_min, output_max], clamped."""
    if value <= input_min:
        return output_min
    if value >= input_max:
        return output_max
    return (value - input_min) / (input_max - input_min) * (output_max - output_min) + output_min


@dataclass(frozen=True)
class AudioBitrateCurve:
    """Source-size to audio-bitrate interpolation bounds"""
    source_floor_mb: float = 8.0
    source_ceiling_mb: float = 500.0
    min_kbps: float = 32.0
    max_kbps: float = 128.0


class BitrateAllocator:
    """Computes audio and video bitrates (bits/sec) from size budgets.

    Every method is a pure function of its arguments and the curve the allocator
    was built with.
    """

    def __init__(self, audio_curve: AudioBitrateCurve = None, min_video_bitrate: float = 0.0):
        self.audio_curve = audio_curve or AudioBitrateCurve()
        self.min_video_bitrate = float(min_video_bitrate)

    def audio_bitrate(self, source_size_bytes: float) -> int:
        """Audio bitrate scaled mildly with the size of the source file."""
        curve = self.audio_curve
        source_mb = float(source_size_bytes) / BYTES_PER_MB
        kbps = linear_scale(source_mb, curve.source_floor_mb, curve.source_ceiling_mb,
                            curve.min_kbps, curve.max_kbps)
        return _cap(kbps * BITS_PER_KBIT)

    def video_bitrate(self, target_size_bytes: float, other_track_size_bytes: float,
                      duration_seconds: float) -> int:
        """Remaining budget after the companion tracks, spread over the duration.

        Raises:
            BudgetInfeasibleError: when the remainder leaves less than 1bps or
                drops below the configured minimum.
        """
        if duration_seconds is None or duration_seconds <= 0:
            raise BudgetInfeasibleError(
                f"Source duration must be positive to allocate a bitrate, got {duration_seconds}",
                target_bytes=target_size_bytes, other_track_bytes=other_track_size_bytes)

        remaining_bytes = float(target_size_bytes) - float(other_track_size_bytes)
        bitrate = remaining_bytes * 8.0 / float(duration_seconds)

        if bitrate < 1:
            raise BudgetInfeasibleError(
                f"Companion tracks ({other_track_size_bytes / BYTES_PER_MB:.2f}MB) leave "
                f"{bitrate:.2f}bps of the {target_size_bytes / BYTES_PER_MB:.2f}MB target for video",
                target_bytes=target_size_bytes, other_track_bytes=other_track_size_bytes,
                bitrate=bitrate)

        if bitrate < self.min_video_bitrate:
            raise BudgetInfeasibleError(
                f"Video bitrate {bitrate:.0f}bps is below the {self.min_video_bitrate:.0f}bps floor",
                target_bytes=target_size_bytes, other_track_bytes=other_track_size_bytes,
                bitrate=bitrate, minimum_bitrate=self.min_video_bitrate)

        video_bitrate = _cap(bitrate)
        logger.debug(f"Video budget: ({target_size_bytes:.0f}B - {other_track_size_bytes:.0f}B) "
                     f"* 8 / {duration_seconds:.2f}s = {video_bitrate}bps")
        return video_bitrate


def _cap(bitrate: float) -> int:
    if bitrate >= MAX_BITRATE:
        return MAX_BITRATE
    return int(max(bitrate, 0.0))
