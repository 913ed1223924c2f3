"""Time base helpers for moving packets between containers."""

from fractions import Fraction
from typing import Optional


def rescale_q(value: Optional[int], src: Fraction, dst: Fraction) -> Optional[int]:
    """
    Rescale an integer timestamp from one time base to another.

    Rounds to nearest with ties away from zero, like libavutil's av_rescale_q.
    A missing timestamp stays missing.
    """
    if value is None:
        return None
    exact = Fraction(value) * Fraction(src) / Fraction(dst)
    magnitude = abs(exact)
    rounded = int(magnitude + Fraction(1, 2))
    return rounded if exact >= 0 else -rounded


def rescale_packet(packet, src: Fraction, dst: Fraction):
    """Rescale pts, dts and duration of a packet in place and tag it with dst."""
    if src != dst:
        packet.pts = rescale_q(packet.pts, src, dst)
        packet.dts = rescale_q(packet.dts, src, dst)
        if packet.duration:
            packet.duration = rescale_q(packet.duration, src, dst)
    packet.time_base = dst
    return packet


def to_seconds(value: Optional[int], time_base: Optional[Fraction]) -> Optional[float]:
    if value is None or time_base is None:
        return None
    return float(value * time_base)
