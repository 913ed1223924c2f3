"""
Track Pipeline
Per-track decode -> filter -> encode conveyor with an explicit drain protocol,
plus the stream-copy path for tracks that are not transcoded.
"""

import logging
from enum import Enum
from fractions import Fraction
from typing import Callable, Iterable, List, Optional

from av.error import FFmpegError
from av.audio.resampler import AudioResampler

from .error_handler import DecodeError, EncodeError, PipelineStateError
from .timestamps import rescale_packet, to_seconds

logger = logging.getLogger(__name__)

# Failures raised by PyAV codec calls
CODEC_ERRORS = (FFmpegError, ValueError)


class PipelineState(Enum):
    FEEDING = "feeding"
    DRAINING = "draining"
    FINISHED = "finished"


class AudioFormatFilter:
    """Converts decoded audio to the encoder's sample format, layout and rate,
    re-chunked to the encoder's frame size."""

    def __init__(self, format_name: str, layout: str, rate: int, frame_size: Optional[int] = None):
        self._resampler = AudioResampler(format=format_name, layout=layout, rate=rate,
                                         frame_size=frame_size or None)

    def push(self, frame) -> List:
        return self._resampler.resample(frame)

    def flush(self) -> List:
        return self._resampler.resample(None)


class PixelFormatFilter:
    """Video pass-through that only converts pixel format when the encoder needs another one"""

    def __init__(self, format_name: str):
        self.format_name = format_name

    def push(self, frame) -> List:
        if frame.format.name == self.format_name:
            return [frame]
        return [frame.reformat(format=self.format_name)]

    def flush(self) -> List:
        return []


class TrackPipeline:
    """Decode -> (filter) -> encode conveyor for one transcoded track.

    Every stage is drained completely before control returns to the caller, so no
    frame the decoder or encoder is willing to yield is ever left behind. Once the
    size monitor trips, new packets are discarded; draining still encodes every
    frame already buffered in the decoder, filter and encoder.
    """

    def __init__(self, name: str, decoder, encoder, write_packet: Callable,
                 in_time_base: Fraction, out_time_base: Fraction,
                 frame_filter=None, prepare_frame: Optional[Callable] = None,
                 progress=None, monitor=None):
        self.name = name
        self.decoder = decoder
        self.encoder = encoder
        self.frame_filter = frame_filter
        self.prepare_frame = prepare_frame
        self.progress = progress
        self.monitor = monitor
        self.in_time_base = in_time_base
        self.out_time_base = out_time_base
        self._write_packet = write_packet

        self.state = PipelineState.FEEDING
        self.accepting = True
        self.frames_decoded = 0
        self.frames_encoded = 0
        self.packets_written = 0
        self.packets_discarded = 0

    def feed(self, packet) -> bool:
        """Submit one demuxed packet. Returns False once the track stopped accepting input."""
        if self.state is not PipelineState.FEEDING:
            raise PipelineStateError(f"{self.name}: cannot feed a pipeline in state {self.state.value}")
        if not self.accepting:
            self.packets_discarded += 1
            return False

        for frame in self._decode(packet):
            self._process_decoded(frame)
            if not self.accepting:
                break
        return self.accepting

    def drain(self):
        """Flush decoder, filter and encoder in that order, then finish."""
        if self.state is not PipelineState.FEEDING:
            raise PipelineStateError(f"{self.name}: cannot drain a pipeline in state {self.state.value}")
        self.state = PipelineState.DRAINING
        logger.debug(f"{self.name}: draining after {self.frames_decoded} decoded frames")

        # Frames the decoder still holds are encoded even after the monitor tripped
        for frame in self._decode(None):
            self._process_decoded(frame, check_budget=False)

        if self.frame_filter is not None:
            for filtered in self.frame_filter.flush():
                self._encode(filtered)

        self._encode(None)

        if self.progress is not None:
            self.progress.close()
        self.state = PipelineState.FINISHED
        logger.debug(f"{self.name}: finished, {self.frames_encoded} frames encoded, "
                     f"{self.packets_written} packets written")

    def stop_accepting(self):
        if self.accepting:
            self.accepting = False
            logger.info(f"{self.name}: no longer accepting input for this pass")

    def _decode(self, packet) -> Iterable:
        try:
            return self.decoder.decode(packet)
        except CODEC_ERRORS as e:
            raise DecodeError(f"{self.name}: decoder rejected input: {e}") from e

    def _process_decoded(self, frame, check_budget: bool = True):
        self.frames_decoded += 1
        if frame.pts is None:
            frame.pts = frame.dts
        if self.prepare_frame is not None:
            self.prepare_frame(frame)
        if self.progress is not None:
            self.progress.frame(to_seconds(frame.pts, getattr(frame, 'time_base', None)))

        if self.frame_filter is None:
            self._encode(frame)
        else:
            for filtered in self.frame_filter.push(frame):
                self._encode(filtered)

        if check_budget and self.monitor is not None and self.monitor.check():
            self.stop_accepting()

    def _encode(self, frame):
        try:
            packets = self.encoder.encode(frame)
        except CODEC_ERRORS as e:
            raise EncodeError(f"{self.name}: encoder rejected input: {e}") from e
        if frame is not None:
            self.frames_encoded += 1
        for packet in packets:
            rescale_packet(packet, self.in_time_base, self.out_time_base)
            self._write_packet(packet)
            self.packets_written += 1


class StreamCopy:
    """Copies packets of a track verbatim, only rescaling their timestamps"""

    def __init__(self, name: str, write_packet: Callable, in_time_base: Fraction, out_time_base: Fraction):
        self.name = name
        self.in_time_base = in_time_base
        self.out_time_base = out_time_base
        self._write_packet = write_packet
        self.packets_written = 0

    def feed(self, packet) -> bool:
        if packet.dts is None:
            return True
        rescale_packet(packet, self.in_time_base, self.out_time_base)
        self._write_packet(packet)
        self.packets_written += 1
        return True
