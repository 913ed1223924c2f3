"""
Media Container Module
Read-side and write-side views over PyAV containers, plus the immutable
source description each pass is planned from.
"""

import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Dict, Iterator, Optional, Sequence, Tuple, Union

import av
from av.error import FFmpegError

from .error_handler import ContainerOpenError, DecodeError, EncodeError, EncoderNotFoundError, MuxError

logger = logging.getLogger(__name__)

AV_ERRORS = (FFmpegError, ValueError)

# Output formats that only carry mov_text subtitles
MP4_FAMILY_FORMATS = {'mp4', 'mov', 'm4a', '3gp', '3g2', 'ipod'}
MP4_SUBTITLE_CODECS = {'mov_text'}


class Medium(Enum):
    AUDIO = "audio"
    VIDEO = "video"
    SUBTITLE = "subtitle"
    DATA = "data"
    OTHER = "other"

    @classmethod
    def from_stream_type(cls, stream_type: Optional[str]) -> 'Medium':
        try:
            return cls(stream_type)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class Track:
    """Decoder-side description of one stream in the source"""
    index: int
    medium: Medium
    codec_name: Optional[str]
    time_base: Optional[Fraction]
    format_name: Optional[str] = None
    rate: Optional[Fraction] = None
    channel_layout: Optional[str] = None
    channels: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass(frozen=True)
class SourceAsset:
    """Immutable snapshot of a source container, re-probed for every pass"""
    path: Path
    tracks: Tuple[Track, ...]
    duration: Optional[Fraction]
    size_bytes: int
    metadata: Dict[str, str] = field(default_factory=dict)
    best_audio_index: Optional[int] = None
    best_video_index: Optional[int] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        return float(self.duration) if self.duration is not None else None

    def track(self, index: int) -> Track:
        for track in self.tracks:
            if track.index == index:
                return track
        raise KeyError(index)


class TrackParameters:
    """Safe accessors for an output stream's codec parameters"""

    def __init__(self, stream):
        self._stream = stream

    def clear_container_codec_tag(self):
        """Drop the source container's codec tag so the output muxer assigns its own."""
        ctx = self._stream.codec_context
        if ctx is not None:
            ctx.codec_tag = "\0\0\0\0"


def find_encoder(codec_name: str):
    """Look up an encoder by name, raising EncoderNotFoundError if this build lacks it."""
    try:
        return av.Codec(codec_name, 'w')
    except AV_ERRORS as e:
        raise EncoderNotFoundError(f"Encoder '{codec_name}' is not available: {e}") from e


class InputContainer:
    """Demux-side view over a media file"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        try:
            self._container = av.open(str(self.path))
        except (FFmpegError, OSError) as e:
            raise ContainerOpenError(f"Could not open input: {e}", path=self.path) from e

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def streams(self):
        return self._container.streams

    def stream(self, index: int):
        return self._container.streams[index]

    def best_stream_index(self, kind: str) -> Optional[int]:
        stream = self._container.streams.best(kind)
        return stream.index if stream is not None else None

    @property
    def metadata(self) -> Dict[str, str]:
        return dict(self._container.metadata)

    def duration(self) -> Optional[Fraction]:
        """Container duration in seconds, falling back to the longest stream."""
        if self._container.duration is not None and self._container.duration > 0:
            return Fraction(self._container.duration, av.time_base)
        candidates = [Fraction(stream.duration) * stream.time_base
                      for stream in self._container.streams
                      if stream.duration and stream.time_base]
        return max(candidates) if candidates else None

    def demux(self, streams: Sequence) -> Iterator:
        """Yield packets of the given streams, skipping the empty end-of-stream markers."""
        packets = self._container.demux(list(streams))
        while True:
            try:
                packet = next(packets)
            except StopIteration:
                return
            except AV_ERRORS as e:
                raise DecodeError(f"Demuxing failed: {e}", path=self.path) from e
            if packet.size == 0:
                continue
            yield packet

    def close(self):
        self._container.close()


class OutputContainer:
    """Mux-side view over a media file being written"""

    def __init__(self, path: Union[str, Path], format_name: Optional[str] = None):
        self.path = Path(path)
        try:
            self._container = av.open(str(self.path), mode='w', format=format_name)
        except (FFmpegError, OSError, ValueError) as e:
            raise ContainerOpenError(f"Could not create output: {e}", path=self.path) from e
        self._encoder_streams = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def add_audio_encoder(self, codec_name: str, rate: int, channels: int, bit_rate: int,
                          options: Optional[Dict[str, str]] = None):
        codec = find_encoder(codec_name)
        stream = self._container.add_stream(codec_name, rate=rate)
        ctx = stream.codec_context
        ctx.layout = 'stereo' if channels >= 2 else 'mono'
        if codec.audio_formats:
            ctx.format = codec.audio_formats[0].name
        ctx.bit_rate = bit_rate
        ctx.time_base = Fraction(1, rate)
        stream.time_base = Fraction(1, rate)
        ctx.options = dict(options or {})
        self._encoder_streams.append(stream)
        logger.debug(f"Audio encoder {codec_name}: {rate}Hz {ctx.layout.name} "
                     f"{ctx.format.name} @ {bit_rate}bps")
        return stream

    def add_video_encoder(self, codec_name: str, track: Track, bit_rate: int,
                          pixel_format: Optional[str] = None,
                          sample_aspect_ratio: Optional[Fraction] = None,
                          options: Optional[Dict[str, str]] = None):
        codec = find_encoder(codec_name)
        stream = self._container.add_stream(codec_name, rate=track.rate)
        ctx = stream.codec_context
        ctx.width = track.width
        ctx.height = track.height
        ctx.pix_fmt = pixel_format or choose_pixel_format(codec, track.format_name)
        if sample_aspect_ratio:
            ctx.sample_aspect_ratio = sample_aspect_ratio
        ctx.time_base = track.time_base
        stream.time_base = track.time_base
        ctx.bit_rate = bit_rate
        ctx.options = dict(options or {})
        self._encoder_streams.append(stream)
        logger.debug(f"Video encoder {codec_name}: {track.width}x{track.height} {ctx.pix_fmt} "
                     f"@ {bit_rate}bps, options={ctx.options}")
        return stream

    def add_copy_stream(self, template):
        try:
            stream = self._container.add_stream_from_template(template)
        except AV_ERRORS as e:
            raise MuxError(f"Could not add stream copy of #{template.index}: {e}", path=self.path) from e
        TrackParameters(stream).clear_container_codec_tag()
        return stream

    def set_metadata(self, metadata: Dict[str, str]):
        self._container.metadata.update(metadata)

    def can_copy(self, track: Track) -> bool:
        """Whether the output format can carry this track as a stream copy."""
        if track.medium is not Medium.SUBTITLE:
            return True
        if set(self._container.format.name.split(',')) & MP4_FAMILY_FORMATS:
            return track.codec_name in MP4_SUBTITLE_CODECS
        return True

    def open_encoders(self):
        """Open every encoder added to this output, so a rejected setup raises EncodeError."""
        for stream in self._encoder_streams:
            ctx = stream.codec_context
            if ctx.is_open:
                continue
            try:
                ctx.open()
            except AV_ERRORS as e:
                raise EncodeError(f"Could not open encoder {ctx.name} with options {dict(ctx.options)}: {e}",
                                  path=self.path) from e

    def write_header(self):
        self.open_encoders()
        try:
            self._container.start_encoding()
        except AV_ERRORS as e:
            raise MuxError(f"Could not write container header: {e}", path=self.path) from e

    def writer_for(self, stream):
        """Return a callable that muxes packets into the given output stream."""
        def write(packet):
            packet.stream = stream
            self.mux(packet)
        return write

    def mux(self, packet):
        try:
            self._container.mux(packet)
        except AV_ERRORS as e:
            raise MuxError(f"Could not write packet: {e}", path=self.path) from e

    def close(self):
        """Write the trailer and close the file."""
        if self.closed:
            return
        self.closed = True
        try:
            self._container.close()
        except AV_ERRORS as e:
            raise MuxError(f"Could not write container trailer: {e}", path=self.path) from e

    def abort(self):
        """Close after a failure; the file is discarded by the caller."""
        if self.closed:
            return
        self.closed = True
        try:
            self._container.close()
        except AV_ERRORS as e:
            logger.debug(f"Ignoring close error on aborted output {self.path}: {e}")


def choose_pixel_format(codec, source_format: Optional[str]) -> str:
    """Keep the source pixel format when the encoder supports it, else fall back to yuv420p."""
    supported = [fmt.name for fmt in (codec.video_formats or ())]
    if source_format and (not supported or source_format in supported):
        return source_format
    if not supported or 'yuv420p' in supported:
        return 'yuv420p'
    return supported[0]


def _describe_stream(stream) -> Track:
    medium = Medium.from_stream_type(stream.type)
    ctx = stream.codec_context
    codec_name = getattr(ctx, 'name', None) if ctx is not None else None
    track = dict(index=stream.index, medium=medium, codec_name=codec_name,
                 time_base=stream.time_base)
    if ctx is None:
        return Track(**track)
    if medium is Medium.AUDIO:
        track.update(format_name=ctx.format.name if ctx.format else None,
                     rate=Fraction(ctx.sample_rate) if ctx.sample_rate else None,
                     channel_layout=ctx.layout.name if ctx.layout else None,
                     channels=len(ctx.layout.channels) if ctx.layout else None)
    elif medium is Medium.VIDEO:
        track.update(format_name=ctx.format.name if ctx.format else None,
                     rate=stream.average_rate or stream.guessed_rate,
                     width=ctx.width, height=ctx.height)
    return Track(**track)


def probe_source(path: Union[str, Path]) -> SourceAsset:
    """Open a source container, describe it, and close it again."""
    path = Path(path)
    try:
        size_bytes = os.path.getsize(path)
    except OSError as e:
        raise ContainerOpenError(f"Could not read source size: {e}", path=path) from e

    with InputContainer(path) as container:
        tracks = tuple(_describe_stream(stream) for stream in container.streams)
        asset = SourceAsset(
            path=path,
            tracks=tracks,
            duration=container.duration(),
            size_bytes=size_bytes,
            metadata=container.metadata,
            best_audio_index=container.best_stream_index('audio'),
            best_video_index=container.best_stream_index('video'),
        )

    logger.debug(f"Probed {path.name}: {len(asset.tracks)} tracks, "
                 f"{asset.duration_seconds}s, {size_bytes / (1024 * 1024):.2f}MB")
    return asset
