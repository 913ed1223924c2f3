"""
Transcode Pass Module
Plans and executes one encode attempt: the audio pass that produces the
intermediate audio artifact and the video pass that muxes the final output.
"""

import os
import heapq
import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

from av.video.frame import PictureType

from .config_manager import TranscodeSettings
from .error_handler import EncodeError, MetadataReadError
from .media_container import InputContainer, Medium, OutputContainer, SourceAsset
from .progress_reporter import ProgressReporter
from .size_budget_monitor import SizeBudgetMonitor
from .track_pipeline import AudioFormatFilter, PixelFormatFilter, StreamCopy, TrackPipeline

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_RATE = 48000


@dataclass(frozen=True)
class TranscodePlan:
    """Everything one attempt is encoded with; built fresh for every attempt"""
    attempt: int
    target_size_bytes: float
    budget_bytes: int
    duration_seconds: float
    audio_bitrate: int
    video_bitrate: int
    audio_size_bytes: int = 0
    encoder_options: Dict[str, str] = field(default_factory=dict)


@dataclass
class PassAttempt:
    attempt: int
    plan: TranscodePlan
    output_path: Path
    measured_size_bytes: Optional[int] = None
    aborted_early: bool = False
    accepted: bool = False


def parse_encoder_options(options: str) -> Dict[str, str]:
    """
    Parse a 'key=value,key=value' encoder option string.

    Empty entries (a trailing comma, an empty string) are ignored.

    Raises:
        EncodeError: if an entry is not exactly one key and one value
    """
    parsed = {}
    for entry in (options or '').split(','):
        if not entry:
            continue
        tokens = entry.split('=')
        if len(tokens) != 2 or not tokens[0]:
            raise EncodeError(f"Invalid encoder option '{entry}' in '{options}' (expected key=value)")
        parsed[tokens[0]] = tokens[1]
    return parsed


def reset_picture_type(frame):
    """Let the encoder pick its own key frames instead of copying the source's."""
    frame.pict_type = PictureType.NONE


def measure_artifact(path) -> int:
    try:
        return os.path.getsize(path)
    except OSError as e:
        raise MetadataReadError(f"Could not read size of produced artifact: {e}", path=path) from e


def _packet_seconds(packet) -> float:
    timestamp = packet.dts if packet.dts is not None else packet.pts
    if timestamp is None or packet.time_base is None:
        return 0.0
    return float(timestamp * packet.time_base)


def _routed(handler, packets: Iterator) -> Iterator[Tuple[object, object]]:
    for packet in packets:
        yield handler, packet


class PassRunner:
    """Runs the audio and video passes against real containers"""

    def __init__(self, settings: TranscodeSettings):
        self.settings = settings

    def _progress(self, label: str, duration_seconds: Optional[float]) -> ProgressReporter:
        return ProgressReporter(label, duration_seconds,
                                interval_seconds=self.settings.progress_interval_seconds,
                                interval_frames=self.settings.progress_interval_frames,
                                show_bar=self.settings.show_progress_bar)

    def run_audio(self, source: SourceAsset, audio_bitrate: int, audio_path) -> Optional[int]:
        """
        Transcode the source's best audio track into a single-track artifact.

        Returns:
            Size of the artifact in bytes, or None when the source has no audio
        """
        index = source.best_audio_index
        if index is None:
            logger.info(f"{source.path.name} has no audio track; video pass gets the whole budget")
            return None

        track = source.track(index)
        rate = int(track.rate) if track.rate else DEFAULT_AUDIO_RATE
        logger.info(f"Audio pass: track #{index} ({track.codec_name}) -> {self.settings.audio_codec} "
                    f"@ {audio_bitrate / 1024:.1f}kbps")

        with ExitStack() as stack:
            source_container = stack.enter_context(InputContainer(source.path))
            output = stack.enter_context(OutputContainer(audio_path))
            in_stream = source_container.stream(index)
            out_stream = output.add_audio_encoder(self.settings.audio_codec, rate,
                                                  track.channels or 2, audio_bitrate)
            output.set_metadata(source.metadata)
            output.write_header()

            ctx = out_stream.codec_context
            pipeline = TrackPipeline(
                'audio',
                decoder=in_stream.codec_context,
                encoder=out_stream,
                write_packet=output.writer_for(out_stream),
                in_time_base=ctx.time_base,
                out_time_base=out_stream.time_base,
                frame_filter=AudioFormatFilter(ctx.format.name, ctx.layout.name, ctx.sample_rate,
                                               ctx.frame_size),
                progress=self._progress('audio', source.duration_seconds),
            )
            for packet in source_container.demux([in_stream]):
                pipeline.feed(packet)
            pipeline.drain()

        size = measure_artifact(audio_path)
        logger.info(f"Audio artifact written: {size / (1024 * 1024):.2f}MB")
        return size

    def run_video(self, source: SourceAsset, plan: TranscodePlan, audio_path: Optional[Path],
                  output_path, monitor: Optional[SizeBudgetMonitor] = None) -> bool:
        """
        Transcode every video track, mux in the audio artifact and the copied tracks.

        Returns:
            True if the size monitor stopped the video feed before the source ran out
        """
        settings = self.settings
        options = dict(plan.encoder_options)
        options.setdefault('maxrate', str(plan.video_bitrate))

        with ExitStack() as stack:
            source_container = stack.enter_context(InputContainer(source.path))
            artifact = stack.enter_context(InputContainer(audio_path)) if audio_path else None
            output = stack.enter_context(OutputContainer(output_path))

            video_streams = []
            copy_streams = []
            artifact_streams = None
            for track in source.tracks:
                in_stream = source_container.stream(track.index)
                if track.medium is Medium.VIDEO:
                    out_stream = output.add_video_encoder(
                        settings.video_codec, track, plan.video_bitrate,
                        pixel_format=settings.pixel_format,
                        sample_aspect_ratio=in_stream.codec_context.sample_aspect_ratio,
                        options=options)
                    video_streams.append((track, in_stream, out_stream))
                elif track.medium is Medium.AUDIO:
                    if track.index == source.best_audio_index and artifact is not None:
                        artifact_stream = artifact.streams.audio[0]
                        artifact_streams = (artifact_stream, output.add_copy_stream(artifact_stream))
                    else:
                        logger.debug(f"Dropping audio track #{track.index}")
                elif track.medium.value in settings.copy_mediums:
                    if not output.can_copy(track):
                        logger.warning(f"Dropping {track.medium.value} track #{track.index}: "
                                       f"{track.codec_name} cannot be stream-copied into {Path(output_path).suffix}")
                        continue
                    copy_streams.append((track, in_stream, output.add_copy_stream(in_stream)))
                else:
                    logger.debug(f"Dropping {track.medium.value} track #{track.index}")

            output.set_metadata(source.metadata)
            output.write_header()

            # Output time bases are only final once the header is written
            handlers = {}
            pipelines = []
            for track, in_stream, out_stream in video_streams:
                pipeline = TrackPipeline(
                    f'video #{track.index}',
                    decoder=in_stream.codec_context,
                    encoder=out_stream,
                    write_packet=output.writer_for(out_stream),
                    in_time_base=out_stream.codec_context.time_base,
                    out_time_base=out_stream.time_base,
                    frame_filter=PixelFormatFilter(out_stream.codec_context.pix_fmt),
                    prepare_frame=reset_picture_type,
                    progress=self._progress('video', source.duration_seconds),
                    monitor=monitor,
                )
                handlers[track.index] = pipeline
                pipelines.append(pipeline)
            for track, in_stream, out_stream in copy_streams:
                handlers[track.index] = StreamCopy(f'{track.medium.value} #{track.index}',
                                                   output.writer_for(out_stream),
                                                   in_stream.time_base, out_stream.time_base)

            packet_sources = []
            if handlers:
                demuxed = source_container.demux([source_container.stream(i) for i in handlers])
                packet_sources.append((handlers[packet.stream.index], packet) for packet in demuxed)
            if artifact_streams is not None:
                artifact_stream, out_stream = artifact_streams
                artifact_copy = StreamCopy('audio artifact', output.writer_for(out_stream),
                                           artifact_stream.time_base, out_stream.time_base)
                packet_sources.append(_routed(artifact_copy, artifact.demux([artifact_stream])))

            for handler, packet in heapq.merge(*packet_sources, key=lambda item: _packet_seconds(item[1])):
                handler.feed(packet)
                if pipelines and not any(pipeline.accepting for pipeline in pipelines):
                    logger.info("Pass is over budget; skipping the rest of the source")
                    break

            for pipeline in pipelines:
                pipeline.drain()

        return monitor is not None and monitor.exceeded
