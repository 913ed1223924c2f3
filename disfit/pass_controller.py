"""
Pass Controller
Outer convergence loop: re-encodes the source with a shrinking target until the
produced artifact fits under the size budget.
"""

import os
import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Union

from .bitrate_allocator import BitrateAllocator, BYTES_PER_MB
from .config_manager import TranscodeSettings
from .error_handler import BudgetInfeasibleError, ContainerOpenError, TargetNotMetError
from .media_container import probe_source
from .naming import derive_work_paths
from .size_budget_monitor import SizeBudgetMonitor
from .temp_file_manager import TempFileManager
from .transcode_pass import PassAttempt, PassRunner, TranscodePlan, measure_artifact, parse_encoder_options

logger = logging.getLogger(__name__)


class PassController:
    """Runs whole encode attempts until one fits the budget or the attempt bound is hit.

    Each attempt re-probes the source, allocates bitrates for the current effective
    target and hands a frozen TranscodePlan to the runner. A rejected attempt adds
    ``measured_size / shrink_divisor`` to ``additional_shrink`` so the next target is
    strictly smaller.
    """

    def __init__(self, settings: Optional[TranscodeSettings] = None, runner=None,
                 allocator: Optional[BitrateAllocator] = None):
        self.settings = settings or TranscodeSettings()
        self.runner = runner or PassRunner(self.settings)
        self.allocator = allocator or BitrateAllocator(self.settings.audio_curve,
                                                       self.settings.min_video_bitrate)
        self.passes: List[PassAttempt] = []
        self.additional_shrink = 0.0

    def run(self, source_path: Union[str, Path], target_size_bytes: int,
            output_path: Optional[Union[str, Path]] = None,
            audio_path: Optional[Union[str, Path]] = None) -> Path:
        """
        Produce an artifact no larger than target_size_bytes.

        Args:
            source_path: Media file to compress
            target_size_bytes: Hard size budget for the output
            output_path: Where passes write; defaults to '<sha1>.mp4' beside the source
            audio_path: Intermediate audio artifact; defaults to '<sha1>.aac' beside the source

        Returns:
            The source path itself when it already fits, otherwise output_path

        Raises:
            TargetNotMetError: when max_attempts attempts all overshoot
            BudgetInfeasibleError: when a target leaves no usable video bitrate
        """
        source_path = Path(source_path)
        target_size_bytes = int(target_size_bytes)
        if target_size_bytes <= 0:
            raise BudgetInfeasibleError(f"Target size must be positive, got {target_size_bytes} bytes",
                                        target_bytes=target_size_bytes)

        try:
            source_size = os.path.getsize(source_path)
        except OSError as e:
            raise ContainerOpenError(f"Could not read source size: {e}", path=source_path) from e

        self.passes = []
        self.additional_shrink = 0.0

        if source_size <= target_size_bytes:
            logger.info(f"{source_path.name} is already {source_size / BYTES_PER_MB:.2f}MB, "
                        f"within {target_size_bytes / BYTES_PER_MB:.2f}MB; nothing to do")
            return source_path

        if output_path is None or audio_path is None:
            work_paths = derive_work_paths(source_path)
            output_path = output_path or work_paths.pass_output_path
            audio_path = audio_path or work_paths.audio_path
        output_path = Path(output_path)
        audio_path = Path(audio_path)

        settings = self.settings
        encoder_options = parse_encoder_options(settings.video_encoder_options)
        audio_bitrate = self.allocator.audio_bitrate(source_size)
        audio_size = None
        accepted = False

        logger.info(f"Compressing {source_path.name}: {source_size / BYTES_PER_MB:.2f}MB -> "
                    f"{target_size_bytes / BYTES_PER_MB:.2f}MB (max {settings.max_attempts} attempts)")
        try:
            for attempt in range(settings.max_attempts):
                effective_target = target_size_bytes - self.additional_shrink
                source = probe_source(source_path)

                if audio_size is None or not settings.reuse_audio_artifact:
                    TempFileManager.register(audio_path)
                    audio_size = self.runner.run_audio(source, audio_bitrate, audio_path) or 0
                    has_audio = source.best_audio_index is not None

                video_bitrate = self.allocator.video_bitrate(effective_target, audio_size,
                                                             source.duration_seconds)
                plan = TranscodePlan(
                    attempt=attempt,
                    target_size_bytes=effective_target,
                    budget_bytes=target_size_bytes,
                    duration_seconds=source.duration_seconds,
                    audio_bitrate=audio_bitrate,
                    video_bitrate=video_bitrate,
                    audio_size_bytes=audio_size,
                    encoder_options=dict(encoder_options),
                )
                record = PassAttempt(attempt=attempt, plan=plan, output_path=output_path)
                self.passes.append(record)
                logger.info(f"Attempt {attempt + 1}/{settings.max_attempts}: target "
                            f"{effective_target / BYTES_PER_MB:.2f}MB, video {video_bitrate / 1024:.1f}kbps, "
                            f"audio {audio_bitrate / 1024:.1f}kbps")

                # The monitor checks the hard budget: a truncated pass must never be accepted
                monitor = SizeBudgetMonitor(output_path, target_size_bytes, enabled=settings.monitor_enabled)
                TempFileManager.register(output_path)
                record.aborted_early = bool(self.runner.run_video(
                    source, plan, audio_path if has_audio else None, output_path, monitor))
                record.measured_size_bytes = measure_artifact(output_path)

                if record.measured_size_bytes <= target_size_bytes and not record.aborted_early:
                    record.accepted = True
                    accepted = True
                    TempFileManager.unregister(output_path)
                    logger.info(f"Attempt {attempt + 1} accepted: "
                                f"{record.measured_size_bytes / BYTES_PER_MB:.2f}MB")
                    return output_path

                shrink = record.measured_size_bytes / settings.shrink_divisor
                self.additional_shrink += shrink
                logger.warning(f"Attempt {attempt + 1} produced {record.measured_size_bytes / BYTES_PER_MB:.2f}MB"
                               f"{' (stopped early)' if record.aborted_early else ''}, over "
                               f"{target_size_bytes / BYTES_PER_MB:.2f}MB; shrinking target by "
                               f"{shrink / BYTES_PER_MB:.2f}MB")
                TempFileManager.discard(output_path)

            best = min((p.measured_size_bytes for p in self.passes if p.measured_size_bytes is not None),
                       default=None)
            raise TargetNotMetError(
                f"No attempt fit under {target_size_bytes / BYTES_PER_MB:.2f}MB after "
                f"{settings.max_attempts} attempts",
                attempts=len(self.passes), best_size_bytes=best, target_bytes=target_size_bytes)
        finally:
            if not accepted:
                TempFileManager.discard(output_path)
            if settings.keep_intermediate:
                TempFileManager.unregister(audio_path)
            else:
                TempFileManager.discard(audio_path)

    async def run_async(self, source_path: Union[str, Path], target_size_bytes: int,
                        output_path: Optional[Union[str, Path]] = None,
                        audio_path: Optional[Union[str, Path]] = None) -> Path:
        """Run the blocking controller on a worker thread."""
        return await asyncio.to_thread(self.run, source_path, target_size_bytes, output_path, audio_path)
