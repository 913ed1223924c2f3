"""
Tests for the PassController convergence loop with a scripted pass runner
"""

import asyncio
import os
import shutil
import tempfile
import unittest
from fractions import Fraction
from pathlib import Path
from unittest.mock import patch

from disfit.bitrate_allocator import BYTES_PER_MB
from disfit.config_manager import TranscodeSettings
from disfit.error_handler import BudgetInfeasibleError, MetadataReadError, TargetNotMetError
from disfit.media_container import Medium, SourceAsset, Track
from disfit.pass_controller import PassController


def make_sparse(path, size):
    with open(path, 'wb') as handle:
        handle.truncate(int(size))
    return Path(path)


def make_asset(path, size, duration=600, with_audio=True):
    tracks = [Track(index=0, medium=Medium.VIDEO, codec_name='h264', time_base=Fraction(1, 12800))]
    if with_audio:
        tracks.append(Track(index=1, medium=Medium.AUDIO, codec_name='aac', time_base=Fraction(1, 48000)))
    return SourceAsset(path=Path(path), tracks=tuple(tracks), duration=Fraction(duration),
                       size_bytes=int(size), best_audio_index=1 if with_audio else None,
                       best_video_index=0)


class ScriptedRunner:
    """Writes sparse artifacts of pre-arranged sizes instead of encoding"""

    def __init__(self, video_sizes, audio_size=2 * BYTES_PER_MB, aborted=None):
        self.video_sizes = list(video_sizes)
        self.audio_size = audio_size
        self.aborted = list(aborted or [])
        self.audio_runs = 0
        self.plans = []
        self.audio_paths = []
        self.monitors = []

    def run_audio(self, source, audio_bitrate, audio_path):
        self.audio_runs += 1
        if source.best_audio_index is None:
            return None
        make_sparse(audio_path, self.audio_size)
        return self.audio_size

    def run_video(self, source, plan, audio_path, output_path, monitor):
        self.plans.append(plan)
        self.audio_paths.append(audio_path)
        self.monitors.append(monitor)
        make_sparse(output_path, self.video_sizes.pop(0))
        return self.aborted.pop(0) if self.aborted else False


class TestPassController(unittest.TestCase):

    def setUp(self):
        """Set up a sparse 300MB source in a temporary directory"""
        self.temp_dir = tempfile.mkdtemp()
        self.tmp_path = Path(self.temp_dir)
        self.source = make_sparse(self.tmp_path / 'source.mkv', 300 * BYTES_PER_MB)
        self.output = self.tmp_path / 'pass.mp4'
        self.audio = self.tmp_path / 'audio.aac'

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def run_controller(self, runner, target=25 * BYTES_PER_MB, settings=None, asset=None):
        controller = PassController(settings or TranscodeSettings(), runner=runner)
        asset = asset or make_asset(self.source, 300 * BYTES_PER_MB)
        with patch('disfit.pass_controller.probe_source', return_value=asset):
            result = controller.run(self.source, target, output_path=self.output, audio_path=self.audio)
        return controller, result

    def test_shrinks_target_after_overshoot(self):
        """30MB on a 25MB target shrinks the next target by 1.2MB"""
        runner = ScriptedRunner([30 * BYTES_PER_MB, 24 * BYTES_PER_MB])
        controller, result = self.run_controller(runner)

        self.assertEqual(result, self.output)
        self.assertEqual(len(controller.passes), 2)
        self.assertAlmostEqual(controller.additional_shrink, 1.2 * BYTES_PER_MB, places=3)
        self.assertAlmostEqual(runner.plans[1].target_size_bytes, 23.8 * BYTES_PER_MB, places=3)
        self.assertLess(runner.plans[1].video_bitrate, runner.plans[0].video_bitrate)
        self.assertTrue(controller.passes[1].accepted)
        self.assertFalse(controller.passes[0].accepted)
        self.assertEqual(os.path.getsize(result), 24 * BYTES_PER_MB)

    def test_first_plan_uses_full_target(self):
        runner = ScriptedRunner([20 * BYTES_PER_MB])
        self.run_controller(runner)
        plan = runner.plans[0]
        self.assertEqual(plan.target_size_bytes, 25 * BYTES_PER_MB)
        self.assertEqual(plan.budget_bytes, 25 * BYTES_PER_MB)
        self.assertEqual(plan.duration_seconds, 600.0)
        self.assertEqual(plan.audio_size_bytes, 2 * BYTES_PER_MB)
        self.assertEqual(plan.encoder_options, {'preset': 'ultrafast'})
        self.assertAlmostEqual(plan.video_bitrate, 23 * BYTES_PER_MB * 8 / 600, delta=1)

    def test_monitor_watches_hard_budget(self):
        runner = ScriptedRunner([30 * BYTES_PER_MB, 20 * BYTES_PER_MB])
        self.run_controller(runner)
        self.assertEqual([m.target_size_bytes for m in runner.monitors], [25 * BYTES_PER_MB] * 2)

    def test_audio_artifact_reused_and_removed(self):
        runner = ScriptedRunner([30 * BYTES_PER_MB, 29 * BYTES_PER_MB, 20 * BYTES_PER_MB])
        self.run_controller(runner)
        self.assertEqual(runner.audio_runs, 1)
        self.assertEqual(runner.audio_paths, [self.audio] * 3)
        self.assertFalse(self.audio.exists())

    def test_audio_artifact_regenerated_when_reuse_disabled(self):
        runner = ScriptedRunner([30 * BYTES_PER_MB, 20 * BYTES_PER_MB])
        self.run_controller(runner, settings=TranscodeSettings(reuse_audio_artifact=False))
        self.assertEqual(runner.audio_runs, 2)

    def test_keep_intermediate(self):
        runner = ScriptedRunner([20 * BYTES_PER_MB])
        self.run_controller(runner, settings=TranscodeSettings(keep_intermediate=True))
        self.assertTrue(self.audio.exists())

    def test_attempt_bound_raises_target_not_met(self):
        runner = ScriptedRunner([30 * BYTES_PER_MB] * 3)
        controller = PassController(TranscodeSettings(max_attempts=3), runner=runner)
        with patch('disfit.pass_controller.probe_source',
                   return_value=make_asset(self.source, 300 * BYTES_PER_MB)):
            with self.assertRaises(TargetNotMetError) as ctx:
                controller.run(self.source, 25 * BYTES_PER_MB, output_path=self.output, audio_path=self.audio)

        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(ctx.exception.best_size_bytes, 30 * BYTES_PER_MB)
        targets = [plan.target_size_bytes for plan in runner.plans]
        self.assertTrue(all(a > b for a, b in zip(targets, targets[1:])))
        self.assertFalse(self.output.exists())
        self.assertFalse(self.audio.exists())

    def test_aborted_pass_is_never_accepted(self):
        runner = ScriptedRunner([26 * BYTES_PER_MB, 20 * BYTES_PER_MB], aborted=[True, False])
        controller, result = self.run_controller(runner)
        self.assertTrue(controller.passes[0].aborted_early)
        self.assertEqual(len(controller.passes), 2)
        self.assertEqual(result, self.output)

    def test_source_already_fits(self):
        small = make_sparse(self.tmp_path / 'small.mp4', 10 * BYTES_PER_MB)
        runner = ScriptedRunner([])
        controller = PassController(runner=runner)
        result = controller.run(small, 25 * BYTES_PER_MB, output_path=self.output, audio_path=self.audio)
        self.assertEqual(result, small)
        self.assertEqual(runner.audio_runs, 0)
        self.assertEqual(runner.plans, [])

    def test_unreadable_artifact_raises_metadata_error(self):
        class NoOutputRunner(ScriptedRunner):
            def run_video(self, source, plan, audio_path, output_path, monitor):
                return False

        with self.assertRaises(MetadataReadError):
            self.run_controller(NoOutputRunner([]))

    def test_infeasible_budget_cleans_up(self):
        runner = ScriptedRunner([], audio_size=30 * BYTES_PER_MB)
        with self.assertRaises(BudgetInfeasibleError):
            self.run_controller(runner)
        self.assertFalse(self.audio.exists())
        self.assertFalse(self.output.exists())

    def test_source_without_audio(self):
        runner = ScriptedRunner([20 * BYTES_PER_MB])
        asset = make_asset(self.source, 300 * BYTES_PER_MB, with_audio=False)
        self.run_controller(runner, asset=asset)
        self.assertEqual(runner.audio_paths, [None])
        self.assertEqual(runner.plans[0].audio_size_bytes, 0)

    def test_zero_target_is_infeasible(self):
        with self.assertRaises(BudgetInfeasibleError):
            PassController(runner=ScriptedRunner([])).run(self.source, 0)


def test_run_async(tmp_path):
    source = make_sparse(tmp_path / 'source.mkv', 300 * BYTES_PER_MB)
    runner = ScriptedRunner([20 * BYTES_PER_MB])
    controller = PassController(runner=runner)
    with patch('disfit.pass_controller.probe_source', return_value=make_asset(source, 300 * BYTES_PER_MB)):
        result = asyncio.run(controller.run_async(source, 25 * BYTES_PER_MB,
                                                  tmp_path / 'out.mp4', tmp_path / 'audio.aac'))
    assert result == tmp_path / 'out.mp4'
