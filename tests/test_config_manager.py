"""
Unit tests for ConfigManager
Tests YAML loading, packaged defaults, CLI overrides and validation
"""

import os
import shutil
import tempfile
import unittest

import yaml

from disfit.bitrate_allocator import BITS_PER_KBIT
from disfit.config_manager import ConfigManager, TranscodeSettings


class TestConfigManager(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.temp_dir, 'size_fit.yaml')

        self.test_config = {
            'size_fit': {
                'shrink_divisor': 20.0,
                'max_attempts': 4,
                'reuse_audio_artifact': False,
                'audio': {'codec': 'aac', 'min_kbps': 48, 'max_kbps': 96},
                'video': {'codec': 'libx264', 'encoder_options': 'preset=fast,crf=28',
                          'min_bitrate_kbps': 50},
                'container': {'copy_mediums': ['subtitle', 'data']},
            }
        }

        with open(self.config_file, 'w') as f:
            yaml.dump(self.test_config, f)

        self.config_manager = ConfigManager(self.temp_dir)

    def tearDown(self):
        """Clean up test fixtures"""
        shutil.rmtree(self.temp_dir)

    def test_external_config_is_preferred(self):
        self.assertEqual(self.config_manager.get('size_fit.shrink_divisor'), 20.0)
        self.assertEqual(self.config_manager.get('size_fit.audio.max_kbps'), 96)

    def test_packaged_logging_config_fills_gaps(self):
        self.assertIn('handlers', self.config_manager.get('logging'))

    def test_missing_key_returns_default(self):
        self.assertEqual(self.config_manager.get('size_fit.nope.deeper', 'fallback'), 'fallback')

    def test_transcode_settings(self):
        settings = self.config_manager.get_transcode_settings()
        self.assertIsInstance(settings, TranscodeSettings)
        self.assertEqual(settings.shrink_divisor, 20.0)
        self.assertEqual(settings.max_attempts, 4)
        self.assertFalse(settings.reuse_audio_artifact)
        self.assertEqual(settings.audio_curve.min_kbps, 48.0)
        self.assertEqual(settings.audio_curve.source_floor_mb, 8.0)
        self.assertEqual(settings.video_encoder_options, 'preset=fast,crf=28')
        self.assertEqual(settings.min_video_bitrate, 50 * BITS_PER_KBIT)
        self.assertEqual(settings.copy_mediums, ('subtitle', 'data'))

    def test_cli_overrides(self):
        self.config_manager.update_from_args({'size_fit.max_attempts': 2, 'size_fit.shrink_divisor': None})
        settings = self.config_manager.get_transcode_settings()
        self.assertEqual(settings.max_attempts, 2)
        self.assertEqual(settings.shrink_divisor, 20.0)

    def test_valid_configuration_has_no_issues(self):
        self.assertEqual(self.config_manager.validate_configuration_values(), [])

    def test_validation_reports_issues(self):
        self.config_manager.update_from_args({
            'size_fit.shrink_divisor': 0,
            'size_fit.max_attempts': 0,
            'size_fit.audio.min_kbps': 200,
            'size_fit.video.encoder_options': 'preset',
            'size_fit.container.copy_mediums': ['audio'],
        })
        issues = self.config_manager.validate_configuration_values()
        self.assertEqual(len(issues), 5)
        self.assertTrue(any('shrink_divisor' in issue for issue in issues))
        self.assertTrue(any('encoder_options' in issue for issue in issues))


def test_packaged_defaults_when_config_dir_missing(tmp_path):
    manager = ConfigManager(str(tmp_path / 'does-not-exist'))
    settings = manager.get_transcode_settings()
    assert settings.shrink_divisor == 25.0
    assert settings.max_attempts == 8
    assert settings.audio_curve.min_kbps == 32.0
    assert settings.audio_curve.max_kbps == 128.0
    assert settings.video_codec == 'libx264'
    assert settings.video_encoder_options == 'preset=ultrafast'
    assert settings.min_video_bitrate == 16 * BITS_PER_KBIT
    assert settings.min_video_bitrate == TranscodeSettings().min_video_bitrate
    assert settings.copy_mediums == ('subtitle',)
    assert manager.validate_configuration_values() == []
