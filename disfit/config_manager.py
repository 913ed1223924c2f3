"""
Configuration Manager for the size-constrained transcoder
Handles loading and managing configuration from YAML files and CLI arguments
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Tuple

import yaml

from .bitrate_allocator import AudioBitrateCurve, BITS_PER_KBIT

logger = logging.getLogger(__name__)

CONFIG_FILES = [
    'size_fit.yaml',
    'logging.yaml',
]


@dataclass(frozen=True)
class TranscodeSettings:
    """Resolved settings handed down to the pass controller; nothing below reads config files"""
    shrink_divisor: float = 25.0
    max_attempts: int = 8
    reuse_audio_artifact: bool = True
    keep_intermediate: bool = False
    audio_codec: str = 'aac'
    audio_curve: AudioBitrateCurve = field(default_factory=AudioBitrateCurve)
    video_codec: str = 'libx264'
    video_encoder_options: str = 'preset=ultrafast'
    min_video_bitrate: float = 16.0 * BITS_PER_KBIT
    pixel_format: Optional[str] = None
    copy_mediums: Tuple[str, ...] = ('subtitle',)
    monitor_enabled: bool = True
    progress_interval_seconds: float = 1.0
    progress_interval_frames: int = 100
    show_progress_bar: bool = False


class ConfigManager:
    def __init__(self, config_dir: str = "config"):
        self.config_dir = config_dir
        self.config = {}
        self._config_file_timestamps = {}
        self._load_all_configs()

    def _load_all_configs(self):
        """Load all configuration files, preferring the external config dir over packaged defaults"""
        package_dir = os.path.abspath(os.path.dirname(__file__))
        for config_file in CONFIG_FILES:
            candidates = [
                os.path.join(self.config_dir, config_file),
                os.path.join(package_dir, 'config', config_file),
            ]
            for config_path in candidates:
                if not os.path.exists(config_path):
                    continue
                with open(config_path, 'r', encoding='utf-8') as file:
                    config_data = yaml.safe_load(file)
                if config_data:
                    self.config.update(config_data)
                self._config_file_timestamps[config_file] = os.path.getmtime(config_path)
                logger.debug(f"Loaded config from {config_path}")
                break
            else:
                logger.warning(f"Config file not found in '{self.config_dir}' or packaged defaults: {config_file}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: get('size_fit.audio.min_kbps')
        """
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            logger.debug(f"Configuration key '{key_path}' not found, using default: {default}")
            return default

    def update_from_args(self, args_dict: Dict[str, Any]):
        """Update configuration with command line arguments"""
        applied = 0
        for key, value in args_dict.items():
            if value is not None:
                old_value = self.get(key)
                self._set_nested_value(key, value)
                applied += 1
                logger.info(f"Configuration override applied: {key} = {value} (was: {old_value})")

        if applied:
            logger.info(f"Applied {applied} CLI configuration overrides")
        else:
            logger.debug("No CLI configuration overrides to apply")

    def _set_nested_value(self, key_path: str, value: Any):
        """Set nested configuration value using dot notation"""
        keys = key_path.split('.')
        config_section = self.config

        for key in keys[:-1]:
            if key not in config_section:
                config_section[key] = {}
            config_section = config_section[key]

        config_section[keys[-1]] = value

    def validate_configuration_values(self) -> List[str]:
        """Validate configuration values and return list of issues"""
        issues = []

        divisor = self.get('size_fit.shrink_divisor')
        if divisor is not None and (not isinstance(divisor, (int, float)) or divisor <= 0):
            issues.append(f"Invalid shrink_divisor: {divisor} (must be positive number)")

        max_attempts = self.get('size_fit.max_attempts')
        if max_attempts is not None and (not isinstance(max_attempts, int) or max_attempts < 1):
            issues.append(f"Invalid max_attempts: {max_attempts} (must be a positive integer)")

        audio = self.get('size_fit.audio', {}) or {}
        min_kbps = audio.get('min_kbps')
        max_kbps = audio.get('max_kbps')
        for name, value in (('min_kbps', min_kbps), ('max_kbps', max_kbps)):
            if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                issues.append(f"Invalid audio.{name}: {value} (must be positive number)")
        if isinstance(min_kbps, (int, float)) and isinstance(max_kbps, (int, float)) and min_kbps > max_kbps:
            issues.append(f"audio.min_kbps ({min_kbps}) is above audio.max_kbps ({max_kbps})")

        floor_mb = audio.get('source_floor_mb')
        ceiling_mb = audio.get('source_ceiling_mb')
        if isinstance(floor_mb, (int, float)) and isinstance(ceiling_mb, (int, float)) and floor_mb >= ceiling_mb:
            issues.append(f"audio.source_floor_mb ({floor_mb}) must be below audio.source_ceiling_mb ({ceiling_mb})")

        min_video = self.get('size_fit.video.min_bitrate_kbps')
        if min_video is not None and (not isinstance(min_video, (int, float)) or min_video < 0):
            issues.append(f"Invalid video.min_bitrate_kbps: {min_video} (must be zero or positive)")

        options = self.get('size_fit.video.encoder_options')
        if options:
            for entry in str(options).split(','):
                if entry and len(entry.split('=')) != 2:
                    issues.append(f"Malformed video.encoder_options entry: '{entry}' (expected key=value)")

        copy_mediums = self.get('size_fit.container.copy_mediums', [])
        if copy_mediums is not None and not isinstance(copy_mediums, list):
            issues.append("container.copy_mediums must be a list")
        elif copy_mediums and any(m in ('audio', 'video') for m in copy_mediums):
            issues.append("container.copy_mediums cannot include audio or video")

        return issues

    def get_transcode_settings(self) -> TranscodeSettings:
        """Resolve the size_fit section into an immutable TranscodeSettings"""
        defaults = TranscodeSettings()
        curve_defaults = defaults.audio_curve
        curve = AudioBitrateCurve(
            source_floor_mb=float(self.get('size_fit.audio.source_floor_mb', curve_defaults.source_floor_mb)),
            source_ceiling_mb=float(self.get('size_fit.audio.source_ceiling_mb', curve_defaults.source_ceiling_mb)),
            min_kbps=float(self.get('size_fit.audio.min_kbps', curve_defaults.min_kbps)),
            max_kbps=float(self.get('size_fit.audio.max_kbps', curve_defaults.max_kbps)),
        )
        return TranscodeSettings(
            shrink_divisor=float(self.get('size_fit.shrink_divisor', defaults.shrink_divisor)),
            max_attempts=int(self.get('size_fit.max_attempts', defaults.max_attempts)),
            reuse_audio_artifact=bool(self.get('size_fit.reuse_audio_artifact', defaults.reuse_audio_artifact)),
            keep_intermediate=bool(self.get('size_fit.keep_intermediate', defaults.keep_intermediate)),
            audio_codec=self.get('size_fit.audio.codec', defaults.audio_codec),
            audio_curve=curve,
            video_codec=self.get('size_fit.video.codec', defaults.video_codec),
            video_encoder_options=self.get('size_fit.video.encoder_options', defaults.video_encoder_options) or '',
            min_video_bitrate=float(self.get('size_fit.video.min_bitrate_kbps',
                                             defaults.min_video_bitrate / BITS_PER_KBIT)) * BITS_PER_KBIT,
            pixel_format=self.get('size_fit.video.pixel_format', defaults.pixel_format),
            copy_mediums=tuple(self.get('size_fit.container.copy_mediums', list(defaults.copy_mediums)) or ()),
            monitor_enabled=bool(self.get('size_fit.monitor.enabled', defaults.monitor_enabled)),
            progress_interval_seconds=float(self.get('size_fit.progress.interval_seconds',
                                                     defaults.progress_interval_seconds)),
            progress_interval_frames=int(self.get('size_fit.progress.interval_frames',
                                                  defaults.progress_interval_frames)),
            show_progress_bar=bool(self.get('size_fit.progress.show_bar', defaults.show_progress_bar)),
        )

    def log_active_configuration(self):
        """Log active configuration values for debugging"""
        settings = self.get_transcode_settings()
        logger.info("=== Active Configuration Values ===")
        logger.info(f"Configuration directory: {self.config_dir}")
        for config_file in self._config_file_timestamps:
            logger.info(f"  loaded {config_file}")
        logger.info(f"  Shrink divisor: {settings.shrink_divisor}")
        logger.info(f"  Max attempts: {settings.max_attempts}")
        logger.info(f"  Reuse audio artifact: {settings.reuse_audio_artifact}")
        logger.info(f"  Audio: {settings.audio_codec} {settings.audio_curve.min_kbps}-"
                    f"{settings.audio_curve.max_kbps}kbps over {settings.audio_curve.source_floor_mb}-"
                    f"{settings.audio_curve.source_ceiling_mb}MB sources")
        logger.info(f"  Video: {settings.video_codec} ({settings.video_encoder_options}), "
                    f"floor {settings.min_video_bitrate:.0f}bps")
        logger.info(f"  Copied mediums: {', '.join(settings.copy_mediums) or 'none'}")
        logger.info("=== End Configuration ===")
