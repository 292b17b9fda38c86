"""
Configuration Manager for vidshrink
Handles loading and managing configuration from YAML files and CLI arguments
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

CONFIG_FILES = [
    'compression.yaml',
    'logging.yaml',
]


def get_packaged_config_dir() -> str:
    """Directory holding the default YAML files shipped inside the package"""
    return os.path.join(os.path.abspath(os.path.dirname(__file__)), 'config')


class ConfigManager:
    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = config_dir or get_packaged_config_dir()
        self.config = {}
        self._config_file_timestamps = {}  # Track file modification times
        self._load_all_configs()

    def _load_all_configs(self):
        """Load all configuration files, layering the config dir over packaged defaults"""
        packaged_dir = get_packaged_config_dir()
        for config_file in CONFIG_FILES:
            packaged_path = os.path.join(packaged_dir, config_file)
            config_path = os.path.join(self.config_dir, config_file)

            # 1) Packaged defaults are always the base layer
            if os.path.exists(packaged_path):
                self._merge_file(packaged_path, config_file)

            # 2) An explicit external config dir overrides key by key
            if os.path.abspath(config_path) != os.path.abspath(packaged_path):
                if os.path.exists(config_path):
                    self._merge_file(config_path, config_file)
                else:
                    logger.debug(f"Config file not found in '{self.config_dir}', using packaged defaults: {config_file}")

    def _merge_file(self, path: str, config_file: str):
        try:
            with open(path, 'r', encoding='utf-8') as file:
                config_data = yaml.safe_load(file)
        except yaml.YAMLError as e:
            logger.error(f"Invalid YAML in {path}: {e}")
            raise
        if config_data:
            _deep_merge(self.config, config_data)
        self._config_file_timestamps[config_file] = os.path.getmtime(path)
        logger.debug(f"Loaded config from {path}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: get('compression.planner.large_file_threshold_mb')
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
        overrides_applied = []
        for key, value in args_dict.items():
            if value is not None:
                old_value = self.get(key)
                self._set_nested_value(key, value)
                overrides_applied.append(f"{key}: {old_value} → {value}")
                logger.info(f"Configuration override applied: {key} = {value} (was: {old_value})")

        if overrides_applied:
            logger.info(f"Applied {len(overrides_applied)} CLI configuration overrides")
        else:
            logger.debug("No CLI configuration overrides to apply")

    def _set_nested_value(self, key_path: str, value: Any):
        """Set nested configuration value using dot notation"""
        keys = key_path.split('.')
        config_section = self.config

        # Navigate to the parent of the target key
        for key in keys[:-1]:
            if key not in config_section:
                config_section[key] = {}
            config_section = config_section[key]

        # Set the final value
        config_section[keys[-1]] = value

    def validate_config(self) -> bool:
        """Validate that required configuration values are present and sane"""
        required_keys = [
            'compression.planner.large_file_threshold_mb',
            'compression.planner.small_file_threshold_mb',
            'compression.planner.default_max',
            'compression.planner.large_file_max',
            'compression.planner.secondary_cap',
            'compression.progress.poll_interval_seconds',
            'compression.timeout.max_seconds',
        ]

        for key in required_keys:
            if self.get(key) is None:
                logger.error(f"Required configuration key missing: {key}")
                return False

        if not self._validate_planner_config():
            return False
        if not self._validate_progress_config():
            return False
        if not self._validate_timeout_config():
            return False

        supported = self.get('compression.codec_negotiation.supported_codecs')
        if supported is not None and not isinstance(supported, list):
            logger.error("codec_negotiation.supported_codecs must be a list of codec ids")
            return False

        logger.info("Configuration validation passed")
        return True

    def _validate_planner_config(self) -> bool:
        """Validate the resolution policy table"""
        small = self.get('compression.planner.small_file_threshold_mb')
        large = self.get('compression.planner.large_file_threshold_mb')
        for name, threshold in (('small_file_threshold_mb', small), ('large_file_threshold_mb', large)):
            if not isinstance(threshold, (int, float)) or threshold <= 0:
                logger.error(f"Invalid {name}: {threshold} (must be positive number)")
                return False

        for name in ('default_max', 'large_file_max', 'secondary_cap'):
            res = self.get(f'compression.planner.{name}')
            if not isinstance(res, dict):
                logger.error(f"planner.{name} must be a dictionary with width and height")
                return False
            width = res.get('width')
            height = res.get('height')
            if not isinstance(width, int) or width <= 0 or not isinstance(height, int) or height <= 0:
                logger.error(f"Invalid planner.{name} dimensions: {width}x{height} (must be positive integers)")
                return False

        return True

    def _validate_progress_config(self) -> bool:
        """Validate progress reporting settings"""
        interval = self.get('compression.progress.poll_interval_seconds')
        if not isinstance(interval, (int, float)) or interval <= 0:
            logger.error(f"Invalid poll_interval_seconds: {interval} (must be positive number)")
            return False

        ceiling = self.get('compression.progress.fallback_ceiling', 90)
        if not isinstance(ceiling, int) or not 5 < ceiling < 95:
            logger.error(f"Invalid fallback_ceiling: {ceiling} (must be an integer between 5 and 95)")
            return False

        return True

    def _validate_timeout_config(self) -> bool:
        """Validate the wall-clock budget settings"""
        min_seconds = self.get('compression.timeout.min_seconds', 300)
        max_seconds = self.get('compression.timeout.max_seconds')
        per_mb = self.get('compression.timeout.seconds_per_mb', 12)

        for name, value in (('min_seconds', min_seconds), ('max_seconds', max_seconds), ('seconds_per_mb', per_mb)):
            if not isinstance(value, (int, float)) or value <= 0:
                logger.error(f"Invalid timeout.{name}: {value} (must be positive number)")
                return False

        if min_seconds > max_seconds:
            logger.error(f"timeout.min_seconds ({min_seconds}) exceeds timeout.max_seconds ({max_seconds})")
            return False

        return True

    def get_planner_config(self) -> Dict[str, Any]:
        """Get complete resolution policy table"""
        return {
            'large_file_threshold_mb': self.get('compression.planner.large_file_threshold_mb', 50),
            'small_file_threshold_mb': self.get('compression.planner.small_file_threshold_mb', 30),
            'default_max': self._resolution('compression.planner.default_max', (1920, 1080)),
            'large_file_max': self._resolution('compression.planner.large_file_max', (1280, 720)),
            'secondary_cap': self._resolution('compression.planner.secondary_cap', (1280, 720)),
            'keyframe_interval': self.get('compression.planner.keyframe_interval', 120),
            'keyframe_min_interval': self.get('compression.planner.keyframe_min_interval', 60),
        }

    def get_timeout_config(self) -> Dict[str, float]:
        return {
            'min_seconds': self.get('compression.timeout.min_seconds', 300),
            'max_seconds': self.get('compression.timeout.max_seconds', 1800),
            'seconds_per_mb': self.get('compression.timeout.seconds_per_mb', 12),
        }

    def get_supported_codecs_override(self) -> Optional[List[str]]:
        """Codec ids the playback target is declared to decode, if configured"""
        return self.get('compression.codec_negotiation.supported_codecs')

    def _resolution(self, key_path: str, default):
        res = self.get(key_path)
        if not res:
            return default
        return (res['width'], res['height'])

    def check_for_config_changes(self) -> bool:
        """Check if any configuration files have been modified since last load"""
        for config_file in CONFIG_FILES:
            config_path = os.path.join(self.config_dir, config_file)
            if os.path.exists(config_path):
                current_mtime = os.path.getmtime(config_path)
                stored_mtime = self._config_file_timestamps.get(config_file, 0)
                if current_mtime > stored_mtime:
                    logger.info(f"Configuration file {config_file} has been modified")
                    return True
        return False

    def reload_config_if_changed(self) -> bool:
        """Reload configuration if files have been modified. Returns True if reloaded."""
        if self.check_for_config_changes():
            logger.info("Reloading configuration due to file changes")
            self.config = {}
            self._config_file_timestamps = {}
            self._load_all_configs()
            return True
        return False


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base
