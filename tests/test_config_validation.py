"""
Unit tests for configuration loading, layering and validation
"""

import os
import shutil
import tempfile
import unittest

import yaml

from vidshrink.config_manager import ConfigManager


class TestConfigValidation(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures"""
        shutil.rmtree(self.temp_dir)

    def _write_compression(self, section):
        with open(os.path.join(self.temp_dir, 'compression.yaml'), 'w') as f:
            yaml.dump({'compression': section}, f)

    def test_packaged_defaults_are_valid(self):
        config_manager = ConfigManager()
        self.assertTrue(config_manager.validate_config())
        self.assertEqual(config_manager.get('compression.progress.poll_interval_seconds'), 2)
        self.assertIsNone(config_manager.get_supported_codecs_override())
        self.assertEqual(config_manager.get('logging.handlers.console.level'), 'WARNING')

    def test_external_dir_overrides_single_keys(self):
        self._write_compression({'planner': {'large_file_threshold_mb': 100}})

        config_manager = ConfigManager(self.temp_dir)

        self.assertEqual(config_manager.get('compression.planner.large_file_threshold_mb'), 100)
        # Untouched siblings keep their packaged values
        self.assertEqual(config_manager.get('compression.planner.small_file_threshold_mb'), 30)
        self.assertEqual(config_manager.get_planner_config()['default_max'], (1920, 1080))
        self.assertTrue(config_manager.validate_config())

    def test_missing_external_dir_falls_back_to_defaults(self):
        config_manager = ConfigManager(os.path.join(self.temp_dir, 'does-not-exist'))
        self.assertTrue(config_manager.validate_config())

    def test_invalid_resolution_fails_validation(self):
        self._write_compression({'planner': {'secondary_cap': {'width': -1280, 'height': 720}}})
        self.assertFalse(ConfigManager(self.temp_dir).validate_config())

    def test_invalid_fallback_ceiling_fails_validation(self):
        self._write_compression({'progress': {'fallback_ceiling': 99}})
        self.assertFalse(ConfigManager(self.temp_dir).validate_config())

    def test_timeout_min_above_max_fails_validation(self):
        self._write_compression({'timeout': {'min_seconds': 900, 'max_seconds': 600}})
        self.assertFalse(ConfigManager(self.temp_dir).validate_config())

    def test_supported_codecs_must_be_a_list(self):
        self._write_compression({'codec_negotiation': {'supported_codecs': 'vp9'}})
        self.assertFalse(ConfigManager(self.temp_dir).validate_config())

    def test_invalid_yaml_raises(self):
        with open(os.path.join(self.temp_dir, 'compression.yaml'), 'w') as f:
            f.write("compression: [unclosed\n")
        with self.assertRaises(yaml.YAMLError):
            ConfigManager(self.temp_dir)

    def test_update_from_args_sets_nested_values(self):
        config_manager = ConfigManager(self.temp_dir)
        config_manager.update_from_args({
            'compression.timeout.max_seconds': 600,
            'compression.engine.work_dir': None,
            'compression.new.section.value': 'x',
        })
        self.assertEqual(config_manager.get_timeout_config()['max_seconds'], 600)
        self.assertIsNone(config_manager.get('compression.engine.work_dir'))
        self.assertEqual(config_manager.get('compression.new.section.value'), 'x')

    def test_get_returns_default_for_missing_path(self):
        config_manager = ConfigManager()
        self.assertEqual(config_manager.get('compression.nope.nothing', 'fallback'), 'fallback')

    def test_reload_when_file_changes(self):
        self._write_compression({'timeout': {'max_seconds': 1000}})
        config_manager = ConfigManager(self.temp_dir)
        self.assertFalse(config_manager.reload_config_if_changed())

        path = os.path.join(self.temp_dir, 'compression.yaml')
        self._write_compression({'timeout': {'max_seconds': 1200}})
        stat = os.stat(path)
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        self.assertTrue(config_manager.reload_config_if_changed())
        self.assertEqual(config_manager.get('compression.timeout.max_seconds'), 1200)


if __name__ == '__main__':
    unittest.main()
