"""Tests for engine.config -- TestConfig validation and file persistence."""

import dataclasses
import os
import tempfile
import unittest
from unittest import mock

from engine.config import (
    DEFAULTS,
    TestConfig,
    config_from_dict,
    get_config_value,
    load_config,
    save_config,
    set_config_value,
)
from engine.constants import MAX_STREAMS, MIN_DURATION_MS
from engine.errors import ConfigError
from engine.models import Direction


class TestTestConfigValidation(unittest.TestCase):
    def test_defaults_valid(self):
        cfg = TestConfig()
        self.assertIs(cfg.validate(), cfg)
        self.assertEqual(cfg.duration_ms, 8000)
        self.assertEqual(cfg.warmup_ms, 1200)
        self.assertAlmostEqual(cfg.percentile, 0.8)

    def test_config_error_is_value_error(self):
        with self.assertRaises(ValueError):
            TestConfig(duration_ms=0).validate()

    def test_duration_too_short(self):
        with self.assertRaises(ConfigError):
            TestConfig(duration_ms=MIN_DURATION_MS - 1).validate()

    def test_stream_count_bounds(self):
        TestConfig(stream_count=1).validate()
        TestConfig(stream_count=MAX_STREAMS).validate()
        with self.assertRaises(ConfigError):
            TestConfig(stream_count=0).validate()
        with self.assertRaises(ConfigError):
            TestConfig(stream_count=MAX_STREAMS + 1).validate()

    def test_upload_stream_count(self):
        with self.assertRaises(ConfigError):
            TestConfig(upload_stream_count=0).validate()

    def test_warmup_must_be_positive(self):
        for value in (-1, 0):
            with self.assertRaises(ConfigError):
                TestConfig(warmup_ms=value).validate()
        TestConfig(warmup_ms=1).validate()

    def test_sample_interval(self):
        with self.assertRaises(ConfigError):
            TestConfig(sample_interval_ms=0).validate()
        with self.assertRaises(ConfigError):
            TestConfig(duration_ms=1000, sample_interval_ms=2000).validate()

    def test_probe_count(self):
        with self.assertRaises(ConfigError):
            TestConfig(probe_count=0).validate()

    def test_positive_fields(self):
        for name in ("probe_delay_ms", "transition_ms", "monitor_interval_ms",
                     "probe_penalty_ms", "probe_timeout_ms", "upload_payload_bytes"):
            with self.subTest(field=name), self.assertRaises(ConfigError):
                TestConfig(**{name: 0}).validate()

    def test_percentile_range(self):
        TestConfig(percentile=1.0).validate()
        for bad in (0.0, -0.5, 1.01):
            with self.subTest(percentile=bad), self.assertRaises(ConfigError):
                TestConfig(percentile=bad).validate()

    def test_frozen(self):
        with self.assertRaises(dataclasses.FrozenInstanceError):
            TestConfig().duration_ms = 1


class TestStreamsFor(unittest.TestCase):
    def test_upload_defaults_to_stream_count(self):
        cfg = TestConfig(stream_count=6)
        self.assertEqual(cfg.streams_for(Direction.DOWNLOAD), 6)
        self.assertEqual(cfg.streams_for(Direction.UPLOAD), 6)

    def test_separate_upload_count(self):
        cfg = TestConfig(stream_count=6, upload_stream_count=2)
        self.assertEqual(cfg.streams_for(Direction.UPLOAD), 2)


class TestConfigFromDict(unittest.TestCase):
    def test_unknown_and_none_ignored(self):
        cfg = config_from_dict({"duration_ms": 5000, "endpoint": None, "bogus": 1,
                                "stream_count": None})
        self.assertEqual(cfg.duration_ms, 5000)
        self.assertEqual(cfg.stream_count, 4)

    def test_invalid_raises(self):
        with self.assertRaises(ConfigError):
            config_from_dict({"probe_count": 0})


class TestLoadSaveConfig(unittest.TestCase):
    def test_defaults_have_required_keys(self):
        for key in ("endpoint", "duration_ms", "stream_count", "warmup_ms",
                    "sample_interval_ms", "probe_count", "probe_delay_ms"):
            self.assertIn(key, DEFAULTS)

    def test_load_defaults_when_missing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.json")
            with mock.patch("engine.config._config_path", return_value=path):
                cfg = load_config()
                self.assertEqual(cfg["stream_count"], 4)
                self.assertIsNone(cfg["endpoint"])

    def test_save_and_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.json")
            with mock.patch("engine.config._config_path", return_value=path):
                save_config({"duration_ms": 4000, "stream_count": 8})
                cfg = load_config()
                self.assertEqual(cfg["duration_ms"], 4000)
                self.assertEqual(cfg["stream_count"], 8)
                # Defaults still present
                self.assertEqual(cfg["warmup_ms"], 1200)

    def test_corrupt_file_returns_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.json")
            with open(path, "w") as f:
                f.write("NOT JSON")
            with mock.patch("engine.config._config_path", return_value=path):
                with self.assertLogs("engine.config", level="WARNING"):
                    cfg = load_config()
                self.assertEqual(cfg["stream_count"], 4)

    def test_get_set_value(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "config.json")
            with mock.patch("engine.config._config_path", return_value=path):
                set_config_value("probe_count", 10)
                self.assertEqual(get_config_value("probe_count"), 10)


if __name__ == "__main__":
    unittest.main()
