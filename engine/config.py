"""
Test configuration and user configuration file support.

:class:`TestConfig` is the validated, immutable parameter set a run is
executed with.  User defaults are read from / written to
``~/.velocity/config.json``.

Supported keys::

    duration_ms = 8000          # length of each throughput phase
    stream_count = 4            # concurrent download streams
    upload_stream_count = 4     # concurrent upload streams (default: stream_count)
    warmup_ms = 1200            # samples in this window are not retained
    sample_interval_ms = 50
    probe_count = 6
    probe_delay_ms = 150
    transition_ms = 1200
    monitor_interval_ms = 3000
    percentile = 0.8
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import (
    DEFAULT_DURATION_MS,
    DEFAULT_MONITOR_INTERVAL_MS,
    DEFAULT_PERCENTILE,
    DEFAULT_PROBE_COUNT,
    DEFAULT_PROBE_DELAY_MS,
    DEFAULT_PROBE_TIMEOUT_MS,
    DEFAULT_SAMPLE_INTERVAL_MS,
    DEFAULT_STREAMS,
    DEFAULT_TRANSITION_MS,
    DEFAULT_WARMUP_MS,
    MAX_DURATION_MS,
    MAX_PROBE_COUNT,
    MAX_STREAMS,
    MIN_DURATION_MS,
    MIN_PROBE_COUNT,
    MIN_STREAMS,
    PROBE_PENALTY_MS,
    UPLOAD_PAYLOAD_SIZE,
)
from .errors import ConfigError
from .models import Direction

logger = logging.getLogger(__name__)

_CONFIG_DIR = os.path.join(Path.home(), ".velocity")
_CONFIG_FILE = "config.json"


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# TestConfig
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TestConfig:
    """Parameters of one run.  All times are in milliseconds."""

    __test__ = False

    duration_ms: int = DEFAULT_DURATION_MS
    stream_count: int = DEFAULT_STREAMS
    warmup_ms: int = DEFAULT_WARMUP_MS
    sample_interval_ms: int = DEFAULT_SAMPLE_INTERVAL_MS
    probe_delay_ms: int = DEFAULT_PROBE_DELAY_MS
    probe_count: int = DEFAULT_PROBE_COUNT
    upload_stream_count: Optional[int] = None
    transition_ms: int = DEFAULT_TRANSITION_MS
    monitor_interval_ms: int = DEFAULT_MONITOR_INTERVAL_MS
    percentile: float = DEFAULT_PERCENTILE
    probe_penalty_ms: float = PROBE_PENALTY_MS
    probe_timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS
    upload_payload_bytes: int = UPLOAD_PAYLOAD_SIZE

    @property
    def upload_streams(self) -> int:
        if self.upload_stream_count is None:
            return self.stream_count
        return self.upload_stream_count

    def streams_for(self, direction: Direction) -> int:
        return self.upload_streams if direction is Direction.UPLOAD else self.stream_count

    def validate(self) -> TestConfig:
        """Raise :class:`ConfigError` if any field is out of range.  Returns self."""
        if not MIN_DURATION_MS <= self.duration_ms <= MAX_DURATION_MS:
            raise ConfigError(
                f"duration_ms must be between {MIN_DURATION_MS} and {MAX_DURATION_MS}"
            )
        for name, value in (("stream_count", self.stream_count),
                            ("upload_stream_count", self.upload_streams)):
            if not MIN_STREAMS <= value <= MAX_STREAMS:
                raise ConfigError(f"{name} must be between {MIN_STREAMS} and {MAX_STREAMS}")
        if not 0 < self.sample_interval_ms <= self.duration_ms:
            raise ConfigError("sample_interval_ms must be positive and at most duration_ms")
        if not MIN_PROBE_COUNT <= self.probe_count <= MAX_PROBE_COUNT:
            raise ConfigError(
                f"probe_count must be between {MIN_PROBE_COUNT} and {MAX_PROBE_COUNT}"
            )
        for name in ("warmup_ms", "probe_delay_ms", "transition_ms", "monitor_interval_ms",
                     "probe_penalty_ms", "probe_timeout_ms", "upload_payload_bytes"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if not 0 < self.percentile <= 1:
            raise ConfigError("percentile must be in (0, 1]")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def config_from_dict(data: Dict[str, Any]) -> TestConfig:
    """Build a validated :class:`TestConfig` from *data*, ignoring unknown keys."""
    known = {f.name for f in fields(TestConfig)}
    kwargs = {k: v for k, v in data.items() if k in known and v is not None}
    try:
        config = TestConfig(**kwargs)
    except TypeError as exc:
        raise ConfigError(str(exc)) from exc
    return config.validate()


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = {
    "endpoint": None,
    **TestConfig().to_dict(),
}


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config() -> Dict[str, Any]:
    """Load config from disk, returning defaults for missing keys."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            config.update(user)
    except (json.JSONDecodeError, IOError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)

    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)

    return path


def get_config_value(key: str) -> Any:
    """Get a single config value."""
    return load_config().get(key, DEFAULTS.get(key))


def set_config_value(key: str, value: Any) -> str:
    """Set a single config value and persist.  Returns file path."""
    config = load_config()
    config[key] = value
    return save_config(config)
