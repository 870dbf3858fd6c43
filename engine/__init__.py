"""Speed test measurement engine -- probing, throughput, reduction, and phases."""

from .aggregator import ByteCounter, SampleAggregator
from .config import TestConfig, config_from_dict, load_config, save_config
from .errors import ConfigError, EngineError, TestAborted
from .latency import ProbeResult, ProbeSampler
from .models import (
    Direction,
    EngineEvent,
    EventKind,
    RateSample,
    ServerEndpoint,
    TestPhase,
    TestResult,
)
from .monitor import HealthReading, LiveHealthMonitor
from .phases import PhaseStateMachine
from .stats import (
    ConnectionStats,
    format_latency,
    format_speed,
    percentile_reduce,
    reduce_probes,
)
from .throughput import ThroughputResult, ThroughputTester
from .worker import ThroughputWorker

__all__ = [
    "ByteCounter",
    "ConfigError",
    "ConnectionStats",
    "Direction",
    "EngineError",
    "EngineEvent",
    "EventKind",
    "HealthReading",
    "LiveHealthMonitor",
    "PhaseStateMachine",
    "ProbeResult",
    "ProbeSampler",
    "RateSample",
    "SampleAggregator",
    "ServerEndpoint",
    "TestAborted",
    "TestConfig",
    "TestPhase",
    "TestResult",
    "ThroughputResult",
    "ThroughputTester",
    "ThroughputWorker",
    "config_from_dict",
    "format_latency",
    "format_speed",
    "load_config",
    "percentile_reduce",
    "reduce_probes",
    "save_config",
]
