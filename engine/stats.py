"""
Measurement statistics.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
Everything here is deterministic and easy to unit-test.
"""
from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from .constants import DEFAULT_PERCENTILE


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ConnectionStats:
    """Per-stream statistics collected by one throughput worker."""

    id: int = 0
    direction: str = ""
    bytes_transferred: int = 0
    requests: int = 0
    failures: int = 0
    duration_ms: float = 0.0
    speed_mbps: float = 0.0

    def calculate(self) -> None:
        if self.duration_ms > 0:
            self.speed_mbps = rate_mbps(self.bytes_transferred, self.duration_ms)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "direction": self.direction,
            "bytes": self.bytes_transferred,
            "requests": self.requests,
            "failures": self.failures,
            "duration_ms": round(self.duration_ms, 2),
            "speed_mbps": round(self.speed_mbps, 2),
        }


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def rate_mbps(total_bytes: int, elapsed_ms: float) -> float:
    """Average rate in megabits per second: ``bytes * 8 / (ms * 1000)``."""
    if elapsed_ms <= 0:
        return 0.0
    return (total_bytes * 8) / (elapsed_ms * 1000)


def trim_outliers(samples: Iterable[float]) -> List[float]:
    """Sort *samples* and drop the single lowest and highest value.

    Fewer than three samples are returned sorted but untrimmed.
    """
    ordered = sorted(samples)
    if len(ordered) < 3:
        return ordered
    return ordered[1:-1]


def reduce_probes(samples: Sequence[float]) -> Tuple[int, int]:
    """Reduce raw round-trip times to ``(latency_ms, jitter_ms)``.

    Latency is the rounded mean of the trimmed set, jitter its spread
    (max - min).  The result does not depend on the order of *samples*.
    """
    kept = trim_outliers(samples)
    if not kept:
        return 0, 0
    latency = round_half_up(statistics.fmean(kept))
    jitter = round_half_up(kept[-1] - kept[0])
    return latency, jitter


def percentile_reduce(samples: Iterable[float], percentile: float = DEFAULT_PERCENTILE) -> float:
    """Value at index ``floor(count * percentile)`` of the sorted samples.

    Returns ``0.0`` for an empty input.  The index is clamped to the last
    element so ``percentile=1.0`` selects the maximum.
    """
    ordered = sorted(samples)
    if not ordered:
        return 0.0
    idx = min(int(math.floor(len(ordered) * percentile)), len(ordered) - 1)
    return ordered[idx]


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(speed_mbps: float) -> str:
    """Human-readable speed string."""
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    return f"{speed_mbps:.2f} Mbps"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"
