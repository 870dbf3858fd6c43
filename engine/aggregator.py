"""
Byte accounting and sample reduction for one throughput phase.

Workers report transferred bytes into a :class:`ByteCounter`; the tester
reads the running total on a fixed cadence and feeds it to a
:class:`SampleAggregator`, which turns it into rate samples and finally into
one reduced figure.
"""
from __future__ import annotations

import logging
import threading
from typing import List, Optional

from .constants import DEFAULT_PERCENTILE
from .models import RateSample
from .stats import percentile_reduce, rate_mbps

logger = logging.getLogger(__name__)


class ByteCounter:
    """Running byte total shared by the workers of a single phase.

    Increments are serialised by a lock, so reports from any number of
    coroutines (or threads) are never lost.  Once :meth:`seal` is called the
    total is frozen and late reports from stale workers are dropped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._sealed = False
        self.dropped = 0

    def add(self, delta: int) -> bool:
        """Add *delta* bytes.  Returns False if the counter is sealed."""
        if delta < 0:
            raise ValueError("byte delta must not be negative")
        with self._lock:
            if self._sealed:
                self.dropped += delta
                return False
            self._total += delta
            return True

    def seal(self) -> int:
        with self._lock:
            self._sealed = True
            return self._total

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def total(self) -> int:
        with self._lock:
            return self._total


class SampleAggregator:
    """Turns cadence ticks into rate samples and reduces them at phase end.

    Samples taken at or before ``warmup_ms`` are returned for live display but
    never retained, so connection setup and slow start do not drag the final
    figure down.
    """

    def __init__(self, warmup_ms: float, percentile: float = DEFAULT_PERCENTILE) -> None:
        self.warmup_ms = warmup_ms
        self.percentile = percentile
        self._retained: List[RateSample] = []
        self._last_elapsed = 0.0
        self.ticks = 0

    def tick(self, elapsed_ms: float, total_bytes: int) -> Optional[RateSample]:
        """Record the state at *elapsed_ms* into the phase.

        Returns the computed sample, or ``None`` if no time has elapsed yet.
        """
        if elapsed_ms <= 0:
            return None
        if elapsed_ms <= self._last_elapsed:
            raise ValueError(
                f"ticks must be time-ordered ({elapsed_ms} <= {self._last_elapsed})"
            )
        self._last_elapsed = elapsed_ms
        self.ticks += 1

        retained = elapsed_ms > self.warmup_ms
        sample = RateSample(
            elapsed_ms=elapsed_ms,
            rate_mbps=rate_mbps(total_bytes, elapsed_ms),
            retained=retained,
        )
        if retained:
            self._retained.append(sample)
        return sample

    @property
    def samples(self) -> List[RateSample]:
        """Retained samples in time order (a copy)."""
        return list(self._retained)

    def reduce(self) -> float:
        """Percentile of the retained rates, or ``0.0`` if none were retained."""
        result = percentile_reduce((s.rate_mbps for s in self._retained), self.percentile)
        logger.debug(
            "Reduced %d retained of %d samples to %.2f Mbps",
            len(self._retained), self.ticks, result,
        )
        return result
